"""add terminal message to generation batches

Revision ID: c5a7e2f9d314
Revises: 8e4b2d6c1a53
Create Date: 2026-10-18 09:20:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c5a7e2f9d314'
down_revision = '8e4b2d6c1a53'
branch_labels = None
depends_on = None


def upgrade():
    op.add_column('generation_batches', sa.Column('message', sa.Text(), nullable=True))


def downgrade():
    op.drop_column('generation_batches', 'message')
