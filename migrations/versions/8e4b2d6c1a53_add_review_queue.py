"""add review status, image repair flag and review queue

Revision ID: 8e4b2d6c1a53
Revises: 3f1c9a7d2b10
Create Date: 2026-09-16 14:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '8e4b2d6c1a53'
down_revision = '3f1c9a7d2b10'
branch_labels = None
depends_on = None


def upgrade():
    # Existing recipes predate review and are already published
    op.add_column(
        'recipes',
        sa.Column(
            'review_status',
            sa.String(length=20),
            nullable=False,
            server_default='approved',
        ),
    )
    op.add_column(
        'recipes',
        sa.Column(
            'needs_image_repair',
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
    )
    op.create_index('ix_recipes_review_status', 'recipes', ['review_status'])

    op.create_table(
        'recipe_review_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('recipe_id', sa.String(length=36), nullable=False),
        sa.Column('batch_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('image_generation_status', sa.String(length=20), nullable=False),
        sa.Column('accepted_without_image', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.String(length=100), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['recipe_id'], ['recipes.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('recipe_id'),
    )
    op.create_index('ix_recipe_review_queue_batch_id', 'recipe_review_queue', ['batch_id'])
    op.create_index('ix_recipe_review_queue_status', 'recipe_review_queue', ['status'])
    op.create_index(
        'ix_review_queue_batch_status', 'recipe_review_queue', ['batch_id', 'status']
    )


def downgrade():
    op.drop_index('ix_review_queue_batch_status', table_name='recipe_review_queue')
    op.drop_index('ix_recipe_review_queue_status', table_name='recipe_review_queue')
    op.drop_index('ix_recipe_review_queue_batch_id', table_name='recipe_review_queue')
    op.drop_table('recipe_review_queue')
    op.drop_index('ix_recipes_review_status', table_name='recipes')
    op.drop_column('recipes', 'needs_image_repair')
    op.drop_column('recipes', 'review_status')
