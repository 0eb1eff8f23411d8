"""create generation batch, recipe and audit tables

Revision ID: 3f1c9a7d2b10
Revises:
Create Date: 2026-09-02 10:15:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f1c9a7d2b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'generation_batches',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('requested_count', sa.Integer(), nullable=False),
        sa.Column('chunk_size', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=False),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('recipes_completed', sa.Integer(), nullable=False),
        sa.Column('error_log', sa.JSON(), nullable=True),
        sa.Column('submitted_by', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_generation_batches_status', 'generation_batches', ['status'])

    op.create_table(
        'recipes',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('batch_id', sa.String(length=32), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('meal_types', sa.JSON(), nullable=True),
        sa.Column('dietary_tags', sa.JSON(), nullable=True),
        sa.Column('main_ingredient_tags', sa.JSON(), nullable=True),
        sa.Column('ingredients_json', sa.JSON(), nullable=False),
        sa.Column('instructions_text', sa.Text(), nullable=False),
        sa.Column('prep_time_minutes', sa.Integer(), nullable=False),
        sa.Column('cook_time_minutes', sa.Integer(), nullable=False),
        sa.Column('servings', sa.Integer(), nullable=False),
        sa.Column('calories_kcal', sa.Integer(), nullable=False),
        sa.Column('protein_grams', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('carbs_grams', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('fat_grams', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ['batch_id'], ['generation_batches.id'], ondelete='SET NULL'
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_recipes_batch_id', 'recipes', ['batch_id'])

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('admin_id', sa.String(length=100), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('recipe_id', sa.String(length=36), nullable=True),
        sa.Column('batch_id', sa.String(length=32), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['recipe_id'], ['recipes.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_admin_id', 'audit_log', ['admin_id'])
    op.create_index('ix_audit_log_recipe_id', 'audit_log', ['recipe_id'])
    op.create_index('ix_audit_log_batch_id', 'audit_log', ['batch_id'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])


def downgrade():
    op.drop_table('audit_log')
    op.drop_index('ix_recipes_batch_id', table_name='recipes')
    op.drop_table('recipes')
    op.drop_index('ix_generation_batches_status', table_name='generation_batches')
    op.drop_table('generation_batches')
