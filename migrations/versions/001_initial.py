"""Initial schema for memories, images and notifications

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the catalog tables used by the ingestion pipeline."""

    op.create_table(
        'memories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('context_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_memories_context_id', 'memories', ['context_id'])

    op.create_table(
        'images',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('original_path', sa.Text(), nullable=False),
        sa.Column('webp_path', sa.Text(), nullable=False),
        sa.Column('thumb_big_path', sa.Text(), nullable=False),
        sa.Column('thumb_small_path', sa.Text(), nullable=False),
        sa.Column('original_format', sa.String(16), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('country', sa.String(255), nullable=True),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('memory_id', sa.Integer(),
                  sa.ForeignKey('memories.id'), nullable=True),
        sa.Column('context_id', sa.Integer(), nullable=False),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('taken_at', sa.DateTime(), nullable=False),
        sa.Column('original_taken_at', sa.DateTime(), nullable=False),
        sa.Column('hash_original', sa.String(64), nullable=True),
        sa.Column('hash_webp', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_images_memory_id', 'images', ['memory_id'])
    op.create_index('idx_images_context_id', 'images', ['context_id'])
    op.create_index('idx_images_taken_at', 'images', ['taken_at'])
    op.create_index('idx_images_hash_original', 'images', ['hash_original'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False,
                  server_default='unread'),
        sa.Column('created_at', sa.DateTime(), nullable=False,
                  server_default=sa.func.now()),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    """Drop all catalog tables."""

    # Reverse order (respecting foreign keys)
    op.drop_table('notifications')
    op.drop_table('images')
    op.drop_table('memories')
