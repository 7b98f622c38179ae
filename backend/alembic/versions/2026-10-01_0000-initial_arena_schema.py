"""initial_arena_schema

Revision ID: 5a1c0e9d7b21
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from pgvector.sqlalchemy import Vector

from app.core.config import settings

# revision identifiers, used by Alembic.
revision: str = '5a1c0e9d7b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was created (UTC)'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, comment='Timestamp when record was last updated (UTC)'),
    ]


def _identity_columns() -> list:
    return [
        sa.Column('identity_key', sa.String(length=255), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=True),
        sa.Column('session_id', sa.String(length=50), nullable=True),
        sa.Column('ip_address', sa.String(length=100), nullable=True),
    ]


IDENTITY_CHECK = (
    "(user_id IS NOT NULL AND session_id IS NULL) "
    "OR (user_id IS NULL AND session_id IS NOT NULL)"
)

block_type = postgresql.ENUM('DOCUMENT', 'IMAGE', 'VIDEO', 'ATTACHMENT', 'TEXT', name='blocktype', create_type=False)
subscription_tier = postgresql.ENUM('FREE', 'STARTER', 'PRO', name='subscriptiontier', create_type=False)


def upgrade() -> None:
    """
    Create the content and usage tables.

    1. channels, blocks (with the HNSW cosine index on blocks.embedding)
    2. accounts, channel_usage, monthly_usage, channel_limits
    """
    op.execute('CREATE EXTENSION IF NOT EXISTS vector')

    block_type.create(op.get_bind(), checkfirst=True)
    subscription_tier.create(op.get_bind(), checkfirst=True)

    # ================================
    # Content tables
    # ================================
    op.create_table(
        'channels',
        *_timestamps(),
        sa.Column('arena_id', sa.BigInteger(), nullable=False, comment='Are.na channel id'),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Channel title as shown on Are.na'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='Channel slug used in Are.na URLs'),
        sa.Column('username', sa.String(length=100), nullable=True, comment='Are.na username of the channel owner'),
        sa.Column('user_id', sa.String(length=255), nullable=True, comment='Account that first synced the channel (auth provider id)'),
        sa.Column('last_sync', sa.DateTime(timezone=True), nullable=True, comment='Last completed sync (UTC)'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_channels')),
        sa.UniqueConstraint('arena_id', name=op.f('uq_channels_arena_id')),
    )
    op.create_index(op.f('ix_channels_slug'), 'channels', ['slug'], unique=True)
    op.create_index(op.f('ix_channels_user_id'), 'channels', ['user_id'])

    op.create_table(
        'blocks',
        *_timestamps(),
        sa.Column('arena_id', sa.BigInteger(), nullable=False, comment='Are.na block id'),
        sa.Column('channel_id', sa.Integer(), nullable=False, comment='Channel the block was last synced from'),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('url', sa.String(length=2048), nullable=True),
        sa.Column('thumbnail_url', sa.String(length=2048), nullable=True),
        sa.Column('block_type', block_type, nullable=False),
        sa.Column('embedding', Vector(settings.EMBEDDING_DIMENSION), nullable=False, comment='Representative embedding (first chunk)'),
        sa.ForeignKeyConstraint(['channel_id'], ['channels.id'], name=op.f('fk_blocks_channel_id_channels'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_blocks')),
        sa.UniqueConstraint('arena_id', name=op.f('uq_blocks_arena_id')),
    )
    op.create_index(op.f('ix_blocks_channel_id'), 'blocks', ['channel_id'])
    op.create_index(op.f('ix_blocks_block_type'), 'blocks', ['block_type'])

    # m=16 (max connections per layer), ef_construction=64 (quality during build)
    op.execute("""
        CREATE INDEX ix_blocks_embedding_hnsw
        ON blocks
        USING hnsw (embedding vector_cosine_ops)
        WITH (m = 16, ef_construction = 64)
    """)

    # ================================
    # Usage tables
    # ================================
    op.create_table(
        'accounts',
        *_timestamps(),
        sa.Column('external_id', sa.String(length=255), nullable=False, comment='Auth provider user id'),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('tier', subscription_tier, nullable=False),
        sa.Column('lifetime_blocks_used', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_accounts')),
        sa.UniqueConstraint('external_id', name=op.f('uq_accounts_external_id')),
    )

    op.create_table(
        'channel_usage',
        *_timestamps(),
        *_identity_columns(),
        sa.Column('arena_channel_id', sa.BigInteger(), nullable=False, comment='Are.na channel id'),
        sa.Column('blocks_processed', sa.Integer(), nullable=False),
        sa.Column('first_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_free_tier', sa.Boolean(), nullable=False),
        sa.CheckConstraint(IDENTITY_CHECK, name=op.f('ck_channel_usage_identity')),
        sa.CheckConstraint('blocks_processed >= 0', name=op.f('ck_channel_usage_blocks_processed_non_negative')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_channel_usage')),
        sa.UniqueConstraint('identity_key', 'arena_channel_id', name='uq_channel_usage_identity_channel'),
    )
    op.create_index(op.f('ix_channel_usage_identity_key'), 'channel_usage', ['identity_key'])
    op.create_index(op.f('ix_channel_usage_user_id'), 'channel_usage', ['user_id'])
    op.create_index(op.f('ix_channel_usage_session_id'), 'channel_usage', ['session_id'])

    op.create_table(
        'monthly_usage',
        *_timestamps(),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('month', sa.String(length=50), nullable=False),
        sa.Column('blocks_processed', sa.Integer(), nullable=False),
        sa.Column('tier', subscription_tier, nullable=False),
        sa.Column('limit_at_time', sa.Integer(), nullable=False),
        sa.Column('overage_amount', sa.Numeric(10, 2), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_monthly_usage')),
        sa.UniqueConstraint('user_id', 'month', name='uq_monthly_usage_user_month'),
    )
    op.create_index(op.f('ix_monthly_usage_user_id'), 'monthly_usage', ['user_id'])

    op.create_table(
        'channel_limits',
        *_timestamps(),
        *_identity_columns(),
        sa.Column('arena_channel_id', sa.BigInteger(), nullable=False),
        sa.Column('month', sa.String(length=50), nullable=False),
        sa.Column('chat_messages_used', sa.Integer(), nullable=False),
        sa.Column('chat_messages_limit', sa.Integer(), nullable=False),
        sa.Column('generations_used', sa.Integer(), nullable=False),
        sa.Column('generations_limit', sa.Integer(), nullable=False),
        sa.CheckConstraint(IDENTITY_CHECK, name=op.f('ck_channel_limits_identity')),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_channel_limits')),
        sa.UniqueConstraint('identity_key', 'arena_channel_id', 'month', name='uq_channel_limits_identity_channel_month'),
    )
    op.create_index(op.f('ix_channel_limits_identity_key'), 'channel_limits', ['identity_key'])


def downgrade() -> None:
    op.drop_table('channel_limits')
    op.drop_table('monthly_usage')
    op.drop_table('channel_usage')
    op.drop_table('accounts')

    op.execute('DROP INDEX IF EXISTS ix_blocks_embedding_hnsw')
    op.drop_table('blocks')
    op.drop_table('channels')

    subscription_tier.drop(op.get_bind(), checkfirst=True)
    block_type.drop(op.get_bind(), checkfirst=True)
    # The vector extension is left installed; other schemas may use it
