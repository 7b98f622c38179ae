"""
Database Models

Import models from this module so they are registered on Base.metadata
(Alembic autogenerate and init_db() rely on it):

    from app.models import Channel, Block, Account, ChannelUsage
"""

from app.models.content import (
    Block,
    BlockType,
    Channel,
)
from app.models.usage import (
    Account,
    ChannelLimits,
    ChannelUsage,
    MonthlyUsage,
    SubscriptionTier,
)

__all__ = [
    # Content models
    "Channel",
    "Block",
    # Usage models
    "Account",
    "ChannelUsage",
    "MonthlyUsage",
    "ChannelLimits",
    # Enums
    "BlockType",
    "SubscriptionTier",
]
