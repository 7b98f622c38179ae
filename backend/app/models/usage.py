"""
Usage Models

Quota bookkeeping for the tiered usage engine.

Models Included:
----------------
1. Account - Tier and lifetime counter for an authenticated account
2. ChannelUsage - Blocks processed per (identity, channel)
3. MonthlyUsage - Blocks processed per (account, calendar month), paid tiers
4. ChannelLimits - Free-tier chat and generation counters per (identity, channel, month)
5. SubscriptionTier (Enum) - free / starter / pro

Identity Columns:
-----------------
A usage row belongs either to an authenticated account (user_id) or to an
anonymous visitor (session_id + ip_address), never both. identity_key
is the flattened form used by the unique constraints:

    "user:<user_id>"                  authenticated
    "anon:<session_id>:<ip_address>"  anonymous

Channels are referenced by their Are.na id (arena_channel_id) so a pre-flight
check works before the channel has ever been synced.

Ownership:
----------
Only the usage tracker (app.services.usage_tracker) reads or writes these
tables. Counters only ever increase.
"""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import BaseModel, String50, String100, String255


# ================================
# Enums
# ================================

class SubscriptionTier(str, enum.Enum):
    """
    Subscription tiers.

    - FREE: lifetime cap plus legacy per-channel cap, limited chat/generations
    - STARTER: monthly block ceiling, unlimited chat/generations
    - PRO: higher monthly block ceiling, unlimited chat/generations

    The billing collaborator writes the tier; this subsystem only reads it.
    """

    FREE = "free"
    STARTER = "starter"
    PRO = "pro"

    @property
    def is_paid(self) -> bool:
        return self is not SubscriptionTier.FREE


# Shared identity columns constraint: account XOR anonymous session
IDENTITY_CHECK = (
    "(user_id IS NOT NULL AND session_id IS NULL) "
    "OR (user_id IS NULL AND session_id IS NOT NULL)"
)


# ================================
# Account Model
# ================================

class Account(BaseModel):
    """
    Authenticated account as far as quotas are concerned.

    Table: accounts
    ---------------
    external_id is the id issued by the auth provider (the same value that
    arrives as Identity.user_id). lifetime_blocks_used is the free-tier
    lifetime counter; it is kept after an upgrade so a downgrade does not
    reset it.
    """

    __tablename__ = "accounts"

    external_id: Mapped[str] = mapped_column(
        String255,
        unique=True,
        nullable=False,
        comment="Auth provider user id"
    )

    email: Mapped[str | None] = mapped_column(
        String255,
        nullable=True,
        comment="Email address, informational only"
    )

    tier: Mapped[SubscriptionTier] = mapped_column(
        nullable=False,
        default=SubscriptionTier.FREE,
        comment="Current subscription tier"
    )

    lifetime_blocks_used: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Blocks processed over the account's lifetime (free-tier cap)"
    )

    def __repr__(self) -> str:
        return (
            f"Account(id={self.id}, external_id='{self.external_id}', "
            f"tier={self.tier.value}, lifetime={self.lifetime_blocks_used})"
        )


# ================================
# Channel Usage Model
# ================================

class ChannelUsage(BaseModel):
    """
    Cumulative blocks processed by one identity for one channel.

    Table: channel_usage
    --------------------
    One row per (identity_key, arena_channel_id). blocks_processed only
    increases; first_processed_at is set once.
    """

    __tablename__ = "channel_usage"

    identity_key: Mapped[str] = mapped_column(String255, nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String255, nullable=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String50, nullable=True, index=True)
    ip_address: Mapped[str | None] = mapped_column(String100, nullable=True)

    arena_channel_id: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        comment="Are.na channel id"
    )

    blocks_processed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Cumulative blocks processed for this channel"
    )

    first_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_free_tier: Mapped[bool] = mapped_column(nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("identity_key", "arena_channel_id", name="uq_channel_usage_identity_channel"),
        CheckConstraint(IDENTITY_CHECK, name="identity"),
        CheckConstraint("blocks_processed >= 0", name="blocks_processed_non_negative"),
    )


# ================================
# Monthly Usage Model
# ================================

class MonthlyUsage(BaseModel):
    """
    Blocks processed by a paid account in one calendar month.

    Table: monthly_usage
    --------------------
    month is "YYYY-MM" (UTC). A new month starts a new row, which is how the
    counter resets. limit_at_time records the tier ceiling when the row was
    last written, for billing reconciliation.
    """

    __tablename__ = "monthly_usage"

    user_id: Mapped[str] = mapped_column(String255, nullable=False, index=True)
    month: Mapped[str] = mapped_column(String50, nullable=False)
    blocks_processed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tier: Mapped[SubscriptionTier] = mapped_column(nullable=False)
    limit_at_time: Mapped[int] = mapped_column(Integer, nullable=False)
    overage_amount: Mapped[float] = mapped_column(
        Numeric(10, 2),
        nullable=False,
        default=0,
        comment="Advisory overage estimate in USD"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uq_monthly_usage_user_month"),
    )


# ================================
# Channel Limits Model
# ================================

class ChannelLimits(BaseModel):
    """
    Free-tier chat message and generation counters.

    Table: channel_limits
    ---------------------
    One row per (identity_key, arena_channel_id, month). Paid tiers never
    create rows here: they are unlimited.
    """

    __tablename__ = "channel_limits"

    identity_key: Mapped[str] = mapped_column(String255, nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String255, nullable=True)
    session_id: Mapped[str | None] = mapped_column(String50, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String100, nullable=True)

    arena_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    month: Mapped[str] = mapped_column(String50, nullable=False)

    chat_messages_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chat_messages_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    generations_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generations_limit: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "identity_key", "arena_channel_id", "month",
            name="uq_channel_limits_identity_channel_month"
        ),
        CheckConstraint(IDENTITY_CHECK, name="identity"),
    )
