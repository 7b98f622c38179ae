"""
Pydantic schemas for the usage quota engine.

Identity is passed through the whole pipeline (routes, orchestrator, Celery
task arguments); the remaining schemas are the engine's read-only answers.
"""

from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.models.usage import SubscriptionTier


# ========================================
# Identity
# ========================================

class Identity(BaseModel):
    """
    Who is consuming quota.

    Either an authenticated account (user_id) or an anonymous visitor
    (session_id plus ip_address). When both arrive, the account wins.
    """

    user_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None

    @model_validator(mode="after")
    def check_exclusive(self) -> "Identity":
        if self.user_id:
            self.session_id = None
            self.ip_address = None
        elif not self.session_id:
            raise ValueError("Identity needs a user_id or a session_id")
        else:
            self.ip_address = self.ip_address or "unknown"
        return self

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user_id)

    @property
    def key(self) -> str:
        """Flattened identity used by unique constraints and Redis keys."""
        if self.user_id:
            return f"user:{self.user_id}"
        return f"anon:{self.session_id}:{self.ip_address}"

    def __str__(self) -> str:
        return self.key


# ========================================
# Quota Answers
# ========================================

class UsageCheck(BaseModel):
    """Answer of check_usage_limit."""

    can_process: bool
    processed_so_far: int
    remaining: int
    limit: int
    tier: SubscriptionTier = SubscriptionTier.FREE
    capped_count: Optional[int] = Field(
        None,
        description="Set when the request was down-scoped to the remaining budget"
    )
    message: Optional[str] = None
    overage_blocks: int = 0
    overage_cost: float = 0.0


class LargeChannelWarning(BaseModel):
    """Answer of check_large_channel_warning. Advisory only."""

    show_warning: bool
    used: int
    limit: int
    remaining: int
    would_exceed_limit: bool
    message: str


class CounterCheck(BaseModel):
    """Answer of the chat/generation gates. limit == -1 means unlimited."""

    can_proceed: bool
    used: int
    limit: int
    remaining: int
    message: Optional[str] = None


class ChannelCountCheck(BaseModel):
    can_add: bool
    channel_count: int
    limit: int
    message: Optional[str] = None


class TierInfo(BaseModel):
    tier: SubscriptionTier
    name: str
    monthly_block_limit: Optional[int] = None
    lifetime_block_limit: Optional[int] = None
    channel_block_limit: Optional[int] = None
    chat_messages_per_month: int
    generations_per_month: int
    overage_price_per_block: Optional[float] = None


class UsageStats(BaseModel):
    """Dashboard aggregate for one identity."""

    tier: SubscriptionTier
    total_blocks_processed: int
    channels_processed: int
    lifetime_blocks_used: Optional[int] = None
    lifetime_limit: Optional[int] = None
    month: Optional[str] = None
    monthly_blocks_used: Optional[int] = None
    monthly_limit: Optional[int] = None
    matched_sessions: int = 0


# ========================================
# Request Schemas
# ========================================

class UsageCheckRequest(BaseModel):
    arena_channel_id: int
    requested_count: int = Field(..., ge=0)
    session_id: Optional[str] = Field(None, max_length=50)


class LargeChannelCheckRequest(BaseModel):
    block_count: int = Field(..., ge=0)
    session_id: Optional[str] = Field(None, max_length=50)


class ChatRequest(BaseModel):
    arena_channel_id: int
    kind: str = Field("chat", pattern="^(chat|generation)$")
    session_id: Optional[str] = Field(None, max_length=50)
