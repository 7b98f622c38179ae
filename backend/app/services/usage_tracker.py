"""
Usage Tracker

Tiered quota engine for block processing, chat messages and generations.

Tiers:
------
- free: lifetime cap (FREE_LIFETIME_BLOCK_LIMIT) and per-channel cap
  (FREE_CHANNEL_BLOCK_LIMIT), both enforced; 10 chat messages and 2
  generations per channel per month
- starter / pro: monthly block ceiling, unlimited chat and generations

Checking is read-only (check_usage_limit may be called any number of times
for previews); recording happens once per sync with the number of blocks
actually stored. When a request exceeds the remaining budget but some budget
is left, the answer is a capped count rather than a rejection.

Reservations:
-------------
A sync that passes the check reserves its capped count in Redis
(usage:pending:{identity}) until its usage is recorded. Checks subtract
pending reservations, so two concurrent syncs for one identity cannot both
spend the same budget. Reservations expire after USAGE_RESERVATION_TTL_SECONDS.
Without Redis the engine runs without reservations.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.base import utcnow
from app.models.usage import Account, ChannelLimits, ChannelUsage, MonthlyUsage, SubscriptionTier
from app.schemas.usage import (
    ChannelCountCheck,
    CounterCheck,
    Identity,
    LargeChannelWarning,
    TierInfo,
    UsageCheck,
    UsageStats,
)
from app.services.identity import session_prefix

logger = logging.getLogger(__name__)

UNLIMITED = -1


class QuotaExceededError(Exception):
    """Raised when a request has no remaining budget."""

    def __init__(self, message: str, check: Optional[UsageCheck] = None):
        super().__init__(message)
        self.check = check


def current_month(now: Optional[datetime] = None) -> str:
    """Calendar month key, "YYYY-MM" in UTC."""
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def monthly_block_limit(tier: SubscriptionTier) -> int:
    if tier == SubscriptionTier.STARTER:
        return settings.STARTER_MONTHLY_BLOCK_LIMIT
    if tier == SubscriptionTier.PRO:
        return settings.PRO_MONTHLY_BLOCK_LIMIT
    raise ValueError(f"Tier {tier.value} has no monthly block limit")


class UsageTracker:
    """
    Quota checks and records for one database session.

    Example:
        >>> tracker = UsageTracker(session, redis)
        >>> check = await tracker.check_usage_limit(channel.id, identity, 120)
        >>> if check.can_process:
        ...     ...  # process check.capped_count or 120 blocks
        ...     await tracker.record_usage(channel.id, identity, stored)
    """

    def __init__(self, db: AsyncSession, redis: Optional[Redis] = None):
        self.db = db
        self.redis = redis

    # ========================================
    # Lookups
    # ========================================

    async def get_account(self, user_id: str) -> Optional[Account]:
        result = await self.db.execute(select(Account).where(Account.external_id == user_id))
        return result.scalar_one_or_none()

    async def get_tier(self, identity: Identity) -> SubscriptionTier:
        """Anonymous visitors and unknown accounts are free tier."""
        if not identity.is_authenticated:
            return SubscriptionTier.FREE
        account = await self.get_account(identity.user_id)
        return account.tier if account else SubscriptionTier.FREE

    async def _channel_blocks_used(self, arena_channel_id: int, identity: Identity) -> int:
        result = await self.db.execute(
            select(ChannelUsage.blocks_processed).where(
                ChannelUsage.identity_key == identity.key,
                ChannelUsage.arena_channel_id == arena_channel_id,
            )
        )
        return result.scalar_one_or_none() or 0

    async def _lifetime_blocks_used(self, identity: Identity) -> int:
        if identity.is_authenticated:
            account = await self.get_account(identity.user_id)
            return account.lifetime_blocks_used if account else 0

        result = await self.db.execute(
            select(func.coalesce(func.sum(ChannelUsage.blocks_processed), 0)).where(
                ChannelUsage.identity_key == identity.key
            )
        )
        return int(result.scalar_one())

    async def _monthly_blocks_used(self, user_id: str, month: Optional[str] = None) -> int:
        result = await self.db.execute(
            select(MonthlyUsage.blocks_processed).where(
                MonthlyUsage.user_id == user_id,
                MonthlyUsage.month == (month or current_month()),
            )
        )
        return result.scalar_one_or_none() or 0

    # ========================================
    # Reservations (Redis)
    # ========================================

    @staticmethod
    def _pending_key(identity: Identity) -> str:
        return f"usage:pending:{identity.key}"

    async def get_pending(self, identity: Identity) -> int:
        if self.redis is None:
            return 0
        try:
            value = await self.redis.get(self._pending_key(identity))
        except RedisError as e:
            logger.warning(f"Could not read usage reservation for {identity}: {e}")
            return 0
        return max(0, int(value)) if value else 0

    async def reserve(self, identity: Identity, count: int) -> bool:
        """Hold ``count`` blocks of budget until release(). Returns False when Redis is unavailable."""
        if self.redis is None or count <= 0:
            return False

        key = self._pending_key(identity)
        try:
            pipe = self.redis.pipeline()
            pipe.incrby(key, count)
            pipe.expire(key, settings.USAGE_RESERVATION_TTL_SECONDS)
            await pipe.execute()
        except RedisError as e:
            logger.warning(f"Could not reserve {count} blocks for {identity}: {e}")
            return False

        logger.info(f"Reserved {count} blocks for {identity}")
        return True

    async def release(self, identity: Identity, count: int) -> None:
        if self.redis is None or count <= 0:
            return

        key = self._pending_key(identity)
        try:
            remaining = await self.redis.decrby(key, count)
            if remaining <= 0:
                await self.redis.delete(key)
        except RedisError as e:
            logger.warning(f"Could not release {count} reserved blocks for {identity}: {e}")

    # ========================================
    # Block Quota
    # ========================================

    async def check_usage_limit(
        self,
        arena_channel_id: int,
        identity: Identity,
        requested: int,
    ) -> UsageCheck:
        """
        Decide how many of ``requested`` blocks may be processed. Read-only.

        Returns:
            UsageCheck with can_process, the remaining budget and, when the
            request was down-scoped, capped_count and a message naming the
            used/limit figures
        """
        tier = await self.get_tier(identity)
        pending = await self.get_pending(identity)
        channel_used = await self._channel_blocks_used(arena_channel_id, identity)

        if tier == SubscriptionTier.FREE:
            return await self._check_free(identity, channel_used, requested, pending)
        return await self._check_paid(identity, tier, channel_used, requested, pending)

    async def _check_free(
        self,
        identity: Identity,
        channel_used: int,
        requested: int,
        pending: int,
    ) -> UsageCheck:
        channel_limit = settings.FREE_CHANNEL_BLOCK_LIMIT
        channel_remaining = max(0, channel_limit - channel_used)

        used, limit, label = channel_used, channel_limit, "channel limit"
        remaining = channel_remaining

        if identity.is_authenticated:
            lifetime_limit = settings.FREE_LIFETIME_BLOCK_LIMIT
            lifetime_used = await self._lifetime_blocks_used(identity)
            lifetime_remaining = max(0, lifetime_limit - lifetime_used)
            if lifetime_remaining < channel_remaining:
                used, limit, label = lifetime_used, lifetime_limit, "lifetime limit"
                remaining = lifetime_remaining

        remaining = max(0, remaining - pending)

        if remaining == 0:
            return UsageCheck(
                can_process=False,
                processed_so_far=channel_used,
                remaining=0,
                limit=limit,
                tier=SubscriptionTier.FREE,
                message=(
                    f"Free tier limit reached ({used}/{limit} blocks processed). "
                    f"Upgrade to process more content."
                ),
            )

        if requested > remaining:
            return UsageCheck(
                can_process=True,
                processed_so_far=channel_used,
                remaining=remaining,
                limit=limit,
                tier=SubscriptionTier.FREE,
                capped_count=remaining,
                message=(
                    f"Processing limited to {remaining} blocks ({used}/{limit} {label}). "
                    f"Upgrade for more processing."
                ),
            )

        return UsageCheck(
            can_process=True,
            processed_so_far=channel_used,
            remaining=remaining,
            limit=limit,
            tier=SubscriptionTier.FREE,
        )

    async def _check_paid(
        self,
        identity: Identity,
        tier: SubscriptionTier,
        channel_used: int,
        requested: int,
        pending: int,
    ) -> UsageCheck:
        limit = monthly_block_limit(tier)
        monthly_used = await self._monthly_blocks_used(identity.user_id)
        remaining = max(0, limit - monthly_used - pending)

        overage_blocks = max(0, requested - remaining)
        overage_cost = round(overage_blocks * settings.OVERAGE_PRICE_PER_BLOCK, 2)

        if remaining == 0:
            return UsageCheck(
                can_process=False,
                processed_so_far=channel_used,
                remaining=0,
                limit=limit,
                tier=tier,
                overage_blocks=overage_blocks,
                overage_cost=overage_cost,
                message=(
                    f"Monthly limit reached ({monthly_used}/{limit} blocks processed this month). "
                    f"Processing {requested} blocks would cost ${overage_cost:.2f} in overage fees."
                ),
            )

        if requested > remaining:
            return UsageCheck(
                can_process=True,
                processed_so_far=channel_used,
                remaining=remaining,
                limit=limit,
                tier=tier,
                capped_count=remaining,
                overage_blocks=overage_blocks,
                overage_cost=overage_cost,
                message=(
                    f"Processing limited to {remaining} blocks ({monthly_used}/{limit} monthly limit). "
                    f"Processing all {requested} blocks would incur ${overage_cost:.2f} in overage fees."
                ),
            )

        return UsageCheck(
            can_process=True,
            processed_so_far=channel_used,
            remaining=remaining,
            limit=limit,
            tier=tier,
        )

    async def enforce_usage_limit(self, arena_channel_id: int, identity: Identity, requested: int) -> UsageCheck:
        """check_usage_limit that raises QuotaExceededError instead of returning a rejection."""
        check = await self.check_usage_limit(arena_channel_id, identity, requested)
        if not check.can_process:
            raise QuotaExceededError(check.message or "Usage limit reached", check)
        return check

    async def record_usage(self, arena_channel_id: int, identity: Identity, processed_count: int) -> None:
        """
        Add ``processed_count`` stored blocks to every counter that applies.

        Non-positive counts are ignored. Commits.
        """
        if processed_count <= 0:
            return

        tier = await self.get_tier(identity)
        now = utcnow()

        stmt = pg_insert(ChannelUsage).values(
            identity_key=identity.key,
            user_id=identity.user_id,
            session_id=identity.session_id,
            ip_address=identity.ip_address,
            arena_channel_id=arena_channel_id,
            blocks_processed=processed_count,
            first_processed_at=now,
            last_processed_at=now,
            is_free_tier=tier == SubscriptionTier.FREE,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_channel_usage_identity_channel",
            set_={
                "blocks_processed": ChannelUsage.blocks_processed + processed_count,
                "last_processed_at": now,
                "is_free_tier": tier == SubscriptionTier.FREE,
                "updated_at": now,
            },
        )
        await self.db.execute(stmt)

        if identity.is_authenticated:
            if tier == SubscriptionTier.FREE:
                await self._increment_lifetime(identity.user_id, processed_count)
            else:
                await self._increment_monthly(identity.user_id, tier, processed_count)

        await self.db.commit()
        logger.info(
            f"Recorded {processed_count} blocks for {identity} on channel {arena_channel_id} ({tier.value})"
        )

    async def _increment_lifetime(self, user_id: str, count: int) -> None:
        stmt = pg_insert(Account).values(
            external_id=user_id,
            tier=SubscriptionTier.FREE,
            lifetime_blocks_used=count,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Account.external_id],
            set_={
                "lifetime_blocks_used": Account.lifetime_blocks_used + count,
                "updated_at": utcnow(),
            },
        )
        await self.db.execute(stmt)

    async def _increment_monthly(self, user_id: str, tier: SubscriptionTier, count: int) -> None:
        limit = monthly_block_limit(tier)
        price = settings.OVERAGE_PRICE_PER_BLOCK
        new_total = MonthlyUsage.blocks_processed + count

        stmt = pg_insert(MonthlyUsage).values(
            user_id=user_id,
            month=current_month(),
            blocks_processed=count,
            tier=tier,
            limit_at_time=limit,
            overage_amount=round(max(0, count - limit) * price, 2),
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_monthly_usage_user_month",
            set_={
                "blocks_processed": new_total,
                "tier": tier,
                "limit_at_time": limit,
                "overage_amount": func.greatest(new_total - limit, 0) * price,
                "updated_at": utcnow(),
            },
        )
        await self.db.execute(stmt)

    # ========================================
    # Chat & Generation Counters
    # ========================================

    async def _channel_limits(self, arena_channel_id: int, identity: Identity) -> Optional[ChannelLimits]:
        result = await self.db.execute(
            select(ChannelLimits).where(
                ChannelLimits.identity_key == identity.key,
                ChannelLimits.arena_channel_id == arena_channel_id,
                ChannelLimits.month == current_month(),
            )
        )
        return result.scalar_one_or_none()

    async def _check_counter(self, arena_channel_id: int, identity: Identity, kind: str) -> CounterCheck:
        tier = await self.get_tier(identity)
        if tier.is_paid:
            return CounterCheck(can_proceed=True, used=0, limit=UNLIMITED, remaining=UNLIMITED)

        row = await self._channel_limits(arena_channel_id, identity)
        if kind == "chat":
            used = row.chat_messages_used if row else 0
            limit = row.chat_messages_limit if row else settings.FREE_CHAT_MESSAGES_PER_MONTH
            noun, unlimited = "messages", "chat"
        else:
            used = row.generations_used if row else 0
            limit = row.generations_limit if row else settings.FREE_GENERATIONS_PER_MONTH
            noun, unlimited = "generations", "generations"

        remaining = max(0, limit - used)
        message = None
        if remaining == 0:
            label = "Chat" if kind == "chat" else "Generation"
            message = (
                f"{label} limit reached ({used}/{limit} {noun} this month). "
                f"Upgrade to Starter for unlimited {unlimited}."
            )

        return CounterCheck(
            can_proceed=remaining > 0,
            used=used,
            limit=limit,
            remaining=remaining,
            message=message,
        )

    async def check_chat_limit(self, arena_channel_id: int, identity: Identity) -> CounterCheck:
        return await self._check_counter(arena_channel_id, identity, "chat")

    async def check_generation_limit(self, arena_channel_id: int, identity: Identity) -> CounterCheck:
        return await self._check_counter(arena_channel_id, identity, "generation")

    async def _record_counter(self, arena_channel_id: int, identity: Identity, kind: str) -> None:
        tier = await self.get_tier(identity)
        if tier.is_paid:
            return

        column = "chat_messages_used" if kind == "chat" else "generations_used"
        stmt = pg_insert(ChannelLimits).values(
            identity_key=identity.key,
            user_id=identity.user_id,
            session_id=identity.session_id,
            ip_address=identity.ip_address,
            arena_channel_id=arena_channel_id,
            month=current_month(),
            chat_messages_used=1 if kind == "chat" else 0,
            chat_messages_limit=settings.FREE_CHAT_MESSAGES_PER_MONTH,
            generations_used=1 if kind == "generation" else 0,
            generations_limit=settings.FREE_GENERATIONS_PER_MONTH,
        )
        stmt = stmt.on_conflict_do_update(
            constraint="uq_channel_limits_identity_channel_month",
            set_={
                column: getattr(ChannelLimits, column) + 1,
                "updated_at": utcnow(),
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def record_chat_message(self, arena_channel_id: int, identity: Identity) -> None:
        await self._record_counter(arena_channel_id, identity, "chat")

    async def record_generation(self, arena_channel_id: int, identity: Identity) -> None:
        await self._record_counter(arena_channel_id, identity, "generation")

    # ========================================
    # Advisory Checks & Dashboard
    # ========================================

    async def check_large_channel_warning(self, block_count: int, identity: Identity) -> LargeChannelWarning:
        """
        Pre-flight warning for a channel of ``block_count`` blocks. Advisory only.

        Warns when the channel needs more than the remaining budget or more
        than half of the whole limit. Free tier is measured the way
        ``_check_free`` caps a fresh channel: the per-channel cap, tightened
        by the lifetime budget for signed-in users.
        """
        tier = await self.get_tier(identity)
        if tier == SubscriptionTier.FREE:
            limit, used, period = settings.FREE_CHANNEL_BLOCK_LIMIT, 0, "per-channel"
            if identity.is_authenticated:
                lifetime_limit = settings.FREE_LIFETIME_BLOCK_LIMIT
                lifetime_used = await self._lifetime_blocks_used(identity)
                if lifetime_limit - lifetime_used < limit:
                    limit, used, period = lifetime_limit, lifetime_used, "free tier"
        else:
            limit = monthly_block_limit(tier)
            used = await self._monthly_blocks_used(identity.user_id)
            period = "monthly"

        remaining = max(0, limit - used)
        would_exceed = block_count > remaining
        show_warning = would_exceed or block_count > limit / 2

        if would_exceed:
            message = (
                f"This channel has {block_count} blocks but you have {remaining} of your "
                f"{limit} {period} blocks left ({used} used). Only the first {remaining} "
                f"will be processed."
            )
        elif show_warning:
            message = (
                f"This channel has {block_count} blocks and will use more than half of your "
                f"{limit} {period} blocks ({remaining} remaining)."
            )
        else:
            message = f"{block_count} blocks fit within your remaining {remaining} {period} blocks."

        return LargeChannelWarning(
            show_warning=show_warning,
            used=used,
            limit=limit,
            remaining=remaining,
            would_exceed_limit=would_exceed,
            message=message,
        )

    async def _usage_rows(self, identity: Identity) -> tuple[List[ChannelUsage], int]:
        """Channel usage rows for the identity plus, for anonymous visitors, sibling sessions."""
        conditions = [ChannelUsage.identity_key == identity.key]

        prefix = None if identity.is_authenticated else session_prefix(identity.session_id)
        if prefix:
            conditions.append(ChannelUsage.session_id.startswith(prefix))

        result = await self.db.execute(select(ChannelUsage).where(or_(*conditions)))
        rows = list(result.scalars().all())
        sessions = {row.session_id for row in rows if row.session_id}
        return rows, len(sessions)

    async def get_usage_stats(self, identity: Identity) -> UsageStats:
        """Dashboard aggregate. Sibling-session matching is display-only."""
        tier = await self.get_tier(identity)
        rows, matched_sessions = await self._usage_rows(identity)

        stats = UsageStats(
            tier=tier,
            total_blocks_processed=sum(row.blocks_processed for row in rows),
            channels_processed=len({row.arena_channel_id for row in rows}),
            matched_sessions=matched_sessions,
        )

        if tier == SubscriptionTier.FREE:
            stats.lifetime_blocks_used = await self._lifetime_blocks_used(identity)
            stats.lifetime_limit = settings.FREE_LIFETIME_BLOCK_LIMIT
        else:
            stats.month = current_month()
            stats.monthly_blocks_used = await self._monthly_blocks_used(identity.user_id, stats.month)
            stats.monthly_limit = monthly_block_limit(tier)

        return stats

    async def get_channel_count(self, identity: Identity) -> int:
        result = await self.db.execute(
            select(func.count(func.distinct(ChannelUsage.arena_channel_id))).where(
                ChannelUsage.identity_key == identity.key
            )
        )
        return int(result.scalar_one())

    async def check_channel_limit(self, arena_channel_id: int, identity: Identity) -> ChannelCountCheck:
        """Free tier may process at most FREE_CHANNEL_COUNT_LIMIT distinct channels."""
        tier = await self.get_tier(identity)
        count = await self.get_channel_count(identity)

        if tier.is_paid:
            return ChannelCountCheck(can_add=True, channel_count=count, limit=UNLIMITED)

        limit = settings.FREE_CHANNEL_COUNT_LIMIT
        if await self._channel_blocks_used(arena_channel_id, identity) > 0 or count < limit:
            return ChannelCountCheck(can_add=True, channel_count=count, limit=limit)

        return ChannelCountCheck(
            can_add=False,
            channel_count=count,
            limit=limit,
            message=f"Free tier channel limit reached ({count}/{limit} channels). Upgrade for unlimited channels.",
        )

    @staticmethod
    def get_tier_info(tier: SubscriptionTier) -> TierInfo:
        if tier == SubscriptionTier.FREE:
            return TierInfo(
                tier=tier,
                name="Free",
                lifetime_block_limit=settings.FREE_LIFETIME_BLOCK_LIMIT,
                channel_block_limit=settings.FREE_CHANNEL_BLOCK_LIMIT,
                chat_messages_per_month=settings.FREE_CHAT_MESSAGES_PER_MONTH,
                generations_per_month=settings.FREE_GENERATIONS_PER_MONTH,
            )
        return TierInfo(
            tier=tier,
            name=tier.value.capitalize(),
            monthly_block_limit=monthly_block_limit(tier),
            chat_messages_per_month=UNLIMITED,
            generations_per_month=UNLIMITED,
            overage_price_per_block=settings.OVERAGE_PRICE_PER_BLOCK,
        )
