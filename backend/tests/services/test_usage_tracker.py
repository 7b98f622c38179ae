"""
Tests for the tiered quota engine.

Decision logic runs against patched lookups; the recording paths run
against PostgreSQL and are marked ``integration``.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import RedisError

from app.models.usage import Account, SubscriptionTier
from app.services.usage_tracker import (
    QuotaExceededError,
    UsageTracker,
    current_month,
    monthly_block_limit,
)


def tracker_with(
    tier=SubscriptionTier.FREE,
    channel_used=0,
    lifetime_used=0,
    monthly_used=0,
    pending=0,
    redis=None,
) -> UsageTracker:
    """UsageTracker whose lookups return fixed numbers."""
    tracker = UsageTracker(MagicMock(), redis)
    tracker.get_tier = AsyncMock(return_value=tier)
    tracker.get_pending = AsyncMock(return_value=pending)
    tracker._channel_blocks_used = AsyncMock(return_value=channel_used)
    tracker._lifetime_blocks_used = AsyncMock(return_value=lifetime_used)
    tracker._monthly_blocks_used = AsyncMock(return_value=monthly_used)
    tracker.get_channel_count = AsyncMock(return_value=0)
    return tracker


class TestHelpers:

    def test_current_month(self):
        assert current_month(datetime(2026, 3, 9, tzinfo=timezone.utc)) == "2026-03"

    def test_monthly_block_limit(self):
        assert monthly_block_limit(SubscriptionTier.STARTER) == 200
        assert monthly_block_limit(SubscriptionTier.PRO) == 500
        with pytest.raises(ValueError):
            monthly_block_limit(SubscriptionTier.FREE)

    def test_tier_info(self):
        free = UsageTracker.get_tier_info(SubscriptionTier.FREE)
        pro = UsageTracker.get_tier_info(SubscriptionTier.PRO)

        assert free.lifetime_block_limit == 50
        assert free.chat_messages_per_month == 10
        assert pro.monthly_block_limit == 500
        assert pro.chat_messages_per_month == -1
        assert pro.overage_price_per_block == 0.15


# ========================================
# Block Quota
# ========================================

@pytest.mark.asyncio
class TestFreeTier:

    async def test_within_budget(self, anon_identity):
        check = await tracker_with(channel_used=5).check_usage_limit(1, anon_identity, 10)

        assert check.can_process
        assert check.capped_count is None
        assert check.remaining == 20

    async def test_capped_by_channel(self, anon_identity):
        check = await tracker_with(channel_used=20).check_usage_limit(1, anon_identity, 10)

        assert check.can_process
        assert check.capped_count == 5
        assert "(20/25 channel limit)" in check.message

    async def test_capped_by_lifetime(self, user_identity):
        check = await tracker_with(lifetime_used=45).check_usage_limit(1, user_identity, 120)

        assert check.capped_count == 5
        assert check.limit == 50
        assert "(45/50 lifetime limit)" in check.message

    async def test_exhausted(self, anon_identity):
        check = await tracker_with(channel_used=25).check_usage_limit(1, anon_identity, 1)

        assert not check.can_process
        assert check.remaining == 0
        assert check.message.startswith("Free tier limit reached (25/25")

    async def test_pending_reservations_count(self, anon_identity):
        check = await tracker_with(pending=20).check_usage_limit(1, anon_identity, 10)
        assert check.capped_count == 5

    async def test_check_is_read_only(self, anon_identity):
        tracker = tracker_with()
        await tracker.check_usage_limit(1, anon_identity, 10)
        await tracker.check_usage_limit(1, anon_identity, 10)
        tracker.db.commit.assert_not_called()


@pytest.mark.asyncio
class TestPaidTier:

    async def test_capped_with_overage_quote(self, user_identity):
        tracker = tracker_with(tier=SubscriptionTier.STARTER, monthly_used=190)

        check = await tracker.check_usage_limit(1, user_identity, 20)

        assert check.capped_count == 10
        assert check.overage_blocks == 10
        assert check.overage_cost == 1.5
        assert "$1.50" in check.message

    async def test_exhausted(self, user_identity):
        tracker = tracker_with(tier=SubscriptionTier.PRO, monthly_used=500)

        check = await tracker.check_usage_limit(1, user_identity, 4)

        assert not check.can_process
        assert check.overage_blocks == 4
        assert check.message.startswith("Monthly limit reached (500/500")

    async def test_enforce_raises(self, user_identity):
        tracker = tracker_with(tier=SubscriptionTier.PRO, monthly_used=500)

        with pytest.raises(QuotaExceededError) as exc_info:
            await tracker.enforce_usage_limit(1, user_identity, 1)

        assert exc_info.value.check.tier == SubscriptionTier.PRO
        assert "Monthly limit reached" in str(exc_info.value)


@pytest.mark.asyncio
class TestChannelCount:

    async def test_free_tier_blocks_fourth_channel(self, anon_identity):
        tracker = tracker_with()
        tracker.get_channel_count.return_value = 3

        check = await tracker.check_channel_limit(99, anon_identity)

        assert not check.can_add
        assert "(3/3 channels)" in check.message

    async def test_known_channel_allowed(self, anon_identity):
        tracker = tracker_with(channel_used=4)
        tracker.get_channel_count.return_value = 3

        assert (await tracker.check_channel_limit(99, anon_identity)).can_add

    async def test_paid_unlimited(self, user_identity):
        tracker = tracker_with(tier=SubscriptionTier.STARTER)
        tracker.get_channel_count.return_value = 40

        check = await tracker.check_channel_limit(99, user_identity)

        assert check.can_add
        assert check.limit == -1


@pytest.mark.asyncio
class TestLargeChannelWarning:

    async def test_would_exceed_lifetime(self, user_identity):
        warning = await tracker_with(lifetime_used=40).check_large_channel_warning(30, user_identity)

        assert warning.show_warning
        assert warning.would_exceed_limit
        assert warning.remaining == 10
        assert warning.limit == 50

    async def test_anonymous_measured_against_channel_cap(self, anon_identity):
        tracker = tracker_with()

        warning = await tracker.check_large_channel_warning(30, anon_identity)
        check = await tracker.check_usage_limit(4242, anon_identity, 30)

        assert warning.would_exceed_limit
        assert warning.limit == 25
        assert warning.remaining == check.capped_count == 25

    async def test_signed_in_fresh_budget_uses_channel_cap(self, user_identity):
        warning = await tracker_with().check_large_channel_warning(30, user_identity)

        assert warning.would_exceed_limit
        assert warning.remaining == 25

    async def test_small_channel(self, anon_identity):
        warning = await tracker_with().check_large_channel_warning(5, anon_identity)
        assert not warning.show_warning


# ========================================
# Reservations
# ========================================

@pytest.mark.asyncio
class TestReservations:

    async def test_reserve(self, anon_identity):
        redis = MagicMock()
        pipe = MagicMock()
        pipe.execute = AsyncMock()
        redis.pipeline.return_value = pipe

        assert await UsageTracker(MagicMock(), redis).reserve(anon_identity, 5)

        pipe.incrby.assert_called_once_with(f"usage:pending:{anon_identity.key}", 5)
        pipe.expire.assert_called_once()

    async def test_release_clears_key(self, anon_identity):
        redis = MagicMock()
        redis.decrby = AsyncMock(return_value=0)
        redis.delete = AsyncMock()

        await UsageTracker(MagicMock(), redis).release(anon_identity, 5)

        redis.delete.assert_awaited_once_with(f"usage:pending:{anon_identity.key}")

    async def test_without_redis(self, anon_identity):
        tracker = UsageTracker(MagicMock())
        assert not await tracker.reserve(anon_identity, 5)
        assert await tracker.get_pending(anon_identity) == 0

    async def test_redis_error_reads_as_zero(self, anon_identity):
        redis = MagicMock()
        redis.get = AsyncMock(side_effect=RedisError("down"))

        assert await UsageTracker(MagicMock(), redis).get_pending(anon_identity) == 0


# ========================================
# Recording (PostgreSQL)
# ========================================

@pytest.mark.asyncio
class TestRecordUsage:

    async def test_ignores_non_positive(self, anon_identity):
        db = MagicMock()
        db.execute = AsyncMock()

        await UsageTracker(db).record_usage(1, anon_identity, 0)

        db.execute.assert_not_awaited()

    @pytest.mark.integration
    async def test_anonymous_accumulates(self, db_session, anon_identity):
        tracker = UsageTracker(db_session)

        await tracker.record_usage(4242, anon_identity, 10)
        await tracker.record_usage(4242, anon_identity, 5)

        check = await tracker.check_usage_limit(4242, anon_identity, 20)
        assert check.processed_so_far == 15
        assert check.capped_count == 10

    @pytest.mark.integration
    async def test_free_account_lifetime(self, db_session, user_identity):
        tracker = UsageTracker(db_session)

        await tracker.record_usage(1, user_identity, 30)
        await tracker.record_usage(2, user_identity, 15)

        account = await tracker.get_account(user_identity.user_id)
        assert account.lifetime_blocks_used == 45
        assert await tracker.get_channel_count(user_identity) == 2

    @pytest.mark.integration
    async def test_paid_monthly_overage(self, db_session, user_identity):
        db_session.add(Account(external_id=user_identity.user_id, tier=SubscriptionTier.STARTER))
        await db_session.flush()
        tracker = UsageTracker(db_session)

        await tracker.record_usage(1, user_identity, 210)

        stats = await tracker.get_usage_stats(user_identity)
        assert stats.monthly_blocks_used == 210
        assert stats.monthly_limit == 200

    @pytest.mark.integration
    async def test_chat_counter(self, db_session, anon_identity):
        tracker = UsageTracker(db_session)

        for _ in range(10):
            await tracker.record_chat_message(7, anon_identity)

        check = await tracker.check_chat_limit(7, anon_identity)
        assert not check.can_proceed
        assert check.message.startswith("Chat limit reached (10/10")
