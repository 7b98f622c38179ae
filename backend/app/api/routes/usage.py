"""
Usage quota API endpoints.

Read-only quota answers for the client (pre-flight checks, dashboard stats,
tier table) and the chat/generation counters.
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request, status

from app.api.deps import CurrentIdentity, PipelineDep, identity_with_session
from app.db.deps import DBSession
from app.models.usage import SubscriptionTier
from app.schemas.usage import (
    ChatRequest,
    CounterCheck,
    LargeChannelCheckRequest,
    LargeChannelWarning,
    TierInfo,
    UsageCheck,
    UsageCheckRequest,
    UsageStats,
)
from app.services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.post("/check", response_model=UsageCheck, summary="How many blocks may be processed")
async def check_usage(
    payload: UsageCheckRequest,
    request: Request,
    identity: CurrentIdentity,
    pipeline: PipelineDep,
    db: DBSession,
) -> UsageCheck:
    identity = identity_with_session(identity, request, payload.session_id)
    usage = UsageTracker(db, pipeline.redis)
    return await usage.check_usage_limit(payload.arena_channel_id, identity, payload.requested_count)


@router.post(
    "/large-channel-check",
    response_model=LargeChannelWarning,
    summary="Warn before syncing a channel bigger than the remaining budget",
)
async def large_channel_check(
    payload: LargeChannelCheckRequest,
    request: Request,
    identity: CurrentIdentity,
    pipeline: PipelineDep,
    db: DBSession,
) -> LargeChannelWarning:
    identity = identity_with_session(identity, request, payload.session_id)
    usage = UsageTracker(db, pipeline.redis)
    return await usage.check_large_channel_warning(payload.block_count, identity)


@router.get("/stats", response_model=UsageStats, summary="Usage dashboard")
async def usage_stats(identity: CurrentIdentity, db: DBSession) -> UsageStats:
    return await UsageTracker(db).get_usage_stats(identity)


@router.post(
    "/chat",
    response_model=CounterCheck,
    summary="Consume one chat message or generation",
    responses={402: {"description": "Monthly chat or generation limit reached"}},
)
async def consume_chat(
    payload: ChatRequest,
    request: Request,
    identity: CurrentIdentity,
    db: DBSession,
) -> CounterCheck:
    identity = identity_with_session(identity, request, payload.session_id)
    usage = UsageTracker(db)

    if payload.kind == "chat":
        check = await usage.check_chat_limit(payload.arena_channel_id, identity)
    else:
        check = await usage.check_generation_limit(payload.arena_channel_id, identity)

    if not check.can_proceed:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=check.message)

    if payload.kind == "chat":
        await usage.record_chat_message(payload.arena_channel_id, identity)
    else:
        await usage.record_generation(payload.arena_channel_id, identity)

    logger.info(f"Recorded {payload.kind} on channel {payload.arena_channel_id} for {identity}")
    return check


@router.get("/tiers", response_model=List[TierInfo], summary="Limits of every subscription tier")
async def list_tiers() -> List[TierInfo]:
    return [UsageTracker.get_tier_info(tier) for tier in SubscriptionTier]
