"""
Channel sync and search API endpoints.

Thin wrappers over the sync pipeline: a streaming sync (NDJSON, one progress
event per line), a Celery-backed background sync, per-channel stats and
similarity search over stored blocks.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Set

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from app.api.deps import CurrentIdentity, PipelineDep, identity_with_session
from app.db.deps import DBSession
from app.schemas.arena import ArenaChannel
from app.schemas.sync import (
    BackgroundSyncResponse,
    BlockSearchResult,
    ChannelStats,
    SearchRequest,
    SyncChannelRequest,
    SyncProgress,
)
from app.schemas.usage import Identity
from app.services.arena_client import (
    ArenaError,
    ArenaNotFoundError,
    ArenaUnauthorizedError,
)
from app.services.cancellation import CancellationToken
from app.services.pipeline import Pipeline
from app.services.processors.embedder import EmbeddingError
from app.services.store import BlockStore
from app.services.usage_tracker import QuotaExceededError, UsageTracker
from app.tasks.sync_tasks import sync_channel as sync_channel_task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/channels", tags=["Channels"])

# Syncs whose client went away keep running until they observe the cancellation
_running_syncs: Set[asyncio.Task] = set()


# ========================================
# Helper Functions
# ========================================

async def _preflight(pipeline: Pipeline, db, slug: str, identity: Identity) -> ArenaChannel:
    """
    Resolve the channel and reject exhausted quotas before any work starts.

    Raises:
        HTTPException: 404/401/502 for provider failures, 402 for quota
    """
    try:
        arena_channel = await pipeline.arena.fetch_collection(slug)

        usage = UsageTracker(db, pipeline.redis)
        channel_check = await usage.check_channel_limit(arena_channel.id, identity)
        if not channel_check.can_add:
            raise QuotaExceededError(channel_check.message or "Channel limit reached")
        await usage.enforce_usage_limit(arena_channel.id, identity, 1)
        return arena_channel

    except ArenaNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ArenaUnauthorizedError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    except ArenaError as e:
        logger.error(f"Are.na request for {slug} failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except QuotaExceededError as e:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=str(e))


async def _pump(events: AsyncIterator[SyncProgress], queue: "asyncio.Queue[SyncProgress | None]") -> None:
    try:
        async for event in events:
            await queue.put(event)
    finally:
        await queue.put(None)


# ========================================
# Endpoints
# ========================================

@router.post(
    "/sync",
    summary="Sync a channel (streaming)",
    description=(
        "Processes every block of the channel that is not stored yet and streams "
        "progress as newline-delimited JSON. The last line carries the result."
    ),
    responses={
        200: {"description": "NDJSON progress stream", "content": {"application/x-ndjson": {}}},
        401: {"description": "Channel is private"},
        402: {"description": "Usage limit reached"},
        404: {"description": "Channel not found"},
        502: {"description": "Are.na API error"},
    },
)
async def sync_channel(
    payload: SyncChannelRequest,
    request: Request,
    identity: CurrentIdentity,
    pipeline: PipelineDep,
    db: DBSession,
) -> StreamingResponse:
    identity = identity_with_session(identity, request, payload.session_id)
    arena_channel = await _preflight(pipeline, db, payload.channel_slug, identity)

    token = CancellationToken()
    logger.info(f"Streaming sync of {arena_channel.slug} for {identity}")

    async def stream():
        queue: asyncio.Queue = asyncio.Queue()
        task = asyncio.create_task(
            _pump(pipeline.sync.sync_channel(arena_channel.slug, identity, token), queue)
        )
        _running_syncs.add(task)
        task.add_done_callback(_running_syncs.discard)

        completed = False
        try:
            while True:
                event = await queue.get()
                if event is None:
                    completed = True
                    break
                yield event.model_dump_json(exclude_none=True) + "\n"
        finally:
            if not completed:
                logger.info(f"Client left sync of {arena_channel.slug}; cancelling")
                token.cancel("Sync cancelled: client disconnected")

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@router.post(
    "/{slug}/sync/background",
    response_model=BackgroundSyncResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a background sync",
)
async def sync_channel_background(
    slug: str,
    identity: CurrentIdentity,
    pipeline: PipelineDep,
    db: DBSession,
) -> BackgroundSyncResponse:
    arena_channel = await _preflight(pipeline, db, slug, identity)

    task = sync_channel_task.delay(arena_channel.slug, identity.model_dump())
    logger.info(f"Queued background sync of {arena_channel.slug} (task {task.id})")

    return BackgroundSyncResponse(
        task_id=task.id,
        channel_slug=arena_channel.slug,
        message=f'Sync of "{arena_channel.title}" queued',
    )


@router.get(
    "/{slug}/stats",
    response_model=ChannelStats,
    summary="Stored block counts for a channel",
    responses={404: {"description": "Channel has never been synced"}},
)
async def channel_stats(slug: str, db: DBSession) -> ChannelStats:
    store = BlockStore(db)
    channel = await store.get_channel_by_slug(slug)
    if channel is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Channel {slug} has not been synced")

    stats = await store.get_channel_stats(channel.id)
    return stats


@router.post(
    "/search",
    response_model=List[BlockSearchResult],
    summary="Similarity search over stored blocks",
)
async def search_blocks(payload: SearchRequest, db: DBSession, pipeline: PipelineDep) -> List[BlockSearchResult]:
    store = BlockStore(db)

    channel_id = None
    if payload.channel_slug:
        channel = await store.get_channel_by_slug(payload.channel_slug)
        if channel is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Channel {payload.channel_slug} has not been synced",
            )
        channel_id = channel.id

    try:
        query_embedding = await pipeline.embedder.embed_query(payload.query)
    except EmbeddingError as e:
        logger.error(f"Query embedding failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    return await store.search_similar(
        query_embedding,
        threshold=payload.threshold,
        limit=payload.limit,
        channel_id=channel_id,
    )
