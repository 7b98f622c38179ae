"""
Sync Orchestrator

Incremental sync of one Are.na channel into the block store.

Stages (in order, ERROR can end the stream at any point):

    fetching    10-30%   channel metadata, block list, block details, diff
    extracting  35-70%   per-block content extraction
    embedding   70-95%   per-block embedding + upsert
    storing     95%      last_sync stamp and usage recording
    complete    100%

Only blocks whose arena_id is not yet stored for the channel are processed,
so re-running a sync on an unchanged channel processes nothing. A failure
on one block is recorded in ``errors`` and the block is skipped; it never
aborts the sync. The quota gate runs before extraction and may cap the
number of new blocks or reject the sync outright.
"""

import logging
import time
from typing import AsyncIterator, Callable, List, Optional

from redis.asyncio import Redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.content import BlockType
from app.schemas.arena import ArenaBlock
from app.schemas.sync import SyncProgress, SyncResult, SyncStage
from app.schemas.usage import Identity
from app.services.arena_client import ArenaClient, ArenaError
from app.services.cancellation import CancellationToken, SyncCancelledError
from app.services.extraction.router import ContentExtractor, ProcessedBlock
from app.services.processors.embedder import EmbeddingError, EmbeddingService
from app.services.store import BlockStore
from app.services.usage_tracker import UsageTracker

logger = logging.getLogger(__name__)


class SyncService:
    """
    Streams the progress of a channel sync.

    Example:
        >>> service = SyncService(arena, extractor, embedder, AsyncSessionLocal, redis)
        >>> async for event in service.sync_channel("arena-influences", identity):
        ...     print(event.stage, event.progress, event.message)
    """

    def __init__(
        self,
        arena: ArenaClient,
        extractor: ContentExtractor,
        embedder: EmbeddingService,
        session_factory: async_sessionmaker[AsyncSession],
        redis: Optional[Redis] = None,
        usage_tracker_factory: Callable[[AsyncSession, Optional[Redis]], UsageTracker] = UsageTracker,
        store_factory: Callable[[AsyncSession], BlockStore] = BlockStore,
    ):
        self.arena = arena
        self.extractor = extractor
        self.embedder = embedder
        self.session_factory = session_factory
        self.redis = redis
        self.usage_tracker_factory = usage_tracker_factory
        self.store_factory = store_factory

    async def run_sync(
        self,
        slug: str,
        identity: Identity,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SyncResult:
        """Drain the progress stream and return the terminal result."""
        result: Optional[SyncResult] = None
        async for event in self.sync_channel(slug, identity, cancel_token):
            if event.result is not None:
                result = event.result
        return result or SyncResult(success=False, errors=["Sync ended without a result"])

    async def sync_channel(
        self,
        slug: str,
        identity: Identity,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AsyncIterator[SyncProgress]:
        token = cancel_token or CancellationToken()
        started = time.monotonic()
        errors: List[str] = []

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        async with self.session_factory() as session:
            store = self.store_factory(session)
            usage = self.usage_tracker_factory(session, self.redis)

            channel_id: Optional[int] = None
            arena_channel_id: Optional[int] = None
            reserved = 0
            stored = 0
            recorded = False
            total_new = 0
            capped_off = 0

            try:
                # ---- fetching ----
                yield SyncProgress(stage=SyncStage.FETCHING, message=f'Fetching channel "{slug}"...', progress=10)

                arena_channel = await self.arena.fetch_collection(slug)
                arena_channel_id = arena_channel.id
                channel = await store.upsert_channel(arena_channel, user_id=identity.user_id)
                channel_id = channel.id
                await session.commit()

                all_blocks = await self.arena.fetch_all_items(arena_channel.slug, channel=arena_channel)
                detailed = await self.arena.fetch_all_details(all_blocks)
                token.raise_if_cancelled()

                yield SyncProgress(
                    stage=SyncStage.FETCHING,
                    message=(
                        f"Found {len(detailed)} processable blocks ({self._class_summary(detailed)}) "
                        f"out of {len(all_blocks)} total blocks"
                    ),
                    progress=20,
                    total_blocks=len(detailed),
                )

                existing = await store.get_existing_arena_ids(channel_id)
                new_blocks = [block for block in detailed if block.id not in existing]
                already = len(detailed) - len(new_blocks)

                if not new_blocks:
                    logger.info(f"Channel {slug}: all {already} blocks already processed")
                    yield self._finish(
                        SyncStage.COMPLETE,
                        "All blocks already processed",
                        SyncResult(
                            success=True,
                            channel_id=channel_id,
                            total_blocks=0,
                            processed_blocks=0,
                            skipped_blocks=already,
                            duration_ms=elapsed_ms(),
                        ),
                    )
                    return

                # ---- quota gate ----
                check = await usage.check_usage_limit(arena_channel_id, identity, len(new_blocks))
                if not check.can_process:
                    message = check.message or "Usage limit reached"
                    logger.info(f"Sync of {slug} rejected for {identity}: {message}")
                    yield self._finish(
                        SyncStage.ERROR,
                        message,
                        SyncResult(
                            success=False,
                            channel_id=channel_id,
                            total_blocks=len(new_blocks),
                            skipped_blocks=len(new_blocks),
                            errors=[message],
                            duration_ms=elapsed_ms(),
                        ),
                    )
                    return

                if check.capped_count is not None and check.capped_count < len(new_blocks):
                    capped_off = len(new_blocks) - check.capped_count
                    new_blocks = new_blocks[: check.capped_count]
                    logger.info(f"Sync of {slug} capped at {check.capped_count} blocks for {identity}")

                total_new = len(new_blocks)
                if await usage.reserve(identity, total_new):
                    reserved = total_new

                yield SyncProgress(
                    stage=SyncStage.FETCHING,
                    message=check.message or f"{total_new} new blocks to process",
                    progress=30,
                    total_blocks=total_new,
                )

                # ---- extracting ----
                yield SyncProgress(
                    stage=SyncStage.EXTRACTING,
                    message=f"Processing {total_new} new blocks...",
                    progress=35,
                    total_blocks=total_new,
                )

                extracted: List[ProcessedBlock] = []
                for index, block in enumerate(new_blocks):
                    token.raise_if_cancelled()

                    processed = await self._extract(block, errors)
                    if processed is not None:
                        extracted.append(processed)

                    yield SyncProgress(
                        stage=SyncStage.EXTRACTING,
                        message=f"Processed {index + 1}/{total_new} blocks",
                        progress=35 + int((index + 1) / total_new * 35),
                        total_blocks=total_new,
                        processed_blocks=len(extracted),
                        current_block=block.title or str(block.id),
                    )

                if not extracted:
                    errors.append("No blocks could be processed successfully")
                    yield self._finish(
                        SyncStage.ERROR,
                        "No blocks could be processed successfully",
                        SyncResult(
                            success=False,
                            channel_id=channel_id,
                            total_blocks=total_new,
                            skipped_blocks=total_new + already + capped_off,
                            errors=errors,
                            duration_ms=elapsed_ms(),
                        ),
                    )
                    return

                # ---- embedding + upsert ----
                yield SyncProgress(
                    stage=SyncStage.EMBEDDING,
                    message=f"Creating embeddings for {len(extracted)} blocks...",
                    progress=70,
                    total_blocks=len(extracted),
                )

                for index, processed in enumerate(extracted):
                    token.raise_if_cancelled()

                    if await self._embed_and_store(store, session, channel_id, processed, errors):
                        stored += 1

                    yield SyncProgress(
                        stage=SyncStage.EMBEDDING,
                        message=f"Embedded {index + 1}/{len(extracted)} blocks",
                        progress=70 + int((index + 1) / len(extracted) * 25),
                        total_blocks=len(extracted),
                        processed_blocks=stored,
                        current_block=processed.title,
                    )

                # ---- storing ----
                yield SyncProgress(
                    stage=SyncStage.STORING,
                    message="Saving channel...",
                    progress=95,
                    total_blocks=total_new,
                    processed_blocks=stored,
                )

                await store.touch_channel(channel_id)
                await session.commit()
                await usage.record_usage(arena_channel_id, identity, stored)
                recorded = True

                success = stored > 0
                message = f"Sync complete! Processed {stored}/{total_new} blocks"
                if not success:
                    message = "No blocks could be processed successfully"
                    errors.append(message)

                yield self._finish(
                    SyncStage.COMPLETE if success else SyncStage.ERROR,
                    message,
                    SyncResult(
                        success=success,
                        channel_id=channel_id,
                        total_blocks=total_new,
                        processed_blocks=stored,
                        skipped_blocks=(total_new - stored) + already + capped_off,
                        errors=errors,
                        duration_ms=elapsed_ms(),
                    ),
                    total_blocks=total_new,
                    processed_blocks=stored,
                )

            except SyncCancelledError as e:
                logger.info(f"Sync of {slug} cancelled after {stored} stored blocks")
                errors.append(str(e))
                if not recorded and stored > 0 and arena_channel_id is not None:
                    await usage.record_usage(arena_channel_id, identity, stored)
                    recorded = True

                yield self._finish(
                    SyncStage.ERROR,
                    str(e),
                    SyncResult(
                        success=False,
                        channel_id=channel_id,
                        total_blocks=total_new,
                        processed_blocks=stored,
                        skipped_blocks=max(0, total_new - stored) + capped_off,
                        errors=errors,
                        duration_ms=elapsed_ms(),
                        cancelled=True,
                    ),
                )

            except (ArenaError, SQLAlchemyError) as e:
                await session.rollback()
                logger.warning(f"Sync of {slug} failed: {e}")
                errors.append(f"Sync failed: {e}")
                yield self._finish(
                    SyncStage.ERROR,
                    f"Sync failed: {e}",
                    SyncResult(
                        success=False,
                        channel_id=channel_id,
                        processed_blocks=stored,
                        errors=errors,
                        duration_ms=elapsed_ms(),
                    ),
                )

            finally:
                if reserved:
                    await usage.release(identity, reserved)

    # ========================================
    # Per-block Steps
    # ========================================

    async def _extract(self, block: ArenaBlock, errors: List[str]) -> Optional[ProcessedBlock]:
        try:
            outcome = await self.extractor.extract(block)
        except Exception as e:
            logger.warning(f"Error processing block {block.id}: {e}")
            errors.append(f"Error processing block {block.id}: {e}")
            return None

        if not outcome.ok:
            reason = "; ".join(outcome.errors) or "no content"
            logger.warning(f"Failed to extract content from block {block.id}: {reason}")
            errors.append(
                f"Failed to extract content from block {block.id}: {block.resource_url or block.block_class}"
            )
            return None

        return outcome.processed

    async def _embed_and_store(
        self,
        store: BlockStore,
        session: AsyncSession,
        channel_id: int,
        processed: ProcessedBlock,
        errors: List[str],
    ) -> bool:
        # Text blocks carry their note in content; embedding the description too would double it
        description = None if processed.block_type == BlockType.TEXT else processed.description

        try:
            embedding = await self.embedder.embed_item(processed.title, description, processed.content)
        except EmbeddingError as e:
            logger.warning(f"Error creating embedding for block {processed.arena_id}: {e}")
            errors.append(f"Error creating embedding for block {processed.arena_id}: {e}")
            return False

        try:
            await store.upsert_block(channel_id, processed, embedding.vector)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.warning(f"Error storing block {processed.arena_id}: {e}")
            errors.append(f"Error storing block {processed.arena_id}: {e}")
            return False

        return True

    # ========================================
    # Helpers
    # ========================================

    @staticmethod
    def _class_summary(blocks: List[ArenaBlock]) -> str:
        counts = {name: 0 for name in ("Link", "Image", "Media", "Attachment", "Text")}
        for block in blocks:
            if block.block_class in counts:
                counts[block.block_class] += 1
        return (
            f"{counts['Link']} links, {counts['Image']} images, {counts['Media']} media, "
            f"{counts['Attachment']} attachments, {counts['Text']} text"
        )

    @staticmethod
    def _finish(
        stage: SyncStage,
        message: str,
        result: SyncResult,
        total_blocks: Optional[int] = None,
        processed_blocks: Optional[int] = None,
    ) -> SyncProgress:
        return SyncProgress(
            stage=stage,
            message=message,
            progress=100 if stage == SyncStage.COMPLETE else 0,
            total_blocks=total_blocks,
            processed_blocks=processed_blocks,
            result=result,
        )
