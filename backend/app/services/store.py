"""
Block store: persistence for channels and processed blocks.

Both tables are written with PostgreSQL upserts keyed on arena_id, so a
re-sync updates rows in place and never duplicates them. Nothing here
deletes rows. The caller owns the transaction (commit / rollback).
"""

import logging
from typing import List, Optional, Set

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.base import utcnow
from app.models.content import Block, Channel
from app.schemas.arena import ArenaChannel
from app.schemas.sync import BlockSearchResult, ChannelStats
from app.services.extraction.router import ProcessedBlock

logger = logging.getLogger(__name__)


class BlockStore:
    """
    Upserts and similarity queries over channels and blocks.

    Example:
        >>> store = BlockStore(session)
        >>> channel = await store.upsert_channel(arena_channel)
        >>> known = await store.get_existing_arena_ids(channel.id)
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ========================================
    # Channels
    # ========================================

    async def upsert_channel(self, arena_channel: ArenaChannel, user_id: Optional[str] = None) -> Channel:
        """Insert the channel or refresh its title, slug, owner name and last_sync."""
        now = utcnow()
        values = {
            "arena_id": arena_channel.id,
            "title": arena_channel.title,
            "slug": arena_channel.slug,
            "username": arena_channel.username,
            "user_id": user_id,
            "last_sync": now,
        }
        update = {
            "title": arena_channel.title,
            "slug": arena_channel.slug,
            "username": arena_channel.username,
            "last_sync": now,
            "updated_at": now,
        }
        if user_id:
            update["user_id"] = func.coalesce(Channel.user_id, user_id)

        stmt = (
            pg_insert(Channel)
            .values(**values)
            .on_conflict_do_update(index_elements=[Channel.arena_id], set_=update)
            .returning(Channel)
        )
        result = await self.db.execute(stmt, execution_options={"populate_existing": True})
        channel = result.scalar_one()
        logger.info(f"Upserted channel {channel.slug} (arena_id={channel.arena_id}, id={channel.id})")
        return channel

    async def touch_channel(self, channel_id: int) -> None:
        """Stamp last_sync at the end of a sync."""
        channel = await self.db.get(Channel, channel_id)
        if channel is not None:
            channel.last_sync = utcnow()

    async def get_channel_by_slug(self, slug: str) -> Optional[Channel]:
        result = await self.db.execute(select(Channel).where(Channel.slug == slug))
        return result.scalar_one_or_none()

    async def get_channel_stats(self, channel_id: int) -> Optional[ChannelStats]:
        channel = await self.db.get(Channel, channel_id)
        if channel is None:
            return None

        result = await self.db.execute(
            select(
                func.count(Block.id).label("total"),
                func.count(Block.embedding).label("embedded"),
                func.max(Block.updated_at).label("last_updated"),
            ).where(Block.channel_id == channel_id)
        )
        row = result.one()

        return ChannelStats(
            channel_id=channel.id,
            slug=channel.slug,
            title=channel.title,
            total_blocks=row.total or 0,
            embedded_blocks=row.embedded or 0,
            last_updated=row.last_updated or channel.last_sync,
        )

    # ========================================
    # Blocks
    # ========================================

    async def get_existing_arena_ids(self, channel_id: int) -> Set[int]:
        result = await self.db.execute(
            select(Block.arena_id).where(Block.channel_id == channel_id)
        )
        return set(result.scalars().all())

    async def upsert_block(self, channel_id: int, processed: ProcessedBlock, embedding: List[float]) -> int:
        """
        Insert or update one block; the latest sync wins.

        Returns:
            Database id of the block
        """
        values = {
            "arena_id": processed.arena_id,
            "channel_id": channel_id,
            "title": processed.title,
            "description": processed.description,
            "content": processed.content,
            "url": processed.url,
            "thumbnail_url": processed.thumbnail_url,
            "block_type": processed.block_type,
            "embedding": embedding,
        }
        update = {key: value for key, value in values.items() if key != "arena_id"}
        update["updated_at"] = utcnow()

        stmt = (
            pg_insert(Block)
            .values(**values)
            .on_conflict_do_update(index_elements=[Block.arena_id], set_=update)
            .returning(Block.id)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def search_similar(
        self,
        query_embedding: List[float],
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
        channel_id: Optional[int] = None,
    ) -> List[BlockSearchResult]:
        """
        Blocks whose cosine similarity to the query is at least ``threshold``,
        most similar first.
        """
        threshold = threshold if threshold is not None else settings.SEARCH_SIMILARITY_THRESHOLD
        limit = limit or settings.SEARCH_MATCH_COUNT

        distance = Block.embedding.cosine_distance(query_embedding)
        query = (
            select(Block, distance.label("distance"))
            .where(distance <= 1 - threshold)
            .order_by(distance)
            .limit(limit)
        )
        if channel_id is not None:
            query = query.where(Block.channel_id == channel_id)

        result = await self.db.execute(query)

        return [
            BlockSearchResult(
                id=block.id,
                arena_id=block.arena_id,
                title=block.title,
                description=block.description,
                content=block.content,
                url=block.url,
                thumbnail_url=block.thumbnail_url,
                block_type=block.block_type.value,
                similarity=round(1.0 - float(row_distance), 4),
            )
            for block, row_distance in result.unique().all()
        ]
