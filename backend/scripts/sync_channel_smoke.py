#!/usr/bin/env python3
"""
Smoke test for the channel sync pipeline against live services.

This script runs one real sync:
1. Builds the pipeline from .env settings
2. Streams the progress of a channel sync
3. Prints the stored block counts
4. Runs a similarity search over the synced channel

Needs PostgreSQL (with pgvector), the configured embedding provider and
network access to Are.na.

Usage:
    python scripts/sync_channel_smoke.py arena-influences "brutalist stairs"
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.logging import setup_logging
from app.db.redis import close_redis, init_redis
from app.db.session import AsyncSessionLocal, close_db, init_db
from app.schemas.usage import Identity
from app.services.identity import generate_session_id
from app.services.pipeline import build_pipeline
from app.services.store import BlockStore


async def run_sync(pipeline, slug: str, identity: Identity):
    """Stream one sync and print every event."""
    print(f"\n🔄 Syncing channel: {slug}")

    result = None
    async for event in pipeline.sync.sync_channel(slug, identity):
        print(f"   [{event.progress:3d}%] {event.stage.value:<10} {event.message}")
        if event.result is not None:
            result = event.result

    return result


async def show_stats(slug: str):
    """Print stored block counts for the channel."""
    print(f"\n📊 Stored blocks for: {slug}")

    async with AsyncSessionLocal() as db:
        store = BlockStore(db)
        channel = await store.get_channel_by_slug(slug)
        if channel is None:
            print("❌ Channel was not stored")
            return None

        stats = await store.get_channel_stats(channel.id)
        print(f"   - Total blocks: {stats.total_blocks}")
        print(f"   - Embedded blocks: {stats.embedded_blocks}")
        print(f"   - Last updated: {stats.last_updated}")
        return channel


async def run_search(pipeline, channel_id: int, query: str):
    """Search the synced channel and print the matches."""
    print(f"\n🔍 Searching: {query!r}")

    vector = await pipeline.embedder.embed_query(query)
    async with AsyncSessionLocal() as db:
        results = await BlockStore(db).search_similar(vector, threshold=0.0, limit=5, channel_id=channel_id)

    if not results:
        print("⚠️  No matches")
    for hit in results:
        print(f"   {hit.similarity:.3f}  [{hit.block_type}] {hit.title}")


async def main(slug: str, query: str) -> int:
    """Run the smoke test."""
    print("=" * 70)
    print("Channel Sync Smoke Test")
    print("=" * 70)

    setup_logging()
    await init_db()
    redis = await init_redis()
    pipeline = await build_pipeline(redis=redis)

    try:
        identity = Identity(session_id=generate_session_id(), ip_address="127.0.0.1")
        result = await run_sync(pipeline, slug, identity)

        if result is None:
            print("\n❌ Sync ended without a result")
            return 1

        for error in result.errors:
            print(f"   ⚠️  {error}")

        channel = await show_stats(slug)
        if channel is not None and result.processed_blocks + result.skipped_blocks > 0:
            await run_search(pipeline, channel.id, query)

        print("\n" + "=" * 70)
        print(f"Processed {result.processed_blocks}/{result.total_blocks} new blocks in {result.duration_ms} ms")
        print("=" * 70)

        if result.success:
            print("\n🎉 Sync pipeline is working.")
            return 0
        print("\n⚠️  Sync did not succeed. Check the output above for details.")
        return 1

    finally:
        await pipeline.aclose()
        await close_redis()
        await close_db()


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)

    exit_code = asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else "design"))
    sys.exit(exit_code)
