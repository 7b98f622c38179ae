"""
Celery tasks for background channel syncs.

The worker runs the same orchestrator as the streaming endpoint and returns
the terminal SyncResult as a plain dict.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import Task
from celery.signals import worker_process_init
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.db.redis import close_redis, init_redis
from app.db.session import engine
from app.schemas.usage import Identity
from app.services.pipeline import build_pipeline
from app.services.processors.embedder import LocalEmbeddingProvider
from app.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


# ========================================
# Async Helper
# ========================================

def run_async(coro):
    """
    Run async coroutine, handling both event loop and no event loop scenarios.

    - Celery worker (no running loop): asyncio.run()
    - pytest with a running loop: asyncio.run() in a worker thread
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    import concurrent.futures

    with concurrent.futures.ThreadPoolExecutor() as executor:
        future = executor.submit(asyncio.run, coro)
        return future.result()


# ========================================
# Worker-wide Embedding Model
# ========================================

_local_provider: Optional[LocalEmbeddingProvider] = None


def get_worker_embedding_provider() -> Optional[LocalEmbeddingProvider]:
    """
    Local embedding model shared by every task in this worker process.

    Returns None for the OpenAI provider: its client pool is bound to one
    event loop, and each task runs on a fresh loop, so tasks build their own.
    """
    global _local_provider

    if settings.EMBEDDING_PROVIDER != "local":
        return None
    if _local_provider is None:
        provider = LocalEmbeddingProvider()
        run_async(provider.initialize())
        _local_provider = provider
    return _local_provider


@worker_process_init.connect
def preload_embedding_model(**kwargs):
    get_worker_embedding_provider()


# ========================================
# Base Task Class
# ========================================

class SyncTask(Task):
    """
    Retries only when infrastructure is unreachable.

    Provider and per-block failures are reported inside the result, so
    retrying them would only repeat the same outcome.
    """

    autoretry_for = (OperationalError, RedisConnectionError, ConnectionError)
    retry_kwargs = {'max_retries': 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True


# ========================================
# Tasks
# ========================================

async def _sync(
    slug: str,
    identity: Identity,
    embedding_provider: Optional[LocalEmbeddingProvider] = None,
) -> Dict[str, Any]:
    redis = await init_redis()
    pipeline = await build_pipeline(redis=redis, embedding_provider=embedding_provider)
    try:
        result = await pipeline.sync.run_sync(slug, identity)
    finally:
        await pipeline.aclose()
        await close_redis()
        # Every asyncio.run() gets a fresh loop; pooled connections can't cross it
        await engine.dispose()
    return result.model_dump(mode="json")


@celery_app.task(
    base=SyncTask,
    name="arena.sync_channel",
    bind=True,
)
def sync_channel(self, slug: str, identity: Dict[str, Any]) -> Dict[str, Any]:
    """
    Sync one Are.na channel in the background.

    Args:
        slug: Channel slug
        identity: Identity.model_dump() of the requester

    Returns:
        SyncResult as a JSON-safe dict
    """
    who = Identity.model_validate(identity)
    logger.info(f"Background sync of {slug} started for {who.key} (task {self.request.id})")

    result = run_async(_sync(slug, who, get_worker_embedding_provider()))

    logger.info(
        f"Background sync of {slug} finished: success={result['success']}, "
        f"processed={result['processed_blocks']}/{result['total_blocks']}"
    )
    return result
