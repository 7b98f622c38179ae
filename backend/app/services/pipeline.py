"""
Pipeline wiring.

Builds every collaborator of a sync once per process and hands them out
already configured. Optional providers (YouTube Data API, vision) are only
constructed when their credentials are set; the extractors fall back on
their own when a provider is missing.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from redis.asyncio import Redis

from app.core.config import settings
from app.db.session import AsyncSessionLocal
from app.services.arena_client import ArenaClient
from app.services.extraction.document import DocumentExtractor
from app.services.extraction.image import ImageExtractor, VisionClient
from app.services.extraction.router import ContentExtractor
from app.services.extraction.video import VideoExtractor
from app.services.processors.embedder import EmbeddingProvider, EmbeddingService, build_embedding_provider
from app.services.processors.embedding_cache import EmbeddingCache
from app.services.sync_service import SyncService
from app.services.transcript_service import TranscriptService
from app.services.youtube import YouTubeService

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    http: httpx.AsyncClient
    arena: ArenaClient
    extractor: ContentExtractor
    embedder: EmbeddingService
    sync: SyncService
    redis: Optional[Redis] = None
    owns_embedder: bool = True

    async def aclose(self) -> None:
        """Release the shared HTTP pool and unload local models we loaded."""
        await self.arena.aclose()
        await self.http.aclose()
        if self.owns_embedder:
            await self.embedder.shutdown()
        logger.info("Pipeline closed")


async def build_pipeline(
    redis: Optional[Redis] = None,
    session_factory=None,
    embedding_provider: Optional[EmbeddingProvider] = None,
) -> Pipeline:
    """
    Construct the sync pipeline from settings.

    Args:
        redis: Client for usage reservations; reservations are skipped if None
        session_factory: Defaults to the application's AsyncSessionLocal
        embedding_provider: Already-loaded provider to borrow; the pipeline
            will not unload it on aclose()

    Raises:
        ValueError: If a provider's configuration is invalid
    """
    http = httpx.AsyncClient(
        timeout=settings.DOCUMENT_EXTRACTION_TIMEOUT,
        follow_redirects=True,
    )

    try:
        arena = ArenaClient(http_client=http)
        documents = DocumentExtractor(http)

        youtube = YouTubeService() if settings.YOUTUBE_API_KEY else None
        videos = VideoExtractor(http, youtube=youtube, transcripts=TranscriptService())

        vision = VisionClient() if settings.ANTHROPIC_API_KEY else None
        images = ImageExtractor(vision=vision)

        extractor = ContentExtractor(documents, videos, images)

        cache = None
        if settings.EMBEDDING_CACHE_ENABLED:
            cache = EmbeddingCache(
                ttl_seconds=settings.EMBEDDING_CACHE_TTL_SECONDS,
                max_size=settings.EMBEDDING_CACHE_MAX_SIZE,
            )
        provider = embedding_provider or await build_embedding_provider()
        embedder = EmbeddingService(provider, cache=cache)
    except Exception:
        await http.aclose()
        raise

    sync = SyncService(
        arena,
        extractor,
        embedder,
        session_factory or AsyncSessionLocal,
        redis=redis,
    )

    logger.info(
        f"Pipeline ready (embeddings={provider.name}, "
        f"youtube_api={'on' if youtube else 'off'}, vision={'on' if vision else 'off'})"
    )
    return Pipeline(
        http=http,
        arena=arena,
        extractor=extractor,
        embedder=embedder,
        sync=sync,
        redis=redis,
        owns_embedder=embedding_provider is None,
    )
