"""
Embedding Service

Turns processed blocks into vectors for pgvector similarity search.

Providers:
----------
- OpenAIEmbeddingProvider: text-embedding-3-small over the OpenAI API (1536 dims)
- LocalEmbeddingProvider: any sentence-transformers model on CPU/CUDA/MPS

The provider is chosen once at startup (EMBEDDING_PROVIDER) and injected into
EmbeddingService. Its dimension must equal EMBEDDING_DIMENSION, the width of
the blocks.embedding column; a mismatch fails at startup, not at insert time.

Chunks are embedded one at a time with EMBEDDING_DELAY_SECONDS between calls.
A block's representative vector is its first chunk's vector.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import numpy as np
import openai
import torch
from sentence_transformers import SentenceTransformer

from app.core.config import settings
from app.services.processors.chunker import ContentChunker
from app.services.processors.embedding_cache import EmbeddingCache

logger = logging.getLogger(__name__)


# Known embedding model dimensions
OPENAI_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


class EmbeddingError(Exception):
    """Raised when a provider fails to embed text."""
    pass


@dataclass
class EmbeddingChunk:
    text: str
    vector: list[float]
    index: int
    total: int


@dataclass
class ItemEmbedding:
    """Representative vector of a block plus every chunk it was built from."""

    vector: list[float]
    chunks: list[EmbeddingChunk]


class EmbeddingProvider(Protocol):
    name: str
    dimension: int

    async def embed(self, text: str) -> list[float]:
        ...


# ========================================
# Providers
# ========================================

class OpenAIEmbeddingProvider:
    """Embedding provider backed by the OpenAI embeddings API."""

    name = "openai"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Optional[openai.AsyncOpenAI] = None,
    ):
        self.model = model or settings.EMBEDDING_MODEL

        if self.model not in OPENAI_MODEL_DIMENSIONS:
            raise ValueError(f"Unknown OpenAI embedding model: {self.model}")
        self.dimension = OPENAI_MODEL_DIMENSIONS[self.model]

        if client is None:
            api_key = api_key or settings.OPENAI_API_KEY
            if not api_key:
                raise ValueError("OPENAI_API_KEY is required for the openai embedding provider")
            client = openai.AsyncOpenAI(api_key=api_key)
        self.client = client

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self.client.embeddings.create(input=[text], model=self.model)
        except openai.APIError as e:
            raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingError("OpenAI returned no embedding")
        return list(response.data[0].embedding)


class LocalEmbeddingProvider:
    """
    sentence-transformers model running in-process.

    The model is loaded in initialize(), off the event loop.
    """

    name = "local"

    def __init__(self, model_name: Optional[str] = None, device: Optional[str] = None):
        self.model_name = model_name or settings.EMBEDDING_MODEL
        self.device = device or settings.EMBEDDING_DEVICE
        self.dimension = settings.EMBEDDING_DIMENSION
        self.model: Optional[SentenceTransformer] = None
        self._validate_device()

    def _validate_device(self) -> None:
        """Validate and adjust device setting based on availability."""
        if self.device == "cuda" and not torch.cuda.is_available():
            logger.warning("CUDA not available, falling back to CPU")
            self.device = "cpu"
        elif self.device == "mps" and not torch.backends.mps.is_available():
            logger.warning("MPS not available, falling back to CPU")
            self.device = "cpu"

    async def initialize(self) -> None:
        if self.model is not None:
            return

        logger.info(f"Loading embedding model: {self.model_name} on {self.device}")
        self.model = await asyncio.to_thread(SentenceTransformer, self.model_name, device=self.device)
        self.dimension = self.model.get_sentence_embedding_dimension()
        logger.info(f"Embedding model loaded. Dimension: {self.dimension}, Device: {self.device}")

    async def embed(self, text: str) -> list[float]:
        if self.model is None:
            raise EmbeddingError("Local embedding model not initialized. Call initialize() first.")
        try:
            vector: np.ndarray = await asyncio.to_thread(
                self.model.encode,
                text,
                normalize_embeddings=True,
                show_progress_bar=False,
            )
        except (RuntimeError, ValueError) as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e
        return vector.tolist()

    async def shutdown(self) -> None:
        if self.model is not None:
            if self.device == "cuda":
                torch.cuda.empty_cache()
            self.model = None
        logger.info("Local embedding model unloaded")


async def build_embedding_provider(provider: Optional[str] = None) -> EmbeddingProvider:
    """Create (and load, for local models) the configured provider."""
    provider = provider or settings.EMBEDDING_PROVIDER
    if provider == "openai":
        return OpenAIEmbeddingProvider()
    if provider == "local":
        local = LocalEmbeddingProvider()
        await local.initialize()
        return local
    raise ValueError(f"Unknown embedding provider: {provider}")


# ========================================
# Service
# ========================================

class EmbeddingService:
    """
    Chunks block text and embeds it with the injected provider.

    Usage:
    ------
    embedder = EmbeddingService(await build_embedding_provider())
    item = await embedder.embed_item(title, description, content)
    store.upsert_block(channel.id, processed, item.vector)
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        chunker: Optional[ContentChunker] = None,
        cache: Optional[EmbeddingCache] = None,
        delay_seconds: Optional[float] = None,
        expected_dimension: Optional[int] = None,
    ):
        expected = expected_dimension or settings.EMBEDDING_DIMENSION
        if provider.dimension != expected:
            raise ValueError(
                f"Embedding provider '{provider.name}' produces {provider.dimension}-dim vectors, "
                f"but EMBEDDING_DIMENSION is {expected}"
            )

        self.provider = provider
        self.chunker = chunker or ContentChunker()
        self.cache = cache
        self.delay_seconds = (
            delay_seconds if delay_seconds is not None else settings.EMBEDDING_DELAY_SECONDS
        )

    async def embed_text(self, text: str) -> list[float]:
        if self.cache is not None:
            cached = self.cache.get(text)
            if cached is not None:
                return cached

        vector = await self.provider.embed(text)

        if self.cache is not None:
            self.cache.set(text, vector)
        return vector

    async def embed_chunks(self, chunks: list[str]) -> list[EmbeddingChunk]:
        """
        Embed chunks sequentially.

        Raises:
            EmbeddingError: If any chunk fails; the whole item is then skipped
        """
        embedded: list[EmbeddingChunk] = []
        total = len(chunks)

        for index, chunk in enumerate(chunks):
            try:
                vector = await self.embed_text(chunk)
            except EmbeddingError:
                raise
            except Exception as e:
                raise EmbeddingError(f"Embedding chunk {index + 1}/{total} failed: {e}") from e

            embedded.append(EmbeddingChunk(text=chunk, vector=vector, index=index, total=total))

            if index < total - 1 and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)

        return embedded

    async def embed_item(
        self,
        title: Optional[str],
        description: Optional[str],
        content: Optional[str],
    ) -> ItemEmbedding:
        """
        Embed one block.

        Title, description and content are joined with blank lines (missing
        parts dropped), chunked and embedded.

        Raises:
            EmbeddingError: If there is no text or a provider call fails
        """
        full_text = "\n\n".join(part for part in (title, description, content) if part)
        chunks = self.chunker.chunk(full_text)
        if not chunks:
            raise EmbeddingError("No text content to embed")

        embedded = await self.embed_chunks(chunks)
        return ItemEmbedding(vector=embedded[0].vector, chunks=embedded)

    async def embed_query(self, query: str) -> list[float]:
        query = (query or "").strip()
        if not query:
            raise EmbeddingError("Empty search query")
        return await self.embed_text(query)

    async def shutdown(self) -> None:
        shutdown = getattr(self.provider, "shutdown", None)
        if shutdown is not None:
            await shutdown()
