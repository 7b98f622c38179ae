"""
Tests for EmbeddingService, its providers and the embedding cache.

Providers are faked; no model is downloaded and no API is called.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.processors.chunker import ContentChunker
from app.services.processors.embedder import (
    EmbeddingError,
    EmbeddingService,
    OpenAIEmbeddingProvider,
)
from app.services.processors.embedding_cache import EmbeddingCache


class FakeProvider:
    """Deterministic provider: the vector encodes the call number."""

    name = "fake"

    def __init__(self, dimension: int = 3, fail_on: str = None):
        self.dimension = dimension
        self.fail_on = fail_on
        self.calls = []

    async def embed(self, text: str) -> list[float]:
        if self.fail_on and self.fail_on in text:
            raise EmbeddingError("provider rejected input")
        self.calls.append(text)
        return [float(len(self.calls)), 0.0, 0.0]


def make_service(provider=None, **kwargs) -> EmbeddingService:
    options = dict(expected_dimension=3, delay_seconds=0)
    options.update(kwargs)
    return EmbeddingService(provider or FakeProvider(), **options)


# ========================================
# Cache
# ========================================

class TestEmbeddingCache:

    def test_key_ignores_case_and_outer_whitespace(self):
        assert EmbeddingCache.key("  Hello ") == EmbeddingCache.key("hello")

    def test_ttl_expiry(self):
        now = [1000.0]
        cache = EmbeddingCache(ttl_seconds=300, max_size=10, clock=lambda: now[0])

        cache.set("query", [1.0])
        assert cache.get("query") == [1.0]

        now[0] += 301
        assert cache.get("query") is None
        assert cache.stats()["size"] == 0

    def test_evicts_oldest(self):
        cache = EmbeddingCache(ttl_seconds=300, max_size=2)
        cache.set("a", [1.0])
        cache.set("b", [2.0])
        cache.set("c", [3.0])

        assert cache.get("a") is None
        assert cache.get("c") == [3.0]

    def test_recent_read_survives_eviction(self):
        cache = EmbeddingCache(ttl_seconds=300, max_size=2)
        cache.set("a", [1.0])
        cache.set("b", [2.0])
        cache.get("a")
        cache.set("c", [3.0])

        assert cache.get("a") == [1.0]
        assert cache.get("b") is None

    def test_stats(self):
        cache = EmbeddingCache(ttl_seconds=300, max_size=5)
        cache.set("a", [1.0])
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


# ========================================
# Service
# ========================================

class TestEmbeddingServiceConfig:

    def test_dimension_mismatch_fails_at_init(self):
        with pytest.raises(ValueError, match="3-dim"):
            EmbeddingService(FakeProvider(dimension=3), expected_dimension=1536)

    def test_openai_provider_unknown_model(self):
        with pytest.raises(ValueError):
            OpenAIEmbeddingProvider(model="not-a-model", client=MagicMock())

    def test_openai_provider_requires_key(self, monkeypatch):
        monkeypatch.setattr("app.services.processors.embedder.settings.OPENAI_API_KEY", None)
        with pytest.raises(ValueError):
            OpenAIEmbeddingProvider(model="text-embedding-3-small")


@pytest.mark.asyncio
class TestEmbeddingService:

    async def test_item_vector_is_first_chunk(self):
        provider = FakeProvider()
        service = make_service(provider, chunker=ContentChunker(max_length=20))

        item = await service.embed_item("Title", None, "First part here. Second part here. Third.")

        assert len(item.chunks) > 1
        assert item.vector == item.chunks[0].vector == [1.0, 0.0, 0.0]
        assert [chunk.index for chunk in item.chunks] == list(range(len(item.chunks)))
        assert all(chunk.total == len(item.chunks) for chunk in item.chunks)

    async def test_joins_title_description_content(self):
        provider = FakeProvider()
        service = make_service(provider)

        await service.embed_item("Title", "Desc", "Body")

        assert provider.calls == ["Title\n\nDesc\n\nBody"]

    async def test_empty_item(self):
        with pytest.raises(EmbeddingError):
            await make_service().embed_item(None, None, "   ")

    async def test_chunk_failure_fails_item(self):
        service = make_service(FakeProvider(fail_on="poison"), chunker=ContentChunker(max_length=20))

        with pytest.raises(EmbeddingError):
            await service.embed_item(None, None, "Fine sentence here. Then poison arrives.")

    async def test_cache_short_circuits_provider(self):
        provider = FakeProvider()
        service = make_service(provider, cache=EmbeddingCache(ttl_seconds=300, max_size=10))

        first = await service.embed_query("brutalist stairs")
        second = await service.embed_query("Brutalist stairs ")

        assert first == second
        assert len(provider.calls) == 1

    async def test_empty_query(self):
        with pytest.raises(EmbeddingError):
            await make_service().embed_query("  ")

    async def test_openai_provider(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(
            return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1] * 1536)])
        )
        provider = OpenAIEmbeddingProvider(model="text-embedding-3-small", client=client)

        vector = await provider.embed("hello")

        assert len(vector) == 1536
        client.embeddings.create.assert_awaited_once_with(input=["hello"], model="text-embedding-3-small")
