"""
In-memory embedding cache backed by ``cachetools.TTLCache``.

Re-syncing a channel re-embeds search queries and short, repeated texts
(e.g. image fallbacks sharing a title). Entries are keyed by the sha256 of
the trimmed, lower-cased text and expire after EMBEDDING_CACHE_TTL_SECONDS.
When full, the least recently used entry is evicted.
"""

import hashlib
import time
from typing import Callable, Optional

from cachetools import TTLCache

from app.core.config import settings


class EmbeddingCache:
    def __init__(
        self,
        ttl_seconds: Optional[int] = None,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds or settings.EMBEDDING_CACHE_TTL_SECONDS
        self.max_size = max_size or settings.EMBEDDING_CACHE_MAX_SIZE
        self._entries: TTLCache = TTLCache(maxsize=self.max_size, ttl=self.ttl_seconds, timer=clock)
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(text: str) -> str:
        return hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()

    def get(self, text: str) -> Optional[list[float]]:
        vector = self._entries.get(self.key(text))
        if vector is None:
            self.misses += 1
            return None

        self.hits += 1
        return vector

    def set(self, text: str, vector: list[float]) -> None:
        self._entries[self.key(text)] = vector

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        self._entries.expire()
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / lookups, 3) if lookups else 0.0,
        }
