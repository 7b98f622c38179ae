"""
Content Chunking Service

Splits extracted block text into pieces that fit the embedding provider.

Strategy:
---------
1. Text no longer than max_length characters is a single chunk
2. Longer text is split on sentence terminators (., !, ?) and sentences are
   packed greedily, rejoined with ". "
3. A sentence longer than max_length on its own is hard-truncated into its
   own chunk
4. Every chunk is finally capped at EMBEDDING_MAX_TOKENS tokens (cl100k_base)

Chunking is deterministic: the same text always gives the same chunks.

Configuration from settings:
- EMBEDDING_CHUNK_CHARS: 8000 (default)
- EMBEDDING_MAX_TOKENS: 8191 (default)
"""

import re
from typing import Optional

import tiktoken

from app.core.config import settings


class ContentChunker:
    """
    Sentence-packing chunker with a token ceiling.

    Usage:
    ------
    chunker = ContentChunker()
    chunks = chunker.chunk(block_text)
    """

    def __init__(self, max_length: Optional[int] = None, max_tokens: Optional[int] = None):
        """
        Args:
            max_length: Max characters per chunk (default from settings)
            max_tokens: Max tokens per chunk (default from settings)
        """
        self.max_length = max_length or settings.EMBEDDING_CHUNK_CHARS
        self.max_tokens = max_tokens or settings.EMBEDDING_MAX_TOKENS

        if self.max_length <= 0 or self.max_tokens <= 0:
            raise ValueError("Chunk limits must be positive")

        # cl100k_base is the tokenizer of the OpenAI embedding models
        self.tokenizer = tiktoken.get_encoding("cl100k_base")

    def count_tokens(self, text: str) -> int:
        return len(self.tokenizer.encode(text))

    def chunk(self, text: Optional[str], max_length: Optional[int] = None) -> list[str]:
        """
        Split text into embedding-sized chunks.

        Args:
            text: Text to chunk
            max_length: Character ceiling for this call (default self.max_length)

        Returns:
            List of chunk texts; empty for empty or whitespace-only input
        """
        if not text or not text.strip():
            return []

        max_length = max_length or self.max_length

        if len(text) <= max_length:
            return [self._cap_tokens(text)]

        sentences = [s.strip() for s in re.split(r"[.!?]+", text) if s.strip()]

        chunks: list[str] = []
        current = ""

        for sentence in sentences:
            candidate = f"{current}. {sentence}" if current else sentence

            if len(candidate) <= max_length:
                current = candidate
                continue

            if current:
                chunks.append(current)

            if len(sentence) > max_length:
                chunks.append(sentence[:max_length])
                current = ""
            else:
                current = sentence

        if current:
            chunks.append(current)

        if not chunks:
            chunks = [text[:max_length]]

        return [self._cap_tokens(chunk) for chunk in chunks]

    def _cap_tokens(self, text: str) -> str:
        tokens = self.tokenizer.encode(text)
        if len(tokens) <= self.max_tokens:
            return text
        return self.tokenizer.decode(tokens[: self.max_tokens])


def estimate_chunk_count(content_length: int, max_length: Optional[int] = None) -> int:
    """
    Estimate number of chunks for content of the given length.

    Args:
        content_length: Content length in characters
        max_length: Characters per chunk (default from settings)
    """
    max_length = max_length or settings.EMBEDDING_CHUNK_CHARS
    return max(1, -(-content_length // max_length))
