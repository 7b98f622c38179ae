"""
Content Processors Package

Turns extracted block text into vectors.

Modules:
--------
- chunker: Sentence-packing chunker with a token ceiling
- embedder: Embedding providers (OpenAI, sentence-transformers) and EmbeddingService
- embedding_cache: In-memory TTL cache for repeated texts
"""
