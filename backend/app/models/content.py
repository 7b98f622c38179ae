"""
Content Models

Collections and blocks synced from Are.na.

Models Included:
----------------
1. Channel - An Are.na channel (a "collection") that has been synced at least once
2. Block - One processed item of a channel with its representative embedding
3. BlockType (Enum) - Which extraction strategy produced the block's content

Database Tables:
----------------
- channels: one row per Are.na channel, upserted on every sync
- blocks: one row per Are.na block, upserted by arena_id

Relationships:
--------------
- Channel (1) ←→ (Many) Block

Ownership:
----------
Only the store (app.services.store) writes these tables, and it never
deletes rows: a sync only inserts or updates.
"""

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from pgvector.sqlalchemy import Vector

from app.core.config import settings
from app.db.base import BaseModel, String100, String255, String2048


# ================================
# Enums
# ================================

class BlockType(str, enum.Enum):
    """
    Content type of a processed block.

    Are.na reports a block "class" (Link, Image, Media, Attachment, Text).
    The router maps it onto the strategy that extracted the content:

    - DOCUMENT: Link blocks pointing at web pages (read through Jina)
    - VIDEO: Link or Media blocks whose URL is YouTube or Vimeo
    - IMAGE: Image blocks (vision analysis)
    - ATTACHMENT: uploaded files, mostly PDFs
    - TEXT: text blocks written directly in Are.na
    """

    DOCUMENT = "document"
    IMAGE = "image"
    VIDEO = "video"
    ATTACHMENT = "attachment"
    TEXT = "text"


# ================================
# Channel Model
# ================================

class Channel(BaseModel):
    """
    An Are.na channel that has been synced.

    Table: channels
    ---------------
    Created on the first sync of a slug, refreshed (title, slug, username,
    last_sync) on every later sync. arena_id is Are.na's numeric channel id;
    slug can change on Are.na's side, arena_id cannot.
    """

    __tablename__ = "channels"

    arena_id: Mapped[int] = mapped_column(
        BigInteger,
        unique=True,
        nullable=False,
        comment="Are.na channel id"
    )

    title: Mapped[str] = mapped_column(
        String255,
        nullable=False,
        comment="Channel title as shown on Are.na"
    )

    slug: Mapped[str] = mapped_column(
        String255,
        unique=True,
        index=True,
        nullable=False,
        comment="Channel slug used in Are.na URLs"
    )

    username: Mapped[str | None] = mapped_column(
        String100,
        nullable=True,
        comment="Are.na username of the channel owner"
    )

    user_id: Mapped[str | None] = mapped_column(
        String255,
        nullable=True,
        index=True,
        comment="Account that first synced the channel (auth provider id)"
    )

    last_sync: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Last completed sync (UTC)"
    )

    blocks: Mapped[list["Block"]] = relationship(
        "Block",
        back_populates="channel",
        lazy="noload"
    )
    # Channels can hold thousands of blocks; load them explicitly through the store

    def __repr__(self) -> str:
        return f"Channel(id={self.id}, arena_id={self.arena_id}, slug='{self.slug}')"


# ================================
# Block Model
# ================================

class Block(BaseModel):
    """
    A processed Are.na block.

    Table: blocks
    -------------
    arena_id is unique across the whole table, not per channel: the same
    Are.na block connected to two channels is stored once and the latest
    sync wins.

    embedding holds the representative vector, the embedding of the first
    text chunk. A block without an embedding is never written.
    """

    __tablename__ = "blocks"

    arena_id: Mapped[int] = mapped_column(
        BigInteger,
        unique=True,
        nullable=False,
        comment="Are.na block id"
    )

    channel_id: Mapped[int] = mapped_column(
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Channel the block was last synced from"
    )

    title: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Block title (provider title, URL-derived title or video title)"
    )

    description: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="User-supplied description from Are.na"
    )

    content: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Extracted and cleaned text content"
    )

    url: Mapped[str | None] = mapped_column(
        String2048,
        nullable=True,
        comment="Canonical source URL"
    )

    thumbnail_url: Mapped[str | None] = mapped_column(
        String2048,
        nullable=True,
        comment="Thumbnail for previews"
    )

    block_type: Mapped[BlockType] = mapped_column(
        nullable=False,
        index=True,
        comment="Extraction strategy that produced the content"
    )

    embedding: Mapped[list[float]] = mapped_column(
        Vector(settings.EMBEDDING_DIMENSION),
        nullable=False,
        comment="Representative embedding (first chunk)"
    )

    channel: Mapped["Channel"] = relationship(
        "Channel",
        back_populates="blocks",
        lazy="joined"
    )

    __table_args__ = (
        Index(
            "ix_blocks_embedding_hnsw",
            "embedding",
            postgresql_using="hnsw",
            postgresql_with={"m": 16, "ef_construction": 64},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )

    def __repr__(self) -> str:
        return (
            f"Block(id={self.id}, arena_id={self.arena_id}, "
            f"type={self.block_type.value}, title='{self.title[:30]}')"
        )
