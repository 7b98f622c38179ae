"""
Pydantic schemas for channel sync and search.

SyncProgress is the event contract of the sync stream: every event carries a
stage, a human-readable message and an overall progress percentage; the last
event of a stream carries the SyncResult.
"""

import enum
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


# ========================================
# Sync Stream
# ========================================

class SyncStage(str, enum.Enum):
    """Sync stages in the order they run. ERROR can follow any stage."""

    FETCHING = "fetching"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    STORING = "storing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStage.COMPLETE, SyncStage.ERROR)


class SyncResult(BaseModel):
    """Terminal outcome of one sync."""

    success: bool
    channel_id: Optional[int] = Field(None, description="Database id of the synced channel")
    total_blocks: int = Field(0, description="New blocks found for this sync")
    processed_blocks: int = Field(0, description="Blocks embedded and stored")
    skipped_blocks: int = Field(0, description="Blocks already stored, cut by the usage cap or skipped by a failure")
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    cancelled: bool = False


class SyncProgress(BaseModel):
    """One progress event."""

    stage: SyncStage
    message: str
    progress: int = Field(..., ge=0, le=100, description="Overall progress percentage")
    total_blocks: Optional[int] = None
    processed_blocks: Optional[int] = None
    current_block: Optional[str] = None
    result: Optional[SyncResult] = None


# ========================================
# Request Schemas
# ========================================

class SyncChannelRequest(BaseModel):
    """Request schema for starting a sync."""

    channel_slug: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Are.na channel slug or channel URL",
        examples=["arena-influences", "https://www.are.na/someone/arena-influences"],
    )
    session_id: Optional[str] = Field(None, max_length=50)

    @field_validator("channel_slug")
    @classmethod
    def normalize_slug(cls, v: str) -> str:
        """Accept a full channel URL and keep only the trailing slug."""
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("Channel slug cannot be empty")
        if "are.na/" in v:
            v = v.split("/")[-1]
        return v


class SearchRequest(BaseModel):
    """Similarity search over stored blocks."""

    query: str = Field(..., min_length=1, max_length=2000)
    channel_slug: Optional[str] = None
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    limit: Optional[int] = Field(None, ge=1, le=50)


# ========================================
# Response Schemas
# ========================================

class BlockSearchResult(BaseModel):
    id: int
    arena_id: int
    title: str
    description: Optional[str] = None
    content: str
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    block_type: str
    similarity: float


class ChannelStats(BaseModel):
    channel_id: int
    slug: str
    title: str
    total_blocks: int
    embedded_blocks: int
    last_updated: Optional[datetime] = None


class BackgroundSyncResponse(BaseModel):
    task_id: str
    channel_slug: str
    message: str
