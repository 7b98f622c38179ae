"""
Pydantic schemas for request/response validation.

Import all schemas here for easy access.
"""

from app.schemas.arena import ArenaBlock, ArenaChannel, PROCESSABLE_CLASSES
from app.schemas.sync import (
    BlockSearchResult,
    ChannelStats,
    SearchRequest,
    SyncChannelRequest,
    SyncProgress,
    SyncResult,
    SyncStage,
)
from app.schemas.usage import (
    CounterCheck,
    Identity,
    LargeChannelWarning,
    TierInfo,
    UsageCheck,
    UsageStats,
)

__all__ = [
    # Are.na
    "ArenaBlock",
    "ArenaChannel",
    "PROCESSABLE_CLASSES",
    # Sync
    "SyncStage",
    "SyncProgress",
    "SyncResult",
    "SyncChannelRequest",
    "SearchRequest",
    "BlockSearchResult",
    "ChannelStats",
    # Usage
    "Identity",
    "UsageCheck",
    "LargeChannelWarning",
    "CounterCheck",
    "TierInfo",
    "UsageStats",
]
