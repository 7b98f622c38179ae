"""
Normalized Are.na response shapes.

Raw Are.na JSON is parsed into these models inside ArenaClient and nothing
downstream reads raw JSON. The main quirk handled here: a block's source URL
arrives either as ``source_url`` or nested as ``source.url`` depending on the
endpoint and block class. ArenaBlock.source_url is always the one to read.
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


BlockClass = Literal["Link", "Image", "Media", "Attachment", "Text", "Channel"]

# Block classes the pipeline knows how to process, in detail-fetch order
PROCESSABLE_CLASSES: tuple[str, ...] = ("Link", "Image", "Media", "Attachment", "Text")


class ArenaUser(BaseModel):
    """Owner of a channel or block."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    username: Optional[str] = None
    full_name: Optional[str] = None


class ArenaImageVersion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None


class ArenaImage(BaseModel):
    """Image renditions Are.na generates for Image (and some Link/Media) blocks."""

    model_config = ConfigDict(extra="ignore")

    thumb: Optional[ArenaImageVersion] = None
    square: Optional[ArenaImageVersion] = None
    display: Optional[ArenaImageVersion] = None
    large: Optional[ArenaImageVersion] = None
    original: Optional[ArenaImageVersion] = None

    @property
    def thumbnail_url(self) -> Optional[str]:
        """Smallest rendition suitable for previews."""
        for version in (self.thumb, self.square, self.display):
            if version and version.url:
                return version.url
        return None

    @property
    def best_url(self) -> Optional[str]:
        """Largest rendition, used for vision analysis."""
        for version in (self.original, self.large, self.display, self.square, self.thumb):
            if version and version.url:
                return version.url
        return None


class ArenaProvider(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    url: Optional[str] = None


class ArenaSource(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
    title: Optional[str] = None
    provider: Optional[ArenaProvider] = None


class ArenaAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
    file_name: Optional[str] = None
    content_type: Optional[str] = None
    extension: Optional[str] = None


class ArenaEmbed(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: Optional[str] = None
    type: Optional[str] = None
    thumbnail_url: Optional[str] = None


class ArenaBlock(BaseModel):
    """
    One Are.na block in canonical shape.

    ``block_class`` is Are.na's ``class`` field (a Python keyword, hence the alias).
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    source_url: Optional[str] = None
    block_class: str = Field("Link", alias="class")
    image: Optional[ArenaImage] = None
    attachment: Optional[ArenaAttachment] = None
    embed: Optional[ArenaEmbed] = None
    source: Optional[ArenaSource] = None
    user: Optional[ArenaUser] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def normalize_source_url(cls, data: Any) -> Any:
        """Lift ``source.url`` into ``source_url`` when only the nested form is present."""
        if not isinstance(data, dict):
            return data
        if not data.get("source_url"):
            source = data.get("source") or {}
            if isinstance(source, dict) and source.get("url"):
                data = {**data, "source_url": source["url"]}
        return data

    @property
    def provider_name(self) -> Optional[str]:
        if self.source and self.source.provider:
            return self.source.provider.name
        return None

    @property
    def has_url(self) -> bool:
        return bool(self.source_url)

    @property
    def resource_url(self) -> Optional[str]:
        """URL the extractors should read: source URL, else attachment, else image."""
        if self.source_url:
            return self.source_url
        if self.attachment and self.attachment.url:
            return self.attachment.url
        if self.image:
            return self.image.best_url
        return None


class ArenaChannel(BaseModel):
    """Channel metadata from ``GET /channels/{slug}``."""

    model_config = ConfigDict(extra="ignore")

    id: int
    title: str
    slug: str
    description: Optional[str] = None
    length: int = 0
    status: Optional[str] = None
    user: Optional[ArenaUser] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def username(self) -> Optional[str]:
        return self.user.username if self.user else None


class ArenaContentsPage(BaseModel):
    """One page of ``GET /channels/{slug}/contents``."""

    model_config = ConfigDict(extra="ignore")

    contents: List[ArenaBlock] = Field(default_factory=list)
