"""
Content router: picks the extraction strategy for a block.

    Link        → video (YouTube / Vimeo URL) or document
    Image       → image analysis
    Media       → video, or document for non-video embeds
    Attachment  → document chain, "(PDF)" title suffix for PDFs
    Text        → the block's own text

extract() returns an ExtractionOutcome; ``processed`` is None when the block
cannot or should not be stored, and ``errors`` says why.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from app.models.content import BlockType
from app.schemas.arena import ArenaBlock
from app.services.extraction.cleaning import clean_content, is_pdf_url, title_from_url
from app.services.extraction.document import DocumentExtractor, guess_pdf_title
from app.services.extraction.image import ImageExtractor
from app.services.extraction.video import VideoExtractor
from app.services.youtube import YouTubeService

logger = logging.getLogger(__name__)


class ExtractionError(Exception):
    """Raised for block classes the router cannot handle."""
    pass


@dataclass
class ProcessedBlock:
    """A block with extracted content, ready for embedding and storage."""

    arena_id: int
    title: str
    content: str
    block_type: BlockType
    description: Optional[str] = None
    url: Optional[str] = None
    thumbnail_url: Optional[str] = None


@dataclass
class ExtractionOutcome:
    processed: Optional[ProcessedBlock] = None
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.processed is not None

    @property
    def content(self) -> Optional[str]:
        return self.processed.content if self.processed else None


class ContentExtractor:
    """
    Dispatches each block to its strategy.

    Example:
        >>> extractor = ContentExtractor(documents, videos, images)
        >>> outcome = await extractor.extract(block)
        >>> if outcome.ok:
        ...     await store.upsert_block(channel.id, outcome.processed, embedding)
    """

    def __init__(
        self,
        documents: DocumentExtractor,
        videos: VideoExtractor,
        images: ImageExtractor,
    ):
        self.documents = documents
        self.videos = videos
        self.images = images

    async def extract(self, block: ArenaBlock) -> ExtractionOutcome:
        handlers = {
            "Link": self._extract_link,
            "Media": self._extract_link,
            "Image": self._extract_image,
            "Attachment": self._extract_attachment,
            "Text": self._extract_text,
        }
        handler = handlers.get(block.block_class)
        if handler is None:
            raise ExtractionError(f"Unsupported block class: {block.block_class}")
        return await handler(block)

    # ========================================
    # Per-class Handlers
    # ========================================

    async def _extract_link(self, block: ArenaBlock) -> ExtractionOutcome:
        url = block.source_url
        if not url:
            return ExtractionOutcome(errors=["block has no source URL"])

        if self.videos.is_video_url(url):
            video = await self.videos.extract(url, fallback_title=block.title)
            return ExtractionOutcome(
                processed=ProcessedBlock(
                    arena_id=block.id,
                    title=video.title,
                    description=block.description,
                    content=video.content,
                    url=url,
                    thumbnail_url=select_thumbnail(block) or video.thumbnail_url,
                    block_type=BlockType.VIDEO,
                ),
                errors=video.errors,
            )

        outcome = await self.documents.extract(url)
        if not outcome.ok:
            return ExtractionOutcome(errors=outcome.errors)

        return ExtractionOutcome(
            processed=ProcessedBlock(
                arena_id=block.id,
                title=block.title or block.description or title_from_url(url),
                description=block.description,
                content=outcome.value,
                url=url,
                thumbnail_url=select_thumbnail(block),
                block_type=BlockType.DOCUMENT,
            ),
            errors=outcome.errors,
        )

    async def _extract_image(self, block: ArenaBlock) -> ExtractionOutcome:
        image_url = block.image.best_url if block.image else None
        image_url = image_url or block.source_url

        content, errors = await self.images.extract(image_url, block.title, block.description)

        return ExtractionOutcome(
            processed=ProcessedBlock(
                arena_id=block.id,
                title=block.title or "Untitled image",
                description=block.description,
                content=clean_content(content),
                url=block.source_url or image_url,
                thumbnail_url=select_thumbnail(block),
                block_type=BlockType.IMAGE,
            ),
            errors=errors,
        )

    async def _extract_attachment(self, block: ArenaBlock) -> ExtractionOutcome:
        url = block.resource_url
        if not url:
            return ExtractionOutcome(errors=["attachment has no URL"])

        outcome = await self.documents.extract(url)
        if not outcome.ok:
            return ExtractionOutcome(errors=outcome.errors)

        title = block.title or block.description or title_from_url(url)
        if is_pdf_url(url):
            title = guess_pdf_title(title)

        return ExtractionOutcome(
            processed=ProcessedBlock(
                arena_id=block.id,
                title=title,
                description=block.description,
                content=outcome.value,
                url=url,
                thumbnail_url=select_thumbnail(block),
                block_type=BlockType.ATTACHMENT,
            ),
            errors=outcome.errors,
        )

    async def _extract_text(self, block: ArenaBlock) -> ExtractionOutcome:
        content = clean_content(block.content or block.description)
        if not content:
            return ExtractionOutcome(errors=["text block is empty"])

        return ExtractionOutcome(
            processed=ProcessedBlock(
                arena_id=block.id,
                title=block.title or "Text note",
                description=block.description,
                content=content,
                url=None,
                block_type=BlockType.TEXT,
            )
        )


def select_thumbnail(block: ArenaBlock) -> Optional[str]:
    """
    Preview image for a block.

    Are.na renditions first (thumb → square → display), then the YouTube
    thumbnail for video links, then the embed's own thumbnail, then the
    attachment itself when it is an image.
    """
    if block.image and block.image.thumbnail_url:
        return block.image.thumbnail_url

    url = block.source_url
    if url and YouTubeService.is_youtube_url(url):
        video_id = YouTubeService.extract_video_id_from_url(url)
        if video_id:
            return YouTubeService.thumbnail_url(video_id)

    if block.embed and block.embed.thumbnail_url:
        return block.embed.thumbnail_url

    attachment = block.attachment
    if attachment and attachment.url and (attachment.content_type or "").startswith("image/"):
        return attachment.url

    return None
