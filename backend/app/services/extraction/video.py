"""
Video extraction for Media blocks and video links.

Metadata chain: YouTube Data API, then a scrape of the watch page's
og:title / <title>. The transcript comes from the caption tracks. The
extractor never comes back empty for a YouTube video: when every source
fails it still produces a minimal placeholder document so the block stays
searchable by its URL.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from bs4 import BeautifulSoup

from app.core.config import settings
from app.services.extraction.cleaning import clean_content
from app.services.extraction.results import ChainOutcome, Err, Ok, Result, run_chain
from app.services.transcript_service import TranscriptError, TranscriptService
from app.services.youtube import YouTubeAPIError, YouTubeService

logger = logging.getLogger(__name__)

NO_TRANSCRIPT = "Transcript: Not available (using description and metadata as content)"
NON_YOUTUBE_NOTE = "Video transcript unavailable (non-YouTube video)"


@dataclass
class VideoMetadata:
    video_id: Optional[str]
    title: str
    description: str = ""
    channel_title: str = ""
    tags: List[str] = field(default_factory=list)


@dataclass
class VideoContent:
    """What the router stores for a video block."""

    title: str
    content: str
    thumbnail_url: Optional[str] = None
    has_transcript: bool = False
    errors: List[str] = field(default_factory=list)


class VideoExtractor:
    """
    Builds a text document for a video URL.

    Both the Data API service and the transcript service are optional: a
    deployment without a YouTube key simply starts the metadata chain at the
    page scrape.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        youtube: Optional[YouTubeService] = None,
        transcripts: Optional[TranscriptService] = None,
        timeout: Optional[float] = None,
        max_transcript_chars: Optional[int] = None,
    ):
        self.http = http_client
        self.youtube = youtube
        self.transcripts = transcripts
        self.timeout = timeout if timeout is not None else settings.YOUTUBE_REQUEST_TIMEOUT
        self.max_transcript_chars = max_transcript_chars or settings.YOUTUBE_MAX_TRANSCRIPT_CHARS

    @staticmethod
    def is_video_url(url: Optional[str]) -> bool:
        return YouTubeService.is_video_url(url)

    async def extract(self, url: str, fallback_title: Optional[str] = None) -> VideoContent:
        if not YouTubeService.is_youtube_url(url):
            return await self._extract_other(url, fallback_title)

        video_id = YouTubeService.extract_video_id_from_url(url)
        if not video_id:
            return VideoContent(
                title=fallback_title or "YouTube Video",
                content=clean_content(f"Source: {url}\n{NON_YOUTUBE_NOTE}"),
                errors=["could not parse a video id from the URL"],
            )

        metadata = await run_chain(self._metadata_chain(), video_id)
        transcript = await self._transcript(video_id)
        errors = metadata.errors + transcript.errors

        if not metadata.ok and not transcript.ok:
            logger.warning(f"All extraction sources failed for video {video_id}")
            return VideoContent(
                title=fallback_title or f"YouTube Video ({video_id})",
                content="\n".join([
                    f"Title: YouTube Video ({video_id})",
                    f"Video ID: {video_id}",
                    f"Source: {url}",
                    "Content: YouTube API extraction failed",
                ]),
                thumbnail_url=YouTubeService.thumbnail_url(video_id),
                errors=errors,
            )

        info: VideoMetadata = metadata.value or VideoMetadata(
            video_id=video_id,
            title=fallback_title or f"YouTube Video ({video_id})",
        )

        return VideoContent(
            title=info.title or fallback_title or f"YouTube Video ({video_id})",
            content=self.format_content(info, url, transcript.value),
            thumbnail_url=YouTubeService.thumbnail_url(video_id),
            has_transcript=transcript.ok,
            errors=errors,
        )

    def _metadata_chain(self):
        chain = []
        if self.youtube is not None:
            chain.append(self.data_api_metadata)
        chain.append(self.scraped_metadata)
        return chain

    async def _transcript(self, video_id: str) -> ChainOutcome:
        if self.transcripts is None:
            return ChainOutcome(errors=["captions: transcript service not configured"])
        return await run_chain((self.captions,), video_id)

    # ========================================
    # Strategies
    # ========================================

    async def data_api_metadata(self, video_id: str) -> Result:
        try:
            details = await self.youtube.get_video_details(video_id)
        except YouTubeAPIError as e:
            return Err(f"{type(e).__name__}: {e}")

        if not details.get("title"):
            return Err("video has no title")

        return Ok(VideoMetadata(
            video_id=video_id,
            title=details["title"],
            description=details.get("description") or "",
            channel_title=details.get("channel_title") or "",
            tags=details.get("tags") or [],
        ))

    async def scraped_metadata(self, video_id: str) -> Result:
        """Read og:title / og:description from the public watch page."""
        try:
            response = await self.http.get(
                f"https://www.youtube.com/watch?v={video_id}",
                headers={"Accept-Language": "en-US,en;q=0.8"},
                timeout=self.timeout,
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            return Err(f"watch page request failed: {type(e).__name__}")

        title, description = self.parse_page_metadata(response.text)
        if not title:
            return Err("watch page has no title")

        return Ok(VideoMetadata(video_id=video_id, title=title, description=description))

    async def captions(self, video_id: str) -> Result:
        try:
            text, _ = await self.transcripts.get_transcript(video_id)
        except TranscriptError as e:
            return Err(str(e))
        return Ok(text)

    # ========================================
    # Formatting
    # ========================================

    @staticmethod
    def parse_page_metadata(html: str):
        soup = BeautifulSoup(html, "lxml")

        title = None
        og_title = soup.find("meta", property="og:title")
        if og_title and og_title.get("content"):
            title = og_title["content"].strip()
        elif soup.title and soup.title.string:
            title = re.sub(r"\s*-\s*YouTube\s*$", "", soup.title.string).strip()

        description = ""
        og_description = soup.find("meta", property="og:description")
        if og_description and og_description.get("content"):
            description = og_description["content"].strip()

        if title in ("", "YouTube"):
            title = None
        return title, description

    def format_content(self, info: VideoMetadata, url: str, transcript: Optional[str]) -> str:
        lines = [f"Title: {info.title}"]
        if info.channel_title:
            lines.append(f"Channel: {info.channel_title}")
        if info.video_id:
            lines.append(f"Video ID: {info.video_id}")
        lines.append(f"Source: {url}")
        lines.append("")

        if info.description and len(info.description) > 20:
            lines.append(f"Description: {info.description}")
            lines.append("")

        if info.tags:
            lines.append(f"Tags: {', '.join(info.tags)}")
            lines.append("")

        if transcript:
            if len(transcript) > self.max_transcript_chars:
                transcript = transcript[: self.max_transcript_chars] + "..."
            lines.append(f"Transcript: {transcript}")
        else:
            lines.append(NO_TRANSCRIPT)

        return clean_content("\n".join(lines))

    async def _extract_other(self, url: str, fallback_title: Optional[str]) -> VideoContent:
        """Vimeo and other players: page title plus a note that there is no transcript."""
        title = fallback_title
        errors: List[str] = []
        try:
            response = await self.http.get(url, timeout=self.timeout, follow_redirects=True)
            response.raise_for_status()
            scraped, _ = self.parse_page_metadata(response.text)
            title = title or scraped
        except httpx.HTTPError as e:
            errors.append(f"page request failed: {type(e).__name__}")

        title = title or "Video"
        return VideoContent(
            title=title,
            content=clean_content(f"Title: {title}\nSource: {url}\n{NON_YOUTUBE_NOTE}"),
            errors=errors,
        )
