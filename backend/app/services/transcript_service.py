"""
YouTube transcript extraction with fallback strategies.

Caption tracks are tried in order:
1. Manual transcript in a preferred language
2. Auto-generated transcript in a preferred language
3. Manual transcript in any language
4. Auto-generated transcript in any language
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional, Tuple

from youtube_transcript_api import (
    CouldNotRetrieveTranscript,
    NoTranscriptFound,
    TranscriptsDisabled,
    VideoUnavailable,
    YouTubeTranscriptApi,
)

from app.core.config import settings
from app.services.extraction.results import Err, Ok, Result, run_chain

logger = logging.getLogger(__name__)


class TranscriptError(Exception):
    """Base exception for transcript-related errors."""
    pass


class NoTranscriptAvailable(TranscriptError):
    """Raised when no transcript is available for a video."""
    pass


class TranscriptService:
    """
    Fetches and cleans YouTube caption tracks.

    Example:
        >>> service = TranscriptService()
        >>> text, metadata = await service.get_transcript("dQw4w9WgXcQ")
        >>> print(f"Got {len(text)} chars in {metadata['language']}")
    """

    def __init__(
        self,
        api: Optional[YouTubeTranscriptApi] = None,
        preferred_languages: Optional[List[str]] = None,
    ):
        self.api = api or YouTubeTranscriptApi()
        self.preferred_languages = preferred_languages or settings.YOUTUBE_PREFERRED_TRANSCRIPT_LANGUAGES
        if not self.preferred_languages:
            raise ValueError("At least one preferred transcript language is required")

    async def get_transcript(self, video_id: str) -> Tuple[str, Dict]:
        """
        Get the best available transcript for a video.

        Returns:
            Tuple of (transcript_text, metadata) where metadata is
            {'language': str, 'type': 'manual' | 'auto', 'video_id': str}

        Raises:
            NoTranscriptAvailable: If the video has no usable caption track
            TranscriptError: If YouTube refused the request
        """
        try:
            transcript_list = await asyncio.to_thread(self.api.list, video_id)
        except (TranscriptsDisabled, NoTranscriptFound):
            raise NoTranscriptAvailable(f"Transcripts are disabled for video {video_id}")
        except VideoUnavailable:
            raise NoTranscriptAvailable(f"Video {video_id} is unavailable")
        except CouldNotRetrieveTranscript as e:
            logger.warning(f"Could not list transcripts for {video_id}: {type(e).__name__}")
            raise TranscriptError(f"Failed to list transcripts: {type(e).__name__}")

        languages = self.preferred_languages

        async def manual_preferred(tracks) -> Result:
            return await self._fetch_track(lambda: tracks.find_manually_created_transcript(languages))

        async def generated_preferred(tracks) -> Result:
            return await self._fetch_track(lambda: tracks.find_generated_transcript(languages))

        async def manual_any(tracks) -> Result:
            return await self._fetch_first(tracks, generated=False)

        async def generated_any(tracks) -> Result:
            return await self._fetch_first(tracks, generated=True)

        outcome = await run_chain(
            (manual_preferred, generated_preferred, manual_any, generated_any),
            transcript_list,
        )
        if not outcome.ok:
            raise NoTranscriptAvailable(
                f"No transcript available for video {video_id}: {'; '.join(outcome.errors)}"
            )

        text, transcript = outcome.value
        if transcript.language_code not in languages:
            logger.info(
                f"Using transcript in non-preferred language {transcript.language_code} "
                f"for video {video_id}"
            )

        return text, {
            "language": transcript.language_code,
            "type": "auto" if transcript.is_generated else "manual",
            "video_id": video_id,
        }

    async def _fetch_track(self, find) -> Result:
        try:
            transcript = find()
        except NoTranscriptFound:
            return Err("no matching track")
        return await self._fetch(transcript)

    async def _fetch_first(self, tracks, generated: bool) -> Result:
        for transcript in tracks:
            if transcript.is_generated == generated:
                return await self._fetch(transcript)
        return Err("no track of that kind")

    async def _fetch(self, transcript) -> Result:
        try:
            fetched = await asyncio.to_thread(transcript.fetch)
        except CouldNotRetrieveTranscript as e:
            return Err(f"fetch failed: {type(e).__name__}")

        text = self.clean_transcript(" ".join(snippet.text for snippet in fetched))
        if not text:
            return Err("empty transcript")
        return Ok((text, transcript))

    @staticmethod
    def clean_transcript(text: str) -> str:
        """
        Clean and normalize transcript text.

        Drops sound tags like [Music], timestamps and caption HTML entities,
        and collapses whitespace.
        """
        if not text:
            return ""

        text = re.sub(r"\[.*?\]", "", text)
        text = re.sub(r"\d{1,2}:\d{2}(?::\d{2})?", "", text)

        text = text.replace("&nbsp;", " ")
        text = text.replace("&amp;", "&")
        text = text.replace("&lt;", "<")
        text = text.replace("&gt;", ">")
        text = text.replace("&#39;", "'")

        text = re.sub(r"\s+", " ", text).strip()
        text = re.sub(r"([.!?])\1+", r"\1", text)

        return text
