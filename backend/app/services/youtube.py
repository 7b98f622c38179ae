"""
YouTube Data API access for video blocks.

Wraps the YouTube Data API v3 video endpoint and the URL helpers the
extraction layer uses to recognise video links. The Google client is
synchronous, so every request runs in a worker thread.
"""

import asyncio
import logging
import re
from typing import Dict, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.core.config import settings

logger = logging.getLogger(__name__)


VIDEO_ID_PATTERN = re.compile(
    r"(?:youtube\.com\/watch\?v=|youtu\.be\/|youtube\.com\/embed\/|youtube\.com\/v\/|youtube\.com\/shorts\/)"
    r"([^&\n?#]+)"
)

YOUTUBE_URL_PATTERNS = [
    re.compile(r"youtube\.com\/watch\?v="),
    re.compile(r"youtu\.be\/"),
    re.compile(r"youtube\.com\/embed\/"),
    re.compile(r"youtube\.com\/v\/"),
    re.compile(r"youtube\.com\/shorts\/"),
    re.compile(r"m\.youtube\.com\/watch\?v="),
]

VIMEO_URL_PATTERNS = [
    re.compile(r"vimeo\.com\/"),
    re.compile(r"player\.vimeo\.com\/video\/"),
]


class YouTubeAPIError(Exception):
    """Base exception for YouTube API errors."""
    pass


class YouTubeQuotaExceededError(YouTubeAPIError):
    """Raised when YouTube API quota is exceeded."""
    pass


class YouTubeVideoNotFoundError(YouTubeAPIError):
    """Raised when a YouTube video is not found."""
    pass


class YouTubeService:
    """
    Video metadata lookups against YouTube Data API v3.

    Example:
        >>> youtube = YouTubeService(api_key="AIza...")
        >>> video = await youtube.get_video_details("dQw4w9WgXcQ")
        >>> video["title"], video["channel_title"]
    """

    def __init__(self, api_key: Optional[str] = None, client=None):
        """
        Initialize YouTube service with API key.

        Args:
            api_key: YouTube Data API key. If None, uses settings.YOUTUBE_API_KEY
            client: Prebuilt discovery client (tests pass a fake here)

        Raises:
            ValueError: If no API key is provided or found in settings
        """
        self.api_key = api_key or settings.YOUTUBE_API_KEY

        if not self.api_key and client is None:
            raise ValueError(
                "YouTube API key is required. Set YOUTUBE_API_KEY in environment variables."
            )

        self._youtube = client or self._build_client()

    def _build_client(self):
        try:
            youtube = build(
                "youtube",
                "v3",
                developerKey=self.api_key,
                cache_discovery=False,
            )
            logger.info("YouTube API client initialized successfully")
            return youtube
        except Exception as e:
            logger.error(f"Failed to initialize YouTube API client: {e}")
            raise YouTubeAPIError(f"Failed to initialize YouTube API: {e}")

    async def get_video_details(self, video_id: str) -> Dict:
        """
        Get title, channel, description and tags for one video.

        Args:
            video_id: YouTube video ID

        Returns:
            {
                'video_id': str,
                'title': str,
                'description': str,
                'channel_title': str,
                'published_at': str,
                'thumbnail_url': str,
                'tags': List[str]
            }

        Raises:
            YouTubeVideoNotFoundError: If video doesn't exist
            YouTubeQuotaExceededError: If API quota exceeded (or the key is rejected)
            YouTubeAPIError: For other API errors
        """
        try:
            response = await asyncio.to_thread(
                self._youtube.videos().list(part="snippet", id=video_id).execute
            )
        except HttpError as e:
            if e.resp.status == 403:
                raise YouTubeQuotaExceededError("YouTube API quota exceeded")
            elif e.resp.status == 404:
                raise YouTubeVideoNotFoundError(f"Video not found: {video_id}")
            else:
                logger.error(f"YouTube API error: {e}")
                raise YouTubeAPIError(f"YouTube API error: {e}")

        if not response.get("items"):
            raise YouTubeVideoNotFoundError(f"Video not found: {video_id}")

        return self._parse_video_details(response["items"][0])

    # ========================================
    # URL Helpers
    # ========================================

    @staticmethod
    def extract_video_id_from_url(url: str) -> Optional[str]:
        """
        Extract video ID from a YouTube URL.

        Supports watch, youtu.be, embed, /v/ and shorts URLs.

        Example:
            >>> YouTubeService.extract_video_id_from_url("https://youtu.be/dQw4w9WgXcQ?t=4")
            'dQw4w9WgXcQ'
        """
        if not url:
            return None
        match = VIDEO_ID_PATTERN.search(url)
        return match.group(1) if match else None

    @staticmethod
    def is_youtube_url(url: Optional[str]) -> bool:
        return bool(url) and any(pattern.search(url) for pattern in YOUTUBE_URL_PATTERNS)

    @staticmethod
    def is_vimeo_url(url: Optional[str]) -> bool:
        return bool(url) and any(pattern.search(url) for pattern in VIMEO_URL_PATTERNS)

    @classmethod
    def is_video_url(cls, url: Optional[str]) -> bool:
        return cls.is_youtube_url(url) or cls.is_vimeo_url(url)

    @staticmethod
    def thumbnail_url(video_id: str) -> str:
        """Static thumbnail YouTube serves for every public video."""
        return f"https://img.youtube.com/vi/{video_id}/hqdefault.jpg"

    @staticmethod
    def validate_video_id(video_id: str) -> bool:
        """
        Validate YouTube video ID format.

        Video IDs are 11 characters of letters, digits, hyphens and underscores.
        """
        if not video_id or len(video_id) != 11:
            return False
        return bool(re.match(r"^[a-zA-Z0-9_-]{11}$", video_id))

    def _parse_video_details(self, item: Dict) -> Dict:
        snippet = item.get("snippet", {})

        thumbnails = snippet.get("thumbnails", {})
        thumbnail_url = (
            thumbnails.get("maxres", {}).get("url") or
            thumbnails.get("high", {}).get("url") or
            thumbnails.get("medium", {}).get("url") or
            thumbnails.get("default", {}).get("url")
        )

        tags: List[str] = snippet.get("tags", []) or []

        return {
            "video_id": item.get("id"),
            "title": snippet.get("title", ""),
            "description": snippet.get("description", ""),
            "channel_title": snippet.get("channelTitle", ""),
            "published_at": snippet.get("publishedAt"),
            "thumbnail_url": thumbnail_url,
            "tags": tags,
        }
