"""
Tests for VideoExtractor and the YouTube URL helpers.

The Data API and transcript service are AsyncMocks; the watch page is
served by httpx.MockTransport.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.services.extraction.video import NO_TRANSCRIPT, NON_YOUTUBE_NOTE, VideoExtractor
from app.services.transcript_service import NoTranscriptAvailable
from app.services.youtube import YouTubeQuotaExceededError, YouTubeService

VIDEO_URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"

WATCH_PAGE = """
<html><head>
<title>Scraped Title - YouTube</title>
<meta property="og:title" content="Scraped Title">
<meta property="og:description" content="A description long enough to be included in the document.">
</head><body></body></html>
"""


def http_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def transcripts_returning(text=None, error=None):
    service = MagicMock()
    if error is not None:
        service.get_transcript = AsyncMock(side_effect=error)
    else:
        service.get_transcript = AsyncMock(return_value=(text, {"language": "en", "type": "manual"}))
    return service


# ========================================
# URL helpers
# ========================================

class TestYouTubeUrls:

    @pytest.mark.parametrize("url", [
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        "https://youtu.be/dQw4w9WgXcQ",
        "https://www.youtube.com/embed/dQw4w9WgXcQ",
        "https://www.youtube.com/shorts/dQw4w9WgXcQ",
        "https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=42s",
    ])
    def test_extract_video_id(self, url):
        assert YouTubeService.extract_video_id_from_url(url) == "dQw4w9WgXcQ"

    def test_video_url_detection(self):
        assert YouTubeService.is_video_url("https://vimeo.com/76979871")
        assert YouTubeService.is_video_url(VIDEO_URL)
        assert not YouTubeService.is_video_url("https://example.com/watch")
        assert not YouTubeService.is_video_url(None)

    def test_thumbnail_url(self):
        assert YouTubeService.thumbnail_url("abc") == "https://img.youtube.com/vi/abc/hqdefault.jpg"

    def test_service_requires_key_or_client(self, monkeypatch):
        monkeypatch.setattr("app.services.youtube.settings.YOUTUBE_API_KEY", None)
        with pytest.raises(ValueError):
            YouTubeService()


# ========================================
# VideoExtractor
# ========================================

@pytest.mark.asyncio
class TestVideoExtractor:

    async def test_data_api_and_transcript(self):
        youtube = MagicMock()
        youtube.get_video_details = AsyncMock(return_value={
            "title": "Never Gonna Give You Up",
            "description": "The official video for the 1987 single.",
            "channel_title": "Rick Astley",
            "tags": ["music", "80s"],
        })
        extractor = VideoExtractor(
            http_client(lambda r: httpx.Response(500)),
            youtube=youtube,
            transcripts=transcripts_returning("we're no strangers to love"),
        )

        video = await extractor.extract(VIDEO_URL)

        assert video.title == "Never Gonna Give You Up"
        assert video.has_transcript
        assert "Channel: Rick Astley" in video.content
        assert "Tags: music, 80s" in video.content
        assert "Transcript: we're no strangers to love" in video.content
        assert video.thumbnail_url == "https://img.youtube.com/vi/dQw4w9WgXcQ/hqdefault.jpg"

    async def test_scrape_fallback_when_data_api_fails(self):
        youtube = MagicMock()
        youtube.get_video_details = AsyncMock(side_effect=YouTubeQuotaExceededError("quota"))
        extractor = VideoExtractor(
            http_client(lambda r: httpx.Response(200, text=WATCH_PAGE)),
            youtube=youtube,
            transcripts=transcripts_returning(error=NoTranscriptAvailable("disabled")),
        )

        video = await extractor.extract(VIDEO_URL)

        assert video.title == "Scraped Title"
        assert not video.has_transcript
        assert NO_TRANSCRIPT in video.content
        assert "Description: A description long enough" in video.content
        assert any(error.startswith("data_api_metadata") for error in video.errors)

    async def test_without_data_api_key_scrapes_directly(self):
        extractor = VideoExtractor(
            http_client(lambda r: httpx.Response(200, text=WATCH_PAGE)),
            transcripts=transcripts_returning("hello"),
        )

        video = await extractor.extract(VIDEO_URL)

        assert video.title == "Scraped Title"
        assert video.errors == []

    async def test_placeholder_when_everything_fails(self):
        extractor = VideoExtractor(
            http_client(lambda r: httpx.Response(503)),
            transcripts=transcripts_returning(error=NoTranscriptAvailable("disabled")),
        )

        video = await extractor.extract(VIDEO_URL, fallback_title="My saved video")

        assert video.title == "My saved video"
        assert video.content.splitlines() == [
            "Title: YouTube Video (dQw4w9WgXcQ)",
            "Video ID: dQw4w9WgXcQ",
            f"Source: {VIDEO_URL}",
            "Content: YouTube API extraction failed",
        ]

    async def test_vimeo_uses_page_title(self):
        page = "<html><head><meta property='og:title' content='Vimeo Short'></head></html>"
        extractor = VideoExtractor(http_client(lambda r: httpx.Response(200, text=page)))

        video = await extractor.extract("https://vimeo.com/76979871")

        assert video.title == "Vimeo Short"
        assert NON_YOUTUBE_NOTE in video.content

    async def test_long_transcript_is_truncated(self):
        extractor = VideoExtractor(
            http_client(lambda r: httpx.Response(200, text=WATCH_PAGE)),
            transcripts=transcripts_returning("word " * 500),
            max_transcript_chars=100,
        )

        video = await extractor.extract(VIDEO_URL)

        transcript_line = next(line for line in video.content.splitlines() if line.startswith("Transcript:"))
        assert transcript_line.endswith("...")
        assert len(transcript_line) < 120
