"""
Unit tests for transcript service.

These tests mock the YouTube Transcript API to avoid network calls.
"""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from youtube_transcript_api import NoTranscriptFound, TranscriptsDisabled

from app.services.transcript_service import NoTranscriptAvailable, TranscriptService


class MockTranscript:
    """Mock transcript track."""

    def __init__(self, language_code, is_generated=False, lines=None):
        self.language = f"Language-{language_code}"
        self.language_code = language_code
        self.is_generated = is_generated
        self._lines = lines if lines is not None else ["Hello", "[Music]", "world", "!"]

    def fetch(self):
        return [SimpleNamespace(text=line, start=float(i), duration=1.0) for i, line in enumerate(self._lines)]


class MockTranscriptList:
    """Mock transcript list."""

    def __init__(self, transcripts):
        self._transcripts = transcripts

    def __iter__(self):
        return iter(self._transcripts)

    def find_manually_created_transcript(self, language_codes):
        for transcript in self._transcripts:
            if not transcript.is_generated and transcript.language_code in language_codes:
                return transcript
        raise NoTranscriptFound("video_id", language_codes, None)

    def find_generated_transcript(self, language_codes):
        for transcript in self._transcripts:
            if transcript.is_generated and transcript.language_code in language_codes:
                return transcript
        raise NoTranscriptFound("video_id", language_codes, None)


def service_with(tracks) -> TranscriptService:
    api = MagicMock()
    api.list.return_value = MockTranscriptList(tracks)
    return TranscriptService(api=api, preferred_languages=["en"])


@pytest.mark.asyncio
class TestTranscriptService:
    """Track selection order."""

    async def test_manual_preferred_wins(self):
        service = service_with([
            MockTranscript("en", is_generated=True, lines=["auto"]),
            MockTranscript("en", lines=["manual"]),
        ])

        text, metadata = await service.get_transcript("vid")

        assert text == "manual"
        assert metadata == {"language": "en", "type": "manual", "video_id": "vid"}

    async def test_generated_preferred_before_manual_other_language(self):
        service = service_with([
            MockTranscript("de", lines=["deutsch"]),
            MockTranscript("en", is_generated=True, lines=["auto english"]),
        ])

        text, metadata = await service.get_transcript("vid")

        assert text == "auto english"
        assert metadata["type"] == "auto"

    async def test_any_language_fallback(self):
        service = service_with([MockTranscript("fr", lines=["bonjour"])])

        text, metadata = await service.get_transcript("vid")

        assert text == "bonjour"
        assert metadata["language"] == "fr"

    async def test_cleans_sound_tags(self):
        service = service_with([MockTranscript("en")])

        text, _ = await service.get_transcript("vid")

        assert text == "Hello world !"

    async def test_disabled_transcripts(self):
        api = MagicMock()
        api.list.side_effect = TranscriptsDisabled("vid")
        service = TranscriptService(api=api, preferred_languages=["en"])

        with pytest.raises(NoTranscriptAvailable):
            await service.get_transcript("vid")

    async def test_no_tracks(self):
        with pytest.raises(NoTranscriptAvailable):
            await service_with([]).get_transcript("vid")


class TestCleanTranscript:

    def test_strips_timestamps_and_entities(self):
        raw = "0:01 Tom &amp; Jerry   [Applause] said &#39;hi&#39;!!"
        assert TranscriptService.clean_transcript(raw) == "Tom & Jerry said 'hi'!"

    def test_requires_languages(self, monkeypatch):
        monkeypatch.setattr("app.services.transcript_service.settings.YOUTUBE_PREFERRED_TRANSCRIPT_LANGUAGES", [])
        with pytest.raises(ValueError):
            TranscriptService(api=MagicMock(), preferred_languages=[])
