from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

LOGGER = logging.getLogger(__name__)

_VIDEO_ID_PATTERNS = (
    re.compile(r"(?:youtube\.com/watch\?(?:[^#\s]*&)?v=|youtu\.be/)([^&\n?#/]+)"),
    re.compile(r"youtube\.com/embed/([^&\n?#/]+)"),
    re.compile(r"youtube\.com/v/([^&\n?#/]+)"),
    re.compile(r"youtube\.com/shorts/([^&\n?#/]+)"),
)


class InvalidVideoUrlError(Exception):
    pass


class TranscriptUnavailableError(Exception):
    pass


@dataclass(frozen=True)
class Transcript:
    video_id: str
    text: str


def extract_video_id(url: str) -> str | None:
    for pattern in _VIDEO_ID_PATTERNS:
        match = pattern.search(url)
        if match and match.group(1):
            return match.group(1)
    return None


class TranscriptFetcher:
    async def fetch(self, url: str) -> Transcript:
        raise NotImplementedError


class YouTubeTranscriptFetcher(TranscriptFetcher):
    def __init__(self, languages: tuple[str, ...] = ("en",)) -> None:
        self._languages = languages

    async def fetch(self, url: str) -> Transcript:
        video_id = extract_video_id(url)
        if not video_id:
            raise InvalidVideoUrlError(
                "Invalid YouTube URL format. Please use a valid YouTube link."
            )
        text = await asyncio.to_thread(self._fetch_text_sync, video_id)
        if not text.strip():
            raise TranscriptUnavailableError("Could not extract text from captions.")
        LOGGER.info(
            "Fetched YouTube transcript",
            extra={"video_id": video_id, "text_length": len(text)},
        )
        return Transcript(video_id=video_id, text=text)

    def _fetch_text_sync(self, video_id: str) -> str:
        from youtube_transcript_api import (
            CouldNotRetrieveTranscript,
            YouTubeTranscriptApi,
        )

        try:
            fetched = YouTubeTranscriptApi().fetch(video_id, languages=self._languages)
        except CouldNotRetrieveTranscript as exc:
            raise TranscriptUnavailableError(
                "This video does not have captions available. "
                "Please try a different video with captions enabled."
            ) from exc
        return " ".join(snippet.text for snippet in fetched)
