from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from notewise.app.ingestion.parsers import ParsingError, parse_pdf_bytes
from notewise.app.jobs.contracts import (
    DocumentSource,
    JobSource,
    TextSource,
    VideoSource,
)
from notewise.app.sources.youtube import TranscriptFetcher

LOGGER = logging.getLogger(__name__)


class SourceResolutionError(Exception):
    pass


class DocumentFetcher:
    async def fetch(self, url: str) -> bytes:
        raise NotImplementedError


class HttpDocumentFetcher(DocumentFetcher):
    """Downloads remote documents over HTTP and reads ``file://`` uploads."""

    def __init__(self, timeout_seconds: float = 30.0) -> None:
        self._timeout_seconds = timeout_seconds

    async def fetch(self, url: str) -> bytes:
        parsed = urlparse(url)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
            try:
                return await asyncio.to_thread(path.read_bytes)
            except OSError as exc:
                raise SourceResolutionError(
                    f"Failed to read uploaded document: {exc}"
                ) from exc
        if parsed.scheme not in {"http", "https"}:
            raise SourceResolutionError(f"Unsupported document URL: {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_seconds, follow_redirects=True
            ) as client:
                response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SourceResolutionError(f"Failed to download PDF: {exc}") from exc
        return response.content


class DocumentSourceResolver:
    def __init__(
        self,
        *,
        document_fetcher: DocumentFetcher,
        transcript_fetcher: TranscriptFetcher | None = None,
    ) -> None:
        self._document_fetcher = document_fetcher
        self._transcript_fetcher = transcript_fetcher

    async def resolve(self, source: JobSource) -> str:
        if isinstance(source, TextSource):
            text = source.text
        elif isinstance(source, DocumentSource):
            text = await self._resolve_document(source.url)
        elif isinstance(source, VideoSource):
            text = await self._resolve_video(source)
        else:
            raise SourceResolutionError("No text, document or video source provided")

        if not text.strip():
            raise SourceResolutionError("Resolved source text is empty")
        return text

    async def _resolve_document(self, url: str) -> str:
        file_bytes = await self._document_fetcher.fetch(url)
        LOGGER.info(
            "Downloaded document", extra={"url": url, "size_bytes": len(file_bytes)}
        )
        try:
            return await asyncio.to_thread(parse_pdf_bytes, file_bytes)
        except ParsingError as exc:
            raise SourceResolutionError(str(exc)) from exc

    async def _resolve_video(self, source: VideoSource) -> str:
        if source.transcript:
            return source.transcript
        if self._transcript_fetcher is None:
            raise SourceResolutionError("Video source has no transcript")
        transcript = await self._transcript_fetcher.fetch(source.url)
        return transcript.text
