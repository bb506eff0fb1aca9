from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from notewise.app.llm.executor import LlmTaskExecutor
from notewise.app.llm.parsing import (
    ResponseParseError,
    extract_json_payload,
    parse_json_object,
)
from notewise.app.text.chunking import chunk_text
from notewise.core.config import PipelineSettings

LOGGER = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are a professional summarizer. Always respond with ONLY valid JSON."
)
CHUNK_SYSTEM_PROMPT = "Summarize this section briefly in 2-3 sentences."
PARSE_FALLBACK_KEY_POINT = "Summary generated (parse fallback)"
AGGREGATE_FALLBACK_SUMMARY_CHARS = 1000
AGGREGATE_FALLBACK_KEY_POINTS = 5


class SummaryOutput(BaseModel):
    summary: str
    key_points: list[str]


def build_direct_prompt(text: str) -> str:
    return (
        "You are an expert document summarizer. Analyze the following document "
        "and provide:\n"
        "1. A concise summary (3-5 sentences)\n"
        "2. 5-7 key points as a bulleted list\n\n"
        f"Document:\n{text}\n\n"
        "Respond in this exact JSON format ONLY:\n"
        "{\n"
        '  "summary": "your summary here",\n'
        '  "key_points": ["point 1", "point 2", "point 3", "point 4", "point 5"]\n'
        "}"
    )


def build_aggregate_prompt(section_summaries: str) -> str:
    return (
        "Based on these section summaries, create:\n"
        "1. A comprehensive overall summary (3-5 sentences)\n"
        "2. 5-7 key points for the entire document\n\n"
        f"Section Summaries:\n{section_summaries}\n\n"
        "Respond in this exact JSON format ONLY:\n"
        "{\n"
        '  "summary": "comprehensive summary here",\n'
        '  "key_points": ["point 1", "point 2", ...]\n'
        "}"
    )


def parse_summary(reply: str) -> SummaryOutput:
    try:
        return SummaryOutput.model_validate(parse_json_object(reply))
    except ValidationError as exc:
        raise ResponseParseError(f"Summary reply has the wrong shape: {exc}") from exc


class SummarizerService:
    """Summary plus key points, directly for short text or via chunk-and-aggregate."""

    def __init__(
        self,
        *,
        executor: LlmTaskExecutor,
        chunk_executor: LlmTaskExecutor | None = None,
        settings: PipelineSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._executor = executor
        self._chunk_executor = chunk_executor or executor
        self._settings = settings or PipelineSettings()
        self._sleep = sleep

    async def summarize(self, text: str, *, filename: str) -> dict[str, Any]:
        text_length = len(text)
        if text_length < self._settings.summary_direct_threshold:
            output = await self._summarize_direct(text)
        else:
            output = await self._summarize_chunked(text)
        return {
            "summary": output.summary,
            "key_points": list(output.key_points),
            "fileName": filename,
            "textLength": text_length,
        }

    async def _summarize_direct(self, text: str) -> SummaryOutput:
        reply = await self._executor.run(
            system=SUMMARY_SYSTEM_PROMPT, prompt=build_direct_prompt(text)
        )
        try:
            return parse_summary(reply)
        except ResponseParseError as exc:
            LOGGER.warning("Summary reply was not valid JSON", exc_info=exc)
            return SummaryOutput(
                summary=extract_json_payload(reply),
                key_points=[PARSE_FALLBACK_KEY_POINT],
            )

    async def _summarize_chunked(self, text: str) -> SummaryOutput:
        settings = self._settings
        chunks = chunk_text(
            text, settings.summary_chunk_size, settings.summary_chunk_overlap
        )
        selected = chunks[: settings.summary_max_chunks]
        LOGGER.info(
            "Summarizing in chunks",
            extra={"chunk_count": len(chunks), "processed_chunks": len(selected)},
        )

        chunk_summaries: list[str] = []
        for index, chunk in enumerate(selected, start=1):
            try:
                summary = await self._chunk_executor.run(
                    system=CHUNK_SYSTEM_PROMPT,
                    prompt=chunk,
                    timeout_seconds=settings.summary_chunk_timeout_seconds,
                )
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning(
                    "Chunk summary failed",
                    extra={"chunk_index": index},
                    exc_info=exc,
                )
                chunk_summaries.append(f"[Error summarizing chunk {index}]")
                continue
            chunk_summaries.append(summary)
            if (
                settings.summary_pause_every > 0
                and index % settings.summary_pause_every == 0
                and index < len(selected)
                and settings.summary_pause_seconds > 0
            ):
                await self._sleep(settings.summary_pause_seconds)

        all_summaries = "\n\n".join(chunk_summaries)
        try:
            reply = await self._executor.run(
                system=SUMMARY_SYSTEM_PROMPT,
                prompt=build_aggregate_prompt(all_summaries),
                timeout_seconds=settings.summary_chunk_timeout_seconds,
            )
            return parse_summary(reply)
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("Summary aggregation failed", exc_info=exc)
            return SummaryOutput(
                summary=all_summaries[:AGGREGATE_FALLBACK_SUMMARY_CHARS],
                key_points=chunk_summaries[:AGGREGATE_FALLBACK_KEY_POINTS],
            )
