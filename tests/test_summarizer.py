import asyncio
from dataclasses import replace

import pytest

from notewise.app.llm.executor import LlmTaskExecutor
from notewise.app.llm.providers import (
    TASK_CHUNK_SUMMARY,
    TASK_SUMMARY,
    DeterministicTextGenerator,
    TextGenerator,
)
from notewise.app.summarizer.service import (
    PARSE_FALLBACK_KEY_POINT,
    SummarizerService,
)
from notewise.core.config import PipelineSettings

_SENTENCE = "Photosynthesis converts light energy into chemical energy stored in glucose. "


class _RecordingGenerator(TextGenerator):
    """Delegates to a deterministic generator, or to ``reply`` when given."""

    def __init__(self, task: str, reply=None) -> None:
        self._inner = DeterministicTextGenerator(task)
        self._reply = reply
        self.prompts: list[str] = []

    async def generate(self, messages):
        prompt = messages[-1][1]
        self.prompts.append(prompt)
        if self._reply is None:
            return await self._inner.generate(messages)
        reply = self._reply(len(self.prompts), prompt)
        if isinstance(reply, Exception):
            raise reply
        return reply


class _Sleeps:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _service(summary: _RecordingGenerator, chunk: _RecordingGenerator, sleeps=None):
    return SummarizerService(
        executor=LlmTaskExecutor(summary),
        chunk_executor=LlmTaskExecutor(chunk),
        settings=PipelineSettings(),
        sleep=sleeps or _Sleeps(),
    )


@pytest.mark.asyncio
async def test_short_text_is_summarized_in_one_call() -> None:
    summary = _RecordingGenerator(TASK_SUMMARY)
    chunk = _RecordingGenerator(TASK_CHUNK_SUMMARY)
    text = _SENTENCE * 10

    result = await _service(summary, chunk).summarize(text, filename="bio.pdf")

    assert len(summary.prompts) == 1
    assert chunk.prompts == []
    assert result["summary"]
    assert 5 <= len(result["key_points"]) <= 7
    assert result["fileName"] == "bio.pdf"
    assert result["textLength"] == len(text)


@pytest.mark.asyncio
async def test_unparseable_direct_reply_degrades_to_raw_text() -> None:
    summary = _RecordingGenerator(
        TASK_SUMMARY, reply=lambda *_: "Sorry, I cannot produce JSON today."
    )
    chunk = _RecordingGenerator(TASK_CHUNK_SUMMARY)

    result = await _service(summary, chunk).summarize("Short notes.", filename="n")

    assert result["summary"] == "Sorry, I cannot produce JSON today."
    assert result["key_points"] == [PARSE_FALLBACK_KEY_POINT]


@pytest.mark.asyncio
async def test_long_text_summarizes_first_ten_chunks_then_aggregates() -> None:
    summary = _RecordingGenerator(TASK_SUMMARY)
    chunk = _RecordingGenerator(TASK_CHUNK_SUMMARY)
    sleeps = _Sleeps()
    text = (_SENTENCE * 700)[:50_000]

    result = await _service(summary, chunk, sleeps).summarize(text, filename="long")

    assert len(chunk.prompts) == 10
    assert len(summary.prompts) == 1
    assert "Section Summaries:" in summary.prompts[0]
    assert sleeps.calls == [2.0, 2.0, 2.0]
    assert result["summary"]
    assert 5 <= len(result["key_points"]) <= 7
    assert result["textLength"] == 50_000


@pytest.mark.asyncio
async def test_failed_chunk_becomes_placeholder() -> None:
    def _flaky(call: int, prompt: str):
        if call == 2:
            return RuntimeError("quota exceeded")
        return f"Section {call} summary."

    summary = _RecordingGenerator(TASK_SUMMARY)
    chunk = _RecordingGenerator(TASK_CHUNK_SUMMARY, reply=_flaky)
    text = _SENTENCE * 200

    result = await _service(summary, chunk).summarize(text, filename="long")

    assert "[Error summarizing chunk 2]" in summary.prompts[0]
    assert "Section 1 summary." in summary.prompts[0]
    assert result["summary"]


@pytest.mark.asyncio
async def test_aggregation_failure_falls_back_to_chunk_summaries() -> None:
    summary = _RecordingGenerator(TASK_SUMMARY, reply=lambda *_: "no json at all")
    chunk = _RecordingGenerator(
        TASK_CHUNK_SUMMARY, reply=lambda call, _: f"Section {call} summary."
    )
    text = _SENTENCE * 200

    result = await _service(summary, chunk).summarize(text, filename="long")

    chunk_count = len(chunk.prompts)
    expected = [f"Section {call} summary." for call in range(1, chunk_count + 1)]
    assert result["summary"] == "\n\n".join(expected)[:1000]
    assert result["key_points"] == expected[:5]


class _StalledChunkGenerator(TextGenerator):
    """Answers every chunk except ``stall_on``, which never returns."""

    def __init__(self, stall_on: int) -> None:
        self._stall_on = stall_on
        self.calls = 0

    async def generate(self, messages):
        self.calls += 1
        if self.calls == self._stall_on:
            await asyncio.sleep(3600)
        return f"Section {self.calls} summary."


@pytest.mark.asyncio
async def test_timed_out_chunk_becomes_placeholder() -> None:
    summary = _RecordingGenerator(TASK_SUMMARY)
    chunk = _StalledChunkGenerator(stall_on=2)
    service = SummarizerService(
        executor=LlmTaskExecutor(summary),
        chunk_executor=LlmTaskExecutor(chunk),
        settings=replace(PipelineSettings(), summary_chunk_timeout_seconds=0.05),
        sleep=_Sleeps(),
    )

    result = await asyncio.wait_for(
        service.summarize(_SENTENCE * 200, filename="long"), timeout=10
    )

    aggregate_prompt = summary.prompts[0]
    assert "[Error summarizing chunk 2]" in aggregate_prompt
    assert "Section 1 summary." in aggregate_prompt
    assert "Section 3 summary." in aggregate_prompt
    assert result["summary"]
