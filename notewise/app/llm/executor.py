from __future__ import annotations

import asyncio

from notewise.app.llm.parsing import coerce_reply_text
from notewise.app.llm.providers import TextGenerator


class GenerationTimeoutError(Exception):
    pass


class LlmTaskExecutor:
    """Single request/response call to a text generator, bounded by a timeout."""

    def __init__(
        self,
        generator: TextGenerator,
        *,
        default_timeout_seconds: float | None = None,
    ) -> None:
        self._generator = generator
        self._default_timeout_seconds = default_timeout_seconds

    async def run(
        self,
        *,
        system: str,
        prompt: str,
        timeout_seconds: float | None = None,
    ) -> str:
        timeout = (
            timeout_seconds
            if timeout_seconds is not None
            else self._default_timeout_seconds
        )
        call = self._generator.generate([("system", system), ("human", prompt)])
        if timeout is None or timeout <= 0:
            reply = await call
        else:
            try:
                reply = await asyncio.wait_for(call, timeout=timeout)
            except asyncio.TimeoutError as exc:
                raise GenerationTimeoutError(
                    f"Generation timed out after {timeout:g}s"
                ) from exc
        return coerce_reply_text(reply)
