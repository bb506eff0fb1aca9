from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence

LOGGER = logging.getLogger(__name__)

Message = tuple[str, str]

TASK_SUMMARY = "summary"
TASK_CHUNK_SUMMARY = "chunk-summary"
TASK_QUIZ = "quiz"
TASK_CHAT = "chat"

_MATERIAL_PATTERN = re.compile(
    r"(?:Document|Content|Section Summaries|Document Sections|Context):\n"
    r"(?P<body>.*?)(?:\n\n(?:Respond in this|Question:)|\Z)",
    re.DOTALL,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


class TextGenerator:
    async def generate(self, messages: Sequence[Message]) -> object:
        raise NotImplementedError


class DeterministicTextGenerator(TextGenerator):
    """Offline generator that answers with well-formed JSON for each task.

    Used when no Google API key is configured so the queue and pipelines stay
    exercisable in development and tests.
    """

    def __init__(self, task: str) -> None:
        self._task = task

    async def generate(self, messages: Sequence[Message]) -> object:
        material = _material_from(messages)
        sentences = _sentences(material)
        if self._task == TASK_CHUNK_SUMMARY:
            return " ".join(sentences[:2]) or "Empty section."
        if self._task == TASK_SUMMARY:
            return json.dumps(_summary_payload(sentences))
        if self._task == TASK_QUIZ:
            return json.dumps(_quiz_payload(sentences))
        if self._task == TASK_CHAT:
            return sentences[0] if sentences else "I don't know"
        raise ValueError(f"Unsupported generation task: {self._task}")


class GeminiTextGenerator(TextGenerator):
    def __init__(self, *, api_key: str, model: str, temperature: float) -> None:
        from langchain_google_genai import ChatGoogleGenerativeAI

        self._model = ChatGoogleGenerativeAI(
            model=model,
            google_api_key=api_key,
            temperature=temperature,
            max_retries=1,
        )

    async def generate(self, messages: Sequence[Message]) -> object:
        return await self._model.ainvoke(list(messages))


def build_text_generator(
    *,
    task: str,
    api_key: str | None,
    model: str,
    temperature: float,
) -> TextGenerator:
    if not api_key:
        return DeterministicTextGenerator(task)
    try:
        return GeminiTextGenerator(
            api_key=api_key, model=model, temperature=temperature
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning(
            "Gemini generator unavailable; using deterministic generator",
            extra={"task": task, "model": model},
            exc_info=exc,
        )
        return DeterministicTextGenerator(task)


def _material_from(messages: Sequence[Message]) -> str:
    human = [content for role, content in messages if role == "human"]
    if not human:
        return ""
    text = human[-1]
    match = _MATERIAL_PATTERN.search(text)
    return match.group("body").strip() if match else text.strip()


def _sentences(text: str) -> list[str]:
    flattened = " ".join(text.split())
    return [part for part in _SENTENCE_SPLIT.split(flattened) if part]


def _summary_payload(sentences: list[str]) -> dict[str, object]:
    key_points = [sentence[:160] for sentence in sentences[:7]]
    while len(key_points) < 5:
        key_points.append(f"Additional detail {len(key_points) + 1} from the material.")
    return {
        "summary": " ".join(sentences[:3]) or "The document is empty.",
        "key_points": key_points,
    }


def _quiz_payload(sentences: list[str]) -> dict[str, object]:
    material = sentences or ["The material did not contain any sentences."]
    questions = []
    for index in range(5):
        statement = material[index % len(material)][:160]
        questions.append(
            {
                "id": index + 1,
                "question": f"Which statement is supported by the material? (#{index + 1})",
                "options": {
                    "A": statement,
                    "B": "The material contradicts this topic entirely.",
                    "C": "The material does not discuss this topic.",
                    "D": "None of the above.",
                },
                "correct_answer": "A",
                "explanation": f"The material states: {statement}",
            }
        )
    return {"questions": questions}
