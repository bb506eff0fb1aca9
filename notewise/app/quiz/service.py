from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ValidationError

from notewise.app.llm.executor import LlmTaskExecutor
from notewise.app.llm.parsing import ResponseParseError, parse_json_object
from notewise.app.text.chunking import chunk_text
from notewise.core.config import PipelineSettings

LOGGER = logging.getLogger(__name__)

QUIZ_SYSTEM_PROMPT = (
    "You are a professional quiz creator. "
    "Always respond with ONLY valid JSON, no markdown."
)
SECTION_SEPARATOR = "\n\n[NEW SECTION]\n\n"
DEFAULT_QUIZ_FILENAME = "study-notes"

_QUESTION_FORMAT = (
    "{\n"
    '  "questions": [\n'
    "    {\n"
    '      "id": 1,\n'
    '      "question": "Question text here?",\n'
    '      "options": {\n'
    '        "A": "Option A text",\n'
    '        "B": "Option B text",\n'
    '        "C": "Option C text",\n'
    '        "D": "Option D text"\n'
    "      },\n"
    '      "correct_answer": "A",\n'
    '      "explanation": "Why A is correct..."\n'
    "    }\n"
    "  ]\n"
    "}"
)


class QuizOptions(BaseModel):
    A: str
    B: str
    C: str
    D: str


class QuizQuestion(BaseModel):
    id: int
    question: str
    options: QuizOptions
    correct_answer: Literal["A", "B", "C", "D"]
    explanation: str = ""


class QuizOutput(BaseModel):
    questions: list[QuizQuestion]


def build_direct_prompt(text: str) -> str:
    return (
        "You are an expert quiz creator. Based on the following content, create "
        "a comprehensive quiz with 5-7 questions.\n\n"
        "For each question:\n"
        "1. Create a clear, well-formulated question\n"
        "2. Provide 4 multiple choice options (A, B, C, D)\n"
        "3. Indicate which option is the correct answer\n"
        "4. Provide a brief explanation of why it's correct\n\n"
        f"Content:\n{text}\n\n"
        f"Respond in this EXACT JSON format ONLY:\n{_QUESTION_FORMAT}"
    )


def build_sections_prompt(sections: str) -> str:
    return (
        "You are an expert quiz creator. Based on the following document sections, "
        "create a quiz with 5-7 questions covering the main concepts.\n\n"
        "For each question, provide 4 multiple choice options (A, B, C, D) and "
        "mark the correct answer.\n\n"
        f"Document Sections:\n{sections}\n\n"
        f"Respond in this EXACT JSON format ONLY:\n{_QUESTION_FORMAT}"
    )


def parse_quiz(reply: str) -> QuizOutput:
    try:
        return QuizOutput.model_validate(parse_json_object(reply))
    except ValidationError as exc:
        raise ResponseParseError(f"Quiz reply has the wrong shape: {exc}") from exc


def degraded_question(question: str, explanation: str) -> QuizQuestion:
    return QuizQuestion(
        id=1,
        question=question,
        options=QuizOptions(A="A", B="B", C="C", D="D"),
        correct_answer="A",
        explanation=explanation,
    )


class QuizService:
    def __init__(
        self,
        *,
        executor: LlmTaskExecutor,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._executor = executor
        self._settings = settings or PipelineSettings()

    async def generate(self, text: str, *, filename: str | None) -> dict[str, Any]:
        settings = self._settings
        if len(text) < settings.quiz_direct_threshold:
            prompt = build_direct_prompt(text)
            fallback_question = "Could not parse quiz questions. Please try again."
            fallback_prefix = "Error in parsing: "
            degrade_call_failures = False
        else:
            chunks = chunk_text(
                text, settings.quiz_chunk_size, settings.quiz_chunk_overlap
            )
            LOGGER.info(
                "Generating quiz from leading sections",
                extra={
                    "chunk_count": len(chunks),
                    "sections_used": min(len(chunks), settings.quiz_max_chunks),
                },
            )
            prompt = build_sections_prompt(
                SECTION_SEPARATOR.join(chunks[: settings.quiz_max_chunks])
            )
            fallback_question = (
                "Quiz generation failed for large document. "
                "Try with a smaller input."
            )
            fallback_prefix = "Error: "
            degrade_call_failures = True

        try:
            reply = await self._executor.run(system=QUIZ_SYSTEM_PROMPT, prompt=prompt)
        except Exception as exc:  # noqa: BLE001
            if not degrade_call_failures:
                raise
            LOGGER.warning("Large document quiz generation failed", exc_info=exc)
            return _quiz_result(
                [degraded_question(fallback_question, f"{fallback_prefix}{exc}")],
                filename,
            )

        try:
            questions = parse_quiz(reply).questions
        except ResponseParseError as exc:
            LOGGER.warning(
                "Quiz reply was not valid JSON",
                extra={"reply_preview": reply[:500]},
                exc_info=exc,
            )
            questions = [degraded_question(fallback_question, f"{fallback_prefix}{exc}")]

        return _quiz_result(questions, filename)


def _quiz_result(questions: list[QuizQuestion], filename: str | None) -> dict[str, Any]:
    return {
        "questions": [question.model_dump() for question in questions],
        "fileName": filename or DEFAULT_QUIZ_FILENAME,
        "totalQuestions": len(questions),
    }
