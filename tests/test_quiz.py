import pytest

from notewise.app.llm.executor import LlmTaskExecutor
from notewise.app.llm.providers import TASK_QUIZ, DeterministicTextGenerator, TextGenerator
from notewise.app.quiz.service import SECTION_SEPARATOR, QuizService
from notewise.core.config import PipelineSettings

_PHOTOSYNTHESIS = (
    "Photosynthesis is the process plants use to convert light into chemical energy. "
    "It takes place in the chloroplasts of leaf cells. "
    "Chlorophyll absorbs mostly blue and red light. "
    "The light reactions split water and release oxygen. "
    "The Calvin cycle fixes carbon dioxide into sugars. "
    "Glucose produced this way fuels plant growth."
)


class _ScriptedGenerator(TextGenerator):
    def __init__(self, reply: str | None = None) -> None:
        self._inner = DeterministicTextGenerator(TASK_QUIZ)
        self._reply = reply
        self.prompts: list[str] = []

    async def generate(self, messages):
        self.prompts.append(messages[-1][1])
        if self._reply is None:
            return await self._inner.generate(messages)
        return self._reply


def _service(generator: TextGenerator) -> QuizService:
    return QuizService(executor=LlmTaskExecutor(generator), settings=PipelineSettings())


@pytest.mark.asyncio
async def test_short_text_produces_well_formed_questions() -> None:
    result = await _service(_ScriptedGenerator()).generate(
        _PHOTOSYNTHESIS, filename=None
    )

    questions = result["questions"]
    assert 5 <= len(questions) <= 7
    assert result["totalQuestions"] == len(questions)
    assert result["fileName"] == "study-notes"
    for question in questions:
        assert set(question["options"]) == {"A", "B", "C", "D"}
        assert question["correct_answer"] in {"A", "B", "C", "D"}
        assert question["question"]


@pytest.mark.asyncio
async def test_large_text_uses_first_three_sections() -> None:
    generator = _ScriptedGenerator()
    text = "".join(f"{index:06d} " + "x" * 993 for index in range(40))

    result = await _service(generator).generate(text, filename="big.pdf")

    prompt = generator.prompts[0]
    assert prompt.count(SECTION_SEPARATOR) == 2
    assert "Document Sections:" in prompt
    assert text[:7000] in prompt
    assert text[-1000:] not in prompt
    assert result["fileName"] == "big.pdf"


@pytest.mark.asyncio
async def test_fenced_reply_is_parsed() -> None:
    reply = (
        "```json\n"
        '{"questions": [{"id": 1, "question": "Where does photosynthesis occur?", '
        '"options": {"A": "Chloroplasts", "B": "Nucleus", "C": "Roots", "D": "Xylem"}, '
        '"correct_answer": "A", "explanation": "Chloroplasts hold chlorophyll."}]}\n'
        "```"
    )

    result = await _service(_ScriptedGenerator(reply)).generate(
        _PHOTOSYNTHESIS, filename="bio"
    )

    assert result["totalQuestions"] == 1
    assert result["questions"][0]["options"]["A"] == "Chloroplasts"


@pytest.mark.asyncio
async def test_unparseable_reply_degrades_to_single_question() -> None:
    result = await _service(_ScriptedGenerator("I'd rather not.")).generate(
        _PHOTOSYNTHESIS, filename="bio"
    )

    assert result["totalQuestions"] == 1
    question = result["questions"][0]
    assert question["question"] == "Could not parse quiz questions. Please try again."
    assert question["options"] == {"A": "A", "B": "B", "C": "C", "D": "D"}
    assert question["correct_answer"] == "A"
    assert question["explanation"].startswith("Error in parsing: ")


@pytest.mark.asyncio
async def test_wrong_answer_letter_degrades_large_document_quiz() -> None:
    reply = (
        '{"questions": [{"id": 1, "question": "Q?", '
        '"options": {"A": "a", "B": "b", "C": "c", "D": "d"}, '
        '"correct_answer": "E"}]}'
    )

    result = await _service(_ScriptedGenerator(reply)).generate(
        "y" * 20_000, filename="big"
    )

    question = result["questions"][0]
    assert question["question"].startswith("Quiz generation failed for large document")
    assert question["explanation"].startswith("Error: ")


class _FailingGenerator(TextGenerator):
    def __init__(self, error: Exception) -> None:
        self._error = error

    async def generate(self, messages):
        raise self._error


@pytest.mark.asyncio
async def test_model_failure_degrades_large_document_quiz() -> None:
    service = _service(_FailingGenerator(RuntimeError("upstream 503")))

    result = await service.generate("y" * 20_000, filename="big")

    assert result["totalQuestions"] == 1
    question = result["questions"][0]
    assert question["question"] == (
        "Quiz generation failed for large document. Try with a smaller input."
    )
    assert question["explanation"] == "Error: upstream 503"
    assert result["fileName"] == "big"


@pytest.mark.asyncio
async def test_model_failure_on_short_text_propagates() -> None:
    service = _service(_FailingGenerator(RuntimeError("upstream 503")))

    with pytest.raises(RuntimeError, match="upstream 503"):
        await service.generate(_PHOTOSYNTHESIS, filename="bio")
