import json

import pytest

from notewise.app.llm.parsing import (
    ResponseParseError,
    coerce_reply_text,
    extract_json_payload,
    parse_json_object,
)


class _Message:
    def __init__(self, content: object) -> None:
        self.content = content


def test_extracts_object_from_fenced_reply() -> None:
    reply = '```json\n{"summary": "Short.", "key_points": ["a"]}\n```'

    payload = extract_json_payload(reply)

    assert json.loads(payload) == {"summary": "Short.", "key_points": ["a"]}


def test_extracts_object_after_leading_prose() -> None:
    reply = 'Sure! Here is the quiz you asked for:\n{"questions": []}\nHope it helps.'

    assert json.loads(extract_json_payload(reply)) == {"questions": []}


def test_braces_inside_strings_do_not_break_extraction() -> None:
    reply = 'Result: {"summary": "use {curly} braces } carefully", "key_points": []} trailing }'

    parsed = json.loads(extract_json_payload(reply))

    assert parsed["summary"] == "use {curly} braces } carefully"


def test_skips_prose_braces_that_are_not_json() -> None:
    reply = 'Format {like this} is ignored. {"summary": "ok", "key_points": []}'

    assert parse_json_object(reply)["summary"] == "ok"


def test_garbage_is_returned_cleaned_without_raising() -> None:
    assert extract_json_payload("  not json at all  ") == "not json at all"


def test_parse_json_object_raises_for_garbage() -> None:
    with pytest.raises(ResponseParseError):
        parse_json_object("the model refused to answer")


def test_parse_json_object_rejects_non_object_json() -> None:
    with pytest.raises(ResponseParseError):
        parse_json_object("[1, 2, 3]")


def test_coerces_message_objects_and_lists() -> None:
    assert coerce_reply_text(_Message("hello")) == "hello"
    assert coerce_reply_text([_Message("a"), {"content": "b"}]) == "a\nb"
    assert coerce_reply_text(None) == ""


def test_coerces_gemini_part_lists() -> None:
    reply = _Message([{"type": "text", "text": '{"a": '}, {"type": "text", "text": "1}"}])

    assert parse_json_object(reply) == {"a": 1}
