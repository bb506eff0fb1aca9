from __future__ import annotations

import json
import re
from collections.abc import Iterator
from typing import Any

_FENCE_PATTERN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*|\s*```\s*$")
_GREEDY_OBJECT_PATTERN = re.compile(r"{[\s\S]*}")


class ResponseParseError(Exception):
    pass


def coerce_reply_text(reply: Any) -> str:
    if reply is None:
        return ""
    if isinstance(reply, str):
        return reply
    if isinstance(reply, (list, tuple)):
        return "\n".join(_content_of(item) for item in reply)
    return _content_of(reply)


def _content_of(item: Any) -> str:
    if isinstance(item, str):
        return item
    if isinstance(item, dict):
        content = item.get("content")
    else:
        content = getattr(item, "content", None)
    if content is None:
        return "" if item is None else str(item)
    if isinstance(content, list):
        # Gemini may return content as a list of typed parts.
        parts = []
        for part in content:
            if isinstance(part, dict):
                parts.append(str(part.get("text", "")))
            else:
                parts.append(str(part))
        return "".join(parts)
    return str(content)


def strip_code_fences(text: str) -> str:
    cleaned = _FENCE_PATTERN.sub("", text.strip())
    return cleaned.strip("`").strip()


def _balanced_object_spans(text: str) -> Iterator[str]:
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break
        start = text.find("{", start + 1)


def _decodes_to_object(candidate: str) -> bool:
    try:
        return isinstance(json.loads(candidate), dict)
    except json.JSONDecodeError:
        return False


def extract_json_payload(reply: Any) -> str:
    """Best-effort extraction of a JSON object from a model reply.

    Never raises; callers decide what to do when the result does not parse.
    """
    cleaned = strip_code_fences(coerce_reply_text(reply))
    first_span = None
    for span in _balanced_object_spans(cleaned):
        if first_span is None:
            first_span = span
        if _decodes_to_object(span):
            return span
    if first_span is not None:
        return first_span
    match = _GREEDY_OBJECT_PATTERN.search(cleaned)
    if match:
        return match.group(0)
    return cleaned


def parse_json_object(reply: Any) -> dict[str, Any]:
    payload = extract_json_payload(reply)
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ResponseParseError(f"Model reply is not valid JSON: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise ResponseParseError("Model reply is not a JSON object")
    return parsed
