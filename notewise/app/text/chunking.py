from __future__ import annotations


def chunk_text(text: str, size: int, overlap: int) -> list[str]:
    """Split ``text`` into windows of ``size`` characters.

    Each window starts ``size - overlap`` characters after the previous one and
    the walk stops at the first window that reaches the end of the text, so
    every chunk but the last is exactly ``size`` long.
    """
    if size <= 0:
        raise ValueError("chunk size must be positive")
    if overlap < 0 or overlap >= size:
        raise ValueError("chunk overlap must be in [0, size)")

    chunks: list[str] = []
    step = size - overlap
    cursor = 0
    while cursor < len(text):
        end = min(len(text), cursor + size)
        chunks.append(text[cursor:end])
        if end == len(text):
            break
        cursor += step
    return chunks
