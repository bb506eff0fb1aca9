from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RetrievalHit:
    chunk_id: str
    score: float
    content: str
    source: str
    page: int | None
