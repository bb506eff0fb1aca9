from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ChunkMetadata:
    """Where a chunk came from; ``page`` is the 1-based chunk position."""

    job_id: str
    source: str
    page: int
    offset_start: int
    offset_end: int
    user_id: str

    def as_row_metadata(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "source": self.source,
            "page": self.page,
            "loc": {"start": self.offset_start, "end": self.offset_end},
        }


@dataclass(frozen=True)
class DocumentChunk:
    chunk_id: str
    content: str
    metadata: ChunkMetadata
    embedding: tuple[float, ...]
