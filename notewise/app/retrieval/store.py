from __future__ import annotations

import asyncio
import math
from collections.abc import Sequence

import httpx

from notewise.app.ingestion.contracts import DocumentChunk
from notewise.app.retrieval.contracts import RetrievalHit


class DocumentStore:
    """One shared collection of embedded chunks, queried by similarity."""

    async def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        raise NotImplementedError

    async def match_chunks(
        self, query_embedding: list[float], match_count: int
    ) -> list[RetrievalHit]:
        raise NotImplementedError


def _cosine(left: Sequence[float], right: Sequence[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    left_norm = math.sqrt(sum(a * a for a in left))
    right_norm = math.sqrt(sum(b * b for b in right))
    if not left_norm or not right_norm:
        return 0.0
    return dot / (left_norm * right_norm)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self) -> None:
        self._chunks: dict[str, DocumentChunk] = {}
        self._lock = asyncio.Lock()

    @property
    def chunks(self) -> list[DocumentChunk]:
        return list(self._chunks.values())

    async def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        async with self._lock:
            for chunk in chunks:
                self._chunks[chunk.chunk_id] = chunk

    async def match_chunks(
        self, query_embedding: list[float], match_count: int
    ) -> list[RetrievalHit]:
        async with self._lock:
            scored = [
                (_cosine(query_embedding, chunk.embedding), chunk)
                for chunk in self._chunks.values()
            ]
        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            RetrievalHit(
                chunk_id=chunk.chunk_id,
                score=score,
                content=chunk.content,
                source=chunk.metadata.source,
                page=chunk.metadata.page,
            )
            for score, chunk in scored[:match_count]
        ]


def _vector_literal(values: Sequence[float]) -> str:
    return "[" + ",".join(f"{value:.8f}" for value in values) + "]"


class SupabaseDocumentStore(DocumentStore):
    """pgvector-backed store reached through PostgREST RPCs.

    Rows are written with the service-role key, so every indexed document lands
    in the same collection regardless of uploader.
    """

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        timeout_seconds: float = 20.0,
    ) -> None:
        self._rpc_url = f"{url.rstrip('/')}/rest/v1/rpc"
        self._service_key = service_key
        self._timeout_seconds = timeout_seconds

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
        }

    async def upsert_chunks(self, chunks: Sequence[DocumentChunk]) -> None:
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            for chunk in chunks:
                response = await client.post(
                    f"{self._rpc_url}/upsert_embedding_chunk",
                    headers=self._headers(),
                    json={
                        "p_id": chunk.chunk_id,
                        "p_user_id": chunk.metadata.user_id,
                        "p_source": chunk.metadata.source,
                        "p_chunk_id": chunk.chunk_id,
                        "p_content": chunk.content,
                        "p_metadata": chunk.metadata.as_row_metadata(),
                        "p_embedding": _vector_literal(chunk.embedding),
                    },
                )
                response.raise_for_status()

    async def match_chunks(
        self, query_embedding: list[float], match_count: int
    ) -> list[RetrievalHit]:
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.post(
                f"{self._rpc_url}/match_embeddings",
                headers=self._headers(),
                json={
                    "query_embedding": _vector_literal(query_embedding),
                    "match_count": match_count,
                    "match_threshold": 0.0,
                },
            )
        response.raise_for_status()
        rows = response.json()
        if not isinstance(rows, list):
            return []

        hits: list[RetrievalHit] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            chunk_id = row.get("chunk_id")
            content = row.get("content")
            source = row.get("source")
            similarity = row.get("similarity")
            if not isinstance(chunk_id, str) or not isinstance(content, str):
                continue
            if not isinstance(source, str) or not isinstance(similarity, (int, float)):
                continue
            metadata = row.get("metadata")
            page = metadata.get("page") if isinstance(metadata, dict) else None
            hits.append(
                RetrievalHit(
                    chunk_id=chunk_id,
                    score=float(similarity),
                    content=content,
                    source=source,
                    page=page if isinstance(page, int) else None,
                )
            )
        return hits


def build_document_store(
    *, supabase_url: str | None, service_key: str | None
) -> DocumentStore:
    if supabase_url and service_key:
        return SupabaseDocumentStore(url=supabase_url, service_key=service_key)
    return InMemoryDocumentStore()
