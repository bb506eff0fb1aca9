from __future__ import annotations

import asyncio
import logging
from typing import Any

from notewise.app.ingestion.contracts import ChunkMetadata, DocumentChunk
from notewise.app.retrieval.embeddings import EmbeddingProvider
from notewise.app.retrieval.store import DocumentStore
from notewise.app.text.chunking import chunk_text
from notewise.core.config import PipelineSettings

LOGGER = logging.getLogger(__name__)


def build_chunks(
    *,
    job_id: str,
    user_id: str,
    filename: str,
    text: str,
    vectors: list[list[float]],
    pieces: list[str],
    step: int,
) -> list[DocumentChunk]:
    chunks: list[DocumentChunk] = []
    for index, content in enumerate(pieces, start=1):
        offset_start = (index - 1) * step
        vector = vectors[index - 1] if index - 1 < len(vectors) else []
        chunks.append(
            DocumentChunk(
                chunk_id=f"{job_id}-chunk-{index}",
                content=content,
                metadata=ChunkMetadata(
                    job_id=job_id,
                    source=filename,
                    page=index,
                    offset_start=offset_start,
                    offset_end=min(len(text), offset_start + len(content)),
                    user_id=user_id,
                ),
                embedding=tuple(float(value) for value in vector),
            )
        )
    return chunks


class DocumentIndexer:
    """Chunks, embeds and upserts one document into the shared store.

    Chunks already upserted stay in the store if a later step fails.
    """

    def __init__(
        self,
        *,
        embedding_provider: EmbeddingProvider,
        document_store: DocumentStore,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._document_store = document_store
        self._settings = settings or PipelineSettings()

    async def index(
        self,
        text: str,
        *,
        job_id: str,
        filename: str,
        user_id: str,
    ) -> dict[str, Any]:
        size = self._settings.rag_chunk_size
        overlap = self._settings.rag_chunk_overlap
        pieces = chunk_text(text, size, overlap)
        vectors = (
            await asyncio.to_thread(self._embedding_provider.embed_documents, pieces)
            if pieces
            else []
        )
        chunks = build_chunks(
            job_id=job_id,
            user_id=user_id,
            filename=filename,
            text=text,
            vectors=vectors,
            pieces=pieces,
            step=size - overlap,
        )
        await self._document_store.upsert_chunks(chunks)
        LOGGER.info(
            "Indexed document",
            extra={"job_id": job_id, "source": filename, "chunk_count": len(chunks)},
        )
        return {"fileName": filename}
