from __future__ import annotations

import hashlib
import logging

LOGGER = logging.getLogger(__name__)


class EmbeddingProvider:
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise NotImplementedError

    def embed_query(self, text: str) -> list[float]:
        raise NotImplementedError


class DeterministicEmbeddingProvider(EmbeddingProvider):
    """Hash-derived vectors; identical text always maps to the identical vector."""

    def __init__(self, dimensions: int) -> None:
        self._dimensions = dimensions

    def _hash_vector(self, text: str) -> list[float]:
        required_bytes = max(self._dimensions * 2, 64)
        digest_source = b""
        seed = text.encode("utf-8")
        while len(digest_source) < required_bytes:
            seed = hashlib.sha256(seed).digest()
            digest_source += seed
        return [value / 255.0 for value in digest_source[: self._dimensions]]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._hash_vector(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        return self._hash_vector(text)


class GoogleGenerativeAIEmbeddingProvider(EmbeddingProvider):
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        dimensions: int,
    ) -> None:
        from langchain_google_genai import GoogleGenerativeAIEmbeddings

        self._dimensions = dimensions
        self._embeddings = GoogleGenerativeAIEmbeddings(
            model=model,
            google_api_key=api_key,
        )

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        rows = self._embeddings.embed_documents(
            texts,
            task_type="RETRIEVAL_DOCUMENT",
            output_dimensionality=self._dimensions,
        )
        return [list(row) for row in rows]

    def embed_query(self, text: str) -> list[float]:
        return list(
            self._embeddings.embed_query(
                text,
                task_type="RETRIEVAL_QUERY",
                output_dimensionality=self._dimensions,
            )
        )


def build_embedding_provider(
    *,
    backend: str,
    api_key: str | None,
    model: str,
    dimensions: int,
) -> EmbeddingProvider:
    if backend != "google" or not api_key:
        return DeterministicEmbeddingProvider(dimensions=dimensions)

    try:
        return GoogleGenerativeAIEmbeddingProvider(
            api_key=api_key,
            model=model,
            dimensions=dimensions,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.warning(
            "Google embeddings unavailable; using deterministic embeddings",
            extra={"model": model},
            exc_info=exc,
        )
        return DeterministicEmbeddingProvider(dimensions=dimensions)
