from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from notewise.app.llm.executor import LlmTaskExecutor
from notewise.app.retrieval.contracts import RetrievalHit
from notewise.app.retrieval.embeddings import EmbeddingProvider
from notewise.app.retrieval.store import DocumentStore

LOGGER = logging.getLogger(__name__)

CHAT_SYSTEM_PROMPT = (
    "Answer strictly using the given context below. "
    "If not in context, say 'I don't know'."
)
DEFAULT_TOP_K = 3


@dataclass(frozen=True)
class ChatAnswer:
    answer: str
    sources: tuple[RetrievalHit, ...]


class ChatService:
    """Answers a question from the top matching chunks of every indexed document."""

    def __init__(
        self,
        *,
        embedding_provider: EmbeddingProvider,
        document_store: DocumentStore,
        executor: LlmTaskExecutor,
        top_k: int = DEFAULT_TOP_K,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._document_store = document_store
        self._executor = executor
        self._top_k = top_k

    async def answer(self, question: str) -> ChatAnswer:
        query_embedding = await asyncio.to_thread(
            self._embedding_provider.embed_query, question
        )
        hits = await self._document_store.match_chunks(query_embedding, self._top_k)
        context = "\n\n".join(hit.content for hit in hits)
        reply = await self._executor.run(
            system=CHAT_SYSTEM_PROMPT,
            prompt=f"Context:\n{context}\n\nQuestion: {question}",
        )
        LOGGER.info(
            "Answered chat question",
            extra={"hit_count": len(hits), "answer_length": len(reply)},
        )
        return ChatAnswer(answer=reply.strip(), sources=tuple(hits))
