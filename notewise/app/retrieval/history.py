from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

import httpx

from notewise.app.credits.ledger import parse_timestamp

RECENT_CHATS_LIMIT = 10


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ChatRecord:
    chat_id: str
    user_id: str
    question: str
    answer: str
    sources: tuple[dict[str, Any], ...]
    created_at: datetime


def new_chat_id() -> str:
    return f"chat-{uuid4().hex}"


class ChatHistoryStore:
    """Answered chat questions, looked up by id or listed per user."""

    async def save(
        self,
        *,
        user_id: str,
        question: str,
        answer: str,
        sources: list[dict[str, Any]],
    ) -> ChatRecord:
        raise NotImplementedError

    async def get(self, chat_id: str) -> ChatRecord | None:
        raise NotImplementedError

    async def recent(
        self, user_id: str, limit: int = RECENT_CHATS_LIMIT
    ) -> list[ChatRecord]:
        raise NotImplementedError


class InMemoryChatHistoryStore(ChatHistoryStore):
    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._records: list[ChatRecord] = []
        self._lock = asyncio.Lock()

    async def save(
        self,
        *,
        user_id: str,
        question: str,
        answer: str,
        sources: list[dict[str, Any]],
    ) -> ChatRecord:
        record = ChatRecord(
            chat_id=new_chat_id(),
            user_id=user_id,
            question=question,
            answer=answer,
            sources=tuple(dict(source) for source in sources),
            created_at=self._clock(),
        )
        async with self._lock:
            self._records.append(record)
        return record

    async def get(self, chat_id: str) -> ChatRecord | None:
        async with self._lock:
            for record in self._records:
                if record.chat_id == chat_id:
                    return record
        return None

    async def recent(
        self, user_id: str, limit: int = RECENT_CHATS_LIMIT
    ) -> list[ChatRecord]:
        async with self._lock:
            # Newest insert first so equal timestamps keep arrival order.
            owned = [r for r in reversed(self._records) if r.user_id == user_id]
        owned.sort(key=lambda record: record.created_at, reverse=True)
        return owned[:limit]


class SupabaseChatHistoryStore(ChatHistoryStore):
    """Rows in a ``chat_history`` table reached through PostgREST."""

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        table: str = "chat_history",
        clock: Callable[[], datetime] = utc_now,
        timeout_seconds: float = 20.0,
    ) -> None:
        self._table_url = f"{url.rstrip('/')}/rest/v1/{table}"
        self._service_key = service_key
        self._clock = clock
        self._timeout_seconds = timeout_seconds

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
            **extra,
        }

    async def save(
        self,
        *,
        user_id: str,
        question: str,
        answer: str,
        sources: list[dict[str, Any]],
    ) -> ChatRecord:
        record = ChatRecord(
            chat_id=new_chat_id(),
            user_id=user_id,
            question=question,
            answer=answer,
            sources=tuple(dict(source) for source in sources),
            created_at=self._clock(),
        )
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.post(
                self._table_url,
                headers=self._headers(Prefer="return=minimal"),
                json={
                    "id": record.chat_id,
                    "user_id": record.user_id,
                    "question": record.question,
                    "answer": record.answer,
                    "sources": list(record.sources),
                    "created_at": record.created_at.isoformat(),
                },
            )
        response.raise_for_status()
        return record

    async def get(self, chat_id: str) -> ChatRecord | None:
        rows = await self._select({"id": f"eq.{chat_id}", "select": "*"})
        return rows[0] if rows else None

    async def recent(
        self, user_id: str, limit: int = RECENT_CHATS_LIMIT
    ) -> list[ChatRecord]:
        return await self._select(
            {
                "user_id": f"eq.{user_id}",
                "select": "*",
                "order": "created_at.desc",
                "limit": str(limit),
            }
        )

    async def _select(self, params: dict[str, str]) -> list[ChatRecord]:
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            response = await client.get(
                self._table_url, headers=self._headers(), params=params
            )
        response.raise_for_status()
        rows = response.json()
        if not isinstance(rows, list):
            return []
        return [_record_from_row(row) for row in rows if isinstance(row, dict)]


def _record_from_row(row: dict[str, Any]) -> ChatRecord:
    raw_sources = row.get("sources")
    sources = (
        tuple(item for item in raw_sources if isinstance(item, dict))
        if isinstance(raw_sources, list)
        else ()
    )
    created_raw = row.get("created_at")
    created_at = (
        parse_timestamp(created_raw) if isinstance(created_raw, str) else utc_now()
    )
    return ChatRecord(
        chat_id=str(row.get("id")),
        user_id=str(row.get("user_id")),
        question=str(row.get("question") or ""),
        answer=str(row.get("answer") or ""),
        sources=sources,
        created_at=created_at,
    )


def build_chat_history_store(
    *, supabase_url: str | None, service_key: str | None
) -> ChatHistoryStore:
    if supabase_url and service_key:
        return SupabaseChatHistoryStore(url=supabase_url, service_key=service_key)
    return InMemoryChatHistoryStore()
