from datetime import datetime, timedelta, timezone

import pytest

from notewise.app.retrieval.history import (
    InMemoryChatHistoryStore,
    SupabaseChatHistoryStore,
    _record_from_row,
    build_chat_history_store,
)


class _Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


@pytest.mark.asyncio
async def test_saved_chat_is_found_by_id() -> None:
    store = InMemoryChatHistoryStore()

    record = await store.save(
        user_id="user-1",
        question="What do ribosomes do?",
        answer="They build proteins.",
        sources=[{"content": "Ribosomes build proteins.", "source": "cells.pdf"}],
    )

    found = await store.get(record.chat_id)
    assert found == record
    assert found.sources[0]["source"] == "cells.pdf"
    assert await store.get("chat-missing") is None


@pytest.mark.asyncio
async def test_recent_chats_are_newest_first_and_capped() -> None:
    store = InMemoryChatHistoryStore(
        clock=_Clock(datetime(2026, 3, 1, tzinfo=timezone.utc))
    )
    for index in range(12):
        await store.save(
            user_id="user-1", question=f"Question {index}", answer="a", sources=[]
        )
    await store.save(user_id="user-2", question="Other user", answer="a", sources=[])

    recent = await store.recent("user-1")

    assert [record.question for record in recent] == [
        f"Question {index}" for index in range(11, 1, -1)
    ]
    assert await store.recent("nobody") == []


@pytest.mark.asyncio
async def test_recent_chats_with_equal_timestamps_keep_arrival_order() -> None:
    frozen = datetime(2026, 3, 1, tzinfo=timezone.utc)
    store = InMemoryChatHistoryStore(clock=lambda: frozen)
    for question in ("first", "second", "third"):
        await store.save(user_id="user-1", question=question, answer="a", sources=[])

    recent = await store.recent("user-1", limit=2)

    assert [record.question for record in recent] == ["third", "second"]


def test_row_with_trimmed_fraction_and_json_sources_parses() -> None:
    record = _record_from_row(
        {
            "id": "chat-1",
            "user_id": "user-1",
            "question": "Q?",
            "answer": "A.",
            "sources": [{"source": "cells.pdf", "page": 2}, "junk"],
            "created_at": "2026-03-01T10:00:00.12+00:00",
        }
    )

    assert record.chat_id == "chat-1"
    assert record.sources == ({"source": "cells.pdf", "page": 2},)
    assert record.created_at == datetime(
        2026, 3, 1, 10, 0, 0, 120000, tzinfo=timezone.utc
    )


def test_build_chat_history_store_needs_both_credentials() -> None:
    assert isinstance(
        build_chat_history_store(supabase_url="https://db.example.com", service_key=None),
        InMemoryChatHistoryStore,
    )
    assert isinstance(
        build_chat_history_store(
            supabase_url="https://db.example.com", service_key="key"
        ),
        SupabaseChatHistoryStore,
    )
