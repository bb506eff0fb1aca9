from datetime import datetime, timezone

import pytest

from notewise.app.credits.contracts import (
    FEATURE_CHAT,
    FEATURE_QUIZ,
    FEATURE_SUMMARIZER,
    UNLIMITED_REMAINING,
    CreditAccount,
    InsufficientCreditsError,
    Plan,
    UnknownFeatureError,
    needs_monthly_reset,
)
from notewise.app.credits.ledger import (
    InMemoryCreditLedger,
    SupabaseCreditLedger,
    parse_timestamp,
)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _account(user_id: str, *, credits: dict[str, int], last_reset_at: datetime) -> CreditAccount:
    return CreditAccount(
        user_id=user_id,
        plan=Plan.FREE,
        credits=credits,
        last_reset_at=last_reset_at,
    )


@pytest.mark.asyncio
async def test_new_user_gets_free_plan_allowance() -> None:
    ledger = InMemoryCreditLedger()

    stats = await ledger.stats("user-1")

    assert stats.plan == Plan.FREE
    assert stats.credits[FEATURE_SUMMARIZER] == 2
    assert stats.credits[FEATURE_QUIZ] == 2
    assert stats.credits[FEATURE_CHAT] == 1


@pytest.mark.asyncio
async def test_owner_email_is_unlimited_and_never_decrements() -> None:
    ledger = InMemoryCreditLedger(owner_emails=["Owner@Example.com"])
    await ledger.ensure_account("owner", email="owner@example.com")

    for _ in range(5):
        assert await ledger.deduct("owner", FEATURE_SUMMARIZER) == UNLIMITED_REMAINING

    check = await ledger.check("owner", FEATURE_SUMMARIZER)
    assert check.has_credits
    assert check.is_unlimited
    assert check.plan == Plan.OWNER


@pytest.mark.asyncio
async def test_deducting_n_credits_drains_to_zero_then_refuses() -> None:
    ledger = InMemoryCreditLedger()

    assert await ledger.deduct("user-1", FEATURE_SUMMARIZER) == 1
    assert await ledger.deduct("user-1", FEATURE_SUMMARIZER) == 0

    check = await ledger.check("user-1", FEATURE_SUMMARIZER)
    assert not check.has_credits
    assert check.remaining == 0
    with pytest.raises(InsufficientCreditsError) as excinfo:
        await ledger.deduct("user-1", FEATURE_SUMMARIZER)
    assert excinfo.value.remaining == 0
    assert (await ledger.stats("user-1")).usage[FEATURE_SUMMARIZER] == 2


@pytest.mark.asyncio
async def test_families_are_counted_independently() -> None:
    ledger = InMemoryCreditLedger()

    await ledger.deduct("user-1", FEATURE_CHAT)

    assert (await ledger.check("user-1", FEATURE_CHAT)).remaining == 0
    assert (await ledger.check("user-1", FEATURE_QUIZ)).remaining == 2


@pytest.mark.asyncio
async def test_unknown_feature_is_rejected() -> None:
    ledger = InMemoryCreditLedger()

    with pytest.raises(UnknownFeatureError):
        await ledger.check("user-1", "video-editing")


@pytest.mark.asyncio
async def test_monthly_reset_applies_once_per_month() -> None:
    clock = _Clock(datetime(2026, 3, 15, tzinfo=timezone.utc))
    ledger = InMemoryCreditLedger(
        accounts=[
            _account(
                "user-1",
                credits={FEATURE_SUMMARIZER: 0, FEATURE_QUIZ: 0, FEATURE_CHAT: 0},
                last_reset_at=datetime(2026, 2, 27, tzinfo=timezone.utc),
            )
        ],
        clock=clock,
    )

    first = await ledger.check("user-1", FEATURE_SUMMARIZER)
    await ledger.deduct("user-1", FEATURE_SUMMARIZER)
    clock.now = datetime(2026, 3, 30, tzinfo=timezone.utc)
    second = await ledger.check("user-1", FEATURE_SUMMARIZER)
    account = await ledger.ensure_account("user-1")

    assert first.remaining == 2
    assert second.remaining == 1
    assert account.last_reset_at == datetime(2026, 3, 15, tzinfo=timezone.utc)
    assert account.credits[FEATURE_QUIZ] == 2


@pytest.mark.asyncio
async def test_reset_triggers_on_year_change_with_same_month() -> None:
    clock = _Clock(datetime(2027, 1, 2, tzinfo=timezone.utc))
    ledger = InMemoryCreditLedger(
        accounts=[
            _account(
                "user-1",
                credits={FEATURE_SUMMARIZER: 0},
                last_reset_at=datetime(2026, 1, 20, tzinfo=timezone.utc),
            )
        ],
        clock=clock,
    )

    assert (await ledger.check("user-1", FEATURE_SUMMARIZER)).remaining == 2


@pytest.mark.asyncio
async def test_refund_returns_a_credit() -> None:
    ledger = InMemoryCreditLedger()
    await ledger.deduct("user-1", FEATURE_QUIZ)

    assert await ledger.refund("user-1", FEATURE_QUIZ) == 2


def test_needs_monthly_reset_compares_month_and_year() -> None:
    now = datetime(2026, 5, 1, tzinfo=timezone.utc)

    assert needs_monthly_reset(datetime(2026, 4, 30, tzinfo=timezone.utc), now)
    assert needs_monthly_reset(datetime(2025, 5, 1, tzinfo=timezone.utc), now)
    assert not needs_monthly_reset(datetime(2026, 5, 31, tzinfo=timezone.utc), now)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (
            "2026-03-01T10:00:00.1234+00:00",
            datetime(2026, 3, 1, 10, 0, 0, 123400, tzinfo=timezone.utc),
        ),
        (
            "2026-03-01T10:00:00.5Z",
            datetime(2026, 3, 1, 10, 0, 0, 500000, tzinfo=timezone.utc),
        ),
        (
            "2026-03-01T10:00:00.123456789+00:00",
            datetime(2026, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc),
        ),
        ("2026-03-01T10:00:00", datetime(2026, 3, 1, 10, tzinfo=timezone.utc)),
    ],
)
def test_parse_timestamp_accepts_postgres_fractions(raw: str, expected: datetime) -> None:
    assert parse_timestamp(raw) == expected


def test_supabase_row_with_trimmed_fraction_parses() -> None:
    ledger = SupabaseCreditLedger(url="https://db.example.com", service_key="key")

    account = ledger._account_from_row(
        {
            "user_id": "user-1",
            "plan": "FREE",
            "summarizer_credits": 2,
            "last_reset_at": "2026-03-01T10:00:00.1234+00:00",
        }
    )

    assert account.last_reset_at == datetime(
        2026, 3, 1, 10, 0, 0, 123400, tzinfo=timezone.utc
    )
    assert account.plan == Plan.FREE
