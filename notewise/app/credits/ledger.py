from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime, timezone

import httpx

from notewise.app.credits.contracts import (
    FEATURE_FAMILIES,
    PLAN_ALLOWANCES,
    UNLIMITED_REMAINING,
    CreditAccount,
    CreditCheck,
    CreditStats,
    InsufficientCreditsError,
    Plan,
    ensure_feature,
    needs_monthly_reset,
)

LOGGER = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """Parse a Postgres timestamp, which may trim fractional seconds or end in Z."""
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    text = _FRACTION.sub(
        lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1
    )
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CreditLedger:
    async def ensure_account(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
    ) -> CreditAccount:
        raise NotImplementedError

    async def check(self, user_id: str, feature: str) -> CreditCheck:
        raise NotImplementedError

    async def deduct(self, user_id: str, feature: str) -> int:
        raise NotImplementedError

    async def refund(self, user_id: str, feature: str) -> int:
        raise NotImplementedError

    async def stats(self, user_id: str) -> CreditStats:
        raise NotImplementedError


def _plan_for(email: str | None, owner_emails: frozenset[str]) -> Plan:
    if email and email.strip().lower() in owner_emails:
        return Plan.OWNER
    return Plan.FREE


def _new_account(
    user_id: str,
    *,
    email: str | None,
    name: str | None,
    plan: Plan,
    now: datetime,
) -> CreditAccount:
    return CreditAccount(
        user_id=user_id,
        plan=plan,
        credits=dict(PLAN_ALLOWANCES[plan]),
        last_reset_at=now,
        email=email,
        name=name or "User",
    )


def _stats_of(account: CreditAccount) -> CreditStats:
    return CreditStats(
        user_id=account.user_id,
        email=account.email,
        name=account.name,
        plan=account.plan,
        is_unlimited=account.is_unlimited,
        credits=dict(account.credits),
        usage=dict(account.usage),
    )


class InMemoryCreditLedger(CreditLedger):
    """Process-local ledger; every read-modify-write happens under one lock."""

    def __init__(
        self,
        *,
        owner_emails: Iterable[str] = (),
        accounts: Iterable[CreditAccount] = (),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._owner_emails = frozenset(email.lower() for email in owner_emails)
        self._accounts: dict[str, CreditAccount] = {
            account.user_id: account for account in accounts
        }
        self._clock = clock
        self._lock = asyncio.Lock()

    async def ensure_account(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
    ) -> CreditAccount:
        async with self._lock:
            account = self._load(user_id, email=email, name=name)
            return replace(
                account, credits=dict(account.credits), usage=dict(account.usage)
            )

    async def check(self, user_id: str, feature: str) -> CreditCheck:
        ensure_feature(feature)
        async with self._lock:
            account = self._load(user_id)
            if account.is_unlimited:
                return CreditCheck(
                    has_credits=True,
                    remaining=UNLIMITED_REMAINING,
                    plan=account.plan,
                    is_unlimited=True,
                )
            remaining = account.credits.get(feature, 0)
            return CreditCheck(
                has_credits=remaining > 0,
                remaining=remaining,
                plan=account.plan,
                is_unlimited=False,
            )

    async def deduct(self, user_id: str, feature: str) -> int:
        ensure_feature(feature)
        async with self._lock:
            account = self._load(user_id)
            if account.is_unlimited:
                return UNLIMITED_REMAINING
            remaining = account.credits.get(feature, 0)
            if remaining <= 0:
                raise InsufficientCreditsError(feature, remaining=0)
            account.credits[feature] = remaining - 1
            account.usage[feature] = account.usage.get(feature, 0) + 1
            LOGGER.info(
                "Deducted credit",
                extra={
                    "user_id": user_id,
                    "feature": feature,
                    "remaining": account.credits[feature],
                },
            )
            return account.credits[feature]

    async def refund(self, user_id: str, feature: str) -> int:
        ensure_feature(feature)
        async with self._lock:
            account = self._load(user_id)
            if account.is_unlimited:
                return UNLIMITED_REMAINING
            account.credits[feature] = account.credits.get(feature, 0) + 1
            account.usage[feature] = max(0, account.usage.get(feature, 0) - 1)
            return account.credits[feature]

    async def stats(self, user_id: str) -> CreditStats:
        async with self._lock:
            return _stats_of(self._load(user_id))

    def _load(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
    ) -> CreditAccount:
        now = self._clock()
        account = self._accounts.get(user_id)
        if account is None:
            account = _new_account(
                user_id,
                email=email,
                name=name,
                plan=_plan_for(email, self._owner_emails),
                now=now,
            )
            self._accounts[user_id] = account
            LOGGER.info(
                "Provisioned credit account",
                extra={"user_id": user_id, "plan": account.plan.value},
            )
            return account
        if not account.is_unlimited and needs_monthly_reset(account.last_reset_at, now):
            account.credits = dict(PLAN_ALLOWANCES[account.plan])
            account.last_reset_at = now
            LOGGER.info("Credits reset", extra={"user_id": user_id})
        return account


def _credit_column(feature: str) -> str:
    return f"{feature.replace('-', '_')}_credits"


def _usage_column(feature: str) -> str:
    return f"total_{feature.replace('-', '_')}"


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class SupabaseCreditLedger(CreditLedger):
    """Ledger rows in a Supabase ``credit_accounts`` table via PostgREST.

    Decrement-if-positive and refunds go through the ``decrement_credit`` and
    ``increment_credit`` RPCs so they stay single-statement at the row level.
    The monthly reset is a conditional PATCH filtered on ``last_reset_at``
    being before the current month, so concurrent checks apply it once.
    """

    def __init__(
        self,
        *,
        url: str,
        service_key: str,
        owner_emails: Iterable[str] = (),
        table: str = "credit_accounts",
        clock: Callable[[], datetime] = utc_now,
        timeout_seconds: float = 20.0,
    ) -> None:
        self._base_url = f"{url.rstrip('/')}/rest/v1"
        self._service_key = service_key
        self._owner_emails = frozenset(email.lower() for email in owner_emails)
        self._table = table
        self._clock = clock
        self._timeout_seconds = timeout_seconds

    def _headers(self, **extra: str) -> dict[str, str]:
        return {
            "apikey": self._service_key,
            "Authorization": f"Bearer {self._service_key}",
            "Content-Type": "application/json",
            **extra,
        }

    async def ensure_account(
        self,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
    ) -> CreditAccount:
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            return await self._load(client, user_id, email=email, name=name)

    async def check(self, user_id: str, feature: str) -> CreditCheck:
        ensure_feature(feature)
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            account = await self._load(client, user_id)
        if account.is_unlimited:
            return CreditCheck(
                has_credits=True,
                remaining=UNLIMITED_REMAINING,
                plan=account.plan,
                is_unlimited=True,
            )
        remaining = account.credits.get(feature, 0)
        return CreditCheck(
            has_credits=remaining > 0,
            remaining=remaining,
            plan=account.plan,
            is_unlimited=False,
        )

    async def deduct(self, user_id: str, feature: str) -> int:
        ensure_feature(feature)
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            account = await self._load(client, user_id)
            if account.is_unlimited:
                return UNLIMITED_REMAINING
            remaining = await self._rpc(client, "decrement_credit", user_id, feature)
        if remaining is None:
            raise InsufficientCreditsError(feature, remaining=0)
        return remaining

    async def refund(self, user_id: str, feature: str) -> int:
        ensure_feature(feature)
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            account = await self._load(client, user_id)
            if account.is_unlimited:
                return UNLIMITED_REMAINING
            remaining = await self._rpc(client, "increment_credit", user_id, feature)
        return remaining or 0

    async def stats(self, user_id: str) -> CreditStats:
        async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
            return _stats_of(await self._load(client, user_id))

    async def _rpc(
        self,
        client: httpx.AsyncClient,
        function: str,
        user_id: str,
        feature: str,
    ) -> int | None:
        response = await client.post(
            f"{self._base_url}/rpc/{function}",
            headers=self._headers(),
            json={"p_user_id": user_id, "p_feature": feature},
        )
        response.raise_for_status()
        value = response.json()
        return value if isinstance(value, int) else None

    async def _load(
        self,
        client: httpx.AsyncClient,
        user_id: str,
        *,
        email: str | None = None,
        name: str | None = None,
    ) -> CreditAccount:
        now = self._clock()
        row = await self._fetch_row(client, user_id)
        if row is None:
            plan = _plan_for(email, self._owner_emails)
            account = _new_account(user_id, email=email, name=name, plan=plan, now=now)
            await self._insert(client, account)
            row = await self._fetch_row(client, user_id)
            if row is None:
                return account

        account = self._account_from_row(row)
        if not account.is_unlimited and needs_monthly_reset(account.last_reset_at, now):
            allowance = PLAN_ALLOWANCES[account.plan]
            response = await client.patch(
                f"{self._base_url}/{self._table}",
                headers=self._headers(Prefer="return=representation"),
                params={
                    "user_id": f"eq.{user_id}",
                    "last_reset_at": f"lt.{_month_start(now).isoformat()}",
                },
                json={
                    **{_credit_column(f): allowance[f] for f in FEATURE_FAMILIES},
                    "last_reset_at": now.isoformat(),
                },
            )
            response.raise_for_status()
            refreshed = await self._fetch_row(client, user_id)
            if refreshed is not None:
                account = self._account_from_row(refreshed)
        return account

    async def _fetch_row(
        self, client: httpx.AsyncClient, user_id: str
    ) -> dict[str, object] | None:
        response = await client.get(
            f"{self._base_url}/{self._table}",
            headers=self._headers(),
            params={"user_id": f"eq.{user_id}", "select": "*"},
        )
        response.raise_for_status()
        rows = response.json()
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return None
        return rows[0]

    async def _insert(self, client: httpx.AsyncClient, account: CreditAccount) -> None:
        payload: dict[str, object] = {
            "user_id": account.user_id,
            "plan": account.plan.value,
            "email": account.email,
            "name": account.name,
            "last_reset_at": account.last_reset_at.isoformat(),
        }
        for feature in FEATURE_FAMILIES:
            payload[_credit_column(feature)] = account.credits[feature]
            payload[_usage_column(feature)] = 0
        response = await client.post(
            f"{self._base_url}/{self._table}",
            headers=self._headers(Prefer="resolution=ignore-duplicates"),
            json=payload,
        )
        response.raise_for_status()

    def _account_from_row(self, row: dict[str, object]) -> CreditAccount:
        plan_raw = row.get("plan")
        plan = (
            Plan(plan_raw)
            if isinstance(plan_raw, str) and plan_raw in Plan.__members__
            else Plan.FREE
        )
        last_reset_raw = row.get("last_reset_at")
        last_reset_at = (
            parse_timestamp(last_reset_raw)
            if isinstance(last_reset_raw, str)
            else self._clock()
        )
        credits = {}
        usage = {}
        for feature in FEATURE_FAMILIES:
            credit_value = row.get(_credit_column(feature))
            usage_value = row.get(_usage_column(feature))
            credits[feature] = credit_value if isinstance(credit_value, int) else 0
            usage[feature] = usage_value if isinstance(usage_value, int) else 0
        email = row.get("email")
        name = row.get("name")
        return CreditAccount(
            user_id=str(row.get("user_id")),
            plan=plan,
            credits=credits,
            last_reset_at=last_reset_at,
            email=email if isinstance(email, str) else None,
            name=name if isinstance(name, str) else None,
            usage=usage,
        )


def build_credit_ledger(
    *,
    backend: str,
    supabase_url: str | None,
    service_key: str | None,
    owner_emails: Iterable[str] = (),
) -> CreditLedger:
    if backend == "supabase":
        if not supabase_url or not service_key:
            raise ValueError(
                "CREDIT_BACKEND=supabase requires SUPABASE_URL and "
                "SUPABASE_SERVICE_ROLE_KEY"
            )
        return SupabaseCreditLedger(
            url=supabase_url,
            service_key=service_key,
            owner_emails=owner_emails,
        )
    return InMemoryCreditLedger(owner_emails=owner_emails)
