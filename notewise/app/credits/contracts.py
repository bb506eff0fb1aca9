from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

FEATURE_SUMMARIZER = "summarizer"
FEATURE_QUIZ = "quiz"
FEATURE_CHAT = "chat"
FEATURE_CHAT_MESSAGE = "chat-message"

FEATURE_FAMILIES = (
    FEATURE_SUMMARIZER,
    FEATURE_QUIZ,
    FEATURE_CHAT,
    FEATURE_CHAT_MESSAGE,
)

UNLIMITED_REMAINING = 999_999


class Plan(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"
    OWNER = "OWNER"


PLAN_ALLOWANCES: dict[Plan, dict[str, int]] = {
    Plan.FREE: {
        FEATURE_SUMMARIZER: 2,
        FEATURE_QUIZ: 2,
        FEATURE_CHAT: 1,
        FEATURE_CHAT_MESSAGE: 10,
    },
    Plan.PREMIUM: {family: UNLIMITED_REMAINING for family in FEATURE_FAMILIES},
    Plan.OWNER: {family: UNLIMITED_REMAINING for family in FEATURE_FAMILIES},
}

UNLIMITED_PLANS = frozenset({Plan.PREMIUM, Plan.OWNER})


class UnknownFeatureError(Exception):
    pass


class InsufficientCreditsError(Exception):
    def __init__(self, feature: str, remaining: int = 0) -> None:
        super().__init__(f"No {feature} credits remaining")
        self.feature = feature
        self.remaining = remaining


def ensure_feature(feature: str) -> str:
    if feature not in FEATURE_FAMILIES:
        raise UnknownFeatureError(f"Invalid feature: {feature}")
    return feature


@dataclass
class CreditAccount:
    user_id: str
    plan: Plan
    credits: dict[str, int]
    last_reset_at: datetime
    email: str | None = None
    name: str | None = None
    usage: dict[str, int] = field(
        default_factory=lambda: {family: 0 for family in FEATURE_FAMILIES}
    )

    @property
    def is_unlimited(self) -> bool:
        return self.plan in UNLIMITED_PLANS


@dataclass(frozen=True)
class CreditCheck:
    has_credits: bool
    remaining: int
    plan: Plan
    is_unlimited: bool


@dataclass(frozen=True)
class CreditStats:
    user_id: str
    email: str | None
    name: str | None
    plan: Plan
    is_unlimited: bool
    credits: dict[str, int]
    usage: dict[str, int]


def needs_monthly_reset(last_reset_at: datetime, now: datetime) -> bool:
    return (last_reset_at.year, last_reset_at.month) != (now.year, now.month)
