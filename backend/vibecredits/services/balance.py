"""Spendable-credit arithmetic.

Subscription credits (``credits_limit - credits_used``) and purchased credits
(``credits_balance``) are pooled into one forward-facing number that is never
negative. Users without a subscription simply carry ``limit = used = 0``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CreditCounters:
    credits_limit: int = 0
    credits_used: int = 0
    credits_balance: int = 0

    @classmethod
    def normalize(
        cls,
        credits_limit: int | None = None,
        credits_used: int | None = None,
        credits_balance: int | None = None,
    ) -> "CreditCounters":
        return cls(
            credits_limit=int(credits_limit or 0),
            credits_used=int(credits_used or 0),
            credits_balance=int(credits_balance or 0),
        )

    @property
    def plan_available(self) -> int:
        return max(0, self.credits_limit - self.credits_used)

    @property
    def available(self) -> int:
        return max(0, (self.credits_limit - self.credits_used) + self.credits_balance)


def calculate_available_credits(
    credits_limit: int | None,
    credits_used: int | None,
    credits_balance: int | None,
) -> int:
    """Return ``max(0, (limit - used) + balance)``; ``None`` counts as 0.

    Over-consumption and negative counters are clamped rather than rejected.
    """
    return CreditCounters.normalize(credits_limit, credits_used, credits_balance).available


def counters_for_user(user: Any) -> CreditCounters:
    return CreditCounters.normalize(
        getattr(user, "credits_limit", None),
        getattr(user, "credits_used", None),
        getattr(user, "credits_balance", None),
    )


def available_for_user(user: Any) -> int:
    return counters_for_user(user).available


def balance_snapshot(user: Any) -> dict[str, int]:
    counters = counters_for_user(user)
    return {
        "credits_limit": counters.credits_limit,
        "credits_used": counters.credits_used,
        "credits_balance": counters.credits_balance,
        "available": counters.available,
    }
