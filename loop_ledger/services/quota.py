"""Usage records and the free-then-credits quota policy.

Everything here is pure: no I/O, no clock, no globals. The ledger store calls
``decide`` inside its atomic apply so the decision and the write are one unit.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

SOURCE_FREE = "free"
SOURCE_CREDIT = "credit"
SOURCE_DENIED = "denied"


@dataclass(frozen=True)
class UsageRecord:
    free_used: int = 0
    credits: int = 0

    def __post_init__(self) -> None:
        if self.free_used < 0 or self.credits < 0:
            raise ValueError("usage record fields must be >= 0")

    @classmethod
    def from_item(cls, item: Optional[dict]) -> "UsageRecord":
        if not item:
            return cls()
        return cls(
            free_used=max(0, int(item.get("free_used") or 0)),
            credits=max(0, int(item.get("credits") or 0)),
        )


@dataclass(frozen=True)
class Decision:
    allowed: bool
    record: UsageRecord
    source: str


def free_remaining(record: UsageRecord, free_quota: int) -> int:
    return max(0, free_quota - record.free_used)


def decide(record: UsageRecord, free_quota: int, requested_units: int = 1) -> Decision:
    """Spend ``requested_units`` from the free allotment first, then credits.

    All or nothing: if the record cannot cover every unit it is returned
    unchanged with ``allowed=False``. ``source`` names where the last unit came
    from (``free`` or ``credit``), or ``denied``.
    """
    if requested_units < 1:
        raise ValueError("requested_units must be >= 1")

    from_free = min(requested_units, free_remaining(record, free_quota))
    from_credits = requested_units - from_free
    if from_credits > record.credits:
        return Decision(allowed=False, record=record, source=SOURCE_DENIED)

    nxt = replace(
        record,
        free_used=record.free_used + from_free,
        credits=record.credits - from_credits,
    )
    return Decision(allowed=True, record=nxt, source=SOURCE_CREDIT if from_credits else SOURCE_FREE)


def credits_from_amount(amount_cents: int, cents_per_credit: int = 50, minimum: int = 1) -> int:
    if cents_per_credit <= 0:
        raise ValueError("cents_per_credit must be > 0")
    return max(minimum, max(0, int(amount_cents or 0)) // cents_per_credit)


@dataclass(frozen=True)
class CreditPolicy:
    cents_per_credit: int = 50
    minimum: int = 1

    def credits_for(self, amount_cents: int) -> int:
        return credits_from_amount(amount_cents, self.cents_per_credit, self.minimum)
