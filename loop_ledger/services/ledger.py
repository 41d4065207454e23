from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from loop_ledger.core.errors import Forbidden, InvalidRequest, Unauthenticated
from loop_ledger.core.normalize import non_negative_int, normalize_email
from loop_ledger.metrics import record_consume
from loop_ledger.services.audit import audit_event
from loop_ledger.services.identity import AuthUser, Identity
from loop_ledger.services.ledger_store import LedgerStore
from loop_ledger.services.quota import Decision, UsageRecord, decide, free_remaining

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Balance:
    free_used: int
    credits: int
    free_remaining: int
    credits_remaining: int


@dataclass(frozen=True)
class ConsumeResult:
    allowed: bool
    free_used: int
    credits: int
    source: str


class LedgerService:
    """Check, consume and admin overrides over a ``LedgerStore``.

    Holds no balances between calls; every operation reads the store.
    """

    def __init__(
        self,
        store: LedgerStore,
        *,
        free_quota: int = 3,
        admin_emails: Iterable[str] = (),
        require_allowlist: bool = False,
    ) -> None:
        if free_quota < 0:
            raise ValueError("free_quota must be >= 0")
        self.store = store
        self.free_quota = free_quota
        self.admin_emails = frozenset(normalize_email(e) for e in admin_emails if e)
        self.require_allowlist = require_allowlist

    def check(self, identity: Identity) -> Balance:
        record = self.store.get(identity)
        return Balance(
            free_used=record.free_used,
            credits=record.credits,
            free_remaining=free_remaining(record, self.free_quota),
            credits_remaining=record.credits,
        )

    def consume(self, identity: Identity, units: int = 1) -> ConsumeResult:
        if units < 1:
            raise InvalidRequest("units must be >= 1")

        def step(record: UsageRecord):
            d = decide(record, self.free_quota, units)
            return d, (d.record if d.allowed else None)

        d: Decision = self.store.apply(identity, step)
        record_consume(d.source)
        audit_event("usage_consume", str(identity), outcome="allowed" if d.allowed else "denied", source=d.source)
        return ConsumeResult(allowed=d.allowed, free_used=d.record.free_used, credits=d.record.credits, source=d.source)

    def is_admin(self, caller: AuthUser) -> bool:
        if not self.admin_emails:
            return not self.require_allowlist
        return normalize_email(caller.email) in self.admin_emails

    def require_admin(self, caller: Optional[AuthUser]) -> AuthUser:
        if caller is None or not normalize_email(caller.email):
            raise Unauthenticated()
        if not self.is_admin(caller):
            audit_event("admin_denied", caller.sub, outcome="forbidden")
            raise Forbidden("Admin privileges required")
        return caller

    def admin_reset(self, caller: Optional[AuthUser], target: Optional[Identity]) -> Dict[str, Any]:
        admin = self.require_admin(caller)
        if target is None:
            deleted = self.store.delete_all()
            logger.info("admin %s cleared %d ledger rows", admin.sub, deleted)
            audit_event("admin_reset", admin.sub, target="all", deleted=deleted)
            return {"ok": True, "cleared": "all", "deleted": deleted}

        self.store.delete(target)
        audit_event("admin_reset", admin.sub, target=str(target))
        return {"ok": True, **target.echo()}

    def admin_set_balance(
        self,
        caller: Optional[AuthUser],
        target: Optional[Identity],
        free_used: int,
        credits: int,
    ) -> UsageRecord:
        admin = self.require_admin(caller)
        if target is None:
            raise InvalidRequest("device_id or user_id required")
        free_used = non_negative_int(free_used, "free_used")
        credits = non_negative_int(credits, "credits")

        record = UsageRecord(free_used=free_used, credits=credits)
        self.store.put(target, record)
        audit_event("admin_set_balance", admin.sub, target=str(target), free_used=free_used, credits=credits)
        return record
