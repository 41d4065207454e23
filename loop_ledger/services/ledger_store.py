"""Ledger persistence.

Two backends share one interface. ``DynamoLedgerStore`` is the production
store; it makes read-decide-write atomic with a per-row ``version`` attribute
and conditional writes, and applies payment top-ups in a single
``TransactWriteItems`` call together with the donation audit row whose key is
the Stripe checkout session id. ``InMemoryLedgerStore`` is an embedded store
that runs every operation under one lock; it backs local runs
(``LEDGER_BACKEND=memory``) and the tests.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from botocore.exceptions import BotoCoreError, ClientError

from loop_ledger.core.errors import StoreUnavailable
from loop_ledger.core.tables import Tables
from loop_ledger.core.time import now_ts
from loop_ledger.services.identity import USER, Identity
from loop_ledger.services.quota import UsageRecord

logger = logging.getLogger(__name__)

R = TypeVar("R")
ApplyFn = Callable[[UsageRecord], Tuple[R, Optional[UsageRecord]]]


def version_condition(version: int) -> Dict[str, Any]:
    """Write guard for a row read at ``version``; 0 means the row was absent."""
    if version == 0:
        return {"ConditionExpression": "attribute_not_exists(#v)", "ExpressionAttributeNames": {"#v": "version"}}
    return {
        "ConditionExpression": "#v = :v",
        "ExpressionAttributeNames": {"#v": "version"},
        "ExpressionAttributeValues": {":v": version},
    }


class LedgerStore:
    def get(self, identity: Identity) -> UsageRecord:
        raise NotImplementedError

    def put(self, identity: Identity, record: UsageRecord) -> None:
        raise NotImplementedError

    def delete(self, identity: Identity) -> None:
        raise NotImplementedError

    def delete_all(self) -> int:
        raise NotImplementedError

    def apply(self, identity: Identity, fn: ApplyFn) -> R:
        """Run ``fn`` on the current record and persist its result atomically.

        ``fn`` returns ``(result, next_record)``; ``next_record`` of ``None``
        means nothing is written. ``fn`` may run more than once under
        contention, so it must be pure.
        """
        raise NotImplementedError

    def apply_top_up(self, identity: Identity, session_id: str, amount_cents: int, credits: int) -> bool:
        """Add ``credits`` and record the donation once per ``session_id``.

        Returns ``False`` with no change if the session was already applied.
        """
        raise NotImplementedError


def donation_item(identity: Identity, session_id: str, amount_cents: int, credits: int) -> Dict[str, Any]:
    return {
        "stripe_session_id": session_id,
        "identity_kind": identity.kind,
        "identity_id": identity.id,
        "amount": int(amount_cents),
        "credits_added": int(credits),
        "created_at": now_ts(),
    }


class InMemoryLedgerStore(LedgerStore):
    """Embedded store; one lock covers every read and write."""

    def __init__(self) -> None:
        self._rows: Dict[Identity, UsageRecord] = {}
        self._donations: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, identity: Identity) -> UsageRecord:
        with self._lock:
            return self._rows.get(identity, UsageRecord())

    def put(self, identity: Identity, record: UsageRecord) -> None:
        with self._lock:
            self._rows[identity] = record

    def delete(self, identity: Identity) -> None:
        with self._lock:
            self._rows.pop(identity, None)

    def delete_all(self) -> int:
        with self._lock:
            n = len(self._rows)
            self._rows.clear()
        return n

    def apply(self, identity: Identity, fn: ApplyFn) -> R:
        with self._lock:
            result, nxt = fn(self._rows.get(identity, UsageRecord()))
            if nxt is not None:
                self._rows[identity] = nxt
            return result

    def apply_top_up(self, identity: Identity, session_id: str, amount_cents: int, credits: int) -> bool:
        with self._lock:
            if session_id in self._donations:
                return False
            self._donations[session_id] = donation_item(identity, session_id, amount_cents, credits)
            current = self._rows.get(identity, UsageRecord())
            self._rows[identity] = UsageRecord(free_used=current.free_used, credits=current.credits + credits)
            return True

    def donations(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(d) for d in self._donations.values()]


def _error_code(exc: ClientError) -> str:
    return exc.response.get("Error", {}).get("Code", "")


class DynamoLedgerStore(LedgerStore):
    def __init__(self, tables: Tables, *, max_attempts: int = 5) -> None:
        self.tables = tables
        self.max_attempts = max(1, max_attempts)

    def _table(self, identity: Identity) -> Any:
        return self.tables.user_credits if identity.kind == USER else self.tables.device_usage

    @staticmethod
    def _key(identity: Identity) -> Dict[str, str]:
        return {identity.field: identity.id}

    def _row(self, identity: Identity, record: UsageRecord, version: int) -> Dict[str, Any]:
        return {
            **self._key(identity),
            "free_used": record.free_used,
            "credits": record.credits,
            "version": version,
            "updated_at": now_ts(),
        }

    def _read(self, identity: Identity) -> Tuple[UsageRecord, int]:
        try:
            resp = self._table(identity).get_item(Key=self._key(identity), ConsistentRead=True)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("ledger read failed for %s: %s", identity, exc)
            raise StoreUnavailable() from exc
        item = resp.get("Item")
        version = int(item.get("version") or 0) if item else 0
        return UsageRecord.from_item(item), version

    def get(self, identity: Identity) -> UsageRecord:
        return self._read(identity)[0]

    def put(self, identity: Identity, record: UsageRecord) -> None:
        try:
            self._table(identity).update_item(
                Key=self._key(identity),
                UpdateExpression="SET #f = :f, #c = :c, #u = :t ADD #v :one",
                ExpressionAttributeNames={"#f": "free_used", "#c": "credits", "#u": "updated_at", "#v": "version"},
                ExpressionAttributeValues={
                    ":f": record.free_used,
                    ":c": record.credits,
                    ":t": now_ts(),
                    ":one": 1,
                },
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("ledger write failed for %s: %s", identity, exc)
            raise StoreUnavailable() from exc

    def delete(self, identity: Identity) -> None:
        try:
            self._table(identity).delete_item(Key=self._key(identity))
        except (BotoCoreError, ClientError) as exc:
            logger.warning("ledger delete failed for %s: %s", identity, exc)
            raise StoreUnavailable() from exc

    def delete_all(self) -> int:
        deleted = 0
        for table, key_attr in ((self.tables.device_usage, "device_id"), (self.tables.user_credits, "user_id")):
            kwargs: Dict[str, Any] = {
                "ProjectionExpression": "#k",
                "ExpressionAttributeNames": {"#k": key_attr},
            }
            try:
                with table.batch_writer() as batch:
                    while True:
                        resp = table.scan(**kwargs)
                        for item in resp.get("Items", []):
                            batch.delete_item(Key={key_attr: item[key_attr]})
                            deleted += 1
                        last = resp.get("LastEvaluatedKey")
                        if not last:
                            break
                        kwargs["ExclusiveStartKey"] = last
            except (BotoCoreError, ClientError) as exc:
                logger.warning("ledger clear failed: %s", exc)
                raise StoreUnavailable() from exc
        return deleted

    def apply(self, identity: Identity, fn: ApplyFn) -> R:
        table = self._table(identity)
        for attempt in range(self.max_attempts):
            record, version = self._read(identity)
            result, nxt = fn(record)
            if nxt is None:
                return result
            try:
                table.put_item(Item=self._row(identity, nxt, version + 1), **version_condition(version))
                return result
            except ClientError as exc:
                if _error_code(exc) == "ConditionalCheckFailedException":
                    logger.info("ledger conflict for %s (attempt %d)", identity, attempt + 1)
                    continue
                logger.warning("ledger write failed for %s: %s", identity, exc)
                raise StoreUnavailable() from exc
            except BotoCoreError as exc:
                logger.warning("ledger write failed for %s: %s", identity, exc)
                raise StoreUnavailable() from exc
        raise StoreUnavailable("Ledger busy; retry", status_code=503)

    def apply_top_up(self, identity: Identity, session_id: str, amount_cents: int, credits: int) -> bool:
        table = self._table(identity)
        donations = self.tables.donations
        client = donations.meta.client
        for attempt in range(self.max_attempts):
            record, version = self._read(identity)
            nxt = UsageRecord(free_used=record.free_used, credits=record.credits + credits)
            try:
                client.transact_write_items(
                    TransactItems=[
                        {
                            "Put": {
                                "TableName": donations.name,
                                "Item": donation_item(identity, session_id, amount_cents, credits),
                                "ConditionExpression": "attribute_not_exists(#s)",
                                "ExpressionAttributeNames": {"#s": "stripe_session_id"},
                            }
                        },
                        {
                            "Put": {
                                "TableName": table.name,
                                "Item": self._row(identity, nxt, version + 1),
                                **version_condition(version),
                            }
                        },
                    ]
                )
                return True
            except ClientError as exc:
                if _error_code(exc) != "TransactionCanceledException":
                    logger.warning("top-up failed for %s: %s", identity, exc)
                    raise StoreUnavailable() from exc
                reasons = [r.get("Code") for r in exc.response.get("CancellationReasons", [])]
                if reasons and reasons[0] == "ConditionalCheckFailed":
                    return False
                if "ConditionalCheckFailed" in reasons[1:] or "TransactionConflict" in reasons:
                    logger.info("top-up conflict for %s (attempt %d)", identity, attempt + 1)
                    continue
                logger.warning("top-up cancelled for %s: %s", identity, reasons)
                raise StoreUnavailable() from exc
            except BotoCoreError as exc:
                logger.warning("top-up failed for %s: %s", identity, exc)
                raise StoreUnavailable() from exc
        raise StoreUnavailable("Ledger busy; retry", status_code=503)
