from __future__ import annotations

import secrets
import threading
from decimal import Decimal
from typing import Any, Dict, List

from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from loop_ledger.core.errors import StoreUnavailable
from loop_ledger.core.time import now_ts

SETUP_FIELDS = ("loop_point", "distance", "unit", "terrain", "surface", "vibe")


def setup_id() -> str:
    return f"{now_ts() * 1000}_{secrets.token_hex(6)}"


def setup_item(device_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    item: Dict[str, Any] = {"device_id": device_id, "setup_id": setup_id(), "created_at": now_ts()}
    for name in SETUP_FIELDS:
        if fields.get(name) is not None:
            item[name] = fields[name]
    return item


def _ddb_value(value: Any) -> Any:
    # DynamoDB rejects floats
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _ddb_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_ddb_value(v) for v in value]
    return value


class SetupsService:
    """Saved route setups, one partition per device, newest first."""

    def __init__(self, table: Any) -> None:
        self.table = table

    def save(self, device_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        item = setup_item(device_id, fields)
        try:
            self.table.put_item(Item=_ddb_value(item))
        except (BotoCoreError, ClientError) as exc:
            raise StoreUnavailable() from exc
        return item

    def list(self, device_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        try:
            resp = self.table.query(
                KeyConditionExpression=Key("device_id").eq(device_id),
                ScanIndexForward=False,
                Limit=max(1, min(limit, 200)),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StoreUnavailable() from exc
        return resp.get("Items", [])


class InMemorySetupsService(SetupsService):
    def __init__(self) -> None:
        super().__init__(table=None)
        self._items: Dict[str, List[Dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def save(self, device_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        item = setup_item(device_id, fields)
        with self._lock:
            self._items.setdefault(device_id, []).append(item)
        return item

    def list(self, device_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self._items.get(device_id, []))
        items.sort(key=lambda it: it["setup_id"], reverse=True)
        return items[: max(1, min(limit, 200))]
