from __future__ import annotations

from typing import Any, Optional

from .errors import InvalidRequest

MAX_ID_LEN = 256


def normalize_id(value: Any, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRequest(f"{field} must be a string")
    s = value.strip()
    if not s:
        return None
    if len(s) > MAX_ID_LEN:
        raise InvalidRequest(f"{field} too long")
    return s


def normalize_email(s: Optional[str]) -> str:
    return (s or "").strip().lower()


def non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise InvalidRequest(f"{field} must be an integer")
    try:
        n = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRequest(f"{field} must be an integer") from exc
    if n < 0:
        raise InvalidRequest(f"{field} must be >= 0")
    return n
