from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from loop_ledger.core.errors import Forbidden, InvalidRequest, Unauthenticated
from loop_ledger.core.normalize import normalize_id

DEVICE = "device"
USER = "user"


@dataclass(frozen=True)
class AuthUser:
    sub: str
    email: Optional[str] = None


@dataclass(frozen=True)
class Identity:
    kind: str
    id: str

    @classmethod
    def device(cls, device_id: str) -> "Identity":
        return cls(DEVICE, device_id)

    @classmethod
    def user(cls, user_id: str) -> "Identity":
        return cls(USER, user_id)

    @property
    def field(self) -> str:
        return "user_id" if self.kind == USER else "device_id"

    def echo(self) -> dict:
        return {self.field: self.id}

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


def resolve_identity(device_id: Any, user_id: Any, auth_user: Optional[AuthUser]) -> Identity:
    device_id = normalize_id(device_id, "device_id")
    user_id = normalize_id(user_id, "user_id")

    if auth_user is not None:
        if user_id and user_id != auth_user.sub:
            raise Forbidden("user_id does not match the authenticated user")
        return Identity.user(auth_user.sub)
    if user_id:
        raise Unauthenticated("Bearer token required for user_id")
    if device_id:
        return Identity.device(device_id)
    raise InvalidRequest("device_id or user_id required")


def resolve_target(device_id: Any, user_id: Any) -> Optional[Identity]:
    """Admin target: an explicit account wins over a device, neither means all rows."""
    user_id = normalize_id(user_id, "user_id")
    if user_id:
        return Identity.user(user_id)
    device_id = normalize_id(device_id, "device_id")
    if device_id:
        return Identity.device(device_id)
    return None
