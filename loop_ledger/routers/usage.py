from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

from loop_ledger.auth.deps import get_services, optional_auth_user
from loop_ledger.models import IdentityReq
from loop_ledger.services.identity import AuthUser, resolve_identity

router = APIRouter(tags=["usage"])


@router.post("/api/usage/check")
@router.post("/usage/check")
def usage_check(
    body: IdentityReq,
    user: Optional[AuthUser] = Depends(optional_auth_user),
    services=Depends(get_services),
) -> Dict[str, Any]:
    identity = resolve_identity(body.device_id, body.user_id, user)
    bal = services.ledger.check(identity)
    return {
        **identity.echo(),
        "free_used": bal.free_used,
        "donation_credits": bal.credits,
        "free_remaining": bal.free_remaining,
        "credits_remaining": bal.credits_remaining,
    }


@router.post("/api/usage/consume")
@router.post("/usage/consume")
def usage_consume(
    body: IdentityReq,
    user: Optional[AuthUser] = Depends(optional_auth_user),
    services=Depends(get_services),
) -> Dict[str, Any]:
    identity = resolve_identity(body.device_id, body.user_id, user)
    res = services.ledger.consume(identity)
    return {
        "allowed": res.allowed,
        "free_used": res.free_used,
        "donation_credits": res.credits,
        "credits_remaining": res.credits,
    }
