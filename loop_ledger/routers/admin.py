from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from loop_ledger.auth.deps import get_services, require_auth_user
from loop_ledger.models import AdminSetCreditsReq, IdentityReq
from loop_ledger.services.identity import AuthUser, resolve_target

router = APIRouter(tags=["admin"])


@router.post("/api/admin/reset")
@router.post("/admin/reset")
def admin_reset(
    body: IdentityReq,
    admin: AuthUser = Depends(require_auth_user),
    services=Depends(get_services),
) -> Dict[str, Any]:
    target = resolve_target(body.device_id, body.user_id)
    return services.ledger.admin_reset(admin, target)


@router.post("/api/admin/set-credits")
@router.post("/admin/set-credits")
def admin_set_credits(
    body: AdminSetCreditsReq,
    admin: AuthUser = Depends(require_auth_user),
    services=Depends(get_services),
) -> Dict[str, Any]:
    target = resolve_target(body.device_id, body.user_id)
    credits = body.credits or body.donation_credits
    record = services.ledger.admin_set_balance(admin, target, body.free_used, credits)
    return {
        "ok": True,
        **target.echo(),
        "free_used": record.free_used,
        "donation_credits": record.credits,
        "credits": record.credits,
    }
