from __future__ import annotations

from typing import Any, Dict, Optional

import anyio
from fastapi import APIRouter, Depends, Request

from loop_ledger.auth.deps import get_services, optional_auth_user
from loop_ledger.core.errors import NotConfigured
from loop_ledger.models import CheckoutReq
from loop_ledger.services.identity import AuthUser, resolve_identity

router = APIRouter(tags=["billing"])


@router.get("/api/billing/config")
@router.get("/billing/config")
def billing_config(services=Depends(get_services)) -> Dict[str, str]:
    if not services.stripe_publishable_key:
        raise NotConfigured("Missing STRIPE_PUBLISHABLE_KEY")
    return {
        "publishable_key": services.stripe_publishable_key,
        "currency": services.currency,
    }


@router.post("/api/create-checkout-session")
@router.post("/create-checkout-session")
def create_checkout_session(
    body: CheckoutReq,
    user: Optional[AuthUser] = Depends(optional_auth_user),
    services=Depends(get_services),
) -> Dict[str, str]:
    identity = resolve_identity(body.device_id, body.user_id, user)
    return services.checkout.create_session(identity, body.amount)


@router.post("/api/stripe/webhook")
@router.post("/stripe/webhook")
async def stripe_webhook(req: Request, services=Depends(get_services)) -> Dict[str, Any]:
    if not services.reconciler.webhook_secret:
        raise NotConfigured("Stripe webhook secret not configured")

    payload = await req.body()
    sig = req.headers.get("stripe-signature")
    outcome = await anyio.to_thread.run_sync(services.reconciler.handle, payload, sig)
    if outcome.duplicate:
        return {"received": True, "duplicate": True}
    return {"received": True}
