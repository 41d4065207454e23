from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import stripe

from loop_ledger.core.errors import InvalidRequest, NotConfigured, UpstreamPaymentError
from loop_ledger.services.audit import audit_event
from loop_ledger.services.identity import Identity

logger = logging.getLogger(__name__)


class CheckoutService:
    def __init__(
        self,
        *,
        secret_key: str,
        app_url: str,
        currency: str = "usd",
        min_amount_cents: int = 500,
        default_amount_cents: int = 500,
        product_name: str = "Loop credits donation",
    ) -> None:
        self.secret_key = secret_key
        self.app_url = app_url.rstrip("/")
        self.currency = currency
        self.min_amount_cents = min_amount_cents
        self.default_amount_cents = default_amount_cents
        self.product_name = product_name

    def amount_for(self, amount_cents: Optional[int]) -> int:
        if amount_cents is None or amount_cents == 0:
            amount_cents = self.default_amount_cents
        if amount_cents < 0:
            raise InvalidRequest("amount must be positive")
        return max(self.min_amount_cents, int(amount_cents))

    def create_session(self, identity: Identity, amount_cents: Optional[int] = None) -> Dict[str, Any]:
        if not self.secret_key:
            raise NotConfigured("Stripe is not configured")
        amount = self.amount_for(amount_cents)

        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                mode="payment",
                success_url=f"{self.app_url}/?donation=success",
                cancel_url=f"{self.app_url}/?donation=cancel",
                client_reference_id=identity.id,
                line_items=[
                    {
                        "quantity": 1,
                        "price_data": {
                            "currency": self.currency,
                            "unit_amount": amount,
                            "product_data": {"name": self.product_name},
                        },
                    }
                ],
                metadata=identity.echo(),
            )
        except stripe.StripeError as exc:
            logger.warning("checkout session failed for %s: %s", identity, exc)
            raise UpstreamPaymentError(getattr(exc, "user_message", None) or str(exc) or "Stripe error") from exc

        audit_event("checkout_created", str(identity), session_id=session["id"], amount=amount)
        return {"url": session["url"], "session_id": session["id"]}
