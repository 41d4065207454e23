"""Stripe webhook reconciliation.

A delivery moves ``received -> verified -> applied | ignored``; a bad
signature is ``rejected`` and raised as ``SignatureInvalid`` before anything
is read or written. Stripe delivers at least once, so a top-up is applied at
most once per checkout session id.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import stripe

from loop_ledger.core.errors import InvalidRequest, SignatureInvalid
from loop_ledger.core.normalize import normalize_id
from loop_ledger.metrics import record_webhook
from loop_ledger.services.audit import audit_event
from loop_ledger.services.identity import Identity
from loop_ledger.services.ledger_store import LedgerStore
from loop_ledger.services.quota import CreditPolicy

logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
REJECTED = "rejected"

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
CREDIT_EVENTS = (CHECKOUT_COMPLETED, CHECKOUT_ASYNC_SUCCEEDED)


@dataclass(frozen=True)
class WebhookOutcome:
    state: str
    reason: str = ""
    event_type: str = ""
    session_id: Optional[str] = None
    identity: Optional[Identity] = None
    credits_added: int = 0

    @property
    def duplicate(self) -> bool:
        return self.state == IGNORED and self.reason == "duplicate"


def identity_from_metadata(metadata: Any) -> Optional[Identity]:
    if not isinstance(metadata, dict):
        return None
    try:
        user_id = normalize_id(metadata.get("user_id"), "user_id")
        device_id = normalize_id(metadata.get("device_id"), "device_id")
    except InvalidRequest:
        return None
    if user_id:
        return Identity.user(user_id)
    if device_id:
        return Identity.device(device_id)
    return None


class PaymentReconciler:
    def __init__(
        self,
        store: LedgerStore,
        *,
        webhook_secret: str,
        credit_policy: CreditPolicy = CreditPolicy(),
        tolerance_seconds: int = 300,
    ) -> None:
        self.store = store
        self.webhook_secret = webhook_secret
        self.credit_policy = credit_policy
        self.tolerance_seconds = tolerance_seconds

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Check the ``Stripe-Signature`` header and return the event as plain dicts."""
        try:
            if not self.webhook_secret:
                raise stripe.SignatureVerificationError("Webhook secret not configured", signature_header)
            payload = raw_body.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, tolerance=self.tolerance_seconds
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            record_webhook(REJECTED)
            logger.warning("rejected webhook: %s", exc)
            raise SignatureInvalid() from exc

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise InvalidRequest("Malformed event body") from exc
        if not isinstance(event, dict):
            raise InvalidRequest("Malformed event body")
        return event

    def handle(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        event = self.verify(raw_body, signature_header)
        outcome = self.reconcile(event)
        record_webhook(outcome.reason if outcome.state == IGNORED else outcome.state, outcome.credits_added)
        audit_event(
            "stripe_webhook",
            str(outcome.identity) if outcome.identity else "-",
            outcome=outcome.state,
            reason=outcome.reason,
            event_id=event.get("id"),
            event_type=outcome.event_type,
            session_id=outcome.session_id,
            credits_added=outcome.credits_added,
        )
        return outcome

    def reconcile(self, event: Dict[str, Any]) -> WebhookOutcome:
        event_type = str(event.get("type") or "")
        if event_type not in CREDIT_EVENTS:
            return WebhookOutcome(IGNORED, "event_type", event_type)

        session = (event.get("data") or {}).get("object") or {}
        if not isinstance(session, dict):
            return WebhookOutcome(IGNORED, "no_session", event_type)

        # Delayed payment methods complete the session before the money lands;
        # those are credited on async_payment_succeeded instead.
        payment_status = session.get("payment_status")
        if event_type == CHECKOUT_COMPLETED and payment_status not in (None, "paid", "no_payment_required"):
            return WebhookOutcome(IGNORED, "unpaid", event_type, session.get("id"))

        session_id = session.get("id")
        if not isinstance(session_id, str) or not session_id:
            return WebhookOutcome(IGNORED, "no_session", event_type)

        identity = identity_from_metadata(session.get("metadata"))
        if identity is None:
            return WebhookOutcome(IGNORED, "no_identity", event_type, session_id)

        try:
            amount = max(0, int(session.get("amount_total") or 0))
        except (TypeError, ValueError):
            amount = 0
        credits = self.credit_policy.credits_for(amount)

        if not self.store.apply_top_up(identity, session_id, amount, credits):
            logger.info("duplicate delivery for session %s", session_id)
            return WebhookOutcome(IGNORED, "duplicate", event_type, session_id, identity)

        logger.info("credited %d to %s for session %s", credits, identity, session_id)
        return WebhookOutcome(APPLIED, "", event_type, session_id, identity, credits)
