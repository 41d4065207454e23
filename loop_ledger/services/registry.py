from __future__ import annotations

import logging
from dataclasses import dataclass

from loop_ledger.auth.deps import IdentityProvider, build_identity_provider
from loop_ledger.core.aws import dynamodb_resource
from loop_ledger.core.settings import Settings
from loop_ledger.core.tables import build_tables
from loop_ledger.services.checkout import CheckoutService
from loop_ledger.services.ledger import LedgerService
from loop_ledger.services.ledger_store import DynamoLedgerStore, InMemoryLedgerStore, LedgerStore
from loop_ledger.services.quota import CreditPolicy
from loop_ledger.services.setups import InMemorySetupsService, SetupsService
from loop_ledger.services.webhook import PaymentReconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    store: LedgerStore
    identity: IdentityProvider
    ledger: LedgerService
    reconciler: PaymentReconciler
    checkout: CheckoutService
    setups: SetupsService
    stripe_publishable_key: str = ""
    currency: str = "usd"


def build_services(
    settings: Settings,
    *,
    store: LedgerStore | None = None,
    identity: IdentityProvider | None = None,
    setups: SetupsService | None = None,
) -> Services:
    """Wire every collaborator once at startup; handlers only ever see this object."""
    if store is None or setups is None:
        if settings.ledger_backend == "memory":
            store = store or InMemoryLedgerStore()
            setups = setups or InMemorySetupsService()
        else:
            tables = build_tables(dynamodb_resource(settings), settings)
            store = store or DynamoLedgerStore(tables, max_attempts=settings.ledger_max_attempts)
            setups = setups or SetupsService(tables.saved_setups)

    if not settings.admin_emails and not settings.admin_require_allowlist:
        logger.warning("ADMIN_EMAILS is empty; every authenticated user is an admin")

    return Services(
        store=store,
        identity=identity or build_identity_provider(settings),
        ledger=LedgerService(
            store,
            free_quota=settings.free_uses_limit,
            admin_emails=settings.admin_emails,
            require_allowlist=settings.admin_require_allowlist,
        ),
        reconciler=PaymentReconciler(
            store,
            webhook_secret=settings.stripe_webhook_secret,
            credit_policy=CreditPolicy(settings.credit_cents_per_unit, settings.min_credits_per_payment),
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        ),
        checkout=CheckoutService(
            secret_key=settings.stripe_secret_key,
            app_url=settings.app_url,
            currency=settings.stripe_default_currency,
            min_amount_cents=settings.checkout_min_amount_cents,
            default_amount_cents=settings.checkout_default_amount_cents,
            product_name=settings.checkout_product_name,
        ),
        setups=setups,
        stripe_publishable_key=settings.stripe_publishable_key,
        currency=settings.stripe_default_currency,
    )
