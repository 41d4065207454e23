from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default) not in ("0", "false", "False", "")


def _csv(name: str) -> Tuple[str, ...]:
    raw = os.environ.get(name, "")
    return tuple(v.strip().lower() for v in raw.split(",") if v.strip())


@dataclass(frozen=True)
class Settings:
    # AWS
    aws_region: str = os.environ.get("AWS_REGION", "us-east-1")

    # Ledger storage
    ledger_backend: str = os.environ.get("LEDGER_BACKEND", "dynamodb").lower()
    device_usage_table: str = os.environ.get("DEVICE_USAGE_TABLE", "device_usage")
    user_credits_table: str = os.environ.get("USER_CREDITS_TABLE", "user_credits")
    donations_table: str = os.environ.get("DONATIONS_TABLE", "donations")
    saved_setups_table: str = os.environ.get("SAVED_SETUPS_TABLE", "saved_setups")
    ledger_max_attempts: int = int(os.environ.get("LEDGER_MAX_ATTEMPTS", "5"))

    # Quota / credit policy
    free_uses_limit: int = int(os.environ.get("FREE_USES_LIMIT", "3"))
    credit_cents_per_unit: int = int(os.environ.get("CREDIT_CENTS_PER_UNIT", "50"))
    min_credits_per_payment: int = int(os.environ.get("MIN_CREDITS_PER_PAYMENT", "1"))

    # Admin
    admin_emails: Tuple[str, ...] = _csv("ADMIN_EMAILS")
    admin_require_allowlist: bool = _flag("ADMIN_REQUIRE_ALLOWLIST", "0")

    # Cognito (optional wiring; auth is pluggable)
    cognito_user_pool_id: str = os.environ.get("COGNITO_USER_POOL_ID", "")
    cognito_region: str = os.environ.get("COGNITO_REGION", "")
    cognito_app_client_id: str = os.environ.get("COGNITO_APP_CLIENT_ID", "")
    cognito_expected_token_use: str = os.environ.get("COGNITO_EXPECTED_TOKEN_USE", "access")
    auth_dev_fallback: bool = _flag("AUTH_DEV_FALLBACK", "0")

    # Stripe
    stripe_secret_key: str = os.environ.get("STRIPE_SECRET_KEY", "")
    stripe_publishable_key: str = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
    stripe_webhook_secret: str = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    stripe_webhook_tolerance_seconds: int = int(os.environ.get("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))
    stripe_default_currency: str = os.environ.get("STRIPE_DEFAULT_CURRENCY", "usd").lower()

    # Checkout
    checkout_min_amount_cents: int = int(os.environ.get("CHECKOUT_MIN_AMOUNT_CENTS", "500"))
    checkout_default_amount_cents: int = int(os.environ.get("CHECKOUT_DEFAULT_AMOUNT_CENTS", "500"))
    checkout_product_name: str = os.environ.get("CHECKOUT_PRODUCT_NAME", "Loop credits donation")
    app_url: str = os.environ.get("APP_URL", "http://localhost:5173").rstrip("/")

    metrics_enabled: bool = _flag("METRICS_ENABLED", "1")
    audit_log_enabled: bool = _flag("AUDIT_LOG_ENABLED", "1")

    @property
    def cognito_enabled(self) -> bool:
        return bool(self.cognito_user_pool_id and self.cognito_app_client_id)


S = Settings()
