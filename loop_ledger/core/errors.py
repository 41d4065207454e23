"""Error taxonomy for the ledger.

Every failure a caller can see is an ``HTTPException`` so services raise them
directly and FastAPI renders them with its stock handler.
"""
from __future__ import annotations

from fastapi import HTTPException


class LedgerError(HTTPException):
    status_code = 500
    default_detail = "Internal error"

    def __init__(self, detail: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(status_code or self.status_code, detail or self.default_detail)


class InvalidRequest(LedgerError):
    status_code = 400
    default_detail = "Invalid request"


class Unauthenticated(LedgerError):
    status_code = 401
    default_detail = "Unauthorized"


class Forbidden(LedgerError):
    status_code = 403
    default_detail = "Forbidden"


class StoreUnavailable(LedgerError):
    status_code = 502
    default_detail = "Ledger store unavailable"


class SignatureInvalid(LedgerError):
    status_code = 400
    default_detail = "Invalid signature"


class UpstreamPaymentError(LedgerError):
    status_code = 400
    default_detail = "Stripe error"


class NotConfigured(LedgerError):
    status_code = 501
    default_detail = "Not configured"
