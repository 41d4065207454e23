from __future__ import annotations

import base64
import json
import logging
import threading
from typing import Any, Dict, Optional

import jwt
import requests
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends, Request

from loop_ledger.core.aws import cognito_client
from loop_ledger.core.errors import Unauthenticated
from loop_ledger.core.settings import Settings
from loop_ledger.services.identity import AuthUser

logger = logging.getLogger(__name__)


class IdentityProvider:
    def authenticate(self, token: str) -> AuthUser:
        raise NotImplementedError


class DisabledIdentityProvider(IdentityProvider):
    def authenticate(self, token: str) -> AuthUser:
        raise Unauthenticated("Authentication is not configured")


class CognitoIdentityProvider(IdentityProvider):
    """Validates Cognito-issued RS256 JWTs against the pool JWKS."""

    def __init__(self, settings: Settings, *, http: Any = requests, cognito: Any = None) -> None:
        self.settings = settings
        self.http = http
        self._cognito = cognito
        self._jwks: Optional[Dict[str, Any]] = None
        self._lock = threading.Lock()

    @property
    def issuer(self) -> str:
        region = self.settings.cognito_region or self.settings.aws_region
        return f"https://cognito-idp.{region}.amazonaws.com/{self.settings.cognito_user_pool_id}"

    def _cognito_jwks(self) -> Dict[str, Any]:
        with self._lock:
            if self._jwks is None:
                resp = self.http.get(f"{self.issuer}/.well-known/jwks.json", timeout=10)
                resp.raise_for_status()
                self._jwks = resp.json()
            return self._jwks

    def _resolve_key(self, kid: str) -> Dict[str, Any]:
        try:
            keys = self._cognito_jwks().get("keys", [])
        except requests.RequestException as exc:
            logger.warning("could not fetch Cognito JWKS: %s", exc)
            raise Unauthenticated("Identity provider unavailable") from exc
        for key in keys:
            if key.get("kid") == kid:
                return key
        raise Unauthenticated("Unknown Cognito key id")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError as exc:
            raise Unauthenticated("Invalid token header") from exc

        key = self._resolve_key(header.get("kid", ""))
        public_key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(key))
        # Access tokens carry client_id instead of aud.
        verify_aud = self.settings.cognito_expected_token_use != "access"
        try:
            payload = jwt.decode(
                token,
                public_key,
                algorithms=["RS256"],
                audience=self.settings.cognito_app_client_id if verify_aud else None,
                issuer=self.issuer,
                options={"verify_aud": verify_aud},
            )
        except jwt.ExpiredSignatureError as exc:
            raise Unauthenticated("Token expired") from exc
        except jwt.PyJWTError as exc:
            raise Unauthenticated("Invalid token") from exc

        expected_use = self.settings.cognito_expected_token_use
        if expected_use and payload.get("token_use") != expected_use:
            raise Unauthenticated("Unexpected token use")
        if not verify_aud and payload.get("client_id") != self.settings.cognito_app_client_id:
            raise Unauthenticated("Token issued for another client")
        return payload

    def _email_from_user_pool(self, token: str) -> Optional[str]:
        if self._cognito is None:
            self._cognito = cognito_client(self.settings)
        try:
            resp = self._cognito.get_user(AccessToken=token)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Cognito GetUser failed: %s", exc)
            return None
        for attr in resp.get("UserAttributes", []):
            if attr.get("Name") == "email":
                return attr.get("Value")
        return None

    def authenticate(self, token: str) -> AuthUser:
        payload = self.decode(token)
        sub = payload.get("sub") or payload.get("cognito:username") or payload.get("username")
        if not sub:
            raise Unauthenticated("Token missing subject")
        email = payload.get("email")
        if not email and payload.get("token_use") == "access":
            email = self._email_from_user_pool(token)
        return AuthUser(sub=str(sub), email=email)


def _decode_jwt_claims(token: str) -> Optional[Dict[str, Any]]:
    if token.count(".") != 2:
        return None
    _, payload, _ = token.split(".", 2)
    if not payload:
        return None
    padding = "=" * (-len(payload) % 4)
    try:
        decoded = base64.urlsafe_b64decode(payload + padding)
        data = json.loads(decoded.decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


class DevIdentityProvider(IdentityProvider):
    """Local development only: trusts unverified JWT claims, or the raw token as the subject."""

    def authenticate(self, token: str) -> AuthUser:
        claims = _decode_jwt_claims(token) or {}
        sub = claims.get("sub")
        if not isinstance(sub, str) or not sub.strip():
            sub = token
        email = claims.get("email")
        return AuthUser(sub=sub.strip(), email=email if isinstance(email, str) else None)


def build_identity_provider(settings: Settings) -> IdentityProvider:
    if settings.cognito_enabled:
        return CognitoIdentityProvider(settings)
    if settings.auth_dev_fallback:
        logger.warning("AUTH_DEV_FALLBACK is on; bearer tokens are not verified")
        return DevIdentityProvider()
    return DisabledIdentityProvider()


def extract_bearer_token(auth_header: Optional[str]) -> str:
    if not auth_header:
        raise Unauthenticated("Missing Authorization header")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Invalid Authorization header")
    return token.strip()


def get_services(request: Request):
    return request.app.state.services


def optional_auth_user(request: Request, services=Depends(get_services)) -> Optional[AuthUser]:
    auth = request.headers.get("authorization")
    if not auth:
        return None
    return services.identity.authenticate(extract_bearer_token(auth))


def require_auth_user(user: Optional[AuthUser] = Depends(optional_auth_user)) -> AuthUser:
    if user is None:
        raise Unauthenticated("Missing bearer token")
    return user
