"""
API key authentication middleware.

Shared-secret validation. Clients pass either header:
    Authorization: Bearer your-secret-key
    X-API-Key: your-secret-key

Security:
    - In production (ENV=production), API_KEY is REQUIRED. Startup fails if
      it's missing (see config.check_production_auth). Set AUTH_DISABLED=true
      to explicitly opt out.
    - In development (default), no API_KEY means auth is disabled.
    - Key comparison uses constant-time hmac.compare_digest (no timing attack).
    - Health and OpenAPI docs paths are exempt.

Downstream handlers find an AuthContext on request.state.auth.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ...errors import Unauthorized
from ..errors import error_response

logger = logging.getLogger(__name__)

EXEMPT_PATHS = frozenset({"/health", "/docs", "/docs/oauth2-redirect", "/openapi.json", "/redoc"})


@dataclass
class AuthContext:
    """Authentication context attached to every authenticated request.

    Attributes:
        authenticated: False when auth is disabled or the path is exempt.
        user_id: Short identifier derived from SHA-256 hash of the key (16 hex chars) or "anon".
    """

    authenticated: bool = False
    user_id: str = "anon"


def extract_credential(request: Request) -> str | None:
    """Bearer token or X-API-Key header value, whichever is present."""
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    api_key = request.headers.get("x-api-key", "").strip()
    return api_key or None


class AuthMiddleware(BaseHTTPMiddleware):
    """Rejects requests without the configured API key (401 unauthorized)."""

    def __init__(self, app, api_key: str | None):
        super().__init__(app)
        self.api_key = api_key

    async def dispatch(self, request: Request, call_next):
        if self.api_key is None or request.url.path in EXEMPT_PATHS:
            request.state.auth = AuthContext()
            return await call_next(request)

        credential = extract_credential(request)
        client_host = request.client.host if request.client else "unknown"
        if credential is None:
            logger.warning(f"[Auth] Missing credentials from {client_host}")
            return error_response(Unauthorized("Missing API key"))
        if not hmac.compare_digest(credential.encode(), self.api_key.encode()):
            logger.warning(f"[Auth] Invalid API key from {client_host}")
            return error_response(Unauthorized("Invalid API key"))

        request.state.auth = AuthContext(
            authenticated=True,
            user_id=hashlib.sha256(credential.encode()).hexdigest()[:16],
        )
        return await call_next(request)
