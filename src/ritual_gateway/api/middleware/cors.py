"""
CORS origin guard.

Starlette's CORSMiddleware only omits the CORS headers for a disallowed
origin; the request itself still runs. This guard sits in front of it and
rejects such requests outright with 403 cors_rejected. Requests without an
Origin header (curl, server-to-server) pass through.
"""

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ...errors import CORSRejected
from ..errors import error_response

logger = logging.getLogger(__name__)


class CORSOriginGuard(BaseHTTPMiddleware):
    def __init__(self, app, allowed_origins: list[str]):
        super().__init__(app)
        self.allow_any = "*" in allowed_origins
        self.allowed_origins = frozenset(o.rstrip("/") for o in allowed_origins)

    def is_allowed(self, origin: str) -> bool:
        return self.allow_any or origin.rstrip("/") in self.allowed_origins

    async def dispatch(self, request: Request, call_next):
        origin = request.headers.get("origin")
        if origin and not self.is_allowed(origin):
            logger.warning(f"[CORS] Rejected origin {origin} on {request.url.path}")
            return error_response(CORSRejected(f"Origin '{origin}' is not allowed"))
        return await call_next(request)
