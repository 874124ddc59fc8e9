"""ASGI middleware checking the shared callback secret header."""

from __future__ import annotations

import hmac
import logging

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-callback-secret"


class CallbackSecretMiddleware:
    """Rejects requests to protected paths without the shared secret.

    Uses constant-time comparison. Paths outside ``protected_paths`` pass
    through untouched.
    """

    def __init__(
        self,
        app: ASGIApp,
        secret: str,
        protected_paths: frozenset[str] = frozenset(),
    ) -> None:
        self.app = app
        self._secret = secret.encode()
        self._protected_paths = protected_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        path = request.url.path
        if path not in self._protected_paths:
            await self.app(scope, receive, send)
            return

        provided = request.headers.get(SECRET_HEADER, "").encode()
        if not provided or not hmac.compare_digest(provided, self._secret):
            logger.warning(
                "Rejected callback from %s: %s secret",
                request.client.host if request.client else "unknown",
                "missing" if not provided else "invalid",
            )
            response = JSONResponse({"error": "Unauthorized"}, status_code=401)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
