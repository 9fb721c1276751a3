"""Middleware for the cfbackup web server.

Provides HTTP basic authentication and request logging as plain ASGI
middleware.
"""

import base64
import binascii
import hmac
import json
import time
from typing import Any, Iterable, Optional

from cfbackup.logger import Logger


def _credentials(scope: dict) -> Optional[tuple]:
    headers = dict(scope.get("headers", []))
    header = headers.get(b"authorization", b"").decode("latin-1")
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded:
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, sep, password = decoded.partition(":")
    if not sep:
        return None
    return username, password


class BasicAuthMiddleware:
    """Starlette middleware enforcing HTTP basic authentication.

    Credentials are compared in constant time. Paths listed in
    ``exempt_paths`` (health checks) pass through unauthenticated. With no
    username configured, authentication is disabled.

    Example:
        app.add_middleware(BasicAuthMiddleware, username="admin", password="secret")
    """

    def __init__(
        self,
        app: Any,
        username: str = "",
        password: str = "",
        exempt_paths: Iterable[str] = ("/ping", "/health"),
        realm: str = "cfbackup",
    ) -> None:
        self.app = app
        self.username = username
        self.password = password
        self.exempt_paths = frozenset(exempt_paths)
        self.realm = realm

    def _authorized(self, scope: dict) -> bool:
        credentials = _credentials(scope)
        if credentials is None:
            return False
        username, password = credentials
        user_ok = hmac.compare_digest(username.encode("utf-8"), self.username.encode("utf-8"))
        pass_ok = hmac.compare_digest(password.encode("utf-8"), self.password.encode("utf-8"))
        return user_ok and pass_ok

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if (
            scope["type"] != "http"
            or not self.username
            or scope.get("path", "/") in self.exempt_paths
            or self._authorized(scope)
        ):
            await self.app(scope, receive, send)
            return

        body = json.dumps(
            {"code": "UNAUTHORIZED", "message": "authentication required", "details": {}}
        ).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": 401,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(body)).encode("latin-1")),
                    (b"www-authenticate", f'Basic realm="{self.realm}"'.encode("latin-1")),
                ],
            }
        )
        await send({"type": "http.response.body", "body": body})


class RequestLoggingMiddleware:
    """Middleware to log incoming requests.

    Logs request method, path, status and timing information.
    """

    def __init__(self, app: Any, logger: Optional[Logger] = None) -> None:
        self.app = app
        self.logger = logger

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] != "http" or not self.logger:
            await self.app(scope, receive, send)
            return

        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "/")
        start_time = time.monotonic()
        response_status = 0

        async def send_wrapper(message: dict) -> None:
            nonlocal response_status
            if message["type"] == "http.response.start":
                response_status = message.get("status", 0)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = (time.monotonic() - start_time) * 1000
            self.logger.info(
                f"{method} {path}",
                status=response_status,
                duration_ms=round(duration_ms, 2),
            )
