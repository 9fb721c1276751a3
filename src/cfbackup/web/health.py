"""Health check routes for the cfbackup web server."""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route


def create_ping_response(service: str, status: str = "ok") -> Dict[str, Any]:
    """Create a standard ping response.

    Example:
        >>> create_ping_response("cfbackup")
        {"status": "ok", "timestamp": "2025-01-01T12:00:00+00:00", "service": "cfbackup"}
    """
    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": service,
    }


def create_health_response(
    service: str,
    auth_enabled: bool = False,
    healthy: bool = True,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    response = {
        "status": "healthy" if healthy else "unhealthy",
        "service": service,
        "auth_enabled": auth_enabled,
    }
    if extra:
        response.update(extra)
    return response


def create_health_routes(
    service: str,
    auth_enabled: bool = False,
    details: Optional[Callable[[], Dict[str, Any]]] = None,
) -> List[Route]:
    """Create /ping and /health routes.

    Args:
        service: Service name for responses
        auth_enabled: Whether basic auth is enabled (reported only)
        details: Optional callable returning extra fields for /health
    """

    async def ping(request: Request) -> JSONResponse:
        return JSONResponse(create_ping_response(service))

    async def health(request: Request) -> JSONResponse:
        extra = details() if details is not None else None
        return JSONResponse(create_health_response(service, auth_enabled=auth_enabled, extra=extra))

    return [
        Route("/ping", endpoint=ping, methods=["GET"]),
        Route("/health", endpoint=health, methods=["GET"]),
    ]
