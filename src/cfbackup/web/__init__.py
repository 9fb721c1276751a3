"""Web surface for cfbackup.

Provides the Starlette REST application, basic-auth and request logging
middleware, health check routes and Prometheus metrics.
"""

from cfbackup.web.app import API_PREFIX, create_app, status_for
from cfbackup.web.health import (
    create_health_response,
    create_health_routes,
    create_ping_response,
)
from cfbackup.web.metrics import JobMetrics, create_metrics_route
from cfbackup.web.middleware import BasicAuthMiddleware, RequestLoggingMiddleware
from cfbackup.web.routes import create_api_routes

__all__ = [
    "API_PREFIX",
    "create_app",
    "status_for",
    "create_api_routes",
    # Middleware
    "BasicAuthMiddleware",
    "RequestLoggingMiddleware",
    # Metrics
    "JobMetrics",
    "create_metrics_route",
    # Health checks
    "create_health_routes",
    "create_ping_response",
    "create_health_response",
]
