"""Starlette application factory for cfbackup."""

import contextlib
from typing import Any, AsyncIterator, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount

from cfbackup.backup import BackupOrchestrator, BackupScheduler
from cfbackup.config import AppConfig
from cfbackup.exceptions import (
    BackupError,
    BusyError,
    NotFoundError,
    UnsupportedError,
    ValidationError,
)
from cfbackup.logger import Logger, get_logger
from cfbackup.web.health import create_health_routes
from cfbackup.web.metrics import JobMetrics, create_metrics_route
from cfbackup.web.middleware import BasicAuthMiddleware, RequestLoggingMiddleware
from cfbackup.web.routes import create_api_routes

API_PREFIX = "/api/v1"

_STATUS_CODES = (
    (ValidationError, 400),
    (UnsupportedError, 400),
    (NotFoundError, 404),
    (BusyError, 409),
)


def status_for(error: BackupError) -> int:
    """HTTP status code for a BackupError; 500 for anything unmapped."""
    for error_type, status in _STATUS_CODES:
        if isinstance(error, error_type):
            return status
    return 500


def create_app(
    orchestrator: BackupOrchestrator,
    config: Optional[AppConfig] = None,
    logger: Optional[Logger] = None,
    scheduler: Optional[BackupScheduler] = None,
    debug: bool = False,
) -> Starlette:
    """Create the control plane application.

    Args:
        orchestrator: Orchestrator serving all requests
        config: Resolved configuration (auth credentials); defaults apply if None
        logger: Logger for request and error logging
        scheduler: Optional scheduler started and stopped with the app
        debug: Enable Starlette debug mode

    Example:
        app = create_app(orchestrator, config, scheduler=BackupScheduler(orchestrator))
        uvicorn.run(app, host="0.0.0.0", port=config.port)
    """
    config = config or AppConfig()
    logger = logger or get_logger("cfbackup")

    async def handle_backup_error(request: Request, exc: Any) -> JSONResponse:
        status = status_for(exc)
        if status >= 500:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(exc),
                error_code=exc.code,
            )
        return JSONResponse(exc.to_dict(), status_code=status)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        if scheduler is not None:
            scheduler.start()
        logger.info("Control plane started", services=len(orchestrator.services()))
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            await orchestrator.shutdown()
            logger.info("Control plane stopped")

    def health_details() -> dict:
        return {"jobs_in_flight": sum(1 for state in orchestrator.states() if state.phase.in_flight)}

    routes = create_health_routes("cfbackup", auth_enabled=bool(config.username), details=health_details) + [
        Mount(API_PREFIX, routes=create_api_routes()),
    ]

    metrics = None
    exempt_paths = ["/ping", "/health"]
    if not config.disable_metrics:
        metrics = JobMetrics()
        orchestrator.add_listener(metrics.observe)
        routes.append(create_metrics_route(metrics))
        if config.unprotected_metrics:
            exempt_paths.append("/metrics")

    app = Starlette(
        debug=debug,
        routes=routes,
        lifespan=lifespan,
        exception_handlers={BackupError: handle_backup_error},
        middleware=[
            Middleware(RequestLoggingMiddleware, logger=logger),
            Middleware(
                BasicAuthMiddleware,
                username=config.username,
                password=config.password,
                exempt_paths=exempt_paths,
            ),
        ],
    )
    app.state.orchestrator = orchestrator
    app.state.config = config
    app.state.metrics = metrics
    return app
