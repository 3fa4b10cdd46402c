"""
FastAPI application for the blue-green manager.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bluegreen_manager import __version__
from bluegreen_manager.config.settings import BlueGreenConfig
from bluegreen_manager.deployment_orchestrator import DeploymentOrchestrator
from bluegreen_manager.errors import (
    BlueGreenError,
    DeploymentInProgressError,
    DeploymentTimeoutError,
    InvalidConfigError,
    StorageUnavailableError,
)

from .routes import router

logger = logging.getLogger(__name__)

API_PREFIX = "/bluegreen/v1"

ERROR_STATUS_CODES = {
    InvalidConfigError: 422,
    DeploymentInProgressError: 409,
    StorageUnavailableError: 503,
    DeploymentTimeoutError: 504,
}


def create_app(
    orchestrator: DeploymentOrchestrator,
    deploy_token: Optional[str] = None,
    reconcile_on_startup: bool = True,
) -> FastAPI:
    """
    Create the API application around an orchestrator.

    Args:
        orchestrator: Orchestrator serving the routes
        deploy_token: Bearer token required for deploy triggers, if any
        reconcile_on_startup: Align the router with the registry before serving
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if reconcile_on_startup:
            try:
                applied, error = await orchestrator.reconcile()
            except BlueGreenError as e:
                applied, error = False, str(e)
            if not applied:
                logger.error(f"Router reconcile failed at startup: {error}")
        yield

    app = FastAPI(title="Blue-Green Manager API", version=__version__, lifespan=lifespan)
    app.state.deployment_orchestrator = orchestrator
    app.state.deploy_token = deploy_token

    @app.exception_handler(BlueGreenError)
    async def bluegreen_error_handler(request: Request, exc: BlueGreenError) -> JSONResponse:
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": str(exc), "exit_code": exc.exit_code},
        )

    app.include_router(router, prefix=API_PREFIX)
    return app


def serve(config: BlueGreenConfig, orchestrator: DeploymentOrchestrator) -> None:
    """Run the API with uvicorn until interrupted."""
    import uvicorn

    app = create_app(orchestrator, deploy_token=config.api.deploy_token)
    logger.info(f"Starting API on {config.api.host}:{config.api.port}{API_PREFIX}")
    uvicorn.run(app, host=config.api.host, port=config.api.port, log_level="info")
