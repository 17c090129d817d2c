"""FastAPI application entry point for the ThreatPilot Remediation API."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from threatpilot import __version__
from threatpilot.api.v1 import health, remediation
from threatpilot.exceptions import RemediationError
from threatpilot.services.orchestrator import RemediationOrchestrator
from threatpilot.utils.config import Settings, load_settings
from threatpilot.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


async def _remediation_error_handler(request: Request, exc: RemediationError) -> JSONResponse:
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "remediation_request_failed",
        status_code=exc.status_code,
        error=exc.message,
        details=getattr(exc, "detail", None),
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    orchestrator: Optional[RemediationOrchestrator] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Build the app.

    When *orchestrator* is given (tests) it is used as is; otherwise the
    lifespan wires the Cloudflare, Jira and Slack clients from *settings*.
    Either way the orchestrator is closed on shutdown, which cancels any
    pending block expiry.
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(log_level=settings.log_level)
        logger.info("remediation_api_starting", block_policy=settings.block_policy)
        for name in settings.missing_credentials():
            logger.warning("collaborator_not_configured", collaborator=name)

        if orchestrator is None:
            app.state.orchestrator = RemediationOrchestrator.from_settings(settings)
            logger.info("orchestrator_initialized")

        yield

        logger.info("remediation_api_shutting_down")
        await app.state.orchestrator.close()

    app = FastAPI(
        title=settings.service_name,
        version=__version__,
        description=(
            "Executes reversible network blocks immediately and turns "
            "service-impacting remediations into Jira approval tickets."
        ),
        lifespan=lifespan,
    )
    app.state.settings = settings
    if orchestrator is not None:
        app.state.orchestrator = orchestrator

    app.add_exception_handler(RemediationError, _remediation_error_handler)
    app.include_router(health.router, tags=["System"])
    app.include_router(remediation.router, tags=["Remediation"])
    return app


app = create_app()
