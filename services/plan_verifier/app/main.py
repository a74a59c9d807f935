"""FastAPI application entrypoint."""
from __future__ import annotations

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api import reviews
from .config import get_settings
from .errors import PlanVerifierError
from .observability.logging_config import configure_logging
from .observability.otel import configure_telemetry
from .persistence.db import dispose_engine, init_db

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI):  # pragma: no cover - FastAPI lifecycle
    await init_db()
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Plan Conformance Verifier",
        version="0.1.0",
        docs_url="/docs",
        redoc_url=None,
        lifespan=_lifespan,
    )

    configure_logging(json_output=True)
    configure_telemetry()

    @app.exception_handler(PlanVerifierError)
    async def _verifier_error_handler(request: Request, exc: PlanVerifierError):
        logger.warning("api.review_failed", path=request.url.path, error=type(exc).__name__, message=str(exc))
        return JSONResponse(
            status_code=422,
            content={"error": type(exc).__name__, "message": str(exc), "remediation": exc.remediation},
        )

    @app.exception_handler(Exception)
    async def _generic_exception_handler(request: Request, exc: Exception):  # pragma: no cover - fallback
        logger.exception("api.unhandled_error", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalServerError",
                "message": str(exc),
                "remediation": "Retry the request; report it with the X-Correlation-ID header if it persists",
            },
        )

    app.include_router(reviews.router)

    @app.get("/healthz")
    async def healthcheck():
        return {"status": "ok", "environment": settings.environment}

    return app


app = create_app()


__all__ = ["app", "create_app"]
