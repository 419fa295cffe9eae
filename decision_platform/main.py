"""FastAPI application entry point."""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from decision_platform import __version__
from decision_platform.arbiter import Arbiter, load_arbiter
from decision_platform.config import Settings, get_settings
from decision_platform.decisions import DecisionService, decide_router, generate_request_id
import decision_platform.decisions.router as decisions_router
from decision_platform.logging_config import configure_logging
from decision_platform.metrics import MetricsSink, PrometheusMetrics

logger = structlog.get_logger(__name__)


def build_service(settings: Settings, metrics: MetricsSink | None = None) -> DecisionService:
    """Build the decision service described by the settings.

    Raises:
        ConfigError: If the rules cannot be loaded.
        ArbiterLoadError: If the configured arbiter factory is unusable.
    """
    arbiter: Arbiter | None = None
    if settings.ai_enabled and settings.arbiter_factory:
        arbiter = load_arbiter(settings.arbiter_factory)
    elif settings.arbitration_enabled:
        logger.warning("arbiter_not_configured", reason="ARBITER_FACTORY is not set")
    return DecisionService.from_settings(settings, arbiter=arbiter, metrics=metrics)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    logger.info(
        "starting",
        app_name=settings.app_name,
        version=settings.engine_version,
        rules_path=settings.rules_config_path,
        ai_enabled=settings.ai_enabled,
    )

    if app.state.service is None:
        app.state.service = build_service(settings, app.state.metrics)
        decisions_router.set_service(app.state.service)

    yield

    decisions_router.mark_shutting_down()
    logger.info("shutting_down")


def create_app(
    settings: Settings | None = None,
    service: DecisionService | None = None,
    metrics: PrometheusMetrics | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title=settings.app_name,
        description="Policy decision point: prioritized rules with optional arbitration",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.metrics = metrics or PrometheusMetrics()
    app.state.service = service
    decisions_router.set_service(service)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id

        if decisions_router.is_shutting_down() and request.url.path != "/health":
            return JSONResponse(
                status_code=503,
                content={"error": "Service shutting down", "retryAfter": 5},
                headers={"X-Request-ID": request_id},
            )

        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "http_request",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )
        return response

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_exception", path=request.url.path, error=str(exc))
        app.state.metrics.record_error("unhandled_exception", request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "requestId": getattr(request.state, "request_id", None),
            },
        )

    app.include_router(decide_router)  # /decide, /ready, /status, /reload

    @app.get("/health")
    async def health():
        """Liveness probe."""
        return {
            "status": "healthy",
            "version": settings.engine_version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        """Prometheus metrics."""
        payload, content_type = app.state.metrics.render()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)
