"""Decision API endpoints."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Body, Request
from fastapi.responses import JSONResponse

from decision_platform.config import get_settings
from .schemas import FinalVerdict
from .service import DecisionService, generate_request_id

router = APIRouter(tags=["Decisions"])

# Global instances
_service: DecisionService | None = None
_shutting_down = False
_started_at = time.monotonic()


def get_service() -> DecisionService:
    """Get or create the decision service instance."""
    global _service
    if _service is None:
        _service = DecisionService.from_settings(get_settings())
    return _service


def set_service(service: DecisionService | None) -> None:
    """Install the service the endpoints use."""
    global _service, _shutting_down, _started_at
    _service = service
    _shutting_down = False
    _started_at = time.monotonic()


def mark_shutting_down() -> None:
    global _shutting_down
    _shutting_down = True


def is_shutting_down() -> bool:
    return _shutting_down


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.post("/decide")
async def decide(request: Request, payload: Any = Body(None)) -> JSONResponse:
    """Decide on a request.

    Body: ``{"request": {...}, "signals": {...}}``. Malformed bodies still
    get a decision; only a system fault answers with status 500.
    """
    service = get_service()
    request_id = getattr(request.state, "request_id", None) or generate_request_id()

    result = await service.decide(payload, request_id=request_id)
    status_code = 500 if result.decision.final == FinalVerdict.ERROR else 200
    return JSONResponse(
        status_code=status_code,
        content=result.model_dump(mode="json", by_alias=True),
    )


@router.get("/ready")
async def ready() -> JSONResponse:
    """Readiness probe: ready once rules are loaded and not shutting down."""
    if _shutting_down:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "shutting_down"},
        )

    service = get_service()
    status = service.get_status()
    rules_count = status.rule_engine.get("rulesCount", 0)
    if not rules_count:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "reason": "rules_not_loaded"},
        )

    return JSONResponse(
        status_code=200,
        content={
            "status": "ready",
            "version": service.version,
            "rulesLoaded": rules_count,
            "aiEnabled": status.arbitration_enabled,
        },
    )


@router.get("/status")
async def status() -> dict:
    """Detailed service status for debugging and admin dashboards."""
    service = get_service()
    return {
        **service.get_status().model_dump(mode="json", by_alias=True),
        "server": {
            "uptimeSeconds": round(time.monotonic() - _started_at, 3),
            "shuttingDown": _shutting_down,
        },
    }


@router.post("/reload")
def reload_rules() -> JSONResponse:
    """Hot-reload the rule configuration without a restart."""
    result = get_service().reload_rules()

    if result.success:
        return JSONResponse(
            status_code=200,
            content={"status": "reloaded", "rulesCount": result.rules_count, "timestamp": _now()},
        )
    return JSONResponse(
        status_code=500,
        content={"status": "failed", "error": result.error, "timestamp": _now()},
    )
