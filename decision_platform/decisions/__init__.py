"""Decisions domain - orchestration of rules and arbitration."""

from .router import router as decide_router
from .router import get_service, set_service
from .schemas import (
    Decision,
    DecisionResponse,
    DecisionSource,
    ErrorInfo,
    FinalVerdict,
    PipelineStage,
    ReloadResult,
    ResponseMeta,
    RuleEvaluationSummary,
    ServiceStatus,
)
from .service import DecisionService, combine, generate_request_id, validate_input

__all__ = [
    # Router
    "decide_router",
    "get_service",
    "set_service",
    # Schemas
    "Decision",
    "DecisionResponse",
    "DecisionSource",
    "ErrorInfo",
    "FinalVerdict",
    "PipelineStage",
    "ReloadResult",
    "ResponseMeta",
    "RuleEvaluationSummary",
    "ServiceStatus",
    # Service
    "DecisionService",
    "combine",
    "generate_request_id",
    "validate_input",
]
