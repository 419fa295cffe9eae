"""Pydantic models for decision requests, responses and service status."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field

from decision_platform.arbiter.schemas import ArbiterAnalysis, ArbiterDescription
from decision_platform.rules.schemas import (
    CamelModel,
    EvaluationAttempt,
    EvaluationResult,
    MatchedRule,
    Outcome,
    RuleSummary,
)


# =============================================================================
# Verdicts
# =============================================================================


class FinalVerdict(str, Enum):
    """User-facing verdict after combination."""

    ALLOW = "ALLOW"
    DENY = "DENY"
    REVIEW = "REVIEW"
    ERROR = "ERROR"


class DecisionSource(str, Enum):
    """Which stage produced the final verdict."""

    RULE_ENGINE = "RULE_ENGINE"
    AI_ANALYSIS = "AI_ANALYSIS"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class PipelineStage(str, Enum):
    """Per-request pipeline states."""

    VALIDATING = "VALIDATING"
    RULE_EVAL = "RULE_EVAL"
    ARBITRATING = "ARBITRATING"
    COMBINING = "COMBINING"
    DONE = "DONE"
    ERROR = "ERROR"


OUTCOME_VERDICTS: dict[Outcome, FinalVerdict] = {
    Outcome.SAFE_ALLOW: FinalVerdict.ALLOW,
    Outcome.SAFE_DENY: FinalVerdict.DENY,
    Outcome.GREY_ZONE: FinalVerdict.REVIEW,
}


class Decision(CamelModel):
    """The verdict for one request."""

    final: FinalVerdict
    source: DecisionSource
    confidence: float | None = None


# =============================================================================
# Responses
# =============================================================================


class RuleEvaluationSummary(CamelModel):
    """Rule-engine part of the audit trail."""

    outcome: Outcome
    matched_rule: MatchedRule | None = None
    evaluation_path: list[EvaluationAttempt | str] = Field(default_factory=list)
    evaluation_time_ms: float

    @classmethod
    def from_result(cls, result: EvaluationResult) -> RuleEvaluationSummary:
        return cls(
            outcome=result.outcome,
            matched_rule=result.matched_rule,
            evaluation_path=list(result.evaluation_path),
            evaluation_time_ms=result.evaluation_time_ms,
        )


class ErrorInfo(CamelModel):
    """Details of a system fault."""

    message: str
    type: str = "PROCESSING_ERROR"


class ResponseMeta(CamelModel):
    """Request bookkeeping."""

    version: str
    processing_time_ms: float
    timestamp: str
    request_id: str


class DecisionResponse(CamelModel):
    """Complete decision with its audit trail."""

    decision: Decision
    rule_evaluation: RuleEvaluationSummary | None = None
    ai_analysis: ArbiterAnalysis | None = None
    error: ErrorInfo | None = None
    meta: ResponseMeta


# =============================================================================
# Operations
# =============================================================================


class ReloadResult(CamelModel):
    """Outcome of a rule reload."""

    success: bool
    rules_count: int | None = None
    error: str | None = None


class ServiceStatus(CamelModel):
    """Snapshot of the service configuration for status surfaces."""

    version: str
    rule_engine: dict[str, Any]
    arbiter: ArbiterDescription
    arbitration_enabled: bool
    rules: list[RuleSummary]
