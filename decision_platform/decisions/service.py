"""
Decision orchestration.

Each request runs VALIDATING -> RULE_EVAL -> (ARBITRATING) -> COMBINING -> DONE
against one rule-set snapshot taken at the start of the request:

1. Validate the input shape; malformed input resolves to the default outcome
2. Evaluate rules, first match wins
3. Consult the arbiter for grey-zone outcomes when secondary review is on
4. Combine the rule outcome with the arbiter insight

Every anticipated failure degrades to a well-formed decision. Anything else
becomes an ERROR decision with the message surfaced in the response.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from decision_platform.arbiter import (
    Analyzed,
    Arbiter,
    ArbiterAnalysis,
    ArbiterInsight,
    DisabledArbiter,
)
from decision_platform.config import Settings
from decision_platform.exceptions import ConfigError
from decision_platform.metrics import MetricsSink, NullMetrics
from decision_platform.rules import EvaluationResult, Outcome, RuleStore
from .schemas import (
    OUTCOME_VERDICTS,
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

logger = structlog.get_logger(__name__)

SECONDARY_REVIEW_VERSION = "v2"


def generate_request_id() -> str:
    """Request identifier of the form ``req_<epoch-ms>_<9 chars>``."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def validate_input(payload: Any) -> str | None:
    """Return why the input is malformed, or None if it is usable."""
    if not isinstance(payload, Mapping):
        return "Input must be a non-null object"
    if not isinstance(payload.get("request"), Mapping):
        return 'Input must contain a "request" object'
    if not isinstance(payload.get("signals"), Mapping):
        return 'Input must contain a "signals" object'
    return None


def combine(outcome: Outcome, insight: ArbiterInsight | None) -> Decision:
    """Merge the rule outcome with an optional arbiter insight.

    The rule outcome sets the baseline verdict. Only an analyzed insight can
    replace it; no insight, no opinion, or a failed arbiter leave it intact.
    """
    if isinstance(insight, Analyzed):
        return Decision(
            final=FinalVerdict(insight.recommendation.value),
            source=DecisionSource.AI_ANALYSIS,
            confidence=insight.confidence,
        )
    return Decision(final=OUTCOME_VERDICTS[outcome], source=DecisionSource.RULE_ENGINE)


class DecisionService:
    """Orchestrates rule evaluation, arbitration and combination."""

    def __init__(
        self,
        store: RuleStore,
        arbiter: Arbiter | None = None,
        metrics: MetricsSink | None = None,
        version: str = "v1",
        arbiter_timeout_s: float = 5.0,
    ):
        self.store = store
        self.arbiter = arbiter or DisabledArbiter()
        self.metrics = metrics or NullMetrics()
        self.version = version
        self.arbiter_timeout_s = arbiter_timeout_s

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        arbiter: Arbiter | None = None,
        metrics: MetricsSink | None = None,
    ) -> DecisionService:
        """Build a service and load its rules.

        Raises:
            ConfigError: If the initial rule configuration cannot be loaded.
        """
        store = RuleStore(
            settings.rules_config_path,
            max_condition_depth=settings.max_condition_depth,
        )
        store.load()

        if not settings.ai_enabled:
            arbiter = DisabledArbiter()

        service = cls(
            store,
            arbiter=arbiter,
            metrics=metrics,
            version=settings.engine_version,
            arbiter_timeout_s=settings.ai_timeout_seconds,
        )
        service._update_engine_info()
        logger.info(
            "decision_service_initialized",
            version=service.version,
            arbitration_enabled=service.arbitration_enabled,
            rules_count=len(store.get_active_rules()),
        )
        return service

    @property
    def arbitration_enabled(self) -> bool:
        return self.version == SECONDARY_REVIEW_VERSION and self.arbiter.is_enabled()

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    async def decide(self, payload: Any, request_id: str | None = None) -> DecisionResponse:
        """Produce a decision with its full audit trail.

        Never raises; a system fault yields an ERROR decision. Cancellation of
        the calling task propagates and aborts a pending arbitration.
        """
        started = time.perf_counter()
        request_id = request_id or generate_request_id()
        stage = PipelineStage.VALIDATING
        self._emit("request_started")

        try:
            snapshot = self.store.snapshot()

            problem = validate_input(payload)
            if problem is not None:
                logger.info("invalid_input", request_id=request_id, reason=problem)
                rule_result = snapshot.invalid_input_result()
                insight = None
            else:
                stage = PipelineStage.RULE_EVAL
                rule_result = snapshot.evaluate(payload)

                insight = None
                if self._needs_arbitration(rule_result):
                    stage = PipelineStage.ARBITRATING
                    insight = await self._arbitrate(payload, rule_result, snapshot.arbiter_config)

            stage = PipelineStage.COMBINING
            decision = combine(rule_result.outcome, insight)
            response = DecisionResponse(
                decision=decision,
                rule_evaluation=RuleEvaluationSummary.from_result(rule_result),
                ai_analysis=ArbiterAnalysis.from_insight(insight) if insight is not None else None,
                meta=self._meta(started, request_id),
            )

            stage = PipelineStage.DONE
            self._emit(
                "record_decision",
                decision.final.value,
                decision.source.value,
                self.version,
                insight is not None,
                time.perf_counter() - started,
                rule_result.matched_rule.id if rule_result.matched_rule else None,
            )
            return response
        except Exception as e:
            failed_stage, stage = stage, PipelineStage.ERROR
            logger.exception(
                "decision_failed",
                request_id=request_id,
                stage=stage.value,
                failed_stage=failed_stage.value,
            )
            self._emit("record_error", "decision_error", "/decide")
            return self._error_response(str(e) or type(e).__name__, started, request_id)
        finally:
            self._emit("request_finished")

    def decide_sync(self, payload: Any, request_id: str | None = None) -> DecisionResponse:
        """Synchronous wrapper for decide.

        For use in non-async contexts.
        """
        return asyncio.run(self.decide(payload, request_id))

    def _needs_arbitration(self, rule_result: EvaluationResult) -> bool:
        return rule_result.outcome == Outcome.GREY_ZONE and self.arbitration_enabled

    async def _arbitrate(
        self,
        payload: Mapping[str, Any],
        rule_result: EvaluationResult,
        config: Mapping[str, Any],
    ) -> ArbiterInsight:
        started = time.perf_counter()
        insight = await self.arbiter.analyze(payload, rule_result, self.arbiter_timeout_s, config)
        self._emit(
            "record_arbitration",
            self.arbiter.provider,
            isinstance(insight, Analyzed),
            time.perf_counter() - started,
        )
        return insight

    def _meta(self, started: float, request_id: str) -> ResponseMeta:
        return ResponseMeta(
            version=self.version,
            processing_time_ms=round((time.perf_counter() - started) * 1000, 3),
            timestamp=datetime.now(timezone.utc).isoformat(),
            request_id=request_id,
        )

    def _error_response(self, message: str, started: float, request_id: str) -> DecisionResponse:
        return DecisionResponse(
            decision=Decision(final=FinalVerdict.ERROR, source=DecisionSource.SYSTEM_ERROR),
            error=ErrorInfo(message=message),
            meta=self._meta(started, request_id),
        )

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def reload_rules(self) -> ReloadResult:
        """Reload the rule configuration, keeping the old rules on failure."""
        source = self.store.source
        logger.info("rules_reload_requested", source=source.describe() if source else None)
        try:
            rule_set = self.store.load()
        except ConfigError as e:
            logger.error("rules_reload_failed", error=str(e))
            self._emit("record_error", "reload_error", "/reload")
            return ReloadResult(success=False, error=str(e))

        self._update_engine_info()
        return ReloadResult(success=True, rules_count=len(rule_set.rules))

    def get_status(self) -> ServiceStatus:
        return ServiceStatus(
            version=self.version,
            rule_engine=self.store.get_metadata(),
            arbiter=self.arbiter.describe(),
            arbitration_enabled=self.arbitration_enabled,
            rules=self.store.describe_rules(),
        )

    def _update_engine_info(self) -> None:
        rules_count = len(self.store.get_active_rules()) if self.store.is_loaded else 0
        self._emit("update_engine_info", self.version, rules_count, self.arbitration_enabled)

    def _emit(self, method: str, *args: Any) -> None:
        """Report to the metrics sink without letting it affect the request."""
        try:
            getattr(self.metrics, method)(*args)
        except Exception as e:
            logger.warning("metrics_failed", method=method, error=str(e))
