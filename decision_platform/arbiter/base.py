"""
Arbiter capability: an optional second opinion for grey-zone outcomes.

``Arbiter.analyze`` is the boundary between the decision pipeline and the
arbiter implementation. It enforces the time budget and turns every failure
into a ``Failed`` insight, so implementations only provide ``_analyze``.
"""

from __future__ import annotations

import asyncio
import copy
import importlib
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Mapping
from typing import Any, Callable

import structlog
from pydantic import ValidationError

from decision_platform.exceptions import ArbiterLoadError
from decision_platform.rules.schemas import EvaluationResult
from .schemas import Analyzed, ArbiterDescription, ArbiterInsight, Failed, NotAnalyzed

logger = structlog.get_logger(__name__)


class Arbiter(ABC):
    """Base class for arbiter implementations."""

    provider: str = "unknown"
    model: str | None = None

    def is_enabled(self) -> bool:
        return True

    def describe(self) -> ArbiterDescription:
        return ArbiterDescription(
            provider=self.provider,
            model=self.model,
            enabled=self.is_enabled(),
        )

    async def analyze(
        self,
        payload: Mapping[str, Any],
        rule_result: EvaluationResult,
        timeout_s: float,
        config: Mapping[str, Any] | None = None,
    ) -> ArbiterInsight:
        """Ask the arbiter for an opinion within a time budget.

        Never raises, except when the calling task is cancelled.

        Args:
            payload: The validated decision input
            rule_result: Result of rule evaluation
            timeout_s: Time budget in seconds
            config: Arbiter configuration from the active rule set

        Returns:
            An insight; ``Failed`` on timeout, error or invalid response
        """
        if not self.is_enabled():
            return NotAnalyzed()

        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                self._analyze(payload, rule_result, copy.deepcopy(dict(config or {}))),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("arbiter_timeout", provider=self.provider, timeout_s=timeout_s)
            return Failed(
                reason=f"Arbiter timed out after {timeout_s:g}s",
                analysis_time_ms=_elapsed_ms(started),
            )
        except Exception as e:
            logger.warning("arbiter_failed", provider=self.provider, error=str(e))
            return Failed(
                reason=str(e) or type(e).__name__,
                analysis_time_ms=_elapsed_ms(started),
            )

        return _coerce_insight(result, _elapsed_ms(started), self.provider)

    @abstractmethod
    async def _analyze(
        self,
        payload: Mapping[str, Any],
        rule_result: EvaluationResult,
        config: dict[str, Any],
    ) -> ArbiterInsight | Mapping[str, Any] | None:
        """Produce an insight, or a mapping in the flat response shape."""


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


def _coerce_insight(result: Any, elapsed_ms: float, provider: str) -> ArbiterInsight:
    """Validate whatever an implementation returned."""
    if result is None or isinstance(result, NotAnalyzed):
        return NotAnalyzed()
    if isinstance(result, (Analyzed, Failed)):
        if result.analysis_time_ms is None:
            return result.model_copy(update={"analysis_time_ms": elapsed_ms})
        return result
    if not isinstance(result, Mapping):
        return Failed(
            reason=f"Invalid arbiter response type: {type(result).__name__}",
            analysis_time_ms=elapsed_ms,
        )

    if result.get("analyzed") is False:
        error = result.get("error")
        if error:
            return Failed(reason=str(error), analysis_time_ms=elapsed_ms)
        return NotAnalyzed()

    data = {k: v for k, v in result.items() if k not in ("analyzed", "error", "kind")}
    if data.get("analysisTimeMs") is None and data.get("analysis_time_ms") is None:
        data["analysisTimeMs"] = elapsed_ms
    try:
        return Analyzed.model_validate(data)
    except ValidationError as e:
        logger.warning("arbiter_invalid_response", provider=provider, errors=e.error_count())
        return Failed(
            reason=f"Invalid arbiter response: {e.errors()[0]['msg']}",
            analysis_time_ms=elapsed_ms,
        )


class DisabledArbiter(Arbiter):
    """Placeholder used when no arbiter is configured."""

    provider = "none"

    def is_enabled(self) -> bool:
        return False

    async def _analyze(self, payload, rule_result, config) -> ArbiterInsight:
        return NotAnalyzed()


class CallableArbiter(Arbiter):
    """Adapts an async callable ``(payload, rule_result, config)`` to an arbiter."""

    def __init__(
        self,
        func: Callable[..., Awaitable[Any]],
        provider: str = "callable",
        model: str | None = None,
        enabled: bool = True,
    ):
        self.func = func
        self.provider = provider
        self.model = model
        self.enabled = enabled

    def is_enabled(self) -> bool:
        return self.enabled

    async def _analyze(self, payload, rule_result, config):
        return await self.func(payload, rule_result, config)


def load_arbiter(import_path: str) -> Arbiter:
    """Build an arbiter from a ``"package.module:factory"`` import path.

    The attribute may be an Arbiter instance or a zero-argument callable
    returning one.

    Raises:
        ArbiterLoadError: If the path cannot be resolved or does not yield
            an Arbiter.
    """
    module_name, _, attr = import_path.partition(":")
    if not module_name or not attr:
        raise ArbiterLoadError(
            f"Arbiter factory must look like 'package.module:factory', got {import_path!r}"
        )

    try:
        module = importlib.import_module(module_name)
        target = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ArbiterLoadError(f"Cannot import arbiter factory {import_path!r}: {e}") from e

    arbiter = target if isinstance(target, Arbiter) else None
    if arbiter is None and callable(target):
        try:
            arbiter = target()
        except Exception as e:
            raise ArbiterLoadError(f"Arbiter factory {import_path!r} failed: {e}") from e

    if not isinstance(arbiter, Arbiter):
        raise ArbiterLoadError(f"{import_path!r} did not produce an Arbiter")

    logger.info("arbiter_loaded", provider=arbiter.provider, model=arbiter.model)
    return arbiter
