"""Pydantic models for arbiter insights.

An insight is one of three variants:

- ``NotAnalyzed``: the arbiter offered no opinion
- ``Analyzed``: the arbiter produced a recommendation
- ``Failed``: the arbiter was consulted but errored or timed out

``ArbiterAnalysis`` is the flat shape exposed in decision responses.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import Field, field_validator

from decision_platform.rules.schemas import CamelModel


class Recommendation(str, Enum):
    """Verdicts an arbiter may recommend."""

    ALLOW = "ALLOW"
    DENY = "DENY"
    REVIEW = "REVIEW"


class NotAnalyzed(CamelModel):
    """No opinion was produced."""

    kind: Literal["not_analyzed"] = "not_analyzed"


class Analyzed(CamelModel):
    """A recommendation from the arbiter."""

    kind: Literal["analyzed"] = "analyzed"
    recommendation: Recommendation
    confidence: float | None = Field(None, ge=0.0, le=1.0)
    reasoning: str | None = None
    risk_factors: tuple[str, ...] = ()
    mitigating_factors: tuple[str, ...] = ()
    analysis_time_ms: float | None = None

    @field_validator("recommendation", mode="before")
    @classmethod
    def _normalize_recommendation(cls, value):
        if isinstance(value, str):
            return value.strip().upper()
        return value


class Failed(CamelModel):
    """The arbiter was consulted but did not produce a usable result."""

    kind: Literal["failed"] = "failed"
    reason: str
    analysis_time_ms: float | None = None


ArbiterInsight = Annotated[
    Union[NotAnalyzed, Analyzed, Failed],
    Field(discriminator="kind"),
]


class ArbiterAnalysis(CamelModel):
    """Arbiter insight as reported in a decision response."""

    analyzed: bool
    recommendation: Recommendation | None = None
    confidence: float | None = None
    reasoning: str | None = None
    risk_factors: list[str] = Field(default_factory=list)
    mitigating_factors: list[str] = Field(default_factory=list)
    analysis_time_ms: float | None = None
    error: str | None = None

    @classmethod
    def from_insight(cls, insight: ArbiterInsight) -> ArbiterAnalysis:
        if isinstance(insight, Analyzed):
            return cls(
                analyzed=True,
                recommendation=insight.recommendation,
                confidence=insight.confidence,
                reasoning=insight.reasoning,
                risk_factors=list(insight.risk_factors),
                mitigating_factors=list(insight.mitigating_factors),
                analysis_time_ms=insight.analysis_time_ms,
            )
        if isinstance(insight, Failed):
            return cls(analyzed=False, error=insight.reason)
        return cls(analyzed=False)


class ArbiterDescription(CamelModel):
    """Identity of the configured arbiter, for status surfaces."""

    provider: str
    model: str | None = None
    enabled: bool = False
