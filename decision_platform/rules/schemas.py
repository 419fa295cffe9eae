"""Pydantic models for rules, condition trees and rule evaluation results."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# Outcomes
# =============================================================================


class Outcome(str, Enum):
    """Rule-engine verdict, before arbitration."""

    SAFE_ALLOW = "SAFE_ALLOW"
    SAFE_DENY = "SAFE_DENY"
    GREY_ZONE = "GREY_ZONE"


# =============================================================================
# Condition Trees
# =============================================================================


class LeafCondition(BaseModel):
    """A single field comparison, e.g. ``signals.score gte 80``."""

    model_config = ConfigDict(frozen=True)

    field: str | None = Field(None, description="Dot-separated path into the input")
    op: str | None = Field(None, description="Operator name")
    value: Any = Field(None, description="Right-hand operand")


class CompoundCondition(BaseModel):
    """AND/OR combination of nested conditions."""

    model_config = ConfigDict(frozen=True)

    operator: str = Field(..., description="AND or OR")
    operands: tuple[LeafCondition | CompoundCondition, ...] | None = Field(
        default=(), description="Nested conditions, evaluated in order"
    )


Condition = LeafCondition | CompoundCondition

CompoundCondition.model_rebuild()


# =============================================================================
# Rules
# =============================================================================


class Rule(BaseModel):
    """A validated, enabled rule as held by a rule set."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    priority: int = 0
    condition: Condition
    outcome: Outcome
    enabled: bool = True


class RuleSummary(CamelModel):
    """Display information about an active rule."""

    id: str
    name: str
    outcome: Outcome
    priority: int
    enabled: bool = True


# =============================================================================
# Evaluation Results
# =============================================================================

INVALID_INPUT = "INVALID_INPUT"


class MatchedRule(CamelModel):
    """Identity of the rule that decided the outcome."""

    id: str
    name: str
    priority: int


class EvaluationAttempt(CamelModel):
    """One rule considered during evaluation."""

    rule_id: str
    rule_name: str
    matched: bool


class EvaluationResult(CamelModel):
    """Outcome of walking a rule set against one input."""

    outcome: Outcome
    matched_rule: MatchedRule | None = None
    evaluation_path: tuple[EvaluationAttempt | str, ...] = ()
    evaluation_time_ms: float = 0.0

    @property
    def input_was_invalid(self) -> bool:
        return self.evaluation_path == (INVALID_INPUT,)
