"""Rules domain - condition evaluation and the rule store."""

from .schemas import (
    INVALID_INPUT,
    CompoundCondition,
    Condition,
    EvaluationAttempt,
    EvaluationResult,
    LeafCondition,
    MatchedRule,
    Outcome,
    Rule,
    RuleSummary,
)
from .conditions import (
    MISSING,
    MAX_CONDITION_DEPTH,
    ComparisonOp,
    LogicalOp,
    evaluate_condition,
    find_unknown_operators,
    parse_condition,
    resolve_field,
)
from .sources import ConfigSource, StaticSource, YamlFileSource
from .store import RuleSet, RuleStore

__all__ = [
    # Schemas
    "INVALID_INPUT",
    "CompoundCondition",
    "Condition",
    "EvaluationAttempt",
    "EvaluationResult",
    "LeafCondition",
    "MatchedRule",
    "Outcome",
    "Rule",
    "RuleSummary",
    # Conditions
    "MISSING",
    "MAX_CONDITION_DEPTH",
    "ComparisonOp",
    "LogicalOp",
    "evaluate_condition",
    "find_unknown_operators",
    "parse_condition",
    "resolve_field",
    # Store
    "ConfigSource",
    "StaticSource",
    "YamlFileSource",
    "RuleSet",
    "RuleStore",
]
