"""
Rule store: loads, validates and atomically holds the active rule set.

The active rule set is an immutable snapshot. A reload builds a complete new
snapshot and replaces the reference in one assignment, so a reader that took
a snapshot keeps evaluating against it while the store moves on.
"""

from __future__ import annotations

import copy
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from decision_platform.exceptions import ConditionError, ConfigError
from .conditions import (
    MAX_CONDITION_DEPTH,
    evaluate_condition,
    find_unknown_operators,
    parse_condition,
)
from .schemas import (
    INVALID_INPUT,
    EvaluationAttempt,
    EvaluationResult,
    MatchedRule,
    Outcome,
    Rule,
    RuleSummary,
)
from .sources import ConfigSource, YamlFileSource

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RuleSet:
    """Immutable, point-in-time view of the active rules."""

    rules: tuple[Rule, ...] = ()
    default_outcome: Outcome = Outcome.GREY_ZONE
    arbiter_config: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)
    loaded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    source: str = "<empty>"
    max_condition_depth: int = MAX_CONDITION_DEPTH

    def evaluate(self, payload: Any) -> EvaluationResult:
        """Walk the rules in order; the first match wins."""
        started = time.perf_counter()
        path: list[EvaluationAttempt] = []

        for rule in self.rules:
            matched = evaluate_condition(rule.condition, payload, self.max_condition_depth)
            path.append(
                EvaluationAttempt(rule_id=rule.id, rule_name=rule.name, matched=matched)
            )
            if matched:
                return EvaluationResult(
                    outcome=rule.outcome,
                    matched_rule=MatchedRule(id=rule.id, name=rule.name, priority=rule.priority),
                    evaluation_path=tuple(path),
                    evaluation_time_ms=_elapsed_ms(started),
                )

        return EvaluationResult(
            outcome=self.default_outcome,
            matched_rule=None,
            evaluation_path=tuple(path),
            evaluation_time_ms=_elapsed_ms(started),
        )

    def invalid_input_result(self) -> EvaluationResult:
        """Result used when the input does not have the expected shape."""
        return EvaluationResult(
            outcome=self.default_outcome,
            matched_rule=None,
            evaluation_path=(INVALID_INPUT,),
            evaluation_time_ms=0.0,
        )


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class RuleStore:
    """Loads rule configuration and serves immutable rule-set snapshots."""

    def __init__(
        self,
        source: ConfigSource | str | Path | None = None,
        max_condition_depth: int = MAX_CONDITION_DEPTH,
    ):
        if isinstance(source, (str, Path)):
            source = YamlFileSource(source)
        self.source = source
        self.max_condition_depth = max_condition_depth
        self._snapshot: RuleSet | None = None
        self._write_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    def load(self, source: ConfigSource | None = None) -> RuleSet:
        """Load, validate and activate a rule configuration.

        The previous snapshot stays active unless the whole pipeline succeeds.

        Args:
            source: Optional source to load from; becomes the store's source
                on success. Defaults to the current source.

        Returns:
            The newly active RuleSet.

        Raises:
            ConfigError: If the configuration cannot be read or is malformed.
        """
        source = source or self.source
        if source is None:
            raise ConfigError("No rules configuration source specified")

        with self._write_lock:
            try:
                document = source.read()
                rule_set = self._build(document, source.describe())
            except ConfigError:
                raise
            except OSError as e:
                raise ConfigError(f"Failed to read rules config {source.describe()}: {e}") from e
            except Exception as e:
                raise ConfigError(
                    f"Failed to load rules config {source.describe()}: {type(e).__name__}: {e}"
                ) from e

            self._snapshot = rule_set
            self.source = source

        logger.info(
            "rules_loaded",
            source=rule_set.source,
            rules_count=len(rule_set.rules),
            default_outcome=rule_set.default_outcome.value,
        )
        return rule_set

    def _build(self, document: Any, source_name: str) -> RuleSet:
        if document is None:
            document = {}
        if not isinstance(document, Mapping):
            raise ConfigError(
                f"Rules config must be a mapping, got {type(document).__name__}"
            )

        raw_rules = document.get("rules") or []
        if not isinstance(raw_rules, list):
            raise ConfigError("'rules' must be a list")

        defaults = document.get("defaults") or {}
        if not isinstance(defaults, Mapping):
            raise ConfigError("'defaults' must be a mapping")
        default_outcome = defaults.get("no_match_outcome") or Outcome.GREY_ZONE.value
        try:
            default_outcome = Outcome(default_outcome)
        except ValueError as e:
            raise ConfigError(f"Invalid defaults.no_match_outcome: {default_outcome!r}") from e

        arbiter_config = document.get("ai_config") or {}
        if not isinstance(arbiter_config, Mapping):
            raise ConfigError("'ai_config' must be a mapping")
        metadata = document.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ConfigError("'metadata' must be a mapping")

        rules: list[Rule] = []
        seen_ids: set[str] = set()
        for index, item in enumerate(raw_rules):
            rule = self._parse_rule(item, index)
            if rule is None:
                continue
            if rule.id in seen_ids:
                logger.warning("rule_excluded", rule_id=rule.id, reason="duplicate id")
                continue
            seen_ids.add(rule.id)
            rules.append(rule)

        # sorted() is stable: equal priorities keep their source order
        rules = sorted(rules, key=lambda r: r.priority, reverse=True)

        return RuleSet(
            rules=tuple(rules),
            default_outcome=default_outcome,
            arbiter_config=copy.deepcopy(dict(arbiter_config)),
            metadata=copy.deepcopy(dict(metadata)),
            source=source_name,
            max_condition_depth=self.max_condition_depth,
        )

    def _parse_rule(self, data: Any, index: int) -> Rule | None:
        """Parse one rule entry, returning None when it must be excluded."""
        if not isinstance(data, Mapping):
            logger.warning("rule_excluded", index=index, reason="not a mapping")
            return None

        rule_id = data.get("id")
        if not rule_id or not isinstance(rule_id, (str, int)) or isinstance(rule_id, bool):
            logger.warning("rule_excluded", index=index, reason="missing id")
            return None
        rule_id = str(rule_id)

        if data.get("enabled") is False:
            logger.debug("rule_disabled", rule_id=rule_id)
            return None

        if data.get("condition") is None:
            logger.warning("rule_excluded", rule_id=rule_id, reason="missing condition")
            return None

        try:
            outcome = Outcome(data.get("outcome"))
        except ValueError:
            logger.warning(
                "rule_excluded",
                rule_id=rule_id,
                reason="invalid outcome",
                outcome=data.get("outcome"),
            )
            return None

        priority = data.get("priority")
        if priority is None:
            priority = 0
        elif isinstance(priority, float) and priority.is_integer():
            priority = int(priority)
        elif not isinstance(priority, int) or isinstance(priority, bool):
            logger.warning(
                "rule_excluded", rule_id=rule_id, reason="invalid priority", priority=priority
            )
            return None

        try:
            condition = parse_condition(data["condition"], self.max_condition_depth)
        except ConditionError as e:
            logger.warning("rule_excluded", rule_id=rule_id, reason=str(e))
            return None

        unknown = find_unknown_operators(condition)
        if unknown:
            logger.warning("unknown_operator", rule_id=rule_id, operators=unknown)

        name = data.get("name")
        return Rule(
            id=rule_id,
            name=str(name) if name else rule_id,
            priority=priority,
            condition=condition,
            outcome=outcome,
        )

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    @property
    def is_loaded(self) -> bool:
        return self._snapshot is not None

    def snapshot(self) -> RuleSet:
        """Return the active rule set.

        Raises:
            ConfigError: If no configuration has been loaded yet.
        """
        snapshot = self._snapshot
        if snapshot is None:
            raise ConfigError("Rules have not been loaded")
        return snapshot

    def evaluate(self, payload: Any) -> EvaluationResult:
        """Evaluate an input against the active rule set."""
        return self.snapshot().evaluate(payload)

    def get_active_rules(self) -> tuple[Rule, ...]:
        return self.snapshot().rules

    def get_default_outcome(self) -> Outcome:
        return self.snapshot().default_outcome

    def get_arbiter_config(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self.snapshot().arbiter_config))

    def get_metadata(self) -> dict[str, Any]:
        """Descriptive metadata plus counts, for status surfaces."""
        snapshot = self._snapshot
        if snapshot is None:
            return {"rulesCount": 0, "defaultOutcome": None, "loadedAt": None, "source": None}
        return {
            **copy.deepcopy(dict(snapshot.metadata)),
            "rulesCount": len(snapshot.rules),
            "defaultOutcome": snapshot.default_outcome.value,
            "loadedAt": snapshot.loaded_at,
            "source": snapshot.source,
        }

    def describe_rules(self) -> list[RuleSummary]:
        snapshot = self._snapshot
        if snapshot is None:
            return []
        return [
            RuleSummary(
                id=rule.id,
                name=rule.name,
                outcome=rule.outcome,
                priority=rule.priority,
                enabled=rule.enabled,
            )
            for rule in snapshot.rules
        ]
