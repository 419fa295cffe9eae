"""
Tests for the rule store.

Tests loading, validation, ordering, reload semantics and snapshot
isolation under concurrent reloads.
"""

import threading

import pytest

from decision_platform.exceptions import ConfigError
from decision_platform.rules import (
    INVALID_INPUT,
    EvaluationAttempt,
    Outcome,
    RuleStore,
    StaticSource,
    YamlFileSource,
)


def rule(rule_id, priority=0, outcome="SAFE_DENY", condition=None, **extra):
    return {
        "id": rule_id,
        "priority": priority,
        "condition": condition or {"field": "signals.flag", "op": "eq", "value": True},
        "outcome": outcome,
        **extra,
    }


# =============================================================================
# Loading From Files
# =============================================================================


class TestPackagedRules:
    """Test the packaged rule configuration."""

    def test_loads_enabled_rules(self, rule_store):
        ids = [r.id for r in rule_store.get_active_rules()]
        assert ids == [
            "deny_blocklisted_account",
            "deny_high_risk_score",
            "deny_sanctioned_country",
            "allow_small_verified_payment",
            "allow_trusted_merchant",
            "review_missing_device",
        ]
        assert "legacy_velocity_check" not in ids

    def test_default_outcome(self, rule_store):
        assert rule_store.get_default_outcome() == Outcome.GREY_ZONE

    def test_small_verified_payment_is_allowed(self, rule_store):
        result = rule_store.evaluate(
            {
                "request": {"amount": 50, "merchant_id": "shop-1"},
                "signals": {"risk_score": 10, "kyc_verified": True, "device_id": "d-1"},
            }
        )
        assert result.outcome == Outcome.SAFE_ALLOW
        assert result.matched_rule.id == "allow_small_verified_payment"
        assert [a.rule_id for a in result.evaluation_path] == [
            "deny_blocklisted_account",
            "deny_high_risk_score",
            "deny_sanctioned_country",
            "allow_small_verified_payment",
        ]

    def test_trusted_merchant_regex(self, rule_store):
        result = rule_store.evaluate(
            {
                "request": {"amount": 5000, "merchant_id": "trusted-acme"},
                "signals": {"risk_score": 40, "device_id": "d-1"},
            }
        )
        assert result.matched_rule.id == "allow_trusted_merchant"

    def test_missing_device_goes_to_review(self, rule_store):
        result = rule_store.evaluate({"request": {"amount": 5000}, "signals": {"risk_score": 40}})
        assert result.outcome == Outcome.GREY_ZONE
        assert result.matched_rule.id == "review_missing_device"

    def test_no_match_uses_default(self, rule_store):
        result = rule_store.evaluate(
            {"request": {"amount": 5000}, "signals": {"risk_score": 40, "device_id": "d"}}
        )
        assert result.outcome == Outcome.GREY_ZONE
        assert result.matched_rule is None
        assert len(result.evaluation_path) == 6
        assert not any(a.matched for a in result.evaluation_path)

    def test_metadata(self, rule_store, rules_path):
        metadata = rule_store.get_metadata()
        assert metadata["name"] == "default-transaction-policy"
        assert metadata["rulesCount"] == 6
        assert metadata["defaultOutcome"] == "GREY_ZONE"
        assert metadata["source"] == str(rules_path)
        assert metadata["loadedAt"]

    def test_arbiter_config_is_a_copy(self, rule_store):
        config = rule_store.get_arbiter_config()
        config["system_hint"] = "changed"
        assert rule_store.get_arbiter_config()["system_hint"] != "changed"


class TestYamlFileSource:
    """Test YAML file loading failures."""

    def test_missing_file(self, tmp_path):
        store = RuleStore(tmp_path / "absent.yaml")
        with pytest.raises(ConfigError, match="not found"):
            store.load()
        assert not store.is_loaded

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("rules: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            RuleStore(path).load()

    def test_empty_file_loads_no_rules(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text("")
        store = RuleStore(path)
        store.load()
        assert store.get_active_rules() == ()
        assert store.get_default_outcome() == Outcome.GREY_ZONE

    def test_non_utf8_file_keeps_previous_rules(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: kept\n"
            "    condition: {field: signals.flag, op: eq, value: true}\n"
            "    outcome: SAFE_DENY\n"
        )
        store = RuleStore(path)
        store.load()

        path.write_bytes(b"rules:\n  - id: \xff\xfe\n")
        with pytest.raises(ConfigError, match="not valid UTF-8"):
            store.load()
        assert [r.id for r in store.get_active_rules()] == ["kept"]

    def test_describe(self, tmp_path):
        assert YamlFileSource(tmp_path / "x.yaml").describe().endswith("x.yaml")

    def test_no_source(self):
        with pytest.raises(ConfigError, match="No rules configuration source"):
            RuleStore().load()


# =============================================================================
# Validation
# =============================================================================


class TestRuleValidation:
    """Test which rules are admitted to the active set."""

    def test_sorted_by_priority_descending(self, make_store):
        store = make_store({"rules": [rule("low", 1), rule("high", 100), rule("mid", 50)]})
        assert [r.id for r in store.get_active_rules()] == ["high", "mid", "low"]

    def test_ties_keep_source_order(self, make_store):
        store = make_store({"rules": [rule("a", 5), rule("b", 5), rule("c", 9), rule("d", 5)]})
        assert [r.id for r in store.get_active_rules()] == ["c", "a", "b", "d"]

    def test_invalid_rules_are_excluded(self, make_store):
        store = make_store(
            {
                "rules": [
                    rule("ok"),
                    {"priority": 1, "condition": {"field": "a", "op": "eq"}, "outcome": "SAFE_DENY"},
                    {"id": "no_condition", "outcome": "SAFE_DENY"},
                    rule("bad_outcome", outcome="MAYBE"),
                    rule("disabled", enabled=False),
                    rule("bad_priority", priority="high"),
                    rule("bool_priority", priority=True),
                    {"id": "scalar_condition", "condition": "signals.flag", "outcome": "SAFE_DENY"},
                    "not-a-rule",
                ]
            }
        )
        assert [r.id for r in store.get_active_rules()] == ["ok"]

    def test_missing_priority_defaults_to_zero(self, make_store):
        store = make_store({"rules": [{"id": "r", "condition": {}, "outcome": "SAFE_ALLOW"}]})
        assert store.get_active_rules()[0].priority == 0

    def test_integral_float_priority_is_accepted(self, make_store):
        store = make_store({"rules": [rule("r", 7.0)]})
        assert store.get_active_rules()[0].priority == 7

    def test_name_defaults_to_id(self, make_store):
        store = make_store({"rules": [rule("unnamed"), rule("named", name="Named rule")]})
        names = {r.id: r.name for r in store.get_active_rules()}
        assert names == {"unnamed": "unnamed", "named": "Named rule"}

    def test_duplicate_ids_keep_first(self, make_store):
        store = make_store({"rules": [rule("dup", 1, "SAFE_ALLOW"), rule("dup", 99, "SAFE_DENY")]})
        rules = store.get_active_rules()
        assert len(rules) == 1
        assert rules[0].outcome == Outcome.SAFE_ALLOW

    def test_empty_condition_never_matches(self, make_store):
        store = make_store({"rules": [{"id": "r", "condition": {}, "outcome": "SAFE_DENY"}]})
        result = store.evaluate({"request": {}, "signals": {}})
        assert result.matched_rule is None

    def test_unknown_operator_rule_is_loaded_but_never_matches(self, make_store):
        store = make_store(
            {"rules": [rule("r", condition={"field": "signals.x", "op": "between", "value": [1, 2]})]}
        )
        assert len(store.get_active_rules()) == 1
        assert store.evaluate({"request": {}, "signals": {"x": 1}}).matched_rule is None

    def test_too_deep_condition_is_excluded(self, make_store):
        node = {"field": "signals.flag", "op": "eq", "value": True}
        for _ in range(40):
            node = {"operator": "AND", "operands": [node]}
        store = make_store({"rules": [rule("deep", condition=node), rule("shallow")]})
        assert [r.id for r in store.get_active_rules()] == ["shallow"]

    @pytest.mark.parametrize(
        "document,message",
        [
            (["a", "list"], "must be a mapping"),
            ({"rules": "notalist"}, "'rules' must be a list"),
            ({"rules": [], "defaults": "x"}, "'defaults' must be a mapping"),
            ({"rules": [], "defaults": {"no_match_outcome": "MAYBE"}}, "no_match_outcome"),
            ({"rules": [], "ai_config": ["x"]}, "'ai_config' must be a mapping"),
            ({"rules": [], "metadata": 3}, "'metadata' must be a mapping"),
        ],
    )
    def test_malformed_documents(self, document, message):
        with pytest.raises(ConfigError, match=message):
            RuleStore(StaticSource(document)).load()

    def test_custom_default_outcome(self, make_store):
        store = make_store({"rules": [], "defaults": {"no_match_outcome": "SAFE_DENY"}})
        result = store.evaluate({"request": {}, "signals": {}})
        assert result.outcome == Outcome.SAFE_DENY
        assert result.evaluation_path == ()


# =============================================================================
# Evaluation
# =============================================================================


class TestEvaluation:
    """Test walking a rule set."""

    def test_first_match_wins(self, make_store):
        store = make_store(
            {
                "rules": [
                    rule("deny", 10, "SAFE_DENY"),
                    rule("allow", 5, "SAFE_ALLOW"),
                ]
            }
        )
        result = store.evaluate({"request": {}, "signals": {"flag": True}})
        assert result.outcome == Outcome.SAFE_DENY
        assert result.matched_rule.id == "deny"
        assert result.matched_rule.priority == 10
        assert result.evaluation_path == (
            EvaluationAttempt(rule_id="deny", rule_name="deny", matched=True),
        )

    def test_evaluation_is_deterministic(self, score_store):
        payload = {"request": {}, "signals": {"score": 50}}
        first = score_store.evaluate(payload)
        second = score_store.evaluate(payload)
        assert first.outcome == second.outcome
        assert first.evaluation_path == second.evaluation_path

    def test_evaluation_time_is_reported(self, score_store):
        result = score_store.evaluate({"request": {}, "signals": {"score": 90}})
        assert result.evaluation_time_ms >= 0

    def test_invalid_input_result(self, score_store):
        result = score_store.snapshot().invalid_input_result()
        assert result.outcome == Outcome.GREY_ZONE
        assert result.evaluation_path == (INVALID_INPUT,)
        assert result.input_was_invalid

    def test_unloaded_store(self):
        store = RuleStore(StaticSource({"rules": []}))
        with pytest.raises(ConfigError, match="not been loaded"):
            store.evaluate({"request": {}, "signals": {}})
        assert store.get_metadata()["rulesCount"] == 0
        assert store.describe_rules() == []


# =============================================================================
# Reload
# =============================================================================


class TestReload:
    """Test reload semantics."""

    def test_reload_picks_up_changes(self):
        source = StaticSource({"rules": [rule("old")]})
        store = RuleStore(source)
        store.load()

        source.document = {"rules": [rule("new-1"), rule("new-2")]}
        store.load()
        assert [r.id for r in store.get_active_rules()] == ["new-1", "new-2"]

    def test_failed_reload_keeps_previous_rules(self):
        source = StaticSource({"rules": [rule("kept")]})
        store = RuleStore(source)
        store.load()

        source.document = {"rules": "broken"}
        with pytest.raises(ConfigError):
            store.load()
        assert [r.id for r in store.get_active_rules()] == ["kept"]

    def test_unexpected_source_error_becomes_config_error(self, score_store):
        class BrokenSource:
            def read(self):
                raise ValueError("unsupported encoding")

            def describe(self):
                return "<broken>"

        with pytest.raises(ConfigError, match="ValueError: unsupported encoding"):
            score_store.load(BrokenSource())
        assert [r.id for r in score_store.get_active_rules()] == ["r1", "r2"]
        assert score_store.source.describe() == "<static>"

    def test_load_from_new_source(self, score_store):
        score_store.load(StaticSource({"rules": [rule("swapped")]}, name="swap"))
        assert score_store.source.describe() == "swap"
        assert [r.id for r in score_store.get_active_rules()] == ["swapped"]

    def test_snapshot_survives_reload(self):
        source = StaticSource({"rules": [rule("old")]})
        store = RuleStore(source)
        store.load()
        snapshot = store.snapshot()

        source.document = {"rules": [rule("new")]}
        store.load()

        assert [r.id for r in snapshot.rules] == ["old"]
        assert [r.id for r in store.get_active_rules()] == ["new"]

    def test_source_document_mutation_does_not_leak(self):
        document = {"rules": [rule("r")], "metadata": {"name": "orig"}}
        store = RuleStore(StaticSource(document))
        store.load()
        document["metadata"]["name"] = "mutated"
        assert store.get_metadata()["name"] == "orig"

    def test_concurrent_reloads_never_mix_rule_sets(self):
        """Each evaluation sees exactly one rule set."""

        def document(prefix):
            return {
                "rules": [
                    rule(f"{prefix}-{i}", condition={"field": "signals.never", "op": "eq", "value": 1})
                    for i in range(5)
                ]
            }

        old, new = StaticSource(document("old")), StaticSource(document("new"))
        store = RuleStore(old)
        store.load()

        stop = threading.Event()
        mixed: list[set[str]] = []

        def reader():
            payload = {"request": {}, "signals": {}}
            while not stop.is_set():
                result = store.evaluate(payload)
                prefixes = {a.rule_id.split("-")[0] for a in result.evaluation_path}
                if len(prefixes) != 1 or len(result.evaluation_path) != 5:
                    mixed.append(prefixes)

        readers = [threading.Thread(target=reader) for _ in range(4)]
        for thread in readers:
            thread.start()

        for i in range(200):
            store.load(new if i % 2 else old)

        stop.set()
        for thread in readers:
            thread.join()

        assert mixed == []
