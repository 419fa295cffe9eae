"""Pytest fixtures for test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from decision_platform.arbiter import CallableArbiter
from decision_platform.decisions import DecisionService
from decision_platform.rules import RuleStore, StaticSource


# =============================================================================
# Core Fixtures
# =============================================================================


@pytest.fixture
def rules_path() -> Path:
    """Path to the packaged rules configuration."""
    return Path(__file__).parent.parent / "decision_platform" / "rules" / "data" / "rules.yaml"


@pytest.fixture
def rule_store(rules_path: Path) -> RuleStore:
    """Rule store loaded from the packaged configuration."""
    store = RuleStore(rules_path)
    store.load()
    return store


@pytest.fixture
def make_store():
    """Factory for stores loaded from an in-memory document."""

    def _make(document: dict[str, Any]) -> RuleStore:
        store = RuleStore(StaticSource(document))
        store.load()
        return store

    return _make


@pytest.fixture
def score_document() -> dict[str, Any]:
    """Small configuration: deny high scores, allow low scores, review the rest."""
    return {
        "rules": [
            {
                "id": "r1",
                "name": "High score",
                "priority": 10,
                "condition": {"field": "signals.score", "op": "gte", "value": 80},
                "outcome": "SAFE_DENY",
            },
            {
                "id": "r2",
                "name": "Low score",
                "priority": 5,
                "condition": {"field": "signals.score", "op": "lt", "value": 20},
                "outcome": "SAFE_ALLOW",
            },
        ],
        "defaults": {"no_match_outcome": "GREY_ZONE"},
        "ai_config": {"hint": "score review"},
        "metadata": {"name": "score-policy"},
    }


@pytest.fixture
def score_store(make_store, score_document) -> RuleStore:
    return make_store(score_document)


# =============================================================================
# Arbiter Fixtures
# =============================================================================


@pytest.fixture
def approving_arbiter() -> CallableArbiter:
    """Arbiter that always recommends ALLOW with high confidence."""

    async def _analyze(payload, rule_result, config):
        return {
            "recommendation": "ALLOW",
            "confidence": 0.9,
            "reasoning": "Low exposure",
            "riskFactors": [],
            "mitigatingFactors": ["long customer history"],
        }

    return CallableArbiter(_analyze, provider="fake", model="fake-1")


@pytest.fixture
def failing_arbiter() -> CallableArbiter:
    """Arbiter whose backend always errors."""

    async def _analyze(payload, rule_result, config):
        raise ConnectionError("backend unavailable")

    return CallableArbiter(_analyze, provider="broken")


@pytest.fixture
def v2_service(score_store, approving_arbiter) -> DecisionService:
    """Service with secondary review enabled."""
    return DecisionService(
        score_store,
        arbiter=approving_arbiter,
        version="v2",
        arbiter_timeout_s=1.0,
    )
