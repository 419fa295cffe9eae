"""Arbiter domain - optional second opinion for grey-zone outcomes."""

from .schemas import (
    Analyzed,
    ArbiterAnalysis,
    ArbiterDescription,
    ArbiterInsight,
    Failed,
    NotAnalyzed,
    Recommendation,
)
from .base import Arbiter, CallableArbiter, DisabledArbiter, load_arbiter

__all__ = [
    # Schemas
    "Analyzed",
    "ArbiterAnalysis",
    "ArbiterDescription",
    "ArbiterInsight",
    "Failed",
    "NotAnalyzed",
    "Recommendation",
    # Arbiters
    "Arbiter",
    "CallableArbiter",
    "DisabledArbiter",
    "load_arbiter",
]
