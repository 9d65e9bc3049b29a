"""Placement decision resolution for legacy rules and generic placements."""

from policy_propagator.placement.decisions import (
    DECISION_SOURCES,
    DecisionResolver,
    DecisionSource,
    InvalidReferenceError,
)

__all__ = [
    "DECISION_SOURCES",
    "DecisionResolver",
    "DecisionSource",
    "InvalidReferenceError",
]
