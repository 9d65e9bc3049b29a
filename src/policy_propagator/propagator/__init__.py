"""Root policy propagation: replication, status rollup, reconciliation."""

from policy_propagator.propagator.controller import PolicyController
from policy_propagator.propagator.reconciler import (
    CleanupError,
    DecisionOutcome,
    PropagationError,
    RootPolicyReconciler,
)
from policy_propagator.propagator.replicator import PolicyReplicator

__all__ = [
    "CleanupError",
    "DecisionOutcome",
    "PolicyController",
    "PolicyReplicator",
    "PropagationError",
    "RootPolicyReconciler",
]
