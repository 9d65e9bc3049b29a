"""Policy Propagator: replicates root policies to the clusters their placements select."""

__version__ = "0.1.0"

# Optional store imports (don't crash if optional deps are missing)
import contextlib

from policy_propagator.config import PropagatorConfig, TemplateConfig, find_config, load_config
from policy_propagator.events import (
    EventRecorder,
    LoggingEventRecorder,
    MemoryEventRecorder,
    StoreEventRecorder,
)
from policy_propagator.metrics import MetricsSink, PrometheusMetrics
from policy_propagator.models import (
    CompliancePerClusterStatus,
    ComplianceState,
    PlacementBinding,
    PlacementDecision,
    PlacementSummary,
    Policy,
    ResourceKind,
)
from policy_propagator.placement.decisions import DecisionResolver, InvalidReferenceError
from policy_propagator.propagator.controller import PolicyController
from policy_propagator.propagator.reconciler import (
    CleanupError,
    PropagationError,
    RootPolicyReconciler,
)
from policy_propagator.propagator.replicator import PolicyReplicator
from policy_propagator.retry import Retrier, Unrecoverable
from policy_propagator.store.base import ConflictError, NotFoundError, ObjectStore, StoreError
from policy_propagator.store.memory import InMemoryStore
from policy_propagator.templates.processor import SpecValidityError, TemplateProcessor
from policy_propagator.templates.resolver import TemplateResolutionError, TemplateResolver

with contextlib.suppress(ImportError):
    from policy_propagator.store.k8s_store import KubernetesStore

__all__ = [
    "CleanupError",
    "CompliancePerClusterStatus",
    "ComplianceState",
    "ConflictError",
    "DecisionResolver",
    "EventRecorder",
    "find_config",
    "InMemoryStore",
    "InvalidReferenceError",
    "KubernetesStore",
    "load_config",
    "LoggingEventRecorder",
    "MemoryEventRecorder",
    "MetricsSink",
    "NotFoundError",
    "ObjectStore",
    "PlacementBinding",
    "PlacementDecision",
    "PlacementSummary",
    "Policy",
    "PolicyController",
    "PolicyReplicator",
    "PrometheusMetrics",
    "PropagationError",
    "PropagatorConfig",
    "ResourceKind",
    "Retrier",
    "RootPolicyReconciler",
    "SpecValidityError",
    "StoreError",
    "StoreEventRecorder",
    "TemplateConfig",
    "TemplateProcessor",
    "TemplateResolutionError",
    "TemplateResolver",
    "Unrecoverable",
    "__version__",
]
