"""Naming, labeling and comparison helpers shared by the propagator."""

from __future__ import annotations

import copy
from typing import Any

from policy_propagator.models import PlacementDecision, Policy

CLUSTER_NAME_LABEL = "policy.open-cluster-management.io/cluster-name"
CLUSTER_NAMESPACE_LABEL = "policy.open-cluster-management.io/cluster-namespace"
ROOT_POLICY_LABEL = "policy.open-cluster-management.io/root-policy"

DISABLE_TEMPLATES_ANNOTATION = "policy.open-cluster-management.io/disable-templates"
TRIGGER_UPDATE_ANNOTATION = "policy.open-cluster-management.io/trigger-update"
HUB_TEMPLATES_ERROR_ANNOTATION = "policy.open-cluster-management.io/hub-templates-error"

PLACEMENT_LABEL = "cluster.open-cluster-management.io/placement"


def full_name_for_policy(policy: Policy) -> str:
    """Name of every replica of *policy*: ``<namespace>.<name>``."""
    return f"{policy.namespace}.{policy.name}"


def labels_for_root_policy(policy: Policy) -> dict[str, str]:
    """Label selector matching every replica of *policy*."""
    return {ROOT_POLICY_LABEL: full_name_for_policy(policy)}


def cluster_key(cluster_namespace: str, cluster_name: str) -> str:
    return f"{cluster_namespace}/{cluster_name}"


def split_cluster_key(key: str) -> tuple[str, str]:
    """Inverse of :func:`cluster_key`; DNS names never contain a slash."""
    namespace, _, name = key.partition("/")
    return namespace, name


def replica_cluster_key(replica: Policy) -> str:
    labels = replica.labels
    return cluster_key(
        labels.get(CLUSTER_NAMESPACE_LABEL, ""), labels.get(CLUSTER_NAME_LABEL, ""),
    )


def replica_labels(root: Policy, decision: PlacementDecision) -> dict[str, str]:
    labels = dict(root.labels)
    labels[CLUSTER_NAME_LABEL] = decision.cluster_name
    labels[CLUSTER_NAMESPACE_LABEL] = decision.cluster_namespace
    labels[ROOT_POLICY_LABEL] = full_name_for_policy(root)
    return labels


def compare_spec_and_annotation(desired: Policy, existing: Policy) -> bool:
    """True when spec and annotations match (a missing map equals an empty one)."""
    if desired.annotations != existing.annotations:
        return False
    return desired.spec.to_dict() == existing.spec.to_dict()


def parse_bool(value: str) -> bool | None:
    """Parse the boolean spellings accepted for annotation values."""
    lowered = value.strip().lower()
    if lowered in ("1", "t", "true"):
        return True
    if lowered in ("0", "f", "false"):
        return False
    return None


# --- JSON merge patch (RFC 7386) ---


def create_merge_patch(original: dict[str, Any], updated: dict[str, Any]) -> dict[str, Any]:
    """Compute the merge patch that turns *original* into *updated*.

    Keys removed in *updated* are emitted as ``None``; lists are replaced
    wholesale.
    """
    patch: dict[str, Any] = {}
    for key in original.keys() - updated.keys():
        patch[key] = None
    for key, value in updated.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
            continue
        old = original[key]
        if isinstance(old, dict) and isinstance(value, dict):
            nested = create_merge_patch(old, value)
            if nested:
                patch[key] = nested
        elif old != value:
            patch[key] = copy.deepcopy(value)
    return patch


def apply_merge_patch(target: Any, patch: Any) -> Any:
    """Apply a merge patch to *target*, returning the merged value."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = dict(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = apply_merge_patch(result.get(key), value)
    return result
