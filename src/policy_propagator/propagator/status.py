"""Compliance rollup for a root policy's status."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from policy_propagator.common import (
    CLUSTER_NAME_LABEL,
    CLUSTER_NAMESPACE_LABEL,
    replica_cluster_key,
    split_cluster_key,
)
from policy_propagator.models import (
    CompliancePerClusterStatus,
    ComplianceState,
    PlacementSummary,
    Policy,
)

logger = logging.getLogger(__name__)


def aggregate_compliance(
    statuses: Iterable[CompliancePerClusterStatus],
) -> ComplianceState | None:
    """Roll per-cluster compliance up into one state.

    NonCompliant if any cluster is NonCompliant; Compliant only when there
    is at least one cluster and all are Compliant; otherwise unset.
    """
    seen = False
    all_compliant = True
    for status in statuses:
        seen = True
        if status.compliant == ComplianceState.NON_COMPLIANT:
            return ComplianceState.NON_COMPLIANT
        if status.compliant != ComplianceState.COMPLIANT:
            all_compliant = False
    if seen and all_compliant:
        return ComplianceState.COMPLIANT
    return None


def build_cluster_statuses(
    replicas: Iterable[Policy], failed_clusters: set[str],
) -> list[CompliancePerClusterStatus]:
    """One record per replica plus a NonCompliant record per failed cluster.

    Replicas of clusters whose replication failed this pass are skipped in
    favour of the synthesized record.  Sorted by cluster name.
    """
    statuses: list[CompliancePerClusterStatus] = []
    for replica in replicas:
        if replica_cluster_key(replica) in failed_clusters:
            continue
        statuses.append(CompliancePerClusterStatus(
            compliant=replica.status.compliant,
            cluster_name=replica.labels.get(CLUSTER_NAME_LABEL, ""),
            cluster_namespace=replica.labels.get(CLUSTER_NAMESPACE_LABEL, ""),
        ))

    for key in sorted(failed_clusters):
        logger.info("Setting the policy to noncompliant for %s since the replication failed", key)
        namespace, name = split_cluster_key(key)
        statuses.append(CompliancePerClusterStatus(
            compliant=ComplianceState.NON_COMPLIANT,
            cluster_name=name,
            cluster_namespace=namespace,
        ))

    statuses.sort(key=lambda s: (s.cluster_name, s.cluster_namespace))
    return statuses


def sort_placements(placements: Iterable[PlacementSummary]) -> list[PlacementSummary]:
    return sorted(placements, key=lambda p: p.placement_binding)
