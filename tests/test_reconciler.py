"""Tests for RootPolicyReconciler: full passes against the in-memory store."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest

from policy_propagator.common import (
    CLUSTER_NAME_LABEL,
    CLUSTER_NAMESPACE_LABEL,
    HUB_TEMPLATES_ERROR_ANNOTATION,
    PLACEMENT_LABEL,
    ROOT_POLICY_LABEL,
)
from policy_propagator.config import PropagatorConfig
from policy_propagator.events import NORMAL, WARNING, MemoryEventRecorder
from policy_propagator.metrics import ROOT_HANDLER_DURATION
from policy_propagator.models import (
    CONFIG_MAP,
    PLACEMENT,
    PLACEMENT_BINDING,
    PLACEMENT_DECISION,
    PLACEMENT_RULE,
    POLICY,
    ComplianceState,
    Policy,
)
from policy_propagator.propagator.reconciler import (
    CleanupError,
    PropagationError,
    RootPolicyReconciler,
)
from policy_propagator.store import InMemoryStore
from policy_propagator.store.base import ConflictError, StoreError

NS = "policies"


# --- Fixtures ---


def _root_obj(data: Any = "plain", disabled: bool = False) -> dict[str, Any]:
    return {
        "apiVersion": POLICY.api_version,
        "kind": POLICY.kind,
        "metadata": {"name": "p1", "namespace": NS},
        "spec": {
            "remediationAction": "inform",
            "disabled": disabled,
            "policy-templates": [{
                "objectDefinition": {
                    "apiVersion": "policy.open-cluster-management.io/v1",
                    "kind": "ConfigurationPolicy",
                    "metadata": {"name": "cfg"},
                    "spec": {"value": data},
                },
            }],
        },
    }


def _binding_obj(name: str, api_group: str, kind: str, target: str, policy: str = "p1") -> dict[str, Any]:
    return {
        "apiVersion": PLACEMENT_BINDING.api_version,
        "kind": PLACEMENT_BINDING.kind,
        "metadata": {"name": name, "namespace": NS},
        "placementRef": {"apiGroup": api_group, "kind": kind, "name": target},
        "subjects": [{"apiGroup": "policy.open-cluster-management.io", "kind": "Policy", "name": policy}],
    }


def _rule_obj(clusters: list[str], name: str = "rule") -> dict[str, Any]:
    return {
        "apiVersion": PLACEMENT_RULE.api_version,
        "kind": PLACEMENT_RULE.kind,
        "metadata": {"name": name, "namespace": NS},
        "status": {"decisions": [{"clusterName": c, "clusterNamespace": c} for c in clusters]},
    }


def _replica_obj(cluster: str) -> dict[str, Any]:
    return {
        "apiVersion": POLICY.api_version,
        "kind": POLICY.kind,
        "metadata": {
            "name": f"{NS}.p1",
            "namespace": cluster,
            "labels": {
                ROOT_POLICY_LABEL: f"{NS}.p1",
                CLUSTER_NAME_LABEL: cluster,
                CLUSTER_NAMESPACE_LABEL: cluster,
            },
        },
        "spec": {"disabled": False},
    }


def _store(clusters: list[str] | None = None, **root: Any) -> InMemoryStore:
    store = InMemoryStore()
    store.add(_root_obj(**root))
    store.add(_binding_obj("pb", "apps.open-cluster-management.io", "PlacementRule", "rule"))
    store.add(_rule_obj(clusters if clusters is not None else ["c1", "c2"]))
    return store


def _reconciler(store: Any, **kwargs: Any) -> tuple[RootPolicyReconciler, MemoryEventRecorder]:
    recorder = MemoryEventRecorder()
    kwargs.setdefault("sleep", lambda _: None)
    return RootPolicyReconciler(store, PropagatorConfig(), recorder=recorder, **kwargs), recorder


def _root(store: Any) -> Policy:
    return Policy.model_validate(store.get(POLICY, NS, "p1"))


def _replica_namespaces(store: InMemoryStore) -> list[str]:
    return [r["metadata"]["namespace"] for r in store.list(POLICY, labels={ROOT_POLICY_LABEL: f"{NS}.p1"})]


class FakeMetrics:
    def __init__(self) -> None:
        self.observed: list[tuple[str, float]] = []

    def observe_duration(self, metric_name: str, seconds: float) -> None:
        self.observed.append((metric_name, seconds))


# --- Convergence ---


class TestPropagation:
    def test_replicates_to_every_decision(self) -> None:
        store = _store()
        reconciler, recorder = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == ["c1", "c2"]
        status = _root(store).status
        assert [(p.placement_binding, p.placement_rule) for p in status.placement] == [("pb", "rule")]
        assert [(s.cluster_namespace, s.cluster_name) for s in status.status] == [("c1", "c1"), ("c2", "c2")]
        assert status.compliant is None
        assert recorder.messages(NORMAL) == [
            "Policy policies/p1 was propagated to cluster c1/c1",
            "Policy policies/p1 was propagated to cluster c2/c2",
        ]

    def test_rolls_up_replica_compliance(self) -> None:
        store = _store()
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))
        for cluster, state in (("c1", "Compliant"), ("c2", "NonCompliant")):
            replica = store.get(POLICY, cluster, f"{NS}.p1")
            store.patch_status(POLICY, replica, dict(replica, status={"compliant": state}))

        reconciler.handle_root_policy(_root(store))
        status = _root(store).status
        assert status.compliant == ComplianceState.NON_COMPLIANT
        assert [s.compliant for s in status.status] == [
            ComplianceState.COMPLIANT, ComplianceState.NON_COMPLIANT,
        ]

    def test_second_pass_writes_no_replicas(self) -> None:
        real = _store()
        reconciler, _ = _reconciler(real)
        reconciler.handle_root_policy(_root(real))

        store = MagicMock(wraps=real)
        reconciler, recorder = _reconciler(store)
        reconciler.handle_root_policy(_root(real))
        store.create.assert_not_called()
        store.update.assert_not_called()
        store.delete.assert_not_called()
        assert recorder.events == []

    def test_root_spec_is_never_written(self) -> None:
        store = _store()
        before = store.get(POLICY, NS, "p1")
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))
        after = store.get(POLICY, NS, "p1")
        assert after["spec"] == before["spec"]
        assert after["metadata"].get("labels") is None

    def test_generic_placement(self) -> None:
        store = InMemoryStore()
        store.add(_root_obj())
        store.add(_binding_obj("pb", "cluster.open-cluster-management.io", "Placement", "pl"))
        store.add({
            "apiVersion": PLACEMENT.api_version,
            "kind": PLACEMENT.kind,
            "metadata": {"name": "pl", "namespace": NS},
        })
        store.add({
            "apiVersion": PLACEMENT_DECISION.api_version,
            "kind": PLACEMENT_DECISION.kind,
            "metadata": {"name": "pl-decision-1", "namespace": NS, "labels": {PLACEMENT_LABEL: "pl"}},
            "status": {"decisions": [{"clusterName": "c3", "reason": ""}]},
        })
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == ["c3"]
        assert _root(store).status.placement[0].placement == "pl"

    def test_generic_placement_v1alpha1(self) -> None:
        store = InMemoryStore()
        store.add(_root_obj())
        store.add(_binding_obj("pb", "cluster.open-cluster-management.io", "Placement", "pl"))
        store.add({
            "apiVersion": "cluster.open-cluster-management.io/v1alpha1",
            "kind": "Placement",
            "metadata": {"name": "pl", "namespace": NS},
        })
        store.add({
            "apiVersion": "cluster.open-cluster-management.io/v1alpha1",
            "kind": "PlacementDecision",
            "metadata": {"name": "pl-decision-1", "namespace": NS, "labels": {PLACEMENT_LABEL: "pl"}},
            "status": {"decisions": [{"clusterName": "c1", "reason": ""}]},
        })
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == ["c1"]
        assert _root(store).status.placement[0].placement == "pl"

    def test_duplicate_decisions_replicate_once(self) -> None:
        store = _store(clusters=["c1"])
        store.add(_binding_obj("pb2", "apps.open-cluster-management.io", "PlacementRule", "rule"))
        reconciler, recorder = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == ["c1"]
        assert len(recorder.messages(NORMAL)) == 1
        assert [p.placement_binding for p in _root(store).status.placement] == ["pb", "pb2"]

    def test_bindings_for_other_policies_ignored(self) -> None:
        store = InMemoryStore()
        store.add(_root_obj())
        store.add(_binding_obj("pb", "apps.open-cluster-management.io", "PlacementRule", "rule", policy="p2"))
        store.add(_rule_obj(["c1"]))
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == []
        assert _root(store).status.placement == []


# --- Orphans and disablement ---


class TestCleanup:
    def test_orphaned_replicas_deleted(self) -> None:
        store = _store()
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        store.add(_rule_obj(["c1"]))
        reconciler.handle_root_policy(_root(store))
        assert _replica_namespaces(store) == ["c1"]

    def test_disabled_root_removes_replicas(self) -> None:
        store = _store()
        reconciler, recorder = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        obj = store.get(POLICY, NS, "p1")
        obj["spec"]["disabled"] = True
        store.update(POLICY, obj)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == []
        status = _root(store).status
        assert status.status == []
        assert status.compliant is None
        assert [p.placement_binding for p in status.placement] == ["pb"]
        assert "Policy policies/p1 was disabled" in recorder.messages(NORMAL)

    def test_cleanup_failure_raises(self) -> None:
        real = _store()
        reconciler, _ = _reconciler(real)
        reconciler.handle_root_policy(_root(real))
        obj = real.get(POLICY, NS, "p1")
        obj["spec"]["disabled"] = True
        real.update(POLICY, obj)

        store = MagicMock(wraps=real)
        store.delete.side_effect = StoreError("forbidden")
        reconciler, recorder = _reconciler(store)
        with pytest.raises(CleanupError):
            reconciler.handle_root_policy(_root(real))
        assert recorder.messages(WARNING) == [
            "One or more replicated policies could not be deleted for the policy policies/p1",
        ]
        assert _replica_namespaces(real) == ["c1", "c2"]

    def test_orphan_cleanup_failure_raises_after_status(self) -> None:
        real = _store()
        reconciler, _ = _reconciler(real)
        reconciler.handle_root_policy(_root(real))
        real.add(_rule_obj(["c1"]))

        store = MagicMock(wraps=real)
        store.delete.side_effect = StoreError("forbidden")
        reconciler, recorder = _reconciler(store)
        with pytest.raises(CleanupError):
            reconciler.handle_root_policy(_root(real))
        assert store.patch_status.called
        assert recorder.messages(WARNING)[-1] == (
            "Failed to delete orphaned replicated policies for the policy policies/p1"
        )


# --- Failure isolation ---


class TestFailures:
    TEMPLATE = '{{hub fromConfigMap("", "sizes", ManagedClusterName) hub}}'

    def test_template_failure_isolated_to_cluster(self) -> None:
        store = _store(data=self.TEMPLATE)
        store.add({
            "apiVersion": CONFIG_MAP.api_version,
            "kind": CONFIG_MAP.kind,
            "metadata": {"name": "sizes", "namespace": NS},
            "data": {"c1": "large"},
        })
        sleeps: list[float] = []
        reconciler, recorder = _reconciler(store, sleep=sleeps.append)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == ["c1", "c2"]
        failed = Policy.model_validate(store.get(POLICY, "c2", f"{NS}.p1"))
        nested = failed.spec.policy_templates[0].object_definition
        assert HUB_TEMPLATES_ERROR_ANNOTATION in nested["metadata"]["annotations"]

        status = _root(store).status
        assert [(s.cluster_name, s.compliant) for s in status.status] == [
            ("c1", None), ("c2", ComplianceState.NON_COMPLIANT),
        ]
        assert status.compliant == ComplianceState.NON_COMPLIANT
        [warning] = recorder.messages(WARNING)
        assert warning.startswith("Failed to resolve templates for cluster c2/c2")
        assert sleeps == []

    def test_spec_validity_error_not_retried(self) -> None:
        store = _store(clusters=["c1"], data=self.TEMPLATE)
        obj = store.get(POLICY, NS, "p1")
        obj["spec"]["policy-templates"][0]["objectDefinition"]["kind"] = "CertificatePolicy"
        store.add(obj)
        reconciler, recorder = _reconciler(store)
        reconciler.handle_root_policy(_root(store))

        assert _replica_namespaces(store) == []
        assert recorder.messages(WARNING) == [
            "Policy policies/p1 has templates but it is not a ConfigurationPolicy.",
        ]
        assert _root(store).status.status[0].compliant == ComplianceState.NON_COMPLIANT

    def test_all_bindings_failing_aborts(self) -> None:
        store = InMemoryStore()
        store.add(_root_obj())
        store.add(_binding_obj("bad", "example.com", "ClusterSet", "x"))
        reconciler, recorder = _reconciler(store)
        with pytest.raises(PropagationError, match="Could not get the placement decisions"):
            reconciler.handle_root_policy(_root(store))

        assert "status" not in store.get(POLICY, NS, "p1")
        assert recorder.messages(WARNING) == [
            "Could not get the placement decisions for the policy policies/p1",
        ]

    def test_one_failed_binding_aborts_pass(self) -> None:
        store = _store(clusters=["c1"])
        store.add(_binding_obj("zz-bad", "example.com", "ClusterSet", "x"))
        store.add(_replica_obj("c9"))
        reconciler, recorder = _reconciler(store)
        with pytest.raises(PropagationError, match="Could not get the placement decisions"):
            reconciler.handle_root_policy(_root(store))

        assert "status" not in store.get(POLICY, NS, "p1")
        assert "c9" in _replica_namespaces(store)
        assert recorder.messages(WARNING) == [
            "Could not get the placement decisions for the policy policies/p1",
        ]

    def test_failed_binding_keeps_previous_status(self) -> None:
        store = _store(clusters=["c1"])
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(store))
        before = store.get(POLICY, NS, "p1")["status"]

        store.add(_binding_obj("zz-bad", "example.com", "ClusterSet", "x"))
        with pytest.raises(PropagationError):
            reconciler.handle_root_policy(_root(store))
        assert store.get(POLICY, NS, "p1")["status"] == before

    def test_listing_bindings_retried_then_raised(self) -> None:
        real = _store()
        sleeps: list[float] = []
        store = MagicMock(wraps=real)

        def list_objects(kind, namespace=None, labels=None):
            if kind == PLACEMENT_BINDING:
                raise StoreError("unavailable")
            return real.list(kind, namespace, labels)

        store.list.side_effect = list_objects
        reconciler, recorder = _reconciler(store, sleep=sleeps.append)
        with pytest.raises(StoreError, match="unavailable"):
            reconciler.handle_root_policy(_root(real))
        assert sleeps == [2.0, 4.0]
        assert recorder.messages(WARNING) == [
            "Could not list the placement bindings for the policy policies/p1",
        ]

    def test_replica_write_failure_marks_cluster(self) -> None:
        real = _store()
        store = MagicMock(wraps=real)

        def create(kind, obj):
            if obj["metadata"]["namespace"] == "c2":
                raise StoreError("quota exceeded")
            return real.create(kind, obj)

        store.create.side_effect = create
        reconciler, _ = _reconciler(store)
        reconciler.handle_root_policy(_root(real))

        assert _replica_namespaces(real) == ["c1"]
        assert [s.compliant for s in _root(real).status.status] == [None, ComplianceState.NON_COMPLIANT]

    def test_status_conflict_raises(self) -> None:
        store = _store()
        stale = _root(store)
        store.add(store.get(POLICY, NS, "p1"))
        reconciler, recorder = _reconciler(store)
        with pytest.raises(ConflictError):
            reconciler.handle_root_policy(stale)
        assert recorder.messages(WARNING) == [
            "Failed to update the policy status for the policy policies/p1",
        ]


# --- Metrics ---


class TestMetrics:
    def test_observed_once_per_pass(self) -> None:
        store = _store()
        metrics = FakeMetrics()
        reconciler, _ = _reconciler(store, metrics=metrics)
        reconciler.handle_root_policy(_root(store))
        assert [name for name, _ in metrics.observed] == [ROOT_HANDLER_DURATION]
        assert metrics.observed[0][1] >= 0

    def test_observed_on_failure(self) -> None:
        store = InMemoryStore()
        store.add(_root_obj())
        store.add(_binding_obj("bad", "example.com", "ClusterSet", "x"))
        metrics = FakeMetrics()
        reconciler, _ = _reconciler(store, metrics=metrics)
        with pytest.raises(PropagationError):
            reconciler.handle_root_policy(_root(store))
        assert len(metrics.observed) == 1
