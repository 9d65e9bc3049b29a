"""Per-cluster replication of a root policy.

For one (root policy, cluster) pair the replicator makes the replica in
the cluster namespace match the root: create it when missing, update it
when the (template-resolved) spec or annotations drifted, otherwise do
nothing.  Store errors are returned unretried; the reconciler retries the
whole call.

A hub template resolution failure does not stop the write.  The replica
goes out with the error annotation on the failing nested object, so the
cluster side can report it, and the error is raised afterwards so the
cluster is still counted as failed.
"""

from __future__ import annotations

import logging

from policy_propagator.common import (
    compare_spec_and_annotation,
    full_name_for_policy,
    replica_labels,
)
from policy_propagator.events import NORMAL, PROPAGATION_REASON, EventRecorder
from policy_propagator.models import POLICY, ObjectMeta, PlacementDecision, Policy, PolicyStatus
from policy_propagator.store.base import NotFoundError, ObjectStore
from policy_propagator.templates.processor import TemplateProcessor, strip_trigger_update
from policy_propagator.templates.resolver import TemplateResolutionError

logger = logging.getLogger(__name__)


class PolicyReplicator:
    """Creates or updates the replica of a root policy in one cluster namespace."""

    def __init__(
        self,
        store: ObjectStore,
        processor: TemplateProcessor,
        recorder: EventRecorder,
    ) -> None:
        self._store = store
        self._processor = processor
        self._recorder = recorder

    def replicate(self, root: Policy, decision: PlacementDecision) -> None:
        name = full_name_for_policy(root)
        try:
            existing = self._store.get(POLICY, decision.cluster_namespace, name)
        except NotFoundError:
            self._create(root, decision)
            return
        except Exception:
            logger.error(
                "Failed to get replicated policy %s/%s", decision.cluster_namespace, name,
            )
            raise

        self._update_if_changed(root, decision, Policy.model_validate(existing))

    def build_replica(self, root: Policy, decision: PlacementDecision) -> Policy:
        """Build a fresh replica for *decision*, templates still unresolved."""
        replica = root.deep_copy()
        replica.metadata = ObjectMeta(
            name=full_name_for_policy(root),
            namespace=decision.cluster_namespace,
            labels=replica_labels(root, decision),
            annotations=dict(root.annotations) or None,
        )
        replica.status = PolicyStatus()
        strip_trigger_update(replica)
        return replica

    def _process_templates(
        self, replica: Policy, root: Policy, decision: PlacementDecision,
    ) -> TemplateResolutionError | None:
        """Resolve hub templates in *replica*, returning a resolution failure.

        SpecValidityError and store errors still raise.
        """
        if not self._processor.policy_has_templates(root):
            return None
        try:
            self._processor.process(replica, decision, root)
        except TemplateResolutionError as exc:
            return exc
        return None

    def _create(self, root: Policy, decision: PlacementDecision) -> None:
        replica = self.build_replica(root, decision)
        template_error = self._process_templates(replica, root, decision)

        logger.info("Creating replicated policy %s/%s", replica.namespace, replica.name)
        try:
            self._store.create(POLICY, replica.to_object())
        except Exception:
            logger.error(
                "Failed to create replicated policy %s/%s", replica.namespace, replica.name,
            )
            raise

        self._recorder.record_event(
            root, NORMAL, PROPAGATION_REASON,
            f"Policy {root.namespace}/{root.name} was propagated to cluster {decision.key}",
        )
        if template_error is not None:
            raise template_error

    def _update_if_changed(
        self, root: Policy, decision: PlacementDecision, existing: Policy,
    ) -> None:
        # Always a clone, so a template failure never touches the root.
        desired = root.deep_copy()
        strip_trigger_update(desired)
        template_error = self._process_templates(desired, root, decision)

        if not compare_spec_and_annotation(desired, existing):
            logger.info(
                "Root policy and replicated policy mismatch, updating %s/%s",
                existing.namespace, existing.name,
            )
            existing.metadata.annotations = dict(desired.annotations) or None
            existing.spec = desired.spec
            try:
                self._store.update(POLICY, existing.to_object())
            except Exception:
                logger.error(
                    "Failed to update replicated policy %s/%s", existing.namespace, existing.name,
                )
                raise

            self._recorder.record_event(
                root, NORMAL, PROPAGATION_REASON,
                f"Policy {root.namespace}/{root.name} was updated for cluster {decision.key}",
            )

        if template_error is not None:
            raise template_error
