"""RootPolicyReconciler — one reconciliation pass for one root policy.

Lifecycle:
  1. Disabled root: delete every replica, record the disablement
  2. List placement bindings in the root's namespace
  3. Resolve decisions per matching binding and replicate to each cluster
  4. List replicas and build per-cluster compliance
  5. Roll up compliance and placement summaries
  6. Patch the root's status (merge against the originally-read object)
  7. Delete orphaned replicas

Retries are targeted at each remote call rather than the whole pass, so a
binding changing mid-pass cannot leave the root half-applied.  A binding
whose decisions stay unavailable aborts the pass before the status is
touched.  Otherwise the status patch lands after every replication
attempt and before orphan cleanup.  The reconciler never requeues itself: errors are logged,
recorded as a warning on the root, and raised to the caller.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from policy_propagator.common import (
    full_name_for_policy,
    labels_for_root_policy,
    replica_cluster_key,
)
from policy_propagator.config import PropagatorConfig
from policy_propagator.events import (
    NORMAL,
    PROPAGATION_REASON,
    WARNING,
    EventRecorder,
    LoggingEventRecorder,
)
from policy_propagator.metrics import ROOT_HANDLER_DURATION
from policy_propagator.models import (
    PLACEMENT_BINDING,
    POLICY,
    PlacementBinding,
    PlacementSummary,
    Policy,
)
from policy_propagator.placement.decisions import DecisionResolver
from policy_propagator.propagator.replicator import PolicyReplicator
from policy_propagator.propagator.status import (
    aggregate_compliance,
    build_cluster_statuses,
    sort_placements,
)
from policy_propagator.retry import Retrier
from policy_propagator.store.base import NotFoundError, ObjectStore
from policy_propagator.templates.processor import TemplateProcessor
from policy_propagator.templates.resolver import TemplateResolver

if TYPE_CHECKING:
    from policy_propagator.metrics import MetricsSink

logger = logging.getLogger(__name__)


class PropagationError(Exception):
    """A reconciliation pass was aborted."""


class CleanupError(PropagationError):
    """One or more replicas could not be deleted."""


@dataclass
class DecisionOutcome:
    """What step 3 learned about the root's bindings and clusters."""

    placements: list[PlacementSummary] = field(default_factory=list)
    all_decisions: set[str] = field(default_factory=set)
    failed_clusters: set[str] = field(default_factory=set)


class RootPolicyReconciler:
    """Propagates root policies to the clusters their placements select."""

    def __init__(
        self,
        store: ObjectStore,
        config: PropagatorConfig | None = None,
        recorder: EventRecorder | None = None,
        metrics: MetricsSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._store = store
        self._config = config or PropagatorConfig()
        self._recorder = recorder or LoggingEventRecorder()
        self._metrics = metrics
        self._retrier = Retrier(
            attempts=self._config.retry_attempts,
            delay=self._config.retry_delay,
            max_delay=self._config.retry_max_delay,
            sleep=sleep,
        )
        self._decisions = DecisionResolver(store)
        processor = TemplateProcessor(TemplateResolver(self._config.templates, store), self._recorder)
        self._replicator = PolicyReplicator(store, processor, self._recorder)

    @property
    def retrier(self) -> Retrier:
        return self._retrier

    def handle_root_policy(self, policy: Policy) -> None:
        """Run one full pass for *policy*; raises after giving up on a step."""
        start = time.monotonic()
        try:
            self._handle_root_policy(policy)
        finally:
            if self._metrics is not None:
                self._metrics.observe_duration(ROOT_HANDLER_DURATION, time.monotonic() - start)

    def _handle_root_policy(self, policy: Policy) -> None:
        original = policy.deep_copy()
        ns, name = policy.namespace, policy.name

        # Step 1: disabled roots lose every replica
        if policy.spec.disabled:
            logger.info("Policy %s/%s is disabled, doing clean up", ns, name)
            try:
                self._retrier.execute(
                    lambda: self.clean_up_policy(policy), "Retrying the policy clean up...",
                )
            except Exception:
                logger.info("Giving up on the policy clean up for %s/%s", ns, name)
                self._record_warning(policy, "One or more replicated policies could not be deleted")
                raise
            self._recorder.record_event(
                policy, NORMAL, PROPAGATION_REASON, f"Policy {ns}/{name} was disabled",
            )

        # Step 2: placement bindings
        try:
            items = self._retrier.execute(
                lambda: self._store.list(PLACEMENT_BINDING, ns),
                "Retrying to list the placement bindings...",
            )
        except Exception:
            logger.info("Giving up on listing the placement bindings for %s/%s", ns, name)
            self._record_warning(policy, "Could not list the placement bindings")
            raise
        bindings = [PlacementBinding.model_validate(item) for item in items]

        # Step 3: decisions and replication; a failed binding aborts here
        outcome = self.handle_decisions(policy, bindings)

        # Step 4: per-cluster compliance
        replicas: list[Policy] = []
        if not policy.spec.disabled:
            try:
                replicas = [
                    Policy.model_validate(item)
                    for item in self._retrier.execute(
                        lambda: self._store.list(POLICY, None, labels_for_root_policy(policy)),
                        "Retrying to list the replicated policies...",
                    )
                ]
            except Exception:
                logger.info("Giving up on listing the replicated policies for %s/%s", ns, name)
                self._record_warning(policy, "Could not list the replicated policies")
                raise

        # Step 5: rollup
        statuses = build_cluster_statuses(replicas, outcome.failed_clusters)
        policy.status.status = statuses
        policy.status.compliant = aggregate_compliance(statuses)
        policy.status.placement = sort_placements(outcome.placements)

        # Step 6: status patch
        try:
            self._retrier.execute(
                lambda: self._store.patch_status(POLICY, original.to_object(), policy.to_object()),
                "Retrying to update the root policy status...",
            )
        except Exception as exc:
            logger.error("Giving up on updating the root policy status for %s/%s: %s", ns, name, exc)
            self._record_warning(policy, "Failed to update the policy status")
            raise

        # Step 7: orphans
        try:
            self.clean_up_orphaned_replicas(policy, replicas, outcome.all_decisions)
        except CleanupError as exc:
            logger.error("Giving up on deleting the orphaned replicated policies: %s", exc)
            self._record_warning(policy, "Failed to delete orphaned replicated policies")
            raise

        logger.info("Reconciliation of %s/%s complete", ns, name)

    def handle_decisions(
        self, policy: Policy, bindings: list[PlacementBinding],
    ) -> DecisionOutcome:
        """Resolve every binding that names *policy* and replicate to its clusters.

        A binding whose decisions cannot be resolved aborts the pass with
        PropagationError, since a partial decision set would leave a
        misleading status.  A cluster whose replication fails is recorded
        as failed.  Disabled policies only collect placement summaries.
        """
        outcome = DecisionOutcome()

        for binding in bindings:
            if not binding.binds(policy):
                continue

            try:
                decisions, summary = self._retrier.execute(
                    lambda b=binding: self._decisions.resolve(b, policy),
                    "Retrying to get the placement decisions...",
                )
            except Exception as exc:
                logger.info(
                    "Failed to get the placement decisions for %s/%s from binding %s. Giving up: %s",
                    policy.namespace, policy.name, binding.name, exc,
                )
                msg = "Could not get the placement decisions"
                self._record_warning(policy, msg)
                raise PropagationError(
                    f"{msg} for the policy {policy.namespace}/{policy.name}"
                ) from exc

            outcome.placements.append(summary)
            if policy.spec.disabled:
                continue

            for decision in decisions:
                key = decision.key
                if key in outcome.all_decisions:
                    continue
                outcome.all_decisions.add(key)
                try:
                    self._retrier.execute(
                        lambda d=decision: self._replicator.replicate(policy, d),
                        "Retrying to replicate the policy...",
                    )
                except Exception as exc:
                    logger.info(
                        "Giving up on replicating the policy %s/%s: %s",
                        decision.cluster_namespace, full_name_for_policy(policy), exc,
                    )
                    outcome.failed_clusters.add(key)

        return outcome

    def clean_up_policy(self, policy: Policy) -> None:
        """Delete every replica of *policy*, continuing past individual failures."""
        items = self._store.list(POLICY, None, labels_for_root_policy(policy))
        failed = 0
        for item in items:
            replica = Policy.model_validate(item)
            try:
                self._store.delete(POLICY, replica.namespace, replica.name)
            except NotFoundError:
                continue
            except Exception as exc:
                logger.error(
                    "Failed to delete replicated policy %s/%s: %s", replica.namespace, replica.name, exc,
                )
                failed += 1
        if failed:
            raise CleanupError(f"failed to delete {failed} replicated policies")

    def clean_up_orphaned_replicas(
        self, policy: Policy, replicas: list[Policy], all_decisions: set[str],
    ) -> None:
        """Delete replicas whose cluster is no longer in the decision set."""
        failed = 0
        for replica in replicas:
            if replica_cluster_key(replica) in all_decisions:
                continue
            logger.info("Deleting orphaned replicated policy %s/%s", replica.namespace, replica.name)
            try:
                self._retrier.execute(
                    lambda r=replica: self._delete_if_present(r),
                    "Retrying to delete the orphaned replicated policy...",
                )
            except Exception as exc:
                logger.error(
                    "Failed to delete the orphaned replicated policy %s/%s: %s",
                    replica.namespace, replica.name, exc,
                )
                failed += 1
        if failed:
            raise CleanupError(f"{failed} orphaned replicated policies failed to be deleted")

    def _delete_if_present(self, replica: Policy) -> None:
        try:
            self._store.delete(POLICY, replica.namespace, replica.name)
        except NotFoundError:
            pass

    def _record_warning(self, policy: Policy, msg_prefix: str) -> None:
        self._recorder.record_event(
            policy, WARNING, PROPAGATION_REASON,
            f"{msg_prefix} for the policy {policy.namespace}/{policy.name}",
        )
