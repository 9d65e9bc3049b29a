"""Decision resolution: turns a placement binding into target clusters.

A binding references either a legacy PlacementRule (decisions embedded
in its status) or a generic Placement (decisions published as labeled
PlacementDecision objects).  Both are normalized to the same
``list[PlacementDecision]`` plus a :class:`PlacementSummary` for the root
policy's status.  A referenced object that does not exist yields zero
decisions, not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

from policy_propagator.common import PLACEMENT_LABEL
from policy_propagator.models import (
    PLACEMENT,
    PLACEMENT_DECISION,
    PLACEMENT_RULE,
    Placement,
    PlacementBinding,
    PlacementDecision,
    PlacementDecisionList,
    PlacementRule,
    PlacementSummary,
    Policy,
)
from policy_propagator.retry import Unrecoverable
from policy_propagator.store.base import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)

Decisions = tuple[list[PlacementDecision], PlacementSummary]


class InvalidReferenceError(Unrecoverable):
    """A placement binding references a kind that cannot produce decisions."""


def _placement_rule_decisions(
    store: ObjectStore, binding: PlacementBinding, namespace: str,
) -> Decisions:
    """Decisions straight from a legacy PlacementRule's status."""
    try:
        rule = PlacementRule.model_validate(
            store.get(PLACEMENT_RULE, namespace, binding.placement_ref.name)
        )
    except NotFoundError:
        logger.debug("PlacementRule %s/%s not found", namespace, binding.placement_ref.name)
        rule = None

    summary = PlacementSummary(
        placement_binding=binding.name,
        placement_rule=rule.name if rule is not None else "",
    )
    decisions = list(rule.status.decisions) if rule is not None else []
    return decisions, summary


def _placement_decisions(
    store: ObjectStore, binding: PlacementBinding, namespace: str,
) -> Decisions:
    """Decisions flattened from every PlacementDecision labeled for a Placement."""
    try:
        placement = Placement.model_validate(
            store.get(PLACEMENT, namespace, binding.placement_ref.name)
        )
    except NotFoundError:
        logger.debug("Placement %s/%s not found", namespace, binding.placement_ref.name)
        placement = None

    if placement is None:
        return [], PlacementSummary(placement_binding=binding.name, placement="")
    summary = PlacementSummary(placement_binding=binding.name, placement=placement.name)

    try:
        items = store.list(PLACEMENT_DECISION, namespace, {PLACEMENT_LABEL: placement.name})
    except NotFoundError:
        items = []

    decisions: list[PlacementDecision] = []
    for item in items:
        for cluster in PlacementDecisionList.model_validate(item).status.decisions:
            decisions.append(PlacementDecision(
                cluster_name=cluster.cluster_name,
                cluster_namespace=cluster.cluster_name,
            ))
    return decisions, summary


@dataclass(frozen=True)
class DecisionSource:
    """How to read decisions for one placement reference kind."""

    api_group: str
    kind: str
    resolve: Callable[[ObjectStore, PlacementBinding, str], Decisions]


DECISION_SOURCES: dict[tuple[str, str], DecisionSource] = {
    (PLACEMENT_RULE.group, PLACEMENT_RULE.kind): DecisionSource(
        api_group=PLACEMENT_RULE.group,
        kind=PLACEMENT_RULE.kind,
        resolve=_placement_rule_decisions,
    ),
    (PLACEMENT.group, PLACEMENT.kind): DecisionSource(
        api_group=PLACEMENT.group,
        kind=PLACEMENT.kind,
        resolve=_placement_decisions,
    ),
}


class DecisionResolver:
    """Resolves placement bindings against the object store."""

    def __init__(self, store: ObjectStore) -> None:
        self._store = store

    def resolve(self, binding: PlacementBinding, policy: Policy) -> Decisions:
        """Return the decisions and placement summary for *binding*.

        Lookups happen in the root policy's namespace.  Raises
        InvalidReferenceError for an unsupported placement kind; store
        errors other than not-found propagate.
        """
        ref = binding.placement_ref
        source = DECISION_SOURCES.get((ref.api_group, ref.kind))
        if source is None:
            raise InvalidReferenceError(
                f"Placement binding {binding.namespace}/{binding.name} reference is not valid: "
                f"unsupported kind {ref.api_group}/{ref.kind}"
            )
        return source.resolve(self._store, binding, policy.namespace)
