"""Hub template processing for one replica and one target cluster.

Templates are only allowed inside the nested kinds listed in
``TEMPLATE_CAPABLE_KINDS``.  Resolved content is cluster-specific, so
processing runs once per nested object per cluster decision; nothing is
cached across clusters.
"""

from __future__ import annotations

import logging

from policy_propagator.common import (
    DISABLE_TEMPLATES_ANNOTATION,
    HUB_TEMPLATES_ERROR_ANNOTATION,
    TRIGGER_UPDATE_ANNOTATION,
    parse_bool,
)
from policy_propagator.events import PROPAGATION_REASON, WARNING, EventRecorder
from policy_propagator.models import PlacementDecision, Policy, PolicyTemplate
from policy_propagator.retry import Unrecoverable
from policy_propagator.templates.resolver import (
    TemplateResolutionError,
    TemplateResolver,
    has_template,
)

logger = logging.getLogger(__name__)

# Nested kinds whose controllers understand resolved hub templates.
TEMPLATE_CAPABLE_KINDS = frozenset({"ConfigurationPolicy"})


class SpecValidityError(Unrecoverable):
    """Hub templates were used in a nested kind that does not support them."""


def strip_trigger_update(policy: Policy) -> None:
    """Remove the root-only trigger-update annotation from *policy*."""
    annotations = policy.metadata.annotations
    if annotations and TRIGGER_UPDATE_ANNOTATION in annotations:
        del annotations[TRIGGER_UPDATE_ANNOTATION]


def templates_disabled(policy: Policy) -> bool:
    value = policy.annotations.get(DISABLE_TEMPLATES_ANNOTATION)
    return value is not None and parse_bool(value) is True


class TemplateProcessor:
    """Rewrites hub templates in a replica's nested policy templates."""

    def __init__(self, resolver: TemplateResolver, recorder: EventRecorder) -> None:
        self._resolver = resolver
        self._recorder = recorder

    def policy_has_templates(self, policy: Policy) -> bool:
        """True if any nested policy template contains the start delimiter."""
        start = self._resolver.config.start_delim
        return any(has_template(t.object_definition, start) for t in policy.spec.policy_templates)

    def process(self, replica: Policy, decision: PlacementDecision, root: Policy) -> None:
        """Resolve hub templates in *replica* for the cluster in *decision*.

        Mutates *replica* in place.  Raises SpecValidityError when a
        template-bearing nested object is not template capable, and
        TemplateResolutionError (after annotating the nested object) when
        resolution fails.  Both are also recorded as warnings on *root*.
        """
        logger.info(
            "Processing templates for policy %s/%s on cluster %s",
            root.namespace, root.name, decision.cluster_name,
        )

        if templates_disabled(replica):
            logger.info("Templates are disabled by annotation; skipping template processing")
            return

        strip_trigger_update(replica)

        start = self._resolver.config.start_delim
        for template in replica.spec.policy_templates:
            if not has_template(template.object_definition, start):
                continue

            if template.kind not in TEMPLATE_CAPABLE_KINDS:
                self._recorder.record_event(
                    root, WARNING, PROPAGATION_REASON,
                    f"Policy {root.namespace}/{root.name} has templates but it is not a "
                    f"ConfigurationPolicy.",
                )
                raise SpecValidityError(
                    f"Templates are restricted to only Configuration Policies, found {template.kind or 'no kind'}"
                )

            context = {"ManagedClusterName": decision.cluster_name}
            try:
                template.object_definition = self._resolver.resolve_template(
                    template.object_definition, context, lookup_namespace=root.namespace,
                )
            except TemplateResolutionError as exc:
                logger.error(
                    "Failed to resolve templates for cluster %s: %s", decision.key, exc,
                )
                self._recorder.record_event(
                    root, WARNING, PROPAGATION_REASON,
                    f"Failed to resolve templates for cluster {decision.key}: {exc}",
                )
                _annotate_error(template, str(exc))
                raise


def _annotate_error(template: PolicyTemplate, message: str) -> None:
    """Put the resolution error on the nested object for cluster-side consumers."""
    metadata = template.object_definition.setdefault("metadata", {})
    if not isinstance(metadata, dict):
        logger.error("Nested object metadata is not a mapping; cannot annotate template error")
        return
    annotations = metadata.get("annotations")
    if not isinstance(annotations, dict):
        annotations = {}
        metadata["annotations"] = annotations
    annotations[HUB_TEMPLATES_ERROR_ANNOTATION] = message
