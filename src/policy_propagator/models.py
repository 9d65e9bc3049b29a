"""Core data models for the policy propagator.

Defines the schemas for:
- Resource kinds (which remote collection an object lives in)
- Root and replicated policies (spec, nested templates, status)
- Placement bindings and the two placement variants they can reference
- Placement decisions (normalized cluster targets)
- Per-cluster compliance records and placement summaries

All objects parse from and serialize to the unstructured dict form used
by the object store (``apiVersion``/``kind``/``metadata``/``spec``/``status``).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field

POLICY_GROUP = "policy.open-cluster-management.io"
PLACEMENT_RULE_GROUP = "apps.open-cluster-management.io"
PLACEMENT_GROUP = "cluster.open-cluster-management.io"


@dataclass(frozen=True)
class ResourceKind:
    """Identifies a remote resource collection by API version and kind."""

    api_version: str
    kind: str

    @property
    def group(self) -> str:
        if "/" not in self.api_version:
            return ""
        return self.api_version.split("/", 1)[0]

    def __str__(self) -> str:
        return f"{self.api_version}/{self.kind}"


POLICY = ResourceKind(f"{POLICY_GROUP}/v1", "Policy")
PLACEMENT_BINDING = ResourceKind(f"{POLICY_GROUP}/v1", "PlacementBinding")
PLACEMENT_RULE = ResourceKind(f"{PLACEMENT_RULE_GROUP}/v1", "PlacementRule")
PLACEMENT = ResourceKind(f"{PLACEMENT_GROUP}/v1beta1", "Placement")
PLACEMENT_DECISION = ResourceKind(f"{PLACEMENT_GROUP}/v1beta1", "PlacementDecision")
EVENT = ResourceKind("v1", "Event")
CONFIG_MAP = ResourceKind("v1", "ConfigMap")


# --- Enums ---


class ComplianceState(enum.StrEnum):
    COMPLIANT = "Compliant"
    NON_COMPLIANT = "NonCompliant"


class RemediationAction(enum.StrEnum):
    """Accepts any casing (``Enforce`` is common in manifests)."""

    INFORM = "inform"
    ENFORCE = "enforce"

    @classmethod
    def _missing_(cls, value: object) -> RemediationAction | None:
        if isinstance(value, str):
            for member in cls:
                if member.value == value.lower():
                    return member
        return None


# --- Shared ---


class _WireModel(BaseModel):
    """Base for models that round-trip through the unstructured wire form."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ObjectMeta(_WireModel):
    name: str = ""
    namespace: str = ""
    labels: dict[str, str] | None = None
    annotations: dict[str, str] | None = None
    resource_version: str | None = Field(None, alias="resourceVersion")
    uid: str | None = None
    finalizers: list[str] | None = None
    owner_references: list[dict[str, Any]] | None = Field(None, alias="ownerReferences")


class _Object(_WireModel):
    """A namespaced object with metadata; subclasses set ``KIND``."""

    KIND: ClassVar[ResourceKind] = POLICY

    api_version: str = Field("", alias="apiVersion")
    kind: str = ""
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels or {}

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations or {}

    def to_object(self) -> dict[str, Any]:
        """Serialize to the unstructured form, filling in apiVersion/kind."""
        obj = self.to_dict()
        obj["apiVersion"] = self.api_version or self.KIND.api_version
        obj["kind"] = self.kind or self.KIND.kind
        return obj


# --- Policy ---


class PolicyTemplate(_WireModel):
    """A nested policy template wrapping an embedded object definition.

    The object definition is kept as a plain dict; its ``kind`` decides
    whether hub templates are allowed inside it.
    """

    object_definition: dict[str, Any] = Field(default_factory=dict, alias="objectDefinition")

    @property
    def kind(self) -> str:
        return str(self.object_definition.get("kind", ""))


class PolicySpec(_WireModel):
    disabled: bool = False
    remediation_action: RemediationAction | None = Field(None, alias="remediationAction")
    policy_templates: list[PolicyTemplate] = Field(
        default_factory=list, alias="policy-templates",
    )


class CompliancePerClusterStatus(_WireModel):
    """Compliance reported for the policy on one managed cluster."""

    compliant: ComplianceState | None = None
    cluster_name: str = Field("", alias="clustername")
    cluster_namespace: str = Field("", alias="clusternamespace")


class PlacementSummary(_WireModel):
    """Which binding (and which rule or placement) contributed to the policy."""

    placement_binding: str = Field("", alias="placementBinding")
    placement_rule: str | None = Field(None, alias="placementRule")
    placement: str | None = None


class PolicyStatus(_WireModel):
    compliant: ComplianceState | None = None
    placement: list[PlacementSummary] = Field(default_factory=list)
    status: list[CompliancePerClusterStatus] = Field(default_factory=list)


class Policy(_Object):
    """A root policy, or a replica of one in a cluster namespace."""

    KIND = POLICY

    spec: PolicySpec = Field(default_factory=PolicySpec)
    status: PolicyStatus = Field(default_factory=PolicyStatus)

    def deep_copy(self) -> Policy:
        """Return a clone that shares no mutable state with this policy."""
        return self.model_copy(deep=True)


# --- Placement ---


class Subject(_WireModel):
    api_group: str = Field("", alias="apiGroup")
    kind: str = ""
    name: str = ""


class PlacementRef(_WireModel):
    api_group: str = Field("", alias="apiGroup")
    kind: str = ""
    name: str = ""


class PlacementBinding(_Object):
    """Links one or more policies to a single placement reference."""

    KIND = PLACEMENT_BINDING

    placement_ref: PlacementRef = Field(default_factory=PlacementRef, alias="placementRef")
    subjects: list[Subject] = Field(default_factory=list)

    def binds(self, policy: Policy) -> bool:
        """True if any subject names *policy*."""
        return any(
            s.api_group == POLICY_GROUP and s.kind == POLICY.kind and s.name == policy.name
            for s in self.subjects
        )


class PlacementDecision(_WireModel):
    """A single resolved target cluster."""

    cluster_name: str = Field("", alias="clusterName")
    cluster_namespace: str = Field("", alias="clusterNamespace")

    @property
    def key(self) -> str:
        return f"{self.cluster_namespace}/{self.cluster_name}"


class PlacementRuleStatus(_WireModel):
    decisions: list[PlacementDecision] = Field(default_factory=list)


class PlacementRule(_Object):
    """Legacy placement: decisions are embedded in the rule's status."""

    KIND = PLACEMENT_RULE

    status: PlacementRuleStatus = Field(default_factory=PlacementRuleStatus)


class Placement(_Object):
    """Generic placement: decisions are published as PlacementDecision objects."""

    KIND = PLACEMENT


class ClusterDecision(_WireModel):
    cluster_name: str = Field("", alias="clusterName")
    reason: str = ""


class PlacementDecisionStatus(_WireModel):
    decisions: list[ClusterDecision] = Field(default_factory=list)


class PlacementDecisionList(_Object):
    """One PlacementDecision object (a page of decisions for a placement)."""

    KIND = PLACEMENT_DECISION

    status: PlacementDecisionStatus = Field(default_factory=PlacementDecisionStatus)
