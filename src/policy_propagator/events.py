"""Event recording for root policies.

The reconciler reports what it did (propagated, updated, disabled) and
what went wrong (warnings) through an :class:`EventRecorder`.  Any object
with ``record_event()`` satisfies the protocol.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from policy_propagator.models import EVENT, Policy
from policy_propagator.store.base import ObjectStore, StoreError

logger = logging.getLogger(__name__)

NORMAL = "Normal"
WARNING = "Warning"
PROPAGATION_REASON = "PolicyPropagation"


@runtime_checkable
class EventRecorder(Protocol):
    def record_event(self, subject: Policy, severity: str, reason: str, message: str) -> None:
        ...


@dataclass(frozen=True)
class RecordedEvent:
    namespace: str
    name: str
    severity: str
    reason: str
    message: str


class LoggingEventRecorder:
    """Writes events to the log only."""

    def record_event(self, subject: Policy, severity: str, reason: str, message: str) -> None:
        level = logging.WARNING if severity == WARNING else logging.INFO
        logger.log(level, "[%s] %s/%s %s: %s", severity, subject.namespace, subject.name, reason, message)


class MemoryEventRecorder:
    """Keeps events in a list (simulation output and tests)."""

    def __init__(self) -> None:
        self.events: list[RecordedEvent] = []

    def record_event(self, subject: Policy, severity: str, reason: str, message: str) -> None:
        self.events.append(RecordedEvent(
            namespace=subject.namespace,
            name=subject.name,
            severity=severity,
            reason=reason,
            message=message,
        ))

    def messages(self, severity: str | None = None) -> list[str]:
        return [e.message for e in self.events if severity is None or e.severity == severity]


class StoreEventRecorder:
    """Creates core ``v1/Event`` objects through the object store.

    Recording is best effort: store failures are logged, never raised.
    """

    def __init__(self, store: ObjectStore, component: str = "policy-propagator") -> None:
        self._store = store
        self._component = component

    def record_event(self, subject: Policy, severity: str, reason: str, message: str) -> None:
        now = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        event = {
            "metadata": {
                "name": f"{subject.name}.{uuid.uuid4().hex[:16]}",
                "namespace": subject.namespace,
            },
            "involvedObject": {
                "apiVersion": subject.api_version or subject.KIND.api_version,
                "kind": subject.kind or subject.KIND.kind,
                "name": subject.name,
                "namespace": subject.namespace,
                "uid": subject.metadata.uid,
            },
            "type": severity,
            "reason": reason,
            "message": message,
            "source": {"component": self._component},
            "firstTimestamp": now,
            "lastTimestamp": now,
            "count": 1,
        }
        try:
            self._store.create(EVENT, event)
        except StoreError:
            logger.exception("Failed to record event for %s/%s", subject.namespace, subject.name)
