"""ObjectStore protocol and the errors every store raises.

The propagator talks to the remote object store only through this
protocol.  Objects are plain unstructured dicts; any object with the
methods below satisfies the protocol, no inheritance required.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from policy_propagator.models import ResourceKind


class StoreError(Exception):
    """A remote store call failed (transient, eligible for retry)."""


class NotFoundError(StoreError):
    """The requested object does not exist."""


class ConflictError(StoreError):
    """A write was based on a stale resourceVersion, or the object exists."""


@runtime_checkable
class ObjectStore(Protocol):
    """Protocol for remote object stores (namespaced, labeled objects)."""

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        """Return the object; raise NotFoundError when absent."""
        ...

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        """List objects in *namespace* (all namespaces if None) matching *labels*."""
        ...

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        ...

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace the object; raise ConflictError if its resourceVersion is stale."""
        ...

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        ...

    def patch_status(
        self,
        kind: ResourceKind,
        original: dict[str, Any],
        updated: dict[str, Any],
    ) -> dict[str, Any]:
        """Merge-patch the status of *updated* against the originally-read object.

        The patch carries the original resourceVersion, so a concurrent
        write makes it fail with ConflictError.
        """
        ...
