"""InMemoryStore: a thread-safe ObjectStore kept in a dict.

Behaves like an API server for the calls the propagator makes:

- every write bumps a global ``resourceVersion`` counter
- ``update`` and ``patch_status`` fail with ConflictError on a stale version
- ``status`` is a subresource: ``create`` drops it, ``update`` keeps the
  stored one, only ``patch_status`` changes it
- objects are keyed by API group and kind, so every served version of a
  kind (``v1alpha1`` and ``v1beta1`` placements alike) is the same object

Used by the ``reconcile`` CLI command (manifests loaded from YAML) and
throughout the tests.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from policy_propagator.common import apply_merge_patch, create_merge_patch
from policy_propagator.models import ResourceKind
from policy_propagator.store.base import ConflictError, NotFoundError

_Key = tuple[str, str, str, str]  # (group, kind, namespace, name)


class InMemoryStore:
    """Dict-backed object store with optimistic concurrency."""

    def __init__(self) -> None:
        self._objects: dict[_Key, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._version = 0

    def __len__(self) -> int:
        return len(self._objects)

    # --- Seeding ---

    def add(self, obj: dict[str, Any]) -> dict[str, Any]:
        """Store *obj* as-is (status included), replacing any existing copy."""
        with self._lock:
            stored = self._stamp(copy.deepcopy(obj))
            self._objects[self._key_of(obj)] = stored
            return copy.deepcopy(stored)

    def load_manifests(self, paths: Iterable[str | Path]) -> int:
        """Add every document in the given multi-document YAML files.

        Returns the number of objects loaded.
        """
        count = 0
        for path in paths:
            text = Path(path).read_text(encoding="utf-8")
            for doc in yaml.safe_load_all(text):
                if not doc:
                    continue
                if not isinstance(doc, dict) or "kind" not in doc:
                    msg = f"Expected a Kubernetes-style object in {path}, got {doc!r}"
                    raise ValueError(msg)
                doc.setdefault("metadata", {}).setdefault("namespace", "default")
                self.add(doc)
                count += 1
        return count

    # --- ObjectStore protocol ---

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        with self._lock:
            obj = self._objects.get((kind.group, kind.kind, namespace, name))
            if obj is None:
                raise NotFoundError(f"{kind.kind} {namespace}/{name} not found")
            return copy.deepcopy(obj)

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        selector = labels or {}
        with self._lock:
            items = [
                copy.deepcopy(obj)
                for (group, k, ns, _), obj in sorted(self._objects.items())
                if group == kind.group
                and k == kind.kind
                and (namespace is None or ns == namespace)
                and _matches(obj, selector)
            ]
        return items

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(obj)
        stored["apiVersion"] = kind.api_version
        stored["kind"] = kind.kind
        stored.pop("status", None)
        key = self._key_of(stored)
        with self._lock:
            if key in self._objects:
                raise ConflictError(f"{kind.kind} {key[2]}/{key[3]} already exists")
            stored = self._stamp(stored)
            self._objects[key] = stored
            return copy.deepcopy(stored)

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        stored = copy.deepcopy(obj)
        stored["apiVersion"] = kind.api_version
        stored["kind"] = kind.kind
        key = self._key_of(stored)
        with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFoundError(f"{kind.kind} {key[2]}/{key[3]} not found")
            self._check_version(current, stored)
            if "status" in current:
                stored["status"] = current["status"]
            else:
                stored.pop("status", None)
            stored = self._stamp(stored)
            self._objects[key] = stored
            return copy.deepcopy(stored)

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        with self._lock:
            try:
                del self._objects[(kind.group, kind.kind, namespace, name)]
            except KeyError:
                raise NotFoundError(f"{kind.kind} {namespace}/{name} not found") from None

    def patch_status(
        self,
        kind: ResourceKind,
        original: dict[str, Any],
        updated: dict[str, Any],
    ) -> dict[str, Any]:
        patch = create_merge_patch(original.get("status") or {}, updated.get("status") or {})
        meta = original.get("metadata") or {}
        key = (kind.group, kind.kind, meta.get("namespace", ""), meta.get("name", ""))
        with self._lock:
            current = self._objects.get(key)
            if current is None:
                raise NotFoundError(f"{kind.kind} {key[2]}/{key[3]} not found")
            self._check_version(current, original)
            stored = copy.deepcopy(current)
            stored["status"] = apply_merge_patch(stored.get("status") or {}, patch)
            stored = self._stamp(stored)
            self._objects[key] = stored
            return copy.deepcopy(stored)

    # --- Private ---

    def _stamp(self, obj: dict[str, Any]) -> dict[str, Any]:
        self._version += 1
        obj.setdefault("metadata", {})["resourceVersion"] = str(self._version)
        return obj

    @staticmethod
    def _key_of(obj: dict[str, Any]) -> _Key:
        meta = obj.get("metadata") or {}
        kind = ResourceKind(obj.get("apiVersion", ""), obj.get("kind", ""))
        return (
            kind.group,
            kind.kind,
            meta.get("namespace", ""),
            meta.get("name", ""),
        )

    @staticmethod
    def _check_version(current: dict[str, Any], incoming: dict[str, Any]) -> None:
        expected = (incoming.get("metadata") or {}).get("resourceVersion")
        actual = current["metadata"].get("resourceVersion")
        if expected and expected != actual:
            meta = current["metadata"]
            raise ConflictError(
                f"{current.get('kind')} {meta.get('namespace')}/{meta.get('name')} "
                f"was modified (resourceVersion {expected} != {actual})"
            )


def _matches(obj: dict[str, Any], selector: dict[str, str]) -> bool:
    labels = (obj.get("metadata") or {}).get("labels") or {}
    return all(labels.get(k) == v for k, v in selector.items())
