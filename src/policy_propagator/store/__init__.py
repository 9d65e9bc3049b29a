"""Object store backends: InMemoryStore, KubernetesStore."""

from policy_propagator.store.base import ConflictError, NotFoundError, ObjectStore, StoreError
from policy_propagator.store.memory import InMemoryStore

__all__ = [
    "ConflictError",
    "InMemoryStore",
    "NotFoundError",
    "ObjectStore",
    "StoreError",
]
