"""PolicyController — drives the reconciler over every root policy.

Root policies are processed one at a time.  A root that failed is left
alone for ``requeue_error_delay`` minutes before it is attempted again.
A root that no longer exists has its replicas removed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from policy_propagator.common import ROOT_POLICY_LABEL
from policy_propagator.config import PropagatorConfig
from policy_propagator.models import POLICY, ObjectMeta, Policy
from policy_propagator.propagator.reconciler import RootPolicyReconciler
from policy_propagator.store.base import NotFoundError, ObjectStore

logger = logging.getLogger(__name__)


def _stub_policy(namespace: str, name: str) -> Policy:
    return Policy(metadata=ObjectMeta(name=name, namespace=namespace))


class PolicyController:
    """Reconciles root policies found in the object store."""

    def __init__(
        self,
        store: ObjectStore,
        reconciler: RootPolicyReconciler,
        config: PropagatorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._reconciler = reconciler
        self._config = config or PropagatorConfig()
        self._clock = clock
        self._not_before: dict[str, float] = {}

    def reconcile(self, namespace: str, name: str) -> None:
        """Reconcile a single policy by name.

        Replicas are skipped; a root that is gone has its replicas deleted.
        """
        try:
            obj = self._store.get(POLICY, namespace, name)
        except NotFoundError:
            logger.info("Policy %s/%s not found, removing its replicated policies", namespace, name)
            stub = _stub_policy(namespace, name)
            self._reconciler.retrier.execute(
                lambda: self._reconciler.clean_up_policy(stub),
                "Retrying the policy clean up...",
            )
            return

        policy = Policy.model_validate(obj)
        if ROOT_POLICY_LABEL in policy.labels:
            logger.debug("Policy %s/%s is a replicated policy, skipping", namespace, name)
            return
        self._reconciler.handle_root_policy(policy)

    def reconcile_all(self) -> dict[str, Exception | None]:
        """Reconcile every root policy once; returns outcome per ``namespace/name``.

        Replicas whose root no longer exists are cleaned up as well.
        """
        policies = [Policy.model_validate(item) for item in self._store.list(POLICY)]
        roots = [p for p in policies if ROOT_POLICY_LABEL not in p.labels]
        root_names = {f"{p.namespace}.{p.name}" for p in roots}

        keys = [f"{p.namespace}/{p.name}" for p in roots]
        for replica in policies:
            owner = replica.labels.get(ROOT_POLICY_LABEL)
            if owner is None or owner in root_names:
                continue
            namespace, _, name = owner.partition(".")
            key = f"{namespace}/{name}"
            if key not in keys:
                keys.append(key)

        results: dict[str, Exception | None] = {}
        now = self._clock()
        for key in keys:
            not_before = self._not_before.get(key)
            if not_before is not None and now < not_before:
                logger.debug("Policy %s failed recently, waiting before retrying", key)
                continue
            namespace, _, name = key.partition("/")
            try:
                self.reconcile(namespace, name)
            except Exception as exc:
                logger.error("Failed to reconcile policy %s: %s", key, exc)
                self._not_before[key] = now + self._config.requeue_error_delay * 60
                results[key] = exc
            else:
                self._not_before.pop(key, None)
                results[key] = None
        return results

    def run(self, interval: float, stop: threading.Event | None = None) -> None:
        """Call :meth:`reconcile_all` every *interval* seconds until *stop* is set."""
        stop = stop or threading.Event()
        while not stop.is_set():
            results = self.reconcile_all()
            failed = sum(1 for exc in results.values() if exc is not None)
            logger.info("Reconciled %d policies (%d failed)", len(results), failed)
            stop.wait(interval)
