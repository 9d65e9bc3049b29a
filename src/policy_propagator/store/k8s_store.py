"""KubernetesStore — ObjectStore backed by the kubernetes Python client.

Uses the dynamic client so any resource kind (policies, placements,
decisions, events, config maps) is reachable through one code path.
Supports kubeconfig file, context selection, or in-cluster config.

Requires: ``pip install policy-propagator[k8s]``
"""

from __future__ import annotations

from typing import Any

from policy_propagator.common import create_merge_patch
from policy_propagator.models import ResourceKind
from policy_propagator.store.base import ConflictError, NotFoundError, StoreError

MERGE_PATCH = "application/merge-patch+json"


def _check_kubernetes_available() -> None:
    """Raise ImportError with helpful message if kubernetes is not installed."""
    try:
        import kubernetes  # noqa: F401
    except ImportError:
        raise ImportError(
            "The 'kubernetes' package is required for KubernetesStore. "
            "Install it with: pip install policy-propagator[k8s]"
        ) from None


def translate_api_error(exc: Exception, what: str) -> StoreError:
    """Map a kubernetes ApiException onto the store error taxonomy."""
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None) or str(exc)
    if status == 404:
        return NotFoundError(f"{what} not found")
    if status == 409:
        return ConflictError(f"{what}: {reason}")
    if status is not None:
        return StoreError(f"K8s API error ({status}) for {what}: {reason}")
    return StoreError(f"K8s store error for {what}: {exc}")


class KubernetesStore:
    """Object store talking to a live Kubernetes API server."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        in_cluster: bool = False,
    ) -> None:
        _check_kubernetes_available()
        self._kubeconfig = kubeconfig
        self._context = context
        self._in_cluster = in_cluster
        self._dynamic: Any = None

    def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        what = f"{kind.kind} {namespace}/{name}"
        try:
            return self._to_dict(self._resource(kind).get(name=name, namespace=namespace))
        except Exception as exc:
            raise translate_api_error(exc, what) from exc

    def list(
        self,
        kind: ResourceKind,
        namespace: str | None = None,
        labels: dict[str, str] | None = None,
    ) -> list[dict[str, Any]]:
        kwargs: dict[str, Any] = {}
        if namespace is not None:
            kwargs["namespace"] = namespace
        if labels:
            kwargs["label_selector"] = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        try:
            result = self._to_dict(self._resource(kind).get(**kwargs))
        except Exception as exc:
            raise translate_api_error(exc, f"{kind.kind} list") from exc
        return result.get("items") or []

    def create(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        namespace, name = self._identity(obj)
        body = dict(obj, apiVersion=kind.api_version, kind=kind.kind)
        try:
            return self._to_dict(self._resource(kind).create(body=body, namespace=namespace))
        except Exception as exc:
            raise translate_api_error(exc, f"{kind.kind} {namespace}/{name}") from exc

    def update(self, kind: ResourceKind, obj: dict[str, Any]) -> dict[str, Any]:
        namespace, name = self._identity(obj)
        body = dict(obj, apiVersion=kind.api_version, kind=kind.kind)
        try:
            result = self._resource(kind).replace(body=body, name=name, namespace=namespace)
            return self._to_dict(result)
        except Exception as exc:
            raise translate_api_error(exc, f"{kind.kind} {namespace}/{name}") from exc

    def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        try:
            self._resource(kind).delete(name=name, namespace=namespace)
        except Exception as exc:
            raise translate_api_error(exc, f"{kind.kind} {namespace}/{name}") from exc

    def patch_status(
        self,
        kind: ResourceKind,
        original: dict[str, Any],
        updated: dict[str, Any],
    ) -> dict[str, Any]:
        namespace, name = self._identity(original)
        status_patch = create_merge_patch(original.get("status") or {}, updated.get("status") or {})
        body: dict[str, Any] = {"status": status_patch}
        resource_version = (original.get("metadata") or {}).get("resourceVersion")
        if resource_version:
            body["metadata"] = {"resourceVersion": resource_version}
        try:
            result = self._resource(kind).status.patch(
                body=body, name=name, namespace=namespace, content_type=MERGE_PATCH,
            )
            return self._to_dict(result)
        except Exception as exc:
            raise translate_api_error(exc, f"{kind.kind} {namespace}/{name} status") from exc

    # --- Private: client setup ---

    def _get_api_client(self) -> Any:
        """Build a kubernetes ApiClient from constructor config."""
        from kubernetes import client, config

        if self._in_cluster:
            config.load_incluster_config()
        else:
            kwargs: dict[str, Any] = {}
            if self._kubeconfig:
                kwargs["config_file"] = self._kubeconfig
            if self._context:
                kwargs["context"] = self._context
            config.load_kube_config(**kwargs)
        return client.ApiClient()

    def _resource(self, kind: ResourceKind) -> Any:
        """Look up the dynamic resource for *kind* (client built lazily)."""
        if self._dynamic is None:
            from kubernetes.dynamic import DynamicClient

            self._dynamic = DynamicClient(self._get_api_client())
        return self._dynamic.resources.get(api_version=kind.api_version, kind=kind.kind)

    # --- Private: helpers ---

    @staticmethod
    def _identity(obj: dict[str, Any]) -> tuple[str, str]:
        meta = obj.get("metadata") or {}
        return meta.get("namespace", ""), meta.get("name", "")

    @staticmethod
    def _to_dict(k8s_object: Any) -> dict[str, Any]:
        """Convert a dynamic client ResourceInstance to a plain dict."""
        if hasattr(k8s_object, "to_dict"):
            return k8s_object.to_dict()
        if isinstance(k8s_object, dict):
            return k8s_object
        return {}
