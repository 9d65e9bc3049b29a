"""Hub template resolution with Jinja2.

Hub templates are Jinja2 expressions wrapped in the configured hub
delimiters (``{{hub ... hub}}`` by default).  Ordinary ``{{ }}``
content is left alone so managed-cluster templates pass through.

Template format::

    metadata:
      name: 'cm-{{hub ManagedClusterName hub}}'
    data:
      region: '{{hub fromConfigMap("policies", "regions", ManagedClusterName) hub}}'

Context variables:
    ManagedClusterName  the cluster the replica is being built for

Functions:
    fromConfigMap(namespace, name, key)  a value from a ConfigMap
    lookup(apiVersion, kind, namespace, name)  a whole object ({} if absent)

Lookups are restricted to the root policy's namespace.  Functions listed
in ``TemplateConfig.disabled_functions`` fail when called.
"""

from __future__ import annotations

import json
from typing import Any

from jinja2 import Environment, StrictUndefined
from jinja2 import TemplateError as JinjaTemplateError

from policy_propagator.config import TemplateConfig
from policy_propagator.models import CONFIG_MAP, ResourceKind
from policy_propagator.retry import Unrecoverable
from policy_propagator.store.base import NotFoundError, ObjectStore


class TemplateResolutionError(Unrecoverable):
    """A hub template could not be resolved for a cluster.

    Rendering is deterministic for the same inputs, so this is never
    retried.  Store errors raised by a lookup propagate unwrapped and are
    retried like any other remote call.
    """


def has_template(obj: Any, start_delim: str) -> bool:
    """Quick check for the start delimiter anywhere in *obj*."""
    if isinstance(obj, str):
        return start_delim in obj
    return start_delim in json.dumps(obj, ensure_ascii=False, default=str)


class TemplateResolver:
    """Resolves hub templates inside an embedded object definition."""

    def __init__(self, config: TemplateConfig, store: ObjectStore | None = None) -> None:
        self._config = config
        self._store = store
        self._env = Environment(
            variable_start_string=config.start_delim,
            variable_end_string=config.stop_delim,
            block_start_string="{%hub",
            block_end_string="hub%}",
            comment_start_string="{#hub",
            comment_end_string="hub#}",
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    @property
    def config(self) -> TemplateConfig:
        return self._config

    def resolve_template(
        self,
        obj: dict[str, Any],
        context: dict[str, Any],
        lookup_namespace: str,
    ) -> dict[str, Any]:
        """Return a copy of *obj* with every hub template rendered.

        Raises TemplateResolutionError on syntax errors, undefined names,
        disabled functions, or bad lookup arguments.
        """
        render_context = dict(context)
        render_context.update(self._functions(lookup_namespace))
        try:
            return self._render(obj, render_context)
        except (JinjaTemplateError, ValueError) as exc:
            raise TemplateResolutionError(str(exc)) from exc

    def _render(self, value: Any, context: dict[str, Any]) -> Any:
        if isinstance(value, str):
            if self._config.start_delim not in value:
                return value
            return self._env.from_string(value).render(context)
        if isinstance(value, dict):
            return {
                self._render(key, context): self._render(item, context)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [self._render(item, context) for item in value]
        return value

    # --- Template functions ---

    def _functions(self, lookup_namespace: str) -> dict[str, Any]:
        def check_namespace(namespace: str) -> str:
            namespace = namespace or lookup_namespace
            if namespace != lookup_namespace:
                raise ValueError(
                    f"the namespace argument is restricted to {lookup_namespace}, got {namespace}"
                )
            return namespace

        def lookup(api_version: str, kind: str, namespace: str, name: str) -> dict[str, Any]:
            namespace = check_namespace(namespace)
            if self._store is None:
                raise ValueError("lookups are not available without an object store")
            try:
                return self._store.get(ResourceKind(api_version, kind), namespace, name)
            except NotFoundError:
                return {}

        def from_config_map(namespace: str, name: str, key: str) -> str:
            config_map = lookup(CONFIG_MAP.api_version, CONFIG_MAP.kind, namespace, name)
            data = config_map.get("data") or {}
            if key not in data:
                raise ValueError(f"key {key!r} not found in ConfigMap {namespace or lookup_namespace}/{name}")
            return str(data[key])

        functions: dict[str, Any] = {"lookup": lookup, "fromConfigMap": from_config_map}
        for disabled in self._config.disabled_functions:
            functions[disabled] = _disabled(disabled)
        return functions


def _disabled(name: str) -> Any:
    def fail(*args: Any, **kwargs: Any) -> Any:
        raise ValueError(f"the function {name} is disabled for hub templates")

    return fail
