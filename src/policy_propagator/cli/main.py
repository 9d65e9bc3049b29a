"""policy-propagator CLI — command-line interface for the propagator.

Commands:
    reconcile       Simulate a reconciliation pass over YAML manifests
    run             Reconcile every root policy in a live cluster
    config show     Show the resolved configuration
"""

from __future__ import annotations

import logging
import sys
import threading
from dataclasses import asdict
from typing import Any

import click
import yaml

from policy_propagator import __version__
from policy_propagator.common import ROOT_POLICY_LABEL
from policy_propagator.config import PropagatorConfig, load_config
from policy_propagator.events import MemoryEventRecorder, StoreEventRecorder
from policy_propagator.metrics import PrometheusMetrics
from policy_propagator.models import POLICY, Policy
from policy_propagator.propagator.controller import PolicyController
from policy_propagator.propagator.reconciler import RootPolicyReconciler
from policy_propagator.store.memory import InMemoryStore


def _load_cfg(config_path: str | None) -> PropagatorConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValueError) as exc:
        raise click.ClickException(str(exc)) from exc


def _dump(data: Any) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Policy Propagator: replicate root policies to managed clusters."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# --- reconcile command ---


@cli.command()
@click.argument("manifests", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--policy", "policy_ref", default=None, help="Root policy as NAMESPACE/NAME (default: all).")
@click.option("--config", "config_path", default=None, help="Path to policy-propagator.yaml.")
def reconcile(manifests: tuple[str, ...], policy_ref: str | None, config_path: str | None) -> None:
    """Run one pass over MANIFESTS loaded into an in-memory store.

    Prints the replicated policies, the root status and the recorded
    events.  Retries do not wait.
    """
    cfg = _load_cfg(config_path)
    store = InMemoryStore()
    try:
        loaded = store.load_manifests(manifests)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise click.ClickException(f"Failed to load manifests: {exc}") from exc
    click.echo(f"Loaded {loaded} objects", err=True)

    recorder = MemoryEventRecorder()
    reconciler = RootPolicyReconciler(store, cfg, recorder=recorder, sleep=lambda _: None)
    controller = PolicyController(store, reconciler, cfg)

    failed = False
    if policy_ref is not None:
        namespace, sep, name = policy_ref.partition("/")
        if not sep or not namespace or not name:
            raise click.BadParameter("expected NAMESPACE/NAME", param_hint="--policy")
        try:
            controller.reconcile(namespace, name)
        except Exception as exc:
            click.echo(f"FAILED {policy_ref}: {exc}", err=True)
            failed = True
    else:
        for key, exc in controller.reconcile_all().items():
            if exc is not None:
                click.echo(f"FAILED {key}: {exc}", err=True)
                failed = True

    _print_state(store, recorder)
    if failed:
        sys.exit(1)


def _print_state(store: InMemoryStore, recorder: MemoryEventRecorder) -> None:
    policies = [Policy.model_validate(p) for p in store.list(POLICY)]
    roots = [p for p in policies if ROOT_POLICY_LABEL not in p.labels]
    replicas = [p for p in policies if ROOT_POLICY_LABEL in p.labels]

    click.echo("Replicated policies:")
    if not replicas:
        click.echo("  (none)")
    for replica in replicas:
        click.echo(f"  {replica.namespace}/{replica.name}")

    for root in roots:
        click.echo(f"\nStatus of {root.namespace}/{root.name}:")
        click.echo(_dump(root.status.to_dict()).rstrip())

    if recorder.events:
        click.echo("\nEvents:")
        for event in recorder.events:
            click.echo(f"  [{event.severity}] {event.namespace}/{event.name}: {event.message}")


# --- run command ---


@cli.command()
@click.option("--kubeconfig", default=None, help="Path to a kubeconfig file.")
@click.option("--context", "kube_context", default=None, help="Kubeconfig context to use.")
@click.option("--in-cluster", is_flag=True, help="Use the in-cluster service account.")
@click.option("--interval", default=30.0, show_default=True, help="Seconds between passes.")
@click.option("--once", is_flag=True, help="Run a single pass and exit.")
@click.option("--config", "config_path", default=None, help="Path to policy-propagator.yaml.")
def run(
    kubeconfig: str | None,
    kube_context: str | None,
    in_cluster: bool,
    interval: float,
    once: bool,
    config_path: str | None,
) -> None:
    """Reconcile every root policy in a live cluster."""
    from policy_propagator.store.k8s_store import KubernetesStore

    cfg = _load_cfg(config_path)
    try:
        store = KubernetesStore(kubeconfig=kubeconfig, context=kube_context, in_cluster=in_cluster)
    except ImportError as exc:
        raise click.ClickException(str(exc)) from exc

    reconciler = RootPolicyReconciler(
        store, cfg, recorder=StoreEventRecorder(store), metrics=PrometheusMetrics(),
    )
    controller = PolicyController(store, reconciler, cfg)

    if once:
        results = controller.reconcile_all()
        failed = [key for key, exc in results.items() if exc is not None]
        click.echo(f"Reconciled {len(results)} policies ({len(failed)} failed)")
        if failed:
            sys.exit(1)
        return

    stop = threading.Event()
    try:
        controller.run(interval, stop)
    except KeyboardInterrupt:
        stop.set()


# --- config group ---


@cli.group()
def config() -> None:
    """Inspect propagator configuration."""


@config.command("show")
@click.option("--config", "config_path", default=None, help="Path to policy-propagator.yaml.")
def config_show(config_path: str | None) -> None:
    """Print the resolved configuration as YAML."""
    cfg = _load_cfg(config_path)
    data = asdict(cfg)
    data["config_path"] = str(cfg.config_path) if cfg.config_path else None
    data["templates"]["disabled_functions"] = list(cfg.templates.disabled_functions)
    click.echo(_dump(data).rstrip())


if __name__ == "__main__":
    cli()

