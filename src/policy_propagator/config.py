"""Config file loading and auto-discovery for the policy propagator.

Searches for ``policy-propagator.yaml`` in the current directory and
parent directories, parses it, then applies the controller environment
overrides.  The result is built once at startup and passed to every
component; nothing reads configuration after that.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "policy-propagator.yaml"

RETRY_ATTEMPTS_ENV = "CONTROLLER_CONFIG_RETRY_ATTEMPTS"
REQUEUE_ERROR_DELAY_ENV = "CONTROLLER_CONFIG_REQUEUE_ERROR_DELAY"


@dataclass(frozen=True)
class TemplateConfig:
    """Hub template delimiters and the functions templates may not call."""

    start_delim: str = "{{hub"
    stop_delim: str = "hub}}"
    disabled_functions: tuple[str, ...] = ("fromSecret",)


@dataclass(frozen=True)
class PropagatorConfig:
    """Parsed propagator configuration."""

    config_path: Path | None = None
    retry_attempts: int = 3
    retry_delay: float = 2.0
    retry_max_delay: float = 10.0
    requeue_error_delay: int = 5
    """Minutes before a failed root policy is attempted again."""
    templates: TemplateConfig = field(default_factory=TemplateConfig)


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``policy-propagator.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
    environ: Mapping[str, str] | None = None,
) -> PropagatorConfig:
    """Load the propagator config.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Defaults.

    Environment overrides are applied on top in every case.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    elif auto_discover:
        config_path = find_config()

    data: dict[str, Any] = {}
    if config_path is not None:
        data = _read_yaml(config_path)

    env = os.environ if environ is None else environ
    retry = data.get("retry") or {}
    templates = data.get("templates") or {}

    template_defaults = TemplateConfig()
    return PropagatorConfig(
        config_path=config_path,
        retry_attempts=_positive_int_from_env(
            env, RETRY_ATTEMPTS_ENV, int(retry.get("attempts", 3)),
        ),
        retry_delay=float(retry.get("delay", 2.0)),
        retry_max_delay=float(retry.get("max_delay", 10.0)),
        requeue_error_delay=_positive_int_from_env(
            env, REQUEUE_ERROR_DELAY_ENV, int(data.get("requeue_error_delay", 5)),
        ),
        templates=TemplateConfig(
            start_delim=templates.get("start_delim", template_defaults.start_delim),
            stop_delim=templates.get("stop_delim", template_defaults.stop_delim),
            disabled_functions=tuple(
                templates.get("disabled_functions", template_defaults.disabled_functions)
            ),
        ),
    )


def _read_yaml(config_path: Path) -> dict[str, Any]:
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ValueError(msg)
    return data


def _positive_int_from_env(env: Mapping[str, str], name: str, default: int) -> int:
    """Read a positive integer from *env*; fall back to *default* when unset or invalid."""
    value = env.get(name, "")
    if value == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        parsed = 0
    if parsed > 0:
        return parsed
    logger.info("The %s environment variable is invalid. Using default.", name)
    return default
