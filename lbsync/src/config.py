from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass


class ConfigError(ValueError):
    """Raised when the sync configuration is invalid."""


@dataclass(frozen=True)
class SyncSettings:
    """Immutable startup configuration.

    Attributes:
        kubeconfig_path:        Explicit kubeconfig file, or ``None`` to try
                                in-cluster config before ``~/.kube/config``.
        namespace:              Inventory scope; empty string means every namespace.
        template_file:          Jinja2 template rendered on each change.
        config_file:            Destination of the rendered proxy configuration.
        reload_script:          Executable run with no arguments after a write.
        sync_period_seconds:    Interval between reconciliation ticks.
        fetch_timeout_seconds:  Deadline for a single Service list call.
        reload_timeout_seconds: Deadline for a single reload run.
        debug:                  Force DEBUG logging.
        log_level:              Log level name used when ``debug`` is off.
        health_port:            Port for ``/healthz``, ``/readyz`` and ``/metrics``.
    """

    kubeconfig_path: str | None = None
    namespace: str = ""
    template_file: str = "config.tmpl"
    config_file: str = "config.conf"
    reload_script: str = "./reload.sh"
    sync_period_seconds: int = 10
    fetch_timeout_seconds: int = 30
    reload_timeout_seconds: int = 60
    debug: bool = False
    log_level: str = "INFO"
    health_port: int = 8080

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.debug else self.log_level


def parse_bool(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def env_int(
    name: str,
    default: int,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
    env: Mapping[str, str] | None = None,
) -> int:
    values = env if env is not None else os.environ
    raw = values.get(name)
    if raw is None:
        value = default
    else:
        try:
            value = int(raw)
        except ValueError as exc:
            raise ConfigError(f"{name} must be an integer") from exc

    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got: {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got: {value}")
    return value


def _env_path(values: Mapping[str, str], name: str, default: str) -> str:
    raw = values.get(name)
    if raw is None:
        return default
    path = raw.strip()
    if not path:
        raise ConfigError(f"{name} must be a non-empty path")
    return path


def load_config(env: Mapping[str, str] | None = None) -> SyncSettings:
    """Load sync settings from the environment.

    Every value has a default so the controller starts with no
    configuration at all; only malformed values are rejected.
    """
    values = env if env is not None else os.environ

    kubeconfig_path = (values.get("KUBECONFIG") or "").strip() or None

    log_level = values.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    if log_level not in logging.getLevelNamesMapping():
        raise ConfigError(f"LOG_LEVEL must be a logging level name, got: {log_level}")

    return SyncSettings(
        kubeconfig_path=kubeconfig_path,
        namespace=values.get("SERVICE_NAMESPACE", "").strip(),
        template_file=_env_path(values, "TEMPLATE_FILE", "config.tmpl"),
        config_file=_env_path(values, "CONFIG_FILE", "config.conf"),
        reload_script=_env_path(values, "RELOAD_SCRIPT", "./reload.sh"),
        sync_period_seconds=env_int("SYNC_PERIOD_SECONDS", 10, minimum=1, env=values),
        fetch_timeout_seconds=env_int("FETCH_TIMEOUT_SECONDS", 30, minimum=1, env=values),
        reload_timeout_seconds=env_int("RELOAD_TIMEOUT_SECONDS", 60, minimum=1, env=values),
        debug=parse_bool(values.get("DEBUG")),
        log_level=log_level,
        health_port=env_int("HEALTH_PORT", 8080, minimum=1, maximum=65535, env=values),
    )
