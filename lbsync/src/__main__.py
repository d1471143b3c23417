from __future__ import annotations

import json
import logging
import os
import re
import signal
import threading

from lbsync.src.config import ConfigError, load_config
from lbsync.src.health import start_health_server
from lbsync.src.inventory import InventoryError
from lbsync.src.kube import CredentialsError, build_core_api, load_kube_configuration
from lbsync.src.metrics import METRICS
from lbsync.src.reconciler import build_reconciler

RUNTIME_VERSION = "0.1.0"
EXIT_FATAL = 1
EXIT_CONFIG = 2
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)(\b(?:client-key-data|client-certificate-data)\b\s*[:=]\s*)([^\s,;]+)"),
        r"\1[REDACTED]",
    ),
)

LOGGER = logging.getLogger("lbsync")


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging(level_name: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    logging.root.handlers.clear()
    logging.root.addHandler(handler)
    level = logging.getLevelNamesMapping().get(level_name.strip().upper(), logging.INFO)
    logging.root.setLevel(level)


def main() -> int:
    """Entrypoint: load settings and credentials, apply the first inventory, then poll."""
    configure_logging(os.getenv("LOG_LEVEL", "INFO"))
    try:
        settings = load_config()
    except ConfigError as exc:
        LOGGER.error("Invalid configuration: %s", exc)
        return EXIT_CONFIG
    configure_logging(settings.effective_log_level)

    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        load_kube_configuration(settings.kubeconfig_path)
    except CredentialsError:
        LOGGER.exception("Failed to create client")
        return EXIT_FATAL
    reconciler = build_reconciler(settings, core_api=build_core_api())

    health_server = start_health_server(
        ready=reconciler.ready,
        port=settings.health_port,
        status=reconciler.snapshot,
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        LOGGER.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        try:
            current = reconciler.initialize()
        except InventoryError:
            LOGGER.exception("Failed initial service fetch")
            return EXIT_FATAL

        reconciler.run_forever(current, shutdown_event=shutdown_event)
    finally:
        health_server.shutdown()

    LOGGER.info("Sync controller stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
