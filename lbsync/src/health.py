from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from lbsync.src.reconciler import SyncStatus

StatusFn = Callable[[], SyncStatus]


def readiness_report(
    ready: bool, status: SyncStatus, now_monotonic: float
) -> dict[str, Any]:
    """Describe the last reconciliation cycle for the ``/readyz`` body.

    ``last_apply`` is the outcome of the most recent render/write/reload
    attempt (``applied``, ``render_error``, ``write_error`` or
    ``reload_<failure>``), which can lag ``last_cycle`` when later ticks
    saw no change.
    """
    age: float | None = None
    if status.updated_monotonic is not None:
        age = round(max(0.0, now_monotonic - status.updated_monotonic), 3)
    return {
        "ready": ready,
        "endpoints": status.endpoints,
        "last_cycle": status.last_cycle,
        "last_apply": status.last_apply,
        "seconds_since_cycle": age,
    }


class _SyncHealthHandler(BaseHTTPRequestHandler):
    ready_event: threading.Event
    status_fn: StatusFn

    def _respond(
        self, status: int, body: bytes = b"", content_type: str | None = None
    ) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.end_headers()
        if body:
            self.wfile.write(body)

    def _readyz(self) -> None:
        ready = self.ready_event.is_set()
        report = readiness_report(ready, self.status_fn(), time.monotonic())
        self._respond(200 if ready else 503, json.dumps(report).encode(), "application/json")

    def do_GET(self) -> None:
        if self.path == "/healthz":
            self._respond(200, b"ok")
        elif self.path == "/readyz":
            self._readyz()
        elif self.path == "/metrics":
            self._respond(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._respond(404)

    def log_message(self, fmt: str, *args: Any) -> None:
        logging.getLogger("lbsync.health").debug(fmt, *args)


def make_health_handler(
    ready: threading.Event, status: StatusFn | None = None
) -> type[_SyncHealthHandler]:
    """Bind the readiness event and status source onto a handler class.

    The stdlib server instantiates handlers without arguments, so both are
    class attributes. ``status_fn`` is stored as a staticmethod so it is not
    bound to the handler instance.
    """
    status_source: StatusFn = status or SyncStatus

    class _BoundHandler(_SyncHealthHandler):
        ready_event = ready
        status_fn = staticmethod(status_source)

    return _BoundHandler


def start_health_server(
    ready: threading.Event, port: int, status: StatusFn | None = None
) -> ThreadingHTTPServer:
    """Start the health/metrics HTTP server in a daemon thread and return it."""
    server = ThreadingHTTPServer(("0.0.0.0", port), make_health_handler(ready, status))  # noqa: S104
    server.daemon_threads = True
    server.block_on_close = False
    threading.Thread(target=server.serve_forever, daemon=True).start()
    logging.getLogger(__name__).info("Health server listening on :%d", port)
    return server
