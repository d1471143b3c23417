from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any, Protocol

from kubernetes.client import CoreV1Api

from lbsync.src.config import SyncSettings
from lbsync.src.inventory import (
    Endpoint,
    InventoryError,
    InventoryTimeoutError,
    ServiceInventory,
    endpoints_changed,
    filter_endpoints,
)
from lbsync.src.metrics import METRICS
from lbsync.src.reload import ReloadCommand, ReloadResult
from lbsync.src.render import RenderError, WriteError, load_template, render_config, write_config


class Inventory(Protocol):
    scope: str

    def fetch(self) -> list[Any]: ...


class Reloader(Protocol):
    def run(self) -> ReloadResult: ...


@dataclass(frozen=True)
class ApplyResult:
    """Immutable record of one render/write/reload attempt."""

    endpoints: int
    rendered: bool
    written: bool
    reload: ReloadResult | None = None

    @property
    def outcome(self) -> str:
        if not self.rendered:
            return "render_error"
        if not self.written:
            return "write_error"
        if self.reload is not None and not self.reload.succeeded:
            return f"reload_{self.reload.failure}"
        return "applied"


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of the last cycle, published for ``/readyz``.

    Counts and outcomes only; the endpoint set itself stays with the loop.
    """

    endpoints: int = 0
    last_cycle: str = "pending"
    last_apply: str | None = None
    updated_monotonic: float | None = None


class ServiceReconciler:
    """Polls the Service inventory and regenerates the proxy config on change.

    Each tick runs fetch, filter and compare against the last applied
    endpoint set. When the set differs the config is rendered, written and
    the reload command is run, in that order. A render or write failure
    ends the attempt before the reload. The new set is adopted either way,
    so an unchanged inventory on the next tick does not retry.

    The last applied set is never stored on the instance:
    :meth:`reconcile_once` takes it and returns the successor, and
    :meth:`run_forever` keeps it in a local variable.
    """

    def __init__(
        self,
        inventory: Inventory,
        reloader: Reloader,
        template_file: str,
        config_file: str,
        sync_period_seconds: float,
        logger: logging.Logger | None = None,
        monotonic_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inventory = inventory
        self.reloader = reloader
        self.template_file = template_file
        self.config_file = config_file
        self.sync_period_seconds = sync_period_seconds
        self.logger = logger or logging.getLogger(__name__)
        self.monotonic_fn = monotonic_fn
        self.ready = threading.Event()
        self._status = SyncStatus()

    def snapshot(self) -> SyncStatus:
        return self._status

    def _publish(self, last_cycle: str, applied: ApplyResult | None = None) -> None:
        status = replace(
            self._status, last_cycle=last_cycle, updated_monotonic=self.monotonic_fn()
        )
        if applied is not None:
            status = replace(status, endpoints=applied.endpoints, last_apply=applied.outcome)
        self._status = status

    def initialize(self) -> list[Endpoint]:
        """Fetch the starting inventory and apply it.

        Raises :class:`InventoryError` when the fetch fails; there is no
        degraded start without a first inventory.
        """
        self.logger.info("Initial service fetch from %s", self.inventory.scope)
        endpoints = filter_endpoints(self.inventory.fetch())
        self._publish("initialized", self.apply(endpoints))
        self.ready.set()
        return endpoints

    def apply(self, endpoints: Sequence[Endpoint]) -> ApplyResult:
        for index, endpoint in enumerate(endpoints):
            self.logger.info(
                "Service #%d: %s/%s at %s",
                index,
                endpoint.namespace,
                endpoint.name,
                endpoint.address,
            )
        METRICS.endpoints.set(len(endpoints))

        try:
            rendered = render_config(load_template(self.template_file), endpoints)
        except RenderError:
            self.logger.exception("Failed to render %s", self.template_file)
            METRICS.render_errors_total.inc()
            return ApplyResult(endpoints=len(endpoints), rendered=False, written=False)

        try:
            write_config(self.config_file, rendered)
        except WriteError:
            self.logger.exception("Failed to write %s", self.config_file)
            METRICS.write_errors_total.inc()
            return ApplyResult(endpoints=len(endpoints), rendered=True, written=False)
        METRICS.last_applied_timestamp_seconds.set_to_current_time()

        self.logger.info("Ready to reload proxy")
        result = self.reloader.run()
        METRICS.reloads_total.labels(result=result.label).inc()
        if result.succeeded:
            self.logger.info("Reload script succeeded:\n%s", result.output)
        else:
            self.logger.error(
                "Error reloading proxy with %s (failure=%s, returncode=%s):\n%s",
                result.command,
                result.failure,
                result.returncode,
                result.output,
            )
        return ApplyResult(endpoints=len(endpoints), rendered=True, written=True, reload=result)

    def reconcile_once(self, current: Sequence[Endpoint]) -> list[Endpoint]:
        """Run one tick and return the endpoint set to compare against next.

        A failed fetch leaves *current* in place and skips the tick.
        """
        with METRICS.cycle_duration_seconds.time():
            try:
                services = self.inventory.fetch()
            except InventoryTimeoutError:
                self.logger.error("Service fetch from %s timed out", self.inventory.scope)
                METRICS.fetch_errors_total.labels(kind="timeout").inc()
                METRICS.cycles_total.labels(outcome="fetch_error").inc()
                self._publish("fetch_error")
                return list(current)
            except InventoryError:
                self.logger.exception("Failed to fetch services from %s", self.inventory.scope)
                METRICS.fetch_errors_total.labels(kind="error").inc()
                METRICS.cycles_total.labels(outcome="fetch_error").inc()
                self._publish("fetch_error")
                return list(current)

            candidates = filter_endpoints(services)
            if not endpoints_changed(current, candidates):
                self.logger.debug("Services unchanged (%d endpoints)", len(candidates))
                METRICS.cycles_total.labels(outcome="unchanged").inc()
                self._publish("unchanged")
                return list(current)

            self.logger.info(
                "Services have changed (%d -> %d endpoints), reload fired",
                len(current),
                len(candidates),
            )
            METRICS.cycles_total.labels(outcome="changed").inc()
            self._publish("changed", self.apply(candidates))
            return candidates

    def run_forever(
        self,
        current: Sequence[Endpoint],
        shutdown_event: threading.Event | None = None,
    ) -> None:
        """Tick every ``sync_period_seconds`` until *shutdown_event* is set.

        Ticks never overlap: a cycle that overruns its period pushes the
        next tick back instead of queueing extra ones. Unexpected errors are
        logged and the loop carries on with the previous state.
        """
        stop = shutdown_event or threading.Event()
        state = list(current)
        next_tick = self.monotonic_fn() + self.sync_period_seconds

        while not stop.wait(timeout=max(0.0, next_tick - self.monotonic_fn())):
            self.logger.debug("Service fetch fired")
            try:
                state = self.reconcile_once(state)
            except Exception:
                self.logger.exception("Unexpected error during reconciliation cycle")

            next_tick += self.sync_period_seconds
            now = self.monotonic_fn()
            if next_tick < now:
                next_tick = now

        self.ready.clear()


def build_reconciler(settings: SyncSettings, core_api: CoreV1Api) -> ServiceReconciler:
    """Construct a :class:`ServiceReconciler` from loaded settings."""
    inventory = ServiceInventory(
        core_api=core_api,
        namespace=settings.namespace,
        timeout_seconds=settings.fetch_timeout_seconds,
    )
    reloader = ReloadCommand(
        path=settings.reload_script,
        timeout_seconds=settings.reload_timeout_seconds,
    )
    return ServiceReconciler(
        inventory=inventory,
        reloader=reloader,
        template_file=settings.template_file,
        config_file=settings.config_file,
        sync_period_seconds=settings.sync_period_seconds,
    )
