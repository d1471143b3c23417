from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Histogram, Info


@dataclass(frozen=True)
class SyncMetrics:
    """Prometheus metrics exported on ``/metrics``.

    Failure counters are labelled by kind so operators can alert on a
    persistently broken reload script separately from API flakiness.
    """

    cycles_total: Counter = field(
        default_factory=lambda: Counter(
            "lbsync_cycles_total",
            "Total reconciliation cycles by outcome",
            ["outcome"],
        )
    )
    fetch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "lbsync_fetch_errors_total",
            "Total failed Service inventory fetches",
            ["kind"],
        )
    )
    render_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "lbsync_render_errors_total",
            "Total template load or render failures",
        )
    )
    write_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "lbsync_write_errors_total",
            "Total config file write failures",
        )
    )
    reloads_total: Counter = field(
        default_factory=lambda: Counter(
            "lbsync_reloads_total",
            "Total reload runs by result",
            ["result"],
        )
    )
    endpoints: Gauge = field(
        default_factory=lambda: Gauge(
            "lbsync_endpoints",
            "Number of endpoints in the last applied set",
        )
    )
    last_applied_timestamp_seconds: Gauge = field(
        default_factory=lambda: Gauge(
            "lbsync_last_applied_timestamp_seconds",
            "Unix time of the last successful config write",
        )
    )
    cycle_duration_seconds: Histogram = field(
        default_factory=lambda: Histogram(
            "lbsync_cycle_duration_seconds",
            "Seconds spent in one reconciliation cycle",
            buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, float("inf")),
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "lbsync",
            "Build information for the sync controller",
        )
    )


METRICS = SyncMetrics()
