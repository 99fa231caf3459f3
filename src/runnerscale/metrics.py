from __future__ import annotations

from prometheus_client import CollectorRegistry, Gauge, start_http_server

from .models import JobCounts, RunnerInventory
from .utils import parse_listen_address

NAMESPACE = "peertube_autoscale"


class MetricsPublisher:
    """Gauges mirroring the state observed by the last successful cycle.

    Every publish overwrites: runner presence is cleared before being
    re-populated so scaled-down runners disappear from the exposition, and job
    counts are set rather than incremented.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.runners_total = Gauge(
            "runners_total",
            "Total peertube runners",
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.runners_active = Gauge(
            "runners_active",
            "Active peertube runners",
            ["name"],
            namespace=NAMESPACE,
            registry=self.registry,
        )
        self.runners_jobs = Gauge(
            "runners_jobs",
            "Runner jobs",
            ["state"],
            namespace=NAMESPACE,
            registry=self.registry,
        )

    def publish(self, counts: JobCounts, inventory: RunnerInventory) -> None:
        self.runners_active.clear()
        for name in inventory.names:
            self.runners_active.labels(name=name).set(1)
        self.runners_total.set(inventory.active_count)
        for state, value in counts.as_dict().items():
            self.runners_jobs.labels(state=state).set(value)

    def serve(self, listen_address: str):
        """Expose the registry at /metrics on a daemon thread; returns ``(server, thread)``."""
        host, port = parse_listen_address(listen_address)
        return start_http_server(port, addr=host, registry=self.registry)
