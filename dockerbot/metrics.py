"""Prometheus gauges describing sandbox container lifecycle events."""

from __future__ import annotations

from typing import Sequence

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Gauge as _PromGauge
from prometheus_client import start_http_server

from .logging_utils import get_logger

logger = get_logger(__name__)


def Gauge(name: str, documentation: str, labelnames: Sequence[str] | None = None, **kw: object) -> _PromGauge:
    """Create a gauge, replacing any collector already registered as ``name``."""
    existing = _PROM_REGISTRY._names_to_collectors.get(name)
    if existing is not None:
        try:
            _PROM_REGISTRY.unregister(existing)
        except KeyError:
            logger.warning(
                "failed to unregister collector %s; removing manually",
                name,
                exc_info=True,
            )
            _PROM_REGISTRY._names_to_collectors.pop(name, None)
    return _PromGauge(name, documentation, labelnames=labelnames or (), **kw)


container_creation_success_total = Gauge(
    "dockerbot_container_creation_success_total",
    "Sandbox containers created successfully",
    labelnames=["image"],
)
container_creation_failures_total = Gauge(
    "dockerbot_container_creation_failures_total",
    "Sandbox container creations rejected by the daemon",
    labelnames=["image"],
)
container_creation_seconds = Gauge(
    "dockerbot_container_creation_seconds",
    "Duration of the most recent container creation",
    labelnames=["image"],
)
pool_hits_total = Gauge(
    "dockerbot_pool_hits_total",
    "Acquisitions served from the idle pool",
    labelnames=["image"],
)
pool_misses_total = Gauge(
    "dockerbot_pool_misses_total",
    "Acquisitions that created a container synchronously",
    labelnames=["image"],
)
pool_idle = Gauge(
    "dockerbot_pool_idle",
    "Idle containers currently held by the pool",
    labelnames=["image"],
)
execution_timeouts_total = Gauge(
    "dockerbot_execution_timeouts_total",
    "Runs cancelled because they exceeded the timeout",
    labelnames=["image"],
)
teardown_failures_total = Gauge(
    "dockerbot_teardown_failures_total",
    "Container removals that failed",
    labelnames=["image"],
)
orphans_removed_total = Gauge(
    "dockerbot_orphans_removed_total",
    "Leftover sandbox containers removed by the sweep",
)


def serve(port: int, addr: str = "0.0.0.0") -> None:
    """Expose the default registry over HTTP."""
    start_http_server(port, addr=addr)
    logger.info("metrics exporter listening on %s:%s", addr, port)


__all__ = [
    "Gauge",
    "container_creation_success_total",
    "container_creation_failures_total",
    "container_creation_seconds",
    "pool_hits_total",
    "pool_misses_total",
    "pool_idle",
    "execution_timeouts_total",
    "teardown_failures_total",
    "orphans_removed_total",
    "serve",
]
