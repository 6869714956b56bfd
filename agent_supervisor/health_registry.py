"""Heartbeat registry for long-running services.

Services register with the cadence they promise to keep and call pulse()
on that cadence. A periodic sweep counts missed intervals; after
UNHEALTHY_THRESHOLD consecutive misses the service is marked unhealthy and
the on_unhealthy callback fires once for that episode. Only pulse() resets
a service.

Includes OpenTelemetry instrumentation for traces and metrics.
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

import structlog
from opentelemetry import trace

from agent_supervisor import telemetry

logger = structlog.get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 30.0
UNHEALTHY_THRESHOLD = 3
# Tolerates jitter in a service's own cadence.
MISSED_PULSE_MULTIPLIER = 1.5

UnhealthyCallback = Callable[[str, int], None]

# Module-level tracer (created lazily with the current global provider)
_tracer: trace.Tracer | None = None


def _get_tracer() -> trace.Tracer:
    global _tracer
    if _tracer is None:
        _tracer = trace.get_tracer("agent_supervisor.health")
    return _tracer


@dataclass
class HealthServiceEntry:
    """Liveness record for one registered service.

    Attributes:
        name: Unique service name
        expected_interval_ms: Cadence the service promised to pulse at
        last_pulse: Epoch seconds of the last pulse (or registration)
        missed_count: Consecutive sweeps that found the service late
        status: "healthy" or "unhealthy"
        was_unhealthy: Set once the callback fired for the current episode
    """

    name: str
    expected_interval_ms: float
    last_pulse: float
    missed_count: int = 0
    status: Literal["healthy", "unhealthy"] = "healthy"
    was_unhealthy: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status,
            "lastPulse": datetime.fromtimestamp(
                self.last_pulse, tz=timezone.utc
            ).isoformat(),
            "missedCount": self.missed_count,
        }


class HealthRegistry:
    """Tracks named services by heartbeat.

    Usage:
        registry = HealthRegistry(on_unhealthy=alert)
        registry.start()
        registry.register("qa-runner", expected_interval_ms=10_000)
        ...
        registry.pulse("qa-runner")
        ...
        registry.dispose()
    """

    def __init__(
        self,
        on_unhealthy: UnhealthyCallback | None = None,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the registry.

        Args:
            on_unhealthy: Called with (name, missed_count) once per episode
            sweep_interval_seconds: Seconds between sweeps once started
            clock: Returns the current time in epoch seconds
        """
        self._on_unhealthy = on_unhealthy
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._services: dict[str, HealthServiceEntry] = {}
        self._running = False
        self._stop_event = asyncio.Event()
        self._sweep_task: asyncio.Task | None = None

    def register(self, name: str, expected_interval_ms: float) -> None:
        """Register (or re-register) a service as healthy."""
        self._services[name] = HealthServiceEntry(
            name=name,
            expected_interval_ms=expected_interval_ms,
            last_pulse=self._clock(),
        )
        logger.debug(
            "Service registered", service=name, expected_interval_ms=expected_interval_ms
        )

    def pulse(self, name: str) -> None:
        """Record a heartbeat. Unknown names are ignored."""
        entry = self._services.get(name)
        if entry is None:
            return

        if entry.status == "unhealthy":
            logger.info("Service recovered", service=name)

        entry.last_pulse = self._clock()
        entry.missed_count = 0
        entry.status = "healthy"
        entry.was_unhealthy = False

    def get_status(self) -> dict[str, list[dict[str, Any]]]:
        """Snapshot of every registered service."""
        return {"services": [entry.to_dict() for entry in self._services.values()]}

    def sweep(self) -> None:
        """Evaluate every service once.

        Normally driven by the loop started with start(); public so callers
        can drive it from their own scheduler.
        """
        now = self._clock()

        with _get_tracer().start_as_current_span("agent_supervisor.health.sweep") as span:
            span.set_attribute("health.services", len(self._services))

            for entry in list(self._services.values()):
                elapsed_ms = (now - entry.last_pulse) * 1000
                if elapsed_ms > entry.expected_interval_ms * MISSED_PULSE_MULTIPLIER:
                    entry.missed_count += 1

                if entry.missed_count < UNHEALTHY_THRESHOLD:
                    continue

                entry.status = "unhealthy"
                if entry.was_unhealthy:
                    continue

                entry.was_unhealthy = True
                logger.warning(
                    "Service unhealthy",
                    service=entry.name,
                    missed_count=entry.missed_count,
                )
                self._record_unhealthy(entry.name)
                self._notify_unhealthy(entry)

    def _notify_unhealthy(self, entry: HealthServiceEntry) -> None:
        if self._on_unhealthy is None:
            return
        try:
            self._on_unhealthy(entry.name, entry.missed_count)
        except Exception as e:
            logger.error(
                "Unhealthy callback failed", service=entry.name, error=str(e)
            )

    def _record_unhealthy(self, name: str) -> None:
        try:
            telemetry.unhealthy_transitions_counter.add(1, {"service": name})
        except (AttributeError, NameError):
            # Counters not initialized - telemetry disabled
            pass

    def start(self) -> None:
        """Start the periodic sweep on the running event loop.

        Calling start() on a registry that is already sweeping does nothing.
        """
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())
        logger.info("Health sweep started", interval_seconds=self._sweep_interval)

    async def _sweep_loop(self) -> None:
        while self._running:
            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._sweep_interval
                )
                break
            except asyncio.TimeoutError:
                pass

            try:
                self.sweep()
            except Exception as e:
                logger.error("Error in health sweep", error=str(e))

    def dispose(self) -> None:
        """Stop sweeping and forget every service. Safe to call twice."""
        self._running = False
        self._stop_event.set()
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        self._services.clear()
