"""OpenTelemetry wiring for the supervisor.

Spans come from the orchestrator (one per spawn), the QA runner (one per
run) and the health registry (one per sweep). Metrics count agent sessions,
watchdog alerts, QA runs and unhealthy transitions.

Export is opt-in: only with OTLP_ENABLED=true and an endpoint configured are
spans and metrics shipped to an OTLP collector over gRPC. Otherwise the SDK
providers are installed without exporters and nothing leaves the process.
Components record metrics best-effort: if create_metrics() has not run, the
module-level instruments are undefined and recording is skipped.
"""

import logging
import os

from opentelemetry import metrics, trace
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from agent_supervisor.config import SupervisorConfig

# The collector is often not running on a developer machine
logging.getLogger("opentelemetry.exporter.otlp.proto.grpc").setLevel(logging.ERROR)

# Module-level metric instruments (set by create_metrics)
sessions_spawned_counter: metrics.Counter
sessions_finished_counter: metrics.Counter
watchdog_alerts_counter: metrics.Counter
qa_runs_counter: metrics.Counter
qa_duration: metrics.Histogram
unhealthy_transitions_counter: metrics.Counter


def export_enabled(config: SupervisorConfig) -> bool:
    """Whether spans and metrics should be shipped to a collector."""
    flag = os.getenv("OTLP_ENABLED", "false").lower() == "true"
    return flag and bool(config.otlp_endpoint)


def build_providers(config: SupervisorConfig) -> tuple[TracerProvider, MeterProvider]:
    """Create SDK providers tagged with the supervisor's service name."""
    resource = Resource.create({"service.name": config.service_name})

    if not export_enabled(config):
        return TracerProvider(resource=resource), MeterProvider(resource=resource)

    # The gRPC exporter stack is only imported when export is on
    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import (
        OTLPMetricExporter,
    )
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
        OTLPSpanExporter,
    )
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otlp_endpoint))
    )
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=config.otlp_endpoint)
    )
    return tracer_provider, MeterProvider(resource=resource, metric_readers=[reader])


def setup_telemetry(config: SupervisorConfig) -> tuple[trace.Tracer, metrics.Meter]:
    """Install global providers and return the supervisor's tracer and meter.

    Called once per CLI invocation, before the orchestrator is created.
    OpenTelemetry keeps the first global provider it is given, so later calls
    in the same process still return a usable tracer and meter but do not
    change where data is exported.

    Args:
        config: Supplies the OTLP endpoint and the service name

    Returns:
        Tuple of (tracer, meter)
    """
    tracer_provider, meter_provider = build_providers(config)
    trace.set_tracer_provider(tracer_provider)
    metrics.set_meter_provider(meter_provider)

    return trace.get_tracer(config.service_name), metrics.get_meter(config.service_name)


def create_metrics(meter: metrics.Meter) -> None:
    """Create metric instruments for supervisor tracking.

    Counters:
    - Agent sessions spawned (by phase)
    - Agent sessions finished (by status)
    - Watchdog alerts raised
    - QA runs (by mode and result)
    - Services marked unhealthy (by service)

    Histograms:
    - QA run duration

    Args:
        meter: OpenTelemetry meter for creating instruments
    """
    global sessions_spawned_counter, sessions_finished_counter
    global watchdog_alerts_counter, qa_runs_counter, qa_duration
    global unhealthy_transitions_counter

    sessions_spawned_counter = meter.create_counter(
        "agent_supervisor_sessions_spawned_total",
        description="Total agent sessions spawned",
    )

    sessions_finished_counter = meter.create_counter(
        "agent_supervisor_sessions_finished_total",
        description="Total agent sessions that reached a terminal status",
    )

    watchdog_alerts_counter = meter.create_counter(
        "agent_supervisor_watchdog_alerts_total",
        description="Total watchdog alerts for silent agents",
    )

    qa_runs_counter = meter.create_counter(
        "agent_supervisor_qa_runs_total",
        description="Total QA runs completed",
    )

    qa_duration = meter.create_histogram(
        "agent_supervisor_qa_duration_seconds",
        description="QA run duration",
        unit="s",
    )

    unhealthy_transitions_counter = meter.create_counter(
        "agent_supervisor_unhealthy_transitions_total",
        description="Total healthy to unhealthy service transitions",
    )
