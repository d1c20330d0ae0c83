import os

from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
)

SERVICE_NAME = "gate-engine"

_configured = False


def console_requested() -> bool:
    """True when GATE_TELEMETRY_CONSOLE asks for console export."""
    return os.getenv("GATE_TELEMETRY_CONSOLE", "").lower() in ("1", "true", "yes")


def export_requested() -> bool:
    return bool(os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")) or console_requested()


def get_tracer(name: str):
    """
    Returns a tracer. With no exporter requested this is the no-op API
    tracer.
    """
    if export_requested() and not _configured:
        setup_telemetry(SERVICE_NAME)
    return trace.get_tracer(name)


def get_meter(name: str):
    """Returns a meter, configured the same way as get_tracer."""
    if export_requested() and not _configured:
        setup_telemetry(SERVICE_NAME)
    return metrics.get_meter(name)


def select_exporters(console=None):
    """
    Pick span and metric exporters.

    OTLP wins when OTEL_EXPORTER_OTLP_ENDPOINT is set. Otherwise console
    exporters are used when `console` is True, or, if `console` is None, when
    GATE_TELEMETRY_CONSOLE is set. Returns (None, None) when nothing exports.
    """
    if console is None:
        console = console_requested()
    if os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT"):
        return OTLPSpanExporter(), OTLPMetricExporter()
    if console:
        return ConsoleSpanExporter(), ConsoleMetricExporter()
    return None, None


def setup_telemetry(service_name: str, version: str = "0.1.0", console=None):
    """Initialize OpenTelemetry SDK with the exporters from select_exporters."""
    global _configured
    if _configured:
        return trace.get_tracer(service_name), metrics.get_meter(service_name)

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.version": version,
        }
    )
    span_exporter, metric_exporter = select_exporters(console)

    # TRACING
    trace_provider = TracerProvider(resource=resource)
    if span_exporter is not None:
        trace_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(trace_provider)

    # METRICS
    readers = [PeriodicExportingMetricReader(metric_exporter)] if metric_exporter is not None else []
    meter_provider = MeterProvider(resource=resource, metric_readers=readers)
    metrics.set_meter_provider(meter_provider)

    _configured = True
    return trace.get_tracer(service_name), metrics.get_meter(service_name)
