import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from opentelemetry.sdk.metrics.export import ConsoleMetricExporter
from opentelemetry.sdk.trace.export import ConsoleSpanExporter

from telemetry.tracer import console_requested, export_requested, select_exporters


class TestExporterSelection:
    def test_nothing_exports_by_default(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        monkeypatch.delenv("GATE_TELEMETRY_CONSOLE", raising=False)
        assert not export_requested()
        assert select_exporters() == (None, None)

    def test_console_flag_from_environment(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        monkeypatch.setenv("GATE_TELEMETRY_CONSOLE", "true")
        assert console_requested()
        assert export_requested()
        span_exporter, metric_exporter = select_exporters()
        assert isinstance(span_exporter, ConsoleSpanExporter)
        assert isinstance(metric_exporter, ConsoleMetricExporter)

    def test_explicit_console_overrides_environment(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        monkeypatch.setenv("GATE_TELEMETRY_CONSOLE", "1")
        assert select_exporters(console=False) == (None, None)
