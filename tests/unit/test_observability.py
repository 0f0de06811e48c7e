"""Unit tests for observability module."""

import json
import logging
import threading
from unittest.mock import Mock

from opentelemetry import trace as trace_api
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import REGISTRY, CollectorRegistry, Gauge
import pytest

from entity_index.config import ObservabilityCollectorConfig, Settings
from entity_index.observability import (
    INDEX_OPERATIONS,
    SEARCH_LATENCY,
    STORE_AVAILABLE,
    JsonFormatter,
    bind_entity,
    bootstrap as bootstrap_module,
    build_trace_resource_attributes,
    collector_from_settings,
    configure_logging,
    configure_observability,
    configure_trace_exporter,
    create_span,
    get_metrics,
    get_metrics_content_type,
    get_trace_context,
    init_tracing,
    set_trace_context,
    tracing as tracing_module,
    track_latency,
)
from entity_index.observability.context import trace_context, update_span_id
from entity_index.observability.metrics import MetricBridge


@pytest.fixture(autouse=True)
def restore_logging_and_context():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    token = trace_context.set(None)
    yield
    trace_context.reset(token)
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.getLogger("entity_index").setLevel(logging.NOTSET)


def _record(msg: str = "test message", level: int = logging.INFO, name: str = "test") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


@pytest.mark.unit
class TestJsonFormatter:
    """Tests for structured JSON logging."""

    def test_format_includes_trace_context(self):
        data = json.loads(JsonFormatter().format(_record()))

        assert data["message"] == "test message"
        assert data["level"] == "INFO"
        assert "timestamp" in data
        assert "trace_id" in data
        assert "span_id" in data

    def test_format_adds_component_from_logger_name(self):
        data = json.loads(JsonFormatter().format(_record(name="entity_index.service_layer.index_engine")))

        assert data["component"] == "index_engine"

    def test_format_includes_extra_fields(self):
        record = _record(level=logging.ERROR)
        record.backend = "sqlite"

        data = json.loads(JsonFormatter().format(record))

        assert data["backend"] == "sqlite"

    def test_format_truncates_and_redacts(self):
        record = _record(msg="x" * 5000)
        record.password = "hunter2"
        record.credential = "token-value"

        data = json.loads(JsonFormatter().format(record))

        assert data["message"].endswith("...")
        assert data["password"] == "[REDACTED]"
        assert data["credential"] == "[REDACTED]"

    def test_format_includes_entity_id_from_context(self):
        set_trace_context("a" * 32, "b" * 16, entity_id="e1")

        data = json.loads(JsonFormatter().format(_record()))

        assert data["trace_id"] == "a" * 32
        assert data["entity_id"] == "e1"

    def test_json_default_handles_set_and_bytes(self):
        formatter = JsonFormatter()
        assert formatter._json_default({3, 1, 2}) == [1, 2, 3]
        assert formatter._json_default(b"ok") == "ok"


@pytest.mark.unit
class TestConfigureLogging:
    def test_json_output_installs_json_formatter(self):
        configure_logging("debug", json_output=True)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_plain_output_and_overrides(self):
        configure_logging("warning", json_output=False, logger_levels={"entity_index": "debug"})

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("entity_index").level == logging.DEBUG


@pytest.mark.unit
class TestTraceContext:
    def test_get_trace_context_generates_ids(self):
        set_trace_context("", "")

        ctx = get_trace_context()

        assert len(ctx["trace_id"]) == 32
        assert len(ctx["span_id"]) == 16

    def test_update_span_id_keeps_trace_id(self):
        set_trace_context("c" * 32, "d" * 16)
        update_span_id("e" * 16)

        assert get_trace_context() == {"trace_id": "c" * 32, "span_id": "e" * 16}

    def test_bind_entity_scopes_fields_to_the_block(self):
        set_trace_context("c" * 32, "d" * 16)

        with bind_entity("e1", "update"):
            data = json.loads(JsonFormatter().format(_record()))

        assert data["entity_id"] == "e1"
        assert data["operation"] == "update"
        assert data["trace_id"] == "c" * 32
        assert "entity_id" not in get_trace_context()

    def test_bind_entity_resets_on_error(self):
        with pytest.raises(ValueError), bind_entity("e2", "add"):
            raise ValueError("rejected")

        assert "operation" not in get_trace_context()


@pytest.mark.unit
class TestTracing:
    @staticmethod
    def _setup_exporter() -> InMemorySpanExporter:
        exporter = InMemorySpanExporter()
        provider = trace_api.get_tracer_provider()
        if not isinstance(provider, TracerProvider):
            provider = init_tracing("test-service")
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        return exporter

    def test_create_span_sets_attributes(self):
        exporter = self._setup_exporter()

        with create_span("index.test", attributes={"index.backend": "memory"}):
            pass

        (span,) = [span for span in exporter.get_finished_spans() if span.name == "index.test"]
        assert span.attributes["index.backend"] == "memory"

    def test_create_span_records_errors(self):
        exporter = self._setup_exporter()

        with pytest.raises(RuntimeError), create_span("index.failing"):
            raise RuntimeError("boom")

        (span,) = [span for span in exporter.get_finished_spans() if span.name == "index.failing"]
        assert span.status.status_code == StatusCode.ERROR

    def test_build_trace_resource_attributes(self):
        assert build_trace_resource_attributes(None) == {}
        config = ObservabilityCollectorConfig(resource_attributes={"deployment.environment": "test"})
        assert build_trace_resource_attributes(config) == {"deployment.environment": "test"}

    def test_configure_trace_exporter_disabled_is_noop(self):
        provider = Mock(spec=TracerProvider)

        assert configure_trace_exporter(ObservabilityCollectorConfig(enabled=False), provider) is False

        provider.add_span_processor.assert_not_called()

    @pytest.mark.parametrize(("protocol", "exporter_attr"), [("grpc", "GrpcOTLPSpanExporter"), ("http", "HttpOTLPSpanExporter")])
    def test_configure_trace_exporter_uses_protocol(self, monkeypatch, protocol, exporter_attr):
        exporter_cls = Mock()
        monkeypatch.setattr(tracing_module, exporter_attr, exporter_cls)
        monkeypatch.setattr(tracing_module, "BatchSpanProcessor", Mock())
        provider = Mock(spec=TracerProvider)
        config = ObservabilityCollectorConfig(
            enabled=True,
            otlp_protocol=protocol,
            collector_endpoint="http://collector:4317",
        )

        configure_trace_exporter(config, provider)

        exporter_cls.assert_called_once()
        assert exporter_cls.call_args.kwargs["endpoint"] == "http://collector:4317"
        provider.add_span_processor.assert_called_once()

    def test_configure_trace_exporter_logs_exporter_failures(self, monkeypatch):
        monkeypatch.setattr(tracing_module, "GrpcOTLPSpanExporter", Mock(side_effect=RuntimeError("bad endpoint")))
        provider = Mock(spec=TracerProvider)

        configure_trace_exporter(ObservabilityCollectorConfig(enabled=True), provider)

        provider.add_span_processor.assert_not_called()


@pytest.mark.unit
class TestMetrics:
    def test_counter_increments_prometheus_sample(self):
        labels = {"operation": "metrics_test", "status": "ok"}
        before = REGISTRY.get_sample_value("index_operations_total", labels) or 0.0

        INDEX_OPERATIONS.labels(**labels).inc()

        assert REGISTRY.get_sample_value("index_operations_total", labels) == before + 1

    def test_track_latency_observes_histogram(self):
        labels = {"backend": "metrics_test"}
        before = REGISTRY.get_sample_value("index_search_latency_seconds_count", labels) or 0.0

        with track_latency(SEARCH_LATENCY, **labels):
            pass

        assert REGISTRY.get_sample_value("index_search_latency_seconds_count", labels) == before + 1

    def test_gauge_set(self):
        STORE_AVAILABLE.labels(backend="metrics_test").set(1)
        assert REGISTRY.get_sample_value("index_store_available", {"backend": "metrics_test"}) == 1
        STORE_AVAILABLE.labels(backend="metrics_test").set(0)
        assert REGISTRY.get_sample_value("index_store_available", {"backend": "metrics_test"}) == 0

    def test_metrics_output(self):
        assert b"index_operations_total" in get_metrics()
        assert get_metrics_content_type().startswith("text/plain")


@pytest.mark.unit
def test_gauge_bridge_stays_consistent_under_concurrent_sets():
    registry = CollectorRegistry()
    gauge = Gauge("bridge_test_available", "test gauge", ["backend"], registry=registry)
    bridge = MetricBridge(gauge, otel_name="bridge_test_available", otel_description="test", otel_kind="gauge")
    adds: list[float] = []
    bridge._otel_instrument = Mock(add=lambda amount, labels: adds.append(amount))

    def flip(start: int) -> None:
        for i in range(500):
            bridge.labels(backend="memory").set((start + i) % 2)

    threads = [threading.Thread(target=flip, args=(n,)) for n in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sum(adds) == registry.get_sample_value("bridge_test_available", {"backend": "memory"})


@pytest.mark.unit
class TestConfigureObservability:
    @pytest.fixture(autouse=True)
    def reset_exporting_to(self, monkeypatch):
        monkeypatch.setattr(bootstrap_module, "_exporting_to", set())

    def test_collector_requires_endpoint(self):
        assert collector_from_settings(Settings(otlp_endpoint="")) is None  # type: ignore[call-arg]

        config = collector_from_settings(
            Settings(otlp_endpoint="http://collector:4318", otlp_protocol="http", otlp_timeout_seconds=3)  # type: ignore[call-arg]
        )

        assert config is not None
        assert config.enabled is True
        assert config.otlp_protocol == "http"
        assert config.collector_endpoint == "http://collector:4318"
        assert config.timeout_seconds == 3

    def test_logging_follows_settings(self):
        configure_observability(Settings(log_level="warning", log_json=False))  # type: ignore[call-arg]

        root = logging.getLogger()
        assert root.level == logging.WARNING
        assert not isinstance(root.handlers[0].formatter, JsonFormatter)

        configure_observability(Settings(log_level="debug", logger_levels={"entity_index": "error"}))  # type: ignore[call-arg]

        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
        assert logging.getLogger("entity_index").level == logging.ERROR

    def test_without_endpoint_no_exporter_is_attached(self, monkeypatch):
        exporter = Mock(return_value=True)
        monkeypatch.setattr(bootstrap_module, "configure_trace_exporter", exporter)

        assert configure_observability(Settings()) is None  # type: ignore[call-arg]

        exporter.assert_not_called()

    def test_exporter_is_attached_once_per_endpoint(self, monkeypatch):
        exporter = Mock(return_value=True)
        monkeypatch.setattr(bootstrap_module, "configure_trace_exporter", exporter)
        settings = Settings(otlp_endpoint="http://collector:4317")  # type: ignore[call-arg]

        configure_observability(settings)
        configure_observability(settings)
        configure_observability(Settings(otlp_endpoint="http://other:4317"))  # type: ignore[call-arg]

        assert [call.args[0].collector_endpoint for call in exporter.call_args_list] == [
            "http://collector:4317",
            "http://other:4317",
        ]

    def test_failed_exporter_is_retried_on_next_call(self, monkeypatch):
        exporter = Mock(side_effect=[False, True])
        monkeypatch.setattr(bootstrap_module, "configure_trace_exporter", exporter)
        settings = Settings(otlp_endpoint="http://collector:4317")  # type: ignore[call-arg]

        configure_observability(settings)
        configure_observability(settings)

        assert exporter.call_count == 2

    def test_explicit_collector_wins_over_settings(self, monkeypatch):
        exporter = Mock(return_value=True)
        monkeypatch.setattr(bootstrap_module, "configure_trace_exporter", exporter)
        collector = ObservabilityCollectorConfig(enabled=True, collector_endpoint="http://explicit:4317")

        result = configure_observability(Settings(otlp_endpoint="http://collector:4317"), collector)  # type: ignore[call-arg]

        assert result is collector
        assert exporter.call_args.args[0] is collector
