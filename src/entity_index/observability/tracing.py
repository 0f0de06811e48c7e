"""OpenTelemetry tracing for index operations."""

from __future__ import annotations

from contextlib import contextmanager
import logging
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GrpcOTLPSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HttpOTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.trace import SpanKind, Status, StatusCode

from entity_index.config import ObservabilityCollectorConfig
from entity_index.observability.context import update_span_id


if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.trace import Span, Tracer

logger = logging.getLogger(__name__)

SERVICE_NAME = "entity-index"

_tracer_holder: dict[str, Tracer | None] = {"tracer": None}


def init_tracing(
    service_name: str = SERVICE_NAME,
    resource_attributes: dict[str, str] | None = None,
) -> TracerProvider:
    """Install an SDK tracer provider, reusing one that is already installed.

    OpenTelemetry only accepts the first global provider, so a second call
    returns the existing one instead of creating a provider nobody uses.
    """
    current = trace.get_tracer_provider()
    if isinstance(current, TracerProvider):
        return current

    provider = TracerProvider(resource=Resource.create({"service.name": service_name, **(resource_attributes or {})}))
    trace.set_tracer_provider(provider)
    _tracer_holder["tracer"] = trace.get_tracer(__name__)
    logger.info("Tracing initialized for service: %s", service_name)
    return provider


def build_trace_resource_attributes(config: ObservabilityCollectorConfig | None) -> dict[str, str]:
    return dict(config.resource_attributes) if config else {}


def _build_span_exporter(config: ObservabilityCollectorConfig) -> SpanExporter:
    common = {
        "endpoint": config.collector_endpoint,
        "headers": config.headers,
        "timeout": config.timeout_seconds,
    }
    if config.otlp_protocol == "grpc":
        return GrpcOTLPSpanExporter(insecure=config.grpc_insecure, **common)
    return HttpOTLPSpanExporter(**common)


def configure_trace_exporter(
    config: ObservabilityCollectorConfig | None,
    provider: TracerProvider | None = None,
) -> bool:
    """Ship finished spans to an OTLP collector; returns whether export is on.

    Exporter construction errors are logged, never raised: tracing is not
    allowed to stop the index from starting.
    """
    if not config or not config.enabled:
        return False

    active_provider = provider or trace.get_tracer_provider()
    if not isinstance(active_provider, TracerProvider):
        active_provider = init_tracing(resource_attributes=build_trace_resource_attributes(config))

    try:
        exporter = _build_span_exporter(config)
    except Exception as exc:
        logger.error("Failed to configure OTLP exporter: %s", exc, exc_info=True)
        return False

    active_provider.add_span_processor(BatchSpanProcessor(exporter))
    logger.info("OTLP trace export enabled (%s) to %s", config.otlp_protocol, config.collector_endpoint)
    return True


def get_tracer() -> Tracer:
    if _tracer_holder["tracer"] is None:
        _tracer_holder["tracer"] = trace.get_tracer(__name__)
    return _tracer_holder["tracer"]  # type: ignore[return-value]


@contextmanager
def create_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    attributes: dict[str, Any] | None = None,
) -> Generator[Span, None, None]:
    """Open a span, mirror its id into the log context and flag errors."""
    with get_tracer().start_as_current_span(name, kind=kind, attributes=attributes) as span:
        update_span_id(format(span.get_span_context().span_id, "016x"))
        try:
            yield span
        except Exception as exc:
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            span.record_exception(exc)
            raise
