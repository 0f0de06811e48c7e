"""Observability module for OpenTelemetry-aligned tracing, metrics, and logging."""

from entity_index.observability.bootstrap import collector_from_settings, configure_observability
from entity_index.observability.context import bind_entity, get_trace_context, set_trace_context, trace_context
from entity_index.observability.logging import JsonFormatter, configure_logging
from entity_index.observability.metrics import (
    INDEX_OPERATIONS,
    ROWS_WRITTEN,
    SEARCH_LATENCY,
    STORE_AVAILABLE,
    get_metrics,
    get_metrics_content_type,
    init_metrics,
    track_latency,
)
from entity_index.observability.tracing import (
    build_trace_resource_attributes,
    configure_trace_exporter,
    create_span,
    get_tracer,
    init_tracing,
)


__all__ = [
    "INDEX_OPERATIONS",
    "ROWS_WRITTEN",
    "SEARCH_LATENCY",
    "STORE_AVAILABLE",
    "JsonFormatter",
    "bind_entity",
    "build_trace_resource_attributes",
    "collector_from_settings",
    "configure_logging",
    "configure_observability",
    "configure_trace_exporter",
    "create_span",
    "get_metrics",
    "get_metrics_content_type",
    "get_trace_context",
    "get_tracer",
    "init_metrics",
    "init_tracing",
    "set_trace_context",
    "trace_context",
    "track_latency",
]
