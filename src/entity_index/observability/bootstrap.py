"""One-call observability setup driven by ``Settings``."""

from __future__ import annotations

from entity_index.config import ObservabilityCollectorConfig, Settings
from entity_index.observability.logging import configure_logging
from entity_index.observability.metrics import init_metrics
from entity_index.observability.tracing import (
    SERVICE_NAME,
    build_trace_resource_attributes,
    configure_trace_exporter,
    init_tracing,
)


# (protocol, endpoint) pairs that already have a span processor attached
_exporting_to: set[tuple[str, str]] = set()


def collector_from_settings(settings: Settings) -> ObservabilityCollectorConfig | None:
    """Build the OTLP collector config from ``otlp_*`` settings, if an endpoint is set."""
    if not settings.otlp_endpoint:
        return None
    return ObservabilityCollectorConfig(
        enabled=True,
        otlp_protocol=settings.otlp_protocol,
        collector_endpoint=settings.otlp_endpoint,
        timeout_seconds=settings.otlp_timeout_seconds,
    )


def configure_observability(
    settings: Settings,
    collector: ObservabilityCollectorConfig | None = None,
) -> ObservabilityCollectorConfig | None:
    """Configure logging, metrics and tracing for an index process.

    ``collector`` wins over the ``otlp_*`` settings. Returns the collector
    config in effect, or None when spans stay in-process.
    """
    configure_logging(settings.log_level, settings.log_json, logger_levels=settings.logger_levels)

    collector = collector or collector_from_settings(settings)
    resource_attributes = build_trace_resource_attributes(collector)
    init_metrics(service_name=SERVICE_NAME, resource_attributes=resource_attributes)
    provider = init_tracing(service_name=SERVICE_NAME, resource_attributes=resource_attributes)
    if collector is not None:
        target = (collector.otlp_protocol, collector.collector_endpoint)
        if target not in _exporting_to and configure_trace_exporter(collector, provider):
            _exporting_to.add(target)
    return collector
