"""Service layer - host-facing hooks around the index engine.

The host graph system calls these hooks from its own lifecycle events. The
service only translates host vocabulary (type chains, events) into engine
calls; all persistence rules live in ``IndexEngine``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
import logging
from typing import Any

from entity_index.config import ObservabilityCollectorConfig, Settings
from entity_index.domain.model import EntityEvent
from entity_index.observability.bootstrap import configure_observability
from entity_index.service_layer.index_engine import IndexEngine


logger = logging.getLogger(__name__)


class IndexService:
    """Entry point used by the host to keep the index in sync."""

    def __init__(self, engine: IndexEngine) -> None:
        self.engine = engine

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        collector: ObservabilityCollectorConfig | None = None,
    ) -> IndexService:
        """Build a service with its own engine and row store.

        Logging, metrics and tracing are configured from the same settings
        before the store is opened, so start-up warnings use the configured
        format.
        """
        settings = settings if settings is not None else Settings()
        configure_observability(settings, collector)
        return cls(IndexEngine(settings=settings))

    def __enter__(self) -> IndexService:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self.engine.close()

    def on_entity_created(self, entity_id: str, type_chain: Sequence[str], attributes: Mapping[str, Any]) -> int:
        return self.engine.add(entity_id, self.engine.type_of(type_chain), attributes)

    def on_entity_mutated(self, entity_id: str, type_chain: Sequence[str], attributes: Mapping[str, Any]) -> int:
        return self.engine.update(entity_id, self.engine.type_of(type_chain), attributes)

    def on_entity_removed(self, entity_id: str) -> int:
        return self.engine.remove(entity_id)

    def query(self, value: str, key: str | None = None, types: Iterable[str] | str | None = None) -> set[str]:
        return self.engine.search(value, key, types)

    def handle(self, event: EntityEvent) -> int:
        """Dispatch a host lifecycle event to the matching hook."""
        logger.debug("Handling %s event for %s", event.kind, event.entity_id)
        if event.kind == "created":
            return self.on_entity_created(event.entity_id, event.type_chain, event.attributes)
        if event.kind == "mutated":
            return self.on_entity_mutated(event.entity_id, event.type_chain, event.attributes)
        return self.on_entity_removed(event.entity_id)
