"""Service layer - index engine and the host-facing service."""

from entity_index.service_layer.index_engine import IndexEngine
from entity_index.service_layer.services import IndexService


__all__ = ["IndexEngine", "IndexService"]
