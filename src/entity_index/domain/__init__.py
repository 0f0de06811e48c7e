"""Domain layer - pure data transformation with no infrastructure dependencies.

This layer contains:
- Value objects: IndexRow, EntitySnapshot, EntityEvent
- The normalizer turning an entity's attributes into index rows
"""

from entity_index.domain.model import (
    DEFAULT_ENTITY_TYPE,
    ENTITY_ID_MAX_LENGTH,
    LABEL_MAX_LENGTH,
    EntityEvent,
    EntitySnapshot,
    IndexRow,
)
from entity_index.domain.normalizer import flatten, short_type_name, type_of


__all__ = [
    "DEFAULT_ENTITY_TYPE",
    "ENTITY_ID_MAX_LENGTH",
    "LABEL_MAX_LENGTH",
    "EntityEvent",
    "EntitySnapshot",
    "IndexRow",
    "flatten",
    "short_type_name",
    "type_of",
]
