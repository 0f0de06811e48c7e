"""Domain model - value objects for the attribute index.

Following the Cosmic Python split used across the project:
- The domain model has NO dependencies on infrastructure
- Value objects are immutable and defined by their attributes
- Pydantic validates them at construction time
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.dataclasses import dataclass


DEFAULT_ENTITY_TYPE = "entity"

# Column bounds of the relational schema
ENTITY_ID_MAX_LENGTH = 32
LABEL_MAX_LENGTH = 255


@dataclass(frozen=True)
class IndexRow:
    """One persisted ``(entity_id, type, key, value)`` tuple.

    The row store does not enforce uniqueness of ``(entity_id, key)``; the
    engine's update protocol does.
    """

    entity_id: str
    type: str
    key: str
    value: str

    def as_tuple(self) -> tuple[str, str, str, str]:
        return (self.entity_id, self.type, self.key, self.value)


class EntitySnapshot(BaseModel):
    """Ephemeral view of an entity handed over by the host at index time.

    ``type_chain`` is ordered from the most specific type to the most general.
    """

    model_config = ConfigDict(frozen=True)

    entity_id: str = Field(min_length=1)
    type_chain: tuple[str, ...] = ()
    attributes: dict[str, Any] = Field(default_factory=dict)


EventKind = Literal["created", "mutated", "removed"]


class EntityEvent(BaseModel):
    """Lifecycle notification emitted by the host graph system."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    entity_id: str = Field(min_length=1)
    type_chain: tuple[str, ...] = ()
    attributes: dict[str, Any] = Field(default_factory=dict)

    def snapshot(self) -> EntitySnapshot:
        return EntitySnapshot(entity_id=self.entity_id, type_chain=self.type_chain, attributes=self.attributes)
