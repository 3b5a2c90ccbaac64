"""Building blocks shared by the domain model.

Entities compare by identity and value objects by value. Aggregate roots
queue the events raised by their transitions; the application layer drains
the queue inside the same unit of work and writes each event as a history
row.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, TypeVar
from uuid import UUID, uuid4


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# ============================================================================
# Values and Entities
# ============================================================================


@dataclass(frozen=True)
class ValueObject(ABC):
    """Immutable value compared attribute by attribute.

    A refund quote or a cancelled line is interchangeable with any other
    carrying the same amounts.
    """


IdT = TypeVar("IdT", bound=int)


@dataclass(eq=False)
class Entity(ABC, Generic[IdT]):
    """Record with a database identity.

    Equality and hashing use the concrete type and ``id`` only, so a working
    copy equals the stored row it was loaded from.

    Attributes:
        id: Primary key.
    """

    id: IdT

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity) or type(other) is not type(self):
            return False
        return self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))


@dataclass(kw_only=True, eq=False)
class AggregateRoot(Entity[IdT], Generic[IdT]):
    """Consistency boundary that owns its children and queues events.

    Attributes:
        updated_at: Time of the last transition.
    """

    updated_at: datetime = field(default_factory=utcnow, compare=False)
    _pending_events: list["DomainEvent"] = field(
        default_factory=list,
        init=False,
        repr=False,
        compare=False,
    )

    def _record_event(self, event: "DomainEvent") -> None:
        self._pending_events.append(event)

    def collect_events(self) -> list["DomainEvent"]:
        """Drain queued events, oldest first."""
        drained, self._pending_events = self._pending_events, []
        return drained

    def _touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or utcnow()


# ============================================================================
# Domain Events
# ============================================================================


@dataclass(frozen=True)
class DomainEvent(ABC):
    """Something that happened to an aggregate.

    Subclasses set ``event_type`` and list their own fields in
    :meth:`payload`.

    Attributes:
        aggregate_id: Id of the aggregate that raised the event.
        occurred_at: Time of the transition, taken from the aggregate.
        event_id: Unique id of this occurrence.
    """

    event_type: ClassVar[str]
    aggregate_type: ClassVar[str] = ""

    aggregate_id: int = 0
    occurred_at: datetime = field(default_factory=utcnow)
    event_id: UUID = field(default_factory=uuid4)

    @abstractmethod
    def payload(self) -> dict[str, Any]:
        """Event-specific fields."""

    def to_dict(self) -> dict[str, Any]:
        """Flat, JSON-friendly form for structured log lines."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type,
            "aggregate": f"{self.aggregate_type}:{self.aggregate_id}",
            "occurred_at": self.occurred_at.isoformat(),
            **self.payload(),
        }
