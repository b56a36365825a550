"""Data models for events and bookings."""
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional, Tuple


EVENT_MODES = ('online', 'offline', 'hybrid')


@dataclass(frozen=True)
class FieldError:
    """A single validation failure for one field."""
    field: str
    message: str


@dataclass(frozen=True)
class IndexSpec:
    """Secondary index declared by a record type."""
    fields: Tuple[str, ...]
    unique: bool = False

    @property
    def name(self) -> str:
        return '_'.join(f"{name}_1" for name in self.fields)


class Record:
    """
    Change tracking shared by Event and Booking.

    A record that came from the store (or was just saved to it) carries a
    snapshot of its persisted schema fields. Fields that differ from the
    snapshot are reported by modified_fields(); a record without a snapshot
    is new and every field counts as modified.
    """

    ENTITY: ClassVar[str] = ''
    INDEXES: ClassVar[Tuple[IndexSpec, ...]] = ()
    SYSTEM_FIELDS: ClassVar[Tuple[str, ...]] = ('id', 'created_at', 'updated_at')

    @classmethod
    def schema_fields(cls) -> List[str]:
        """Names of the fields callers assign, excluding system fields."""
        return [
            f.name for f in fields(cls)
            if f.init and f.name not in cls.SYSTEM_FIELDS
        ]

    @property
    def is_new(self) -> bool:
        return self._snapshot is None

    def mark_persisted(self) -> None:
        """Record the current field values as the persisted state."""
        self._snapshot = {
            name: _copy_value(getattr(self, name))
            for name in self.schema_fields()
        }

    def modified_fields(self) -> List[str]:
        """Return the schema fields changed since the last load or save."""
        if self._snapshot is None:
            return self.schema_fields()
        return [
            name for name in self.schema_fields()
            if getattr(self, name) != self._snapshot.get(name)
        ]

    def is_modified(self, name: str) -> bool:
        return name in self.modified_fields()

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict of id, schema fields and ISO-8601 timestamps."""
        data = {'id': self.id}
        for name in self.schema_fields():
            data[name] = _copy_value(getattr(self, name))
        data['created_at'] = _isoformat(self.created_at)
        data['updated_at'] = _isoformat(self.updated_at)
        return data


@dataclass(eq=False)
class Event(Record):
    """Event document."""
    title: Optional[str] = None
    description: Optional[str] = None
    overview: Optional[str] = None
    image: Optional[str] = None
    venue: Optional[str] = None
    location: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    mode: Optional[str] = None
    audience: Optional[str] = None
    agenda: List[str] = field(default_factory=list)
    organizer: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    slug: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    _snapshot: Optional[dict] = field(default=None, init=False, repr=False)

    ENTITY: ClassVar[str] = 'EVENT'
    INDEXES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec(('slug',), unique=True),
        IndexSpec(('date', 'mode')),
    )


@dataclass(eq=False)
class Booking(Record):
    """Booking of an event by an email address."""
    event_id: Optional[str] = None
    email: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    _snapshot: Optional[dict] = field(default=None, init=False, repr=False)

    ENTITY: ClassVar[str] = 'BOOKING'
    INDEXES: ClassVar[Tuple[IndexSpec, ...]] = (
        IndexSpec(('event_id',)),
        IndexSpec(('email',)),
        IndexSpec(('event_id', 'created_at')),
        IndexSpec(('event_id', 'email'), unique=True),
    )


def _copy_value(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    return value


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
