"""Pydantic data models for the booking core and its HTTP surface.

Core models (``Room``, ``BookingSpan``, ``RawEvent`` and the mapper variants)
use snake_case and are shared by every component. The response models at
the bottom define the JSON returned by the API; they are kept separate so
the wire format can evolve without touching the core.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class SourceStatus(str, Enum):
    unconfigured = "unconfigured"
    ok = "ok"
    degraded = "degraded"


class BookingState(str, Enum):
    """Lifecycle of a booked range. A free range has no span at all."""

    pending = "PENDING"
    booked = "BOOKED"
    booked_local = "BOOKED_LOCAL"
    cancelling = "CANCELLING"


class RefreshTrigger(str, Enum):
    """Why a reconciliation pass was requested."""

    timer = "timer"
    visibility = "visibility"
    manual = "manual"
    mutation = "mutation"
    config = "config"
    conflict = "conflict"


class Room(BaseModel):
    """Immutable identity of a bookable room."""

    id: str
    name: str
    capacity: int = 0

    model_config = {"frozen": True}


class Viewer(BaseModel):
    """The person using the session; organizer of the bookings they create."""

    name: str = ""
    email: str = ""


class BookingSpan(BaseModel):
    """One booking occupying a contiguous range of slots in one room."""

    identity: str
    name: str
    organizer_name: Optional[str] = None
    organizer_email: Optional[str] = None
    start_slot: str
    end_slot: str
    attendee_count: int = 0
    synced: bool = False
    state: BookingState = BookingState.booked

    @property
    def event_id(self) -> Optional[str]:
        """Remote event id, or ``None`` for local-only bookings."""
        return self.identity if self.synced else None


class SlotEntry(BaseModel):
    """Occupant of one (room, slot) cell.

    Only the head entry carries the booking; continuations reference it by
    identity.
    """

    identity: str
    continuation: bool = False
    booking: Optional[BookingSpan] = None


class RawEvent(BaseModel):
    """A remote calendar event as handed over by a calendar source.

    Fields are loosely typed on purpose: timestamps may be missing (all-day
    events) and addresses may be blank. ``classify`` turns this into a
    ``ValidEvent`` or ``MalformedEvent``.
    """

    id: str
    subject: str = ""
    start: Optional[str] = None
    end: Optional[str] = None
    organizer_name: Optional[str] = None
    organizer_email: Optional[str] = None
    attendees: List[str] = []
    body: str = ""
    location: str = ""


class ValidEvent(BaseModel):
    kind: Literal["valid"] = "valid"
    raw: RawEvent
    start_slot: str
    end_slot: str


class MalformedEvent(BaseModel):
    kind: Literal["malformed"] = "malformed"
    event_id: str
    reason: str


ClassifiedEvent = Union[ValidEvent, MalformedEvent]


class DroppedEvent(BaseModel):
    """Diagnostic record of an event that could not be placed on the grid."""

    event_id: str
    room_id: Optional[str] = None
    reason: str


class EventDraft(BaseModel):
    """Source-neutral description of an event to create remotely."""

    subject: str
    body_html: str
    location: str
    start: str
    end: str
    timezone: str
    attendees: List[str] = []


# ---- API payloads ----


class BookingRequest(BaseModel):
    roomId: str
    date: str
    startSlot: str
    endSlot: Optional[str] = None
    bookerName: str
    bookerEmail: Optional[str] = None
    title: Optional[str] = None
    attendees: List[str] = []


class CancelRequest(BaseModel):
    roomId: str
    date: str
    slot: str
    requesterEmail: Optional[str] = None


class VisibilityRequest(BaseModel):
    visible: bool


class MailboxUpdate(BaseModel):
    mailbox: Optional[str] = None


class SlotCell(BaseModel):
    """Serialized (room, slot) cell in a grid response."""

    identity: str
    continuation: bool
    name: Optional[str] = None
    organizer: Optional[str] = None
    endSlot: Optional[str] = None
    attendeeCount: Optional[int] = None
    synced: Optional[bool] = None
    state: Optional[BookingState] = None


class RoomGrid(BaseModel):
    roomId: str
    roomName: str
    capacity: int
    status: SourceStatus
    slots: Dict[str, Optional[SlotCell]]


class GridResponse(BaseModel):
    date: str
    generatedAt: Optional[str] = None
    refreshSeconds: int
    slots: List[str]
    rooms: List[RoomGrid]
    dropped: int = 0
    warnings: List[str] = Field(default_factory=list)


class MutationResponse(BaseModel):
    ok: bool = True
    identity: Optional[str] = None
    state: Optional[BookingState] = None
    warning: Optional[str] = None
