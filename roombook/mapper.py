"""Turn raw remote calendar events into bookings on the slot axis.

The mapper is pure. ``classify`` is the boundary where loosely typed source
records become either a ``ValidEvent`` (start on a slot, end rounded up to a
boundary) or a ``MalformedEvent``. Malformed events never reach the grid;
``map_event`` records them as ``DroppedEvent`` diagnostics so a missing
booking can be traced back to its source record.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, tzinfo
from enum import Enum
from typing import List, Optional, Sequence

from .grid import DAY_START_MINUTES, SLOT_MINUTES, boundary_code, is_slot, minutes_to_code, slot_index
from .models import BookingSpan, BookingState, ClassifiedEvent, DroppedEvent, MalformedEvent, RawEvent, Room, ValidEvent

logger = logging.getLogger(__name__)

PLACEHOLDER_LABEL = "Booked"
_LABEL_RE = re.compile(r"\] (.+)$")
_MINUTES_PER_DAY = 24 * 60


class Ruleset(str, Enum):
    """Which acceptance rules apply to a fetched event."""

    room = "room"
    personal = "personal"


def _parse_timestamp(value: Optional[str], tz: tzinfo) -> Optional[datetime]:
    """Parse an RFC3339 timestamp into the viewer's zone, truncated to minutes."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz).replace(second=0, microsecond=0)


def classify(raw: RawEvent, day: date, tz: tzinfo) -> ClassifiedEvent:
    start = _parse_timestamp(raw.start, tz)
    end = _parse_timestamp(raw.end, tz)
    if start is None or end is None:
        return MalformedEvent(event_id=raw.id, reason="missing or unparseable start/end time")
    if start.date() != day:
        return MalformedEvent(event_id=raw.id, reason=f"starts on {start.date().isoformat()}, not {day.isoformat()}")

    start_minutes = start.hour * 60 + start.minute
    start_code = minutes_to_code(start_minutes)
    if not is_slot(start_code):
        return MalformedEvent(event_id=raw.id, reason=f"start {start_code} is not a slot boundary")

    if end.date() < day:
        return MalformedEvent(event_id=raw.id, reason="ends before the viewed day")
    end_minutes = _MINUTES_PER_DAY if end.date() > day else end.hour * 60 + end.minute

    # Round the end up to the next boundary, never below one slot.
    end_offset = end_minutes - DAY_START_MINUTES
    end_index = -(-end_offset // SLOT_MINUTES)
    end_index = max(end_index, slot_index(start_code) + 1)
    return ValidEvent(raw=raw, start_slot=start_code, end_slot=boundary_code(end_index))


def display_label(raw: RawEvent) -> str:
    """Label shown on the grid for a remote event."""
    subject = (raw.subject or "").strip()
    match = _LABEL_RE.search(subject)
    if match and match.group(1).strip():
        return match.group(1).strip()
    if raw.organizer_name and raw.organizer_name.strip():
        return raw.organizer_name.strip()
    return subject or PLACEHOLDER_LABEL


def room_match(raw: RawEvent, room: Room) -> int:
    """How closely ``raw`` names ``room``: 2 exactly, 1 by substring, 0 not at all.

    Exact means the ``[<name>]`` subject tag or a location of ``<name>`` or
    ``<name> - <site>``, which is what this service writes itself.
    """
    location = (raw.location or "").strip()
    if f"[{room.name}]" in (raw.subject or ""):
        return 2
    if location == room.name or location.startswith(f"{room.name} - "):
        return 2
    return 1 if room.name in location else 0


def belongs_to_room(raw: RawEvent, room: Room, marker: str) -> bool:
    """Personal-calendar rule: only this service's own bookings for ``room``."""
    if not marker or marker not in (raw.body or ""):
        return False
    return room_match(raw, room) > 0


def best_room(raw: RawEvent, rooms: Sequence[Room], marker: str) -> Optional[Room]:
    """The room a personal-calendar event books; exact matches beat substrings."""
    if not marker or marker not in (raw.body or ""):
        return None
    best: Optional[Room] = None
    best_rank = 0
    for room in rooms:
        rank = room_match(raw, room)
        if rank > best_rank:
            best, best_rank = room, rank
    return best


def attendee_count(raw: RawEvent) -> int:
    return sum(1 for address in raw.attendees if address and address.strip())


def map_event(
    raw: RawEvent,
    day: date,
    tz: tzinfo,
    room: Room,
    ruleset: Ruleset = Ruleset.room,
    marker: str = "",
    dropped: Optional[List[DroppedEvent]] = None,
) -> Optional[BookingSpan]:
    """Map one remote event to a booking for ``room``, or ``None``.

    With the personal ruleset an event that does not belong to ``room`` is
    excluded without being counted as dropped; it is simply someone else's
    meeting. A malformed event is appended to ``dropped`` when given.
    """
    if ruleset is Ruleset.personal and not belongs_to_room(raw, room, marker):
        return None

    event = classify(raw, day, tz)
    if isinstance(event, MalformedEvent):
        logger.info("Dropping event %s for room %s: %s", event.event_id, room.id, event.reason)
        if dropped is not None:
            dropped.append(DroppedEvent(event_id=event.event_id, room_id=room.id, reason=event.reason))
        return None

    return BookingSpan(
        identity=raw.id,
        name=display_label(raw),
        organizer_name=raw.organizer_name or None,
        organizer_email=(raw.organizer_email or "").strip().lower() or None,
        start_slot=event.start_slot,
        end_slot=event.end_slot,
        attendee_count=attendee_count(raw),
        synced=True,
        state=BookingState.booked,
    )
