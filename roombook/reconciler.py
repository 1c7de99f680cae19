"""Rebuild the slot grid for one date from the remote calendar sources.

Each room with a mailbox is read from its own calendar, all rooms in
parallel. A room whose calendar cannot be read is marked ``degraded`` and,
together with rooms that have no mailbox at all, is filled from a single
read of the viewer's personal calendar. Only this service's own bookings
(recognised by the marker string) are taken from the personal calendar, so
private meetings never show up as fictitious room conflicts.

One room failing, for whatever reason, never fails the pass. The result is returned only after
every fetch of the pass has settled; publishing it is up to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Dict, List, Optional, Sequence, Tuple

from .errors import RemoteSyncFailure, SlotConflict
from .grid import SlotGrid, slot_index
from .mapper import Ruleset, best_room, map_event
from .models import BookingSpan, DroppedEvent, RawEvent, Room, SourceStatus

logger = logging.getLogger(__name__)

PERSONAL_CALENDAR = "primary"


class ReconcileResult:
    """Outcome of one reconciliation pass for one date."""

    def __init__(
        self,
        date: str,
        grid: SlotGrid,
        statuses: Dict[str, SourceStatus],
        dropped: List[DroppedEvent],
        fallback_error: Optional[str] = None,
    ) -> None:
        self.date = date
        self.grid = grid
        self.statuses = statuses
        self.dropped = dropped
        self.fallback_error = fallback_error

    def warnings(self, rooms: Sequence[Room]) -> List[str]:
        """Room-scoped warnings for anything that did not come from its own source."""
        out = [
            f"{room.name}: room calendar unavailable, showing bookings from the personal calendar"
            for room in rooms
            if self.statuses.get(room.id) is SourceStatus.degraded
        ]
        if self.fallback_error:
            out.append(f"Personal calendar unavailable: {self.fallback_error}")
        return out


def day_window(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Local midnight to the next local midnight."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)


async def reconcile(
    context,
    day: str,
    rooms: Sequence[Room],
    mailboxes: Dict[str, Optional[str]],
) -> ReconcileResult:
    """Run one reconciliation pass for ``day``.

    Raises ``AuthRequired`` before any fetch when the viewer has no session.
    """
    the_day = date.fromisoformat(day)
    token = context.auth.acquire_valid_token()
    time_min, time_max = day_window(the_day, context.tz)
    dropped: List[DroppedEvent] = []

    async def from_mailbox(room: Room) -> Tuple[SourceStatus, List[BookingSpan]]:
        mailbox = mailboxes.get(room.id)
        if not mailbox:
            return SourceStatus.unconfigured, []
        try:
            events = await context.source.list_events(token, mailbox, time_min, time_max)
        except RemoteSyncFailure as exc:
            logger.warning("Calendar of room %s unavailable, falling back: %s", room.id, exc)
            return SourceStatus.degraded, []
        except Exception:
            logger.exception("Unexpected error reading the calendar of room %s, falling back", room.id)
            return SourceStatus.degraded, []
        spans = [
            map_event(raw, the_day, context.tz, room, Ruleset.room, context.marker, dropped)
            for raw in events
        ]
        return SourceStatus.ok, [span for span in spans if span is not None]

    outcomes = await asyncio.gather(*(from_mailbox(room) for room in rooms))
    statuses: Dict[str, SourceStatus] = {}
    bookings: Dict[str, List[BookingSpan]] = {}
    for room, (status, spans) in zip(rooms, outcomes):
        statuses[room.id] = status
        bookings[room.id] = spans

    fallback_rooms = [room for room in rooms if statuses[room.id] is not SourceStatus.ok]
    fallback_error: Optional[str] = None
    if fallback_rooms:
        personal: List[RawEvent] = []
        try:
            personal = await context.source.list_events(token, PERSONAL_CALENDAR, time_min, time_max)
        except RemoteSyncFailure as exc:
            logger.warning("Personal calendar unavailable for %d room(s): %s", len(fallback_rooms), exc)
            fallback_error = exc.message
        except Exception:
            logger.exception("Unexpected error reading the personal calendar")
            fallback_error = "unexpected error"
        fallback_ids = {room.id for room in fallback_rooms}
        for raw in personal:
            # Matched against every room so a booking of a room that read fine
            # is never moved onto a similarly named fallback room.
            room = best_room(raw, rooms, context.marker)
            if room is None or room.id not in fallback_ids:
                continue
            span = map_event(raw, the_day, context.tz, room, Ruleset.personal, context.marker, dropped)
            if span is not None:
                bookings[room.id].append(span)

    grid = SlotGrid.empty(day, [room.id for room in rooms])
    for room in rooms:
        ordered = sorted(bookings[room.id], key=lambda b: (slot_index(b.start_slot), b.identity))
        for span in ordered:
            try:
                grid = grid.occupy(room.id, span.start_slot, span.end_slot, span)
            except SlotConflict:
                logger.info("Skipping event %s in %s: overlaps an earlier booking", span.identity, room.id)

    if dropped:
        logger.info("Reconciliation of %s dropped %d event(s) off the slot axis", day, len(dropped))
    return ReconcileResult(day, grid, statuses, dropped, fallback_error)
