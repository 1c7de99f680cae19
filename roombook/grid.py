"""The fixed half-hour slot axis and the per-date slot grid.

The axis covers 08:00 to 18:00 local time in 26 slots identified by their
start time (``"08:00"`` ... ``"17:30"``). End boundaries use the same
``HH:MM`` notation, so a booking ending at the close of the day has
``end_slot == "18:00"``.

A ``SlotGrid`` maps room id to slot code to ``SlotEntry`` or ``None``. Grids
are treated as values: ``occupy`` and ``release`` return a new grid and never
modify the receiver, which is what lets a failed ``occupy`` leave the grid
untouched.
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import BookingValidationError, NotHeadSlot, SlotConflict
from .models import BookingSpan, SlotCell, SlotEntry

SLOT_MINUTES = 30
DAY_START_MINUTES = 8 * 60
SLOT_COUNT = 26
DAY_END_MINUTES = DAY_START_MINUTES + SLOT_COUNT * SLOT_MINUTES


def minutes_to_code(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def code_to_minutes(code: str) -> int:
    try:
        hours, mins = code.split(":")
        return int(hours) * 60 + int(mins)
    except (AttributeError, ValueError):
        raise BookingValidationError(f"invalid time code {code!r}") from None


SLOTS: Tuple[str, ...] = tuple(
    minutes_to_code(DAY_START_MINUTES + i * SLOT_MINUTES) for i in range(SLOT_COUNT)
)
_SLOT_POSITIONS: Dict[str, int] = {code: i for i, code in enumerate(SLOTS)}


def is_slot(code: str) -> bool:
    return code in _SLOT_POSITIONS


def slot_index(code: str) -> int:
    """Return the position of a slot start code on the axis."""
    try:
        return _SLOT_POSITIONS[code]
    except KeyError:
        raise BookingValidationError(f"{code!r} is not a slot start") from None


def boundary_index(code: str) -> int:
    """Return the axis position of a boundary code, unclamped.

    ``"18:00"`` is 26; later boundaries give larger values so callers can
    clamp explicitly.
    """
    offset = code_to_minutes(code) - DAY_START_MINUTES
    if offset < 0 or offset % SLOT_MINUTES:
        raise BookingValidationError(f"{code!r} is not a slot boundary")
    return offset // SLOT_MINUTES


def boundary_code(index: int) -> str:
    return minutes_to_code(DAY_START_MINUTES + index * SLOT_MINUTES)


def _cell(entry: Optional[SlotEntry]) -> Optional[SlotCell]:
    if entry is None:
        return None
    if entry.continuation or entry.booking is None:
        return SlotCell(identity=entry.identity, continuation=True)
    booking = entry.booking
    return SlotCell(
        identity=entry.identity,
        continuation=False,
        name=booking.name,
        organizer=booking.organizer_email or booking.organizer_name,
        endSlot=booking.end_slot,
        attendeeCount=booking.attendee_count,
        synced=booking.synced,
        state=booking.state,
    )


class SlotGrid:
    """Room by slot occupancy for a single date."""

    def __init__(self, date: str, cells: Dict[str, Dict[str, Optional[SlotEntry]]]) -> None:
        self.date = date
        self._cells = cells

    @classmethod
    def empty(cls, date: str, room_ids: Iterable[str]) -> "SlotGrid":
        return cls(date, {room_id: {code: None for code in SLOTS} for room_id in room_ids})

    @property
    def room_ids(self) -> List[str]:
        return list(self._cells)

    def _row(self, room_id: str) -> Dict[str, Optional[SlotEntry]]:
        try:
            return self._cells[room_id]
        except KeyError:
            raise BookingValidationError(f"unknown room {room_id!r}") from None

    def _with_row(self, room_id: str, row: Dict[str, Optional[SlotEntry]]) -> "SlotGrid":
        cells = dict(self._cells)
        cells[room_id] = row
        return SlotGrid(self.date, cells)

    def entry(self, room_id: str, slot: str) -> Optional[SlotEntry]:
        slot_index(slot)
        return self._row(room_id)[slot]

    def booking_at(self, room_id: str, slot: str) -> Optional[BookingSpan]:
        """Return the span covering ``slot``, resolving continuations to their head."""
        found = self.entry(room_id, slot)
        if found is None:
            return None
        if not found.continuation:
            return found.booking
        for candidate in self._row(room_id).values():
            if candidate is not None and not candidate.continuation and candidate.identity == found.identity:
                return candidate.booking
        return None

    def bookings(self, room_id: str) -> Iterator[BookingSpan]:
        for found in self._row(room_id).values():
            if found is not None and not found.continuation and found.booking is not None:
                yield found.booking

    def _range(self, start: str, end: str) -> Tuple[int, int]:
        first = slot_index(start)
        last = min(boundary_index(end), SLOT_COUNT)
        if last <= first:
            raise BookingValidationError(f"empty range {start}-{end}")
        return first, last

    def is_free(self, room_id: str, start: str, end: str) -> bool:
        first, last = self._range(start, end)
        row = self._row(room_id)
        return all(row[SLOTS[i]] is None for i in range(first, last))

    def occupy(self, room_id: str, start: str, end: str, booking: BookingSpan) -> "SlotGrid":
        """Place ``booking`` on ``[start, end)`` and return the new grid.

        Raises ``SlotConflict`` without writing anything if any slot in the
        range is taken. An ``end`` past the last boundary is clamped.
        """
        first, last = self._range(start, end)
        row = self._row(room_id)
        taken = [SLOTS[i] for i in range(first, last) if row[SLOTS[i]] is not None]
        if taken:
            raise SlotConflict(f"{room_id} is already booked at {', '.join(taken)}")
        head = booking.model_copy(update={"start_slot": start, "end_slot": boundary_code(last)})
        new_row = dict(row)
        new_row[SLOTS[first]] = SlotEntry(identity=head.identity, booking=head)
        for i in range(first + 1, last):
            new_row[SLOTS[i]] = SlotEntry(identity=head.identity, continuation=True)
        return self._with_row(room_id, new_row)

    def release(self, room_id: str, head_slot: str) -> "SlotGrid":
        """Clear the booking whose head is at ``head_slot``.

        Every slot of the room carrying the same identity is cleared, so a
        span survives edits to the grid made after it was placed.
        """
        found = self.entry(room_id, head_slot)
        if found is None:
            return self._with_row(room_id, dict(self._row(room_id)))
        if found.continuation:
            raise NotHeadSlot(f"{head_slot} continues an earlier booking in {room_id}")
        return self.release_identity(room_id, found.identity)

    def release_identity(self, room_id: str, identity: str) -> "SlotGrid":
        row = self._row(room_id)
        new_row = {
            code: (None if (cell is not None and cell.identity == identity) else cell)
            for code, cell in row.items()
        }
        return self._with_row(room_id, new_row)

    def find(self, room_id: str, identity: str) -> Optional[BookingSpan]:
        for booking in self.bookings(room_id):
            if booking.identity == identity:
                return booking
        return None

    def replace(self, room_id: str, identity: str, booking: BookingSpan) -> "SlotGrid":
        """Swap the head data of ``identity`` for ``booking`` keeping its range."""
        current = self.find(room_id, identity)
        if current is None:
            raise BookingValidationError(f"no booking {identity!r} in {room_id}")
        cleared = self.release_identity(room_id, identity)
        return cleared.occupy(room_id, current.start_slot, current.end_slot, booking)

    def to_payload(self) -> Dict[str, Dict[str, Optional[SlotCell]]]:
        """Room id to slot code to the cell shown on the booking page."""
        return {
            room_id: {code: _cell(entry) for code, entry in row.items()}
            for room_id, row in self._cells.items()
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SlotGrid):
            return NotImplemented
        return self.date == other.date and self._cells == other._cells

    def __repr__(self) -> str:
        used = sum(1 for row in self._cells.values() for cell in row.values() if cell is not None)
        return f"SlotGrid(date={self.date!r}, rooms={len(self._cells)}, occupied={used})"
