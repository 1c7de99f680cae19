"""Create and cancel bookings with optimistic local updates.

A booking moves ``FREE -> PENDING -> BOOKED | BOOKED_LOCAL`` when created and
``BOOKED* -> CANCELLING -> FREE`` when cancelled. The range is re-checked
against the current grid right before it is claimed, and is claimed as
``PENDING`` before the remote call is awaited, so two creates racing for the
same slot cannot both pass the check.

Remote failures never undo the local change. A create that cannot reach the
calendar is kept as ``BOOKED_LOCAL`` and a cancel whose remote delete fails
still frees the slot; both report a warning instead of raising. Local
changes sit on top of the current grid until the next reconciliation pass
replaces it.
"""

from __future__ import annotations

import html
import logging
import re
import uuid
from typing import Iterable, List, Optional

from pydantic import BaseModel

from .errors import AuthRequired, BookingValidationError, CancelForbidden, NotHeadSlot, RemoteSyncFailure, SlotConflict
from .grid import SLOT_COUNT, boundary_code, boundary_index, slot_index
from .models import BookingSpan, BookingState, EventDraft, RefreshTrigger, Room
from .session import ViewingSession

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class MutationOutcome(BaseModel):
    booking: BookingSpan
    warning: Optional[str] = None


def is_valid_email(address: str) -> bool:
    return bool(_EMAIL_RE.match(address.strip()))


def _attendee_list(attendees: Iterable[str], booker_email: Optional[str], mailbox: Optional[str]) -> List[str]:
    """Valid addresses, then the booker and the room resource if missing."""
    out: List[str] = []
    for address in attendees:
        address = address.strip()
        if is_valid_email(address) and address.lower() not in (a.lower() for a in out):
            out.append(address)
        elif address:
            logger.debug("Ignoring attendee address %r", address)
    lowered = [a.lower() for a in out]
    if booker_email and booker_email.lower() not in lowered:
        out.insert(0, booker_email)
    if mailbox and mailbox.lower() not in lowered:
        out.append(mailbox)
    return out


def build_draft(
    session: ViewingSession,
    room: Room,
    day: str,
    start_slot: str,
    end_slot: str,
    label: str,
    booker_name: str,
    attendees: List[str],
) -> EventDraft:
    context = session.context
    site = context.site_label
    body = (
        f"<p>Room: <strong>{html.escape(room.name)}</strong></p>"
        f"<p>Booked by: {html.escape(booker_name)}</p>"
        f"<p>Attendees: {len(attendees)}</p>"
        f"<p><em>Booked via {html.escape(site or 'the')} Room Booking</em></p>"
        f'<p style="display:none">{html.escape(context.marker)}</p>'
    )
    return EventDraft(
        subject=f"[{room.name}] {label}",
        body_html=body,
        location=f"{room.name} - {site}" if site else room.name,
        start=f"{day}T{start_slot}:00",
        end=f"{day}T{end_slot}:00",
        timezone=context.timezone_name,
        attendees=attendees,
    )


def _commit(session: ViewingSession, day: str, room_id: str, pending_identity: str, booking: BookingSpan) -> None:
    """Swap the pending span for its final form on whatever grid is current."""
    current = session.grid(day)
    if current.find(room_id, pending_identity) is not None:
        session.set_grid(day, current.replace(room_id, pending_identity, booking))
        return
    # A reconciliation pass replaced the grid while the remote call was in flight.
    try:
        session.set_grid(day, current.occupy(room_id, booking.start_slot, booking.end_slot, booking))
    except SlotConflict:
        logger.info("Booking %s already present in the refreshed grid of %s", booking.identity, room_id)


async def create_booking(
    session: ViewingSession,
    room_id: str,
    day: str,
    start_slot: str,
    booker_name: str,
    *,
    end_slot: Optional[str] = None,
    booker_email: Optional[str] = None,
    title: Optional[str] = None,
    attendees: Iterable[str] = (),
) -> MutationOutcome:
    """Book ``[start_slot, end_slot)`` of ``room_id`` on the active date.

    Raises ``BookingValidationError`` for bad input and ``SlotConflict``
    (after asking for a resync) when the range is no longer free.
    """
    name = (booker_name or "").strip()
    if not name:
        raise BookingValidationError("Please enter your name")
    room = session.room(room_id)
    if day != session.active_date:
        raise BookingValidationError(f"{day} is not the date being viewed")
    first = slot_index(start_slot)
    end_slot = end_slot or boundary_code(first + 1)
    last = boundary_index(end_slot)
    if last <= first:
        raise BookingValidationError("End time must be after start time")
    if last > SLOT_COUNT:
        raise BookingValidationError(f"End time must not be after {boundary_code(SLOT_COUNT)}")
    if session.is_past(day, start_slot):
        raise BookingValidationError("Cannot book a time slot in the past")

    email = (booker_email or session.context.viewer.email or "").strip() or None
    invitees = _attendee_list(attendees, email, session.mailboxes.snapshot().get(room_id))
    label = (title or "").strip() or name
    pending = BookingSpan(
        identity=f"local-{uuid.uuid4().hex}",
        name=label,
        organizer_name=name,
        organizer_email=email.lower() if email else None,
        start_slot=start_slot,
        end_slot=end_slot,
        attendee_count=len(invitees),
        synced=False,
        state=BookingState.pending,
    )

    # Time may have passed since the range was picked; check it again now.
    try:
        claimed = session.grid(day).occupy(room_id, start_slot, end_slot, pending)
    except SlotConflict:
        logger.info("Booking %s %s-%s on %s lost to a conflicting booking", room_id, start_slot, end_slot, day)
        session.request_resync(RefreshTrigger.conflict)
        raise
    session.set_grid(day, claimed)

    draft = build_draft(session, room, day, start_slot, end_slot, label, name, invitees)
    warning: Optional[str] = None
    event_id: Optional[str] = None
    try:
        token = session.context.auth.acquire_valid_token()
        event_id = await session.context.source.create_event(token, draft)
    except AuthRequired:
        warning = "Booked locally. Not signed in to a calendar."
    except RemoteSyncFailure as exc:
        logger.warning("Keeping booking of %s %s-%s locally: %s", room_id, start_slot, end_slot, exc)
        warning = f"Booked locally. Calendar error: {exc.message}"
    except Exception as exc:
        # The claimed span must never stay PENDING.
        logger.exception("Unexpected error creating %s %s-%s remotely, keeping it locally", room_id, start_slot, end_slot)
        warning = f"Booked locally. Calendar error: {type(exc).__name__}"

    if event_id is not None:
        booking = pending.model_copy(update={"identity": event_id, "synced": True, "state": BookingState.booked})
    else:
        booking = pending.model_copy(update={"state": BookingState.booked_local})
    _commit(session, day, room_id, pending.identity, booking)

    if event_id is not None:
        session.request_resync(RefreshTrigger.mutation)
    return MutationOutcome(booking=booking, warning=warning)


def may_cancel(booking: BookingSpan, requester_email: Optional[str]) -> bool:
    """Organizer-less bookings may be cancelled by anyone."""
    if not booking.organizer_email:
        return True
    return (requester_email or "").strip().lower() == booking.organizer_email.lower()


async def cancel_booking(
    session: ViewingSession,
    room_id: str,
    day: str,
    slot: str,
    requester_email: Optional[str] = None,
) -> MutationOutcome:
    """Cancel the booking whose head is ``slot``; the local slot is always freed."""
    session.room(room_id)
    grid = session.grid(day)
    found = grid.entry(room_id, slot)
    if found is None:
        raise BookingValidationError(f"No booking at {slot} in {room_id}")
    if found.continuation:
        raise NotHeadSlot(f"{slot} continues an earlier booking in {room_id}")
    booking = found.booking
    if booking.state in (BookingState.pending, BookingState.cancelling):
        raise BookingValidationError("The booking is still being saved")
    requester = requester_email if requester_email is not None else session.context.viewer.email
    if not may_cancel(booking, requester):
        raise CancelForbidden(f"Only {booking.organizer_email} can cancel this booking")

    session.set_grid(
        day, grid.replace(room_id, booking.identity, booking.model_copy(update={"state": BookingState.cancelling}))
    )
    warning: Optional[str] = None
    if booking.event_id:
        try:
            token = session.context.auth.acquire_valid_token()
            await session.context.source.delete_event(token, booking.event_id)
        except AuthRequired:
            warning = "Couldn't remove from calendar: not signed in"
        except RemoteSyncFailure as exc:
            logger.warning("Remote delete of %s failed, clearing locally: %s", booking.event_id, exc)
            warning = f"Couldn't remove from calendar: {exc.message}"
        except Exception as exc:
            logger.exception("Unexpected error deleting %s remotely, clearing locally", booking.event_id)
            warning = f"Couldn't remove from calendar: {type(exc).__name__}"

    session.set_grid(day, session.grid(day).release_identity(room_id, booking.identity))
    if warning is None:
        session.request_resync(RefreshTrigger.mutation)
    return MutationOutcome(booking=booking, warning=warning)
