"""Shared fixtures: an in-memory calendar source and a viewing session over it."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import pytest

from roombook.config import MailboxStore, RoomConfig
from roombook.errors import AuthRequired, RemoteSyncFailure
from roombook.models import EventDraft, RawEvent, Room, Viewer
from roombook.session import SessionContext, ViewingSession

DAY = "2026-10-19"
MARKER = "MountmeruRoomBooking"
VIEWER_EMAIL = "a.singh@example.com"

ROOMS = [
    Room(id="serengeti", name="Serengeti", capacity=7),
    Room(id="tarangire", name="Tarangire", capacity=3),
    Room(id="ruaha", name="Ruaha", capacity=2),
]

MAILBOXES = {
    "serengeti": "serengeti@resource.example.com",
    "tarangire": "tarangire@resource.example.com",
    "ruaha": None,
}


def make_event(
    event_id: str,
    start: str,
    end: str,
    subject: str = "",
    *,
    day: str = DAY,
    organizer_name: Optional[str] = "A. Singh",
    organizer_email: Optional[str] = VIEWER_EMAIL,
    attendees: Optional[List[str]] = None,
    body: str = "",
    location: str = "",
) -> RawEvent:
    """Build a raw event with UTC timestamps on ``day``."""
    return RawEvent(
        id=event_id,
        subject=subject,
        start=f"{day}T{start}:00Z" if start else None,
        end=f"{day}T{end}:00Z" if end else None,
        organizer_name=organizer_name,
        organizer_email=organizer_email,
        attendees=attendees or [],
        body=body,
        location=location,
    )


class FakeAuth:
    def __init__(self, signed_in: bool = True) -> None:
        self.signed_in = signed_in

    def acquire_valid_token(self) -> str:
        if not self.signed_in:
            raise AuthRequired("no session")
        return "token"


class FakeCalendarSource:
    """Calendar source backed by dictionaries, with hooks to fail or stall calls."""

    def __init__(self) -> None:
        self.events: Dict[str, List[RawEvent]] = {}
        self.failing: Set[str] = set()
        # Arbitrary exceptions raised as-is, for calendars and for create/delete.
        self.errors: Dict[str, Exception] = {}
        self.create_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        # One-shot gates: the next list call for a calendar waits on it.
        self.gates: Dict[str, asyncio.Event] = {}
        self.create_gate: Optional[asyncio.Event] = None
        self.fail_create = False
        self.fail_delete = False
        self.list_calls: List[str] = []
        self.created: List[EventDraft] = []
        self.deleted: List[str] = []
        self._next_id = 0

    async def list_events(self, token, calendar_id, time_min, time_max) -> List[RawEvent]:
        self.list_calls.append(calendar_id)
        snapshot = list(self.events.get(calendar_id, []))
        gate = self.gates.pop(calendar_id, None)
        if gate is not None:
            await gate.wait()
        if calendar_id in self.errors:
            raise self.errors[calendar_id]
        if calendar_id in self.failing:
            raise RemoteSyncFailure(f"Listing events of {calendar_id} failed (status=503)")
        return snapshot

    async def create_event(self, token, draft: EventDraft) -> str:
        if self.create_gate is not None:
            await self.create_gate.wait()
        if self.create_error is not None:
            raise self.create_error
        if self.fail_create:
            raise RemoteSyncFailure("Creating event failed (status=500)")
        self._next_id += 1
        self.created.append(draft)
        event = RawEvent(
            id=f"evt-{self._next_id}",
            subject=draft.subject,
            start=draft.start,
            end=draft.end,
            organizer_name="A. Singh",
            organizer_email=VIEWER_EMAIL,
            attendees=list(draft.attendees),
            body=draft.body_html,
            location=draft.location,
        )
        # The organizer's calendar and every invited calendar get a copy.
        for calendar_id in ["primary", *draft.attendees]:
            self.events.setdefault(calendar_id, []).append(event)
        return event.id

    async def delete_event(self, token, event_id: str) -> None:
        if self.delete_error is not None:
            raise self.delete_error
        if self.fail_delete:
            raise RemoteSyncFailure(f"Deleting event {event_id} failed (status=500)")
        self.deleted.append(event_id)
        for calendar_id, events in self.events.items():
            self.events[calendar_id] = [e for e in events if e.id != event_id]


@pytest.fixture
def source() -> FakeCalendarSource:
    return FakeCalendarSource()


@pytest.fixture
def auth() -> FakeAuth:
    return FakeAuth()


@pytest.fixture
def context(auth: FakeAuth, source: FakeCalendarSource) -> SessionContext:
    return SessionContext(
        viewer=Viewer(name="A. Singh", email=VIEWER_EMAIL),
        auth=auth,
        source=source,
        timezone_name="UTC",
        marker=MARKER,
        site_label="Mountmeru",
    )


@pytest.fixture
def clock():
    return lambda: datetime(2026, 10, 19, 7, 0, tzinfo=timezone.utc)


@pytest.fixture
def mailboxes() -> MailboxStore:
    return MailboxStore([RoomConfig(id=r.id, name=r.name, capacity=r.capacity, mailbox=MAILBOXES[r.id]) for r in ROOMS])


@pytest.fixture
def session(context: SessionContext, mailboxes: MailboxStore, clock) -> ViewingSession:
    return ViewingSession(context, ROOMS, mailboxes, clock=clock)
