"""Viewing session: who is looking, through which sources, at which date.

``SessionContext`` bundles the viewer identity with the auth provider and
calendar source; it is handed to every core operation instead of reaching
for module-level credentials. ``ViewingSession`` owns the grid of the
active date, keeps read-only copies of dates viewed earlier, and decides
whether a finished reconciliation pass may be published.

Passes for the same date are ordered by a generation token taken when the
pass is requested. A pass that finishes after a newer one was requested is
discarded, so a slow, older response can never overwrite fresher data.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone, tzinfo
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from .config import MailboxStore
from .errors import BookingValidationError
from .grid import SlotGrid, code_to_minutes
from .models import EventDraft, RawEvent, RefreshTrigger, Room, SourceStatus, Viewer
from .reconciler import ReconcileResult, reconcile

logger = logging.getLogger(__name__)


class AuthProvider(Protocol):
    def acquire_valid_token(self) -> Any:
        ...


class CalendarSource(Protocol):
    async def list_events(self, token: Any, calendar_id: str, time_min: datetime, time_max: datetime) -> List[RawEvent]:
        ...

    async def create_event(self, token: Any, draft: EventDraft) -> str:
        ...

    async def delete_event(self, token: Any, event_id: str) -> None:
        ...


class SessionContext:
    """Explicit credentials and collaborators for one viewer."""

    def __init__(
        self,
        viewer: Viewer,
        auth: AuthProvider,
        source: CalendarSource,
        timezone_name: str = "UTC",
        marker: str = "MountmeruRoomBooking",
        site_label: str = "",
    ) -> None:
        self.viewer = viewer
        self.auth = auth
        self.source = source
        self.timezone_name = timezone_name
        self.tz: tzinfo = ZoneInfo(timezone_name)
        self.marker = marker
        self.site_label = site_label


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ViewingSession:
    """Grid state for one viewing session."""

    def __init__(
        self,
        context: SessionContext,
        rooms: Sequence[Room],
        mailboxes: MailboxStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.context = context
        self.rooms: List[Room] = list(rooms)
        self.mailboxes = mailboxes
        self.clock = clock
        self.active_date = self.today()
        self.dropped_total = 0
        # Set by the refresh scheduler; mutations use it to ask for a resync.
        self.on_resync: Optional[Callable[[RefreshTrigger], Any]] = None
        self._grids: Dict[str, SlotGrid] = {}
        self._results: Dict[str, ReconcileResult] = {}
        self._published_at: Dict[str, datetime] = {}
        self._generations: Dict[str, int] = {}

    def today(self) -> str:
        return self.clock().astimezone(self.context.tz).date().isoformat()

    def room(self, room_id: str) -> Room:
        for room in self.rooms:
            if room.id == room_id:
                return room
        raise BookingValidationError(f"unknown room {room_id!r}")

    def grid(self, day: Optional[str] = None) -> SlotGrid:
        day = day or self.active_date
        cached = self._grids.get(day)
        if cached is None:
            return SlotGrid.empty(day, [room.id for room in self.rooms])
        return cached

    def set_grid(self, day: str, grid: SlotGrid) -> None:
        """Apply a local mutation on top of the current grid of ``day``."""
        self._grids[day] = grid

    def has_grid(self, day: str) -> bool:
        return day in self._grids

    def statuses(self, day: Optional[str] = None) -> Dict[str, SourceStatus]:
        result = self._results.get(day or self.active_date)
        if result is None:
            return {room.id: SourceStatus.unconfigured for room in self.rooms}
        return dict(result.statuses)

    def result(self, day: Optional[str] = None) -> Optional[ReconcileResult]:
        return self._results.get(day or self.active_date)

    def published_at(self, day: Optional[str] = None) -> Optional[datetime]:
        return self._published_at.get(day or self.active_date)

    def is_past(self, day: str, slot: str) -> bool:
        minutes = code_to_minutes(slot)
        starts = datetime.combine(
            date.fromisoformat(day), time(minutes // 60, minutes % 60), tzinfo=self.context.tz
        )
        return starts < self.clock()

    def request_resync(self, reason: RefreshTrigger) -> None:
        if self.on_resync is not None:
            self.on_resync(reason)

    async def reconcile(self, day: Optional[str] = None) -> Optional[ReconcileResult]:
        """Run a pass for ``day`` and publish it unless a newer one was requested.

        Returns the published result, or ``None`` when the pass was superseded.
        """
        day = day or self.active_date
        generation = self._generations.get(day, 0) + 1
        self._generations[day] = generation
        result = await reconcile(self.context, day, self.rooms, self.mailboxes.snapshot())
        if self._generations[day] != generation:
            logger.debug("Discarding superseded pass %s for %s", generation, day)
            return None
        self._grids[day] = result.grid
        self._results[day] = result
        self._published_at[day] = self.clock()
        self.dropped_total += len(result.dropped)
        return result

    async def view(self, day: str) -> None:
        """Make ``day`` the active date, fetching it if it was never seen."""
        try:
            date.fromisoformat(day)
        except ValueError:
            raise BookingValidationError(f"invalid date {day!r}") from None
        changed = day != self.active_date
        self.active_date = day
        if not self.has_grid(day):
            await self.reconcile(day)
        elif changed:
            self.request_resync(RefreshTrigger.manual)
