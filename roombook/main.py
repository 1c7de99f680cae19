"""Main application entry point for the room booking service.

This module defines the FastAPI application, configures logging, wires the
viewing session to the Google Calendar collaborators and runs the refresh
scheduler for the lifetime of the app. It serves a JSON API only; the
booking page itself is a separate front end.

Endpoints:
  - ``/api/rooms``: configured rooms, their mailboxes and source status.
  - ``/api/grid``: the slot grid of a date (makes it the active date).
  - ``/api/bookings``: create a booking on the active date.
  - ``/api/bookings/cancel``: cancel a booking by its head slot.
  - ``/api/refresh``: reconcile the active date now.
  - ``/api/visibility``: report the viewing surface being shown or hidden.
  - ``/api/rooms/{room_id}/mailbox``: bind or unbind a room calendar.
  - ``/healthz``: simple health check endpoint.

Core errors are mapped to HTTP status codes by their ``code``. Partial
failures that the core recovers from (a degraded room, a booking kept
locally) are not errors: they come back as ``warnings`` / ``warning`` in
the response body.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import MailboxStore, settings
from .errors import (
    AuthRequired,
    BookingError,
    BookingValidationError,
    CancelForbidden,
    NotHeadSlot,
    RemoteSyncFailure,
    SlotConflict,
)
from .google_client import GoogleCalendarSource, ServiceAccountAuthProvider
from .grid import SLOTS
from .models import (
    BookingRequest,
    CancelRequest,
    GridResponse,
    MailboxUpdate,
    MutationResponse,
    RefreshTrigger,
    Room,
    RoomGrid,
    Viewer,
    VisibilityRequest,
)
from .mutator import cancel_booking, create_booking
from .scheduler import RefreshScheduler
from .session import SessionContext, ViewingSession

logger = logging.getLogger("roombook")
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

_STATUS_BY_CODE: Dict[str, int] = {
    AuthRequired.code: 401,
    CancelForbidden.code: 403,
    SlotConflict.code: 409,
    NotHeadSlot.code: 422,
    BookingValidationError.code: 400,
    RemoteSyncFailure.code: 502,
}


def _iso_z(dt: datetime) -> str:
    """Return an RFC3339 timestamp in UTC with a Z suffix."""
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _http_error(exc: BookingError) -> HTTPException:
    return HTTPException(
        status_code=_STATUS_BY_CODE.get(exc.code, 500),
        detail={"code": exc.code, "message": exc.message},
    )


def build_session() -> ViewingSession:
    """Create the viewing session described by ``settings``."""
    context = SessionContext(
        viewer=Viewer(name=settings.viewer_name, email=settings.google_impersonate_user),
        auth=ServiceAccountAuthProvider(settings.google_service_account_json, settings.google_impersonate_user),
        source=GoogleCalendarSource(),
        timezone_name=settings.timezone,
        marker=settings.booking_tag,
        site_label=settings.site_label,
    )
    rooms = [Room(id=r.id, name=r.name, capacity=r.capacity) for r in settings.rooms]
    return ViewingSession(context, rooms, MailboxStore(settings.rooms))


def create_app(session: Optional[ViewingSession] = None) -> FastAPI:
    session = session or build_session()
    scheduler = RefreshScheduler(session, settings.refresh_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()

    app = FastAPI(title="Room Booking Service", lifespan=lifespan)
    app.state.session = session
    app.state.scheduler = scheduler

    # CORS is disabled by default because the booking page and API share an origin.
    if settings.enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "PUT"],
            allow_headers=["*"],
        )

    def grid_payload(day: str, extra_warnings: Optional[List[str]] = None) -> GridResponse:
        cells = session.grid(day).to_payload()
        statuses = session.statuses(day)
        result = session.result(day)
        published = session.published_at(day)
        rooms = [
            RoomGrid(
                roomId=room.id,
                roomName=room.name,
                capacity=room.capacity,
                status=statuses[room.id],
                slots=cells[room.id],
            )
            for room in session.rooms
        ]
        warnings = list(extra_warnings or [])
        if result is not None:
            warnings.extend(result.warnings(session.rooms))
        return GridResponse(
            date=day,
            generatedAt=_iso_z(published) if published else None,
            refreshSeconds=scheduler.interval_seconds,
            slots=list(SLOTS),
            rooms=rooms,
            dropped=len(result.dropped) if result is not None else 0,
            warnings=warnings,
        )

    @app.get("/api/rooms")
    def api_rooms() -> Dict[str, Any]:
        """Return the configured rooms with their mailbox and latest source status."""
        mailboxes = session.mailboxes.snapshot()
        statuses = session.statuses()
        items = [
            {
                "roomId": room.id,
                "roomName": room.name,
                "capacity": room.capacity,
                "mailbox": mailboxes.get(room.id),
                "status": statuses[room.id].value,
            }
            for room in session.rooms
        ]
        return {"count": len(items), "items": items, "date": session.active_date}

    @app.get("/api/grid", response_model=GridResponse)
    async def api_grid(date: Optional[str] = None) -> GridResponse:
        day = date or session.active_date
        warnings: List[str] = []
        try:
            await session.view(day)
        except AuthRequired as exc:
            logger.info("Showing %s without a calendar session: %s", day, exc)
            warnings.append("Not signed in: showing local bookings only")
        except BookingError as exc:
            raise _http_error(exc)
        return grid_payload(day, warnings)

    @app.post("/api/bookings", response_model=MutationResponse)
    async def api_create_booking(body: BookingRequest) -> MutationResponse:
        try:
            outcome = await create_booking(
                session,
                body.roomId,
                body.date,
                body.startSlot,
                body.bookerName,
                end_slot=body.endSlot,
                booker_email=body.bookerEmail,
                title=body.title,
                attendees=body.attendees,
            )
        except BookingError as exc:
            raise _http_error(exc)
        return MutationResponse(
            identity=outcome.booking.identity,
            state=outcome.booking.state,
            warning=outcome.warning,
        )

    @app.post("/api/bookings/cancel", response_model=MutationResponse)
    async def api_cancel_booking(body: CancelRequest) -> MutationResponse:
        try:
            outcome = await cancel_booking(session, body.roomId, body.date, body.slot, body.requesterEmail)
        except BookingError as exc:
            raise _http_error(exc)
        return MutationResponse(identity=outcome.booking.identity, warning=outcome.warning)

    @app.post("/api/refresh", response_model=GridResponse)
    async def api_refresh() -> GridResponse:
        """Reconcile the active date and return it once the pass settled."""
        await scheduler.trigger(RefreshTrigger.manual)
        warnings = ["Not signed in: calendar sync is paused"] if scheduler.paused else []
        return grid_payload(session.active_date, warnings)

    @app.post("/api/visibility")
    async def api_visibility(body: VisibilityRequest) -> Dict[str, Any]:
        refreshing = scheduler.visibility_changed(body.visible) is not None
        return {"ok": True, "visible": body.visible, "refreshing": refreshing}

    @app.put("/api/rooms/{room_id}/mailbox")
    async def api_set_mailbox(room_id: str, body: MailboxUpdate) -> Dict[str, Any]:
        try:
            session.mailboxes.set_mailbox(room_id, body.mailbox)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"unknown room {room_id}")
        logger.info("Mailbox of room %s set to %s", room_id, body.mailbox or "<none>")
        scheduler.trigger(RefreshTrigger.config)
        return {"ok": True, "roomId": room_id, "mailbox": session.mailboxes.snapshot()[room_id]}

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {"ok": True, "time": _iso_z(datetime.now(timezone.utc)), "syncPaused": scheduler.paused}

    return app


app = create_app()
