"""Google Workspace collaborators for the booking core.

This module provides the auth provider and the calendar source the core
talks to. Credentials are service-account credentials with domain-wide
delegation impersonating the viewer, so ``"primary"`` is the viewer's
personal calendar and room resources are read by their resource email.

The Google client library is synchronous. Every request runs in a worker
thread through ``asyncio.to_thread`` so the event loop only suspends on
remote calls, and the exponential back-off for transient errors waits with
``asyncio.sleep``. Failures are surfaced as ``RemoteSyncFailure``; callers
never see ``HttpError`` directly.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Tuple

import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import AuthRequired, RemoteSyncFailure
from .models import EventDraft, RawEvent

logger = logging.getLogger(__name__)

# Reading room calendars and creating/deleting the viewer's own events is
# all the core does. Do not add broader scopes unless absolutely required.
SCOPES: Tuple[str, ...] = ("https://www.googleapis.com/auth/calendar.events",)

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)


def _rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class ServiceAccountAuthProvider:
    """Hand out delegated credentials for the configured viewer.

    The service account key may be given either as inline JSON or as a path
    to the key file. An empty setting means there is no session at all.
    """

    def __init__(self, service_account_json: str, subject: str) -> None:
        self._raw = (service_account_json or "").strip()
        self._subject = (subject or "").strip()

    def _load_sa_info(self) -> dict:
        # Detect inline JSON by looking for a brace at the start.
        if self._raw.startswith("{"):
            return json.loads(self._raw)
        with open(self._raw, "r", encoding="utf-8") as fh:
            return json.load(fh)

    def acquire_valid_token(self) -> service_account.Credentials:
        if not self._raw or not self._subject:
            raise AuthRequired("no calendar session configured")
        try:
            sa_info = self._load_sa_info()
            creds = service_account.Credentials.from_service_account_info(sa_info, scopes=SCOPES)
        except (OSError, ValueError) as exc:
            logger.error("Cannot load service account credentials: %s", exc)
            raise AuthRequired("service account credentials are unreadable") from exc
        return creds.with_subject(self._subject)


def _event_to_raw(item: Dict[str, Any]) -> RawEvent:
    """Flatten a Calendar v3 event resource into a ``RawEvent``."""
    organizer = item.get("organizer") or {}
    start = item.get("start") or {}
    end = item.get("end") or {}
    return RawEvent(
        id=item.get("id", ""),
        subject=item.get("summary") or "",
        # All-day events only carry "date"; leave them without a timestamp.
        start=start.get("dateTime"),
        end=end.get("dateTime"),
        organizer_name=organizer.get("displayName"),
        organizer_email=organizer.get("email"),
        attendees=[a.get("email") or "" for a in item.get("attendees") or []],
        body=item.get("description") or "",
        location=item.get("location") or "",
    )


def _draft_to_body(draft: EventDraft) -> Dict[str, Any]:
    return {
        "summary": draft.subject,
        "description": draft.body_html,
        "location": draft.location,
        "start": {"dateTime": draft.start, "timeZone": draft.timezone},
        "end": {"dateTime": draft.end, "timeZone": draft.timezone},
        "attendees": [{"email": address} for address in draft.attendees],
    }


class GoogleCalendarSource:
    """Calendar v3 implementation of the calendar source contract."""

    def __init__(self, *, max_retries: int = 3, backoff_seconds: float = 1.0) -> None:
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def _service(self, creds):
        return build("calendar", "v3", credentials=creds, cache_discovery=False)

    async def _execute(self, what: str, token, call: Callable[[Any], Any]) -> Any:
        """Run ``call(service)`` off the event loop, retrying transient failures."""
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(lambda: call(self._service(token)))
            except HttpError as exc:
                attempt += 1
                # Retry on 5xx or rate-limit errors.
                status = getattr(exc.resp, "status", None)
                if attempt <= self.max_retries and status in TRANSIENT_STATUSES:
                    delay = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.warning(
                        "%s transient error (status=%s), retrying in %.1fs (attempt %s/%s)",
                        what,
                        status,
                        delay,
                        attempt,
                        self.max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                logger.error("%s failed after %s attempts: %s", what, attempt, exc)
                raise RemoteSyncFailure(f"{what} failed (status={status})") from exc
            except (GoogleAuthError, httplib2.HttpLib2Error, OSError) as exc:
                logger.error("%s failed: %s", what, exc)
                raise RemoteSyncFailure(f"{what} failed: {type(exc).__name__}") from exc

    async def list_events(
        self, token, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> List[RawEvent]:
        """Return every single event of ``calendar_id`` overlapping the window."""

        def fetch_all(service) -> List[Dict[str, Any]]:
            items: List[Dict[str, Any]] = []
            request = service.events().list(
                calendarId=calendar_id,
                timeMin=_rfc3339(time_min),
                timeMax=_rfc3339(time_max),
                singleEvents=True,
                orderBy="startTime",
                maxResults=250,
            )
            while request is not None:
                response = request.execute()
                items.extend(response.get("items", []))
                request = service.events().list_next(previous_request=request, previous_response=response)
            return items

        items = await self._execute(f"Listing events of {calendar_id}", token, fetch_all)
        return [_event_to_raw(item) for item in items if item.get("status") != "cancelled"]

    async def create_event(self, token, draft: EventDraft) -> str:
        body = _draft_to_body(draft)

        def insert(service) -> Dict[str, Any]:
            return service.events().insert(calendarId="primary", body=body, sendUpdates="all").execute()

        created = await self._execute("Creating event", token, insert)
        return created["id"]

    async def delete_event(self, token, event_id: str) -> None:
        def delete(service) -> None:
            try:
                service.events().delete(calendarId="primary", eventId=event_id, sendUpdates="all").execute()
            except HttpError as exc:
                # Already gone remotely; nothing left to delete.
                if getattr(exc.resp, "status", None) in (404, 410):
                    logger.info("Event %s was already deleted remotely", event_id)
                    return
                raise

        await self._execute(f"Deleting event {event_id}", token, delete)

