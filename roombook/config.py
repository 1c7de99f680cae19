"""Application configuration settings.

This module defines the ``Settings`` class using ``pydantic-settings`` to
load configuration from environment variables. It centralises all runtime
configuration for the booking service, such as Google API credentials, the
viewer identity, the room list and the refresh interval.

A ``.env`` file is loaded first when present so local development does not
need a long list of exported variables. The path defaults to ``.env`` in the
working directory and can be overridden with ``ROOMBOOK_ENV``.
"""

from __future__ import annotations

import os
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

load_dotenv(os.getenv("ROOMBOOK_ENV", ".env"))


class RoomConfig(BaseModel):
    """One bookable room as declared in configuration."""

    id: str
    name: str
    capacity: int = 0
    mailbox: Optional[str] = None


DEFAULT_ROOMS: List[RoomConfig] = [
    RoomConfig(id="serengeti", name="Serengeti", capacity=7),
    RoomConfig(id="tarangire", name="Tarangire", capacity=3),
    RoomConfig(id="ruaha", name="Ruaha", capacity=2),
]


class Settings(BaseSettings):
    """Configuration values loaded from environment variables.

    Environment variable names map to fields by alias. The Google
    credentials may be left empty: the service then runs without a calendar
    session and every booking is kept locally until one is configured.
    """

    # Google authentication
    google_service_account_json: str = Field(default="", alias="GOOGLE_SERVICE_ACCOUNT_JSON")
    google_impersonate_user: str = Field(
        default="",
        alias="GOOGLE_IMPERSONATE_USER",
        description="Workspace user whose personal calendar is the fallback source and who organizes new bookings.",
    )
    viewer_name: str = Field(default="", alias="VIEWER_NAME")

    # Booking behaviour
    timezone: str = Field(
        default="UTC",
        alias="TIMEZONE",
        description="IANA zone used to place events on the 08:00-18:00 grid.",
    )
    refresh_seconds: int = Field(
        default=60,
        alias="REFRESH_SECONDS",
        description="Interval (in seconds) between scheduled resynchronizations.",
    )
    booking_tag: str = Field(
        default="MountmeruRoomBooking",
        alias="BOOKING_TAG",
        description="Private marker embedded in event bodies created by this service.",
    )
    site_label: str = Field(default="Mountmeru", alias="SITE_LABEL")
    rooms: List[RoomConfig] = Field(default_factory=lambda: list(DEFAULT_ROOMS), alias="ROOMS")

    enable_cors: bool = Field(default=False, alias="ENABLE_CORS")

    class Config:
        extra = "ignore"


class MailboxStore:
    """Room to mailbox mapping consumed by each reconciliation pass.

    The reconciler only ever reads a snapshot; writes come from the
    configuration endpoint.
    """

    def __init__(self, rooms: List[RoomConfig]) -> None:
        self._mailboxes: Dict[str, Optional[str]] = {r.id: r.mailbox for r in rooms}

    def snapshot(self) -> Dict[str, Optional[str]]:
        return dict(self._mailboxes)

    def set_mailbox(self, room_id: str, mailbox: Optional[str]) -> None:
        if room_id not in self._mailboxes:
            raise KeyError(room_id)
        self._mailboxes[room_id] = (mailbox or "").strip() or None


# Instantiate settings at module import time. This allows other modules to
# import ``settings`` directly without repeatedly reading environment variables.
settings = Settings()
