"""Tests for grid publication and the per-date generation token."""

from __future__ import annotations

import asyncio

import pytest

from roombook.errors import BookingValidationError
from roombook.models import RefreshTrigger, SourceStatus
from tests.conftest import DAY, MAILBOXES, make_event

pytestmark = pytest.mark.unit

SERENGETI_MB = MAILBOXES["serengeti"]


def test_active_date_defaults_to_today_in_viewer_zone(session):
    assert session.active_date == DAY
    assert session.grid().date == DAY
    assert session.statuses() == {
        "serengeti": SourceStatus.unconfigured,
        "tarangire": SourceStatus.unconfigured,
        "ruaha": SourceStatus.unconfigured,
    }


@pytest.mark.asyncio
async def test_reconcile_publishes_grid(session, source):
    source.events[SERENGETI_MB] = [make_event("s1", "09:00", "10:00")]
    result = await session.reconcile(DAY)
    assert result is not None
    assert session.grid(DAY).entry("serengeti", "09:00").identity == "s1"
    assert session.statuses(DAY)["serengeti"] is SourceStatus.ok
    assert session.published_at(DAY) is not None


@pytest.mark.asyncio
async def test_superseded_pass_is_discarded(session, source):
    """An older pass finishing last must not overwrite a newer one."""
    gate = asyncio.Event()
    source.events[SERENGETI_MB] = [make_event("old", "09:00", "10:00")]
    source.gates[SERENGETI_MB] = gate

    older = asyncio.create_task(session.reconcile(DAY))
    while SERENGETI_MB in source.gates:
        await asyncio.sleep(0)

    source.events[SERENGETI_MB] = [make_event("new", "11:00", "12:00")]
    newer = await session.reconcile(DAY)
    gate.set()
    stale = await older

    assert newer is not None
    assert stale is None
    grid = session.grid(DAY)
    assert grid.entry("serengeti", "11:00").identity == "new"
    assert grid.entry("serengeti", "09:00") is None


@pytest.mark.asyncio
async def test_passes_for_other_dates_do_not_supersede(session, source):
    gate = asyncio.Event()
    source.gates[SERENGETI_MB] = gate
    first = asyncio.create_task(session.reconcile(DAY))
    while SERENGETI_MB in source.gates:
        await asyncio.sleep(0)
    await session.reconcile("2026-10-20")
    gate.set()
    assert await first is not None


@pytest.mark.asyncio
async def test_view_fetches_unseen_date_and_keeps_cached_ones(session, source):
    triggered = []
    session.on_resync = triggered.append

    await session.view("2026-10-20")
    assert session.active_date == "2026-10-20"
    assert session.has_grid("2026-10-20")
    assert triggered == []

    await session.view(DAY)
    await session.view("2026-10-20")
    # Coming back to a cached date shows it and asks for a refresh.
    assert triggered == [RefreshTrigger.manual]


@pytest.mark.asyncio
async def test_view_rejects_invalid_date(session):
    with pytest.raises(BookingValidationError):
        await session.view("19/10/2026")


def test_is_past_uses_session_clock(session):
    assert session.is_past(DAY, "08:00") is False
    assert session.is_past("2026-10-18", "17:30") is True
