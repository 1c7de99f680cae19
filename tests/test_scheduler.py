"""Tests for the refresh scheduler triggers."""

from __future__ import annotations

import asyncio

import pytest

from roombook.models import RefreshTrigger
from roombook.mutator import create_booking
from roombook.scheduler import RefreshScheduler
from tests.conftest import DAY, MAILBOXES, make_event

pytestmark = pytest.mark.unit

SERENGETI_MB = MAILBOXES["serengeti"]


@pytest.mark.asyncio
async def test_trigger_reconciles_active_date(session, source):
    scheduler = RefreshScheduler(session, interval_seconds=60)
    source.events[SERENGETI_MB] = [make_event("s1", "09:00", "10:00")]
    result = await scheduler.trigger(RefreshTrigger.manual)
    assert result is not None
    assert session.grid(DAY).entry("serengeti", "09:00").identity == "s1"


@pytest.mark.asyncio
async def test_triggers_are_not_suppressed_while_in_flight(session, source):
    scheduler = RefreshScheduler(session, interval_seconds=60)
    gate = asyncio.Event()
    source.gates[SERENGETI_MB] = gate
    first = scheduler.trigger(RefreshTrigger.manual)
    while SERENGETI_MB in source.gates:
        await asyncio.sleep(0)

    second = scheduler.trigger(RefreshTrigger.visibility)
    assert await second is not None
    gate.set()
    # The first pass finished last and was superseded.
    assert await first is None
    assert source.list_calls.count(SERENGETI_MB) == 2


@pytest.mark.asyncio
async def test_missing_session_pauses_until_a_pass_succeeds(session, auth, source):
    scheduler = RefreshScheduler(session, interval_seconds=60)
    auth.signed_in = False
    assert await scheduler.trigger(RefreshTrigger.timer) is None
    assert scheduler.paused is True

    auth.signed_in = True
    assert await scheduler.trigger(RefreshTrigger.manual) is not None
    assert scheduler.paused is False


@pytest.mark.asyncio
@pytest.mark.parametrize("reason", [RefreshTrigger.mutation, RefreshTrigger.config, RefreshTrigger.conflict])
async def test_background_passes_do_not_lift_pause(session, auth, reason):
    scheduler = RefreshScheduler(session, interval_seconds=60)
    auth.signed_in = False
    await scheduler.trigger(RefreshTrigger.timer)

    auth.signed_in = True
    assert await scheduler.trigger(reason) is not None
    assert scheduler.paused is True

    assert await scheduler.trigger(RefreshTrigger.visibility) is not None
    assert scheduler.paused is False


@pytest.mark.asyncio
async def test_timer_skips_while_paused(session, auth, source):
    scheduler = RefreshScheduler(session, interval_seconds=0.01)
    scheduler.paused = True
    scheduler.start()
    await asyncio.sleep(0.05)
    assert source.list_calls == []

    scheduler.paused = False
    for _ in range(100):
        if source.list_calls:
            break
        await asyncio.sleep(0.01)
    await scheduler.stop()
    assert SERENGETI_MB in source.list_calls
    assert not scheduler.running


@pytest.mark.asyncio
async def test_visibility_regain_triggers_refresh(session, source):
    scheduler = RefreshScheduler(session, interval_seconds=60)
    assert scheduler.visibility_changed(True) is None
    assert scheduler.visibility_changed(False) is None
    task = scheduler.visibility_changed(True)
    assert task is not None
    await task
    assert source.list_calls


@pytest.mark.asyncio
async def test_successful_mutation_triggers_refresh(session, source):
    scheduler = RefreshScheduler(session, interval_seconds=60)
    await create_booking(session, "serengeti", DAY, "09:00", "A. Singh")
    await asyncio.gather(*scheduler._tasks)
    assert SERENGETI_MB in source.list_calls
