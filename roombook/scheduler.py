"""Decide when the active date is reconciled again.

Passes are started by a fixed timer, by the viewing surface becoming
visible again, by an explicit refresh, after a successful mutation and
after a room mailbox changes. Every trigger starts its own pass; none is
suppressed because another is in flight. The viewing session discards
whichever of them finishes superseded.

When the auth provider reports that there is no session, timer passes are
paused until an explicit or visibility-regain pass succeeds again.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from .errors import AuthRequired
from .models import RefreshTrigger
from .reconciler import ReconcileResult
from .session import ViewingSession

logger = logging.getLogger(__name__)

# Only a pass the viewer asked for lifts the pause on timer passes.
_RESUMING_TRIGGERS = (RefreshTrigger.manual, RefreshTrigger.visibility)


class RefreshScheduler:
    def __init__(self, session: ViewingSession, interval_seconds: float = 60) -> None:
        self.session = session
        self.interval_seconds = interval_seconds
        self.paused = False
        self.visible = True
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        session.on_resync = self.trigger

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._tick())
        logger.info("Refresh scheduler started (every %ss)", self.interval_seconds)

    async def stop(self) -> None:
        pending = list(self._tasks)
        if self._timer is not None:
            pending.append(self._timer)
            self._timer = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            if self.paused:
                logger.debug("Skipping timed refresh: waiting for sign-in")
                continue
            self.trigger(RefreshTrigger.timer)

    def trigger(self, reason: RefreshTrigger) -> asyncio.Task:
        """Start a pass for the active date in the background."""
        task = asyncio.create_task(self._run(reason))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, reason: RefreshTrigger) -> Optional[ReconcileResult]:
        day = self.session.active_date
        logger.debug("Reconciling %s (%s)", day, reason.value)
        try:
            result = await self.session.reconcile(day)
        except AuthRequired as exc:
            if not self.paused:
                logger.warning("Pausing calendar sync: %s", exc)
            self.paused = True
            return None
        except Exception:
            logger.exception("Reconciliation of %s (%s) failed", day, reason.value)
            return None
        if self.paused and reason in _RESUMING_TRIGGERS:
            logger.info("Calendar sync resumed after %s refresh", reason.value)
            self.paused = False
        return result

    def visibility_changed(self, visible: bool) -> Optional[asyncio.Task]:
        """Refresh when the viewing surface comes back from being hidden."""
        regained = visible and not self.visible
        self.visible = visible
        if regained:
            return self.trigger(RefreshTrigger.visibility)
        return None
