"""
GridLive: Refresh Scheduler
Single timing authority for refresh cycles, aligned to the wall clock.

Timeline (5-minute cadence, started at 14:03:20)
------------------------------------------------
  14:03:20  warm-up cycle (so consumers are not empty until the first mark)
  14:05:00  first aligned cycle
  14:10:00, 14:15:00, ...  one cycle per period

Boundary policy
---------------
``next_boundary(now)`` is strictly after ``now``: at exactly 14:05:00 the
next trigger is 14:10:00 (a full period), never "now".  The warm-up cycle is
what covers the start instant.

Single flight
-------------
A cycle runs in its own task so the timer never blocks on network I/O.  If
the previous cycle is still running when a boundary fires, that boundary is
skipped and logged; cycles never overlap.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from loguru import logger

from gridlive.aggregator import CycleReport, GridAggregator
from gridlive.errors import SchedulerFault
from gridlive.models import GridState

SnapshotCallback = Callable[[GridState, CycleReport], None]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Boundary arithmetic  (pure)
# ---------------------------------------------------------------------------


def _check_cadence(cadence: timedelta) -> None:
    if cadence <= timedelta(0):
        raise SchedulerFault(f"cadence must be positive, got {cadence}")


def next_boundary(now: datetime, cadence: timedelta) -> datetime:
    """First multiple of ``cadence`` after midnight that is strictly later than ``now``."""
    _check_cadence(cadence)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    remainder = (now - midnight) % cadence
    return now + (cadence - remainder)


def seconds_until_next_boundary(now: datetime, cadence: timedelta) -> float:
    """Non-negative delay until ``next_boundary``; a full period when on a boundary."""
    return (next_boundary(now, cadence) - now).total_seconds()


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class RefreshScheduler:
    """
    Cancellable recurring refresh task.

    Parameters
    ----------
    aggregator:
        Runs one cycle per trigger.
    cadence:
        Period between aligned triggers.
    on_snapshot:
        Called with each completed snapshot and its report.
    clock, sleep:
        Injected time sources; tests replace them.
    warm_up:
        Run one cycle immediately on ``start()``.
    """

    def __init__(
        self,
        aggregator: GridAggregator,
        cadence: timedelta = timedelta(minutes=5),
        *,
        on_snapshot: Optional[SnapshotCallback] = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        warm_up: bool = True,
    ) -> None:
        _check_cadence(cadence)
        self._aggregator = aggregator
        self._cadence = cadence
        self._on_snapshot = on_snapshot
        self._clock = clock
        self._sleep = sleep
        self._warm_up = warm_up
        self._timer: Optional[asyncio.Task] = None
        self._cycle: Optional[asyncio.Task] = None
        self.skipped_cycles = 0

    @property
    def cadence(self) -> timedelta:
        return self._cadence

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def cycle_in_flight(self) -> bool:
        return self._cycle is not None and not self._cycle.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Arm the timer.  Must be called from inside a running event loop."""
        if self.running:
            logger.warning("Scheduler already running; start() ignored.")
            return
        logger.info("Scheduler started (cadence {}).", self._cadence)
        self._timer = asyncio.create_task(self._run(), name="gridlive-scheduler")

    async def stop(self) -> None:
        """Cancel the timer and any in-flight cycle; no task outlives this call."""
        tasks = [t for t in (self._timer, self._cycle) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._timer = None
        self._cycle = None
        if tasks:
            logger.info("Scheduler stopped ({} task(s) cancelled).", len(tasks))

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger(self, fired_at: Optional[datetime] = None) -> bool:
        """
        Start one cycle in the background and return immediately.

        Returns False (and runs nothing) when a cycle is already in flight.
        """
        if self.cycle_in_flight:
            self.skipped_cycles += 1
            logger.warning(
                "Previous cycle still running; skipping trigger at {}.",
                (fired_at or self._clock()).isoformat(),
            )
            return False
        self._cycle = asyncio.create_task(
            self._run_cycle(fired_at or self._clock()), name="gridlive-cycle"
        )
        return True

    async def _run_cycle(self, fired_at: datetime) -> None:
        try:
            state, report = await self._aggregator.aggregate_with_report(fired_at)
        except asyncio.CancelledError:
            logger.info("Cycle {} cancelled.", fired_at.isoformat())
            raise
        except Exception:
            logger.exception("Cycle {} failed unexpectedly.", fired_at.isoformat())
            return

        if self._on_snapshot is None:
            return
        try:
            self._on_snapshot(state, report)
        except Exception:
            logger.exception("Snapshot subscriber raised; timer continues.")

    async def _run(self) -> None:
        if self._warm_up:
            self.trigger(self._clock())

        last_fired: Optional[datetime] = None
        while True:
            now = self._clock()
            # an early wake-up must not re-fire the boundary just served
            if last_fired is not None and now < last_fired:
                now = last_fired
            fire_at = next_boundary(now, self._cadence)
            delay = (fire_at - self._clock()).total_seconds()
            logger.debug("Next cycle at {} (in {:.1f}s).", fire_at.isoformat(), delay)
            await self._sleep(max(delay, 0.0))
            last_fired = fire_at
            self.trigger(fire_at)
