"""
questfeed.services.presence_tracker — Throttled lastSeen heartbeat
===================================================================

Keeps ``users.lastSeen`` approximately fresh for an authenticated
session.

State machine per session::

    IDLE ──start()──▶ HEARTBEATING ──stop()/sign-out──▶ IDLE

- ``start()`` issues one forced write, then schedules a periodic write
  every ``interval_minutes``.
- Non-forced writes are dropped if the last successful write is younger
  than ``throttle_seconds``.
- A write requested while another is outstanding is dropped, not queued.
- Write failures are logged at DEBUG and swallowed; the next natural tick
  is the only retry.

Timers go through a :class:`Scheduler` so tests can drive ticks by hand
(:class:`ManualScheduler`) instead of waiting on a real clock.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

from questfeed.services.document_store import DocumentStore
from questfeed.services.session import SessionContext

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 2
DEFAULT_THROTTLE_SECONDS = 60
DEFAULT_MAX_GATES = 10_000

Tick = Callable[[], Awaitable[None]]


class TrackerState(enum.StrEnum):
    IDLE = "idle"
    HEARTBEATING = "heartbeating"


class Trigger(enum.StrEnum):
    """Events that request a presence write besides the periodic timer."""
    VISIBLE = "visible"    # page regained visibility
    FOCUS = "focus"        # window regained focus
    ACTIVITY = "activity"  # pointer-down / key-down
    UNLOAD = "unload"      # page unload, forced and best-effort


# ---------------------------------------------------------------------------
# Scheduler abstraction
# ---------------------------------------------------------------------------
class Cancellable(Protocol):
    def cancel(self) -> object: ...


class Scheduler(Protocol):
    def schedule_periodic(self, seconds: float, callback: Tick) -> Cancellable: ...


class AsyncioScheduler:
    """Runs each periodic callback as an ``asyncio`` task on the running loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def schedule_periodic(self, seconds: float, callback: Tick) -> asyncio.Task:
        async def _loop() -> None:
            while True:
                await asyncio.sleep(seconds)
                try:
                    await callback()
                except Exception:
                    logger.exception("Periodic task error")

        loop = self._loop or asyncio.get_running_loop()
        return loop.create_task(_loop(), name="presence-heartbeat")


@dataclass
class ManualJob:
    seconds: float
    callback: Tick
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose ticks are fired explicitly via :meth:`run_pending`."""

    def __init__(self) -> None:
        self.jobs: list[ManualJob] = []

    def schedule_periodic(self, seconds: float, callback: Tick) -> ManualJob:
        job = ManualJob(seconds, callback)
        self.jobs.append(job)
        return job

    @property
    def active_jobs(self) -> list[ManualJob]:
        return [j for j in self.jobs if not j.cancelled]

    async def run_pending(self) -> None:
        """Fire every non-cancelled job once."""
        for job in self.active_jobs:
            await job.callback()


# ---------------------------------------------------------------------------
# Write gate — throttle + single in-flight guard
# ---------------------------------------------------------------------------
class WriteGate:
    """Throttle and in-flight guard for one user's timestamp writes."""

    def __init__(
        self,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.throttle_seconds = throttle_seconds
        self._clock = clock
        self._last_write: float | None = None
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def try_acquire(self, force: bool = False) -> float | None:
        """Return the start time if a write may proceed, else ``None``."""
        if self._in_flight:
            return None
        now = self._clock()
        if (
            not force
            and self._last_write is not None
            and now - self._last_write < self.throttle_seconds
        ):
            return None
        self._in_flight = True
        return now

    def release(self, started: float, success: bool) -> None:
        if success:
            self._last_write = started
        self._in_flight = False

    def is_idle(self) -> bool:
        """No write in flight and the throttle window has closed."""
        if self._in_flight:
            return False
        return (
            self._last_write is None
            or self._clock() - self._last_write >= self.throttle_seconds
        )


class HeartbeatGates:
    """Per-user :class:`WriteGate` registry for server-side heartbeats.

    Holds at most *max_gates* entries before idle gates are evicted.  An
    idle gate would let the next write through anyway, so dropping it
    changes nothing.
    """

    def __init__(
        self,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        max_gates: int = DEFAULT_MAX_GATES,
    ) -> None:
        self.throttle_seconds = throttle_seconds
        self.max_gates = max_gates
        self._clock = clock
        self._gates: dict[str, WriteGate] = {}
        self._lock = threading.Lock()

    def gate_for(self, user_id: str) -> WriteGate:
        with self._lock:
            gate = self._gates.get(user_id)
            if gate is None:
                if len(self._gates) >= self.max_gates:
                    self._evict_idle()
                gate = WriteGate(self.throttle_seconds, self._clock)
                self._gates[user_id] = gate
            return gate

    def __len__(self) -> int:
        return len(self._gates)

    def _evict_idle(self) -> None:
        idle = [uid for uid, gate in self._gates.items() if gate.is_idle()]
        for uid in idle:
            del self._gates[uid]
        logger.debug("Evicted %d idle heartbeat gates", len(idle))


async def write_heartbeat(
    store: DocumentStore,
    gate: WriteGate,
    user_id: str,
    *,
    force: bool = False,
    now: Callable[[], datetime] | None = None,
) -> bool:
    """Write ``lastSeen`` for *user_id* through *gate*.

    Returns True only when the underlying store write completed.  Never
    raises for store failures.
    """
    started = gate.try_acquire(force)
    if started is None:
        logger.debug("Presence write for %s skipped (throttled or in flight)", user_id)
        return False

    success = False
    try:
        stamp = (now or (lambda: datetime.now(UTC)))()
        await store.update_user_timestamp(user_id, stamp.isoformat())
        success = True
    except Exception:
        logger.debug("Presence write for %s failed", user_id, exc_info=True)
    finally:
        gate.release(started, success)
    return success


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------
class PresenceTracker:
    """Heartbeat state machine bound to one :class:`SessionContext`."""

    def __init__(
        self,
        session: SessionContext,
        store: DocumentStore,
        scheduler: Scheduler,
        *,
        interval_minutes: float = DEFAULT_INTERVAL_MINUTES,
        throttle_seconds: float = DEFAULT_THROTTLE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.session = session
        self.store = store
        self.scheduler = scheduler
        self.interval_minutes = interval_minutes
        self.gate = WriteGate(throttle_seconds, clock)
        self._now = now
        self._state = TrackerState.IDLE
        self._user_id: str | None = None
        self._task: Cancellable | None = None

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def is_tracking(self) -> bool:
        return self._state is TrackerState.HEARTBEATING

    async def start(self) -> bool:
        """Enter HEARTBEATING; no-op when anonymous or already running."""
        if self.is_tracking:
            return False
        if not self.session.is_authenticated:
            logger.debug("Presence heartbeat not started: session is anonymous")
            return False

        self._state = TrackerState.HEARTBEATING
        self._user_id = self.session.user_id
        self.session.subscribe(self._on_session_change)
        logger.info("Presence heartbeat started for %s", self._user_id)

        await self.update_last_seen(force=True)
        # stop() may have run while the first write was awaited.
        if self.is_tracking:
            self._task = self.scheduler.schedule_periodic(
                self.interval_minutes * 60, self._tick
            )
        return True

    def stop(self) -> None:
        """Cancel the periodic write and return to IDLE."""
        self.session.unsubscribe(self._on_session_change)
        if self._task is not None:
            self._task.cancel()
            self._task = None
        if self.is_tracking:
            logger.info("Presence heartbeat stopped for %s", self._user_id)
        self._state = TrackerState.IDLE
        self._user_id = None

    async def update_last_seen(self, force: bool = False) -> bool:
        """Request a write; returns True if the store write went through."""
        if not self.is_tracking or self._user_id is None:
            return False
        # Never write on behalf of an identity that is no longer current.
        if self.session.user_id != self._user_id:
            self.stop()
            return False
        return await write_heartbeat(
            self.store, self.gate, self._user_id, force=force, now=self._now
        )

    async def notify(self, trigger: Trigger) -> bool:
        """Handle a browser-side trigger; UNLOAD forces the write."""
        return await self.update_last_seen(force=trigger is Trigger.UNLOAD)

    async def _tick(self) -> None:
        await self.update_last_seen()

    def _on_session_change(self, session: SessionContext) -> None:
        if self.is_tracking and session.user_id != self._user_id:
            self.stop()
