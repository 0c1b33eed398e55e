"""Cycle scheduler.

Runs the monitoring cycle on one worker thread: once at start, then on a
fixed interval, plus a debounced extra run after seller add/remove events.
Since a single thread executes every run, two cycles never overlap; a
trigger that lands mid-cycle is served after the current cycle ends.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .config import CHANGE_DELAY_SECONDS, MONITOR_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class SchedulerState:
    running: bool = False
    next_periodic_at: Optional[float] = None
    pending_change_at: Optional[float] = None
    cycle_in_progress: bool = False
    cycles_run: int = 0


class CycleScheduler:
    """Owns the schedule; `start`, `stop` and `trigger` are its only mutators."""

    def __init__(
        self,
        run_cycle: Callable[[], object],
        *,
        interval_seconds: float = MONITOR_INTERVAL_SECONDS,
        change_delay_seconds: float = CHANGE_DELAY_SECONDS,
        stop_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._run_cycle = run_cycle
        self.interval_seconds = interval_seconds
        self.change_delay_seconds = max(0.0, change_delay_seconds)
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self._cond = threading.Condition()
        self._state = SchedulerState()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        with self._cond:
            return self._state.running

    @property
    def cycle_in_progress(self) -> bool:
        with self._cond:
            return self._state.cycle_in_progress

    @property
    def cycles_run(self) -> int:
        with self._cond:
            return self._state.cycles_run

    def start(self) -> None:
        with self._cond:
            if self._state.running:
                return
            self.stop_event.clear()
            self._state.running = True
            self._state.next_periodic_at = self._clock()
            self._thread = threading.Thread(target=self._loop, name="monitor-cycle", daemon=True)
            self._thread.start()
        logger.info(
            "Monitoring interval set to %.2f hours", self.interval_seconds / 3600.0
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop scheduling and ask a running cycle to finish at the next seller."""
        with self._cond:
            if not self._state.running:
                return
            self._state.running = False
            self._state.pending_change_at = None
            self.stop_event.set()
            self._cond.notify_all()
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Scheduler stopped")

    def trigger(self, reason: str = "configuration change") -> bool:
        """Request an extra run after the change delay.

        Triggers arriving before that run starts push it back and collapse
        into a single run. The periodic schedule is untouched.
        """
        with self._cond:
            if not self._state.running:
                logger.debug("Ignoring trigger (%s); scheduler not running", reason)
                return False
            self._state.pending_change_at = self._clock() + self.change_delay_seconds
            busy = self._state.cycle_in_progress
            self._cond.notify_all()
        if busy:
            logger.info("Cycle in progress; the change run (%s) will follow it", reason)
            return True
        logger.info("Triggering monitoring restart due to %s...", reason)
        return True

    def wait_for_cycles(self, count: int, timeout: Optional[float] = None) -> bool:
        """Block until at least `count` cycles have completed."""
        with self._cond:
            return self._cond.wait_for(lambda: self._state.cycles_run >= count, timeout)

    def _next_due(self) -> Tuple[Optional[float], str]:
        candidates = []
        if self._state.next_periodic_at is not None:
            candidates.append((self._state.next_periodic_at, "periodic"))
        if self._state.pending_change_at is not None:
            candidates.append((self._state.pending_change_at, "change"))
        if not candidates:
            return None, ""
        return min(candidates)

    def _loop(self) -> None:
        while True:
            with self._cond:
                while self._state.running:
                    now = self._clock()
                    due, reason = self._next_due()
                    if due is not None and due <= now:
                        break
                    self._cond.wait(None if due is None else due - now)
                if not self._state.running:
                    return

                if reason == "periodic":
                    if self.interval_seconds > 0:
                        self._state.next_periodic_at = due + self.interval_seconds
                    else:
                        self._state.next_periodic_at = None
                    # a due change trigger is satisfied by this run too
                    if self._state.pending_change_at is not None and self._state.pending_change_at <= now:
                        self._state.pending_change_at = None
                else:
                    self._state.pending_change_at = None
                self._state.cycle_in_progress = True

            logger.debug("Running %s monitoring cycle", reason)
            try:
                self._run_cycle()
            except Exception:
                logger.exception("Error in monitoring cycle")
            finally:
                with self._cond:
                    self._state.cycle_in_progress = False
                    self._state.cycles_run += 1
                    nxt = self._state.next_periodic_at
                    if nxt is not None and self.interval_seconds > 0:
                        now = self._clock()
                        while nxt <= now:
                            nxt += self.interval_seconds
                        self._state.next_periodic_at = nxt
                    self._cond.notify_all()


__all__ = ["CycleScheduler", "SchedulerState"]
