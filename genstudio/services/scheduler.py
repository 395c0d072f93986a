"""
Recurring Scheduler - a self-disarming timer loop.

The callback runs every `interval` seconds while armed. It returns True to
keep the loop going or False to disarm (e.g. nothing left to reconcile).
arm() on an armed scheduler never starts a second timer, so callers can arm
freely every time new work appears. An arm() that lands while a tick is
running is remembered, and that tick reschedules even if it found nothing.

Usage:
    scheduler = RecurringScheduler(60, reconciler.sweep_and_continue, name="Reconciler")
    scheduler.arm()          # on startup and after each submit
    scheduler.disarm()       # on shutdown
"""

from __future__ import annotations

import threading
from typing import Callable, Optional


class RecurringScheduler:
    """Thread-safe. A single daemon timer is pending while armed."""

    def __init__(
        self,
        interval: float,
        callback: Callable[[], bool],
        name: str = "Scheduler",
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._timer_factory = timer_factory
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._armed = False
        self._rearm_requested = False

    @property
    def is_armed(self) -> bool:
        with self._lock:
            return self._armed

    def arm(self) -> bool:
        """Start the loop. Returns False if it was already running."""
        with self._lock:
            if self._armed:
                self._rearm_requested = True
                return False
            self._armed = True
            self._rearm_requested = False
            self._schedule_next()
        print(f"[{self.name}] armed (every {self.interval}s)")
        return True

    def disarm(self) -> None:
        with self._lock:
            self._armed = False
            self._rearm_requested = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
        print(f"[{self.name}] disarmed")

    # ── background loop ───────────────────────────────────────
    def _schedule_next(self):
        self._timer = self._timer_factory(self.interval, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self):
        with self._lock:
            if not self._armed:
                return
            # Only arms that arrive from here on count for this tick
            self._rearm_requested = False
        keep_going = True
        try:
            keep_going = bool(self.callback())
        except Exception as e:
            # A failing tick must not kill the loop
            print(f"[{self.name}] tick failed: {type(e).__name__}: {e}")
        self._continue_or_stop(keep_going)

    def _continue_or_stop(self, keep_going: bool):
        with self._lock:
            if not self._armed:
                return
            if keep_going or self._rearm_requested:
                self._rearm_requested = False
                self._schedule_next()
            else:
                self._armed = False
                self._timer = None
                print(f"[{self.name}] nothing pending, stopped")
