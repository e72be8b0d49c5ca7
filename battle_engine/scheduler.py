"""
CASEFORGE - Cooperative Scheduler

One clock drives every animation in a battle. Work is either a frame
callback (called once per step with the current time) or a timer
(called once when its due time has passed). Everything runs on the
caller's thread; a step never blocks and nothing needs a lock.

Usage:
    scheduler = Scheduler(ManualClock())
    handle = scheduler.call_later(1.5, respin)
    scheduler.on_frame(controller.step)
    scheduler.advance(2.0)          # headless / tests
    handle.cancel()

    Scheduler(MonotonicClock()).run_realtime()   # real host loop
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from typing import Callable, Optional

from config.settings import BattleConfig

logger = logging.getLogger("caseforge.scheduler")

_EPS = 1e-9


# ═══════════════════════════════════════════════════════════════
# Clocks
# ═══════════════════════════════════════════════════════════════

class ManualClock:
    """Clock that only moves when told to. Deterministic."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("ManualClock cannot run backwards")
        self._now += seconds


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()


# ═══════════════════════════════════════════════════════════════
# Handles
# ═══════════════════════════════════════════════════════════════

class Handle:
    """Cancellable reference to a timer or frame callback."""

    __slots__ = ("callback", "args", "due", "seq", "repeating", "_cancelled")

    def __init__(self, callback: Callable, args: tuple, due: float, seq: int, repeating: bool):
        self.callback = callback
        self.args = args
        self.due = due
        self.seq = seq
        self.repeating = repeating
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def __lt__(self, other: "Handle") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)

    def __repr__(self):
        kind = "frame" if self.repeating else f"timer@{self.due:.3f}"
        state = " cancelled" if self._cancelled else ""
        return f"<Handle {kind} {getattr(self.callback, '__qualname__', self.callback)}{state}>"


# ═══════════════════════════════════════════════════════════════
# Scheduler
# ═══════════════════════════════════════════════════════════════

class Scheduler:

    def __init__(self, clock=None, frame_interval: float = None):
        self.clock = clock or ManualClock()
        self.frame_interval = frame_interval or BattleConfig.FRAME_INTERVAL
        self._timers: list[Handle] = []
        self._frames: dict[int, Handle] = {}
        self._seq = itertools.count()
        self.frames_run = 0

    def now(self) -> float:
        return self.clock.now()

    # ── Registration ──────────────────────────────────────────

    def call_later(self, delay: float, callback: Callable, *args) -> Handle:
        handle = Handle(callback, args, self.now() + max(0.0, delay), next(self._seq), False)
        heapq.heappush(self._timers, handle)
        return handle

    def call_soon(self, callback: Callable, *args) -> Handle:
        return self.call_later(0.0, callback, *args)

    def on_frame(self, callback: Callable[[float], None]) -> Handle:
        """Call ``callback(now)`` on every step until the handle is cancelled."""
        handle = Handle(callback, (), self.now(), next(self._seq), True)
        self._frames[handle.seq] = handle
        return handle

    # ── Execution ─────────────────────────────────────────────

    @property
    def pending(self) -> int:
        self._prune()
        return len(self._timers) + len(self._frames)

    @property
    def idle(self) -> bool:
        return self.pending == 0

    def next_due(self) -> Optional[float]:
        self._prune()
        return self._timers[0].due if self._timers else None

    def step(self) -> None:
        """Run every due timer, then every frame callback, at one instant."""
        now = self.now()
        while self._timers and self._timers[0].due <= now + _EPS:
            handle = heapq.heappop(self._timers)
            if not handle.cancelled:
                handle.callback(*handle.args)
        for handle in list(self._frames.values()):
            if handle.cancelled:
                self._frames.pop(handle.seq, None)
                continue
            handle.callback(now)
        self.frames_run += 1

    def advance(self, seconds: float) -> None:
        """Move a ManualClock forward frame by frame, stepping each time."""
        if not hasattr(self.clock, "advance"):
            raise TypeError("advance() needs a clock that can be moved manually")
        remaining = seconds
        while remaining > _EPS:
            dt = min(self.frame_interval, remaining)
            self.clock.advance(dt)
            remaining -= dt
            self.step()

    def run_until_idle(self, max_seconds: float = 600.0) -> bool:
        """Advance until nothing is scheduled. Returns False if the cap was hit."""
        waited = 0.0
        while not self.idle:
            if waited >= max_seconds:
                logger.warning(f"Scheduler still busy after {max_seconds}s ({self.pending} pending)")
                return False
            self.advance(self.frame_interval)
            waited += self.frame_interval
        return True

    def run_realtime(self, max_seconds: float = None) -> None:
        """Drive the loop against the wall clock until idle."""
        started = time.monotonic()
        while not self.idle:
            if max_seconds is not None and time.monotonic() - started > max_seconds:
                logger.warning(f"run_realtime stopped after {max_seconds}s")
                return
            time.sleep(self.frame_interval)
            self.step()

    def _prune(self) -> None:
        if any(h.cancelled for h in self._timers):
            self._timers = [h for h in self._timers if not h.cancelled]
            heapq.heapify(self._timers)
        for seq in [s for s, h in self._frames.items() if h.cancelled]:
            del self._frames[seq]
