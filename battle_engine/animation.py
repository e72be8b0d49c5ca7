"""
CASEFORGE - Spin Animation

Converts a landing index into a time-parameterised trajectory and plays it
on the shared scheduler.

Geometry (reel scrolls along one axis, units are whatever the host measures):
    center_offset = viewport/2 - item/2
    scroll_amount = base_rotations * reel_length * item + (landing_index * item - center_offset)
    position(t)   = scroll_amount * ease(t / duration)

Easing is fast-start / slow-stop: ease(0)=0, ease(1)=1, non-decreasing.
Tick events approximate one click per item crossed, spacing out as the reel
slows, and go quiet for the last few percent of the spin.

Usage:
    params = calculate_spin_params(reel.reel_length, landing.index, 100, 380)
    ctl = AnimationController(scheduler, params, name="p1", on_complete=done)
    start_synchronized([ctl, other], scheduler)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Sequence

from battle_engine.errors import SynchronizationError
from config.settings import BattleConfig

logger = logging.getLogger("caseforge.animation")


# ═══════════════════════════════════════════════════════════════
# Easing
# ═══════════════════════════════════════════════════════════════

def _clamp01(p: float) -> float:
    return 0.0 if p <= 0.0 else 1.0 if p >= 1.0 else p


def ease_out_cubic(p: float) -> float:
    p = _clamp01(p)
    return 1.0 - (1.0 - p) ** 3


class CubicBezier:
    """CSS ``cubic-bezier(x1, y1, x2, y2)`` timing function.

    x1/x2 must lie in [0, 1] so time stays monotonic; with y1/y2 in
    [0, 1] the curve is monotonic in progress too.
    """

    def __init__(self, x1: float, y1: float, x2: float, y2: float):
        if not (0.0 <= x1 <= 1.0 and 0.0 <= x2 <= 1.0):
            raise ValueError("cubic-bezier x control points must be within [0, 1]")
        self.points = (x1, y1, x2, y2)
        # polynomial coefficients for B(t) = ((a t + b) t + c) t
        self._cx = 3.0 * x1
        self._bx = 3.0 * (x2 - x1) - self._cx
        self._ax = 1.0 - self._cx - self._bx
        self._cy = 3.0 * y1
        self._by = 3.0 * (y2 - y1) - self._cy
        self._ay = 1.0 - self._cy - self._by

    def _x(self, t):
        return ((self._ax * t + self._bx) * t + self._cx) * t

    def _y(self, t):
        return ((self._ay * t + self._by) * t + self._cy) * t

    def _dx(self, t):
        return (3.0 * self._ax * t + 2.0 * self._bx) * t + self._cx

    def _solve_t(self, x: float) -> float:
        t = x
        for _ in range(8):
            err = self._x(t) - x
            if abs(err) < 1e-7:
                return t
            d = self._dx(t)
            if abs(d) < 1e-6:
                break
            t -= err / d
        # Newton stalled: bisect
        lo, hi = 0.0, 1.0
        t = x
        while hi - lo > 1e-7:
            if self._x(t) < x:
                lo = t
            else:
                hi = t
            t = (lo + hi) / 2.0
        return t

    def __call__(self, p: float) -> float:
        p = _clamp01(p)
        if p in (0.0, 1.0):
            return p
        return self._y(self._solve_t(p))

    def __repr__(self):
        return "cubic-bezier({}, {}, {}, {})".format(*self.points)


DEFAULT_EASING = CubicBezier(0.25, 0.46, 0.45, 0.94)


# ═══════════════════════════════════════════════════════════════
# Spin parameters
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Tick:
    delay: float        # seconds from spin start
    interval: float     # gap to the next tick


@dataclass(frozen=True)
class SpinParams:
    scroll_amount: float
    duration: float
    ticks: tuple = ()
    landing_index: int = 0
    reel_length: int = 1
    item_size: float = 0.0
    viewport_size: float = 0.0
    center_offset: float = 0.0
    base_rotations: float = 1.5


def generate_tick_pattern(duration: float, min_interval: float = None,
                          max_interval: float = None, silent_tail: float = None) -> tuple:
    """Tick schedule that starts fast and spreads out as the spin slows."""
    lo = BattleConfig.TICK_MIN_INTERVAL if min_interval is None else min_interval
    hi = BattleConfig.TICK_MAX_INTERVAL if max_interval is None else max_interval
    tail = BattleConfig.TICK_SILENT_TAIL if silent_tail is None else silent_tail
    if duration <= 0 or lo <= 0:
        return ()

    cutoff = duration * (1.0 - tail)
    ticks = []
    t = 0.0
    while t < cutoff:
        interval = lo + ease_out_cubic(t / duration) * (hi - lo)
        ticks.append(Tick(delay=t, interval=interval))
        t += interval
    return tuple(ticks)


def _valid_size(v) -> bool:
    return isinstance(v, (int, float)) and v > 0


def calculate_spin_params(reel_length: int, winning_index: int,
                          item_size: float = None, viewport_size: float = None, *,
                          base_rotations: float = None,
                          duration: float = None) -> SpinParams:
    """Scroll distance, duration and tick schedule for one spin.

    Missing or non-positive layout measurements fall back to the configured
    defaults so a host that has not laid out yet still gets a sane spin.
    """
    if not _valid_size(item_size):
        if item_size is not None:
            logger.warning(f"Invalid item_size={item_size!r}; using {BattleConfig.ITEM_SIZE}")
        item_size = BattleConfig.ITEM_SIZE
    if not _valid_size(viewport_size):
        if viewport_size is not None:
            logger.warning(f"Invalid viewport_size={viewport_size!r}; using {BattleConfig.VIEWPORT_SIZE}")
        viewport_size = BattleConfig.VIEWPORT_SIZE

    reel_length = max(1, int(reel_length or 0))
    winning_index = max(0, int(winning_index or 0))
    rotations = BattleConfig.BASE_ROTATIONS if base_rotations is None else max(1.0, base_rotations)
    duration = BattleConfig.PRIMARY_SPIN_DURATION if duration is None else duration

    center_offset = viewport_size / 2 - item_size / 2
    scroll_amount = rotations * reel_length * item_size + (winning_index * item_size - center_offset)

    logger.debug(
        f"spin params: reel_length={reel_length} index={winning_index} "
        f"center_offset={center_offset} scroll={scroll_amount} duration={duration}s"
    )
    return SpinParams(
        scroll_amount=scroll_amount,
        duration=duration,
        ticks=generate_tick_pattern(duration),
        landing_index=winning_index,
        reel_length=reel_length,
        item_size=item_size,
        viewport_size=viewport_size,
        center_offset=center_offset,
        base_rotations=rotations,
    )


# ═══════════════════════════════════════════════════════════════
# Tick / sound collaborator
# ═══════════════════════════════════════════════════════════════

class TickSink:
    """Receives audible events from controllers. The base class is silent."""

    def tick(self, source: str, index: int) -> None:
        pass

    def land(self, source: str) -> None:
        pass


# ═══════════════════════════════════════════════════════════════
# Controller
# ═══════════════════════════════════════════════════════════════

class ControllerState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    CANCELLED = "cancelled"


@dataclass
class AnimationTimeline:
    start_time: float
    duration: float
    scroll_amount: float
    landing_index: int
    position: float = 0.0
    elapsed: float = 0.0
    ticks_emitted: int = 0


class AnimationController:
    """Plays one spin on the scheduler. Owns its timeline exclusively."""

    def __init__(self, scheduler, params: SpinParams, *, name: str = "reel",
                 tick_sink: TickSink = None,
                 on_complete: Callable[["AnimationController"], None] = None,
                 easing: Callable[[float], float] = None):
        self.scheduler = scheduler
        self.params = params
        self.name = name
        self.tick_sink = tick_sink or TickSink()
        self.on_complete = on_complete
        self.easing = easing or DEFAULT_EASING
        self.state = ControllerState.PENDING
        self.timeline: Optional[AnimationTimeline] = None
        self._frame = None

    # ── Trajectory ────────────────────────────────────────────

    @property
    def duration(self) -> float:
        return self.params.duration

    def position_at(self, t: float) -> float:
        if self.params.duration <= 0:
            return self.params.scroll_amount
        return self.params.scroll_amount * self.easing(t / self.params.duration)

    # ── Lifecycle ─────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self.state == ControllerState.RUNNING

    @property
    def done(self) -> bool:
        return self.state == ControllerState.DONE

    @property
    def cancelled(self) -> bool:
        return self.state == ControllerState.CANCELLED

    def start(self, start_time: float = None) -> None:
        if self.state != ControllerState.PENDING:
            raise RuntimeError(f"Controller {self.name} already {self.state.value}")
        self.timeline = AnimationTimeline(
            start_time=self.scheduler.now() if start_time is None else start_time,
            duration=self.params.duration,
            scroll_amount=self.params.scroll_amount,
            landing_index=self.params.landing_index,
        )
        self.state = ControllerState.RUNNING
        self._frame = self.scheduler.on_frame(self.step)
        logger.debug(f"[{self.name}] start t0={self.timeline.start_time:.3f} "
                     f"scroll={self.params.scroll_amount} dur={self.params.duration}")

    def step(self, now: float) -> None:
        if self.state != ControllerState.RUNNING:
            return
        tl = self.timeline
        tl.elapsed = max(0.0, now - tl.start_time)
        if tl.elapsed >= tl.duration:
            self._finish()
            return
        tl.position = self.position_at(tl.elapsed)
        ticks = self.params.ticks
        while tl.ticks_emitted < len(ticks) and ticks[tl.ticks_emitted].delay <= tl.elapsed:
            self.tick_sink.tick(self.name, tl.ticks_emitted)
            tl.ticks_emitted += 1

    def cancel(self) -> None:
        """Stop immediately. Safe to call repeatedly; suppresses on_complete."""
        if self.state in (ControllerState.DONE, ControllerState.CANCELLED):
            return
        self.state = ControllerState.CANCELLED
        if self._frame is not None:
            self._frame.cancel()
        logger.debug(f"[{self.name}] cancelled")

    def _finish(self) -> None:
        tl = self.timeline
        tl.elapsed = tl.duration
        tl.position = tl.scroll_amount
        self.state = ControllerState.DONE
        self._frame.cancel()
        self.tick_sink.land(self.name)
        logger.debug(f"[{self.name}] landed at index {tl.landing_index}")
        if self.on_complete is not None:
            self.on_complete(self)


def start_synchronized(controllers: Sequence[AnimationController], scheduler=None) -> float:
    """Start every controller at one shared instant. Returns that instant."""
    if not controllers:
        return scheduler.now() if scheduler else 0.0
    scheduler = scheduler or controllers[0].scheduler
    durations = {c.duration for c in controllers}
    if len(durations) > 1:
        raise SynchronizationError(f"Synchronized spins need one duration, got {sorted(durations)}")
    if any(c.scheduler is not scheduler for c in controllers):
        raise SynchronizationError("Synchronized spins must share one scheduler")
    start_time = scheduler.now()
    for c in controllers:
        c.start(start_time)
    return start_time
