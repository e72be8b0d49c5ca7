#!/usr/bin/env python3
"""
Tests for spin geometry, easing, ticks, the controller and the scheduler.
"""

import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from battle_engine.animation import (
    DEFAULT_EASING, AnimationController, CubicBezier, TickSink, calculate_spin_params,
    ease_out_cubic, generate_tick_pattern, start_synchronized,
)
from battle_engine.errors import SynchronizationError
from battle_engine.scheduler import ManualClock, Scheduler


class RecordingSink(TickSink):

    def __init__(self):
        self.ticks = []
        self.landed = []

    def tick(self, source, index):
        self.ticks.append((source, index))

    def land(self, source):
        self.landed.append(source)


class TestSpinParams(unittest.TestCase):

    def test_worked_example(self):
        p = calculate_spin_params(100, 42, 100, 380)
        self.assertEqual(p.center_offset, 140)
        self.assertAlmostEqual(p.scroll_amount, 19060)
        self.assertEqual(p.duration, 5.5)
        self.assertEqual(p.landing_index, 42)

    def test_layout_fallback(self):
        with self.assertLogs("caseforge.animation", level="WARNING"):
            p = calculate_spin_params(10, 3, 0, -5)
        self.assertEqual(p.item_size, 100.0)
        self.assertEqual(p.viewport_size, 380.0)
        self.assertEqual(p, calculate_spin_params(10, 3))

    def test_degenerate_reel(self):
        p = calculate_spin_params(0, -3, 100, 380)
        self.assertEqual(p.reel_length, 1)
        self.assertEqual(p.landing_index, 0)
        self.assertAlmostEqual(p.scroll_amount, 150 - 140)

    def test_minimum_rotation(self):
        p = calculate_spin_params(10, 0, 100, 380, base_rotations=0.2)
        self.assertEqual(p.base_rotations, 1.0)
        self.assertAlmostEqual(p.scroll_amount, 1000 - 140)


class TestEasing(unittest.TestCase):

    def test_endpoints(self):
        for ease in (DEFAULT_EASING, ease_out_cubic):
            self.assertEqual(ease(0.0), 0.0)
            self.assertEqual(ease(1.0), 1.0)
            self.assertEqual(ease(-1.0), 0.0)
            self.assertEqual(ease(2.0), 1.0)

    def test_monotonic_and_front_loaded(self):
        for ease in (DEFAULT_EASING, ease_out_cubic):
            values = [ease(i / 200) for i in range(201)]
            for a, b in zip(values, values[1:]):
                self.assertLessEqual(a, b + 1e-9)
            self.assertGreater(ease(0.5), 0.5)

    def test_linear_bezier(self):
        linear = CubicBezier(0.0, 0.0, 1.0, 1.0)
        for p in (0.1, 0.25, 0.5, 0.9):
            self.assertAlmostEqual(linear(p), p, places=5)

    def test_invalid_control_points(self):
        with self.assertRaises(ValueError):
            CubicBezier(1.5, 0.0, 0.5, 1.0)


class TestTicks(unittest.TestCase):

    def test_silent_tail(self):
        ticks = generate_tick_pattern(5.5)
        self.assertGreater(len(ticks), 10)
        self.assertTrue(all(t.delay < 5.5 * 0.95 for t in ticks))

    def test_ticks_slow_down(self):
        ticks = generate_tick_pattern(5.5)
        self.assertAlmostEqual(ticks[0].interval, 0.03)
        self.assertGreater(ticks[-1].interval, ticks[0].interval)
        for a, b in zip(ticks, ticks[1:]):
            self.assertLessEqual(a.interval, b.interval)

    def test_zero_duration(self):
        self.assertEqual(generate_tick_pattern(0), ())


class TestController(unittest.TestCase):

    def setUp(self):
        self.scheduler = Scheduler(ManualClock())
        self.sink = RecordingSink()
        self.completed = []

    def _controller(self, name="p1", duration=5.5):
        params = calculate_spin_params(10, 4, 100, 380, duration=duration)
        return AnimationController(self.scheduler, params, name=name, tick_sink=self.sink,
                                   on_complete=self.completed.append)

    def test_runs_to_landing(self):
        ctl = self._controller()
        ctl.start()
        self.scheduler.advance(2.0)
        self.assertTrue(ctl.running)
        self.assertGreater(ctl.timeline.position, 0)
        self.assertLess(ctl.timeline.position, ctl.params.scroll_amount)

        self.scheduler.advance(4.0)
        self.assertTrue(ctl.done)
        self.assertEqual(ctl.timeline.position, ctl.params.scroll_amount)
        self.assertEqual(self.completed, [ctl])
        self.assertEqual(self.sink.landed, ["p1"])
        self.assertGreater(len(self.sink.ticks), 0)
        self.assertTrue(self.scheduler.idle)

    def test_cancel_suppresses_completion(self):
        ctl = self._controller()
        ctl.start()
        self.scheduler.advance(1.0)
        ctl.cancel()
        ctl.cancel()
        self.scheduler.advance(10.0)
        self.assertTrue(ctl.cancelled)
        self.assertEqual(self.completed, [])
        self.assertEqual(self.sink.landed, [])
        self.assertTrue(self.scheduler.idle)

    def test_cannot_start_twice(self):
        ctl = self._controller()
        ctl.start()
        with self.assertRaises(RuntimeError):
            ctl.start()

    def test_synchronized_start(self):
        ctls = [self._controller(f"p{i}") for i in range(4)]
        self.scheduler.advance(0.5)
        t0 = start_synchronized(ctls, self.scheduler)
        self.assertEqual({c.timeline.start_time for c in ctls}, {t0})
        self.scheduler.advance(6.0)
        self.assertEqual(len(self.completed), 4)

    def test_synchronized_rejects_mixed_durations(self):
        ctls = [self._controller("a", 5.5), self._controller("b", 2.5)]
        with self.assertRaises(SynchronizationError):
            start_synchronized(ctls, self.scheduler)
        self.assertFalse(any(c.running for c in ctls))


class TestScheduler(unittest.TestCase):

    def test_timers_fire_in_order_and_cancel(self):
        scheduler = Scheduler(ManualClock())
        fired = []
        scheduler.call_later(1.0, fired.append, "b")
        scheduler.call_later(0.5, fired.append, "a")
        dropped = scheduler.call_later(0.75, fired.append, "x")
        dropped.cancel()
        self.assertEqual(scheduler.pending, 2)
        self.assertTrue(scheduler.run_until_idle())
        self.assertEqual(fired, ["a", "b"])

    def test_run_until_idle_cap(self):
        scheduler = Scheduler(ManualClock())
        scheduler.on_frame(lambda now: None)
        with self.assertLogs("caseforge.scheduler", level="WARNING"):
            self.assertFalse(scheduler.run_until_idle(max_seconds=0.5))

    def test_manual_clock_rejects_rewind(self):
        with self.assertRaises(ValueError):
            ManualClock().advance(-1)


if __name__ == "__main__":
    unittest.main()
