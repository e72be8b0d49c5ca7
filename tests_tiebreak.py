#!/usr/bin/env python3
"""
Tests for the rock/paper/scissors tiebreak.

Validates:
1. Pair comparison rules
2. rounds_needed by team size
3. A reaching rounds_needed wins first, then B, then the leader
4. Level scores respin and hit the fallback on the 10th attempt
5. The animated runner lands on scaled slots and its retry timer can be cancelled
"""

import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from battle_engine.lottery import generate_ticket
from battle_engine.reel import _scale
from battle_engine.scheduler import ManualClock, Scheduler
from battle_engine.tiebreak import (
    PAPER, ROCK, SCISSORS, TieBreaker, TieBreakRunner, compare, rps_items,
)
from config.battle_schema import Side

# rock 0-35399, paper 35400-64999, scissors 65000-99999
ROCK_TICKET, PAPER_TICKET, SCISSORS_TICKET = 0, 50000, 99999


def always(ticket):
    return lambda seed, disc: ticket


def by_player(mapping, default=ROCK_TICKET):
    """ticket_fn that looks up the player index at the end of the tag."""
    def fn(seed, disc):
        return mapping.get(disc.rsplit("::player", 1)[1], default)
    return fn


class TestCompare(unittest.TestCase):

    def test_rules(self):
        self.assertEqual(compare(ROCK, SCISSORS), Side.A)
        self.assertEqual(compare(SCISSORS, PAPER), Side.A)
        self.assertEqual(compare(PAPER, ROCK), Side.A)
        self.assertEqual(compare(SCISSORS, ROCK), Side.B)
        self.assertIsNone(compare(ROCK, ROCK))

    def test_unknown_choice(self):
        with self.assertRaises(ValueError):
            compare(ROCK, "lizard")

    def test_weights(self):
        chances = {it.name: it.drop_chance for it in rps_items()}
        self.assertEqual(chances, {ROCK: 35.4, PAPER: 29.6, SCISSORS: 35.0})


class TestTieBreaker(unittest.TestCase):

    def test_rounds_needed(self):
        self.assertEqual(TieBreaker("s", ["a1"], ["b1"], team_size=1).rounds_needed, 1)
        self.assertEqual(TieBreaker("s", ["a1", "a2"], ["b1", "b2"], team_size=2).rounds_needed, 1)
        self.assertEqual(TieBreaker("s", ["a1", "a2", "a3"], ["b1", "b2", "b3"], team_size=3).rounds_needed, 2)

    def test_discriminator(self):
        tb = TieBreaker("s", ["a1"], ["b1"])
        self.assertEqual(tb.discriminator(3, 1), "::tiebreak::attempt3::player1")

    def test_first_attempt_decides(self):
        tb = TieBreaker("s", ["a1"], ["b1"],
                        ticket_fn=by_player({"0": PAPER_TICKET, "1": ROCK_TICKET}))
        result = tb.resolve()
        self.assertEqual(result.winner, Side.A)
        self.assertEqual(result.attempts, 1)
        self.assertFalse(result.fallback)
        self.assertEqual(result.deciding_round.choices, {"a1": PAPER, "b1": ROCK})

    def test_team_needs_two_pairs(self):
        # 3v3: B takes two pairs, A takes one
        tb = TieBreaker("s", ["a1", "a2", "a3"], ["b1", "b2", "b3"], team_size=3,
                        ticket_fn=by_player({
                            "0": ROCK_TICKET, "1": ROCK_TICKET, "2": ROCK_TICKET,
                            "3": PAPER_TICKET, "4": PAPER_TICKET, "5": SCISSORS_TICKET,
                        }))
        result = tb.resolve()
        self.assertEqual(result.winner, Side.B)
        self.assertEqual(result.deciding_round.side_wins, {Side.A: 1, Side.B: 2})

    def test_stalemate_falls_back_on_tenth_attempt(self):
        tb = TieBreaker("s", ["a1", "a2"], ["b1", "b2"], team_size=2, ticket_fn=always(ROCK_TICKET))
        with self.assertLogs("caseforge.tiebreak", level="WARNING"):
            result = tb.resolve()
        self.assertEqual(result.winner, Side.A)
        self.assertTrue(result.fallback)
        self.assertEqual(result.attempts, 10)
        self.assertEqual([r.attempt for r in result.rounds], list(range(10)))

    def test_split_pairs_go_to_a(self):
        # 2v2 at 1-1: A reaches rounds_needed first
        tb = TieBreaker("s", ["a1", "a2"], ["b1", "b2"], team_size=2, max_attempts=1,
                        fallback_side="B",
                        ticket_fn=by_player({"0": ROCK_TICKET, "1": ROCK_TICKET,
                                             "2": SCISSORS_TICKET, "3": PAPER_TICKET}))
        result = tb.resolve()
        self.assertEqual(result.winner, Side.A)
        self.assertEqual(result.attempts, 1)
        self.assertFalse(result.fallback)
        self.assertEqual(result.deciding_round.side_wins, {Side.A: 1, Side.B: 1})

    def test_leader_below_bar_wins(self):
        # 3v3: one win for A, two drawn pairs
        tb = TieBreaker("s", ["a1", "a2", "a3"], ["b1", "b2", "b3"], team_size=3,
                        ticket_fn=by_player({
                            "0": ROCK_TICKET, "1": ROCK_TICKET, "2": ROCK_TICKET,
                            "3": SCISSORS_TICKET, "4": ROCK_TICKET, "5": ROCK_TICKET,
                        }))
        result = tb.resolve()
        self.assertEqual(result.winner, Side.A)
        self.assertEqual(result.attempts, 1)

    def test_level_score_below_bar_respins(self):
        # 3v3 at 1-1 with a drawn pair
        tb = TieBreaker("s", ["a1", "a2", "a3"], ["b1", "b2", "b3"], team_size=3,
                        max_attempts=1, fallback_side="b",
                        ticket_fn=by_player({
                            "0": ROCK_TICKET, "1": ROCK_TICKET, "2": ROCK_TICKET,
                            "3": SCISSORS_TICKET, "4": PAPER_TICKET, "5": ROCK_TICKET,
                        }))
        self.assertEqual(tb.fallback_side, Side.B)
        with self.assertLogs("caseforge.tiebreak", level="WARNING"):
            result = tb.resolve()
        self.assertEqual(result.winner, Side.B)
        self.assertTrue(result.fallback)

    def test_fallback_side_is_normalised(self):
        self.assertEqual(TieBreaker("s", ["a1"], ["b1"], fallback_side=" b ").fallback_side, Side.B)
        self.assertEqual(TieBreaker("s", ["a1"], ["b1"], fallback_side=Side.B).fallback_side, Side.B)
        with self.assertRaises(ValueError):
            TieBreaker("s", ["a1"], ["b1"], fallback_side="c")

    def test_real_tickets_are_deterministic(self):
        a = TieBreaker("seed-1", ["a1"], ["b1"]).resolve()
        b = TieBreaker("seed-1", ["a1"], ["b1"]).resolve()
        self.assertEqual(a.to_dict(), b.to_dict())
        first = a.rounds[0]
        self.assertEqual(first.tickets["a1"], generate_ticket("seed-1", "::tiebreak::attempt0::player0"))

    def test_empty_side_rejected(self):
        with self.assertRaises(ValueError):
            TieBreaker("s", ["a1"], [])


class TestTieBreakRunner(unittest.TestCase):

    def setUp(self):
        self.scheduler = Scheduler(ManualClock())
        self.results = []

    def test_animated_win(self):
        tb = TieBreaker("s", ["a1"], ["b1"],
                        ticket_fn=by_player({"0": ROCK_TICKET, "1": SCISSORS_TICKET}))
        runner = TieBreakRunner(tb, self.scheduler, on_result=self.results.append)
        runner.start()
        self.assertEqual(len(runner.controllers), 2)
        self.assertEqual(self.results, [])
        self.scheduler.run_until_idle()
        self.assertEqual(len(self.results), 1)
        self.assertEqual(self.results[0].winner, Side.A)
        self.assertTrue(all(c.done for c in runner.controllers))

    def test_landing_slot_scales_ticket(self):
        tb = TieBreaker("s", ["a1"], ["b1"],
                        ticket_fn=by_player({"0": 99999, "1": 35399}))
        runner = TieBreakRunner(tb, self.scheduler, on_result=self.results.append)
        runner.start()
        rnd = runner.rounds[0]
        for ctl, player_id in zip(runner.controllers, ["a1", "b1"]):
            choice = next(it for it in tb.items if it.name == rnd.choices[player_id])
            slots = runner.reel.occurrences(choice)
            self.assertEqual(ctl.params.landing_index,
                             slots[_scale(rnd.tickets[player_id], len(slots))])
        # the top of a range lands on the last slot, not wherever modulo puts it
        self.assertEqual(runner.controllers[0].params.landing_index,
                         runner.reel.occurrences(tb.items[2])[-1])

    def test_retry_timer_is_cancellable(self):
        tb = TieBreaker("s", ["a1"], ["b1"], ticket_fn=always(ROCK_TICKET))
        runner = TieBreakRunner(tb, self.scheduler, on_result=self.results.append)
        runner.start()
        self.scheduler.advance(runner.spin_duration + 0.1)
        self.assertIsNotNone(runner._timer)
        runner.cancel()
        self.assertTrue(self.scheduler.run_until_idle())
        self.assertEqual(len(runner.rounds), 1)
        self.assertEqual(self.results, [])

    def test_unanimated_fallback(self):
        tb = TieBreaker("s", ["a1"], ["b1"], ticket_fn=always(PAPER_TICKET))
        attempts = []
        runner = TieBreakRunner(tb, self.scheduler, on_result=self.results.append,
                                on_attempt=attempts.append, animate=False)
        with self.assertLogs("caseforge.tiebreak", level="WARNING"):
            runner.start()
            self.scheduler.run_until_idle()
        self.assertEqual(len(attempts), 10)
        self.assertEqual(len(self.results), 1)
        self.assertTrue(self.results[0].fallback)
        self.assertEqual(self.results[0].winner, Side.A)


if __name__ == "__main__":
    unittest.main()
