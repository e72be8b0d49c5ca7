#!/usr/bin/env python3
"""
Tests for the battle round state machine.

Validates:
1. Happy path IDLE -> ... -> COMPLETE with one settle call
2. Premium wins go through the secondary reveal before SETTLING
3. Settlement failures and host callback failures are non-fatal
4. Exact ties run the tiebreak and report it in the settle payload
5. Cancellation stops everything without settling
6. Multi-case battles sum totals and settle once, with one tie check
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from battle_engine.errors import InvalidTransition
from battle_engine.lottery import commit_seed, generate_ticket
from battle_engine.round import BattleRound, RoundState, resolve_cases, resolve_outcomes, run_battle
from battle_engine.scheduler import ManualClock, Scheduler
from config.battle_schema import BattleDescriptor, Side, demo_descriptor
from config.settings import BattleConfig

# rock 0-79999, scissors 80000-97999, gold 98000-99999
ITEMS = [
    {"id": "rock", "name": "Rock", "value": 10, "dropChance": 80},
    {"id": "scissors", "name": "Scissors", "value": 50, "dropChance": 18},
    {"id": "gold", "name": "Gold", "value": 1000, "dropChance": 2},
]


def _battle(*tickets, team_size=1, seed="round-seed"):
    players = []
    for i, t in enumerate(tickets):
        side = "A" if i < len(tickets) / 2 else "B"
        players.append({"id": f"p{i}", "team": side, "predeterminedTicketOrIndex": t})
    return BattleDescriptor.model_validate({
        "battleId": "battle-1", "seed": seed, "items": ITEMS,
        "players": players, "teamSize": team_size,
    })


class TestRoundFlow(unittest.TestCase):

    def setUp(self):
        self.scheduler = Scheduler(ManualClock())
        self.settle = MagicMock(return_value={"ok": True})
        self.spin_complete = MagicMock()
        self.battle_complete = MagicMock()

    def _round(self, battle, **kwargs):
        return BattleRound(battle, self.scheduler, settle=self.settle,
                           on_spin_complete=self.spin_complete,
                           on_battle_complete=self.battle_complete, **kwargs)

    def test_happy_path(self):
        round_ = self._round(_battle(0, 85000))
        round_.start()
        self.assertEqual(round_.state, RoundState.COUNTDOWN)
        self.scheduler.advance(BattleConfig.COUNTDOWN_SECONDS + 0.1)
        self.assertEqual(round_.state, RoundState.SPINNING)
        self.assertEqual({c.timeline.start_time for c in round_.primary}, {round_.primary[0].timeline.start_time})

        self.assertTrue(self.scheduler.run_until_idle())
        self.assertEqual(round_.state, RoundState.COMPLETE)
        self.assertEqual(round_.result.states, ["idle", "countdown", "spinning", "settling", "complete"])
        self.assertEqual(round_.result.team_totals, {Side.A: 10, Side.B: 50})
        self.assertEqual(round_.result.winner, Side.B)
        self.settle.assert_called_once_with("battle-1", {})
        self.assertEqual(round_.result.settlement_response, {"ok": True})
        self.spin_complete.assert_called_once_with()
        self.battle_complete.assert_called_once_with(round_.result)

    def test_start_twice_is_illegal(self):
        round_ = self._round(_battle(0, 85000))
        round_.start()
        with self.assertRaises(InvalidTransition):
            round_.start()
        with self.assertRaises(ValueError):
            round_.start()

    def test_premium_goes_through_secondary_reveal(self):
        seen_at_settling = []

        def on_state(prev, new):
            if new == RoundState.SETTLING:
                seen_at_settling.append(len(round_.secondary))

        round_ = self._round(_battle(99000, 85000), on_state_change=on_state)
        gold = round_.result.outcome_for("p0")
        self.assertTrue(gold.via_secondary_reveal)
        self.assertEqual(gold.won_item.id, "gold")
        self.assertNotEqual(gold.landed_item.id, "gold")
        self.assertEqual(gold.secondary_sequence[gold.secondary_landing_index].id, "gold")
        self.assertFalse(round_.result.outcome_for("p1").via_secondary_reveal)

        round_.start()
        self.scheduler.run_until_idle()
        self.assertEqual(seen_at_settling, [1])
        self.assertEqual(round_.result.states,
                         ["idle", "countdown", "spinning", "secondary_reveal", "settling", "complete"])
        self.assertTrue(round_.secondary[0].done)
        self.assertFalse(round_.result.secondary_timed_out)
        self.assertEqual(round_.result.winner, Side.A)
        self.settle.assert_called_once()

    def test_secondary_timeout_still_settles(self):
        with patch.object(BattleConfig, "SECONDARY_SPIN_DURATION", 30.0):
            round_ = self._round(_battle(99000, 85000))
            with self.assertLogs("caseforge.round", level="WARNING"):
                round_.start()
                self.scheduler.run_until_idle()
        self.assertTrue(round_.result.secondary_timed_out)
        self.assertTrue(round_.secondary[0].cancelled)
        self.assertEqual(round_.state, RoundState.COMPLETE)
        self.settle.assert_called_once()

    def test_settlement_failure_is_non_fatal(self):
        self.settle.side_effect = RuntimeError("boom")
        round_ = self._round(_battle(0, 85000))
        with self.assertLogs("caseforge.round", level="WARNING"):
            round_.start()
            self.scheduler.run_until_idle()
        self.assertEqual(round_.state, RoundState.COMPLETE)
        self.assertEqual(round_.result.settlement_error, "boom")
        self.assertEqual(round_.result.winner, Side.B)
        self.battle_complete.assert_called_once()

    def test_host_callback_failure_is_non_fatal(self):
        self.spin_complete.side_effect = ValueError("ui gone")
        round_ = self._round(_battle(0, 85000))
        with self.assertLogs("caseforge.round", level="WARNING"):
            round_.start()
            self.scheduler.run_until_idle()
        self.assertEqual(round_.state, RoundState.COMPLETE)
        self.settle.assert_called_once()

    def test_tie_runs_tiebreak(self):
        round_ = self._round(_battle(0, 100))
        round_.start()
        self.scheduler.run_until_idle()
        result = round_.result
        self.assertEqual(round_.state, RoundState.COMPLETE)
        self.assertTrue(result.is_tie)
        self.assertIsNotNone(result.tiebreak)
        self.assertEqual(result.winner, result.tiebreak.winner)
        self.assertEqual(result.states[3:],
                         ["settling", "tie", "tiebreak", "settling", "complete"])
        self.settle.assert_called_once_with("battle-1", {"tiebreakWinner": result.winner.value})
        self.spin_complete.assert_called_once()
        self.battle_complete.assert_called_once()

    def test_cancel_during_spin(self):
        round_ = self._round(_battle(0, 85000))
        round_.start()
        self.scheduler.advance(BattleConfig.COUNTDOWN_SECONDS + 1.0)
        round_.cancel()
        round_.cancel()
        self.assertTrue(self.scheduler.run_until_idle())
        self.assertEqual(round_.state, RoundState.CANCELLED)
        self.assertTrue(all(c.cancelled for c in round_.primary))
        self.settle.assert_not_called()
        self.battle_complete.assert_not_called()

    def test_cancel_during_tiebreak(self):
        round_ = self._round(_battle(0, 100))
        round_.start()
        self.scheduler.advance(BattleConfig.COUNTDOWN_SECONDS + BattleConfig.PRIMARY_SPIN_DURATION + 1.0)
        self.assertEqual(round_.state, RoundState.TIEBREAK)
        round_.cancel()
        self.assertTrue(self.scheduler.run_until_idle())
        self.assertTrue(round_.tiebreak_runner.cancelled)
        self.settle.assert_not_called()


def _cases_battle(*case_tickets, seed="round-seed"):
    """One case per tuple; each tuple gives (A ticket, B ticket)."""
    return BattleDescriptor.model_validate({
        "battleId": "battle-multi", "seed": seed,
        "cases": [{"id": f"case{n}", "items": ITEMS} for n in range(len(case_tickets))],
        "players": [
            {"id": "p0", "team": "A", "predeterminedTickets": [t[0] for t in case_tickets]},
            {"id": "p1", "team": "B", "predeterminedTickets": [t[1] for t in case_tickets]},
        ],
    })


class TestMultiCase(unittest.TestCase):

    def setUp(self):
        self.scheduler = Scheduler(ManualClock())
        self.settle = MagicMock(return_value={"ok": True})
        self.case_revealed = MagicMock()
        self.battle_complete = MagicMock()

    def _round(self, battle):
        return BattleRound(battle, self.scheduler, settle=self.settle,
                           on_case_revealed=self.case_revealed,
                           on_battle_complete=self.battle_complete)

    def test_cases_open_in_order_and_totals_sum(self):
        # rock 10 + scissors 50 for A, scissors 50 + scissors 50 for B
        round_ = self._round(_cases_battle((0, 85000), (85000, 85000)))
        self.assertEqual([o.case_index for o in round_.result.outcomes], [0, 0, 1, 1])
        self.assertEqual(round_.result.outcome_for("p0", 1).discriminator, "::player0::case1")

        round_.start()
        self.scheduler.advance(BattleConfig.COUNTDOWN_SECONDS + BattleConfig.PRIMARY_SPIN_DURATION + 0.2)
        self.assertEqual(round_.current_case, 0)
        self.assertEqual(self.case_revealed.call_count, 1)
        self.settle.assert_not_called()

        self.assertTrue(self.scheduler.run_until_idle())
        self.assertEqual(round_.result.states,
                         ["idle", "countdown", "spinning", "spinning", "settling", "complete"])
        self.assertEqual([c.args[0] for c in self.case_revealed.call_args_list], [0, 1])
        self.assertEqual(round_.result.case_totals(),
                         [{Side.A: 10, Side.B: 50}, {Side.A: 50, Side.B: 50}])
        self.assertEqual(round_.result.team_totals, {Side.A: 60, Side.B: 100})
        self.assertEqual(round_.result.winner, Side.B)
        self.settle.assert_called_once_with("battle-multi", {})
        self.battle_complete.assert_called_once_with(round_.result)

    def test_split_cases_with_level_totals_go_to_tiebreak(self):
        # A takes case 1, B takes case 2, both end on 60
        round_ = self._round(_cases_battle((0, 85000), (85000, 0)))
        round_.start()
        self.assertTrue(self.scheduler.run_until_idle())
        result = round_.result
        self.assertEqual(result.case_totals(),
                         [{Side.A: 10, Side.B: 50}, {Side.A: 50, Side.B: 10}])
        self.assertEqual(result.team_totals, {Side.A: 60, Side.B: 60})
        self.assertIsNotNone(result.tiebreak)
        self.assertEqual(result.states.count("tie"), 1)
        self.assertEqual(result.states.count("complete"), 1)
        self.settle.assert_called_once_with("battle-multi", {"tiebreakWinner": result.winner.value})
        self.battle_complete.assert_called_once()

    def test_gold_in_first_case_waits_longer_before_next(self):
        round_ = self._round(_cases_battle((99000, 0), (0, 0)))
        round_.start()
        revealed_at = []
        self.case_revealed.side_effect = lambda n, outcomes: revealed_at.append(self.scheduler.now())
        self.scheduler.run_until_idle()
        self.assertEqual(round_.result.states[:5],
                         ["idle", "countdown", "spinning", "secondary_reveal", "spinning"])
        self.assertTrue(round_.result.outcome_for("p0", 0).via_secondary_reveal)
        self.assertFalse(round_.result.secondary_timed_out)
        self.assertEqual(len(revealed_at), 2)
        gap = revealed_at[1] - revealed_at[0]
        self.assertGreater(gap, BattleConfig.CASE_REVEAL_DELAY + BattleConfig.PRIMARY_SPIN_DURATION + 0.25)
        self.settle.assert_called_once()

    def test_cancel_between_cases(self):
        round_ = self._round(_cases_battle((0, 85000), (85000, 0)))
        round_.start()
        self.scheduler.advance(BattleConfig.COUNTDOWN_SECONDS + BattleConfig.PRIMARY_SPIN_DURATION + 0.2)
        round_.cancel()
        self.assertTrue(self.scheduler.run_until_idle())
        self.assertEqual(round_.result.states[-1], "cancelled")
        self.assertNotIn("settling", round_.result.states)
        self.settle.assert_not_called()

    def test_single_ticket_only_covers_first_case(self):
        battle = BattleDescriptor.model_validate({
            "battleId": "b", "seed": "tail",
            "cases": [{"items": ITEMS}, {"items": ITEMS}],
            "players": [{"id": "p0", "ticket": 0}, {"id": "p1", "team": "B"}],
        })
        cases = resolve_cases(battle)
        self.assertEqual(cases[0][0].ticket, 0)
        self.assertEqual(cases[1][0].ticket, generate_ticket("tail", "::player0::case1"))


class TestResolution(unittest.TestCase):

    def test_missing_ticket_is_derived(self):
        battle = _battle(None, None, seed="derive")
        outcomes = resolve_outcomes(battle)
        self.assertEqual(outcomes[0].discriminator, "::player0::case0")
        self.assertEqual(outcomes[1].ticket, generate_ticket("derive", "::player1::case0"))

    def test_case_index_changes_draws(self):
        battle = _battle(None, None, seed="derive")
        later = battle.model_copy(update={"case_index": 3})
        self.assertEqual(resolve_outcomes(later)[0].discriminator, "::player0::case3")

    def test_resolution_is_deterministic(self):
        battle = demo_descriptor(seed="same", team_size=3)
        a = [o.to_dict() for o in resolve_outcomes(battle)]
        b = [o.to_dict() for o in resolve_outcomes(battle)]
        self.assertEqual(a, b)

    def test_run_battle_and_audit(self):
        battle = demo_descriptor(seed="audit-me", team_size=2)
        result = run_battle(battle)
        audit = result.audit()
        self.assertEqual(audit["seed_commitment"], commit_seed("audit-me"))
        self.assertEqual(len(audit["draws"]), 4)
        self.assertEqual(audit["states"][-1], "complete")
        self.assertIn(audit["winner"], ("A", "B"))
        self.assertIn('"battle_id": "demo-2v2"', result.to_audit_json())

    def test_single_side_has_no_winner(self):
        battle = BattleDescriptor.model_validate({
            "battleId": "solo", "seed": "s", "items": ITEMS,
            "players": [{"id": "p0", "team": "A"}, {"id": "p1", "team": "A"}],
        })
        result = run_battle(battle)
        self.assertIsNone(result.winner)
        self.assertIsNone(result.tiebreak)
        self.assertEqual(result.settlement_payload, {})


if __name__ == "__main__":
    unittest.main()
