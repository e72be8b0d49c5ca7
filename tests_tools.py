#!/usr/bin/env python3
"""
Tests for the CLI, the drop-rate auditor, configuration and the descriptor schema.
"""

import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from pydantic import ValidationError

from battle_engine.lottery import commit_seed, generate_ticket
from config.battle_schema import (
    DEMO_ITEMS, BattleDescriptor, ItemDefinition, PlayerEntry, demo_descriptor, validate_descriptor,
)
from config.settings import BattleConfig, configure_logging
from tools import battle_cli
from tools.drop_rate_audit import DropRateAuditor, chi_squared_critical, exact_coverage


class TestDropRateAudit(unittest.TestCase):

    def test_demo_catalog_passes(self):
        items = [ItemDefinition(**it) for it in DEMO_ITEMS]
        result = DropRateAuditor(seed="unit").audit(items, n_draws=20_000)
        self.assertTrue(result.coverage_ok)
        self.assertEqual(result.uncovered_tickets, 0)
        self.assertAlmostEqual(sum(r.measured_pct for r in result.rates), 100.0, places=6)
        self.assertAlmostEqual(result.premium_advertised_pct, 2.0)
        self.assertEqual(result.reel_slots, 98)
        self.assertIn("Drop Rate Audit", result.summary())
        self.assertEqual(json.loads(result.to_json())["n_draws"], 20_000)

    def test_critical_value(self):
        # tabulated: df=5 -> 15.086, df=99 -> 134.642 at alpha 0.01
        self.assertAlmostEqual(chi_squared_critical(5), 15.086, delta=0.1)
        self.assertAlmostEqual(chi_squared_critical(99), 134.642, delta=0.5)
        self.assertEqual(chi_squared_critical(0), 0.0)

    def test_exact_coverage_detects_gaps(self):
        from battle_engine.lottery import TicketRange
        item = ItemDefinition(id="x", name="X", drop_chance=50)
        self.assertEqual(exact_coverage([TicketRange(item, 0, 49999)]), 50000)


class TestSchema(unittest.TestCase):

    def test_aliases(self):
        battle = BattleDescriptor.model_validate({
            "id": "b1", "seed": "s", "teamSize": 2, "caseIndex": 1,
            "items": [{"id": "i", "name": "I", "chance": 100}],
            "players": [{"id": "p", "predeterminedTicket": 5}],
        })
        self.assertEqual(battle.battle_id, "b1")
        self.assertEqual(battle.team_size, 2)
        self.assertEqual(battle.case_index, 1)
        self.assertEqual(battle.items[0].drop_chance, 100)
        self.assertEqual(battle.players[0].ticket, 5)

    def test_rejects_bad_input(self):
        with self.assertRaises(ValidationError):
            BattleDescriptor.model_validate({"id": "b", "seed": "", "items": []})
        with self.assertRaises(ValidationError):
            ItemDefinition(id="i", name="I", drop_chance=101)
        with self.assertRaises(ValidationError):
            BattleDescriptor.model_validate({
                "id": "b", "seed": "s", "items": DEMO_ITEMS,
                "players": [{"id": "p"}, {"id": "p"}],
            })

    def test_item_is_immutable(self):
        item = ItemDefinition(id="i", name="I", drop_chance=10)
        with self.assertRaises(ValidationError):
            item.value = 5

    def test_premium_flag(self):
        self.assertTrue(ItemDefinition(id="g", name="G", drop_chance=2.0).is_premium)
        self.assertFalse(ItemDefinition(id="r", name="R", drop_chance=2.01).is_premium)

    def test_validate_descriptor_warnings(self):
        self.assertEqual(validate_descriptor(demo_descriptor(team_size=2)), [])
        battle = BattleDescriptor.model_validate({
            "id": "b", "seed": "s",
            "items": [{"id": "i", "name": "I", "chance": 1}, {"id": "i", "name": "J", "chance": 1}],
            "players": [{"id": "a1"}, {"id": "a2"}, {"id": "b1", "team": "B"}],
        })
        warnings = " | ".join(validate_descriptor(battle))
        self.assertIn("sum to", warnings)
        self.assertIn("Duplicate item ids", warnings)
        self.assertIn("no regular items", warnings)
        self.assertIn("Unbalanced teams", warnings)
        self.assertIn("team_size", warnings)

    def test_cases_and_per_case_tickets(self):
        battle = BattleDescriptor.model_validate({
            "id": "b", "seed": "s",
            "cases": [{"items": DEMO_ITEMS}, {"id": "c2", "items": DEMO_ITEMS}],
            "players": [{"id": "p", "predeterminedTickets": [7, None]}, {"id": "q", "ticket": 3}],
        })
        self.assertEqual(battle.case_count, 2)
        self.assertEqual(len(battle.case_catalogs()), 2)
        self.assertEqual(battle.players[0].ticket_for(0), 7)
        self.assertIsNone(battle.players[0].ticket_for(1))
        self.assertEqual(battle.players[1].ticket_for(0), 3)
        self.assertIsNone(battle.players[1].ticket_for(1))
        self.assertEqual(demo_descriptor(case_count=3).case_count, 3)
        self.assertEqual(demo_descriptor().case_count, 1)

    def test_rejects_missing_or_empty_cases(self):
        with self.assertRaises(ValidationError):
            BattleDescriptor.model_validate({"id": "b", "seed": "s"})
        with self.assertRaises(ValidationError):
            BattleDescriptor.model_validate({"id": "b", "seed": "s", "cases": [{"items": []}]})
        with self.assertRaises(ValidationError):
            PlayerEntry(id="p", tickets=[100_000])

    def test_multi_case_warnings(self):
        battle = BattleDescriptor.model_validate({
            "id": "b", "seed": "s", "items": DEMO_ITEMS,
            "cases": [{"items": DEMO_ITEMS}, {"items": [{"id": "i", "name": "I", "chance": 50}]}],
            "players": [{"id": "p", "tickets": [1, 2, 3]}],
        })
        warnings = " | ".join(validate_descriptor(battle))
        self.assertIn("Case 1: Drop chances sum to", warnings)
        self.assertNotIn("Case 0:", warnings)
        self.assertIn("items is ignored", warnings)
        self.assertIn("3 tickets for 2 case(s)", warnings)


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        self.assertEqual(BattleConfig.TICKET_SPACE, 100_000)
        self.assertEqual(BattleConfig.TIEBREAK_MAX_ATTEMPTS, 10)
        self.assertEqual(sum(BattleConfig.RPS_WEIGHTS.values()), 100.0)

    def test_snapshot_is_plain(self):
        snap = BattleConfig.snapshot()
        self.assertEqual(snap["PREMIUM_THRESHOLD"], BattleConfig.PREMIUM_THRESHOLD)
        json.dumps(snap)

    def test_configure_logging_is_idempotent(self):
        logger = configure_logging("DEBUG")
        handlers = len(logger.handlers)
        configure_logging("WARNING")
        self.assertEqual(len(logger.handlers), handlers)
        self.assertEqual(logger.level, 30)


class TestCli(unittest.TestCase):

    def _run(self, *argv):
        with patch("builtins.print") as printed:
            code = battle_cli.main(list(argv))
        return code, "\n".join(str(c.args[0]) for c in printed.call_args_list if c.args)

    def test_simulate_dump_audit(self):
        code, out = self._run("simulate", "--seed", "cli-seed", "--fast", "--dump-audit")
        self.assertEqual(code, 0)
        audit = json.loads(out)
        self.assertEqual(audit["seed_commitment"], commit_seed("cli-seed"))
        self.assertEqual(audit["battle_id"], "demo-1v1")

    def test_simulate_several_cases(self):
        code, out = self._run("simulate", "--seed", "cli-seed", "--cases", "3", "--fast", "--dump-audit")
        self.assertEqual(code, 0)
        audit = json.loads(out)
        self.assertEqual(audit["case_count"], 3)
        self.assertEqual(len(audit["draws"]), 6)
        self.assertEqual(sorted({d["case_index"] for d in audit["draws"]}), [0, 1, 2])
        self.assertEqual(audit["states"].count("spinning"), 3)

    def test_verify(self):
        ticket = generate_ticket("s", "::player0::case0")
        code, _ = self._run("verify", "--seed", "s", "--discriminator", "::player0::case0",
                            "--ticket", str(ticket), "--commitment", commit_seed("s"))
        self.assertEqual(code, 0)
        code, _ = self._run("verify", "--seed", "s", "--discriminator", "::player0::case0",
                            "--ticket", str((ticket + 1) % 100_000))
        self.assertEqual(code, 1)

    def test_ranges_and_descriptor_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            items_path = Path(tmp) / "items.json"
            items_path.write_text(json.dumps(DEMO_ITEMS))
            code, _ = self._run("ranges", "--items", str(items_path))
            self.assertEqual(code, 0)

            desc_path = Path(tmp) / "battle.json"
            desc_path.write_text(demo_descriptor(seed="file").model_dump_json())
            code, out = self._run("simulate", "--descriptor", str(desc_path), "--dump-audit")
            self.assertEqual(code, 0)
            self.assertEqual(json.loads(out)["seed"], "file")

    def test_audit_json(self):
        code, out = self._run("audit", "--draws", "5000", "--json")
        self.assertEqual(json.loads(out)["n_draws"], 5000)
        self.assertIn(code, (0, 1))


if __name__ == "__main__":
    unittest.main()
