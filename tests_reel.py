#!/usr/bin/env python3
"""
Tests for the reel builder.

Validates:
1. Regular items fill the primary reel in proportion to their odds
2. Premium items never appear on the primary reel
3. Landing selection respects the won item (or substitutes for premium wins)
4. The secondary (gold) sequence always ends on the true item
"""

import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from battle_engine.reel import (
    Landing, ReelSystem, build_reel_system, build_secondary_sequence, pick_primary_landing,
    shuffle_seeded, visible_window,
)
from config.battle_schema import DEMO_ITEMS, ItemDefinition


def _catalog():
    return [
        ItemDefinition(id="rock", name="Rock", value=10, drop_chance=80),
        ItemDefinition(id="scissors", name="Scissors", value=50, drop_chance=18),
        ItemDefinition(id="gold", name="Gold", value=1000, drop_chance=2),
    ]


class TestBuildReel(unittest.TestCase):

    def test_weighted_reel(self):
        reel = build_reel_system(_catalog())
        self.assertEqual(reel.weighted_length, 98)
        self.assertEqual(reel.reel_length, 2)
        self.assertEqual([it.id for it in reel.premium_items], ["gold"])
        self.assertEqual(len(reel.occurrences(_catalog()[0])), 80)
        self.assertEqual(len(reel.occurrences(_catalog()[1])), 18)

    def test_premium_never_on_reel(self):
        items = [ItemDefinition(**it) for it in DEMO_ITEMS]
        reel = build_reel_system(items)
        for it in items:
            if it.is_premium:
                self.assertFalse(reel.on_reel(it), it.name)
                self.assertIn(it, reel.premium_items)
            else:
                self.assertEqual(len(reel.occurrences(it)), round(it.drop_chance))

    def test_custom_threshold(self):
        reel = build_reel_system(_catalog(), premium_threshold=20.0)
        self.assertEqual(reel.weighted_length, 80)
        self.assertEqual({it.id for it in reel.premium_items}, {"scissors", "gold"})

    def test_empty_catalog(self):
        with self.assertLogs("caseforge.reel", level="WARNING"):
            reel = build_reel_system([])
        self.assertEqual(reel.reel_items, [])
        self.assertEqual(pick_primary_landing(reel, _catalog()[0], "s", "::p0"),
                         Landing(item=None, index=0, substituted=True))


class TestLanding(unittest.TestCase):

    def setUp(self):
        self.items = _catalog()
        self.reel = build_reel_system(self.items)

    def test_regular_winner_lands_on_itself(self):
        for n in range(20):
            landing = pick_primary_landing(self.reel, self.items[1], "seed", f"::player{n}::case0")
            self.assertFalse(landing.substituted)
            self.assertEqual(landing.item.id, "scissors")
            self.assertEqual(self.reel.reel_items[landing.index].id, "scissors")

    def test_premium_winner_is_substituted(self):
        for n in range(20):
            landing = pick_primary_landing(self.reel, self.items[2], "seed", f"::player{n}::case0")
            self.assertTrue(landing.substituted)
            self.assertFalse(landing.item.is_premium)
            self.assertEqual(self.reel.reel_items[landing.index], landing.item)

    def test_landing_is_deterministic(self):
        a = pick_primary_landing(self.reel, self.items[2], "seed", "::player0::case0")
        b = pick_primary_landing(self.reel, self.items[2], "seed", "::player0::case0")
        self.assertEqual(a, b)


class TestSecondarySequence(unittest.TestCase):

    def test_ends_on_true_item(self):
        items = [ItemDefinition(**it) for it in DEMO_ITEMS]
        reel = build_reel_system(items)
        won = reel.premium_items[1]
        seq, idx = build_secondary_sequence(reel.premium_items, won, "seed", "::player0::case0")
        self.assertEqual(len(seq), 8 * len(reel.premium_items) + 1)
        self.assertEqual(idx, len(seq) - 1)
        self.assertEqual(seq[idx], won)

    def test_empty_pool_still_reveals(self):
        won = _catalog()[2]
        seq, idx = build_secondary_sequence([], won, "seed", "::p", repeats=3)
        self.assertEqual(seq, [won] * 4)
        self.assertEqual(idx, 3)

    def test_shuffle_is_seeded_permutation(self):
        data = list(range(10))
        a = shuffle_seeded(data, "seed", "::gold::0")
        self.assertEqual(sorted(a), data)
        self.assertEqual(a, shuffle_seeded(data, "seed", "::gold::0"))

    def test_visible_window_wraps(self):
        self.assertEqual(visible_window([0, 1, 2, 3, 4], 0), [3, 4, 0, 1, 2])
        self.assertEqual(visible_window([0, 1, 2, 3, 4], 4, buffer=1), [3, 4, 0])
        self.assertEqual(visible_window([], 3), [])


class TestReelSystem(unittest.TestCase):

    def test_defaults(self):
        reel = ReelSystem()
        self.assertEqual(reel.weighted_length, 0)
        self.assertEqual(reel.reel_length, 1)


if __name__ == "__main__":
    unittest.main()
