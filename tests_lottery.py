#!/usr/bin/env python3
"""
Tests for the ticket lottery.

Validates:
1. Ticket ranges tile [0, 100000) in catalog order (1% = 1,000 tickets)
2. Tickets are a pure function of (seed, discriminator)
3. Out-of-space tickets degrade to the first item with a warning
4. Seed commitment / combination / ticket verification
"""

import hashlib
import hmac
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from battle_engine.errors import EmptyCatalogError
from battle_engine.lottery import (
    TICKET_SPACE, combine_seeds, commit_seed, derive_hash, draw_item, generate_ticket,
    generate_ticket_stream, get_item_ticket_ranges, get_winning_item, hash_to_ticket,
    make_discriminator, new_seed, verify_seed_commitment, verify_ticket,
)
from config.battle_schema import DEMO_ITEMS, ItemDefinition


def _items(*chances):
    return [
        ItemDefinition(id=f"item{i}", name=f"Item {i}", value=i + 1, drop_chance=c)
        for i, c in enumerate(chances)
    ]


class TestTicketRanges(unittest.TestCase):

    def test_ranges_match_chances(self):
        ranges = get_item_ticket_ranges(_items(80, 18, 2))
        self.assertEqual([(r.start, r.end) for r in ranges],
                         [(0, 79999), (80000, 97999), (98000, 99999)])
        self.assertEqual([r.ticket_count for r in ranges], [80000, 18000, 2000])

    def test_ranges_tile_the_space(self):
        items = [ItemDefinition(**it) for it in DEMO_ITEMS]
        ranges = get_item_ticket_ranges(items)
        self.assertEqual(ranges[0].start, 0)
        self.assertEqual(ranges[-1].end, TICKET_SPACE - 1)
        for prev, nxt in zip(ranges, ranges[1:]):
            self.assertEqual(prev.end + 1, nxt.start)
        self.assertEqual(sum(r.ticket_count for r in ranges), TICKET_SPACE)

    def test_every_boundary_maps_to_its_item(self):
        items = _items(80, 18, 2)
        ranges = get_item_ticket_ranges(items)
        self.assertEqual(get_winning_item(0, ranges).id, "item0")
        self.assertEqual(get_winning_item(79999, ranges).id, "item0")
        self.assertEqual(get_winning_item(80000, ranges).id, "item1")
        self.assertEqual(get_winning_item(97999, ranges).id, "item1")
        self.assertEqual(get_winning_item(98000, ranges).id, "item2")
        self.assertEqual(get_winning_item(99999, ranges).id, "item2")

    def test_short_sum_is_absorbed_by_last_item(self):
        with self.assertLogs("caseforge.lottery", level="WARNING"):
            ranges = get_item_ticket_ranges(_items(50, 40))
        self.assertEqual(ranges[1].ticket_count, 50000)
        self.assertEqual(ranges[-1].end, TICKET_SPACE - 1)

    def test_overflow_is_clipped(self):
        with self.assertLogs("caseforge.lottery", level="WARNING"):
            ranges = get_item_ticket_ranges(_items(80, 30, 10))
        self.assertEqual(ranges[1].ticket_count, 20000)
        self.assertEqual(ranges[2].ticket_count, 0)
        self.assertEqual(get_winning_item(99999, ranges).id, "item1")

    def test_zero_chance_item_never_wins(self):
        ranges = get_item_ticket_ranges(_items(50, 0, 50))
        self.assertEqual(ranges[1].ticket_count, 0)
        self.assertEqual(get_winning_item(49999, ranges).id, "item0")
        self.assertEqual(get_winning_item(50000, ranges).id, "item2")

    def test_empty_catalog(self):
        self.assertEqual(get_item_ticket_ranges([]), [])
        with self.assertRaises(EmptyCatalogError):
            get_winning_item(10, [])

    def test_out_of_space_ticket_falls_back_to_first_item(self):
        ranges = get_item_ticket_ranges(_items(80, 18, 2))
        with self.assertLogs("caseforge.lottery", level="WARNING"):
            self.assertEqual(get_winning_item(TICKET_SPACE, ranges).id, "item0")
        with self.assertLogs("caseforge.lottery", level="WARNING"):
            self.assertEqual(get_winning_item(-1, ranges).id, "item0")


class TestTicketGeneration(unittest.TestCase):

    def test_discriminator_format(self):
        self.assertEqual(make_discriminator("player0", "case0"), "::player0::case0")
        self.assertEqual(make_discriminator("tiebreak", "attempt3", "player1"),
                         "::tiebreak::attempt3::player1")

    def test_derive_hash_is_hmac_sha256(self):
        expected = hmac.new(b"seed", b"::player0::case0", hashlib.sha256).hexdigest()
        self.assertEqual(derive_hash("seed", "::player0::case0"), expected)

    def test_hash_to_ticket_bounds(self):
        self.assertEqual(hash_to_ticket("00000000"), 0)
        self.assertEqual(hash_to_ticket("80000000"), 50000)
        self.assertEqual(hash_to_ticket("ffffffff"), TICKET_SPACE - 1)
        self.assertEqual(hash_to_ticket("xx80000000", offset=2), 50000)

    def test_generate_ticket_is_pure(self):
        a = generate_ticket("server-seed", "::player0::case0")
        b = generate_ticket("server-seed", "::player0::case0")
        self.assertEqual(a, b)
        self.assertTrue(0 <= a < TICKET_SPACE)

    def test_discriminator_separates_draws(self):
        tickets = {generate_ticket("server-seed", make_discriminator(f"player{i}")) for i in range(50)}
        self.assertGreater(len(tickets), 45)

    def test_ticket_stream(self):
        stream = generate_ticket_stream("s", "::audit", 5)
        self.assertEqual(len(stream), 5)
        self.assertEqual(stream[3], generate_ticket("s", "::audit::3"))

    def test_draw_item(self):
        items = _items(80, 18, 2)
        ticket, item = draw_item("seed", "::x", items)
        self.assertEqual(item, get_winning_item(ticket, get_item_ticket_ranges(items)))


class TestVerification(unittest.TestCase):

    def test_commitment_roundtrip(self):
        seed = new_seed()
        self.assertEqual(len(seed), 64)
        commitment = commit_seed(seed)
        self.assertTrue(verify_seed_commitment(seed, commitment))
        self.assertTrue(verify_seed_commitment(seed, commitment.upper()))
        self.assertFalse(verify_seed_commitment(seed + "0", commitment))

    def test_verify_ticket(self):
        t = generate_ticket("abc", "::player1::case0")
        self.assertTrue(verify_ticket("abc", "::player1::case0", t))
        self.assertFalse(verify_ticket("abc", "::player1::case0", (t + 1) % TICKET_SPACE))

    def test_combine_seeds(self):
        self.assertEqual(combine_seeds("ff", "0f"), "f0")
        self.assertEqual(combine_seeds("00ff", "ff"), "0000")
        self.assertEqual(combine_seeds("ABCD", ""), "abcd")
        with self.assertRaises(ValueError):
            combine_seeds("", "")


if __name__ == "__main__":
    unittest.main()
