"""
CASEFORGE - Ticket Lottery

Seed + discriminator -> ticket -> winning item. Pure functions, no I/O,
no wall-clock entropy: the same inputs always produce the same ticket.

Ticket derivation (canonical, reproducible in any language):
    digest = HMAC-SHA256(key=seed, msg=discriminator)     # UTF-8 both
    u      = int(digest[:8], 16)                           # 32-bit unsigned
    ticket = (u * TICKET_SPACE) >> 32                      # floor(u / 2^32 * 100000)

Ticket ranges:
    1% drop chance == 1,000 tickets. Items are laid out in catalog order,
    each range inclusive [start, end]. The last item absorbs the rounding
    slack so the ranges cover [0, TICKET_SPACE) exactly.

Usage:
    from battle_engine.lottery import generate_ticket, get_item_ticket_ranges, get_winning_item
    ticket = generate_ticket(battle.seed, make_discriminator("player0", "case0"))
    ranges = get_item_ticket_ranges(battle.case_catalogs()[0])
    item = get_winning_item(ticket, ranges)
"""

from __future__ import annotations

import bisect
import hashlib
import hmac
import logging
import os
from dataclasses import dataclass
from typing import Sequence

from battle_engine.errors import EmptyCatalogError
from config.battle_schema import ItemDefinition
from config.settings import BattleConfig

logger = logging.getLogger("caseforge.lottery")

TICKET_SPACE = BattleConfig.TICKET_SPACE


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TicketRange:
    """Inclusive slice of the ticket space owned by one item."""
    item: ItemDefinition
    start: int
    end: int

    @property
    def ticket_count(self) -> int:
        return self.end - self.start + 1

    def contains(self, ticket: int) -> bool:
        return self.start <= ticket <= self.end

    def to_dict(self) -> dict:
        return {
            "item_id": self.item.id,
            "item_name": self.item.name,
            "drop_chance": self.item.drop_chance,
            "start": self.start,
            "end": self.end,
            "ticket_count": self.ticket_count,
        }


# ═══════════════════════════════════════════════════════════════
# Core RNG
# ═══════════════════════════════════════════════════════════════

def make_discriminator(*parts) -> str:
    """Build a draw tag such as ``::player0::case0`` from its parts."""
    return "".join(f"::{p}" for p in parts)


def derive_hash(seed: str, discriminator: str) -> str:
    """HMAC-SHA256(seed, discriminator) as lowercase hex."""
    return hmac.new(
        seed.encode("utf-8"),
        discriminator.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def hash_to_ticket(hex_hash: str, offset: int = 0) -> int:
    """Map 8 hex characters of a digest onto [0, TICKET_SPACE)."""
    segment = int(hex_hash[offset:offset + 8], 16)
    return (segment * TICKET_SPACE) >> 32


def generate_ticket(seed: str, discriminator: str) -> int:
    """Draw the ticket for one (seed, discriminator) pair."""
    ticket = hash_to_ticket(derive_hash(seed, discriminator))
    logger.debug(f"ticket {ticket} <- seed={seed[:8]}... disc={discriminator!r}")
    return ticket


def generate_ticket_stream(seed: str, discriminator: str, count: int) -> list[int]:
    """``count`` independent tickets under one tag (``<tag>::0``, ``<tag>::1``, ...)."""
    return [generate_ticket(seed, f"{discriminator}::{n}") for n in range(count)]


# ═══════════════════════════════════════════════════════════════
# Ticket Ranges
# ═══════════════════════════════════════════════════════════════

def get_item_ticket_ranges(items: Sequence[ItemDefinition]) -> list[TicketRange]:
    """Allocate the ticket space across ``items`` in catalog order.

    Returns an empty list for an empty catalog. Chance totals outside
    100 ± tolerance are logged but still laid out; the last item takes
    whatever is left (or gives up whatever overflows) so coverage stays
    exact.
    """
    if not items:
        return []

    total_chance = sum(it.drop_chance for it in items)
    if abs(total_chance - 100.0) > BattleConfig.CHANCE_SUM_TOLERANCE:
        logger.warning(
            f"Drop chances sum to {total_chance:.3f}% across {len(items)} items; "
            f"last item absorbs the difference"
        )

    ranges = []
    cursor = 0
    last = len(items) - 1
    for idx, item in enumerate(items):
        if idx == last:
            count = TICKET_SPACE - cursor
        else:
            count = round(item.drop_chance * TICKET_SPACE / 100)
            # never spill past the space; later items keep empty ranges
            count = max(0, min(count, TICKET_SPACE - cursor))
        ranges.append(TicketRange(item=item, start=cursor, end=cursor + count - 1))
        cursor += count

    for r in ranges:
        logger.debug(
            f"  {r.item.name}: {r.start}-{r.end} ({r.item.drop_chance}% = {r.ticket_count} tickets)"
        )
    return ranges


def get_winning_item(ticket: int, ranges: Sequence[TicketRange]) -> ItemDefinition:
    """Map a ticket onto its item.

    A ticket that falls in no range (out-of-space input or a degenerate
    catalog) degrades to the first catalog item with a warning. ``ranges``
    must not be empty: there is no item to fall back to, and descriptors
    never reach here with an empty catalog.
    """
    if not ranges:
        raise EmptyCatalogError("get_winning_item needs at least one ticket range")

    # ranges are sorted by start; empty ranges (end < start) never match
    starts = [r.start for r in ranges]
    pos = bisect.bisect_right(starts, ticket) - 1
    while pos >= 0:
        candidate = ranges[pos]
        if candidate.contains(ticket):
            return candidate.item
        if candidate.ticket_count > 0:
            break
        pos -= 1

    logger.warning(
        f"Ticket {ticket} outside every range; falling back to {ranges[0].item.name}"
    )
    return ranges[0].item


def draw_item(seed: str, discriminator: str,
              items: Sequence[ItemDefinition]) -> tuple[int, ItemDefinition]:
    """Ticket + winning item for one draw over ``items``."""
    ticket = generate_ticket(seed, discriminator)
    return ticket, get_winning_item(ticket, get_item_ticket_ranges(items))


# ═══════════════════════════════════════════════════════════════
# Verification
# ═══════════════════════════════════════════════════════════════

def new_seed() -> str:
    """Fresh 256-bit server seed as hex."""
    return os.urandom(32).hex()


def combine_seeds(*hex_seeds: str) -> str:
    """XOR hex seeds together (e.g. a server seed with a public block hash).

    Empty parts are skipped; shorter parts are left-padded with zeros.
    """
    parts = [s.lower() for s in hex_seeds if s]
    if not parts:
        raise ValueError("combine_seeds needs at least one non-empty seed")
    width = max(len(s) for s in parts)
    acc = 0
    for s in parts:
        acc ^= int(s, 16)
    return format(acc, f"0{width}x")


def commit_seed(seed: str) -> str:
    """SHA-256 commitment published before the battle starts."""
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def verify_seed_commitment(seed: str, commitment: str) -> bool:
    return hmac.compare_digest(commit_seed(seed), commitment.lower())


def verify_ticket(seed: str, discriminator: str, ticket: int) -> bool:
    """Recompute a draw from the revealed seed and compare."""
    return generate_ticket(seed, discriminator) == ticket


VERIFICATION_STEPS = [
    "1. Check SHA-256(seed) equals the published commitment",
    "2. For each draw: digest = HMAC-SHA256(key=seed, msg=discriminator)",
    "3. ticket = floor(int(digest[:8], 16) * 100000 / 2^32)",
    "4. Look the ticket up in the item ranges (1% = 1,000 tickets, catalog order)",
]
