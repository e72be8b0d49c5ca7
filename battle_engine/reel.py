"""
CASEFORGE - Reel Builder

Turns a case catalog into what the player actually sees scroll by.

The primary reel only carries regular items (drop chance above the premium
threshold), each repeated round(drop_chance) times in catalog order, so
frequency on the reel mirrors odds. Premium items are held back in a
separate pool and can only be revealed by the secondary ("gold") spin.

Usage:
    from battle_engine.reel import build_reel_system, pick_primary_landing
    reel = build_reel_system(battle.case_catalogs()[0])
    landing = pick_primary_landing(reel, won_item, battle.seed, "::player0::case0")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from battle_engine.lottery import TICKET_SPACE, generate_ticket
from config.battle_schema import ItemDefinition
from config.settings import BattleConfig

logger = logging.getLogger("caseforge.reel")


@dataclass
class ReelSystem:
    reel_items: list[ItemDefinition] = field(default_factory=list)
    premium_items: list[ItemDefinition] = field(default_factory=list)
    reel_length: int = 1            # distinct regular items, used for scroll distance

    @property
    def weighted_length(self) -> int:
        return len(self.reel_items)

    def occurrences(self, item: ItemDefinition) -> list[int]:
        return [i for i, it in enumerate(self.reel_items) if it.id == item.id]

    def on_reel(self, item: ItemDefinition) -> bool:
        return any(it.id == item.id for it in self.reel_items)


@dataclass(frozen=True)
class Landing:
    """Where the primary reel comes to rest for one player."""
    item: Optional[ItemDefinition]
    index: int
    substituted: bool = False


def _scale(ticket: int, n: int) -> int:
    """Map a ticket onto [0, n) without modulo bias beyond 1/TICKET_SPACE."""
    return (ticket * n) // TICKET_SPACE


def build_reel_system(items: Sequence[ItemDefinition],
                      premium_threshold: float = None) -> ReelSystem:
    """Split the catalog into the weighted primary reel and the premium pool."""
    if not items:
        logger.warning("build_reel_system called with an empty catalog")
        return ReelSystem()

    threshold = BattleConfig.PREMIUM_THRESHOLD if premium_threshold is None else premium_threshold
    regular = [it for it in items if not it.is_premium_at(threshold)]
    premium = [it for it in items if it.is_premium_at(threshold)]

    reel_items = []
    for it in regular:
        reel_items.extend([it] * round(it.drop_chance))

    logger.debug(
        f"Reel built: {len(regular)} regular ({len(reel_items)} slots), "
        f"{len(premium)} premium (<= {threshold}%)"
    )
    return ReelSystem(
        reel_items=reel_items,
        premium_items=list(premium),
        reel_length=max(1, len(regular)),
    )


def pick_primary_landing(reel: ReelSystem, won_item: ItemDefinition,
                         seed: str, prefix: str) -> Landing:
    """Choose the slot the primary reel stops on.

    A regular winner lands on one of its own slots (``::reel_item`` draw).
    A winner that has no slot on the reel, which is always the case for
    premium items, is replaced by a regular item drawn with ``::regularPick``
    in proportion to reel frequency; the true item is shown by the
    secondary spin instead.
    """
    if not reel.reel_items:
        return Landing(item=None, index=0, substituted=True)

    slots = reel.occurrences(won_item)
    if slots:
        ticket = generate_ticket(seed, f"{prefix}::reel_item")
        return Landing(item=won_item, index=slots[_scale(ticket, len(slots))])

    ticket = generate_ticket(seed, f"{prefix}::regularPick")
    index = _scale(ticket, len(reel.reel_items))
    substitute = reel.reel_items[index]
    logger.debug(f"{won_item.name} is off-reel; primary lands on {substitute.name} @ {index}")
    return Landing(item=substitute, index=index, substituted=True)


def shuffle_seeded(items: Sequence, seed: str, discriminator: str) -> list:
    """Fisher-Yates shuffle driven by lottery tickets."""
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = _scale(generate_ticket(seed, f"{discriminator}::{i}"), i + 1)
        out[i], out[j] = out[j], out[i]
    return out


def build_secondary_sequence(premium_items: Sequence[ItemDefinition],
                             won_item: ItemDefinition, seed: str, prefix: str,
                             repeats: int = None) -> tuple[list[ItemDefinition], int]:
    """Gold-spin reel: shuffled premium pool ``repeats`` times, then the true item.

    Returns the sequence and the landing index (always the last slot).
    """
    repeats = BattleConfig.SECONDARY_REPEATS if repeats is None else repeats
    pool = list(premium_items) or [won_item]
    sequence = []
    for r in range(max(0, repeats)):
        sequence.extend(shuffle_seeded(pool, seed, f"{prefix}::gold::{r}"))
    sequence.append(won_item)
    return sequence, len(sequence) - 1


def visible_window(reel_items: Sequence, center_index: int, buffer: int = 2) -> list:
    """Items around ``center_index`` with wrap-around, ``2 * buffer + 1`` long."""
    if not reel_items:
        return []
    n = len(reel_items)
    return [reel_items[i % n] for i in range(center_index - buffer, center_index + buffer + 1)]
