"""
CASEFORGE - Battle Descriptor Schema

Input contract between the hosting application and the engine. The host
fetches battle state however it likes and hands the engine a
BattleDescriptor; everything downstream is computed locally.

Usage:
    from config.battle_schema import BattleDescriptor, CaseDefinition, ItemDefinition, PlayerEntry
    battle = BattleDescriptor.model_validate_json(raw_json)
    for warning in validate_descriptor(battle):
        print(warning)
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from config.settings import BattleConfig


# ═══════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════

class Side(str, Enum):
    A = "A"
    B = "B"


# ═══════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════

class ItemDefinition(BaseModel):
    """One case item. Immutable for the lifetime of a battle."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    name: str
    value: int = Field(0, ge=0)                   # integer currency units
    drop_chance: float = Field(
        ..., ge=0.0, le=100.0,
        validation_alias=AliasChoices("drop_chance", "dropChance", "chance"),
    )
    rarity: str = ""

    @property
    def is_premium(self) -> bool:
        return self.is_premium_at(BattleConfig.PREMIUM_THRESHOLD)

    def is_premium_at(self, threshold: float) -> bool:
        return self.drop_chance <= threshold


# ═══════════════════════════════════════════════════════════════
# Roster
# ═══════════════════════════════════════════════════════════════

class PlayerEntry(BaseModel):
    """A seat in the battle.

    ``ticket`` is the server-drawn ticket for the first case; ``tickets``
    carries one entry per case (None where the server drew nothing).
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    team: Side = Side.A
    name: str = ""
    is_bot: bool = False
    ticket: Optional[int] = Field(
        None, ge=0, lt=BattleConfig.TICKET_SPACE,
        validation_alias=AliasChoices("ticket", "predeterminedTicket", "predeterminedTicketOrIndex"),
    )
    tickets: list[Optional[Annotated[int, Field(ge=0, lt=BattleConfig.TICKET_SPACE)]]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("tickets", "predeterminedTickets"),
    )

    def ticket_for(self, case_position: int) -> Optional[int]:
        """Server ticket for the n-th case of this battle, if one was sent."""
        if case_position < len(self.tickets):
            return self.tickets[case_position]
        return self.ticket if case_position == 0 else None


class CaseDefinition(BaseModel):
    """One case in the battle's sequence, with its own catalog."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    name: str = ""
    items: list[ItemDefinition] = Field(..., min_length=1)


class BattleDescriptor(BaseModel):
    """Everything the engine needs to resolve and reveal a battle.

    A battle opens ``cases`` in order; a descriptor with only ``items`` is a
    single-case battle over that catalog. ``case_index`` numbers the first
    case for draw tags, so a host can hand over the tail of a battle.
    """
    model_config = ConfigDict(populate_by_name=True)

    battle_id: str = Field(..., validation_alias=AliasChoices("battle_id", "battleId", "id"))
    seed: str = Field(..., min_length=1)
    items: list[ItemDefinition] = Field(default_factory=list)
    cases: list[CaseDefinition] = Field(default_factory=list)
    players: list[PlayerEntry] = Field(default_factory=list)
    team_size: int = Field(1, ge=1, validation_alias=AliasChoices("team_size", "teamSize"))
    case_index: int = Field(0, ge=0, validation_alias=AliasChoices("case_index", "caseIndex"))

    @model_validator(mode="after")
    def _has_catalog(self):
        if not self.items and not self.cases:
            raise ValueError("Battle needs either items or at least one case")
        return self

    @model_validator(mode="after")
    def _unique_player_ids(self):
        ids = [p.id for p in self.players]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate player ids in roster: {ids}")
        return self

    @property
    def case_count(self) -> int:
        return len(self.cases) or 1

    def case_catalogs(self) -> list[list[ItemDefinition]]:
        """Item catalog of every case, in opening order."""
        if self.cases:
            return [list(c.items) for c in self.cases]
        return [list(self.items)]

    def roster(self, side: Side) -> list[PlayerEntry]:
        """Players of one side, in seat order."""
        return [p for p in self.players if p.team == side]

    def is_team_battle(self) -> bool:
        return bool(self.roster(Side.A)) and bool(self.roster(Side.B))


# ═══════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════

def _catalog_warnings(items: list[ItemDefinition], label: str) -> list[str]:
    warnings = []
    total = sum(it.drop_chance for it in items)
    if abs(total - 100.0) > BattleConfig.CHANCE_SUM_TOLERANCE:
        warnings.append(
            f"{label}Drop chances sum to {total:.3f}%, expected 100% "
            f"(±{BattleConfig.CHANCE_SUM_TOLERANCE})"
        )

    item_ids = [it.id for it in items]
    if len(item_ids) != len(set(item_ids)):
        warnings.append(f"{label}Duplicate item ids in catalog: {item_ids}")

    if not [it for it in items if not it.is_premium]:
        warnings.append(f"{label}Catalog has no regular items; the primary reel will be empty")
    return warnings


def validate_descriptor(battle: BattleDescriptor) -> list[str]:
    """Run sanity checks on a descriptor and return a list of warnings."""
    warnings = []

    catalogs = battle.case_catalogs()
    for n, items in enumerate(catalogs):
        warnings.extend(_catalog_warnings(items, f"Case {n}: " if len(catalogs) > 1 else ""))
    if battle.cases and battle.items:
        warnings.append("Both items and cases given; items is ignored")

    for p in battle.players:
        if len(p.tickets) > battle.case_count:
            warnings.append(
                f"Player {p.id} has {len(p.tickets)} tickets for {battle.case_count} case(s)"
            )

    a, b = battle.roster(Side.A), battle.roster(Side.B)
    if b and len(a) != len(b):
        warnings.append(f"Unbalanced teams: A has {len(a)}, B has {len(b)}")
    for side, members in ((Side.A, a), (Side.B, b)):
        if len(members) > battle.team_size:
            warnings.append(
                f"Team {side.value} has {len(members)} players, team_size is {battle.team_size}"
            )

    return warnings


# ═══════════════════════════════════════════════════════════════
# Demo data
# ═══════════════════════════════════════════════════════════════

DEMO_ITEMS = [
    {"id": "knife_sticker", "name": "Sticker",       "value": 5,     "drop_chance": 45.0, "rarity": "common"},
    {"id": "field_case",    "name": "Field Case",    "value": 40,    "drop_chance": 30.0, "rarity": "uncommon"},
    {"id": "ak_redline",    "name": "AK Redline",    "value": 180,   "drop_chance": 16.0, "rarity": "rare"},
    {"id": "awp_asiimov",   "name": "AWP Asiimov",   "value": 900,   "drop_chance": 7.0,  "rarity": "epic"},
    {"id": "karambit_fade", "name": "Karambit Fade", "value": 15000, "drop_chance": 1.5,  "rarity": "legendary"},
    {"id": "dragon_lore",   "name": "Dragon Lore",   "value": 60000, "drop_chance": 0.5,  "rarity": "legendary"},
]


def demo_descriptor(seed: str = "demo-seed", team_size: int = 1, case_count: int = 1) -> BattleDescriptor:
    """A ready-made battle for the CLI and smoke tests."""
    players = []
    for side in (Side.A, Side.B):
        for n in range(team_size):
            players.append(PlayerEntry(
                id=f"{side.value.lower()}{n + 1}",
                name=f"Player {side.value}{n + 1}",
                team=side,
                is_bot=side == Side.B,
            ))
    items = [ItemDefinition(**it) for it in DEMO_ITEMS]
    if case_count > 1:
        return BattleDescriptor(
            battle_id=f"demo-{team_size}v{team_size}-x{case_count}",
            seed=seed,
            cases=[CaseDefinition(id=f"demo-case-{n}", name=f"Demo Case {n + 1}", items=items)
                   for n in range(case_count)],
            players=players,
            team_size=team_size,
        )
    return BattleDescriptor(
        battle_id=f"demo-{team_size}v{team_size}",
        seed=seed,
        items=items,
        players=players,
        team_size=team_size,
    )
