"""
CASEFORGE - Battle Round State Machine

Drives a battle from the host's descriptor to the settlement call. The
cases are opened one after another on the same scheduler:

    IDLE -> COUNTDOWN -> SPINNING -> [SECONDARY_REVEAL] -> (next case: SPINNING)
         -> SETTLING -> [TIE -> TIEBREAK -> SETTLING] -> COMPLETE

Outcomes for every case are fixed before anything moves (see
``resolve_cases``); the animation only reveals them. Within a case all
per-player reels start on the same scheduler instant with the same
duration. A premium win lands the primary reel on a regular stand-in and
is then shown by a secondary spin over the premium pool; the battle waits
for it, up to SECONDARY_REVEAL_TIMEOUT, then pauses CASE_REVEAL_DELAY
(CASE_SECONDARY_DELAY after a gold spin) before the next case.

Team totals are summed over all cases and the tie check runs once on
those. COMPLETE calls ``settle(battle_id, payload)`` exactly once per
battle. A failing settlement is logged and the battle still completes
with local results.

Usage:
    round_ = BattleRound(battle, scheduler, settle=api_settle,
                         on_case_revealed=ui.case_done,
                         on_spin_complete=ui.spin_done,
                         on_battle_complete=ui.show_winner)
    round_.start()
    scheduler.run_until_idle()
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from battle_engine.animation import (
    AnimationController, TickSink, calculate_spin_params, start_synchronized,
)
from battle_engine.errors import InvalidTransition
from battle_engine.lottery import (
    VERIFICATION_STEPS, commit_seed, generate_ticket, get_item_ticket_ranges,
    get_winning_item, make_discriminator,
)
from battle_engine.reel import ReelSystem, build_reel_system, build_secondary_sequence, pick_primary_landing
from battle_engine.scheduler import Scheduler
from battle_engine.tiebreak import TieBreaker, TieBreakResult, TieBreakRunner
from config.battle_schema import BattleDescriptor, ItemDefinition, Side
from config.settings import BattleConfig

logger = logging.getLogger("caseforge.round")


# ═══════════════════════════════════════════════════════════════
# States
# ═══════════════════════════════════════════════════════════════

class RoundState(str, Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    SPINNING = "spinning"
    SECONDARY_REVEAL = "secondary_reveal"
    SETTLING = "settling"
    TIE = "tie"
    TIEBREAK = "tiebreak"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


TRANSITIONS = {
    RoundState.IDLE:             {RoundState.COUNTDOWN},
    RoundState.COUNTDOWN:        {RoundState.SPINNING},
    RoundState.SPINNING:         {RoundState.SPINNING, RoundState.SECONDARY_REVEAL, RoundState.SETTLING},
    RoundState.SECONDARY_REVEAL: {RoundState.SPINNING, RoundState.SETTLING},
    RoundState.SETTLING:         {RoundState.TIE, RoundState.COMPLETE},
    RoundState.TIE:              {RoundState.TIEBREAK},
    RoundState.TIEBREAK:         {RoundState.SETTLING},
    RoundState.COMPLETE:         set(),
    RoundState.CANCELLED:        set(),
}
TERMINAL = {RoundState.COMPLETE, RoundState.CANCELLED}


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass
class SpinOutcome:
    player_id: str
    team: Side
    discriminator: str
    ticket: int
    won_item: ItemDefinition
    landed_item: Optional[ItemDefinition]
    landing_index: int
    case_index: int = 0
    via_secondary_reveal: bool = False
    secondary_sequence: list = field(default_factory=list)
    secondary_landing_index: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "player_id": self.player_id,
            "team": self.team.value,
            "case_index": self.case_index,
            "discriminator": self.discriminator,
            "ticket": self.ticket,
            "won_item": self.won_item.id,
            "won_value": self.won_item.value,
            "landed_item": self.landed_item.id if self.landed_item else None,
            "landing_index": self.landing_index,
            "via_secondary_reveal": self.via_secondary_reveal,
            "secondary_landing_index": self.secondary_landing_index,
        }


@dataclass
class RoundResult:
    battle_id: str
    seed: str
    cases: list = field(default_factory=list)       # per-case outcome lists, opening order
    outcomes: list = field(default_factory=list)    # the same outcomes, flattened
    ranges: list = field(default_factory=list)      # per-case ticket ranges
    team_totals: dict = field(default_factory=dict)
    winner: Optional[Side] = None
    tiebreak: Optional[TieBreakResult] = None
    secondary_timed_out: bool = False
    settlement_payload: Optional[dict] = None
    settlement_response: Any = None
    settlement_error: Optional[str] = None
    states: list = field(default_factory=list)

    @property
    def is_tie(self) -> bool:
        return (len(self.team_totals) == 2
                and self.team_totals.get(Side.A) == self.team_totals.get(Side.B))

    def outcome_for(self, player_id: str, case_index: int = None) -> Optional[SpinOutcome]:
        return next((o for o in self.outcomes if o.player_id == player_id
                     and (case_index is None or o.case_index == case_index)), None)

    def case_totals(self) -> list[dict]:
        """Team totals of each case on its own."""
        return [team_totals(case) for case in self.cases]

    def audit(self) -> dict:
        """Everything a player needs to re-derive this battle once the seed is public."""
        return {
            "battle_id": self.battle_id,
            "seed": self.seed,
            "seed_commitment": commit_seed(self.seed),
            "case_count": len(self.cases),
            "ticket_ranges": [[r.to_dict() for r in case] for case in self.ranges],
            "draws": [o.to_dict() for o in self.outcomes],
            "case_totals": [{s.value: v for s, v in t.items()} for t in self.case_totals()],
            "team_totals": {s.value: v for s, v in self.team_totals.items()},
            "winner": self.winner.value if self.winner else None,
            "tiebreak": self.tiebreak.to_dict() if self.tiebreak else None,
            "secondary_timed_out": self.secondary_timed_out,
            "settlement_payload": self.settlement_payload,
            "settlement_error": self.settlement_error,
            "states": list(self.states),
            "config": BattleConfig.snapshot(),
            "verification_steps": VERIFICATION_STEPS,
        }

    def to_audit_json(self) -> str:
        return json.dumps(self.audit(), indent=2, default=str)


# ═══════════════════════════════════════════════════════════════
# Pure resolution
# ═══════════════════════════════════════════════════════════════

def player_discriminator(player_index: int, case_index: int) -> str:
    return make_discriminator(f"player{player_index}", f"case{case_index}")


def resolve_case(battle: BattleDescriptor, position: int, reel: ReelSystem = None) -> list[SpinOutcome]:
    """Fix every player's result for the ``position``-th case. No clock, no I/O."""
    items = battle.case_catalogs()[position]
    reel = reel or build_reel_system(items)
    ranges = get_item_ticket_ranges(items)
    case_index = battle.case_index + position
    outcomes = []
    for idx, player in enumerate(battle.players):
        disc = player_discriminator(idx, case_index)
        ticket = player.ticket_for(position)
        if ticket is None:
            ticket = generate_ticket(battle.seed, disc)
        won = get_winning_item(ticket, ranges)
        landing = pick_primary_landing(reel, won, battle.seed, disc)
        outcome = SpinOutcome(
            player_id=player.id,
            team=player.team,
            discriminator=disc,
            ticket=ticket,
            won_item=won,
            landed_item=landing.item,
            landing_index=landing.index,
            case_index=case_index,
            via_secondary_reveal=landing.substituted,
        )
        if outcome.via_secondary_reveal:
            seq, sec_idx = build_secondary_sequence(reel.premium_items, won, battle.seed, disc)
            outcome.secondary_sequence = seq
            outcome.secondary_landing_index = sec_idx
        logger.debug(
            f"{player.id} case {case_index}: ticket {ticket} -> {won.name}"
            + (f" (primary shows {landing.item.name if landing.item else 'nothing'}, gold spin)"
               if outcome.via_secondary_reveal else "")
        )
        outcomes.append(outcome)
    return outcomes


def resolve_cases(battle: BattleDescriptor, reels: list[ReelSystem] = None) -> list[list[SpinOutcome]]:
    """Outcomes of every case in opening order."""
    reels = reels or [None] * battle.case_count
    return [resolve_case(battle, n, reels[n]) for n in range(battle.case_count)]


def resolve_outcomes(battle: BattleDescriptor) -> list[SpinOutcome]:
    """Every draw of the battle, case by case, flattened."""
    return [o for case in resolve_cases(battle) for o in case]


def team_totals(outcomes: list[SpinOutcome]) -> dict:
    totals = {}
    for o in outcomes:
        totals[o.team] = totals.get(o.team, 0) + o.won_item.value
    return totals


# ═══════════════════════════════════════════════════════════════
# Round
# ═══════════════════════════════════════════════════════════════

class BattleRound:

    def __init__(self, battle: BattleDescriptor, scheduler: Scheduler, *,
                 settle: Callable[[str, dict], Any] = None,
                 on_case_revealed: Callable[[int, list], None] = None,
                 on_spin_complete: Callable[[], None] = None,
                 on_battle_complete: Callable[[RoundResult], None] = None,
                 on_state_change: Callable[[RoundState, RoundState], None] = None,
                 tick_sink: TickSink = None,
                 item_size: float = None, viewport_size: float = None,
                 animate_tiebreak: bool = True):
        self.battle = battle
        self.scheduler = scheduler
        self.settle = settle
        self.on_case_revealed = on_case_revealed
        self.on_spin_complete = on_spin_complete
        self.on_battle_complete = on_battle_complete
        self.on_state_change = on_state_change
        self.tick_sink = tick_sink or TickSink()
        self.item_size = item_size
        self.viewport_size = viewport_size
        self.animate_tiebreak = animate_tiebreak

        self.state = RoundState.IDLE
        catalogs = battle.case_catalogs()
        self.reels = [build_reel_system(items) for items in catalogs]
        self.result = RoundResult(
            battle_id=battle.battle_id,
            seed=battle.seed,
            ranges=[get_item_ticket_ranges(items) for items in catalogs],
            states=[RoundState.IDLE.value],
        )
        self.result.cases = resolve_cases(battle, self.reels)
        self.result.outcomes = [o for case in self.result.cases for o in case]

        self.current_case = 0
        self.primary: list[AnimationController] = []
        self.secondary: list[AnimationController] = []
        self.tiebreak_runner: Optional[TieBreakRunner] = None
        self._controllers: list[AnimationController] = []
        self._timers = []
        self._reveal_timeout = None
        self._spin_complete_fired = False
        self._settled = False

    @property
    def outcomes(self) -> list[SpinOutcome]:
        return self.result.outcomes

    @property
    def case_count(self) -> int:
        return len(self.result.cases)

    # ── State handling ────────────────────────────────────────

    def _transition(self, target: RoundState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(self.state.value, target.value)
        previous, self.state = self.state, target
        self.result.states.append(target.value)
        logger.info(f"[{self.battle.battle_id}] {previous.value} -> {target.value}")
        self._notify(self.on_state_change, previous, target)

    def _notify(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.warning(f"[{self.battle.battle_id}] host callback {callback!r} failed: {e}")

    def _later(self, delay: float, callback, *args):
        handle = self.scheduler.call_later(delay, callback, *args)
        self._timers.append(handle)
        return handle

    def _spin(self, reel_length: int, outcomes: list, index_of, duration: float, landed) -> list:
        return [
            AnimationController(
                self.scheduler,
                calculate_spin_params(
                    reel_length, index_of(o),
                    self.item_size, self.viewport_size,
                    duration=duration,
                ),
                name=o.player_id,
                tick_sink=self.tick_sink,
                on_complete=landed,
            )
            for o in outcomes
        ]

    # ── Flow ──────────────────────────────────────────────────

    def start(self) -> None:
        self._transition(RoundState.COUNTDOWN)
        self._later(BattleConfig.COUNTDOWN_SECONDS, self._begin_spinning)

    def _begin_spinning(self) -> None:
        if self.state != RoundState.COUNTDOWN:
            return
        self._spin_case(0)

    def _spin_case(self, position: int) -> None:
        self.current_case = position
        self._transition(RoundState.SPINNING)
        outcomes = self.result.cases[position]
        pending = {o.player_id for o in outcomes}

        def landed(ctl):
            pending.discard(ctl.name)
            if not pending and self.state == RoundState.SPINNING and self.current_case == position:
                self._after_primary()

        logger.info(f"[{self.battle.battle_id}] opening case {position + 1}/{self.case_count}")
        self.primary = self._spin(self.reels[position].reel_length, outcomes,
                                  lambda o: o.landing_index,
                                  BattleConfig.PRIMARY_SPIN_DURATION, landed)
        self._controllers.extend(self.primary)
        if not self.primary:
            self._after_primary()
            return
        start_synchronized(self.primary, self.scheduler)

    def _after_primary(self) -> None:
        position = self.current_case
        gold = [o for o in self.result.cases[position] if o.via_secondary_reveal]
        if not gold:
            self._case_revealed()
            return

        self._transition(RoundState.SECONDARY_REVEAL)
        pending = {o.player_id for o in gold}

        def landed(ctl):
            pending.discard(ctl.name)
            if not pending and self.state == RoundState.SECONDARY_REVEAL and self.current_case == position:
                self._case_revealed()

        pool_length = max(1, len({it.id for it in self.reels[position].premium_items}))
        self.secondary = self._spin(pool_length, gold, lambda o: o.secondary_landing_index,
                                    BattleConfig.SECONDARY_SPIN_DURATION, landed)
        self._controllers.extend(self.secondary)
        logger.info(f"[{self.battle.battle_id}] gold spin for "
                    + ", ".join(f"{o.player_id} ({o.won_item.name})" for o in gold))
        self._later(BattleConfig.SECONDARY_REVEAL_DELAY, self._start_secondary, position)
        self._reveal_timeout = self._later(BattleConfig.SECONDARY_REVEAL_TIMEOUT,
                                           self._secondary_timeout, position)

    def _start_secondary(self, position: int) -> None:
        if self.state == RoundState.SECONDARY_REVEAL and self.current_case == position:
            start_synchronized(self.secondary, self.scheduler)

    def _secondary_timeout(self, position: int) -> None:
        if self.state != RoundState.SECONDARY_REVEAL or self.current_case != position:
            return
        logger.warning(f"[{self.battle.battle_id}] secondary reveal for case {position + 1} "
                       f"timed out after {BattleConfig.SECONDARY_REVEAL_TIMEOUT}s")
        self.result.secondary_timed_out = True
        for c in self.secondary:
            c.cancel()
        self._case_revealed()

    def _case_revealed(self) -> None:
        position = self.current_case
        if self._reveal_timeout is not None:
            self._reveal_timeout.cancel()
            self._reveal_timeout = None
        outcomes = self.result.cases[position]
        logger.info(f"[{self.battle.battle_id}] case {position + 1}/{self.case_count} revealed: "
                    + ", ".join(f"{s.value}={v}" for s, v in team_totals(outcomes).items()))
        self._notify(self.on_case_revealed, position, outcomes)

        if position + 1 >= self.case_count:
            self._enter_settling()
            return
        if any(o.via_secondary_reveal for o in outcomes):
            delay = BattleConfig.CASE_SECONDARY_DELAY
        else:
            delay = BattleConfig.CASE_REVEAL_DELAY
        self._later(delay, self._next_case, position + 1)

    def _next_case(self, position: int) -> None:
        if self.state not in (RoundState.SPINNING, RoundState.SECONDARY_REVEAL):
            return
        self._spin_case(position)

    def _enter_settling(self) -> None:
        self._transition(RoundState.SETTLING)
        for t in self._timers:
            t.cancel()
        if not self._spin_complete_fired:
            self._spin_complete_fired = True
            self._notify(self.on_spin_complete)

        self.result.team_totals = team_totals(self.outcomes)
        if self.result.tiebreak is None and self.result.is_tie:
            self._transition(RoundState.TIE)
            self._start_tiebreak()
            return

        totals = self.result.team_totals
        if self.result.tiebreak is not None:
            self.result.winner = self.result.tiebreak.winner
        elif len(totals) == 2:
            self.result.winner = Side.A if totals[Side.A] > totals[Side.B] else Side.B
        self._complete()

    def _start_tiebreak(self) -> None:
        breaker = TieBreaker(
            self.battle.seed,
            [p.id for p in self.battle.roster(Side.A)],
            [p.id for p in self.battle.roster(Side.B)],
            team_size=self.battle.team_size,
        )
        self._transition(RoundState.TIEBREAK)
        self.tiebreak_runner = TieBreakRunner(
            breaker, self.scheduler,
            on_result=self._tiebreak_done,
            tick_sink=self.tick_sink,
            animate=self.animate_tiebreak,
        )
        self.tiebreak_runner.start()

    def _tiebreak_done(self, result: TieBreakResult) -> None:
        if self.state != RoundState.TIEBREAK:
            return
        self.result.tiebreak = result
        self._enter_settling()

    def _complete(self) -> None:
        self._transition(RoundState.COMPLETE)
        payload = {}
        if self.result.tiebreak is not None:
            payload["tiebreakWinner"] = self.result.tiebreak.winner.value
        self.result.settlement_payload = payload
        if self.settle is not None and not self._settled:
            self._settled = True
            try:
                self.result.settlement_response = self.settle(self.battle.battle_id, payload)
            except Exception as e:
                self.result.settlement_error = str(e)
                logger.warning(f"[{self.battle.battle_id}] settlement failed, "
                               f"showing local result: {e}")
        winner = self.result.winner.value if self.result.winner else "none"
        logger.info(f"[{self.battle.battle_id}] complete: winner={winner} totals="
                    + ", ".join(f"{s.value}={v}" for s, v in self.result.team_totals.items()))
        self._notify(self.on_battle_complete, self.result)

    def cancel(self) -> None:
        """Abort the battle. No settlement, no completion callbacks."""
        if self.state in TERMINAL:
            return
        for t in self._timers:
            t.cancel()
        for c in self._controllers:
            c.cancel()
        if self.tiebreak_runner is not None:
            self.tiebreak_runner.cancel()
        previous, self.state = self.state, RoundState.CANCELLED
        self.result.states.append(RoundState.CANCELLED.value)
        logger.info(f"[{self.battle.battle_id}] cancelled during {previous.value}")


def run_battle(battle: BattleDescriptor, *, settle: Callable[[str, dict], Any] = None,
               scheduler: Scheduler = None, tick_sink: TickSink = None,
               animate_tiebreak: bool = True, max_seconds: float = 600.0) -> RoundResult:
    """Play a battle headless on a manual clock and return its result."""
    scheduler = scheduler or Scheduler()
    round_ = BattleRound(battle, scheduler, settle=settle, tick_sink=tick_sink,
                         animate_tiebreak=animate_tiebreak)
    round_.start()
    scheduler.run_until_idle(max_seconds=max_seconds)
    return round_.result
