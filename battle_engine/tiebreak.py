"""
CASEFORGE - Rock / Paper / Scissors Tiebreak

Resolves an exact tie between the two sides of a battle.

Each player draws a weighted choice (rock 35.4%, paper 29.6%,
scissors 35.0%) through the ticket lottery; players are paired by seat
(A1 vs B1, A2 vs B2, ...). A side wins by taking ``rounds_needed`` pairs
(2 for teams of 3+, otherwise 1), A checked first. Short of that the
side with more pair wins takes it. A level score is a stalemate and the
whole table redraws under a fresh discriminator, up to ``max_attempts``
times; after that the fallback side wins.

Draw tag for player i on attempt n:  ::tiebreak::attempt{n}::player{i}

Usage:
    tb = TieBreaker(seed, team_a_ids, team_b_ids, team_size=3)
    result = tb.resolve()                 # pure, instant
    TieBreakRunner(tb, scheduler, on_result=settle).start()   # animated
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

from battle_engine.animation import (
    AnimationController, TickSink, calculate_spin_params, start_synchronized,
)
from battle_engine.lottery import generate_ticket, get_item_ticket_ranges, get_winning_item, make_discriminator
from battle_engine.reel import _scale, build_reel_system
from config.battle_schema import ItemDefinition, Side
from config.settings import BattleConfig

logger = logging.getLogger("caseforge.tiebreak")

ROCK, PAPER, SCISSORS = "rock", "paper", "scissors"

BEATS = {
    ROCK: SCISSORS,
    SCISSORS: PAPER,
    PAPER: ROCK,
}


def rps_items(weights: dict = None) -> list[ItemDefinition]:
    """The three tiebreak choices as catalog items."""
    weights = weights or BattleConfig.RPS_WEIGHTS
    return [
        ItemDefinition(id=f"rps_{name}", name=name, value=0, drop_chance=chance, rarity="common")
        for name, chance in weights.items()
    ]


def compare(choice_a: str, choice_b: str) -> Optional[Side]:
    """Which side takes the pair, or None for a draw."""
    if choice_a == choice_b:
        return None
    if BEATS.get(choice_a) == choice_b:
        return Side.A
    if BEATS.get(choice_b) == choice_a:
        return Side.B
    raise ValueError(f"Unknown tiebreak choices {choice_a!r} vs {choice_b!r}")


# ═══════════════════════════════════════════════════════════════
# Data Structures
# ═══════════════════════════════════════════════════════════════

@dataclass
class PairResult:
    player_a: str
    player_b: str
    choice_a: str
    choice_b: str
    winner: Optional[Side]


@dataclass
class TieBreakRound:
    attempt: int
    choices: dict = field(default_factory=dict)     # player_id -> choice
    tickets: dict = field(default_factory=dict)     # player_id -> ticket
    pairs: list = field(default_factory=list)
    side_wins: dict = field(default_factory=lambda: {Side.A: 0, Side.B: 0})

    def to_dict(self) -> dict:
        return {
            "attempt": self.attempt,
            "choices": dict(self.choices),
            "tickets": dict(self.tickets),
            "pairs": [
                {"a": p.player_a, "b": p.player_b, "choice_a": p.choice_a,
                 "choice_b": p.choice_b, "winner": p.winner.value if p.winner else None}
                for p in self.pairs
            ],
            "side_wins": {s.value: n for s, n in self.side_wins.items()},
        }


@dataclass
class TieBreakResult:
    winner: Side
    rounds: list = field(default_factory=list)
    attempts: int = 0
    fallback: bool = False

    @property
    def deciding_round(self) -> Optional[TieBreakRound]:
        return self.rounds[-1] if self.rounds else None

    def to_dict(self) -> dict:
        return {
            "winner": self.winner.value,
            "attempts": self.attempts,
            "fallback": self.fallback,
            "rounds": [r.to_dict() for r in self.rounds],
        }


# ═══════════════════════════════════════════════════════════════
# Resolution
# ═══════════════════════════════════════════════════════════════

class TieBreaker:
    """Deterministic weighted RPS tiebreak for one battle."""

    def __init__(self, seed: str, team_a: Sequence[str], team_b: Sequence[str],
                 team_size: int = 1, *, max_attempts: int = None,
                 fallback_side: Side | str = None, weights: dict = None,
                 ticket_fn: Callable[[str, str], int] = None):
        if not team_a or not team_b:
            raise ValueError("Tiebreak needs at least one player on each side")
        self.seed = seed
        self.team_a = list(team_a)
        self.team_b = list(team_b)
        self.team_size = team_size
        self.rounds_needed = 2 if team_size >= 3 else 1
        self.max_attempts = BattleConfig.TIEBREAK_MAX_ATTEMPTS if max_attempts is None else max_attempts
        fallback = fallback_side or BattleConfig.TIEBREAK_FALLBACK_SIDE
        self.fallback_side = fallback if isinstance(fallback, Side) else Side(fallback.strip().upper())
        self.items = rps_items(weights)
        self.ranges = get_item_ticket_ranges(self.items)
        self._ticket = ticket_fn or generate_ticket

    @property
    def roster(self) -> list[str]:
        return self.team_a + self.team_b

    def discriminator(self, attempt: int, player_index: int) -> str:
        return make_discriminator("tiebreak", f"attempt{attempt}", f"player{player_index}")

    def draw(self, attempt: int) -> TieBreakRound:
        """Every player's choice for one attempt, scored pair by pair."""
        rnd = TieBreakRound(attempt=attempt)
        for idx, player_id in enumerate(self.roster):
            ticket = self._ticket(self.seed, self.discriminator(attempt, idx))
            rnd.tickets[player_id] = ticket
            rnd.choices[player_id] = get_winning_item(ticket, self.ranges).name

        for a_id, b_id in zip(self.team_a, self.team_b):
            winner = compare(rnd.choices[a_id], rnd.choices[b_id])
            rnd.pairs.append(PairResult(a_id, b_id, rnd.choices[a_id], rnd.choices[b_id], winner))
            if winner is not None:
                rnd.side_wins[winner] += 1

        logger.info(
            f"Tiebreak attempt {attempt}: "
            + ", ".join(f"{p.choice_a} vs {p.choice_b}" for p in rnd.pairs)
            + f" -> A {rnd.side_wins[Side.A]} / B {rnd.side_wins[Side.B]} (need {self.rounds_needed})"
        )
        return rnd

    def decide(self, rnd: TieBreakRound) -> Optional[Side]:
        """Winner of an attempt, or None when it has to be redrawn.

        A reaching ``rounds_needed`` is checked before B. Below the bar the
        side with more pair wins takes it; a level score (0-0, or 1-1 with a
        drawn pair in a 3v3) is a stalemate.
        """
        a, b = rnd.side_wins[Side.A], rnd.side_wins[Side.B]
        if a >= self.rounds_needed:
            return Side.A
        if b >= self.rounds_needed:
            return Side.B
        if a != b:
            return Side.A if a > b else Side.B
        return None

    def conclude(self, rounds: list, attempt: int) -> Optional[TieBreakResult]:
        """Result after ``attempt`` has been drawn, or None to respin."""
        winner = self.decide(rounds[-1])
        if winner is not None:
            return TieBreakResult(winner=winner, rounds=list(rounds), attempts=attempt + 1)
        if attempt + 1 >= self.max_attempts:
            logger.warning(
                f"Tiebreak stalemate {self.max_attempts} times in a row; "
                f"side {self.fallback_side.value} wins by fallback"
            )
            return TieBreakResult(winner=self.fallback_side, rounds=list(rounds),
                                  attempts=attempt + 1, fallback=True)
        return None

    def resolve(self) -> TieBreakResult:
        """Draw attempts until a side wins or the attempt cap is reached."""
        rounds = []
        attempt = 0
        while True:
            rounds.append(self.draw(attempt))
            result = self.conclude(rounds, attempt)
            if result is not None:
                return result
            attempt += 1


# ═══════════════════════════════════════════════════════════════
# Animated runner
# ═══════════════════════════════════════════════════════════════

class TieBreakRunner:
    """Plays the tiebreak on the scheduler.

    Each attempt spins one RPS reel per player (synchronised), then scores
    it. A stalemate waits ``retry_delay`` on a cancellable timer before the
    next attempt. ``on_result`` fires once with the TieBreakResult unless
    the runner is cancelled first.
    """

    def __init__(self, breaker: TieBreaker, scheduler, *,
                 on_result: Callable[[TieBreakResult], None] = None,
                 on_attempt: Callable[[TieBreakRound], None] = None,
                 tick_sink: TickSink = None, animate: bool = True,
                 retry_delay: float = None, spin_duration: float = None):
        self.breaker = breaker
        self.scheduler = scheduler
        self.on_result = on_result
        self.on_attempt = on_attempt
        self.tick_sink = tick_sink
        self.animate = animate
        self.retry_delay = BattleConfig.TIEBREAK_RETRY_DELAY if retry_delay is None else retry_delay
        self.spin_duration = BattleConfig.TIEBREAK_SPIN_DURATION if spin_duration is None else spin_duration
        self.reel = build_reel_system(breaker.items, premium_threshold=-1.0)
        self.rounds: list[TieBreakRound] = []
        self.attempt = 0
        self.result: Optional[TieBreakResult] = None
        self.controllers: list[AnimationController] = []
        self._timer = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        self._run_attempt()

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        for c in self.controllers:
            c.cancel()
        logger.info(f"Tiebreak cancelled at attempt {self.attempt}")

    def _run_attempt(self) -> None:
        self._timer = None
        if self._cancelled:
            return
        rnd = self.breaker.draw(self.attempt)
        self.rounds.append(rnd)
        if not self.animate:
            self._score(rnd)
            return

        pending = set()

        def landed(ctl):
            pending.discard(ctl.name)
            if not pending and not self._cancelled:
                self._score(rnd)

        self.controllers = []
        for idx, player_id in enumerate(self.breaker.roster):
            choice = next(it for it in self.breaker.items if it.name == rnd.choices[player_id])
            slots = self.reel.occurrences(choice)
            index = slots[_scale(rnd.tickets[player_id], len(slots))] if slots else 0
            params = calculate_spin_params(self.reel.reel_length, index,
                                           duration=self.spin_duration)
            name = f"tiebreak:{player_id}:{self.attempt}"
            pending.add(name)
            self.controllers.append(AnimationController(
                self.scheduler, params, name=name,
                tick_sink=self.tick_sink, on_complete=landed,
            ))
        start_synchronized(self.controllers, self.scheduler)

    def _score(self, rnd: TieBreakRound) -> None:
        if self.on_attempt is not None:
            self.on_attempt(rnd)
        result = self.breaker.conclude(self.rounds, self.attempt)
        if result is not None:
            self.result = result
            logger.info(f"Tiebreak winner: side {result.winner.value} after {result.attempts} attempt(s)")
            if self.on_result is not None:
                self.on_result(result)
            return
        self.attempt += 1
        logger.info(f"Tiebreak stalemate; respinning in {self.retry_delay}s "
                    f"(attempt {self.attempt}/{self.breaker.max_attempts})")
        self._timer = self.scheduler.call_later(self.retry_delay, self._run_attempt)
