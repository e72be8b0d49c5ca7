"""
CASEFORGE - Case Battle Outcome & Reveal Engine

Deterministic ticket lottery, weighted reels, synchronised spin animation
and the rock/paper/scissors tiebreak for head-to-head case battles.

Usage:
    from battle_engine import BattleRound, Scheduler, run_battle
    from config.battle_schema import demo_descriptor
    result = run_battle(demo_descriptor(seed="abc"), settle=api.settle)
    print(result.winner, result.team_totals, result.case_totals())
"""

from battle_engine.animation import (
    AnimationController, CubicBezier, SpinParams, TickSink,
    calculate_spin_params, start_synchronized,
)
from battle_engine.errors import BattleEngineError, EmptyCatalogError, InvalidTransition, SynchronizationError
from battle_engine.lottery import (
    TicketRange, combine_seeds, commit_seed, generate_ticket, get_item_ticket_ranges,
    get_winning_item, make_discriminator, new_seed, verify_seed_commitment, verify_ticket,
)
from battle_engine.reel import ReelSystem, build_reel_system, build_secondary_sequence, pick_primary_landing
from battle_engine.round import (
    BattleRound, RoundResult, RoundState, SpinOutcome, resolve_case, resolve_cases, resolve_outcomes, run_battle,
)
from battle_engine.scheduler import ManualClock, MonotonicClock, Scheduler
from battle_engine.tiebreak import TieBreaker, TieBreakResult, TieBreakRunner

__all__ = [
    "AnimationController", "CubicBezier", "SpinParams", "TickSink",
    "calculate_spin_params", "start_synchronized",
    "BattleEngineError", "EmptyCatalogError", "InvalidTransition", "SynchronizationError",
    "TicketRange", "combine_seeds", "commit_seed", "generate_ticket", "get_item_ticket_ranges",
    "get_winning_item", "make_discriminator", "new_seed", "verify_seed_commitment", "verify_ticket",
    "ReelSystem", "build_reel_system", "build_secondary_sequence", "pick_primary_landing",
    "BattleRound", "RoundResult", "RoundState", "SpinOutcome",
    "resolve_case", "resolve_cases", "resolve_outcomes", "run_battle",
    "ManualClock", "MonotonicClock", "Scheduler",
    "TieBreaker", "TieBreakResult", "TieBreakRunner",
]
