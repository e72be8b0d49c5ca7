#!/usr/bin/env python3
"""
CASEFORGE - Battle CLI

Usage:
    python -m tools.battle_cli simulate --seed abc123 --team-size 2 --cases 3
    python -m tools.battle_cli simulate --descriptor battle.json --dump-audit
    python -m tools.battle_cli verify --seed abc123 --discriminator ::player0::case0 --ticket 41234
    python -m tools.battle_cli ranges --items items.json
    python -m tools.battle_cli audit --draws 200000
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from battle_engine.lottery import (
    commit_seed, generate_ticket, get_item_ticket_ranges, get_winning_item, verify_seed_commitment,
)
from battle_engine.reel import build_reel_system
from battle_engine.round import run_battle
from config.battle_schema import (
    DEMO_ITEMS, BattleDescriptor, ItemDefinition, demo_descriptor, validate_descriptor,
)
from config.settings import configure_logging
from tools.drop_rate_audit import DropRateAuditor

console = Console()


def _load_items(path: str = None) -> list[ItemDefinition]:
    raw = json.loads(Path(path).read_text()) if path else DEMO_ITEMS
    return [ItemDefinition.model_validate(it) for it in raw]


def _load_descriptor(args) -> BattleDescriptor:
    if args.descriptor:
        return BattleDescriptor.model_validate_json(Path(args.descriptor).read_text())
    battle = demo_descriptor(seed=args.seed, team_size=args.team_size, case_count=args.cases)
    if args.items:
        items = _load_items(args.items)
        if battle.cases:
            cases = [c.model_copy(update={"items": items}) for c in battle.cases]
            battle = battle.model_copy(update={"cases": cases})
        else:
            battle = battle.model_copy(update={"items": items})
    return battle


# ═══════════════════════════════════════════════════════════════
# Commands
# ═══════════════════════════════════════════════════════════════

def cmd_simulate(args) -> int:
    battle = _load_descriptor(args)
    for w in validate_descriptor(battle):
        console.print(f"[yellow]⚠ {w}[/yellow]")

    console.print(Panel(
        f"[bold]{battle.battle_id}[/bold]\n"
        f"Seed commitment: {commit_seed(battle.seed)}\n"
        f"Players: {len(battle.players)}  Team size: {battle.team_size}  Cases: {battle.case_count}",
        title="⚔️ Case Battle", border_style="cyan",
    ))

    result = run_battle(battle, animate_tiebreak=not args.fast)

    table = Table(title="Draws")
    table.add_column("Case", justify="right")
    table.add_column("Player")
    table.add_column("Team")
    table.add_column("Ticket", justify="right")
    table.add_column("Won")
    table.add_column("Value", justify="right")
    table.add_column("Reel shows")
    for o in result.outcomes:
        shown = o.landed_item.name if o.landed_item else "-"
        if o.via_secondary_reveal:
            shown += " → ★ gold spin"
        table.add_row(str(o.case_index), o.player_id, o.team.value, str(o.ticket), o.won_item.name,
                      str(o.won_item.value), shown)
    console.print(table)

    if len(result.cases) > 1:
        for n, case_totals in enumerate(result.case_totals()):
            line = "  ".join(f"{s.value}: {v}" for s, v in case_totals.items())
            console.print(f"[dim]Case {n + 1}: {line}[/dim]")
    totals = "  ".join(f"{s.value}: {v}" for s, v in result.team_totals.items())
    console.print(f"[bold]Totals:[/bold] {totals}")
    if result.tiebreak:
        tb = result.tiebreak
        console.print(f"[magenta]Tiebreak: side {tb.winner.value} after {tb.attempts} attempt(s)"
                      f"{' (fallback)' if tb.fallback else ''}[/magenta]")
    console.print(f"[dim]States: {' → '.join(result.states)}[/dim]")
    winner = result.winner.value if result.winner else "none"
    console.print(f"[bold green]Winner: {winner}[/bold green]")

    if args.dump_audit:
        print(result.to_audit_json())
    return 0


def cmd_verify(args) -> int:
    ok = True
    if args.commitment:
        committed = verify_seed_commitment(args.seed, args.commitment)
        ok &= committed
        console.print(f"Commitment: {'[green]✅ matches' if committed else '[red]❌ mismatch'}[/]")

    ticket = generate_ticket(args.seed, args.discriminator)
    console.print(f"Recomputed ticket for {args.discriminator!r}: [bold]{ticket}[/bold]")
    if args.ticket is not None:
        match = ticket == args.ticket
        ok &= match
        console.print(f"Ticket: {'[green]✅ matches' if match else f'[red]❌ expected {args.ticket}'}[/]")
    if args.items or args.ticket is None:
        item = get_winning_item(ticket, get_item_ticket_ranges(_load_items(args.items)))
        console.print(f"Item: {item.name} ({item.drop_chance}%)")
    return 0 if ok else 1


def cmd_ranges(args) -> int:
    table = Table(title="Ticket ranges (1% = 1,000 tickets)")
    table.add_column("Item")
    table.add_column("Chance", justify="right")
    table.add_column("Start", justify="right")
    table.add_column("End", justify="right")
    table.add_column("Tickets", justify="right")
    table.add_column("Reel slots", justify="right")
    items = _load_items(args.items)
    reel = build_reel_system(items)
    for r in get_item_ticket_ranges(items):
        slots = len(reel.occurrences(r.item))
        table.add_row(r.item.name, f"{r.item.drop_chance}%", str(r.start), str(r.end),
                      str(r.ticket_count), str(slots) if slots else "★ premium")
    console.print(table)
    return 0


def cmd_audit(args) -> int:
    result = DropRateAuditor(seed=args.seed).audit(_load_items(args.items), n_draws=args.draws)
    if args.json:
        print(result.to_json())
    else:
        console.print(result.summary())
    return 0 if result.passed else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Resolve, replay and audit case battles")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("simulate", help="Play a battle headless and print the result")
    p.add_argument("--seed", default="demo-seed")
    p.add_argument("--team-size", type=int, default=1)
    p.add_argument("--cases", type=int, default=1, help="Number of demo cases to open")
    p.add_argument("--items", help="JSON file with the item catalog")
    p.add_argument("--descriptor", help="JSON file with a full battle descriptor")
    p.add_argument("--fast", action="store_true", help="Skip tiebreak reel animation")
    p.add_argument("--dump-audit", action="store_true")
    p.set_defaults(func=cmd_simulate)

    p = sub.add_parser("verify", help="Recompute a ticket from a revealed seed")
    p.add_argument("--seed", required=True)
    p.add_argument("--discriminator", required=True)
    p.add_argument("--ticket", type=int)
    p.add_argument("--commitment")
    p.add_argument("--items")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("ranges", help="Show the ticket range of every item")
    p.add_argument("--items")
    p.set_defaults(func=cmd_ranges)

    p = sub.add_parser("audit", help="Monte Carlo drop-rate audit")
    p.add_argument("--seed", default="caseforge-audit")
    p.add_argument("--items")
    p.add_argument("--draws", type=int, default=100_000)
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_audit)

    args = parser.parse_args(argv)
    configure_logging(args.log_level or "WARNING")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
