#!/usr/bin/env python3
"""Sanction engine CLI: operator commands with a Rich terminal UI.

Usage:
    python sanction_cli.py seed                 # (re)write the region catalog
    python sanction_cli.py run                  # run one sanction bot pass now
    python sanction_cli.py check 35.69 51.39    # fast-path check for lat/lon
    python sanction_cli.py restricted           # list restricted sellers
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from schemas import ReconciliationSummary

load_dotenv()

console = Console()

OUTCOME_STYLES = {
    "complete": "bold green",
    "aborted": "yellow",
    "error": "bold red",
}


# ---------------------------------------------------------------------------
# Result display
# ---------------------------------------------------------------------------


def show_summary(summary: ReconciliationSummary) -> None:
    """Pretty-print a ReconciliationSummary."""
    style = OUTCOME_STYLES.get(summary.outcome.value, "")
    console.print(
        Panel(
            f"Regions: {summary.region_count}  |  "
            f"Candidates: {summary.candidate_count}  |  "
            f"Sanctioned: [bold red]{summary.sanctioned_count}[/]  |  "
            f"Unsanctioned: [green]{summary.unsanctioned_count}[/]  |  "
            f"Unresolved: [yellow]{summary.unresolved_count}[/]"
            + (f"\n[dim]{summary.notes}[/dim]" if summary.notes else ""),
            title=f"[{style}]Sanction bot: {summary.outcome.value}[/]",
            border_style="cyan",
        )
    )

    if summary.writes:
        table = Table(show_header=True, header_style="bold cyan", border_style="dim")
        table.add_column("Phase")
        table.add_column("Specs", justify="right")
        table.add_column("Matched", justify="right")
        table.add_column("Modified", justify="right")
        table.add_column("Errors", justify="right")
        for w in summary.writes:
            table.add_row(
                w.phase.value,
                str(w.attempted),
                str(w.matched),
                str(w.modified),
                f"[red]{len(w.errors)}[/red]" if w.errors else "0",
            )
        console.print(table)

    if summary.geocode_failures:
        console.print("  [yellow]Geocode failures:[/yellow]")
        for f in summary.geocode_failures:
            console.print(f"    {f.seller_id}  {f.location.value}  [dim]{f.error}[/dim]")
    console.print()


def show_restricted(sellers) -> None:
    if not sellers:
        console.print("  [dim]No restricted sellers.[/dim]")
        return

    table = Table(show_header=True, header_style="bold cyan", border_style="dim", expand=True)
    table.add_column("Seller ID")
    table.add_column("Name")
    table.add_column("Restores to")
    table.add_column("Lat", justify="right")
    table.add_column("Lon", justify="right")
    for s in sellers:
        table.add_row(
            s.seller_id,
            s.name or "[dim]-[/dim]",
            s.pre_restriction_seller_type.value if s.pre_restriction_seller_type else "[red]missing[/red]",
            f"{s.sell_map_center.latitude:.4f}",
            f"{s.sell_map_center.longitude:.4f}",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def cmd_seed(args: argparse.Namespace) -> int:
    from region_catalog import seed_regions

    regions = await seed_regions(replace=not args.append)
    console.print(f"  [bold green]Seeded {len(regions)} sanctioned regions[/]")
    for r in regions:
        console.print(f"    {r.location.value}  [dim]{r.boundary.type}[/dim]")
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    from sanction_bot import run_sanction_bot

    with console.status("[bold green]Running sanction bot (geocoder is rate limited)...", spinner="dots"):
        summary = await run_sanction_bot(trigger="cli")
    show_summary(summary)
    return 0 if summary.outcome.value == "complete" else 1


async def cmd_check(args: argparse.Namespace) -> int:
    from region_catalog import is_sanctioned_location

    sanctioned = await is_sanctioned_location(args.latitude, args.longitude)
    if sanctioned:
        console.print(f"  [bold red]{args.latitude}, {args.longitude} is inside a sanctioned boundary[/]")
    else:
        console.print(f"  [green]{args.latitude}, {args.longitude} is not inside a sanctioned boundary[/]")
    return 0


async def cmd_restricted(args: argparse.Namespace) -> int:
    from sanction_models import Seller
    from schemas import SellerType

    sellers = await Seller.find({"seller_type": SellerType.RESTRICTED.value}).sort("seller_id").to_list()
    show_restricted(sellers)
    return 0


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="sanction",
        description="Sanctioned-region compliance engine operator tools.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    seed = sub.add_parser("seed", help="Write the default sanctioned-region catalog")
    seed.add_argument("--append", action="store_true", help="Keep existing regions")
    seed.set_defaults(func=cmd_seed)

    run_cmd = sub.add_parser("run", help="Run one sanction bot pass now")
    run_cmd.set_defaults(func=cmd_run)

    check = sub.add_parser("check", help="Fast-path check for a coordinate")
    check.add_argument("latitude", type=float)
    check.add_argument("longitude", type=float)
    check.set_defaults(func=cmd_check)

    restricted = sub.add_parser("restricted", help="List restricted sellers")
    restricted.set_defaults(func=cmd_restricted)

    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    from db import init_db, close_db

    console.print("  [dim]Connecting to MongoDB...[/dim]")
    await init_db()
    try:
        return await args.func(args)
    finally:
        await close_db()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
