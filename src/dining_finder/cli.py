from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List

import uvicorn
from rich.console import Console
from rich.table import Table

from .config import ServerConfig
from .errors import DiningError
from .meals import current_meal, local_now
from .models import Coordinate, DiningHall, EtaResult, RankedHall
from .normalize import normalize_diet_tags
from .query_parser import format_date
from .server import DiningService, create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query dining hall menus, walking ETAs and rankings")
    sub = parser.add_subparsers(dest="command", required=True)

    menu = sub.add_parser("menu", help="Show the menu served for one date and meal")
    menu.add_argument("--date", default=None, help="MM/DD/YYYY or YYYY-MM-DD (default: today)")
    menu.add_argument("--meal", default=None, help="Breakfast, Lunch, Dinner or Brunch (default: current meal)")
    menu.add_argument("--hall", default=None, help="Only show halls whose name contains this text")

    sub.add_parser("halls", help="List every dining hall with menu data")
    sub.add_parser("dates", help="List the dates that have menu data")

    etas = sub.add_parser("etas", help="Walking and biking ETAs from a coordinate")
    etas.add_argument("--lat", type=float, required=True)
    etas.add_argument("--lon", type=float, required=True)

    rank = sub.add_parser("rank", help="Rank dining halls for a free-text preference")
    rank.add_argument("query", nargs="?", default=None, help="What you feel like eating (omit for a general ranking)")
    rank.add_argument("--date", default=None)
    rank.add_argument("--meal", default=None)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None, help="Defaults to PORT from the environment (3001)")
    return parser


def main(args: list[str] | None = None) -> None:
    parser = build_parser()
    opts = parser.parse_args(args=args)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    config = ServerConfig.from_env()
    console = Console()

    if opts.command == "serve":
        console.print(f"[green]Dining API starting; clients reach it at {config.api_base_url}[/]")
        uvicorn.run(create_app(config), host=opts.host, port=opts.port or config.port)
        return

    service = DiningService(config)
    try:
        asyncio.run(_run(opts, service, console))
    except DiningError as exc:
        console.print(f"[red]{exc.code}: {exc}[/]")
        raise SystemExit(1) from exc
    finally:
        service.close()


async def _run(opts: argparse.Namespace, service: DiningService, console: Console) -> None:
    now = local_now(service.config.timezone)
    if opts.command == "menu":
        date = opts.date or format_date(now.date())
        meal = opts.meal or current_meal(now)
        halls = await service.get_menu(date, meal)
        if opts.hall:
            needle = opts.hall.lower()
            halls = [hall for hall in halls if needle in hall.name.lower()]
        if not halls:
            console.print(f"[yellow]No menu found for {meal} on {date}.[/]")
            return
        _render_menu(console, halls, f"{meal} on {date}")
    elif opts.command == "halls":
        for name in await service.list_dining_halls():
            console.print(name)
    elif opts.command == "dates":
        for value in await service.list_available_dates():
            console.print(value)
    elif opts.command == "etas":
        results = await service.compute_etas(Coordinate(lat=opts.lat, lon=opts.lon))
        _render_etas(console, results)
    elif opts.command == "rank":
        ranked = await service.rank_halls(opts.query, opts.meal, opts.date)
        if not ranked:
            console.print("[yellow]No dining halls to rank for that meal.[/]")
            return
        _render_rankings(console, ranked)


def _render_menu(console: Console, halls: List[DiningHall], title: str) -> None:
    for hall in halls:
        table = Table(title=f"{hall.name} - {title}")
        table.add_column("Item")
        table.add_column("Station")
        table.add_column("Allergens")
        table.add_column("Diet")
        for item in hall.food_items:
            table.add_row(
                item.name,
                item.station or "",
                ", ".join(item.allergens),
                ", ".join(normalize_diet_tags(item.diet_tags)),
            )
        console.print(table)


def _render_etas(console: Console, results: List[EtaResult]) -> None:
    table = Table(title="Travel Times")
    table.add_column("Hall")
    table.add_column("Distance (km)", justify="right")
    table.add_column("Walk (min)", justify="right")
    table.add_column("Bike (min)", justify="right")
    for result in results:
        table.add_row(result.hall, _fmt(result.distance_km), _fmt(result.walk_min), _fmt(result.bike_min))
    console.print(table)


def _render_rankings(console: Console, ranked: List[RankedHall]) -> None:
    table = Table(title="Ranked Dining Halls")
    table.add_column("#", justify="right")
    table.add_column("Hall")
    table.add_column("Score", justify="right")
    table.add_column("Best Item")
    table.add_column("Reason")
    for position, hall in enumerate(ranked, start=1):
        table.add_row(str(position), hall.name, str(hall.score), hall.best_food_item or "", hall.reason)
    console.print(table)


def _fmt(value: float | None) -> str:
    return "-" if value is None else f"{value:g}"


if __name__ == "__main__":  # pragma: no cover
    main()
