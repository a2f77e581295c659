import asyncio
import csv
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from floodroute.cache.store import CacheTable
from floodroute.config.logging_setup import setup_logging
from floodroute.errors import CacheUnavailable, InvalidFeatureVector
from floodroute.manager import FloodRouteManager
from floodroute.providers.models import Coordinate, SpatialDataset
from floodroute.services.risk_engine import FEATURE_NAMES

app = typer.Typer(help="Manage the floodroute offline cache and inspect flood risk")
console = Console()

T = TypeVar("T")


def _run(action: Callable[[FloodRouteManager], Awaitable[T]]) -> T:
    """Run an async action against an initialized manager."""

    async def runner() -> T:
        manager = FloodRouteManager()
        try:
            await manager.initialize()
            return await action(manager)
        finally:
            await manager.close()

    return asyncio.run(runner())


def _format_bytes(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


def read_dataset_csv(path: Path) -> List[Dict[str, Any]]:
    """
    Read spatial records from a CSV with ``id``, ``latitude`` and ``longitude``
    columns; every other column becomes a property.
    """
    records = []
    with open(path, "r", encoding="utf-8", newline="") as f:
        for i, row in enumerate(csv.DictReader(f)):
            properties = {
                k: v for k, v in row.items() if k not in ("id", "latitude", "longitude") and v != ""
            }
            records.append(
                {
                    "id": row.get("id") or f"{path.stem}-{i}",
                    "latitude": float(row["latitude"]),
                    "longitude": float(row["longitude"]),
                    "properties": properties,
                }
            )
    return records


@app.command()
def stats():
    """
    Show entry counts and sizes per cache table.
    """
    with console.status("[bold green]Reading cache statistics..."):
        data = _run(lambda m: m.get_stats())

    cache = data["cache"]
    if not cache:
        console.print("[bold red]Cache store unavailable.")
        raise typer.Exit(code=1)

    table = Table(show_header=True, header_style="bold green")
    table.add_column("Table")
    table.add_column("Entries", justify="right")
    table.add_column("Size", justify="right")
    table.add_column("Hits", justify="right")
    table.add_column("Misses", justify="right")

    for t in CacheTable:
        row = cache[t.value]
        table.add_row(
            t.value,
            str(row["count"]),
            _format_bytes(row["approx_size_bytes"]),
            str(row["hits"]),
            str(row["misses"]),
        )

    console.print(table)
    console.print(
        f"Tile ceiling: [cyan]{_format_bytes(cache['tile_cache_max_bytes'])}[/]  "
        f"Evictions: [cyan]{cache['evictions']}[/]  Errors: [cyan]{cache['errors']}[/]"
    )


@app.command()
def clear(
    table: Optional[str] = typer.Argument(None, help="Table to clear (tiles, landmarks, routes, search); all when omitted"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """
    Delete cached entries.
    """
    cache_table = None
    if table is not None:
        try:
            cache_table = CacheTable(table)
        except ValueError:
            console.print(f"[bold red]Unknown table '{table}'.")
            raise typer.Exit(code=1)

    target = table or "all tables"
    if not yes and not typer.confirm(f"Clear {target}?"):
        raise typer.Abort()

    deleted = _run(lambda m: m.store.clear(cache_table))
    for name, count in deleted.items():
        console.print(f"[green]{name}: removed [bold]{count}[/] entries")


@app.command()
def prune():
    """
    Remove expired tiles, routes and search results.
    """
    pruned = _run(lambda m: m.store.prune_expired())
    for name, count in pruned.items():
        console.print(f"[green]{name}: pruned [bold]{count}[/] entries")


@app.command()
def precache(
    latitude: float = typer.Argument(..., help="Centre latitude"),
    longitude: float = typer.Argument(..., help="Centre longitude"),
    radius_km: float = typer.Option(5.0, help="Radius to cover in kilometres"),
    min_zoom: int = typer.Option(12, help="Lowest zoom level"),
    max_zoom: int = typer.Option(16, help="Highest zoom level"),
):
    """
    Download map tiles around a point for offline use.
    """
    center = Coordinate(latitude=latitude, longitude=longitude)

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Downloading tiles", total=None)

        def on_progress(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        summary = _run(
            lambda m: m.tile_fetcher.precache_area(
                center, radius_km, min_zoom=min_zoom, max_zoom=max_zoom, progress=on_progress
            )
        )

    console.print(
        f"[bold]Tiles:[/] {summary['total']}  [green]downloaded {summary['downloaded']}[/]  "
        f"[cyan]already cached {summary['cached']}[/]  [red]failed {summary['failed']}[/]"
    )


@app.command("import-dataset")
def import_dataset(
    dataset: SpatialDataset = typer.Argument(..., help="Dataset to import into"),
    csv_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV with id, latitude, longitude columns"),
):
    """
    Import roads or hazard points from a CSV file.
    """
    try:
        records = read_dataset_csv(csv_file)
    except (KeyError, ValueError) as e:
        console.print(f"[bold red]Invalid CSV: {e}")
        raise typer.Exit(code=1)

    try:
        written = _run(lambda m: m.spatial_index.bulk_import(dataset, records))
    except CacheUnavailable as e:
        console.print(f"[bold red]Import failed: {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]Imported [bold]{written}[/] {dataset.value} records from {csv_file}")


@app.command()
def risk(
    latitude: float = typer.Argument(..., help="Latitude"),
    longitude: float = typer.Argument(..., help="Longitude"),
):
    """
    Compute flood risk at a coordinate.
    """
    coordinate = Coordinate(latitude=latitude, longitude=longitude)
    try:
        result = _run(lambda m: m.risk_engine.risk_for(coordinate))
    except InvalidFeatureVector as e:
        console.print(f"[bold red]{e}")
        raise typer.Exit(code=1)

    console.print(f"\n[bold]Flood risk at [cyan]{latitude:.5f}, {longitude:.5f}[/]")
    console.print(f"Probability: [cyan]{result.flood_probability:.2f}[/]")
    console.print(f"Depth: [cyan]{result.flood_magnitude:.2f} m[/]")
    level = result.risk_level
    console.print(f"Level: [bold {level.color}]{level.display_name}[/] - {level.recommended_action}")

    table = Table(show_header=True, header_style="bold green")
    table.add_column("Feature")
    table.add_column("Value", justify="right")
    for name, value in zip(FEATURE_NAMES, result.features):
        table.add_row(name, f"{value:.2f}")
    console.print(table)


@app.callback()
def configure(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to the console")):
    if verbose:
        setup_logging()


def main():
    app()


if __name__ == "__main__":
    main()
