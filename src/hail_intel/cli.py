"""CLI interface using Typer."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from hail_intel import __version__
from hail_intel.config import ExportFormat, HailIntelConfig
from hail_intel.engine import HailIntelEngine, PassResult
from hail_intel.errors import PersistenceFailure, SourcesExhausted, SourceUnavailable
from hail_intel.exporters import export_geojson, export_json
from hail_intel.fetchers import KNOWN_STORMS_CSV, StaticFallbackSource
from hail_intel.models import DateRange, StormEvent
from hail_intel.scoring import confidence_level

Exporter = Callable[[list[StormEvent], Path], Path]

EXPORTERS: dict[str, Exporter] = {
    "json": export_json,
    "geojson": export_geojson,
}

app = typer.Typer(
    name="hail-intel",
    help="Hail storm aggregation and canvassing alerts from MESH radar data.",
    add_completion=False,
)
console = Console()

StoreDirOption = Annotated[
    Path | None,
    typer.Option("--store-dir", help="Directory for persisted storms and alerts."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose logging."),
]


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"hail-intel {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Hail Intel - Hail storm aggregation and alerting for roofing canvassers."""


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[logging.StreamHandler()],
    )


def _make_config(**overrides: Any) -> HailIntelConfig:
    """Config from the environment, with explicitly given CLI options on top."""
    return HailIntelConfig(**{k: v for k, v in overrides.items() if v is not None})


def _build_engine(config: HailIntelConfig) -> HailIntelEngine:
    return HailIntelEngine.from_config(config)


def _storm_table(events: list[StormEvent], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Storm", style="bold")
    table.add_column("Location")
    table.add_column("Peak", justify="right", style="red")
    table.add_column("Reports", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Started", style="dim")
    table.add_column("Status")

    for e in events:
        level = confidence_level(e.mean_confidence)
        status = "[green]active[/green]" if e.active else "[dim]ended[/dim]"
        if not e.enabled:
            status += " [yellow](hidden)[/yellow]"
        table.add_row(
            e.id,
            e.location,
            f'{e.peak_size_inches:.2f}"',
            str(e.report_count),
            f"[{level.color}]{e.mean_confidence:.0f}[/{level.color}]",
            e.start_time.strftime("%Y-%m-%d %H:%M"),
            status,
        )
    return table


def _print_pass(result: PassResult) -> None:
    for attempt in result.attempts:
        line = f"  {attempt.tier.value:<10} {attempt.status}"
        if attempt.status == "ok":
            line += f" ({attempt.report_count} reports)"
        elif attempt.error:
            line += f" [dim]({attempt.error})[/dim]"
        console.print(line)

    if result.report_count == 0:
        console.print("[yellow]No hail reports for the requested range.[/yellow]")
        return

    tier = result.tier_used.value if result.tier_used else "-"
    console.print()
    console.print(_storm_table(result.storms, f"Storms updated from the {tier} tier"))
    for entry in result.notifications:
        console.print(f"[bold red]{entry.type.value}[/bold red] {entry.message} [dim]({entry.id})[/dim]")
    console.print(f"\nReports processed: {result.report_count}")
    console.print(f"Alerts raised: {len(result.notifications)} ({result.delivered} delivered)")


@app.command()
def run(
    day: Annotated[
        str | None,
        typer.Option("--date", "-d", help="Process one UTC day (YYYY-MM-DD)."),
    ] = None,
    hours: Annotated[
        float,
        typer.Option("--hours", help="Look back this many hours when no --date is given."),
    ] = 24.0,
    store_dir: StoreDirOption = None,
    threshold: Annotated[
        float | None,
        typer.Option("--threshold", help="Confidence needed for the initial alert."),
    ] = None,
    fallback: Annotated[
        Path | None,
        typer.Option("--fallback", help="CSV of known storms used when every server fails."),
    ] = None,
    builtin_fallback: Annotated[
        bool,
        typer.Option("--builtin-fallback", help="Fall back to the bundled known-storms CSV."),
    ] = False,
    webhook: Annotated[
        str | None,
        typer.Option("--webhook", help="POST alerts to this URL."),
    ] = None,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", help="Disable disk caching of archive days."),
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Fetch hail reports for a time range and update storms and alerts."""
    _setup_logging(verbose)

    if day is not None:
        try:
            date_range = DateRange.for_day(date.fromisoformat(day))
        except ValueError:
            raise typer.BadParameter(f"not a YYYY-MM-DD date: {day}", param_hint="--date") from None
    else:
        if hours <= 0:
            raise typer.BadParameter("must be positive", param_hint="--hours")
        date_range = DateRange.last_hours(hours)

    if builtin_fallback and fallback is None:
        fallback = KNOWN_STORMS_CSV

    config = _make_config(
        store_dir=store_dir,
        alert_threshold=threshold,
        fallback_dataset=fallback,
        webhook_url=webhook,
        cache_enabled=False if no_cache else None,
    )
    engine = _build_engine(config)

    try:
        result = engine.run_pass(date_range)
    except SourcesExhausted as exc:
        console.print(f"[red]No hail source answered:[/red] {exc}")
        raise typer.Exit(code=1) from None
    except PersistenceFailure as exc:
        console.print(f"[red]Could not save storm state:[/red] {exc}")
        raise typer.Exit(code=1) from None

    _print_pass(result)


@app.command()
def storms(
    store_dir: StoreDirOption = None,
    active_only: Annotated[
        bool,
        typer.Option("--active", help="Only show storms still receiving reports."),
    ] = False,
) -> None:
    """List tracked storms."""
    engine = _build_engine(_make_config(store_dir=store_dir))
    engine.start()
    events = engine.aggregator.active_events if active_only else engine.aggregator.events
    if not events:
        console.print("[yellow]No storms tracked yet.[/yellow]")
        raise typer.Exit()
    console.print(_storm_table(events, "Tracked storms"))


@app.command("log")
def show_log(
    store_dir: StoreDirOption = None,
    pending: Annotated[
        bool,
        typer.Option("--pending", help="Only show alerts nobody has acted on."),
    ] = False,
) -> None:
    """Show the notification log, newest first."""
    engine = _build_engine(_make_config(store_dir=store_dir))
    entries = engine.store.load_notification_log()
    if pending:
        entries = [e for e in entries if not e.actioned]
    if not entries:
        console.print("[yellow]No alerts logged.[/yellow]")
        raise typer.Exit()

    table = Table(title="Notification log")
    table.add_column("Alert", style="dim")
    table.add_column("Time")
    table.add_column("Type", style="bold")
    table.add_column("Storm")
    table.add_column("Size", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Message")
    table.add_column("Actioned")
    for e in sorted(entries, key=lambda e: e.timestamp, reverse=True):
        table.add_row(
            e.id,
            e.timestamp.strftime("%Y-%m-%d %H:%M"),
            e.type.value,
            e.storm_id,
            f'{e.hail_size:.2f}"',
            f"{e.confidence:.0f}",
            e.message,
            "[green]yes[/green]" if e.actioned else "no",
        )
    console.print(table)


@app.command()
def ack(
    alert_id: Annotated[str, typer.Argument(help="Notification log entry id.")],
    store_dir: StoreDirOption = None,
) -> None:
    """Mark an alert as actioned."""
    engine = _build_engine(_make_config(store_dir=store_dir))
    try:
        entry = engine.mark_actioned(alert_id)
    except KeyError:
        console.print(f"[red]No alert with id {alert_id}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"Marked [bold]{entry.id}[/bold] as actioned")


@app.command()
def toggle(
    storm_id: Annotated[str, typer.Argument(help="Storm id.")],
    enable: Annotated[
        bool,
        typer.Option("--enable/--disable", help="Show or hide the storm on the map."),
    ] = True,
    store_dir: StoreDirOption = None,
) -> None:
    """Show or hide one storm on the map."""
    engine = _build_engine(_make_config(store_dir=store_dir))
    try:
        event = engine.set_enabled(storm_id, enable)
    except KeyError:
        console.print(f"[red]No storm with id {storm_id}[/red]")
        raise typer.Exit(code=1) from None
    state = "shown" if event.enabled else "hidden"
    console.print(f"Storm [bold]{event.id}[/bold] ({event.location}) is now {state}")


@app.command()
def focus(
    storm_id: Annotated[str, typer.Argument(help="Storm id.")],
    store_dir: StoreDirOption = None,
) -> None:
    """Show only one storm on the map."""
    engine = _build_engine(_make_config(store_dir=store_dir))
    try:
        event = engine.focus_on(storm_id)
    except KeyError:
        console.print(f"[red]No storm with id {storm_id}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"Focused on storm [bold]{event.id}[/bold] ({event.location})")


@app.command()
def export(
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="Output file path."),
    ] = Path("hail_storms.json"),
    output_format: Annotated[
        ExportFormat,
        typer.Option("--format", "-f", help="Output format: json, geojson."),
    ] = "json",
    enabled_only: Annotated[
        bool,
        typer.Option("--enabled-only", help="Skip storms hidden from the map."),
    ] = False,
    store_dir: StoreDirOption = None,
) -> None:
    """Export tracked storms for a map client."""
    engine = _build_engine(_make_config(store_dir=store_dir))
    engine.start()
    events = engine.aggregator.events
    if enabled_only:
        events = [e for e in events if e.enabled]

    EXPORTERS[output_format](events, output)
    console.print(f"{output_format.upper()} written to [bold]{output}[/bold]")
    console.print(f"Total storms: {len(events)}")


@app.command()
def history(
    latitude: Annotated[float, typer.Argument(help="Address latitude.")],
    longitude: Annotated[float, typer.Argument(help="Address longitude.")],
    radius: Annotated[
        float,
        typer.Option("--radius", "-r", help="Search radius in miles."),
    ] = 1.0,
    years: Annotated[
        float,
        typer.Option("--years", help="How far back to look."),
    ] = 5.0,
    store_dir: StoreDirOption = None,
) -> None:
    """Show tracked storms that dropped hail near an address."""
    if radius <= 0:
        raise typer.BadParameter("must be positive", param_hint="--radius")
    engine = _build_engine(_make_config(store_dir=store_dir))
    since = datetime.now(tz=timezone.utc) - timedelta(days=365.25 * years)
    hits = engine.address_history(latitude, longitude, radius, since)
    if not hits:
        console.print(f"[yellow]No hail within {radius:g} mi of {latitude}, {longitude}.[/yellow]")
        raise typer.Exit()

    table = Table(title=f"Hail within {radius:g} mi of {latitude}, {longitude}")
    table.add_column("Date")
    table.add_column("Storm", style="bold")
    table.add_column("Location")
    table.add_column("Max size", justify="right", style="red")
    table.add_column("Closest", justify="right")
    table.add_column("Reports", justify="right")
    for h in hits:
        table.add_row(
            h.start_time.strftime("%Y-%m-%d"),
            h.storm_id,
            h.location,
            f'{h.max_size_inches:.2f}"',
            f"{h.closest_miles:.2f} mi",
            str(h.report_count),
        )
    console.print(table)


@app.command()
def validate(
    truth: Annotated[
        Path,
        typer.Argument(help="CSV of observed hail reports (same columns as the fallback CSV)."),
    ],
    day: Annotated[
        str,
        typer.Option("--date", "-d", help="UTC day to compare (YYYY-MM-DD)."),
    ],
    store_dir: StoreDirOption = None,
) -> None:
    """Compare tracked reports for one day with observed ground truth."""
    try:
        date_range = DateRange.for_day(date.fromisoformat(day))
    except ValueError:
        raise typer.BadParameter(f"not a YYYY-MM-DD date: {day}", param_hint="--date") from None

    try:
        observed = StaticFallbackSource(truth).fetch(date_range)
    except SourceUnavailable as exc:
        console.print(f"[red]Cannot read ground truth:[/red] {exc}")
        raise typer.Exit(code=1) from None

    engine = _build_engine(_make_config(store_dir=store_dir))
    metrics = engine.validate_against(observed, date_range)

    console.print(f"True positives:  {metrics.true_positives}")
    console.print(f"False positives: {metrics.false_positives}")
    console.print(f"False negatives: {metrics.false_negatives}")
    console.print(
        f"Precision {metrics.precision:.1%}  Recall {metrics.recall:.1%}  F1 {metrics.f1_score:.1%}"
    )
    for area, count in sorted(metrics.matches_by_area.items()):
        console.print(f"  cell {area}: {count} matched")
