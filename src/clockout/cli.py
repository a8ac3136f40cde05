#!/usr/bin/env python3
"""clockout CLI.

Usage:
    clockout start 9:00
    clockout start 1330 --half-day
    clockout status
    clockout watch
    clockout widget --json
    clockout end
    clockout serve --port 7778
"""

from __future__ import annotations

import asyncio
import json
import time
from datetime import time as dt_time
from pathlib import Path

import click
from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table
from rich.text import Text

from . import history
from .config import Settings, db_option, timezone_option, verbose_option
from .engine import ShiftEngine, ShiftEvent, TransitionResult
from .log import setup_logging
from .notifier import NullNotifier
from .shift import ShiftConfiguration, ShiftState, format_clock_time, format_duration, parse_time, today_string
from .store import SqliteStore
from .widget import WidgetSnapshotProvider, WidgetVariant

TICK_SECONDS = 1.0

STATE_STYLES = {
    ShiftState.IDLE: "dim",
    ShiftState.ACTIVE: "red",
    ShiftState.OVERTIME: "dark_orange",
}


class StartTimeType(click.ParamType):
    name = "time"

    def convert(self, value, param, ctx) -> dt_time:
        if isinstance(value, dt_time):
            return value
        try:
            return parse_time(value)
        except ValueError as e:
            self.fail(str(e), param, ctx)


START_TIME = StartTimeType()


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _engine(ctx: click.Context) -> ShiftEngine:
    settings = _settings(ctx)
    store = SqliteStore(settings.db_path)
    # One-shot commands exit immediately. A running `clockout serve` adopts
    # the shift on its next validate and schedules the reminders.
    return ShiftEngine(store, NullNotifier(), tz=settings.tz)


def _record(settings: Settings, result: TransitionResult, details: dict | None = None) -> None:
    if not result.changed:
        return

    async def _write():
        await history.init_tables(settings.db_path)
        await history.record_transition(settings.db_path, result, "cli", details)

    asyncio.run(_write())


def cleanup_notice(engine: ShiftEngine, now: float | None = None) -> str:
    """Explain why stale shift data was wiped on load."""
    now = time.time() if now is None else now
    record = engine.cleared_record
    if record is None:
        return "Note: stale shift data was cleared."
    if record.work_date and record.work_date != today_string(now, engine.tz):
        return "Note: shift data from a previous day was cleared."
    if record.has_shift and record.end_epoch_seconds <= now:
        return f"Note: the shift that ended at {format_clock_time(record.end_epoch_seconds, engine.tz)} was cleared."
    return "Note: leftover shift data was cleared."


def _echo_cleanup_notice(engine: ShiftEngine) -> None:
    if engine.data_cleared:
        click.echo(cleanup_notice(engine))
        engine.acknowledge_data_cleared()


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@db_option
@timezone_option
@verbose_option
@click.pass_context
def cli(ctx, db_path: Path | None, timezone: str | None, verbose: bool):
    """clockout - track today's shift and count down to clocking out."""
    settings = Settings.from_env()
    if db_path is not None:
        settings.db_path = db_path
    if timezone:
        settings.timezone = timezone
    if verbose:
        settings.verbose = True
    settings.validate()
    setup_logging(settings.verbose)

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings

    if settings.verbose:
        click.echo(f"Using store: {settings.db_path} ({settings.timezone})")


@cli.command()
@click.argument("start_time", metavar="TIME", type=START_TIME)
@click.option("--half-day", is_flag=True, help="4 hour shift instead of 8 (+1h lunch)")
@click.pass_context
def start(ctx, start_time: dt_time, half_day: bool):
    """Start a shift at TIME (24h, e.g. 9, 930, 09:30)."""
    engine = _engine(ctx)
    _echo_cleanup_notice(engine)
    result = engine.start(ShiftConfiguration(selected_start_time=start_time, is_half_day=half_day))
    _record(_settings(ctx), result, {"start_time": start_time.strftime("%H:%M"), "half_day": half_day})

    if ShiftEvent.ROLLED_TO_TOMORROW in result.events:
        click.echo("That time has already passed today, starting tomorrow instead.")
    click.echo(f"Working: {engine.current_work_info_summary}")


@cli.command()
@click.pass_context
def end(ctx):
    """End the current shift."""
    engine = _engine(ctx)
    _echo_cleanup_notice(engine)
    result = engine.end()
    _record(_settings(ctx), result)
    click.echo("Shift ended." if result.changed else "No shift in progress.")


@cli.command()
@click.pass_context
def validate(ctx):
    """Run the foreground check (day rollover, overdue auto-cleanup)."""
    engine = _engine(ctx)
    _echo_cleanup_notice(engine)
    result = engine.validate()
    _record(_settings(ctx), result)
    if ShiftEvent.DAY_ROLLOVER in result.events:
        click.echo("Shift was from another day and has been ended.")
    elif ShiftEvent.DATE_MISSING in result.events:
        click.echo("Shift had no work date and has been ended.")
    elif ShiftEvent.AUTO_CLEANUP in result.events:
        click.echo("Shift ran too far past its end and has been ended.")
    else:
        click.echo(f"OK ({engine.state().value})")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def status(ctx, as_json: bool):
    """Show the current shift."""
    engine = _engine(ctx)
    if as_json:
        click.echo(json.dumps(engine.to_export_dict(), indent=2))
        return

    _echo_cleanup_notice(engine)
    view = engine.view()
    if view.state == ShiftState.IDLE:
        click.echo("Not working.")
        return

    click.echo(f"Working: {engine.current_work_info_summary}")
    if view.is_overtime:
        click.echo(f"Overtime: {format_duration(view.remaining_seconds)}")
    else:
        click.echo(f"Remaining: {format_duration(view.remaining_seconds)}")
    click.echo(f"Progress: {view.progress:.0%}")


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
@click.pass_context
def widget(ctx, as_json: bool):
    """Render the widget snapshot straight from the store."""
    settings = _settings(ctx)
    provider = WidgetSnapshotProvider(SqliteStore(settings.db_path), tz=settings.tz)
    snapshot = provider.snapshot()

    if as_json:
        click.echo(json.dumps(snapshot.to_export_dict(), indent=2))
        return

    if snapshot.variant == WidgetVariant.COUNTING_DOWN:
        click.echo(f"Until clock-out: {format_duration(snapshot.remaining_seconds)}")
        click.echo(f"Ends at {snapshot.formatted_end_time}")
    elif snapshot.variant == WidgetVariant.JUST_ENDED:
        click.echo("Time to go home!")
    else:
        click.echo("Not working.")

    if snapshot.policy.is_never:
        click.echo("Next refresh: on demand")
    else:
        click.echo(f"Next refresh: {format_clock_time(snapshot.policy.at, settings.tz)}")


def render_shift(engine: ShiftEngine, now: float) -> Panel:
    """Countdown panel built from derived values only."""
    view = engine.view(now)
    style = STATE_STYLES[view.state]

    if view.state == ShiftState.IDLE:
        return Panel(Text("Not working", style="dim"), title="clockout", border_style=style)

    label = "Overtime" if view.is_overtime else "Until clock-out"
    table = Table.grid(padding=(0, 1))
    table.add_column(style="bold")
    table.add_column()
    table.add_row(label, Text(format_duration(view.remaining_seconds), style=f"bold {style}"))
    table.add_row("Shift", engine.current_work_info_summary)
    table.add_row("Ends", f"🏠 {engine.formatted_end_time}")

    bar = ProgressBar(total=1.0, completed=view.progress, complete_style=style)
    return Panel(Group(table, bar), title="clockout", border_style=style)


@cli.command()
@click.option("--duration", type=float, default=0, help="Stop after this many seconds (0 = until Ctrl-C)")
@click.pass_context
def watch(ctx, duration: float):
    """Live countdown, refreshed every second."""
    engine = _engine(ctx)
    _echo_cleanup_notice(engine)
    _record(_settings(ctx), engine.validate())

    console = Console()
    started = time.monotonic()
    try:
        with Live(render_shift(engine, time.time()), console=console, refresh_per_second=4) as live:
            while duration <= 0 or time.monotonic() - started < duration:
                time.sleep(TICK_SECONDS)
                live.update(render_shift(engine, time.time()))
    except KeyboardInterrupt:
        pass


@cli.command(name="history")
@click.option("--limit", default=20, show_default=True, help="Number of events to show")
@click.pass_context
def show_history(ctx, limit: int):
    """Show recent shift transitions."""
    settings = _settings(ctx)

    async def _read():
        await history.init_tables(settings.db_path)
        return await history.recent_events(settings.db_path, limit)

    events = asyncio.run(_read())
    if not events:
        click.echo("No events recorded.")
        return

    table = Table(title="Shift events")
    table.add_column("When")
    table.add_column("Event")
    table.add_column("Source")
    for event in events:
        table.add_row(str(event["created_at"]), event["event_type"], event["source"])
    Console().print(table)


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=None, help="Port (defaults to $CLOCKOUT_PORT or 7778)")
@click.pass_context
def serve(ctx, host: str, port: int | None):
    """Run the API server that owns reminders."""
    import uvicorn

    from .api import create_app

    settings = _settings(ctx)
    setup_logging(settings.verbose, console=True)
    uvicorn.run(create_app(settings), host=host, port=port or settings.port)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":  # pragma: no cover
    main()
