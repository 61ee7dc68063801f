"""CLI entry point: novel-factory tick triggers and operator commands.

Usage:
  novel-factory daily-tick        reset quotas, promote queued works, clean errors
  novel-factory main-tick         schedule, write, gate and publish chapters
  novel-factory admit ...         queue a new production
  novel-factory resume ID         resume a paused production
  novel-factory stats             production and publishing counters
  novel-factory schedule          today's publish schedule by slot
  novel-factory --help            list all commands

The ticks are meant to be driven by an external scheduler (cron, systemd
timer); each run is a single pass and exits.
"""

import asyncio
import logging
import sys

import click
from rich.table import Table

from cli.theme import (
    app_header,
    command_panel,
    counts_table,
    get_console,
    status_text,
    success_panel,
)
from config.exceptions import FactoryError, InvalidConfigError
from config.logging_config import setup_logging
from config.settings import Settings, get_settings
from models.database import Database
from models.enums import ProductionStatus
from models.production import WorkPlan
from tools.time_utils import utc_now

console = get_console()


def _init_logging(verbose: bool, settings: Settings):
    """Configure logging based on verbosity."""
    level = logging.DEBUG if verbose else logging.INFO
    setup_logging(level=level, log_dir=settings.log_dir)


def _build_orchestrator(settings: Settings, db: Database):
    from agents.writer_agent import WriterAgent
    from tools.agent_sdk_client import AgentSDKClient
    from workflow.callbacks import RichTickCallback
    from workflow.orchestrator import Orchestrator

    writer = WriterAgent(llm_client=AgentSDKClient(settings), settings=settings)
    return Orchestrator(db, settings, writer, callback=RichTickCallback(console))


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, verbose):
    """novel-factory: scheduled serial-fiction production pipeline."""
    try:
        settings = get_settings()
    except InvalidConfigError as e:
        console.print(str(e), style="error", markup=False)
        sys.exit(2)
    _init_logging(verbose, settings)
    ctx.obj = {"settings": settings, "db": Database(settings.sqlite_db_path, settings.store_timeout_seconds)}


# ---------------------------------------------------------------------------
# Ticks
# ---------------------------------------------------------------------------

@cli.command(name="daily-tick")
@click.pass_obj
def daily_tick(obj):
    """Run the once-a-day maintenance tick."""
    orchestrator = _build_orchestrator(obj["settings"], obj["db"])
    console.print(app_header("daily tick"))
    try:
        result = asyncio.run(orchestrator.run_daily_tick())
    except FactoryError as e:
        console.print(f"\n[error]Daily tick failed: {e}[/]")
        sys.exit(1)
    console.print(counts_table("Daily tick", result.to_dict()))


@cli.command(name="main-tick")
@click.pass_obj
def main_tick(obj):
    """Run one pass of the chapter production loop."""
    orchestrator = _build_orchestrator(obj["settings"], obj["db"])
    console.print(app_header("main-loop tick"))
    try:
        result = asyncio.run(orchestrator.run_main_loop_tick())
    except KeyboardInterrupt:
        console.print("\n[warning]Interrupted; in-flight jobs are recovered on the next tick[/]")
        sys.exit(130)
    except FactoryError as e:
        console.print(f"\n[error]Main-loop tick failed: {e}[/]")
        sys.exit(1)
    console.print(counts_table("Main-loop tick", result.to_dict()))
    usage = orchestrator.pipeline.writer.llm.get_usage_summary()
    if usage.get("total_calls"):
        console.print(
            f"\n[muted]Engine usage: {usage['total_calls']} calls | "
            f"{usage.get('input_tokens', 0) + usage.get('output_tokens', 0):,} tokens | "
            f"${usage.get('total_cost_usd', 0.0):.4f}[/]"
        )


# ---------------------------------------------------------------------------
# Operator commands
# ---------------------------------------------------------------------------

@cli.command()
@click.option("--title", "-t", required=True, help="Working title")
@click.option("--genre", "-g", default="", help="Genre label passed to the writer")
@click.option("--premise", "-p", default="", help="One-paragraph premise")
@click.option("--total-chapters", "-c", type=int, default=None,
              help="Planned length (defaults to the configured default)")
@click.option("--open-ended", is_flag=True, help="No planned length")
@click.option("--chapters-per-day", "-d", type=int, default=None, help="Daily chapter quota")
@click.option("--priority", type=int, default=0, help="Higher priorities are activated first")
@click.pass_obj
def admit(obj, title, genre, premise, total_chapters, open_ended, chapters_per_day, priority):
    """Queue a new production.

    Example:
      novel-factory admit -t "Heaven Sword" -g xianxia -c 1200 -d 20
    """
    from workflow.production_manager import ProductionManager

    settings = obj["settings"]
    if not open_ended and total_chapters is None:
        total_chapters = settings.default_total_chapters
    plan = WorkPlan(
        title=title,
        genre=genre,
        premise=premise,
        total_chapters=None if open_ended else total_chapters,
        chapters_per_day=chapters_per_day,
        priority=priority,
    )
    console.print(command_panel("Admit production", {
        "Title": title,
        "Genre": genre or "-",
        "Chapters": str(plan.total_chapters or "open-ended"),
        "Per day": str(chapters_per_day or settings.chapters_per_day_default),
        "Priority": str(priority),
    }))
    try:
        record = ProductionManager(obj["db"], settings).admit(plan)
    except (FactoryError, ValueError) as e:
        console.print(f"\n[error]Admission failed: {e}[/]")
        sys.exit(1)
    console.print(success_panel("Queued", f"Production [bold]{record.id}[/] is {status_text(record.status)}"))


@cli.command()
@click.argument("production_id", type=int)
@click.pass_obj
def resume(obj, production_id):
    """Resume a paused or errored production."""
    from workflow.production_manager import ProductionManager

    try:
        record = ProductionManager(obj["db"], obj["settings"]).resume_production(production_id)
    except FactoryError as e:
        console.print(f"[error]Cannot resume production {production_id}: {e}[/]")
        sys.exit(1)
    console.print(f"[success]Production {record.id} resumed at chapter {record.current_chapter}[/]")


@cli.command()
@click.option("--list", "show_list", is_flag=True, help="Also list productions")
@click.option("--status", "status_filter", type=click.Choice([s.value for s in ProductionStatus]),
              default=None, help="Only list productions in this status")
@click.pass_obj
def stats(obj, show_list, status_filter):
    """Show production and publishing counters."""
    from workflow.production_manager import ProductionManager
    from workflow.publish_scheduler import PublishScheduler

    settings, db = obj["settings"], obj["db"]
    now = utc_now()
    console.print(app_header())
    console.print(counts_table("Productions", ProductionManager(db, settings).get_production_stats(now)))
    console.print(counts_table("Publishing", PublishScheduler(db, settings).get_publishing_stats(now)))

    if show_list or status_filter:
        status = ProductionStatus(status_filter) if status_filter else None
        _show_production_list(db.list_productions(status))


def _show_production_list(records):
    """Display a table of productions."""
    if not records:
        console.print("[warning]No productions.[/]")
        return
    table = Table(title="Productions", show_lines=False, border_style="dim")
    table.add_column("ID", style="chapter.num")
    table.add_column("Title", style="bold")
    table.add_column("Status")
    table.add_column("Chapter", justify="right")
    table.add_column("Today", justify="right")
    table.add_column("Avg score", justify="right")
    table.add_column("Note", style="muted")

    for r in records:
        avg = r.average_score
        table.add_row(
            str(r.id),
            r.title,
            status_text(r.status),
            f"{r.current_chapter}/{r.total_chapters or '∞'}",
            f"{r.chapters_written_today}/{r.chapters_per_day}",
            "-" if avg is None else f"{avg:.1f}",
            (r.pause_reason or "")[:60],
        )
    console.print(table)


@cli.command()
@click.option("--upcoming", "hours", type=int, default=None,
              help="List scheduled releases due within the next HOURS instead")
@click.pass_obj
def schedule(obj, hours):
    """Show today's publish schedule, grouped by slot."""
    from workflow.publish_scheduler import PublishScheduler

    settings = obj["settings"]
    publisher = PublishScheduler(obj["db"], settings)
    if hours is not None:
        _show_upcoming(publisher.get_upcoming_publishes(hours), settings, hours)
        return
    by_slot = publisher.get_today_schedule()

    table = Table(title=f"Publish schedule ({settings.reference_timezone})", border_style="dim")
    table.add_column("Slot", style="accent")
    table.add_column("Time")
    table.add_column("Production", justify="right")
    table.add_column("Chapter", justify="right", style="chapter.num")
    table.add_column("Status")

    for slot_name, jobs in by_slot.items():
        if not jobs:
            table.add_row(slot_name, "[muted]-[/]", "", "", "")
            continue
        for job in jobs:
            local = job.scheduled_time.astimezone(settings.tz) if job.scheduled_time else None
            table.add_row(
                slot_name,
                local.strftime("%H:%M") if local else "-",
                str(job.production_id),
                str(job.chapter_number),
                job.status.value,
            )
    console.print(table)


def _show_upcoming(jobs, settings, hours):
    """Display scheduled releases in time order."""
    if not jobs:
        console.print(f"[warning]Nothing scheduled in the next {hours}h.[/]")
        return
    table = Table(title=f"Next {hours}h ({settings.reference_timezone})", border_style="dim")
    table.add_column("Time")
    table.add_column("Slot", style="accent")
    table.add_column("Production", justify="right")
    table.add_column("Chapter", justify="right", style="chapter.num")
    for job in jobs:
        local = job.scheduled_time.astimezone(settings.tz)
        table.add_row(local.strftime("%m-%d %H:%M"), job.slot, str(job.production_id), str(job.chapter_number))
    console.print(table)


def main():
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
