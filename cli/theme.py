"""Unified Rich theme and reusable UI helper functions for the CLI."""

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.theme import Theme

from models.enums import ProductionStatus

FACTORY_THEME = Theme({
    "app.title": "bold",
    "success": "green",
    "warning": "yellow",
    "error": "red",
    "info": "blue",
    "muted": "dim",
    "accent": "cyan",
    "stat.label": "dim",
    "stat.value": "bold",
    "chapter.num": "blue",
})

STATUS_COLORS = {
    ProductionStatus.QUEUED: "yellow",
    ProductionStatus.ACTIVE: "green",
    ProductionStatus.WRITING: "cyan",
    ProductionStatus.PAUSED: "dim",
    ProductionStatus.FINISHED: "blue",
    ProductionStatus.ERROR: "red",
}


def get_console() -> Console:
    """Return a Console instance with the factory theme applied."""
    return Console(theme=FACTORY_THEME)


def app_header(title: str = "novel-factory") -> Rule:
    """Return a Rule element for the application header banner."""
    return Rule(title=f"[bold]{title}[/]", style="dim")


def command_panel(title: str, fields: dict[str, str]) -> Panel:
    """Return a Panel displaying command parameters.

    Args:
        title: Panel title (e.g. "Admit production").
        fields: Ordered dict of label -> value pairs.
    """
    lines = []
    for label, value in fields.items():
        lines.append(f"  [stat.label]{label}:[/] [stat.value]{value}[/]")
    body = "\n".join(lines)
    return Panel(body, title=f"[bold]{title}[/]", box=box.ROUNDED, border_style="dim", padding=(0, 2))


def success_panel(title: str, body: str) -> Panel:
    """Return a green-bordered Panel for success results."""
    return Panel(body, title=f"[success]{title}[/]", box=box.ROUNDED, border_style="green", padding=(0, 2))


def counts_table(title: str, counts: dict) -> Table:
    """Two-column table of label -> count, used for tick results and stats."""
    table = Table(title=title, box=box.ROUNDED, border_style="dim", show_header=False, padding=(0, 1))
    table.add_column("key", style="stat.label")
    table.add_column("value", style="stat.value", justify="right")
    for key, value in counts.items():
        table.add_row(key.replace("_", " "), "-" if value is None else str(value))
    return table


def status_text(status: ProductionStatus) -> str:
    return f"[{STATUS_COLORS.get(status, 'white')}]{status.value}[/]"
