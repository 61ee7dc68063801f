"""Pipeline progress callbacks for monitoring and reporting."""

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class WorkflowCallback(Protocol):
    """Protocol for pipeline progress callbacks.

    Implement this protocol to hook into job and tick execution.
    """

    def on_job_start(self, production_id: int, chapter_number: int) -> None:
        """Called after a chapter job has been claimed."""
        ...

    def on_chapter_complete(self, production_id: int, chapter_number: int, score: int) -> None:
        """Called when a chapter passed the gate and was handed to publishing."""
        ...

    def on_job_failed(self, production_id: int, chapter_number: int, error: str) -> None:
        ...

    def on_tick_complete(self, tick: str, summary: dict) -> None:
        """Called with the aggregate counts of a finished daily or main-loop tick."""
        ...


class LoggingCallback:
    """Lightweight callback that logs progress to the standard logger."""

    def on_job_start(self, production_id: int, chapter_number: int) -> None:
        logger.debug("Claimed production %d ch.%d", production_id, chapter_number)

    def on_chapter_complete(self, production_id: int, chapter_number: int, score: int) -> None:
        logger.info("Production %d ch.%d complete (score %d)", production_id, chapter_number, score)

    def on_job_failed(self, production_id: int, chapter_number: int, error: str) -> None:
        logger.error("Production %d ch.%d failed: %s", production_id, chapter_number, error)

    def on_tick_complete(self, tick: str, summary: dict) -> None:
        logger.info("%s tick complete: %s", tick, summary)


class RichTickCallback(LoggingCallback):
    """Echoes job outcomes to a Rich console as they happen (used by the CLI)."""

    def __init__(self, console=None):
        if console is None:
            from rich.console import Console
            console = Console()
        self._console = console

    def on_chapter_complete(self, production_id: int, chapter_number: int, score: int) -> None:
        super().on_chapter_complete(production_id, chapter_number, score)
        self._console.print(
            f"  [dim]--[/] [green]production {production_id} ch.{chapter_number}[/] "
            f"[dim](score {score})[/]"
        )

    def on_job_failed(self, production_id: int, chapter_number: int, error: str) -> None:
        super().on_job_failed(production_id, chapter_number, error)
        self._console.print(
            f"  [dim]--[/] [red]production {production_id} ch.{chapter_number} failed:[/] {error[:120]}"
        )
