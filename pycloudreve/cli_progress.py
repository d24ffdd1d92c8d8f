"""CLI progress display for batch operations.

This module provides a Rich-based progress bar that advances as the
items of a batch finish, fed by the executor's completion callback.
"""

from typing import Any, Optional

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .concurrency import TaskOutcome


class BatchProgressDisplay:
    """Rich progress bar counting finished batch items.

    Use as a context manager and pass :meth:`on_item_complete` to the
    orchestrator. The bar has no total: the number of tasks is only known
    once the orchestrator has expanded its arguments.
    """

    def __init__(self, description: str, enabled: bool = True) -> None:
        self.description = description
        self.enabled = enabled
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self.failed = 0

    def __enter__(self) -> "BatchProgressDisplay":
        if self.enabled:
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                transient=True,
            )
            self._progress.__enter__()
            self._task = self._progress.add_task(self.description, total=None)
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None

    def on_item_complete(self, outcome: TaskOutcome[Any]) -> None:
        """Advance the bar for one finished item."""
        if not outcome.ok:
            self.failed += 1
        if self._progress is None or self._task is None:
            return
        label = outcome.name if outcome.ok else f"[red]{outcome.name}[/red]"
        self._progress.update(
            self._task,
            advance=1,
            description=f"{self.description}: {label}",
        )
