"""Bounded-concurrency execution of named tasks."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TransferTask(Generic[T]):
    """A named unit of work for the executor."""

    name: str
    operation: Callable[[], T]


@dataclass
class TaskOutcome(Generic[T]):
    """Result of one task: either a value or the exception it raised."""

    name: str
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_task(task: TransferTask[T]) -> TaskOutcome[T]:
    try:
        return TaskOutcome(name=task.name, value=task.operation())
    except Exception as e:
        logger.debug("Task %s failed: %s", task.name, e)
        return TaskOutcome(name=task.name, error=e)


def execute_with_concurrency(
    tasks: list[TransferTask[Any]],
    limit: int,
    on_complete: Optional[Callable[[TaskOutcome[Any]], None]] = None,
) -> list[TaskOutcome[Any]]:
    """Run tasks with at most ``limit`` of them in flight.

    ``limit == 0`` or ``limit >= len(tasks)`` starts every task at once.
    A failing task never affects its siblings; every task runs to
    completion and reports an outcome.

    Args:
        tasks: Tasks to run
        limit: Maximum number of concurrently running tasks (0 = unbounded)
        on_complete: Optional callback invoked with each outcome as it finishes

    Returns:
        One outcome per task, in completion order. Match results by ``name``.
    """
    if not tasks:
        return []

    if limit <= 0 or limit >= len(tasks):
        max_workers = len(tasks)
    else:
        max_workers = limit

    logger.debug("Running %d task(s) with %d worker(s)", len(tasks), max_workers)

    results: list[TaskOutcome[Any]] = []
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [executor.submit(_run_task, task) for task in tasks]
        for future in as_completed(futures):
            outcome = future.result()
            results.append(outcome)
            if on_complete is not None:
                on_complete(outcome)
    return results
