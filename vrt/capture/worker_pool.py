"""Worker pool - bounded asyncio concurrency over a shared task list.

Workers claim tasks through a shared cursor, so every task is handled by
exactly one worker exactly once. A task that raises is converted into a
result by ``on_error`` and never affects its siblings.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class PoolProgress:
    total: int = 0
    completed: int = 0
    passed: int = 0
    failed: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.completed


def _default_is_success(result: object) -> bool:
    return bool(getattr(result, "passed", result))


class WorkerPool(Generic[T, R]):
    """Run ``handler`` over tasks with at most ``workers`` in flight."""

    def __init__(self, workers: int = 1):
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.workers = workers

    async def run(
        self,
        tasks: Sequence[T],
        handler: Callable[[T], Awaitable[R]],
        on_error: Callable[[T, Exception], R],
        on_progress: Optional[Callable[[PoolProgress, T], None]] = None,
        is_success: Callable[[R], bool] = _default_is_success,
    ) -> list[R]:
        """Process every task and return one result per task, in completion order."""
        progress = PoolProgress(total=len(tasks))
        results: list[R] = []
        if not tasks:
            return results

        lock = asyncio.Lock()
        cursor = 0

        async def _claim() -> int | None:
            nonlocal cursor
            async with lock:
                if cursor >= len(tasks):
                    return None
                index = cursor
                cursor += 1
                return index

        async def _worker(worker_id: int) -> None:
            while True:
                index = await _claim()
                if index is None:
                    logger.debug("Worker %d: no tasks left", worker_id)
                    return
                task = tasks[index]
                if on_progress:
                    on_progress(progress, task)

                try:
                    result = await handler(task)
                except Exception as e:
                    logger.debug("Worker %d: task %d raised %s", worker_id, index, e)
                    result = on_error(task, e)

                async with lock:
                    results.append(result)
                    progress.completed += 1
                    if is_success(result):
                        progress.passed += 1
                    else:
                        progress.failed += 1
                if on_progress:
                    on_progress(progress, task)

        count = min(self.workers, len(tasks))
        logger.debug("Starting %d worker(s) for %d task(s)", count, len(tasks))
        await asyncio.gather(*(_worker(i + 1) for i in range(count)))
        return results
