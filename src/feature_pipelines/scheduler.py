"""Async task scheduler: best-effort work after a successful run.

Once a pipeline has produced its response, its async tasks run in the
background: one after another, in order, inside a single asyncio task.
A failing task is logged and the next one still runs. The caller gets a
TaskBatch handle back and is not expected to await it.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from feature_pipelines import pipeline_logger
from feature_pipelines.context import Context
from feature_pipelines.executor import call_handler
from feature_pipelines.models import AsyncTask


@dataclass(frozen=True)
class TaskFailure:
    order: int
    name: str
    error: BaseException


@dataclass(eq=False)
class TaskBatch:
    """Handle for one request's background tasks."""

    size: int
    failures: list[TaskFailure] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    _task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task is not None and self._task.cancelled()

    async def wait(self) -> None:
        """Wait for every task in the batch; never raises task errors."""
        if self._task is not None:
            await asyncio.wait([self._task])

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()


class AsyncTaskScheduler:
    """Starts task batches and keeps them alive until they finish."""

    def __init__(self) -> None:
        self._pending: set[TaskBatch] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, tasks: Sequence[AsyncTask], context: Context) -> TaskBatch | None:
        """Run *tasks* in the background. Returns None when there are none."""
        if not tasks:
            return None

        pipeline_logger.log_tasks_scheduled(len(tasks))
        batch = TaskBatch(size=len(tasks))
        batch._task = asyncio.get_running_loop().create_task(
            self.run(tasks, context, batch)
        )
        self._pending.add(batch)
        batch._task.add_done_callback(lambda _: self._pending.discard(batch))
        return batch

    async def run(
        self,
        tasks: Sequence[AsyncTask],
        context: Context,
        batch: TaskBatch | None = None,
    ) -> TaskBatch:
        """Run *tasks* sequentially, isolating failures from each other."""
        batch = batch or TaskBatch(size=len(tasks))

        for task in tasks:
            pipeline_logger.log_task_start(task.order, task.name)
            task_start = time.monotonic()
            try:
                await call_handler(task.handler, context)
            except Exception as e:
                pipeline_logger.log_task_error(task.order, task.name, task.source, str(e))
                batch.failures.append(TaskFailure(order=task.order, name=task.name, error=e))
                continue

            duration_ms = (time.monotonic() - task_start) * 1000
            pipeline_logger.log_task_complete(task.order, task.name, duration_ms)
            batch.completed.append(task.name)

        return batch

    async def drain(self) -> None:
        """Wait for every batch currently running."""
        while self._pending:
            await asyncio.gather(*(b.wait() for b in list(self._pending)))

    async def shutdown(self) -> None:
        """Cancel outstanding batches and wait for them to unwind."""
        batches = list(self._pending)
        for batch in batches:
            batch.cancel()
        await asyncio.gather(*(b.wait() for b in batches))


default_scheduler = AsyncTaskScheduler()
