"""Pipeline: the runnable unit a router calls for each matched request.

Registration discovers the steps and async tasks once. Each invocation
then:

1. Runs the feature middlewares; one that sends a response ends the
   request there.
2. Creates a fresh Context (optionally filled by ``context_initializer``).
3. Runs the steps through the StepExecutor.
4. On failure, asks the ErrorInterceptor what to do: done, retry from
   the first step with the same context, or fall back.
5. On success (including an early response), schedules the async tasks
   without waiting for them.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from feature_pipelines import pipeline_logger
from feature_pipelines.context import Context
from feature_pipelines.discovery import (
    discover_async_tasks,
    discover_steps,
    steps_from_registry,
    tasks_from_registry,
)
from feature_pipelines.errors import FeaturePipelinesError, NoResponseError, PipelineError
from feature_pipelines.executor import StepExecutor, call_handler
from feature_pipelines.fallback import invoke_fallback
from feature_pipelines.interceptor import ErrorHandler, ErrorInterceptor, InterceptAction
from feature_pipelines.models import (
    AsyncTask,
    ExecutionOutcome,
    PipelineInfo,
    Step,
    UnitInfo,
)
from feature_pipelines.retry import RetryBudget
from feature_pipelines.scheduler import AsyncTaskScheduler, TaskBatch, default_scheduler
from feature_pipelines.settings import Settings, get_settings
from feature_pipelines.tracer import DebugTracer

ContextInitializer = Callable[[Context, Any, Any], Any]
Middleware = Callable[[Any, Any], Any]


@dataclass
class PipelineRun:
    """What happened during one invocation."""

    context: Context
    outcome: ExecutionOutcome | None
    attempts: int = 0
    error: BaseException | None = None
    batch: TaskBatch | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome is not None


class Pipeline:
    """Ordered steps plus background tasks for one route."""

    def __init__(
        self,
        steps: Sequence[Step],
        async_tasks: Sequence[AsyncTask] = (),
        *,
        on_error: ErrorHandler | None = None,
        context_initializer: ContextInitializer | None = None,
        middlewares: Sequence[Middleware] = (),
        settings: Settings | None = None,
        scheduler: AsyncTaskScheduler | None = None,
        name: str | None = None,
    ) -> None:
        self.steps = tuple(steps)
        self.async_tasks = tuple(async_tasks)
        self.name = name
        self.settings = settings or get_settings()
        self._context_initializer = context_initializer
        self.middlewares = tuple(middlewares)
        self._interceptor = ErrorInterceptor(on_error, name=name)
        self._executor = StepExecutor()
        self._scheduler = scheduler or default_scheduler

        if self.settings.disable_logs:
            pipeline_logger.disable()

    @classmethod
    def from_directories(
        cls,
        steps_dir: str | Path | None,
        async_tasks_dir: str | Path | None = None,
        on_error: ErrorHandler | None = None,
        **kwargs: Any,
    ) -> Pipeline:
        """Register a pipeline from a steps directory and an async-tasks directory.

        Raises:
            PipelineConfigError: Duplicate orders or unloadable modules.
        """
        return cls(
            discover_steps(steps_dir),
            discover_async_tasks(async_tasks_dir),
            on_error=on_error,
            **kwargs,
        )

    @classmethod
    def from_registry(
        cls,
        steps: Iterable[tuple[str, Callable[..., Any]]],
        async_tasks: Iterable[tuple[str, Callable[..., Any]]] = (),
        on_error: ErrorHandler | None = None,
        **kwargs: Any,
    ) -> Pipeline:
        """Register a pipeline from explicit ``("100-name", handler)`` pairs."""
        return cls(
            steps_from_registry(steps),
            tasks_from_registry(async_tasks),
            on_error=on_error,
            **kwargs,
        )

    async def __call__(self, request: Any, response: Any) -> None:
        await self.run(request, response)

    async def run(self, request: Any, response: Any) -> PipelineRun:
        """Handle one request. Never raises for step failures."""
        started = time.monotonic()
        context = Context()
        pipeline_logger.log_pipeline_start(
            self.name, getattr(request, "method", ""), getattr(request, "path", "")
        )

        for middleware in self.middlewares:
            try:
                await call_handler(middleware, request, response)
            except Exception as e:
                return await self._settle(
                    InterceptAction.ESCALATE, e, context, request, response, None
                )
            if response.finalized:
                pipeline_logger.log_middleware_response(self.name, _callable_name(middleware))
                return PipelineRun(
                    context=context, outcome=ExecutionOutcome.MIDDLEWARE_RESPONSE
                )

        if self._context_initializer is not None:
            try:
                await call_handler(self._context_initializer, context, request, response)
            except Exception as e:
                return await self._fail(e, None, context, request, response, None)

        budget = RetryBudget(self.settings.max_total_retries)

        while True:
            tracer = (
                DebugTracer(self.settings.trace_truncate)
                if self.settings.tracing_enabled
                else None
            )
            try:
                outcome = await self._executor.execute(
                    self.steps, context, request, response, tracer
                )
            except FeaturePipelinesError as error:
                step = error.step if isinstance(error, PipelineError) else None
                retry_budget = None if isinstance(error, NoResponseError) else budget
                result = await self._interceptor.handle(
                    error, step, context, request, response, budget=retry_budget
                )

                if result.action is InterceptAction.RETRY:
                    attempt = budget.consume()
                    delay_ms = result.signal.delay_ms
                    pipeline_logger.log_retry(self.name, attempt, delay_ms)
                    if delay_ms > 0:
                        await asyncio.sleep(delay_ms / 1000)
                    continue

                return await self._settle(
                    result.action, result.error or error, context, request, response, budget
                )

            batch = self._scheduler.schedule(self.async_tasks, context)
            pipeline_logger.log_pipeline_complete(
                self.name,
                outcome.value,
                budget.attempts,
                (time.monotonic() - started) * 1000,
            )
            return PipelineRun(
                context=context, outcome=outcome, attempts=budget.attempts, batch=batch
            )

    async def _fail(
        self,
        error: BaseException,
        step: Step | None,
        context: Context,
        request: Any,
        response: Any,
        budget: RetryBudget | None,
    ) -> PipelineRun:
        result = await self._interceptor.handle(
            error, step, context, request, response, budget=budget
        )
        return await self._settle(
            result.action, result.error or error, context, request, response, budget
        )

    async def _settle(
        self,
        action: InterceptAction,
        error: BaseException,
        context: Context,
        request: Any,
        response: Any,
        budget: RetryBudget | None,
    ) -> PipelineRun:
        pipeline_logger.log_pipeline_failed(self.name, str(error), action.value)
        if action is InterceptAction.ESCALATE:
            await invoke_fallback(
                error, request, response, include_stack=self.settings.include_stack
            )
        return PipelineRun(
            context=context,
            outcome=None,
            attempts=budget.attempts if budget is not None else 0,
            error=error,
        )

    def info(self) -> PipelineInfo:
        return PipelineInfo(
            name=self.name,
            steps=[UnitInfo(order=s.order, name=s.name, source=s.source) for s in self.steps],
            async_tasks=[
                UnitInfo(order=t.order, name=t.name, source=t.source) for t in self.async_tasks
            ],
            has_error_handler=self._interceptor.has_handler,
            has_context_initializer=self._context_initializer is not None,
            middlewares=[_callable_name(m) for m in self.middlewares],
        )


def _callable_name(func: Callable[..., Any]) -> str:
    return getattr(func, "__name__", None) or type(func).__name__
