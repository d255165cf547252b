"""Debug tracer: per-step context diffs and timing.

Wraps each step invocation: snapshots the context before and after,
reports the top-level keys the step added or changed, and records how
long it took. Enabled through ``Settings.debug``. Tracing never alters
what steps see or how the pipeline proceeds.
"""

from __future__ import annotations

import copy
import json
import time
from collections.abc import Awaitable, Callable
from typing import Any

from feature_pipelines import pipeline_logger
from feature_pipelines.context import Context
from feature_pipelines.models import PipelineTrace, Step, StepTrace

_UNSET = object()


def _clone(context: Context) -> dict[str, Any]:
    state = context.snapshot()
    try:
        return copy.deepcopy(state)
    except Exception:  # noqa: BLE001 - uncopyable values fall back to a shallow copy
        return state


def _differs(before: Any, after: Any) -> bool:
    try:
        return bool(before != after)
    except Exception:  # noqa: BLE001 - e.g. array-like values without a truth value
        return before is not after


def context_diff(before: dict[str, Any], after: dict[str, Any]) -> dict[str, Any]:
    """Top-level keys that are new in *after* or whose value changed."""
    return {
        key: value
        for key, value in after.items()
        if _differs(before.get(key, _UNSET), value)
    }


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def format_diff(diff: dict[str, Any], limit: int) -> str:
    if not diff:
        return "(no changes)"
    try:
        rendered = json.dumps(diff, default=repr)
    except (TypeError, ValueError):
        rendered = "(unable to display)"
    return truncate(rendered, limit)


class DebugTracer:
    """Collects a trace for one pipeline run.

    Create one per run; the executor calls ``start``, ``run_step`` for
    each step and ``finish`` once.
    """

    def __init__(self, truncate_at: int = 60) -> None:
        self.truncate_at = truncate_at
        self.steps: list[StepTrace] = []
        self._method = "UNKNOWN"
        self._path = "UNKNOWN"
        self._started = time.monotonic()

    def start(self, request: Any) -> None:
        self.steps = []
        self._method = getattr(request, "method", None) or "UNKNOWN"
        self._path = getattr(request, "path", None) or "UNKNOWN"
        self._started = time.monotonic()

    async def run_step(
        self,
        step: Step,
        context: Context,
        invoke: Callable[[], Awaitable[Any]],
    ) -> Any:
        before = _clone(context)
        step_start = time.monotonic()
        try:
            result = await invoke()
        except Exception as e:
            self._record(StepTrace(
                order=step.order,
                name=step.name,
                duration_ms=(time.monotonic() - step_start) * 1000,
                success=False,
                error=str(e),
            ))
            raise

        changes = format_diff(context_diff(before, _clone(context)), self.truncate_at)
        self._record(StepTrace(
            order=step.order,
            name=step.name,
            duration_ms=(time.monotonic() - step_start) * 1000,
            success=True,
            changes=changes,
        ))
        return result

    def finish(self, success: bool, error: BaseException | None = None) -> PipelineTrace:
        trace = PipelineTrace(
            method=self._method,
            path=self._path,
            steps=list(self.steps),
            total_duration_ms=(time.monotonic() - self._started) * 1000,
            success=success,
            error=str(error) if error is not None else None,
        )
        pipeline_logger.log_pipeline_trace({
            "method": trace.method,
            "path": trace.path,
            "total_duration_ms": round(trace.total_duration_ms, 2),
            "passed": trace.passed,
            "failed": trace.failed,
            "status": "success" if success else "failed",
            "error": trace.error,
        })
        return trace

    def _record(self, record: StepTrace) -> None:
        self.steps.append(record)
        pipeline_logger.log_step_trace(record.model_dump())


class NullTracer:
    """Tracer stand-in used when debugging is off."""

    def start(self, request: Any) -> None:
        pass

    async def run_step(
        self,
        step: Step,
        context: Context,
        invoke: Callable[[], Awaitable[Any]],
    ) -> Any:
        return await invoke()

    def finish(self, success: bool, error: BaseException | None = None) -> None:
        return None
