"""Step executor: runs a pipeline's steps in order.

Steps run strictly one after another against the same context. After
each step the response is checked: once something has finalized it the
remaining steps are skipped (an early response still counts as
success). A failing step stops the run and surfaces as a PipelineError
carrying the step it happened in.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Callable, Sequence
from typing import Any

from feature_pipelines import pipeline_logger
from feature_pipelines.context import Context
from feature_pipelines.errors import NoResponseError, PipelineError
from feature_pipelines.models import ExecutionOutcome, Step
from feature_pipelines.tracer import DebugTracer, NullTracer


async def call_handler(handler: Callable[..., Any], *args: Any) -> Any:
    """Call a plain or ``async`` handler and return its (awaited) result."""
    result = handler(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class StepExecutor:
    """Runs an ordered step list for one request."""

    async def execute(
        self,
        steps: Sequence[Step],
        context: Context,
        request: Any,
        response: Any,
        tracer: DebugTracer | NullTracer | None = None,
    ) -> ExecutionOutcome:
        """Run *steps* until one finalizes the response.

        Returns:
            ``COMPLETED`` when the last step finalized the response,
            ``EARLY_RESPONSE`` when an earlier one did.

        Raises:
            PipelineError: A step raised. Later steps did not run.
            NoResponseError: Every step returned and the response is
                still open (also the case for an empty step list).
        """
        tracer = tracer or NullTracer()
        tracer.start(request)

        for index, step in enumerate(steps):
            pipeline_logger.log_step_start(step.order, step.name)
            step_start = time.monotonic()

            try:
                await tracer.run_step(
                    step,
                    context,
                    lambda: call_handler(step.handler, context, request, response),
                )
            except Exception as e:
                pipeline_logger.log_step_error(step.order, step.name, str(e))
                error = e if isinstance(e, PipelineError) else PipelineError(e, step)
                tracer.finish(False, error)
                if error is e:
                    raise
                raise error from e

            duration_ms = (time.monotonic() - step_start) * 1000
            pipeline_logger.log_step_complete(step.order, step.name, duration_ms)

            if response.finalized:
                skipped = len(steps) - index - 1
                tracer.finish(True)
                if skipped:
                    pipeline_logger.log_early_response(step.order, step.name, skipped)
                    return ExecutionOutcome.EARLY_RESPONSE
                return ExecutionOutcome.COMPLETED

        error = NoResponseError()
        tracer.finish(False, error)
        raise error
