"""Error interceptor: decides what happens after a step fails.

The interceptor never writes a response itself. It wraps the error with
its pipeline position, gives the feature's ``on_error`` handler a chance
to deal with it, and reports one of three outcomes:

* ``RESPONDED``: the handler finalized the response; the request is done.
* ``RETRY``: the handler returned a retry signal the budget still allows.
* ``ESCALATE``: hand the carried error to the process-wide fallback.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from feature_pipelines import pipeline_logger
from feature_pipelines.context import Context
from feature_pipelines.errors import PipelineError
from feature_pipelines.executor import call_handler
from feature_pipelines.models import Step
from feature_pipelines.retry import RetryBudget, RetrySignal, is_retry_signal

ErrorHandler = Callable[[BaseException, Context, Any, Any], Any]


class InterceptAction(str, Enum):
    RESPONDED = "responded"
    RETRY = "retry"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class InterceptResult:
    action: InterceptAction
    error: BaseException | None = None
    signal: RetrySignal | None = None


def wrap_error(error: BaseException, step: Step | None) -> BaseException:
    """Attach *step* to *error*, unless there is no step or it's already wrapped."""
    if step is None or isinstance(error, PipelineError):
        return error
    return PipelineError(error, step)


class ErrorInterceptor:
    def __init__(self, on_error: ErrorHandler | None = None, name: str | None = None) -> None:
        self._on_error = on_error
        self._name = name

    @property
    def has_handler(self) -> bool:
        return self._on_error is not None

    async def handle(
        self,
        error: BaseException,
        step: Step | None,
        context: Context,
        request: Any,
        response: Any,
        *,
        budget: RetryBudget | None = None,
    ) -> InterceptResult:
        """Route a pipeline failure.

        Args:
            error: What the step (or context initializer) raised.
            step: The step that failed, or None outside of a step.
            budget: Retry budget for this request. Without one a retry
                signal from the handler is never honoured.
        """
        wrapped = wrap_error(error, step)

        if self._on_error is None:
            return InterceptResult(InterceptAction.ESCALATE, error=wrapped)

        try:
            result = await call_handler(self._on_error, wrapped, context, request, response)
        except Exception as handler_error:
            return InterceptResult(InterceptAction.ESCALATE, error=handler_error)

        if response.finalized:
            return InterceptResult(InterceptAction.RESPONDED)

        if is_retry_signal(result):
            if budget is not None and budget.allows(result):
                return InterceptResult(InterceptAction.RETRY, signal=result)
            pipeline_logger.log_retry_refused(
                self._name,
                budget.attempts if budget is not None else 0,
                "retry budget exhausted" if budget is not None else "error is not retryable",
            )

        return InterceptResult(InterceptAction.ESCALATE, error=wrapped)
