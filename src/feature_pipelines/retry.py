"""Retry signal returned from a pipeline error handler.

An ``on_error`` handler that wants the whole pipeline replayed returns
``retry()`` instead of responding::

    async def on_error(error, ctx, request, response):
        if getattr(error, "code", None) == "RATE_LIMITED":
            ctx.provider = "fallback"
            return retry(delay_ms=500, max_attempts=3)
        response.status(503).json({"error": "unavailable"})

The signal is a control value, not an error and not context data.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RetrySignal(BaseModel):
    model_config = ConfigDict(frozen=True)

    delay_ms: float = Field(default=0, ge=0)
    max_attempts: int | None = Field(default=None, ge=0)


def retry(delay_ms: float = 0, max_attempts: int | None = None) -> RetrySignal:
    """Ask the pipeline to restart from its first step.

    Args:
        delay_ms: Wait this long before restarting.
        max_attempts: Maximum number of restarts for this request. Once
            reached, a further retry signal is ignored and the error goes
            to the fallback handler.
    """
    return RetrySignal(delay_ms=delay_ms, max_attempts=max_attempts)


def is_retry_signal(value: Any) -> bool:
    return isinstance(value, RetrySignal)


class RetryBudget:
    """Per-request restart counter."""

    def __init__(self, max_total: int) -> None:
        self.max_total = max_total
        self.attempts = 0

    def allows(self, signal: RetrySignal) -> bool:
        limit = self.max_total
        if signal.max_attempts is not None:
            limit = min(limit, signal.max_attempts)
        return self.attempts < limit

    def consume(self) -> int:
        self.attempts += 1
        return self.attempts
