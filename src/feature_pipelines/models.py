"""Pydantic models for pipeline units, traces and feature descriptions.

All data structures live here. No business logic, just shapes.
Steps and async tasks are frozen: they are built once when a pipeline
is registered and never change afterwards.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ── Pipeline units ───────────────────────────────────────────────


class Step(BaseModel):
    """One ordered unit of request logic: ``handle(ctx, request, response)``."""

    model_config = ConfigDict(frozen=True)

    order: int = Field(ge=0)
    name: str
    handler: Callable[..., Any]
    source: str

    @property
    def label(self) -> str:
        return f"{self.order}-{self.name}"


class AsyncTask(BaseModel):
    """One ordered unit of post-response work: ``handle(ctx)``."""

    model_config = ConfigDict(frozen=True)

    order: int = Field(ge=0)
    name: str
    handler: Callable[..., Any]
    source: str

    @property
    def label(self) -> str:
        return f"{self.order}-{self.name}"


# ── Run outcomes ─────────────────────────────────────────────────


class ExecutionOutcome(str, Enum):
    COMPLETED = "completed"
    EARLY_RESPONSE = "early_response"
    MIDDLEWARE_RESPONSE = "middleware_response"


# ── Debug traces ─────────────────────────────────────────────────


class StepTrace(BaseModel):
    order: int
    name: str
    duration_ms: float
    success: bool
    changes: str | None = None
    error: str | None = None


class PipelineTrace(BaseModel):
    method: str
    path: str
    steps: list[StepTrace]
    total_duration_ms: float
    success: bool
    error: str | None = None

    @property
    def passed(self) -> int:
        return sum(1 for s in self.steps if s.success)

    @property
    def failed(self) -> int:
        return sum(1 for s in self.steps if not s.success)


# ── Feature descriptions ─────────────────────────────────────────


class UnitInfo(BaseModel):
    order: int
    name: str
    source: str


class PipelineInfo(BaseModel):
    name: str | None = None
    steps: list[UnitInfo]
    async_tasks: list[UnitInfo]
    has_error_handler: bool
    has_context_initializer: bool
    middlewares: list[str] = Field(default_factory=list)


class RouteInfo(BaseModel):
    method: str
    path: str
    directory: str
    pipeline: PipelineInfo
