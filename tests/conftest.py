"""Shared fixtures: throwaway step modules and a clean process state."""

from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from feature_pipelines import pipeline_logger
from feature_pipelines.fallback import set_fallback_handler
from feature_pipelines.scheduler import AsyncTaskScheduler
from feature_pipelines.settings import Settings


@pytest.fixture(autouse=True)
def _reset_process_state():
    yield
    set_fallback_handler(None)
    pipeline_logger.enable()


@pytest.fixture
def settings() -> Settings:
    return Settings(env="test")


@pytest.fixture
def scheduler() -> AsyncTaskScheduler:
    return AsyncTaskScheduler()


@pytest.fixture
def write_module():
    """Write dedented Python source to a path, creating parent folders."""

    def _write(path: Path, source: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(textwrap.dedent(source).lstrip())
        return path

    return _write
