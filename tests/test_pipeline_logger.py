"""Tests for the JSON-lines pipeline logger."""

from __future__ import annotations

import json
import logging

import pytest

from feature_pipelines import pipeline_logger


@pytest.fixture
def log_file(tmp_path):
    logger = logging.getLogger("feature_pipelines")
    before = list(logger.handlers)
    pipeline_logger.configure_logging(tmp_path / "logs")
    yield tmp_path / "logs" / "pipeline.log"
    for handler in logger.handlers[len(before):]:
        handler.close()
        logger.removeHandler(handler)


def _events(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


def test_events_are_json_lines(log_file):
    pipeline_logger.log_step_start(100, "validate")
    pipeline_logger.log_step_complete(100, "validate", 1.23456)
    pipeline_logger.log_task_error(200, "email", "200-email.py", "smtp down")

    events = _events(log_file)

    assert [e["event"] for e in events] == ["step_start", "step_complete", "async_task_error"]
    assert events[1]["duration_ms"] == 1.23
    assert events[2]["source"] == "200-email.py"


def test_disable_and_enable(log_file):
    pipeline_logger.disable()
    pipeline_logger.log_retry("GET /x", 1, 0)
    pipeline_logger.enable()
    pipeline_logger.log_retry("GET /x", 2, 0)

    assert [e["attempt"] for e in _events(log_file)] == [2]
