"""Structured JSON logging for pipeline execution.

Every event is a single JSON object on one line, so request runs can be
grepped or loaded after the fact. Handlers are opt-in through
``configure_logging``; without one the events go wherever the host
application routes the ``feature_pipelines`` logger.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

_logger = logging.getLogger("feature_pipelines")


def configure_logging(
    log_dir: str | Path | None = None, level: int = logging.DEBUG
) -> None:
    """Attach a JSON-lines handler to the pipeline logger.

    Args:
        log_dir: Directory to write ``pipeline.log`` into. When omitted,
            events are written to stderr.
        level: Logging level (default: DEBUG).
    """
    if log_dir is None:
        handler: logging.Handler = logging.StreamHandler(sys.stderr)
    else:
        log_path = Path(log_dir) / "pipeline.log"
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(log_path))

    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    _logger.addHandler(handler)
    _logger.setLevel(level)


def disable() -> None:
    """Silence all pipeline events (the logs-disable toggle)."""
    _logger.disabled = True


def enable() -> None:
    _logger.disabled = False


def _log(event: dict[str, Any], level: int = logging.INFO) -> None:
    _logger.log(level, json.dumps(event, default=str))


# ── Pipeline lifecycle ───────────────────────────────────────────


def log_pipeline_start(pipeline: str | None, method: str, path: str) -> None:
    _log({"event": "pipeline_start", "pipeline": pipeline, "method": method, "path": path})


def log_pipeline_complete(
    pipeline: str | None, outcome: str, attempts: int, duration_ms: float
) -> None:
    _log({
        "event": "pipeline_complete",
        "pipeline": pipeline,
        "outcome": outcome,
        "attempts": attempts,
        "duration_ms": round(duration_ms, 2),
    })


def log_pipeline_failed(pipeline: str | None, error: str, action: str) -> None:
    _log(
        {"event": "pipeline_failed", "pipeline": pipeline, "error": error, "action": action},
        logging.WARNING,
    )


def log_retry(pipeline: str | None, attempt: int, delay_ms: float) -> None:
    _log({"event": "retry", "pipeline": pipeline, "attempt": attempt, "delay_ms": delay_ms})


def log_retry_refused(pipeline: str | None, attempts: int, reason: str) -> None:
    _log(
        {"event": "retry_refused", "pipeline": pipeline, "attempts": attempts, "reason": reason},
        logging.WARNING,
    )


def log_middleware_response(pipeline: str | None, middleware: str) -> None:
    _log({"event": "middleware_response", "pipeline": pipeline, "middleware": middleware})


# ── Steps ────────────────────────────────────────────────────────


def log_step_start(order: int, name: str) -> None:
    _log({"event": "step_start", "order": order, "step_name": name}, logging.DEBUG)


def log_step_complete(order: int, name: str, duration_ms: float) -> None:
    _log({
        "event": "step_complete",
        "order": order,
        "step_name": name,
        "duration_ms": round(duration_ms, 2),
    }, logging.DEBUG)


def log_step_error(order: int, name: str, error: str) -> None:
    _log(
        {"event": "step_error", "order": order, "step_name": name, "error": error},
        logging.WARNING,
    )


def log_early_response(order: int, name: str, skipped: int) -> None:
    _log({"event": "early_response", "order": order, "step_name": name, "skipped": skipped})


# ── Async tasks ──────────────────────────────────────────────────


def log_tasks_scheduled(count: int) -> None:
    _log({"event": "async_tasks_scheduled", "count": count}, logging.DEBUG)


def log_task_start(order: int, name: str) -> None:
    _log({"event": "async_task_start", "order": order, "task_name": name}, logging.DEBUG)


def log_task_complete(order: int, name: str, duration_ms: float) -> None:
    _log({
        "event": "async_task_complete",
        "order": order,
        "task_name": name,
        "duration_ms": round(duration_ms, 2),
    }, logging.DEBUG)


def log_task_error(order: int, name: str, source: str, error: str) -> None:
    _log(
        {
            "event": "async_task_error",
            "order": order,
            "task_name": name,
            "source": source,
            "error": error,
        },
        logging.ERROR,
    )


# ── Errors, discovery, tracing ───────────────────────────────────


def log_error_response(status_code: int, message: str, operational: bool) -> None:
    _log(
        {"event": "error_response", "status_code": status_code, "message": message},
        logging.INFO if operational else logging.ERROR,
    )


def log_fallback_failure(error: str) -> None:
    _log({"event": "fallback_failure", "error": error}, logging.ERROR)


def log_discovery_skip(directory: str, filename: str) -> None:
    _log(
        {"event": "discovery_skip", "directory": directory, "file": filename},
        logging.WARNING,
    )


def log_step_trace(trace: dict[str, Any]) -> None:
    _log({"event": "step_trace", **trace})


def log_pipeline_trace(summary: dict[str, Any]) -> None:
    _log({"event": "pipeline_trace", **summary})
