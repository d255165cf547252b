"""Process-wide fallback error handler.

Whatever a feature's own ``on_error`` doesn't settle ends up here: no
handler declared, the handler re-raised, or it asked for a retry the
budget no longer allows. The default handler writes a structured JSON
error body::

    {"error": {"message": "...", "statusCode": 400, "code": "OUT_OF_STOCK",
               "step": {"order": 200, "name": "reserve"}}}
"""

from __future__ import annotations

import traceback
from collections.abc import Callable
from typing import Any

from feature_pipelines import pipeline_logger
from feature_pipelines.errors import PipelineError, is_operational_error
from feature_pipelines.executor import call_handler
from feature_pipelines.settings import get_settings

FallbackHandler = Callable[[BaseException, Any, Any], Any]

_GENERIC_BODY = {"error": {"message": "Internal server error", "statusCode": 500}}


def _field(error: BaseException, name: str) -> Any:
    value = getattr(error, name, None)
    if value is None and isinstance(error, PipelineError) and error.original is not None:
        value = getattr(error.original, name, None)
    return value


def build_error_payload(error: BaseException, include_stack: bool = False) -> dict[str, Any]:
    """Describe *error* as the JSON body of an error response."""
    status_code = getattr(error, "status_code", None)
    if not isinstance(status_code, int):
        status_code = 500

    body: dict[str, Any] = {
        "message": str(error) or "Internal server error",
        "statusCode": status_code,
    }

    code = _field(error, "code")
    if code is not None:
        body["code"] = code
    validation_errors = _field(error, "validation_errors")
    if validation_errors is not None:
        body["validationErrors"] = validation_errors
    if isinstance(error, PipelineError) and error.step is not None:
        body["step"] = {"order": error.step.order, "name": error.step.name}
    suggestion = _field(error, "suggestion")
    if suggestion:
        body["suggestion"] = suggestion

    if include_stack:
        source = error.original if isinstance(error, PipelineError) and error.original else error
        body["stack"] = "".join(
            traceback.format_exception(type(source), source, source.__traceback__)
        )

    return {"error": body}


def default_error_handler(
    error: BaseException,
    request: Any,
    response: Any,
    *,
    include_stack: bool | None = None,
) -> None:
    """Write the structured error response unless one was already sent."""
    if response.finalized:
        return

    if include_stack is None:
        include_stack = get_settings().include_stack

    payload = build_error_payload(error, include_stack)
    status_code = payload["error"]["statusCode"]
    pipeline_logger.log_error_response(
        status_code, payload["error"]["message"], is_operational_error(error)
    )
    response.status(status_code).json(payload)


_fallback: FallbackHandler = default_error_handler


def set_fallback_handler(handler: FallbackHandler | None) -> None:
    """Replace the process-wide fallback. ``None`` restores the default."""
    global _fallback  # noqa: PLW0603
    _fallback = handler or default_error_handler


def get_fallback_handler() -> FallbackHandler:
    return _fallback


async def invoke_fallback(
    error: BaseException,
    request: Any,
    response: Any,
    *,
    include_stack: bool | None = None,
) -> None:
    """Run the fallback handler and make sure a response goes out.

    A custom fallback that leaves the response open gets the default
    body written after it; one that raises gets a generic 500.
    ``include_stack`` is handed to the default handler; None means
    the process-wide settings decide.
    """
    handler = _fallback
    try:
        if handler is default_error_handler:
            default_error_handler(error, request, response, include_stack=include_stack)
        else:
            await call_handler(handler, error, request, response)
    except Exception as handler_error:
        pipeline_logger.log_fallback_failure(str(handler_error))
        if not response.finalized:
            response.status(500).json(_GENERIC_BODY)
        return

    if not response.finalized:
        default_error_handler(error, request, response, include_stack=include_stack)
