"""Custom exception hierarchy for feature-pipelines.

Framework errors inherit from FeaturePipelinesError so callers can catch
broadly or narrowly as needed. The HttpError family is what step code
raises to signal a specific HTTP outcome; the fallback handler reads
``status_code`` and friends off it when building the error response.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from feature_pipelines.models import Step


class FeaturePipelinesError(Exception):
    """Base for all feature-pipelines errors."""


class PipelineConfigError(FeaturePipelinesError):
    """Step discovery or feature registration failed. Never retried."""


class ContextKeyError(FeaturePipelinesError, KeyError):
    """A step required a context key that no earlier step has set."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Context has no value for '{key}'")

    def __str__(self) -> str:
        return self.args[0]


class ResponseAlreadySentError(FeaturePipelinesError):
    """Something tried to write to a response that was already finalized."""


class NoResponseError(FeaturePipelinesError):
    """Every step ran but none of them finalized the response."""

    MESSAGE = "Pipeline finished without producing a response"

    def __init__(self) -> None:
        self.status_code = 500
        super().__init__(self.MESSAGE)


# Attributes owned by the wrapper itself; never overwritten when copying
# fields from the original exception.
_WRAPPER_ATTRS = frozenset({"original", "step", "status_code", "args"})


class PipelineError(FeaturePipelinesError):
    """A step failed during execution.

    Wraps the original exception together with the step it happened in.
    Public attributes of the original (``code``, ``validation_errors``,
    ``retry_after``...) are copied onto the wrapper so an error handler
    can branch on them without unwrapping.
    """

    def __init__(
        self,
        original: BaseException | None,
        step: Step | None = None,
        status_code: int | None = None,
    ) -> None:
        self.original = original
        self.step = step

        if original is not None:
            for key, value in _public_fields(original).items():
                if key in _WRAPPER_ATTRS or hasattr(type(self), key):
                    continue
                setattr(self, key, value)

        if status_code is None:
            status_code = _status_code_of(original)
        self.status_code = status_code

        message = str(original) if original is not None else "Pipeline step failed"
        super().__init__(message)
        self.__cause__ = original

    @property
    def step_label(self) -> str | None:
        if self.step is None:
            return None
        return f"{self.step.order}-{self.step.name}"


_MISSING = object()


def _public_fields(error: BaseException) -> dict[str, Any]:
    """Public data attributes of *error*, from its classes and the instance.

    Built-in exception classes contribute nothing; methods are skipped.
    Instance attributes win over class attributes of the same name.
    """
    fields: dict[str, Any] = {}
    for cls in reversed(type(error).__mro__):
        if cls.__module__ == "builtins":
            continue
        for key in vars(cls):
            if key.startswith("_"):
                continue
            value = getattr(error, key, _MISSING)
            if value is _MISSING or callable(value):
                continue
            fields[key] = value
    for key, value in vars(error).items():
        if not key.startswith("_"):
            fields[key] = value
    return fields


def _status_code_of(error: BaseException | None) -> int:
    code = getattr(error, "status_code", None)
    if isinstance(code, int) and 400 <= code <= 599:
        return code
    return 500


# ── HTTP errors raised from step code ─────────────────────────────


class HttpError(Exception):
    """An expected error that maps onto an HTTP status code."""

    status_code: int = 500
    default_message: str = "Internal server error"
    suggestion: str | None = None
    is_operational = True

    def __init__(
        self,
        message: str | None = None,
        *,
        status_code: int | None = None,
        suggestion: str | None = None,
    ) -> None:
        if status_code is not None:
            self.status_code = status_code
        if suggestion is not None:
            self.suggestion = suggestion
        super().__init__(message or self.default_message)


class ValidationError(HttpError):
    """Request data failed validation (400)."""

    status_code = 400
    default_message = "Validation failed"

    def __init__(
        self,
        message: str | None = None,
        validation_errors: dict[str, list[str]] | None = None,
    ) -> None:
        self.validation_errors = validation_errors
        suggestion = (
            "Check the validationErrors field for details on which fields failed validation."
            if validation_errors
            else "Verify that all required fields are present and have valid values."
        )
        super().__init__(message, suggestion=suggestion)


class BusinessError(HttpError):
    """A business rule rejected the request (400)."""

    status_code = 400
    suggestion = "Review your request data and ensure it meets the business logic requirements."

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class UnauthorizedError(HttpError):
    status_code = 401
    default_message = "Unauthorized"
    suggestion = "Include valid authentication credentials in your request."


class ForbiddenError(HttpError):
    status_code = 403
    default_message = "Forbidden"
    suggestion = "Ensure your account has the necessary permissions to access this resource."


class NotFoundError(HttpError):
    status_code = 404
    default_message = "Not found"
    suggestion = "Check the URL path and ensure the requested resource exists."


class ConflictError(HttpError):
    status_code = 409
    default_message = "Conflict"
    suggestion = "The request conflicts with the current state of the resource."


class TooManyRequestsError(HttpError):
    status_code = 429
    default_message = "Too many requests"

    def __init__(self, message: str | None = None, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        suggestion = (
            f"Rate limit exceeded. Please retry after {retry_after} seconds."
            if retry_after
            else "Rate limit exceeded. Please wait before sending more requests."
        )
        super().__init__(message, suggestion=suggestion)


class InternalServerError(HttpError):
    status_code = 500
    default_message = "Internal server error"


class ServiceUnavailableError(HttpError):
    status_code = 503
    default_message = "Service unavailable"
    suggestion = "The service is temporarily unavailable. Please try again in a few moments."


def is_operational_error(error: BaseException) -> bool:
    """True for expected errors (HttpError, or a PipelineError wrapping one)."""
    if isinstance(error, PipelineError):
        error = error.original if error.original is not None else error
    return isinstance(error, HttpError)
