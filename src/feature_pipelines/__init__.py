"""feature-pipelines: convention-based HTTP request pipelines."""

from feature_pipelines.context import Context
from feature_pipelines.convention import Feature, load_feature, scan_features
from feature_pipelines.discovery import (
    discover_async_tasks,
    discover_steps,
    steps_from_registry,
    tasks_from_registry,
)
from feature_pipelines.errors import (
    BusinessError,
    ConflictError,
    ContextKeyError,
    FeaturePipelinesError,
    ForbiddenError,
    HttpError,
    InternalServerError,
    NoResponseError,
    NotFoundError,
    PipelineConfigError,
    PipelineError,
    ResponseAlreadySentError,
    ServiceUnavailableError,
    TooManyRequestsError,
    UnauthorizedError,
    ValidationError,
    is_operational_error,
)
from feature_pipelines.executor import StepExecutor
from feature_pipelines.fallback import (
    build_error_payload,
    default_error_handler,
    get_fallback_handler,
    set_fallback_handler,
)
from feature_pipelines.http import Request, Response
from feature_pipelines.interceptor import ErrorInterceptor, InterceptAction, InterceptResult
from feature_pipelines.models import (
    AsyncTask,
    ExecutionOutcome,
    PipelineTrace,
    RouteInfo,
    Step,
    StepTrace,
)
from feature_pipelines.pipeline import Pipeline, PipelineRun
from feature_pipelines.pipeline_logger import configure_logging
from feature_pipelines.retry import RetrySignal, is_retry_signal, retry
from feature_pipelines.scheduler import AsyncTaskScheduler, TaskBatch, TaskFailure
from feature_pipelines.settings import Environment, Settings, get_settings
from feature_pipelines.tracer import DebugTracer
from feature_pipelines.validator import (
    Diagnostic,
    Severity,
    ValidationResult,
    validate_features,
)

__all__ = [
    "AsyncTask",
    "AsyncTaskScheduler",
    "build_error_payload",
    "BusinessError",
    "configure_logging",
    "ConflictError",
    "Context",
    "ContextKeyError",
    "DebugTracer",
    "default_error_handler",
    "Diagnostic",
    "discover_async_tasks",
    "discover_steps",
    "Environment",
    "ErrorInterceptor",
    "ExecutionOutcome",
    "Feature",
    "FeaturePipelinesError",
    "ForbiddenError",
    "get_fallback_handler",
    "get_settings",
    "HttpError",
    "InterceptAction",
    "InterceptResult",
    "InternalServerError",
    "is_operational_error",
    "is_retry_signal",
    "load_feature",
    "NoResponseError",
    "NotFoundError",
    "Pipeline",
    "PipelineConfigError",
    "PipelineError",
    "PipelineRun",
    "PipelineTrace",
    "Request",
    "Response",
    "ResponseAlreadySentError",
    "retry",
    "RetrySignal",
    "RouteInfo",
    "scan_features",
    "ServiceUnavailableError",
    "set_fallback_handler",
    "Settings",
    "Severity",
    "Step",
    "StepExecutor",
    "steps_from_registry",
    "StepTrace",
    "TaskBatch",
    "TaskFailure",
    "tasks_from_registry",
    "TooManyRequestsError",
    "UnauthorizedError",
    "validate_features",
    "ValidationError",
    "ValidationResult",
]
