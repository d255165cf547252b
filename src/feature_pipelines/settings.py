"""Runtime settings read from the environment.

Values come from ``FEATURE_*`` environment variables (or a ``.env``
file) through pydantic-settings. Pipelines read them once, when they
are constructed, never per request.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    TEST = "test"


class Settings(BaseSettings):
    """Framework toggles.

    Attributes:
        debug: Enable the step-by-step debug tracer.
        disable_logs: Silence pipeline logging (also disables tracing).
        env: Deployment environment. Stack traces are only included in
            error responses outside production; tracing is off under test.
        trace_truncate: Maximum characters of a rendered context diff.
        max_total_retries: Upper bound on restarts per request, applied
            even when a retry signal carries no ``max_attempts``.
    """

    model_config = SettingsConfigDict(
        env_prefix="FEATURE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = Field(default=False, description="Enable the debug tracer")
    disable_logs: bool = Field(default=False, description="Silence pipeline logs")
    env: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="development, production or test",
    )
    trace_truncate: int = Field(
        default=60, ge=8, description="Max characters of a traced context diff"
    )
    max_total_retries: int = Field(
        default=10, ge=0, description="Hard cap on pipeline restarts per request"
    )

    @property
    def tracing_enabled(self) -> bool:
        return self.debug and not self.disable_logs and self.env is not Environment.TEST

    @property
    def include_stack(self) -> bool:
        return self.env is not Environment.PRODUCTION


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
