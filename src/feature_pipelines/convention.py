"""Convention-based feature discovery.

A features tree maps folders to routes::

    features/
      api/users/@post/              -> POST /api/users
        steps/100-validate.py
        steps/900-respond.py
        async-tasks/100-send-welcome.py
        feature.py                  (optional hooks and overrides)
      api/users/[id]/@get/          -> GET  /api/users/{id}
        steps/100-load.py

The ``@`` prefix marks the HTTP method folder, so resources called
``steps`` or ``get`` stay unambiguous. ``feature.py`` may define
``on_error``, ``context_initializer``, ``middlewares``, ``method``,
``path``, ``steps`` and ``async_tasks`` to override what the folder layout implies.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from feature_pipelines.discovery import load_module
from feature_pipelines.errors import PipelineConfigError
from feature_pipelines.models import RouteInfo
from feature_pipelines.pipeline import Pipeline
from feature_pipelines.scheduler import AsyncTaskScheduler
from feature_pipelines.settings import Settings

HTTP_METHODS: dict[str, str] = {
    "get": "GET",
    "post": "POST",
    "put": "PUT",
    "patch": "PATCH",
    "delete": "DELETE",
}

STEPS_DIR = "steps"
ASYNC_TASKS_DIR = "async-tasks"
FEATURE_MODULE = "feature.py"
DEFAULT_EXCLUDES: frozenset[str] = frozenset(
    {"__pycache__", ".git", ".venv", "venv", "node_modules", "build", "dist"}
)

_DYNAMIC_SEGMENT = re.compile(r"^\[([^\]]+)\]$")


@dataclass(frozen=True)
class Feature:
    """A pipeline bound to its route."""

    method: str
    path: str
    directory: Path
    pipeline: Pipeline

    def info(self) -> RouteInfo:
        return RouteInfo(
            method=self.method,
            path=self.path,
            directory=str(self.directory),
            pipeline=self.pipeline.info(),
        )


def is_method_dir(name: str) -> bool:
    return name.startswith("@") and name[1:].lower() in HTTP_METHODS


def infer_method(dir_name: str) -> str:
    """``"@post"`` -> ``"POST"``.

    Raises:
        PipelineConfigError: Missing ``@`` prefix or unknown method.
    """
    if not dir_name.startswith("@"):
        raise PipelineConfigError(
            f"Feature folder must start with @: '{dir_name}'. "
            f"Valid examples: @get, @post, @put, @patch, @delete"
        )
    method = HTTP_METHODS.get(dir_name[1:].lower())
    if method is None:
        allowed = ", ".join(f"@{m}" for m in HTTP_METHODS)
        raise PipelineConfigError(
            f"Invalid HTTP method folder '{dir_name}'. Must be one of: {allowed}"
        )
    return method


def parse_dynamic_segment(segment: str) -> str:
    """``"[id]"`` -> ``"{id}"``; other segments pass through."""
    match = _DYNAMIC_SEGMENT.match(segment)
    return f"{{{match.group(1)}}}" if match else segment


def infer_path(feature_dir: Path, features_base: Path) -> str:
    """Route path for *feature_dir*, relative to the features root."""
    segments = list(feature_dir.relative_to(features_base).parts)
    if segments and segments[-1].startswith("@"):
        segments.pop()
    return "/" + "/".join(parse_dynamic_segment(s) for s in segments)


def is_feature_dir(directory: Path) -> bool:
    """An ``@method`` folder holding steps, async tasks or a feature module."""
    if not is_method_dir(directory.name):
        return False
    return (
        (directory / STEPS_DIR).is_dir()
        or (directory / ASYNC_TASKS_DIR).is_dir()
        or (directory / FEATURE_MODULE).is_file()
    )


def _route_sort_key(feature: Feature) -> tuple[Any, ...]:
    # Static segments before dynamic ones so /users/me wins over /users/{id}.
    segments = [s for s in feature.path.split("/") if s]
    return (
        tuple((s.startswith("{"), s) for s in segments),
        feature.method,
    )


def load_feature(
    directory: str | Path,
    features_base: str | Path,
    *,
    settings: Settings | None = None,
    scheduler: AsyncTaskScheduler | None = None,
) -> Feature:
    """Build the Feature for one ``@method`` folder."""
    directory = Path(directory)
    overrides: dict[str, Any] = {}
    module_path = directory / FEATURE_MODULE
    if module_path.is_file():
        module = load_module(module_path)
        overrides = {
            key: getattr(module, key)
            for key in (
                "method",
                "path",
                "steps",
                "async_tasks",
                "on_error",
                "context_initializer",
                "middlewares",
            )
            if getattr(module, key, None) is not None
        }

    method = str(overrides.get("method") or infer_method(directory.name)).upper()
    path = overrides.get("path") or infer_path(directory, Path(features_base))

    pipeline = Pipeline.from_directories(
        directory / overrides.get("steps", STEPS_DIR),
        directory / overrides.get("async_tasks", ASYNC_TASKS_DIR),
        on_error=overrides.get("on_error"),
        context_initializer=overrides.get("context_initializer"),
        middlewares=overrides.get("middlewares", ()),
        settings=settings,
        scheduler=scheduler,
        name=f"{method} {path}",
    )
    return Feature(method=method, path=path, directory=directory, pipeline=pipeline)


def scan_features(
    directory: str | Path,
    *,
    exclude_dirs: frozenset[str] = DEFAULT_EXCLUDES,
    settings: Settings | None = None,
    scheduler: AsyncTaskScheduler | None = None,
) -> list[Feature]:
    """Recursively discover every feature under *directory*.

    Returns:
        Features sorted so static routes come before dynamic ones.

    Raises:
        PipelineConfigError: Missing root, two features for the same
            route, or any step discovery error.
    """
    base = Path(directory).resolve()
    if not base.is_dir():
        raise PipelineConfigError(f"Features directory not found: {base}")

    features: list[Feature] = []
    _scan(base, base, exclude_dirs, features, settings, scheduler)

    seen: dict[tuple[str, str], Path] = {}
    for feature in features:
        key = (feature.method, feature.path)
        if key in seen:
            raise PipelineConfigError(
                f"Duplicate route {feature.method} {feature.path}: "
                f"'{seen[key]}' and '{feature.directory}'"
            )
        seen[key] = feature.directory

    return sorted(features, key=_route_sort_key)


def _scan(
    current: Path,
    base: Path,
    exclude_dirs: frozenset[str],
    features: list[Feature],
    settings: Settings | None,
    scheduler: AsyncTaskScheduler | None,
) -> None:
    is_feature = is_feature_dir(current)
    if is_feature:
        features.append(
            load_feature(current, base, settings=settings, scheduler=scheduler)
        )

    for entry in sorted(current.iterdir()):
        if not entry.is_dir() or entry.name in exclude_dirs:
            continue
        # steps/ and async-tasks/ belong to the feature; elsewhere they are resources
        if is_feature and entry.name in (STEPS_DIR, ASYNC_TASKS_DIR):
            continue
        _scan(entry, base, exclude_dirs, features, settings, scheduler)
