"""Step and async-task discovery.

A pipeline's steps live in a directory of ordered Python modules::

    steps/
      100-validate.py
      200-load-user.py
      900-respond.py

The leading integer is the order key (compared numerically, so
``90-x.py`` runs before ``100-y.py``) and every module exposes a
``handle`` callable. Files that don't match ``<order>-<label>.py`` are
ignored. The same ordering and duplicate rules apply to explicit
registries built with ``steps_from_registry``.
"""

from __future__ import annotations

import hashlib
import importlib.util
import re
import sys
from collections.abc import Callable, Iterable
from pathlib import Path
from types import ModuleType
from typing import Any, TypeVar

from feature_pipelines import pipeline_logger
from feature_pipelines.errors import PipelineConfigError
from feature_pipelines.models import AsyncTask, Step

HANDLER_ATTR = "handle"

STEP_FILE_PATTERN = re.compile(r"^(?P<order>\d+)-(?P<label>.+)\.py$")
_DECLARED_NAME_PATTERN = re.compile(r"^(?P<order>\d+)-(?P<label>[^/\\]+?)(?:\.py)?$")

Unit = TypeVar("Unit", Step, AsyncTask)


def parse_declared_name(declared: str) -> tuple[int, str]:
    """Split ``"100-validate"`` (or ``"100-validate.py"``) into order and name.

    Raises:
        PipelineConfigError: If the name has no numeric order prefix.
    """
    match = _DECLARED_NAME_PATTERN.match(declared)
    if match is None:
        raise PipelineConfigError(
            f"Invalid step name '{declared}': expected '<order>-<label>', "
            f"e.g. '100-validate'"
        )
    return int(match.group("order")), match.group("label")


def load_module(path: str | Path) -> ModuleType:
    """Import a Python file by path.

    Modules are registered under a name derived from their absolute path,
    so two ``100-validate.py`` files in different features never collide.

    Raises:
        PipelineConfigError: If the file can't be imported.
    """
    path = Path(path).resolve()
    digest = hashlib.sha1(str(path).encode("utf-8")).hexdigest()[:12]
    stem = re.sub(r"\W", "_", path.stem)
    module_name = f"_feature_module_{digest}_{stem}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise PipelineConfigError(f"Cannot import {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise PipelineConfigError(f"Failed to load {path}: {e}") from e
    return module


def load_handler(path: str | Path, attr: str = HANDLER_ATTR) -> Callable[..., Any]:
    """Import *path* and return its ``handle`` callable."""
    module = load_module(path)
    handler = getattr(module, attr, None)
    if not callable(handler):
        raise PipelineConfigError(
            f"{path} must define a callable '{attr}'"
        )
    return handler


def _ordered_files(directory: Path) -> list[tuple[int, str, Path]]:
    found: list[tuple[int, str, Path]] = []
    for entry in sorted(directory.iterdir()):
        if not entry.is_file():
            continue
        match = STEP_FILE_PATTERN.match(entry.name)
        if match is None:
            if entry.suffix == ".py" and entry.name != "__init__.py":
                pipeline_logger.log_discovery_skip(str(directory), entry.name)
            continue
        found.append((int(match.group("order")), match.group("label"), entry))
    return found


def _check_unique(entries: Iterable[tuple[int, str]]) -> None:
    seen: dict[int, str] = {}
    for order, source in entries:
        if order in seen:
            raise PipelineConfigError(
                f"Duplicate step order {order}: '{seen[order]}' and '{source}'. "
                f"Each step needs a unique order, "
                f"e.g. 100-validate.py, 200-process.py, 300-respond.py"
            )
        seen[order] = source


def _discover(directory: str | Path | None, model: type[Unit]) -> list[Unit]:
    if directory is None:
        return []
    directory = Path(directory)
    if not directory.is_dir():
        return []

    files = _ordered_files(directory)
    _check_unique((order, path.name) for order, _, path in files)

    units = [
        model(order=order, name=label, handler=load_handler(path), source=str(path))
        for order, label, path in files
    ]
    return sorted(units, key=lambda u: u.order)


def discover_steps(directory: str | Path | None) -> list[Step]:
    """Discover and sort the step modules in *directory*.

    A missing directory is not an error; it yields no steps.

    Raises:
        PipelineConfigError: On duplicate orders, import failures, or a
            module without a ``handle`` callable.
    """
    return _discover(directory, Step)


def discover_async_tasks(directory: str | Path | None) -> list[AsyncTask]:
    """Discover and sort async-task modules. Same rules as steps."""
    return _discover(directory, AsyncTask)


def _from_registry(
    entries: Iterable[tuple[str, Callable[..., Any]]], model: type[Unit]
) -> list[Unit]:
    units: list[Unit] = []
    for declared, handler in entries:
        order, label = parse_declared_name(declared)
        if not callable(handler):
            raise PipelineConfigError(f"Handler for '{declared}' is not callable")
        units.append(model(order=order, name=label, handler=handler, source=declared))

    _check_unique((u.order, u.source) for u in units)
    return sorted(units, key=lambda u: u.order)


def steps_from_registry(
    entries: Iterable[tuple[str, Callable[..., Any]]],
) -> list[Step]:
    """Build an ordered step list from ``(declared_name, handler)`` pairs.

    Example::

        steps_from_registry([("200-save", save), ("100-validate", validate)])
    """
    return _from_registry(entries, Step)


def tasks_from_registry(
    entries: Iterable[tuple[str, Callable[..., Any]]],
) -> list[AsyncTask]:
    return _from_registry(entries, AsyncTask)
