"""Pre-flight features validator.

Statically checks a features tree without importing any step module.
Catches duplicate orders, misnamed files, missing or mis-shaped
``handle`` functions and conflicting routes before the app starts.
"""

from __future__ import annotations

import ast
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from feature_pipelines.convention import (
    ASYNC_TASKS_DIR,
    DEFAULT_EXCLUDES,
    FEATURE_MODULE,
    STEPS_DIR,
    infer_method,
    infer_path,
    is_feature_dir,
)
from feature_pipelines.discovery import HANDLER_ATTR, STEP_FILE_PATTERN
from feature_pipelines.errors import PipelineConfigError

# ---------------------------------------------------------------------------
# Data types
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """A single validation finding."""

    severity: Severity
    location: str
    message: str
    rule: str  # "order", "filename", "handler", "route", "layout"


@dataclass(frozen=True)
class ValidationResult:
    """Aggregate result of features validation."""

    diagnostics: list[Diagnostic]
    feature_count: int = 0

    @property
    def ok(self) -> bool:
        """True when there are no error-severity diagnostics."""
        return not any(d.severity == Severity.ERROR for d in self.diagnostics)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.WARNING]


# Positional arguments ``handle`` receives in each unit directory.
_EXPECTED_ARITY = {STEPS_DIR: 3, ASYNC_TASKS_DIR: 1}

# ---------------------------------------------------------------------------
# 1. Handler shape
# ---------------------------------------------------------------------------


def _find_handler(tree: ast.Module) -> ast.FunctionDef | ast.AsyncFunctionDef | None | bool:
    """Return the ``handle`` def, True if bound some other way, None if absent."""
    found: ast.FunctionDef | ast.AsyncFunctionDef | None | bool = None
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == HANDLER_ATTR:
            found = node
        elif isinstance(node, ast.Assign) and any(
            isinstance(t, ast.Name) and t.id == HANDLER_ATTR for t in node.targets
        ):
            found = True
        elif isinstance(node, (ast.Import, ast.ImportFrom)) and any(
            (alias.asname or alias.name) == HANDLER_ATTR for alias in node.names
        ):
            found = True
    return found


def _check_handler(path: Path, expected_arity: int) -> list[Diagnostic]:
    try:
        tree = ast.parse(path.read_text(encoding="utf-8"), filename=str(path))
    except SyntaxError as e:
        return [Diagnostic(Severity.ERROR, str(path), f"Syntax error: {e.msg} (line {e.lineno})", "handler")]

    handler = _find_handler(tree)
    if handler is None:
        return [
            Diagnostic(
                Severity.ERROR,
                str(path),
                f"Module does not define '{HANDLER_ATTR}'",
                "handler",
            )
        ]
    if handler is True:
        return []

    args = handler.args
    positional = len(args.posonlyargs) + len(args.args)
    required = positional - len(args.defaults)
    if args.vararg is None and positional < expected_arity:
        return [
            Diagnostic(
                Severity.ERROR,
                str(path),
                f"'{HANDLER_ATTR}' takes {positional} positional argument(s) "
                f"but is called with {expected_arity}",
                "handler",
            )
        ]
    if required > expected_arity:
        return [
            Diagnostic(
                Severity.ERROR,
                str(path),
                f"'{HANDLER_ATTR}' requires {required} argument(s) "
                f"but is called with {expected_arity}",
                "handler",
            )
        ]
    return []


# ---------------------------------------------------------------------------
# 2. Unit directories (steps/, async-tasks/)
# ---------------------------------------------------------------------------


def _check_unit_dir(directory: Path) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    seen: dict[int, str] = {}
    expected_arity = _EXPECTED_ARITY[directory.name]

    for entry in sorted(directory.iterdir()):
        if not entry.is_file() or entry.suffix != ".py" or entry.name == "__init__.py":
            continue
        match = STEP_FILE_PATTERN.match(entry.name)
        if match is None:
            diagnostics.append(
                Diagnostic(
                    Severity.WARNING,
                    str(entry),
                    "File name does not match '<order>-<label>.py' and will be ignored",
                    "filename",
                )
            )
            continue

        order = int(match.group("order"))
        if order in seen:
            diagnostics.append(
                Diagnostic(
                    Severity.ERROR,
                    str(entry),
                    f"Duplicate order {order} (also used by '{seen[order]}')",
                    "order",
                )
            )
        else:
            seen[order] = entry.name

        diagnostics.extend(_check_handler(entry, expected_arity))

    return diagnostics


# ---------------------------------------------------------------------------
# 3. Features tree
# ---------------------------------------------------------------------------


def _check_feature(directory: Path, base: Path) -> tuple[list[Diagnostic], tuple[str, str] | None]:
    diagnostics: list[Diagnostic] = []
    try:
        route = (infer_method(directory.name), infer_path(directory, base))
    except PipelineConfigError as e:
        return [Diagnostic(Severity.ERROR, str(directory), str(e), "layout")], None

    steps_dir = directory / STEPS_DIR
    if steps_dir.is_dir():
        diagnostics.extend(_check_unit_dir(steps_dir))
    elif not (directory / FEATURE_MODULE).is_file():
        diagnostics.append(
            Diagnostic(
                Severity.WARNING,
                str(directory),
                "Feature has no steps/ directory; every request will fail "
                "with 'no response produced'",
                "layout",
            )
        )

    tasks_dir = directory / ASYNC_TASKS_DIR
    if tasks_dir.is_dir():
        diagnostics.extend(_check_unit_dir(tasks_dir))

    return diagnostics, route


def validate_features(directory: str | Path) -> ValidationResult:
    """Run all static checks on a features tree.

    Returns a ValidationResult with all diagnostics found.
    """
    base = Path(directory).resolve()
    if not base.is_dir():
        return ValidationResult(
            diagnostics=[
                Diagnostic(Severity.ERROR, str(base), "Features directory not found", "layout")
            ]
        )

    diagnostics: list[Diagnostic] = []
    routes: dict[tuple[str, str], Path] = {}
    count = 0

    def walk(current: Path) -> None:
        nonlocal count
        feature = is_feature_dir(current)
        if current.name.startswith("@") and not feature:
            if (current / STEPS_DIR).is_dir() or (current / ASYNC_TASKS_DIR).is_dir():
                diagnostics.append(
                    Diagnostic(
                        Severity.ERROR,
                        str(current),
                        f"Unknown HTTP method folder '{current.name}'",
                        "layout",
                    )
                )
        if feature:
            count += 1
            found, route = _check_feature(current, base)
            diagnostics.extend(found)
            if route is not None:
                if route in routes:
                    diagnostics.append(
                        Diagnostic(
                            Severity.ERROR,
                            str(current),
                            f"Duplicate route {route[0]} {route[1]} (also '{routes[route]}')",
                            "route",
                        )
                    )
                else:
                    routes[route] = current

        for entry in sorted(current.iterdir()):
            if not entry.is_dir() or entry.name in DEFAULT_EXCLUDES:
                continue
            if feature and entry.name in (STEPS_DIR, ASYNC_TASKS_DIR):
                continue
            walk(entry)

    walk(base)
    return ValidationResult(diagnostics=diagnostics, feature_count=count)
