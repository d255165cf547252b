"""Command-line interface for feature-pipelines.

Enables inspection via ``python -m feature_pipelines`` or a plain
``feature-pipelines`` command after install.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

# ── Human-readable help strings ──────────────────────────────────────────────

_TOP_DESCRIPTION = """\
Developer tooling for feature-pipelines HTTP features.

A features tree maps folders to routes: features/api/users/@post/ becomes
POST /api/users, and its steps/ folder holds ordered step modules
(100-validate.py, 200-save.py, ...) that run one after another per request.

Use this tool to LIST the routes a features tree registers or to VALIDATE the
tree before starting a server. It does not serve HTTP traffic itself; mount the
tree with feature_pipelines.asgi.create_app() and run it under any ASGI server.
"""

_TOP_EPILOG = """\
For a machine-readable JSON description of this CLI:

  feature-pipelines schema

Quick examples:
  feature-pipelines routes ./features
  feature-pipelines validate ./features
"""

_ROUTES_DESCRIPTION = """\
Discover every feature under a directory and print its routes as JSON.

Imports each step and async-task module, so module-level errors surface here
exactly as they would at server start.
"""

_ROUTES_EPILOG = """\
Output schema (JSON array written to stdout):

  [
    {
      "method": <str>,      -- GET, POST, PUT, PATCH or DELETE
      "path": <str>,        -- route path, dynamic segments as {name}
      "directory": <str>,   -- the @method folder
      "steps": [{"order": <int>, "name": <str>}],
      "async_tasks": [{"order": <int>, "name": <str>}],
      "has_error_handler": <bool>
    }
  ]

Common errors:
  PipelineConfigError -- duplicate step order, duplicate route, or a module
                         that fails to import / has no handle() function
"""

_VALIDATE_DESCRIPTION = """\
Statically validate a features tree without importing any step module.

Checks for: duplicate step orders, file names that will be ignored, missing
or mis-shaped handle() functions, unknown @method folders and duplicate routes.
"""

_VALIDATE_EPILOG = """\
Diagnostic output format (written to stderr on failure):
  [error]   <path> (rule): message  -- registration will fail; must be fixed
  [warning] <path> (rule): message  -- likely a mistake

Exit codes:
  0 -- no errors; safe to serve
  1 -- one or more errors found
"""

_SCHEMA_DESCRIPTION = """\
Print a machine-readable JSON description of this CLI to stdout.
"""


# ── Structured JSON schema (for `feature-pipelines schema`) ──────────────────

def _cli_schema() -> dict[str, Any]:
    """Return a structured JSON description of the entire CLI."""
    return {
        "tool": "feature-pipelines",
        "description": (
            "Developer tooling for convention-based HTTP features whose "
            "handlers are ordered step modules."
        ),
        "commands": [
            {
                "name": "routes",
                "description": "Discover features and print their routes as JSON.",
                "arguments": {
                    "features_dir": {
                        "type": "string",
                        "format": "directory path",
                        "required": True,
                        "description": "Root of the features tree.",
                    },
                },
                "exit_codes": {
                    "0": "routes printed",
                    "1": "configuration error (duplicate order, duplicate route, import failure)",
                },
                "examples": [
                    {"description": "List routes", "command": "feature-pipelines routes ./features"},
                ],
            },
            {
                "name": "validate",
                "description": (
                    "Statically validate a features tree. No module is imported "
                    "and no handler runs."
                ),
                "arguments": {
                    "features_dir": {
                        "type": "string",
                        "format": "directory path",
                        "required": True,
                        "description": "Root of the features tree.",
                    },
                },
                "exit_codes": {
                    "0": "no errors found",
                    "1": "one or more errors found",
                },
                "examples": [
                    {
                        "description": "Validate before deploying",
                        "command": "feature-pipelines validate ./features",
                    },
                ],
            },
            {
                "name": "schema",
                "description": "Print this machine-readable JSON schema to stdout.",
                "arguments": {},
                "exit_codes": {"0": "always succeeds"},
            },
        ],
        "features_layout": {
            "method_folder": "@get | @post | @put | @patch | @delete",
            "dynamic_segment": "[id] -> {id}",
            "steps": "steps/<order>-<label>.py defining handle(ctx, request, response)",
            "async_tasks": "async-tasks/<order>-<label>.py defining handle(ctx)",
            "feature_module": (
                "optional feature.py defining on_error, context_initializer, "
                "middlewares, method, path, steps, async_tasks"
            ),
        },
    }


# ── Argument parser ───────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feature-pipelines",
        description=_TOP_DESCRIPTION,
        epilog=_TOP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    # ── routes ───────────────────────────────────────────────────────────────
    routes_p = sub.add_parser(
        "routes",
        help="Discover features and print their routes as JSON",
        description=_ROUTES_DESCRIPTION,
        epilog=_ROUTES_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    routes_p.add_argument(
        "features_dir",
        type=Path,
        help="Root of the features tree",
    )

    # ── validate ─────────────────────────────────────────────────────────────
    val_p = sub.add_parser(
        "validate",
        help="Statically validate a features tree",
        description=_VALIDATE_DESCRIPTION,
        epilog=_VALIDATE_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    val_p.add_argument(
        "features_dir",
        type=Path,
        help="Root of the features tree to validate",
    )

    # ── schema ───────────────────────────────────────────────────────────────
    sub.add_parser(
        "schema",
        help="Print a machine-readable JSON schema of this CLI to stdout",
        description=_SCHEMA_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    return parser


# ── Command handlers ──────────────────────────────────────────────────────────

def _route_entry(feature: Any) -> dict[str, Any]:
    info = feature.info()
    return {
        "method": info.method,
        "path": info.path,
        "directory": info.directory,
        "steps": [{"order": s.order, "name": s.name} for s in info.pipeline.steps],
        "async_tasks": [{"order": t.order, "name": t.name} for t in info.pipeline.async_tasks],
        "has_error_handler": info.pipeline.has_error_handler,
    }


def _cmd_routes(args: argparse.Namespace) -> int:
    from feature_pipelines import PipelineConfigError, scan_features

    try:
        features = scan_features(args.features_dir)
    except PipelineConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps([_route_entry(f) for f in features], indent=2))
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    from feature_pipelines import validate_features

    result = validate_features(args.features_dir)

    if result.ok:
        print(f"Features are valid ({result.feature_count} features)")
        for d in result.warnings:
            print(f"[{d.severity.value}] {d.location} ({d.rule}): {d.message}", file=sys.stderr)
        return 0

    for d in result.diagnostics:
        print(f"[{d.severity.value}] {d.location} ({d.rule}): {d.message}", file=sys.stderr)

    error_count = len(result.errors)
    warning_count = len(result.warnings)
    print(f"\n{error_count} error(s), {warning_count} warning(s)", file=sys.stderr)
    return 1


def _cmd_schema() -> int:
    print(json.dumps(_cli_schema(), indent=2))
    return 0


# ── Entry point ───────────────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "routes":
        sys.exit(_cmd_routes(args))
    elif args.command == "validate":
        sys.exit(_cmd_validate(args))
    elif args.command == "schema":
        sys.exit(_cmd_schema())


if __name__ == "__main__":
    main()
