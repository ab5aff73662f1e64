"""
Command line entry point for running a resource program.

Commands:
    stratum run <module>             - Import <module>; its top-level code declares resources
    stratum run <module>:<function>  - Import <module> and call <function>
    stratum run <target> --preview   - Run as a preview (unresolved properties stay unknown)
"""

from __future__ import annotations

import argparse
import importlib
from typing import Any, Callable, Sequence

from stratum.config import get_settings
from stratum.runtime.stack import run


def load_program(target: str) -> Callable[[], Any]:
    """Build a program callable for ``module`` or ``module:function``."""
    module_name, _, function_name = target.partition(":")

    def program() -> Any:
        module = importlib.import_module(module_name)
        if not function_name:
            return None
        return getattr(module, function_name)()

    return program


def register_run_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register run subcommand parser."""
    run_parser = subparsers.add_parser("run", help="Run a resource program")
    run_parser.add_argument("target", help="Program to run, as module or module:function")
    run_parser.add_argument(
        "--monitor-url",
        help="Resource monitor URL (or set STRATUM_MONITOR_URL)",
    )
    run_parser.add_argument(
        "--preview",
        action="store_true",
        help="Run as a preview instead of an update",
    )
    run_parser.add_argument(
        "--parallel",
        action="store_true",
        help="Do not serialize resource operations in declaration order",
    )


def handle_run_command(args: argparse.Namespace) -> int:
    """Handle run command from CLI args."""
    overrides: dict[str, Any] = {}
    if getattr(args, "monitor_url", None):
        overrides["monitor_url"] = args.monitor_url
    if getattr(args, "preview", False):
        overrides["dry_run"] = True
    if getattr(args, "parallel", False):
        overrides["serialize"] = False

    settings = get_settings()
    if overrides:
        settings = settings.model_copy(update=overrides)
    return run(load_program(args.target), settings=settings)


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="stratum", description="Resource program runner")
    subparsers = parser.add_subparsers(dest="command", required=True)
    register_run_parser(subparsers)

    args = parser.parse_args(argv)
    if args.command == "run":
        return handle_run_command(args)
    parser.error(f"unknown command {args.command}")
