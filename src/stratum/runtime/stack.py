"""
Program entry points.

A program is any callable (sync or async) that constructs resources. It
runs inside the event loop so resource constructors can schedule their
registration; the run ends once every outstanding monitor call is done.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable

import structlog

from stratum.config import Settings, get_settings
from stratum.core.errors import ExitCode, main_with_error_handling
from stratum.logging import configure_logging
from stratum.runtime.monitor import HttpResourceMonitor, ResourceMonitor
from stratum.runtime.state import configure_runtime, reset_runtime

logger = structlog.get_logger()


async def run_program(
    program: Callable[[], Any],
    *,
    settings: Settings | None = None,
    monitor: ResourceMonitor | None = None,
) -> None:
    settings = settings or get_settings()
    monitor = monitor or HttpResourceMonitor.from_settings(settings)
    runtime = configure_runtime(settings, monitor)

    log = logger.bind(project=settings.project, stack=settings.stack)
    log.info("program_started", dry_run=settings.dry_run, serialize=settings.serialize)
    try:
        result = program()
        if inspect.isawaitable(result):
            await result
        await runtime.wait_for_rpcs()
    finally:
        reset_runtime()
    log.info("program_finished")


@main_with_error_handling()
def run(
    program: Callable[[], Any],
    *,
    settings: Settings | None = None,
    monitor: ResourceMonitor | None = None,
) -> int:
    """Run ``program`` to completion and return a process exit code."""
    settings = settings or get_settings()
    configure_logging(settings.log_level.upper(), json_output=settings.log_json)
    asyncio.run(run_program(program, settings=settings, monitor=monitor))
    return ExitCode.SUCCESS
