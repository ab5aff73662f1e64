"""
Handling for a resource monitor that is shutting down.

When the engine decides to terminate it drains its endpoints and refuses
new calls. The call that just failed must not be reported as an error and
no further calls should be made, so the client stops making progress and
waits for the engine to kill the process.
"""

from __future__ import annotations

import asyncio
from typing import NoReturn

import structlog

logger = structlog.get_logger()


class MonitorTermination:
    """Tracks whether the monitor is terminating and parks callers forever."""

    def __init__(self) -> None:
        self._terminating = False
        self._never: asyncio.Event | None = None

    @property
    def terminating(self) -> bool:
        return self._terminating

    async def park(self, label: str | None = None) -> NoReturn:
        if not self._terminating:
            self._terminating = True
            logger.debug("monitor_terminating", label=label)
        if self._never is None:
            self._never = asyncio.Event()
        while True:
            await self._never.wait()
