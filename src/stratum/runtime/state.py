from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Callable

import structlog

from stratum.config import Settings
from stratum.core.errors import ConfigurationError
from stratum.runtime.monitor import ResourceMonitor
from stratum.runtime.ordering import ResourceOpQueue
from stratum.runtime.termination import MonitorTermination

logger = structlog.get_logger()


class RPCKeepAlive:
    """Counts outstanding resource operations so the program waits for them."""

    def __init__(self) -> None:
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def acquire(self) -> Callable[[], None]:
        """Take a token; the returned callable releases it (once)."""
        self._outstanding += 1
        self._idle.clear()
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            self._outstanding -= 1
            if self._outstanding == 0:
                self._idle.set()

        return release

    async def wait_idle(self) -> None:
        await self._idle.wait()


@dataclass
class Runtime:
    """Process-wide state shared by every resource operation."""

    settings: Settings
    monitor: ResourceMonitor
    keep_alive: RPCKeepAlive = field(default_factory=RPCKeepAlive)
    termination: MonitorTermination = field(default_factory=MonitorTermination)
    errors: list[BaseException] = field(default_factory=list)
    queue: ResourceOpQueue = field(init=False)

    def __post_init__(self) -> None:
        self.queue = ResourceOpQueue(
            self.keep_alive,
            serialize=self.settings.serialize,
            on_error=self.report_error,
        )

    def report_error(self, exc: BaseException) -> None:
        if any(existing is exc for existing in self.errors):
            return
        self.errors.append(exc)
        logger.error("resource_operation_failed", error_type=type(exc).__name__, error=str(exc))

    async def wait_for_rpcs(self) -> None:
        """Wait until no operation is outstanding, then raise the first failure."""
        while True:
            await self.keep_alive.wait_idle()
            # Let completion callbacks that schedule further work run first.
            await asyncio.sleep(0)
            if self.keep_alive.outstanding == 0:
                break
        if self.errors:
            raise self.errors[0]


_runtime: Runtime | None = None


def configure_runtime(settings: Settings, monitor: ResourceMonitor) -> Runtime:
    global _runtime
    _runtime = Runtime(settings=settings, monitor=monitor)
    return _runtime


def get_runtime() -> Runtime:
    if _runtime is None:
        raise ConfigurationError(
            "The resource runtime is not configured; run the program through stratum.run"
        )
    return _runtime


def reset_runtime() -> None:
    global _runtime
    _runtime = None
