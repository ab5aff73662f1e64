"""
Ordering of resource operations.

Left alone, operations run in whatever order their dependencies resolve.
Some providers need a stable order that matches the order resources were
declared, so serial operations are chained one behind the other. Only the
most recent serial operation is kept; each new one waits on it and then
takes its place.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Awaitable, Callable

import structlog

if TYPE_CHECKING:
    from stratum.runtime.state import RPCKeepAlive

logger = structlog.get_logger()


class ResourceOpQueue:
    """Runs resource operations, serializing the ones marked serial."""

    def __init__(
        self,
        keep_alive: RPCKeepAlive,
        *,
        serialize: bool = True,
        on_error: Callable[[BaseException], None] | None = None,
    ) -> None:
        self._keep_alive = keep_alive
        self._serialize = serialize
        self._on_error = on_error
        self._chain: asyncio.Task[None] | None = None
        self._chain_label: str | None = None

    @property
    def current_label(self) -> str | None:
        """Label of the serial operation most recently started (debug only)."""
        return self._chain_label

    def run(
        self,
        label: str,
        callback: Callable[[], Awaitable[None]],
        serial: bool | None = None,
    ) -> asyncio.Task[None]:
        if serial is None:
            serial = self._serialize

        previous = self._chain if serial else None
        release = self._keep_alive.acquire()

        async def operation() -> None:
            nonlocal previous
            try:
                if previous is not None:
                    # Waits without raising; the previous op reports its own failure.
                    await asyncio.wait([previous])
                    previous = None
                if serial:
                    self._chain_label = label
                    logger.debug("resource_op_serialized", label=label, position="current")
                await callback()
            except Exception as exc:
                if self._on_error is not None:
                    self._on_error(exc)
                raise
            finally:
                release()

        task = asyncio.ensure_future(operation())
        if serial:
            if self._chain_label:
                logger.debug(
                    "resource_op_serialized",
                    label=label,
                    position="behind",
                    behind=self._chain_label,
                )
            self._chain = task
        return task
