"""Root test configuration."""

import asyncio
import logging
from typing import Any

import pytest
import structlog
from stratum.config import Settings
from stratum.runtime.monitor import (
    ReadResourceResponse,
    RegisterResourceResponse,
)
from stratum.runtime.state import configure_runtime, reset_runtime


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def urn_for(t: str, name: str) -> str:
    return f"urn:stratum:dev::project::{t}::{name}"


class StubMonitor:
    """In-memory resource monitor recording every call it receives."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.events: list[str] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.register_responses: dict[str, RegisterResourceResponse | Exception] = {}
        self.read_responses: dict[str, ReadResourceResponse | Exception] = {}
        self.outputs_error: Exception | None = None

    def gate(self, name: str) -> asyncio.Event:
        self.gates[name] = asyncio.Event()
        return self.gates[name]

    def names(self, method: str) -> list[str]:
        return [request.name for kind, request in self.calls if kind == method]

    async def register_resource(self, request):
        self.calls.append(("register", request))
        self.events.append(f"start:{request.name}")
        gate = self.gates.get(request.name)
        if gate is not None:
            await gate.wait()
        self.events.append(f"end:{request.name}")

        result = self.register_responses.get(request.name)
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return RegisterResourceResponse(
            urn=urn_for(request.type, request.name),
            id=f"{request.name}-id" if request.custom else None,
            properties={},
        )

    async def read_resource(self, request):
        self.calls.append(("read", request))
        result = self.read_responses.get(request.name)
        if isinstance(result, Exception):
            raise result
        if result is not None:
            return result
        return ReadResourceResponse(urn=urn_for(request.type, request.name), properties={})

    async def register_resource_outputs(self, request):
        self.calls.append(("outputs", request))
        self.events.append(f"outputs:{request.urn}")
        if self.outputs_error is not None:
            raise self.outputs_error


@pytest.fixture
def monitor():
    return StubMonitor()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def runtime(settings, monitor):
    rt = configure_runtime(settings, monitor)
    yield rt
    reset_runtime()


@pytest.fixture
def parallel_runtime(settings, monitor):
    rt = configure_runtime(settings.model_copy(update={"serialize": False}), monitor)
    yield rt
    reset_runtime()


async def settle(rounds: int = 50) -> None:
    """Let pending callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
