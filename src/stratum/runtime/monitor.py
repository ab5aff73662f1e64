from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from stratum.config import Settings
from stratum.core.errors import MonitorCallError, MonitorUnavailableError

logger = structlog.get_logger()


class RetryableMonitorError(MonitorCallError):
    """Monitor errors that should be retried."""


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 502, 504)


@dataclass(slots=True)
class ReadResourceRequest:
    type: str
    name: str
    id: Any
    parent: str | None = None
    provider: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(slots=True)
class ReadResourceResponse:
    urn: str
    properties: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> ReadResourceResponse:
        return cls(urn=data.get("urn", ""), properties=data.get("properties"))


@dataclass(slots=True)
class RegisterResourceRequest:
    type: str
    name: str
    custom: bool
    parent: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)
    protect: bool = False
    provider: str | None = None
    dependencies: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(slots=True)
class RegisterResourceResponse:
    urn: str
    id: Any = None
    properties: dict[str, Any] | None = None

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> RegisterResourceResponse:
        return cls(
            urn=data.get("urn", ""),
            id=data.get("id"),
            properties=data.get("properties"),
        )


@dataclass(slots=True)
class RegisterResourceOutputsRequest:
    urn: str
    outputs: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


class ResourceMonitor(Protocol):
    """The three engine operations a program needs."""

    async def read_resource(self, request: ReadResourceRequest) -> ReadResourceResponse: ...

    async def register_resource(
        self, request: RegisterResourceRequest
    ) -> RegisterResourceResponse: ...

    async def register_resource_outputs(self, request: RegisterResourceOutputsRequest) -> None: ...


class HttpResourceMonitor:
    """JSON-over-HTTP resource monitor client with retry on transient failures.

    A 503 or a refused connection means the engine is shutting down and is
    raised as ``MonitorUnavailableError`` without retrying.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_factor: float = 2.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._backoff_factor = backoff_factor

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpResourceMonitor:
        return cls(
            settings.monitor_url,
            timeout=settings.http_timeout,
            max_retries=settings.http_max_retries,
            backoff_factor=settings.http_retry_backoff_factor,
        )

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    async def read_resource(self, request: ReadResourceRequest) -> ReadResourceResponse:
        data = await self._call("ReadResource", request.to_payload())
        return ReadResourceResponse.from_payload(data)

    async def register_resource(
        self, request: RegisterResourceRequest
    ) -> RegisterResourceResponse:
        data = await self._call("RegisterResource", request.to_payload())
        return RegisterResourceResponse.from_payload(data)

    async def register_resource_outputs(self, request: RegisterResourceOutputsRequest) -> None:
        await self._call("RegisterResourceOutputs", request.to_payload())

    async def _call(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RetryableMonitorError),
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff_factor, max=30),
            reraise=True,
        )
        return await retrying(self._post, method, payload)

    async def _post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Execute a single monitor call."""
        url = f"{self._base_url}/{method}"

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=payload, headers=self._headers())
        except httpx.ConnectError as exc:
            logger.debug("monitor_unreachable", method=method, url=url, error=str(exc))
            raise MonitorUnavailableError(str(exc)) from exc
        except (httpx.TimeoutException, httpx.ReadError) as exc:
            logger.warning("monitor_network_error", method=method, url=url, error=str(exc))
            raise RetryableMonitorError(str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.error("monitor_unexpected_error", method=method, url=url, error=str(exc))
            raise MonitorCallError(str(exc)) from exc

        if response.status_code == 503:
            raise MonitorUnavailableError(
                f"resource monitor unavailable: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if is_retryable_status(response.status_code):
            logger.warning(
                "monitor_retryable_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise RetryableMonitorError(
                f"HTTP {response.status_code}: {_error_detail(response)}",
                status_code=response.status_code,
            )
        if response.is_error:
            logger.error(
                "monitor_permanent_error",
                status=response.status_code,
                method=method,
                url=url,
            )
            raise MonitorCallError(_error_detail(response), status_code=response.status_code)

        return response.json() if response.content else {}


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text
