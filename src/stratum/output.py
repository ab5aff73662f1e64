"""
Deferred values produced by resource registration.

An Output carries two independently resolved channels: the raw value and
whether the value is known. Unknown values show up during previews, where
the engine cannot yet say what a property will be; transformations
chained with ``apply`` are skipped for them.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Generic, Iterable, TypeVar

from stratum.core.errors import OutputAlreadyResolvedError

if TYPE_CHECKING:
    from stratum.resource import Resource

T = TypeVar("T")


class Unknown:
    """Sentinel for a value that is only known after a real deployment."""

    _instance: Unknown | None = None

    def __new__(cls) -> Unknown:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNKNOWN"


UNKNOWN = Unknown()


class OutputResolver(Generic[T]):
    """Write side of an Output: completes each channel at most once."""

    def __init__(self, label: str, *, known: bool | None = None) -> None:
        loop = asyncio.get_running_loop()
        self.label = label
        self.value: asyncio.Future[T] = loop.create_future()
        self.known: asyncio.Future[bool] = loop.create_future()
        if known is not None:
            self.known.set_result(known)

    @property
    def done(self) -> bool:
        return self.value.done()

    def resolve(self, value: T, is_known: bool = True) -> None:
        if self.value.done():
            raise OutputAlreadyResolvedError(
                f"{self.label} was resolved more than once",
                details={"label": self.label},
            )
        self.value.set_result(value)
        if not self.known.done():
            self.known.set_result(is_known)

    def reject(self, exc: BaseException) -> None:
        if self.value.done():
            raise OutputAlreadyResolvedError(
                f"{self.label} was rejected after it resolved",
                details={"label": self.label},
            )
        self.value.set_exception(exc)
        if not self.known.done():
            self.known.set_exception(exc)


class Output(Generic[T]):
    """A value owned by one or more resources that resolves asynchronously."""

    def __init__(
        self,
        resources: Iterable[Resource],
        future: Awaitable[T],
        is_known: Awaitable[bool],
    ) -> None:
        self._resources = frozenset(resources)
        self._future = asyncio.ensure_future(future)
        self._is_known = asyncio.ensure_future(is_known)

    @classmethod
    def create(
        cls,
        owner: Resource | None,
        future: Awaitable[T],
        is_known: Awaitable[bool],
    ) -> Output[T]:
        """Bind ``owner`` to a pair of pending channels."""
        return cls([owner] if owner is not None else [], future, is_known)

    @classmethod
    def from_input(cls, value: Any) -> Output[Any]:
        """Lift a plain value, awaitable or Output into an Output."""
        if isinstance(value, Output):
            return value
        if inspect.isawaitable(value):
            future = asyncio.ensure_future(value)

            async def is_known() -> bool:
                return await future is not UNKNOWN

            return cls([], future, is_known())

        resolver: OutputResolver[Any] = OutputResolver("input")
        if value is UNKNOWN:
            resolver.resolve(None, False)
        else:
            resolver.resolve(value, True)
        return cls([], resolver.value, resolver.known)

    @property
    def resources(self) -> frozenset[Resource]:
        return self._resources

    def future(self) -> Awaitable[T]:
        return self._future

    async def is_known(self) -> bool:
        return await self._is_known

    def apply(self, func: Callable[[T], Any]) -> Output[Any]:
        """Run ``func`` once the value is known; skip it while unknown."""
        resolver: OutputResolver[Any] = OutputResolver("apply")

        async def run() -> None:
            try:
                if not await self._is_known:
                    await self._future
                    resolver.resolve(None, False)
                    return
                result = func(await self._future)
                if isinstance(result, Output):
                    known = await result.is_known()
                    resolver.resolve(await result.future(), known)
                    return
                if inspect.isawaitable(result):
                    result = await result
                resolver.resolve(result, True)
            except Exception as exc:
                resolver.reject(exc)

        asyncio.ensure_future(run())
        return Output(self._resources, resolver.value, resolver.known)

    def __repr__(self) -> str:
        return f"Output(resources={len(self._resources)})"
