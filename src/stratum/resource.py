"""
Resource types that user programs instantiate.

Constructing a resource registers it with the engine. The constructor
returns immediately; ``urn``, ``id`` and every input property become
Outputs that resolve once the engine answers.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from stratum.core.errors import InvalidResourceError
from stratum.output import Output


@dataclass
class ResourceOptions:
    """Options shared by every resource."""

    parent: Resource | None = None
    depends_on: Resource | Sequence[Resource] | None = None
    protect: bool = False

    def dependencies(self) -> list[Resource]:
        if self.depends_on is None:
            return []
        if isinstance(self.depends_on, Resource):
            return [self.depends_on]
        return list(self.depends_on)


@dataclass
class CustomResourceOptions(ResourceOptions):
    """Options for resources managed by a provider."""

    provider: ProviderResource | None = None
    # Reads the existing resource with this id instead of registering it.
    id: Any = None


class Resource:
    """Base class for all resources."""

    urn: Output[str]

    def __init__(
        self,
        t: str,
        name: str,
        custom: bool,
        props: Mapping[str, Any] | None = None,
        opts: ResourceOptions | None = None,
    ) -> None:
        if not t:
            raise InvalidResourceError("Missing resource type argument")
        if not name:
            raise InvalidResourceError("Missing resource name argument (for URN creation)")

        from stratum.runtime import resource as resource_runtime

        self._type = t
        self._name = name

        props = dict(props or {})
        opts = opts or ResourceOptions()
        if custom and getattr(opts, "id", None) is not None:
            self._registration = resource_runtime.read_resource(self, t, name, props, opts)
        else:
            self._registration = resource_runtime.register_resource(
                self, t, name, custom, props, opts
            )

    @property
    def resource_type(self) -> str:
        return self._type

    @property
    def resource_name(self) -> str:
        return self._name

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._name!r}, type={self._type!r})"


class CustomResource(Resource):
    """A resource whose lifecycle is handled by a provider; it has an id."""

    id: Output[Any]

    def __init__(
        self,
        t: str,
        name: str,
        props: Mapping[str, Any] | None = None,
        opts: CustomResourceOptions | None = None,
    ) -> None:
        super().__init__(t, name, True, props, opts or CustomResourceOptions())


class ProviderResource(CustomResource):
    """A provider instance that other custom resources can be bound to."""

    def __init__(
        self,
        pkg: str,
        name: str,
        props: Mapping[str, Any] | None = None,
        opts: CustomResourceOptions | None = None,
    ) -> None:
        super().__init__(f"stratum:providers:{pkg}", name, props, opts)


class ComponentResource(Resource):
    """A logical grouping of child resources; it has no id."""

    def __init__(
        self,
        t: str,
        name: str,
        props: Mapping[str, Any] | None = None,
        opts: ResourceOptions | None = None,
    ) -> None:
        super().__init__(t, name, False, props, opts)

    def register_outputs(self, outputs: Any = None) -> asyncio.Task[None]:
        """Attach the component's outputs once they are known."""
        from stratum.runtime import resource as resource_runtime

        return resource_runtime.register_resource_outputs(self, outputs or {})
