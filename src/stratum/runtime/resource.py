"""
Resource registration against the resource monitor.

Registration happens in two phases. ``allocate_resource`` runs
synchronously inside the resource constructor and attaches every Output
the resource will ever expose, so nobody can observe a half-built
resource. ``gather_resource`` then waits on dependencies, serializes the
inputs and resolves parent/provider references. The monitor call itself
goes through the runtime's ordering queue, and its answer is merged back
onto the pending Outputs.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Mapping, TypeVar

import structlog

from stratum.core.errors import (
    MissingIdentityError,
    MonitorUnavailableError,
    OutputsAttachError,
    RegistrationError,
)
from stratum.logging import bind_resource
from stratum.output import Output, OutputResolver
from stratum.runtime.monitor import (
    ReadResourceRequest,
    RegisterResourceOutputsRequest,
    RegisterResourceRequest,
)
from stratum.runtime.rpc import (
    UNKNOWN_VALUE,
    deserialize_properties,
    deserialize_property,
    resolve_properties,
    serialize_properties,
    serialize_property,
    transfer_properties,
)
from stratum.runtime.state import Runtime, get_runtime

if TYPE_CHECKING:
    from stratum.resource import Resource, ResourceOptions

logger = structlog.get_logger()

R = TypeVar("R")


@dataclass
class ResourceAllocation:
    """Resolvers for every Output attached to a resource before registration."""

    urn: OutputResolver[str]
    id: OutputResolver[Any] | None
    properties: dict[str, OutputResolver[Any]]

    def reject(self, exc: BaseException) -> None:
        """Fail every Output that has not resolved yet."""
        pending = [self.urn, self.id, *self.properties.values()]
        for resolver in pending:
            if resolver is not None and not resolver.done:
                resolver.reject(exc)


@dataclass
class ResolverBundle:
    """Everything a monitor call needs, fully awaited and serialized."""

    allocation: ResourceAllocation
    parent_urn: str | None
    provider_ref: str | None
    serialized_props: dict[str, Any]
    dependencies: set[str] = field(default_factory=set)


def allocate_resource(
    label: str,
    res: Resource,
    custom: bool,
    props: Mapping[str, Any],
) -> ResourceAllocation:
    # The URN always resolves to a value, so it can always run apply.
    urn: OutputResolver[str] = OutputResolver(f"urn({label})", known=True)
    res.urn = Output.create(res, urn.value, urn.known)

    resource_id: OutputResolver[Any] | None = None
    if custom:
        resource_id = OutputResolver(f"id({label})")
        id_output = Output.create(res, resource_id.value, resource_id.known)
        res.id = id_output  # type: ignore[attr-defined]

    properties = transfer_properties(res, label, props)
    return ResourceAllocation(urn=urn, id=resource_id, properties=properties)


async def gather_resource(
    label: str,
    allocation: ResourceAllocation,
    custom: bool,
    props: Mapping[str, Any],
    opts: ResourceOptions,
) -> ResolverBundle:
    explicit_urns = await asyncio.gather(*(dep.urn.future() for dep in opts.dependencies()))

    implicit_dependencies: list[Resource] = []
    serialized_props = await serialize_properties(label, props, implicit_dependencies)

    parent_urn: str | None = None
    if opts.parent is not None:
        parent_urn = await opts.parent.urn.future()

    provider_ref: str | None = None
    provider = getattr(opts, "provider", None)
    if custom and provider is not None:
        provider_urn = await provider.urn.future()
        provider_id = await provider.id.future()
        if provider_id is None or provider_id == "":
            provider_id = UNKNOWN_VALUE
        provider_ref = f"{provider_urn}::{provider_id}"

    dependencies = set(explicit_urns)
    for dep in implicit_dependencies:
        dependencies.add(await dep.urn.future())

    return ResolverBundle(
        allocation=allocation,
        parent_urn=parent_urn,
        provider_ref=provider_ref,
        serialized_props=serialized_props,
        dependencies=dependencies,
    )


def prepare_resource(
    label: str,
    res: Resource,
    custom: bool,
    props: Mapping[str, Any],
    opts: ResourceOptions,
) -> tuple[ResourceAllocation, Awaitable[ResolverBundle]]:
    """Allocate synchronously and start gathering in the background."""
    allocation = allocate_resource(label, res, custom, props)
    gathering = asyncio.ensure_future(gather_resource(label, allocation, custom, props, opts))
    return allocation, gathering


async def resolve_outputs(
    res: Resource,
    t: str,
    name: str,
    props: Mapping[str, Any],
    outputs: Mapping[str, Any] | None,
    resolvers: Mapping[str, OutputResolver[Any]],
    *,
    dry_run: bool = False,
) -> None:
    # Outputs from the engine win over inputs of the same name.
    all_props: dict[str, Any] = {}
    if outputs:
        all_props.update(deserialize_properties(outputs))

    label = f"resource:{name}[{t}]#..."
    for key, value in props.items():
        if key in all_props:
            continue
        # Round-tripping keeps unknowns consistent between previews and updates.
        input_prop = await serialize_property(label, value, [])
        if input_prop is None:
            continue
        all_props[key] = deserialize_property(input_prop)

    resolve_properties(res, resolvers, all_props, dry_run=dry_run)


async def _invoke(runtime: Runtime, label: str, call: Callable[[], Awaitable[R]]) -> R:
    """Issue one monitor call, parking instead of failing if the monitor is going away."""
    if runtime.termination.terminating:
        await runtime.termination.park(label)
    try:
        return await call()
    except MonitorUnavailableError:
        logger.debug("resource_monitor_terminating", label=label)
        await runtime.termination.park(label)


def _debug_payload(runtime: Runtime, payload: Mapping[str, Any]) -> str | None:
    if not runtime.settings.excessive_debug_output:
        return None
    return json.dumps(payload, default=str, sort_keys=True)


def read_resource(
    res: Resource,
    t: str,
    name: str,
    props: Mapping[str, Any],
    opts: ResourceOptions,
) -> asyncio.Task[None]:
    """Read an existing custom resource's state from the monitor.

    Resources read this way are not part of the program's own state; they
    are presumed to belong to someone else.
    """
    resource_id = getattr(opts, "id", None)
    if resource_id is None or resource_id == "":
        raise MissingIdentityError(name, t)

    runtime = get_runtime()
    label = f"resource:{name}[{t}]#..."
    log = bind_resource(t, name)
    log.debug("resource_read_requested", id=str(resource_id))

    allocation, gathering = prepare_resource(label, res, True, props, opts)

    async def prepare() -> tuple[ResolverBundle, Any]:
        bundle = await gathering
        resolved_id = await serialize_property(label, resource_id, [])
        return bundle, resolved_id

    prepared = asyncio.ensure_future(prepare())

    async def operation() -> None:
        try:
            bundle, resolved_id = await prepared
            log.debug(
                "resource_read_prepared",
                id=resolved_id,
                obj=_debug_payload(runtime, bundle.serialized_props),
            )
            request = ReadResourceRequest(
                type=t,
                name=name,
                id=resolved_id,
                parent=bundle.parent_urn,
                provider=bundle.provider_ref,
                properties=bundle.serialized_props,
                dependencies=sorted(bundle.dependencies),
            )
            op_label = f"monitor.read_resource({label})"
            try:
                response = await _invoke(
                    runtime, op_label, lambda: runtime.monitor.read_resource(request)
                )
            except Exception as exc:
                log.debug("resource_read_finished", error=str(exc))
                raise RegistrationError(
                    f"failed to read resource #{resolved_id} '{name}' [{t}]: {exc}",
                    name=name,
                    type_=t,
                    detail=str(exc),
                ) from exc
            log.debug("resource_read_finished", urn=response.urn)

            # The id is the one the caller asked for, never one from the engine.
            allocation.urn.resolve(response.urn)
            if allocation.id is not None:
                allocation.id.resolve(resolved_id, resolved_id is not None)
            await resolve_outputs(
                res,
                t,
                name,
                props,
                response.properties,
                allocation.properties,
                dry_run=runtime.settings.dry_run,
            )
        except Exception as exc:
            allocation.reject(exc)
            raise

    return runtime.queue.run(f"monitor.read_resource({label})", operation)


def register_resource(
    res: Resource,
    t: str,
    name: str,
    custom: bool,
    props: Mapping[str, Any],
    opts: ResourceOptions,
) -> asyncio.Task[None]:
    """Register a new resource with the monitor.

    The URN, id and properties of ``res`` resolve once the monitor has
    answered (or stay unknown during previews).
    """
    runtime = get_runtime()
    label = f"resource:{name}[{t}]"
    log = bind_resource(t, name)
    log.debug("resource_register_requested", custom=custom)

    allocation, gathering = prepare_resource(label, res, custom, props, opts)

    async def operation() -> None:
        try:
            bundle = await gathering
            log.debug(
                "resource_register_prepared",
                obj=_debug_payload(runtime, bundle.serialized_props),
            )
            request = RegisterResourceRequest(
                type=t,
                name=name,
                custom=custom,
                parent=bundle.parent_urn,
                properties=bundle.serialized_props,
                protect=opts.protect,
                provider=bundle.provider_ref,
                dependencies=sorted(bundle.dependencies),
            )
            op_label = f"monitor.register_resource({label})"
            try:
                response = await _invoke(
                    runtime, op_label, lambda: runtime.monitor.register_resource(request)
                )
            except Exception as exc:
                log.debug("resource_register_finished", error=str(exc))
                raise RegistrationError(
                    f"failed to register new resource {name} [{t}]: {exc}",
                    name=name,
                    type_=t,
                    detail=str(exc),
                ) from exc
            log.debug("resource_register_finished", urn=response.urn)

            allocation.urn.resolve(response.urn)

            if allocation.id is not None:
                # Empty or missing ids mean "no id yet", not a falsy id value.
                resource_id = response.id
                if resource_id == "":
                    resource_id = None
                allocation.id.resolve(resource_id, resource_id is not None)

            await resolve_outputs(
                res,
                t,
                name,
                props,
                response.properties,
                allocation.properties,
                dry_run=runtime.settings.dry_run,
            )
        except Exception as exc:
            allocation.reject(exc)
            raise

    return runtime.queue.run(f"monitor.register_resource({label})", operation)


def register_resource_outputs(res: Resource, outputs: Any) -> asyncio.Task[None]:
    """Complete a resource's registration by attaching its computed outputs.

    This is never serialized with other operations: outputs often depend on
    resources declared later, and waiting on them in order would never finish.
    """
    runtime = get_runtime()
    op_label = "monitor.register_resource_outputs(...)"

    async def operation() -> None:
        # Registration may still be in flight, so wait for the URN first.
        urn = await res.urn.future()
        resolved = await serialize_properties(op_label, {"outputs": outputs}, [])
        outputs_obj = resolved.get("outputs")
        if not isinstance(outputs_obj, dict):
            # An unknown or scalar outputs value has no properties to attach.
            outputs_obj = {}
        logger.debug(
            "resource_outputs_prepared",
            urn=urn,
            outputs=_debug_payload(runtime, outputs_obj),
        )

        request = RegisterResourceOutputsRequest(urn=urn, outputs=outputs_obj)
        try:
            await _invoke(
                runtime, op_label, lambda: runtime.monitor.register_resource_outputs(request)
            )
        except Exception as exc:
            logger.error("resource_outputs_failed", urn=urn, error=str(exc))
            raise OutputsAttachError(urn, str(exc)) from exc
        logger.debug("resource_outputs_finished", urn=urn)

    return runtime.queue.run(op_label, operation, serial=False)
