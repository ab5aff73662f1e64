"""
Property codec between resource inputs/outputs and the monitor wire form.

Serialization awaits every nested Output and awaitable, so it is also where
implicit dependencies are discovered: each resource reached while walking a
value is appended to the caller's ``dependencies`` list.
"""

from __future__ import annotations

import inspect
from typing import Any, Mapping

from stratum.core.errors import InvalidResourceError
from stratum.output import UNKNOWN, Output, OutputResolver
from stratum.resource import CustomResource, Resource

# Wire marker for values that are only known after a real deployment.
UNKNOWN_VALUE = "04da6b54-80e4-46f7-96ec-b56ff0331ba9"

RESERVED_PROPERTIES = frozenset({"urn", "id"})


def is_reserved_property(res: Any, key: str) -> bool:
    """Whether ``key`` would shadow the resource's own state or API."""
    return key in RESERVED_PROPERTIES or key.startswith("_") or hasattr(type(res), key)


async def serialize_properties(
    label: str,
    props: Mapping[str, Any],
    dependencies: list[Resource] | None = None,
) -> dict[str, Any]:
    """Serialize a property bag, omitting entries that serialize to None."""
    result: dict[str, Any] = {}
    for key, value in props.items():
        if not isinstance(key, str):
            raise InvalidResourceError(
                f"property keys must be strings, got {type(key).__name__}",
                details={"label": label},
            )
        serialized = await serialize_property(f"{label}.{key}", value, dependencies)
        if serialized is not None:
            result[key] = serialized
    return result


async def serialize_property(
    label: str,
    value: Any,
    dependencies: list[Resource] | None = None,
) -> Any:
    if dependencies is None:
        dependencies = []

    if value is None:
        return None
    if value is UNKNOWN:
        return UNKNOWN_VALUE
    if isinstance(value, CustomResource):
        dependencies.append(value)
        return await serialize_property(label, value.id, dependencies)
    if isinstance(value, Resource):
        dependencies.append(value)
        return await serialize_property(label, value.urn, dependencies)
    if isinstance(value, Output):
        dependencies.extend(value.resources)
        known = await value.is_known()
        inner = await value.future()
        if not known:
            return UNKNOWN_VALUE
        return await serialize_property(label, inner, dependencies)
    if inspect.isawaitable(value):
        return await serialize_property(label, await value, dependencies)
    if isinstance(value, Mapping):
        return await serialize_properties(label, value, dependencies)
    if isinstance(value, (list, tuple)):
        return [
            await serialize_property(f"{label}[{index}]", item, dependencies)
            for index, item in enumerate(value)
        ]
    if isinstance(value, (str, bool, int, float)):
        return value

    raise InvalidResourceError(
        f"unexpected input of type {type(value).__name__}",
        details={"label": label},
    )


def deserialize_properties(props: Mapping[str, Any]) -> dict[str, Any]:
    return {key: deserialize_property(value) for key, value in props.items()}


def deserialize_property(value: Any) -> Any:
    if value == UNKNOWN_VALUE:
        return UNKNOWN
    if isinstance(value, Mapping):
        return deserialize_properties(value)
    if isinstance(value, list):
        return [deserialize_property(item) for item in value]
    return value


def transfer_properties(
    res: Resource,
    label: str,
    props: Mapping[str, Any],
) -> dict[str, OutputResolver[Any]]:
    """Attach a pending Output to ``res`` for every input property."""
    resolvers: dict[str, OutputResolver[Any]] = {}
    for key in props:
        if not isinstance(key, str):
            raise InvalidResourceError(
                f"property keys must be strings, got {type(key).__name__}",
                details={"label": label},
            )
        if is_reserved_property(res, key):
            raise InvalidResourceError(
                f"{key} is a reserved output property name",
                details={"label": label},
            )
        resolver: OutputResolver[Any] = OutputResolver(f"{label}.{key}")
        resolvers[key] = resolver
        setattr(res, key, Output.create(res, resolver.value, resolver.known))
    return resolvers


def resolve_properties(
    res: Resource,
    resolvers: Mapping[str, OutputResolver[Any]],
    all_props: Mapping[str, Any],
    *,
    dry_run: bool = False,
) -> None:
    """Resolve each pending property of ``res`` exactly once from ``all_props``."""
    for key, value in all_props.items():
        resolver = resolvers.get(key)
        if resolver is None and is_reserved_property(res, key):
            continue
        is_known = value is not UNKNOWN
        raw = value if is_known else None
        if resolver is None:
            # The engine returned a property the program never set.
            resolver = OutputResolver(f"{res.resource_name}.{key}")
            setattr(res, key, Output.create(res, resolver.value, resolver.known))
        resolver.resolve(raw, is_known)

    for key, resolver in resolvers.items():
        if key not in all_props:
            resolver.resolve(None, not dry_run)
