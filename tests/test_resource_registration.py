"""Tests for registering and reading resources through the monitor."""

import asyncio
from unittest.mock import patch

import pytest
from conftest import settle, urn_for
from stratum.core.errors import MissingIdentityError, MonitorCallError, RegistrationError
from stratum.output import UNKNOWN, Output
from stratum.resource import (
    ComponentResource,
    CustomResource,
    CustomResourceOptions,
    ProviderResource,
    ResourceOptions,
)
from stratum.runtime import resource as resource_runtime
from stratum.runtime.monitor import ReadResourceResponse, RegisterResourceResponse
from stratum.runtime.rpc import UNKNOWN_VALUE


class TestAllocation:
    @pytest.mark.asyncio
    async def test_outputs_are_attached_before_constructor_returns(self, runtime):
        bucket = CustomResource("test:Bucket", "bucket", {"size": 10, "region": "eu"})

        # No await has happened yet: every Output must already exist.
        assert isinstance(bucket.urn, Output)
        assert isinstance(bucket.id, Output)
        assert isinstance(bucket.size, Output)
        assert isinstance(bucket.region, Output)
        assert not bucket.urn.future().done()

        await bucket._registration

    @pytest.mark.asyncio
    async def test_component_resources_have_no_id(self, runtime):
        group = ComponentResource("test:Group", "group")

        assert not hasattr(group, "id")
        await group._registration

    @pytest.mark.asyncio
    async def test_reserved_property_names_rejected(self, runtime):
        from stratum.core.errors import InvalidResourceError

        with pytest.raises(InvalidResourceError):
            CustomResource("test:Bucket", "bucket", {"id": "x"})

    @pytest.mark.asyncio
    async def test_property_names_cannot_shadow_resource_api(self, runtime):
        from stratum.core.errors import InvalidResourceError

        with pytest.raises(InvalidResourceError):
            CustomResource("test:Bucket", "bucket", {"resource_type": "x"})
        with pytest.raises(InvalidResourceError):
            ComponentResource("test:Group", "group", {"register_outputs": 1})
        with pytest.raises(InvalidResourceError):
            CustomResource("test:Bucket", "bucket", {"_name": "x"})

    def test_missing_type_or_name(self, runtime):
        from stratum.core.errors import InvalidResourceError

        with pytest.raises(InvalidResourceError):
            CustomResource("", "bucket")
        with pytest.raises(InvalidResourceError):
            CustomResource("test:Bucket", "")


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_custom_resource(self, runtime, monitor):
        monitor.register_responses["bucket"] = RegisterResourceResponse(
            urn=urn_for("test:Bucket", "bucket"),
            id="b-123",
            properties={"arn": "arn:bucket", "size": 20},
        )

        bucket = CustomResource(
            "test:Bucket",
            "bucket",
            {"size": 10, "region": "eu"},
            CustomResourceOptions(protect=True),
        )
        await bucket._registration

        assert await bucket.urn.future() == urn_for("test:Bucket", "bucket")
        assert await bucket.id.future() == "b-123"
        assert await bucket.id.is_known() is True
        assert await bucket.size.future() == 20
        assert await bucket.region.future() == "eu"
        assert await bucket.arn.future() == "arn:bucket"

        kind, request = monitor.calls[0]
        assert kind == "register"
        assert request.type == "test:Bucket"
        assert request.custom is True
        assert request.protect is True
        assert request.properties == {"size": 10, "region": "eu"}
        assert request.parent is None
        assert request.provider is None
        assert request.dependencies == []

    @pytest.mark.asyncio
    async def test_engine_outputs_leave_resource_api_intact(self, runtime, monitor):
        monitor.register_responses["group"] = RegisterResourceResponse(
            urn=urn_for("test:Group", "group"),
            properties={"_name": "evil", "register_outputs": 1, "endpoint": "e"},
        )

        group = ComponentResource("test:Group", "group")
        await group._registration

        assert group.resource_name == "group"
        assert callable(group.register_outputs)
        assert await group.endpoint.future() == "e"

    @pytest.mark.asyncio
    async def test_urn_resolves_once(self, runtime):
        bucket = CustomResource("test:Bucket", "bucket")
        await bucket._registration

        urn = await bucket.urn.future()
        assert urn
        assert await bucket.urn.future() == urn

    @pytest.mark.asyncio
    async def test_empty_engine_id_collapses_to_no_id(self, runtime, monitor):
        monitor.register_responses["bucket"] = RegisterResourceResponse(
            urn=urn_for("test:Bucket", "bucket"), id=""
        )

        bucket = CustomResource("test:Bucket", "bucket")
        await bucket._registration

        assert await bucket.id.future() is None
        assert await bucket.id.is_known() is False

    @pytest.mark.asyncio
    async def test_zero_id_is_kept(self, runtime, monitor):
        monitor.register_responses["bucket"] = RegisterResourceResponse(
            urn=urn_for("test:Bucket", "bucket"), id=0
        )

        bucket = CustomResource("test:Bucket", "bucket")
        await bucket._registration

        assert await bucket.id.future() == 0
        assert await bucket.id.is_known() is True

    @pytest.mark.asyncio
    async def test_dependencies_are_union_of_explicit_and_implicit(self, runtime, monitor):
        b = CustomResource("test:Thing", "b")
        c = CustomResource("test:Thing", "c")
        a = CustomResource(
            "test:Thing",
            "a",
            {"ref": c.id, "again": b},
            CustomResourceOptions(depends_on=b),
        )
        await a._registration

        request = [r for kind, r in monitor.calls if r.name == "a"][0]
        assert request.dependencies == sorted(
            {urn_for("test:Thing", "b"), urn_for("test:Thing", "c")}
        )
        assert request.properties == {"ref": "c-id", "again": "b-id"}

    @pytest.mark.asyncio
    async def test_parent_and_provider_references(self, runtime, monitor):
        parent = ComponentResource("test:Group", "group")
        provider = ProviderResource("cloud", "prov")
        child = CustomResource(
            "test:Thing",
            "child",
            opts=CustomResourceOptions(parent=parent, provider=provider),
        )
        await child._registration

        request = [r for kind, r in monitor.calls if r.name == "child"][0]
        assert request.parent == urn_for("test:Group", "group")
        assert request.provider == f"{urn_for('stratum:providers:cloud', 'prov')}::prov-id"

    @pytest.mark.asyncio
    async def test_provider_without_id_uses_unknown(self, runtime, monitor):
        monitor.register_responses["prov"] = RegisterResourceResponse(
            urn=urn_for("stratum:providers:cloud", "prov"), id=None
        )
        provider = ProviderResource("cloud", "prov")
        child = CustomResource("test:Thing", "child", opts=CustomResourceOptions(provider=provider))
        await child._registration

        request = [r for kind, r in monitor.calls if r.name == "child"][0]
        assert request.provider.endswith(f"::{UNKNOWN_VALUE}")

    @pytest.mark.asyncio
    async def test_provider_zero_id_is_kept(self, runtime, monitor):
        monitor.register_responses["prov"] = RegisterResourceResponse(
            urn=urn_for("stratum:providers:cloud", "prov"), id=0
        )
        provider = ProviderResource("cloud", "prov")
        child = CustomResource("test:Thing", "child", opts=CustomResourceOptions(provider=provider))
        await child._registration

        request = [r for kind, r in monitor.calls if r.name == "child"][0]
        assert request.provider == f"{urn_for('stratum:providers:cloud', 'prov')}::0"

    @pytest.mark.asyncio
    async def test_provider_ignored_for_components(self, runtime, monitor):
        provider = ProviderResource("cloud", "prov")
        opts = ResourceOptions()
        opts.provider = provider  # type: ignore[attr-defined]
        group = ComponentResource("test:Group", "group", opts=opts)
        await group._registration

        request = [r for kind, r in monitor.calls if r.name == "group"][0]
        assert request.provider is None

    @pytest.mark.asyncio
    async def test_registration_failure_names_resource(self, runtime, monitor):
        monitor.register_responses["bucket"] = MonitorCallError("quota exceeded", status_code=400)

        bucket = CustomResource("test:Bucket", "bucket", {"size": 1})

        with pytest.raises(RegistrationError) as exc_info:
            await bucket._registration

        error = exc_info.value
        assert "bucket" in str(error)
        assert "test:Bucket" in str(error)
        assert "quota exceeded" in str(error)
        assert error.name == "bucket"
        assert error.type == "test:Bucket"
        assert runtime.errors == [error]

        # Pending outputs fail instead of hanging.
        with pytest.raises(RegistrationError):
            await bucket.urn.future()
        with pytest.raises(RegistrationError):
            await bucket.size.future()

    @pytest.mark.asyncio
    async def test_wait_for_rpcs_raises_first_failure(self, runtime, monitor):
        monitor.register_responses["bad"] = MonitorCallError("nope")
        CustomResource("test:Thing", "good")
        CustomResource("test:Thing", "bad")

        with pytest.raises(RegistrationError, match="bad"):
            await runtime.wait_for_rpcs()

        assert runtime.keep_alive.outstanding == 0

    @pytest.mark.asyncio
    async def test_dependency_failure_propagates(self, runtime, monitor):
        monitor.register_responses["base"] = MonitorCallError("broken")
        base = CustomResource("test:Thing", "base")
        dependent = CustomResource("test:Thing", "dependent", {"ref": base.id})

        with pytest.raises(RegistrationError, match="base"):
            await dependent._registration

        assert monitor.names("register") == ["base"]


class TestRead:
    @pytest.mark.asyncio
    async def test_read_requires_id(self, runtime, monitor):
        with pytest.raises(MissingIdentityError):
            CustomResource("test:Bucket", "bucket", opts=CustomResourceOptions(id=""))

        with pytest.raises(MissingIdentityError):
            resource_runtime.read_resource(
                object(), "test:Bucket", "bucket", {}, CustomResourceOptions()
            )

        await settle()
        assert monitor.calls == []

    @pytest.mark.asyncio
    async def test_read_uses_caller_id(self, runtime, monitor):
        monitor.read_responses["bucket"] = ReadResourceResponse(
            urn=urn_for("test:Bucket", "bucket"),
            properties={"size": 42, "arn": UNKNOWN_VALUE},
        )

        bucket = CustomResource(
            "test:Bucket",
            "bucket",
            {"region": "eu"},
            CustomResourceOptions(id=Output.from_input("existing-id")),
        )
        await bucket._registration

        assert await bucket.urn.future() == urn_for("test:Bucket", "bucket")
        assert await bucket.id.future() == "existing-id"
        assert await bucket.id.is_known() is True
        assert await bucket.region.future() == "eu"
        assert await bucket.size.future() == 42
        assert await bucket.arn.is_known() is False

        kind, request = monitor.calls[0]
        assert kind == "read"
        assert request.id == "existing-id"
        assert request.properties == {"region": "eu"}

    @pytest.mark.asyncio
    async def test_read_failure_message(self, runtime, monitor):
        monitor.read_responses["bucket"] = MonitorCallError("not found", status_code=404)

        bucket = CustomResource("test:Bucket", "bucket", opts=CustomResourceOptions(id="b-1"))

        with pytest.raises(RegistrationError, match=r"failed to read resource #b-1 'bucket'"):
            await bucket._registration


class TestOutputMerge:
    @pytest.mark.asyncio
    async def test_engine_outputs_win_and_undefined_inputs_drop(self):
        with patch.object(resource_runtime, "resolve_properties") as resolve:
            await resource_runtime.resolve_outputs(
                object(),
                "test:Thing",
                "thing",
                {"foo": "y", "bar": "z", "baz": None},
                {"foo": "x"},
                {},
            )

        all_props = resolve.call_args.args[2]
        assert all_props == {"foo": "x", "bar": "z"}

    @pytest.mark.asyncio
    async def test_unknown_inputs_round_trip_as_unknown(self):
        with patch.object(resource_runtime, "resolve_properties") as resolve:
            await resource_runtime.resolve_outputs(
                object(),
                "test:Thing",
                "thing",
                {"later": Output.from_input(UNKNOWN)},
                None,
                {},
            )

        assert resolve.call_args.args[2] == {"later": UNKNOWN}

    @pytest.mark.asyncio
    async def test_dropped_input_still_resolves(self, runtime):
        thing = CustomResource("test:Thing", "thing", {"baz": None})
        await thing._registration

        assert await thing.baz.future() is None
        assert await thing.baz.is_known() is True


@pytest.mark.asyncio
async def test_registration_runs_without_blocking_constructor(runtime, monitor):
    gate = monitor.gate("slow")

    slow = CustomResource("test:Thing", "slow")
    await settle()
    assert not slow._registration.done()

    gate.set()
    await asyncio.wait_for(slow._registration, timeout=1)
    assert monitor.events == ["start:slow", "end:slow"]
