"""Tests for the attribute resolver's dependency graph walk."""

import asyncio

import pytest

from idp_resolver.connectors import StaticDataConnector
from idp_resolver.definitions import SimpleAttributeDefinition
from idp_resolver.errors import (
    ComponentInitializationError,
    ResolutionError,
    UninitializedComponentError,
    UnmodifiableComponentError,
)
from idp_resolver.models import NULL_VALUE, Attribute, StringValue
from idp_resolver.plugins import DataConnector, Dependency
from idp_resolver.resolver import AttributeResolver

IDP = "https://idp.example.org"
RP = "https://sp.example.org"


class CountingConnector(DataConnector):
    def __init__(self, plugin_id, *, values=("v",), attribute_id=None, **kwargs):
        super().__init__(plugin_id, **kwargs)
        self.values = list(values)
        self.attribute_id = attribute_id or plugin_id
        self._calls = 0

    @property
    def calls(self) -> int:
        return self._calls

    async def _resolve_attributes(self, context, work_context):
        self._calls += 1
        return {
            self.attribute_id: Attribute(
                id=self.attribute_id, values=[StringValue(value=v) for v in self.values]
            )
        }


class FailingConnector(CountingConnector):
    async def _resolve_attributes(self, context, work_context):
        self._calls += 1
        raise ResolutionError("directory unavailable")


class SlowConnector(CountingConnector):
    async def _resolve_attributes(self, context, work_context):
        self._calls += 1
        await asyncio.sleep(5)
        return await super()._resolve_attributes(context, work_context)


def _simple(plugin_id: str, *deps: str, **kwargs) -> SimpleAttributeDefinition:
    return SimpleAttributeDefinition(
        plugin_id, dependencies=[Dependency(plugin_id=d) for d in deps], **kwargs
    )


def _resolver(definitions, connectors, **kwargs) -> AttributeResolver:
    resolver = AttributeResolver("test", definitions, connectors, **kwargs)
    resolver.initialize()
    return resolver


def _strings(attributes: dict[str, Attribute], attribute_id: str) -> list[str]:
    return attributes[attribute_id].string_values()


# ----- Memoization and selection -----


@pytest.mark.asyncio
async def test_shared_dependency_runs_once() -> None:
    source = CountingConnector("source")
    resolver = _resolver(
        [_simple("a", "source"), _simple("b", "source"), _simple("c", "a", "b")],
        [source],
    )
    attributes = await resolver.resolve("alice", IDP, RP)
    assert source.calls == 1
    assert set(attributes) == {"a", "b", "c"}
    assert _strings(attributes, "c") == ["v"]


@pytest.mark.asyncio
async def test_each_request_gets_fresh_work_context() -> None:
    source = CountingConnector("source")
    resolver = _resolver([_simple("a", "source")], [source])
    await resolver.resolve("alice", IDP, RP)
    await resolver.resolve("alice", IDP, RP)
    assert source.calls == 2


@pytest.mark.asyncio
async def test_requested_subset_only() -> None:
    source = CountingConnector("source")
    other = CountingConnector("other")
    resolver = _resolver([_simple("a", "source"), _simple("b", "other")], [source, other])
    attributes = await resolver.resolve("alice", IDP, RP, ["a"])
    assert list(attributes) == ["a"]
    assert other.calls == 0


@pytest.mark.asyncio
async def test_unknown_requested_attribute_is_ignored() -> None:
    resolver = _resolver([_simple("a", "source")], [CountingConnector("source")])
    attributes = await resolver.resolve("alice", IDP, RP, ["nope"])
    assert attributes == {}


@pytest.mark.asyncio
async def test_dependency_only_definition_is_dropped() -> None:
    resolver = _resolver(
        [_simple("hidden", "source", dependency_only=True), _simple("shown", "hidden")],
        [CountingConnector("source")],
    )
    attributes = await resolver.resolve("alice", IDP, RP)
    assert list(attributes) == ["shown"]
    assert _strings(attributes, "shown") == ["v"]


@pytest.mark.asyncio
async def test_duplicate_values_are_removed() -> None:
    resolver = _resolver(
        [_simple("merged", "one", "two")],
        [CountingConnector("one", values=["x", "y"]), CountingConnector("two", values=["y", "z"])],
    )
    attributes = await resolver.resolve("alice", IDP, RP)
    assert _strings(attributes, "merged") == ["x", "y", "z"]


@pytest.mark.asyncio
async def test_narrowed_dependency_selects_one_attribute() -> None:
    directory = StaticDataConnector(
        "directory",
        attributes=[
            Attribute(id="mail", values=[StringValue(value="alice@example.org")]),
            Attribute(id="cn", values=[StringValue(value="Alice")]),
        ],
    )
    mail = SimpleAttributeDefinition(
        "mail", dependencies=[Dependency(plugin_id="directory", attribute_id="mail")]
    )
    resolver = _resolver([mail], [directory])
    attributes = await resolver.resolve("alice", IDP, RP)
    assert _strings(attributes, "mail") == ["alice@example.org"]


@pytest.mark.asyncio
async def test_empty_markers_propagate() -> None:
    directory = StaticDataConnector(
        "directory", attributes=[Attribute(id="middleName", values=[NULL_VALUE])]
    )
    resolver = _resolver([_simple("middleName", "directory")], [directory])
    attributes = await resolver.resolve("alice", IDP, RP)
    assert attributes["middleName"].values == [NULL_VALUE]


@pytest.mark.asyncio
async def test_no_definitions_resolves_nothing() -> None:
    resolver = _resolver([], [CountingConnector("source")])
    assert await resolver.resolve("alice", IDP, RP) == {}


# ----- Activation -----


@pytest.mark.asyncio
async def test_inactive_connector_is_not_invoked() -> None:
    source = CountingConnector(
        "source", activation_condition=lambda ctx: ctx.rp_id == "https://allowed.example.org"
    )
    resolver = _resolver([_simple("a", "source")], [source])

    attributes = await resolver.resolve("alice", IDP, RP)
    assert attributes == {}
    assert source.calls == 0

    attributes = await resolver.resolve("alice", IDP, "https://allowed.example.org")
    assert _strings(attributes, "a") == ["v"]


@pytest.mark.asyncio
async def test_absent_dependency_still_runs_dependent() -> None:
    inactive = CountingConnector("inactive", activation_condition=lambda ctx: False)
    resolver = _resolver(
        [_simple("a", "inactive", "source")], [inactive, CountingConnector("source")]
    )
    attributes = await resolver.resolve("alice", IDP, RP)
    assert _strings(attributes, "a") == ["v"]


# ----- Failure handling -----


@pytest.mark.asyncio
async def test_failover_substitutes_result() -> None:
    primary = FailingConnector("primary", attribute_id="mail", failover_connector_id="backup")
    backup = CountingConnector("backup", values=["backup@example.org"], attribute_id="mail")
    mail = SimpleAttributeDefinition(
        "mail", dependencies=[Dependency(plugin_id="primary", attribute_id="mail")]
    )
    resolver = _resolver([mail], [primary, backup])
    attributes = await resolver.resolve("alice", IDP, RP)
    assert _strings(attributes, "mail") == ["backup@example.org"]
    assert primary.calls == 1
    assert backup.calls == 1


@pytest.mark.asyncio
async def test_no_retry_window_skips_failed_connector() -> None:
    primary = FailingConnector("primary", failover_connector_id="backup", no_retry_delay=60)
    backup = CountingConnector("backup", attribute_id="primary")
    resolver = _resolver([_simple("a", "primary")], [primary, backup])

    first = await resolver.resolve("alice", IDP, RP)
    second = await resolver.resolve("alice", IDP, RP)

    assert _strings(first, "a") == _strings(second, "a") == ["v"]
    assert primary.calls == 1
    assert backup.calls == 2
    assert primary.last_fail > 0


@pytest.mark.asyncio
async def test_retry_after_window_expires() -> None:
    primary = FailingConnector("primary", failover_connector_id="backup", no_retry_delay=60)
    backup = CountingConnector("backup")
    resolver = _resolver([_simple("a", "primary")], [primary, backup])

    await resolver.resolve("alice", IDP, RP)
    primary.record_failure(primary.last_fail - 120)
    await resolver.resolve("alice", IDP, RP)
    assert primary.calls == 2


@pytest.mark.asyncio
async def test_failure_without_failover_is_absent() -> None:
    resolver = _resolver(
        [_simple("a", "broken"), _simple("b", "source")],
        [FailingConnector("broken"), CountingConnector("source")],
    )
    attributes = await resolver.resolve("alice", IDP, RP)
    assert list(attributes) == ["b"]


@pytest.mark.asyncio
async def test_propagating_failure_fails_request() -> None:
    resolver = _resolver([_simple("a", "broken")], [FailingConnector("broken", propagate_errors=True)])
    with pytest.raises(ResolutionError, match="directory unavailable"):
        await resolver.resolve("alice", IDP, RP)


@pytest.mark.asyncio
async def test_failover_rescues_propagating_connector() -> None:
    primary = FailingConnector("primary", failover_connector_id="backup", propagate_errors=True)
    resolver = _resolver([_simple("a", "primary")], [primary, CountingConnector("backup")])
    attributes = await resolver.resolve("alice", IDP, RP)
    assert _strings(attributes, "a") == ["v"]


@pytest.mark.asyncio
async def test_timeout_triggers_failover() -> None:
    slow = SlowConnector("slow", timeout=0.05, failover_connector_id="backup")
    backup = CountingConnector("backup", values=["fast"])
    resolver = _resolver([_simple("a", "slow")], [slow, backup])
    attributes = await resolver.resolve("alice", IDP, RP)
    assert _strings(attributes, "a") == ["fast"]


@pytest.mark.asyncio
async def test_resolver_wide_connector_timeout() -> None:
    resolver = _resolver([_simple("a", "slow")], [SlowConnector("slow")], connector_timeout=0.05)
    attributes = await resolver.resolve("alice", IDP, RP)
    assert attributes == {}


@pytest.mark.asyncio
async def test_concurrent_requests_are_isolated() -> None:
    source = CountingConnector("source")
    resolver = _resolver([_simple("a", "source"), _simple("b", "a")], [source])
    results = await asyncio.gather(*(resolver.resolve(f"user{i}", IDP, RP) for i in range(10)))
    assert all(set(r) == {"a", "b"} for r in results)
    assert source.calls == 10


# ----- Lifecycle -----


def test_duplicate_plugin_ids_rejected() -> None:
    with pytest.raises(ComponentInitializationError, match="Duplicate"):
        AttributeResolver("test", [_simple("x", "x2")], [CountingConnector("x")])


def test_cycle_rejected_at_initialize() -> None:
    resolver = AttributeResolver("test", [_simple("a", "b"), _simple("b", "a")], [])
    with pytest.raises(ComponentInitializationError, match="Circular"):
        resolver.initialize()
    assert not resolver.is_initialized


def test_unknown_dependency_rejected_at_initialize() -> None:
    resolver = AttributeResolver("test", [_simple("a", "missing")], [])
    with pytest.raises(ComponentInitializationError, match="missing"):
        resolver.initialize()


def test_evaluation_order_puts_dependencies_first() -> None:
    resolver = _resolver([_simple("c", "b"), _simple("b", "source")], [CountingConnector("source")])
    order = resolver.evaluation_order
    assert order.index("source") < order.index("b") < order.index("c")


@pytest.mark.asyncio
async def test_resolve_before_initialize_fails() -> None:
    resolver = AttributeResolver("test", [_simple("a", "source")], [CountingConnector("source")])
    with pytest.raises(UninitializedComponentError):
        await resolver.resolve("alice", IDP, RP)


@pytest.mark.asyncio
async def test_destroyed_resolver_cannot_resolve() -> None:
    resolver = _resolver([_simple("a", "source")], [CountingConnector("source")])
    resolver.destroy()
    with pytest.raises(UninitializedComponentError):
        await resolver.resolve("alice", IDP, RP)


def test_plugins_frozen_after_initialize() -> None:
    source = CountingConnector("source")
    _resolver([_simple("a", "source")], [source])
    with pytest.raises(UnmodifiableComponentError):
        source.no_retry_delay = 10
