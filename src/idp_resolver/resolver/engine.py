"""AttributeResolver, the public entry point for attribute resolution.

Owns one immutable plugin graph. Each call to resolve() walks the graph
depth-first from the requested attribute definitions, evaluating each plugin at
most once per request, and returns the attributes that produced values.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType

from idp_resolver.errors import (
    ComponentInitializationError,
    ResolutionError,
    UninitializedComponentError,
)
from idp_resolver.graph.dependency import validate_dependency_graph
from idp_resolver.models.attributes import Attribute
from idp_resolver.models.resolution import OutcomeKind, PluginOutcome, ResolutionContext
from idp_resolver.plugins.base import AttributeDefinition, DataConnector, ResolverPlugin
from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)


class AttributeResolver:
    """Resolves attributes for a (principal, IdP, RP) request."""

    def __init__(
        self,
        resolver_id: str,
        definitions: Iterable[AttributeDefinition] = (),
        connectors: Iterable[DataConnector] = (),
        *,
        connector_timeout: float | None = None,
    ) -> None:
        self.id = resolver_id
        self.log_prefix = f"Attribute Resolver '{resolver_id}':"
        self.connector_timeout = connector_timeout
        self._initialized = False
        self._destroyed = False

        plugins: dict[str, ResolverPlugin] = {}
        for plugin in [*definitions, *connectors]:
            if plugin.id in plugins:
                raise ComponentInitializationError(
                    f"{self.log_prefix} Duplicate plugin with id '{plugin.id}'"
                )
            plugins[plugin.id] = plugin
        self._plugins: Mapping[str, ResolverPlugin] = MappingProxyType(plugins)
        self._definitions: Mapping[str, AttributeDefinition] = MappingProxyType(
            {p.id: p for p in plugins.values() if isinstance(p, AttributeDefinition)}
        )
        self._connectors: Mapping[str, DataConnector] = MappingProxyType(
            {p.id: p for p in plugins.values() if isinstance(p, DataConnector)}
        )
        self._evaluation_order: list[str] = []

    @property
    def attribute_definitions(self) -> Mapping[str, AttributeDefinition]:
        return self._definitions

    @property
    def data_connectors(self) -> Mapping[str, DataConnector]:
        return self._connectors

    @property
    def evaluation_order(self) -> list[str]:
        """Plugin ids, dependencies first, as computed at initialization."""
        return list(self._evaluation_order)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """Initialize every plugin, then validate the graph. Fails closed."""
        if self._destroyed:
            raise UninitializedComponentError(f"{self.log_prefix} has been destroyed")
        if self._initialized:
            return
        for plugin in self._plugins.values():
            plugin.initialize()
        self._evaluation_order = validate_dependency_graph(self._plugins, label=self.log_prefix)
        self._initialized = True

    def destroy(self) -> None:
        for plugin in self._plugins.values():
            plugin.destroy()
        self._destroyed = True

    async def resolve(
        self,
        principal: str | None,
        idp_id: str | None,
        rp_id: str | None,
        requested_attribute_ids: Iterable[str] | None = None,
        *,
        principal_attributes: Mapping[str, Attribute] | None = None,
    ) -> dict[str, Attribute]:
        """Resolve attributes for one request and return them keyed by id."""
        context = ResolutionContext(
            principal=principal,
            idp_id=idp_id,
            rp_id=rp_id,
            requested_attribute_ids=list(requested_attribute_ids or []),
            principal_attributes=dict(principal_attributes or {}),
        )
        await self.resolve_attributes(context)
        return context.resolved_attributes

    async def resolve_attributes(self, context: ResolutionContext) -> None:
        """Resolve into ``context.resolved_attributes``.

        Raises ResolutionError only when a failing plugin with no failover is
        configured to propagate its errors.
        """
        if self._destroyed or not self._initialized:
            raise UninitializedComponentError(f"{self.log_prefix} is not initialized")

        logger.debug("%s Initiating attribute resolution", self.log_prefix)
        if not self._definitions:
            logger.debug("%s No attribute definition available, no attributes were resolved", self.log_prefix)
            context.resolved_attributes = {}
            return

        attribute_ids = list(dict.fromkeys(context.requested_attribute_ids)) or list(self._definitions)
        logger.debug(
            "%s Attempting to resolve the following attribute definitions %s",
            self.log_prefix,
            attribute_ids,
        )

        work_context = ResolutionWorkContext()
        for attribute_id in attribute_ids:
            if attribute_id not in self._definitions:
                logger.debug(
                    "%s No attribute definition was registered with ID '%s', nothing to do",
                    self.log_prefix,
                    attribute_id,
                )
                continue
            await self._resolve_plugin(attribute_id, context, work_context)

        context.resolved_attributes = self._finalize(attribute_ids, work_context)
        logger.debug(
            "%s Final resolved attribute collection: %s",
            self.log_prefix,
            list(context.resolved_attributes),
        )

    async def _resolve_plugin(
        self,
        plugin_id: str,
        context: ResolutionContext,
        work_context: ResolutionWorkContext,
    ) -> PluginOutcome:
        cached = work_context.get(plugin_id)
        if cached is not None:
            return cached

        if plugin_id in work_context.visiting:
            raise ResolutionError(f"{self.log_prefix} Circular dependency reached plugin '{plugin_id}'")

        plugin = self._plugins[plugin_id]
        if not plugin.is_active(context):
            logger.debug("%s Plugin '%s' is not active for this request", self.log_prefix, plugin_id)
            outcome = PluginOutcome.absent(plugin_id)
            work_context.record(outcome)
            return outcome

        work_context.visiting.add(plugin_id)
        try:
            if isinstance(plugin, DataConnector) and plugin.in_no_retry_window():
                logger.debug(
                    "%s Data connector '%s' failed to resolve previously. Still waiting",
                    self.log_prefix,
                    plugin_id,
                )
                return await self._fail_over(
                    plugin, "previous failure is within the no-retry delay", context, work_context
                )

            if plugin.dependencies:
                logger.debug("%s Resolving dependencies for '%s'", self.log_prefix, plugin_id)
            for dependency in plugin.dependencies:
                await self._resolve_plugin(dependency.plugin_id, context, work_context)

            outcome = await self._execute(plugin, context, work_context)
            if outcome.kind != OutcomeKind.FAILED:
                work_context.record(outcome)
                return outcome

            if isinstance(plugin, DataConnector):
                plugin.record_failure()
                return await self._fail_over(plugin, outcome.error or "failed", context, work_context)
            return self._unrecovered(plugin, outcome, work_context)
        finally:
            work_context.visiting.discard(plugin_id)

    async def _execute(
        self,
        plugin: ResolverPlugin,
        context: ResolutionContext,
        work_context: ResolutionWorkContext,
    ) -> PluginOutcome:
        timeout = None
        if isinstance(plugin, DataConnector):
            timeout = plugin.timeout if plugin.timeout is not None else self.connector_timeout
            logger.debug("%s Resolving data connector '%s'", self.log_prefix, plugin.id)

        if timeout is None:
            return await plugin.resolve(context, work_context)
        try:
            return await asyncio.wait_for(plugin.resolve(context, work_context), timeout)
        except TimeoutError:
            logger.warning("%s Plugin '%s' timed out after %ss", self.log_prefix, plugin.id, timeout)
            return PluginOutcome.failed(plugin.id, f"timed out after {timeout}s")

    async def _fail_over(
        self,
        connector: DataConnector,
        reason: str,
        context: ResolutionContext,
        work_context: ResolutionWorkContext,
    ) -> PluginOutcome:
        failover_id = connector.failover_connector_id
        if failover_id is None:
            return self._unrecovered(connector, PluginOutcome.failed(connector.id, reason), work_context)

        logger.debug(
            "%s Data connector '%s' failed to resolve, invoking failover data connector '%s'. "
            "Reason for failure: %s",
            self.log_prefix,
            connector.id,
            failover_id,
            reason,
        )
        await self._resolve_plugin(failover_id, context, work_context)
        return work_context.record_failover(connector.id, failover_id)

    def _unrecovered(
        self,
        plugin: ResolverPlugin,
        outcome: PluginOutcome,
        work_context: ResolutionWorkContext,
    ) -> PluginOutcome:
        if plugin.propagate_errors:
            raise ResolutionError(f"{self.log_prefix} Plugin '{plugin.id}' failed: {outcome.error}")
        logger.warning(
            "%s Plugin '%s' failed and produces no output for this request: %s",
            self.log_prefix,
            plugin.id,
            outcome.error,
        )
        work_context.record(outcome)
        return outcome

    def _finalize(
        self, attribute_ids: list[str], work_context: ResolutionWorkContext
    ) -> dict[str, Attribute]:
        resolved: dict[str, Attribute] = {}
        for attribute_id in attribute_ids:
            definition = self._definitions.get(attribute_id)
            outcome = work_context.get(attribute_id)
            if definition is None or outcome is None:
                continue
            if not outcome.is_resolved:
                logger.debug(
                    "%s Removing result of attribute definition '%s', it produced no output",
                    self.log_prefix,
                    attribute_id,
                )
                continue
            if definition.dependency_only:
                logger.debug(
                    "%s Removing result of attribute definition '%s', is marked as dependency only",
                    self.log_prefix,
                    attribute_id,
                )
                continue
            attribute = outcome.attributes.get(attribute_id)
            if attribute is None or not attribute.values:
                logger.debug(
                    "%s Removing result of attribute definition '%s', contains no values",
                    self.log_prefix,
                    attribute_id,
                )
                continue
            values = list(dict.fromkeys(attribute.values))
            if len(values) != len(attribute.values):
                logger.debug("%s Removed duplicate values of attribute '%s'", self.log_prefix, attribute_id)
            resolved[attribute_id] = attribute.model_copy(update={"values": values})
        return resolved
