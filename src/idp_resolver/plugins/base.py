"""Resolver plugin interface: attribute definitions and data connectors.

Every plugin follows the same lifecycle. It is constructed, configured by
keyword arguments or attribute assignment, then initialized once. After
initialize() its public configuration is frozen and it is shared read-only by
every request until destroy().
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Mapping
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict

from idp_resolver.errors import (
    ComponentInitializationError,
    ResolutionError,
    UninitializedComponentError,
    UnmodifiableComponentError,
)
from idp_resolver.models.attributes import (
    Attribute,
    AttributeValue,
    EmptyValue,
    StringValue,
)
from idp_resolver.models.resolution import PluginOutcome, ResolutionContext

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)

ActivationCondition = Callable[[ResolutionContext], bool]


class PluginKind(StrEnum):
    ATTRIBUTE_DEFINITION = "attribute_definition"
    DATA_CONNECTOR = "data_connector"


class Dependency(BaseModel):
    """Edge to another plugin, optionally narrowed to one of its attributes."""

    model_config = ConfigDict(frozen=True)

    plugin_id: str
    attribute_id: str | None = None


class ResolverPlugin(ABC):
    kind: ClassVar[PluginKind]
    _log_label: ClassVar[str] = "Resolver Plugin"

    def __init__(
        self,
        plugin_id: str,
        *,
        dependencies: Iterable[Dependency] = (),
        activation_condition: ActivationCondition | None = None,
        propagate_errors: bool = False,
    ) -> None:
        self._initialized = False
        self._destroyed = False
        if not plugin_id or not plugin_id.strip():
            raise ComponentInitializationError("Plugin id cannot be null or empty")
        self.id = plugin_id.strip()
        self.dependencies: Iterable[Dependency] = list(dependencies)
        self.activation_condition = activation_condition
        self.propagate_errors = propagate_errors

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_") and getattr(self, "_initialized", False):
            raise UnmodifiableComponentError(
                f"{self.log_prefix} '{name}' cannot be changed after initialization"
            )
        super().__setattr__(name, value)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id!r})"

    @property
    def log_prefix(self) -> str:
        return f"{self._log_label} '{self.id}':"

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    def initialize(self) -> None:
        """Validate configuration and freeze the plugin. Idempotent."""
        if self._destroyed:
            raise UninitializedComponentError(f"{self.log_prefix} has been destroyed")
        if self._initialized:
            return
        self._do_initialize()
        # ordered, de-duplicated, immutable
        self.dependencies = tuple(dict.fromkeys(self.dependencies))
        self._initialized = True

    def destroy(self) -> None:
        self._destroyed = True

    def _do_initialize(self) -> None:
        """Subclass validation hook; raise ComponentInitializationError on bad config."""

    def ensure_usable(self) -> None:
        if self._destroyed:
            raise UninitializedComponentError(f"{self.log_prefix} has been destroyed")
        if not self._initialized:
            raise UninitializedComponentError(f"{self.log_prefix} has not been initialized")

    def is_active(self, context: ResolutionContext) -> bool:
        return self.activation_condition is None or bool(self.activation_condition(context))

    async def resolve(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> PluginOutcome:
        """Run this plugin's own logic against already-resolved dependencies.

        Never raises for "no value" or for ResolutionError; both come back as
        outcomes so dependents can treat them as empty input.
        """
        self.ensure_usable()
        if not self.is_active(context):
            logger.debug("%s activation condition not met, nothing to do", self.log_prefix)
            return PluginOutcome.absent(self.id)

        try:
            attributes = await self._do_resolve(context, work_context)
        except ResolutionError as e:
            logger.debug("%s resolution failed: %s", self.log_prefix, e)
            return PluginOutcome.failed(self.id, str(e) or type(e).__name__)

        if attributes is None:
            logger.info("%s produced no value", self.log_prefix)
            return PluginOutcome.absent(self.id)
        return PluginOutcome.resolved(self.id, dict(attributes))

    @abstractmethod
    async def _do_resolve(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        """Produce attributes keyed by id, or None for no output."""


class AttributeDefinition(ResolverPlugin):
    """Pure function of other plugins' outputs producing one attribute."""

    kind = PluginKind.ATTRIBUTE_DEFINITION
    _log_label = "Attribute Definition"

    def __init__(
        self,
        plugin_id: str,
        *,
        dependency_only: bool = False,
        source_attribute_id: str | None = None,
        display_names: Mapping[str, str] | None = None,
        display_descriptions: Mapping[str, str] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, **kwargs)
        self.dependency_only = dependency_only
        self.source_attribute_id = source_attribute_id
        self.display_names = dict(display_names or {})
        self.display_descriptions = dict(display_descriptions or {})

    def _do_initialize(self) -> None:
        super()._do_initialize()
        if self.source_attribute_id:
            self.dependencies = [
                dep
                if dep.attribute_id
                else Dependency(plugin_id=dep.plugin_id, attribute_id=self.source_attribute_id)
                for dep in self.dependencies
            ]

    async def _do_resolve(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        attribute = self._resolve_attribute(context, work_context)
        if attribute is None:
            return None
        if attribute.values:
            logger.debug(
                "%s produced an attribute with values %s",
                self.log_prefix,
                [str(v) for v in attribute.values],
            )
        else:
            logger.debug("%s produced an attribute with no values", self.log_prefix)
        attribute.display_names = dict(self.display_names)
        attribute.display_descriptions = dict(self.display_descriptions)
        return {self.id: attribute}

    @abstractmethod
    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        """Build this definition's attribute from resolved dependency values."""

    def _require_dependencies(self) -> None:
        if not self.dependencies:
            raise ComponentInitializationError(f"{self.log_prefix} no dependencies were configured")

    def _string_inputs(self, values: Iterable[AttributeValue]) -> list[str] | None:
        """Plain strings from dependency values.

        Empty markers are skipped. Any other non-string value makes the whole
        input unusable and None is returned.
        """
        strings: list[str] = []
        for value in values:
            if isinstance(value, EmptyValue):
                logger.debug("%s ignored empty value of type %s", self.log_prefix, value.empty_type)
                continue
            if not isinstance(value, StringValue):
                logger.warning(
                    "%s only supports string values, got a '%s' value",
                    self.log_prefix,
                    value.kind,
                )
                return None
            strings.append(value.value)
        return strings


class DataConnector(ResolverPlugin):
    """Plugin that may perform external I/O and emit several attributes.

    ``failover_connector_id`` names a connector whose result is used when this
    one fails. After a failure, requests within ``no_retry_delay`` seconds go
    straight to the failover without invoking this connector.
    """

    kind = PluginKind.DATA_CONNECTOR
    _log_label = "Data Connector"

    def __init__(
        self,
        plugin_id: str,
        *,
        failover_connector_id: str | None = None,
        no_retry_delay: float = 0.0,
        timeout: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, **kwargs)
        self.failover_connector_id = (failover_connector_id or "").strip() or None
        self.no_retry_delay = no_retry_delay
        self.timeout = timeout
        self._last_fail = 0.0

    def _do_initialize(self) -> None:
        super()._do_initialize()
        if self.no_retry_delay < 0:
            raise ComponentInitializationError(f"{self.log_prefix} no_retry_delay cannot be negative")
        if self.timeout is not None and self.timeout <= 0:
            raise ComponentInitializationError(f"{self.log_prefix} timeout must be positive")

    @property
    def last_fail(self) -> float:
        return self._last_fail

    def record_failure(self, when: float | None = None) -> None:
        # Shared across requests; racing writers only cost an extra retry.
        self._last_fail = time.time() if when is None else when

    def in_no_retry_window(self, now: float | None = None) -> bool:
        if self.no_retry_delay <= 0 or not self._last_fail:
            return False
        now = time.time() if now is None else now
        return now < self._last_fail + self.no_retry_delay

    async def _do_resolve(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        attributes = await self._resolve_attributes(context, work_context)
        if attributes is None:
            logger.debug("%s no attributes were produced during resolution", self.log_prefix)
            return None
        logger.debug(
            "%s produced the following %d attributes during resolution %s",
            self.log_prefix,
            len(attributes),
            list(attributes),
        )
        return attributes

    @abstractmethod
    async def _resolve_attributes(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        """Fetch or compute this connector's attributes."""
