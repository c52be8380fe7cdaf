"""Definitions that produce scoped values."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from idp_resolver.errors import ComponentInitializationError
from idp_resolver.models.attributes import Attribute, AttributeValue, ScopedStringValue
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import AttributeDefinition

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)


class ScopedAttributeDefinition(AttributeDefinition):
    """Attaches a fixed scope to every string dependency value."""

    def __init__(self, plugin_id: str, *, scope: str | None = None, **kwargs: Any) -> None:
        super().__init__(plugin_id, **kwargs)
        self.scope = scope

    def _do_initialize(self) -> None:
        super()._do_initialize()
        self._require_dependencies()
        if not self.scope:
            raise ComponentInitializationError(f"{self.log_prefix} Scope was not configured")

    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        strings = self._string_inputs(work_context.merged_values(self.dependencies))
        if strings is None:
            return None
        values: list[AttributeValue] = [ScopedStringValue(value=s, scope=self.scope) for s in strings]
        return Attribute(id=self.id, values=values)


class PrescopedAttributeDefinition(AttributeDefinition):
    """Splits ``value<delimiter>scope`` strings into scoped values."""

    def __init__(self, plugin_id: str, *, scope_delimiter: str = "@", **kwargs: Any) -> None:
        super().__init__(plugin_id, **kwargs)
        self.scope_delimiter = scope_delimiter

    def _do_initialize(self) -> None:
        super()._do_initialize()
        self._require_dependencies()
        if not self.scope_delimiter:
            raise ComponentInitializationError(f"{self.log_prefix} Scope delimiter was not configured")

    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        strings = self._string_inputs(work_context.merged_values(self.dependencies))
        if strings is None:
            return None
        values: list[AttributeValue] = []
        for s in strings:
            value, delimiter, scope = s.partition(self.scope_delimiter)
            if not delimiter:
                logger.warning(
                    "%s Input value '%s' does not contain delimiter '%s' and can not be split",
                    self.log_prefix,
                    s,
                    self.scope_delimiter,
                )
                return None
            values.append(ScopedStringValue(value=value, scope=scope))
        return Attribute(id=self.id, values=values)
