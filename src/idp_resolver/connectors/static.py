"""Connector that releases a fixed set of attributes."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from idp_resolver.errors import ComponentInitializationError
from idp_resolver.models.attributes import Attribute
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import DataConnector

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext


class StaticDataConnector(DataConnector):
    def __init__(self, plugin_id: str, *, attributes: Iterable[Attribute] = (), **kwargs: Any) -> None:
        super().__init__(plugin_id, **kwargs)
        self.attributes = list(attributes)

    def _do_initialize(self) -> None:
        super()._do_initialize()
        if not self.attributes:
            raise ComponentInitializationError(f"{self.log_prefix} No values were configured")
        self.attributes = tuple(self.attributes)

    async def _resolve_attributes(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        return {attribute.id: attribute.model_copy(deep=True) for attribute in self.attributes}
