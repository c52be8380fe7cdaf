"""Pass-through attribute definition."""

from __future__ import annotations

from typing import TYPE_CHECKING

from idp_resolver.models.attributes import Attribute
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import AttributeDefinition

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext


class SimpleAttributeDefinition(AttributeDefinition):
    """Releases every value of its dependencies unchanged, in dependency order."""

    def _do_initialize(self) -> None:
        super()._do_initialize()
        self._require_dependencies()

    def _resolve_attribute(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Attribute | None:
        return Attribute(id=self.id, values=work_context.merged_values(self.dependencies))
