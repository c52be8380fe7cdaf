"""Connector exposing the authenticated principal to the graph."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from idp_resolver.models.attributes import Attribute, StringValue
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.plugins.base import DataConnector

if TYPE_CHECKING:
    from idp_resolver.resolver.work_context import ResolutionWorkContext

logger = logging.getLogger(__name__)


class PrincipalDataConnector(DataConnector):
    """Emits the principal name and any attributes established at authentication.

    The principal name is released under ``principal_attribute_id``.
    """

    def __init__(self, plugin_id: str, *, principal_attribute_id: str = "principal", **kwargs: Any) -> None:
        super().__init__(plugin_id, **kwargs)
        self.principal_attribute_id = principal_attribute_id

    async def _resolve_attributes(
        self, context: ResolutionContext, work_context: ResolutionWorkContext
    ) -> Mapping[str, Attribute] | None:
        attributes = {
            attribute_id: attribute.model_copy(deep=True)
            for attribute_id, attribute in context.principal_attributes.items()
        }
        if context.principal:
            attributes[self.principal_attribute_id] = Attribute(
                id=self.principal_attribute_id,
                values=[StringValue(value=context.principal)],
            )
        else:
            logger.debug("%s No principal name in the request", self.log_prefix)
        return attributes or None
