"""Stateless pairwise identifier connector."""

from __future__ import annotations

import logging

from idp_resolver.connectors.persistent import PersistentIdConnector
from idp_resolver.models.resolution import ResolutionContext

logger = logging.getLogger(__name__)


class ComputedIdConnector(PersistentIdConnector):
    """Releases the derived seed itself: same inputs, same value, on every call."""

    async def _identifier_for(self, value: str, context: ResolutionContext) -> str | None:
        logger.debug("%s Computing identifier for RP '%s'", self.log_prefix, context.rp_id)
        return self.compute(value, context.rp_id)
