"""Persisted, rotatable pairwise identifier connector."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from idp_resolver.connectors.persistent import PersistentIdConnector, fingerprint
from idp_resolver.errors import ComponentInitializationError, ResolutionError, StoreError
from idp_resolver.models.resolution import ResolutionContext
from idp_resolver.storage.base import IdentifierStore

logger = logging.getLogger(__name__)


class StoredIdConnector(PersistentIdConnector):
    """Looks identifiers up in an IdentifierStore, issuing them on first use.

    The first identifier issued for a source value is the computed seed, so a
    fresh store agrees with ComputedIdConnector. Once that identifier is
    deactivated its replacements are random and unrelated to the seed.

    Store failures propagate by default so that an unreachable store with no
    failover fails the whole request.
    """

    def __init__(
        self,
        plugin_id: str,
        *,
        store: IdentifierStore | None = None,
        propagate_errors: bool = True,
        **kwargs: Any,
    ) -> None:
        super().__init__(plugin_id, propagate_errors=propagate_errors, **kwargs)
        self.store = store

    def _do_initialize(self) -> None:
        super()._do_initialize()
        if self.store is None:
            raise ComponentInitializationError(f"{self.log_prefix} No identifier store was configured")

    async def _identifier_for(self, value: str, context: ResolutionContext) -> str | None:
        try:
            record = await self.store.get_or_create(
                context.idp_id,
                context.rp_id,
                fingerprint(value),
                principal_name=context.principal,
                computed_identifier=self.compute(value, context.rp_id),
            )
        except StoreError as e:
            logger.error("%s Error obtaining stored identifier: %s", self.log_prefix, e)
            raise ResolutionError(f"{self.log_prefix} Error obtaining stored identifier") from e
        return record.identifier

    async def deactivate(
        self,
        idp_id: str,
        rp_id: str,
        identifier: str,
        as_of: datetime | None = None,
    ) -> None:
        """Rotate ``identifier`` out; the next resolution issues a new one."""
        self.ensure_usable()
        logger.info("%s Deactivating identifier for RP '%s'", self.log_prefix, rp_id)
        await self.store.deactivate(idp_id, rp_id, identifier, as_of)
