"""Pluggable identifier store interface.

A store maps (idp_id, rp_id, source_fingerprint) to identifier records. SQLite
is the bundled implementation; a relational or key-value service would each
implement this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from idp_resolver.models.identifiers import IdentifierRecord


class IdentifierStore(ABC):
    """Durable CRUD + deactivation for pairwise identifier records.

    get_or_create and deactivate must be atomic per (idp_id, rp_id): two
    concurrent callers can never leave two active records for one source.
    """

    @abstractmethod
    async def get(self, idp_id: str, rp_id: str, source_fingerprint: str) -> IdentifierRecord | None:
        """Return the active record for the triple, if any."""

    @abstractmethod
    async def create(
        self,
        idp_id: str,
        rp_id: str,
        identifier: str,
        source_fingerprint: str,
        *,
        principal_name: str,
        peer_provided_id: str | None = None,
    ) -> IdentifierRecord:
        """Insert a new active record. Fails if one is already active."""

    @abstractmethod
    async def get_or_create(
        self,
        idp_id: str,
        rp_id: str,
        source_fingerprint: str,
        *,
        principal_name: str,
        computed_identifier: str | None = None,
    ) -> IdentifierRecord:
        """Return the active record, creating one atomically if there is none.

        ``computed_identifier`` is used only for a triple with no history at
        all. Once a record has been deactivated, replacements are random.
        """

    @abstractmethod
    async def deactivate(
        self,
        idp_id: str,
        rp_id: str,
        identifier: str,
        as_of: datetime | None = None,
    ) -> None:
        """Mark an issued identifier inactive as of ``as_of`` (default: now)."""

    @abstractmethod
    async def get_by_identifier(
        self, idp_id: str, rp_id: str, identifier: str
    ) -> IdentifierRecord | None:
        """Reverse lookup of an active, previously issued identifier."""

    @abstractmethod
    async def attach(
        self, idp_id: str, rp_id: str, identifier: str, peer_provided_id: str
    ) -> None:
        """Associate an RP-supplied identifier with an issued identifier."""

    @abstractmethod
    async def history(
        self, idp_id: str, rp_id: str, source_fingerprint: str
    ) -> list[IdentifierRecord]:
        """Every record for the triple, newest first."""
