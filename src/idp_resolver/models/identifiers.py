"""Persisted pairwise identifier records."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel


class IdentifierRecord(BaseModel):
    """One identifier issued to one RP for one source value.

    Records are never deleted. Rotation deactivates the current record and
    issues a new one for the same (idp_id, rp_id, source_fingerprint).
    """

    idp_id: str
    rp_id: str
    identifier: str
    principal_name: str
    source_fingerprint: str  # store lookup key, never released
    peer_provided_id: str | None = None
    created_at: datetime
    deactivated_at: datetime | None = None

    def is_active(self, now: datetime | None = None) -> bool:
        """Active until the deactivation time, which may lie in the future."""
        if self.deactivated_at is None:
            return True
        return self.deactivated_at > (now or datetime.now(UTC))
