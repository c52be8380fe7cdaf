"""SQLite persistence for pairwise identifier records."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from idp_resolver.errors import StoreError
from idp_resolver.models.identifiers import IdentifierRecord
from idp_resolver.storage.base import IdentifierStore

logger = logging.getLogger(__name__)

_SCHEMA = """
-- Issued identifiers (append-only history; rotation deactivates, never deletes)
CREATE TABLE IF NOT EXISTS identifiers (
    idp_id TEXT NOT NULL,
    rp_id TEXT NOT NULL,
    identifier TEXT NOT NULL,
    principal_name TEXT NOT NULL,
    source_fingerprint TEXT NOT NULL,
    peer_provided_id TEXT,
    created_at TIMESTAMP NOT NULL,
    deactivated_at TIMESTAMP,
    PRIMARY KEY (idp_id, rp_id, identifier)
);

-- At most one never-deactivated record per source
CREATE UNIQUE INDEX IF NOT EXISTS identifiers_one_active
    ON identifiers (idp_id, rp_id, source_fingerprint)
    WHERE deactivated_at IS NULL;

CREATE INDEX IF NOT EXISTS identifiers_by_source
    ON identifiers (idp_id, rp_id, source_fingerprint, created_at);
"""

_COLUMNS = (
    "idp_id, rp_id, identifier, principal_name, source_fingerprint, "
    "peer_provided_id, created_at, deactivated_at"
)


# aiosqlite raises ValueError once its connection has been closed
_STORE_FAILURES = (aiosqlite.Error, ValueError)


def _utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def _timestamp(value: datetime | None) -> str | None:
    return _utc(value).isoformat() if value is not None else None


class SQLiteIdentifierStore(IdentifierStore):
    """Async SQLite identifier store.

    Lookup-or-create runs inside ``BEGIN IMMEDIATE`` under an asyncio lock, and
    the partial unique index rejects a second active record even from another
    process. A rejected insert is retried up to ``transaction_retries`` times.
    ``create`` checks for an active record under the same transaction, since
    the index does not cover records deactivated as of a future time.

    Connection failures, including a closed or uninitialized store, surface
    as ``StoreError``.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        transaction_retries: int = 3,
        busy_timeout: float = 5.0,
    ) -> None:
        self.db_path = db_path
        self.transaction_retries = transaction_retries
        self.busy_timeout = busy_timeout
        self._db: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection and create schema."""
        self._db = await aiosqlite.connect(str(self.db_path), timeout=self.busy_timeout)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("SQLiteIdentifierStore not initialized, call initialize() first")
        return self._db

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except _STORE_FAILURES as e:
            logger.warning("Identifier store rollback failed: %s", e)

    # ----- Lookups -----

    async def get(self, idp_id: str, rp_id: str, source_fingerprint: str) -> IdentifierRecord | None:
        now = datetime.now(UTC)
        for record in await self.history(idp_id, rp_id, source_fingerprint):
            if record.is_active(now):
                return record
        return None

    async def history(
        self, idp_id: str, rp_id: str, source_fingerprint: str
    ) -> list[IdentifierRecord]:
        try:
            cursor = await self.db.execute(
                f"""SELECT {_COLUMNS} FROM identifiers
                    WHERE idp_id = ? AND rp_id = ? AND source_fingerprint = ?
                    ORDER BY created_at DESC, rowid DESC""",
                (idp_id, rp_id, source_fingerprint),
            )
            rows = await cursor.fetchall()
        except _STORE_FAILURES as e:
            raise StoreError(f"Identifier store lookup failed: {e}") from e
        return [IdentifierRecord.model_validate(dict(row)) for row in rows]

    async def get_by_identifier(
        self, idp_id: str, rp_id: str, identifier: str
    ) -> IdentifierRecord | None:
        try:
            cursor = await self.db.execute(
                f"SELECT {_COLUMNS} FROM identifiers WHERE idp_id = ? AND rp_id = ? AND identifier = ?",
                (idp_id, rp_id, identifier),
            )
            row = await cursor.fetchone()
        except _STORE_FAILURES as e:
            raise StoreError(f"Identifier store lookup failed: {e}") from e
        if row is None:
            return None
        record = IdentifierRecord.model_validate(dict(row))
        return record if record.is_active() else None

    async def list_records(
        self, *, idp_id: str | None = None, rp_id: str | None = None
    ) -> list[IdentifierRecord]:
        query = f"SELECT {_COLUMNS} FROM identifiers WHERE 1=1"
        params: list = []
        if idp_id:
            query += " AND idp_id = ?"
            params.append(idp_id)
        if rp_id:
            query += " AND rp_id = ?"
            params.append(rp_id)
        query += " ORDER BY created_at"
        try:
            cursor = await self.db.execute(query, params)
            rows = await cursor.fetchall()
        except _STORE_FAILURES as e:
            raise StoreError(f"Identifier store listing failed: {e}") from e
        return [IdentifierRecord.model_validate(dict(row)) for row in rows]

    # ----- Writes -----

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
        record = IdentifierRecord(
            idp_id=idp_id,
            rp_id=rp_id,
            identifier=identifier,
            principal_name=principal_name,
            source_fingerprint=source_fingerprint,
            peer_provided_id=peer_provided_id,
            created_at=datetime.now(UTC),
        )
        conflict = f"An active identifier already exists for '{idp_id}' / '{rp_id}'"
        async with self._lock:
            try:
                await self.db.execute("BEGIN IMMEDIATE")
                try:
                    # the unique index cannot see records deactivated as of a future time
                    history = await self.history(idp_id, rp_id, source_fingerprint)
                    if any(r.is_active(record.created_at) for r in history):
                        raise StoreError(conflict)
                    await self._insert(record)
                    await self.db.commit()
                except BaseException:
                    await self._rollback()
                    raise
            except aiosqlite.IntegrityError as e:
                raise StoreError(conflict) from e
            except _STORE_FAILURES as e:
                raise StoreError(f"Identifier store insert failed: {e}") from e
        return record

    async def get_or_create(
        self,
        idp_id: str,
        rp_id: str,
        source_fingerprint: str,
        *,
        principal_name: str,
        computed_identifier: str | None = None,
    ) -> IdentifierRecord:
        retries = self.transaction_retries
        while True:
            try:
                async with self._lock:
                    return await self._get_or_create_once(
                        idp_id, rp_id, source_fingerprint, principal_name, computed_identifier
                    )
            except aiosqlite.IntegrityError as e:
                if retries <= 0:
                    logger.warning("Identifier conflict is retryable, but retry limit exceeded")
                    raise StoreError(f"Could not issue identifier for '{idp_id}' / '{rp_id}': {e}") from e
                retries -= 1
                logger.info("Retrying identifier lookup/create operation")
            except _STORE_FAILURES as e:
                raise StoreError(f"Identifier store error obtaining identifier: {e}") from e

    async def _get_or_create_once(
        self,
        idp_id: str,
        rp_id: str,
        source_fingerprint: str,
        principal_name: str,
        computed_identifier: str | None,
    ) -> IdentifierRecord:
        await self.db.execute("BEGIN IMMEDIATE")
        try:
            history = await self.history(idp_id, rp_id, source_fingerprint)
            now = datetime.now(UTC)
            active = next((r for r in history if r.is_active(now)), None)
            if active is not None:
                logger.debug("Returning existing active identifier for '%s' / '%s'", idp_id, rp_id)
                await self.db.commit()
                return active

            if not history and computed_identifier:
                logger.debug("Issuing new computed identifier")
                identifier = computed_identifier
                peer_provided_id = None
            else:
                logger.debug("Issuing new random identifier")
                identifier = str(uuid.uuid4())
                peer_provided_id = history[0].peer_provided_id if history else None

            record = IdentifierRecord(
                idp_id=idp_id,
                rp_id=rp_id,
                identifier=identifier,
                principal_name=principal_name,
                source_fingerprint=source_fingerprint,
                peer_provided_id=peer_provided_id,
                created_at=now,
            )
            await self._insert(record)
            await self.db.commit()
            return record
        except BaseException:
            await self._rollback()
            raise

    async def deactivate(
        self,
        idp_id: str,
        rp_id: str,
        identifier: str,
        as_of: datetime | None = None,
    ) -> None:
        deactivated_at = _utc(as_of) if as_of is not None else datetime.now(UTC)
        logger.debug("Deactivating identifier %s as of %s", identifier, deactivated_at)
        async with self._lock:
            try:
                cursor = await self.db.execute(
                    """UPDATE identifiers SET deactivated_at = ?
                       WHERE idp_id = ? AND rp_id = ? AND identifier = ?""",
                    (_timestamp(deactivated_at), idp_id, rp_id, identifier),
                )
                await self.db.commit()
            except _STORE_FAILURES as e:
                await self._rollback()
                raise StoreError(f"Identifier store deactivation failed: {e}") from e
        if cursor.rowcount != 1:
            logger.warning("Unexpected result, deactivation affected %d rows", cursor.rowcount)

    async def attach(
        self, idp_id: str, rp_id: str, identifier: str, peer_provided_id: str
    ) -> None:
        logger.debug("Attaching peer-provided id %s to identifier %s", peer_provided_id, identifier)
        async with self._lock:
            try:
                cursor = await self.db.execute(
                    """UPDATE identifiers SET peer_provided_id = ?
                       WHERE idp_id = ? AND rp_id = ? AND identifier = ?""",
                    (peer_provided_id, idp_id, rp_id, identifier),
                )
                await self.db.commit()
            except _STORE_FAILURES as e:
                await self._rollback()
                raise StoreError(f"Identifier store update failed: {e}") from e
        if cursor.rowcount != 1:
            logger.warning("Unexpected result, attach affected %d rows", cursor.rowcount)

    async def _insert(self, record: IdentifierRecord) -> None:
        await self.db.execute(
            f"INSERT INTO identifiers ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                record.idp_id,
                record.rp_id,
                record.identifier,
                record.principal_name,
                record.source_fingerprint,
                record.peer_provided_id,
                _timestamp(record.created_at),
                _timestamp(record.deactivated_at),
            ),
        )
