"""Tests for the SQLite identifier store."""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio

from idp_resolver.errors import StoreError
from idp_resolver.storage.sqlite import SQLiteIdentifierStore

IDP = "https://idp.example.org"
RP = "https://sp.example.org"
FP = "f" * 64


@pytest_asyncio.fixture
async def store(tmp_path: Path):
    db_path = tmp_path / "identifiers.db"
    engine = SQLiteIdentifierStore(db_path)
    await engine.initialize()
    yield engine
    await engine.close()


async def _issue(store: SQLiteIdentifierStore, fingerprint: str = FP, computed: str | None = "computed-1"):
    return await store.get_or_create(
        IDP, RP, fingerprint, principal_name="alice", computed_identifier=computed
    )


@pytest.mark.asyncio
async def test_initialize_creates_schema(store: SQLiteIdentifierStore) -> None:
    cursor = await store.db.execute("SELECT name FROM sqlite_master ORDER BY name")
    names = {row[0] for row in await cursor.fetchall()}
    assert "identifiers" in names
    assert "identifiers_one_active" in names


@pytest.mark.asyncio
async def test_first_issue_uses_computed_value(store: SQLiteIdentifierStore) -> None:
    record = await _issue(store)
    assert record.identifier == "computed-1"
    assert record.principal_name == "alice"
    assert record.is_active()


@pytest.mark.asyncio
async def test_repeat_returns_stored_value(store: SQLiteIdentifierStore) -> None:
    first = await _issue(store)
    again = await _issue(store, computed="something-else")
    assert again.identifier == first.identifier
    assert len(await store.history(IDP, RP, FP)) == 1


@pytest.mark.asyncio
async def test_get_returns_active_record(store: SQLiteIdentifierStore) -> None:
    assert await store.get(IDP, RP, FP) is None
    record = await _issue(store)
    fetched = await store.get(IDP, RP, FP)
    assert fetched is not None
    assert fetched.identifier == record.identifier
    assert fetched.created_at == record.created_at


@pytest.mark.asyncio
async def test_rotation_issues_random_values(store: SQLiteIdentifierStore) -> None:
    first = await _issue(store)
    await store.deactivate(IDP, RP, first.identifier)
    assert await store.get(IDP, RP, FP) is None

    second = await _issue(store)
    assert second.identifier not in ("computed-1", first.identifier)

    await store.deactivate(IDP, RP, second.identifier)
    third = await _issue(store)
    assert third.identifier not in (first.identifier, second.identifier)

    history = await store.history(IDP, RP, FP)
    assert [r.identifier for r in history] == [third.identifier, second.identifier, first.identifier]
    assert [r.is_active() for r in history] == [True, False, False]


@pytest.mark.asyncio
async def test_future_deactivation_keeps_record_active(store: SQLiteIdentifierStore) -> None:
    record = await _issue(store)
    await store.deactivate(IDP, RP, record.identifier, datetime.now(UTC) + timedelta(days=1))
    again = await _issue(store)
    assert again.identifier == record.identifier
    assert again.deactivated_at is not None


@pytest.mark.asyncio
async def test_naive_deactivation_time_is_utc(store: SQLiteIdentifierStore) -> None:
    record = await _issue(store)
    await store.deactivate(IDP, RP, record.identifier, datetime(2020, 1, 1, 12, 0))
    history = await store.history(IDP, RP, FP)
    assert history[0].deactivated_at == datetime(2020, 1, 1, 12, 0, tzinfo=UTC)


@pytest.mark.asyncio
async def test_deactivate_unknown_identifier_warns(
    store: SQLiteIdentifierStore, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.WARNING, logger="idp_resolver.storage.sqlite"):
        await store.deactivate(IDP, RP, "never-issued")
    assert "affected 0 rows" in caplog.text


@pytest.mark.asyncio
async def test_create_rejects_second_active_record(store: SQLiteIdentifierStore) -> None:
    await store.create(IDP, RP, "one", FP, principal_name="alice")
    with pytest.raises(StoreError, match="already exists"):
        await store.create(IDP, RP, "two", FP, principal_name="alice")


@pytest.mark.asyncio
async def test_create_rejects_while_future_deactivation_pending(store: SQLiteIdentifierStore) -> None:
    await store.create(IDP, RP, "one", FP, principal_name="alice")
    await store.deactivate(IDP, RP, "one", datetime.now(UTC) + timedelta(hours=1))
    with pytest.raises(StoreError, match="already exists"):
        await store.create(IDP, RP, "two", FP, principal_name="alice")
    history = await store.history(IDP, RP, FP)
    assert [r.identifier for r in history if r.is_active()] == ["one"]


@pytest.mark.asyncio
async def test_create_after_deactivation_succeeds(store: SQLiteIdentifierStore) -> None:
    await store.create(IDP, RP, "one", FP, principal_name="alice")
    await store.deactivate(IDP, RP, "one")
    record = await store.create(IDP, RP, "two", FP, principal_name="alice")
    assert (await store.get(IDP, RP, FP)).identifier == record.identifier


@pytest.mark.asyncio
async def test_reverse_lookup(store: SQLiteIdentifierStore) -> None:
    record = await _issue(store)
    found = await store.get_by_identifier(IDP, RP, record.identifier)
    assert found is not None
    assert found.principal_name == "alice"
    assert await store.get_by_identifier(IDP, "https://other.example.org", record.identifier) is None

    await store.deactivate(IDP, RP, record.identifier)
    assert await store.get_by_identifier(IDP, RP, record.identifier) is None


@pytest.mark.asyncio
async def test_peer_provided_id_survives_rotation(store: SQLiteIdentifierStore) -> None:
    record = await _issue(store)
    await store.attach(IDP, RP, record.identifier, "rp-side-42")
    await store.deactivate(IDP, RP, record.identifier)
    rotated = await _issue(store)
    assert rotated.peer_provided_id == "rp-side-42"


@pytest.mark.asyncio
async def test_relying_parties_are_independent(store: SQLiteIdentifierStore) -> None:
    one = await _issue(store)
    other = await store.get_or_create(
        IDP, "https://other.example.org", FP, principal_name="alice", computed_identifier="computed-2"
    )
    await store.deactivate(IDP, RP, one.identifier)
    assert (await store.get(IDP, "https://other.example.org", FP)).identifier == other.identifier


@pytest.mark.asyncio
async def test_concurrent_issue_creates_one_record(store: SQLiteIdentifierStore) -> None:
    records = await asyncio.gather(*(_issue(store) for _ in range(20)))
    assert {r.identifier for r in records} == {"computed-1"}
    assert len(await store.history(IDP, RP, FP)) == 1


@pytest.mark.asyncio
async def test_concurrent_issue_across_connections(tmp_path: Path) -> None:
    db_path = tmp_path / "shared.db"
    stores = [SQLiteIdentifierStore(db_path) for _ in range(3)]
    for s in stores:
        await s.initialize()
    try:
        await stores[0].create(IDP, RP, "old", FP, principal_name="alice")
        await stores[0].deactivate(IDP, RP, "old")
        records = await asyncio.gather(*(_issue(s) for s in stores for _ in range(3)))
        assert len({r.identifier for r in records}) == 1
        history = await stores[0].history(IDP, RP, FP)
        assert len([r for r in history if r.is_active()]) == 1
    finally:
        for s in stores:
            await s.close()


@pytest.mark.asyncio
async def test_conflict_retries_then_fails(store: SQLiteIdentifierStore) -> None:
    await store.create(IDP, RP, "taken", "other-fingerprint", principal_name="bob")
    with pytest.raises(StoreError, match="Could not issue identifier"):
        await _issue(store, computed="taken")
    assert await store.history(IDP, RP, FP) == []


@pytest.mark.asyncio
async def test_list_records_filters(store: SQLiteIdentifierStore) -> None:
    await _issue(store)
    await store.get_or_create("https://idp2.example.org", RP, FP, principal_name="alice")
    assert len(await store.list_records()) == 2
    assert len(await store.list_records(idp_id=IDP)) == 1
    assert len(await store.list_records(rp_id="https://nowhere.example.org")) == 0


@pytest.mark.asyncio
async def test_uninitialized_store_raises(tmp_path: Path) -> None:
    with pytest.raises(StoreError, match="not initialized"):
        await SQLiteIdentifierStore(tmp_path / "x.db").get(IDP, RP, FP)


@pytest.mark.asyncio
async def test_closed_store_raises_store_error(tmp_path: Path) -> None:
    engine = SQLiteIdentifierStore(tmp_path / "closed.db")
    await engine.initialize()
    await engine.close()
    with pytest.raises(StoreError, match="not initialized"):
        await _issue(engine)
    with pytest.raises(StoreError):
        await engine.list_records()


@pytest.mark.asyncio
async def test_dropped_connection_raises_store_error(tmp_path: Path) -> None:
    engine = SQLiteIdentifierStore(tmp_path / "dropped.db")
    await engine.initialize()
    await engine.db.close()
    try:
        with pytest.raises(StoreError):
            await _issue(engine)
        with pytest.raises(StoreError):
            await engine.create(IDP, RP, "one", FP, principal_name="alice")
        with pytest.raises(StoreError):
            await engine.get_by_identifier(IDP, RP, "one")
        with pytest.raises(StoreError):
            await engine.list_records()
        with pytest.raises(StoreError):
            await engine.deactivate(IDP, RP, "one")
    finally:
        await engine.close()
