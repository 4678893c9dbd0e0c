"""Tests for the row store and database manager."""

import asyncio
import json
import logging
import sqlite3
from datetime import datetime

import pytest

from visitas_core.common.database import DatabaseManager, _adapt_datetime
from visitas_core.common.exceptions import DependencyUnavailableError, ValidationError
from visitas_core.common.logging import JSONFormatter, get_logger
from visitas_core.common.statements import StatementBuilder
from visitas_core.common.store import RowStore
from visitas_core.records.schemas import MedicalRecordCreate
from visitas_core.records.service import MedicalRecordRepository

from tests.conftest import make_settings


INSERT_LOG = (
    "INSERT INTO audit_access_logs "
    "(id, event_time, actor_id, action, resource_id, subject_id, success, entry_hash, signature) "
    "VALUES (@id, @event_time, 'a', 'view', '', @subject_id, true, 'h', 's')"
)


def log_params(entry_id, subject_id="P1"):
    return {"id": entry_id, "event_time": "2026-04-01T09:00:00.000000+00:00", "subject_id": subject_id}


class TestRowStore:
    async def test_fetch_one_none_when_missing(self, store):
        row = await store.fetch_one(
            "SELECT id FROM audit_access_logs WHERE id = @id", {"id": "missing"},
        )
        assert row is None

    async def test_execute_returns_rowcount(self, store):
        assert await store.execute(INSERT_LOG, log_params("a1")) == 1
        count = await store.execute(
            "UPDATE audit_access_logs SET actor_id = 'b' WHERE subject_id = @subject_id",
            {"subject_id": "P1"},
        )
        assert count == 1
        assert await store.fetch_value("SELECT COUNT(*) FROM audit_access_logs") == 1

    async def test_transaction_commits_together(self, store):
        async with store.transaction() as tx:
            await store.execute(INSERT_LOG, log_params("a1"), tx=tx)
            await store.execute(INSERT_LOG, log_params("a2"), tx=tx)
        rows = await store.fetch_all("SELECT id FROM audit_access_logs ORDER BY id")
        assert [r.id for r in rows] == ["a1", "a2"]

    async def test_transaction_rolls_back_on_error(self, store):
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await store.execute(INSERT_LOG, log_params("a1"), tx=tx)
                raise RuntimeError("boom")
        assert await store.fetch_value("SELECT COUNT(*) FROM audit_access_logs") == 0

    async def test_bad_statement_is_dependency_error(self, store):
        with pytest.raises(DependencyUnavailableError) as exc_info:
            await store.fetch_all("SELECT * FROM no_such_table", operation="records.scan")
        assert exc_info.value.dependency == "store"
        assert "records.scan" in exc_info.value.message

    async def test_constraint_violation_is_validation_error(self, store):
        repo = MedicalRecordRepository(store, id_factory=lambda: "rec-1")
        request = MedicalRecordCreate(
            visit_started_at="2026-04-01T09:00:00+00:00",
            visit_type="regular",
            performed_by="dr-02",
            status="draft",
        )
        await repo.create("P1", request, "dr-02")
        with pytest.raises(ValidationError):
            await repo.create("P1", request, "dr-02")

    async def test_deadline_exceeded(self, db, monkeypatch):
        store = RowStore(db, StatementBuilder(), timeout=0.01)

        async def slow(*args, **kwargs):
            await asyncio.sleep(1)

        monkeypatch.setattr(store, "_dispatch", slow)
        with pytest.raises(DependencyUnavailableError, match="deadline"):
            await store.fetch_one("SELECT 1")


class TestDatabaseManager:
    def test_require_engine_before_init(self):
        with pytest.raises(RuntimeError):
            DatabaseManager(make_settings()).require_engine()

    def test_is_sqlite(self):
        assert DatabaseManager(make_settings()).is_sqlite
        pg = DatabaseManager(make_settings(db_url="postgresql+asyncpg://u@h/db"))
        assert not pg.is_sqlite

    async def test_close_is_idempotent(self):
        manager = DatabaseManager(make_settings())
        await manager.init()
        await manager.close()
        await manager.close()
        assert manager.engine is None

    async def test_datetime_adapter_registered_once_at_import(self, monkeypatch):
        assert sqlite3.adapters[(datetime, sqlite3.PrepareProtocol)] is _adapt_datetime
        calls = []
        monkeypatch.setattr(sqlite3, "register_adapter", lambda *a: calls.append(a))
        manager = DatabaseManager(make_settings())
        await manager.init()
        await manager.close()
        assert calls == []


class TestJSONFormatter:
    def test_includes_structured_fields(self):
        logger = get_logger("test")
        record = logger.makeRecord(
            logger.name, logging.INFO, __file__, 1, "Version conflict", None, None,
            extra={"fields": {"entity_id": "rec-1", "expected_version": 3}},
        )
        payload = json.loads(JSONFormatter().format(record))
        assert payload["logger"] == "visitas_core.test"
        assert payload["message"] == "Version conflict"
        assert payload["fields"] == {"entity_id": "rec-1", "expected_version": 3}
