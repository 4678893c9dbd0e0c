"""Tests for the signed audit trail."""

from datetime import datetime, timedelta, timezone

import pytest

from visitas_core.audit.schemas import AuditAction, AuditLogEntry
from visitas_core.audit.service import IDENTIFIER_RESOURCE, AuditTrail
from visitas_core.common.exceptions import (
    AuditWriteError,
    DependencyUnavailableError,
    ValidationError,
)
from visitas_core.common.security import AccessContext

from tests.conftest import make_settings


T0 = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)


class TickingClock:
    def __init__(self, start=T0, step=timedelta(minutes=1)):
        self.now = start
        self.step = step

    def __call__(self):
        current = self.now
        self.now += self.step
        return current


class FailingStore:
    async def execute(self, *args, **kwargs):
        raise DependencyUnavailableError("down", dependency="store")


@pytest.fixture
def trail(settings, store):
    return AuditTrail(settings, store, clock=TickingClock())


def entry(**overrides) -> AuditLogEntry:
    data = {
        "actor_id": "nurse-01",
        "action": AuditAction.VIEW,
        "resource_id": "rec-1",
        "subject_id": "P1",
    }
    data.update(overrides)
    return AuditLogEntry(**data)


class TestLogAccess:
    async def test_stamps_id_and_time(self, db, trail):
        logged = await trail.log_access(entry())
        assert logged.id is not None
        assert logged.event_time == T0
        assert logged.entry_hash is not None
        assert logged.signature is not None

    async def test_keeps_caller_id_and_time(self, db, trail):
        when = T0 - timedelta(days=1)
        logged = await trail.log_access(entry(id="fixed-id", event_time=when))
        assert logged.id == "fixed-id"
        assert logged.event_time == when

    async def test_entry_is_persisted(self, db, trail):
        logged = await trail.log_access(entry(accessed_fields={"fields": ["soap_content"]}))
        page = await trail.get_logs_by_subject("P1")
        assert page.total == 1
        stored = page.items[0]
        assert stored.id == logged.id
        assert stored.action == AuditAction.VIEW
        assert stored.accessed_fields == {"fields": ["soap_content"]}
        assert stored.success is True

    async def test_write_failure_raises_audit_write_error(self, settings):
        trail = AuditTrail(settings, FailingStore())
        with pytest.raises(AuditWriteError) as exc_info:
            await trail.log_access(entry())
        assert exc_info.value.code == "AUDIT_WRITE_FAILED"
        assert isinstance(exc_info.value, DependencyUnavailableError)

    async def test_identifier_helper_builds_payload(self, db, trail):
        context = AccessContext(actor_id="dr-02", ip_address="10.1.1.1", user_agent="ua")
        logged = await trail.log_identifier_access("P1", "ident-1", AuditAction.DECRYPT, context)
        assert logged.accessed_fields == {
            "resource_type": IDENTIFIER_RESOURCE,
            "identifier_kind": "national_id",
            "operation": "decrypt",
        }
        assert logged.actor_id == "dr-02"
        assert logged.resource_id == "ident-1"
        assert logged.ip_address == "10.1.1.1"


class TestQueries:
    async def test_by_subject_newest_first_with_total(self, db, trail):
        for i in range(5):
            await trail.log_access(entry(resource_id=f"rec-{i}"))
        await trail.log_access(entry(subject_id="P2"))

        page = await trail.get_logs_by_subject("P1", limit=2, offset=0)
        assert page.total == 5
        assert [e.resource_id for e in page.items] == ["rec-4", "rec-3"]
        assert page.has_more

        last = await trail.get_logs_by_subject("P1", limit=2, offset=4)
        assert [e.resource_id for e in last.items] == ["rec-0"]
        assert not last.has_more

    async def test_by_actor(self, db, trail):
        await trail.log_access(entry(actor_id="nurse-01"))
        await trail.log_access(entry(actor_id="dr-02"))
        page = await trail.get_logs_by_actor("dr-02")
        assert page.total == 1
        assert page.items[0].actor_id == "dr-02"

    async def test_by_time_range_inclusive(self, db, trail):
        for i in range(4):
            await trail.log_access(entry(resource_id=f"rec-{i}"))
        page = await trail.get_logs_by_time_range(
            T0 + timedelta(minutes=1), T0 + timedelta(minutes=2),
        )
        assert page.total == 2
        assert {e.resource_id for e in page.items} == {"rec-1", "rec-2"}

    async def test_time_range_rejects_inverted(self, db, trail):
        with pytest.raises(ValidationError):
            await trail.get_logs_by_time_range(T0, T0 - timedelta(seconds=1))

    async def test_failed_only(self, db, trail):
        await trail.log_access(entry())
        await trail.log_access(entry(success=False, error_message="AuthenticationError"))
        page = await trail.get_failed_access_logs()
        assert page.total == 1
        assert page.items[0].success is False
        assert page.items[0].error_message == "AuthenticationError"

    async def test_limit_clamped(self, db, store):
        trail = AuditTrail(make_settings(max_page_size=3), store, clock=TickingClock())
        for _ in range(5):
            await trail.log_access(entry())
        page = await trail.get_logs_by_subject("P1", limit=100)
        assert page.limit == 3
        assert len(page.items) == 3
        assert page.total == 5

    async def test_bad_paging_rejected(self, db, trail):
        with pytest.raises(ValidationError):
            await trail.get_logs_by_subject("P1", limit=0)
        with pytest.raises(ValidationError):
            await trail.get_logs_by_subject("P1", offset=-1)


class TestVerifyEntries:
    async def test_untouched_entries_verify(self, db, trail):
        for _ in range(3):
            await trail.log_access(entry())
        result = await trail.verify_entries("P1")
        assert result.valid
        assert result.entries_checked == 3

    async def test_tampered_entry_detected(self, db, store, trail):
        await trail.log_access(entry())
        second = await trail.log_access(entry())
        await store.execute(
            "UPDATE audit_access_logs SET actor_id = @actor_id WHERE id = @id",
            {"actor_id": "mallory", "id": second.id},
        )
        result = await trail.verify_entries("P1")
        assert not result.valid
        assert result.break_at == second.id
        assert result.entries_checked == 1

    async def test_rotated_key_still_verifies(self, db, store):
        old = AuditTrail(make_settings(audit_hmac_key="old-key"), store, clock=TickingClock())
        await old.log_access(entry())
        rotated = AuditTrail(
            make_settings(audit_hmac_keys='{"0": "old-key", "1": "new-key"}'),
            store, clock=TickingClock(start=T0 + timedelta(hours=1)),
        )
        await rotated.log_access(entry())
        result = await rotated.verify_entries("P1")
        assert result.valid
        assert result.entries_checked == 2

    async def test_unknown_key_fails(self, db, store):
        trail = AuditTrail(make_settings(audit_hmac_key="old-key"), store)
        await trail.log_access(entry())
        other = AuditTrail(make_settings(audit_hmac_key="other-key"), store)
        result = await other.verify_entries("P1")
        assert not result.valid
