"""Audit trail - append-only, signed log of every access to protected data."""

import hashlib
import hmac as hmac_mod
import json
from datetime import datetime, timezone
from typing import Any, Callable

from sqlalchemy.ext.asyncio import AsyncConnection

from visitas_core.audit.schemas import AuditAction, AuditLogEntry, AuditVerification
from visitas_core.common.config import VisitasSettings
from visitas_core.common.exceptions import AuditWriteError, ValidationError, VisitasError
from visitas_core.common.logging import get_logger
from visitas_core.common.models import generate_uuid, utcnow
from visitas_core.common.rows import ColumnMap, insert_sql
from visitas_core.common.schemas import Page
from visitas_core.common.security import AccessContext
from visitas_core.common.store import RowStore

logger = get_logger("audit")

TABLE = "audit_access_logs"

AUDIT_COLUMNS = ColumnMap(
    AuditLogEntry,
    (
        "id", "event_time", "actor_id", "action", "resource_id", "subject_id",
        "accessed_fields", "success", "error_message", "ip_address", "user_agent",
        "entry_hash", "signature",
    ),
    json_columns=("accessed_fields",),
)

IDENTIFIER_RESOURCE = "patient_identifier"


class AuditTrail:
    """Writes and queries audit entries. There is no update or delete path."""

    def __init__(
        self,
        settings: VisitasSettings,
        store: RowStore,
        id_factory: Callable[[], str] = generate_uuid,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.store = store
        self.id_factory = id_factory
        self.clock = clock

    # ── Write ──

    async def log_access(
        self, entry: AuditLogEntry, tx: AsyncConnection | None = None,
    ) -> AuditLogEntry:
        """Append one entry, stamping id and event_time when unset.

        Raises AuditWriteError when the entry could not be stored; callers
        must treat that as a failure of the operation being audited.
        """
        stamped = entry.model_copy(update={
            "id": entry.id or self.id_factory(),
            "event_time": entry.event_time or self.clock(),
        })
        entry_hash = self._compute_entry_hash(stamped)
        stamped = stamped.model_copy(update={
            "entry_hash": entry_hash,
            "signature": self._sign(entry_hash),
        })

        values = {
            column: AUDIT_COLUMNS.encode(column, getattr(stamped, column))
            for column in AUDIT_COLUMNS.columns
        }
        try:
            await self.store.execute(
                insert_sql(TABLE, AUDIT_COLUMNS.columns), values,
                tx=tx, operation="audit.log_access",
            )
        except VisitasError as exc:
            logger.error(
                "Audit entry write failed",
                extra={"fields": {
                    "action": stamped.action.value,
                    "resource_id": stamped.resource_id,
                    "subject_id": stamped.subject_id,
                    "error": type(exc).__name__,
                }},
            )
            raise AuditWriteError() from exc
        return stamped

    async def log_identifier_access(
        self,
        subject_id: str,
        identifier_id: str,
        action: AuditAction,
        context: AccessContext,
        identifier_kind: str = "national_id",
        success: bool = True,
        error_message: str | None = None,
        tx: AsyncConnection | None = None,
    ) -> AuditLogEntry:
        """Record an operation on a sensitive identifier."""
        entry = AuditLogEntry(
            actor_id=context.actor_id,
            action=action,
            resource_id=identifier_id,
            subject_id=subject_id,
            accessed_fields={
                "resource_type": IDENTIFIER_RESOURCE,
                "identifier_kind": identifier_kind,
                "operation": AuditAction(action).value,
            },
            success=success,
            error_message=error_message,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )
        return await self.log_access(entry, tx=tx)

    # ── Read ──

    async def get_logs_by_subject(
        self, subject_id: str, limit: int | None = None, offset: int = 0,
    ) -> Page[AuditLogEntry]:
        return await self._page("subject_id = @subject_id", {"subject_id": subject_id}, limit, offset)

    async def get_logs_by_actor(
        self, actor_id: str, limit: int | None = None, offset: int = 0,
    ) -> Page[AuditLogEntry]:
        return await self._page("actor_id = @actor_id", {"actor_id": actor_id}, limit, offset)

    async def get_logs_by_time_range(
        self, start: datetime, end: datetime,
        limit: int | None = None, offset: int = 0,
    ) -> Page[AuditLogEntry]:
        """Entries with start <= event_time <= end."""
        if end < start:
            raise ValidationError("end must not be before start")
        return await self._page(
            "event_time >= @start_time AND event_time <= @end_time",
            {"start_time": start, "end_time": end}, limit, offset,
        )

    async def get_failed_access_logs(
        self, limit: int | None = None, offset: int = 0,
    ) -> Page[AuditLogEntry]:
        return await self._page("success = false", {}, limit, offset)

    # ── Verify ──

    async def verify_entries(self, subject_id: str) -> AuditVerification:
        """Recompute every entry hash for a subject and check its signature."""
        rows = await self.store.fetch_all(
            f"SELECT {AUDIT_COLUMNS.select_list()} FROM {TABLE} "
            "WHERE subject_id = @subject_id ORDER BY event_time ASC, id ASC",
            {"subject_id": subject_id},
            operation="audit.verify_entries",
        )
        entries = AUDIT_COLUMNS.decode_all(rows)
        for checked, entry in enumerate(entries):
            expected = self._compute_entry_hash(entry)
            if entry.entry_hash != expected or not self._verify_signature(
                entry.entry_hash or "", entry.signature or "",
            ):
                return AuditVerification(valid=False, entries_checked=checked, break_at=entry.id)
        return AuditVerification(valid=True, entries_checked=len(entries))

    # ── Internal helpers ──

    def _clamp(self, limit: int | None, offset: int) -> tuple[int, int]:
        if limit is None:
            limit = self.settings.default_page_size
        if limit < 1 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        return min(limit, self.settings.max_page_size), offset

    async def _page(
        self, predicate: str, params: dict[str, Any],
        limit: int | None, offset: int,
    ) -> Page[AuditLogEntry]:
        limit, offset = self._clamp(limit, offset)
        rows = await self.store.fetch_all(
            f"SELECT {AUDIT_COLUMNS.select_list()} FROM {TABLE} WHERE {predicate} "
            "ORDER BY event_time DESC, id DESC LIMIT @limit OFFSET @offset",
            {**params, "limit": limit, "offset": offset},
            operation="audit.query",
        )
        total = await self.store.fetch_value(
            f"SELECT COUNT(*) FROM {TABLE} WHERE {predicate}", params,
            operation="audit.count",
        )
        return Page[AuditLogEntry](
            items=AUDIT_COLUMNS.decode_all(rows),
            total=int(total or 0),
            limit=limit,
            offset=offset,
        )

    @staticmethod
    def _compute_entry_hash(entry: AuditLogEntry) -> str:
        """SHA-256 of canonical JSON of the entry's content fields."""
        event_time = entry.event_time
        if event_time is not None:
            if event_time.tzinfo is None:
                event_time = event_time.replace(tzinfo=timezone.utc)
            event_time = event_time.astimezone(timezone.utc).isoformat(timespec="microseconds")
        canonical = json.dumps(
            {
                "id": entry.id,
                "event_time": event_time,
                "actor_id": entry.actor_id,
                "action": AuditAction(entry.action).value,
                "resource_id": entry.resource_id,
                "subject_id": entry.subject_id,
                "accessed_fields": entry.accessed_fields,
                "success": entry.success,
                "error_message": entry.error_message,
                "ip_address": entry.ip_address,
                "user_agent": entry.user_agent,
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()

    def _sign(self, entry_hash: str) -> str:
        """HMAC-SHA256 of entry_hash with the current audit key."""
        return hmac_mod.new(
            self.settings.current_audit_key.encode(),
            entry_hash.encode(),
            hashlib.sha256,
        ).hexdigest()

    def _verify_signature(self, entry_hash: str, signature: str) -> bool:
        """Verify signature against all keys in the keyring."""
        for _version, key in self.settings.audit_keyring.items():
            expected = hmac_mod.new(
                key.encode(), entry_hash.encode(), hashlib.sha256,
            ).hexdigest()
            if hmac_mod.compare_digest(expected, signature):
                return True
        return False
