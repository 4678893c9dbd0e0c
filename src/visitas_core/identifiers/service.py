"""Identifier vault - lifecycle of patient identifiers.

National-id values are sealed to their owning subject before they are
stored and are only opened on an explicit decrypt request. Every decrypt
is audited before the plaintext leaves this module; if the audit entry
cannot be written the plaintext is discarded and the call fails.

Mutations of national-id identifiers are written together with their audit
entry in one store transaction.
"""

from datetime import datetime
from typing import Any, Callable

from visitas_core.audit.schemas import AuditAction
from visitas_core.audit.service import AuditTrail
from visitas_core.common.exceptions import (
    AuthenticationError,
    DependencyUnavailableError,
    NotFoundError,
    ValidationError,
)
from visitas_core.common.logging import get_logger
from visitas_core.common.models import generate_uuid, utcnow
from visitas_core.common.rows import ColumnMap, insert_sql, set_clause
from visitas_core.common.security import AccessContext
from visitas_core.common.store import RowStore
from visitas_core.crypto.service import EnvelopeEncryptionService
from visitas_core.identifiers.schemas import (
    ISSUER_REQUIRED_KINDS,
    IdentifierCreate,
    IdentifierKind,
    IdentifierPatch,
    PatientIdentifier,
    VerificationStatus,
    check_national_id,
)

logger = get_logger("identifiers")

TABLE = "patient_identifiers"

IDENTIFIER_COLUMNS = ColumnMap(
    PatientIdentifier,
    (
        "identifier_id", "patient_id", "identifier_type", "identifier_value",
        "is_primary", "valid_from", "valid_to", "issuer_name", "issuer_code",
        "verification_status", "verified_at", "verified_by",
        "created_at", "created_by", "updated_at", "updated_by",
        "deleted", "deleted_at",
    ),
    fields={
        "patient_id": "subject_id",
        "identifier_type": "kind",
        "identifier_value": "value",
    },
)

_SELECT = f"SELECT {IDENTIFIER_COLUMNS.select_list()} FROM {TABLE}"


class IdentifierVault:
    """Create, read, update and soft-delete patient identifiers."""

    def __init__(
        self,
        store: RowStore,
        encryption: EnvelopeEncryptionService,
        audit: AuditTrail,
        id_factory: Callable[[], str] = generate_uuid,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.encryption = encryption
        self.audit = audit
        self.id_factory = id_factory
        self.clock = clock

    # ── Create ──

    async def create(
        self, request: IdentifierCreate, context: AccessContext,
    ) -> PatientIdentifier:
        identifier_id = self.id_factory()
        now = self.clock()

        value = request.value
        if request.kind is IdentifierKind.NATIONAL_ID:
            value = await self._seal(value, request.subject_id, identifier_id)

        identifier = PatientIdentifier(
            identifier_id=identifier_id,
            subject_id=request.subject_id,
            kind=request.kind,
            value=value,
            is_primary=request.is_primary,
            valid_from=request.valid_from,
            valid_to=request.valid_to,
            issuer_name=request.issuer_name,
            issuer_code=request.issuer_code,
            verification_status=VerificationStatus.UNVERIFIED,
            created_at=now,
            created_by=context.actor_id,
            updated_at=now,
            updated_by=context.actor_id,
        )

        async with self.store.transaction() as tx:
            await self.store.execute(
                insert_sql(TABLE, IDENTIFIER_COLUMNS.columns),
                self._row_values(identifier),
                tx=tx, operation="identifiers.create",
            )
            if identifier.is_sensitive:
                await self.audit.log_identifier_access(
                    identifier.subject_id, identifier_id, AuditAction.CREATE,
                    context, identifier_kind=identifier.kind.value, tx=tx,
                )

        logger.info(
            "Patient identifier created",
            extra={"fields": {
                "identifier_id": identifier_id,
                "subject_id": identifier.subject_id,
                "identifier_kind": identifier.kind.value,
                "is_primary": identifier.is_primary,
                "actor_id": context.actor_id,
            }},
        )
        return identifier

    # ── Read ──

    async def get(
        self, identifier_id: str, context: AccessContext, decrypt: bool = False,
    ) -> PatientIdentifier:
        """Fetch a live identifier; national-id values stay sealed unless decrypt=True."""
        identifier = await self._fetch_live(identifier_id)
        if decrypt and identifier.is_sensitive:
            return await self._reveal(identifier, context)
        return identifier

    async def list_by_subject(
        self, subject_id: str, context: AccessContext, decrypt: bool = False,
    ) -> list[PatientIdentifier]:
        """All live identifiers of a subject, primary first, then oldest first."""
        rows = await self.store.fetch_all(
            f"{_SELECT} WHERE patient_id = @subject_id AND deleted = false "
            "ORDER BY is_primary DESC, created_at ASC, identifier_id ASC",
            {"subject_id": subject_id},
            operation="identifiers.list_by_subject",
        )
        identifiers = IDENTIFIER_COLUMNS.decode_all(rows)
        if not decrypt:
            return identifiers

        revealed = []
        for identifier in identifiers:
            if identifier.is_sensitive:
                identifier = await self._reveal(identifier, context)
            revealed.append(identifier)
        return revealed

    async def get_primary(
        self,
        subject_id: str,
        kind: IdentifierKind,
        context: AccessContext,
        decrypt: bool = False,
    ) -> PatientIdentifier:
        """The live primary identifier of a kind for a subject.

        Exclusivity is not enforced on write; when several rows are flagged
        primary the oldest is returned.
        """
        rows = await self.store.fetch_all(
            f"{_SELECT} WHERE patient_id = @subject_id "
            "AND identifier_type = @identifier_type "
            "AND is_primary = true AND deleted = false "
            "ORDER BY created_at ASC, identifier_id ASC LIMIT 2",
            {"subject_id": subject_id, "identifier_type": IdentifierKind(kind).value},
            operation="identifiers.get_primary",
        )
        if not rows:
            raise NotFoundError("Primary identifier not found")
        if len(rows) > 1:
            logger.warning(
                "Multiple primary identifiers for subject",
                extra={"fields": {
                    "subject_id": subject_id,
                    "identifier_kind": IdentifierKind(kind).value,
                }},
            )
        identifier = IDENTIFIER_COLUMNS.decode(rows[0])
        if decrypt and identifier.is_sensitive:
            return await self._reveal(identifier, context)
        return identifier

    async def get_including_deleted(self, identifier_id: str) -> PatientIdentifier:
        """Compliance replay: fetch by id regardless of the delete flag. Never decrypts."""
        row = await self.store.fetch_one(
            f"{_SELECT} WHERE identifier_id = @identifier_id",
            {"identifier_id": identifier_id},
            operation="identifiers.get_including_deleted",
        )
        if row is None:
            raise NotFoundError("Identifier not found")
        return IDENTIFIER_COLUMNS.decode(row)

    # ── Update ──

    async def update(
        self, identifier_id: str, patch: IdentifierPatch, context: AccessContext,
    ) -> PatientIdentifier:
        current = await self._fetch_live(identifier_id)
        changes = patch.changes()
        if not changes:
            return current

        status = changes.get("verification_status")
        if status is not None:
            self._check_transition(current.verification_status, status)
        self._check_merged(current, changes)

        now = self.clock()
        if "value" in changes and current.is_sensitive:
            changes["value"] = await self._seal(
                changes["value"], current.subject_id, identifier_id,
            )
        if status is VerificationStatus.VERIFIED:
            changes["verified_at"] = now
            changes["verified_by"] = context.actor_id
        changes["updated_at"] = now
        changes["updated_by"] = context.actor_id

        values = {
            IDENTIFIER_COLUMNS.column_for(field): value
            for field, value in changes.items()
        }
        params = {
            column: IDENTIFIER_COLUMNS.encode(column, value)
            for column, value in values.items()
        }

        async with self.store.transaction() as tx:
            count = await self.store.execute(
                f"UPDATE {TABLE} SET {set_clause(list(values))} "
                "WHERE identifier_id = @identifier_id AND deleted = false",
                {**params, "identifier_id": identifier_id},
                tx=tx, operation="identifiers.update",
            )
            if count == 0:
                raise NotFoundError("Identifier not found")
            if current.is_sensitive:
                await self.audit.log_identifier_access(
                    current.subject_id, identifier_id, AuditAction.UPDATE,
                    context, identifier_kind=current.kind.value, tx=tx,
                )

        logger.info(
            "Patient identifier updated",
            extra={"fields": {
                "identifier_id": identifier_id,
                "subject_id": current.subject_id,
                "fields": sorted(patch.changes()),
                "actor_id": context.actor_id,
            }},
        )
        return current.model_copy(update=changes)

    async def verify(self, identifier_id: str, context: AccessContext) -> PatientIdentifier:
        """Mark an identifier verified, stamping verifier and time."""
        return await self.update(
            identifier_id,
            IdentifierPatch(verification_status=VerificationStatus.VERIFIED),
            context,
        )

    # ── Delete ──

    async def delete(self, identifier_id: str, context: AccessContext) -> None:
        """Soft delete. The row stays for compliance replay."""
        current = await self._fetch_live(identifier_id)
        now = self.clock()
        async with self.store.transaction() as tx:
            count = await self.store.execute(
                f"UPDATE {TABLE} SET deleted = true, deleted_at = @now, "
                "updated_at = @now, updated_by = @actor_id "
                "WHERE identifier_id = @identifier_id AND deleted = false",
                {"now": now, "actor_id": context.actor_id, "identifier_id": identifier_id},
                tx=tx, operation="identifiers.delete",
            )
            if count == 0:
                raise NotFoundError("Identifier not found")
            if current.is_sensitive:
                await self.audit.log_identifier_access(
                    current.subject_id, identifier_id, AuditAction.DELETE,
                    context, identifier_kind=current.kind.value, tx=tx,
                )

        logger.info(
            "Patient identifier deleted",
            extra={"fields": {
                "identifier_id": identifier_id,
                "subject_id": current.subject_id,
                "actor_id": context.actor_id,
            }},
        )

    # ── Internal helpers ──

    async def _fetch_live(self, identifier_id: str) -> PatientIdentifier:
        row = await self.store.fetch_one(
            f"{_SELECT} WHERE identifier_id = @identifier_id AND deleted = false",
            {"identifier_id": identifier_id},
            operation="identifiers.get",
        )
        if row is None:
            raise NotFoundError("Identifier not found")
        return IDENTIFIER_COLUMNS.decode(row)

    async def _seal(self, plaintext: str, subject_id: str, identifier_id: str) -> str:
        try:
            return await self.encryption.encrypt(plaintext, subject_id)
        except (AuthenticationError, DependencyUnavailableError, ValidationError) as exc:
            logger.error(
                "National identifier encryption failed",
                extra={"fields": {
                    "identifier_id": identifier_id,
                    "subject_id": subject_id,
                    "error": type(exc).__name__,
                }},
            )
            raise

    async def _reveal(
        self, identifier: PatientIdentifier, context: AccessContext,
    ) -> PatientIdentifier:
        """Decrypt, audit, then hand back a copy carrying the plaintext."""
        try:
            plaintext = await self.encryption.decrypt(identifier.value, identifier.subject_id)
        except (AuthenticationError, DependencyUnavailableError, ValidationError) as exc:
            logger.error(
                "National identifier decryption failed",
                extra={"fields": {
                    "identifier_id": identifier.identifier_id,
                    "subject_id": identifier.subject_id,
                    "actor_id": context.actor_id,
                    "error": type(exc).__name__,
                }},
            )
            await self.audit.log_identifier_access(
                identifier.subject_id, identifier.identifier_id, AuditAction.DECRYPT,
                context, identifier_kind=identifier.kind.value,
                success=False, error_message=type(exc).__name__,
            )
            raise

        await self.audit.log_identifier_access(
            identifier.subject_id, identifier.identifier_id, AuditAction.DECRYPT,
            context, identifier_kind=identifier.kind.value,
        )
        logger.info(
            "National identifier decrypted",
            extra={"fields": {
                "identifier_id": identifier.identifier_id,
                "subject_id": identifier.subject_id,
                "actor_id": context.actor_id,
            }},
        )
        return identifier.model_copy(update={"value": plaintext})

    @staticmethod
    def _check_transition(current: VerificationStatus, target: VerificationStatus) -> None:
        if target is VerificationStatus.UNVERIFIED and current is not VerificationStatus.UNVERIFIED:
            raise ValidationError(
                f"Verification status cannot return to unverified from {current.value}"
            )
        if target is VerificationStatus.VERIFIED and current in (
            VerificationStatus.EXPIRED, VerificationStatus.INVALID,
        ):
            raise ValidationError(f"An {current.value} identifier cannot be verified")

    @staticmethod
    def _check_merged(current: PatientIdentifier, changes: dict[str, Any]) -> None:
        """Apply the create-time rules to the identifier as it will be stored."""
        if "value" in changes and current.is_sensitive:
            try:
                check_national_id(changes["value"])
            except ValueError as e:
                raise ValidationError(str(e)) from e
        if current.kind in ISSUER_REQUIRED_KINDS and "issuer_name" in changes:
            if not changes["issuer_name"].strip():
                raise ValidationError(f"issuer_name is required for {current.kind.value}")
        valid_from = changes.get("valid_from", current.valid_from)
        valid_to = changes.get("valid_to", current.valid_to)
        if valid_from is not None and valid_to is not None and valid_to < valid_from:
            raise ValidationError("valid_to must not be before valid_from")

    @staticmethod
    def _row_values(identifier: PatientIdentifier) -> dict[str, Any]:
        return {
            column: IDENTIFIER_COLUMNS.encode(
                column, getattr(identifier, IDENTIFIER_COLUMNS.field_for(column)),
            )
            for column in IDENTIFIER_COLUMNS.columns
        }
