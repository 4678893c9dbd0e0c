"""Dependency injection singletons for Visitas-Core."""

from visitas_core.audit.service import AuditTrail
from visitas_core.common.config import get_settings
from visitas_core.common.database import DatabaseManager
from visitas_core.common.statements import StatementBuilder
from visitas_core.common.store import RowStore
from visitas_core.crypto.keys import KeyService, LocalKeyService
from visitas_core.crypto.service import EnvelopeEncryptionService
from visitas_core.identifiers.service import IdentifierVault
from visitas_core.orders.service import MedicationOrderRepository
from visitas_core.records.service import MedicalRecordRepository

_db: DatabaseManager | None = None
_builder: StatementBuilder | None = None
_store: RowStore | None = None
_key_service: KeyService | None = None
_encryption: EnvelopeEncryptionService | None = None
_audit: AuditTrail | None = None
_vault: IdentifierVault | None = None
_records: MedicalRecordRepository | None = None
_orders: MedicationOrderRepository | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_statement_builder() -> StatementBuilder:
    global _builder
    if _builder is None:
        settings = get_settings()
        _builder = StatementBuilder(settings.sql_dialect, strict=settings.strict_statements)
    return _builder


def get_store() -> RowStore:
    global _store
    if _store is None:
        _store = RowStore(
            get_db(), get_statement_builder(), timeout=get_settings().store_timeout,
        )
    return _store


def get_key_service() -> KeyService:
    global _key_service
    if _key_service is None:
        settings = get_settings()
        if settings.key_backend == "cloudkms":
            from visitas_core.crypto.cloud_kms import CloudKMSKeyService
            _key_service = CloudKMSKeyService(
                settings.kms_key_name, timeout=settings.kms_timeout,
            )
        elif settings.key_backend == "local":
            _key_service = LocalKeyService(settings.kms_keyring)
        else:
            raise RuntimeError(f"Unknown VISITAS_KEY_BACKEND: {settings.key_backend!r}")
    return _key_service


def get_encryption_service() -> EnvelopeEncryptionService:
    global _encryption
    if _encryption is None:
        _encryption = EnvelopeEncryptionService(get_key_service())
    return _encryption


def get_audit_trail() -> AuditTrail:
    global _audit
    if _audit is None:
        _audit = AuditTrail(get_settings(), get_store())
    return _audit


def get_identifier_vault() -> IdentifierVault:
    global _vault
    if _vault is None:
        _vault = IdentifierVault(
            get_store(), get_encryption_service(), get_audit_trail(),
        )
    return _vault


def get_medical_record_repository() -> MedicalRecordRepository:
    global _records
    if _records is None:
        _records = MedicalRecordRepository(get_store())
    return _records


def get_medication_order_repository() -> MedicationOrderRepository:
    global _orders
    if _orders is None:
        _orders = MedicationOrderRepository(get_store())
    return _orders


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _builder, _store, _key_service, _encryption, _audit, _vault, _records, _orders
    _db = None
    _builder = None
    _store = None
    _key_service = None
    _encryption = None
    _audit = None
    _vault = None
    _records = None
    _orders = None
