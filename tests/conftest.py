"""Shared test fixtures for Visitas-Core."""

import base64

import pytest

from visitas_core.audit.service import AuditTrail
from visitas_core.common.config import VisitasSettings
from visitas_core.common.database import DatabaseManager
from visitas_core.common.security import AccessContext
from visitas_core.common.statements import StatementBuilder
from visitas_core.common.store import RowStore
from visitas_core.crypto.keys import LocalKeyService
from visitas_core.crypto.service import EnvelopeEncryptionService
from visitas_core.identifiers.service import IdentifierVault


KMS_KEY = base64.urlsafe_b64encode(b"\x11" * 32).decode()
AUDIT_HMAC_KEY = "test-audit-hmac-key-for-unit-tests"


def make_settings(**overrides) -> VisitasSettings:
    defaults = {
        "db_url": "sqlite+aiosqlite://",
        "kms_key": KMS_KEY,
        "audit_hmac_key": AUDIT_HMAC_KEY,
    }
    defaults.update(overrides)
    return VisitasSettings(**defaults)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def store(db):
    return RowStore(db, StatementBuilder("googlesql"))


@pytest.fixture
def encryption(settings):
    return EnvelopeEncryptionService(LocalKeyService(settings.kms_keyring))


@pytest.fixture
def audit_trail(settings, store):
    return AuditTrail(settings, store)


@pytest.fixture
def vault(store, encryption, audit_trail):
    return IdentifierVault(store, encryption, audit_trail)


@pytest.fixture
def context():
    return AccessContext(actor_id="nurse-01", ip_address="10.0.0.7", user_agent="pytest")
