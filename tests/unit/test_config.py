"""Tests for settings, keyrings and dependency wiring."""

import pytest

from visitas_core.common.config import VisitasSettings
from visitas_core.common.statements import Dialect
from visitas_core.crypto.keys import LocalKeyService

from tests.conftest import KMS_KEY, make_settings


class TestKeyrings:
    def test_scalar_key_is_version_zero(self):
        settings = make_settings()
        assert settings.kms_keyring == {0: KMS_KEY}
        assert settings.current_kms_version == 0

    def test_keyring_json(self):
        settings = make_settings(kms_keys=f'{{"0": "{KMS_KEY}", "2": "{KMS_KEY}"}}')
        assert set(settings.kms_keyring) == {0, 2}
        assert settings.current_kms_version == 2

    def test_audit_keyring_current(self):
        settings = make_settings(audit_hmac_keys='{"0": "old", "1": "new"}')
        assert settings.current_audit_key == "new"

    def test_bad_keyring_json(self):
        settings = make_settings(kms_keys="not-json")
        with pytest.raises(ValueError, match="VISITAS_KMS_KEYS"):
            settings.kms_keyring


class TestProductionValidation:
    def test_insecure_defaults_rejected_outside_development(self):
        settings = VisitasSettings(environment="production")
        with pytest.raises(RuntimeError, match="VISITAS_KMS_KEY"):
            settings.validate_for_production()

    def test_insecure_defaults_warn_in_development(self):
        settings = VisitasSettings(environment="development")
        with pytest.warns(UserWarning):
            settings.validate_for_production()

    def test_configured_keys_pass(self):
        settings = make_settings(environment="production")
        settings.validate_for_production()

    def test_cloudkms_requires_key_name(self):
        settings = make_settings(environment="production", key_backend="cloudkms")
        with pytest.raises(RuntimeError, match="VISITAS_KMS_KEY_NAME"):
            settings.validate_for_production()

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("VISITAS_SQL_DIALECT", "postgresql")
        monkeypatch.setenv("VISITAS_STRICT_STATEMENTS", "true")
        settings = VisitasSettings()
        assert settings.sql_dialect == "postgresql"
        assert settings.strict_statements is True


@pytest.fixture
def wired(monkeypatch):
    monkeypatch.setenv("VISITAS_DB_URL", "sqlite+aiosqlite://")
    monkeypatch.setenv("VISITAS_KMS_KEY", KMS_KEY)
    monkeypatch.setenv("VISITAS_AUDIT_HMAC_KEY", "test-audit-hmac-key-for-unit-tests")
    monkeypatch.setenv("VISITAS_SQL_DIALECT", "postgresql")

    from visitas_core.common.config import get_settings
    from visitas_core.deps import reset_singletons

    get_settings.cache_clear()
    reset_singletons()
    yield
    get_settings.cache_clear()
    reset_singletons()


class TestDeps:
    def test_singletons_share_store(self, wired):
        from visitas_core import deps

        vault = deps.get_identifier_vault()
        assert vault.store is deps.get_store()
        assert vault.audit is deps.get_audit_trail()
        assert deps.get_medical_record_repository().store is deps.get_store()
        assert deps.get_medication_order_repository() is deps.get_medication_order_repository()

    def test_builder_from_settings(self, wired):
        from visitas_core import deps

        assert deps.get_statement_builder().dialect is Dialect.POSTGRESQL

    def test_local_key_backend(self, wired):
        from visitas_core import deps

        assert isinstance(deps.get_key_service(), LocalKeyService)

    def test_unknown_key_backend(self, wired, monkeypatch):
        monkeypatch.setenv("VISITAS_KEY_BACKEND", "hsm")
        from visitas_core import deps
        from visitas_core.common.config import get_settings

        get_settings.cache_clear()
        with pytest.raises(RuntimeError, match="hsm"):
            deps.get_key_service()
