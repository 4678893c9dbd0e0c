"""Tests for the visitas CLI."""

import base64

import pytest
from typer.testing import CliRunner

from visitas_core.cli import app

from tests.conftest import AUDIT_HMAC_KEY, KMS_KEY


runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    monkeypatch.setenv("VISITAS_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("VISITAS_KMS_KEY", KMS_KEY)
    monkeypatch.setenv("VISITAS_AUDIT_HMAC_KEY", AUDIT_HMAC_KEY)

    from visitas_core.common.config import get_settings
    from visitas_core.deps import reset_singletons

    get_settings.cache_clear()
    reset_singletons()
    yield
    get_settings.cache_clear()
    reset_singletons()


class TestCLI:
    def test_generate_key(self):
        result = runner.invoke(app, ["generate-key"])
        assert result.exit_code == 0
        assert len(base64.urlsafe_b64decode(result.output.strip())) == 32

    def test_init_db_then_empty_report(self, cli_env):
        result = runner.invoke(app, ["init-db"])
        assert result.exit_code == 0
        assert "Tables created" in result.output

        report = runner.invoke(app, ["audit-report", "--failed"])
        assert report.exit_code == 0
        assert "Audit entries" in report.output

        verify = runner.invoke(app, ["audit-verify", "P1"])
        assert verify.exit_code == 0
        assert "VALID" in verify.output

    def test_report_needs_one_filter(self, cli_env):
        result = runner.invoke(app, ["audit-report"])
        assert result.exit_code == 2
