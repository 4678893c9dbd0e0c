"""Visitas-Core configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# 32 zero bytes, urlsafe-base64 encoded. Never valid outside development.
_INSECURE_KMS_KEY = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="

_INSECURE_DEFAULTS = {
    "kms_key": _INSECURE_KMS_KEY,
    "audit_hmac_key": "insecure-audit-hmac-key-change-me",
}


def _parse_keyring(raw: str, env_var: str) -> dict[int, str]:
    try:
        parsed = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise ValueError(
            f"{env_var} must be valid JSON (e.g. '{{\"0\": \"key\"}}'), got: {raw!r}"
        ) from exc
    return {int(k): v for k, v in parsed.items()}


class VisitasSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VISITAS_")

    environment: str = "development"
    log_level: str = "INFO"

    # Database
    db_url: str = "sqlite+aiosqlite:///./data/visitas.db"
    # "googlesql" keeps @name placeholders, "postgresql" rewrites them to $N
    sql_dialect: str = "googlesql"
    store_timeout: float = 10.0  # seconds
    strict_statements: bool = False

    # Key management
    key_backend: str = "local"  # local | cloudkms
    kms_key: str = _INSECURE_KMS_KEY

    # Local keyring: JSON dict mapping version (int) to urlsafe-base64 AES-256 key.
    # e.g. '{"0": "old-key", "1": "new-key"}'
    # When set, kms_key is ignored.  When empty, kms_key is used as version 0.
    kms_keys: str = ""

    # projects/{p}/locations/{l}/keyRings/{r}/cryptoKeys/{k}
    kms_key_name: str = ""
    kms_timeout: float = 10.0

    # Audit entry signatures, same keyring rules as kms_keys
    audit_hmac_key: str = "insecure-audit-hmac-key-change-me"
    audit_hmac_keys: str = ""

    # Pagination
    default_page_size: int = 50
    max_page_size: int = 200

    @property
    def kms_keyring(self) -> dict[int, str]:
        """Return the local encryption keyring as {version_int: key_str}."""
        if self.kms_keys:
            return _parse_keyring(self.kms_keys, "VISITAS_KMS_KEYS")
        return {0: self.kms_key}

    @property
    def current_kms_version(self) -> int:
        return max(self.kms_keyring.keys())

    @property
    def audit_keyring(self) -> dict[int, str]:
        """Return the audit HMAC keyring as {version_int: key_str}."""
        if self.audit_hmac_keys:
            return _parse_keyring(self.audit_hmac_keys, "VISITAS_AUDIT_HMAC_KEYS")
        return {0: self.audit_hmac_key}

    @property
    def current_audit_key(self) -> str:
        """Return the audit HMAC key for the current (highest) version."""
        ring = self.audit_keyring
        return ring[max(ring.keys())]

    def validate_for_production(self) -> None:
        """Raise if insecure defaults are used in non-development environments."""
        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]
        # A configured keyring replaces the scalar key entirely.
        if self.kms_keys and "kms_key" in insecure_fields:
            insecure_fields.remove("kms_key")
        if self.audit_hmac_keys and "audit_hmac_key" in insecure_fields:
            insecure_fields.remove("audit_hmac_key")
        if self.key_backend == "cloudkms" and "kms_key" in insecure_fields:
            insecure_fields.remove("kms_key")

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"VISITAS_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate a key with: visitas generate-key"
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys - set VISITAS_KMS_KEY and "
                "VISITAS_AUDIT_HMAC_KEY for production",
                UserWarning,
                stacklevel=2,
            )

        if self.key_backend == "cloudkms" and not self.kms_key_name:
            raise RuntimeError(
                "VISITAS_KMS_KEY_NAME is required when VISITAS_KEY_BACKEND=cloudkms"
            )


@lru_cache
def get_settings() -> VisitasSettings:
    settings = VisitasSettings()
    settings.validate_for_production()
    return settings
