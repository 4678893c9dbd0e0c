"""Pydantic schemas for patient identifiers."""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class IdentifierKind(str, Enum):
    NATIONAL_ID = "national_id"  # encrypted at rest
    INSURANCE_ID = "insurance_id"
    CARE_INSURANCE_ID = "care_insurance_id"
    MRN = "mrn"
    OTHER = "other"


SENSITIVE_KINDS = frozenset({IdentifierKind.NATIONAL_ID})
ISSUER_REQUIRED_KINDS = frozenset({
    IdentifierKind.INSURANCE_ID, IdentifierKind.CARE_INSURANCE_ID,
})

NATIONAL_ID_RE = re.compile(r"[0-9]{12}")


class VerificationStatus(str, Enum):
    UNVERIFIED = "unverified"
    VERIFIED = "verified"
    EXPIRED = "expired"
    INVALID = "invalid"


class PatientIdentifier(BaseModel):
    identifier_id: str
    subject_id: str
    kind: IdentifierKind
    value: str
    is_primary: bool = False
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    issuer_name: str = ""
    issuer_code: str = ""
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    created_at: datetime
    created_by: str = ""
    updated_at: datetime
    updated_by: Optional[str] = None
    deleted: bool = False
    deleted_at: Optional[datetime] = None

    @property
    def is_sensitive(self) -> bool:
        return self.kind in SENSITIVE_KINDS

    def is_active(self, now: datetime | None = None) -> bool:
        """Live and inside its validity window."""
        if self.deleted:
            return False
        now = now or datetime.now(timezone.utc)
        if self.valid_from is not None and self.valid_from > now:
            return False
        if self.valid_to is not None and self.valid_to < now:
            return False
        return True


def _check_window(valid_from: datetime | None, valid_to: datetime | None) -> None:
    if valid_from is not None and valid_to is not None and valid_to < valid_from:
        raise ValueError("valid_to must not be before valid_from")


def check_national_id(value: str) -> None:
    if not NATIONAL_ID_RE.fullmatch(value):
        raise ValueError("national_id must be exactly 12 digits")


class IdentifierCreate(BaseModel):
    subject_id: str = Field(min_length=1)
    kind: IdentifierKind
    value: str = Field(min_length=1)
    is_primary: bool = False
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    issuer_name: str = ""
    issuer_code: str = ""

    @model_validator(mode="after")
    def _window(self) -> "IdentifierCreate":
        _check_window(self.valid_from, self.valid_to)
        return self

    @model_validator(mode="after")
    def _kind_rules(self) -> "IdentifierCreate":
        if self.kind in SENSITIVE_KINDS:
            check_national_id(self.value)
        if self.kind in ISSUER_REQUIRED_KINDS and not self.issuer_name.strip():
            raise ValueError(f"issuer_name is required for {self.kind.value}")
        return self


class IdentifierPatch(BaseModel):
    """Sparse update: only fields explicitly set are written.

    An omitted field is left untouched; ``valid_from=None`` passed
    explicitly clears the stored value.
    """

    value: Optional[str] = None
    is_primary: Optional[bool] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    issuer_name: Optional[str] = None
    issuer_code: Optional[str] = None
    verification_status: Optional[VerificationStatus] = None

    @field_validator("value", "is_primary", "issuer_name", "issuer_code", "verification_status")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v

    @field_validator("value")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("value cannot be empty")
        return v

    @model_validator(mode="after")
    def _window(self) -> "IdentifierPatch":
        _check_window(self.valid_from, self.valid_to)
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)
