"""SQLAlchemy model for patient identifiers."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visitas_core.common.models import Base, SoftDeleteMixin, TimestampMixin, generate_uuid


class PatientIdentifierModel(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "patient_identifiers"
    __table_args__ = (
        # Not unique: primary exclusivity per (patient, type) is not enforced.
        Index("ix_identifier_primary", "patient_id", "identifier_type", "is_primary"),
    )

    identifier_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    patient_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    identifier_type: Mapped[str] = mapped_column(String(32), nullable=False)
    # Base64 ciphertext for national_id, plaintext for every other type
    identifier_value: Mapped[str] = mapped_column(Text, nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    valid_from: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    valid_to: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    issuer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    issuer_code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    verification_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unverified")
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verified_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
