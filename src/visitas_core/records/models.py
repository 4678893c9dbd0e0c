"""SQLAlchemy model for medical records."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visitas_core.common.models import Base, SoftDeleteMixin, TimestampMixin, generate_uuid


class MedicalRecordModel(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "medical_records"

    record_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    patient_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    visit_started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    visit_ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    visit_type: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    schedule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    soap_content: Mapped[str | None] = mapped_column(Text, nullable=True)
    template_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    source_record_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    source_type: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    audio_file_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
