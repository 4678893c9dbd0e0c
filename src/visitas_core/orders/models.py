"""SQLAlchemy model for medication orders."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visitas_core.common.models import Base, SoftDeleteMixin, TimestampMixin, generate_uuid


class MedicationOrderModel(Base, TimestampMixin, SoftDeleteMixin):
    __tablename__ = "medication_orders"

    order_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    patient_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    intent: Mapped[str] = mapped_column(String(10), nullable=False)
    medication: Mapped[str] = mapped_column(Text, nullable=False)
    dosage_instruction: Mapped[str] = mapped_column(Text, nullable=False)
    prescribed_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    prescribed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    dispense_pharmacy: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason_reference: Mapped[str | None] = mapped_column(String(36), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    deleted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
