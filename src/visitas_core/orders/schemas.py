"""Pydantic schemas for medication orders (FHIR MedicationRequest shaped)."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from visitas_core.common.versioning import VersionedEntity

OrderStatus = Literal["active", "on-hold", "cancelled", "completed", "entered-in-error"]
OrderIntent = Literal["order", "plan"]


class MedicationOrder(VersionedEntity):
    order_id: str
    subject_id: str
    status: OrderStatus
    intent: OrderIntent
    medication: dict[str, Any]
    dosage_instruction: dict[str, Any]
    prescribed_date: datetime
    prescribed_by: str
    dispense_pharmacy: Optional[dict[str, Any]] = None
    reason_reference: Optional[str] = None


class MedicationOrderCreate(BaseModel):
    status: OrderStatus
    intent: OrderIntent
    medication: dict[str, Any]
    dosage_instruction: dict[str, Any]
    prescribed_date: datetime
    prescribed_by: str = Field(min_length=1)
    dispense_pharmacy: Optional[dict[str, Any]] = None
    reason_reference: Optional[str] = None


class MedicationOrderPatch(BaseModel):
    status: Optional[OrderStatus] = None
    intent: Optional[OrderIntent] = None
    medication: Optional[dict[str, Any]] = None
    dosage_instruction: Optional[dict[str, Any]] = None
    prescribed_date: Optional[datetime] = None
    prescribed_by: Optional[str] = None
    dispense_pharmacy: Optional[dict[str, Any]] = None
    reason_reference: Optional[str] = None

    @field_validator(
        "status", "intent", "medication", "dosage_instruction",
        "prescribed_date", "prescribed_by",
    )
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class MedicationOrderFilter(BaseModel):
    subject_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    intent: Optional[OrderIntent] = None
    prescribed_by: Optional[str] = None
    prescribed_date_from: Optional[datetime] = None
    prescribed_date_to: Optional[datetime] = None
    reason_reference: Optional[str] = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
