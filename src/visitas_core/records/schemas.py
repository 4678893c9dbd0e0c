"""Pydantic schemas for medical records."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from visitas_core.common.versioning import VersionedEntity

VisitType = Literal["regular", "emergency", "initial", "follow_up", "terminal_care"]
RecordStatus = Literal["draft", "in_progress", "completed", "cancelled"]
SourceType = Literal["manual", "voice_to_text", "ai_generated", "template"]


class MedicalRecord(VersionedEntity):
    record_id: str
    subject_id: str
    visit_started_at: datetime
    visit_ended_at: Optional[datetime] = None
    visit_type: VisitType
    performed_by: str
    status: RecordStatus
    schedule_id: Optional[str] = None
    soap_content: Optional[dict[str, Any]] = None
    template_id: Optional[str] = None
    source_record_id: Optional[str] = None
    source_type: SourceType = "manual"
    audio_file_url: Optional[str] = None

    @property
    def has_ai_assistance(self) -> bool:
        return self.source_type in ("voice_to_text", "ai_generated")


class MedicalRecordCreate(BaseModel):
    visit_started_at: datetime
    visit_ended_at: Optional[datetime] = None
    visit_type: VisitType
    performed_by: str = Field(min_length=1)
    status: RecordStatus
    schedule_id: Optional[str] = None
    soap_content: Optional[dict[str, Any]] = None
    template_id: Optional[str] = None
    source_record_id: Optional[str] = None
    source_type: SourceType = "manual"
    audio_file_url: Optional[str] = None


class MedicalRecordPatch(BaseModel):
    """Sparse update; only explicitly set fields are written."""

    visit_ended_at: Optional[datetime] = None
    visit_type: Optional[VisitType] = None
    status: Optional[RecordStatus] = None
    soap_content: Optional[dict[str, Any]] = None
    schedule_id: Optional[str] = None
    template_id: Optional[str] = None
    audio_file_url: Optional[str] = None

    @field_validator("visit_type", "status")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class MedicalRecordFilter(BaseModel):
    subject_id: Optional[str] = None
    performed_by: Optional[str] = None
    status: Optional[RecordStatus] = None
    visit_type: Optional[VisitType] = None
    visit_started_from: Optional[datetime] = None
    visit_started_to: Optional[datetime] = None
    limit: int = Field(default=100, ge=1)
    offset: int = Field(default=0, ge=0)
