"""Pydantic schemas for audit log entries."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class AuditAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    DECRYPT = "decrypt"


class AuditLogEntry(BaseModel):
    """One immutable access fact. id/event_time are stamped on write when unset."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    event_time: Optional[datetime] = None
    actor_id: str
    action: AuditAction
    resource_id: str = ""
    subject_id: str = ""
    accessed_fields: Optional[dict[str, Any]] = None
    success: bool = True
    error_message: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    entry_hash: Optional[str] = None
    signature: Optional[str] = None


class AuditVerification(BaseModel):
    valid: bool
    entries_checked: int
    break_at: Optional[str] = None
