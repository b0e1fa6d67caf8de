"""Schemas for the export job control surface."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ExportJobAction(str, Enum):
    CREATE = "create"
    PAUSE = "pause"
    RESUME = "resume"
    RESET = "reset"
    DELETE = "delete"


class ExportJobActionRequest(BaseModel):
    """
    Body of POST /api/v1/export-jobs.

    ``action`` is kept as a plain string so an unknown action is answered
    with 400 by the handler instead of a 422 validation error.
    """
    action: str
    job_id: Optional[UUID] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    field_mappings: Optional[Dict[str, str]] = Field(
        None, description="{destination_field: lead_field}; default mapping when omitted"
    )
    created_by: Optional[UUID] = None
    reason: Optional[str] = Field(None, description="Pause reason")


class ExportJobResponse(BaseModel):
    id: UUID
    status: str
    start_date: date
    end_date: Optional[date] = None
    processing_date: Optional[date] = None
    processing_offset: int = 0
    last_completed_date: Optional[date] = None
    total_leads: int = 0
    exported_leads: int = 0
    error_leads: int = 0
    pause_reason: Optional[str] = None
    field_mappings: Optional[Dict[str, str]] = None
    created_by: Optional[UUID] = None
    started_at: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ExportJobActionResponse(BaseModel):
    success: bool = True
    message: str
    job: Optional[ExportJobResponse] = None


class ExportErrorResponse(BaseModel):
    id: UUID
    job_id: UUID
    lead_id: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None
    fields_sent: Optional[Dict[str, Any]] = None
    ignored_fields: Optional[List[str]] = None
    lead_snapshot: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
