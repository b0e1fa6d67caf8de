"""Audit rows for synchronized records: SyncEvent and ExportError."""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.models import ExportError, SyncEvent
from crm_sync.services.field_mapper import json_safe

logger = logging.getLogger(__name__)


EXPORT_DIRECTION = "local_to_scouter"
BITRIX_DIRECTION = "bitrix_to_local"


class EventRecorder:
    """
    Appends audit rows.

    A failed audit write is logged and rolled back; it never changes the
    outcome of the record it describes.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def record_event(
        self,
        event_type: str,
        direction: str,
        lead_id: Optional[int],
        status: str,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        field_mappings: Optional[Dict[str, Any]] = None,
        fields_synced_count: Optional[int] = None
    ) -> bool:
        """Append one SyncEvent. Returns False when the write failed."""
        try:
            event = SyncEvent(
                event_type=event_type,
                direction=direction,
                lead_id=lead_id,
                status=status,
                sync_duration_ms=duration_ms,
                error_message=error_message,
                field_mappings=json_safe(field_mappings) if field_mappings else None,
                fields_synced_count=fields_synced_count
            )
            self.db.add(event)
            await self.db.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to record sync event for lead {lead_id}: {e}")
            await self.db.rollback()
            return False

    async def record_error(
        self,
        job_id: UUID,
        lead_id: Optional[int],
        lead_snapshot: Optional[Dict[str, Any]],
        fields_sent: Optional[Dict[str, Any]],
        error_message: str,
        error_details: Optional[Dict[str, Any]] = None,
        ignored_fields: Optional[List[str]] = None
    ) -> bool:
        """Append one ExportError. Returns False when the write failed."""
        try:
            error = ExportError(
                job_id=job_id,
                lead_id=lead_id,
                lead_snapshot=json_safe(lead_snapshot),
                fields_sent=json_safe(fields_sent),
                ignored_fields=ignored_fields or None,
                error_message=error_message,
                error_details=json_safe(error_details)
            )
            self.db.add(error)
            await self.db.commit()
            return True
        except Exception as e:
            logger.error(f"Failed to record export error for lead {lead_id}: {e}")
            await self.db.rollback()
            return False
