"""
Lead webhook handler: Bitrix24 lead -> local ``leads`` row.

Steps for add/update:
1. Fetch the full lead (crm.lead.get)
2. Resolve the commercial project and telemarketing operator
3. Apply configured field mappings (first non-empty source wins)
4. Upsert by id and record a sync event
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.config import settings
from crm_sync.models import AgentTelemarketingMapping, CommercialProject, FieldMappingConfig, Lead
from crm_sync.services.bitrix_client import BitrixClient
from crm_sync.services.event_recorder import BITRIX_DIRECTION, EventRecorder
from crm_sync.services.field_mapper import coerce_row, split_known_fields, to_iso, to_iso_date
from crm_sync.services.webhook_parser import WebhookEvent

logger = logging.getLogger(__name__)


PROJECT_CODE_FIELD = "UF_CRM_1741215746"
TELEMARKETING_FIELD = "PARENT_ID_1144"

LEAD_COLUMNS = {col.key: col.type for col in Lead.__table__.columns}

_SKIP = object()


def _is_empty(value: Any) -> bool:
    return value is None or value == ""


def apply_transform(value: Any, transform: Optional[str]) -> Any:
    """
    Apply a FieldMappingConfig transform.

    Returns the module-level ``_SKIP`` sentinel when the value cannot be
    transformed, meaning the next mapping for the same field should be tried.
    """
    if _is_empty(value) or not transform:
        return value

    if transform == "toNumber":
        try:
            return float(value)
        except (TypeError, ValueError):
            return _SKIP

    if transform == "toString":
        return str(value)

    if transform == "toBoolean":
        return value in ("1", "Y", True, 1)

    if transform == "toDate":
        return to_iso_date(value) or _SKIP

    if transform == "toTimestamp":
        return to_iso(value) or _SKIP

    logger.warning(f"Unknown transform '{transform}', using raw value")
    return value


def apply_field_mappings(
    bitrix_lead: Dict[str, Any],
    mappings: List[FieldMappingConfig]
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Resolve each local field from its mappings in priority order.

    Returns:
        (values by local field, applied mapping descriptions)
    """
    grouped: Dict[str, List[FieldMappingConfig]] = {}
    for mapping in sorted(mappings, key=lambda m: (m.local_field, m.sync_priority or 0)):
        grouped.setdefault(mapping.local_field, []).append(mapping)

    values: Dict[str, Any] = {}
    applied: List[Dict[str, Any]] = []

    for local_field, candidates in grouped.items():
        for mapping in candidates:
            value = apply_transform(bitrix_lead.get(mapping.bitrix_field), mapping.transform_function)

            if value is _SKIP:
                logger.warning(
                    f"Could not apply {mapping.transform_function} to {mapping.bitrix_field} "
                    f"for '{local_field}': {bitrix_lead.get(mapping.bitrix_field)!r}"
                )
                continue

            if _is_empty(value):
                continue

            values[local_field] = value
            applied.append({
                "bitrix_field": mapping.bitrix_field,
                "local_field": local_field,
                "value": value,
                "transformed": bool(mapping.transform_function),
                "transform_function": mapping.transform_function,
                "priority": mapping.sync_priority,
            })
            break

    return values, applied


class LeadWebhookHandler:
    """Processes one lead webhook event against the local store."""

    def __init__(self, db: AsyncSession, bitrix: BitrixClient):
        self.db = db
        self.bitrix = bitrix
        self.recorder = EventRecorder(db)

    async def handle(self, event: WebhookEvent) -> Dict[str, Any]:
        lead_id = int(event.entity_id)

        if event.is_delete:
            return await self._delete(lead_id)

        started = time.monotonic()

        bitrix_lead = await self.bitrix.get_lead(event.entity_id)
        if not bitrix_lead:
            logger.warning(f"⚠️ Lead {lead_id} not found in Bitrix, skipping")
            return {"success": True, "skipped": True, "message": "Lead not found in Bitrix", "leadId": lead_id}

        project_id = await self._resolve_project(bitrix_lead.get(PROJECT_CODE_FIELD))
        telemarketing_id, operator = await self._resolve_operator(bitrix_lead.get(TELEMARKETING_FIELD))

        mappings = await self._active_mappings()
        mapped, applied = apply_field_mappings(bitrix_lead, mappings)

        if _is_empty(mapped.get("responsible")) and operator is not None and operator.bitrix_telemarketing_name:
            mapped["responsible"] = operator.bitrix_telemarketing_name
            applied.append({
                "bitrix_field": TELEMARKETING_FIELD,
                "local_field": "responsible",
                "value": operator.bitrix_telemarketing_name,
                "transformed": False,
                "priority": 999,
            })

        now = datetime.now(timezone.utc)
        record: Dict[str, Any] = {
            **mapped,
            "id": lead_id,
            "raw": bitrix_lead,
            "sync_source": "bitrix",
            "sync_status": "synced",
            "last_sync_at": now,
            "date_modify": bitrix_lead.get("DATE_MODIFY") or mapped.get("date_modify"),
            "updated_at": bitrix_lead.get("DATE_MODIFY") or now,
            "commercial_project_id": project_id,
            "responsible_user_id": operator.local_user_id if operator else None,
            "bitrix_telemarketing_id": telemarketing_id,
        }

        await self._upsert(record)

        await self.recorder.record_event(
            "create" if event.action == "add" else "update",
            BITRIX_DIRECTION,
            lead_id,
            "success",
            duration_ms=int((time.monotonic() - started) * 1000),
            field_mappings={"bitrix_to_local": applied},
            fields_synced_count=len(applied)
        )

        logger.info(f"✅ Lead {lead_id} synced from Bitrix ({len(applied)} mapped field(s))")
        return {"success": True, "message": "Lead synchronized", "leadId": lead_id}

    async def _delete(self, lead_id: int) -> Dict[str, Any]:
        await self.db.execute(delete(Lead).where(Lead.id == lead_id))
        await self.db.commit()

        logger.info(f"🗑️ Lead {lead_id} deleted")
        return {"success": True, "message": "Lead deleted", "leadId": lead_id}

    async def _resolve_project(self, project_code: Any):
        if not _is_empty(project_code):
            project_id = await self._project_id_by_code(str(project_code))
            if project_id:
                return project_id
            logger.warning(f"⚠️ No active commercial project with code '{project_code}'")

        logger.info(f"Using default commercial project '{settings.DEFAULT_COMMERCIAL_PROJECT_CODE}'")
        return await self._project_id_by_code(settings.DEFAULT_COMMERCIAL_PROJECT_CODE)

    async def _project_id_by_code(self, code: str):
        result = await self.db.execute(
            select(CommercialProject.id)
            .where(CommercialProject.code == code, CommercialProject.active.is_(True))
            .limit(1)
        )
        return result.scalar()

    async def _resolve_operator(self, raw_id: Any) -> Tuple[Optional[int], Optional[AgentTelemarketingMapping]]:
        if _is_empty(raw_id):
            return None, None

        try:
            telemarketing_id = int(raw_id)
        except (TypeError, ValueError):
            logger.warning(f"Invalid telemarketing id {raw_id!r}")
            return None, None

        result = await self.db.execute(
            select(AgentTelemarketingMapping)
            .where(AgentTelemarketingMapping.bitrix_telemarketing_id == telemarketing_id)
        )
        return telemarketing_id, result.scalars().first()

    async def _active_mappings(self) -> List[FieldMappingConfig]:
        result = await self.db.execute(
            select(FieldMappingConfig)
            .where(FieldMappingConfig.sync_active.is_(True))
            .order_by(FieldMappingConfig.local_field, FieldMappingConfig.sync_priority)
        )
        return list(result.scalars().all())

    async def _upsert(self, record: Dict[str, Any]) -> None:
        known, ignored = split_known_fields(record, LEAD_COLUMNS)
        if ignored:
            logger.warning(f"Lead has no column(s) {', '.join(ignored)}; ignoring")

        row = coerce_row(LEAD_COLUMNS, known)

        stmt = pg_insert(Lead).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Lead.id],
            set_={name: stmt.excluded[name] for name in row if name != "id"}
        )

        try:
            await self.db.execute(stmt)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
