"""
Deal webhook handler: Bitrix24 deal -> local ``deals`` row plus a derived
negotiation whose status follows the deal stage.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.models import Deal, Lead, Negotiation
from crm_sync.services.bitrix_client import BitrixAPIError, BitrixClient
from crm_sync.services.field_mapper import json_safe, parse_datetime, parse_money
from crm_sync.services.stage_mapping import load_stage_mapping, pipeline_id_for, status_for_stage
from crm_sync.services.webhook_parser import WebhookEvent

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _is_blank(value: Any) -> bool:
    return value is None or value == "" or value == "0" or value == 0


def _first_multifield(values: Any) -> Optional[str]:
    """First VALUE of a Bitrix multifield (PHONE, EMAIL)."""
    if isinstance(values, list) and values:
        first = values[0]
        if isinstance(first, dict):
            return first.get("VALUE")
    return None


def contact_details(contact: Optional[Dict[str, Any]], fallback_name: str) -> Tuple[str, Optional[str], Optional[str]]:
    """(name, phone, email) from a Bitrix contact."""
    if not contact:
        return fallback_name, None, None

    name = " ".join(part for part in (contact.get("NAME"), contact.get("LAST_NAME")) if part)
    return name or fallback_name, _first_multifield(contact.get("PHONE")), _first_multifield(contact.get("EMAIL"))


class DealWebhookHandler:
    """Processes one deal webhook event against the local store."""

    def __init__(self, db: AsyncSession, bitrix: BitrixClient):
        self.db = db
        self.bitrix = bitrix

    async def handle(self, event: WebhookEvent) -> Dict[str, Any]:
        bitrix_deal_id = int(event.entity_id)

        if event.is_delete:
            return await self._delete(bitrix_deal_id)

        deal = await self.bitrix.get_deal(event.entity_id)
        if not deal:
            logger.warning(f"⚠️ Deal {bitrix_deal_id} not found in Bitrix, skipping")
            return {"success": True, "skipped": True, "message": "Deal not found in Bitrix", "bitrix_deal_id": bitrix_deal_id}

        client_name, client_phone, client_email = await self._resolve_contact(
            deal.get("CONTACT_ID"), deal.get("TITLE") or "Unidentified client"
        )
        local_lead_id = await self._local_lead_id(deal.get("LEAD_ID"))

        deal_values = {
            "bitrix_deal_id": bitrix_deal_id,
            "title": deal.get("TITLE") or f"Deal #{bitrix_deal_id}",
            "stage_id": deal.get("STAGE_ID"),
            "category_id": str(deal["CATEGORY_ID"]) if deal.get("CATEGORY_ID") not in (None, "") else None,
            "opportunity": parse_money(deal.get("OPPORTUNITY")),
            "currency_id": deal.get("CURRENCY_ID"),
            "company_id": _to_int(deal.get("COMPANY_ID")),
            "contact_id": _to_int(deal.get("CONTACT_ID")),
            "bitrix_lead_id": _to_int(deal.get("LEAD_ID")),
            "lead_id": local_lead_id,
            "assigned_by_id": _to_int(deal.get("ASSIGNED_BY_ID")),
            "created_date": parse_datetime(deal.get("DATE_CREATE")),
            "close_date": parse_datetime(deal.get("CLOSEDATE")),
            "date_modify": parse_datetime(deal.get("DATE_MODIFY")),
            "client_name": client_name,
            "client_phone": client_phone,
            "client_email": client_email,
            "raw": json_safe(deal),
            "last_sync_at": datetime.now(timezone.utc),
            "sync_status": "synced",
        }

        deal_id = await self._upsert_deal(deal_values)
        logger.info(f"✅ Deal {bitrix_deal_id} saved as {deal_id}")

        pipeline_id = pipeline_id_for(deal.get("CATEGORY_ID"))
        stage_mapping = await load_stage_mapping(self.db, pipeline_id)
        status = status_for_stage(stage_mapping, deal.get("STAGE_ID"))

        await self._sync_negotiation(deal_id, deal_values, status, pipeline_id)

        return {"success": True, "dealId": str(deal_id), "bitrix_deal_id": bitrix_deal_id}

    async def _delete(self, bitrix_deal_id: int) -> Dict[str, Any]:
        """Negotiations by Bitrix id, then by local deal id, then the deal."""
        try:
            await self.db.execute(delete(Negotiation).where(Negotiation.bitrix_deal_id == bitrix_deal_id))

            result = await self.db.execute(select(Deal.id).where(Deal.bitrix_deal_id == bitrix_deal_id))
            deal_id = result.scalar()
            if deal_id is not None:
                await self.db.execute(delete(Negotiation).where(Negotiation.deal_id == deal_id))

            await self.db.execute(delete(Deal).where(Deal.bitrix_deal_id == bitrix_deal_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"🗑️ Deal {bitrix_deal_id} and its negotiations deleted")
        return {"success": True, "message": "Deal and negotiations deleted", "bitrix_deal_id": bitrix_deal_id}

    async def _resolve_contact(self, contact_id: Any, fallback_name: str):
        if _is_blank(contact_id):
            return fallback_name, None, None

        try:
            contact = await self.bitrix.get_contact(str(contact_id))
        except BitrixAPIError as e:
            logger.warning(f"⚠️ Could not fetch contact {contact_id}: {e}")
            return fallback_name, None, None

        return contact_details(contact, fallback_name)

    async def _local_lead_id(self, bitrix_lead_id: Any) -> Optional[int]:
        lead_id = _to_int(bitrix_lead_id)
        if lead_id is None:
            return None

        result = await self.db.execute(select(Lead.id).where(Lead.id == lead_id))
        return result.scalar()

    async def _upsert_deal(self, values: Dict[str, Any]):
        stmt = pg_insert(Deal).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Deal.bitrix_deal_id],
            set_={name: stmt.excluded[name] for name in values if name != "bitrix_deal_id"}
        ).returning(Deal.id)

        try:
            result = await self.db.execute(stmt)
            deal_id = result.scalar_one()
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return deal_id

    async def _sync_negotiation(self, deal_id, deal_values: Dict[str, Any], status: str, pipeline_id: str) -> None:
        result = await self.db.execute(
            select(Negotiation.id, Negotiation.status).where(Negotiation.deal_id == deal_id).limit(1)
        )
        existing = result.first()

        if existing is not None:
            if existing.status == status:
                return

            try:
                await self.db.execute(
                    update(Negotiation)
                    .where(Negotiation.id == existing.id)
                    .values(status=status, pipeline_id=pipeline_id, updated_at=datetime.now(timezone.utc))
                )
                await self.db.commit()
                logger.info(f"Negotiation {existing.id}: {existing.status} -> {status} (pipeline {pipeline_id})")
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.warning(f"⚠️ Could not update negotiation {existing.id}: {e}")
            return

        base_value = deal_values.get("opportunity") or 0
        negotiation = Negotiation(
            deal_id=deal_id,
            bitrix_deal_id=deal_values["bitrix_deal_id"],
            title=deal_values.get("title") or f"Negotiation #{deal_values['bitrix_deal_id']}",
            client_name=deal_values.get("client_name"),
            client_phone=deal_values.get("client_phone"),
            client_email=deal_values.get("client_email"),
            status=status,
            pipeline_id=pipeline_id,
            base_value=base_value,
            total_value=base_value,
            start_date=datetime.now(timezone.utc)
        )

        try:
            self.db.add(negotiation)
            await self.db.commit()
            logger.info(f"🆕 Negotiation created for deal {deal_id} (status: {status}, pipeline: {pipeline_id})")
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"❌ Could not create negotiation for deal {deal_id}: {e}")