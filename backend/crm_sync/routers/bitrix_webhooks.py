"""
Inbound Bitrix24 webhooks (outbound events configured on the Bitrix side).
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Callable
import logging

from crm_sync.database import get_db
from crm_sync.services.bitrix_client import BitrixAPIError, BitrixClient
from crm_sync.services.deal_webhook import DealWebhookHandler
from crm_sync.services.lead_webhook import LeadWebhookHandler
from crm_sync.services.webhook_parser import (
    WebhookEvent,
    WebhookPayloadError,
    is_deal_event,
    is_lead_event,
    parse_webhook,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks/bitrix", tags=["bitrix-webhooks"])


def get_bitrix_client() -> BitrixClient:
    """Dependency; overridden in tests."""
    return BitrixClient()


async def _parse(request: Request) -> WebhookEvent:
    body = await request.body()
    try:
        return parse_webhook(body, request.headers.get("content-type"))
    except WebhookPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


async def _dispatch(event: WebhookEvent, handler, entity: str, accepts: Callable[[WebhookEvent], bool]):
    logger.info(f"📥 Bitrix webhook {event.event} for {entity} {event.entity_id}")

    if not accepts(event):
        logger.info(f"⚠️ Ignoring unsupported event: {event.event}")
        return {"success": True, "message": "Event ignored"}

    if not event.entity_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{entity.capitalize()} ID missing")

    try:
        int(event.entity_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {entity} ID '{event.entity_id}'")

    try:
        return await handler.handle(event)
    except BitrixAPIError as e:
        logger.error(f"❌ Bitrix24 error handling {entity} {event.entity_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logger.error(f"❌ Error handling {entity} webhook {event.entity_id}: {e}", exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/lead")
async def bitrix_lead_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    bitrix: BitrixClient = Depends(get_bitrix_client)
):
    """ONCRM_LEAD_* events."""
    event = await _parse(request)
    return await _dispatch(event, LeadWebhookHandler(db, bitrix), "lead", is_lead_event)


@router.post("/deal")
async def bitrix_deal_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    bitrix: BitrixClient = Depends(get_bitrix_client)
):
    """ONCRM_DEAL_* events."""
    event = await _parse(request)
    return await _dispatch(event, DealWebhookHandler(db, bitrix), "deal", is_deal_event)
