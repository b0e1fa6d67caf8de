"""
Parsing and classification of Bitrix24 outbound webhooks.

Bitrix posts either form data (``event``, ``data[FIELDS][ID]``,
``auth[domain]``) or JSON with the same structure nested.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs

logger = logging.getLogger(__name__)


LEAD_EVENTS = {
    "ONCRM_LEAD_ADD",
    "ONCRM_LEAD_UPDATE",
    "ONCRM_LEAD_DELETE",
    "ONCRMLEADADD",
    "ONCRMLEADUPDATE",
    "ONCRMLEADDELETE",
}

DEAL_EVENTS = {
    "ONCRM_DEAL_ADD",
    "ONCRM_DEAL_UPDATE",
    "ONCRM_DEAL_DELETE",
    "ONCRMDEALADD",
    "ONCRMDEALUPDATE",
    "ONCRMDEALDELETE",
}


class WebhookPayloadError(ValueError):
    """Body could not be decoded."""


@dataclass
class WebhookEvent:
    """A parsed webhook call."""
    event: str
    entity_id: Optional[str]
    domain: Optional[str] = None

    @property
    def action(self) -> str:
        """'add', 'update' or 'delete'."""
        if "DELETE" in self.event:
            return "delete"
        if "ADD" in self.event:
            return "add"
        return "update"

    @property
    def is_delete(self) -> bool:
        return self.action == "delete"


def parse_webhook(body: bytes, content_type: Optional[str]) -> WebhookEvent:
    """
    Decode a webhook body.

    Raises:
        WebhookPayloadError: JSON body that does not decode to an object
    """
    content_type = (content_type or "").lower()

    if "application/x-www-form-urlencoded" in content_type:
        params = parse_qs(body.decode("utf-8", errors="replace"))

        def first(key: str) -> Optional[str]:
            values = params.get(key)
            return values[0] if values else None

        return WebhookEvent(
            event=(first("event") or "").upper(),
            entity_id=first("data[FIELDS][ID]") or None,
            domain=first("auth[domain]")
        )

    try:
        payload: Any = json.loads(body or b"{}")
    except ValueError as e:
        raise WebhookPayloadError(f"Invalid JSON body: {e}")

    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    data = payload.get("data")
    fields = data.get("FIELDS") if isinstance(data, dict) else None
    auth = payload.get("auth")

    entity_id = fields.get("ID") if isinstance(fields, dict) else None

    return WebhookEvent(
        event=str(payload.get("event") or "").upper(),
        entity_id=str(entity_id) if entity_id not in (None, "") else None,
        domain=auth.get("domain") if isinstance(auth, dict) else None
    )


def is_lead_event(event: WebhookEvent) -> bool:
    return event.event in LEAD_EVENTS


def is_deal_event(event: WebhookEvent) -> bool:
    return event.event in DEAL_EVENTS
