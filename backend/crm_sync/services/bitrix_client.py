"""
Bitrix24 REST client.

Webhooks only carry the entity ID, so handlers fetch the full record here.
URLs follow the inbound-webhook form https://{domain}/rest/{token}/{method}.
"""

import httpx
import logging
from typing import Any, Dict, Optional

from crm_sync.config import settings

logger = logging.getLogger(__name__)


class BitrixAPIError(Exception):
    """Bitrix24 could not be reached or rejected the call."""


class BitrixClient:
    """Thin async client over the Bitrix24 REST API."""

    def __init__(
        self,
        domain: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.domain = domain or settings.BITRIX_DOMAIN
        self.token = token or settings.BITRIX_REST_TOKEN
        self.timeout = timeout or settings.BITRIX_TIMEOUT
        self._transport = transport

    @property
    def base_url(self) -> str:
        return f"https://{self.domain}/rest/{self.token.strip('/')}"

    async def _call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Optional[Any]:
        """
        GET ``method`` and return its ``result``.

        Returns None when Bitrix answers without a result (entity not found).
        Raises BitrixAPIError on transport failures, auth errors and 5xx.
        """
        if not self.token:
            raise BitrixAPIError("BITRIX_REST_TOKEN is not configured")

        url = f"{self.base_url}/{method}"

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(url, params=params)
        except httpx.TimeoutException:
            raise BitrixAPIError(f"Timeout calling {method}")
        except httpx.RequestError as e:
            raise BitrixAPIError(f"Connection error calling {method}: {e}")

        if response.status_code in (401, 403) or response.status_code >= 500:
            logger.error(f"Bitrix24 {method} returned {response.status_code}: {response.text[:200]}")
            raise BitrixAPIError(f"{method} returned {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise BitrixAPIError(f"{method} returned a non-JSON body")

        result = data.get("result") if isinstance(data, dict) else None
        if not result:
            error = data.get("error_description") or data.get("error") if isinstance(data, dict) else None
            logger.warning(f"Bitrix24 {method} {params} returned no result: {error}")
            return None

        return result

    async def get_lead(self, lead_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("crm.lead.get", {"ID": lead_id})

    async def get_deal(self, deal_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("crm.deal.get", {"ID": deal_id})

    async def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        return await self._call("crm.contact.get", {"ID": contact_id})
