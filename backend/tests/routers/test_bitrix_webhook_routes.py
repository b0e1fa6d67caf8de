# tests/routers/test_bitrix_webhook_routes.py
"""
Route tests for /api/v1/webhooks/bitrix/{lead,deal}.

Handlers are patched; payload parsing runs for real against form-encoded
and JSON bodies the way Bitrix24 sends them.
"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from crm_sync.main import app
from crm_sync.routers.bitrix_webhooks import get_bitrix_client
from crm_sync.services.bitrix_client import BitrixAPIError

LEAD_URL = "/api/v1/webhooks/bitrix/lead"
DEAL_URL = "/api/v1/webhooks/bitrix/deal"


@pytest.fixture
def bitrix(client):
    bitrix = Mock()
    app.dependency_overrides[get_bitrix_client] = lambda: bitrix
    return bitrix


@pytest.fixture
def lead_handler(bitrix):
    handler = Mock(handle=AsyncMock(return_value={"success": True, "message": "Lead synchronized", "leadId": 123}))
    with patch("crm_sync.routers.bitrix_webhooks.LeadWebhookHandler", return_value=handler) as cls:
        handler.cls = cls
        yield handler


@pytest.fixture
def deal_handler(bitrix):
    handler = Mock(handle=AsyncMock(return_value={"success": True, "dealId": "abc", "bitrix_deal_id": 900}))
    with patch("crm_sync.routers.bitrix_webhooks.DealWebhookHandler", return_value=handler):
        yield handler


class TestLeadWebhook:
    def test_form_encoded_event(self, client, lead_handler, mock_db, bitrix):
        response = client.post(LEAD_URL, data={
            "event": "ONCRMLEADUPDATE",
            "data[FIELDS][ID]": "123",
            "auth[domain]": "maxsystem.bitrix24.com.br",
        })

        assert response.status_code == 200
        assert response.json()["leadId"] == 123
        event = lead_handler.handle.await_args.args[0]
        assert event.event == "ONCRMLEADUPDATE"
        assert event.entity_id == "123"
        lead_handler.cls.assert_called_once_with(mock_db, bitrix)

    def test_json_event(self, client, lead_handler):
        response = client.post(LEAD_URL, json={"event": "ONCRM_LEAD_ADD", "data": {"FIELDS": {"ID": 123}}})

        assert response.status_code == 200
        assert lead_handler.handle.await_args.args[0].entity_id == "123"

    def test_unsupported_event_is_ignored(self, client, lead_handler):
        response = client.post(LEAD_URL, json={"event": "ONCRMDEALUPDATE", "data": {"FIELDS": {"ID": 1}}})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Event ignored"}
        lead_handler.handle.assert_not_awaited()

    def test_missing_id(self, client, lead_handler):
        response = client.post(LEAD_URL, json={"event": "ONCRM_LEAD_UPDATE", "data": {}})

        assert response.status_code == 400
        assert response.json()["detail"] == "Lead ID missing"

    def test_non_object_data_is_missing_id(self, client, lead_handler):
        response = client.post(LEAD_URL, json={"event": "ONCRM_LEAD_UPDATE", "data": "x"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Lead ID missing"

    def test_non_numeric_id(self, client, lead_handler):
        response = client.post(LEAD_URL, data={"event": "ONCRMLEADUPDATE", "data[FIELDS][ID]": "abc"})

        assert response.status_code == 400

    def test_malformed_body(self, client, lead_handler):
        response = client.post(LEAD_URL, content=b"{not json", headers={"content-type": "application/json"})

        assert response.status_code == 400

    def test_bitrix_failure_is_bad_gateway(self, client, lead_handler):
        lead_handler.handle.side_effect = BitrixAPIError("Bitrix24 returned 503")

        response = client.post(LEAD_URL, json={"event": "ONCRM_LEAD_UPDATE", "data": {"FIELDS": {"ID": 1}}})

        assert response.status_code == 502

    def test_handler_failure_is_server_error(self, client, lead_handler):
        lead_handler.handle.side_effect = RuntimeError("deadlock detected")

        response = client.post(LEAD_URL, json={"event": "ONCRM_LEAD_UPDATE", "data": {"FIELDS": {"ID": 1}}})

        assert response.status_code == 500
        assert "deadlock" in response.json()["detail"]


class TestDealWebhook:
    def test_deal_event(self, client, deal_handler):
        response = client.post(DEAL_URL, data={"event": "ONCRMDEALADD", "data[FIELDS][ID]": "900"})

        assert response.status_code == 200
        assert response.json()["bitrix_deal_id"] == 900
        assert deal_handler.handle.await_args.args[0].entity_id == "900"

    def test_lead_event_on_deal_route_is_ignored(self, client, deal_handler):
        response = client.post(DEAL_URL, data={"event": "ONCRMLEADADD", "data[FIELDS][ID]": "900"})

        assert response.json()["message"] == "Event ignored"
        deal_handler.handle.assert_not_awaited()

    def test_missing_deal_id(self, client, deal_handler):
        response = client.post(DEAL_URL, json={"event": "ONCRM_DEAL_DELETE"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Deal ID missing"


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert "export_jobs" in body["tables"]
