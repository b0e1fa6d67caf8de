# tests/integration/test_export_jobs_api_integration.py
"""
Job control surface end to end: the router's session dependency yields real
AsyncSessions, so responses are built from rows the ledger just committed.
"""

import httpx
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, patch

from crm_sync.database import get_db
from crm_sync.main import app

BASE = "/api/v1/export-jobs"


@pytest_asyncio.fixture
async def api(local_sessions, wired_databases):
    async def _get_db():
        async with local_sessions() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        with patch("crm_sync.routers.export_jobs.destination_configured", return_value=True):
            yield client
    app.dependency_overrides.clear()


async def act(api, action, **body):
    response = await api.post(BASE, json={"action": action, **body})
    assert response.status_code == 200, response.text
    return response.json()["job"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_pause_resume_reset_round_trip(api, seed_leads, destination_ids):
    await seed_leads({10: 3, 9: 2})

    with patch("crm_sync.routers.export_jobs.run_export_job", AsyncMock()) as deferred:
        job = await act(api, "create", start_date="2024-01-10", end_date="2024-01-09")
        assert job["status"] == "pending"
        deferred.assert_awaited_once()

        paused = await act(api, "pause", job_id=job["id"], reason="maintenance")
        assert paused["status"] == "paused"
        assert paused["pause_reason"] == "maintenance"
        assert paused["paused_at"] is not None
        assert paused["updated_at"] is not None

    # Resume runs the real driver as a background task
    resumed = await act(api, "resume", job_id=job["id"])
    assert resumed["status"] == "running"
    assert resumed["paused_at"] is None

    done = (await api.get(f"{BASE}/{job['id']}")).json()
    assert done["status"] == "completed"
    assert (done["total_leads"], done["exported_leads"], done["error_leads"]) == (5, 5, 0)
    assert await destination_ids() == [900, 901, 1000, 1001, 1002]

    reset = await act(api, "reset", job_id=job["id"])
    assert reset["status"] == "pending"
    assert reset["total_leads"] == 0

    again = (await api.get(f"{BASE}/{job['id']}")).json()
    assert again["status"] == "completed"
    assert again["exported_leads"] == done["exported_leads"]
    assert await destination_ids() == [900, 901, 1000, 1001, 1002]

    listed = (await api.get(BASE)).json()
    assert [j["id"] for j in listed] == [job["id"]]
    assert (await api.get(f"{BASE}/{job['id']}/errors")).json() == []


@pytest.mark.integration
@pytest.mark.asyncio
async def test_illegal_transition_leaves_job_unchanged(api):
    with patch("crm_sync.routers.export_jobs.run_export_job", AsyncMock()):
        job = await act(api, "create", start_date="2024-01-10")

    response = await api.post(BASE, json={"action": "resume", "job_id": job["id"]})
    assert response.status_code == 409

    response = await api.post(BASE, json={"action": "delete", "job_id": job["id"]})
    assert response.status_code == 409

    assert (await api.get(f"{BASE}/{job['id']}")).json()["status"] == "pending"
