# tests/routers/conftest.py

import pytest
from fastapi.testclient import TestClient

from crm_sync.database import get_db
from crm_sync.main import app


@pytest.fixture
def client(mock_db):
    """TestClient with the session dependency pointed at mock_db (no startup events)"""
    async def _get_db():
        yield mock_db

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
