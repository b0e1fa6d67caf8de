# tests/integration/conftest.py
"""Integration test fixtures - real AsyncSessions on SQLite files (aiosqlite)"""

import pytest
import pytest_asyncio
from datetime import datetime, timezone
from unittest.mock import patch

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.ext.compiler import compiles

from crm_sync.config import settings
from crm_sync.database import Base, DestinationBase
from crm_sync.models import Lead, ScouterLead


@compiles(JSONB, "sqlite")
def _jsonb_as_json(type_, compiler, **kw):
    return "JSON"


async def _engine(path, metadata):
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    return engine


@pytest_asyncio.fixture
async def local_sessions(tmp_path):
    """Session factory on the local store (leads, ledger, audit)"""
    engine = await _engine(tmp_path / "local.db", Base.metadata)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def destination_sessions(tmp_path):
    """Session factory on the scouter-management store"""
    engine = await _engine(tmp_path / "destination.db", DestinationBase.metadata)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    await engine.dispose()


@pytest.fixture
def wired_databases(local_sessions, destination_sessions, monkeypatch):
    """Point run_export_job at the test databases, small batches, no delay"""
    monkeypatch.setattr(settings, "EXPORT_BATCH_SIZE", 2)
    monkeypatch.setattr(settings, "EXPORT_BATCH_DELAY_SECONDS", 0)

    with patch("crm_sync.database.AsyncSessionLocal", local_sessions), \
         patch("crm_sync.database.destination_configured", return_value=True), \
         patch("crm_sync.database.get_destination_sessionmaker", return_value=destination_sessions):
        yield


@pytest.fixture
def seed_leads(local_sessions):
    """Insert leads as {day_of_january_2024: count}; returns the inserted ids"""
    async def _seed(per_day):
        ids = []
        async with local_sessions() as db:
            for day, count in per_day.items():
                for n in range(count):
                    lead_id = day * 100 + n
                    modified = datetime(2024, 1, day, 12, n, tzinfo=timezone.utc)
                    db.add(Lead(
                        id=lead_id,
                        name=f"Lead {lead_id}",
                        responsible="Carlos",
                        valor_ficha="R$ 10,00",
                        criado="05/03/2024 10:30",
                        ficha_confirmada=True,
                        date_modify=modified,
                        updated_at=modified
                    ))
                    ids.append(lead_id)
            await db.commit()
        return ids

    return _seed


@pytest.fixture
def destination_ids(destination_sessions):
    async def _ids():
        async with destination_sessions() as db:
            result = await db.execute(select(ScouterLead.id).order_by(ScouterLead.id))
            return list(result.scalars().all())

    return _ids


@pytest.fixture
def count_rows(local_sessions):
    async def _count(model, *where):
        async with local_sessions() as db:
            result = await db.execute(select(func.count()).select_from(model).where(*where))
            return result.scalar_one()

    return _count
