# tests/conftest.py

import pytest
from datetime import date, datetime, timezone
from types import SimpleNamespace
from uuid import uuid4
from unittest.mock import Mock, MagicMock, AsyncMock

from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.models import ExportJob, Lead


def _db_result(scalar=None, first=None, rows=None):
    """
    Mock of a SQLAlchemy Result.

    ``scalar`` feeds .scalar()/.scalar_one(), ``first`` feeds .first() and
    .scalars().first(), ``rows`` feeds .scalars().all().
    """
    result = MagicMock()
    result.scalar = Mock(return_value=scalar)
    result.scalar_one = Mock(return_value=scalar)
    result.first = Mock(return_value=first)
    result.scalars.return_value.first = Mock(return_value=first)
    result.scalars.return_value.all = Mock(return_value=rows or [])
    return result


@pytest.fixture
def db_result():
    """Factory for mocked query results"""
    return _db_result


@pytest.fixture
def mock_db():
    """Mock async session - execute() returns an empty result by default"""
    db = AsyncMock(spec=AsyncSession)
    db.execute = AsyncMock(return_value=_db_result())
    db.add = Mock()
    db.commit = AsyncMock()
    db.rollback = AsyncMock()
    db.refresh = AsyncMock()
    db.delete = AsyncMock()
    db.get_bind = Mock(return_value=SimpleNamespace(dialect=SimpleNamespace(name="postgresql")))
    return db


@pytest.fixture
def make_job():
    """Factory for ExportJob rows with every counter set"""
    def _make(**overrides):
        values = dict(
            id=uuid4(),
            start_date=date(2024, 1, 10),
            end_date=date(2024, 1, 8),
            status="pending",
            processing_date=None,
            processing_offset=0,
            last_completed_date=None,
            total_leads=0,
            exported_leads=0,
            error_leads=0,
            pause_reason=None,
            field_mappings=None,
            created_by=None,
            started_at=None,
            paused_at=None,
            completed_at=None,
        )
        values.update(overrides)
        return ExportJob(**values)

    return _make


@pytest.fixture
def make_lead():
    """Factory for local Lead rows"""
    counter = {"next": 1000}

    def _make(**overrides):
        counter["next"] += 1
        values = dict(
            id=counter["next"],
            name="Maria Silva",
            responsible="Carlos",
            age="19",
            scouter="João",
            celular="11999990000",
            etapa="Lead convertido",
            valor_ficha="R$ 10,00",
            criado="05/03/2024 10:30",
            ficha_confirmada=True,
            date_modify=datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc),
            updated_at=datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc),
        )
        values.update(overrides)
        return Lead(**values)

    return _make
