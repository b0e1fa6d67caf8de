# tests/services/test_event_recorder.py

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from crm_sync.models import ExportError, SyncEvent
from crm_sync.services.event_recorder import EXPORT_DIRECTION, EventRecorder
from crm_sync.services.source_reader import SourceReader, day_window


class TestEventRecorder:
    @pytest.mark.asyncio
    async def test_record_event(self, mock_db):
        ok = await EventRecorder(mock_db).record_event(
            "insert", EXPORT_DIRECTION, 42, "success", duration_ms=12
        )

        assert ok is True
        event = mock_db.add.call_args.args[0]
        assert isinstance(event, SyncEvent)
        assert (event.event_type, event.direction, event.lead_id, event.status) == (
            "insert", "local_to_scouter", 42, "success"
        )
        assert event.sync_duration_ms == 12
        mock_db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_record_error_is_json_safe(self, mock_db):
        job_id = uuid4()

        await EventRecorder(mock_db).record_error(
            job_id, 42, {"id": 42, "valor": Decimal("10.5")}, {"id": 42}, "value too long",
            ignored_fields=["telefone_casa"]
        )

        error = mock_db.add.call_args.args[0]
        assert isinstance(error, ExportError)
        assert error.job_id == job_id
        assert error.lead_snapshot == {"id": 42, "valor": 10.5}
        assert error.ignored_fields == ["telefone_casa"]
        assert error.error_message == "value too long"

    @pytest.mark.asyncio
    async def test_failed_write_is_rolled_back_not_raised(self, mock_db):
        mock_db.commit.side_effect = RuntimeError("db gone")

        ok = await EventRecorder(mock_db).record_event("update", EXPORT_DIRECTION, 1, "error")

        assert ok is False
        mock_db.rollback.assert_awaited_once()


class TestSourceReader:
    def test_day_window(self):
        start, end = day_window(date(2024, 1, 10))

        assert start.isoformat() == "2024-01-10T00:00:00+00:00"
        assert end.isoformat() == "2024-01-11T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_fetch_day_query(self, mock_db, db_result, make_lead):
        rows = [make_lead(), make_lead()]
        mock_db.execute.return_value = db_result(rows=rows)

        result = await SourceReader(mock_db).fetch_day(date(2024, 1, 10), limit=100, offset=200)

        assert result == rows
        sql = str(mock_db.execute.await_args.args[0])
        assert "leads.updated_at >=" in sql
        assert "leads.updated_at <" in sql
        assert "ORDER BY leads.updated_at DESC, leads.id" in sql
        assert "LIMIT" in sql and "OFFSET" in sql

    @pytest.mark.asyncio
    async def test_oldest_modified_date(self, mock_db, db_result):
        from datetime import datetime, timezone, timedelta

        oldest = datetime(2023, 6, 1, 1, 30, tzinfo=timezone(timedelta(hours=3)))
        mock_db.execute.return_value = db_result(scalar=oldest)

        assert await SourceReader(mock_db).oldest_modified_date() == date(2023, 5, 31)

    @pytest.mark.asyncio
    async def test_oldest_modified_date_empty(self, mock_db):
        assert await SourceReader(mock_db).oldest_modified_date() is None
