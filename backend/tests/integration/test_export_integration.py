# tests/integration/test_export_integration.py
"""
Export job against real sessions: ledger, reader and audit on the local
store, upserts on the destination store.

Run with: pytest tests/integration -v -m integration
"""

import pytest
from datetime import date

from crm_sync.models import ExportError, ExportJob, SyncEvent
from crm_sync.services.destination_writer import DestinationWriter
from crm_sync.services.event_recorder import EventRecorder
from crm_sync.services.export_driver import ExportDriver, run_export_job
from crm_sync.services.job_ledger import JobLedger
from crm_sync.services.source_reader import SourceReader


# Jan 10 -> Jan 8 holds 6 leads; Jan 7 is outside the range
LEADS_PER_DAY = {10: 3, 9: 1, 8: 2, 7: 1}
IN_RANGE = sorted(day * 100 + n for day, count in LEADS_PER_DAY.items() if day >= 8 for n in range(count))


async def create_job(sessions, start=date(2024, 1, 10), end=date(2024, 1, 8)) -> ExportJob:
    async with sessions() as db:
        return await JobLedger(db).create(start_date=start, end_date=end)


async def load_job(sessions, job_id) -> ExportJob:
    async with sessions() as db:
        return await JobLedger(db).get(job_id)


def counts(job):
    return (job.total_leads, job.exported_leads, job.error_leads)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_export_walks_range_into_destination(
    wired_databases, local_sessions, seed_leads, destination_ids, count_rows
):
    await seed_leads(LEADS_PER_DAY)
    job = await create_job(local_sessions)

    await run_export_job(job.id)

    job = await load_job(local_sessions, job.id)
    assert job.status == "completed"
    assert counts(job) == (6, 6, 0)
    assert job.last_completed_date == date(2024, 1, 8)
    assert job.updated_at is not None
    assert await destination_ids() == IN_RANGE
    assert await count_rows(SyncEvent, SyncEvent.event_type == "insert", SyncEvent.status == "success") == 6
    print(f"✅ Exported {job.exported_leads} leads")


@pytest.mark.integration
@pytest.mark.asyncio
async def test_rerunning_a_range_is_idempotent(
    wired_databases, local_sessions, seed_leads, destination_ids, count_rows
):
    await seed_leads(LEADS_PER_DAY)
    first = await create_job(local_sessions)
    await run_export_job(first.id)
    after_first = counts(await load_job(local_sessions, first.id))

    # Same job again: already completed, nothing moves
    await run_export_job(first.id)
    assert counts(await load_job(local_sessions, first.id)) == after_first

    # New job over the same range: every lead becomes an update
    second = await create_job(local_sessions)
    await run_export_job(second.id)

    second = await load_job(local_sessions, second.id)
    assert second.status == "completed"
    assert counts(second) == after_first
    assert await destination_ids() == IN_RANGE
    assert await count_rows(SyncEvent, SyncEvent.event_type == "update") == 6

    # Reset and run the first job once more
    async with local_sessions() as db:
        await JobLedger(db).reset(first.id)
    await run_export_job(first.id)

    rerun = await load_job(local_sessions, first.id)
    assert rerun.status == "completed"
    assert counts(rerun) == after_first
    assert await destination_ids() == IN_RANGE


@pytest.mark.integration
@pytest.mark.asyncio
async def test_failed_audit_write_on_shared_session_keeps_exporting(
    local_sessions, destination_sessions, seed_leads, destination_ids, count_rows
):
    """Ledger, reader and recorder on one session: the recorder's rollback must not sink the job"""

    class RejectingFirstEvent(EventRecorder):
        calls = 0

        async def record_event(self, event_type, direction, lead_id, status, **kwargs):
            RejectingFirstEvent.calls += 1
            if RejectingFirstEvent.calls == 1:
                # violates chk_sync_event_status at commit
                status = "bogus"
            return await super().record_event(event_type, direction, lead_id, status, **kwargs)

    await seed_leads({10: 3})
    job = await create_job(local_sessions, end=date(2024, 1, 10))

    async with local_sessions() as db, destination_sessions() as dest_db:
        driver = ExportDriver(
            ledger=JobLedger(db),
            reader=SourceReader(db),
            writer=DestinationWriter(dest_db, table_name="leads"),
            recorder=RejectingFirstEvent(db),
            batch_size=10,
            batch_delay=0
        )
        result = await driver.run(job.id)

    assert result.status == "completed"
    job = await load_job(local_sessions, job.id)
    assert counts(job) == (3, 3, 0)
    assert await destination_ids() == [1000, 1001, 1002]
    assert await count_rows(SyncEvent) == 2
    assert await count_rows(ExportError) == 0
