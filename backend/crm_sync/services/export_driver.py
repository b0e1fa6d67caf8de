"""
Export driver - walks the job cursor backward one day at a time and copies
leads to the scouter-management database.

Per batch: read -> map -> upsert -> audit, then persist the ledger.

State lives in the ledger only: every iteration re-reads the job and stops as
soon as it is no longer 'running', so pause takes effect at the next batch
boundary (never mid-batch).
"""

import asyncio
import logging
import time
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional
from uuid import UUID

from crm_sync.config import settings
from crm_sync.models import ExportJob
from crm_sync.services.destination_writer import DestinationWriter
from crm_sync.services.event_recorder import EXPORT_DIRECTION, EventRecorder
from crm_sync.services.field_mapper import lead_snapshot, map_lead, prune_empty
from crm_sync.services.job_ledger import InvalidJobTransition, JobLedger, job_progress
from crm_sync.services.source_reader import SourceReader

logger = logging.getLogger(__name__)


class ExportDriver:
    """
    Runs one export job to completion, pause or failure.

    Args:
        ledger: JobLedger on the local store
        reader: SourceReader on the local store
        writer: DestinationWriter on the destination store
        recorder: EventRecorder on the local store
        batch_size: Leads per page (default: settings.EXPORT_BATCH_SIZE)
        batch_delay: Seconds to sleep between batches
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        ledger: JobLedger,
        reader: SourceReader,
        writer: DestinationWriter,
        recorder: EventRecorder,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        self.ledger = ledger
        self.reader = reader
        self.writer = writer
        self.recorder = recorder
        self.batch_size = batch_size or settings.EXPORT_BATCH_SIZE
        self.batch_delay = settings.EXPORT_BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.sleep = sleep

    async def run(self, job_id: UUID) -> Optional[ExportJob]:
        """Drive ``job_id`` until it completes, fails or is no longer running."""
        job = await self.ledger.get(job_id)
        if job is None:
            logger.error(f"Export job {job_id} not found")
            return None

        if job.status == "pending":
            job = await self.ledger.transition(job_id, "running")
        elif job.status != "running":
            logger.info(f"Export job {job_id} is '{job.status}', nothing to run")
            return job

        logger.info(f"🚀 Starting export job {job_id}: {job_progress(job)}")

        processing_date: date = job.processing_date or job.start_date
        offset = job.processing_offset or 0
        total = job.total_leads or 0
        exported = job.exported_leads or 0
        errors = job.error_leads or 0
        field_mappings = job.field_mappings

        try:
            floor = job.end_date or await self.reader.oldest_modified_date()
        except Exception as e:
            return await self.fail(job_id, f"Error fetching leads: {e}")

        if floor is None:
            logger.info(f"Export job {job_id}: source has no leads")
            return await self._finish(job_id)

        while True:
            current = await self.ledger.get(job_id)
            if current is None:
                logger.warning(f"Export job {job_id} disappeared, stopping")
                return None
            if current.status != "running":
                logger.info(f"⏸️ Export job {job_id} is '{current.status}', stopping")
                return current

            try:
                page = await self.reader.fetch_day(processing_date, self.batch_size, offset)
                # Plain dicts survive a rollback of the reading session
                leads = [lead_snapshot(lead) for lead in page]
            except Exception as e:
                return await self.fail(job_id, f"Error fetching leads: {e}")

            batch_exported = 0
            batch_errors = 0
            for lead in leads:
                if await self._export_lead(job_id, lead, field_mappings):
                    batch_exported += 1
                else:
                    batch_errors += 1

            total += len(leads)
            exported += batch_exported
            errors += batch_errors

            logger.info(
                f"📅 {processing_date}: {batch_exported} exported, {batch_errors} errors "
                f"(job totals {exported}/{errors}/{total})"
            )

            last_completed: Optional[date] = None
            if len(leads) < self.batch_size:
                # Day exhausted
                last_completed = processing_date
                next_date = processing_date - timedelta(days=1)

                if next_date < floor:
                    await self.ledger.update_progress(
                        job_id, total, exported, errors,
                        processing_date=processing_date,
                        processing_offset=offset + len(leads),
                        last_completed_date=last_completed
                    )
                    return await self._finish(job_id)

                processing_date = next_date
                offset = 0
            else:
                offset += len(leads)

            await self.ledger.update_progress(
                job_id, total, exported, errors,
                processing_date=processing_date,
                processing_offset=offset,
                last_completed_date=last_completed
            )

            await self.sleep(self.batch_delay)

    async def _export_lead(self, job_id: UUID, lead: Dict[str, Any], field_mappings: Optional[Dict[str, str]]) -> bool:
        """Map, upsert and audit one lead snapshot. Returns True when exported."""
        lead_id = None
        started = time.monotonic()
        record = None

        try:
            lead_id = lead.get("id")
            record = prune_empty(map_lead(lead, field_mappings))
            result = await self.writer.upsert(record)
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            logger.error(f"Lead {lead_id} failed to export: {e}")
            await self.recorder.record_event(
                "update", EXPORT_DIRECTION, lead_id, "error",
                duration_ms=duration_ms, error_message=str(e)
            )
            await self.recorder.record_error(
                job_id, lead_id, lead, record, str(e),
                error_details={"type": type(e).__name__}
            )
            return False

        duration_ms = int((time.monotonic() - started) * 1000)
        await self.recorder.record_event(
            "insert" if result.is_new else "update",
            EXPORT_DIRECTION,
            lead_id,
            "success" if result.success else "error",
            duration_ms=duration_ms,
            error_message=result.error
        )

        if result.success:
            action = "created" if result.is_new else "updated"
            if result.ignored_fields:
                logger.info(f"Lead {lead_id} {action}, ignored field(s): {', '.join(result.ignored_fields)}")
            else:
                logger.debug(f"Lead {lead_id} {action}")
            return True

        await self.recorder.record_error(
            job_id, lead_id, lead, record, result.error or "Unknown error",
            ignored_fields=result.ignored_fields
        )
        return False

    async def _finish(self, job_id: UUID) -> Optional[ExportJob]:
        try:
            job = await self.ledger.transition(job_id, "completed")
        except InvalidJobTransition as e:
            logger.warning(f"Could not complete export job: {e}")
            return await self.ledger.get(job_id)

        logger.info(f"✅ Export job {job_id} completed: {job_progress(job)}")
        return job

    async def fail(self, job_id: UUID, reason: str) -> Optional[ExportJob]:
        logger.error(f"❌ Export job {job_id} failed: {reason}")
        try:
            return await self.ledger.transition(job_id, "failed", reason=reason)
        except InvalidJobTransition as e:
            logger.warning(f"Could not mark export job as failed: {e}")
            return await self.ledger.get(job_id)


async def run_export_job(job_id: UUID) -> None:
    """
    Background entry point: opens its own sessions and drives the job.
    """
    from crm_sync.database import AsyncSessionLocal, destination_configured, get_destination_sessionmaker

    async with AsyncSessionLocal() as db:
        ledger = JobLedger(db)

        if not destination_configured():
            job = await ledger.get(job_id)
            if job is not None and job.status in ("pending", "running"):
                await ledger.transition(job_id, "failed", reason="Destination database is not configured")
            return

        destination_session = get_destination_sessionmaker()
        async with AsyncSessionLocal() as audit_db, destination_session() as dest_db:
            driver = ExportDriver(
                ledger=ledger,
                reader=SourceReader(db),
                writer=DestinationWriter(dest_db, table_name=settings.DESTINATION_LEADS_TABLE),
                recorder=EventRecorder(audit_db)
            )
            try:
                await driver.run(job_id)
            except Exception as e:
                logger.exception(f"Export job {job_id} crashed")
                await db.rollback()
                await driver.fail(job_id, f"Unexpected error: {e}")
