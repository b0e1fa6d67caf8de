"""
Export job ledger - persisted state of every export run.

Progress writes are last-write-wins: there is no optimistic locking, so two
concurrent drivers on the same job can clobber each other's counts.
"""

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.models import ExportError, ExportJob

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: Dict[str, set] = {
    "pending": {"running", "paused", "failed"},
    "running": {"paused", "completed", "failed"},
    "paused": {"running"},
    "completed": set(),
    "failed": set(),
}

TERMINAL_STATUSES = {"completed", "failed"}


class JobNotFound(ValueError):
    """Raised when an export job does not exist."""

    def __init__(self, job_id):
        super().__init__(f"Export job {job_id} not found")
        self.job_id = job_id


class InvalidJobTransition(ValueError):
    """Raised when a status change is not allowed from the job's current status."""

    def __init__(self, job_id, current: str, requested: str):
        super().__init__(f"Export job {job_id} cannot go from '{current}' to '{requested}'")
        self.job_id = job_id
        self.current = current
        self.requested = requested


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobLedger:
    """Reads and writes ExportJob rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, job_id: UUID) -> Optional[ExportJob]:
        """Load the authoritative job row (never a cached instance)."""
        result = await self.db.execute(
            select(ExportJob)
            .where(ExportJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def require(self, job_id: UUID) -> ExportJob:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def create(
        self,
        start_date: date,
        end_date: Optional[date] = None,
        field_mappings: Optional[Dict[str, str]] = None,
        created_by: Optional[UUID] = None
    ) -> ExportJob:
        """Create a job in 'pending'."""
        if end_date is not None and end_date > start_date:
            raise ValueError("end_date must not be later than start_date (the export walks backward)")

        job = ExportJob(
            start_date=start_date,
            end_date=end_date,
            status="pending",
            processing_offset=0,
            total_leads=0,
            exported_leads=0,
            error_leads=0,
            field_mappings=field_mappings or None,
            created_by=created_by
        )

        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        logger.info(f"Created export job {job.id} ({start_date} -> {end_date or 'oldest lead'})")
        return job

    async def transition(self, job_id: UUID, status: str, reason: Optional[str] = None) -> ExportJob:
        """
        Move a job to ``status``.

        Raises:
            JobNotFound: unknown job
            InvalidJobTransition: status change not in ALLOWED_TRANSITIONS
        """
        job = await self.require(job_id)

        if status not in ALLOWED_TRANSITIONS.get(job.status, set()):
            raise InvalidJobTransition(job_id, job.status, status)

        previous = job.status
        now = _utcnow()
        job.status = status

        if status == "running":
            job.started_at = job.started_at or now
            job.paused_at = None
        elif status == "paused":
            job.paused_at = now
        elif status in TERMINAL_STATUSES:
            job.completed_at = now

        if reason is not None:
            job.pause_reason = reason

        await self.db.commit()
        await self.db.refresh(job)

        logger.info(f"Export job {job_id}: {previous} -> {status}" + (f" ({reason})" if reason else ""))
        return job

    async def update_progress(
        self,
        job_id: UUID,
        total_leads: int,
        exported_leads: int,
        error_leads: int,
        processing_date: date,
        processing_offset: int = 0,
        last_completed_date: Optional[date] = None
    ) -> ExportJob:
        """Replace counters and cursor (last write wins)."""
        if exported_leads + error_leads > total_leads:
            raise ValueError(
                f"exported ({exported_leads}) + errors ({error_leads}) exceed total ({total_leads})"
            )

        job = await self.require(job_id)

        job.total_leads = total_leads
        job.exported_leads = exported_leads
        job.error_leads = error_leads
        job.processing_date = processing_date
        job.processing_offset = processing_offset
        if last_completed_date is not None:
            job.last_completed_date = last_completed_date

        await self.db.commit()
        await self.db.refresh(job)
        return job

    async def reset(self, job_id: UUID) -> ExportJob:
        """
        Put a job back to 'pending' with a fresh cursor and no recorded errors.

        A running job must be paused first.
        """
        job = await self.require(job_id)

        if job.status == "running":
            raise InvalidJobTransition(job_id, job.status, "pending")

        job.status = "pending"
        job.processing_date = None
        job.processing_offset = 0
        job.last_completed_date = None
        job.total_leads = 0
        job.exported_leads = 0
        job.error_leads = 0
        job.pause_reason = None
        job.paused_at = None
        job.started_at = None
        job.completed_at = None

        await self.db.execute(delete(ExportError).where(ExportError.job_id == job_id))
        await self.db.commit()
        await self.db.refresh(job)

        logger.info(f"Export job {job_id} reset")
        return job

    async def delete(self, job_id: UUID) -> None:
        """Delete a paused job."""
        job = await self.require(job_id)

        if job.status != "paused":
            raise InvalidJobTransition(job_id, job.status, "deleted")

        await self.db.delete(job)
        await self.db.commit()

        logger.info(f"Export job {job_id} deleted")

    async def list_recent(self, limit: int = 20) -> List[ExportJob]:
        result = await self.db.execute(
            select(ExportJob).order_by(desc(ExportJob.created_at)).limit(limit)
        )
        return list(result.scalars().all())

    async def list_pending(self) -> List[ExportJob]:
        """Pending jobs that never started."""
        result = await self.db.execute(
            select(ExportJob)
            .where(ExportJob.status == "pending", ExportJob.started_at.is_(None))
            .order_by(ExportJob.created_at)
        )
        return list(result.scalars().all())

    async def list_errors(self, job_id: UUID, limit: int = 100) -> List[ExportError]:
        result = await self.db.execute(
            select(ExportError)
            .where(ExportError.job_id == job_id)
            .order_by(desc(ExportError.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())


def job_progress(job: ExportJob) -> Dict[str, Any]:
    """Small progress summary used in logs and API responses."""
    return {
        "status": job.status,
        "processing_date": job.processing_date.isoformat() if job.processing_date else None,
        "total_leads": job.total_leads or 0,
        "exported_leads": job.exported_leads or 0,
        "error_leads": job.error_leads or 0,
    }
