"""
API endpoints for the lead export job (local store -> scouter-management).
"""

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
from uuid import UUID
import logging

from crm_sync.database import destination_configured, get_db
from crm_sync.schemas.export_job import (
    ExportErrorResponse,
    ExportJobAction,
    ExportJobActionRequest,
    ExportJobActionResponse,
    ExportJobResponse,
)
from crm_sync.services.export_driver import run_export_job
from crm_sync.services.job_ledger import InvalidJobTransition, JobLedger, JobNotFound

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/export-jobs", tags=["export-jobs"])

_ACTIONS = {action.value for action in ExportJobAction}


def _require_job_id(request: ExportJobActionRequest) -> UUID:
    if request.job_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="job_id is required")
    return request.job_id


@router.post("", response_model=ExportJobActionResponse)
async def export_job_action(
    request: ExportJobActionRequest,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    """
    Control an export job.

    Actions:
    - create: new job from start_date back to end_date (or the oldest lead)
    - pause: stop at the next batch boundary
    - resume: continue a paused job from its cursor
    - reset: clear cursor, counts and errors, then run again
    - delete: remove a paused job
    """
    if request.action not in _ACTIONS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid action '{request.action}'. Expected one of: {', '.join(sorted(_ACTIONS))}"
        )

    ledger = JobLedger(db)
    action = ExportJobAction(request.action)

    try:
        if action == ExportJobAction.CREATE:
            if request.start_date is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date is required")
            if not destination_configured():
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Destination database is not configured"
                )

            job = await ledger.create(
                start_date=request.start_date,
                end_date=request.end_date,
                field_mappings=request.field_mappings,
                created_by=request.created_by
            )
            background_tasks.add_task(run_export_job, job.id)
            message = "Export job created"

        elif action == ExportJobAction.PAUSE:
            job = await ledger.transition(_require_job_id(request), "paused", reason=request.reason)
            message = "Export job paused"

        elif action == ExportJobAction.RESUME:
            job = await ledger.transition(_require_job_id(request), "running")
            background_tasks.add_task(run_export_job, job.id)
            message = "Export job resumed"

        elif action == ExportJobAction.RESET:
            job = await ledger.reset(_require_job_id(request))
            background_tasks.add_task(run_export_job, job.id)
            message = "Export job reset"

        else:
            job_id = _require_job_id(request)
            await ledger.delete(job_id)
            logger.info(f"Export job {job_id} deleted via API")
            return ExportJobActionResponse(message="Export job deleted")

    except JobNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidJobTransition as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"{message}: {job.id} ({job.status})")
    return ExportJobActionResponse(message=message, job=ExportJobResponse.model_validate(job))


@router.get("", response_model=List[ExportJobResponse])
async def list_export_jobs(
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    """Most recent export jobs first."""
    return await JobLedger(db).list_recent(limit=limit)


@router.get("/{job_id}", response_model=ExportJobResponse)
async def get_export_job(job_id: UUID, db: AsyncSession = Depends(get_db)):
    job = await JobLedger(db).get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export job not found")
    return job


@router.get("/{job_id}/errors", response_model=List[ExportErrorResponse])
async def get_export_job_errors(
    job_id: UUID,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db)
):
    """Per-lead errors recorded for a job."""
    ledger = JobLedger(db)
    if await ledger.get(job_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export job not found")
    return await ledger.list_errors(job_id, limit=limit)
