"""APScheduler configuration for export job recovery."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import logging

from crm_sync.config import settings

logger = logging.getLogger(__name__)

# Create scheduler instance
scheduler = AsyncIOScheduler()


async def run_pending_export_jobs():
    """
    Pick up export jobs that are 'pending' and were never started.

    Covers jobs whose background task was lost (e.g. the process restarted
    between create and the task running). Failed jobs are not retried.
    """
    from crm_sync.database import AsyncSessionLocal, destination_configured
    from crm_sync.services.export_driver import run_export_job
    from crm_sync.services.job_ledger import JobLedger

    if not destination_configured():
        logger.debug("Destination database not configured, skipping pending job sweep")
        return

    try:
        async with AsyncSessionLocal() as db:
            pending = await JobLedger(db).list_pending()

        if not pending:
            logger.info("No pending export jobs")
            return

        logger.info(f"Found {len(pending)} pending export job(s)")

        for job in pending:
            try:
                await run_export_job(job.id)
            except Exception as e:
                logger.error(f"Error running export job {job.id}: {e}")

    except Exception as e:
        logger.error(f"Error in pending export job sweep: {e}")


def start_scheduler():
    """
    Initialize and start the APScheduler.

    Jobs:
    - Pending export job sweep: every PENDING_JOB_SWEEP_MINUTES
    """
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    try:
        scheduler.add_job(
            run_pending_export_jobs,
            trigger=IntervalTrigger(minutes=settings.PENDING_JOB_SWEEP_MINUTES),
            id='pending_export_jobs',
            name='Pending Export Jobs',
            replace_existing=True,
            max_instances=1
        )
        logger.info(f"✅ Scheduled: Pending Export Jobs (every {settings.PENDING_JOB_SWEEP_MINUTES} min)")

        scheduler.start()
        logger.info("✅ APScheduler started successfully!")

        for job in scheduler.get_jobs():
            logger.info(f"   • {job.name}: Next run at {job.next_run_time}")

    except Exception as e:
        logger.error(f"❌ Error starting scheduler: {e}")


def stop_scheduler():
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
