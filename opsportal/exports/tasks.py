# opsportal/exports/tasks.py

"""
Celery Tasks for Background Export Processing

Workers drain the ``exports`` queue. Each message carries only a job id; the
job's claim decides whether this worker runs it.
"""

from typing import Optional

from celery import shared_task

from opsportal.core.db import SessionLocal
from opsportal.exports.jobs import ExportJobManager
from opsportal.exports.models import ExportStatus
from opsportal.exports.record_store import build_record_store
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


# No autoretry: a failed export stays FAILED until the user submits a new job.
@shared_task(name="exports.process_export_job", bind=True, acks_late=True)
def process_export_job(self, job_id: int):
    """
    Celery task to generate an export file for one job.

    Args:
        job_id: ID of ExportJob to process

    Returns:
        dict: Result summary
    """
    logger.info("Export task received", job_id=job_id, task_id=self.request.id)
    db = SessionLocal()
    try:
        manager = ExportJobManager(db, build_record_store(db), dispatcher=lambda _id: None)
        job = manager.process(job_id)

        if job is None:
            return {"status": "skipped", "export_id": job_id}
        if job.status == ExportStatus.READY:
            return {
                "status": "success",
                "export_id": job_id,
                "record_count": job.total_records,
                "result_ref": job.result_ref,
            }
        return {"status": "failed", "export_id": job_id, "error": job.error_message}
    finally:
        db.close()


@shared_task(name="exports.dispatch_pending_jobs")
def dispatch_pending_jobs(limit: int = 100, min_age_seconds: int = 300):
    """Periodic sweep re-sending PENDING jobs whose dispatch was lost."""
    db = SessionLocal()
    try:
        manager = ExportJobManager(db, build_record_store(db))
        job_ids = manager.dispatch_pending(limit=limit, min_age_seconds=min_age_seconds)
        logger.info("Re-dispatched pending export jobs", count=len(job_ids))
        return {"dispatched": job_ids}
    finally:
        db.close()


@shared_task(name="exports.fail_stale_jobs")
def fail_stale_jobs(max_age_seconds: Optional[int] = None, limit: int = 100):
    """Periodic sweep failing PROCESSING jobs that outlived the task time limit."""
    db = SessionLocal()
    try:
        manager = ExportJobManager(db, build_record_store(db))
        job_ids = manager.fail_stale(max_age_seconds=max_age_seconds, limit=limit)
        if job_ids:
            logger.warning("Failed stale export jobs", count=len(job_ids), job_ids=job_ids)
        return {"failed": job_ids}
    finally:
        db.close()
