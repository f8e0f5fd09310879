# opsportal/exports/jobs.py

"""
Background Job Manager

Job lifecycle: PENDING -> PROCESSING -> READY | FAILED. Every transition is
a conditional UPDATE on the current status, so a job is claimed by exactly
one worker and each terminal state is written at most once. Failed jobs are
never retried automatically; the caller submits a new job.
"""

import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from sqlalchemy import desc, func, select, update
from sqlalchemy.orm import Session

from opsportal.core.config import settings
from opsportal.exports.encoders import MEDIA_TYPES
from opsportal.exports.events import ExportReadyEvent, publish_export_ready
from opsportal.exports.exceptions import JobNotFound, JobNotReady, RowSourceFault
from opsportal.exports.models import DeliveryMode, ExportJob, ExportStatus
from opsportal.exports.preferences import ColumnPreferenceStore
from opsportal.exports.record_store import RecordStore
from opsportal.exports.row_source import RowSource
from opsportal.exports.services import build_filename, document_meta, record_export_event
from opsportal.exports.storage import ArtifactStore, get_artifact_store
from opsportal.exports.streaming_service import StreamingExportService
from opsportal.exports.validation import ExportRequestValidator, NormalizedExportRequest
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)

Dispatcher = Callable[[int], Optional[str]]


def download_path(job_id: int) -> str:
    return f"/exports/jobs/{job_id}/download"


def celery_dispatcher(job_id: int) -> Optional[str]:
    """Send the job id to the worker queue. Returns the Celery task id."""
    from opsportal.exports.tasks import process_export_job

    task = process_export_job.apply_async(args=[job_id], queue=settings.export_queue_name)
    return task.id


@dataclass
class EnqueueResult:
    job_id: int
    status: ExportStatus
    url: Optional[str] = None


class ExportJobManager:
    """
    Creates, claims, runs and reports on background export jobs.

    Args:
        db: Database session
        store: Record store the rows are read from
        artifacts: Where finished files are persisted
        dispatcher: Hands a job id to the worker pool (Celery by default)
        work_dir: Scratch directory for files being generated
    """

    def __init__(
        self,
        db: Session,
        store: RecordStore,
        artifacts: Optional[ArtifactStore] = None,
        dispatcher: Optional[Dispatcher] = None,
        work_dir: Optional[str] = None,
    ):
        self.db = db
        self.row_source = RowSource(store)
        self.validator = ExportRequestValidator(ColumnPreferenceStore(db))
        self._artifacts = artifacts
        self.dispatcher = dispatcher or celery_dispatcher
        self.work_dir = Path(work_dir or Path(settings.export_output_dir) / "work")

    @property
    def artifacts(self) -> ArtifactStore:
        if self._artifacts is None:
            self._artifacts = get_artifact_store()
        return self._artifacts

    #
    # ---------------------------
    #  SUBMISSION
    # ---------------------------
    #

    def enqueue(
        self,
        user_id: str,
        entity_type,
        format="csv",
        start_date=None,
        end_date=None,
        columns=None,
        customer_id: Optional[str] = None,
    ) -> EnqueueResult:
        """
        Validate the request and create a PENDING job.

        Small exports (at most ``export_inline_row_limit`` rows) are processed
        before returning, in which case the result carries the download URL.
        Everything else is handed to the worker pool.
        """
        request = self.validator.validate(
            entity_type=entity_type,
            format=format,
            start_date=start_date,
            end_date=end_date,
            columns=columns,
            delivery_mode=DeliveryMode.ASYNC,
            user_id=user_id,
            customer_id=customer_id,
        )

        job = ExportJob(
            entity_type=request.entity_type,
            format=request.format,
            status=ExportStatus.PENDING,
            filters=request.to_filters(),
            requested_by=str(user_id),
            created_at=datetime.utcnow(),
        )
        self.db.add(job)
        self.db.commit()
        self.db.refresh(job)
        record_export_event(self.db, request, user_id)

        logger.info(
            f"Created export job {job.id} for user {user_id}: "
            f"type={request.entity_type.value}, format={request.format.value}"
        )

        if self._fits_inline(request):
            logger.info("Processing small export job inline", job_id=job.id)
            job = self.process(job.id) or job
            if job.status == ExportStatus.READY:
                return EnqueueResult(job.id, job.status, url=download_path(job.id))
            return EnqueueResult(job.id, job.status)

        self._dispatch(job.id)
        return EnqueueResult(job.id, ExportStatus.PENDING)

    def _fits_inline(self, request: NormalizedExportRequest) -> bool:
        limit = settings.export_inline_row_limit
        if limit <= 0:
            return False
        try:
            return self.row_source.count(request) <= limit
        except RowSourceFault as e:
            logger.warning(f"Could not size export for inline processing: {e}")
            return False

    def _dispatch(self, job_id: int) -> None:
        task_id = self.dispatcher(job_id)
        if task_id:
            self.db.execute(
                update(ExportJob)
                .where(ExportJob.id == job_id)
                .values(celery_task_id=task_id)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        logger.info("Dispatched export job", job_id=job_id, task_id=task_id)

    def dispatch_pending(self, limit: int = 100, min_age_seconds: int = 0) -> List[int]:
        """
        Re-send the oldest PENDING jobs to the worker queue.

        Recovers jobs whose original dispatch was lost. Only jobs created at
        least ``min_age_seconds`` ago are considered. Sending a job twice is
        harmless: only one worker can claim it.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=min_age_seconds)
        stmt = (
            select(ExportJob.id)
            .where(ExportJob.status == ExportStatus.PENDING, ExportJob.created_at <= cutoff)
            .order_by(ExportJob.created_at.asc(), ExportJob.id.asc())
            .limit(limit)
        )
        job_ids = list(self.db.execute(stmt).scalars())
        for job_id in job_ids:
            self._dispatch(job_id)
        return job_ids

    def fail_stale(self, max_age_seconds: Optional[int] = None, limit: int = 100) -> List[int]:
        """
        Move jobs stuck in PROCESSING to FAILED.

        A job still PROCESSING ``max_age_seconds`` (the worker's hard time
        limit by default) after it was claimed has lost its worker. The
        update is conditional on PROCESSING, so a job that finishes in the
        meantime keeps its terminal state.
        """
        if max_age_seconds is None:
            max_age_seconds = settings.export_job_time_limit
        cutoff = datetime.utcnow() - timedelta(seconds=max_age_seconds)
        stmt = (
            select(ExportJob.id)
            .where(ExportJob.status == ExportStatus.PROCESSING, ExportJob.started_at <= cutoff)
            .order_by(ExportJob.started_at.asc(), ExportJob.id.asc())
            .limit(limit)
        )
        failed = []
        for job_id in list(self.db.execute(stmt).scalars()):
            result = self.db.execute(
                update(ExportJob)
                .where(
                    ExportJob.id == job_id,
                    ExportJob.status == ExportStatus.PROCESSING,
                    ExportJob.started_at <= cutoff,
                )
                .values(
                    status=ExportStatus.FAILED,
                    completed_at=datetime.utcnow(),
                    error_message=f"Export did not finish within {max_age_seconds} seconds",
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
            if result.rowcount == 1:
                logger.warning("Failed stale export job", job_id=job_id)
                failed.append(job_id)
        return failed

    #
    # ---------------------------
    #  STATE TRANSITIONS
    # ---------------------------
    #

    def claim(self, job_id: int) -> bool:
        """
        Atomically move a job from PENDING to PROCESSING.

        Returns True for the single caller that wins the claim; every other
        attempt (concurrent or later) returns False and changes nothing.
        """
        result = self.db.execute(
            update(ExportJob)
            .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.PENDING)
            .values(status=ExportStatus.PROCESSING, started_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        claimed = result.rowcount == 1
        if claimed:
            logger.info("Export job claimed", job_id=job_id)
        return claimed

    def _complete(self, job_id: int, status: ExportStatus, **values) -> bool:
        """Conditional PROCESSING -> terminal transition."""
        result = self.db.execute(
            update(ExportJob)
            .where(ExportJob.id == job_id, ExportJob.status == ExportStatus.PROCESSING)
            .values(status=status, completed_at=datetime.utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            logger.error("Export job was not PROCESSING at completion", job_id=job_id, target=status.value)
            return False
        return True

    #
    # ---------------------------
    #  PROCESSING
    # ---------------------------
    #

    def _request_for(self, job: ExportJob) -> NormalizedExportRequest:
        filters = job.filters or {}
        return self.validator.validate(
            entity_type=job.entity_type,
            format=job.format,
            start_date=filters.get("start_date"),
            end_date=filters.get("end_date"),
            columns=filters.get("columns"),
            delivery_mode=DeliveryMode.ASYNC,
            user_id=job.requested_by,
            customer_id=filters.get("customer_id"),
        )

    def process(self, job_id: int) -> Optional[ExportJob]:
        """
        Claim and run one job to completion.

        Returns the job in its final state, or None when the claim was lost
        (the job is not PENDING, or another worker took it). Pipeline errors
        are recorded on the job as FAILED, never raised.
        """
        if not self.claim(job_id):
            logger.info("Export job not claimable, skipping", job_id=job_id)
            return None

        job = self.db.get(ExportJob, job_id)
        self.db.refresh(job)
        scratch = self.work_dir / str(job_id)

        try:
            request = self._request_for(job)
            exporter = request.exporter
            writer = StreamingExportService(output_dir=str(scratch))
            file_path, record_count = writer.stream_rows_to_file(
                rows=self.row_source.rows(request),
                filename=build_filename(request),
                export_format=request.format,
                labels=request.labels,
                keys=request.columns,
                title=exporter.title,
                row_ceiling=settings.export_job_document_row_ceiling,
                font_size=settings.export_document_font_size,
                min_font_size=settings.export_document_min_font_size,
                meta=document_meta(request),
                summary=exporter.summary,
            )
            key = f"exports/{job_id}/{file_path.name}"
            ref = self.artifacts.put(key, file_path, MEDIA_TYPES[request.format])
        except Exception as e:
            logger.error(f"Error processing export job {job_id}: {e}", exc_info=True)
            self.db.rollback()
            self._complete(
                job_id,
                ExportStatus.FAILED,
                error_message=str(e) or e.__class__.__name__,
                result_ref=None,
            )
            self.db.refresh(job)
            return job
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        if self._complete(
            job_id,
            ExportStatus.READY,
            result_ref=ref,
            file_name=file_path.name,
            total_records=record_count,
            error_message=None,
        ):
            self.db.refresh(job)
            logger.info(
                f"Export job {job_id} completed: {record_count} records exported",
                result_ref=ref,
            )
            publish_export_ready(ExportReadyEvent(
                job_id=job.id,
                requested_by=job.requested_by,
                entity_type=job.entity_type.value,
                format=job.format.value,
                download_url=download_path(job.id),
                total_records=record_count,
                completed_at=job.completed_at,
            ))
        else:
            self.db.refresh(job)
        return job

    #
    # ---------------------------
    #  QUERIES
    # ---------------------------
    #

    def status(self, job_id: int, user_id: str) -> ExportJob:
        """Job owned by ``user_id``. Raises JobNotFound otherwise."""
        job = self.db.execute(
            select(ExportJob).where(ExportJob.id == job_id, ExportJob.requested_by == str(user_id))
        ).scalar_one_or_none()
        if job is None:
            raise JobNotFound(job_id)
        return job

    def ready_job(self, job_id: int, user_id: str) -> ExportJob:
        """Job owned by ``user_id`` whose artifact can be retrieved."""
        job = self.status(job_id, user_id)
        if job.status != ExportStatus.READY:
            raise JobNotReady(job_id, job.status.value)
        return job

    def download_url(self, job_id: int, user_id: str) -> Optional[str]:
        """
        Retrieval URL of a READY job's artifact.

        None when the artifact store cannot hand out URLs (local disk); the
        caller then serves ``artifacts.local_path(job.result_ref)`` itself.
        """
        job = self.ready_job(job_id, user_id)
        return self.artifacts.url(job.result_ref)

    def list_jobs(
        self,
        user_id: str,
        page: int = 1,
        per_page: int = 25,
        status: Optional[ExportStatus] = None,
    ) -> Tuple[List[ExportJob], int]:
        """Page of the user's jobs, newest first, and the total count."""
        conditions = [ExportJob.requested_by == str(user_id)]
        if status is not None:
            conditions.append(ExportJob.status == status)

        total = self.db.execute(select(func.count()).select_from(ExportJob).where(*conditions)).scalar_one()
        items = list(self.db.execute(
            select(ExportJob)
            .where(*conditions)
            .order_by(desc(ExportJob.created_at), desc(ExportJob.id))
            .offset((page - 1) * per_page)
            .limit(per_page)
        ).scalars())
        return items, total
