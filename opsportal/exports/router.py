### opsportal/exports/router.py

"""
Export API Endpoints

Provides REST API for one-shot exports, background export jobs, column
preferences and export analytics. Pipeline errors propagate as
``ExportError`` and are rendered by the handler installed in ``main``.
"""

import math
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import FileResponse, RedirectResponse, StreamingResponse
from sqlalchemy.orm import Session

from opsportal.core.db import get_db
from opsportal.core.dependencies import CurrentUser, get_current_user
from opsportal.exports.analytics import ExportAnalyticsService
from opsportal.exports.columns import get_exporter
from opsportal.exports.encoders import MEDIA_TYPES
from opsportal.exports.jobs import ExportJobManager, download_path
from opsportal.exports.models import ExportJob, ExportStatus
from opsportal.exports.preferences import ColumnPreferenceStore
from opsportal.exports.record_store import RecordStore, build_record_store
from opsportal.exports.schemas import (
    ColumnOption,
    ColumnPreferenceRequest,
    ColumnPreferenceResponse,
    ExportJobListItem,
    ExportJobRequest,
    ExportJobResponse,
    ExportJobStatusResponse,
    PaginatedExportJobListResponse,
)
from opsportal.exports.services import ExportService
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/exports", tags=["Exports"])


def get_record_store(db: Session = Depends(get_db)) -> RecordStore:
    return build_record_store(db)


def get_job_manager(
    db: Session = Depends(get_db),
    store: RecordStore = Depends(get_record_store),
) -> ExportJobManager:
    return ExportJobManager(db, store)


def _attachment(filename: str) -> dict:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


def _status_response(job: ExportJob) -> ExportJobStatusResponse:
    ready = job.status == ExportStatus.READY
    return ExportJobStatusResponse(
        job_id=job.id,
        entity_type=job.entity_type,
        format=job.format,
        status=job.status,
        result_ref=job.result_ref if ready else None,
        download_url=download_path(job.id) if ready else None,
        file_name=job.file_name,
        total_records=job.total_records,
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        requested_by=job.requested_by,
    )


#
# ---------------------------
#  SYNCHRONOUS EXPORT
# ---------------------------
#


@router.get("")
def export_records(
    entity_type: str = Query(..., description="Record kind to export"),
    format: str = Query("csv", description="csv or document"),
    start_date: Optional[str] = Query(None, description="YYYY-MM-DD or ISO datetime"),
    end_date: Optional[str] = Query(None, description="YYYY-MM-DD (inclusive) or ISO datetime"),
    columns: Optional[str] = Query(None, description="Comma-separated column keys"),
    stream: bool = Query(False, description="Stream CSV output row by row"),
    db: Session = Depends(get_db),
    store: RecordStore = Depends(get_record_store),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Export records and return the file in the response.

    **Formats:**
    - csv: buffered, or streamed when ``stream=true`` or the export is large
      (gzip-encoded when the client accepts it)
    - document: PDF table, limited to ``export_document_row_ceiling`` rows

    Omitted columns fall back to the caller's saved preference, then to the
    entity's default columns.
    """
    result = ExportService(db, store).export(
        user_id=current_user.id,
        entity_type=entity_type,
        format=format,
        start_date=start_date,
        end_date=end_date,
        columns=columns,
        stream=stream,
        customer_id=current_user.customer_id,
    )

    headers = _attachment(result.filename)
    if result.streamed:
        return StreamingResponse(result.chunks, media_type=result.media_type, headers=headers)
    headers["X-Export-Row-Count"] = str(result.row_count)
    return Response(content=result.body, media_type=result.media_type, headers=headers)


#
# ---------------------------
#  BACKGROUND JOBS
# ---------------------------
#


@router.post("/jobs", response_model=ExportJobResponse, status_code=status.HTTP_202_ACCEPTED)
def create_export_job(
    export_request: ExportJobRequest,
    manager: ExportJobManager = Depends(get_job_manager),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Create a background export job.

    Returns immediately with the job id and a status URL to poll. Small
    exports may already be READY, in which case ``url`` is set.
    """
    result = manager.enqueue(
        user_id=current_user.id,
        entity_type=export_request.entity_type,
        format=export_request.format,
        start_date=export_request.start_date,
        end_date=export_request.end_date,
        columns=export_request.columns,
        customer_id=current_user.customer_id,
    )
    return ExportJobResponse(
        job_id=result.job_id,
        status=result.status,
        status_url=f"/exports/jobs/{result.job_id}",
        url=result.url,
    )


@router.get("/jobs", response_model=PaginatedExportJobListResponse)
def list_export_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    per_page: int = Query(25, ge=1, le=100, description="Items per page"),
    status_filter: Optional[ExportStatus] = Query(None, alias="status", description="Filter by status"),
    manager: ExportJobManager = Depends(get_job_manager),
    current_user: CurrentUser = Depends(get_current_user),
):
    """List the caller's export jobs, newest first."""
    jobs, total = manager.list_jobs(current_user.id, page=page, per_page=per_page, status=status_filter)
    items = [
        ExportJobListItem(
            job_id=job.id,
            entity_type=job.entity_type,
            format=job.format,
            status=job.status,
            total_records=job.total_records,
            file_name=job.file_name,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )
        for job in jobs
    ]
    return PaginatedExportJobListResponse(
        items=items,
        total_items=total,
        page=page,
        per_page=per_page,
        total_pages=math.ceil(total / per_page) if total else 0,
    )


@router.get("/jobs/{job_id}", response_model=ExportJobStatusResponse)
def get_export_job_status(
    job_id: int,
    manager: ExportJobManager = Depends(get_job_manager),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Check the status of an export job.

    **Status Values:**
    - pending: waiting for a worker
    - processing: being generated
    - ready: artifact available at ``download_url``
    - failed: see ``error_message``
    """
    return _status_response(manager.status(job_id, current_user.id))


@router.get("/jobs/{job_id}/download")
def download_export_job(
    job_id: int,
    manager: ExportJobManager = Depends(get_job_manager),
    current_user: CurrentUser = Depends(get_current_user),
):
    """
    Retrieve the artifact of a READY job.

    Redirects to the storage URL when the artifact store provides one,
    otherwise serves the file from local disk.
    """
    job = manager.ready_job(job_id, current_user.id)
    artifacts = manager.artifacts

    path = artifacts.local_path(job.result_ref)
    if path is not None:
        return FileResponse(
            path=str(path),
            filename=job.file_name,
            media_type=MEDIA_TYPES[job.format],
        )

    url = artifacts.url(job.result_ref)
    if not url:
        logger.error("Export artifact missing", job_id=job_id, result_ref=job.result_ref)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export file not found")
    return RedirectResponse(url=url, status_code=status.HTTP_307_TEMPORARY_REDIRECT)


#
# ---------------------------
#  COLUMN PREFERENCES
# ---------------------------
#


def _preference_response(store: ColumnPreferenceStore, user_id: str, entity_type: str) -> ColumnPreferenceResponse:
    exporter = get_exporter(entity_type)
    saved: Optional[List[str]] = store.saved(user_id, exporter.entity_type)
    return ColumnPreferenceResponse(
        entity_type=exporter.entity_type,
        columns=saved or exporter.default_columns,
        available=[ColumnOption(key=c.key, label=c.label) for c in exporter.columns],
        saved=saved is not None,
    )


@router.get("/preferences/{entity_type}", response_model=ColumnPreferenceResponse)
def get_column_preference(
    entity_type: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    return _preference_response(ColumnPreferenceStore(db), current_user.id, entity_type)


@router.put("/preferences/{entity_type}", response_model=ColumnPreferenceResponse)
def set_column_preference(
    entity_type: str,
    body: ColumnPreferenceRequest,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    store = ColumnPreferenceStore(db)
    store.set(current_user.id, entity_type, body.columns)
    return _preference_response(store, current_user.id, entity_type)


@router.delete("/preferences/{entity_type}", response_model=ColumnPreferenceResponse)
def reset_column_preference(
    entity_type: str,
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Forget the saved columns; the entity's defaults apply again."""
    store = ColumnPreferenceStore(db)
    store.clear(current_user.id, entity_type)
    return _preference_response(store, current_user.id, entity_type)


#
# ---------------------------
#  ANALYTICS
# ---------------------------
#


@router.get("/analytics")
def export_analytics(
    days: int = Query(30, description="Window length in days (clamped to 1..90)"),
    compare: bool = Query(False, description="Include the preceding window and deltas"),
    db: Session = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
):
    service = ExportAnalyticsService(db)
    if compare:
        return service.compare(days)
    return service.window(days)
