# opsportal/exports/services.py

"""
Synchronous export handler.

Validator -> (preference store) -> row source -> encoder, returning the
artifact for the caller to send inline.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, Optional

from sqlalchemy.orm import Session

from opsportal.core.config import settings
from opsportal.exports.encoders import (
    FILE_EXTENSIONS,
    MEDIA_TYPES,
    encode_csv,
    encode_document,
    iter_csv,
)
from opsportal.exports.exceptions import ExportTooLarge, InvalidDeliveryMode
from opsportal.exports.models import DeliveryMode, ExportFormat, ExportLog
from opsportal.exports.preferences import ColumnPreferenceStore
from opsportal.exports.record_store import RecordStore
from opsportal.exports.row_source import RowSource
from opsportal.exports.validation import ExportRequestValidator, NormalizedExportRequest
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ExportResult:
    """
    An encoded export ready to send.

    Exactly one of ``body`` (buffered) or ``chunks`` (streamed) is set.
    ``row_count`` is unknown for streamed results.
    """
    media_type: str
    filename: str
    body: Optional[bytes] = None
    chunks: Optional[Iterator[bytes]] = None
    row_count: Optional[int] = None

    @property
    def streamed(self) -> bool:
        return self.chunks is not None


def build_filename(request: NormalizedExportRequest, now: Optional[datetime] = None) -> str:
    """Base filename without extension, e.g. ``invoices_export_20240115_143022``."""
    timestamp = (now or datetime.utcnow()).strftime("%Y%m%d_%H%M%S")
    return f"{request.entity_type.value}_export_{timestamp}"


def document_meta(request: NormalizedExportRequest) -> Dict[str, str]:
    return {
        "Range Start": request.start.strftime("%Y-%m-%d") if request.start else "-",
        "Range End": request.end.strftime("%Y-%m-%d") if request.end else "-",
    }


def record_export_event(db: Session, request: NormalizedExportRequest, user_id: str) -> ExportLog:
    """Append one export event for analytics."""
    event = ExportLog(
        user_id=str(user_id),
        entity_type=request.entity_type,
        format=request.format,
        delivery_mode=request.delivery_mode,
        filters=request.to_filters(),
        created_at=datetime.utcnow(),
    )
    db.add(event)
    db.commit()
    return event


class ExportService:
    """
    One-shot export pipeline.

    Args:
        db: Database session (preferences and export events)
        store: Record store the rows are read from
    """

    def __init__(self, db: Session, store: RecordStore):
        self.db = db
        self.preferences = ColumnPreferenceStore(db)
        self.validator = ExportRequestValidator(self.preferences)
        self.row_source = RowSource(store)

    def export(
        self,
        user_id: str,
        entity_type,
        format="csv",
        start_date=None,
        end_date=None,
        columns=None,
        stream: bool = False,
        customer_id: Optional[str] = None,
    ) -> ExportResult:
        """
        Validate and run an export.

        Validation errors are raised before anything is encoded.
        """
        request = self.validator.validate(
            entity_type=entity_type,
            format=format,
            start_date=start_date,
            end_date=end_date,
            columns=columns,
            stream=stream,
            user_id=user_id,
            customer_id=customer_id,
        )
        return self.run(request, user_id)

    def run(self, request: NormalizedExportRequest, user_id: str) -> ExportResult:
        if request.delivery_mode == DeliveryMode.ASYNC:
            raise InvalidDeliveryMode(
                "Asynchronous exports must be submitted as export jobs",
                field="delivery_mode",
                value=request.delivery_mode.value,
            )

        exporter = request.exporter
        labels, keys = request.labels, request.columns
        filename = f"{build_filename(request)}.{FILE_EXTENSIONS[request.format]}"
        media_type = MEDIA_TYPES[request.format]

        logger.info(
            "Starting synchronous export",
            user_id=user_id,
            entity_type=request.entity_type.value,
            format=request.format.value,
            delivery_mode=request.delivery_mode.value,
        )

        if request.format == ExportFormat.DOCUMENT:
            ceiling = settings.export_document_row_ceiling
            count = self.row_source.count(request)
            if count > ceiling:
                raise ExportTooLarge(count, ceiling)
            record_export_event(self.db, request, user_id)
            body = encode_document(
                exporter.title,
                labels,
                keys,
                self.row_source.rows(request),
                row_ceiling=ceiling,
                font_size=settings.export_document_font_size,
                min_font_size=settings.export_document_min_font_size,
                meta=document_meta(request),
                summary=exporter.summary,
            )
            return ExportResult(media_type=media_type, filename=filename, body=body, row_count=count)

        streaming = request.delivery_mode == DeliveryMode.STREAM
        count = None
        if not streaming:
            count = self.row_source.count(request)
            if count > settings.export_buffer_threshold:
                logger.info(
                    "Switching to streaming CSV above buffer threshold",
                    rows=count,
                    threshold=settings.export_buffer_threshold,
                )
                streaming = True

        record_export_event(self.db, request, user_id)

        if streaming:
            chunks = iter_csv(labels, keys, self.row_source.rows(request))
            return ExportResult(
                media_type=media_type,
                filename=filename,
                chunks=self._guard_stream(chunks, request),
            )

        body = encode_csv(labels, keys, self.row_source.rows(request))
        return ExportResult(media_type=media_type, filename=filename, body=body, row_count=count)

    def _guard_stream(self, chunks: Iterator[bytes], request: NormalizedExportRequest) -> Iterator[bytes]:
        """
        Relay streamed chunks, logging a fault before re-raising it.

        Once the first chunk is sent there is no in-band way to report an
        error: the response ends early and the client sees a truncated file.
        """
        sent = 0
        try:
            for chunk in chunks:
                sent += len(chunk)
                yield chunk
        except Exception as e:
            logger.error(
                f"Streaming export aborted after {sent} bytes: {e}",
                entity_type=request.entity_type.value,
                exc_info=True,
            )
            raise
