# opsportal/tests/test_services.py

import csv
import io
from datetime import datetime

import pytest

from opsportal.core.config import settings
from opsportal.exports.exceptions import ExportTooLarge, InvalidDeliveryMode, UnknownColumn
from opsportal.exports.models import ExportLog
from opsportal.exports.services import ExportService, build_filename
from opsportal.exports.validation import ExportRequestValidator


@pytest.fixture
def service(db_session, record_store):
    return ExportService(db_session, record_store)


def _body(result) -> bytes:
    return b"".join(result.chunks) if result.streamed else result.body


def test_buffered_csv(service):
    result = service.export("u1", "invoices", columns="number,customer,paid")

    assert not result.streamed
    assert result.row_count == 3
    assert result.media_type == "text/csv; charset=utf-8"
    assert result.filename.startswith("invoices_export_") and result.filename.endswith(".csv")
    rows = list(csv.reader(io.StringIO(result.body.decode(), newline="")))
    assert rows[0] == ["Number", "Customer", "Paid"]
    assert rows[2] == ["INV-002", 'Bob "The Builder"', "0.00"]


def test_stream_flag_streams(service):
    result = service.export("u1", "invoices", stream=True)

    assert result.streamed
    assert result.row_count is None
    assert _body(result) == service.export("u1", "invoices").body


def test_large_csv_switches_to_streaming(service, monkeypatch):
    monkeypatch.setattr(settings, "export_buffer_threshold", 2)

    result = service.export("u1", "invoices")

    assert result.streamed
    assert len(list(csv.reader(io.StringIO(_body(result).decode(), newline="")))) == 4


def test_document_over_ceiling_is_rejected_but_csv_stream_succeeds(service, db_session, monkeypatch):
    monkeypatch.setattr(settings, "export_document_row_ceiling", 2)

    with pytest.raises(ExportTooLarge) as exc_info:
        service.export("u1", "invoices", format="document")
    assert exc_info.value.row_count == 3

    result = service.export("u1", "invoices", stream=True)
    assert _body(result).count(b"\r\n") == 4
    # Only the accepted export was recorded
    assert db_session.query(ExportLog).count() == 1


def test_document_export(service):
    result = service.export("u1", "invoices", format="pdf", start_date="2024-01-01", end_date="2024-01-31")

    assert result.media_type == "application/pdf"
    assert result.filename.endswith(".pdf")
    assert result.row_count == 2
    assert result.body.startswith(b"%PDF")


def test_customer_scope_applies_to_export(service):
    result = service.export("u1", "invoices", columns="number", customer_id="11")

    assert result.body == b"Number\r\nINV-002\r\n"
    assert result.row_count == 1


def test_export_event_is_recorded(service, db_session):
    service.export("u1", "invoices", format="csv", start_date="2024-01-01", stream=True)

    event = db_session.query(ExportLog).one()
    assert event.user_id == "u1"
    assert event.entity_type.value == "invoices"
    assert event.delivery_mode.value == "stream"
    assert event.filters["start_date"] == "2024-01-01T00:00:00"


def test_rejected_request_records_nothing(service, db_session):
    with pytest.raises(UnknownColumn):
        service.export("u1", "invoices", columns="number,colour")
    assert db_session.query(ExportLog).count() == 0


def test_async_mode_is_not_served_synchronously(service):
    request = ExportRequestValidator().validate("invoices", delivery_mode="async")
    with pytest.raises(InvalidDeliveryMode):
        service.run(request, "u1")


def test_build_filename():
    request = ExportRequestValidator().validate("payments")
    assert build_filename(request, datetime(2024, 1, 15, 14, 30, 22)) == "payments_export_20240115_143022"
