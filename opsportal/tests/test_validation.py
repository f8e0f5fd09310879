# opsportal/tests/test_validation.py

from datetime import date, datetime, time, timedelta, timezone

import pytest

from opsportal.exports.columns import get_exporter, render_value, resolve_path, supported_entity_types
from opsportal.exports.exceptions import (
    ExportValidationError,
    InvalidDeliveryMode,
    InvalidRange,
    UnknownColumn,
    UnsupportedEntityType,
    UnsupportedFormat,
)
from opsportal.exports.models import DeliveryMode, ExportEntityType, ExportFormat
from opsportal.exports.preferences import ColumnPreferenceStore
from opsportal.exports.validation import ExportRequestValidator, parse_boundary


@pytest.fixture
def validator(db_session):
    return ExportRequestValidator(ColumnPreferenceStore(db_session))


class TestColumnSchemas:

    def test_every_entity_type_has_an_exporter(self):
        assert sorted(supported_entity_types()) == sorted(t.value for t in ExportEntityType)

    def test_lookup_accepts_enum_or_string(self):
        assert get_exporter("invoices") is get_exporter(ExportEntityType.INVOICES)

    def test_unknown_entity_type(self):
        with pytest.raises(UnsupportedEntityType) as exc_info:
            get_exporter("spaceships")
        assert "invoices" in exc_info.value.supported

    def test_resolve_path_missing_link_is_none(self):
        record = {"customer": {"user": None}}
        assert resolve_path(record, "customer.user.name") is None
        assert resolve_path(record, "nope") is None

    def test_render_value(self):
        assert render_value(None) == ""
        assert render_value(True) == "Yes"
        assert render_value(False) == "No"
        assert render_value(datetime(2024, 1, 5, 9, 30)) == "2024-01-05 09:30:00"
        assert render_value(datetime(2024, 1, 5, 9, 30), kind="date") == "2024-01-05"
        assert render_value(date(2024, 1, 5)) == "2024-01-05"
        assert render_value(12, kind="money") == "12.00"
        assert render_value(ExportFormat.CSV) == "csv"
        assert render_value(["a", 1]) == '["a", 1]'

    @pytest.mark.parametrize("entity_type", supported_entity_types())
    def test_defaults_are_the_full_schema(self, entity_type):
        exporter = get_exporter(entity_type)
        assert exporter.default_columns == exporter.column_keys

    def test_inquiry_export_includes_message(self):
        assert "message" in get_exporter("inquiries").default_columns


class TestParseBoundary:

    def test_bare_end_date_covers_the_whole_day(self):
        assert parse_boundary("2024-01-31", "end_date", end_of_day=True) == datetime.combine(
            date(2024, 1, 31), time.max
        )

    def test_bare_start_date_starts_at_midnight(self):
        assert parse_boundary("2024-01-01", "start_date", end_of_day=False) == datetime(2024, 1, 1)

    def test_timezone_aware_input_is_normalized_to_utc(self):
        assert parse_boundary("2024-01-01T10:00:00+02:00", "start_date", False) == datetime(2024, 1, 1, 8, 0)

    def test_aware_datetime_object_is_normalized_to_utc(self):
        aware = datetime(2024, 1, 1, 10, 0, tzinfo=timezone(timedelta(hours=2)))
        assert parse_boundary(aware, "start_date", False) == datetime(2024, 1, 1, 8, 0)

    def test_garbage_is_rejected(self):
        with pytest.raises(InvalidRange) as exc_info:
            parse_boundary("last tuesday", "start_date", False)
        assert exc_info.value.field == "start_date"


class TestExportRequestValidator:

    def test_defaults(self, validator):
        request = validator.validate("invoices")
        assert request.entity_type == ExportEntityType.INVOICES
        assert request.format == ExportFormat.CSV
        assert request.delivery_mode == DeliveryMode.SYNC
        assert list(request.columns) == get_exporter("invoices").default_columns
        assert request.start is None and request.end is None

    def test_inverted_range_is_rejected(self, validator):
        with pytest.raises(InvalidRange):
            validator.validate("invoices", start_date="2024-02-01", end_date="2024-01-01")

    def test_mixed_aware_and_naive_datetimes(self, validator):
        start = datetime(2024, 1, 2, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        request = validator.validate("invoices", start_date=start, end_date=datetime(2024, 1, 1, 21, 0))
        assert request.start == datetime(2024, 1, 1, 20, 0)

        with pytest.raises(InvalidRange):
            validator.validate("invoices", start_date=start, end_date=datetime(2024, 1, 1, 19, 0))

    def test_same_day_range_is_accepted(self, validator):
        request = validator.validate("invoices", start_date="2024-01-01", end_date="2024-01-01")
        assert request.start < request.end

    def test_unknown_columns_reject_the_whole_list(self, validator):
        with pytest.raises(UnknownColumn) as exc_info:
            validator.validate("invoices", columns="number,colour,total,flavour")
        assert exc_info.value.columns == ["colour", "flavour"]
        assert exc_info.value.to_dict()["error"] == "unknown_column"

    def test_columns_keep_requested_order(self, validator):
        request = validator.validate("invoices", columns=["total", "number", "total"])
        assert request.columns == ("total", "number")
        assert request.labels == ["Total", "Number"]

    def test_unsupported_format(self, validator):
        with pytest.raises(UnsupportedFormat):
            validator.validate("invoices", format="xlsx")

    def test_pdf_is_an_alias_for_document(self, validator):
        assert validator.validate("invoices", format="PDF").format == ExportFormat.DOCUMENT

    def test_stream_flag(self, validator):
        assert validator.validate("invoices", stream=True).delivery_mode == DeliveryMode.STREAM

    def test_unknown_delivery_mode(self, validator):
        with pytest.raises(InvalidDeliveryMode):
            validator.validate("invoices", delivery_mode="carrier-pigeon")

    def test_validation_errors_share_a_base(self, validator):
        with pytest.raises(ExportValidationError):
            validator.validate("spaceships")

    def test_saved_preference_is_used_when_no_columns_given(self, validator, db_session):
        ColumnPreferenceStore(db_session).set("u1", "invoices", ["paid", "number"])

        assert validator.validate("invoices", user_id="u1").columns == ("paid", "number")
        # Explicit columns win over the preference
        assert validator.validate("invoices", columns="total", user_id="u1").columns == ("total",)
        # Other users still get the default
        assert list(validator.validate("invoices", user_id="u2").columns) == get_exporter("invoices").default_columns

    def test_filters_round_trip_through_json(self, validator):
        request = validator.validate(
            "invoices", start_date="2024-01-01", end_date="2024-01-31", columns="number", customer_id="10"
        )
        filters = request.to_filters()
        again = validator.validate(
            "invoices",
            start_date=filters["start_date"],
            end_date=filters["end_date"],
            columns=filters["columns"],
            customer_id=filters["customer_id"],
        )
        assert (again.start, again.end, again.columns) == (request.start, request.end, request.columns)
        assert again.scope.restricted
