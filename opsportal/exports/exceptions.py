# opsportal/exports/exceptions.py

from typing import Iterable, Optional


class ExportError(Exception):
    """Base exception for all export pipeline errors."""

    code = "export_error"

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": str(self)}


class ExportValidationError(ExportError):
    """Raised when an export request cannot be accepted as given."""

    code = "validation_error"

    def __init__(self, message: str, field: Optional[str] = None, value=None):
        self.field = field
        self.value = value
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.field is not None:
            data["field"] = self.field
            data["value"] = self.value
        return data


class InvalidRange(ExportValidationError):
    """Raised when the requested date range is unparseable or inverted."""

    code = "invalid_range"


class UnknownColumn(ExportValidationError):
    """Raised when a requested column is not part of the entity's schema."""

    code = "unknown_column"

    def __init__(self, entity_type: str, columns: Iterable[str]):
        self.entity_type = entity_type
        self.columns = list(columns)
        super().__init__(
            f"Unknown column(s) for '{entity_type}': {', '.join(self.columns)}",
            field="columns",
            value=self.columns,
        )


class UnsupportedEntityType(ExportValidationError):
    """Raised when the entity type has no registered exporter."""

    code = "unsupported_entity_type"

    def __init__(self, entity_type, supported: Iterable[str]):
        self.supported = sorted(supported)
        super().__init__(
            f"Unsupported entity type '{entity_type}'. "
            f"Supported: {', '.join(self.supported)}",
            field="entity_type",
            value=entity_type,
        )


class UnsupportedFormat(ExportValidationError):
    """Raised when the export format is not one of the supported formats."""

    code = "unsupported_format"

    def __init__(self, export_format, supported: Iterable[str]):
        self.supported = sorted(supported)
        super().__init__(
            f"Unsupported export format '{export_format}'. "
            f"Supported: {', '.join(self.supported)}",
            field="format",
            value=export_format,
        )


class InvalidDeliveryMode(ExportValidationError):
    """Raised when the delivery mode is not sync, async or stream."""

    code = "invalid_delivery_mode"


class ExportTooLarge(ExportError):
    """Raised when a buffered format is asked to hold more rows than allowed."""

    code = "export_too_large"

    def __init__(self, row_count: int, ceiling: int, export_format: str = "document"):
        self.row_count = row_count
        self.ceiling = ceiling
        super().__init__(
            f"{export_format} export is limited to {ceiling} rows "
            f"(matched {row_count}). Use format=csv with stream=true "
            f"or submit a background export job instead."
        )

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["row_count"] = self.row_count
        data["ceiling"] = self.ceiling
        return data


class RowSourceFault(ExportError):
    """Raised when reading or projecting records fails mid-export."""

    code = "row_source_fault"


class EncodingFault(ExportError):
    """Raised when an encoder cannot serialize the row sequence."""

    code = "encoding_fault"


class JobNotFound(ExportError):
    """Raised when an export job does not exist or is not visible to the caller."""

    code = "job_not_found"

    def __init__(self, job_id: int):
        self.job_id = job_id
        super().__init__(f"Export job {job_id} not found or access denied")


class JobNotReady(ExportError):
    """Raised when the artifact of a job is requested before it is READY."""

    code = "job_not_ready"

    def __init__(self, job_id: int, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Export job {job_id} is not ready yet. Current status: {status}")

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["status"] = self.status
        return data
