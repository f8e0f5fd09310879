# opsportal/exports/schemas.py

"""
Pydantic schemas for export API requests and responses.
"""

from datetime import date, datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from opsportal.exports.models import ExportEntityType, ExportFormat, ExportStatus


class ExportJobRequest(BaseModel):
    """Request schema for creating a background export job"""

    entity_type: str = Field(..., description="Record kind to export (services, invoices, ...)")

    format: str = Field("csv", description="Export format (csv, document)")

    start_date: Optional[Union[datetime, date, str]] = Field(
        None, description="Only records created on or after this date"
    )

    end_date: Optional[Union[datetime, date, str]] = Field(
        None, description="Only records created on or before this date (inclusive)"
    )

    columns: Optional[List[str]] = Field(
        None, description="Ordered column keys; defaults to the saved preference"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "entity_type": "invoices",
                "format": "csv",
                "start_date": "2024-01-01",
                "end_date": "2024-01-31",
                "columns": ["number", "customer", "total", "paid"],
            }
        }


class ExportJobResponse(BaseModel):
    """Response schema for export job creation"""

    job_id: int = Field(..., description="Unique export job ID")

    status: ExportStatus = Field(..., description="Current status of export job")

    status_url: str = Field(..., description="URL to check export status")

    url: Optional[str] = Field(None, description="Download URL (when finished within the request)")


class ExportJobStatusResponse(BaseModel):
    """Response schema for export status check"""

    job_id: int = Field(..., description="Export job ID")
    entity_type: ExportEntityType = Field(..., description="Record kind exported")
    format: ExportFormat = Field(..., description="Export format")
    status: ExportStatus = Field(..., description="Current status")
    result_ref: Optional[str] = Field(None, description="Artifact reference (READY only)")
    download_url: Optional[str] = Field(None, description="Download URL (READY only)")
    file_name: Optional[str] = Field(None, description="Generated filename")
    total_records: Optional[int] = Field(None, description="Total number of records in export")
    error_message: Optional[str] = Field(None, description="Error details (FAILED only)")
    created_at: datetime = Field(..., description="When export was requested")
    started_at: Optional[datetime] = Field(None, description="When a worker picked it up")
    completed_at: Optional[datetime] = Field(None, description="When export finished")
    requested_by: str = Field(..., description="User who requested the export")


class ExportJobListItem(BaseModel):
    """Schema for a single export in list view"""

    job_id: int
    entity_type: ExportEntityType
    format: ExportFormat
    status: ExportStatus
    total_records: Optional[int]
    file_name: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]


class PaginatedExportJobListResponse(BaseModel):
    """Response schema for paginated export list"""

    items: List[ExportJobListItem] = Field(..., description="List of exports")
    total_items: int = Field(..., description="Total number of exports")
    page: int = Field(..., description="Current page number")
    per_page: int = Field(..., description="Items per page")
    total_pages: int = Field(..., description="Total number of pages")


class ColumnOption(BaseModel):
    key: str
    label: str


class ColumnPreferenceRequest(BaseModel):
    columns: List[str] = Field(..., min_length=1, description="Ordered column keys to save")


class ColumnPreferenceResponse(BaseModel):
    entity_type: ExportEntityType
    columns: List[str] = Field(..., description="Ordered columns used when none are requested")
    available: List[ColumnOption] = Field(..., description="Every column in schema order")
    saved: bool = Field(..., description="Whether the columns come from a saved preference")


#
# ---------------------------
#  ANALYTICS
# ---------------------------
#


class TypeCount(BaseModel):
    type: str
    count: int


class DayCount(BaseModel):
    day: str
    count: int


class AnalyticsWindow(BaseModel):
    """Export activity over one trailing window"""

    since: str = Field(..., description="First day of the window (YYYY-MM-DD)")
    days: int = Field(..., description="Window length in days")
    total: int = Field(..., description="Exports in the window")
    type_counts: List[TypeCount] = Field(default_factory=list)
    daily_counts: Dict[str, int] = Field(
        default_factory=dict, description="Exports per day; days without exports are absent"
    )
    top_days: List[DayCount] = Field(default_factory=list)


class MetricDelta(BaseModel):
    current: int
    previous: int
    delta: int
    percentage: float


class AnalyticsComparison(BaseModel):
    """Current window against the preceding window of equal length"""

    current: AnalyticsWindow
    previous: AnalyticsWindow
    metrics: Dict[str, MetricDelta] = Field(
        ..., description="total, types and top_day_count deltas"
    )
    by_type: Dict[str, MetricDelta] = Field(default_factory=dict)
