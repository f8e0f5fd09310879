# opsportal/exports/validation.py

"""
Export request validation.

Normalizes raw caller input (strings from query parameters or JSON bodies)
into a ``NormalizedExportRequest`` with the column projection resolved.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from opsportal.exports.columns import EntityExporter, ExportScope, get_exporter
from opsportal.exports.exceptions import (
    InvalidDeliveryMode,
    InvalidRange,
    UnsupportedFormat,
)
from opsportal.exports.models import DeliveryMode, ExportEntityType, ExportFormat
from opsportal.exports.preferences import ColumnPreferenceStore, check_columns
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)

FORMAT_ALIASES = {"pdf": ExportFormat.DOCUMENT}


@dataclass(frozen=True)
class NormalizedExportRequest:
    """A validated export request with columns resolved and ordered."""
    entity_type: ExportEntityType
    format: ExportFormat
    columns: Tuple[str, ...]
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    delivery_mode: DeliveryMode = DeliveryMode.SYNC
    scope: ExportScope = field(default_factory=ExportScope)

    @property
    def exporter(self) -> EntityExporter:
        return get_exporter(self.entity_type)

    @property
    def labels(self) -> List[str]:
        return self.exporter.labels(self.columns)

    def to_filters(self) -> Dict[str, Any]:
        """JSON-safe parameters, enough to rebuild this request later."""
        return {
            "start_date": self.start.isoformat() if self.start else None,
            "end_date": self.end.isoformat() if self.end else None,
            "columns": list(self.columns),
            "delivery_mode": self.delivery_mode.value,
            "customer_id": self.scope.customer_id,
        }


def _to_naive_utc(value: datetime) -> datetime:
    # Stored timestamps are naive UTC.
    if value.tzinfo is None:
        return value
    return (value - value.utcoffset()).replace(tzinfo=None)


def parse_boundary(raw: Union[str, date, datetime, None], field_name: str, end_of_day: bool) -> Optional[datetime]:
    """
    Parse one side of a date range.

    Bare dates cover the whole day: a start date begins at midnight, an end
    date runs to the last instant of that day.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return _to_naive_utc(raw)
    if isinstance(raw, date):
        return datetime.combine(raw, time.max if end_of_day else time.min)

    text = str(raw).strip()
    try:
        if len(text) == 10:
            day = date.fromisoformat(text)
            return datetime.combine(day, time.max if end_of_day else time.min)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        raise InvalidRange(
            f"Invalid {field_name} '{raw}'. Expected YYYY-MM-DD or an ISO datetime",
            field=field_name,
            value=raw,
        ) from None
    return _to_naive_utc(parsed)


def parse_columns(raw: Union[str, Sequence[str], None]) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    return [str(c).strip() for c in raw if c is not None and str(c).strip()]


def parse_format(raw) -> ExportFormat:
    if isinstance(raw, ExportFormat):
        return raw
    text = str(raw or "").strip().lower()
    if text in FORMAT_ALIASES:
        return FORMAT_ALIASES[text]
    try:
        return ExportFormat(text)
    except ValueError:
        supported = [f.value for f in ExportFormat] + list(FORMAT_ALIASES)
        raise UnsupportedFormat(raw, supported) from None


def parse_delivery_mode(raw, stream: bool = False) -> DeliveryMode:
    if stream:
        return DeliveryMode.STREAM
    if raw is None or raw == "":
        return DeliveryMode.SYNC
    if isinstance(raw, DeliveryMode):
        return raw
    try:
        return DeliveryMode(str(raw).strip().lower())
    except ValueError:
        raise InvalidDeliveryMode(
            f"Unsupported delivery mode '{raw}'. Supported: "
            f"{', '.join(m.value for m in DeliveryMode)}",
            field="delivery_mode",
            value=raw,
        ) from None


class ExportRequestValidator:
    """
    Validates raw export input.

    Args:
        preferences: Column preference store consulted when no columns are given.
            Without one, omitted columns fall back to the schema default.
    """

    def __init__(self, preferences: Optional[ColumnPreferenceStore] = None):
        self.preferences = preferences

    def validate(
        self,
        entity_type,
        format="csv",
        start_date=None,
        end_date=None,
        columns=None,
        delivery_mode=None,
        stream: bool = False,
        user_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> NormalizedExportRequest:
        """
        Normalize a raw export request.

        Raises:
            UnsupportedEntityType, UnsupportedFormat, InvalidDeliveryMode,
            InvalidRange, UnknownColumn
        """
        exporter = get_exporter(str(getattr(entity_type, "value", entity_type) or "").strip().lower())
        export_format = parse_format(format)
        mode = parse_delivery_mode(delivery_mode, stream)

        start = parse_boundary(start_date, "start_date", end_of_day=False)
        end = parse_boundary(end_date, "end_date", end_of_day=True)
        if start is not None and end is not None and start > end:
            raise InvalidRange(
                f"start_date ({start_date}) must not be after end_date ({end_date})",
                field="start_date",
                value={"start_date": str(start_date), "end_date": str(end_date)},
            )

        requested = parse_columns(columns)
        if requested:
            resolved = check_columns(exporter, requested)
        elif self.preferences is not None and user_id is not None:
            resolved = self.preferences.get(user_id, exporter.entity_type)
        else:
            resolved = exporter.default_columns

        request = NormalizedExportRequest(
            entity_type=exporter.entity_type,
            format=export_format,
            columns=tuple(resolved),
            start=start,
            end=end,
            delivery_mode=mode,
            scope=ExportScope(user_id=user_id, customer_id=customer_id),
        )
        logger.debug(
            "Export request validated",
            entity_type=request.entity_type.value,
            format=request.format.value,
            delivery_mode=request.delivery_mode.value,
            columns=list(request.columns),
        )
        return request
