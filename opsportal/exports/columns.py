# opsportal/exports/columns.py

"""
Column schemas and the per-entity exporter registry.

Each exportable entity type registers one ``EntityExporter`` describing its
ordered columns, the timestamp used for date-range filtering, and the
ownership filter applied before projection. The pipeline looks exporters up
by entity type instead of branching on it.
"""

import importlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from opsportal.exports.exceptions import UnsupportedEntityType
from opsportal.exports.models import ExportEntityType
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def resolve_path(record: Any, path: str) -> Any:
    """
    Follow a dotted attribute/key path on a record.

    Works for ORM objects and plain mappings alike. Any missing link
    along the way yields None.
    """
    current = record
    for part in path.split("."):
        if current is None:
            return None
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            current = getattr(current, part, None)
    return current


def render_value(value: Any, kind: str = "text") -> str:
    """Serialize a raw field value for export."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, datetime):
        if kind == "date":
            return value.date().isoformat()
        return value.strftime(DATETIME_FORMAT)
    if isinstance(value, date):
        return value.isoformat()
    if kind == "money":
        try:
            return str(Decimal(str(value)).quantize(Decimal("0.01")))
        except InvalidOperation:
            return str(value)
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    return str(value)


@dataclass(frozen=True)
class ExportColumn:
    """One exportable field: stable key, display label and how to extract it."""
    key: str
    label: str
    extractor: Callable[[Any], Any]
    kind: str = "text"

    def render(self, record: Any) -> str:
        return render_value(self.extractor(record), self.kind)


def column(key: str, label: str, path: Optional[str] = None, kind: str = "text") -> ExportColumn:
    """Build a column that reads ``path`` (defaults to ``key``) from the record."""
    source = path or key
    return ExportColumn(key=key, label=label, extractor=lambda r: resolve_path(r, source), kind=kind)


@dataclass(frozen=True)
class ExportScope:
    """
    Ownership restriction supplied by the caller.

    ``customer_id`` limits customer-owned records to one customer;
    ``user_id`` identifies the requester for user-owned records.
    Without ``customer_id`` the scope is unrestricted.
    """
    user_id: Optional[str] = None
    customer_id: Optional[str] = None

    @property
    def restricted(self) -> bool:
        return self.customer_id is not None


def unrestricted(record: Any, scope: ExportScope) -> bool:
    return True


def owned_by_customer(path: str = "customer_id") -> Callable[[Any, ExportScope], bool]:
    """Scope filter keeping records whose ``path`` matches the scoped customer."""
    def _filter(record: Any, scope: ExportScope) -> bool:
        if not scope.restricted:
            return True
        return str(resolve_path(record, path)) == str(scope.customer_id)
    return _filter


def owned_by_user(*paths: str) -> Callable[[Any, ExportScope], bool]:
    """Scope filter keeping records where any of ``paths`` is the requesting user."""
    def _filter(record: Any, scope: ExportScope) -> bool:
        if not scope.restricted:
            return True
        return any(str(resolve_path(record, p)) == str(scope.user_id) for p in paths)
    return _filter


@dataclass(frozen=True)
class EntityExporter:
    """Everything the pipeline needs to export one entity type."""
    entity_type: ExportEntityType
    title: str
    columns: Tuple[ExportColumn, ...]
    timestamp_field: str = "created_at"
    scope_filter: Callable[[Any, ExportScope], bool] = unrestricted
    record_filter: Optional[Callable[[Any], bool]] = None
    summary: Optional[Callable[[Sequence[Dict[str, str]]], Dict[str, str]]] = None
    _by_key: Dict[str, ExportColumn] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        keys = [c.key for c in self.columns]
        if len(keys) != len(set(keys)):
            raise ValueError(f"Duplicate column keys for {self.entity_type.value}")
        object.__setattr__(self, "_by_key", {c.key: c for c in self.columns})

    def admits(self, record: Any, scope: ExportScope) -> bool:
        """Whether a record belongs in this export for the given scope."""
        if self.record_filter is not None and not self.record_filter(record):
            return False
        return self.scope_filter(record, scope)

    @property
    def column_keys(self) -> List[str]:
        return [c.key for c in self.columns]

    @property
    def default_columns(self) -> List[str]:
        return self.column_keys

    def has_column(self, key: str) -> bool:
        return key in self._by_key

    def labels(self, keys: Iterable[str]) -> List[str]:
        return [self._by_key[k].label for k in keys]

    def project_row(self, record: Any, keys: Sequence[str]) -> Dict[str, str]:
        """Render the selected columns of one record, in order."""
        return {k: self._by_key[k].render(record) for k in keys}


_EXPORTERS: Dict[ExportEntityType, EntityExporter] = {}
_builders_loaded = False


def register_exporter(exporter: EntityExporter) -> EntityExporter:
    """Register an exporter. Each entity type may be registered once."""
    if exporter.entity_type in _EXPORTERS:
        raise ValueError(
            f"Duplicate exporter for entity_type={exporter.entity_type.value}"
        )
    _EXPORTERS[exporter.entity_type] = exporter
    return exporter


def _load_builders() -> None:
    global _builders_loaded
    if not _builders_loaded:
        importlib.import_module("opsportal.exports.builders")
        _builders_loaded = True
        logger.debug("Export builders loaded", count=len(_EXPORTERS))


def supported_entity_types() -> List[str]:
    _load_builders()
    return [t.value for t in _EXPORTERS]


def get_exporter(entity_type) -> EntityExporter:
    """Look up the exporter for an entity type (enum member or raw string)."""
    _load_builders()
    try:
        key = ExportEntityType(entity_type)
    except ValueError:
        raise UnsupportedEntityType(entity_type, supported_entity_types()) from None
    exporter = _EXPORTERS.get(key)
    if exporter is None:
        raise UnsupportedEntityType(entity_type, supported_entity_types())
    return exporter
