# opsportal/exports/row_source.py

"""
Entity Row Source

Produces the rows of an export lazily: records are pulled from the record
store one at a time, scope-filtered, then projected onto the requested
columns. Nothing here holds more than one record in memory.
"""

from typing import Dict, Iterator

from opsportal.exports.exceptions import RowSourceFault
from opsportal.exports.record_store import RecordStore
from opsportal.exports.validation import NormalizedExportRequest
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


class RowSource:
    """Dispatches to the registered exporter for the request's entity type."""

    def __init__(self, store: RecordStore):
        self.store = store

    def _records(self, request: NormalizedExportRequest):
        exporter = request.exporter
        return self.store.stream(
            exporter.entity_type.value, exporter.timestamp_field, request.start, request.end
        )

    def rows(self, request: NormalizedExportRequest) -> Iterator[Dict[str, str]]:
        """
        Single-pass iterator of ``{column_key: rendered_value}`` rows.

        Raises:
            RowSourceFault: while iterating, if the store or a projection fails
        """
        exporter = request.exporter
        keys = request.columns
        scope = request.scope
        produced = 0
        try:
            for record in self._records(request):
                if not exporter.admits(record, scope):
                    continue
                row = exporter.project_row(record, keys)
                produced += 1
                yield row
        except RowSourceFault:
            raise
        except Exception as e:
            logger.error(
                f"Row source failed after {produced} rows: {e}",
                entity_type=exporter.entity_type.value,
                exc_info=True,
            )
            raise RowSourceFault(
                f"Failed reading {exporter.entity_type.value} records: {e}"
            ) from e
        logger.debug("Row source exhausted", entity_type=exporter.entity_type.value, rows=produced)

    def count(self, request: NormalizedExportRequest) -> int:
        """
        Number of rows the request will produce.

        Unrestricted requests on exporters without a record filter use the
        store's count. Anything else walks the records once through the
        filters without projecting them.
        """
        exporter = request.exporter
        try:
            if not request.scope.restricted and exporter.record_filter is None:
                return self.store.count(
                    exporter.entity_type.value, exporter.timestamp_field, request.start, request.end
                )
            return sum(1 for r in self._records(request) if exporter.admits(r, request.scope))
        except Exception as e:
            raise RowSourceFault(
                f"Failed counting {exporter.entity_type.value} records: {e}"
            ) from e
