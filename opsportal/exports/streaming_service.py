# opsportal/exports/streaming_service.py

"""
Streaming Export Service - writes export artifacts to disk.

Background jobs use this to turn a row sequence into a file without holding
the rows in memory (CSV), or with the bounded buffering the document format
needs. Partial files are removed when writing fails.
"""

from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Optional, Sequence, Tuple

from opsportal.exports.encoders import FILE_EXTENSIONS, encode_document, iter_csv
from opsportal.exports.models import ExportFormat
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)

PROGRESS_LOG_EVERY = 10000


class _RowCounter:
    """Pass-through iterator that counts rows and logs progress."""

    def __init__(self, rows: Iterable[Dict[str, str]]):
        self._rows = iter(rows)
        self.count = 0

    def __iter__(self) -> Iterator[Dict[str, str]]:
        for row in self._rows:
            self.count += 1
            if self.count % PROGRESS_LOG_EVERY == 0:
                logger.info(f"Processed {self.count} records...")
            yield row


class StreamingExportService:
    """
    Service for streaming export rows directly to files.

    Uses memory-efficient patterns:
    - Incremental CSV writing with periodic flushing
    - No accumulation of CSV rows in memory
    """

    def __init__(self, output_dir: str = "/tmp/exports"):
        """
        Initialize streaming export service.

        Args:
            output_dir: Directory to write export files
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def stream_rows_to_file(
        self,
        rows: Iterable[Dict[str, str]],
        filename: str,
        export_format: ExportFormat,
        labels: Sequence[str],
        keys: Sequence[str],
        title: str = "Export",
        row_ceiling: int = 0,
        font_size: float = 9.0,
        min_font_size: float = 6.0,
        meta: Optional[Dict[str, str]] = None,
        summary: Optional[Callable] = None,
    ) -> Tuple[Path, int]:
        """
        Write rows to ``<output_dir>/<filename>.<ext>``.

        Returns:
            Tuple of (file_path, record_count)
        """
        filepath = self.output_dir / f"{filename}.{FILE_EXTENSIONS[export_format]}"
        counter = _RowCounter(rows)
        logger.info(f"Starting streaming export: {filepath.name}")

        try:
            if export_format == ExportFormat.CSV:
                with open(filepath, "wb") as fh:
                    for chunk in iter_csv(labels, keys, counter):
                        fh.write(chunk)
                        if counter.count and counter.count % PROGRESS_LOG_EVERY == 0:
                            fh.flush()
            else:
                payload = encode_document(
                    title,
                    labels,
                    keys,
                    counter,
                    row_ceiling=row_ceiling,
                    font_size=font_size,
                    min_font_size=min_font_size,
                    meta=meta,
                    summary=summary,
                )
                filepath.write_bytes(payload)
        except Exception as e:
            logger.error(f"Error during {export_format.value} export: {e}", exc_info=True)
            if filepath.exists():
                filepath.unlink()
            raise

        logger.info(
            f"{export_format.value} export completed: "
            f"{counter.count} records written to {filepath}"
        )
        return filepath, counter.count
