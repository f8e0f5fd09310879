# opsportal/exports/encoders.py

"""
Format encoders.

- ``encode_csv``: buffered CSV, one body with a known length.
- ``iter_csv``: streaming CSV, header first then one chunk per row.
- ``encode_document``: paginated PDF table rendered with reportlab.

Both CSV encoders share one writer configuration so their output is
byte-identical for the same rows.
"""

import csv
from datetime import datetime
from io import BytesIO, StringIO
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from opsportal.exports.exceptions import EncodingFault, ExportError, ExportTooLarge
from opsportal.exports.models import ExportFormat
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)

Row = Dict[str, str]

MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv; charset=utf-8",
    ExportFormat.DOCUMENT: "application/pdf",
}

FILE_EXTENSIONS = {
    ExportFormat.CSV: "csv",
    ExportFormat.DOCUMENT: "pdf",
}

ENCODING = "utf-8"

# Document layout
PAGE_SIZE = landscape(letter)
PAGE_MARGIN = 36
CELL_PADDING = 3
MAX_COLUMN_WIDTH = 200
BODY_FONT = "Helvetica"
HEADER_FONT = "Helvetica-Bold"
ELLIPSIS = "…"


#
# ---------------------------
#  CSV
# ---------------------------
#


def _csv_writer(buffer: StringIO):
    # RFC4180: quote only fields holding the delimiter, a quote or a line break.
    return csv.writer(
        buffer,
        delimiter=",",
        quotechar='"',
        doublequote=True,
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\r\n",
    )


def _row_values(row: Row, keys: Sequence[str]) -> List[str]:
    return [row.get(k, "") for k in keys]


def encode_csv(labels: Sequence[str], keys: Sequence[str], rows: Iterable[Row]) -> bytes:
    """
    Buffered CSV: reads every row into memory, then serializes once.

    Raises:
        RowSourceFault: if the rows fail while being read
        EncodingFault: if serialization fails
    """
    materialized = list(rows)
    try:
        buffer = StringIO()
        writer = _csv_writer(buffer)
        writer.writerow(labels)
        for row in materialized:
            writer.writerow(_row_values(row, keys))
        return buffer.getvalue().encode(ENCODING)
    except Exception as e:
        logger.error(f"Error during CSV encoding: {e}", exc_info=True)
        raise EncodingFault(f"CSV encoding failed: {e}") from e


def iter_csv(labels: Sequence[str], keys: Sequence[str], rows: Iterable[Row]) -> Iterator[bytes]:
    """
    Streaming CSV: yields the header immediately, then one encoded chunk per row.

    Memory use does not grow with the number of rows.
    """
    buffer = StringIO()
    writer = _csv_writer(buffer)

    def _take() -> bytes:
        chunk = buffer.getvalue().encode(ENCODING)
        buffer.seek(0)
        buffer.truncate(0)
        return chunk

    try:
        writer.writerow(labels)
    except Exception as e:
        raise EncodingFault(f"CSV header encoding failed: {e}") from e
    yield _take()

    for row in rows:
        try:
            writer.writerow(_row_values(row, keys))
        except Exception as e:
            logger.error(f"Error during CSV row encoding: {e}", exc_info=True)
            raise EncodingFault(f"CSV encoding failed: {e}") from e
        yield _take()


#
# ---------------------------
#  DOCUMENT (PDF)
# ---------------------------
#


def fit_text(text: str, width: float, font: str, size: float) -> str:
    """Truncate ``text`` with an ellipsis so it renders within ``width`` points."""
    if stringWidth(text, font, size) <= width:
        return text
    limit = width - stringWidth(ELLIPSIS, font, size)
    if limit <= 0:
        return ELLIPSIS
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if stringWidth(text[:mid], font, size) <= limit:
            lo = mid
        else:
            hi = mid - 1
    return text[:lo].rstrip() + ELLIPSIS


def _natural_widths(labels: Sequence[str], body: Sequence[Sequence[str]], size: float) -> List[float]:
    widths = []
    for i, label in enumerate(labels):
        widest = stringWidth(label, HEADER_FONT, size)
        for values in body:
            widest = max(widest, stringWidth(values[i], BODY_FONT, size))
            if widest >= MAX_COLUMN_WIDTH:
                break
        widths.append(min(widest, MAX_COLUMN_WIDTH) + 2 * CELL_PADDING)
    return widths


def layout_columns(
    labels: Sequence[str],
    body: Sequence[Sequence[str]],
    available: float,
    font_size: float,
    min_font_size: float,
) -> tuple:
    """
    Pick a font size and column widths that fit ``available`` points.

    The font shrinks towards ``min_font_size`` when the natural widths are too
    wide; if the floor is reached the widths are scaled down and overflowing
    cells get truncated.

    Returns:
        Tuple of (font_size, column_widths)
    """
    if not labels:
        return font_size, []
    widths = _natural_widths(labels, body, font_size)
    total = sum(widths)
    if total > available:
        font_size = max(min_font_size, font_size * available / total)
        widths = _natural_widths(labels, body, font_size)
        total = sum(widths)
    # Scale to the page: shrinks overflowing tables, spreads spare width otherwise.
    widths = [w * available / total for w in widths]
    return font_size, widths


def encode_document(
    title: str,
    labels: Sequence[str],
    keys: Sequence[str],
    rows: Iterable[Row],
    row_ceiling: int,
    font_size: float = 9.0,
    min_font_size: float = 6.0,
    meta: Optional[Dict[str, str]] = None,
    summary: Optional[Callable[[Sequence[Row]], Dict[str, str]]] = None,
) -> bytes:
    """
    Render rows as a paginated PDF table.

    The whole row set is buffered because pagination needs it. Row height is
    fixed: cell text never wraps, it is truncated with an ellipsis instead.

    Raises:
        ExportTooLarge: once more than ``row_ceiling`` rows have been read
        RowSourceFault: if the rows fail while being read
        EncodingFault: if the document cannot be built
    """
    buffered: List[Row] = []
    for row in rows:
        buffered.append(row)
        if len(buffered) > row_ceiling:
            raise ExportTooLarge(len(buffered), row_ceiling)

    try:
        page_width, _ = PAGE_SIZE
        available = page_width - 2 * PAGE_MARGIN
        body = [
            [v.replace("\r", " ").replace("\n", " ") for v in _row_values(row, keys)]
            for row in buffered
        ]
        size, widths = layout_columns(labels, body, available, font_size, min_font_size)

        header = [fit_text(label, w - 2 * CELL_PADDING, HEADER_FONT, size) for label, w in zip(labels, widths)]
        table_data = [header] + [
            [fit_text(v, w - 2 * CELL_PADDING, BODY_FONT, size) for v, w in zip(values, widths)]
            for values in body
        ]
        row_height = size * 1.2 + 2 * CELL_PADDING

        styles = getSampleStyleSheet()
        story = [Paragraph(escape(title), styles["Title"]), Spacer(1, 6)]

        if labels:
            table = Table(
                table_data,
                colWidths=widths,
                rowHeights=[row_height] * len(table_data),
                repeatRows=1,
            )
            table.setStyle(TableStyle([
                ("BACKGROUND", (0, 0), (-1, 0), colors.grey),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.whitesmoke),
                ("FONTNAME", (0, 0), (-1, 0), HEADER_FONT),
                ("FONTNAME", (0, 1), (-1, -1), BODY_FONT),
                ("FONTSIZE", (0, 0), (-1, -1), size),
                ("LEADING", (0, 0), (-1, -1), size * 1.2),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                ("LEFTPADDING", (0, 0), (-1, -1), CELL_PADDING),
                ("RIGHTPADDING", (0, 0), (-1, -1), CELL_PADDING),
                ("TOPPADDING", (0, 0), (-1, -1), CELL_PADDING),
                ("BOTTOMPADDING", (0, 0), (-1, -1), CELL_PADDING),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.black),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.beige]),
            ]))
            story.append(table)

        details = {"Rows": str(len(buffered)), "Generated At": datetime.utcnow().strftime("%Y-%m-%d %H:%M:%S")}
        details.update(meta or {})
        if summary is not None:
            details.update(summary(buffered))
        story.append(Spacer(1, 12))
        story.append(Paragraph("Summary", styles["Heading3"]))
        for name, value in details.items():
            story.append(Paragraph(escape(f"{name}: {value}"), styles["Normal"]))

        output = BytesIO()
        doc = SimpleDocTemplate(
            output,
            pagesize=PAGE_SIZE,
            leftMargin=PAGE_MARGIN,
            rightMargin=PAGE_MARGIN,
            topMargin=PAGE_MARGIN,
            bottomMargin=PAGE_MARGIN,
            title=title,
        )
        doc.build(story)
        logger.info("Document export rendered", title=title, rows=len(buffered), font_size=round(size, 2))
        return output.getvalue()
    except ExportError:
        raise
    except Exception as e:
        logger.error(f"Error during document encoding: {e}", exc_info=True)
        raise EncodingFault(f"Document encoding failed: {e}") from e
