# opsportal/exports/events.py

"""
Export-ready events.

Delivery (email, in-app notification, push) lives outside the export
pipeline. Interested modules register a handler:

  @on_export_ready
  def notify_requester(event: ExportReadyEvent):
      ...
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExportReadyEvent:
    job_id: int
    requested_by: str
    entity_type: str
    format: str
    download_url: str
    total_records: int
    completed_at: datetime


Handler = Callable[[ExportReadyEvent], None]

_READY_HANDLERS: List[Handler] = []


def on_export_ready(fn: Handler) -> Handler:
    """Register ``fn`` to be called once for every job that reaches READY."""
    if fn in _READY_HANDLERS:
        raise ValueError(f"Duplicate export-ready handler {fn.__qualname__}")
    _READY_HANDLERS.append(fn)
    return fn


def remove_handler(fn: Handler) -> None:
    if fn in _READY_HANDLERS:
        _READY_HANDLERS.remove(fn)


def publish_export_ready(event: ExportReadyEvent) -> None:
    """
    Call every registered handler.

    A failing handler is logged and skipped; the job is already READY and
    stays that way.
    """
    for handler in list(_READY_HANDLERS):
        try:
            handler(event)
        except Exception as e:
            logger.error(
                f"Export-ready handler {handler.__qualname__} failed: {e}",
                job_id=event.job_id,
                exc_info=True,
            )
    logger.info("Export ready event published", job_id=event.job_id, handlers=len(_READY_HANDLERS))
