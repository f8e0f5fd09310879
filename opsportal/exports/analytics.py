# opsportal/exports/analytics.py

"""
Export analytics.

Aggregates export events into trailing windows and compares a window with
the equal-length window immediately before it.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from opsportal.core.config import settings
from opsportal.exports.models import ExportLog
from opsportal.exports.schemas import (
    AnalyticsComparison,
    AnalyticsWindow,
    DayCount,
    MetricDelta,
    TypeCount,
)
from opsportal.utils.logger import get_logger

logger = get_logger(__name__)


def percentage_change(current: int, previous: int) -> float:
    """
    Period-over-period change in percent.

    A metric appearing from nothing counts as +100%; nothing to nothing is 0%.
    """
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def metric_delta(current: int, previous: int) -> MetricDelta:
    return MetricDelta(
        current=current,
        previous=previous,
        delta=current - previous,
        percentage=percentage_change(current, previous),
    )


def clamp_days(days: Optional[int]) -> int:
    if days is None:
        return 30
    return min(settings.analytics_max_days, max(1, int(days)))


class ExportAnalyticsService:
    """Read-only aggregation over the export event log."""

    def __init__(self, db: Session):
        self.db = db

    def _events(self, since: datetime, until: datetime):
        stmt = (
            select(ExportLog.created_at, ExportLog.entity_type)
            .where(ExportLog.created_at >= since, ExportLog.created_at < until)
            .order_by(ExportLog.created_at.asc())
        )
        return self.db.execute(stmt)

    def _aggregate(self, since: datetime, until: datetime, days: int) -> AnalyticsWindow:
        type_counter: Counter = Counter()
        daily: Dict[str, int] = {}
        total = 0
        for created_at, entity_type in self._events(since, until):
            total += 1
            type_counter[getattr(entity_type, "value", entity_type)] += 1
            day = created_at.date().isoformat()
            daily[day] = daily.get(day, 0) + 1

        type_counts = [
            TypeCount(type=t, count=c)
            for t, c in sorted(type_counter.items(), key=lambda item: (-item[1], item[0]))
        ]
        top_days = [
            DayCount(day=d, count=c)
            for d, c in sorted(daily.items(), key=lambda item: (-item[1], item[0]))[: settings.analytics_top_days]
        ]
        return AnalyticsWindow(
            since=since.date().isoformat(),
            days=days,
            total=total,
            type_counts=type_counts,
            daily_counts=daily,
            top_days=top_days,
        )

    def window(self, days: Optional[int] = 30, now: Optional[datetime] = None) -> AnalyticsWindow:
        """Counts over the trailing ``days`` (clamped to 1..analytics_max_days)."""
        days = clamp_days(days)
        now = now or datetime.utcnow()
        return self._aggregate(now - timedelta(days=days), now, days)

    def compare(self, days: Optional[int] = 30, now: Optional[datetime] = None) -> AnalyticsComparison:
        """Current window, the preceding window of equal length, and per-metric deltas."""
        days = clamp_days(days)
        now = now or datetime.utcnow()
        boundary = now - timedelta(days=days)
        current = self._aggregate(boundary, now, days)
        previous = self._aggregate(boundary - timedelta(days=days), boundary, days)

        metrics = {
            "total": metric_delta(current.total, previous.total),
            "types": metric_delta(len(current.type_counts), len(previous.type_counts)),
            "top_day_count": metric_delta(
                current.top_days[0].count if current.top_days else 0,
                previous.top_days[0].count if previous.top_days else 0,
            ),
        }

        current_types = {t.type: t.count for t in current.type_counts}
        previous_types = {t.type: t.count for t in previous.type_counts}
        by_type = {
            entity_type: metric_delta(current_types.get(entity_type, 0), previous_types.get(entity_type, 0))
            for entity_type in sorted(set(current_types) | set(previous_types))
        }

        logger.info(
            "Export analytics comparison computed",
            days=days,
            current_total=current.total,
            previous_total=previous.total,
        )
        return AnalyticsComparison(current=current, previous=previous, metrics=metrics, by_type=by_type)
