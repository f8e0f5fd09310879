# opsportal/tests/test_analytics.py

from datetime import datetime, timedelta

import pytest

from opsportal.exports.analytics import ExportAnalyticsService, clamp_days, percentage_change
from opsportal.exports.models import DeliveryMode, ExportEntityType, ExportFormat, ExportLog

NOW = datetime(2024, 3, 31, 12, 0)


@pytest.fixture
def add_event(db_session):
    def _add(entity_type, created_at):
        db_session.add(ExportLog(
            user_id="u1",
            entity_type=ExportEntityType(entity_type),
            format=ExportFormat.CSV,
            delivery_mode=DeliveryMode.SYNC,
            filters={},
            created_at=created_at,
        ))
        db_session.commit()
    return _add


@pytest.fixture
def service(db_session):
    return ExportAnalyticsService(db_session)


class TestPercentageChange:

    @pytest.mark.parametrize("current, previous, expected", [
        (5, 0, 100.0),
        (0, 0, 0.0),
        (15, 10, 50.0),
        (5, 10, -50.0),
        (1, 3, -66.7),
    ])
    def test_percentage_change(self, current, previous, expected):
        assert percentage_change(current, previous) == expected


def test_days_are_clamped():
    assert clamp_days(0) == 1
    assert clamp_days(-5) == 1
    assert clamp_days(500) == 90
    assert clamp_days(None) == 30
    assert clamp_days(7) == 7


def test_empty_window(service):
    window = service.window(7, now=NOW)

    assert window.total == 0
    assert window.type_counts == []
    assert window.daily_counts == {}
    assert window.top_days == []
    assert window.since == "2024-03-24"


def test_window_counts(service, add_event):
    add_event("invoices", NOW - timedelta(days=1))
    add_event("invoices", NOW - timedelta(days=1, hours=2))
    add_event("payments", NOW - timedelta(days=3))
    add_event("services", NOW - timedelta(days=3))
    add_event("invoices", NOW - timedelta(days=30))  # outside the window

    window = service.window(7, now=NOW)

    assert window.total == 4
    assert [(t.type, t.count) for t in window.type_counts] == [
        ("invoices", 2), ("payments", 1), ("services", 1),
    ]
    # Days without exports are absent
    assert window.daily_counts == {"2024-03-28": 2, "2024-03-30": 2}
    assert [(d.day, d.count) for d in window.top_days] == [("2024-03-28", 2), ("2024-03-30", 2)]


def test_top_days_are_limited(service, add_event):
    for offset in range(1, 8):
        for _ in range(offset):
            add_event("staff", NOW - timedelta(days=offset))

    window = service.window(10, now=NOW)

    assert [d.count for d in window.top_days] == [7, 6, 5, 4, 3]


def test_compare_against_previous_window(service, add_event):
    # Current window: [NOW - 7d, NOW)
    for _ in range(3):
        add_event("invoices", NOW - timedelta(days=2))
    add_event("payments", NOW - timedelta(days=4))
    # Previous window: [NOW - 14d, NOW - 7d)
    add_event("invoices", NOW - timedelta(days=10))
    add_event("invoices", NOW - timedelta(days=9))

    comparison = service.compare(7, now=NOW)

    assert comparison.current.total == 4
    assert comparison.previous.total == 2
    total = comparison.metrics["total"]
    assert (total.current, total.previous, total.delta, total.percentage) == (4, 2, 2, 100.0)
    assert comparison.metrics["types"].percentage == 100.0
    assert comparison.metrics["top_day_count"].current == 3
    assert comparison.metrics["top_day_count"].previous == 1
    assert comparison.by_type["invoices"].percentage == 50.0
    # Appeared from nothing
    assert comparison.by_type["payments"].percentage == 100.0


def test_compare_with_no_activity(service):
    comparison = service.compare(30, now=NOW)

    assert all(m.percentage == 0.0 for m in comparison.metrics.values())
    assert comparison.by_type == {}
