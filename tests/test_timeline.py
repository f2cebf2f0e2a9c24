"""Tests for fixed calendar bucketing."""

from datetime import date

from core.timeline import (
    fncBuildDailyTimeline,
    fncBuildMonthlyTimeline,
    fncDayKeys,
    fncMonthRange,
    fncTimelineSeries,
)

TODAY = date(2024, 5, 14)


def test_day_keys_end_today_inclusive():
    keys = fncDayKeys(14, TODAY)
    assert len(keys) == 14
    assert keys[0] == "2024-05-01"
    assert keys[-1] == "2024-05-14"


def test_window_with_sparse_records_keeps_every_bucket():
    records = [
        {"Timestamp": "2024-05-01T09:00:00Z", "ChangeType": "Create"},
        {"Timestamp": "2024-05-14T17:30:00Z", "ChangeType": "Delete"},
    ]
    tl = fncBuildDailyTimeline(records, "Timestamp", "ChangeType", days=14, today=TODAY)
    assert len(tl["buckets"]) == 14
    assert [b["total"] for b in tl["buckets"]].count(0) == 12
    assert tl["buckets"][0]["values"] == {"Create": 1, "Delete": 0}
    assert tl["buckets"][-1]["values"] == {"Create": 0, "Delete": 1}
    assert tl["today_index"] == 13


def test_empty_window_still_has_buckets():
    tl = fncBuildDailyTimeline([], "Timestamp", "ChangeType", days=14, today=TODAY)
    assert len(tl["buckets"]) == 14
    assert tl["dimensions"] == []
    assert fncTimelineSeries(tl) == []


def test_invalid_and_out_of_window_dates_are_skipped():
    records = [
        {"Timestamp": "garbage", "ChangeType": "Update"},
        {"Timestamp": "2023-01-01T00:00:00Z", "ChangeType": "Update"},
        {"Timestamp": "2024-05-10T00:00:00Z", "ChangeType": "Update"},
    ]
    tl = fncBuildDailyTimeline(records, "Timestamp", "ChangeType", days=14, today=TODAY)
    assert tl["skipped"] == 2
    assert sum(b["total"] for b in tl["buckets"]) == 1
    # skipped records still define the dimension set
    assert tl["dimensions"] == ["Update"]


def test_month_range_default_window():
    keys = fncMonthRange([], today=date(2024, 6, 15))
    assert keys[0] == "2023-12"
    assert keys[-1] == "2026-06"
    assert len(keys) == 31


def test_month_range_extends_to_cover_dates():
    keys = fncMonthRange(["2020-03-05", "2028-01-31"], today=date(2024, 6, 15))
    assert keys[0] == "2020-03"
    assert keys[-1] == "2028-01"


def test_month_range_months_back_clamped():
    assert fncMonthRange([], today=date(2024, 6, 15), months_back=2)[0] == "2023-12"
    assert fncMonthRange([], today=date(2024, 6, 15), months_back=20)[0] == "2023-06"


def test_monthly_timeline_today_index():
    records = [{"Deadline": "2024-08-31", "Component": "TLS"}]
    tl = fncBuildMonthlyTimeline(records, "Deadline", "Component", today=date(2024, 6, 15))
    assert tl["keys"][tl["today_index"]] == "2024-06"
    assert tl["today_index"] == 6
    idx = tl["keys"].index("2024-08")
    assert tl["buckets"][idx]["values"]["TLS"] == 1
