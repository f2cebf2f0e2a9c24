# ================================================================
# File     : core/timeline.py
# Purpose  : Fixed calendar buckets (days or months) that records
#            are counted into
# Notes    : The bucket list is a function of the window only; it is
#            built first and fully zero-filled, then records are
#            mapped onto it in a single pass
# ================================================================

from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from core.normalize import UNKNOWN, fncCoalesce, fncParseDate, fncToFloat
from core.utils import fncPrintMessage, fncUtcNow


def _today(today: Optional[Union[date, datetime]]) -> date:
    if today is None:
        return fncUtcNow().date()
    if isinstance(today, datetime):
        return today.date()
    return today


def _add_months(d: date, months: int) -> date:
    idx = d.year * 12 + (d.month - 1) + months
    return date(idx // 12, idx % 12 + 1, 1)


def fncMonthKey(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


# ================================================================
# Function: fncDayKeys
# Purpose : `days` contiguous ISO dates ending today (inclusive)
# ================================================================
def fncDayKeys(days: int = 14, today: Optional[Union[date, datetime]] = None) -> List[str]:
    end = _today(today)
    return [(end - timedelta(days=offset)).isoformat() for offset in range(days - 1, -1, -1)]


# ================================================================
# Function: fncMonthRange
# Purpose : Month keys (YYYY-MM) for deadline timelines
# Notes   : Start = earlier of the earliest date and today minus
#           months_back (clamped to 6..12). End = later of today plus
#           months_forward and the latest date, so no deadline falls
#           outside the window.
# ================================================================
def fncMonthRange(
    dates: Iterable[Any],
    today: Optional[Union[date, datetime]] = None,
    months_back: int = 6,
    months_forward: int = 24,
) -> List[str]:
    now = _today(today)
    this_month = date(now.year, now.month, 1)
    months_back = min(12, max(6, int(months_back)))

    start = _add_months(this_month, -months_back)
    end = _add_months(this_month, max(0, int(months_forward)))

    for value in dates or []:
        dt = fncParseDate(value)
        if dt is None:
            continue
        m = date(dt.year, dt.month, 1)
        if m < start:
            start = m
        if m > end:
            end = m

    keys = []
    cur = start
    while cur <= end:
        keys.append(fncMonthKey(cur))
        cur = _add_months(cur, 1)
    return keys


# ================================================================
# Function: fncBuildTimeline
# Purpose : Map records onto a fixed list of bucket keys
# Notes   : granularity "day" keys records by YYYY-MM-DD, "month" by
#           YYYY-MM. Every bucket carries every dimension observed in
#           the full record set (zero-filled). Records with invalid
#           or out-of-window dates are skipped here only.
#           measure=None counts records, otherwise sums the field.
# ================================================================
def fncBuildTimeline(
    records: Optional[Iterable[Dict[str, Any]]],
    keys: List[str],
    date_field: str,
    dim_field: Union[str, Callable[[Dict[str, Any]], Any]],
    granularity: str = "day",
    measure: Optional[str] = None,
    today: Optional[Union[date, datetime]] = None,
    sentinel: str = UNKNOWN,
) -> Dict[str, Any]:
    records = list(records or [])
    get_dim = dim_field if callable(dim_field) else (lambda r: r.get(dim_field))

    dimensions: List[str] = []
    seen = set()
    for r in records:
        dim = str(fncCoalesce(get_dim(r), sentinel))
        if dim not in seen:
            seen.add(dim)
            dimensions.append(dim)

    buckets = [{"key": k, "values": {d: 0 for d in dimensions}, "total": 0} for k in keys]
    position = {k: i for i, k in enumerate(keys)}

    skipped = 0
    for r in records:
        dt = fncParseDate(r.get(date_field))
        if dt is None:
            skipped += 1
            fncPrintMessage(f"Timeline: skipping record with invalid {date_field} '{r.get(date_field)}'", "debug")
            continue
        key = dt.date().isoformat() if granularity == "day" else fncMonthKey(dt.date())
        idx = position.get(key)
        if idx is None:
            skipped += 1
            fncPrintMessage(f"Timeline: {key} outside window, record dropped from timeline", "debug")
            continue
        inc = 1 if measure is None else fncToFloat(r.get(measure))
        dim = str(fncCoalesce(get_dim(r), sentinel))
        buckets[idx]["values"][dim] += inc
        buckets[idx]["total"] += inc

    now = _today(today)
    today_key = now.isoformat() if granularity == "day" else fncMonthKey(now)

    return {
        "keys": list(keys),
        "dimensions": dimensions,
        "buckets": buckets,
        "today_index": position.get(today_key, -1),
        "skipped": skipped,
    }


def fncBuildDailyTimeline(records, date_field, dim_field, days: int = 14, today=None, measure=None) -> Dict[str, Any]:
    keys = fncDayKeys(days, today)
    return fncBuildTimeline(records, keys, date_field, dim_field, "day", measure, today)


def fncBuildMonthlyTimeline(records, date_field, dim_field, today=None, months_back: int = 6,
                            months_forward: int = 24, measure=None) -> Dict[str, Any]:
    records = list(records or [])
    keys = fncMonthRange((r.get(date_field) for r in records), today, months_back, months_forward)
    return fncBuildTimeline(records, keys, date_field, dim_field, "month", measure, today)


def fncTimelineSeries(timeline: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Chart.js-friendly datasets, one per dimension."""
    return [
        {"label": dim, "data": [b["values"][dim] for b in timeline["buckets"]]}
        for dim in timeline["dimensions"]
    ]
