# ================================================================
# File     : core/trend.py
# Purpose  : Half-split trend calculation used by the cost report
#            for the overall trend and for increase-driver ranking
# Notes    : Both callers must go through fncCalculateTrend so the
#            two displays agree for the same series
# ================================================================

from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from core.aggregation import fncGroupBy
from core.normalize import fncToFloat

MIN_TREND_POINTS = 4


def fncSplitHalves(series: Sequence[float]) -> Tuple[List[float], List[float]]:
    """First ⌊n/2⌋ and last ⌊n/2⌋ values; the middle one is dropped when n is odd."""
    values = [fncToFloat(v) for v in series or []]
    half = len(values) // 2
    if half == 0:
        return [], []
    return values[:half], values[len(values) - half:]


def fncTrimOutliers(values: Sequence[float]) -> List[float]:
    """Drop exactly one highest and one lowest value when there are at least 3."""
    values = list(values)
    if len(values) < 3:
        return values
    values.remove(max(values))
    values.remove(min(values))
    return values


# ================================================================
# Function: fncCalculateTrend
# Purpose : Percentage change between the two halves of a series
# Notes   : < 4 points → 0 / neutral. first == 0 and second > 0 is
#           reported as is_new with percent 100 (direction up).
#           Percent is left unrounded; rounding is a display concern.
# ================================================================
def fncCalculateTrend(series: Sequence[float], trim: bool = True) -> Dict[str, Any]:
    result = {"percent": 0.0, "direction": "neutral", "is_new": False, "first": 0.0, "second": 0.0}
    if series is None or len(series) < MIN_TREND_POINTS:
        return result

    first, second = fncSplitHalves(series)
    if trim:
        first, second = fncTrimOutliers(first), fncTrimOutliers(second)
    first_sum, second_sum = sum(first), sum(second)
    result["first"], result["second"] = first_sum, second_sum

    if first_sum == 0:
        if second_sum > 0:
            result.update({"percent": 100.0, "direction": "up", "is_new": True})
        return result

    percent = (second_sum - first_sum) / first_sum * 100.0
    result["percent"] = percent
    result["direction"] = fncTrendDirection(percent)
    return result


def fncTrendDirection(percent: float) -> str:
    if percent > 0:
        return "up"
    if percent < 0:
        return "down"
    return "neutral"


def fncTrendLabel(trend: Dict[str, Any]) -> str:
    if trend.get("is_new"):
        return "new"
    arrow = {"up": "▲", "down": "▼"}.get(trend.get("direction"), "■")
    return f"{arrow} {abs(trend.get('percent', 0.0)):.1f}%"


# ================================================================
# Function: fncCostIncreaseDrivers
# Purpose : Rank keys (resources, meters…) by cost increase
# Notes   : Each key gets a zero-filled series over `days` and goes
#           through fncCalculateTrend. Ranked by second − first
#           (desc, stable); only positive increases are returned.
# ================================================================
def fncCostIncreaseDrivers(
    cost_by_day: Optional[Dict[str, List[Dict[str, Any]]]],
    key: str,
    days: Iterable[str],
    measure: str = "Cost",
    top: int = 10,
) -> List[Dict[str, Any]]:
    cost_by_day = cost_by_day or {}
    days = list(days)
    index = {d: i for i, d in enumerate(days)}

    tagged = []
    for d in days:
        for r in cost_by_day.get(d) or []:
            tagged.append((d, r))

    drivers = []
    for g in fncGroupBy(tagged, lambda t: t[1].get(key)):
        series = [0.0] * len(days)
        for d, r in g["items"]:
            series[index[d]] += fncToFloat(r.get(measure))
        trend = fncCalculateTrend(series)
        increase = trend["second"] - trend["first"]
        if increase <= 0:
            continue
        sample = g["items"][0][1]
        drivers.append({
            "name": str(g["key"]),
            "subscription": sample.get("SubscriptionName", ""),
            "category": sample.get("MeterCategory", ""),
            "increase": increase,
            "percent": trend["percent"],
            "is_new": trend["is_new"],
            "direction": trend["direction"],
            "total": sum(series),
        })

    drivers = sorted(drivers, key=lambda x: -x["increase"])
    return drivers[:max(0, top)]
