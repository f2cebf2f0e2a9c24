# ================================================================
# File     : core/aggregation.py
# Purpose  : Grouping / aggregation shared by every report
# Notes    : Groups keep first-seen order and blank keys fold into
#            a sentinel, so Σ group counts == record count always
# ================================================================

from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

from core.normalize import SEVERITY_ORDER, UNKNOWN, fncCoalesce, fncToFloat

KeySelector = Union[str, Sequence[str], Callable[[Dict[str, Any]], Any]]


def _key_fn(key: KeySelector, sentinel: str) -> Callable[[Dict[str, Any]], Any]:
    if callable(key):
        return lambda r: fncCoalesce(key(r), sentinel)
    if isinstance(key, (list, tuple)):
        fields = list(key)
        return lambda r: tuple(fncCoalesce(r.get(f), sentinel) for f in fields)
    return lambda r: fncCoalesce(r.get(key), sentinel)


def _measure_fn(measure: Union[str, Callable[[Any], float]]) -> Callable[[Any], float]:
    if callable(measure):
        return measure
    return lambda r: fncToFloat(r.get(measure))


# ================================================================
# Function: fncGroupBy
# Purpose : Partition records by a key selector
# Notes   : key = field name, list/tuple of fields (composite key
#           tuple) or callable. sums = fields to total per group.
#           Returns [{"key","items","count","sums"}] in first-seen
#           order; empty/None input → []
# ================================================================
def fncGroupBy(
    records: Optional[Iterable[Dict[str, Any]]],
    key: KeySelector,
    sums: Optional[Iterable[str]] = None,
    sentinel: str = UNKNOWN,
) -> List[Dict[str, Any]]:
    get_key = _key_fn(key, sentinel)
    sum_fields = list(sums or [])
    groups: Dict[Any, Dict[str, Any]] = {}

    for r in records or []:
        k = get_key(r)
        g = groups.get(k)
        if g is None:
            g = {"key": k, "items": [], "count": 0, "sums": {f: 0.0 for f in sum_fields}}
            groups[k] = g
        g["items"].append(r)
        g["count"] += 1
        for f in sum_fields:
            g["sums"][f] += fncToFloat(r.get(f))

    return list(groups.values())


# ================================================================
# Function: fncCountBy
# Purpose : Ordered {value: count} for one field
# Notes   : Values listed in `order` always appear (zero-filled)
#           and come first; others follow in first-seen order
# ================================================================
def fncCountBy(
    records: Optional[Iterable[Dict[str, Any]]],
    field: KeySelector,
    order: Optional[Iterable[str]] = None,
    sentinel: str = UNKNOWN,
) -> Dict[Any, int]:
    counts: Dict[Any, int] = {k: 0 for k in (order or [])}
    for g in fncGroupBy(records, field, sentinel=sentinel):
        counts[g["key"]] = counts.get(g["key"], 0) + g["count"]
    return counts


def fncSumBy(
    records: Optional[Iterable[Dict[str, Any]]],
    key: KeySelector,
    measure: Union[str, Callable[[Any], float]],
    sentinel: str = UNKNOWN,
) -> Dict[Any, float]:
    get_val = _measure_fn(measure)
    out: Dict[Any, float] = {}
    for g in fncGroupBy(records, key, sentinel=sentinel):
        out[g["key"]] = sum(get_val(r) for r in g["items"])
    return out


# ================================================================
# Function: fncTopN
# Purpose : Top-N items by a measure, highest first
# Notes   : sorted() is stable, so ties keep input order
# ================================================================
def fncTopN(items: Iterable[Any], n: int, measure: Callable[[Any], float]) -> List[Any]:
    ranked = sorted(list(items or []), key=lambda x: -measure(x))
    return ranked[:max(0, n)]


# ================================================================
# Function: fncHighestSeverity
# Purpose : Reduce a collection of severities to the worst one
# Notes   : Membership test in fixed order, not a sort
# ================================================================
def fncHighestSeverity(severities: Iterable[Any]) -> str:
    present = set(severities or [])
    for sev in SEVERITY_ORDER:
        if sev in present:
            return sev
    return UNKNOWN


def fncOtherValue(total: float, known: Iterable[float]) -> float:
    """Remainder bucket: total − Σ known, clamped at zero."""
    return max(0.0, float(total) - sum(float(v) for v in known))


def fncDistinct(records: Optional[Iterable[Dict[str, Any]]], field: str, sentinel: str = UNKNOWN) -> List[str]:
    return sorted({str(fncCoalesce(r.get(field), sentinel)) for r in records or []}, key=str.lower)


# ================================================================
# Function: fncBuildBreakdown
# Purpose : Nested drill-down tree over several levels
# Notes   : e.g. levels = [SubscriptionName, MeterCategory,
#           MeterSubCategory, Meter, ResourceName]. Each node is
#           {"name","total","count","children"}, children sorted by
#           total desc (stable). Leaves have children == [].
# ================================================================
def fncBuildBreakdown(
    records: Optional[Iterable[Dict[str, Any]]],
    levels: Sequence[str],
    measure: Union[str, Callable[[Any], float]],
    sentinel: str = UNKNOWN,
) -> List[Dict[str, Any]]:
    if not levels:
        return []
    get_val = _measure_fn(measure)
    nodes = []
    for g in fncGroupBy(records, levels[0], sentinel=sentinel):
        nodes.append({
            "name": str(g["key"]),
            "total": sum(get_val(r) for r in g["items"]),
            "count": g["count"],
            "children": fncBuildBreakdown(g["items"], levels[1:], measure, sentinel),
        })
    return sorted(nodes, key=lambda n: -n["total"])


# ================================================================
# Function: fncStackedSeries
# Purpose : Per-day stacked series for the top-N values of one
#           dimension plus an "Other" remainder series
# Notes   : Top-N is chosen on the whole-window total. For every
#           day, Other = max(0, day_total − Σ top-N that day).
#           days fixes the bucket list (zero-filled); defaults to
#           the sorted keys of cost_by_day.
# ================================================================
def fncStackedSeries(
    cost_by_day: Optional[Dict[str, List[Dict[str, Any]]]],
    dimension: str,
    measure: str = "Cost",
    top_n: int = 15,
    days: Optional[List[str]] = None,
    sentinel: str = UNKNOWN,
) -> Dict[str, Any]:
    cost_by_day = cost_by_day or {}
    labels = list(days) if days is not None else sorted(cost_by_day.keys())

    all_items = [r for d in labels for r in (cost_by_day.get(d) or [])]
    totals = fncSumBy(all_items, dimension, measure, sentinel=sentinel)
    top = [k for k, _ in fncTopN(list(totals.items()), top_n, lambda kv: kv[1])]

    series = {k: [] for k in top}
    other: List[float] = []
    for d in labels:
        day_items = cost_by_day.get(d) or []
        per_key = fncSumBy(day_items, dimension, measure, sentinel=sentinel)
        day_total = sum(fncToFloat(r.get(measure)) for r in day_items)
        for k in top:
            series[k].append(round(per_key.get(k, 0.0), 2))
        other.append(round(fncOtherValue(day_total, [per_key.get(k, 0.0) for k in top]), 2))

    out = [{"label": str(k), "data": series[k]} for k in top]
    out.append({"label": "Other", "data": other})
    return {"labels": labels, "series": out}
