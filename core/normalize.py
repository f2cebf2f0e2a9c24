# ================================================================
# File     : core/normalize.py
# Purpose  : Per-record null-coalescing and type coercion applied
#            to collected records before any aggregation
# Notes    : Never mutates input; bad values are logged at debug
#            and replaced, the record itself is always kept
# ================================================================

from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from core.utils import fncPrintMessage

SEVERITY_ORDER = ["Critical", "High", "Medium", "Low"]
UNKNOWN = "Unknown"

_SEVERITY_ALIASES = {
    "critical": "Critical",
    "high": "High",
    "error": "High",
    "medium": "Medium",
    "moderate": "Medium",
    "warning": "Medium",
    "low": "Low",
    "informational": "Low",
    "information": "Low",
    "info": "Low",
}


def fncCoalesce(value: Any, sentinel: str = UNKNOWN) -> Any:
    if value is None:
        return sentinel
    if isinstance(value, str) and not value.strip():
        return sentinel
    return value


# ================================================================
# Function: fncParseDate
# Purpose : Coerce a date-ish value into an aware UTC datetime
# Notes   : Accepts datetime/date, ISO strings (with or without Z)
#           and YYYYMMDD ints/strings (Cost Management UsageDate).
#           Returns None when the value cannot be parsed.
# ================================================================
def fncParseDate(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    s = str(value).strip()
    try:
        if s.isdigit() and len(s) == 8:
            return datetime(int(s[:4]), int(s[4:6]), int(s[6:8]), tzinfo=timezone.utc)
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        # fromisoformat before 3.11 rejects 7-digit fractions (ARM emits them)
        if "." in s:
            head, _, tail = s.partition(".")
            digits = "".join(ch for ch in tail if ch.isdigit())
            rest = tail[len(digits):]
            s = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
        dt = datetime.fromisoformat(s)
    except (ValueError, TypeError) as ex:
        fncPrintMessage(f"Unparseable date '{value}': {ex}", "debug")
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def fncDateKey(value: Any) -> Optional[str]:
    """ISO day key (YYYY-MM-DD) or None."""
    dt = fncParseDate(value)
    return dt.date().isoformat() if dt else None


def fncToFloat(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        fncPrintMessage(f"Non-numeric value '{value}' coerced to {default}", "debug")
        return default


def fncToBool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes", "y", "enabled", "on")


def fncNormalizeSeverity(value: Any) -> str:
    if value is None:
        return UNKNOWN
    return _SEVERITY_ALIASES.get(str(value).strip().lower(), UNKNOWN)


def fncSeverityRank(severity: Any) -> int:
    """Critical=0 … Low=3, anything else 4."""
    try:
        return SEVERITY_ORDER.index(severity)
    except ValueError:
        return len(SEVERITY_ORDER)


# ================================================================
# Function: fncEnsureList
# Purpose : Always hand back a list
# Notes   : A single value must still serialise as a one-item
#           array, the browser code indexes these fields as arrays
# ================================================================
def fncEnsureList(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    if isinstance(value, (tuple, set, frozenset)):
        return list(value)
    if isinstance(value, str) and not value.strip():
        return []
    return [value]


# ================================================================
# Function: fncNormalizeRecords
# Purpose : Apply the coercions above to a list of flat records
# Notes   : Dates are kept as ISO strings so that records stay
#           JSON-friendly; unparseable dates become "" (and are
#           then skipped by the timeline builder)
# ================================================================
def fncNormalizeRecords(
    records: Optional[Iterable[Dict[str, Any]]],
    text_fields: Iterable[str] = (),
    date_fields: Iterable[str] = (),
    numeric_fields: Iterable[str] = (),
    bool_fields: Iterable[str] = (),
    list_fields: Iterable[str] = (),
    severity_field: Optional[str] = None,
    sentinel: str = UNKNOWN,
) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for rec in records or []:
        if not isinstance(rec, dict):
            fncPrintMessage(f"Skipping non-dict record: {rec!r}", "debug")
            continue
        r = dict(rec)
        for f in text_fields:
            v = fncCoalesce(r.get(f), sentinel)
            r[f] = v if isinstance(v, str) else str(v)
        for f in date_fields:
            dt = fncParseDate(r.get(f))
            r[f] = dt.isoformat() if dt else ""
        for f in numeric_fields:
            r[f] = fncToFloat(r.get(f))
        for f in bool_fields:
            r[f] = fncToBool(r.get(f))
        for f in list_fields:
            r[f] = [str(x) for x in fncEnsureList(r.get(f))]
        if severity_field:
            r[severity_field] = fncNormalizeSeverity(r.get(severity_field))
        out.append(r)
    return out
