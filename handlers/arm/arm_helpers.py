# ================================================================
# File     : handlers/arm/arm_helpers.py
# Purpose  : Shared ARM helpers for collectors: resource id parsing,
#            column/row tables → dicts, Resource Graph paging
# Notes    : Warn instead of fail where a subscription is
#            unreadable; collectors keep going with the rest
# ================================================================

from typing import Any, Dict, Iterable, List, Optional

from core.utils import fncPrintMessage

RESOURCE_GRAPH_PATH = "providers/Microsoft.ResourceGraph/resources"
RESOURCE_GRAPH_API = "2021-03-01"


def fncParseResourceId(resource_id: Optional[str]) -> Dict[str, str]:
    """
    /subscriptions/{sid}/resourceGroups/{rg}/providers/{ns}/{type}/{name}[/...]
    → {"subscriptionId","resourceGroup","provider","type","name"}.
    Missing parts come back as "".
    """
    out = {"subscriptionId": "", "resourceGroup": "", "provider": "", "type": "", "name": ""}
    if not resource_id:
        return out
    parts = [p for p in str(resource_id).split("/") if p]
    lower = [p.lower() for p in parts]

    def after(token: str) -> str:
        if token in lower:
            i = lower.index(token)
            if i + 1 < len(parts):
                return parts[i + 1]
        return ""

    out["subscriptionId"] = after("subscriptions")
    out["resourceGroup"] = after("resourcegroups")
    if "providers" in lower:
        i = len(lower) - 1 - lower[::-1].index("providers")
        tail = parts[i + 1:]
        if tail:
            out["provider"] = tail[0]
            types = tail[1::2]
            names = tail[2::2]
            out["type"] = "/".join([tail[0]] + types) if types else tail[0]
            out["name"] = names[-1] if names else ""
    if not out["name"]:
        out["name"] = parts[-1] if parts else ""
    return out


def fncRowsFromColumns(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Cost Management answers {"properties": {"columns": [...], "rows": [[...]]}},
    Resource Graph (table format) {"data": {"columns": [...], "rows": [...]}},
    Resource Graph (objectArray) {"data": [{...}]}.
    """
    if not isinstance(payload, dict):
        return []
    table = payload.get("properties") if "properties" in payload else payload.get("data")
    if isinstance(table, list):
        return [r for r in table if isinstance(r, dict)]
    if not isinstance(table, dict):
        return []
    cols = [c.get("name", f"col{i}") for i, c in enumerate(table.get("columns") or [])]
    return [dict(zip(cols, row)) for row in table.get("rows") or []]


# ================================================================
# Function: fncResourceGraphQuery
# Purpose : Run a KQL query over the given subscriptions
# Notes   : Resource Graph accepts 1000 subscriptions per request;
#           results come back as objectArray rows across all pages
# ================================================================
def fncResourceGraphQuery(client, query: str, subscriptions: Iterable[str]) -> List[Dict[str, Any]]:
    subs = [s for s in subscriptions if s]
    rows: List[Dict[str, Any]] = []
    for i in range(0, len(subs), 1000):
        body = {
            "subscriptions": subs[i:i + 1000],
            "query": query,
            "options": {"resultFormat": "objectArray", "$top": 1000},
        }
        for page in client.post_all(RESOURCE_GRAPH_PATH, body, RESOURCE_GRAPH_API):
            rows.extend(fncRowsFromColumns(page))
    fncPrintMessage(f"Resource Graph returned {len(rows)} rows", "debug")
    return rows


def fncSubscriptionNames(client, subscriptions: Optional[Iterable[str]] = None) -> Dict[str, str]:
    """{subscriptionId: displayName} for the requested (or all visible) subscriptions."""
    visible = client.list_subscriptions()
    names = {s["subscriptionId"]: s.get("displayName") or s["subscriptionId"] for s in visible}
    wanted = [s for s in (subscriptions or []) if s]
    if not wanted:
        return names
    for sid in wanted:
        if sid not in names:
            fncPrintMessage(f"Subscription {sid} is not visible to this identity; skipping.", "warn")
    return {sid: names[sid] for sid in wanted if sid in names}
