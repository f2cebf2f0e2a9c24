# ================================================================
# File     : modules/azure/changes.py
# Purpose  : Change tracking report over a fixed day window:
#            Create/Update/Delete timeline, changed resource types,
#            most changed resources and most active callers
# ================================================================

from typing import Any, Dict, List, Optional

from core.aggregation import fncCountBy, fncDistinct, fncGroupBy, fncTopN
from core.config import fncGetSection
from core.crossfilter import fncCrossFilterScripts
from core.normalize import fncNormalizeRecords
from core.reporting import (
    fncBuildPayload,
    fncFormatNumber,
    fncRenderChartCard,
    fncRenderDataScript,
    fncRenderDataTable,
    fncRenderEmptyState,
    fncRenderFilterBar,
    fncRenderKpis,
    fncRenderListCard,
    fncRenderPage,
    fncRenderTable,
    fncWriteHTMLReport,
)
from core.timeline import fncBuildDailyTimeline
from core.utils import fncPrintMessage, fncToTable
from handlers.arm.arm_helpers import fncParseResourceId, fncResourceGraphQuery

REPORT_NAME = "changes"
OUTPUT_FILE = "changes.html"
TITLE = "Change Tracking"

CHANGE_TYPES = ["Create", "Update", "Delete"]

CHANGES_QUERY = """
resourcechanges
| extend changeTime = todatetime(properties.changeAttributes.timestamp),
         targetResourceId = tostring(properties.targetResourceId),
         changeType = tostring(properties.changeType),
         changedBy = tostring(properties.changeAttributes.changedBy),
         clientType = tostring(properties.changeAttributes.clientType),
         changedProperties = bag_keys(properties.changes)
| where changeTime > ago({days}d)
| project changeTime, targetResourceId, changeType, changedBy, clientType, changedProperties, subscriptionId
| order by changeTime desc
"""

PAYLOAD_FIELDS = [
    "Timestamp", "ChangeType", "ResourceName", "ResourceType", "ResourceGroup",
    "SubscriptionName", "ChangedBy", "ClientType", "ChangedProperties", "PropertyCount",
]

TABLE_COLUMNS = [
    {"field": "Timestamp", "label": "When (UTC)", "type": "date"},
    {"field": "ChangeType", "label": "Type"},
    {"field": "ResourceName", "label": "Resource"},
    {"field": "ResourceType", "label": "Resource Type"},
    {"field": "SubscriptionName", "label": "Subscription"},
    {"field": "ChangedBy", "label": "Changed By"},
    {"field": "ChangedProperties", "label": "Changed Properties", "type": "list"},
]


def collect(client, subscriptions: Dict[str, str], cfg: Optional[dict] = None) -> Dict[str, Any]:
    days = int(fncGetSection(cfg or {}, "changes").get("days", 14))
    fncPrintMessage(f"Changes: reading the last {days} days of resource changes", "info")

    rows = fncResourceGraphQuery(client, CHANGES_QUERY.replace("{days}", str(days)), list(subscriptions.keys()))

    events = []
    for row in rows:
        rid = row.get("targetResourceId") or ""
        parsed = fncParseResourceId(rid)
        sid = row.get("subscriptionId") or parsed["subscriptionId"]
        events.append({
            "Timestamp": row.get("changeTime") or "",
            "ChangeType": row.get("changeType") or "",
            "ResourceId": rid,
            "ResourceName": parsed["name"],
            "ResourceType": parsed["type"],
            "ResourceGroup": parsed["resourceGroup"],
            "SubscriptionId": sid,
            "SubscriptionName": subscriptions.get(sid, sid),
            "ChangedBy": row.get("changedBy") or "",
            "ClientType": row.get("clientType") or "",
            "ChangedProperties": row.get("changedProperties"),
        })

    fncPrintMessage(f"Changes: {len(events)} change events", "success")
    return {"events": events}


# ================================================================
# Function: fncBuildChangesModel
# Purpose : Aggregate change events for the report
# Notes   : Every event counts towards the totals; only events with
#           a usable timestamp inside the window land on the timeline.
#           ChangedProperties is always a list, even with one entry.
# ================================================================
def fncBuildChangesModel(events: Optional[List[Dict[str, Any]]], days: int = 14, today=None) -> Dict[str, Any]:
    rows = fncNormalizeRecords(
        events,
        text_fields=["ChangeType", "ResourceType", "ResourceGroup", "SubscriptionName", "ChangedBy", "ClientType"],
        date_fields=["Timestamp"],
        list_fields=["ChangedProperties"],
    )
    for r in rows:
        r["ResourceName"] = r.get("ResourceName") or r.get("ResourceId") or "Unknown"
        r["PropertyCount"] = len(r["ChangedProperties"])
    rows.sort(key=lambda r: r["Timestamp"], reverse=True)

    timeline = fncBuildDailyTimeline(rows, "Timestamp", "ChangeType", days=days, today=today)

    top_resources = [
        {"ResourceName": g["key"], "ResourceType": g["items"][0]["ResourceType"],
         "SubscriptionName": g["items"][0]["SubscriptionName"], "Changes": g["count"]}
        for g in fncTopN(fncGroupBy(rows, "ResourceName"), 10, lambda g: g["count"])
    ]
    top_callers = [
        {"ChangedBy": g["key"], "Changes": g["count"]}
        for g in fncTopN(fncGroupBy(rows, "ChangedBy"), 10, lambda g: g["count"])
    ]
    by_type = [
        {"ResourceType": g["key"], "Changes": g["count"],
         **{t: sum(1 for r in g["items"] if r["ChangeType"] == t) for t in CHANGE_TYPES}}
        for g in fncTopN(fncGroupBy(rows, "ResourceType"), 25, lambda g: g["count"])
    ]

    return {
        "events": rows,
        "total": len(rows),
        "type_counts": fncCountBy(rows, "ChangeType", order=CHANGE_TYPES),
        "timeline": timeline,
        "by_resource_type": by_type,
        "top_resources": top_resources,
        "top_callers": top_callers,
        "filters": {
            "subscriptions": fncDistinct(rows, "SubscriptionName"),
            "types": fncDistinct(rows, "ChangeType"),
            "resource_types": fncDistinct(rows, "ResourceType"),
            "callers": fncDistinct(rows, "ChangedBy"),
        },
        "payload": fncBuildPayload(
            rows, PAYLOAD_FIELDS,
            search_fields=["ResourceName", "ResourceType", "ResourceGroup", "SubscriptionName", "ChangedBy", "ChangedProperties"],
        ),
    }


def _render_body(model: Dict[str, Any], days: int, page_size: int) -> str:
    tc = model["type_counts"]
    kpis = [
        {"label": f"Changes ({days} days)", "value": fncFormatNumber(model["total"]), "tone": "primary", "id": "chg-kpi-total"},
        {"label": "Created", "value": fncFormatNumber(tc.get("Create", 0)), "tone": "success", "id": "chg-kpi-create"},
        {"label": "Updated", "value": fncFormatNumber(tc.get("Update", 0)), "tone": "warning", "id": "chg-kpi-update"},
        {"label": "Deleted", "value": fncFormatNumber(tc.get("Delete", 0)), "tone": "danger", "id": "chg-kpi-delete"},
    ]
    parts = [fncRenderKpis(kpis)]

    if not model["total"]:
        parts.append("<h3>Changes</h3>")
        parts.append(fncRenderEmptyState(f"No resource changes were recorded in the last {days} days."))
        return "\n".join(parts)

    f = model["filters"]
    parts.append("<h3>Changes</h3>")
    parts.append(fncRenderFilterBar("chg-search", [
        ("chg-f-sub", "Subscriptions", f["subscriptions"]),
        ("chg-f-type", "Change Types", f["types"]),
        ("chg-f-rtype", "Resource Types", f["resource_types"]),
        ("chg-f-caller", "Callers", f["callers"]),
    ], placeholder="Search resources, callers, properties…"))
    parts.append('<div class="charts">')
    parts.append(fncRenderChartCard("chg-chart-timeline", f"Changes per Day ({days} days)", 300))
    parts.append(fncRenderListCard("chg-top-resources", "Most Changed Resources"))
    parts.append(fncRenderListCard("chg-top-callers", "Most Active Callers"))
    parts.append("</div>")
    parts.append(fncRenderDataTable("chg-table", TABLE_COLUMNS, f"Change Events (page size {page_size})"))

    parts.append("<h3>By Resource Type</h3>")
    parts.append(fncRenderTable(model["by_resource_type"], [
        {"field": "ResourceType", "label": "Resource Type"},
        {"field": "Changes", "label": "Changes", "type": "number"},
        {"field": "Create", "label": "Create", "type": "number"},
        {"field": "Update", "label": "Update", "type": "number"},
        {"field": "Delete", "label": "Delete", "type": "number"},
    ], "Changes by Resource Type"))
    return "\n".join(parts)


def _runtime_config(model: Dict[str, Any], page_size: int) -> Dict[str, Any]:
    return {
        "dataId": "chg-data",
        "pageSize": page_size,
        "searchId": "chg-search",
        "dimensions": [
            {"field": "SubscriptionName", "selectId": "chg-f-sub"},
            {"field": "ChangeType", "selectId": "chg-f-type"},
            {"field": "ResourceType", "selectId": "chg-f-rtype"},
            {"field": "ChangedBy", "selectId": "chg-f-caller"},
        ],
        "cards": [
            {"id": "chg-kpi-total"},
            {"id": "chg-kpi-create", "field": "ChangeType", "equals": "Create"},
            {"id": "chg-kpi-update", "field": "ChangeType", "equals": "Update"},
            {"id": "chg-kpi-delete", "field": "ChangeType", "equals": "Delete"},
        ],
        "topN": [
            {"field": "ResourceName", "n": 10, "targetId": "chg-top-resources"},
            {"field": "ChangedBy", "n": 10, "targetId": "chg-top-callers"},
        ],
        "timeline": {
            "keys": model["timeline"]["keys"], "field": "Timestamp", "dimField": "ChangeType",
            "granularity": "day", "chartId": "chg-chart-timeline", "type": "bar",
        },
        "table": {"id": "chg-table", "columns": TABLE_COLUMNS, "empty": "No changes match the current filters."},
    }


# ================================================================
# Function: export_report
# Purpose : Render changes.html and return its metadata record
# ================================================================
def export_report(data: Optional[Dict[str, Any]], output_path: str, tenant_id: str,
                  cfg: Optional[dict] = None, today=None, run_id: Optional[str] = None) -> Dict[str, Any]:
    data = data or {}
    cfg = cfg or {}
    days = int(fncGetSection(cfg, "changes").get("days", 14))
    page_size = int(cfg.get("page_size", 25))
    model = fncBuildChangesModel(data.get("events"), days, today)

    if model["timeline"]["skipped"]:
        fncPrintMessage(f"Changes: {model['timeline']['skipped']} event(s) outside the {days}-day timeline", "debug")
    print(fncToTable(model["top_callers"], headers=["ChangedBy", "Changes"], max_rows=5))

    scripts = fncCrossFilterScripts(_runtime_config(model, page_size)) if model["total"] else []
    body = fncRenderDataScript("chg-data", model["payload"]) + _render_body(model, days, page_size)
    doc = fncRenderPage(TITLE, REPORT_NAME, body, tenant_id,
                        subtitle="Azure Resource Graph change history",
                        scripts=scripts, needs_chartjs=bool(model["total"]), run_id=run_id)
    fncWriteHTMLReport(output_path, doc)

    tc = model["type_counts"]
    return {
        "report": REPORT_NAME,
        "title": TITLE,
        "output_path": output_path,
        "counts": {
            "Changes": model["total"],
            "Create": tc.get("Create", 0),
            "Update": tc.get("Update", 0),
            "Delete": tc.get("Delete", 0),
        },
        "headline": f"{model['total']} changes in {days} days",
    }
