# ================================================================
# File     : modules/azure/cost.py
# Purpose  : Cost tracking report: daily spend, trend, top cost
#            increase drivers, meter/resource breakdowns, drill-down
# Notes    : Records are cost line items keyed by ISO day:
#            {"2024-05-01": [{Cost, MeterCategory, ...}, ...]}
# ================================================================

from datetime import timedelta
from typing import Any, Dict, List, Optional

from core.aggregation import fncBuildBreakdown, fncDistinct, fncGroupBy, fncStackedSeries, fncTopN
from core.config import fncGetSection
from core.crossfilter import fncCrossFilterScripts
from core.normalize import fncDateKey, fncNormalizeRecords
from core.reporting import (
    _esc,
    fncBuildPayload,
    fncChartScript,
    fncFormatMoney,
    fncFormatNumber,
    fncRenderChartCard,
    fncRenderDataScript,
    fncRenderDataTable,
    fncRenderDrilldown,
    fncRenderEmptyState,
    fncRenderFilterBar,
    fncRenderKpis,
    fncRenderListCard,
    fncRenderPage,
    fncRenderTable,
    fncWriteHTMLReport,
)
from core.timeline import fncDayKeys
from core.trend import fncCalculateTrend, fncCostIncreaseDrivers, fncTrendLabel
from core.utils import fncPrintMessage, fncToTable, fncUtcNow
from handlers.arm.arm_helpers import fncParseResourceId, fncRowsFromColumns

REPORT_NAME = "cost"
OUTPUT_FILE = "cost.html"
TITLE = "Cost Tracking"

COST_QUERY_API = "2023-11-01"

TEXT_FIELDS = ["SubscriptionName", "MeterCategory", "MeterSubCategory", "Meter", "ResourceName", "ResourceGroup"]
BREAKDOWN_LEVELS = ["SubscriptionName", "MeterCategory", "MeterSubCategory", "Meter", "ResourceName"]

LINE_FIELDS = ["UsageDate", "SubscriptionName", "ResourceGroup", "ResourceName", "MeterCategory", "MeterSubCategory", "Meter", "Cost"]

TABLE_COLUMNS = [
    {"field": "UsageDate", "label": "Day"},
    {"field": "SubscriptionName", "label": "Subscription"},
    {"field": "ResourceGroup", "label": "Resource Group"},
    {"field": "ResourceName", "label": "Resource"},
    {"field": "MeterCategory", "label": "Meter Category"},
    {"field": "MeterSubCategory", "label": "Subcategory"},
    {"field": "Meter", "label": "Meter"},
    {"field": "Cost", "label": "Cost", "type": "money"},
]


# ================================================================
# Function: collect
# Purpose : Daily actual cost per resource/meter for each subscription
# Notes   : One Cost Management query per subscription; rows carry
#           UsageDate as YYYYMMDD and are re-keyed by ISO day
# ================================================================
def collect(client, subscriptions: Dict[str, str], cfg: Optional[dict] = None) -> Dict[str, Any]:
    days = int(fncGetSection(cfg or {}, "cost").get("days", 30))
    end = fncUtcNow().date()
    start = end - timedelta(days=days - 1)

    body = {
        "type": "ActualCost",
        "timeframe": "Custom",
        "timePeriod": {"from": f"{start.isoformat()}T00:00:00Z", "to": f"{end.isoformat()}T23:59:59Z"},
        "dataset": {
            "granularity": "Daily",
            "aggregation": {"totalCost": {"name": "Cost", "function": "Sum"}},
            "grouping": [
                {"type": "Dimension", "name": "ResourceId"},
                {"type": "Dimension", "name": "MeterCategory"},
                {"type": "Dimension", "name": "MeterSubCategory"},
                {"type": "Dimension", "name": "Meter"},
            ],
        },
    }

    cost_by_day: Dict[str, List[Dict[str, Any]]] = {}
    currency = ""
    for sid, sub_name in subscriptions.items():
        fncPrintMessage(f"Cost: querying {days} days for {sub_name}", "info")
        try:
            pages = client.post_all(f"subscriptions/{sid}/providers/Microsoft.CostManagement/query", body, COST_QUERY_API)
        except Exception as ex:
            fncPrintMessage(f"Cost data unavailable for {sub_name}: {ex}", "warn")
            continue

        for page in pages:
            for row in fncRowsFromColumns(page):
                day = fncDateKey(row.get("UsageDate"))
                if not day:
                    fncPrintMessage(f"Cost row without usable UsageDate skipped: {row}", "debug")
                    continue
                rid = row.get("ResourceId") or ""
                parsed = fncParseResourceId(rid)
                currency = currency or row.get("Currency") or ""
                cost_by_day.setdefault(day, []).append({
                    "UsageDate": day,
                    "SubscriptionId": sid,
                    "SubscriptionName": sub_name,
                    "ResourceId": rid,
                    "ResourceName": parsed["name"] if rid else "",
                    "ResourceGroup": parsed["resourceGroup"],
                    "MeterCategory": row.get("MeterCategory") or "",
                    "MeterSubCategory": row.get("MeterSubCategory") or "",
                    "Meter": row.get("Meter") or "",
                    "Cost": row.get("Cost", row.get("PreTaxCost", 0)),
                    "Currency": row.get("Currency") or "",
                })

    items = sum(len(v) for v in cost_by_day.values())
    fncPrintMessage(f"Cost: {items} line items over {len(cost_by_day)} days", "success")
    return {"cost_by_day": cost_by_day, "currency": currency}


def _normalise_cost_by_day(cost_by_day: Optional[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    """Re-key by ISO day and coerce every line item; unusable day keys are dropped."""
    out: Dict[str, List[Dict[str, Any]]] = {}
    for raw_day, items in (cost_by_day or {}).items():
        day = fncDateKey(raw_day)
        if not day:
            fncPrintMessage(f"Cost: ignoring line items under invalid day '{raw_day}'", "debug")
            continue
        rows = fncNormalizeRecords(items if isinstance(items, list) else [items],
                                   text_fields=TEXT_FIELDS, numeric_fields=["Cost"])
        for r in rows:
            r["UsageDate"] = day
        out.setdefault(day, []).extend(rows)
    return out


# ================================================================
# Function: fncBuildCostModel
# Purpose : Everything the cost page shows, computed once
# Notes   : `days` fixes the window; totals, trend, drivers and the
#           stacked series all use the same zero-filled day list
# ================================================================
def fncBuildCostModel(cost_by_day: Optional[Dict[str, Any]], days: List[str], top_n: int = 15) -> Dict[str, Any]:
    by_day = _normalise_cost_by_day(cost_by_day)
    window = {d: by_day.get(d, []) for d in days}
    items = [r for d in days for r in window[d]]

    daily = [round(sum(r["Cost"] for r in window[d]), 2) for d in days]
    total = sum(r["Cost"] for r in items)
    trend = fncCalculateTrend(daily)

    by_sub = [
        {"SubscriptionName": g["key"], "Cost": g["sums"]["Cost"], "LineItems": g["count"]}
        for g in fncGroupBy(items, "SubscriptionName", sums=["Cost"])
    ]
    by_sub.sort(key=lambda s: -s["Cost"])

    categories = fncGroupBy(items, "MeterCategory", sums=["Cost"])
    top_categories = [
        {"MeterCategory": g["key"], "Cost": g["sums"]["Cost"]}
        for g in fncTopN(categories, 10, lambda g: g["sums"]["Cost"])
    ]

    resources = fncGroupBy(items, "ResourceName", sums=["Cost"])
    top_resources = [
        {"ResourceName": g["key"], "SubscriptionName": g["items"][0]["SubscriptionName"], "Cost": g["sums"]["Cost"]}
        for g in fncTopN(resources, 10, lambda g: g["sums"]["Cost"])
    ]

    return {
        "days": list(days),
        "daily": daily,
        "total": total,
        "average": total / len(days) if days else 0.0,
        "trend": trend,
        "drivers": fncCostIncreaseDrivers(window, "ResourceName", days),
        "meter_series": fncStackedSeries(window, "MeterCategory", top_n=top_n, days=days),
        "resource_series": fncStackedSeries(window, "ResourceName", top_n=top_n, days=days),
        "breakdown": fncBuildBreakdown(items, BREAKDOWN_LEVELS, "Cost"),
        "by_subscription": by_sub,
        "top_categories": top_categories,
        "top_resources": top_resources,
        "line_items": len(items),
        "filters": {
            "subscriptions": fncDistinct(items, "SubscriptionName"),
            "categories": fncDistinct(items, "MeterCategory"),
        },
        "payload": fncBuildPayload(
            items, LINE_FIELDS,
            search_fields=["SubscriptionName", "ResourceGroup", "ResourceName", "MeterCategory", "MeterSubCategory", "Meter"],
            decimals={"Cost": 2},
        ),
    }


def _trend_delta(trend: Dict[str, Any]) -> str:
    cls = {"up": "trend-up", "down": "trend-down"}.get(trend["direction"], "trend-neutral")
    return f"<span class='{cls}'>{_esc(fncTrendLabel(trend))}</span> vs first half"


def _render_body(model: Dict[str, Any], currency: str, page_size: int) -> str:
    money = lambda v: fncFormatMoney(v, currency, 0)
    kpis = [
        {"label": f"Total ({len(model['days'])} days)", "value": money(model["total"]), "tone": "primary",
         "id": "cost-kpi-total", "delta": _trend_delta(model["trend"])},
        {"label": "Daily Average", "value": money(model["average"]), "tone": "primary"},
        {"label": "Line Items", "value": fncFormatNumber(model["line_items"]), "tone": "primary", "id": "cost-kpi-items"},
        {"label": "Subscriptions", "value": fncFormatNumber(len(model["by_subscription"])), "tone": "primary"},
    ]
    parts = [fncRenderKpis(kpis)]

    if not model["line_items"]:
        parts.append("<h3>Spend</h3>")
        parts.append(fncRenderEmptyState("No cost data was returned for the selected window."))
        return "\n".join(parts)

    parts.append("<h3>Spend</h3>")
    parts.append('<div class="charts">')
    parts.append(fncRenderChartCard("cost-chart-daily", "Daily Cost"))
    parts.append(fncRenderChartCard("cost-chart-meters", "Daily Cost by Meter Category (top 15 + Other)"))
    parts.append(fncRenderChartCard("cost-chart-resources", "Daily Cost by Resource (top 15 + Other)"))
    parts.append("</div>")

    drivers = [
        {
            "Resource": d["name"],
            "Subscription": d["subscription"],
            "Category": d["category"],
            "Increase": d["increase"],
            "Trend": "new" if d["is_new"] else f"{d['percent']:.1f}%",
            "Total": d["total"],
        }
        for d in model["drivers"]
    ]
    parts.append("<h3>Top Cost Increase Drivers</h3>")
    parts.append(fncRenderTable(drivers, [
        {"field": "Resource", "label": "Resource"},
        {"field": "Subscription", "label": "Subscription"},
        {"field": "Category", "label": "Meter Category"},
        {"field": "Increase", "label": "Increase", "type": "money"},
        {"field": "Trend", "label": "Trend"},
        {"field": "Total", "label": "Window Total", "type": "money"},
    ], "Cost Increase Drivers", "No resource shows a cost increase in this window."))

    parts.append("<h3>Where The Money Goes</h3>")
    parts.append('<div class="charts">')
    parts.append(fncRenderTable(model["by_subscription"], [
        {"field": "SubscriptionName", "label": "Subscription"},
        {"field": "Cost", "label": "Cost", "type": "money"},
        {"field": "LineItems", "label": "Line Items", "type": "number"},
    ], "By Subscription"))
    parts.append(fncRenderTable(model["top_categories"], [
        {"field": "MeterCategory", "label": "Meter Category"},
        {"field": "Cost", "label": "Cost", "type": "money"},
    ], "Top Meter Categories"))
    parts.append(fncRenderTable(model["top_resources"], [
        {"field": "ResourceName", "label": "Resource"},
        {"field": "SubscriptionName", "label": "Subscription"},
        {"field": "Cost", "label": "Cost", "type": "money"},
    ], "Top Resources"))
    parts.append("</div>")

    parts.append("<h3>Breakdown</h3>")
    parts.append("<p>Subscription → meter category → subcategory → meter → resource. Click a row to expand.</p>")
    parts.append(fncRenderDrilldown(model["breakdown"], lambda v: fncFormatMoney(v, currency, 2)))

    parts.append("<h3>Line Items</h3>")
    f = model["filters"]
    parts.append(fncRenderFilterBar("cost-search", [
        ("cost-f-sub", "Subscriptions", f["subscriptions"]),
        ("cost-f-cat", "Meter Categories", f["categories"]),
    ], placeholder="Search resources, meters…"))
    parts.append('<div class="charts">')
    parts.append(fncRenderChartCard("cost-chart-filtered", "Filtered Daily Cost by Subscription"))
    parts.append(fncRenderListCard("cost-top-resources", "Top Resources"))
    parts.append(fncRenderListCard("cost-top-meters", "Top Meters"))
    parts.append("</div>")
    parts.append(fncRenderDataTable("cost-table", TABLE_COLUMNS, f"Line Items (page size {page_size})"))
    return "\n".join(parts)


def _static_charts(model: Dict[str, Any]) -> List[str]:
    days = model["days"]
    return [
        fncChartScript("cost-chart-daily", "line", days, [{"label": "Cost", "data": model["daily"], "fill": True}]),
        fncChartScript("cost-chart-meters", "bar", days, model["meter_series"]["series"], stacked=True),
        fncChartScript("cost-chart-resources", "bar", days, model["resource_series"]["series"], stacked=True),
    ]


def _runtime_config(model: Dict[str, Any], page_size: int, currency: str = "") -> Dict[str, Any]:
    return {
        "dataId": "cost-data",
        "pageSize": page_size,
        "searchId": "cost-search",
        "measure": "Cost",
        "dimensions": [
            {"field": "SubscriptionName", "selectId": "cost-f-sub"},
            {"field": "MeterCategory", "selectId": "cost-f-cat"},
        ],
        "cards": [
            {"id": "cost-kpi-total", "sum": "Cost", "decimals": 0, "suffix": f" {currency}" if currency else ""},
            {"id": "cost-kpi-items"},
        ],
        "topN": [
            {"field": "ResourceName", "n": 10, "targetId": "cost-top-resources"},
            {"field": "Meter", "n": 10, "targetId": "cost-top-meters"},
        ],
        "timeline": {
            "keys": model["days"], "field": "UsageDate", "dimField": "SubscriptionName",
            "granularity": "day", "chartId": "cost-chart-filtered", "type": "bar",
        },
        "table": {"id": "cost-table", "columns": TABLE_COLUMNS, "empty": "No line items match the current filters."},
    }


# ================================================================
# Function: export_report
# Purpose : Render cost.html and return its metadata record
# ================================================================
def export_report(data: Optional[Dict[str, Any]], output_path: str, tenant_id: str,
                  cfg: Optional[dict] = None, today=None, run_id: Optional[str] = None) -> Dict[str, Any]:
    data = data or {}
    cfg = cfg or {}
    section = fncGetSection(cfg, "cost")
    page_size = int(cfg.get("page_size", 25))
    days = fncDayKeys(int(section.get("days", 30)), today)
    currency = data.get("currency") or ""

    model = fncBuildCostModel(data.get("cost_by_day"), days, int(section.get("top_n", 15)))

    if model["drivers"]:
        print(fncToTable(
            [{"Resource": d["name"], "Increase": round(d["increase"], 2), "Trend": "new" if d["is_new"] else f"{d['percent']:.1f}%"}
             for d in model["drivers"]],
            headers=["Resource", "Increase", "Trend"], max_rows=10,
        ))

    scripts: List[str] = []
    if model["line_items"]:
        scripts = _static_charts(model) + fncCrossFilterScripts(_runtime_config(model, page_size, currency))

    body = fncRenderDataScript("cost-data", model["payload"]) + _render_body(model, currency, page_size)
    doc = fncRenderPage(TITLE, REPORT_NAME, body, tenant_id,
                        subtitle=f"Actual cost, {days[0]} to {days[-1]}" if days else None,
                        scripts=scripts, needs_chartjs=bool(model["line_items"]), run_id=run_id)
    fncWriteHTMLReport(output_path, doc)

    return {
        "report": REPORT_NAME,
        "title": TITLE,
        "output_path": output_path,
        "counts": {
            "Total": round(model["total"], 2),
            "LineItems": model["line_items"],
            "Drivers": len(model["drivers"]),
        },
        "currency": currency,
        "trend": model["trend"],
        "headline": f"{fncFormatMoney(model['total'], currency, 0)} over {len(days)} days ({fncTrendLabel(model['trend'])})",
    }
