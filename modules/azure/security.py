# ================================================================
# File     : modules/azure/security.py
# Purpose  : Security posture report: Defender for Cloud assessment
#            findings (filterable) and active security alerts
# Notes    : collect() talks to ARM; everything else is pure and
#            works on already-collected records
# ================================================================

from typing import Any, Dict, List, Optional

from core.aggregation import fncCountBy, fncDistinct, fncGroupBy, fncHighestSeverity, fncTopN
from core.config import fncGetSection
from core.crossfilter import fncCrossFilterScripts
from core.normalize import SEVERITY_ORDER, UNKNOWN, fncNormalizeRecords, fncSeverityRank
from core.reporting import (
    SEVERITY_COLOURS,
    fncBuildPayload,
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
    fncFormatNumber,
)
from core.utils import fncPrintMessage, fncSafeGet, fncToTable
from handlers.arm.arm_helpers import fncParseResourceId

REPORT_NAME = "security"
OUTPUT_FILE = "security.html"
TITLE = "Security Posture"

ASSESSMENTS_API = "2021-06-01"
ALERTS_API = "2022-01-01"

SEVERITY_LEVELS = SEVERITY_ORDER + [UNKNOWN]

FINDING_FIELDS = [
    "Severity", "Title", "Category", "CisLevel", "Status",
    "SubscriptionName", "ResourceGroup", "ResourceName", "ResourceType", "Remediation", "Timestamp",
]

TABLE_COLUMNS = [
    {"field": "Severity", "label": "Severity", "type": "severity"},
    {"field": "Title", "label": "Finding"},
    {"field": "Category", "label": "Category"},
    {"field": "CisLevel", "label": "CIS"},
    {"field": "SubscriptionName", "label": "Subscription"},
    {"field": "ResourceGroup", "label": "Resource Group"},
    {"field": "ResourceName", "label": "Resource"},
    {"field": "Remediation", "label": "Remediation"},
]

ALERT_COLUMNS = [
    {"field": "Severity", "label": "Severity", "type": "severity"},
    {"field": "AlertName", "label": "Alert"},
    {"field": "Status", "label": "Status"},
    {"field": "SubscriptionName", "label": "Subscription"},
    {"field": "ResourceName", "label": "Resource"},
    {"field": "StartTime", "label": "Start (UTC)"},
    {"field": "Description", "label": "Description"},
]

# Defender categories that map onto the CIS Azure benchmark sections
_CIS_L1_CATEGORIES = {"Compute", "Data", "Networking", "IdentityAndAccess", "AppServices"}


def _cis_level(category: str, severity: str) -> str:
    if category in _CIS_L1_CATEGORIES and severity in ("Critical", "High"):
        return "L1"
    return "L2"


# ================================================================
# Function: collect
# Purpose : Unhealthy Defender assessments + alerts per subscription
# ================================================================
def collect(client, subscriptions: Dict[str, str], cfg: Optional[dict] = None) -> Dict[str, Any]:
    findings: List[Dict[str, Any]] = []
    alerts: List[Dict[str, Any]] = []

    for sid, sub_name in subscriptions.items():
        fncPrintMessage(f"Security: reading assessments for {sub_name}", "info")
        try:
            assessments = client.get_all(f"subscriptions/{sid}/providers/Microsoft.Security/assessments", ASSESSMENTS_API)
        except Exception as ex:
            fncPrintMessage(f"Security assessments unavailable for {sub_name}: {ex}", "warn")
            assessments = []

        for a in assessments:
            status = fncSafeGet(a, "properties.status.code", "")
            if status != "Unhealthy":
                continue
            rid = fncSafeGet(a, "properties.resourceDetails.Id") or fncSafeGet(a, "properties.resourceDetails.id") or ""
            parsed = fncParseResourceId(rid)
            meta = fncSafeGet(a, "properties.metadata", {}) or {}
            categories = meta.get("categories") or []
            category = categories[0] if categories else ""
            findings.append({
                "SubscriptionId": sid,
                "SubscriptionName": sub_name,
                "ResourceId": rid,
                "ResourceName": parsed["name"],
                "ResourceGroup": parsed["resourceGroup"],
                "ResourceType": parsed["type"],
                "Category": category,
                "Title": fncSafeGet(a, "properties.displayName", a.get("name", "")),
                "Severity": meta.get("severity") or "",
                "Status": "Fail",
                "Remediation": meta.get("remediationDescription") or "",
                "Timestamp": fncSafeGet(a, "properties.status.firstEvaluationDate", ""),
            })

        try:
            raw_alerts = client.get_all(f"subscriptions/{sid}/providers/Microsoft.Security/alerts", ALERTS_API)
        except Exception as ex:
            fncPrintMessage(f"Security alerts unavailable for {sub_name}: {ex}", "warn")
            raw_alerts = []

        for al in raw_alerts:
            props = al.get("properties") or {}
            if props.get("status") in ("Dismissed", "Resolved"):
                continue
            ids = props.get("resourceIdentifiers") or [{}]
            rid = ids[0].get("azureResourceId", "") if isinstance(ids[0], dict) else ""
            alerts.append({
                "SubscriptionId": sid,
                "SubscriptionName": sub_name,
                "AlertName": props.get("alertDisplayName") or al.get("name", ""),
                "Severity": props.get("severity") or "",
                "Status": props.get("status") or "",
                "ResourceName": fncParseResourceId(rid)["name"] if rid else props.get("compromisedEntity", ""),
                "StartTime": props.get("startTimeUtc") or "",
                "Description": props.get("description") or "",
            })

    for f in findings:
        f["CisLevel"] = _cis_level(f["Category"], (f["Severity"] or "").capitalize())

    fncPrintMessage(f"Security: {len(findings)} findings, {len(alerts)} active alerts", "success")
    return {"findings": findings, "alerts": alerts}


# ================================================================
# Function: fncBuildSecurityModel
# Purpose : Aggregate findings for the report
# Notes   : Severity summary is zero-filled in fixed order; every
#           subscription group carries its highest severity
# ================================================================
def fncBuildSecurityModel(findings: Optional[List[Dict[str, Any]]],
                          alerts: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    findings = fncNormalizeRecords(
        findings,
        text_fields=["SubscriptionName", "Category", "ResourceGroup", "ResourceName", "ResourceType", "CisLevel", "Status"],
        date_fields=["Timestamp"],
        severity_field="Severity",
    )
    for f in findings:
        f["Title"] = f.get("Title") or "(untitled finding)"
        f["Remediation"] = f.get("Remediation") or ""

    findings.sort(key=lambda f: fncSeverityRank(f["Severity"]))

    alerts = fncNormalizeRecords(
        alerts,
        text_fields=["SubscriptionName", "AlertName", "Status", "ResourceName"],
        date_fields=["StartTime"],
        severity_field="Severity",
    )
    alerts.sort(key=lambda a: (fncSeverityRank(a["Severity"]), a["StartTime"]))

    by_sub = []
    for g in fncGroupBy(findings, "SubscriptionName"):
        by_sub.append({
            "SubscriptionName": g["key"],
            "Findings": g["count"],
            "HighestSeverity": fncHighestSeverity(f["Severity"] for f in g["items"]),
            **{sev: sum(1 for f in g["items"] if f["Severity"] == sev) for sev in SEVERITY_ORDER},
        })

    by_category = fncGroupBy(findings, "Category")
    top_categories = [
        {"Category": g["key"], "Findings": g["count"],
         "HighestSeverity": fncHighestSeverity(f["Severity"] for f in g["items"])}
        for g in fncTopN(by_category, 10, lambda g: g["count"])
    ]

    affected = fncGroupBy(findings, "ResourceId")

    return {
        "findings": findings,
        "alerts": alerts,
        "total": len(findings),
        "severity_counts": fncCountBy(findings, "Severity", order=SEVERITY_LEVELS),
        "cis_counts": fncCountBy(findings, "CisLevel", order=["L1", "L2"]),
        "by_subscription": by_sub,
        "top_categories": top_categories,
        "affected_resources": len(affected),
        "filters": {
            "subscriptions": fncDistinct(findings, "SubscriptionName"),
            "severities": [s for s in SEVERITY_LEVELS if any(f["Severity"] == s for f in findings)],
            "categories": fncDistinct(findings, "Category"),
            "cis_levels": fncDistinct(findings, "CisLevel"),
        },
        "payload": fncBuildPayload(
            findings, FINDING_FIELDS,
            search_fields=["Title", "Category", "SubscriptionName", "ResourceGroup", "ResourceName", "ResourceType", "Remediation"],
        ),
    }


def _render_body(model: Dict[str, Any], page_size: int) -> str:
    sc = model["severity_counts"]
    kpis = [
        {"label": "Open Findings", "value": fncFormatNumber(model["total"]), "tone": "primary", "id": "sec-kpi-total"},
        {"label": "Critical", "value": fncFormatNumber(sc.get("Critical", 0)), "tone": "danger", "id": "sec-kpi-critical"},
        {"label": "High", "value": fncFormatNumber(sc.get("High", 0)), "tone": "danger", "id": "sec-kpi-high"},
        {"label": "Medium", "value": fncFormatNumber(sc.get("Medium", 0)), "tone": "warning", "id": "sec-kpi-medium"},
        {"label": "Affected Resources", "value": fncFormatNumber(model["affected_resources"]), "tone": "primary"},
        {"label": "Active Alerts", "value": fncFormatNumber(len(model["alerts"])), "tone": "warning"},
    ]

    parts = [fncRenderKpis(kpis)]
    if not model["total"]:
        parts.append("<h3>Findings</h3>")
        parts.append(fncRenderEmptyState("No open security findings were reported for the selected subscriptions."))
    else:
        f = model["filters"]
        parts.append("<h3>Findings</h3>")
        parts.append(fncRenderFilterBar("sec-search", [
            ("sec-f-sub", "Subscriptions", f["subscriptions"]),
            ("sec-f-sev", "Severities", f["severities"]),
            ("sec-f-cat", "Categories", f["categories"]),
            ("sec-f-cis", "CIS Levels", f["cis_levels"]),
        ], placeholder="Search findings, resources, remediation…"))
        parts.append('<div id="sec-summary" class="card"></div>')
        parts.append('<div class="charts">')
        parts.append(fncRenderChartCard("sec-chart-severity", "Severity Breakdown"))
        parts.append(fncRenderListCard("sec-top-categories", "Top Categories"))
        parts.append(fncRenderListCard("sec-top-resources", "Most Affected Resources"))
        parts.append("</div>")
        parts.append(fncRenderDataTable("sec-table", TABLE_COLUMNS, f"Findings (page size {page_size})"))

    parts.append("<h3>By Subscription</h3>")
    parts.append(fncRenderTable(model["by_subscription"], [
        {"field": "SubscriptionName", "label": "Subscription"},
        {"field": "HighestSeverity", "label": "Highest", "type": "severity"},
        {"field": "Findings", "label": "Findings", "type": "number"},
        {"field": "Critical", "label": "Critical", "type": "number"},
        {"field": "High", "label": "High", "type": "number"},
        {"field": "Medium", "label": "Medium", "type": "number"},
        {"field": "Low", "label": "Low", "type": "number"},
    ], "Findings by Subscription"))

    parts.append("<h3>Security Alerts</h3>")
    parts.append(fncRenderTable(model["alerts"], ALERT_COLUMNS, "Active Alerts", "No active security alerts."))
    return "\n".join(parts)


def _runtime_config(page_size: int) -> Dict[str, Any]:
    return {
        "dataId": "sec-data",
        "pageSize": page_size,
        "searchId": "sec-search",
        "severityField": "Severity",
        "dimensions": [
            {"field": "SubscriptionName", "selectId": "sec-f-sub"},
            {"field": "Severity", "selectId": "sec-f-sev"},
            {"field": "Category", "selectId": "sec-f-cat"},
            {"field": "CisLevel", "selectId": "sec-f-cis"},
        ],
        "cards": [
            {"id": "sec-kpi-total"},
            {"id": "sec-kpi-critical", "field": "Severity", "equals": "Critical"},
            {"id": "sec-kpi-high", "field": "Severity", "equals": "High"},
            {"id": "sec-kpi-medium", "field": "Severity", "equals": "Medium"},
        ],
        "summary": {
            "field": "Severity", "order": SEVERITY_LEVELS, "targetId": "sec-summary",
            "chartId": "sec-chart-severity", "type": "doughnut", "label": "Findings",
            "colours": SEVERITY_COLOURS,
        },
        "topN": [
            {"field": "Category", "n": 10, "targetId": "sec-top-categories"},
            {"field": "ResourceName", "n": 10, "targetId": "sec-top-resources"},
        ],
        "table": {"id": "sec-table", "columns": TABLE_COLUMNS, "empty": "No findings match the current filters."},
    }


# ================================================================
# Function: export_report
# Purpose : Render security.html and return its metadata record
# ================================================================
def export_report(data: Optional[Dict[str, Any]], output_path: str, tenant_id: str,
                  cfg: Optional[dict] = None, today=None, run_id: Optional[str] = None) -> Dict[str, Any]:
    data = data or {}
    page_size = int((cfg or {}).get("page_size", 25))
    model = fncBuildSecurityModel(data.get("findings"), data.get("alerts"))

    print(fncToTable(
        [{"Severity": k, "Findings": v} for k, v in model["severity_counts"].items()],
        headers=["Severity", "Findings"],
    ))

    scripts = fncCrossFilterScripts(_runtime_config(page_size)) if model["total"] else []

    body = fncRenderDataScript("sec-data", model["payload"]) + _render_body(model, page_size)
    doc = fncRenderPage(TITLE, REPORT_NAME, body, tenant_id,
                        subtitle="Microsoft Defender for Cloud findings and active alerts",
                        scripts=scripts, needs_chartjs=bool(model["total"]), run_id=run_id)
    fncWriteHTMLReport(output_path, doc)

    sc = model["severity_counts"]
    return {
        "report": REPORT_NAME,
        "title": TITLE,
        "output_path": output_path,
        "counts": {
            "Findings": model["total"],
            "Critical": sc.get("Critical", 0),
            "High": sc.get("High", 0),
            "Alerts": len(model["alerts"]),
        },
        "headline": f"{model['total']} open findings, {sc.get('Critical', 0)} critical",
    }
