# ================================================================
# File     : modules/azure/eol.py
# Purpose  : End-of-life report: resources still depending on
#            retired or retiring Azure features, ranked by how close
#            the retirement deadline is
# Notes    : RETIREMENT_CATALOG drives collection; each rule names a
#            Resource Graph query, a match predicate and a deadline.
#            Severity comes from deadline proximity only:
#            passed → Critical, ≤90d → High, ≤180d → Medium, else Low
# ================================================================

from datetime import date
from typing import Any, Dict, List, Optional

from core.aggregation import fncCountBy, fncDistinct, fncGroupBy, fncHighestSeverity
from core.config import fncGetSection
from core.crossfilter import fncCrossFilterScripts
from core.normalize import SEVERITY_ORDER, UNKNOWN, fncNormalizeRecords, fncParseDate, fncSeverityRank, fncToBool
from core.reporting import (
    SEVERITY_COLOURS,
    fncBuildPayload,
    fncChartScript,
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
from core.timeline import fncBuildMonthlyTimeline, fncTimelineSeries
from core.utils import fncPrintMessage, fncToTable, fncUtcNow
from handlers.arm.arm_helpers import fncParseResourceId, fncResourceGraphQuery

REPORT_NAME = "eol"
OUTPUT_FILE = "eol.html"
TITLE = "End of Life"

SEVERITY_LEVELS = SEVERITY_ORDER + [UNKNOWN]

LEGACY_AGENT_TYPES = {"OmsAgentForLinux", "MicrosoftMonitoringAgent", "MMAExtension", "Microsoft.EnterpriseCloud.Monitoring"}
AUTOMATION_WORKERS_API = "2023-11-01"

# ----------------------- Module-local CSS ------------------------

EOL_CSS = r"""
/* Scope to this module only */
.eol .charts .chart-card:first-child{grid-column:1 / -1}
"""

# ----------------------- Retirement catalog ----------------------

def _tls_below_12(value: Any) -> bool:
    v = str(value or "").replace("TLS", "").replace("_", ".").strip()
    return v not in ("1.2", "1.3")


RETIREMENT_CATALOG: List[Dict[str, Any]] = [
    {
        "id": "storage-legacy-kind",
        "component": "Storage account (GPv1 / legacy Blob)",
        "title": "Legacy storage account kind",
        "deadline": "2026-10-13",
        "query": """
resources
| where type =~ 'microsoft.storage/storageaccounts'
| project id, name, resourceGroup, subscriptionId, kind, minimumTlsVersion = tostring(properties.minimumTlsVersion)
""",
        "match": lambda r: r.get("kind") in ("Storage", "BlobStorage"),
        "detail": lambda r: f"kind={r.get('kind')}",
        "remediation": "Upgrade the account to general-purpose v2 (StorageV2).",
    },
    {
        "id": "storage-tls",
        "component": "Storage account TLS 1.0/1.1",
        "title": "Storage accepts TLS below 1.2",
        "deadline": "2026-02-03",
        "query": """
resources
| where type =~ 'microsoft.storage/storageaccounts'
| project id, name, resourceGroup, subscriptionId, kind, minimumTlsVersion = tostring(properties.minimumTlsVersion)
""",
        "match": lambda r: _tls_below_12(r.get("minimumTlsVersion")),
        "detail": lambda r: f"minimumTlsVersion={r.get('minimumTlsVersion') or 'not set'}",
        "remediation": "Set minimumTlsVersion to TLS1_2 once clients are verified.",
    },
    {
        "id": "sql-tls",
        "component": "Azure SQL TLS 1.0/1.1",
        "title": "SQL server accepts TLS below 1.2",
        "deadline": "2025-08-31",
        "query": """
resources
| where type =~ 'microsoft.sql/servers'
| project id, name, resourceGroup, subscriptionId, minimalTlsVersion = tostring(properties.minimalTlsVersion),
          publicNetworkAccess = tostring(properties.publicNetworkAccess)
""",
        "match": lambda r: _tls_below_12(r.get("minimalTlsVersion")),
        "detail": lambda r: f"minimalTlsVersion={r.get('minimalTlsVersion') or 'not set'}, public={r.get('publicNetworkAccess') or 'n/a'}",
        "remediation": "Set the server minimal TLS version to 1.2.",
    },
    {
        "id": "appservice-tls",
        "component": "App Service TLS 1.0/1.1",
        "title": "Web app accepts TLS below 1.2",
        "deadline": "2025-08-31",
        "query": """
resources
| where type =~ 'microsoft.web/sites'
| project id, name, resourceGroup, subscriptionId, httpsOnly = tostring(properties.httpsOnly),
          minTlsVersion = tostring(properties.siteConfig.minTlsVersion)
""",
        "match": lambda r: bool(r.get("minTlsVersion")) and _tls_below_12(r.get("minTlsVersion")),
        "detail": lambda r: f"minTlsVersion={r.get('minTlsVersion')}",
        "remediation": "Set the site minimum TLS version to 1.2.",
    },
    {
        "id": "appservice-https-only",
        "component": "App Service TLS 1.0/1.1",
        "title": "Web app allows plain HTTP",
        "deadline": "2025-08-31",
        "query": """
resources
| where type =~ 'microsoft.web/sites'
| project id, name, resourceGroup, subscriptionId, httpsOnly = tostring(properties.httpsOnly),
          minTlsVersion = tostring(properties.siteConfig.minTlsVersion)
""",
        "match": lambda r: not fncToBool(r.get("httpsOnly")),
        "detail": lambda r: "httpsOnly=false",
        "remediation": "Enable HTTPS Only on the site.",
    },
    {
        "id": "log-analytics-agent",
        "component": "Log Analytics agent (MMA/OMS)",
        "title": "Legacy monitoring agent installed",
        "deadline": "2024-08-31",
        "query": """
resources
| where type in~ ('microsoft.compute/virtualmachines/extensions', 'microsoft.compute/virtualmachinescalesets/extensions')
| project id, name, resourceGroup, subscriptionId, extensionType = tostring(properties.type),
          publisher = tostring(properties.publisher), version = tostring(properties.typeHandlerVersion)
""",
        "match": lambda r: r.get("extensionType") in LEGACY_AGENT_TYPES,
        "detail": lambda r: f"{r.get('extensionType')} {r.get('version') or ''}".strip(),
        "remediation": "Migrate to the Azure Monitor Agent with data collection rules and remove the legacy extension.",
        "parent": True,
    },
    {
        "id": "aadds-ldaps-certificate",
        "component": "Azure AD DS secure LDAP certificate",
        "title": "Secure LDAP certificate expiry",
        "deadline": None,
        "query": """
resources
| where type =~ 'microsoft.aad/domainservices'
| project id, name, resourceGroup, subscriptionId, ldaps = tostring(properties.ldapsSettings.ldaps),
          externalAccess = tostring(properties.ldapsSettings.externalAccess),
          certificateNotAfter = tostring(properties.ldapsSettings.certificateNotAfter)
""",
        "match": lambda r: str(r.get("ldaps") or "").lower() == "enabled",
        "detail": lambda r: f"externalAccess={r.get('externalAccess') or 'n/a'}",
        "remediation": "Upload a renewed secure LDAP certificate before the current one expires.",
        "deadline_field": "certificateNotAfter",
    },
]

# agent-based (v1) hybrid runbook workers are listed per automation account
HYBRID_WORKER_RULE = {
    "id": "automation-hybrid-worker-v1",
    "component": "Agent-based Hybrid Runbook Worker",
    "title": "Agent-based hybrid worker registered",
    "deadline": "2024-08-31",
    "remediation": "Move the worker to the extension-based Hybrid Runbook Worker (v2).",
}

AUTOMATION_ACCOUNTS_QUERY = """
resources
| where type =~ 'microsoft.automation/automationaccounts'
| project id, name, resourceGroup, subscriptionId
"""

PAYLOAD_FIELDS = [
    "Severity", "Component", "Title", "ResourceName", "ResourceType", "ResourceGroup",
    "SubscriptionName", "Deadline", "DaysLeft", "Detail", "Remediation",
]

TABLE_COLUMNS = [
    {"field": "Severity", "label": "Severity", "type": "severity"},
    {"field": "Component", "label": "Component"},
    {"field": "Title", "label": "Finding"},
    {"field": "ResourceName", "label": "Resource"},
    {"field": "SubscriptionName", "label": "Subscription"},
    {"field": "Deadline", "label": "Deadline", "type": "date"},
    {"field": "DaysLeft", "label": "Days Left", "type": "number"},
    {"field": "Detail", "label": "Detail"},
    {"field": "Remediation", "label": "Remediation"},
]


# ================================================================
# Function: fncDeadlineSeverity
# Purpose : Map days-to-deadline onto the severity scale
# ================================================================
def fncDeadlineSeverity(deadline: Any, today: Optional[date] = None) -> str:
    due = fncParseDate(deadline)
    if due is None:
        return UNKNOWN
    today = today or fncUtcNow().date()
    days_left = (due.date() - today).days
    if days_left < 0:
        return "Critical"
    if days_left <= 90:
        return "High"
    if days_left <= 180:
        return "Medium"
    return "Low"


def _finding(rule: Dict[str, Any], row: Dict[str, Any], subscriptions: Dict[str, str], name: str,
             rtype: str, detail: str, deadline: Any) -> Dict[str, Any]:
    sid = row.get("subscriptionId") or ""
    return {
        "RuleId": rule["id"],
        "Component": rule["component"],
        "Title": rule["title"],
        "ResourceId": row.get("id") or "",
        "ResourceName": name,
        "ResourceType": rtype,
        "ResourceGroup": row.get("resourceGroup") or "",
        "SubscriptionId": sid,
        "SubscriptionName": subscriptions.get(sid, sid),
        "Deadline": deadline or "",
        "Detail": detail,
        "Remediation": rule["remediation"],
    }


def fncEvaluateRule(rule: Dict[str, Any], rows: List[Dict[str, Any]], subscriptions: Dict[str, str]) -> List[Dict[str, Any]]:
    """Apply one catalog rule to its Resource Graph rows."""
    out = []
    for row in rows:
        try:
            if not rule["match"](row):
                continue
            detail = rule["detail"](row)
        except (TypeError, ValueError, AttributeError) as ex:
            fncPrintMessage(f"EOL rule {rule['id']} skipped a row: {ex}", "debug")
            continue
        name = row.get("name") or ""
        rtype = str(row.get("type") or fncParseResourceId(row.get("id"))["type"])
        if rule.get("parent") and "/" in name:
            # extensions are named vmName/extensionName
            name = name.split("/", 1)[0]
        deadline = row.get(rule["deadline_field"]) if rule.get("deadline_field") else rule["deadline"]
        out.append(_finding(rule, row, subscriptions, name, rtype, detail, deadline))
    return out


def _collect_hybrid_workers(client, subscriptions: Dict[str, str]) -> List[Dict[str, Any]]:
    rule = HYBRID_WORKER_RULE
    findings = []
    for account in fncResourceGraphQuery(client, AUTOMATION_ACCOUNTS_QUERY, list(subscriptions.keys())):
        try:
            groups = client.get_all(f"{account['id']}/hybridRunbookWorkerGroups", AUTOMATION_WORKERS_API)
        except Exception as ex:
            fncPrintMessage(f"Hybrid worker groups unavailable for {account.get('name')}: {ex}", "warn")
            continue
        for group in groups:
            try:
                workers = client.get_all(f"{group['id']}/hybridRunbookWorkers", AUTOMATION_WORKERS_API)
            except Exception as ex:
                fncPrintMessage(f"Hybrid workers unavailable for group {group.get('name')}: {ex}", "warn")
                continue
            for w in workers:
                props = w.get("properties") or {}
                if props.get("workerType") != "HybridV1":
                    continue
                row = dict(account)
                findings.append(_finding(
                    rule, row, subscriptions,
                    name=props.get("workerName") or w.get("name", ""),
                    rtype="Microsoft.Automation/automationAccounts/hybridRunbookWorkerGroups",
                    detail=f"account={account.get('name')}, group={group.get('name')}",
                    deadline=rule["deadline"],
                ))
    return findings


# ================================================================
# Function: collect
# Purpose : Evaluate the retirement catalog against the tenant
# Notes   : Rules sharing a query reuse its result; one failing rule
#           is reported and the rest still run
# ================================================================
def collect(client, subscriptions: Dict[str, str], cfg: Optional[dict] = None) -> Dict[str, Any]:
    sub_ids = list(subscriptions.keys())
    cache: Dict[str, List[Dict[str, Any]]] = {}
    findings: List[Dict[str, Any]] = []

    for rule in RETIREMENT_CATALOG:
        fncPrintMessage(f"EOL: evaluating {rule['id']}", "info")
        try:
            if rule["query"] not in cache:
                cache[rule["query"]] = fncResourceGraphQuery(client, rule["query"], sub_ids)
        except Exception as ex:
            fncPrintMessage(f"EOL rule {rule['id']} could not run: {ex}", "warn")
            continue
        findings.extend(fncEvaluateRule(rule, cache[rule["query"]], subscriptions))

    try:
        findings.extend(_collect_hybrid_workers(client, subscriptions))
    except Exception as ex:
        fncPrintMessage(f"EOL hybrid worker check could not run: {ex}", "warn")

    fncPrintMessage(f"EOL: {len(findings)} findings across {len(RETIREMENT_CATALOG) + 1} checks", "success")
    return {"findings": findings}


# ================================================================
# Function: fncBuildEolModel
# Purpose : Severity, component groups and the deadline timeline
# Notes   : Severity is recomputed from Deadline against `today` so
#           a snapshot rendered later ages correctly
# ================================================================
def fncBuildEolModel(findings: Optional[List[Dict[str, Any]]], today=None,
                     months_back: int = 6, months_forward: int = 24) -> Dict[str, Any]:
    today_d = (fncParseDate(today) or fncUtcNow()).date()
    rows = fncNormalizeRecords(
        findings,
        text_fields=["Component", "ResourceType", "ResourceGroup", "SubscriptionName"],
        date_fields=["Deadline"],
    )
    for r in rows:
        r["Title"] = r.get("Title") or r["Component"]
        r["ResourceName"] = r.get("ResourceName") or "Unknown"
        r["Detail"] = r.get("Detail") or ""
        r["Remediation"] = r.get("Remediation") or ""
        due = fncParseDate(r["Deadline"])
        r["DaysLeft"] = (due.date() - today_d).days if due else None
        r["Deadline"] = due.date().isoformat() if due else ""
        r["Severity"] = fncDeadlineSeverity(r["Deadline"], today_d)
    rows.sort(key=lambda r: (fncSeverityRank(r["Severity"]), r["Deadline"] or "9999"))

    components = []
    for g in fncGroupBy(rows, "Component"):
        deadlines = sorted(r["Deadline"] for r in g["items"] if r["Deadline"])
        components.append({
            "Component": g["key"],
            "Resources": g["count"],
            "HighestSeverity": fncHighestSeverity(r["Severity"] for r in g["items"]),
            "EarliestDeadline": deadlines[0] if deadlines else "",
            "Subscriptions": len({r["SubscriptionName"] for r in g["items"]}),
        })
    components.sort(key=lambda c: (fncSeverityRank(c["HighestSeverity"]), c["EarliestDeadline"] or "9999"))

    timeline = fncBuildMonthlyTimeline(rows, "Deadline", "Component", today=today_d,
                                       months_back=months_back, months_forward=months_forward)

    return {
        "findings": rows,
        "total": len(rows),
        "severity_counts": fncCountBy(rows, "Severity", order=SEVERITY_LEVELS),
        "components": components,
        "timeline": timeline,
        "filters": {
            "subscriptions": fncDistinct(rows, "SubscriptionName"),
            "severities": [s for s in SEVERITY_LEVELS if any(r["Severity"] == s for r in rows)],
            "components": fncDistinct(rows, "Component"),
        },
        "payload": fncBuildPayload(
            rows, PAYLOAD_FIELDS,
            search_fields=["Component", "Title", "ResourceName", "ResourceType", "ResourceGroup", "SubscriptionName", "Detail"],
        ),
    }


def _render_body(model: Dict[str, Any], page_size: int) -> str:
    sc = model["severity_counts"]
    kpis = [
        {"label": "EOL Findings", "value": fncFormatNumber(model["total"]), "tone": "primary", "id": "eol-kpi-total"},
        {"label": "Deadline Passed", "value": fncFormatNumber(sc.get("Critical", 0)), "tone": "danger", "id": "eol-kpi-critical"},
        {"label": "Due ≤ 90 days", "value": fncFormatNumber(sc.get("High", 0)), "tone": "danger", "id": "eol-kpi-high"},
        {"label": "Due ≤ 180 days", "value": fncFormatNumber(sc.get("Medium", 0)), "tone": "warning", "id": "eol-kpi-medium"},
        {"label": "Components", "value": fncFormatNumber(len(model["components"])), "tone": "primary"},
    ]
    parts = [f"<style>{EOL_CSS}</style>", fncRenderKpis(kpis)]

    if not model["total"]:
        parts.append("<h3>Retiring Components</h3>")
        parts.append(fncRenderEmptyState("No resources depend on retired or retiring features."))
        return "\n".join(parts)

    parts.append("<h3>Retirement Timeline</h3>")
    parts.append('<div class="charts">')
    parts.append(fncRenderChartCard("eol-chart-timeline", "Deadlines per Month (dashed line = today)", 300))
    parts.append("</div>")

    parts.append("<h3>Retiring Components</h3>")
    parts.append(fncRenderTable(model["components"], [
        {"field": "Component", "label": "Component"},
        {"field": "HighestSeverity", "label": "Highest", "type": "severity"},
        {"field": "EarliestDeadline", "label": "Earliest Deadline"},
        {"field": "Resources", "label": "Resources", "type": "number"},
        {"field": "Subscriptions", "label": "Subscriptions", "type": "number"},
    ], "Components"))

    f = model["filters"]
    parts.append("<h3>Findings</h3>")
    parts.append(fncRenderFilterBar("eol-search", [
        ("eol-f-sub", "Subscriptions", f["subscriptions"]),
        ("eol-f-sev", "Severities", f["severities"]),
        ("eol-f-comp", "Components", f["components"]),
    ], placeholder="Search resources, components…"))
    parts.append('<div id="eol-summary" class="card"></div>')
    parts.append('<div class="charts">')
    parts.append(fncRenderChartCard("eol-chart-severity", "Severity"))
    parts.append(fncRenderListCard("eol-top-components", "Findings per Component"))
    parts.append(fncRenderListCard("eol-top-subs", "Findings per Subscription"))
    parts.append("</div>")
    parts.append(fncRenderDataTable("eol-table", TABLE_COLUMNS, f"Affected Resources (page size {page_size})"))
    return "\n".join(parts)


def _runtime_config(page_size: int) -> Dict[str, Any]:
    return {
        "dataId": "eol-data",
        "pageSize": page_size,
        "searchId": "eol-search",
        "severityField": "Severity",
        "dimensions": [
            {"field": "SubscriptionName", "selectId": "eol-f-sub"},
            {"field": "Severity", "selectId": "eol-f-sev"},
            {"field": "Component", "selectId": "eol-f-comp"},
        ],
        "cards": [
            {"id": "eol-kpi-total"},
            {"id": "eol-kpi-critical", "field": "Severity", "equals": "Critical"},
            {"id": "eol-kpi-high", "field": "Severity", "equals": "High"},
            {"id": "eol-kpi-medium", "field": "Severity", "equals": "Medium"},
        ],
        "summary": {
            "field": "Severity", "order": SEVERITY_LEVELS, "targetId": "eol-summary",
            "chartId": "eol-chart-severity", "type": "doughnut", "label": "Findings", "colours": SEVERITY_COLOURS,
        },
        "topN": [
            {"field": "Component", "n": 10, "targetId": "eol-top-components"},
            {"field": "SubscriptionName", "n": 10, "targetId": "eol-top-subs"},
        ],
        "table": {"id": "eol-table", "columns": TABLE_COLUMNS, "empty": "No findings match the current filters."},
    }


# ================================================================
# Function: export_report
# Purpose : Render eol.html and return its metadata record
# ================================================================
def export_report(data: Optional[Dict[str, Any]], output_path: str, tenant_id: str,
                  cfg: Optional[dict] = None, today=None, run_id: Optional[str] = None) -> Dict[str, Any]:
    data = data or {}
    cfg = cfg or {}
    section = fncGetSection(cfg, "eol")
    page_size = int(cfg.get("page_size", 25))
    model = fncBuildEolModel(data.get("findings"), today,
                             int(section.get("months_back", 6)), int(section.get("months_forward", 24)))

    print(fncToTable(model["components"], headers=["Component", "HighestSeverity", "EarliestDeadline", "Resources"]))

    scripts: List[str] = []
    if model["total"]:
        tl = model["timeline"]
        scripts.append(fncChartScript("eol-chart-timeline", "bar", tl["keys"], fncTimelineSeries(tl),
                                      stacked=True, annotate_index=tl["today_index"]))
        scripts.extend(fncCrossFilterScripts(_runtime_config(page_size)))

    body = fncRenderDataScript("eol-data", model["payload"]) + _render_body(model, page_size)
    doc = fncRenderPage(TITLE, REPORT_NAME, body, tenant_id,
                        subtitle="Retired and retiring Azure features still in use",
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
            "Components": len(model["components"]),
        },
        "headline": f"{model['total']} EOL findings, {sc.get('Critical', 0)} past deadline",
    }
