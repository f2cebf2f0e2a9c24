# ================================================================
# File     : modules/azure/vm_backup.py
# Purpose  : VM backup coverage report: protected vs unprotected
#            VMs, stale backups, power state, per-subscription coverage
# Notes    : Inventory and protected items both come from Resource
#            Graph; they are joined on the lower-cased VM resource id
# ================================================================

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.aggregation import fncCountBy, fncDistinct, fncGroupBy
from core.crossfilter import fncCrossFilterScripts
from core.normalize import fncNormalizeRecords, fncParseDate
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
from core.utils import fncPrintMessage, fncToTable, fncUtcNow
from handlers.arm.arm_helpers import fncResourceGraphQuery

REPORT_NAME = "vm_backup"
OUTPUT_FILE = "vm_backup.html"
TITLE = "VM Backup Coverage"

STALE_AFTER_HOURS = 48
BACKUP_STATES = ["Protected", "Stale", "Unprotected"]
BACKUP_COLOURS = {"Protected": "#10b981", "Stale": "#f59e0b", "Unprotected": "#ef4444"}

VM_QUERY = """
resources
| where type =~ 'microsoft.compute/virtualmachines'
| project id = tolower(id), name, resourceGroup, subscriptionId, location,
          osType = tostring(properties.storageProfile.osDisk.osType),
          vmSize = tostring(properties.hardwareProfile.vmSize),
          powerState = tostring(properties.extended.instanceView.powerState.code)
"""

PROTECTED_ITEMS_QUERY = """
recoveryservicesresources
| where type =~ 'microsoft.recoveryservices/vaults/backupfabrics/protectioncontainers/protecteditems'
| where properties.workloadType =~ 'VM'
| project sourceId = tolower(tostring(properties.sourceResourceId)),
          vaultName = tostring(split(id, '/')[8]),
          policyName = tostring(properties.policyName),
          lastBackupTime = tostring(properties.lastBackupTime),
          lastBackupStatus = tostring(properties.lastBackupStatus)
"""

PAYLOAD_FIELDS = [
    "VMName", "SubscriptionName", "ResourceGroup", "Location", "OsType", "VmSize", "PowerState",
    "BackupEnabled", "BackupStatus", "VaultName", "PolicyName", "LastBackupTime", "LastBackupStatus",
]

TABLE_COLUMNS = [
    {"field": "VMName", "label": "VM"},
    {"field": "SubscriptionName", "label": "Subscription"},
    {"field": "ResourceGroup", "label": "Resource Group"},
    {"field": "PowerState", "label": "Power"},
    {"field": "OsType", "label": "OS"},
    {"field": "BackupEnabled", "label": "Backup", "type": "bool"},
    {"field": "BackupStatus", "label": "Status"},
    {"field": "VaultName", "label": "Vault"},
    {"field": "LastBackupTime", "label": "Last Backup", "type": "date"},
    {"field": "LastBackupStatus", "label": "Last Result"},
]


# ================================================================
# Function: collect
# Purpose : VM inventory joined with Azure Backup protected items
# ================================================================
def collect(client, subscriptions: Dict[str, str], cfg: Optional[dict] = None) -> Dict[str, Any]:
    sub_ids = list(subscriptions.keys())
    fncPrintMessage(f"VM Backup: querying {len(sub_ids)} subscription(s) via Resource Graph", "info")

    vms = fncResourceGraphQuery(client, VM_QUERY, sub_ids)
    try:
        protected = fncResourceGraphQuery(client, PROTECTED_ITEMS_QUERY, sub_ids)
    except Exception as ex:
        fncPrintMessage(f"Backup protected items unavailable: {ex}", "warn")
        protected = []

    by_source = {p.get("sourceId"): p for p in protected if p.get("sourceId")}

    entries = []
    for vm in vms:
        item = by_source.get(vm.get("id")) or {}
        entries.append({
            "ResourceId": vm.get("id", ""),
            "VMName": vm.get("name", ""),
            "SubscriptionId": vm.get("subscriptionId", ""),
            "SubscriptionName": subscriptions.get(vm.get("subscriptionId"), vm.get("subscriptionId", "")),
            "ResourceGroup": vm.get("resourceGroup", ""),
            "Location": vm.get("location", ""),
            "OsType": vm.get("osType", ""),
            "VmSize": vm.get("vmSize", ""),
            "PowerState": vm.get("powerState", ""),
            "BackupEnabled": bool(item),
            "VaultName": item.get("vaultName", ""),
            "PolicyName": item.get("policyName", ""),
            "LastBackupTime": item.get("lastBackupTime", ""),
            "LastBackupStatus": item.get("lastBackupStatus", ""),
        })

    fncPrintMessage(f"VM Backup: {len(entries)} VMs, {sum(1 for e in entries if e['BackupEnabled'])} protected", "success")
    return {"vms": entries}


def fncPowerStateLabel(value: Any) -> str:
    """'PowerState/deallocated' → 'deallocated'."""
    text = str(value or "").strip()
    if not text:
        return "Unknown"
    return text.split("/", 1)[1] if text.lower().startswith("powerstate/") else text


# ================================================================
# Function: fncIsBackupStale
# Purpose : A protected VM whose last backup is older than 48 hours,
#           missing, or did not complete
# ================================================================
def fncIsBackupStale(entry: Dict[str, Any], now: Optional[datetime] = None) -> bool:
    if not entry.get("BackupEnabled"):
        return False
    now = now or fncUtcNow()
    last = fncParseDate(entry.get("LastBackupTime"))
    if last is None:
        return True
    if now - last > timedelta(hours=STALE_AFTER_HOURS):
        return True
    return str(entry.get("LastBackupStatus") or "").lower() != "completed"


def fncBuildVmBackupModel(vms: Optional[List[Dict[str, Any]]], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or fncUtcNow()
    rows = fncNormalizeRecords(
        vms,
        text_fields=["SubscriptionName", "ResourceGroup", "Location", "OsType", "VmSize"],
        date_fields=["LastBackupTime"],
        bool_fields=["BackupEnabled"],
    )
    for r in rows:
        r["VMName"] = r.get("VMName") or "(unnamed)"
        r["PowerState"] = fncPowerStateLabel(r.get("PowerState"))
        r["Stale"] = fncIsBackupStale(r, now)
        if not r["BackupEnabled"]:
            r["BackupStatus"] = "Unprotected"
        else:
            r["BackupStatus"] = "Stale" if r["Stale"] else "Protected"
        for f in ("VaultName", "PolicyName", "LastBackupStatus"):
            r[f] = r.get(f) or ""

    total = len(rows)
    protected = sum(1 for r in rows if r["BackupEnabled"])

    by_sub = []
    for g in fncGroupBy(rows, "SubscriptionName"):
        p = sum(1 for r in g["items"] if r["BackupEnabled"])
        by_sub.append({
            "SubscriptionName": g["key"],
            "VMs": g["count"],
            "Protected": p,
            "Unprotected": g["count"] - p,
            "Stale": sum(1 for r in g["items"] if r["Stale"]),
            "Coverage": round(p / g["count"] * 100, 1),
        })

    return {
        "vms": rows,
        "total": total,
        "protected": protected,
        "unprotected": total - protected,
        "stale": [r for r in rows if r["Stale"]],
        "coverage": round(protected / total * 100, 1) if total else 0.0,
        "status_counts": fncCountBy(rows, "BackupStatus", order=BACKUP_STATES),
        "power_counts": fncCountBy(rows, "PowerState"),
        "by_subscription": by_sub,
        "filters": {
            "subscriptions": fncDistinct(rows, "SubscriptionName"),
            "statuses": [s for s in BACKUP_STATES if any(r["BackupStatus"] == s for r in rows)],
            "power": fncDistinct(rows, "PowerState"),
            "os": fncDistinct(rows, "OsType"),
        },
        "payload": fncBuildPayload(
            rows, PAYLOAD_FIELDS,
            search_fields=["VMName", "SubscriptionName", "ResourceGroup", "Location", "VmSize", "VaultName", "PolicyName"],
        ),
    }


def _render_body(model: Dict[str, Any], page_size: int) -> str:
    kpis = [
        {"label": "Virtual Machines", "value": fncFormatNumber(model["total"]), "tone": "primary", "id": "vmb-kpi-total"},
        {"label": "Protected", "value": fncFormatNumber(model["protected"]), "tone": "success", "id": "vmb-kpi-protected"},
        {"label": "Unprotected", "value": fncFormatNumber(model["unprotected"]), "tone": "danger", "id": "vmb-kpi-unprotected"},
        {"label": "Stale Backups", "value": fncFormatNumber(len(model["stale"])), "tone": "warning", "id": "vmb-kpi-stale"},
        {"label": "Coverage", "value": f"{model['coverage']:.1f}%", "tone": "primary"},
    ]
    parts = [fncRenderKpis(kpis)]

    if not model["total"]:
        parts.append("<h3>Virtual Machines</h3>")
        parts.append(fncRenderEmptyState("No virtual machines were found in the selected subscriptions."))
        return "\n".join(parts)

    f = model["filters"]
    parts.append("<h3>Virtual Machines</h3>")
    parts.append(fncRenderFilterBar("vmb-search", [
        ("vmb-f-sub", "Subscriptions", f["subscriptions"]),
        ("vmb-f-status", "Backup States", f["statuses"]),
        ("vmb-f-power", "Power States", f["power"]),
        ("vmb-f-os", "OS Types", f["os"]),
    ], placeholder="Search VMs, vaults, policies…"))
    parts.append('<div id="vmb-summary" class="card"></div>')
    parts.append('<div class="charts">')
    parts.append(fncRenderChartCard("vmb-chart-status", "Backup Status"))
    parts.append(fncRenderListCard("vmb-top-rg", "VMs per Resource Group"))
    parts.append(fncRenderListCard("vmb-top-power", "Power State"))
    parts.append("</div>")
    parts.append(fncRenderDataTable("vmb-table", TABLE_COLUMNS, f"Inventory (page size {page_size})"))

    parts.append("<h3>Coverage by Subscription</h3>")
    parts.append(fncRenderTable(model["by_subscription"], [
        {"field": "SubscriptionName", "label": "Subscription"},
        {"field": "VMs", "label": "VMs", "type": "number"},
        {"field": "Protected", "label": "Protected", "type": "number"},
        {"field": "Unprotected", "label": "Unprotected", "type": "number"},
        {"field": "Stale", "label": "Stale", "type": "number"},
        {"field": "Coverage", "label": "Coverage %"},
    ], "Coverage by Subscription"))

    parts.append("<h3>Stale Backups</h3>")
    parts.append(fncRenderTable(model["stale"], [
        {"field": "VMName", "label": "VM"},
        {"field": "SubscriptionName", "label": "Subscription"},
        {"field": "VaultName", "label": "Vault"},
        {"field": "LastBackupTime", "label": "Last Backup"},
        {"field": "LastBackupStatus", "label": "Last Result"},
    ], "Stale Backups", f"Every protected VM has a completed backup within {STALE_AFTER_HOURS} hours."))
    return "\n".join(parts)


def _runtime_config(page_size: int) -> Dict[str, Any]:
    return {
        "dataId": "vmb-data",
        "pageSize": page_size,
        "searchId": "vmb-search",
        "dimensions": [
            {"field": "SubscriptionName", "selectId": "vmb-f-sub"},
            {"field": "BackupStatus", "selectId": "vmb-f-status"},
            {"field": "PowerState", "selectId": "vmb-f-power"},
            {"field": "OsType", "selectId": "vmb-f-os"},
        ],
        "cards": [
            {"id": "vmb-kpi-total"},
            {"id": "vmb-kpi-protected", "field": "BackupEnabled", "equals": True},
            {"id": "vmb-kpi-unprotected", "field": "BackupEnabled", "equals": False},
            {"id": "vmb-kpi-stale", "field": "BackupStatus", "equals": "Stale"},
        ],
        "summary": {
            "field": "BackupStatus", "order": BACKUP_STATES, "targetId": "vmb-summary",
            "chartId": "vmb-chart-status", "type": "doughnut", "label": "VMs", "colours": BACKUP_COLOURS,
        },
        "topN": [
            {"field": "ResourceGroup", "n": 10, "targetId": "vmb-top-rg"},
            {"field": "PowerState", "n": 10, "targetId": "vmb-top-power"},
        ],
        "table": {"id": "vmb-table", "columns": TABLE_COLUMNS, "empty": "No VMs match the current filters."},
    }


# ================================================================
# Function: export_report
# Purpose : Render vm_backup.html and return its metadata record
# ================================================================
def export_report(data: Optional[Dict[str, Any]], output_path: str, tenant_id: str,
                  cfg: Optional[dict] = None, today=None, run_id: Optional[str] = None) -> Dict[str, Any]:
    data = data or {}
    page_size = int((cfg or {}).get("page_size", 25))
    now = fncParseDate(today) if today is not None else None
    model = fncBuildVmBackupModel(data.get("vms"), now)

    print(fncToTable(model["by_subscription"], headers=["SubscriptionName", "VMs", "Protected", "Stale", "Coverage"]))

    scripts = fncCrossFilterScripts(_runtime_config(page_size)) if model["total"] else []
    body = fncRenderDataScript("vmb-data", model["payload"]) + _render_body(model, page_size)
    doc = fncRenderPage(TITLE, REPORT_NAME, body, tenant_id,
                        subtitle="Azure Backup protection for virtual machines",
                        scripts=scripts, needs_chartjs=bool(model["total"]), run_id=run_id)
    fncWriteHTMLReport(output_path, doc)

    return {
        "report": REPORT_NAME,
        "title": TITLE,
        "output_path": output_path,
        "counts": {
            "VMs": model["total"],
            "Protected": model["protected"],
            "Unprotected": model["unprotected"],
            "Stale": len(model["stale"]),
        },
        "coverage": model["coverage"],
        "headline": f"{model['coverage']:.1f}% of {model['total']} VMs protected",
    }
