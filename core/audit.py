# ================================================================
# File     : core/audit.py
# Purpose  : Run a full governance audit: resolve subscriptions,
#            collect + render every selected report in order, then
#            write the index dashboard
# Notes    : Strictly sequential. Every step is wrapped; a failure is
#            printed, appended to the error list and the run moves on
#            to the next report. No retries at this level.
# ================================================================

import os
import traceback
from typing import Any, Dict, List, Optional

from core.config import REPORT_ORDER
from core.dashboard import OUTPUT_FILE as DASHBOARD_FILE, export_dashboard
from core.module_loader import fncCollectModule, fncExportModule, fncLoadModule
from core.normalize import fncParseDate
from core.utils import fncEnsureFolder, fncNewRunId, fncPrintMessage, fncToTable, fncUtcNow
from handlers.arm.arm_helpers import fncSubscriptionNames

MAX_SUMMARY_ERRORS = 5


def _record_error(errors: List[str], message: str) -> None:
    errors.append(message)
    fncPrintMessage(message, "error")
    fncPrintMessage(traceback.format_exc(), "debug")


def fncSelectReports(requested: Optional[List[str]], cfg: Optional[dict] = None) -> List[str]:
    """Requested (or configured) reports, de-duplicated, unknown names dropped.

    Only a missing selection means "all"; an empty list selects nothing.
    """
    wanted = requested if requested is not None else (cfg or {}).get("reports")
    if wanted is None:
        wanted = REPORT_ORDER
    out = []
    for name in wanted:
        if name not in REPORT_ORDER:
            fncPrintMessage(f"Unknown report type ignored: {name}", "warn")
        elif name not in out:
            out.append(name)
    return out


# ================================================================
# Function: fncStartGovernanceAudit
# Purpose : Orchestrate one audit run
# Notes   : With `snapshot` (a dict from core.exports.fncLoadSnapshot)
#           no Azure call is made and the snapshot's collection time
#           is used as "today" so windows line up with the data.
#           Returns {"tenant_id","output_dir","reports","errors","data"}
#           where data is itself a snapshot of this run.
# ================================================================
def fncStartGovernanceAudit(client, cfg: dict, reports: Optional[List[str]] = None,
                            output_dir: Optional[str] = None, snapshot: Optional[Dict[str, Any]] = None,
                            today=None) -> Dict[str, Any]:
    run_id = fncNewRunId()
    errors: List[str] = []
    metadata: List[Dict[str, Any]] = []
    selected = fncSelectReports(reports, cfg)
    out_dir = str(fncEnsureFolder(output_dir or cfg.get("output_dir") or "reports"))

    fncPrintMessage(f"Audit run {run_id}: {', '.join(selected) or 'no reports'} → {out_dir}", "info")

    if snapshot is not None:
        tenant_id = snapshot.get("tenant_id") or cfg.get("tenant_id") or ""
        subscriptions = dict(snapshot.get("subscriptions") or {})
        collected_at = snapshot.get("collected_at") or fncUtcNow().isoformat()
        if today is None:
            today = fncParseDate(collected_at)
    else:
        tenant_id = getattr(client, "tenant_id", None) or cfg.get("tenant_id") or ""
        collected_at = fncUtcNow().isoformat()
        try:
            subscriptions = fncSubscriptionNames(client, cfg.get("subscriptions"))
            fncPrintMessage(f"Auditing {len(subscriptions)} subscription(s)", "info")
        except Exception as ex:
            _record_error(errors, f"connect: could not resolve subscriptions: {ex}")
            subscriptions = {}

    data: Dict[str, Any] = {
        "tenant_id": tenant_id,
        "collected_at": collected_at,
        "subscriptions": subscriptions,
        "reports": {},
    }

    for name in selected:
        mod = fncLoadModule(name)
        if mod is None:
            _record_error(errors, f"{name}: report module could not be loaded")
            continue

        if snapshot is not None:
            report_data = (snapshot.get("reports") or {}).get(name)
            if report_data is None:
                fncPrintMessage(f"{name}: not present in snapshot, rendering empty report", "warn")
        elif not subscriptions:
            fncPrintMessage(f"{name}: no subscriptions to collect from, rendering empty report", "warn")
            report_data = None
        else:
            try:
                report_data = fncCollectModule(mod, client, subscriptions, cfg)
            except Exception as ex:
                _record_error(errors, f"{name}: collection failed: {ex}")
                continue
        data["reports"][name] = report_data

        try:
            metadata.append(fncExportModule(mod, report_data, out_dir, tenant_id, cfg, today=today, run_id=run_id))
        except Exception as ex:
            _record_error(errors, f"{name}: report generation failed: {ex}")

    try:
        export_dashboard(metadata, errors, os.path.join(out_dir, DASHBOARD_FILE), tenant_id,
                         selected=selected, run_id=run_id)
    except Exception as ex:
        _record_error(errors, f"dashboard: generation failed: {ex}")

    return {
        "run_id": run_id,
        "tenant_id": tenant_id,
        "output_dir": out_dir,
        "reports": metadata,
        "errors": errors,
        "data": data,
    }


# ================================================================
# Function: fncFormatErrorSummary
# Purpose : First five errors, then "... and N more"
# ================================================================
def fncFormatErrorSummary(errors: Optional[List[str]], limit: int = MAX_SUMMARY_ERRORS) -> List[str]:
    errors = list(errors or [])
    lines = errors[:limit]
    if len(errors) > limit:
        lines.append(f"... and {len(errors) - limit} more")
    return lines


def fncPrintAuditSummary(result: Dict[str, Any]) -> None:
    rows = [
        {"Report": m.get("title"), "File": os.path.basename(m.get("output_path") or ""), "Summary": m.get("headline", "")}
        for m in result.get("reports") or []
    ]
    print(fncToTable(rows, headers=["Report", "File", "Summary"]))

    errors = result.get("errors") or []
    if not errors:
        fncPrintMessage(f"Audit complete. Open {os.path.join(result.get('output_dir', ''), DASHBOARD_FILE)}", "success")
        return

    fncPrintMessage(f"Audit finished with {len(errors)} error(s):", "warn")
    for line in fncFormatErrorSummary(errors):
        fncPrintMessage(f"  {line}", "error")
