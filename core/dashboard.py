# ================================================================
# File     : core/dashboard.py
# Purpose  : index.html: one tile per generated report (link +
#            headline numbers) plus the errors collected in the run
# Notes    : Works only on the metadata records returned by each
#            report's export_report(); never touches raw data
# ================================================================

import os
from typing import Any, Dict, List, Optional

from core.reporting import (
    NAV_PAGES,
    _esc,
    fncFormatNumber,
    fncRenderEmptyState,
    fncRenderKpis,
    fncRenderPage,
    fncWriteHTMLReport,
)

OUTPUT_FILE = "index.html"
TITLE = "Dashboard"

DASHBOARD_CSS = r"""
.dashboard .tiles{display:grid;grid-template-columns:repeat(auto-fit,minmax(300px,1fr));gap:14px;margin-top:12px}
.dashboard .tile{padding:16px 18px;text-decoration:none;color:var(--text);display:block}
.dashboard .tile:hover{border-color:var(--accent)}
.dashboard .tile h4{margin:0 0 6px 0;color:var(--accent2)}
.dashboard .tile .headline{font-weight:700;margin-bottom:8px}
.dashboard .tile dl{display:grid;grid-template-columns:1fr auto;gap:2px 12px;margin:0}
.dashboard .tile dd{margin:0;font-weight:700;font-variant-numeric:tabular-nums;text-align:right}
.dashboard .tile.missing{opacity:.6}
.dashboard .errors li{margin:4px 0;color:var(--high)}
"""


def _tile(meta: Dict[str, Any]) -> str:
    href = os.path.basename(meta.get("output_path") or "")
    counts = meta.get("counts") or {}
    rows = "".join(
        f"<dt>{_esc(k)}</dt><dd>{_esc(fncFormatNumber(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v)}</dd>"
        for k, v in counts.items()
    )
    return (
        f'<a class="card-rounded tile" href="{_esc(href)}">'
        f"<h4>{_esc(meta.get('title') or meta.get('report'))}</h4>"
        f"<div class='headline'>{_esc(meta.get('headline') or '')}</div>"
        f"<dl>{rows}</dl></a>"
    )


def _missing_tile(label: str) -> str:
    return (
        f'<div class="card-rounded tile missing"><h4>{_esc(label)}</h4>'
        f"<div class='headline'>Not generated in this run</div></div>"
    )


# ================================================================
# Function: fncRenderDashboard
# Purpose : Dashboard body from report metadata + error list
# Notes   : Tiles follow navigation order; reports that were
#           skipped or failed get a muted placeholder tile
# ================================================================
def fncRenderDashboard(reports: Optional[List[Dict[str, Any]]], errors: Optional[List[str]] = None,
                       selected: Optional[List[str]] = None) -> str:
    reports = [r for r in (reports or []) if isinstance(r, dict)]
    errors = list(errors or [])
    by_key = {r.get("report"): r for r in reports}

    kpis = [
        {"label": "Reports Generated", "value": fncFormatNumber(len(reports)), "tone": "primary"},
        {"label": "Errors", "value": fncFormatNumber(len(errors)), "tone": "danger" if errors else "success"},
    ]

    tiles = []
    for key, label, _href in NAV_PAGES:
        if key == "dashboard":
            continue
        if key in by_key:
            tiles.append(_tile(by_key[key]))
        elif selected is None or key in selected:
            tiles.append(_missing_tile(label))

    parts = [f"<style>{DASHBOARD_CSS}</style>", fncRenderKpis(kpis), "<h3>Reports</h3>"]
    if tiles:
        parts.append(f'<div class="tiles">{"".join(tiles)}</div>')
    else:
        parts.append(fncRenderEmptyState("No reports were generated."))

    parts.append("<h3>Run Errors</h3>")
    if errors:
        parts.append('<ul class="errors">' + "".join(f"<li>{_esc(e)}</li>" for e in errors) + "</ul>")
    else:
        parts.append(fncRenderEmptyState("No errors were recorded during this run."))
    return "\n".join(parts)


def export_dashboard(reports: Optional[List[Dict[str, Any]]], errors: Optional[List[str]], output_path: str,
                     tenant_id: str, selected: Optional[List[str]] = None, run_id: Optional[str] = None) -> Dict[str, Any]:
    body = fncRenderDashboard(reports, errors, selected)
    doc = fncRenderPage(TITLE, "dashboard", body, tenant_id,
                        subtitle="Summary of every report generated in this run", run_id=run_id)
    fncWriteHTMLReport(output_path, doc)
    return {
        "report": "dashboard",
        "title": TITLE,
        "output_path": output_path,
        "counts": {"Reports": len(reports or []), "Errors": len(errors or [])},
    }
