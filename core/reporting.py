# ================================================================
# File     : core/reporting.py
# Purpose  : Assemble self-contained HTML reports: shared stylesheet,
#            navigation, KPI cards, charts (Chart.js), tables,
#            drill-down sections and the embedded JSON payload
# Notes    : Two escaping contracts live here and are never mixed:
#            fncHtmlEscape for markup, fncJsonForScript for JSON
#            embedded inside <script> elements
# ================================================================

import os, html, datetime, re, json
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.utils import fncPrintMessage
from core.normalize import fncToFloat

CHARTJS_TAG = '<script src="https://cdn.jsdelivr.net/npm/chart.js@4.4.1/dist/chart.umd.min.js"></script>'

# active key → (label, file name); index is the dashboard
NAV_PAGES = [
    ("dashboard", "Dashboard", "index.html"),
    ("security", "Security", "security.html"),
    ("cost", "Cost", "cost.html"),
    ("vm_backup", "VM Backup", "vm_backup.html"),
    ("changes", "Changes", "changes.html"),
    ("eol", "End of Life", "eol.html"),
]

SEVERITY_COLOURS = {
    "Critical": "#b91c1c",
    "High": "#ef4444",
    "Medium": "#f59e0b",
    "Low": "#3b82f6",
    "Unknown": "#94a3b8",
}


# ---------- escaping ----------

def fncHtmlEscape(value: Any) -> str:
    """Entity-escape for element bodies and attribute values (quotes included)."""
    return "" if value is None else html.escape(str(value), quote=True)

_esc = fncHtmlEscape

_SCRIPT_UNSAFE = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}

def fncJsonForScript(value: Any) -> str:
    """
    JSON text that is safe inside a <script> element.
    '</script>' or '<!--' in a string value cannot terminate the element;
    JSON.parse turns the \\u escapes back into the original characters.
    """
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return re.sub("[<>&\u2028\u2029]", lambda m: _SCRIPT_UNSAFE[m.group(0)], text)


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(name).lower()).strip("-")


# ---------- number formatting ----------

def fncFormatNumber(value: Any, decimals: int = 0) -> str:
    """Thousands separator ',' and a fixed number of decimals."""
    return f"{fncToFloat(value):,.{decimals}f}"


def _number_cell(value: Any, decimals: int) -> str:
    """Blank for missing or non-numeric values so they never read as 0."""
    if fncToFloat(value, None) is None:
        return ""
    return fncFormatNumber(value, decimals)


def fncFormatMoney(value: Any, currency: str = "", decimals: int = 2) -> str:
    amount = fncFormatNumber(value, decimals)
    return f"{amount} {currency}".strip()


# ---------- payload ----------

def fncBuildPayload(
    records: Optional[Iterable[Dict[str, Any]]],
    fields: List[str],
    search_fields: Optional[List[str]] = None,
    decimals: Optional[Dict[str, int]] = None,
) -> List[Dict[str, Any]]:
    """
    Flattened projection shipped to the browser. Each row carries
    `_search`: the lower-cased, space-joined text of search_fields.
    List values stay lists in the row and are joined with ', ' for search.
    """
    search_fields = search_fields if search_fields is not None else fields
    decimals = decimals or {}
    out = []
    for r in records or []:
        row = {}
        for f in fields:
            v = r.get(f)
            if f in decimals:
                v = round(fncToFloat(v), decimals[f])
            elif isinstance(v, tuple):
                v = list(v)
            row[f] = "" if v is None else v
        parts = []
        for f in search_fields:
            v = r.get(f)
            if isinstance(v, (list, tuple, set)):
                parts.append(", ".join(str(x) for x in v))
            elif v is not None:
                parts.append(str(v))
        row["_search"] = " ".join(parts).lower()
        out.append(row)
    return out


# ---------- stylesheet + navigation ----------

def fncReportStylesheet() -> str:
    return """
:root{
  --accent:#0ea5e9; --accent2:#0369a1;
  --text:#1b2330; --bg:#f5f7fb; --card:#ffffff; --border:#e3e8ef; --muted:#667085;
  --crit:#b91c1c; --high:#ef4444; --med:#f59e0b; --low:#3b82f6; --ok:#10b981;
}
@media (prefers-color-scheme: dark){
  :root{ --bg:#0e1217; --card:#1b212a; --text:#e7edf7; --border:#2a3340; --muted:#9fb2cc; }
}
*{box-sizing:border-box} html,body{margin:0;padding:0}
body{font:15px/1.5 "Segoe UI",Roboto,Arial,system-ui;background:var(--bg);color:var(--text);}
.header{background:linear-gradient(90deg,var(--accent2),var(--accent));color:#fff;padding:20px 28px;
  box-shadow:0 4px 14px rgba(0,0,0,.25)}
.header h1{margin:0;font-weight:800;font-size:1.7rem}
.header h2{margin:4px 0 2px 0;font-weight:500;opacity:.95}
.header p{margin:2px 0 0 0;opacity:.85;font-size:.9rem}

.nav{display:flex;flex-wrap:wrap;gap:8px;width:95%;max-width:1900px;margin:16px auto 0 auto}
.nav a{padding:7px 14px;border-radius:999px;border:1px solid var(--border);background:var(--card);
  color:var(--text);text-decoration:none;font-weight:600;font-size:.9rem}
.nav a.active{background:linear-gradient(90deg,var(--accent2),var(--accent));color:#fff;border-color:transparent}

.container{width:95%;max-width:1900px;margin:18px auto;background:var(--card);
  border:1px solid var(--border);border-radius:12px;padding:22px 26px;box-shadow:0 10px 30px rgba(0,0,0,.12)}
h3{color:var(--accent2);border-bottom:2px solid var(--accent);padding-bottom:6px;margin:22px 0 10px 0}
.card{margin:18px 0}
.card h4{margin:0 0 8px 0;font-size:1.05rem}
.tablewrap{overflow-x:auto}
.empty{padding:18px;border:1px dashed var(--border);border-radius:10px;color:var(--muted);text-align:center}

table{width:100%;border-collapse:separate;border-spacing:0;margin-top:8px;
  border:1px solid var(--border);border-radius:10px;overflow:hidden}
th,td{padding:9px 12px;border-bottom:1px solid var(--border);text-align:left;
  word-break:break-word;overflow-wrap:anywhere}
th{white-space:nowrap;background:var(--accent2);color:#fff;font-weight:700}
th.sortable{cursor:pointer}
th.sortable[data-dir="1"]::after{content:" ▲"} th.sortable[data-dir="-1"]::after{content:" ▼"}
tr:nth-child(even) td{background:color-mix(in srgb,var(--card) 94%, #000 6%)}
td.num,th.num{text-align:right;font-variant-numeric:tabular-nums}

.pill{display:inline-flex;align-items:center;padding:2px 10px;border-radius:999px;font-weight:700;
  font-size:.8rem;white-space:nowrap}
.pill.sev-critical{background:#b91c1c26;color:var(--crit)}
.pill.sev-high{background:#ef444426;color:var(--high)}
.pill.sev-medium{background:#f59e0b26;color:var(--med)}
.pill.sev-low{background:#3b82f626;color:var(--low)}
.pill.sev-unknown{background:#64748b26;color:#94a3b8}
.pill.ok{background:#10b98126;color:var(--ok)}
.pill.bad{background:#ef444426;color:var(--high)}

.grid{display:grid;gap:12px}
.grid.kpis{grid-template-columns:repeat(auto-fit,minmax(200px,1fr))}
.card-rounded{border-radius:12px;box-shadow:0 6px 18px rgba(0,0,0,.08);border:1px solid var(--border);background:var(--card)}
.kpi{padding:14px 16px}
.kpi .label{color:var(--muted);font-weight:600}
.kpi .value{font-size:1.8rem;font-weight:800;margin-top:4px}
.kpi .delta{font-size:.9rem;opacity:.85}
.kpi.danger .value{color:var(--high)} .kpi.warning .value{color:var(--med)} .kpi.success .value{color:var(--ok)}
.charts{display:grid;grid-template-columns:repeat(auto-fit,minmax(380px,1fr));gap:12px;margin-top:12px}
.chart-card{padding:12px 14px}
.chart-card .title{font-weight:700;margin-bottom:6px}

.filterbar{display:flex;flex-wrap:wrap;gap:10px;align-items:center;margin:10px 0}
.filterbar input[type="search"],.filterbar select{padding:6px 10px;border-radius:999px;border:1px solid var(--border);
  background:var(--card);color:var(--text);min-width:180px}
.filterbar input[type="search"]{min-width:260px}
.pager{display:flex;gap:10px;align-items:center;justify-content:flex-end;margin-top:8px;color:var(--muted)}
.pager button{padding:5px 12px;border-radius:999px;border:1px solid var(--border);background:var(--card);
  color:var(--text);cursor:pointer;font-weight:600}
.pager button:disabled{opacity:.4;cursor:default}
.topn{list-style:none;margin:0;padding:0}
.topn li{display:flex;justify-content:space-between;gap:10px;padding:5px 0;border-bottom:1px solid var(--border)}
.topn li span:last-child{font-weight:700;font-variant-numeric:tabular-nums}

.drill details{margin-left:14px;border-left:2px solid var(--border);padding-left:8px}
.drill summary{cursor:pointer;display:flex;justify-content:space-between;gap:12px;padding:5px 2px}
.drill summary .amt{font-weight:700;font-variant-numeric:tabular-nums}
.drill .leaf{display:flex;justify-content:space-between;margin-left:30px;padding:3px 2px;color:var(--muted)}
.trend-up{color:var(--high)} .trend-down{color:var(--ok)} .trend-neutral{color:var(--muted)}

.footer{width:95%;max-width:1200px;margin:26px auto 12px auto;color:var(--muted);text-align:center;font-size:.9rem}
"""


def fncReportNavigation(active: str) -> str:
    links = []
    for key, label, href in NAV_PAGES:
        cls = ' class="active"' if key == active else ""
        links.append(f'<a href="{_esc(href)}"{cls}>{_esc(label)}</a>')
    return f'<nav class="nav">{"".join(links)}</nav>'


def _header_html(title: str, subtitle: Optional[str], tenant_id: Optional[str]) -> str:
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    sub = f"<p>{_esc(subtitle)}</p>" if subtitle else ""
    tenant = f"<p>Tenant: {_esc(tenant_id)}</p>" if tenant_id else ""
    return f"""
  <div class="header">
    <h1>Azure Governance Audit</h1>
    <h2>{_esc(title)}</h2>
    {sub}
    {tenant}
    <p>Generated on {_esc(ts)}</p>
  </div>
"""


# ---------- fragments ----------

def _severity_class(severity: Any) -> str:
    return "sev-" + (_slug(severity) or "unknown")

def fncSeverityPill(severity: Any) -> str:
    return f"<span class='pill {_severity_class(severity)}'>{_esc(severity)}</span>"

def fncBoolPill(value: bool, yes: str = "Yes", no: str = "No") -> str:
    return f"<span class='pill ok'>{_esc(yes)}</span>" if value else f"<span class='pill bad'>{_esc(no)}</span>"


def fncRenderEmptyState(message: str) -> str:
    return f"<div class='empty'>{_esc(message)}</div>"


def fncRenderKpis(kpis: List[Dict[str, Any]]) -> str:
    """
    kpis = [{"label", "value", "tone", "id"?, "delta"?}]
    An id lets the cross-filter runtime update the value in place.
    delta is trusted markup built by the caller (already escaped).
    """
    if not kpis:
        return ""
    blocks = []
    for k in kpis:
        tone = _esc(k.get("tone") or "primary")
        vid = f' id="{_esc(k["id"])}"' if k.get("id") else ""
        delta = f'<div class="delta">{k["delta"]}</div>' if k.get("delta") else ""
        blocks.append(f"""
        <div class="card-rounded kpi {tone}">
          <div class="label">{_esc(k.get("label", ""))}</div>
          <div class="value"{vid}>{_esc(k.get("value", ""))}</div>
          {delta}
        </div>""")
    return f'<div class="grid kpis">{"".join(blocks)}</div>'


def fncRenderChartCard(chart_id: str, title: str, height: int = 260) -> str:
    return f"""
    <div class="card-rounded chart-card">
      <div class="title">{_esc(title)}</div>
      <div style="position:relative;height:{int(height)}px"><canvas id="{_esc(chart_id)}"></canvas></div>
    </div>"""


def fncRenderListCard(list_id: str, title: str) -> str:
    return f"""
    <div class="card-rounded chart-card">
      <div class="title">{_esc(title)}</div>
      <ul class="topn" id="{_esc(list_id)}"></ul>
    </div>"""


def fncChartScript(chart_id: str, chart_type: str, labels: List[Any], datasets: List[Dict[str, Any]],
                   stacked: bool = False, annotate_index: Optional[int] = None) -> str:
    """
    Static Chart.js chart. annotate_index draws a vertical reference line
    (used for the "today" marker on deadline timelines).
    """
    cfg = {
        "labels": labels,
        "datasets": datasets,
        "stacked": bool(stacked),
        "marker": annotate_index if annotate_index is not None and annotate_index >= 0 else None,
    }
    return f"""
(()=>{{
  if(typeof Chart==='undefined') return;
  const cfg={fncJsonForScript(cfg)};
  const el=document.getElementById({fncJsonForScript(chart_id)});
  if(!el) return;
  const marker={{id:'marker',afterDraw(chart){{
    if(cfg.marker===null || !chart.scales.x) return;
    const x=chart.scales.x.getPixelForValue(cfg.marker); const a=chart.chartArea; const c=chart.ctx;
    c.save(); c.strokeStyle='#ef4444'; c.setLineDash([4,4]); c.beginPath(); c.moveTo(x,a.top); c.lineTo(x,a.bottom); c.stroke(); c.restore();
  }}}};
  const isDoughnut={fncJsonForScript(chart_type)}==='doughnut';
  new Chart(el,{{type:{fncJsonForScript(chart_type)},data:{{labels:cfg.labels,datasets:cfg.datasets}},
    plugins:[marker],
    options:{{responsive:true,maintainAspectRatio:false,plugins:{{legend:{{position:'bottom'}}}},
      scales: isDoughnut ? {{}} : {{x:{{stacked:cfg.stacked}},y:{{stacked:cfg.stacked,beginAtZero:true}}}}}}}});
}})();"""


def fncRenderFilterBar(search_id: Optional[str], selects: List[Tuple[str, str, List[str]]],
                       placeholder: str = "Search…") -> str:
    """selects = [(select_id, label, options)]; first option (empty value) is "All"."""
    parts = []
    if search_id:
        parts.append(f'<input type="search" id="{_esc(search_id)}" placeholder="{_esc(placeholder)}" aria-label="{_esc(placeholder)}">')
    for sid, label, options in selects:
        opts = [f'<option value="">All {_esc(label)}</option>']
        opts.extend(f'<option value="{_esc(o)}">{_esc(o)}</option>' for o in options)
        parts.append(f'<select id="{_esc(sid)}" aria-label="{_esc(label)}">{"".join(opts)}</select>')
    return f'<div class="filterbar">{"".join(parts)}</div>'


def fncRenderDataTable(table_id: str, columns: List[Dict[str, Any]], title: Optional[str] = None) -> str:
    """Empty table shell filled and paginated client-side."""
    heads = "".join(
        f'<th class="sortable{" num" if c.get("type") in ("money", "number") else ""}" data-field="{_esc(c["field"])}">{_esc(c["label"])}</th>'
        for c in columns
    )
    head = f"<h4>{_esc(title)}</h4>" if title else ""
    return f"""
    <div class="card">
      {head}
      <div class="tablewrap">
        <table id="{_esc(table_id)}"><thead><tr>{heads}</tr></thead><tbody></tbody></table>
      </div>
      <div class="pager" id="{_esc(table_id)}-pager">
        <button type="button" data-page="prev">Previous</button>
        <span class="info"></span>
        <button type="button" data-page="next">Next</button>
      </div>
    </div>"""


def fncRenderTable(rows: List[Dict[str, Any]], columns: List[Dict[str, Any]], title: str,
                   empty_message: str = "No data.") -> str:
    """
    Server-rendered table for sections that are not re-filtered.
    columns = [{"field","label","type"?}] with type in
    text|severity|bool|money|number|list.
    """
    if not rows:
        return f"<div class='card'><h4>{_esc(title)}</h4>{fncRenderEmptyState(empty_message)}</div>"

    thead = "<tr>" + "".join(
        f"<th class='num'>{_esc(c['label'])}</th>" if c.get("type") in ("money", "number") else f"<th>{_esc(c['label'])}</th>"
        for c in columns
    ) + "</tr>"

    body_rows = []
    for r in rows:
        tds = []
        for c in columns:
            raw = r.get(c["field"])
            kind = c.get("type", "text")
            if kind == "severity":
                tds.append(f"<td>{fncSeverityPill(raw)}</td>")
            elif kind == "bool":
                tds.append(f"<td>{fncBoolPill(bool(raw))}</td>")
            elif kind == "money":
                tds.append(f"<td class='num'>{_esc(_number_cell(raw, 2))}</td>")
            elif kind == "number":
                tds.append(f"<td class='num'>{_esc(_number_cell(raw, 0))}</td>")
            elif kind == "list":
                items = raw if isinstance(raw, (list, tuple)) else ([raw] if raw else [])
                tds.append(f"<td>{_esc(', '.join(str(x) for x in items))}</td>")
            else:
                tds.append(f"<td>{_esc(raw)}</td>")
        body_rows.append("<tr>" + "".join(tds) + "</tr>")

    return f"""
    <div class="card">
      <h4>{_esc(title)}</h4>
      <div class="tablewrap">
        <table id="tbl-{_slug(title)}">
          <thead>{thead}</thead>
          <tbody>{''.join(body_rows)}</tbody>
        </table>
      </div>
    </div>
    """


def fncRenderDrilldown(nodes: List[Dict[str, Any]], fmt: Callable[[float], str], depth: int = 0) -> str:
    """
    Nested <details> tree from core.aggregation.fncBuildBreakdown output.
    Clicking a summary row expands the constituent rows.
    """
    if not nodes:
        return fncRenderEmptyState("No data.") if depth == 0 else ""
    parts = []
    for n in nodes:
        if n.get("children"):
            parts.append(
                f"<details><summary><span>{_esc(n['name'])} <small>({n['count']})</small></span>"
                f"<span class='amt'>{_esc(fmt(n['total']))}</span></summary>"
                f"{fncRenderDrilldown(n['children'], fmt, depth + 1)}</details>"
            )
        else:
            parts.append(f"<div class='leaf'><span>{_esc(n['name'])}</span><span>{_esc(fmt(n['total']))}</span></div>")
    body = "".join(parts)
    return f"<div class='drill'>{body}</div>" if depth == 0 else body


def fncRenderDataScript(data_id: str, payload: Any) -> str:
    return f'<script type="application/json" id="{_esc(data_id)}">{fncJsonForScript(payload)}</script>'


# ================================================================
# Function: fncRenderPage
# Purpose : Full HTML document around a report body
# Notes   : scripts are raw JS blocks (already safe for <script>)
# ================================================================
def fncRenderPage(title: str, active: str, body: str, tenant_id: Optional[str] = None,
                  subtitle: Optional[str] = None, scripts: Optional[List[str]] = None,
                  needs_chartjs: bool = False, run_id: Optional[str] = None) -> str:
    js = "\n".join(s for s in (scripts or []) if s)
    chartjs_tag = CHARTJS_TAG if needs_chartjs else ""
    run = f" · run {_esc(run_id)}" if run_id else ""
    return f"""<!DOCTYPE html>
<html lang="en"><head>
<meta charset="UTF-8"><title>Azure Governance Audit - {_esc(title)}</title>
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<style>{fncReportStylesheet()}</style></head><body>
{_header_html(title, subtitle, tenant_id)}
{fncReportNavigation(active)}
<div class="container {_esc(_slug(active))}">
{body}
</div>
<div class="footer">
  <p>Generated by <b>AzureGovAudit</b> (read-only){run}</p>
  <p>&copy; {datetime.datetime.now(datetime.timezone.utc).year} AzureGovAudit</p>
</div>
{chartjs_tag}
{f"<script>{js}</script>" if js else ""}
</body></html>"""


# ================================================================
# Function: fncWriteHTMLReport
# Purpose : Write a rendered document to disk (UTF-8)
# Notes   : OS errors propagate; a half-written file is left as is
# ================================================================
def fncWriteHTMLReport(filename: str, html_doc: str) -> str:
    fncPrintMessage(f"Writing HTML report: {filename}", "debug")
    os.makedirs(os.path.dirname(filename) or ".", exist_ok=True)
    with open(filename, "w", encoding="utf-8") as f:
        f.write(html_doc)
    fncPrintMessage(f"HTML report written to {filename}", "success")
    return filename
