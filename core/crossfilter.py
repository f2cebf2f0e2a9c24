# ================================================================
# File     : core/crossfilter.py
# Purpose  : Client-side cross-filter runtime shipped in every
#            report, plus the Python twin of its filter/pagination
#            rules that the tests hold the runtime to
# Notes    : The JS and Python halves implement the same contract:
#            dropdowns AND together, search terms OR together against
#            the precomputed lower-cased `_search` field, any filter
#            change resets to page 1, page is clamped to
#            [1, max(1, ceil(count / pageSize))]
# ================================================================

import math
from typing import Any, Dict, Iterable, List, Optional

from core.reporting import fncJsonForScript

DEFAULT_PAGE_SIZE = 25


# ---------------------- Python mirror ----------------------

def fncSearchTerms(text: Optional[str]) -> List[str]:
    return [t for t in (text or "").strip().lower().split() if t]


def fncMatchRecord(record: Dict[str, Any], search: Optional[str] = None,
                   selections: Optional[Dict[str, str]] = None) -> bool:
    for field, wanted in (selections or {}).items():
        if wanted in (None, ""):
            continue
        if str(record.get(field, "")) != str(wanted):
            return False
    terms = fncSearchTerms(search)
    if terms:
        hay = record.get("_search") or ""
        return any(t in hay for t in terms)
    return True


def fncFilterRecords(records: Optional[Iterable[Dict[str, Any]]], search: Optional[str] = None,
                     selections: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
    return [r for r in records or [] if fncMatchRecord(r, search, selections)]


def fncPageCount(count: int, page_size: int = DEFAULT_PAGE_SIZE) -> int:
    return max(1, math.ceil(max(0, count) / max(1, page_size)))


def fncClampPage(page: int, count: int, page_size: int = DEFAULT_PAGE_SIZE) -> int:
    return min(max(1, int(page)), fncPageCount(count, page_size))


def fncPageSlice(records: List[Any], page: int, page_size: int = DEFAULT_PAGE_SIZE) -> List[Any]:
    page = fncClampPage(page, len(records), page_size)
    start = (page - 1) * page_size
    return records[start:start + page_size]


class Pager:
    """Pagination state machine: pages 1..ceil(count/size), bounded Next/Previous."""

    def __init__(self, count: int = 0, page_size: int = DEFAULT_PAGE_SIZE):
        self.page_size = max(1, int(page_size))
        self.count = max(0, int(count))
        self.page = 1

    @property
    def pages(self) -> int:
        return fncPageCount(self.count, self.page_size)

    def next(self) -> int:
        self.page = fncClampPage(self.page + 1, self.count, self.page_size)
        return self.page

    def previous(self) -> int:
        self.page = fncClampPage(self.page - 1, self.count, self.page_size)
        return self.page

    def reset(self) -> int:
        self.page = 1
        return self.page

    def set_count(self, count: int) -> int:
        """New filtered count without a filter change (e.g. re-render): clamp only."""
        self.count = max(0, int(count))
        self.page = fncClampPage(self.page, self.count, self.page_size)
        return self.page

    def filter_changed(self, count: int) -> int:
        self.count = max(0, int(count))
        return self.reset()


# ---------------------- browser runtime ----------------------

CROSS_FILTER_JS = r"""
(function(root){
  'use strict';
  const AGA = root.AGA = root.AGA || {};

  function esc(v){
    return String(v === null || v === undefined ? '' : v)
      .replace(/&/g,'&amp;').replace(/</g,'&lt;').replace(/>/g,'&gt;')
      .replace(/"/g,'&quot;').replace(/'/g,'&#x27;');
  }
  function fmt(v, decimals){
    const n = Number(v) || 0;
    return n.toLocaleString('en-US',{minimumFractionDigits:decimals, maximumFractionDigits:decimals});
  }
  function pageCount(count, size){ return Math.max(1, Math.ceil(Math.max(0,count) / Math.max(1,size))); }
  function clampPage(page, count, size){ return Math.min(Math.max(1, page), pageCount(count, size)); }
  function terms(q){ return (q || '').trim().toLowerCase().split(/\s+/).filter(Boolean); }
  function isBlank(v){ return v === null || v === undefined || v === '' || (typeof v === 'number' && isNaN(v)); }
  function asArray(v){ return Array.isArray(v) ? v : (v === null || v === undefined || v === '' ? [] : [v]); }

  AGA.esc = esc; AGA.fmt = fmt; AGA.isBlank = isBlank; AGA.pageCount = pageCount; AGA.clampPage = clampPage;

  const SEVERITY = ['Critical','High','Medium','Low','Unknown'];

  function cell(col, r){
    const v = r[col.field];
    switch(col.type){
      case 'severity': return `<span class="pill sev-${esc(String(v||'unknown').toLowerCase())}">${esc(v)}</span>`;
      case 'bool':     return v ? `<span class="pill ok">${esc(col.yes||'Yes')}</span>` : `<span class="pill bad">${esc(col.no||'No')}</span>`;
      case 'money':    return isBlank(v) || isNaN(Number(v)) ? '' : fmt(v, 2);
      case 'number':   return isBlank(v) || isNaN(Number(v)) ? '' : fmt(v, 0);
      case 'list':     return esc(asArray(v).join(', '));
      case 'date':     return esc(String(v||'').replace('T',' ').slice(0,16));
      default:         return esc(v);
    }
  }

  AGA.crossFilter = function(cfg){
    const dataEl = document.getElementById(cfg.dataId);
    let data = [];
    if(dataEl){
      try { data = asArray(JSON.parse(dataEl.textContent || '[]')); } catch(e){ data = []; }
    }
    const pageSize = cfg.pageSize || 25;
    const dims = cfg.dimensions || [];
    const state = { page: 1, search: '', selects: {}, sortField: null, sortDir: 1 };
    const charts = {};
    let filtered = data;

    function matches(r){
      for(const d of dims){
        const want = state.selects[d.field];
        if(want && String(r[d.field]) !== want) return false;
      }
      const t = terms(state.search);
      if(!t.length) return true;
      const hay = r._search || '';
      return t.some(x => hay.indexOf(x) !== -1);
    }

    function measure(r){ return cfg.measure ? (Number(r[cfg.measure]) || 0) : 1; }

    function countBy(rows, field, order){
      const out = {};
      (order || []).forEach(k => out[k] = 0);
      rows.forEach(r => {
        const k = (r[field] === undefined || r[field] === null || r[field] === '') ? 'Unknown' : String(r[field]);
        out[k] = (out[k] || 0) + measure(r);
      });
      return out;
    }

    function upsertChart(id, type, labels, datasets, stacked){
      const el = document.getElementById(id);
      if(!el || typeof Chart === 'undefined') return;
      if(charts[id]){
        charts[id].data.labels = labels;
        charts[id].data.datasets = datasets;
        charts[id].update();
        return;
      }
      const scales = type === 'doughnut' ? {} : {x:{stacked:!!stacked}, y:{stacked:!!stacked, beginAtZero:true}};
      charts[id] = new Chart(el, {type, data:{labels, datasets},
        options:{responsive:true, maintainAspectRatio:false, plugins:{legend:{position:'bottom'}}, scales}});
    }

    function renderCards(){
      (cfg.cards || []).forEach(c => {
        const el = document.getElementById(c.id);
        if(!el) return;
        let rows = filtered;
        if(c.field) rows = rows.filter(r => String(r[c.field]) === String(c.equals));
        const val = c.sum ? rows.reduce((a,r) => a + (Number(r[c.sum]) || 0), 0) : rows.length;
        el.textContent = (c.prefix || '') + fmt(val, c.decimals || 0) + (c.suffix || '');
      });
    }

    function renderSummary(){
      const s = cfg.summary;
      if(!s) return;
      const counts = countBy(filtered, s.field, s.order);
      const labels = Object.keys(counts);
      const values = labels.map(k => counts[k]);
      const el = s.targetId ? document.getElementById(s.targetId) : null;
      if(el){
        el.innerHTML = labels.map(k => `<span class="pill sev-${esc(k.toLowerCase())}">${esc(k)}: ${fmt(counts[k], cfg.measure ? 2 : 0)}</span>`).join(' ');
      }
      if(s.chartId){
        const colours = labels.map(k => (s.colours || {})[k] || undefined);
        upsertChart(s.chartId, s.type || 'doughnut', labels, [{label: s.label || 'Count', data: values, backgroundColor: colours}]);
      }
    }

    function renderTopN(){
      (cfg.topN || []).forEach(t => {
        const el = document.getElementById(t.targetId);
        if(!el) return;
        const counts = countBy(filtered, t.field);
        const ranked = Object.keys(counts).map((k,i) => [k, counts[k], i])
          .sort((a,b) => (b[1] - a[1]) || (a[2] - b[2])).slice(0, t.n || 10);
        el.innerHTML = ranked.length
          ? ranked.map(x => `<li><span>${esc(x[0])}</span><span>${fmt(x[1], cfg.measure ? 2 : 0)}</span></li>`).join('')
          : '<li><span>No data</span><span></span></li>';
      });
    }

    function renderTimeline(){
      const tl = cfg.timeline;
      if(!tl) return;
      const keys = tl.keys || [];
      const pos = {}; keys.forEach((k,i) => pos[k] = i);
      const dimsSeen = [];
      const series = {};
      filtered.forEach(r => {
        const d = (r[tl.dimField] === undefined || r[tl.dimField] === '') ? 'Unknown' : String(r[tl.dimField]);
        if(!(d in series)){ series[d] = keys.map(() => 0); dimsSeen.push(d); }
        const raw = String(r[tl.field] || '');
        const k = tl.granularity === 'month' ? raw.slice(0,7) : raw.slice(0,10);
        if(k in pos) series[d][pos[k]] += measure(r);
      });
      upsertChart(tl.chartId, tl.type || 'bar', keys, dimsSeen.map(d => ({label: d, data: series[d]})), true);
    }

    function sortRows(rows){
      if(!state.sortField) return rows;
      const f = state.sortField, dir = state.sortDir;
      return rows.map((r,i) => [r,i]).sort((a,b) => {
        let x = a[0][f], y = b[0][f];
        const bx = isBlank(x), by = isBlank(y);
        if(bx || by) return bx === by ? (a[1] - b[1]) : (bx ? 1 : -1);
        if(f === cfg.severityField){ x = SEVERITY.indexOf(x); y = SEVERITY.indexOf(y); }
        if(typeof x === 'number' && typeof y === 'number') return ((x - y) * dir) || (a[1] - b[1]);
        return (String(x).localeCompare(String(y)) * dir) || (a[1] - b[1]);
      }).map(p => p[0]);
    }

    function renderTable(){
      const t = cfg.table;
      if(!t) return;
      const table = document.getElementById(t.id);
      if(!table) return;
      const rows = sortRows(filtered);
      state.page = clampPage(state.page, rows.length, pageSize);
      const start = (state.page - 1) * pageSize;
      const slice = rows.slice(start, start + pageSize);
      const tbody = table.querySelector('tbody');
      tbody.innerHTML = slice.length
        ? slice.map(r => '<tr>' + t.columns.map(c => `<td${c.type==='money'||c.type==='number' ? ' class="num"' : ''}>${cell(c, r)}</td>`).join('') + '</tr>').join('')
        : `<tr><td colspan="${t.columns.length}"><div class="empty">${esc(t.empty || 'No matching records.')}</div></td></tr>`;
      const pager = document.getElementById(t.id + '-pager');
      if(pager){
        const pages = pageCount(rows.length, pageSize);
        pager.querySelector('.info').textContent = `Page ${state.page} of ${pages} (${rows.length} records)`;
        pager.querySelector('[data-page="prev"]').disabled = state.page <= 1;
        pager.querySelector('[data-page="next"]').disabled = state.page >= pages;
      }
    }

    function render(){
      filtered = data.filter(matches);
      renderCards(); renderSummary(); renderTopN(); renderTimeline(); renderTable();
    }

    function filterChanged(){ state.page = 1; render(); }

    dims.forEach(d => {
      const el = document.getElementById(d.selectId);
      if(!el) return;
      el.addEventListener('change', () => { state.selects[d.field] = el.value; filterChanged(); });
    });
    const search = cfg.searchId ? document.getElementById(cfg.searchId) : null;
    if(search) search.addEventListener('input', () => { state.search = search.value; filterChanged(); });

    if(cfg.table){
      const table = document.getElementById(cfg.table.id);
      const pager = document.getElementById(cfg.table.id + '-pager');
      if(pager){
        pager.querySelector('[data-page="prev"]').addEventListener('click', () => { state.page = clampPage(state.page - 1, filtered.length, pageSize); renderTable(); });
        pager.querySelector('[data-page="next"]').addEventListener('click', () => { state.page = clampPage(state.page + 1, filtered.length, pageSize); renderTable(); });
      }
      if(table){
        table.querySelectorAll('th.sortable').forEach(th => th.addEventListener('click', () => {
          const f = th.getAttribute('data-field');
          state.sortDir = (state.sortField === f) ? -state.sortDir : 1;
          state.sortField = f;
          table.querySelectorAll('th.sortable').forEach(h => h.removeAttribute('data-dir'));
          th.setAttribute('data-dir', String(state.sortDir));
          state.page = 1;
          renderTable();
        }));
      }
    }

    render();
    return { state, rows: () => filtered, render };
  };
})(window);
"""


def fncCrossFilterScript(config: Dict[str, Any]) -> str:
    """JS that boots the runtime for one report section."""
    return f"AGA.crossFilter({fncJsonForScript(config)});"


def fncCrossFilterScripts(*configs: Dict[str, Any]) -> List[str]:
    """Runtime once, followed by one boot call per config."""
    return [CROSS_FILTER_JS] + [fncCrossFilterScript(c) for c in configs if c]
