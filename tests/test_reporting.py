"""Tests for HTML/JSON escaping and page assembly."""

import html
import json

import pytest

from core.reporting import (
    fncBuildPayload,
    fncFormatMoney,
    fncFormatNumber,
    fncHtmlEscape,
    fncJsonForScript,
    fncRenderDataScript,
    fncRenderDrilldown,
    fncRenderFilterBar,
    fncRenderKpis,
    fncRenderPage,
    fncRenderTable,
    fncWriteHTMLReport,
)


def test_html_escape_round_trip():
    raw = """<b>Tom & "Jerry" 'quoted'</b>"""
    escaped = fncHtmlEscape(raw)
    assert "<" not in escaped
    assert '"' not in escaped
    assert "'" not in escaped
    assert html.unescape(escaped) == raw
    assert fncHtmlEscape(None) == ""


def test_json_for_script_cannot_close_element():
    value = {"Title": "</script><script>alert(1)</script><!--", "Note": "a\u2028b"}
    text = fncJsonForScript(value)
    assert "</script>" not in text.lower()
    assert "<!--" not in text
    assert "\u2028" not in text
    assert json.loads(text) == value


def test_data_script_embeds_escaped_payload():
    block = fncRenderDataScript("sec-data", [{"Title": "</script>"}])
    assert block.startswith('<script type="application/json" id="sec-data">')
    assert block.count("</script>") == 1


def test_number_formatting():
    assert fncFormatNumber(1234567.891, 2) == "1,234,567.89"
    assert fncFormatNumber(1234.4) == "1,234"
    assert fncFormatNumber(None) == "0"
    assert fncFormatMoney(12.5, "EUR") == "12.50 EUR"
    assert fncFormatMoney(12.5) == "12.50"


def test_payload_search_text_joins_lists():
    rows = fncBuildPayload(
        [{"Name": "VM-01", "Props": ["Tags", "SKU"], "Cost": 1.23456}],
        ["Name", "Props", "Cost"],
        search_fields=["Name", "Props"],
        decimals={"Cost": 2},
    )
    assert rows[0]["Props"] == ["Tags", "SKU"]
    assert rows[0]["Cost"] == 1.23
    assert rows[0]["_search"] == "vm-01 tags, sku"


def test_kpis_escape_labels_and_keep_ids():
    out = fncRenderKpis([{"label": "<Findings>", "value": 3, "tone": "danger", "id": "sec-kpi-total"}])
    assert "&lt;Findings&gt;" in out
    assert 'id="sec-kpi-total"' in out


def test_server_table_escapes_cells_and_handles_empty():
    cols = [{"field": "Name", "label": "Name"}, {"field": "Severity", "label": "Severity", "type": "severity"}]
    out = fncRenderTable([{"Name": "<img src=x>", "Severity": "High"}], cols, "Alerts")
    assert "&lt;img src=x&gt;" in out
    assert "sev-high" in out
    empty = fncRenderTable([], cols, "Alerts", empty_message="Nothing here.")
    assert "Nothing here." in empty


def test_server_table_leaves_missing_numbers_blank():
    cols = [{"field": "Name", "label": "Name"}, {"field": "DaysLeft", "label": "Days Left", "type": "number"},
            {"field": "Cost", "label": "Cost", "type": "money"}]
    out = fncRenderTable([{"Name": "a", "DaysLeft": None, "Cost": "n/a"}, {"Name": "b", "DaysLeft": 0, "Cost": 1234.5}],
                         cols, "Deadlines")
    assert "<td>a</td><td class='num'></td><td class='num'></td>" in out
    assert "<td>b</td><td class='num'>0</td><td class='num'>1,234.50</td>" in out


def test_filter_bar_all_option_has_empty_value():
    out = fncRenderFilterBar("s", [("f-sub", "Subscriptions", ["all", "Sub-A"])])
    assert '<option value="">All Subscriptions</option>' in out
    assert '<option value="all">all</option>' in out


def test_drilldown_nests_children():
    nodes = [{"name": "Sub-A", "total": 10.0, "count": 2, "children": [
        {"name": "Compute", "total": 10.0, "count": 2, "children": []},
    ]}]
    out = fncRenderDrilldown(nodes, lambda v: f"{v:.2f}")
    assert "<details>" in out
    assert "class='leaf'" in out
    assert fncRenderDrilldown([], str) == "<div class='empty'>No data.</div>"


def test_page_marks_active_nav_and_chartjs_optional():
    page = fncRenderPage("Security", "security", "<p>body</p>", tenant_id="tenant-1")
    assert page.startswith("<!DOCTYPE html>")
    assert '<a href="security.html" class="active">Security</a>' in page
    assert "chart.umd.min.js" not in page
    assert "Tenant: tenant-1" in page
    with_chart = fncRenderPage("Cost", "cost", "", needs_chartjs=True, run_id="20240514-000000")
    assert "chart.umd.min.js" in with_chart
    assert "run 20240514-000000" in with_chart


def test_write_creates_directories(tmp_path):
    target = tmp_path / "nested" / "out" / "report.html"
    fncWriteHTMLReport(str(target), "<html></html>")
    assert target.read_text(encoding="utf-8") == "<html></html>"


def test_write_failure_propagates(tmp_path):
    blocker = tmp_path / "file.txt"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(OSError):
        fncWriteHTMLReport(str(blocker / "report.html"), "<html></html>")
