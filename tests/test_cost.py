"""Tests for the cost tracking report."""

from datetime import date

import pytest

from core.timeline import fncDayKeys
from modules.azure.cost import collect, export_report, fncBuildCostModel

TODAY = date(2024, 5, 8)
CFG = {"page_size": 25, "cost": {"days": 8, "top_n": 15}}


def _make_item(resource, cost, sub="Sub-A", category="Virtual Machines", meter="D2s v3"):
    return {
        "SubscriptionName": sub,
        "ResourceGroup": "rg-app",
        "ResourceName": resource,
        "MeterCategory": category,
        "MeterSubCategory": "Dv3 Series",
        "Meter": meter,
        "Cost": cost,
    }


def _make_spiky_window():
    days = fncDayKeys(8, TODAY)
    series = [10, 10, 10, 10, 100, 10, 10, 10]
    return {d: [_make_item("vm-app-01", c)] for d, c in zip(days, series)}


def test_model_trend_trims_single_spike():
    model = fncBuildCostModel(_make_spiky_window(), fncDayKeys(8, TODAY))
    assert model["total"] == pytest.approx(190.0)
    assert model["daily"] == [10, 10, 10, 10, 100, 10, 10, 10]
    assert model["trend"]["percent"] == 0.0
    assert model["trend"]["direction"] == "neutral"
    assert model["drivers"] == []


def test_window_is_zero_filled_and_bounded():
    days = fncDayKeys(8, TODAY)
    cost_by_day = {
        "20240501": [_make_item("vm1", 4)],
        "2024-05-02": [_make_item("vm1", "2.5")],
        "2024-04-01": [_make_item("vm1", 1000)],
        "not-a-day": [_make_item("vm1", 1000)],
    }
    model = fncBuildCostModel(cost_by_day, days)
    assert model["days"] == days
    assert model["daily"][:3] == [4.0, 2.5, 0.0]
    assert model["total"] == pytest.approx(6.5)
    assert model["line_items"] == 2


def test_stacked_series_reconciles_with_daily_totals():
    days = fncDayKeys(8, TODAY)
    cost_by_day = {d: [_make_item("vm1", 5, category="Compute"), _make_item("st1", 2, category="Storage"),
                       _make_item("kv1", 1, category="Key Vault")] for d in days}
    model = fncBuildCostModel(cost_by_day, days, top_n=1)
    series = model["meter_series"]["series"]
    assert [s["label"] for s in series] == ["Compute", "Other"]
    for i, total in enumerate(model["daily"]):
        assert sum(s["data"][i] for s in series) == pytest.approx(total)
    assert all(v >= 0 for v in series[-1]["data"])


def test_breakdown_and_groupings_reconcile():
    days = fncDayKeys(8, TODAY)
    cost_by_day = {
        days[0]: [_make_item("vm1", 5), _make_item("vm2", 3, sub="Sub-B"), _make_item("st1", 2, category="Storage")],
    }
    model = fncBuildCostModel(cost_by_day, days)
    assert sum(n["total"] for n in model["breakdown"]) == pytest.approx(model["total"])
    assert [s["SubscriptionName"] for s in model["by_subscription"]] == ["Sub-A", "Sub-B"]
    assert model["top_resources"][0]["ResourceName"] == "vm1"
    assert model["filters"]["categories"] == ["Storage", "Virtual Machines"]
    leaf_path = model["breakdown"][0]
    for _ in range(4):
        leaf_path = leaf_path["children"][0]
    assert leaf_path["children"] == []


def test_increase_driver_detected():
    days = fncDayKeys(8, TODAY)
    cost_by_day = {d: [_make_item("vm-grow", 1 if i < 4 else 6)] for i, d in enumerate(days)}
    model = fncBuildCostModel(cost_by_day, days)
    assert [d["name"] for d in model["drivers"]] == ["vm-grow"]
    assert model["trend"]["direction"] == "up"


def test_export_empty_cost(tmp_path):
    out = tmp_path / "cost.html"
    meta = export_report({}, str(out), "tenant-1", cfg=CFG, today=TODAY)
    html = out.read_text(encoding="utf-8")
    assert meta["counts"] == {"Total": 0.0, "LineItems": 0, "Drivers": 0}
    assert "No cost data was returned" in html
    assert "chart.umd.min.js" not in html


def test_export_with_data(tmp_path):
    out = tmp_path / "cost.html"
    meta = export_report({"cost_by_day": _make_spiky_window(), "currency": "EUR"}, str(out), "tenant-1",
                         cfg=CFG, today=TODAY)
    html = out.read_text(encoding="utf-8")
    assert meta["counts"]["Total"] == 190.0
    assert meta["counts"]["LineItems"] == 8
    assert meta["currency"] == "EUR"
    assert "190 EUR over 8 days" in meta["headline"]
    assert "cost-chart-daily" in html
    assert "AGA.crossFilter" in html
    assert "Actual cost, 2024-05-01 to 2024-05-08" in html
    assert '"id":"cost-kpi-total","sum":"Cost","decimals":0,"suffix":" EUR"' in html


def test_collect_rekeys_rows_by_day():
    class FakeClient:
        def __init__(self):
            self.calls = []

        def post_all(self, path, body, api_version=None):
            self.calls.append((path, body))
            return [{"properties": {
                "columns": [{"name": "Cost"}, {"name": "UsageDate"}, {"name": "ResourceId"}, {"name": "MeterCategory"},
                            {"name": "MeterSubCategory"}, {"name": "Meter"}, {"name": "Currency"}],
                "rows": [[1.5, 20240501,
                          "/subscriptions/s1/resourceGroups/rg-app/providers/Microsoft.Compute/virtualMachines/vm1",
                          "Virtual Machines", "Dv3 Series", "D2s v3", "EUR"]],
            }}]

    client = FakeClient()
    data = collect(client, {"s1": "Sub-A"}, {"cost": {"days": 7}})
    assert data["currency"] == "EUR"
    item = data["cost_by_day"]["2024-05-01"][0]
    assert item["ResourceName"] == "vm1"
    assert item["ResourceGroup"] == "rg-app"
    assert item["SubscriptionName"] == "Sub-A"
    assert item["Cost"] == 1.5
    path, body = client.calls[0]
    assert path == "subscriptions/s1/providers/Microsoft.CostManagement/query"
    assert body["dataset"]["granularity"] == "Daily"
