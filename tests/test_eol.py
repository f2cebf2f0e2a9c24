"""Tests for the end-of-life report."""

from datetime import date

import pytest

from modules.azure.eol import (
    HYBRID_WORKER_RULE,
    RETIREMENT_CATALOG,
    _tls_below_12,
    collect,
    export_report,
    fncBuildEolModel,
    fncDeadlineSeverity,
    fncEvaluateRule,
)

SUBS = {"s1": "Sub-A"}
STORAGE_ID = "/subscriptions/s1/resourceGroups/rg-data/providers/Microsoft.Storage/storageAccounts/{}"


def _rule(rule_id):
    return next(r for r in RETIREMENT_CATALOG if r["id"] == rule_id)


def _make_storage(name, kind="StorageV2", tls="TLS1_2"):
    return {"id": STORAGE_ID.format(name), "name": name, "resourceGroup": "rg-data", "subscriptionId": "s1",
            "kind": kind, "minimumTlsVersion": tls}


def _make_finding(component, deadline, name="res1", sub="Sub-A"):
    return {"Component": component, "Title": f"{component} finding", "ResourceName": name,
            "ResourceType": "Microsoft.Storage/storageAccounts", "ResourceGroup": "rg",
            "SubscriptionName": sub, "Deadline": deadline, "Detail": "", "Remediation": "Fix it."}


@pytest.mark.parametrize("deadline,expected", [
    ("2023-12-31", "Critical"),
    ("2024-01-01", "High"),
    ("2024-03-31", "High"),
    ("2024-04-01", "Medium"),
    ("2024-06-29", "Medium"),
    ("2024-07-01", "Low"),
    (None, "Unknown"),
    ("whenever", "Unknown"),
])
def test_deadline_severity_thresholds(deadline, expected):
    assert fncDeadlineSeverity(deadline, date(2024, 1, 1)) == expected


def test_tls_helper():
    assert _tls_below_12("TLS1_0")
    assert _tls_below_12("1.1")
    assert _tls_below_12("")
    assert not _tls_below_12("TLS1_2")
    assert not _tls_below_12("1.2")
    assert not _tls_below_12("1.3")


def test_storage_rules():
    rows = [_make_storage("stlegacy", kind="Storage"), _make_storage("stoldtls", tls="TLS1_0"),
            _make_storage("stunset", tls="")]
    legacy = fncEvaluateRule(_rule("storage-legacy-kind"), rows, SUBS)
    tls = fncEvaluateRule(_rule("storage-tls"), rows, SUBS)
    assert [f["ResourceName"] for f in legacy] == ["stlegacy"]
    assert [f["ResourceName"] for f in tls] == ["stoldtls", "stunset"]
    assert legacy[0]["ResourceType"] == "Microsoft.Storage/storageAccounts"
    assert legacy[0]["SubscriptionName"] == "Sub-A"
    assert legacy[0]["Deadline"] == "2026-10-13"


def test_legacy_agent_reports_parent_vm():
    rows = [
        {"id": "/subscriptions/s1/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm1/extensions/MMA",
         "name": "vm1/MMA", "subscriptionId": "s1", "extensionType": "MicrosoftMonitoringAgent", "version": "1.0"},
        {"id": "/subscriptions/s1/resourceGroups/rg/providers/Microsoft.Compute/virtualMachines/vm2/extensions/AMA",
         "name": "vm2/AMA", "subscriptionId": "s1", "extensionType": "AzureMonitorWindowsAgent"},
    ]
    findings = fncEvaluateRule(_rule("log-analytics-agent"), rows, SUBS)
    assert len(findings) == 1
    assert findings[0]["ResourceName"] == "vm1"
    assert findings[0]["Detail"] == "MicrosoftMonitoringAgent 1.0"


def test_app_service_https_and_aadds_certificate():
    site = {"id": "/subscriptions/s1/resourceGroups/rg/providers/Microsoft.Web/sites/web1", "name": "web1",
            "subscriptionId": "s1", "httpsOnly": "false", "minTlsVersion": "1.2"}
    assert len(fncEvaluateRule(_rule("appservice-https-only"), [site], SUBS)) == 1
    assert fncEvaluateRule(_rule("appservice-tls"), [site], SUBS) == []

    aadds = {"id": "/subscriptions/s1/resourceGroups/rg/providers/Microsoft.AAD/domainServices/contoso.com",
             "name": "contoso.com", "subscriptionId": "s1", "ldaps": "Enabled",
             "certificateNotAfter": "2024-07-01T00:00:00Z"}
    findings = fncEvaluateRule(_rule("aadds-ldaps-certificate"), [aadds], SUBS)
    assert findings[0]["Deadline"] == "2024-07-01T00:00:00Z"


def test_model_severity_components_and_timeline():
    findings = [
        _make_finding("Storage TLS", "2026-02-03", name="st1"),
        _make_finding("Log Analytics agent", "2024-08-31", name="vm1"),
        _make_finding("Log Analytics agent", "2024-08-31", name="vm2", sub="Sub-B"),
        _make_finding("Classic thing", "2024-01-01", name="old1"),
        _make_finding("Unknown date", "", name="mystery"),
    ]
    model = fncBuildEolModel(findings, today=date(2024, 6, 15))
    assert [f["Severity"] for f in model["findings"]] == ["Critical", "High", "High", "Low", "Unknown"]
    agent = next(f for f in model["findings"] if f["ResourceName"] == "vm1")
    assert agent["DaysLeft"] == 77
    assert next(f for f in model["findings"] if f["ResourceName"] == "mystery")["DaysLeft"] is None

    comps = {c["Component"]: c for c in model["components"]}
    assert comps["Log Analytics agent"]["HighestSeverity"] == "High"
    assert comps["Log Analytics agent"]["Subscriptions"] == 2
    assert comps["Storage TLS"]["EarliestDeadline"] == "2026-02-03"
    assert model["components"][0]["Component"] == "Classic thing"

    tl = model["timeline"]
    assert tl["keys"][tl["today_index"]] == "2024-06"
    assert "2026-02" in tl["keys"]
    aug = tl["buckets"][tl["keys"].index("2024-08")]
    assert aug["values"]["Log Analytics agent"] == 2
    assert tl["skipped"] == 1
    assert model["severity_counts"] == {"Critical": 1, "High": 2, "Medium": 0, "Low": 1, "Unknown": 1}


def test_far_deadline_extends_timeline():
    model = fncBuildEolModel([_make_finding("Future", "2031-03-01")], today=date(2024, 6, 15))
    assert model["timeline"]["keys"][-1] == "2031-03"


def test_export_empty(tmp_path):
    out = tmp_path / "eol.html"
    meta = export_report({}, str(out), "tenant-1", today=date(2024, 6, 15))
    html = out.read_text(encoding="utf-8")
    assert meta["counts"] == {"Findings": 0, "Critical": 0, "High": 0, "Components": 0}
    assert "No resources depend on retired or retiring features." in html


def test_export_with_findings(tmp_path):
    out = tmp_path / "eol.html"
    data = {"findings": [_make_finding("Log Analytics agent", "2024-01-01")]}
    meta = export_report(data, str(out), "tenant-1", cfg={"eol": {"months_back": 6, "months_forward": 12}},
                         today=date(2024, 6, 15))
    html = out.read_text(encoding="utf-8")
    assert meta["counts"]["Critical"] == 1
    assert meta["headline"] == "1 EOL findings, 1 past deadline"
    assert "eol-chart-timeline" in html
    assert '"marker":6' in html
    assert 'class="container eol"' in html


def test_collect_runs_catalog_and_hybrid_workers():
    account_id = "/subscriptions/s1/resourceGroups/rg-auto/providers/Microsoft.Automation/automationAccounts/aa1"

    class FakeClient:
        def __init__(self):
            self.queries = []

        def post_all(self, path, body, api_version=None):
            query = body["query"]
            self.queries.append(query)
            if "microsoft.storage/storageaccounts" in query:
                return [{"data": [_make_storage("stlegacy", kind="Storage")]}]
            if "microsoft.automation/automationaccounts" in query:
                return [{"data": [{"id": account_id, "name": "aa1", "resourceGroup": "rg-auto", "subscriptionId": "s1"}]}]
            if "microsoft.sql/servers" in query:
                raise RuntimeError("Resource Graph throttled")
            return [{"data": []}]

        def get_all(self, path, api_version=None, params=None):
            if path.endswith("/hybridRunbookWorkerGroups"):
                return [{"id": f"{account_id}/hybridRunbookWorkerGroups/g1", "name": "g1"}]
            if path.endswith("/hybridRunbookWorkers"):
                return [
                    {"name": "w1", "properties": {"workerType": "HybridV1", "workerName": "srv-legacy"}},
                    {"name": "w2", "properties": {"workerType": "HybridV2", "workerName": "srv-new"}},
                ]
            return []

    client = FakeClient()
    data = collect(client, SUBS)
    by_rule = {}
    for f in data["findings"]:
        by_rule.setdefault(f["RuleId"], []).append(f)

    assert [f["ResourceName"] for f in by_rule["storage-legacy-kind"]] == ["stlegacy"]
    assert "sql-tls" not in by_rule
    hybrid = by_rule[HYBRID_WORKER_RULE["id"]]
    assert [f["ResourceName"] for f in hybrid] == ["srv-legacy"]
    assert hybrid[0]["SubscriptionName"] == "Sub-A"
    # storage rules share one query
    assert sum(1 for q in client.queries if "microsoft.storage/storageaccounts" in q) == 1
