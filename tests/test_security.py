"""Tests for the security posture report."""

from modules.azure import security
from modules.azure.security import collect, export_report, fncBuildSecurityModel

RID = "/subscriptions/s1/resourceGroups/rg-data/providers/Microsoft.Storage/storageAccounts/stdata01"


def _make_finding(**overrides):
    finding = {
        "SubscriptionId": "s1",
        "SubscriptionName": "Sub-A",
        "ResourceId": RID,
        "ResourceName": "stdata01",
        "ResourceGroup": "rg-data",
        "ResourceType": "Microsoft.Storage/storageAccounts",
        "Category": "Data",
        "Title": "Storage accounts should restrict network access",
        "Severity": "High",
        "Status": "Fail",
        "Remediation": "Configure firewall rules on the storage account.",
        "Timestamp": "2024-05-01T08:00:00Z",
        "CisLevel": "L1",
    }
    finding.update(overrides)
    return finding


def _make_alert(**overrides):
    alert = {
        "SubscriptionName": "Sub-A",
        "AlertName": "Suspicious sign-in",
        "Severity": "Medium",
        "Status": "Active",
        "ResourceName": "vm-web-01",
        "StartTime": "2024-05-02T10:00:00Z",
        "Description": "A sign-in from an unusual location.",
    }
    alert.update(overrides)
    return alert


class _FakeClient:
    def __init__(self, responses, failing=()):
        self.responses = responses
        self.failing = set(failing)
        self.calls = []

    def get_all(self, path, api_version=None, params=None):
        self.calls.append((path, api_version))
        sid = path.split("/")[1]
        if sid in self.failing:
            raise RuntimeError("403 Forbidden")
        for suffix, items in self.responses.items():
            if path.endswith(suffix):
                return items
        return []


def test_zero_findings_still_renders_report(tmp_path):
    out = tmp_path / "security.html"
    meta = export_report({}, str(out), "tenant-1")
    html = out.read_text(encoding="utf-8")
    assert meta["counts"] == {"Findings": 0, "Critical": 0, "High": 0, "Alerts": 0}
    assert 'id="sec-kpi-total">0<' in html
    assert "No open security findings" in html
    assert "AGA.crossFilter" not in html


def test_single_critical_finding_drives_filters_and_summary():
    model = fncBuildSecurityModel([_make_finding(Severity="Critical")])
    assert model["filters"]["subscriptions"] == ["Sub-A"]
    assert model["filters"]["severities"] == ["Critical"]
    assert model["severity_counts"] == {"Critical": 1, "High": 0, "Medium": 0, "Low": 0, "Unknown": 0}


def test_findings_sorted_and_subscription_highest_severity():
    model = fncBuildSecurityModel([
        _make_finding(Severity="Low", Title="low one"),
        _make_finding(Severity="Critical", SubscriptionName="Sub-B", Title="critical one"),
        _make_finding(Severity="high", Title="high one"),
    ])
    assert [f["Severity"] for f in model["findings"]] == ["Critical", "High", "Low"]
    by_sub = {s["SubscriptionName"]: s for s in model["by_subscription"]}
    assert by_sub["Sub-A"]["HighestSeverity"] == "High"
    assert by_sub["Sub-A"]["Findings"] == 2
    assert by_sub["Sub-B"]["Critical"] == 1
    assert sum(model["severity_counts"].values()) == model["total"]


def test_missing_values_fold_into_unknown():
    model = fncBuildSecurityModel([_make_finding(Severity=None, SubscriptionName="", Title="")])
    finding = model["findings"][0]
    assert finding["Severity"] == "Unknown"
    assert finding["SubscriptionName"] == "Unknown"
    assert finding["Title"] == "(untitled finding)"
    assert model["severity_counts"]["Unknown"] == 1


def test_export_with_findings_escapes_content(tmp_path):
    out = tmp_path / "security.html"
    data = {
        "findings": [_make_finding(Severity="Critical", Title="</script><script>alert(1)</script>")],
        "alerts": [_make_alert(Description="<img src=x onerror=alert(1)>")],
    }
    meta = export_report(data, str(out), "tenant-1", cfg={"page_size": 10}, run_id="run-1")
    html = out.read_text(encoding="utf-8")
    assert meta["counts"] == {"Findings": 1, "Critical": 1, "High": 0, "Alerts": 1}
    assert "<script>alert(1)" not in html
    assert "<img src=x" not in html
    assert "&lt;img src=x onerror=alert(1)&gt;" in html
    assert '<option value="Sub-A">Sub-A</option>' in html
    assert 'id="sec-kpi-critical">1<' in html
    assert '"pageSize":10' in html


def test_collect_keeps_unhealthy_assessments_and_active_alerts():
    assessments = [
        {
            "name": "a1",
            "properties": {
                "displayName": "Disk encryption should be enabled",
                "status": {"code": "Unhealthy", "firstEvaluationDate": "2024-05-01T00:00:00Z"},
                "resourceDetails": {"Id": "/subscriptions/s1/resourceGroups/rg1/providers/Microsoft.Compute/virtualMachines/vm1"},
                "metadata": {"severity": "High", "categories": ["Compute"], "remediationDescription": "Enable ADE."},
            },
        },
        {"name": "a2", "properties": {"status": {"code": "Healthy"}}},
    ]
    alerts = [
        {"name": "al1", "properties": {"alertDisplayName": "Brute force", "severity": "High", "status": "Active",
                                        "resourceIdentifiers": [{"azureResourceId": "/subscriptions/s1/resourceGroups/rg1/providers/Microsoft.Compute/virtualMachines/vm1"}]}},
        {"name": "al2", "properties": {"alertDisplayName": "Old", "severity": "Low", "status": "Dismissed"}},
    ]
    client = _FakeClient(
        {"Microsoft.Security/assessments": assessments, "Microsoft.Security/alerts": alerts},
        failing=["s2"],
    )
    data = collect(client, {"s1": "Sub-A", "s2": "Sub-B"})

    assert len(data["findings"]) == 1
    f = data["findings"][0]
    assert f["ResourceName"] == "vm1"
    assert f["ResourceGroup"] == "rg1"
    assert f["ResourceType"] == "Microsoft.Compute/virtualMachines"
    assert f["CisLevel"] == "L1"
    assert f["Remediation"] == "Enable ADE."
    assert [a["AlertName"] for a in data["alerts"]] == ["Brute force"]
    assert data["alerts"][0]["ResourceName"] == "vm1"
    assert ("subscriptions/s1/providers/Microsoft.Security/assessments", security.ASSESSMENTS_API) in client.calls
