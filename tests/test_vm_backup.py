"""Tests for the VM backup coverage report."""

from datetime import datetime, timezone

from modules.azure.vm_backup import (
    collect,
    export_report,
    fncBuildVmBackupModel,
    fncIsBackupStale,
    fncPowerStateLabel,
)

NOW = datetime(2024, 5, 10, 12, 0, tzinfo=timezone.utc)


def _make_vm(name, backup=True, last="2024-05-10T00:00:00Z", status="Completed", sub="Sub-A",
             power="PowerState/running"):
    return {
        "VMName": name,
        "SubscriptionName": sub,
        "ResourceGroup": "rg-app",
        "Location": "westeurope",
        "OsType": "Linux",
        "VmSize": "Standard_D2s_v3",
        "PowerState": power,
        "BackupEnabled": backup,
        "VaultName": "rsv-prod" if backup else "",
        "PolicyName": "DefaultPolicy" if backup else "",
        "LastBackupTime": last if backup else "",
        "LastBackupStatus": status if backup else "",
    }


def test_stale_rules():
    assert not fncIsBackupStale(_make_vm("fresh"), NOW)
    assert fncIsBackupStale(_make_vm("old", last="2024-05-07T00:00:00Z"), NOW)
    assert fncIsBackupStale(_make_vm("failed", status="Failed"), NOW)
    assert fncIsBackupStale(_make_vm("never", last=""), NOW)
    assert not fncIsBackupStale(_make_vm("unprotected", backup=False), NOW)


def test_power_state_label():
    assert fncPowerStateLabel("PowerState/deallocated") == "deallocated"
    assert fncPowerStateLabel("running") == "running"
    assert fncPowerStateLabel("") == "Unknown"


def test_model_counts_and_coverage():
    vms = [
        _make_vm("fresh"),
        _make_vm("old", last="2024-05-01T00:00:00Z"),
        _make_vm("failed", status="Failed", sub="Sub-B"),
        _make_vm("bare", backup=False, sub="Sub-B", power="PowerState/deallocated"),
    ]
    model = fncBuildVmBackupModel(vms, NOW)
    assert model["total"] == 4
    assert model["protected"] == 3
    assert model["unprotected"] == 1
    assert [v["VMName"] for v in model["stale"]] == ["old", "failed"]
    assert model["coverage"] == 75.0
    assert model["status_counts"] == {"Protected": 1, "Stale": 2, "Unprotected": 1}
    assert model["power_counts"] == {"running": 3, "deallocated": 1}
    by_sub = {s["SubscriptionName"]: s for s in model["by_subscription"]}
    assert by_sub["Sub-A"]["Coverage"] == 100.0
    assert by_sub["Sub-B"]["Coverage"] == 50.0
    assert model["filters"]["statuses"] == ["Protected", "Stale", "Unprotected"]


def test_export_empty(tmp_path):
    out = tmp_path / "vm_backup.html"
    meta = export_report(None, str(out), "tenant-1")
    html = out.read_text(encoding="utf-8")
    assert meta["counts"] == {"VMs": 0, "Protected": 0, "Unprotected": 0, "Stale": 0}
    assert meta["coverage"] == 0.0
    assert "No virtual machines were found" in html


def test_export_uses_today_for_staleness(tmp_path):
    out = tmp_path / "vm_backup.html"
    data = {"vms": [_make_vm("fresh"), _make_vm("old", last="2024-05-01T00:00:00Z")]}
    meta = export_report(data, str(out), "tenant-1", today="2024-05-10T12:00:00Z")
    html = out.read_text(encoding="utf-8")
    assert meta["counts"]["Stale"] == 1
    assert meta["counts"]["Protected"] == 2
    assert "vmb-table" in html
    assert '"equals":true' in html


def test_collect_joins_protected_items_on_lowercase_id():
    vm_id = "/subscriptions/s1/resourcegroups/rg-app/providers/microsoft.compute/virtualmachines/vm1"

    class FakeClient:
        def post_all(self, path, body, api_version=None):
            if "recoveryservicesresources" in body["query"]:
                return [{"data": [{"sourceId": vm_id, "vaultName": "rsv-prod", "policyName": "Daily",
                                   "lastBackupTime": "2024-05-10T01:00:00Z", "lastBackupStatus": "Completed"}]}]
            return [{"data": [
                {"id": vm_id, "name": "vm1", "resourceGroup": "rg-app", "subscriptionId": "s1",
                 "location": "westeurope", "osType": "Linux", "vmSize": "B2s", "powerState": "PowerState/running"},
                {"id": vm_id.replace("vm1", "vm2"), "name": "vm2", "resourceGroup": "rg-app", "subscriptionId": "s1"},
            ]}]

    data = collect(FakeClient(), {"s1": "Sub-A"})
    vms = {v["VMName"]: v for v in data["vms"]}
    assert vms["vm1"]["BackupEnabled"] is True
    assert vms["vm1"]["VaultName"] == "rsv-prod"
    assert vms["vm1"]["SubscriptionName"] == "Sub-A"
    assert vms["vm2"]["BackupEnabled"] is False
