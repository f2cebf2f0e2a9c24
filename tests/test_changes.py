"""Tests for the change tracking report."""

import json
from datetime import date

from modules.azure.changes import collect, export_report, fncBuildChangesModel

TODAY = date(2024, 5, 14)


def _make_event(ts, change_type="Update", props=None, name="vm-app-01", caller="alice@contoso.com"):
    return {
        "Timestamp": ts,
        "ChangeType": change_type,
        "ResourceId": f"/subscriptions/s1/resourceGroups/rg-app/providers/Microsoft.Compute/virtualMachines/{name}",
        "ResourceName": name,
        "ResourceType": "Microsoft.Compute/virtualMachines",
        "ResourceGroup": "rg-app",
        "SubscriptionName": "Sub-A",
        "ChangedBy": caller,
        "ClientType": "Azure Portal",
        "ChangedProperties": props,
    }


def test_changed_properties_always_a_list():
    model = fncBuildChangesModel([
        _make_event("2024-05-10T10:00:00Z", props="properties.hardwareProfile.vmSize"),
        _make_event("2024-05-11T10:00:00Z", props=None),
        _make_event("2024-05-12T10:00:00Z", props=["tags.env", "tags.owner"]),
    ], days=14, today=TODAY)
    by_ts = {e["Timestamp"][:10]: e for e in model["events"]}
    assert by_ts["2024-05-10"]["ChangedProperties"] == ["properties.hardwareProfile.vmSize"]
    assert by_ts["2024-05-10"]["PropertyCount"] == 1
    assert by_ts["2024-05-11"]["ChangedProperties"] == []
    assert by_ts["2024-05-12"]["PropertyCount"] == 2
    assert [p["ChangedProperties"] for p in model["payload"]][0] == ["tags.env", "tags.owner"]


def test_timeline_has_every_day_of_window():
    model = fncBuildChangesModel([
        _make_event("2024-05-01T09:00:00Z", "Create"),
        _make_event("2024-05-14T18:00:00Z", "Delete"),
        _make_event("bogus", "Update"),
    ], days=14, today=TODAY)
    tl = model["timeline"]
    assert len(tl["buckets"]) == 14
    assert [b["total"] for b in tl["buckets"]].count(0) == 12
    assert tl["skipped"] == 1
    assert model["total"] == 3
    assert model["type_counts"] == {"Create": 1, "Update": 1, "Delete": 1}


def test_rankings():
    events = [
        _make_event("2024-05-10T10:00:00Z", name="vm1", caller="alice"),
        _make_event("2024-05-10T11:00:00Z", name="vm1", caller="bob"),
        _make_event("2024-05-10T12:00:00Z", name="vm2", caller="alice"),
        _make_event("2024-05-10T13:00:00Z", name="vm1", caller="alice", change_type="Delete"),
    ]
    model = fncBuildChangesModel(events, days=14, today=TODAY)
    assert model["top_resources"][0] == {"ResourceName": "vm1", "ResourceType": "Microsoft.Compute/virtualMachines",
                                         "SubscriptionName": "Sub-A", "Changes": 3}
    assert model["top_callers"][0] == {"ChangedBy": "alice", "Changes": 3}
    assert model["by_resource_type"][0]["Delete"] == 1
    assert model["events"][0]["Timestamp"].startswith("2024-05-10T13")


def test_export_empty(tmp_path):
    out = tmp_path / "changes.html"
    meta = export_report({"events": []}, str(out), "tenant-1", cfg={"changes": {"days": 14}}, today=TODAY)
    html = out.read_text(encoding="utf-8")
    assert meta["counts"] == {"Changes": 0, "Create": 0, "Update": 0, "Delete": 0}
    assert "No resource changes were recorded in the last 14 days." in html


def test_export_embeds_list_fields_and_window_keys(tmp_path):
    out = tmp_path / "changes.html"
    data = {"events": [_make_event("2024-05-13T10:00:00Z", "Create", props="properties.sku")]}
    meta = export_report(data, str(out), "tenant-1", cfg={"changes": {"days": 7}}, today=TODAY)
    html = out.read_text(encoding="utf-8")
    assert meta["counts"]["Create"] == 1
    assert meta["headline"] == "1 changes in 7 days"
    assert '"ChangedProperties":["properties.sku"]' in html
    keys = json.dumps(["2024-05-08", "2024-05-09", "2024-05-10", "2024-05-11", "2024-05-12", "2024-05-13", "2024-05-14"],
                      separators=(",", ":"))
    assert f'"keys":{keys}' in html


def test_collect_maps_resource_graph_rows():
    class FakeClient:
        def __init__(self):
            self.bodies = []

        def post_all(self, path, body, api_version=None):
            self.bodies.append(body)
            return [{"data": [{
                "changeTime": "2024-05-13T10:00:00Z",
                "targetResourceId": "/subscriptions/s1/resourceGroups/rg-app/providers/Microsoft.Web/sites/web1",
                "changeType": "Update",
                "changedBy": "deploy@contoso.com",
                "clientType": "ARM Template",
                "changedProperties": ["properties.siteConfig.minTlsVersion"],
                "subscriptionId": "s1",
            }]}]

    client = FakeClient()
    data = collect(client, {"s1": "Sub-A"}, {"changes": {"days": 7}})
    event = data["events"][0]
    assert event["ResourceName"] == "web1"
    assert event["ResourceType"] == "Microsoft.Web/sites"
    assert event["SubscriptionName"] == "Sub-A"
    assert event["ChangedBy"] == "deploy@contoso.com"
    assert "ago(7d)" in client.bodies[0]["query"]
    assert client.bodies[0]["subscriptions"] == ["s1"]
