"""Tests for snapshot export and reload."""

import csv
import json

import pytest

from core.exports import SNAPSHOT_FILE, fncExportList, fncExportSnapshot, fncLoadSnapshot


def _make_data():
    return {
        "tenant_id": "tenant-1",
        "collected_at": "2024-05-14T06:00:00+00:00",
        "subscriptions": {"s1": "Sub-A"},
        "reports": {
            "changes": {"events": [{"Timestamp": "2024-05-13T10:00:00Z", "ChangedProperties": ["a", "b"]}]},
            "cost": {"currency": "EUR", "cost_by_day": {
                "2024-05-02": [{"ResourceName": "vm2", "Cost": 2.0}],
                "2024-05-01": [{"ResourceName": "vm1", "Cost": 1.0}],
            }},
            "eol": None,
        },
    }


def test_export_list_flattens_argparse_values():
    assert fncExportList(None) == set()
    assert fncExportList(["json,CSV"]) == {"json", "csv"}
    assert fncExportList([["json"], "csv"]) == {"json", "csv"}
    assert fncExportList("json") == {"json"}


def test_snapshot_writes_json_and_csv(tmp_path):
    written = fncExportSnapshot(_make_data(), {"json", "csv", "xml"}, str(tmp_path))
    names = sorted(p.rsplit("/", 1)[-1] for p in written)
    assert names == ["changes_events.csv", "cost_line_items.csv", SNAPSHOT_FILE]

    with open(tmp_path / "cost_line_items.csv", newline="", encoding="utf-8") as f:
        rows = list(csv.DictReader(f))
    assert [r["ResourceName"] for r in rows] == ["vm1", "vm2"]
    with open(tmp_path / "changes_events.csv", newline="", encoding="utf-8") as f:
        assert next(csv.DictReader(f))["ChangedProperties"] == "a; b"


def test_snapshot_round_trip(tmp_path):
    fncExportSnapshot(_make_data(), {"json"}, str(tmp_path))
    loaded = fncLoadSnapshot(str(tmp_path / SNAPSHOT_FILE))
    assert loaded == _make_data()


def test_load_rejects_missing_and_invalid_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        fncLoadSnapshot(str(tmp_path / "missing.json"))

    not_snapshot = tmp_path / "other.json"
    not_snapshot.write_text(json.dumps({"hello": "world"}), encoding="utf-8")
    with pytest.raises(ValueError):
        fncLoadSnapshot(str(not_snapshot))

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValueError):
        fncLoadSnapshot(str(broken))
