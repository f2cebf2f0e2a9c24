"""Tests for configuration loading, overrides and saving."""

import json
from types import SimpleNamespace

from core.config import (
    fncApplyCliOverrides,
    fncDefaultConfig,
    fncGetSection,
    fncInitConfig,
    fncMergeDefaults,
    fncSplitCsvArg,
)

ENV_VARS = ("AZURE_TENANT_ID", "AZURE_CLIENT_ID", "AZURE_CLIENT_SECRET", "AZGOV_OUTPUT_DIR")


def _clear_env(monkeypatch):
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)


def _make_args(**overrides):
    args = {"debug": False, "tenant_id": None, "output": None, "subscriptions": None, "reports": None}
    args.update(overrides)
    return SimpleNamespace(**args)


def test_init_creates_default_file(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    path = tmp_path / "nested" / "config.json"
    cfg = fncInitConfig(str(path))
    assert path.is_file()
    assert cfg["cost"]["days"] == 30
    assert json.loads(path.read_text(encoding="utf-8"))["page_size"] == 25


def test_loaded_file_is_merged_and_env_wins(tmp_path, monkeypatch):
    _clear_env(monkeypatch)
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"tenant_id": "from-file", "cost": {"days": 7}}), encoding="utf-8")
    monkeypatch.setenv("AZURE_TENANT_ID", '"from-env"')
    monkeypatch.setenv("AZGOV_OUTPUT_DIR", str(tmp_path / "out"))

    cfg = fncInitConfig(str(path))
    assert cfg["tenant_id"] == "from-env"
    assert cfg["output_dir"] == str(tmp_path / "out")
    assert cfg["cost"] == {"days": 7, "top_n": 15}
    assert cfg["changes"]["days"] == 14


def test_merge_defaults_keeps_unknown_keys():
    merged = fncMergeDefaults({"custom": 1, "eol": {"months_forward": 12}})
    assert merged["custom"] == 1
    assert merged["eol"] == {"months_back": 6, "months_forward": 12}


def test_cli_overrides():
    cfg = fncApplyCliOverrides(fncDefaultConfig(), _make_args(
        debug=True, tenant_id="t-cli", output="/tmp/reports", subscriptions="s1, s2", reports="eol,nope,cost"))
    assert cfg["debug"] is True
    assert cfg["tenant_id"] == "t-cli"
    assert cfg["output_dir"] == "/tmp/reports"
    assert cfg["subscriptions"] == ["s1", "s2"]
    assert cfg["reports"] == ["eol", "cost"]


def test_cli_without_flags_changes_nothing():
    cfg = fncApplyCliOverrides(fncDefaultConfig(), _make_args())
    assert cfg == fncDefaultConfig()


def test_split_and_section_helpers():
    assert fncSplitCsvArg(["a,b", " c "]) == ["a", "b", "c"]
    assert fncSplitCsvArg(None) == []
    assert fncGetSection({"cost": {"days": 3}}, "cost") == {"days": 3}
    assert fncGetSection({"cost": "bad"}, "cost") == {}
    assert fncGetSection(None, "eol") == {}
