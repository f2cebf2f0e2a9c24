# ================================================================
# File     : config.py
# Purpose  : Configuration management for AzureGovAudit
# Notes    : Handles initial creation, loading, and saving of config
# ================================================================

import pathlib
from typing import Any, Dict, List

from core.utils import fncPrintMessage, fncEnsureFolder, fncReadJSON, fncWriteJSON, fncLoadEnv

REPORT_ORDER = ["security", "cost", "vm_backup", "changes", "eol"]


# ================================================================
# Function: fncHomeFolder
# Purpose : Base folder for config and default report output
# ================================================================
def fncHomeFolder() -> pathlib.Path:
    return pathlib.Path.home() / ".azuregovaudit"


# ================================================================
# Function: fncDefaultConfig
# Purpose : Return a default configuration dictionary
# Notes   : Called when config file does not exist, and used to
#           backfill keys missing from older config files
# ================================================================
def fncDefaultConfig() -> dict:
    return {
        "version": "1.0",
        "debug": False,
        "tenant_id": "",
        "client_id": "",
        "client_secret": "",
        "authority": "https://login.microsoftonline.com",
        "subscriptions": [],
        "output_dir": str(fncHomeFolder() / "reports"),
        "reports": list(REPORT_ORDER),
        "page_size": 25,
        "cost": {
            "days": 30,
            "top_n": 15,
        },
        "changes": {
            "days": 14,
        },
        "eol": {
            "months_back": 6,
            "months_forward": 24,
        },
    }


# ================================================================
# Function: fncInitConfig
# Purpose : Create or load configuration file
# Notes   : Ensures base folder exists; returns full config dict
# ================================================================
def fncInitConfig(config_path: str = None) -> dict:
    path = pathlib.Path(config_path or (fncHomeFolder() / "config.json"))

    fncEnsureFolder(path.parent)

    if not path.exists():
        fncPrintMessage(f"No config found at {path}. Creating default...", "warn")
        cfg = fncDefaultConfig()
        fncWriteJSON(str(path), cfg)
        return fncApplyEnvOverrides(cfg)
    return fncLoadConfig(str(path))


# ================================================================
# Function: fncMergeDefaults
# Purpose : Fill keys missing from a loaded config with defaults
# Notes   : One level of nesting (cost/changes/eol sections)
# ================================================================
def fncMergeDefaults(cfg: Dict[str, Any]) -> Dict[str, Any]:
    merged = fncDefaultConfig()
    for key, val in (cfg or {}).items():
        if isinstance(val, dict) and isinstance(merged.get(key), dict):
            merged[key].update(val)
        else:
            merged[key] = val
    return merged


# ================================================================
# Function: fncLoadConfig
# Purpose : Load configuration file and apply environment overrides
# ================================================================
def fncLoadConfig(config_path: str) -> dict:
    cfg = fncMergeDefaults(fncReadJSON(config_path))
    cfg = fncApplyEnvOverrides(cfg)
    fncPrintMessage(f"Loaded configuration from {config_path}", "debug")
    return cfg


# ================================================================
# Function: fncApplyEnvOverrides
# Purpose : Environment variables win over the config file
# Notes   : AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET
#           match the names used by the Azure SDKs and CLI
# ================================================================
def fncApplyEnvOverrides(cfg: dict) -> dict:
    cfg["tenant_id"] = fncLoadEnv("AZURE_TENANT_ID", cfg.get("tenant_id"))
    cfg["client_id"] = fncLoadEnv("AZURE_CLIENT_ID", cfg.get("client_id"))
    cfg["client_secret"] = fncLoadEnv("AZURE_CLIENT_SECRET", cfg.get("client_secret"))
    cfg["output_dir"] = fncLoadEnv("AZGOV_OUTPUT_DIR", cfg.get("output_dir"))
    return cfg


# ================================================================
# Function: fncSplitCsvArg
# Purpose : "a,b , c" → ["a", "b", "c"]
# ================================================================
def fncSplitCsvArg(value) -> List[str]:
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        value = ",".join(value)
    return [v.strip() for v in str(value).split(",") if v.strip()]


# ================================================================
# Function: fncApplyCliOverrides
# Purpose : Apply command-line flags to the loaded config
# ================================================================
def fncApplyCliOverrides(cfg: dict, args) -> dict:
    if getattr(args, "debug", None):
        cfg["debug"] = True
    if getattr(args, "tenant_id", None):
        cfg["tenant_id"] = args.tenant_id
    if getattr(args, "output", None):
        cfg["output_dir"] = args.output

    subs = fncSplitCsvArg(getattr(args, "subscriptions", None))
    if subs:
        cfg["subscriptions"] = subs

    reports = fncSplitCsvArg(getattr(args, "reports", None))
    if reports:
        unknown = [r for r in reports if r not in REPORT_ORDER]
        for r in unknown:
            fncPrintMessage(f"Unknown report type ignored: {r}", "warn")
        cfg["reports"] = [r for r in reports if r in REPORT_ORDER]
    return cfg


# ================================================================
# Function: fncGetSection
# Purpose : Return a per-report config block ({} when absent)
# ================================================================
def fncGetSection(cfg: dict, name: str) -> dict:
    section = (cfg or {}).get(name)
    return section if isinstance(section, dict) else {}


# ================================================================
# Function: fncIsDebug
# Purpose : Return whether debug mode is enabled in config
# ================================================================
def fncIsDebug(cfg: dict) -> bool:
    return bool(cfg.get("debug", False))
