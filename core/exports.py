# ================================================================
# File     : exports.py
# Purpose  : Raw data snapshots for AzureGovAudit (JSON, CSV) and
#            reloading a JSON snapshot for offline re-rendering
# Notes    : Called by AzureGovAudit.py after collection finishes
# ================================================================

import pathlib
from typing import Any, Dict, Iterable, Set

from core.utils import fncPrintMessage, fncEnsureFolder, fncExportCSV, fncReadJSON, fncWriteJSON

SNAPSHOT_FILE = "azuregovaudit_snapshot.json"


# ================================================================
# Function: fncExportList
# Purpose  : Flatten --export list-of-lists from argparse
# ================================================================
def fncExportList(args_export) -> Set[str]:
    if not args_export:
        return set()
    chunks = args_export if isinstance(args_export, (list, tuple)) else [args_export]
    out = set()
    for chunk in chunks:
        items = chunk if isinstance(chunk, (list, tuple)) else [chunk]
        for item in items:
            if isinstance(item, str):
                for part in item.replace(",", " ").split():
                    out.add(part.strip().lower())
    return out


def _record_lists(name: str, value: Any) -> Iterable:
    """(label, rows) for every list-of-dicts inside one report's data."""
    if isinstance(value, list) and value and isinstance(value[0], dict):
        yield name, value
    elif isinstance(value, dict):
        for key, val in value.items():
            if key == "cost_by_day" and isinstance(val, dict):
                rows = [r for day in sorted(val) for r in (val[day] or [])]
                if rows:
                    yield f"{name}_line_items", rows
            else:
                yield from _record_lists(f"{name}_{key}", val)


# ================================================================
# Function: fncExportSnapshot
# Purpose  : Write the collected data as JSON and/or one CSV per
#            record list
# Notes    : Returns the paths written
# ================================================================
def fncExportSnapshot(data: Dict[str, Any], formats: Set[str], out_dir: str) -> list:
    folder = fncEnsureFolder(out_dir)
    written = []

    if "json" in formats:
        path = str(folder / SNAPSHOT_FILE)
        fncWriteJSON(path, data)
        written.append(path)

    if "csv" in formats:
        for report, value in (data.get("reports") or {}).items():
            for label, rows in _record_lists(report, value):
                path = str(folder / f"{label}.csv")
                fncExportCSV(path, rows)
                written.append(path)

    unknown = formats - {"json", "csv"}
    if unknown:
        fncPrintMessage(f"Ignoring unsupported export format(s): {', '.join(sorted(unknown))}", "warn")

    if written:
        fncPrintMessage(f"Exports written → {folder}", "success")
    return written


# ================================================================
# Function: fncLoadSnapshot
# Purpose  : Read a JSON snapshot written by fncExportSnapshot
# Notes    : Raises ValueError when the file is not a snapshot
# ================================================================
def fncLoadSnapshot(path: str) -> Dict[str, Any]:
    if not pathlib.Path(path).is_file():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    data = fncReadJSON(path, safe=False)
    if not isinstance(data, dict) or not isinstance(data.get("reports"), dict):
        raise ValueError(f"{path} is not an AzureGovAudit snapshot (missing 'reports')")
    fncPrintMessage(f"Loaded snapshot with {len(data['reports'])} report(s) from {path}", "info")
    return data
