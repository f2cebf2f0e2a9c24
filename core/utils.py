# ================================================================
# File     : utils.py
# Purpose  : Common helpers for AzureGovAudit (console, files, data)
# Notes    : Every console line goes through fncPrintMessage so that
#            --debug controls the verbose channel in one place
# ================================================================

import os
import json
import csv
import time
import uuid
import pathlib
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from colorama import Fore, Style, init as _colorama_init
from tabulate import tabulate

_colorama_init(autoreset=True)

DEBUG_ENABLED = False


# ================================================================
# Function: fncSetDebug
# Purpose : Globally enable/disable debug (verbose) output
# Notes   : Called from main after config + CLI overrides are merged
# ================================================================
def fncSetDebug(enabled: bool) -> None:
    global DEBUG_ENABLED
    DEBUG_ENABLED = bool(enabled)


# ================================================================
# Function: fncPrintMessage
# Purpose : Standardised console output with levels and colours
# Notes   : Levels: info, warn, error, success, debug
# ================================================================
def fncPrintMessage(message: str, level: str = "info") -> None:
    if level == "debug" and not DEBUG_ENABLED:
        return
    colours = {
        "info": Fore.CYAN,
        "warn": Fore.YELLOW,
        "error": Fore.RED,
        "success": Fore.GREEN,
        "debug": Fore.MAGENTA
    }
    prefix = {
        "info": "[•]",
        "warn": "[!]",
        "error": "[✗]",
        "success": "[✓]",
        "debug": "[∆]"
    }
    colour = colours.get(level, "")
    mark = prefix.get(level, "[ ]")
    print(f"{colour}{mark} {message}{Style.RESET_ALL}")


# ================================================================
# Function: fncDisplayBanner
# Purpose : Print the AzureGovAudit start-up banner
# Notes   : Azure blue gradient, one colour per line
# ================================================================
def fncDisplayBanner(version: str = "v1.0") -> None:
    banner_lines = [
        "   _                          ___            _             _ _ _   ",
        "  /_\\   ____  _ _ _ _ ___    / __|_____ __  /_\\ _  _ __ __| (_) |_ ",
        " / _ \\ |_ / || | '_/ -_)  | (_ / _ \\ V / / _ \\ || / _` | |  _|",
        "/_/ \\_\\/__|\\_,_|_| \\___|   \\___\\___/\\_/ /_/ \\_\\_,_\\__,_|_|\\__|",
    ]
    colours = [Fore.CYAN, Fore.BLUE, Fore.CYAN, Fore.BLUE]

    print("")
    for i, line in enumerate(banner_lines):
        print(f"{colours[i % len(colours)]}{line}{Style.RESET_ALL}")
    print(f"{Fore.CYAN}\nAzureGovAudit {version}: read-only governance audit for Azure{Style.RESET_ALL}\n")


# ================================================================
# Function: fncEnsureFolder
# Purpose : Create a folder if it does not exist
# Notes   : Returns pathlib.Path object
# ================================================================
def fncEnsureFolder(path: str) -> pathlib.Path:
    p = pathlib.Path(path).expanduser().resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


# ================================================================
# Function: fncLoadEnv
# Purpose : Read environment variable with default
# Notes   : Strips quotes; returns default if empty
# ================================================================
def fncLoadEnv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name)
    if isinstance(val, str):
        val = val.strip().strip('"').strip("'")
    return val or default


# ================================================================
# Function: fncReadJSON
# Purpose : Load JSON from file
# Notes   : Returns {} on failure when safe=True
# ================================================================
def fncReadJSON(path: str, safe: bool = True) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as ex:
        if safe:
            fncPrintMessage(f"Could not read JSON '{path}': {ex}", "warn")
            return {}
        raise


# ================================================================
# Function: fncWriteJSON
# Purpose : Write data to JSON with nice formatting
# Notes   : Ensures parent folder exists; UTF-8; 2-space indent;
#           datetimes are written as ISO strings
# ================================================================
def fncWriteJSON(path: str, data: Any) -> None:
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=_json_default)
    fncPrintMessage(f"Saved JSON → {p}", "success")


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, tuple)):
        return list(value)
    return str(value)


# ================================================================
# Function: fncExportCSV
# Purpose : Save list[dict] to CSV
# Notes   : Headers are the union of keys (sorted); list values are
#           joined with "; " so each record stays on one row
# ================================================================
def fncExportCSV(path: str, rows: Iterable[Dict[str, Any]]) -> None:
    rows = list(rows)
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    if not rows:
        with open(p, "w", newline="", encoding="utf-8"):
            pass
        fncPrintMessage(f"Created empty CSV → {p}", "warn")
        return

    headers = sorted({k for r in rows for k in r.keys()})
    with open(p, "w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=headers)
        w.writeheader()
        for r in rows:
            out = {}
            for k in headers:
                v = r.get(k, "")
                if isinstance(v, (list, tuple, set)):
                    v = "; ".join(str(x) for x in v)
                out[k] = "" if v is None else v
            w.writerow(out)

    fncPrintMessage(f"Saved CSV → {p}", "success")


# ================================================================
# Function: fncUtcNow
# Purpose : Current time as an aware UTC datetime
# ================================================================
def fncUtcNow() -> datetime:
    return datetime.now(timezone.utc)


# ================================================================
# Function: fncRetry
# Purpose : Simple retry wrapper with backoff
# Notes   : backoff in seconds; returns fn result or raises
# ================================================================
def fncRetry(fn, attempts: int = 3, backoff: float = 1.5, exceptions: Tuple = (Exception,)):
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except exceptions as ex:
            if attempt >= attempts:
                fncPrintMessage(f"All {attempts} attempts failed: {ex}", "error")
                raise
            sleep_for = backoff ** (attempt - 1)
            fncPrintMessage(f"Attempt {attempt}/{attempts} failed: {ex}. Retrying in {sleep_for:.1f}s…", "warn")
            time.sleep(sleep_for)


# ================================================================
# Function: fncSafeGet
# Purpose : Safe nested dictionary access
# Notes   : path like 'properties.status.code'; default when missing
# ================================================================
def fncSafeGet(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur = data
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    return default if cur is None else cur


# ================================================================
# Function: fncToTable
# Purpose : Render list[dict] rows as a console table
# Notes   : headers limit and order the columns shown
# ================================================================
def fncToTable(rows: Iterable[Dict[str, Any]], headers: Optional[List[str]] = None, max_rows: Optional[int] = None) -> str:
    rows = list(rows)
    if not rows:
        return "(no data)"

    hdrs = headers or sorted({k for r in rows for k in r.keys()})
    truncated = max_rows is not None and len(rows) > max_rows
    if truncated:
        rows = rows[:max_rows]
    table_rows = [[r.get(h, "") for h in hdrs] for r in rows]
    if truncated:
        table_rows.append(["…"] * len(hdrs))
    return tabulate(table_rows, headers=hdrs, tablefmt="github")


# ================================================================
# Function: fncMask
# Purpose : Mask sensitive strings (client secrets, tokens)
# Notes   : Keeps start/end visible; handles short strings
# ================================================================
def fncMask(value: Optional[str], show: int = 4) -> str:
    if not value:
        return ""
    if len(value) <= show * 2:
        return "*" * len(value)
    return f"{value[:show]}{'*' * (len(value) - (show*2))}{value[-show:]}"


# ================================================================
# Function: fncNewRunId
# Purpose : Generate a short unique run identifier
# Notes   : Printed at start and stamped into every report footer
# ================================================================
def fncNewRunId(prefix: str = "audit") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
