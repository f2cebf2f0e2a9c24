# ================================================================
# File     : module_loader.py
# Purpose  : Dynamically load report modules and drive their
#            collect / export entry points
# Notes    : Report modules live in modules/<provider>/ and expose
#            REPORT_NAME, OUTPUT_FILE, collect() and export_report().
#            Collect/export errors propagate; the orchestrator owns
#            the catch-and-record policy.
# ================================================================

import importlib
import os
import pathlib
from typing import Any, Dict, List, Optional

from core.utils import fncPrintMessage

PROVIDER = "azure"
MODULES_ROOT = pathlib.Path(__file__).resolve().parent.parent / "modules"

REQUIRED_ATTRS = ("REPORT_NAME", "OUTPUT_FILE", "collect", "export_report")


# ================================================================
# Function: fncLoadModule
# Purpose : Dynamically import a report module by name
# Notes   : Returns the imported module or None if not found or
#           if it lacks the report entry points
# ================================================================
def fncLoadModule(module_name: str, provider: str = PROVIDER):
    mod_path = f"modules.{provider}.{module_name}"
    try:
        mod = importlib.import_module(mod_path)
    except ModuleNotFoundError:
        fncPrintMessage(f"Module not found: {provider}/{module_name}", "error")
        return None
    except Exception as ex:
        fncPrintMessage(f"Failed to import {provider}/{module_name}: {ex}", "error")
        return None

    missing = [a for a in REQUIRED_ATTRS if not hasattr(mod, a)]
    if missing:
        fncPrintMessage(f"Module {module_name} is missing {', '.join(missing)}", "warn")
        return None
    fncPrintMessage(f"Loaded module: {mod_path}", "debug")
    return mod


# ================================================================
# Function: fncDiscoverModules
# Purpose : Report modules available for a provider
# Notes   : Ignores files starting with '_' by convention
# ================================================================
def fncDiscoverModules(provider: str = PROVIDER, root: Optional[pathlib.Path] = None) -> List[str]:
    base = (root or MODULES_ROOT) / provider
    if not base.is_dir():
        fncPrintMessage(f"No modules directory for provider '{provider}' (expected: {base})", "warn")
        return []

    mods = [p.stem for p in sorted(base.iterdir())
            if p.is_file() and p.suffix == ".py" and not p.name.startswith("_")]
    fncPrintMessage(f"Discovered modules for {provider}: {mods}", "debug")
    return mods


def fncCollectModule(mod, client, subscriptions: Dict[str, str], cfg: dict) -> Any:
    fncPrintMessage(f"Collecting: {mod.REPORT_NAME}", "info")
    data = mod.collect(client, subscriptions, cfg)
    fncPrintMessage(f"Collected: {mod.REPORT_NAME}", "debug")
    return data


# ================================================================
# Function: fncExportModule
# Purpose : Render one report into output_dir
# Notes   : Returns the module's metadata record
# ================================================================
def fncExportModule(mod, data: Any, output_dir: str, tenant_id: str, cfg: dict,
                    today=None, run_id: Optional[str] = None) -> Dict[str, Any]:
    output_path = os.path.join(output_dir, mod.OUTPUT_FILE)
    fncPrintMessage(f"Rendering: {mod.REPORT_NAME} → {output_path}", "info")
    return mod.export_report(data, output_path, tenant_id, cfg=cfg, today=today, run_id=run_id)
