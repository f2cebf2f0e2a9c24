#!/usr/bin/env python3
# ================================================================
# Tool     : AzureGovAudit
# Purpose  : Read-only Azure governance audit with HTML dashboards
#            (security, cost, VM backup, changes, end of life)
# Notes    : Nothing is ever written to Azure; the app registration
#            only needs Reader + Cost Management Reader + Security Reader
# ================================================================

import argparse

from core.audit import fncPrintAuditSummary, fncSelectReports, fncStartGovernanceAudit
from core.config import REPORT_ORDER, fncApplyCliOverrides, fncInitConfig, fncIsDebug
from core.exports import fncExportList, fncExportSnapshot, fncLoadSnapshot
from core.utils import fncDisplayBanner, fncPrintMessage, fncSetDebug

VERSION = "v1.0"


# ================================================================
# Function: fncParseArguments
# Purpose  : Define and parse command-line arguments
# ================================================================
def fncParseArguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="AzureGovAudit",
        description="AzureGovAudit: read-only governance audit for Azure subscriptions"
    )

    parser.add_argument(
        "--reports",
        help=f"Comma-separated reports to generate (default: all). Choices: {', '.join(REPORT_ORDER)}",
        default=None
    )

    parser.add_argument(
        "--subscriptions",
        help="Comma-separated subscription IDs (default: every subscription the identity can read)",
        default=None
    )

    parser.add_argument(
        "--output",
        help="Folder for the HTML reports (default: ~/.azuregovaudit/reports)",
        default=None
    )

    parser.add_argument(
        "--tenant-id",
        dest="tenant_id",
        help="Entra tenant ID (overrides config and AZURE_TENANT_ID)",
        default=None
    )

    parser.add_argument(
        "--config",
        help="Path to config.json (default: ~/.azuregovaudit/config.json)",
        default=None
    )

    parser.add_argument(
        "--export",
        nargs="*",
        metavar="FMT[,FMT...]",
        help="Also export the collected data: json, csv. Example: --export json,csv",
        default=None
    )

    parser.add_argument(
        "--from-json",
        dest="from_json",
        metavar="FILE",
        help="Render reports from a JSON snapshot written by --export json (no Azure calls)",
        default=None
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable verbose debug output"
    )

    return parser.parse_args(argv)


# ================================================================
# Function: fncInitClient
# Purpose  : Build the read-only ARM client from config
# Notes    : Missing credentials are prompted for interactively
# ================================================================
def fncInitClient(cfg: dict):
    from handlers.arm.client import ArmClient

    if not all([cfg.get("tenant_id"), cfg.get("client_id"), cfg.get("client_secret")]):
        fncPrintMessage("Missing Azure credentials, dropping into interactive mode...", "warn")

    return ArmClient(
        tenant_id=cfg.get("tenant_id"),
        client_id=cfg.get("client_id"),
        client_secret=cfg.get("client_secret"),
        authority=cfg.get("authority") or "https://login.microsoftonline.com",
    )


# ================================================================
# Function: main
# Purpose  : CLI parsing, config, client, audit run, exports
# Notes    : Exit code 1 when nothing could be generated
# ================================================================
def main(argv=None) -> int:
    args = fncParseArguments(argv)

    cfg = fncInitConfig(args.config)
    cfg = fncApplyCliOverrides(cfg, args)
    fncSetDebug(fncIsDebug(cfg))

    fncDisplayBanner(VERSION)
    if cfg.get("debug"):
        fncPrintMessage("Debug output enabled.", "debug")

    if not fncSelectReports(None, cfg):
        fncPrintMessage(f"No valid reports selected. Choices: {', '.join(REPORT_ORDER)}", "error")
        return 1

    snapshot = None
    client = None
    if args.from_json:
        try:
            snapshot = fncLoadSnapshot(args.from_json)
        except (OSError, ValueError) as ex:
            fncPrintMessage(f"Cannot load snapshot: {ex}", "error")
            return 1
    else:
        try:
            client = fncInitClient(cfg)
        except Exception as ex:
            fncPrintMessage(f"Unable to continue without a valid ARM client: {ex}", "error")
            return 1

    result = fncStartGovernanceAudit(client, cfg, output_dir=cfg.get("output_dir"), snapshot=snapshot)

    export_formats = fncExportList(args.export)
    if export_formats:
        fncExportSnapshot(result["data"], export_formats, result["output_dir"])

    fncPrintAuditSummary(result)
    return 0 if result["reports"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
