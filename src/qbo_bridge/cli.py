"""Command-line entry point.

Usage:
    # Connection status of MAIN / FROM / TO
    qbo-bridge status

    # Pre-flight attachment counts in the FROM company
    qbo-bridge scan --types Invoice Bill

    # Copy attachments FROM -> TO
    qbo-bridge copy

    # Line taxes of one document in MAIN
    qbo-bridge extract estimate 1042

    # Reports and workbooks
    qbo-bridge allocations --from 2024-04-01 --to 2025-03-31 --filter payment
    qbo-bridge overpayments --output overpayments.xlsx
    qbo-bridge export invoices --output Invoices_All.xlsx
"""

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from typing import Any

import structlog

from qbo_bridge.allocation import AllocationFilter, AllocationReport, CreditBucket
from qbo_bridge.config import configure_logging
from qbo_bridge.connections import ConnectionNotConfiguredError
from qbo_bridge.entities import COPY_ENTITY_TYPES, SCAN_ENTITY_TYPES, EntityType
from qbo_bridge.overpayments import OverpaymentReport
from qbo_bridge.service import BridgeService

logger = structlog.get_logger(__name__)

EXPORT_DEFAULT_FILES = {
    "invoices": "Invoices_All.xlsx",
    "estimates": "Estimates_All.xlsx",
    "creditmemos": "CreditMemos_All.xlsx",
}


def _bucket_summary(bucket: CreditBucket) -> dict[str, Any]:
    return {
        "id": bucket.credit_id,
        "doc_number": bucket.doc.get("DocNumber") or "",
        "total": bucket.total,
        "allocated": bucket.allocated,
        "remaining": bucket.remaining,
        "allocations": [asdict(e) for e in bucket.entries],
    }


def allocation_summary(report: AllocationReport) -> dict[str, Any]:
    return {
        "credit_memos": [_bucket_summary(b) for b in report.credit_memos],
        "vendor_credits": [_bucket_summary(b) for b in report.vendor_credits],
    }


def overpayment_summary(report: OverpaymentReport) -> dict[str, Any]:
    return {
        "customer_overpayments": [asdict(r) for r in report.customer_summary],
        "vendor_overpayments": [asdict(r) for r in report.vendor_summary],
    }


def _entity_types(values: list[str] | None, default: tuple[EntityType, ...]) -> tuple[EntityType, ...]:
    if not values:
        return default
    return tuple(EntityType.parse(v) for v in values)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="qbo-bridge",
        description="QuickBooks Online data bridge",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show MAIN / FROM / TO connection status")

    scan = sub.add_parser("scan", help="Count attachments in the FROM company")
    scan.add_argument("--types", nargs="*", help="Entity types to scan (default: all)")

    copy = sub.add_parser("copy", help="Copy attachments from FROM to TO")
    copy.add_argument("--types", nargs="*", help="Entity types to copy")

    extract = sub.add_parser("extract", help="Show line taxes of one MAIN document")
    extract.add_argument("entity_type", help="Entity type, e.g. estimate or creditmemo")
    extract.add_argument("doc_id", help="Document id")

    for name, help_text in (
        ("allocations", "Credit memo / vendor credit allocation report"),
        ("overpayments", "Unapplied payment report"),
    ):
        report = sub.add_parser(name, help=help_text)
        report.add_argument("--from", dest="from_date", default=None, help="TxnDate lower bound")
        report.add_argument("--to", dest="to_date", default=None, help="TxnDate upper bound")
        report.add_argument("--output", default=None, help="Also write the workbook here")
        if name == "allocations":
            report.add_argument(
                "--filter",
                dest="filter_by",
                choices=[f.value for f in AllocationFilter],
                default=AllocationFilter.INVOICE.value,
                help="Which side the date range applies to (default: invoice)",
            )

    export = sub.add_parser("export", help="Export documents of MAIN to a workbook")
    export.add_argument("kind", choices=sorted(EXPORT_DEFAULT_FILES))
    export.add_argument("--from", dest="from_date", default=None, help="TxnDate lower bound")
    export.add_argument("--to", dest="to_date", default=None, help="TxnDate upper bound")
    export.add_argument("--output", default=None, help="Workbook path")

    return parser


async def run_command(args: argparse.Namespace, service: BridgeService) -> Any:
    """Run one parsed command and return its JSON-serializable result."""
    if args.command == "status":
        return service.status()

    if args.command == "scan":
        result = await service.scan_attachments(_entity_types(args.types, SCAN_ENTITY_TYPES))
        return result.to_dict()

    if args.command == "copy":
        result = await service.copy_attachments(_entity_types(args.types, COPY_ENTITY_TYPES))
        return {"copied": result.copied, **result.to_dict()}

    if args.command == "extract":
        entity_type = EntityType.parse(args.entity_type)
        lines = await service.extract_document_taxes(entity_type, args.doc_id)
        return {"type": entity_type.value, "id": args.doc_id, "tax_lines": [asdict(ln) for ln in lines]}

    if args.command == "allocations":
        if args.output:
            report = await service.export_allocations(
                args.output, args.from_date, args.to_date, args.filter_by
            )
        else:
            report = await service.reconcile_allocations(args.from_date, args.to_date, args.filter_by)
        return allocation_summary(report)

    if args.command == "overpayments":
        if args.output:
            op_report = await service.export_overpayments(args.output, args.from_date, args.to_date)
        else:
            op_report = await service.detect_overpayments(args.from_date, args.to_date)
        return overpayment_summary(op_report)

    if args.command == "export":
        output = args.output or EXPORT_DEFAULT_FILES[args.kind]
        exporters = {
            "invoices": service.export_invoices,
            "estimates": service.export_estimates,
            "creditmemos": service.export_credit_memos,
        }
        rows = await exporters[args.kind](output, args.from_date, args.to_date)
        return {"kind": args.kind, "output": str(output), "rows": rows}

    raise ValueError(f"Unknown command: {args.command}")


async def main(argv: list[str] | None = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)

    try:
        result = await run_command(args, BridgeService())
    except ConnectionNotConfiguredError as e:
        logger.error("connection_not_configured", slot=e.slot.value)
        print(str(e), file=sys.stderr)
        return 2
    except Exception as e:
        logger.exception("command_failed", command=args.command, error=str(e))
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
