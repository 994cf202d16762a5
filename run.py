#!/usr/bin/env python3
"""
Invoice automation - CLI entry point.

Usage:
  python run.py ocr recXXXXXXXX          # OCR a Files record and store Raw-Text
  python run.py post-ocr recXXXXXXXX     # Parse Raw-Text into invoice records
  python run.py match recXXXXXXXX        # PO matching for one invoice
  python run.py process recXXXXXXXX      # All stages for one Files record
  python run.py folder --input ./input --output ./output -j 4
  python run.py schema > schema.json     # Dump the Airtable base schema
  python run.py duplicates               # File-hash duplicate report
  python run.py health
  python run.py serve --port 8000

Settings come from the environment or a .env file (OPENAI_API_KEY, AIRTABLE_PAT, AIRTABLE_BASE_ID, OCR2_*).
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from invoice_automation.airtable import get_airtable_client
from invoice_automation.airtable_schema import FILE_FIELDS, TABLE_NAMES
from invoice_automation.config import get_settings, log_level_value
from invoice_automation.duplicates import generate_duplicate_report
from invoice_automation.errors import OCRError
from invoice_automation.log import configure_logging
from invoice_automation.orchestrator import get_health, process_file_record
from invoice_automation.pipeline import process_file, run_on_folder
from invoice_automation.po_matching import match_invoice
from invoice_automation.post_ocr import process_post_ocr


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_ocr(args: argparse.Namespace) -> int:
    result = process_file_record(args.record_id, mode=args.mode)
    print(f"OCR complete: {result.total_pages} page(s), {len(result.extracted_text)} chars ({result.mode})")
    return 0


def cmd_post_ocr(args: argparse.Namespace) -> int:
    result = process_post_ocr(args.record_id)
    _print_json(result.model_dump())
    return 0 if result.success else 1


def cmd_match(args: argparse.Namespace) -> int:
    summary = match_invoice(args.invoice_id, table=args.table)
    _print_json(summary.model_dump())
    return 0


def cmd_process(args: argparse.Namespace) -> int:
    result = process_file(args.record_id, mode=args.mode)
    _print_json(result.model_dump())
    return 0


def cmd_folder(args: argparse.Namespace) -> int:
    input_path = Path(args.input)
    output_path = Path(args.output)

    if not input_path.exists():
        input_path.mkdir(parents=True, exist_ok=True)
        print(f"Created input directory: {input_path.absolute()}. Add PDFs and run again.")
        return 0

    results = run_on_folder(input_path, output_path, max_workers=max(1, args.parallel), mode=args.mode)

    failed = [r for r in results if r.error]
    print(f"Processed {len(results)} PDF(s). Output in: {output_path.absolute()}")
    for r in results:
        if r.error:
            print(f"  - {r.source_file}: ERROR {r.error}")
        else:
            print(f"  - {r.source_file}: {len(r.documents)} document(s), {r.total_pages} page(s)")
    return 1 if failed else 0


def cmd_schema(args: argparse.Namespace) -> int:
    _print_json(get_airtable_client().get_base_schema())
    return 0


def cmd_duplicates(args: argparse.Namespace) -> int:
    report = generate_duplicate_report()
    if args.json:
        _print_json(report)
        return 0
    print(f"{report['total_files']} file(s) checked, {report['duplicate_count']} duplicate(s)")
    for group in report["duplicate_groups"]:
        names = [f.get("fields", {}).get(FILE_FIELDS.FILE_NAME, f["id"]) for f in group["files"]]
        print(f"  {group['hash'][:12]}... x{group['count']}: {', '.join(names)}")
    return 0


def cmd_health(args: argparse.Namespace) -> int:
    health = get_health()
    _print_json(health)
    return 0 if health["status"] == "healthy" else 1


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("invoice_automation.server:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="OCR invoice PDFs, create Airtable invoice records and match them to PO receipts."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    mode_help = "OCR mode: native (whole PDF) or chunked (page images); default from OCR2_MODE"

    p = sub.add_parser("ocr", help="OCR one Files record and store its Raw-Text")
    p.add_argument("record_id")
    p.add_argument("--mode", choices=["native", "chunked"], default=None, help=mode_help)
    p.set_defaults(func=cmd_ocr)

    p = sub.add_parser("post-ocr", help="Create invoice records from a Files record's Raw-Text")
    p.add_argument("record_id")
    p.set_defaults(func=cmd_post_ocr)

    p = sub.add_parser("match", help="PO matching for one invoice record")
    p.add_argument("invoice_id")
    p.add_argument(
        "--table",
        default=TABLE_NAMES.INVOICES,
        help=f"Table holding the invoice (default: {TABLE_NAMES.INVOICES})",
    )
    p.set_defaults(func=cmd_match)

    p = sub.add_parser("process", help="Run OCR, post-OCR and PO matching for one Files record")
    p.add_argument("record_id")
    p.add_argument("--mode", choices=["native", "chunked"], default=None, help=mode_help)
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("folder", help="OCR and parse local PDFs, writing <stem>_documents.json")
    p.add_argument("--input", "-i", type=str, default="./input",
                   help="Input directory containing PDFs (default: ./input)")
    p.add_argument("--output", "-o", type=str, default="./output",
                   help="Output directory for JSON files (default: ./output)")
    p.add_argument("--parallel", "-j", type=int, default=1, metavar="N",
                   help="Process N PDFs in parallel (default: 1)")
    p.add_argument("--mode", choices=["native", "chunked"], default=None, help=mode_help)
    p.set_defaults(func=cmd_folder)

    p = sub.add_parser("schema", help="Print the Airtable base schema as JSON")
    p.set_defaults(func=cmd_schema)

    p = sub.add_parser("duplicates", help="Report Files records sharing a file hash")
    p.add_argument("--json", action="store_true", help="Print the raw report as JSON")
    p.set_defaults(func=cmd_duplicates)

    p = sub.add_parser("health", help="Validate configuration and print service health")
    p.set_defaults(func=cmd_health)

    p = sub.add_parser("serve", help="Run the HTTP service")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(log_level_value(get_settings()))
    try:
        return args.func(args)
    except OCRError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
