"""
Run a bulk lifecycle operation from a CSV file.

Usage:
    itad-bulk <kind> --file <path> [options]
    itad-bulk <kind> --template

Examples:
    # Register every row of an asset sheet
    itad-bulk register --file assets.csv

    # Check a sanitization sheet without applying anything
    itad-bulk sanitize --file wipes.csv --validate-only

    # Stop at the first failing row
    itad-bulk recycle --file recycled.csv --stop-on-error

    # Print the CSV template for transfers
    itad-bulk transfers --template
"""

from __future__ import annotations

import argparse
import csv
import sys
from collections.abc import Sequence
from pathlib import Path

from itad_batch.domain.types import BulkOptions, BulkRunStatus, BulkSummary


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="itad-bulk",
        description="Apply one lifecycle transition to every row of a CSV file.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "kind",
        help="Transition kind (register, sanitize, recycle, transfer) or template alias.",
    )
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="CSV file with one item per row.",
    )
    parser.add_argument(
        "--template",
        action="store_true",
        help="Print the CSV template for KIND and exit.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML override merged over the packaged defaults.",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="Database URL (default: database_url from the configuration).",
    )
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Abort at the first failing row instead of continuing.",
    )
    parser.add_argument(
        "--no-skip-duplicates",
        action="store_true",
        help="Treat duplicate serial numbers as errors.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Validate every row; apply nothing.",
    )
    parser.add_argument("--actor", default="cli", help="Actor recorded in the audit trail.")
    parser.add_argument("--log-level", default="WARNING")
    return parser.parse_args(argv)


def _read_rows(path: Path) -> list[dict[str, str]]:
    with open(path, newline="", encoding="utf-8-sig") as f:
        return list(csv.DictReader(f))


def _print_summary(summary: BulkSummary) -> None:
    print(f"Run {summary.run_id}: {summary.kind} {summary.status.value}")
    print(
        f"  Total: {summary.total}, Successful: {summary.successful}, "
        f"Failed: {summary.failed}, Validated: {summary.validated}"
    )
    failures = [r for r in summary.item_results if r.error_code]
    for result in failures[:10]:
        print(f"  Row {result.index + 1} ({result.item_key}): {result.error_code} {result.error_message}")
    if len(failures) > 10:
        print(f"  ... and {len(failures) - 10} more failed rows.")
    if summary.fatal_error_message:
        print(f"  Stopped: {summary.fatal_error_message}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    # Lazy imports so we fail fast on args first
    from itad_batch.orchestrator import BulkOrchestrator
    from itad_config import get_active_config
    from itad_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from itad_kernel.exceptions import ITADKernelError
    from itad_kernel.logging_config import configure_logging, parse_level

    try:
        configure_logging(level=parse_level(args.log_level))
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    try:
        config = get_active_config(args.config)
    except (OSError, ValueError) as e:
        print(f"ERROR: Failed to load config: {e}", file=sys.stderr)
        return 1

    if not args.template:
        if args.file is None:
            print("ERROR: --file is required unless --template is given.", file=sys.stderr)
            return 1
        source_path = args.file.resolve()
        if not source_path.is_file():
            print(f"ERROR: File not found: {source_path}", file=sys.stderr)
            return 1
        rows = _read_rows(source_path)

    try:
        init_engine_from_url(args.db_url or config.database_url)
        create_tables()
    except Exception as e:
        print(f"ERROR: Database init failed: {e}", file=sys.stderr)
        return 1

    options = BulkOptions(
        batch_size=args.batch_size,
        continue_on_error=not args.stop_on_error,
        skip_duplicates=not args.no_skip_duplicates,
        validate_only=args.validate_only,
    )

    try:
        with session_scope() as session:
            orchestrator = BulkOrchestrator.from_session(session, config)
            if args.template:
                sys.stdout.write(orchestrator.template(args.kind).content)
                return 0
            print(f"Running {args.kind} on {len(rows)} rows from {source_path}...")
            summary = orchestrator.run_bulk(args.kind, rows, options, actor=args.actor)
    except ITADKernelError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    _print_summary(summary)
    ok = summary.status in (BulkRunStatus.COMPLETED, BulkRunStatus.VALIDATED)
    return 0 if ok and summary.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
