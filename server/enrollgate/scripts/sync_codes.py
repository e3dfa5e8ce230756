from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys
from typing import cast

from enrollgate.core.config import settings
from enrollgate.core.logging import configure_logging
from enrollgate.db.session import SessionLocal
from enrollgate.services.provisioning import SyncReport, sync_codes


DEFAULT_PATH = Path("data") / "codes.json"


def load_records(path: Path) -> list[object]:
    if not path.exists():
        raise ValueError(f"file not found: {path}")
    try:
        data = cast(object, json.loads(path.read_text(encoding="utf-8")))
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON in {path}: {exc.msg} (line {exc.lineno})") from exc
    if not isinstance(data, list):
        raise ValueError("expected a JSON array of code records")
    return cast(list[object], data)


def format_report(report: SyncReport) -> str:
    line = (
        f"created={report.created} updated={report.updated} unchanged={report.unchanged} "
        f"skipped={report.skipped} conflicts={report.conflicts} failed={report.failed}"
    )
    if report.dry_run:
        line += " dry_run=true"
    return line


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Sync redemption codes from a JSON array of "
            "{code, grantingEntityName, plan} records (idempotent, one commit per record)."
        )
    )
    _ = parser.add_argument(
        "path",
        nargs="?",
        default=str(DEFAULT_PATH),
        help=f"Path to the JSON file (default: {DEFAULT_PATH})",
    )
    _ = parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and apply each record, then roll it back.",
    )
    _ = parser.add_argument(
        "--show-errors",
        action="store_true",
        help="Print one line per skipped/conflicting/failed record.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    path = Path(cast(str, args.path)).resolve()
    dry_run = cast(bool, args.dry_run)
    show_errors = cast(bool, args.show_errors)

    configure_logging(settings.log_level)

    try:
        records = load_records(path)
    except ValueError as exc:
        print(f"sync_codes failed: {exc}", file=sys.stderr)
        return 1

    print(f"processing {len(records)} records from {path}")

    db = SessionLocal()
    try:
        report = sync_codes(db, records, dry_run=dry_run)
    finally:
        db.close()

    print(format_report(report))
    if show_errors:
        for err in report.errors:
            print(f"  record[{err.index}] {err.outcome}: {err.detail}")
    return 0 if report.ok else 2


if __name__ == "__main__":
    raise SystemExit(main())
