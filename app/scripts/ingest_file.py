"""
Import one scan export as a new dataset. Run from project root:
  python -m app.scripts.ingest_file PATH [--format csv|xlsx|json]
Example:
  python -m app.scripts.ingest_file exports/trivy-2025-02.csv
"""
import argparse
import logging
import sys

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.services.errors import VulnMasterError
from app.services.ingest import ingest_with_new_session

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Import a scanner export into VulnMaster.")
    parser.add_argument("path", help="CSV, XLSX or VEX/JSON file")
    parser.add_argument(
        "--format",
        choices=["csv", "xlsx", "json"],
        default=None,
        help="Override format detection by file extension",
    )
    args = parser.parse_args(argv)

    try:
        summary = ingest_with_new_session(SessionLocal, args.path, get_settings(), args.format)
    except VulnMasterError as e:
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return 1

    print(
        f"Imported {summary.record_count} records into dataset {summary.dataset_id} "
        f"({summary.skipped_row_count} skipped, {summary.unknown_severity_count} unknown severity)."
    )
    for error in summary.errors:
        print(f"  row {error.row} [{error.field or 'row'}]: {error.reason}", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
