"""Ingestion pipeline: file -> format adapter -> normalizer -> dataset store."""

import logging
import math
import time
from collections.abc import Callable, Iterable, Iterator
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from app.schemas.datasets import ImportSummary, RowError
from app.schemas.records import UNKNOWN_SEVERITY
from app.services.adapters import RawRow, detect_format, get_adapter
from app.services.dataset_store import (
    StagedRecord,
    commit_import,
    serializes_writers,
    spool_records,
)
from app.services.errors import ImportFailed, NormalizationError, UnreadableFile
from app.services.normalize import normalize_row

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


def _jsonable(values: dict[str, Any]) -> dict[str, Any]:
    """Raw row as stored for traceability: JSON-safe scalars only."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, float) and not math.isfinite(value):
            value = str(value)
        elif value is not None and not isinstance(value, (str, int, float, bool)):
            value = str(value)
        out[str(key)] = value
    return out


class ImportTally:
    """
    Turns adapter rows into staged records while counting what was skipped.

    Malformed rows (adapter errors) count toward the abort threshold; rows rejected by
    the normalizer are skipped but never abort the import.
    """

    def __init__(self, settings: "Settings") -> None:
        self.max_error_rate = settings.INGEST_MAX_ROW_ERROR_RATE
        self.min_rows = settings.INGEST_ERROR_RATE_MIN_ROWS
        self.max_reported = settings.INGEST_MAX_REPORTED_ERRORS
        self.rows_read = 0
        self.malformed = 0
        self.skipped = 0
        self.unknown_severity = 0
        self.errors: list[RowError] = []

    def stage(self, rows: Iterable[RawRow]) -> Iterator[StagedRecord]:
        for raw in rows:
            self.rows_read += 1
            if raw.error is not None:
                self.malformed += 1
                self._skip(raw.index, None, raw.error)
                self._check_error_rate()
                continue
            try:
                record = normalize_row(raw.values)
            except NormalizationError as e:
                self._skip(raw.index, e.field, e.reason)
                continue
            if record.original_severity == UNKNOWN_SEVERITY:
                self.unknown_severity += 1
            yield StagedRecord(raw.index, record, _jsonable(raw.values))
        self._check_error_rate()

    def _skip(self, row: int, field: str | None, reason: str) -> None:
        self.skipped += 1
        logger.debug("Skipping row %s (%s): %s", row, field or "row", reason)
        if len(self.errors) < self.max_reported:
            self.errors.append(RowError(row=row, field=field, reason=reason))

    def _check_error_rate(self) -> None:
        if self.rows_read < self.min_rows:
            return
        rate = self.malformed / self.rows_read
        if rate > self.max_error_rate:
            raise ImportFailed(
                f"Aborted after {self.rows_read} rows: {self.malformed} malformed rows "
                f"({rate:.0%}) exceed the allowed {self.max_error_rate:.0%}."
            )


def ingest_file(
    session: Session,
    filepath: str | Path,
    settings: "Settings",
    declared_format: str | None = None,
    file_name: str | None = None,
) -> ImportSummary:
    """
    Import one scan export file as a new dataset and return its summary.

    file_name overrides the dataset's descriptive name (uploads are stored under a
    temporary path). Raises UnsupportedFormat, UnreadableFile or ImportFailed; on any
    failure nothing is persisted. Skipped rows are reported in the summary, not raised.
    """
    path = Path(filepath)
    format_name = detect_format(path, declared_format)
    adapter = get_adapter(format_name)
    if not path.is_file():
        raise UnreadableFile(f"{path.name} does not exist or is not a regular file.")
    name = file_name or path.name

    tally = ImportTally(settings)
    staged = tally.stage(adapter.read_rows(path))
    records = staged
    start = time.perf_counter()
    try:
        if serializes_writers(session):
            # Read the whole file before taking the database-wide write lock.
            records = spool_records(staged)
        dataset = commit_import(
            session,
            name,
            records,
            batch_size=settings.INGEST_BATCH_SIZE,
        )
    except (ImportFailed, UnreadableFile) as e:
        logger.warning(
            "Import failed",
            extra={"file_name": name, "format": format_name, "kind": e.kind, "reason": e.message},
        )
        raise
    finally:
        # Releases the source file and spool buffer if the store stopped reading early.
        records.close()
        staged.close()

    summary = ImportSummary(
        dataset_id=dataset.id,
        file_name=dataset.file_name,
        record_count=dataset.record_count,
        skipped_row_count=tally.skipped,
        unknown_severity_count=tally.unknown_severity,
        errors=tally.errors,
    )
    logger.info(
        "Import completed",
        extra={
            "dataset_id": summary.dataset_id,
            "file_name": name,
            "format": format_name,
            "record_count": summary.record_count,
            "skipped_row_count": summary.skipped_row_count,
            "unknown_severity_count": summary.unknown_severity_count,
            "elapsed_seconds": time.perf_counter() - start,
        },
    )
    return summary


def ingest_with_new_session(
    session_factory: Callable[[], Session],
    filepath: str | Path,
    settings: "Settings",
    declared_format: str | None = None,
    file_name: str | None = None,
) -> ImportSummary:
    """Run ingest_file in a session of its own (for worker threads and the CLI)."""
    session = session_factory()
    try:
        return ingest_file(
            session,
            filepath,
            settings,
            declared_format=declared_format,
            file_name=file_name,
        )
    finally:
        session.close()
