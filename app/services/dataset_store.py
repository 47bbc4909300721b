"""Dataset and record persistence: atomic import commits, ordered reads, point lookups."""

import json
import logging
import tempfile
import uuid
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from typing import Any, NamedTuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import Dataset, VulnerabilityRecord
from app.schemas.records import NormalizedRecord
from app.services.errors import DatasetNotFound, ImportFailed, RecordNotFound, StorageError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500
# Spooled import rows stay in memory up to this size, then move to a temporary file.
SPOOL_MEMORY_BYTES = 16 * 1024 * 1024


class StagedRecord(NamedTuple):
    """A normalized row waiting to be committed, with its source position and raw values."""

    source_row: int
    record: NormalizedRecord
    raw_data: dict[str, Any] | None = None


def new_id() -> str:
    """Random UUID4 string; collision-free across concurrent imports without coordination."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def serializes_writers(session: Session) -> bool:
    """True when one write transaction locks the whole database (SQLite)."""
    return session.get_bind().dialect.name == "sqlite"


def spool_records(
    records: Iterable[StagedRecord],
    max_memory_bytes: int = SPOOL_MEMORY_BYTES,
) -> Iterator[StagedRecord]:
    """
    Drain records into a temporary buffer now and return a stream that replays them.

    Parsing and normalizing happen here, before any write transaction opens, so on a
    database with a single writer the lock is held only while rows are inserted. The
    buffer moves from memory to a temporary file once it outgrows max_memory_bytes.
    Errors raised by records propagate before anything is written.
    """
    buffer = tempfile.SpooledTemporaryFile(
        max_size=max_memory_bytes, mode="w+", encoding="utf-8"
    )
    try:
        for staged in records:
            buffer.write(
                json.dumps(
                    {
                        "source_row": staged.source_row,
                        "record": staged.record.model_dump(mode="json"),
                        "raw_data": staged.raw_data,
                    }
                )
            )
            buffer.write("\n")
        buffer.seek(0)
    except BaseException:
        buffer.close()
        raise
    return _replay(buffer)


def _replay(buffer) -> Iterator[StagedRecord]:
    with buffer:
        for line in buffer:
            item = json.loads(line)
            yield StagedRecord(
                item["source_row"],
                NormalizedRecord.model_validate(item["record"]),
                item["raw_data"],
            )


def commit_import(
    session: Session,
    file_name: str,
    records: Iterable[StagedRecord],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Dataset:
    """
    Create one dataset holding every record from records, in a single transaction.

    records may be a lazy stream: rows are flushed in batches of batch_size and then
    expunged, so the session does not hold the whole file. Any exception (including
    one raised by the stream itself) rolls everything back; nothing is visible to
    other sessions until the final commit. Database errors surface as ImportFailed.
    """
    dataset = Dataset(id=new_id(), file_name=file_name, created_at=utcnow(), record_count=0)
    count = 0
    try:
        session.add(dataset)
        session.flush()
        batch: list[VulnerabilityRecord] = []
        for staged in records:
            row = VulnerabilityRecord(
                id=new_id(),
                dataset_id=dataset.id,
                source_row=staged.source_row,
                raw_data=staged.raw_data,
                **staged.record.model_dump(),
            )
            session.add(row)
            batch.append(row)
            count += 1
            if len(batch) >= batch_size:
                _flush_batch(session, batch)
        _flush_batch(session, batch)
        dataset.record_count = count
        dataset.created_at = utcnow()
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Import of %s failed while storing records", file_name)
        raise ImportFailed(f"Could not store dataset {file_name!r}.", cause=e) from e
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Dataset committed",
        extra={"dataset_id": dataset.id, "file_name": file_name, "record_count": count},
    )
    return dataset


def _flush_batch(session: Session, batch: list[VulnerabilityRecord]) -> None:
    if not batch:
        return
    session.flush()
    for row in batch:
        session.expunge(row)
    batch.clear()


def get_dataset(session: Session, dataset_id: str) -> Dataset:
    """Return the dataset or raise DatasetNotFound."""
    dataset = session.query(Dataset).filter(Dataset.id == dataset_id).first()
    if dataset is None:
        raise DatasetNotFound(dataset_id)
    return dataset


def list_datasets(session: Session) -> list[Dataset]:
    """All committed datasets, newest first. Consumers rely on this order."""
    return (
        session.query(Dataset)
        .order_by(Dataset.created_at.desc(), Dataset.id)
        .all()
    )


def list_records(session: Session, dataset_id: str) -> list[VulnerabilityRecord]:
    """Records of one dataset in source-file order. Raises DatasetNotFound for unknown ids."""
    get_dataset(session, dataset_id)
    return (
        session.query(VulnerabilityRecord)
        .filter(VulnerabilityRecord.dataset_id == dataset_id)
        .order_by(VulnerabilityRecord.source_row, VulnerabilityRecord.id)
        .all()
    )


def get_record(
    session: Session,
    record_id: str,
    for_update: bool = False,
) -> VulnerabilityRecord:
    """
    Return the record or raise RecordNotFound.

    for_update takes a row lock until the session's transaction ends (no-op on SQLite,
    which serializes writers itself).
    """
    query = session.query(VulnerabilityRecord).filter(VulnerabilityRecord.id == record_id)
    if for_update:
        query = query.with_for_update().populate_existing()
    record = query.first()
    if record is None:
        raise RecordNotFound(record_id)
    return record


def delete_dataset(session: Session, dataset_id: str) -> int:
    """
    Delete a dataset and all of its records in one transaction. Returns records deleted.

    Raises DatasetNotFound for unknown ids and StorageError when the database refuses.
    """
    dataset = get_dataset(session, dataset_id)
    try:
        deleted = (
            session.query(VulnerabilityRecord)
            .filter(VulnerabilityRecord.dataset_id == dataset_id)
            .delete(synchronize_session=False)
        )
        session.delete(dataset)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Deleting dataset %s failed", dataset_id)
        raise StorageError(
            f"Could not delete dataset {dataset_id!r}; try again.", cause=e
        ) from e
    logger.info(
        "Dataset deleted",
        extra={"dataset_id": dataset_id, "records_deleted": deleted},
    )
    return deleted
