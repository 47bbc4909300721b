"""Read-only projections over the dataset store."""

from collections import Counter

from sqlalchemy.orm import Session

from app.schemas.datasets import DatasetOut, DatasetSummary
from app.schemas.records import SEVERITY_VALUES, UNKNOWN_SEVERITY, VulnerabilityRecordOut
from app.services import dataset_store

_SUMMARY_LEVELS = (*SEVERITY_VALUES, UNKNOWN_SEVERITY)


def list_datasets(session: Session) -> list[DatasetOut]:
    """Datasets newest first; empty list when nothing has been imported."""
    return [DatasetOut.model_validate(d) for d in dataset_store.list_datasets(session)]


def list_records(session: Session, dataset_id: str) -> list[VulnerabilityRecordOut]:
    """Records of one dataset in source order. Raises DatasetNotFound."""
    return [
        VulnerabilityRecordOut.model_validate(r)
        for r in dataset_store.list_records(session, dataset_id)
    ]


def get_record(session: Session, record_id: str) -> VulnerabilityRecordOut:
    """One record with both layers. Raises RecordNotFound."""
    return VulnerabilityRecordOut.model_validate(dataset_store.get_record(session, record_id))


def _count_levels(levels: list[str]) -> dict[str, int]:
    counts = Counter(levels)
    return {level: counts.get(level, 0) for level in _SUMMARY_LEVELS}


def summarize_dataset(session: Session, dataset_id: str) -> DatasetSummary:
    """Severity breakdown computed from the records on every call; nothing is cached or stored."""
    records = list_records(session, dataset_id)
    return DatasetSummary(
        dataset_id=dataset_id,
        record_count=len(records),
        assessed_count=sum(1 for r in records if r.updated_at is not None),
        original_severity_counts=_count_levels([r.original_severity for r in records]),
        effective_severity_counts=_count_levels(
            [r.expert_severity or r.original_severity for r in records]
        ),
    )
