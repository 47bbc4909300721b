"""Expert override engine: validate an analyst assessment and apply it to one record.

The expert layer is replaced as a whole on every accepted update; the scanner
layer is never touched. Updates to the same record are serialized by an
in-process lock per record id plus a database row lock, so no mix of old and
new expert values can be persisted.
"""

import logging
import math
import threading
from datetime import datetime, timedelta
from weakref import WeakValueDictionary

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import VulnerabilityRecord
from app.schemas.records import (
    JUSTIFICATION_MIN_LENGTH,
    SCORE_MAX,
    SCORE_MIN,
    SEVERITY_VALUES,
    ExpertUpdate,
    ensure_utc,
)
from app.services.dataset_store import get_record, utcnow
from app.services.errors import (
    InvalidSeverity,
    JustificationRequired,
    ScoreOutOfRange,
    StorageError,
    VulnMasterError,
)

logger = logging.getLogger(__name__)

# Smallest step between successive updated_at values of one record.
UPDATED_AT_STEP = timedelta(microseconds=1)

_record_locks: "WeakValueDictionary[str, threading.Lock]" = WeakValueDictionary()
_record_locks_guard = threading.Lock()


def _lock_for(record_id: str) -> threading.Lock:
    with _record_locks_guard:
        lock = _record_locks.get(record_id)
        if lock is None:
            lock = threading.Lock()
            _record_locks[record_id] = lock
        return lock


def validate_justification(justification: str | None) -> str:
    """Return the trimmed justification; JustificationRequired if shorter than the minimum."""
    text = (justification or "").strip()
    if len(text) < JUSTIFICATION_MIN_LENGTH:
        raise JustificationRequired(
            f"Justification must be at least {JUSTIFICATION_MIN_LENGTH} characters long."
        )
    return text


def validate_severity(severity: str | None) -> str | None:
    """Empty clears the expert severity; otherwise it must be in the vocabulary (case-insensitive)."""
    if severity is None or not severity.strip():
        return None
    value = severity.strip().upper()
    if value not in SEVERITY_VALUES:
        raise InvalidSeverity(
            f"Severity must be one of {', '.join(SEVERITY_VALUES)}, got {severity!r}."
        )
    return value


def validate_score(score: float | None) -> float | None:
    """None clears the expert score; otherwise it must lie in [0, 10]."""
    if score is None:
        return None
    value = float(score)
    if math.isnan(value) or not SCORE_MIN <= value <= SCORE_MAX:
        raise ScoreOutOfRange(
            f"Score must be between {SCORE_MIN} and {SCORE_MAX}, got {score}."
        )
    return value


def _clean_vector(vector: str | None) -> str | None:
    if vector is None or not vector.strip():
        return None
    return vector.strip()


def next_updated_at(previous: datetime | None, now: datetime | None = None) -> datetime:
    """Current time, or just after previous when the clock has not moved past it."""
    current = now or utcnow()
    previous = ensure_utc(previous)
    if previous is not None and current <= previous:
        return previous + UPDATED_AT_STEP
    return current


def apply_expert_update(session: Session, update: ExpertUpdate) -> VulnerabilityRecord:
    """
    Validate update against the stored record and replace its expert layer.

    Checks run in order: record exists (RecordNotFound), justification
    (JustificationRequired), severity (InvalidSeverity), score (ScoreOutOfRange).
    Empty severity/vector/score clear the corresponding field. A fresh justification
    is required on every call, including pure retractions. If the new expert layer
    equals the stored one nothing is written and updated_at is unchanged.

    Returns the full record. On any failure the stored record is left unchanged; database
    errors (including a lock wait that timed out) surface as StorageError.
    """
    with _lock_for(update.record_id):
        try:
            record = get_record(session, update.record_id, for_update=True)
            new_layer = {
                "expert_justification": validate_justification(update.justification),
                "expert_severity": validate_severity(update.severity),
                "expert_score": validate_score(update.score),
                "expert_vector": _clean_vector(update.vector),
            }
            if all(getattr(record, field) == value for field, value in new_layer.items()):
                session.rollback()
                session.refresh(record)
                logger.debug("Expert assessment unchanged", extra={"record_id": record.id})
                return record
            for field, value in new_layer.items():
                setattr(record, field, value)
            record.updated_at = next_updated_at(record.updated_at)
            session.commit()
            # Reload while still holding the lock so the caller sees this update's values.
            session.refresh(record)
        except VulnMasterError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            session.rollback()
            logger.exception(
                "Expert assessment not stored", extra={"record_id": update.record_id}
            )
            raise StorageError(
                f"Could not store the expert assessment for record {update.record_id!r}; try again.",
                cause=e,
            ) from e

    logger.info(
        "Expert assessment applied",
        extra={
            "record_id": record.id,
            "dataset_id": record.dataset_id,
            "expert_severity": record.expert_severity,
            "expert_score": record.expert_score,
        },
    )
    return record
