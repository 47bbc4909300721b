"""Pydantic schemas for vulnerability records: normalized ingestion output, API view, and expert updates."""

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Reusable severity levels, ordered from most to least severe.
SeverityLevel = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO"]
# Scanner severities that match no known level are kept as UNKNOWN instead of failing the row.
OriginalSeverityLevel = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO", "UNKNOWN"]

SEVERITY_VALUES: tuple[str, ...] = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "INFO")
UNKNOWN_SEVERITY = "UNKNOWN"

SCORE_MIN = 0.0
SCORE_MAX = 10.0

JUSTIFICATION_MIN_LENGTH = 10


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset; stored values are always UTC)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _validate_score(value: float | None) -> float | None:
    """Ensure a score is in [0, 10] when present."""
    if value is None:
        return None
    if not SCORE_MIN <= value <= SCORE_MAX:
        raise ValueError("score must be between 0 and 10")
    return value


class NormalizedRecord(BaseModel):
    """Scanner layer of one record, as produced by the normalizer. No expert fields."""

    cve_id: str = Field(
        ...,
        min_length=1,
        description="Vulnerability identifier (CVE or GHSA).",
    )
    product: str = Field(
        ...,
        min_length=1,
        description="Affected product as reported by the scanner.",
    )
    component: str = Field(
        default="",
        description="Affected component within the product; empty when not reported.",
    )
    original_severity: OriginalSeverityLevel = Field(
        ...,
        description="Scanner severity mapped to the vocabulary, or UNKNOWN.",
    )
    original_vector: str = Field(
        default="",
        description="CVSS vector string as reported; empty when not reported.",
    )
    original_score: float | None = Field(
        default=None,
        description="Scanner score in range 0.0-10.0; None when not reported.",
    )
    disposition_summary: str = Field(default="")
    rationale: str = Field(default="")

    @field_validator("original_score")
    @classmethod
    def validate_score_if_present(cls, v: float | None) -> float | None:
        return _validate_score(v)


class VulnerabilityRecordOut(BaseModel):
    """Full record (scanner layer plus expert layer) returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    dataset_id: str
    source_row: int
    cve_id: str
    product: str
    component: str
    original_severity: OriginalSeverityLevel
    original_vector: str
    original_score: float | None
    disposition_summary: str
    rationale: str
    expert_severity: SeverityLevel | None = None
    expert_vector: str | None = None
    expert_score: float | None = None
    expert_justification: str | None = None
    updated_at: datetime | None = None

    @field_validator("updated_at")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v)


class ExpertAssessment(BaseModel):
    """
    Analyst override for one record.

    Empty or missing severity/vector/score clear the corresponding expert field.
    Values are validated by the override engine so that each failure has its own kind.
    """

    severity: str | None = Field(
        default=None,
        description="One of CRITICAL, HIGH, MEDIUM, LOW, INFO (case-insensitive); empty to clear.",
    )
    vector: str | None = Field(
        default=None,
        description="CVSS vector; empty to clear.",
    )
    score: float | None = Field(
        default=None,
        description="Score in range 0.0-10.0; null to clear.",
    )
    justification: str = Field(
        default="",
        description="Why the assessment differs from the scanner; at least 10 characters.",
    )


class ExpertUpdate(ExpertAssessment):
    """ExpertAssessment addressed to a record."""

    record_id: str = Field(..., min_length=1)
