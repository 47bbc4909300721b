"""Request/response schemas for datasets and imports."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.records import ensure_utc

FormatName = Literal["csv", "xlsx", "json"]


class DatasetOut(BaseModel):
    """One import batch."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    file_name: str
    created_at: datetime
    record_count: int = Field(..., ge=0)

    @field_validator("created_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class RowError(BaseModel):
    """A source row that was skipped during import."""

    row: int = Field(..., ge=1, description="1-based data-row index in the source file.")
    field: str | None = Field(
        default=None,
        description="Canonical field that failed; None for rows that could not be parsed at all.",
    )
    reason: str


class ImportSummary(BaseModel):
    """Result of one ingest call."""

    dataset_id: str
    file_name: str
    record_count: int = Field(..., ge=0, description="Records committed in the new dataset.")
    skipped_row_count: int = Field(..., ge=0, description="Malformed or rejected rows.")
    unknown_severity_count: int = Field(
        default=0,
        ge=0,
        description="Committed records whose scanner severity matched no known level.",
    )
    errors: list[RowError] = Field(
        default_factory=list,
        description="Skipped rows with reasons; truncated to INGEST_MAX_REPORTED_ERRORS.",
    )


class ImportRequest(BaseModel):
    """Import a file that is already on the server's filesystem."""

    filepath: str = Field(..., min_length=1)
    format: FormatName | None = Field(
        default=None,
        description="Declared format; detected from the file extension when omitted.",
    )


class DatasetSummary(BaseModel):
    """Aggregates computed on demand from a dataset's records; never stored."""

    dataset_id: str
    record_count: int = Field(..., ge=0)
    assessed_count: int = Field(
        ...,
        ge=0,
        description="Records carrying an expert assessment.",
    )
    original_severity_counts: dict[str, int]
    effective_severity_counts: dict[str, int] = Field(
        ...,
        description="Counts using the expert severity where set, else the scanner severity.",
    )
