"""Pydantic request/response schemas."""

from app.schemas.datasets import (
    DatasetOut,
    DatasetSummary,
    FormatName,
    ImportRequest,
    ImportSummary,
    RowError,
)
from app.schemas.health import HealthResponse
from app.schemas.records import (
    ExpertAssessment,
    ExpertUpdate,
    NormalizedRecord,
    OriginalSeverityLevel,
    SeverityLevel,
    VulnerabilityRecordOut,
)

__all__ = [
    "DatasetOut",
    "DatasetSummary",
    "ExpertAssessment",
    "ExpertUpdate",
    "FormatName",
    "HealthResponse",
    "ImportRequest",
    "ImportSummary",
    "NormalizedRecord",
    "OriginalSeverityLevel",
    "RowError",
    "SeverityLevel",
    "VulnerabilityRecordOut",
]
