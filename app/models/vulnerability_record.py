"""ORM model for persisted vulnerability records (scanner layer plus expert layer)."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Integer, String, Text

from app.models.base import Base, JSONType


class VulnerabilityRecord(Base):
    """
    One finding from a dataset.

    The original_* columns (and the other scanner-provided fields) are written at
    ingestion only. The expert_* columns and updated_at are written only by the
    expert override path.
    """

    __tablename__ = "vulnerability_records"

    id = Column(String(36), primary_key=True)
    dataset_id = Column(
        String(36),
        ForeignKey("datasets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # 1-based data-row index in the source file; listing order within a dataset
    source_row = Column(Integer, nullable=False)

    cve_id = Column(String(255), nullable=False, index=True)
    product = Column(String(1024), nullable=False)
    component = Column(String(1024), nullable=False, default="")
    original_severity = Column(String(16), nullable=False)
    original_vector = Column(String(512), nullable=False, default="")
    original_score = Column(Float, nullable=True)
    disposition_summary = Column(Text, nullable=False, default="")
    rationale = Column(Text, nullable=False, default="")
    raw_data = Column(JSONType, nullable=True)

    expert_severity = Column(String(16), nullable=True)
    expert_vector = Column(String(512), nullable=True)
    expert_score = Column(Float, nullable=True)
    expert_justification = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
