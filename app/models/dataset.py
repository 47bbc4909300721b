"""ORM model for an import batch (one dataset per ingested file)."""

from sqlalchemy import Column, DateTime, Integer, String, func

from app.models.base import Base


class Dataset(Base):
    """
    One completed import of a single scan export file.

    Rows are written once, in the same transaction as their records, and never
    updated afterwards; record_count is final at commit.
    """

    __tablename__ = "datasets"

    id = Column(String(36), primary_key=True)
    file_name = Column(String(512), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        index=True,
    )
    record_count = Column(Integer, nullable=False, default=0)
