"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.dataset import Dataset
from app.models.vulnerability_record import VulnerabilityRecord

__all__ = ["Base", "Dataset", "VulnerabilityRecord"]
