"""Health check: database reachability and number of committed datasets."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import check_db_connected, get_db
from app.models import Dataset
from app.schemas.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Return service health, database connectivity and the dataset count.
    Status is "degraded" when the database cannot be reached.
    """
    if not check_db_connected(db):
        return HealthResponse(
            status="degraded",
            environment=settings.APP_ENV,
            database="disconnected",
        )
    try:
        dataset_count = db.query(func.count(Dataset.id)).scalar() or 0
    except SQLAlchemyError:
        logger.warning("Health check could not count datasets", exc_info=True)
        dataset_count = None
    return HealthResponse(
        status="ok",
        environment=settings.APP_ENV,
        database="connected",
        dataset_count=dataset_count,
    )
