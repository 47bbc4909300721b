"""Record endpoints: read one record, apply an expert assessment."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.v1.errors import to_http_exception
from app.core.database import get_db
from app.schemas.records import ExpertAssessment, ExpertUpdate, VulnerabilityRecordOut
from app.services import query
from app.services.errors import VulnMasterError
from app.services.expert_override import apply_expert_update

router = APIRouter()


@router.get("/{record_id}", response_model=VulnerabilityRecordOut)
def get_record(
    record_id: str,
    db: Annotated[Session, Depends(get_db)],
) -> VulnerabilityRecordOut:
    try:
        return query.get_record(db, record_id)
    except VulnMasterError as e:
        raise to_http_exception(e) from e


@router.put("/{record_id}/expert", response_model=VulnerabilityRecordOut)
def put_expert_assessment(
    record_id: str,
    body: ExpertAssessment,
    db: Annotated[Session, Depends(get_db)],
) -> VulnerabilityRecordOut:
    """
    Replace the record's expert assessment and return the full record.

    Severity, vector and score left empty clear any previous expert value. A justification
    of at least 10 characters is required on every call. Scanner fields are never changed.
    """
    update = ExpertUpdate(record_id=record_id, **body.model_dump())
    try:
        record = apply_expert_update(db, update)
    except VulnMasterError as e:
        raise to_http_exception(e) from e
    return VulnerabilityRecordOut.model_validate(record)
