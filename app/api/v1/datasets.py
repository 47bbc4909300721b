"""Dataset endpoints: import a scan export, list datasets, list and summarize their records."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, UploadFile
from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from app.api.v1.errors import to_http_exception
from app.core.config import Settings, get_settings
from app.core.database import get_db, get_session_factory
from app.schemas.datasets import DatasetOut, DatasetSummary, ImportRequest, ImportSummary
from app.schemas.records import VulnerabilityRecordOut
from app.services import dataset_store, query
from app.services.errors import VulnMasterError
from app.services.ingest import ingest_with_new_session

logger = logging.getLogger(__name__)

router = APIRouter()

UPLOAD_CHUNK_BYTES = 1024 * 1024


def _is_upload_file(obj: object) -> bool:
    """True if obj is an uploaded file (UploadFile or file-like with filename and read)."""
    if isinstance(obj, UploadFile):
        return True
    return (
        hasattr(obj, "read")
        and callable(getattr(obj, "read", None))
        and hasattr(obj, "filename")
    )


def _resolve_import_path(filepath: str, settings: Settings) -> str:
    """
    Confine server-path imports to IMPORT_ALLOWED_DIR; relative paths are taken from it.

    Without an import directory, paths are accepted as given in dev and refused in prod.
    """
    if settings.IMPORT_ALLOWED_DIR is None:
        if settings.APP_ENV == "prod":
            raise HTTPException(
                status_code=403,
                detail="Server-path imports are disabled; upload the file instead.",
            )
        return filepath
    root = Path(settings.IMPORT_ALLOWED_DIR).resolve()
    resolved = Path(root, filepath).resolve()
    if not resolved.is_relative_to(root):
        logger.warning("Import path outside the import directory", extra={"filepath": filepath})
        raise HTTPException(
            status_code=403,
            detail="filepath must point inside the configured import directory.",
        )
    return str(resolved)


async def _run_ingest(
    session_factory: sessionmaker,
    filepath: str,
    declared_format: str | None,
    file_name: str | None = None,
) -> ImportSummary:
    """Parse and commit in a worker thread so other requests keep being served."""
    try:
        return await run_in_threadpool(
            ingest_with_new_session,
            session_factory,
            filepath,
            get_settings(),
            declared_format,
            file_name,
        )
    except VulnMasterError as e:
        raise to_http_exception(e) from e


async def _save_upload(file, suffix: str, max_bytes: int) -> str:
    """Stream an upload to a temporary file with the original suffix; return its path."""
    fd, tmp_path = tempfile.mkstemp(prefix="vulnmaster-upload-", suffix=suffix)
    size = 0
    try:
        with os.fdopen(fd, "wb") as out:
            while chunk := await file.read(UPLOAD_CHUNK_BYTES):
                size += len(chunk)
                if size > max_bytes:
                    raise HTTPException(
                        status_code=413,
                        detail=f"File size must not exceed {max_bytes // (1024 * 1024)} MB.",
                    )
                out.write(chunk)
    except BaseException:
        os.unlink(tmp_path)
        raise
    return tmp_path


@router.post("/import", response_model=ImportSummary, status_code=201)
async def import_dataset(
    request: Request,
    session_factory: Annotated[sessionmaker, Depends(get_session_factory)],
) -> ImportSummary:
    """
    Import one scan export (CSV, XLSX, or VEX/JSON) as a new dataset.

    - **Server path**: `Content-Type: application/json` with `{"filepath": "...", "format": null}`.
      The file must lie inside IMPORT_ALLOWED_DIR when that is set (403 otherwise).
    - **File upload**: `Content-Type: multipart/form-data` with a `file` field (and optional
      `format` field). The dataset keeps the uploaded file name.

    The format is taken from the file extension unless declared. Malformed or incomplete
    rows are skipped and reported in the summary; unreadable or unsupported files fail
    the whole import and nothing is stored.
    """
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "application/json":
        try:
            body = ImportRequest.model_validate(await request.json())
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=422, detail=f"Invalid JSON: {e!s}") from e
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=e.errors()) from e
        filepath = _resolve_import_path(body.filepath, get_settings())
        return await _run_ingest(session_factory, filepath, body.format)

    if content_type == "multipart/form-data":
        form = await request.form()
        file = form.get("file")
        if file is None or not _is_upload_file(file):
            # Some clients send the file under another name; use first file-like part.
            file = next(
                (v for v in form.values() if _is_upload_file(v)),
                None,
            )
        if file is None or not _is_upload_file(file):
            raise HTTPException(
                status_code=422,
                detail="Multipart request must include a 'file' field.",
            )
        filename = Path(getattr(file, "filename", None) or "upload").name
        declared = form.get("format")
        declared_format = declared if isinstance(declared, str) and declared.strip() else None
        tmp_path = await _save_upload(
            file, Path(filename).suffix, get_settings().MAX_UPLOAD_FILE_BYTES
        )
        logger.info(
            "Upload received",
            extra={"file_name": filename, "declared_format": declared_format},
        )
        try:
            return await _run_ingest(session_factory, tmp_path, declared_format, filename)
        finally:
            os.unlink(tmp_path)

    raise HTTPException(
        status_code=415,
        detail="Content-Type must be application/json or multipart/form-data.",
    )


@router.get("", response_model=list[DatasetOut])
def get_datasets(db: Annotated[Session, Depends(get_db)]) -> list[DatasetOut]:
    """All imported datasets, newest first."""
    return query.list_datasets(db)


@router.get("/{dataset_id}", response_model=DatasetOut)
def get_dataset(
    dataset_id: str,
    db: Annotated[Session, Depends(get_db)],
) -> DatasetOut:
    try:
        return DatasetOut.model_validate(dataset_store.get_dataset(db, dataset_id))
    except VulnMasterError as e:
        raise to_http_exception(e) from e


@router.get("/{dataset_id}/records", response_model=list[VulnerabilityRecordOut])
def get_dataset_records(
    dataset_id: str,
    db: Annotated[Session, Depends(get_db)],
) -> list[VulnerabilityRecordOut]:
    """Records of one dataset in the order they appeared in the source file."""
    try:
        return query.list_records(db, dataset_id)
    except VulnMasterError as e:
        raise to_http_exception(e) from e


@router.get("/{dataset_id}/summary", response_model=DatasetSummary)
def get_dataset_summary(
    dataset_id: str,
    db: Annotated[Session, Depends(get_db)],
) -> DatasetSummary:
    """Severity counts (scanner and effective) computed from the current records."""
    try:
        return query.summarize_dataset(db, dataset_id)
    except VulnMasterError as e:
        raise to_http_exception(e) from e


@router.delete("/{dataset_id}", status_code=204)
def delete_dataset(
    dataset_id: str,
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Remove a dataset together with all of its records."""
    try:
        dataset_store.delete_dataset(db, dataset_id)
    except VulnMasterError as e:
        raise to_http_exception(e) from e
    return Response(status_code=204)
