"""Map core error kinds to HTTP responses."""

from fastapi import HTTPException, status

from app.services.errors import (
    DatasetNotFound,
    ImportFailed,
    InvalidSeverity,
    JustificationRequired,
    RecordNotFound,
    ScoreOutOfRange,
    StorageError,
    UnreadableFile,
    UnsupportedFormat,
    VulnMasterError,
)

_STATUS_BY_KIND: dict[str, int] = {
    UnsupportedFormat.kind: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    UnreadableFile.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ImportFailed.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    JustificationRequired.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidSeverity.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ScoreOutOfRange.kind: status.HTTP_422_UNPROCESSABLE_ENTITY,
    DatasetNotFound.kind: status.HTTP_404_NOT_FOUND,
    RecordNotFound.kind: status.HTTP_404_NOT_FOUND,
    StorageError.kind: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def to_http_exception(error: VulnMasterError) -> HTTPException:
    """HTTPException whose detail carries the machine-readable kind and the message."""
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"kind": error.kind, "message": error.message},
    )
