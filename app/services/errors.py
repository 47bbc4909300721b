"""Error taxonomy for ingestion, storage and expert overrides.

Every error carries a stable ``kind`` so transports can render a specific
message without parsing text:

- VulnMasterError (base)
  - UnsupportedFormat, UnreadableFile   format errors, fatal to an import
  - ImportFailed                        import aborted, nothing persisted
  - NormalizationError                  one row rejected; collected, never raised to callers
  - JustificationRequired, InvalidSeverity, ScoreOutOfRange
                                        override rejected, record untouched
  - DatasetNotFound, RecordNotFound     unknown identifiers
  - StorageError                        database unavailable or busy; nothing changed
"""


class VulnMasterError(Exception):
    """Base class for all core errors."""

    kind = "VulnMasterError"

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)


class UnsupportedFormat(VulnMasterError):
    """File extension (or declared format) has no adapter."""

    kind = "UnsupportedFormat"


class UnreadableFile(VulnMasterError):
    """File cannot be opened, decoded or structurally parsed."""

    kind = "UnreadableFile"


class ImportFailed(VulnMasterError):
    """Import aborted (too many malformed rows or a persistence failure)."""

    kind = "ImportFailed"


class NormalizationError(VulnMasterError):
    """A raw row cannot be turned into a record."""

    kind = "NormalizationError"

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")


class JustificationRequired(VulnMasterError):
    kind = "JustificationRequired"


class InvalidSeverity(VulnMasterError):
    kind = "InvalidSeverity"


class ScoreOutOfRange(VulnMasterError):
    kind = "ScoreOutOfRange"


class StorageError(VulnMasterError):
    """The database refused or timed out a write; the operation can be retried."""

    kind = "StorageError"


class DatasetNotFound(VulnMasterError):
    kind = "DatasetNotFound"

    def __init__(self, dataset_id: str) -> None:
        self.dataset_id = dataset_id
        super().__init__(f"Dataset {dataset_id!r} not found.")


class RecordNotFound(VulnMasterError):
    kind = "RecordNotFound"

    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"Record {record_id!r} not found.")
