"""Exception types raised by the provenance core"""

from typing import Optional


class DataWeaveError(Exception):
    """Base class for all DataWeave errors"""


class CreationError(DataWeaveError):
    """A provenance record could not be created"""


class InvalidRequest(CreationError):
    """Missing or malformed field in a create request (caller error)"""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class StorageUnavailable(CreationError):
    """
    Durable object store failed or timed out.

    Nothing was inserted; the caller may retry the whole create, which
    mints a fresh record id.
    """


class RecordNotFound(DataWeaveError):
    """Strict lookup of an identifier that does not exist"""

    def __init__(self, record_id: str) -> None:
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class InvalidSnapshot(DataWeaveError):
    """Bulk import rejected because records and indexes disagree"""

    def __init__(self, problems: list[str]) -> None:
        summary = "; ".join(problems[:5])
        if len(problems) > 5:
            summary += f" (+{len(problems) - 5} more)"
        super().__init__(f"Invalid snapshot: {summary}")
        self.problems = problems
