"""Core data models, errors and configuration"""

from dataweave.core.models import (
    RecordKind,
    SortKey,
    SortOrder,
    RecordMetadata,
    ProvenanceRecord,
    RecordDescriptor,
    RecordFilter,
    PageRequest,
    QueryPage,
    LinkVerification,
    ChainVerification,
    ExportSnapshot,
)
from dataweave.core.errors import (
    DataWeaveError,
    CreationError,
    InvalidRequest,
    StorageUnavailable,
    RecordNotFound,
    InvalidSnapshot,
)
from dataweave.core.config import settings

__all__ = [
    "RecordKind",
    "SortKey",
    "SortOrder",
    "RecordMetadata",
    "ProvenanceRecord",
    "RecordDescriptor",
    "RecordFilter",
    "PageRequest",
    "QueryPage",
    "LinkVerification",
    "ChainVerification",
    "ExportSnapshot",
    "DataWeaveError",
    "CreationError",
    "InvalidRequest",
    "StorageUnavailable",
    "RecordNotFound",
    "InvalidSnapshot",
    "settings",
]
