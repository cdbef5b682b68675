"""Core data models for the DataWeave provenance ledger"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class RecordKind(str, Enum):
    """Closed set of provenance record categories"""

    COMPUTE = "compute"
    PROOF = "proof"
    REASONING = "reasoning"


class SortKey(str, Enum):
    """Sortable record fields for queries"""

    CREATED_AT = "created_at"
    KIND = "kind"
    ORIGIN_ID = "origin_id"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class RecordMetadata(BaseModel):
    """
    Structured description of the computation a record chronicles.

    `computation_type`, `inputs` and `outputs` are required; inputs and
    outputs may be empty lists but must be present. Tags have set semantics
    and are stored de-duplicated and sorted.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    computation_type: str = Field(min_length=1)
    inputs: list[str]
    outputs: list[str]
    model_version: Optional[str] = None
    reasoning: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    custom_data: Optional[dict[str, Any]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _default_tags(cls, value: Any) -> Any:
        return [] if value is None else value

    @field_validator("tags", mode="after")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return sorted(set(value))


class ProvenanceRecord(BaseModel):
    """
    Atomic, immutable unit of the ledger.

    A record only exists once its payload has been uploaded to the durable
    object store, so `durable_ref` is always populated. `prior_links[0]`
    (if any) is the previous record of the same origin.
    """

    model_config = ConfigDict(frozen=True)

    # ========== IDENTITY ==========
    id: str
    kind: RecordKind
    origin_id: str
    created_at: int  # milliseconds since epoch

    # ========== CONTENT ==========
    metadata: RecordMetadata
    payload: dict[str, Any] = Field(default_factory=dict)

    # ========== INTEGRITY ==========
    content_hash: str
    signature: str
    durable_ref: str

    # ========== CHAIN ==========
    prior_links: list[str] = Field(default_factory=list)

    schema_version: str = "1.0.0"

    @property
    def prior_link(self) -> Optional[str]:
        """The predecessor followed by chain verification"""
        return self.prior_links[0] if self.prior_links else None


class RecordDescriptor(BaseModel):
    """What a successful create hands back to the caller"""

    record_id: str
    kind: RecordKind
    origin_id: str
    created_at: int
    content_hash: str
    durable_ref: str
    prior_link: Optional[str] = None


class SignatureData(BaseModel):
    """Fields covered by a record signature"""

    record_id: str
    content_hash: str
    created_at: int
    origin_id: str


class RecordFilter(BaseModel):
    """Query filter; every field is optional and filters combine with AND"""

    origin_id: Optional[str] = None
    kind: Optional[RecordKind] = None
    start_time: Optional[int] = None  # inclusive
    end_time: Optional[int] = None    # inclusive
    tags: Optional[list[str]] = None  # match-any


class PageRequest(BaseModel):
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=1)
    sort_by: SortKey = SortKey.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC


class QueryPage(BaseModel):
    records: list[ProvenanceRecord]
    total: int
    has_more: bool
    offset: int = 0
    limit: Optional[int] = None


class IntegrityViolation(BaseModel):
    """A recomputed value that disagrees with the stored one"""

    record_id: str
    field: str
    expected: str
    actual: str


class LinkVerification(BaseModel):
    """Verification outcome for a single record in a chain"""

    record_id: str
    durable_ref: str
    content_hash: str
    computed_hash: str
    hash_valid: bool
    signature_valid: bool
    durable_resolved: bool
    violations: list[IntegrityViolation] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def valid(self) -> bool:
        return self.hash_valid and self.signature_valid and self.durable_resolved


class ChainVerification(BaseModel):
    """Audit trail produced by walking a record's back-links to the root"""

    record_id: str
    valid: bool
    trail: list[LinkVerification] = Field(default_factory=list)
    missing_links: list[str] = Field(default_factory=list)


class AuditResult(BaseModel):
    """Outcome of re-fetching a record's payload from durable storage"""

    record_id: str
    durable_ref: str
    fetched: bool
    payload_hash: Optional[str] = None
    matches: bool = False
    error: Optional[str] = None


class StoreStatistics(BaseModel):
    total_records: int = 0
    compute_records: int = 0
    proof_records: int = 0
    reasoning_records: int = 0
    unique_origins: int = 0
    records_by_origin: dict[str, int] = Field(default_factory=dict)


class ExportSnapshot(BaseModel):
    """Full store backup: canonical records plus both indexes"""

    records: list[ProvenanceRecord]
    by_origin_index: dict[str, list[str]]
    by_kind_index: dict[str, list[str]]
    exported_at: int
