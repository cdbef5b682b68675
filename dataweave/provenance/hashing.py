"""
Content hashing and record signing.

The content hash is a SHA-256 digest over the canonical JSON of the fields
a record was created from. The signature is an HMAC over the record's
identity fields; the signer is pluggable so a real key-based scheme can
replace the default without touching the store or the verifier.
"""

import hashlib
import hmac
import json
from typing import Any, Optional, Protocol

from dataweave.core.config import settings
from dataweave.core.models import ProvenanceRecord, RecordKind, RecordMetadata, SignatureData

SIGNATURE_PREFIX = "sig-"


def canonical_json(value: Any) -> str:
    """
    Canonical JSON serialization:
        - sorted keys
        - no whitespace separation
        - ASCII-only output
        - NaN/Infinity rejected

    Raises TypeError/ValueError for values JSON cannot represent.
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True, allow_nan=False)


def canonical_bytes(value: Any) -> bytes:
    return canonical_json(value).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_document(
    kind: RecordKind,
    origin_id: str,
    created_at: int,
    metadata: RecordMetadata,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """The document that is hashed and uploaded to durable storage"""
    return {
        "kind": kind.value,
        "origin_id": origin_id,
        "created_at": created_at,
        "metadata": metadata.model_dump(mode="json"),
        "payload": payload,
    }


def compute_content_hash(
    kind: RecordKind,
    origin_id: str,
    created_at: int,
    metadata: RecordMetadata,
    payload: dict[str, Any],
) -> str:
    """SHA-256 hex digest of the canonical content document"""
    document = content_document(kind, origin_id, created_at, metadata, payload)
    return sha256_hex(canonical_bytes(document))


def content_hash_for(record: ProvenanceRecord) -> str:
    """Recompute a stored record's content hash from its own fields"""
    return compute_content_hash(
        record.kind, record.origin_id, record.created_at, record.metadata, record.payload
    )


def signature_data(record: ProvenanceRecord) -> SignatureData:
    return SignatureData(
        record_id=record.id,
        content_hash=record.content_hash,
        created_at=record.created_at,
        origin_id=record.origin_id,
    )


class RecordSigner(Protocol):
    """Deterministic function from signature fields to a fixed-length token"""

    def sign(self, data: SignatureData) -> str:
        ...

    def verify(self, data: SignatureData, signature: str) -> bool:
        ...


class HmacSigner:
    """HMAC-SHA256 signer keyed by a shared secret"""

    def __init__(self, secret: Optional[str] = None) -> None:
        self._key = (secret if secret is not None else settings.SIGNING_SECRET).encode("utf-8")

    def sign(self, data: SignatureData) -> str:
        digest = hmac.new(self._key, canonical_bytes(data.model_dump()), hashlib.sha256).hexdigest()
        return f"{SIGNATURE_PREFIX}{digest}"

    def verify(self, data: SignatureData, signature: str) -> bool:
        if not isinstance(signature, str):
            return False
        return hmac.compare_digest(self.sign(data).encode("utf-8"), signature.encode("utf-8"))
