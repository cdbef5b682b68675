"""
Record Store

Single authoritative creation path for provenance records. Owns the
canonical `id -> ProvenanceRecord` map and the secondary indexes; every
other component only reads them.

Creation for one origin is serialized by a per-origin asyncio lock held
from the chain-head read until the record is inserted, so two records can
never claim the same predecessor. The durable upload is the only
suspension point; the map and index writes that follow it happen without
yielding to the event loop, so readers never see a half-inserted record.
"""

import asyncio
import json
import time
from typing import Any, Callable, Iterator, Mapping, Optional, Union
from uuid import uuid4

from loguru import logger
from pydantic import ValidationError

from dataweave.core.config import settings
from dataweave.core.errors import InvalidRequest, InvalidSnapshot, RecordNotFound, StorageUnavailable
from dataweave.core.models import (
    ExportSnapshot,
    ProvenanceRecord,
    RecordDescriptor,
    RecordKind,
    RecordMetadata,
    SignatureData,
    StoreStatistics,
)
from dataweave.provenance.hashing import (
    HmacSigner,
    RecordSigner,
    canonical_bytes,
    canonical_json,
    compute_content_hash,
    content_document,
)
from dataweave.storage.indexes import SecondaryIndexes
from dataweave.storage.object_store import DurableObjectStore, build_upload_tags


def generate_record_id() -> str:
    return f"prov-{uuid4().hex}"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RecordStore:
    """
    Append-only, content-addressed provenance ledger.

    Features:
    - One back-linked chain per origin (prior_links[0] = previous head)
    - Origin and kind indexes maintained in lock-step with inserts
    - Monotonic non-decreasing created_at within the process
    - Administrative export/import/clear that replace the whole store
    """

    def __init__(
        self,
        object_store: DurableObjectStore,
        signer: Optional[RecordSigner] = None,
        clock: Optional[Callable[[], int]] = None,
        upload_timeout: Optional[float] = None,
        schema_version: Optional[str] = None,
    ) -> None:
        self.object_store = object_store
        self.signer: RecordSigner = signer or HmacSigner()
        self.upload_timeout = settings.UPLOAD_TIMEOUT_SECONDS if upload_timeout is None else upload_timeout
        self.schema_version = schema_version or settings.SCHEMA_VERSION
        self._clock = clock or _now_ms
        self._last_timestamp = 0

        self._records: dict[str, ProvenanceRecord] = {}
        self._indexes = SecondaryIndexes()
        self._origin_locks: dict[str, asyncio.Lock] = {}
        self._generation = 0

        logger.info("RecordStore initialized")

    # ========== CREATION ==========

    async def create(
        self,
        kind: Union[RecordKind, str],
        origin_id: str,
        metadata: Union[RecordMetadata, Mapping[str, Any]],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> RecordDescriptor:
        """
        Create, upload and index a new record.

        Raises:
            InvalidRequest: a required field is missing or malformed; raised
                before any id is minted or storage is contacted.
            StorageUnavailable: the durable upload failed or timed out;
                nothing was inserted.
        """
        record_kind, record_metadata, record_payload = self._validate(kind, origin_id, metadata, payload)

        lock = self._origin_locks.setdefault(origin_id, asyncio.Lock())
        async with lock:
            record = await self._create_locked(record_kind, origin_id, record_metadata, record_payload)

        logger.info(
            "Provenance record created: {record_id} ({kind}) origin={origin} ref={ref}",
            record_id=record.id,
            kind=record.kind.value,
            origin=record.origin_id,
            ref=record.durable_ref,
        )

        return RecordDescriptor(
            record_id=record.id,
            kind=record.kind,
            origin_id=record.origin_id,
            created_at=record.created_at,
            content_hash=record.content_hash,
            durable_ref=record.durable_ref,
            prior_link=record.prior_link,
        )

    async def _create_locked(
        self,
        kind: RecordKind,
        origin_id: str,
        metadata: RecordMetadata,
        payload: dict[str, Any],
    ) -> ProvenanceRecord:
        generation = self._generation

        record_id = generate_record_id()
        while record_id in self._records:
            record_id = generate_record_id()

        created_at = self._next_timestamp()
        # Most recent first: element 0 is the current chain head
        prior_links = list(reversed(self._indexes.ids_for_origin(origin_id)))

        content_hash = compute_content_hash(kind, origin_id, created_at, metadata, payload)
        signature = self.signer.sign(SignatureData(
            record_id=record_id,
            content_hash=content_hash,
            created_at=created_at,
            origin_id=origin_id,
        ))

        data = canonical_bytes(content_document(kind, origin_id, created_at, metadata, payload))
        tags = build_upload_tags(record_id, origin_id, kind, created_at)
        durable_ref = await self._upload(record_id, data, tags)

        if generation != self._generation:
            logger.warning(f"Store replaced while {record_id} was uploading; discarding")
            raise StorageUnavailable("Record store was replaced while the upload was pending")

        record = ProvenanceRecord(
            id=record_id,
            kind=kind,
            origin_id=origin_id,
            created_at=created_at,
            metadata=metadata,
            payload=payload,
            content_hash=content_hash,
            signature=signature,
            durable_ref=durable_ref,
            prior_links=prior_links,
            schema_version=self.schema_version,
        )

        # No await between these two writes
        self._records[record.id] = record
        self._indexes.add(record)

        return record

    async def _upload(self, record_id: str, data: bytes, tags: dict[str, str]) -> str:
        try:
            return await asyncio.wait_for(
                self.object_store.upload(data, tags),
                timeout=self.upload_timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"Upload of {record_id} timed out after {self.upload_timeout}s")
            raise StorageUnavailable(f"Durable upload timed out after {self.upload_timeout}s") from e
        except StorageUnavailable as e:
            logger.warning(f"Upload of {record_id} failed: {e}")
            raise
        except Exception as e:
            logger.warning(f"Upload of {record_id} failed: {e}")
            raise StorageUnavailable(f"Durable upload failed: {e}") from e

    def _validate(
        self,
        kind: Union[RecordKind, str],
        origin_id: str,
        metadata: Union[RecordMetadata, Mapping[str, Any]],
        payload: Optional[Mapping[str, Any]],
    ) -> tuple[RecordKind, RecordMetadata, dict[str, Any]]:
        try:
            record_kind = RecordKind(kind)
        except ValueError:
            raise InvalidRequest(
                f"Invalid kind {kind!r}. Must be one of: "
                + ", ".join(k.value for k in RecordKind),
                field="kind",
            ) from None

        if not isinstance(origin_id, str) or not origin_id.strip():
            raise InvalidRequest("origin_id must be a non-empty string", field="origin_id")

        if metadata is None:
            raise InvalidRequest("metadata is required", field="metadata")

        if isinstance(metadata, RecordMetadata):
            record_metadata = metadata
        else:
            try:
                record_metadata = RecordMetadata.model_validate(metadata)
            except ValidationError as e:
                error = e.errors()[0]
                location = ".".join(str(part) for part in error["loc"])
                raise InvalidRequest(
                    f"Invalid metadata field {location!r}: {error['msg']}",
                    field=f"metadata.{location}",
                ) from None

        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise InvalidRequest("payload must be a JSON object", field="payload")

        try:
            payload_json = canonical_json(dict(payload))
            metadata_json = canonical_json(record_metadata.model_dump(mode="json"))
        except (TypeError, ValueError) as e:
            raise InvalidRequest(f"Record content is not JSON-serializable: {e}", field="payload") from None

        # Detached copies: later caller mutation must not reach the stored record
        record_payload = json.loads(payload_json)
        record_metadata = RecordMetadata.model_validate_json(metadata_json)

        return record_kind, record_metadata, record_payload

    def _next_timestamp(self) -> int:
        now = max(self._clock(), self._last_timestamp)
        self._last_timestamp = now
        return now

    # ========== READS ==========

    def get_by_id(self, record_id: str) -> Optional[ProvenanceRecord]:
        """O(1) lookup; None when absent"""
        return self._records.get(record_id)

    def require(self, record_id: str) -> ProvenanceRecord:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    def chain_head(self, origin_id: str) -> Optional[str]:
        return self._indexes.head(origin_id)

    @property
    def indexes(self) -> SecondaryIndexes:
        return self._indexes

    def records(self) -> list[ProvenanceRecord]:
        """Snapshot of all records in insertion order"""
        return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._records

    def __iter__(self) -> Iterator[ProvenanceRecord]:
        return iter(self.records())

    def recent_records(self, limit: int = 10) -> list[ProvenanceRecord]:
        """Newest first"""
        ordered = sorted(self._records.values(), key=lambda r: (-r.created_at, r.id))
        return ordered[:limit]

    def get_statistics(self) -> StoreStatistics:
        by_kind = self._indexes.by_kind
        return StoreStatistics(
            total_records=len(self._records),
            compute_records=len(by_kind[RecordKind.COMPUTE]),
            proof_records=len(by_kind[RecordKind.PROOF]),
            reasoning_records=len(by_kind[RecordKind.REASONING]),
            unique_origins=len(self._indexes.by_origin),
            records_by_origin={
                origin: len(ids) for origin, ids in self._indexes.by_origin.items()
            },
        )

    # ========== ADMINISTRATION ==========

    def export_data(self) -> ExportSnapshot:
        """Backup of records and both indexes"""
        by_origin, by_kind = self._indexes.snapshot()
        return ExportSnapshot(
            records=self.records(),
            by_origin_index=by_origin,
            by_kind_index=by_kind,
            exported_at=_now_ms(),
        )

    def import_data(self, snapshot: Union[ExportSnapshot, Mapping[str, Any]]) -> int:
        """
        Replace the entire store with a snapshot.

        The snapshot is validated first; on any inconsistency InvalidSnapshot
        is raised and the current store is left untouched.
        """
        if not isinstance(snapshot, ExportSnapshot):
            try:
                snapshot = ExportSnapshot.model_validate(snapshot)
            except ValidationError as e:
                raise InvalidSnapshot([str(err["msg"]) for err in e.errors()]) from None

        problems: list[str] = []
        records: dict[str, ProvenanceRecord] = {}
        for record in snapshot.records:
            if record.id in records:
                problems.append(f"duplicate record id {record.id}")
            records[record.id] = record

        try:
            indexes = SecondaryIndexes.from_snapshot(snapshot.by_origin_index, snapshot.by_kind_index)
        except ValueError as e:
            raise InvalidSnapshot(problems + [f"bad kind index: {e}"]) from None

        problems.extend(indexes.check_consistency(records))
        if not problems:
            problems.extend(indexes.check_chain_order(records))
        if problems:
            logger.warning(f"Rejected snapshot import with {len(problems)} problems")
            raise InvalidSnapshot(problems)

        self._records = records
        self._indexes = indexes
        self._generation += 1
        self._prune_locks()
        self._last_timestamp = max(
            [self._last_timestamp] + [r.created_at for r in records.values()]
        )

        logger.info(f"Imported {len(records)} provenance records")
        return len(records)

    def _prune_locks(self) -> None:
        # Held locks stay so queued same-origin creates remain serialized
        self._origin_locks = {
            origin: lock for origin, lock in self._origin_locks.items() if lock.locked()
        }

    def clear(self) -> None:
        """Drop every record and index entry (test reset / administration)"""
        count = len(self._records)
        self._records = {}
        self._indexes = SecondaryIndexes()
        self._generation += 1
        self._prune_locks()
        logger.warning(f"Cleared record store ({count} records dropped)")
