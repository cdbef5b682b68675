"""
Chain Verifier

Walks a record's back-links (`prior_links[0]`) to the root of its origin
chain, recomputing every visited record's content hash and signature and
checking that durable storage still resolves its payload. Integrity
problems are reported in the trail rather than raised, so callers always
get the full diagnostic picture.
"""

from typing import Optional

from loguru import logger

from dataweave.core.errors import DataWeaveError
from dataweave.core.models import (
    AuditResult,
    ChainVerification,
    IntegrityViolation,
    LinkVerification,
    ProvenanceRecord,
)
from dataweave.provenance.hashing import RecordSigner, content_hash_for, sha256_hex, signature_data
from dataweave.provenance.record_store import RecordStore


class ChainVerifier:
    """Read-and-recompute traversal; never mutates the store"""

    def __init__(self, store: RecordStore, signer: Optional[RecordSigner] = None) -> None:
        self.store = store
        self.signer = signer or store.signer

    def verify_record(self, record_id: str) -> Optional[LinkVerification]:
        """Verify a single record; None when it does not exist"""
        record = self.store.get_by_id(record_id)
        if record is None:
            return None
        return self._verify_link(record)

    def verify_chain(self, record_id: str) -> ChainVerification:
        """
        Verify `record_id` and every predecessor back to the chain root.

        The walk stops at the first invalid link (naming it in
        missing_links), at a predecessor absent from the store (naming
        that id), or at the root. A visited set bounds the walk to at most
        one step per stored record.
        """
        record = self.store.get_by_id(record_id)
        if record is None:
            return ChainVerification(record_id=record_id, valid=False, missing_links=[record_id])

        trail: list[LinkVerification] = []
        missing_links: list[str] = []
        visited: set[str] = set()
        current: Optional[ProvenanceRecord] = record

        while current is not None:
            if current.id in visited:
                logger.warning(f"Cycle detected at {current.id} while verifying {record_id}")
                missing_links.append(current.id)
                break
            visited.add(current.id)

            link = self._verify_link(current)
            trail.append(link)

            if not link.valid:
                logger.warning(
                    "Integrity violation at {link_id} in chain of {record_id}: {fields}",
                    link_id=current.id,
                    record_id=record_id,
                    fields=[v.field for v in link.violations],
                )
                return ChainVerification(
                    record_id=record_id,
                    valid=False,
                    trail=trail,
                    missing_links=[current.id],
                )

            prior_id = current.prior_link
            if prior_id is None:
                break

            predecessor = self.store.get_by_id(prior_id)
            if predecessor is None:
                logger.warning(f"Missing link {prior_id} in chain of {record_id}")
                missing_links.append(prior_id)
                break
            current = predecessor

        return ChainVerification(
            record_id=record_id,
            valid=not missing_links,
            trail=trail,
            missing_links=missing_links,
        )

    def _verify_link(self, record: ProvenanceRecord) -> LinkVerification:
        violations: list[IntegrityViolation] = []

        computed_hash = content_hash_for(record)
        hash_valid = computed_hash == record.content_hash
        if not hash_valid:
            violations.append(IntegrityViolation(
                record_id=record.id,
                field="content_hash",
                expected=record.content_hash,
                actual=computed_hash,
            ))

        signature_valid = self.signer.verify(signature_data(record), record.signature)
        if not signature_valid:
            violations.append(IntegrityViolation(
                record_id=record.id,
                field="signature",
                expected=record.signature,
                actual=self.signer.sign(signature_data(record)),
            ))

        durable_resolved = bool(record.durable_ref) and self.store.object_store.resolves(record.durable_ref)
        if not durable_resolved:
            violations.append(IntegrityViolation(
                record_id=record.id,
                field="durable_ref",
                expected=record.durable_ref,
                actual="",
            ))

        return LinkVerification(
            record_id=record.id,
            durable_ref=record.durable_ref,
            content_hash=record.content_hash,
            computed_hash=computed_hash,
            hash_valid=hash_valid,
            signature_valid=signature_valid,
            durable_resolved=durable_resolved,
            violations=violations,
        )

    async def audit_record(self, record_id: str) -> AuditResult:
        """
        Deep re-verification against durable storage.

        Fetches the uploaded payload and compares its digest with the stored
        content hash. Absent records raise RecordNotFound.
        """
        record = self.store.require(record_id)

        try:
            data = await self.store.object_store.fetch(record.durable_ref)
        except DataWeaveError as e:
            logger.warning(f"Audit fetch failed for {record_id}: {e}")
            return AuditResult(
                record_id=record_id,
                durable_ref=record.durable_ref,
                fetched=False,
                error=str(e),
            )

        payload_hash = sha256_hex(data)
        matches = payload_hash == record.content_hash
        if not matches:
            logger.warning(f"Durable payload of {record_id} does not match its content hash")

        return AuditResult(
            record_id=record_id,
            durable_ref=record.durable_ref,
            fetched=True,
            payload_hash=payload_hash,
            matches=matches,
        )
