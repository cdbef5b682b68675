"""
Proof Oracle

External collaborator that attests whether a computation's proof verified.
The simulated oracle produces Groth16-shaped data derived from the request
digest and a random verification outcome; it is NOT cryptographic and only
exists so Proof-kind records carry a realistic attestation.
"""

import asyncio
import hashlib
import json
import random
import time
from abc import ABC, abstractmethod
from typing import Any, Optional
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, Field, computed_field

from dataweave.core.config import settings
from dataweave.core.models import RecordDescriptor, RecordKind, RecordMetadata
from dataweave.provenance.record_store import RecordStore


class ProofRequest(BaseModel):
    """Computation to be attested"""

    computation_type: str = Field(min_length=1)
    inputs: list[Any] = Field(default_factory=list)
    outputs: list[Any] = Field(default_factory=list)
    reasoning: str = ""


class ProofAttestation(BaseModel):
    proof_id: str
    proof_data: dict[str, Any]
    public_inputs: list[str]
    circuit_hash: str
    verified: bool
    verification_time_ms: int


class ProofVerification(BaseModel):
    """Outcome of re-checking a previously issued attestation"""

    proof_id: str
    structure_valid: bool
    consistent: bool
    verified: bool

    @computed_field  # type: ignore[misc]
    @property
    def valid(self) -> bool:
        return self.structure_valid and self.consistent and self.verified


class BatchProofVerification(BaseModel):
    results: list[ProofVerification] = Field(default_factory=list)
    valid_ids: list[str] = Field(default_factory=list)
    invalid_ids: list[str] = Field(default_factory=list)


def proof_structure_valid(proof_data: dict[str, Any]) -> bool:
    """Groth16 shape check: a and c are pairs, b is present"""
    proof = proof_data.get("proof")
    if not isinstance(proof, dict):
        return False
    a, b, c = proof.get("a"), proof.get("b"), proof.get("c")
    if not all(isinstance(part, list) for part in (a, b, c)):
        return False
    return len(a) == 2 and len(c) == 2


class ProofOracle(ABC):
    """Returns an opaque verified/not-verified outcome for a computation"""

    @abstractmethod
    async def attest(self, request: ProofRequest) -> ProofAttestation:
        ...

    @abstractmethod
    async def verify(self, attestation: ProofAttestation) -> ProofVerification:
        """Re-check an attestation this oracle issued"""

    async def verify_batch(self, attestations: list[ProofAttestation]) -> BatchProofVerification:
        batch = BatchProofVerification()
        for attestation in attestations:
            result = await self.verify(attestation)
            batch.results.append(result)
            if result.valid:
                batch.valid_ids.append(attestation.proof_id)
            else:
                batch.invalid_ids.append(attestation.proof_id)

        logger.info(f"Proof batch verified: {len(batch.valid_ids)}/{len(attestations)} valid")
        return batch


class SimulatedProofOracle(ProofOracle):
    """
    Structurally-shaped proof generator.

    `success_rate` is the probability that a proof is reported verified;
    `seed` makes outcomes reproducible; `delay` simulates prover time.
    """

    def __init__(
        self,
        success_rate: Optional[float] = None,
        seed: Optional[int] = None,
        delay: float = 0.0,
    ) -> None:
        self.success_rate = settings.PROOF_SUCCESS_RATE if success_rate is None else success_rate
        self.delay = delay
        self._rng = random.Random(seed)
        self.attestations_issued = 0
        self._outcomes: dict[str, bool] = {}
        logger.info(f"SimulatedProofOracle initialized (success_rate={self.success_rate:.2f})")

    async def attest(self, request: ProofRequest) -> ProofAttestation:
        start = time.perf_counter()
        if self.delay:
            await asyncio.sleep(self.delay)

        proof_data = self._proof_components(request)
        public_inputs = self._public_inputs(request)
        circuit_hash = f"circuit-{hashlib.sha256(request.computation_type.encode()).hexdigest()[:16]}"
        verified = self._rng.random() < self.success_rate

        self.attestations_issued += 1
        attestation = ProofAttestation(
            proof_id=f"proof-{uuid4().hex}",
            proof_data=proof_data,
            public_inputs=public_inputs,
            circuit_hash=circuit_hash,
            verified=verified,
            verification_time_ms=int((time.perf_counter() - start) * 1000),
        )
        self._outcomes[attestation.proof_id] = verified

        logger.debug(f"Proof {attestation.proof_id} attested: verified={verified}")
        return attestation

    async def verify(self, attestation: ProofAttestation) -> ProofVerification:
        """
        Re-verify against the outcome recorded at attestation time.

        Unknown proof ids never verify; a claimed outcome that differs from
        the recorded one is reported as inconsistent.
        """
        if self.delay:
            await asyncio.sleep(self.delay)

        recorded = self._outcomes.get(attestation.proof_id)
        result = ProofVerification(
            proof_id=attestation.proof_id,
            structure_valid=proof_structure_valid(attestation.proof_data),
            consistent=recorded is not None and recorded == attestation.verified,
            verified=bool(recorded),
        )

        if not result.valid:
            logger.warning(f"Proof {attestation.proof_id} failed re-verification")
        return result

    @staticmethod
    def _proof_components(request: ProofRequest) -> dict[str, Any]:
        seed = json.dumps(request.model_dump(), sort_keys=True, default=str).encode()
        # 512 hex chars of deterministic filler, split into curve points
        material = "".join(
            hashlib.sha256(seed + bytes([i])).hexdigest() for i in range(8)
        )

        def chunk(n: int) -> str:
            return f"0x{material[n * 64:(n + 1) * 64]}"

        return {
            "proof": {
                "a": [chunk(0), chunk(1)],
                "b": [[chunk(2), chunk(3)], [chunk(4), chunk(5)]],
                "c": [chunk(6), chunk(7)],
            },
            "protocol": "Groth16",
            "curve": "bn128",
        }

    @staticmethod
    def _public_inputs(request: ProofRequest) -> list[str]:
        def digest(value: Any) -> str:
            return "0x" + hashlib.sha256(json.dumps(value, default=str).encode()).hexdigest()

        return [
            digest(request.inputs),
            digest(request.outputs),
            "0x" + request.computation_type.encode().hex().ljust(64, "0")[:64],
        ]


class ProofRecorder:
    """Attests a computation and chronicles the outcome as a Proof record"""

    def __init__(
        self,
        store: RecordStore,
        oracle: ProofOracle,
        origin_id: Optional[str] = None,
    ) -> None:
        self.store = store
        self.oracle = oracle
        self.origin_id = origin_id or settings.PROOF_ORIGIN_ID

    async def record(
        self,
        request: ProofRequest,
        origin_id: Optional[str] = None,
    ) -> tuple[ProofAttestation, RecordDescriptor]:
        attestation = await self.oracle.attest(request)

        metadata = RecordMetadata(
            computation_type=request.computation_type,
            inputs=[str(i) for i in request.inputs],
            outputs=[str(o) for o in request.outputs],
            reasoning=request.reasoning or None,
            tags=["zk-proof", "verification", attestation.circuit_hash],
            custom_data={
                "verification_time_ms": attestation.verification_time_ms,
                "circuit_hash": attestation.circuit_hash,
                "has_valid_proof": attestation.verified,
            },
        )
        payload = {
            "proof_id": attestation.proof_id,
            "computation_type": request.computation_type,
            "circuit_hash": attestation.circuit_hash,
            "public_inputs": attestation.public_inputs,
            "verification_result": attestation.verified,
            "verification_time_ms": attestation.verification_time_ms,
        }

        descriptor = await self.store.create(
            RecordKind.PROOF,
            origin_id or self.origin_id,
            metadata,
            payload,
        )

        logger.info(
            "Proof {proof_id} recorded as {record_id} (verified={verified})",
            proof_id=attestation.proof_id,
            record_id=descriptor.record_id,
            verified=attestation.verified,
        )
        return attestation, descriptor
