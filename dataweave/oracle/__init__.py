"""Proof oracle collaborator and proof recording"""

from dataweave.oracle.proof_oracle import (
    BatchProofVerification,
    ProofAttestation,
    ProofOracle,
    ProofRecorder,
    ProofRequest,
    ProofVerification,
    SimulatedProofOracle,
)
