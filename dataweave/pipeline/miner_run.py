"""Miner run pipeline: chronicles one simulated agent run as a record chain"""

import asyncio
import json
import random
import string
import time
from typing import Any, AsyncIterator, Optional
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from dataweave.core.errors import CreationError
from dataweave.core.models import RecordKind, RecordMetadata
from dataweave.oracle.proof_oracle import ProofOracle, ProofRecorder, ProofRequest
from dataweave.provenance.record_store import RecordStore


class MinerConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    miner_id: str
    model_name: str
    model_version: str
    computation_types: list[str]


DEFAULT_MINER_CONFIGS = [
    MinerConfig(
        miner_id="miner-001",
        model_name="GPT-4",
        model_version="4.0-turbo",
        computation_types=["inference", "reasoning", "analysis"],
    ),
    MinerConfig(
        miner_id="miner-002",
        model_name="Claude-3",
        model_version="3.5-sonnet",
        computation_types=["reasoning", "writing", "analysis"],
    ),
    MinerConfig(
        miner_id="miner-003",
        model_name="Llama-2",
        model_version="70b-chat",
        computation_types=["inference", "reasoning", "code"],
    ),
]


class MinerRunLog(BaseModel):
    """History entry for one run"""

    run_id: str
    miner_id: str
    computation_type: str
    started_at: int
    ended_at: int = 0
    inputs: list[str] = Field(default_factory=list)
    outputs: list[dict[str, Any]] = Field(default_factory=list)
    reasoning: str = ""
    proof_verified: Optional[bool] = None
    proof_time_ms: Optional[int] = None
    record_ids: list[str] = Field(default_factory=list)
    status: str = "pending"  # pending | completed | failed
    error: Optional[str] = None


class RunUpdate:
    """Progressive update from pipeline stages"""

    def __init__(
        self,
        stage: str,
        run_id: str,
        record_id: Optional[str] = None,
        detail: str = "",
    ):
        self.stage = stage
        self.run_id = run_id
        self.record_id = record_id
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "run_id": self.run_id,
            "record_id": self.record_id,
            "detail": self.detail,
        }


class MinerRunPipeline:
    """
    Async 3-stage run pipeline.

    Stage 1: Compute - simulated execution, Compute record
    Stage 2: Proof - oracle attestation, Proof record
    Stage 3: Reasoning - chain-of-thought summary, Reasoning record

    All three records belong to the miner, so one run extends its chain by
    three links. A CreationError at any stage ends the run as failed.
    """

    def __init__(
        self,
        store: RecordStore,
        oracle: ProofOracle,
        seed: Optional[int] = None,
    ) -> None:
        self.store = store
        self.proof_recorder = ProofRecorder(store, oracle)
        self._rng = random.Random(seed)
        self.runs: dict[str, MinerRunLog] = {}
        logger.info("MinerRunPipeline initialized (3-stage async)")

    async def run(
        self,
        config: MinerConfig,
        inputs: list[str],
        computation_type: Optional[str] = None,
    ) -> AsyncIterator[RunUpdate]:
        """Execute a run, yielding an update as each stage completes"""
        computation_type = computation_type or self._rng.choice(config.computation_types)
        run = MinerRunLog(
            run_id=f"run-{uuid4().hex[:12]}",
            miner_id=config.miner_id,
            computation_type=computation_type,
            started_at=int(time.time() * 1000),
            inputs=[str(i) for i in inputs],
        )
        self.runs[run.run_id] = run

        logger.info(
            "Miner run started: {run_id} miner={miner} type={ctype}",
            run_id=run.run_id,
            miner=config.miner_id,
            ctype=computation_type,
        )

        try:
            # Stage 1: Compute
            run.outputs = self._generate_outputs(computation_type, run.inputs)
            run.reasoning = self._generate_reasoning(run.outputs, computation_type)
            compute = await self.store.create(
                RecordKind.COMPUTE,
                config.miner_id,
                RecordMetadata(
                    computation_type=computation_type,
                    model_version=config.model_version,
                    inputs=run.inputs,
                    outputs=[json.dumps(o, sort_keys=True) for o in run.outputs],
                    reasoning=run.reasoning,
                    tags=[computation_type, config.model_name],
                ),
                {
                    "run_id": run.run_id,
                    "inputs": run.inputs,
                    "outputs": run.outputs,
                    "reasoning": run.reasoning,
                },
            )
            run.record_ids.append(compute.record_id)
            yield RunUpdate("compute", run.run_id, compute.record_id, f"{len(run.outputs)} outputs")

            # Stage 2: Proof
            attestation, proof = await self.proof_recorder.record(
                ProofRequest(
                    computation_type=computation_type,
                    inputs=run.inputs,
                    outputs=run.outputs,
                    reasoning=run.reasoning,
                ),
                origin_id=config.miner_id,
            )
            run.proof_verified = attestation.verified
            run.proof_time_ms = attestation.verification_time_ms
            run.record_ids.append(proof.record_id)
            yield RunUpdate("proof", run.run_id, proof.record_id, f"verified={attestation.verified}")

            # Stage 3: Reasoning
            conclusion = f"{computation_type} complete for {len(run.inputs)} input(s)"
            reasoning = await self.store.create(
                RecordKind.REASONING,
                config.miner_id,
                RecordMetadata(
                    computation_type="reasoning",
                    inputs=run.inputs,
                    outputs=[conclusion],
                    reasoning=run.reasoning,
                    tags=["reasoning", "chain-of-thought"],
                    custom_data={"run_id": run.run_id, "steps": len(run.outputs)},
                ),
                {"run_id": run.run_id, "conclusion": conclusion, "reasoning": run.reasoning},
            )
            run.record_ids.append(reasoning.record_id)
            yield RunUpdate("reasoning", run.run_id, reasoning.record_id)

        except CreationError as e:
            run.status = "failed"
            run.error = str(e)
            run.ended_at = int(time.time() * 1000)
            logger.warning(f"Miner run {run.run_id} failed: {e}")
            yield RunUpdate("failed", run.run_id, detail=str(e))
            return

        run.status = "completed"
        run.ended_at = int(time.time() * 1000)
        logger.info(
            "Miner run completed: {run_id} ({count} records)",
            run_id=run.run_id,
            count=len(run.record_ids),
        )
        yield RunUpdate("complete", run.run_id, run.record_ids[-1])

    async def simulate(self, config: MinerConfig, input_count: int = 5) -> MinerRunLog:
        """Run once with random inputs and return the finished run log"""
        inputs = [
            "".join(self._rng.choices(string.ascii_lowercase + string.digits, k=10))
            for _ in range(input_count)
        ]

        run_id = None
        async for update in self.run(config, inputs):
            run_id = update.run_id
        return self.runs[run_id]

    async def run_batch(
        self,
        count: int = 10,
        configs: Optional[list[MinerConfig]] = None,
        delay: float = 0.0,
    ) -> list[MinerRunLog]:
        """Simulate `count` runs, each for a random miner with 1-5 inputs"""
        configs = configs or DEFAULT_MINER_CONFIGS
        runs = []

        for i in range(count):
            config = self._rng.choice(configs)
            runs.append(await self.simulate(config, self._rng.randint(1, 5)))
            if delay and i < count - 1:
                await asyncio.sleep(delay)

        completed = sum(1 for r in runs if r.status == "completed")
        logger.info(f"Batch simulation finished: {completed}/{count} runs completed")
        return runs

    def _generate_outputs(self, computation_type: str, inputs: list[str]) -> list[dict[str, Any]]:
        rng = self._rng
        if computation_type == "inference":
            return [
                {"input": i, "prediction": f"label-{rng.randrange(1000)}",
                 "confidence": round(rng.uniform(0.7, 1.0), 3)}
                for i in inputs
            ]
        if computation_type == "reasoning":
            return [
                {"conclusion": f"Reasoned conclusion for: {i}", "steps": rng.randint(3, 7)}
                for i in inputs
            ]
        if computation_type == "analysis":
            return [
                {"input": i, "sentiment": rng.choice(["positive", "neutral", "negative"]),
                 "entities": rng.randint(1, 10)}
                for i in inputs
            ]
        if computation_type == "writing":
            return [
                {"content": f"Generated content based on: {i}", "word_count": rng.randint(100, 300)}
                for i in inputs
            ]
        if computation_type == "code":
            return [
                {"code": f"# Generated code for: {i}\ndef solution():\n    return True\n",
                 "language": rng.choice(["python", "javascript", "rust"])}
                for i in inputs
            ]
        return [{"result": f"Result for: {i}"} for i in inputs]

    @staticmethod
    def _generate_reasoning(outputs: list[dict[str, Any]], computation_type: str) -> str:
        findings = "; ".join(json.dumps(o, sort_keys=True)[:50] for o in outputs)
        return f"Analyzed {len(outputs)} inputs using {computation_type}. Key findings: {findings}"

    def get_run(self, run_id: str) -> Optional[MinerRunLog]:
        return self.runs.get(run_id)

    def completed_runs(self, limit: Optional[int] = None) -> list[MinerRunLog]:
        finished = [r for r in self.runs.values() if r.status != "pending"]
        finished.sort(key=lambda r: r.ended_at, reverse=True)
        return finished[:limit] if limit else finished

    def get_stats(self) -> dict[str, Any]:
        completed = [r for r in self.runs.values() if r.status == "completed"]
        failed = [r for r in self.runs.values() if r.status == "failed"]
        proof_times = [r.proof_time_ms for r in completed if r.proof_time_ms is not None]
        return {
            "total_runs": len(self.runs),
            "completed_runs": len(completed),
            "failed_runs": len(failed),
            "average_run_ms": (
                sum(r.ended_at - r.started_at for r in completed) / len(completed)
                if completed
                else 0.0
            ),
            "average_proof_ms": sum(proof_times) / len(proof_times) if proof_times else 0.0,
        }
