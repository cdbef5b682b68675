"""
Integration tests for the miner run pipeline

A run flows through record creation, proof attestation, chain linking and
verification end to end.
"""

import pytest

from dataweave.core.models import RecordFilter, RecordKind
from dataweave.oracle.proof_oracle import SimulatedProofOracle
from dataweave.pipeline.miner_run import DEFAULT_MINER_CONFIGS, MinerRunPipeline
from dataweave.provenance.query import QueryEngine
from dataweave.provenance.record_store import RecordStore
from dataweave.provenance.verifier import ChainVerifier
from dataweave.storage.object_store import InMemoryObjectStore


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore(latency=0)


@pytest.fixture
def store(object_store: InMemoryObjectStore) -> RecordStore:
    return RecordStore(object_store)


@pytest.fixture
def pipeline(store: RecordStore) -> MinerRunPipeline:
    return MinerRunPipeline(store, SimulatedProofOracle(success_rate=1.0, seed=1), seed=1)


async def collect(pipeline: MinerRunPipeline, *args, **kwargs) -> list:
    return [update async for update in pipeline.run(*args, **kwargs)]


class TestMinerRun:
    """End-to-end run recording"""

    @pytest.mark.asyncio
    async def test_stages_in_order(self, pipeline: MinerRunPipeline) -> None:
        updates = await collect(pipeline, DEFAULT_MINER_CONFIGS[0], ["hello"], "inference")

        assert [u.stage for u in updates] == ["compute", "proof", "reasoning", "complete"]
        assert len({u.run_id for u in updates}) == 1

    @pytest.mark.asyncio
    async def test_run_forms_verifiable_chain(self, store: RecordStore, pipeline: MinerRunPipeline) -> None:
        config = DEFAULT_MINER_CONFIGS[1]

        updates = await collect(pipeline, config, ["a", "b"])
        run = pipeline.get_run(updates[0].run_id)

        assert run.status == "completed"
        assert run.proof_verified is True
        assert len(run.record_ids) == 3

        kinds = [store.require(i).kind for i in run.record_ids]
        assert kinds == [RecordKind.COMPUTE, RecordKind.PROOF, RecordKind.REASONING]

        result = ChainVerifier(store).verify_chain(run.record_ids[-1])
        assert result.valid is True
        assert [link.record_id for link in result.trail] == list(reversed(run.record_ids))

    @pytest.mark.asyncio
    async def test_consecutive_runs_extend_chain(self, store: RecordStore, pipeline: MinerRunPipeline) -> None:
        config = DEFAULT_MINER_CONFIGS[2]

        await collect(pipeline, config, ["x"])
        await collect(pipeline, config, ["y"])

        page = QueryEngine(store).query(RecordFilter(origin_id=config.miner_id))
        assert page.total == 6
        head = store.chain_head(config.miner_id)
        assert len(ChainVerifier(store).verify_chain(head).trail) == 6

    @pytest.mark.asyncio
    async def test_compute_record_carries_model(self, store: RecordStore, pipeline: MinerRunPipeline) -> None:
        config = DEFAULT_MINER_CONFIGS[0]

        updates = await collect(pipeline, config, ["q"], "analysis")

        compute = store.require(updates[0].record_id)
        assert compute.metadata.model_version == config.model_version
        assert compute.metadata.computation_type == "analysis"
        assert config.model_name in compute.metadata.tags

    @pytest.mark.asyncio
    async def test_storage_failure_ends_run(
        self,
        store: RecordStore,
        object_store: InMemoryObjectStore,
        pipeline: MinerRunPipeline,
    ) -> None:
        object_store.fail_next()

        updates = await collect(pipeline, DEFAULT_MINER_CONFIGS[0], ["hello"])

        assert [u.stage for u in updates] == ["failed"]
        run = pipeline.get_run(updates[0].run_id)
        assert run.status == "failed"
        assert run.error
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_stats(self, object_store: InMemoryObjectStore, pipeline: MinerRunPipeline) -> None:
        await collect(pipeline, DEFAULT_MINER_CONFIGS[0], ["a"])
        object_store.fail_next()
        await collect(pipeline, DEFAULT_MINER_CONFIGS[0], ["b"])

        stats = pipeline.get_stats()

        assert stats["total_runs"] == 2
        assert stats["completed_runs"] == 1
        assert stats["failed_runs"] == 1
        assert len(pipeline.completed_runs(limit=1)) == 1

    @pytest.mark.asyncio
    async def test_proof_time_recorded(self, pipeline: MinerRunPipeline) -> None:
        updates = await collect(pipeline, DEFAULT_MINER_CONFIGS[0], ["a"])

        run = pipeline.get_run(updates[0].run_id)
        assert run.proof_time_ms is not None
        assert pipeline.get_stats()["average_proof_ms"] == run.proof_time_ms

    def test_stats_without_runs(self, pipeline: MinerRunPipeline) -> None:
        stats = pipeline.get_stats()

        assert stats["total_runs"] == 0
        assert stats["average_run_ms"] == 0.0
        assert stats["average_proof_ms"] == 0.0


class TestBatchRuns:
    """Simulated runs with generated inputs"""

    @pytest.mark.asyncio
    async def test_simulate(self, store: RecordStore, pipeline: MinerRunPipeline) -> None:
        run = await pipeline.simulate(DEFAULT_MINER_CONFIGS[0], input_count=3)

        assert run.status == "completed"
        assert len(run.inputs) == 3
        assert all(len(i) == 10 and i.isalnum() for i in run.inputs)
        assert run.computation_type in DEFAULT_MINER_CONFIGS[0].computation_types
        assert len(store) == 3

    @pytest.mark.asyncio
    async def test_run_batch(self, store: RecordStore, pipeline: MinerRunPipeline) -> None:
        runs = await pipeline.run_batch(count=6)

        assert len(runs) == 6
        assert all(run.status == "completed" for run in runs)
        assert all(1 <= len(run.inputs) <= 5 for run in runs)
        assert {run.miner_id for run in runs} <= {c.miner_id for c in DEFAULT_MINER_CONFIGS}
        assert len(store) == 18

        stats = pipeline.get_stats()
        assert stats["total_runs"] == stats["completed_runs"] == 6
        assert stats["average_proof_ms"] >= 0.0

    @pytest.mark.asyncio
    async def test_run_batch_chains_stay_valid(self, store: RecordStore, pipeline: MinerRunPipeline) -> None:
        await pipeline.run_batch(count=5)

        verifier = ChainVerifier(store)
        for miner_id, ids in store.indexes.by_origin.items():
            result = verifier.verify_chain(store.chain_head(miner_id))
            assert result.valid is True
            assert len(result.trail) == len(ids)

    @pytest.mark.asyncio
    async def test_run_batch_custom_configs(self, pipeline: MinerRunPipeline) -> None:
        config = DEFAULT_MINER_CONFIGS[2].model_copy(update={"miner_id": "miner-local"})

        runs = await pipeline.run_batch(count=2, configs=[config])

        assert [run.miner_id for run in runs] == ["miner-local", "miner-local"]

    @pytest.mark.asyncio
    async def test_seeded_batches_reproducible(self) -> None:
        def build() -> MinerRunPipeline:
            return MinerRunPipeline(
                RecordStore(InMemoryObjectStore(latency=0)),
                SimulatedProofOracle(success_rate=1.0, seed=3),
                seed=3,
            )

        first = await build().run_batch(count=4)
        second = await build().run_batch(count=4)

        assert [(r.miner_id, r.inputs) for r in first] == [(r.miner_id, r.inputs) for r in second]
