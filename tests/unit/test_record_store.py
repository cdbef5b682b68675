"""Unit tests for the record store"""

import asyncio
import itertools

import pytest

from dataweave.core.errors import InvalidRequest, InvalidSnapshot, RecordNotFound, StorageUnavailable
from dataweave.core.models import RecordKind, RecordMetadata
from dataweave.provenance.hashing import HmacSigner, content_hash_for, signature_data
from dataweave.provenance.query import QueryEngine
from dataweave.provenance.record_store import RecordStore
from dataweave.storage.object_store import InMemoryObjectStore


METADATA = {
    "computation_type": "inference",
    "inputs": ["prompt"],
    "outputs": ["answer"],
    "tags": ["gpu"],
}


@pytest.fixture
def object_store() -> InMemoryObjectStore:
    return InMemoryObjectStore(latency=0)


@pytest.fixture
def store(object_store: InMemoryObjectStore) -> RecordStore:
    """Store with a deterministic clock"""
    return RecordStore(object_store, clock=itertools.count(1_000).__next__)


class TestCreate:
    """Test the creation path"""

    @pytest.mark.asyncio
    async def test_first_record_has_no_prior_links(self, store: RecordStore) -> None:
        """First record for an origin starts its chain"""
        descriptor = await store.create(RecordKind.COMPUTE, "m1", METADATA, {"result": 42})

        record = store.get_by_id(descriptor.record_id)
        assert record is not None
        assert record.prior_links == []
        assert record.kind == RecordKind.COMPUTE
        assert record.origin_id == "m1"
        assert record.payload == {"result": 42}
        assert record.schema_version == "1.0.0"
        assert descriptor.prior_link is None

    @pytest.mark.asyncio
    async def test_second_record_links_to_first(self, store: RecordStore) -> None:
        a = await store.create(RecordKind.COMPUTE, "m1", METADATA)
        b = await store.create(RecordKind.PROOF, "m1", METADATA)

        record = store.get_by_id(b.record_id)
        assert record.prior_links[0] == a.record_id
        assert b.prior_link == a.record_id

    @pytest.mark.asyncio
    async def test_prior_links_most_recent_first(self, store: RecordStore) -> None:
        ids = [(await store.create(RecordKind.COMPUTE, "m1", METADATA)).record_id for _ in range(3)]
        d = await store.create(RecordKind.COMPUTE, "m1", METADATA)

        assert store.get_by_id(d.record_id).prior_links == list(reversed(ids))

    @pytest.mark.asyncio
    async def test_chains_are_per_origin(self, store: RecordStore) -> None:
        await store.create(RecordKind.COMPUTE, "m1", METADATA)
        c = await store.create(RecordKind.COMPUTE, "m2", METADATA)

        assert store.get_by_id(c.record_id).prior_links == []

    @pytest.mark.asyncio
    async def test_string_kind_accepted(self, store: RecordStore) -> None:
        descriptor = await store.create("reasoning", "m1", METADATA)

        assert descriptor.kind == RecordKind.REASONING

    @pytest.mark.asyncio
    async def test_hash_and_signature_recomputable(self, store: RecordStore) -> None:
        descriptor = await store.create(RecordKind.COMPUTE, "m1", METADATA, {"x": [1, 2]})
        record = store.get_by_id(descriptor.record_id)

        assert content_hash_for(record) == record.content_hash == descriptor.content_hash
        assert HmacSigner().verify(signature_data(record), record.signature)

    @pytest.mark.asyncio
    async def test_payload_uploaded(
        self,
        store: RecordStore,
        object_store: InMemoryObjectStore,
    ) -> None:
        """Durable store holds the canonical document under the record's ref"""
        descriptor = await store.create(RecordKind.COMPUTE, "m1", METADATA)

        assert object_store.resolves(descriptor.durable_ref)
        tags = await object_store.get_tags(descriptor.durable_ref)
        assert tags["Record-ID"] == descriptor.record_id
        assert tags["Miner-ID"] == "m1"
        assert tags["Provenance-Type"] == "compute"

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, store: RecordStore) -> None:
        descriptors = [await store.create(RecordKind.COMPUTE, f"m{i % 3}", METADATA) for i in range(50)]

        ids = [d.record_id for d in descriptors]
        assert len(set(ids)) == len(ids)
        assert all(i.startswith("prov-") for i in ids)

    @pytest.mark.asyncio
    async def test_created_at_monotonic_with_backwards_clock(self, object_store: InMemoryObjectStore) -> None:
        """A clock stepping backwards never produces decreasing timestamps"""
        ticks = iter([500, 400, 600, 100])
        store = RecordStore(object_store, clock=lambda: next(ticks))

        stamps = [(await store.create(RecordKind.COMPUTE, "m1", METADATA)).created_at for _ in range(4)]

        assert stamps == [500, 500, 600, 600]

    @pytest.mark.asyncio
    async def test_chain_monotonicity(self, store: RecordStore) -> None:
        for i in range(12):
            await store.create(RecordKind.COMPUTE, f"m{i % 2}", METADATA)

        for record in store.records():
            if record.prior_links:
                predecessor = store.get_by_id(record.prior_links[0])
                assert predecessor.created_at <= record.created_at
                assert record.prior_links[0] != record.id


class TestCreateValidation:
    """Invalid requests fail fast without touching storage"""

    @pytest.mark.asyncio
    async def test_missing_computation_type(
        self,
        store: RecordStore,
        object_store: InMemoryObjectStore,
    ) -> None:
        with pytest.raises(InvalidRequest) as exc_info:
            await store.create(RecordKind.COMPUTE, "m1", {"inputs": [], "outputs": []})

        assert exc_info.value.field == "metadata.computation_type"
        assert len(store) == 0
        assert object_store.upload_count == 0

    @pytest.mark.asyncio
    async def test_missing_outputs(self, store: RecordStore) -> None:
        with pytest.raises(InvalidRequest):
            await store.create(RecordKind.COMPUTE, "m1", {"computation_type": "x", "inputs": []})

    @pytest.mark.asyncio
    async def test_empty_inputs_and_outputs_allowed(self, store: RecordStore) -> None:
        descriptor = await store.create(
            RecordKind.COMPUTE, "m1", {"computation_type": "x", "inputs": [], "outputs": []}
        )

        assert descriptor.record_id in store

    @pytest.mark.asyncio
    async def test_unknown_kind(self, store: RecordStore) -> None:
        with pytest.raises(InvalidRequest) as exc_info:
            await store.create("training", "m1", METADATA)

        assert exc_info.value.field == "kind"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("origin_id", ["", "   "])
    async def test_empty_origin(self, store: RecordStore, origin_id: str) -> None:
        with pytest.raises(InvalidRequest):
            await store.create(RecordKind.COMPUTE, origin_id, METADATA)

    @pytest.mark.asyncio
    async def test_missing_metadata(self, store: RecordStore) -> None:
        with pytest.raises(InvalidRequest):
            await store.create(RecordKind.COMPUTE, "m1", None)

    @pytest.mark.asyncio
    async def test_non_json_payload(self, store: RecordStore) -> None:
        with pytest.raises(InvalidRequest):
            await store.create(RecordKind.COMPUTE, "m1", METADATA, {"bad": float("nan")})
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_payload_must_be_object(self, store: RecordStore) -> None:
        with pytest.raises(InvalidRequest):
            await store.create(RecordKind.COMPUTE, "m1", METADATA, ["not", "an", "object"])

    @pytest.mark.asyncio
    async def test_metadata_model_accepted(self, store: RecordStore) -> None:
        metadata = RecordMetadata(computation_type="x", inputs=["a"], outputs=[])

        descriptor = await store.create(RecordKind.COMPUTE, "m1", metadata)

        assert store.get_by_id(descriptor.record_id).metadata == metadata

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tags", [["a", 1], [["nested"]], "gpu"])
    async def test_malformed_tags(
        self,
        store: RecordStore,
        object_store: InMemoryObjectStore,
        tags,
    ) -> None:
        """Non-string tags are a request error, not a crash"""
        with pytest.raises(InvalidRequest) as exc_info:
            await store.create(RecordKind.COMPUTE, "m1", {**METADATA, "tags": tags})

        assert exc_info.value.field.startswith("metadata.tags")
        assert len(store) == 0
        assert object_store.upload_count == 0


class TestCallerMutation:
    """Stored records are detached from the caller's objects"""

    @pytest.mark.asyncio
    async def test_nested_payload_mutation(self, store: RecordStore) -> None:
        payload = {"result": {"scores": [1, 2]}, "label": "cat"}
        descriptor = await store.create(RecordKind.COMPUTE, "m1", METADATA, payload)

        payload["result"]["scores"].append(3)
        payload["label"] = "dog"

        record = store.get_by_id(descriptor.record_id)
        assert record.payload == {"result": {"scores": [1, 2]}, "label": "cat"}
        assert content_hash_for(record) == record.content_hash

    @pytest.mark.asyncio
    async def test_metadata_mapping_mutation(self, store: RecordStore) -> None:
        metadata = {**METADATA, "inputs": ["prompt"], "custom_data": {"params": {"k": 1}}}
        descriptor = await store.create(RecordKind.COMPUTE, "m1", metadata)

        metadata["inputs"].append("injected")
        metadata["custom_data"]["params"]["k"] = 99

        record = store.get_by_id(descriptor.record_id)
        assert record.metadata.inputs == ["prompt"]
        assert record.metadata.custom_data == {"params": {"k": 1}}
        assert content_hash_for(record) == record.content_hash

    @pytest.mark.asyncio
    async def test_metadata_model_mutation(self, store: RecordStore) -> None:
        """A frozen model still holds mutable containers"""
        metadata = RecordMetadata(
            computation_type="x",
            inputs=["a"],
            outputs=[],
            custom_data={"params": {"k": 1}},
        )
        descriptor = await store.create(RecordKind.COMPUTE, "m1", metadata)

        metadata.inputs.append("b")
        metadata.custom_data["params"]["k"] = 2

        record = store.get_by_id(descriptor.record_id)
        assert record.metadata.inputs == ["a"]
        assert record.metadata.custom_data == {"params": {"k": 1}}
        assert content_hash_for(record) == record.content_hash


class TestStorageFailures:
    """Durable upload failures leave no trace"""

    @pytest.mark.asyncio
    async def test_upload_failure_inserts_nothing(
        self,
        store: RecordStore,
        object_store: InMemoryObjectStore,
    ) -> None:
        object_store.fail_next()

        with pytest.raises(StorageUnavailable):
            await store.create(RecordKind.COMPUTE, "m1", METADATA)

        assert len(store) == 0
        assert store.chain_head("m1") is None
        assert store.indexes.ids_for_kind(RecordKind.COMPUTE) == []

    @pytest.mark.asyncio
    async def test_retry_after_failure_mints_new_id(
        self,
        store: RecordStore,
        object_store: InMemoryObjectStore,
    ) -> None:
        first = await store.create(RecordKind.COMPUTE, "m1", METADATA)
        object_store.fail_next()
        with pytest.raises(StorageUnavailable):
            await store.create(RecordKind.COMPUTE, "m1", METADATA)

        retried = await store.create(RecordKind.COMPUTE, "m1", METADATA)

        assert retried.record_id != first.record_id
        assert retried.prior_link == first.record_id
        assert len(store) == 2

    @pytest.mark.asyncio
    async def test_upload_timeout(self) -> None:
        slow = InMemoryObjectStore(latency=1.0)
        store = RecordStore(slow, upload_timeout=0.01)

        with pytest.raises(StorageUnavailable):
            await store.create(RecordKind.COMPUTE, "m1", METADATA)

        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unexpected_upload_error_mapped(self, store: RecordStore) -> None:
        async def broken_upload(data, tags):
            raise ConnectionError("network down")

        store.object_store.upload = broken_upload

        with pytest.raises(StorageUnavailable, match="network down"):
            await store.create(RecordKind.COMPUTE, "m1", METADATA)


class TestConcurrency:
    """Visibility and per-origin serialization"""

    @pytest.mark.asyncio
    async def test_not_visible_before_upload_completes(self) -> None:
        store = RecordStore(InMemoryObjectStore(latency=0.05))
        engine = QueryEngine(store)

        task = asyncio.create_task(store.create(RecordKind.COMPUTE, "m1", METADATA))
        await asyncio.sleep(0.01)

        assert len(store) == 0
        assert engine.query().total == 0
        assert store.chain_head("m1") is None

        descriptor = await task
        assert store.get_by_id(descriptor.record_id) is not None
        assert engine.query().total == 1

    @pytest.mark.asyncio
    async def test_same_origin_creations_form_a_chain(self) -> None:
        """Concurrent creates for one origin never fork"""
        store = RecordStore(InMemoryObjectStore(latency=0.01))

        descriptors = await asyncio.gather(*[
            store.create(RecordKind.COMPUTE, "m1", METADATA) for _ in range(5)
        ])

        prior = [d.prior_link for d in descriptors]
        assert prior.count(None) == 1
        assert len(set(prior)) == 5

        ordered = store.indexes.ids_for_origin("m1")
        for previous_id, record_id in zip(ordered, ordered[1:]):
            assert store.get_by_id(record_id).prior_link == previous_id

    @pytest.mark.asyncio
    async def test_different_origins_proceed_in_parallel(self) -> None:
        store = RecordStore(InMemoryObjectStore(latency=0.05))

        loop = asyncio.get_running_loop()
        started = loop.time()
        await asyncio.gather(*[
            store.create(RecordKind.COMPUTE, f"m{i}", METADATA) for i in range(5)
        ])
        elapsed = loop.time() - started

        assert len(store) == 5
        assert elapsed < 0.2

    @pytest.mark.asyncio
    async def test_clear_during_upload_discards_record(self) -> None:
        store = RecordStore(InMemoryObjectStore(latency=0.05))

        task = asyncio.create_task(store.create(RecordKind.COMPUTE, "m1", METADATA))
        await asyncio.sleep(0.01)
        store.clear()

        with pytest.raises(StorageUnavailable):
            await task
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_clear_drops_idle_locks(self, store: RecordStore) -> None:
        for i in range(5):
            await store.create(RecordKind.COMPUTE, f"m{i}", METADATA)
        assert len(store._origin_locks) == 5

        store.clear()

        assert store._origin_locks == {}

    @pytest.mark.asyncio
    async def test_import_drops_idle_locks(self, store: RecordStore) -> None:
        await store.create(RecordKind.COMPUTE, "m1", METADATA)
        snapshot = store.export_data()
        await store.create(RecordKind.COMPUTE, "m2", METADATA)

        store.import_data(snapshot)

        assert store._origin_locks == {}

    @pytest.mark.asyncio
    async def test_clear_keeps_held_lock(self) -> None:
        """Creates queued behind an in-flight upload stay serialized"""
        store = RecordStore(InMemoryObjectStore(latency=0.05))

        first = asyncio.create_task(store.create(RecordKind.COMPUTE, "m1", METADATA))
        await asyncio.sleep(0.01)
        store.clear()

        assert list(store._origin_locks) == ["m1"]
        with pytest.raises(StorageUnavailable):
            await first

        descriptors = await asyncio.gather(*[
            store.create(RecordKind.COMPUTE, "m1", METADATA) for _ in range(3)
        ])
        assert [d.prior_link for d in descriptors].count(None) == 1


class TestReads:
    @pytest.mark.asyncio
    async def test_get_by_id_absent(self, store: RecordStore) -> None:
        assert store.get_by_id("prov-missing") is None

    @pytest.mark.asyncio
    async def test_require_absent_raises(self, store: RecordStore) -> None:
        with pytest.raises(RecordNotFound):
            store.require("prov-missing")

    @pytest.mark.asyncio
    async def test_index_consistency(self, store: RecordStore) -> None:
        for i, kind in enumerate(list(RecordKind) * 4):
            await store.create(kind, f"m{i % 3}", METADATA)

        records = {r.id: r for r in store.records()}
        assert store.indexes.check_consistency(records) == []
        for record in records.values():
            assert record.id in store.indexes.ids_for_origin(record.origin_id)
            assert record.id in store.indexes.ids_for_kind(record.kind)

    @pytest.mark.asyncio
    async def test_statistics(self, store: RecordStore) -> None:
        await store.create(RecordKind.COMPUTE, "m1", METADATA)
        await store.create(RecordKind.PROOF, "m1", METADATA)
        await store.create(RecordKind.REASONING, "m2", METADATA)

        stats = store.get_statistics()

        assert stats.total_records == 3
        assert stats.compute_records == 1
        assert stats.proof_records == 1
        assert stats.reasoning_records == 1
        assert stats.unique_origins == 2
        assert stats.records_by_origin == {"m1": 2, "m2": 1}

    @pytest.mark.asyncio
    async def test_recent_records(self, store: RecordStore) -> None:
        ids = [(await store.create(RecordKind.COMPUTE, "m1", METADATA)).record_id for _ in range(4)]

        recent = store.recent_records(limit=2)

        assert [r.id for r in recent] == [ids[3], ids[2]]


class TestExportImport:
    """Administrative bulk operations"""

    @pytest.mark.asyncio
    async def test_round_trip(self, store: RecordStore, object_store: InMemoryObjectStore) -> None:
        for i in range(6):
            await store.create(list(RecordKind)[i % 3], f"m{i % 2}", METADATA)
        snapshot = store.export_data()
        before = QueryEngine(store).query()

        restored = RecordStore(object_store)
        count = restored.import_data(snapshot.model_dump(mode="json"))

        assert count == 6
        assert restored.records() == store.records()
        assert restored.indexes.snapshot() == store.indexes.snapshot()
        assert QueryEngine(restored).query() == before

    @pytest.mark.asyncio
    async def test_import_replaces_existing(self, store: RecordStore) -> None:
        await store.create(RecordKind.COMPUTE, "m1", METADATA)
        snapshot = store.export_data()
        await store.create(RecordKind.COMPUTE, "m2", METADATA)

        store.import_data(snapshot)

        assert len(store) == 1
        assert store.chain_head("m2") is None

    @pytest.mark.asyncio
    async def test_new_records_link_after_import(self, store: RecordStore, object_store: InMemoryObjectStore) -> None:
        a = await store.create(RecordKind.COMPUTE, "m1", METADATA)
        restored = RecordStore(object_store, clock=lambda: 0)
        restored.import_data(store.export_data())

        b = await restored.create(RecordKind.COMPUTE, "m1", METADATA)

        assert b.prior_link == a.record_id
        assert b.created_at >= a.created_at

    @pytest.mark.asyncio
    async def test_inconsistent_snapshot_rejected(self, store: RecordStore) -> None:
        await store.create(RecordKind.COMPUTE, "m1", METADATA)
        snapshot = store.export_data()
        snapshot.by_origin_index["m1"] = []

        target = RecordStore(InMemoryObjectStore(latency=0))
        await target.create(RecordKind.PROOF, "m9", METADATA)

        with pytest.raises(InvalidSnapshot):
            target.import_data(snapshot)
        assert len(target) == 1
        assert target.chain_head("m9") is not None

    @pytest.mark.asyncio
    async def test_reversed_origin_list_rejected(self, store: RecordStore) -> None:
        """A reordered chain would make the oldest record the head"""
        for _ in range(3):
            await store.create(RecordKind.COMPUTE, "m1", METADATA)
        snapshot = store.export_data()
        snapshot.by_origin_index["m1"].reverse()

        target = RecordStore(InMemoryObjectStore(latency=0))
        with pytest.raises(InvalidSnapshot) as exc_info:
            target.import_data(snapshot)

        assert any("follows" in problem for problem in exc_info.value.problems)
        assert len(target) == 0

    @pytest.mark.asyncio
    async def test_self_link_rejected(self, store: RecordStore) -> None:
        a = await store.create(RecordKind.COMPUTE, "m1", METADATA)
        snapshot = store.export_data()
        snapshot.records[0] = snapshot.records[0].model_copy(update={"prior_links": [a.record_id]})

        with pytest.raises(InvalidSnapshot) as exc_info:
            store.import_data(snapshot)

        assert exc_info.value.problems == [f"{a.record_id} links to itself"]
        assert store.get_by_id(a.record_id).prior_links == []

    @pytest.mark.asyncio
    async def test_forward_link_rejected(self, store: RecordStore) -> None:
        """The first record of an origin cannot point at a later one"""
        a = await store.create(RecordKind.COMPUTE, "m1", METADATA)
        b = await store.create(RecordKind.COMPUTE, "m1", METADATA)
        snapshot = store.export_data()
        snapshot.records = [
            r.model_copy(update={"prior_links": [b.record_id]}) if r.id == a.record_id else r
            for r in snapshot.records
        ]

        target = RecordStore(InMemoryObjectStore(latency=0))
        with pytest.raises(InvalidSnapshot):
            target.import_data(snapshot)

        assert len(target) == 0

    @pytest.mark.asyncio
    async def test_bad_kind_key_rejected(self, store: RecordStore) -> None:
        snapshot = store.export_data().model_dump(mode="json")
        snapshot["by_kind_index"]["training"] = []

        with pytest.raises(InvalidSnapshot):
            store.import_data(snapshot)

    @pytest.mark.asyncio
    async def test_clear(self, store: RecordStore) -> None:
        await store.create(RecordKind.COMPUTE, "m1", METADATA)

        store.clear()

        assert len(store) == 0
        assert store.get_statistics().total_records == 0
