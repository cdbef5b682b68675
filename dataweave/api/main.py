"""FastAPI application for the DataWeave provenance ledger"""

from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import FastAPI, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from dataweave.core.config import settings
from dataweave.core.errors import InvalidRequest, InvalidSnapshot, RecordNotFound, StorageUnavailable
from dataweave.core.logging import configure_logging
from dataweave.core.models import (
    AuditResult,
    ChainVerification,
    ExportSnapshot,
    LinkVerification,
    PageRequest,
    ProvenanceRecord,
    QueryPage,
    RecordDescriptor,
    RecordFilter,
    RecordKind,
    SortKey,
    SortOrder,
    StoreStatistics,
)
from dataweave.oracle.proof_oracle import (
    BatchProofVerification,
    ProofAttestation,
    ProofOracle,
    ProofRecorder,
    ProofRequest,
    SimulatedProofOracle,
)
from dataweave.pipeline.miner_run import (
    DEFAULT_MINER_CONFIGS,
    MinerConfig,
    MinerRunLog,
    MinerRunPipeline,
)
from dataweave.provenance.query import QueryEngine
from dataweave.provenance.record_store import RecordStore
from dataweave.provenance.verifier import ChainVerifier
from dataweave.storage.object_store import DurableObjectStore, InMemoryObjectStore, SQLiteObjectStore


# Global state
object_store: DurableObjectStore = None
store: RecordStore = None
query_engine: QueryEngine = None
verifier: ChainVerifier = None
oracle: ProofOracle = None
proof_recorder: ProofRecorder = None
pipeline: MinerRunPipeline = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan (startup/shutdown)"""
    global object_store, store, query_engine, verifier, oracle, proof_recorder, pipeline

    configure_logging(settings.LOG_LEVEL)

    # Startup
    if settings.OBJECT_STORE_BACKEND == "memory":
        object_store = InMemoryObjectStore()
    else:
        object_store = SQLiteObjectStore(settings.OBJECT_STORE_PATH)
        await object_store.connect()

    store = RecordStore(object_store)
    query_engine = QueryEngine(store)
    verifier = ChainVerifier(store)
    oracle = SimulatedProofOracle()
    proof_recorder = ProofRecorder(store, oracle)
    pipeline = MinerRunPipeline(store, oracle)

    logger.info(f"{settings.APP_NAME} API ready (object store: {settings.OBJECT_STORE_BACKEND})")

    yield

    # Shutdown
    if isinstance(object_store, SQLiteObjectStore):
        await object_store.close()
    store = None
    oracle = None
    pipeline = None


app = FastAPI(
    title="DataWeave Provenance Ledger",
    description="Append-only provenance records for AI compute, proofs and reasoning",
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


# Request/Response models
class CreateRecordRequest(BaseModel):
    """Request to create a provenance record"""
    kind: str
    origin_id: str
    metadata: Optional[dict[str, Any]] = None
    payload: Optional[dict[str, Any]] = None


class SearchRequest(BaseModel):
    """Filter, paging and sorting in one body"""
    origin_id: Optional[str] = None
    kind: Optional[RecordKind] = None
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    tags: Optional[List[str]] = None
    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT)
    sort_by: SortKey = SortKey.CREATED_AT
    sort_order: SortOrder = SortOrder.DESC


class RecordResponse(BaseModel):
    record: ProvenanceRecord
    chain_verification: Optional[ChainVerification] = None


class ProofResponse(BaseModel):
    proof_id: str
    verified: bool
    circuit_hash: str
    record: RecordDescriptor


class MinerRunRequest(BaseModel):
    inputs: List[str]
    computation_type: Optional[str] = None
    model_name: str = "unknown"
    model_version: str = "unknown"


class MinerRunResponse(BaseModel):
    run_id: str
    status: str
    record_ids: List[str]
    updates: List[dict[str, Any]]
    error: Optional[str] = None


class BatchRunRequest(BaseModel):
    count: int = Field(default=10, ge=1, le=100)


class ImportResponse(BaseModel):
    imported: int


def _require_store() -> RecordStore:
    if store is None:
        raise HTTPException(status_code=503, detail="Record store not initialized")
    return store


def _search(request: SearchRequest) -> QueryPage:
    _require_store()
    return query_engine.query(
        RecordFilter(
            origin_id=request.origin_id,
            kind=request.kind,
            start_time=request.start_time,
            end_time=request.end_time,
            tags=request.tags,
        ),
        PageRequest(
            offset=request.offset,
            limit=request.limit,
            sort_by=request.sort_by,
            sort_order=request.sort_order,
        ),
    )


# Endpoints
@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
    }


@app.post("/provenance", response_model=RecordDescriptor, status_code=201)
async def create_record(request: CreateRecordRequest):
    """
    Create a provenance record.

    The payload is hashed, signed, uploaded to durable storage and indexed
    under its origin and kind.
    """
    record_store = _require_store()

    try:
        return await record_store.create(
            request.kind,
            request.origin_id,
            request.metadata,
            request.payload,
        )
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/provenance", response_model=QueryPage)
async def list_records(
    origin_id: Optional[str] = None,
    kind: Optional[RecordKind] = None,
    start_time: Optional[int] = None,
    end_time: Optional[int] = None,
    tags: Optional[List[str]] = Query(default=None),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    sort_by: SortKey = SortKey.CREATED_AT,
    sort_order: SortOrder = SortOrder.DESC,
):
    """Query records with filters passed as query parameters"""
    return _search(SearchRequest(
        origin_id=origin_id,
        kind=kind,
        start_time=start_time,
        end_time=end_time,
        tags=tags,
        offset=offset,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    ))


@app.post("/provenance/search", response_model=QueryPage)
async def search_records(request: SearchRequest):
    """Query records with filters passed in the request body"""
    return _search(request)


@app.get("/provenance/recent", response_model=List[ProvenanceRecord])
async def recent_records(limit: int = Query(default=10, ge=1, le=settings.MAX_PAGE_LIMIT)):
    """Most recently created records, newest first"""
    return _require_store().recent_records(limit)


@app.get("/provenance/{record_id}", response_model=RecordResponse)
async def get_record(record_id: str, verify_chain: bool = False):
    """
    Retrieve a single record.

    Set verify_chain=true to embed the chain verification trail.
    """
    record_store = _require_store()

    record = record_store.get_by_id(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")

    chain_verification = verifier.verify_chain(record_id) if verify_chain else None
    return RecordResponse(record=record, chain_verification=chain_verification)


@app.get("/provenance/{record_id}/chain", response_model=ChainVerification)
async def verify_record_chain(record_id: str):
    """Walk and verify the record's chain (absence is encoded, not a 404)"""
    _require_store()
    return verifier.verify_chain(record_id)


@app.get("/provenance/{record_id}/verify", response_model=LinkVerification)
async def verify_single_record(record_id: str):
    """Verify one record's hash, signature and durable reference"""
    _require_store()
    result = verifier.verify_record(record_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return result


@app.get("/provenance/{record_id}/audit", response_model=AuditResult)
async def audit_record(record_id: str):
    """Re-fetch the durable payload and compare it with the content hash"""
    _require_store()
    try:
        return await verifier.audit_record(record_id)
    except RecordNotFound:
        raise HTTPException(status_code=404, detail="Record not found")


@app.post("/proofs", response_model=ProofResponse, status_code=201)
async def create_proof(request: ProofRequest):
    """Attest a computation with the proof oracle and record the outcome"""
    _require_store()
    try:
        attestation, descriptor = await proof_recorder.record(request)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))

    return ProofResponse(
        proof_id=attestation.proof_id,
        verified=attestation.verified,
        circuit_hash=attestation.circuit_hash,
        record=descriptor,
    )


@app.post("/proofs/verify", response_model=BatchProofVerification)
async def verify_proofs(attestations: List[ProofAttestation]):
    """Re-check previously issued attestations with the proof oracle"""
    if oracle is None:
        raise HTTPException(status_code=503, detail="Proof oracle not initialized")
    return await oracle.verify_batch(attestations)


@app.get("/miners/stats")
async def miner_stats():
    """Run counts and average run/proof durations"""
    _require_store()
    return pipeline.get_stats()


@app.post("/miners/{miner_id}/runs", response_model=MinerRunResponse)
async def run_miner(miner_id: str, request: MinerRunRequest):
    """Execute a simulated miner run and return its stage updates"""
    _require_store()

    config = next((c for c in DEFAULT_MINER_CONFIGS if c.miner_id == miner_id), None)
    if config is None:
        config = MinerConfig(
            miner_id=miner_id,
            model_name=request.model_name,
            model_version=request.model_version,
            computation_types=[request.computation_type or "inference"],
        )

    updates = [
        update.to_dict()
        async for update in pipeline.run(config, request.inputs, request.computation_type)
    ]
    run = pipeline.get_run(updates[-1]["run_id"])

    return MinerRunResponse(
        run_id=run.run_id,
        status=run.status,
        record_ids=run.record_ids,
        updates=updates,
        error=run.error,
    )


@app.get("/runs", response_model=List[MinerRunLog])
async def list_runs(limit: int = Query(default=20, ge=1, le=settings.MAX_PAGE_LIMIT)):
    """Finished runs, most recent first"""
    _require_store()
    return pipeline.completed_runs(limit)


@app.post("/runs/batch", response_model=List[MinerRunLog])
async def run_batch(request: BatchRunRequest):
    """Simulate a batch of runs across the default miners"""
    _require_store()
    return await pipeline.run_batch(request.count)


@app.get("/runs/{run_id}", response_model=MinerRunLog)
async def get_run(run_id: str):
    _require_store()
    run = pipeline.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@app.get("/stats", response_model=StoreStatistics)
async def get_stats():
    """Get ledger statistics"""
    return _require_store().get_statistics()


@app.get("/admin/export", response_model=ExportSnapshot)
async def export_data():
    """Export records and indexes for backup"""
    return _require_store().export_data()


@app.post("/admin/import", response_model=ImportResponse)
async def import_data(snapshot: ExportSnapshot):
    """Replace the whole store with a previously exported snapshot"""
    record_store = _require_store()
    try:
        imported = record_store.import_data(snapshot)
    except InvalidSnapshot as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ImportResponse(imported=imported)


@app.post("/admin/clear")
async def clear_store():
    """Drop every record (test reset)"""
    _require_store().clear()
    return {"status": "cleared"}


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    if store is None or pipeline is None:
        raise HTTPException(status_code=503, detail="System not ready")

    return {"status": "healthy", "records": len(store)}
