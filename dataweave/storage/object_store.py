"""
Durable object store collaborators.

The record store only depends on the `DurableObjectStore` contract:
content-addressed upload, fetch by content id, and a cheap synchronous
check that a content id still resolves. Two backends are provided:

- InMemoryObjectStore: process-local, with latency and failure injection
- SQLiteObjectStore: persists payloads locally through aiosqlite
"""

import asyncio
import base64
import hashlib
import json
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import aiosqlite
from loguru import logger

from dataweave.core.config import settings
from dataweave.core.errors import RecordNotFound, StorageUnavailable
from dataweave.core.models import RecordKind


def build_upload_tags(
    record_id: str,
    origin_id: str,
    kind: RecordKind,
    created_at: int,
) -> dict[str, str]:
    """Tag set attached to every uploaded provenance payload"""
    tags = dict(settings.UPLOAD_TAG_DEFAULTS)
    tags.update({
        "Record-ID": record_id,
        "Miner-ID": origin_id,
        "Provenance-Type": kind.value,
        "Timestamp": str(created_at),
    })
    return tags


def content_id_for(data: bytes, tags: dict[str, str]) -> str:
    """43-character url-safe content id over payload bytes and tags"""
    digest = hashlib.sha256()
    digest.update(data)
    digest.update(json.dumps(tags, sort_keys=True).encode("utf-8"))
    return base64.urlsafe_b64encode(digest.digest()).decode("ascii").rstrip("=")


class DurableObjectStore(ABC):
    """Upload/fetch contract of the permanent-storage collaborator"""

    @abstractmethod
    async def upload(self, data: bytes, tags: dict[str, str]) -> str:
        """Store bytes permanently and return their content id"""

    @abstractmethod
    async def fetch(self, content_id: str) -> bytes:
        """Return previously uploaded bytes; RecordNotFound if unknown"""

    @abstractmethod
    def resolves(self, content_id: str) -> bool:
        """Whether `content_id` is known to the store (never suspends)"""

    @abstractmethod
    async def get_tags(self, content_id: str) -> dict[str, str]:
        """Tag set the object was uploaded with; RecordNotFound if unknown"""


class InMemoryObjectStore(DurableObjectStore):
    """
    Process-local object store.

    `latency` simulates network delay on upload; `fail_next(n)` makes the
    next n uploads raise StorageUnavailable.
    """

    def __init__(self, latency: Optional[float] = None) -> None:
        self.latency = settings.SIMULATED_UPLOAD_LATENCY_SECONDS if latency is None else latency
        self._objects: dict[str, bytes] = {}
        self._tags: dict[str, dict[str, str]] = {}
        self._failures_pending = 0
        self.upload_count = 0
        logger.info("InMemoryObjectStore initialized")

    def fail_next(self, count: int = 1) -> None:
        self._failures_pending += count

    def discard(self, content_id: str) -> None:
        """Drop an object (simulates loss on the storage network)"""
        self._objects.pop(content_id, None)
        self._tags.pop(content_id, None)

    async def upload(self, data: bytes, tags: dict[str, str]) -> str:
        if self.latency:
            await asyncio.sleep(self.latency)

        if self._failures_pending > 0:
            self._failures_pending -= 1
            raise StorageUnavailable("Simulated upload failure")

        content_id = content_id_for(data, tags)
        self._objects[content_id] = data
        self._tags[content_id] = dict(tags)
        self.upload_count += 1
        logger.debug(f"Uploaded {len(data)} bytes as {content_id}")
        return content_id

    async def fetch(self, content_id: str) -> bytes:
        if content_id not in self._objects:
            raise RecordNotFound(content_id)
        return self._objects[content_id]

    async def get_tags(self, content_id: str) -> dict[str, str]:
        if content_id not in self._tags:
            raise RecordNotFound(content_id)
        return dict(self._tags[content_id])

    def resolves(self, content_id: str) -> bool:
        return content_id in self._objects

    def __len__(self) -> int:
        return len(self._objects)


class SQLiteObjectStore(DurableObjectStore):
    """
    SQLite-backed object store.

    Features:
    - Content-addressed `objects` table (id, data, tags JSON, uploaded_at)
    - Idempotent uploads (same bytes + tags -> same id)
    - In-memory manifest of ids so `resolves` never touches the database
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._manifest: set[str] = set()

    async def connect(self) -> None:
        """Establish database connection and load the manifest"""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = aiosqlite.Row

        await self._setup_schema()

        cursor = await self._conn.execute("SELECT id FROM objects")
        rows = await cursor.fetchall()
        self._manifest = {row["id"] for row in rows}

        logger.info(f"Connected to object store: {self.db_path} ({len(self._manifest)} objects)")

    async def close(self) -> None:
        """Close database connection"""
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Object store connection closed")

    async def _setup_schema(self) -> None:
        if not self._conn:
            raise RuntimeError("Database not connected")

        await self._conn.execute("""
            CREATE TABLE IF NOT EXISTS objects (
                id TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                tags TEXT NOT NULL,
                uploaded_at INTEGER NOT NULL
            )
        """)

        await self._conn.commit()
        logger.debug("Object store schema initialized")

    async def upload(self, data: bytes, tags: dict[str, str]) -> str:
        if not self._conn:
            raise StorageUnavailable("Object store not connected")

        content_id = content_id_for(data, tags)

        try:
            await self._conn.execute(
                """
                INSERT OR IGNORE INTO objects (id, data, tags, uploaded_at)
                VALUES (?, ?, ?, ?)
                """,
                (content_id, data, json.dumps(tags), int(time.time() * 1000)),
            )
            await self._conn.commit()
        except aiosqlite.Error as e:
            raise StorageUnavailable(f"Object store write failed: {e}") from e

        self._manifest.add(content_id)
        logger.debug(f"Uploaded {len(data)} bytes as {content_id}")
        return content_id

    async def fetch(self, content_id: str) -> bytes:
        if not self._conn:
            raise StorageUnavailable("Object store not connected")

        cursor = await self._conn.execute(
            "SELECT data FROM objects WHERE id = ?",
            (content_id,),
        )
        row = await cursor.fetchone()

        if not row:
            raise RecordNotFound(content_id)

        return bytes(row["data"])

    async def get_tags(self, content_id: str) -> dict[str, str]:
        if not self._conn:
            raise StorageUnavailable("Object store not connected")

        cursor = await self._conn.execute(
            "SELECT tags FROM objects WHERE id = ?",
            (content_id,),
        )
        row = await cursor.fetchone()

        if not row:
            raise RecordNotFound(content_id)

        return json.loads(row["tags"])

    def resolves(self, content_id: str) -> bool:
        return content_id in self._manifest

    async def get_stats(self) -> dict[str, int]:
        if not self._conn:
            raise RuntimeError("Database not connected")

        cursor = await self._conn.execute("SELECT COUNT(*), COALESCE(SUM(LENGTH(data)), 0) FROM objects")
        row = await cursor.fetchone()

        return {
            "total_objects": row[0] if row else 0,
            "total_bytes": row[1] if row else 0,
        }
