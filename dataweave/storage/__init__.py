"""Durable object storage and secondary indexes"""

from dataweave.storage.indexes import SecondaryIndexes
from dataweave.storage.object_store import (
    DurableObjectStore,
    InMemoryObjectStore,
    SQLiteObjectStore,
    build_upload_tags,
)
