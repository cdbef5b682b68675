"""Initialize the durable object store schema"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dataweave.core.config import settings
from dataweave.storage.object_store import SQLiteObjectStore


async def init_database() -> None:
    """Create the data directory and the objects table"""
    store = SQLiteObjectStore(settings.OBJECT_STORE_PATH)
    await store.connect()
    stats = await store.get_stats()
    await store.close()

    print(f"Object store ready at: {settings.OBJECT_STORE_PATH}")
    print(f"✓ {stats['total_objects']} objects ({stats['total_bytes']} bytes)")


if __name__ == "__main__":
    asyncio.run(init_database())
