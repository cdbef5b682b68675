"""Start the DataWeave API server"""

import sys
from pathlib import Path

import uvicorn

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dataweave.core.config import settings


if __name__ == "__main__":
    print(f"Starting {settings.APP_NAME} API on {settings.API_HOST}:{settings.API_PORT}")
    print(f"Docs available at: http://localhost:{settings.API_PORT}/docs")

    uvicorn.run(
        "dataweave.api.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
    )
