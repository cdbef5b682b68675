"""Configuration management using Pydantic Settings"""

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Identity
    APP_NAME: str = "DataWeave"
    APP_VERSION: str = "0.1.0"
    SCHEMA_VERSION: str = "1.0.0"

    # Paths
    PROJECT_ROOT: Path = Path(__file__).parent.parent.parent
    OBJECT_STORE_PATH: Path = PROJECT_ROOT / "data" / "objects.db"

    # Durable object store
    OBJECT_STORE_BACKEND: str = "sqlite"  # "sqlite" or "memory"
    UPLOAD_TIMEOUT_SECONDS: float = 10.0
    SIMULATED_UPLOAD_LATENCY_SECONDS: float = 0.0

    # Signing (demo HMAC secret - override in .env)
    SIGNING_SECRET: str = "provenance-secret"

    # Query paging
    DEFAULT_PAGE_LIMIT: int = 50
    MAX_PAGE_LIMIT: int = 500

    # Proof oracle
    PROOF_SUCCESS_RATE: float = 0.95
    PROOF_ORIGIN_ID: str = "zk-system"

    # API server
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def UPLOAD_TAG_DEFAULTS(self) -> dict[str, str]:
        return {
            "App-Name": self.APP_NAME,
            "Version": self.SCHEMA_VERSION,
            "Content-Type": "application/json",
        }


settings = Settings()
