import os
import sys
import tempfile
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite+aiosqlite:///./deepscanrx.db"
    DATABASE_ECHO: bool = False

    # External model. No key means the assistant answers from fixed rules
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_BASE_URL: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4"
    OPENAI_TIMEOUT: float = 30.0
    OPENAI_MAX_RETRIES: int = 2

    # "auto" uses the model when a key is present, "fallback" never does
    ASSISTANT_MODE: Literal["auto", "fallback"] = "auto"
    HISTORY_WINDOW: int = 4
    SNAPSHOT_ROW_LIMIT: int = 5000

    SANDBOX_SCRATCH_DIR: str = os.path.join(tempfile.gettempdir(), "deepscanrx-scripts")
    SANDBOX_PYTHON: str = sys.executable
    SANDBOX_TIMEOUT_SECONDS: float = 15.0
    SANDBOX_MEMORY_LIMIT_MB: int = 512
    SANDBOX_MAX_OUTPUT_BYTES: int = 64_000
    SANDBOX_REAP_INTERVAL_SECONDS: float = 300.0
    SANDBOX_ORPHAN_MAX_AGE_SECONDS: float = 600.0

    CORS_ORIGINS: List[str] = ["*"]
    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
