from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Runtime config (server).

    - Loaded from environment variables (prefix `WHITEBOARD_`)
    - Also reads `.env` if present (via pydantic-settings + python-dotenv)
    """

    model_config = SettingsConfigDict(env_file=".env", env_prefix="WHITEBOARD_", extra="ignore")

    host: str = "0.0.0.0"
    # Hosting platforms hand out the port as bare PORT.
    port: int = Field(3000, validation_alias=AliasChoices("WHITEBOARD_PORT", "PORT"))

    # Room snapshots, one JSON file per room; created on first save.
    storage_dir: Path = Path("export")

    # Persistence debounce: at most one write per room per window.
    save_interval_s: float = 2.0
    flush_on_shutdown: bool = True

    default_room: str = "main"

    # Debugging
    debug_log_msgs: bool = False
    log_level: str = "INFO"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
