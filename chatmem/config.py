"""Application settings loaded from environment variables."""

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """chatmem configuration. All values come from environment variables."""

    # Gemini
    gemini_api_key: str = Field(default="")
    gemini_base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    embedding_model: str = Field(default="text-embedding-004")
    embedding_dimension: int = Field(default=768)
    request_timeout_s: float = Field(default=120.0)

    # Database
    database_path: Path = Field(default=Path("data/web_chat.db"))

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=23333)
    static_dir: Path = Field(default=Path("static"))
    max_upload_bytes: int = Field(default=10 * 1024 * 1024)

    # Connection liveness
    heartbeat_interval_s: float = Field(default=5.0)
    client_timeout_s: float = Field(default=30.0)

    # Context assembly
    max_recent_messages: int = Field(default=4)
    max_similar_messages: int = Field(default=5)
    min_similarity: float = Field(default=0.5)
    max_context_chars: int = Field(default=4000)

    # Embedding backfill at startup
    backfill_on_start: bool = Field(default=False)
    backfill_limit: int = Field(default=100)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def has_api_key(self) -> bool:
        """True when GEMINI_API_KEY holds a non-blank value."""
        return bool(self.gemini_api_key.strip())


settings = Settings()
