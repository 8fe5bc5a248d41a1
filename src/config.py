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
    """Recall configuration. All values come from environment variables."""

    # Telegram
    telegram_bot_token: str = Field(default="")
    allowed_user_ids: str = Field(default="")

    # Database
    database_path: Path = Field(default=Path("data/recall.db"))

    # Turso (hosted libSQL): when set, overrides local database_path
    turso_database_url: str = Field(default="")
    turso_auth_token: str = Field(default="")

    # Embeddings (OpenAI)
    openai_api_key: str = Field(default="")
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_dimensions: int = Field(default=1536)

    # Summaries (Anthropic)
    anthropic_api_key: str = Field(default="")
    summary_model: str = Field(default="claude-haiku-4-5-20251001")

    # Semantic retrieval
    match_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    message_match_count: int = Field(default=10)
    summary_match_count: int = Field(default=5)
    memory_match_count: int = Field(default=10)

    # Summarization
    summarize_threshold: int = Field(default=20)
    summarize_chunk_size: int = Field(default=20, ge=1)

    # Memory confirmation (seconds; 0 keeps pending entries until cleared)
    pending_confirmation_ttl: float = Field(default=0.0, ge=0.0)

    # Webhooks
    webhook_port: int = Field(default=8443)
    webhook_secret: str = Field(default="")

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

    def get_allowed_user_ids(self) -> set[int]:
        """Parse ALLOWED_USER_IDS into a set of ints."""
        if not self.allowed_user_ids.strip():
            return set()
        return {int(uid.strip()) for uid in self.allowed_user_ids.split(",") if uid.strip()}


settings = Settings()
