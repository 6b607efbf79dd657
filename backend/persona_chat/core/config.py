from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:3000,http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./persona_chat.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    history_window: int = Field(default=30, alias="HISTORY_WINDOW")
    history_model_name: str = Field(default="llama2-13b", alias="HISTORY_MODEL_NAME")
    max_prompt_chars: int = Field(default=4000, alias="MAX_PROMPT_CHARS")
    history_timeout_sec: float = Field(default=5.0, alias="HISTORY_TIMEOUT_SEC")
    recall_timeout_sec: float = Field(default=5.0, alias="RECALL_TIMEOUT_SEC")
    generation_timeout_sec: float = Field(default=120.0, alias="GENERATION_TIMEOUT_SEC")

    recall_mode: str = Field(default="off", alias="RECALL_MODE")
    recall_top_k: int = Field(default=3, alias="RECALL_TOP_K")
    vector_index_name: str = Field(default="", alias="VECTOR_INDEX_NAME")
    vector_index_host: str = Field(default="", alias="VECTOR_INDEX_HOST")
    vector_index_api_key: str = Field(default="", alias="VECTOR_INDEX_API_KEY")
    embed_provider: str = Field(default="deterministic", alias="EMBED_PROVIDER")
    embed_model: str = Field(default="", alias="EMBED_MODEL")
    embed_dim: int = Field(default=64, alias="EMBED_DIM")
    embed_openai_api_key: str = Field(
        default="", validation_alias=AliasChoices("EMBED_OPENAI_API_KEY", "OPENAI_API_KEY")
    )

    primary_provider: str = Field(default="replicate", alias="PRIMARY_PROVIDER")
    primary_model: str = Field(
        default=(
            "andreasjansson/llama-2-13b-embeddings:"
            "7115a4c65b86815e31412e53de1211c520164c190945a84c425b59dccbc47148"
        ),
        alias="PRIMARY_MODEL",
    )
    primary_api_key: str = Field(
        default="", validation_alias=AliasChoices("PRIMARY_API_KEY", "REPLICATE_API")
    )
    fallback_provider: str = Field(default="gemini", alias="FALLBACK_PROVIDER")
    fallback_model: str = Field(default="gemini-2.5-flash", alias="FALLBACK_MODEL")
    fallback_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("FALLBACK_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
    )
    replicate_base_url: str = Field(
        default="https://api.replicate.com", alias="REPLICATE_BASE_URL"
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com", alias="GEMINI_BASE_URL"
    )
    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    deepseek_base_url: str = Field(default="https://api.deepseek.com", alias="DEEPSEEK_BASE_URL")

    rate_limit_requests: int = Field(default=10, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window_sec: float = Field(default=10.0, alias="RATE_LIMIT_WINDOW_SEC")

    model_config = SettingsConfigDict(
        env_file=(".env", "backend/.env"), extra="ignore", populate_by_name=True
    )

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
