"""Application configuration settings."""

import logging
import warnings
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Placeholder shipped in example .env files; treated the same as a missing key.
PLACEHOLDER_API_KEY = "YOUR_GOOGLE_AI_API_KEY"

DIRECT_GOOGLE_OPENAI_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # Application
    app_name: str = "DonJed Assistant"
    app_version: str = "0.1.0"
    debug: bool = False
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    cors_origins: list[str] = [
        "http://localhost:5173",  # Vite dev server
        "http://localhost:3000",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:3000",
    ]

    # LLM (OpenAI-compatible chat completions)
    llm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("llm_api_key", "google_api_key"),
    )
    llm_base_url: str = DIRECT_GOOGLE_OPENAI_URL
    llm_fallback_base_urls: list[str] = [DIRECT_GOOGLE_OPENAI_URL]
    llm_model: str = "gemini-2.5-flash"
    llm_temperature: float = 0.7
    llm_top_p: float = 0.95
    llm_max_tokens: int = 8192
    llm_max_retries: int = 3
    llm_max_retry_delay_seconds: float = 60.0
    llm_timeout_seconds: float = 60.0

    # Retrieval
    embedding_model: str = "text-embedding-004"
    retrieval_mode: str = "keyword"  # "keyword" | "semantic"
    retrieval_top_k: int = 3
    knowledge_base_path: Path = Path("data/knowledge-base.json")

    # Observability
    metrics_backend: str = "inmemory"  # "inmemory" | "prometheus"

    @property
    def has_llm_credentials(self) -> bool:
        """Whether a usable LLM API key is configured."""
        return bool(self.llm_api_key) and self.llm_api_key != PLACEHOLDER_API_KEY


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Warns if the LLM API key is missing, since every chat turn will then
    answer with a configuration message instead of a model reply.
    """
    settings = Settings()

    if not settings.has_llm_credentials:
        msg = (
            "LLM API key not found or still the placeholder value. "
            "Set LLM_API_KEY (or GOOGLE_API_KEY); chat replies will be limited."
        )
        logger.warning(msg)
        warnings.warn(msg, UserWarning, stacklevel=2)

    return settings
