"""
Centralized configuration using Pydantic Settings.

All settings are loaded from environment variables with KNOWLEDGE_QUERY_ prefix.
Example: KNOWLEDGE_QUERY_LOG_LEVEL=DEBUG
"""

from pathlib import Path
from typing import Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """KnowledgeQuery configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="KNOWLEDGE_QUERY_",
        env_file=".env",
        env_file_encoding="utf-8"
    )

    # Core paths
    storage_path: Optional[str] = None  # Defaults to ./.knowledge-query/storage

    # Logging
    log_level: str = "INFO"
    log_structured: bool = False  # JSON lines instead of plain text

    # Qdrant vector storage
    qdrant_path: Optional[str] = None  # Path for local Qdrant storage, auto-detect if not set
    qdrant_url: Optional[str] = None   # Optional remote Qdrant URL (overrides local path)
    qdrant_api_key: Optional[str] = None  # API key for remote Qdrant (if using cloud)
    qdrant_collection: str = "kq_content"
    search_top_k: int = Field(default=5, ge=1)

    # Embedding model
    embedding_model: str = "distiluse-base-multilingual-cased-v2"
    embedding_dimension: int = Field(default=512, ge=1)
    embedding_max_chars: int = 8192  # Input is capped before it reaches the model
    excerpt_chars: int = 1500  # Text kept in the vector payload for context

    # Tokenizer (tiktoken encoding shared by counting and truncation)
    tokenizer_encoding: str = "gpt2"

    # Generation backend
    anthropic_api_key: Optional[str] = None  # Falls back to ANTHROPIC_API_KEY
    generation_model: str = "claude-3-haiku-20240307"
    generation_max_tokens: int = Field(default=250, ge=1)
    generation_temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_context_tokens: int = Field(default=800, ge=0)

    # Quota and pacing
    daily_token_limit: int = Field(default=100_000, ge=0)
    min_request_interval: float = Field(default=3.0, ge=0.0)  # Seconds between generation call starts
    max_concurrent_requests: int = Field(default=1, ge=1)

    # Caching
    cache_duration_seconds: int = 60 * 60 * 24  # Response cache TTL (24 hours)
    answer_cache_ttl_seconds: int = 3600  # Per-owner answer cache TTL
    answer_cache_maxsize: int = 1000
    similar_min_overlap: int = Field(default=2, ge=1)

    # Retry ladder
    max_retries: int = Field(default=2, ge=0)
    retry_scale: float = Field(default=0.7, gt=0.0, le=1.0)

    def get_storage_path(self) -> str:
        """
        Determine storage path.

        Priority:
        1. storage_path setting (explicit override via KNOWLEDGE_QUERY_STORAGE_PATH)
        2. <cwd>/.knowledge-query/storage
        """
        if self.storage_path:
            Path(self.storage_path).mkdir(parents=True, exist_ok=True)
            return self.storage_path

        storage = Path.cwd() / ".knowledge-query" / "storage"
        storage.mkdir(parents=True, exist_ok=True)
        return str(storage)

    def get_qdrant_path(self) -> Optional[str]:
        """
        Determine Qdrant storage path for local mode.

        Returns None if qdrant_url is set (remote mode).

        Priority for local mode:
        1. qdrant_path setting (explicit override via KNOWLEDGE_QUERY_QDRANT_PATH)
        2. <storage_path>/qdrant
        """
        # Remote mode - no local path needed
        if self.qdrant_url:
            return None

        if self.qdrant_path:
            Path(self.qdrant_path).mkdir(parents=True, exist_ok=True)
            return self.qdrant_path

        qdrant_dir = Path(self.get_storage_path()) / "qdrant"
        qdrant_dir.mkdir(parents=True, exist_ok=True)
        return str(qdrant_dir)


# Singleton instance
settings = Settings()
