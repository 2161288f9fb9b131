"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from knowledge_query.config import Settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of these tests."""
    for name in ("STORAGE_PATH", "QDRANT_PATH", "QDRANT_URL", "DAILY_TOKEN_LIMIT", "LOG_LEVEL"):
        monkeypatch.delenv(f"KNOWLEDGE_QUERY_{name}", raising=False)


class TestDefaults:

    def test_pipeline_defaults(self):
        config = Settings(_env_file=None)
        assert config.daily_token_limit == 100_000
        assert config.min_request_interval == 3.0
        assert config.max_concurrent_requests == 1
        assert config.cache_duration_seconds == 86400
        assert config.generation_max_tokens == 250
        assert config.max_context_tokens == 800
        assert config.max_retries == 2
        assert config.retry_scale == 0.7


class TestEnvironment:

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("KNOWLEDGE_QUERY_DAILY_TOKEN_LIMIT", "5000")
        monkeypatch.setenv("KNOWLEDGE_QUERY_LOG_LEVEL", "DEBUG")
        config = Settings(_env_file=None)
        assert config.daily_token_limit == 5000
        assert config.log_level == "DEBUG"

    def test_invalid_value_rejected(self, monkeypatch):
        monkeypatch.setenv("KNOWLEDGE_QUERY_RETRY_SCALE", "1.5")
        with pytest.raises(ValidationError):
            Settings(_env_file=None)


class TestPaths:

    def test_explicit_storage_path(self, tmp_path):
        target = tmp_path / "store"
        config = Settings(_env_file=None, storage_path=str(target))
        assert config.get_storage_path() == str(target)
        assert target.is_dir()

    def test_qdrant_path_under_storage(self, tmp_path):
        config = Settings(_env_file=None, storage_path=str(tmp_path))
        assert Path(config.get_qdrant_path()) == tmp_path / "qdrant"

    def test_remote_qdrant_has_no_local_path(self, tmp_path):
        config = Settings(
            _env_file=None,
            storage_path=str(tmp_path),
            qdrant_url="http://localhost:6333",
        )
        assert config.get_qdrant_path() is None
