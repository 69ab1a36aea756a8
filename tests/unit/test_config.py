"""Tests for EngineSettings and EngineOptions."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from memengine.config import ContextBudgets, EngineOptions, EngineSettings, ScoringWeights


class TestEngineSettings:
    """Tests for environment-backed settings."""

    def test_defaults(self, monkeypatch):
        for name in ("MEMENGINE_OLLAMA_HOST", "MEMENGINE_MAX_MEMORIES", "MEMENGINE_SQLITE_PATH"):
            monkeypatch.delenv(name, raising=False)
        settings = EngineSettings(_env_file=None)
        assert settings.ollama_host == "http://localhost:11434"
        assert settings.embedding_model == "mxbai-embed-large"
        assert settings.collection_name == "facts"
        assert settings.sqlite_path is None
        assert settings.get_sqlite_path() is None

    def test_environment_override(self, monkeypatch):
        """MEMENGINE_ variables override defaults, case-insensitively."""
        monkeypatch.setenv("MEMENGINE_OLLAMA_HOST", "http://gpu-box:11434")
        monkeypatch.setenv("memengine_max_memories", "3")
        settings = EngineSettings(_env_file=None)
        assert settings.ollama_host == "http://gpu-box:11434"
        assert settings.max_memories == 3

    def test_paths_resolved(self, tmp_path: Path):
        settings = EngineSettings(_env_file=None, sqlite_path=tmp_path / "db.sqlite")
        assert settings.get_sqlite_path() == (tmp_path / "db.sqlite").resolve()

    def test_to_options_carries_tunables(self):
        settings = EngineSettings(
            _env_file=None, max_memories=7, duplicate_threshold=0.5, embedding_timeout=1.5
        )
        options = settings.to_options()
        assert options.max_memories == 7
        assert options.duplicate_threshold == 0.5
        assert options.embedding_timeout == 1.5

    def test_invalid_value_rejected(self):
        with pytest.raises(ValidationError):
            EngineSettings(_env_file=None, max_memories=0)


class TestEngineOptions:
    """Tests for the immutable engine options."""

    def test_defaults(self):
        options = EngineOptions()
        assert options.max_memories == 5
        assert options.duplicate_threshold == 0.3
        assert options.routing_confidence_cutoff == 0.8
        assert options.ordinal_match_boost == 0.40
        assert options.ordinal_sibling_penalty == 0.20
        assert options.explicit_override_score == 1.4
        assert options.recent_candidate_limit == 20
        assert options.budgets.total == 15000

    def test_frozen(self):
        options = EngineOptions()
        with pytest.raises(ValidationError):
            options.max_memories = 10

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError, match="sum to 1.0"):
            ScoringWeights(semantic=0.5, keyword=0.5, recency=0.1, importance=0.1, usage=0.1)

    def test_custom_weights(self):
        weights = ScoringWeights(semantic=0.0, keyword=1.0, recency=0.0, importance=0.0, usage=0.0)
        options = EngineOptions(weights=weights)
        assert options.weights.keyword == 1.0

    def test_budget_must_be_positive(self):
        with pytest.raises(ValidationError):
            ContextBudgets(memory=0)
