"""
Tests for Core Infrastructure

Tests configuration layering, the exception hierarchy, graceful
degradation and log formatting.
"""

import json
import logging
import os
import sqlite3
import pytest
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from stocksearch.core.config import (
    SearchConfig, load_config, RRF_K, BM25_SCALE,
    SEMANTIC_THRESHOLD, HYBRID_SEMANTIC_THRESHOLD,
)
from stocksearch.core.errors import (
    StockSearchError, ConfigurationError, DatabaseError,
    InvalidVectorError, safe_operation,
)
from stocksearch.core.logging_config import JSONFormatter, ColoredFormatter, setup_logging


@pytest.fixture
def clean_env(monkeypatch):
    """Isolate from STOCKSEARCH_* variables already set in the environment."""
    for name in list(os.environ):
        if name.startswith('STOCKSEARCH_'):
            monkeypatch.delenv(name)
    return monkeypatch


class TestSearchConfig:
    """Tests for defaults and validation."""

    def test_ranking_constants(self):
        assert RRF_K == 60
        assert BM25_SCALE == 10.0
        assert SEMANTIC_THRESHOLD == 0.4
        assert HYBRID_SEMANTIC_THRESHOLD == 0.3

    def test_defaults(self):
        config = SearchConfig()

        assert config.rrf_k == 60
        assert config.max_dimension == 300
        assert config.hybrid_candidate_multiplier == 2
        assert config.suggestion_min_length == 2
        assert config.word_vectors_path is None

    @pytest.mark.parametrize("overrides", [
        {"max_dimension": 0},
        {"rrf_k": -1},
        {"bm25_scale": 0},
        {"semantic_threshold": 1.5},
        {"hybrid_semantic_threshold": -0.1},
        {"hybrid_candidate_multiplier": 0},
        {"name_snippet_tokens": 65},
        {"debounce_seconds": -1},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            SearchConfig(**overrides)

    def test_from_dict_ignores_unknown_keys(self):
        config = SearchConfig.from_dict({"rrf_k": 10, "color": "blue"})

        assert config.rrf_k == 10


class TestConfigFiles:
    """Tests for YAML and environment layering."""

    def test_from_yaml_search_section(self, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text("search:\n  rrf_k: 30\n  default_limit: 5\n", encoding="utf-8")

        config = SearchConfig.from_yaml(path)

        assert config.rrf_k == 30
        assert config.default_limit == 5

    def test_from_yaml_top_level(self, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text("semantic_threshold: 0.6\n", encoding="utf-8")

        assert SearchConfig.from_yaml(path).semantic_threshold == 0.6

    def test_from_yaml_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SearchConfig.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_not_a_mapping(self, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text("- one\n- two\n", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            SearchConfig.from_yaml(path)

    def test_env_overrides_yaml(self, clean_env, tmp_path):
        path = tmp_path / "search.yaml"
        path.write_text("search:\n  rrf_k: 30\n  db_path: from_yaml.db\n", encoding="utf-8")
        clean_env.setenv("STOCKSEARCH_RRF_K", "15")
        clean_env.setenv("STOCKSEARCH_SEMANTIC_THRESHOLD", "0.55")

        config = load_config(path)

        assert config.rrf_k == 15
        assert config.semantic_threshold == 0.55
        assert config.db_path == "from_yaml.db"

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("STOCKSEARCH_DEFAULT_LIMIT=7\n", encoding="utf-8")

        try:
            assert load_config(env_file=env_file).default_limit == 7
        finally:
            os.environ.pop("STOCKSEARCH_DEFAULT_LIMIT", None)

    def test_optional_path_from_env(self, clean_env):
        clean_env.setenv("STOCKSEARCH_WORD_VECTORS_PATH", "vectors/glove.txt")

        assert load_config().word_vectors_path == "vectors/glove.txt"

    def test_bad_env_value(self, clean_env):
        clean_env.setenv("STOCKSEARCH_RRF_K", "sixty")

        with pytest.raises(ConfigurationError):
            load_config()


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_to_dict(self):
        error = InvalidVectorError("Vector contains NaN", item_id=3)

        assert error.to_dict() == {
            "error": "invalid_vector",
            "message": "Vector contains NaN",
            "details": {"item_id": 3},
        }

    def test_default_message(self):
        error = DatabaseError()

        assert str(error) == "Database operation failed"
        assert isinstance(error, StockSearchError)


class TestSafeOperation:
    """Tests for graceful degradation."""

    def test_store_errors_return_default(self):
        @safe_operation(default_value=list)
        def read():
            raise sqlite3.OperationalError("disk I/O error")

        assert read() == []

    def test_static_default(self):
        @safe_operation(default_value=0)
        def count():
            raise DatabaseError("gone")

        assert count() == 0

    def test_other_errors_propagate(self):
        @safe_operation(default_value=list)
        def broken():
            raise KeyError("bug")

        with pytest.raises(KeyError):
            broken()

    def test_fresh_default_per_call(self):
        @safe_operation(default_value=list)
        def read():
            raise sqlite3.OperationalError("locked")

        first = read()
        first.append(1)

        assert read() == []


class TestLogging:
    """Tests for log formatting."""

    def _record(self, **extra):
        record = logging.LogRecord("stocksearch.test", logging.INFO, __file__, 1, "Indexed %d items", (3,), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        entry = json.loads(JSONFormatter().format(self._record(items_indexed=3)))

        assert entry["message"] == "Indexed 3 items"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "stocksearch.test"
        assert entry["items_indexed"] == 3

    def test_json_formatter_exception(self):
        try:
            raise ValueError("bad vector")
        except ValueError:
            record = logging.LogRecord(
                "stocksearch.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        entry = json.loads(JSONFormatter().format(record))

        assert entry["exception"]["type"] == "ValueError"

    def test_colored_formatter_duration(self):
        text = ColoredFormatter().format(self._record(duration_ms=12))

        assert "Indexed 3 items" in text
        assert "(12ms)" in text

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging(level="DEBUG", json_format=False, logger_name="stocksearch.test_setup")
        setup_logging(level="DEBUG", json_format=True, logger_name="stocksearch.test_setup")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.DEBUG
