"""
Search Configuration

Layered configuration for the search core:
    defaults < YAML file (``search:`` section) < STOCKSEARCH_* environment variables

Usage:
    from stocksearch.core.config import load_config

    config = load_config("config/search.yaml")
    service = create_search_service(config)
"""

import os
from dataclasses import dataclass, fields, asdict
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError


# =============================================================================
# Ranking Constants
# =============================================================================

# Reciprocal Rank Fusion constant. Larger values flatten the contribution
# of top-ranked documents.
RRF_K = 60

# bm25() returns negative values (lower is better). score = -raw / (BM25_SCALE - raw)
# maps them into [0, 1) with better matches scoring higher; raw = -BM25_SCALE
# scores 0.5. Heuristic, not a calibrated probability.
BM25_SCALE = 10.0

# Minimum cosine score (on the [0, 1] scale) for direct semantic search.
SEMANTIC_THRESHOLD = 0.4

# Looser threshold for the semantic half of hybrid search; RRF discounts
# weak matches anyway.
HYBRID_SEMANTIC_THRESHOLD = 0.3

# Upper bound on fallback embedding width is min(max_dimension, 100).
DEFAULT_MAX_DIMENSION = 300

ENV_PREFIX = 'STOCKSEARCH_'


@dataclass
class SearchConfig:
    """Settings for the search core."""

    db_path: str = 'data/warehouse.db'
    word_vectors_path: Optional[str] = None
    max_dimension: int = DEFAULT_MAX_DIMENSION

    rrf_k: int = RRF_K
    bm25_scale: float = BM25_SCALE
    semantic_threshold: float = SEMANTIC_THRESHOLD
    hybrid_semantic_threshold: float = HYBRID_SEMANTIC_THRESHOLD
    hybrid_candidate_multiplier: int = 2

    default_limit: int = 20
    suggestion_limit: int = 10
    suggestion_min_length: int = 2

    snippet_open: str = '<b>'
    snippet_close: str = '</b>'
    snippet_ellipsis: str = '...'
    name_snippet_tokens: int = 32
    description_snippet_tokens: int = 64

    debounce_seconds: float = 0.3

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.max_dimension < 1:
            raise ConfigurationError("max_dimension must be positive", max_dimension=self.max_dimension)
        if self.rrf_k < 0:
            raise ConfigurationError("rrf_k must be non-negative", rrf_k=self.rrf_k)
        if self.bm25_scale <= 0:
            raise ConfigurationError("bm25_scale must be positive", bm25_scale=self.bm25_scale)
        for name in ('semantic_threshold', 'hybrid_semantic_threshold'):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1]", **{name: value})
        if self.hybrid_candidate_multiplier < 1:
            raise ConfigurationError(
                "hybrid_candidate_multiplier must be at least 1",
                hybrid_candidate_multiplier=self.hybrid_candidate_multiplier
            )
        if not 1 <= self.name_snippet_tokens <= 64 or not 1 <= self.description_snippet_tokens <= 64:
            # FTS5 snippet() caps the token count at 64
            raise ConfigurationError("snippet token counts must be within [1, 64]")
        if self.debounce_seconds < 0:
            raise ConfigurationError("debounce_seconds must be non-negative")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SearchConfig':
        """Build a config from a mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path]) -> 'SearchConfig':
        """
        Load configuration from a YAML file.

        The file may hold the settings at top level or under a ``search:`` key.
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ConfigurationError("Config file must contain a mapping", path=str(config_path))

        return cls.from_dict(data.get('search', data))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _coerce(value: str, target: Any):
    """Convert an environment string to the type of the default value."""
    if target is None or isinstance(target, str):
        return value
    if isinstance(target, bool):
        return value.lower() in ('1', 'true', 'yes', 'on')
    if isinstance(target, int):
        return int(value)
    if isinstance(target, float):
        return float(value)
    return value


def load_config(config_path: Optional[Union[str, Path]] = None, env_file: Optional[Union[str, Path]] = None) -> SearchConfig:
    """
    Load configuration from defaults, an optional YAML file and the environment.

    Args:
        config_path: Optional YAML file
        env_file: Optional .env file read before environment overrides

    Returns:
        Validated SearchConfig
    """
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    data = SearchConfig.from_yaml(config_path).to_dict() if config_path else SearchConfig().to_dict()

    for f in fields(SearchConfig):
        raw = os.getenv(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        try:
            data[f.name] = _coerce(raw, data[f.name])
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {ENV_PREFIX}{f.name.upper()}: {raw}") from e

    return SearchConfig.from_dict(data)
