"""
Core Infrastructure for the Search Core

Provides:
- Layered configuration (YAML + environment)
- Exception hierarchy and graceful degradation helpers
- Structured logging setup
"""

from .config import (
    SearchConfig, load_config,
    RRF_K, BM25_SCALE, SEMANTIC_THRESHOLD, HYBRID_SEMANTIC_THRESHOLD,
)
from .errors import (
    StockSearchError, ConfigurationError, DatabaseError,
    SetupFailedError, InvalidVectorError, SearchError, safe_operation,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    'SearchConfig',
    'load_config',
    'RRF_K',
    'BM25_SCALE',
    'SEMANTIC_THRESHOLD',
    'HYBRID_SEMANTIC_THRESHOLD',
    'StockSearchError',
    'ConfigurationError',
    'DatabaseError',
    'SetupFailedError',
    'InvalidVectorError',
    'SearchError',
    'safe_operation',
    'setup_logging',
    'get_logger',
]
