"""
stocksearch: hybrid search for warehouse catalogs.

Ranks catalog items (name, SKU, description, category) against free-text
queries with SQLite FTS5, local embeddings, and Reciprocal Rank Fusion.

Usage:
    from stocksearch import ItemRepository, SearchService, SearchMode

    repo = ItemRepository("data/warehouse.db")
    service = SearchService(repo)
    service.initialize()
    service.index_all()
    results = service.search("bolt", mode=SearchMode.FULL_TEXT)
"""

from .core import SearchConfig, load_config, setup_logging
from .core.errors import (
    StockSearchError, ConfigurationError, DatabaseError,
    SetupFailedError, InvalidVectorError, SearchError,
)
from .database import Item, ItemRepository
from .search import (
    EmbeddingEngine, WordVectorTable, TextIndex, VectorStore, VectorStats,
    SearchService, SearchMode, SearchSession, SearchResult, MatchType,
    IndexStats, SearchStats, create_search_service,
)

__version__ = '0.1.0'

__all__ = [
    'SearchConfig',
    'load_config',
    'setup_logging',
    'StockSearchError',
    'ConfigurationError',
    'DatabaseError',
    'SetupFailedError',
    'InvalidVectorError',
    'SearchError',
    'Item',
    'ItemRepository',
    'EmbeddingEngine',
    'WordVectorTable',
    'TextIndex',
    'VectorStore',
    'VectorStats',
    'SearchService',
    'SearchMode',
    'SearchSession',
    'SearchResult',
    'MatchType',
    'IndexStats',
    'SearchStats',
    'create_search_service',
]
