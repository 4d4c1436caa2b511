"""
Search System for the Catalog

Provides:
- Local embeddings for semantic search
- FTS5 full-text search kept in sync with the items table
- Hybrid search combining BM25 and semantic similarity
- Fast vector operations with numpy

Usage:
    from stocksearch.search import SearchService, SearchMode

    service = SearchService(repository)
    service.initialize()
    results = service.search("m6 hex bolt zinc", mode=SearchMode.HYBRID, limit=10)
"""

from .embeddings import EmbeddingEngine, WordVectorTable
from .results import MatchType, SearchResult
from .text_index import TextIndex
from .vector_store import VectorStore, VectorStats
from .hybrid_search import (
    SearchService, SearchMode, SearchSession, IndexStats, SearchStats,
    reciprocal_rank_fusion, determine_search_mode, create_search_service,
)

__all__ = [
    'EmbeddingEngine',
    'WordVectorTable',
    'MatchType',
    'SearchResult',
    'TextIndex',
    'VectorStore',
    'VectorStats',
    'SearchService',
    'SearchMode',
    'SearchSession',
    'IndexStats',
    'SearchStats',
    'reciprocal_rank_fusion',
    'determine_search_mode',
    'create_search_service',
]
