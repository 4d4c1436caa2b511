"""
Hybrid Search for the Catalog

Combines BM25 (SQLite FTS5) and semantic search (embeddings). Uses
Reciprocal Rank Fusion (RRF) to merge the two rankings.

Features:
- Automatic mode selection from the query shape
- Parallel full-text and semantic search for hybrid queries
- Async search whose sub-searches are cancelled together
- Latest-query-wins search sessions with debounce

Usage:
    from stocksearch.search.hybrid_search import SearchService, SearchMode

    service = SearchService(repository)
    service.initialize()
    service.index_all()

    for result in service.search("zinc plated hex bolt", mode=SearchMode.AUTO, limit=10):
        print(f"{result.score:.3f} - {result.item.name}")
"""

import asyncio
import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ..core.config import SearchConfig, RRF_K
from ..core.errors import SearchError, safe_operation
from ..database.models import Item
from ..database.repository import ItemRepository
from .embeddings import EmbeddingEngine
from .results import MatchType, SearchResult
from .text_index import TextIndex
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

# Uppercase letters, then uppercase letters, digits or dashes: "BOLT-M6-20"
SKU_PATTERN = re.compile(r'^[A-Z]{2,}[A-Z0-9\-]{2,}$')


class SearchMode(Enum):
    """Search strategy. AUTO is resolved to one of the others per query."""
    AUTO = "auto"
    FULL_TEXT = "full_text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"

    @property
    def display_name(self) -> str:
        return {
            SearchMode.AUTO: "Auto",
            SearchMode.FULL_TEXT: "Text",
            SearchMode.SEMANTIC: "Semantic",
            SearchMode.HYBRID: "Hybrid",
        }[self]


@dataclass
class IndexStats:
    """Outcome of a full reindex."""
    items_indexed: int
    duration: float
    fts_enabled: bool = True
    vectors_enabled: bool = True


@dataclass
class SearchStats:
    """Index coverage for display."""
    total_items: int
    fts_indexed: int
    vectors_indexed: int
    vector_coverage: float
    avg_vector_dimension: int

    @property
    def summary(self) -> str:
        return (
            f"Total Items: {self.total_items}\n"
            f"FTS5 Indexed: {self.fts_indexed}\n"
            f"Vectors Indexed: {self.vectors_indexed}\n"
            f"Vector Coverage: {self.vector_coverage * 100:.1f}%\n"
            f"Vector Dimension: {self.avg_vector_dimension}"
        )

    def to_dict(self) -> dict:
        return {
            'total_items': self.total_items,
            'fts_indexed': self.fts_indexed,
            'vectors_indexed': self.vectors_indexed,
            'vector_coverage': self.vector_coverage,
            'avg_vector_dimension': self.avg_vector_dimension,
        }


# =============================================================================
# Mode Selection and Fusion
# =============================================================================

def determine_search_mode(query: str) -> SearchMode:
    """
    Pick a concrete mode for a query.

    SKU-shaped and single-word queries go to full-text search, queries of
    three or more words to hybrid search, everything else to full-text.
    """
    words = query.split()

    if len(words) == 1 and SKU_PATTERN.match(words[0]):
        return SearchMode.FULL_TEXT

    if len(words) == 1:
        return SearchMode.FULL_TEXT

    if len(words) >= 3:
        return SearchMode.HYBRID

    return SearchMode.FULL_TEXT


def reciprocal_rank_fusion(
    result_lists: Sequence[Sequence[SearchResult]],
    k: int = RRF_K
) -> List[SearchResult]:
    """
    Merge ranked lists with Reciprocal Rank Fusion.

    RRF(d) = sum over lists of 1 / (k + rank(d) + 1), rank starting at 0.
    Appearing in several lists adds up, so an item found by both searches
    always beats one found by a single search at the same ranks.

    Ties are broken by item id ascending. Snippets from the first list
    that carried them are kept.
    """
    scores: Dict[int, float] = {}
    merged: Dict[int, SearchResult] = {}

    for results in result_lists:
        for rank, result in enumerate(results):
            item_id = result.item.id
            if item_id is None:
                continue

            scores[item_id] = scores.get(item_id, 0.0) + 1.0 / (k + rank + 1)

            existing = merged.get(item_id)
            merged[item_id] = SearchResult(
                item=result.item,
                score=0.0,
                match_type=MatchType.HYBRID,
                name_snippet=(existing.name_snippet if existing else None) or result.name_snippet,
                description_snippet=(existing.description_snippet if existing else None) or result.description_snippet,
            )

    for item_id, result in merged.items():
        result.score = scores[item_id]

    return sorted(merged.values(), key=lambda r: (-r.score, r.item.id))


# =============================================================================
# Search Service
# =============================================================================

class SearchService:
    """
    Unified search combining the full-text index and the vector store.

    Services are constructed explicitly and share nothing global; build
    one per database and pass it to callers.
    """

    def __init__(
        self,
        repository: ItemRepository,
        config: Optional[SearchConfig] = None,
        engine: Optional[EmbeddingEngine] = None,
        text_index: Optional[TextIndex] = None,
        vector_store: Optional[VectorStore] = None
    ):
        self.repository = repository
        self.config = config or SearchConfig()
        self.engine = engine or EmbeddingEngine(
            max_dimension=self.config.max_dimension,
            word_vectors=self.config.word_vectors_path,
        )
        self.text_index = text_index or TextIndex(repository, self.config)
        self.vector_store = vector_store or VectorStore(repository, self.engine)

    # =========================================================================
    # Setup
    # =========================================================================

    def initialize(self):
        """
        Create index structures and backfill the full-text index.

        Idempotent. Raises SetupFailedError.
        """
        self.text_index.setup()
        self.vector_store.setup_vector_table()
        logger.info("Search infrastructure initialized")

    def index_all(self, show_progress: bool = False) -> IndexStats:
        """
        Reindex every item.

        The full-text index maintains itself through triggers; only
        vectors are rebuilt here.
        """
        start = time.perf_counter()
        count = self.vector_store.index_all(show_progress=show_progress)
        duration = time.perf_counter() - start

        logger.info(
            f"Indexed {count} items in {duration:.2f}s",
            extra={'items_indexed': count, 'duration_ms': int(duration * 1000)}
        )

        return IndexStats(items_indexed=count, duration=duration)

    def update_index(self, item: Item) -> bool:
        """Refresh the vector of one item after an edit."""
        return self.vector_store.update_item_vector(item)

    # =========================================================================
    # Search
    # =========================================================================

    def resolve_mode(self, query: str, mode) -> SearchMode:
        """
        Concrete mode for a query; accepts SearchMode members or their values.

        Raises:
            SearchError: unknown mode
        """
        try:
            mode = SearchMode(mode)
        except ValueError as e:
            raise SearchError(f"Unknown search mode: {mode!r}", mode=str(mode)) from e
        return determine_search_mode(query) if mode is SearchMode.AUTO else mode

    def search(
        self,
        query: str,
        mode: SearchMode = SearchMode.AUTO,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        """
        Search the catalog.

        Args:
            query: Search query
            mode: Search mode; AUTO picks one from the query shape
            limit: Maximum results (config default if omitted)

        Returns:
            Results sorted by score, highest first
        """
        if not query or not query.strip():
            return []

        limit = self.config.default_limit if limit is None else limit
        effective = self.resolve_mode(query, mode)

        logger.debug(f"Search '{query}' as {effective.value}", extra={'mode': effective.value})

        if effective is SearchMode.FULL_TEXT:
            return self.text_index.search(query, limit)

        if effective is SearchMode.SEMANTIC:
            return self.vector_store.search_similar(query, limit, self.config.semantic_threshold)

        return self._hybrid_search(query, limit)

    def _hybrid_search(self, query: str, limit: int) -> List[SearchResult]:
        """Run both searches in parallel and fuse."""
        candidates = limit * self.config.hybrid_candidate_multiplier

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix='hybrid-search') as executor:
            fts_future = executor.submit(self.text_index.search, query, candidates)
            vec_future = executor.submit(
                self.vector_store.search_similar, query, candidates,
                self.config.hybrid_semantic_threshold
            )
            fts_results = fts_future.result()
            vec_results = vec_future.result()

        fused = reciprocal_rank_fusion([fts_results, vec_results], k=self.config.rrf_k)
        return fused[:limit]

    async def search_async(
        self,
        query: str,
        mode: SearchMode = SearchMode.AUTO,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        """
        Async variant of ``search``.

        In hybrid mode both sub-searches are awaited together; cancelling
        the calling task cancels both and nothing is fused.
        """
        if not query or not query.strip():
            return []

        limit = self.config.default_limit if limit is None else limit
        effective = self.resolve_mode(query, mode)

        if effective is not SearchMode.HYBRID:
            return await asyncio.to_thread(self.search, query, effective, limit)

        candidates = limit * self.config.hybrid_candidate_multiplier
        fts_results, vec_results = await asyncio.gather(
            asyncio.to_thread(self.text_index.search, query, candidates),
            asyncio.to_thread(
                self.vector_store.search_similar, query, candidates,
                self.config.hybrid_semantic_threshold
            ),
        )

        fused = reciprocal_rank_fusion([fts_results, vec_results], k=self.config.rrf_k)
        return fused[:limit]

    # =========================================================================
    # Specialized Searches
    # =========================================================================

    @safe_operation(default_value=None)
    def search_by_sku(self, sku: str) -> Optional[SearchResult]:
        """Exact SKU lookup. None when no item carries ``sku``."""
        item = self.repository.get_by_sku(sku)
        if item is None:
            return None
        return SearchResult(item=item, score=1.0, match_type=MatchType.EXACT)

    def search_by_category(self, category: str, limit: Optional[int] = None) -> List[SearchResult]:
        limit = self.config.default_limit if limit is None else limit
        return self.text_index.search_by_category(category, limit)

    def suggestions(self, prefix: str, limit: Optional[int] = None) -> List[str]:
        """Autocomplete item names."""
        limit = self.config.suggestion_limit if limit is None else limit
        return self.text_index.suggestions(prefix, limit)

    def find_similar(self, item_id: int, limit: int = 10) -> List[SearchResult]:
        """Items similar to a given item."""
        return self.vector_store.find_similar_items(item_id, limit)

    @safe_operation(default_value=list)
    def get_categories(self) -> List[str]:
        return self.repository.get_categories()

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_search_stats(self) -> SearchStats:
        """
        Index coverage.

        The full-text index is trigger-maintained and always reported as
        covering every item.
        """
        vector_stats = self.vector_store.get_stats()

        return SearchStats(
            total_items=vector_stats.total_items,
            fts_indexed=vector_stats.total_items,
            vectors_indexed=vector_stats.total_vectors,
            vector_coverage=vector_stats.coverage,
            avg_vector_dimension=vector_stats.avg_dimension,
        )


# =============================================================================
# Search Sessions
# =============================================================================

class SearchSession:
    """
    Latest-query-wins wrapper for interactive search.

    Each ``submit`` waits for the debounce delay, then searches. Submitting
    again cancels the query in flight: its caller gets None and none of
    its partial results are used.
    """

    def __init__(self, service: SearchService, debounce_seconds: Optional[float] = None):
        self.service = service
        self.debounce_seconds = (
            service.config.debounce_seconds if debounce_seconds is None else debounce_seconds
        )
        self._task: Optional[asyncio.Task] = None

    async def _run(self, query: str, mode: SearchMode, limit: Optional[int]) -> List[SearchResult]:
        if self.debounce_seconds > 0:
            await asyncio.sleep(self.debounce_seconds)
        return await self.service.search_async(query, mode, limit)

    async def submit(
        self,
        query: str,
        mode: SearchMode = SearchMode.AUTO,
        limit: Optional[int] = None
    ) -> Optional[List[SearchResult]]:
        """
        Search, superseding any query still in flight.

        Returns:
            Results, or None if a newer query replaced this one
        """
        self.cancel()

        if not query or not query.strip():
            return []

        task = asyncio.ensure_future(self._run(query, mode, limit))
        self._task = task

        try:
            return await task
        except asyncio.CancelledError:
            if task.cancelled() and self._task is not task:
                return None
            raise
        finally:
            if self._task is task:
                self._task = None

    def cancel(self):
        """Cancel the query in flight, if any."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None


def create_search_service(config: Optional[SearchConfig] = None) -> SearchService:
    """
    Create a fully configured, initialized search service.

    Args:
        config: Search configuration (defaults if omitted)

    Returns:
        SearchService with index structures in place
    """
    config = config or SearchConfig()
    repository = ItemRepository(config.db_path)
    service = SearchService(repository, config=config)
    service.initialize()
    return service
