"""
Vector Storage and Similarity Search

Stores one embedding per item in SQLite and answers similarity queries
with a brute-force scan over every stored vector. Intended for
catalog-sized corpora; there is no approximate index.

Table layout:
    item_vectors(item_id PK -> items.id ON DELETE CASCADE,
                 vector BLOB, dimension INTEGER, updated_at TEXT)

Usage:
    from stocksearch.search.vector_store import VectorStore

    store = VectorStore(repository, engine)
    store.setup_vector_table()
    store.index_all()
    results = store.search_similar("zinc plated bolt", limit=10, threshold=0.4)
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import numpy as np
from tqdm import tqdm

from ..core.errors import DatabaseError, InvalidVectorError, SetupFailedError, safe_operation
from ..database.models import Item
from ..database.repository import ItemRepository
from .embeddings import EmbeddingEngine, is_valid_vector, vector_from_bytes, vector_to_bytes
from .results import MatchType, SearchResult

logger = logging.getLogger(__name__)


VECTOR_SCHEMA = '''
CREATE TABLE IF NOT EXISTS item_vectors (
    item_id INTEGER PRIMARY KEY,
    vector BLOB NOT NULL,
    dimension INTEGER NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (item_id) REFERENCES items(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_item_vectors_updated_at ON item_vectors(updated_at);
'''


@dataclass
class VectorStats:
    """Coverage of the vector table."""
    total_vectors: int
    total_items: int
    coverage: float  # 0.0 - 1.0
    avg_dimension: int

    @classmethod
    def empty(cls) -> 'VectorStats':
        return cls(total_vectors=0, total_items=0, coverage=0.0, avg_dimension=0)


def create_searchable_text(item: Item) -> str:
    """
    Text blob embedded for an item.

    Fields are repeated to weight them in the averaged vector:
    name x3, SKU x2, category x2, description x1.
    """
    parts = [item.name] * 3 + [item.sku] * 2

    if item.category is not None:
        parts += [item.category] * 2

    if item.description is not None:
        parts.append(item.description)

    return ' '.join(parts)


class VectorStore:
    """
    Vector storage and similarity search over catalog items.
    """

    def __init__(self, repository: ItemRepository, engine: Optional[EmbeddingEngine] = None):
        """
        Args:
            repository: Entity store holding the items table
            engine: Embedding engine; a fallback-only engine if omitted
        """
        self.repository = repository
        self.engine = engine or EmbeddingEngine()

    # =========================================================================
    # Setup
    # =========================================================================

    def setup_vector_table(self):
        """Create the vector table. Safe to call repeatedly."""
        try:
            with self.repository.connection() as conn:
                conn.executescript(VECTOR_SCHEMA)
        except sqlite3.Error as e:
            raise SetupFailedError(f"Could not create vector table: {e}") from e

    # =========================================================================
    # Store Vectors
    # =========================================================================

    def store_vector(self, item_id: int, vector) -> None:
        """
        Store or replace the vector for an item.

        Raises:
            InvalidVectorError: vector is empty or contains NaN/Inf
            DatabaseError: item does not exist or the write failed
        """
        if not is_valid_vector(vector):
            raise InvalidVectorError("Vector must be non-empty and finite", item_id=item_id)

        data = vector_to_bytes(vector)
        dimension = len(data) // 8
        now = datetime.now(timezone.utc).isoformat()

        try:
            with self.repository.connection() as conn:
                conn.execute('''
                    INSERT INTO item_vectors (item_id, vector, dimension, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(item_id) DO UPDATE SET
                        vector = excluded.vector,
                        dimension = excluded.dimension,
                        updated_at = excluded.updated_at
                ''', (item_id, data, dimension, now))
        except sqlite3.Error as e:
            raise DatabaseError(f"Could not store vector: {e}", item_id=item_id) from e

    def index_all(self, show_progress: bool = False) -> int:
        """
        Generate and store vectors for every item.

        Each item is written in its own transaction, so an interrupted run
        leaves earlier items indexed and can simply be repeated.

        Returns:
            Number of items indexed
        """
        items = self.repository.get_all()
        iterator = tqdm(items, desc="Indexing vectors") if show_progress else items

        indexed = 0
        for item in iterator:
            vector = self.engine.embed(create_searchable_text(item))
            if vector is None:
                logger.debug(f"Skipping item {item.id}: nothing to embed")
                continue

            self.store_vector(item.id, vector)
            indexed += 1

        logger.info(
            f"Indexed {indexed} of {len(items)} items",
            extra={'indexed': indexed, 'total_items': len(items)}
        )
        return indexed

    def update_item_vector(self, item: Item) -> bool:
        """
        Re-embed a single item after an edit.

        Returns:
            True if a vector was stored
        """
        if item.id is None:
            return False

        vector = self.engine.embed(create_searchable_text(item))
        if vector is None:
            return False

        self.store_vector(item.id, vector)
        return True

    # =========================================================================
    # Search Vectors
    # =========================================================================

    @safe_operation(default_value=list)
    def search_similar(self, query: str, limit: int = 20, threshold: float = 0.5) -> List[SearchResult]:
        """
        Search for items similar to a text query.

        Args:
            query: Search query text
            limit: Maximum number of results
            threshold: Minimum similarity score (0.0 - 1.0)

        Returns:
            Results ordered by similarity, highest first
        """
        if limit <= 0:
            return []

        query_vec = self.engine.embed(query)
        if query_vec is None:
            return []

        with self.repository.connection() as conn:
            ids, vectors = self._load_vectors(conn)

        ranked = self._rank(query_vec, ids, vectors, threshold, limit)
        return self._to_results(ranked)

    @safe_operation(default_value=list)
    def find_similar_items(self, item_id: int, limit: int = 10) -> List[SearchResult]:
        """
        Find items similar to a given item.

        Returns an empty list when the item has no stored vector.
        """
        if limit <= 0:
            return []

        with self.repository.connection() as conn:
            row = conn.execute(
                'SELECT vector, dimension FROM item_vectors WHERE item_id = ?', (item_id,)
            ).fetchone()
            target = self._decode(row['vector'], row['dimension']) if row else None
            if target is None:
                return []

            ids, vectors = self._load_vectors(conn, exclude_id=item_id)

        ranked = self._rank(target, ids, vectors, threshold=0.0, limit=limit)
        return self._to_results(ranked)

    @safe_operation(default_value=None)
    def get_vector(self, item_id: int) -> Optional[np.ndarray]:
        """Stored vector for an item, or None."""
        with self.repository.connection() as conn:
            row = conn.execute(
                'SELECT vector, dimension FROM item_vectors WHERE item_id = ?', (item_id,)
            ).fetchone()

        if row is None:
            return None
        return self._decode(row['vector'], row['dimension'])

    # =========================================================================
    # Maintenance
    # =========================================================================

    @safe_operation(default_value=VectorStats.empty)
    def get_stats(self) -> VectorStats:
        """Get statistics about vector storage."""
        with self.repository.connection() as conn:
            total_vectors = conn.execute('SELECT COUNT(*) FROM item_vectors').fetchone()[0]
            total_items = conn.execute('SELECT COUNT(*) FROM items').fetchone()[0]
            avg_dimension = conn.execute('SELECT AVG(dimension) FROM item_vectors').fetchone()[0]

        coverage = total_vectors / total_items if total_items > 0 else 0.0

        return VectorStats(
            total_vectors=total_vectors,
            total_items=total_items,
            coverage=coverage,
            avg_dimension=int(avg_dimension or 0),
        )

    def delete_vector(self, item_id: int) -> bool:
        """Delete the vector for an item."""
        with self.repository.connection() as conn:
            cursor = conn.execute('DELETE FROM item_vectors WHERE item_id = ?', (item_id,))
            return cursor.rowcount > 0

    def clear_all_vectors(self) -> int:
        """Delete every stored vector. Returns the number removed."""
        with self.repository.connection() as conn:
            cursor = conn.execute('DELETE FROM item_vectors')
            return cursor.rowcount

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _decode(data: bytes, dimension: int) -> Optional[np.ndarray]:
        vector = vector_from_bytes(data)
        if vector is None or vector.size != dimension:
            return None
        return vector

    def _load_vectors(
        self,
        conn: sqlite3.Connection,
        exclude_id: Optional[int] = None
    ) -> Tuple[List[int], List[np.ndarray]]:
        """Read every decodable vector, ordered by item id."""
        rows = conn.execute(
            'SELECT item_id, vector, dimension FROM item_vectors WHERE item_id IS NOT ? ORDER BY item_id',
            (exclude_id,)
        ).fetchall()

        ids, vectors = [], []
        skipped = 0
        for row in rows:
            vector = self._decode(row['vector'], row['dimension'])
            if vector is None:
                skipped += 1
                continue
            ids.append(row['item_id'])
            vectors.append(vector)

        if skipped:
            logger.warning(f"Skipped {skipped} unreadable vectors", extra={'skipped': skipped})

        return ids, vectors

    def _rank(
        self,
        query_vec: np.ndarray,
        ids: List[int],
        vectors: List[np.ndarray],
        threshold: float,
        limit: int
    ) -> List[Tuple[int, float]]:
        """
        Score every vector against the query and keep the best.

        Vectors whose dimension differs from the query score 0.0. Equal
        scores keep item id order.
        """
        if not ids:
            return []

        scores = np.zeros(len(vectors), dtype=np.float64)
        same_dim = [i for i, v in enumerate(vectors) if v.shape == query_vec.shape]
        if same_dim:
            matrix = np.vstack([vectors[i] for i in same_dim])
            scores[same_dim] = np.clip((matrix @ query_vec + 1.0) / 2.0, 0.0, 1.0)

        keep = np.flatnonzero(scores >= threshold)
        order = keep[np.argsort(-scores[keep], kind='stable')][:limit]

        return [(ids[i], float(scores[i])) for i in order]

    def _to_results(self, ranked: List[Tuple[int, float]]) -> List[SearchResult]:
        """Resolve ids to items in score order, dropping items that no longer exist."""
        if not ranked:
            return []

        items = self.repository.get_many(item_id for item_id, _ in ranked)

        return [
            SearchResult(item=items[item_id], score=score, match_type=MatchType.VECTOR)
            for item_id, score in ranked
            if item_id in items
        ]
