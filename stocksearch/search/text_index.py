"""
Full-Text Search over Catalog Items

SQLite FTS5 external-content index over the item name, SKU, description
and category. Triggers on ``items`` write the index inside the same
transaction as the item mutation, so readers never see an item without
its index entry or an index entry without its item.

Usage:
    from stocksearch.search.text_index import TextIndex

    index = TextIndex(repository)
    index.setup()
    results = index.search("bolt m6", limit=20)
"""

import logging
import sqlite3
from typing import List, Optional

from ..core.config import SearchConfig
from ..core.errors import SetupFailedError, safe_operation
from ..database.models import Item
from ..database.repository import ItemRepository
from .results import MatchType, SearchResult

logger = logging.getLogger(__name__)


# =============================================================================
# Schema
# =============================================================================

FTS_SCHEMA = '''
CREATE VIRTUAL TABLE IF NOT EXISTS items_fts USING fts5(
    name,
    sku,
    description,
    category,
    content='items',
    content_rowid='id',
    tokenize='porter unicode61 remove_diacritics 2'
);

CREATE TRIGGER IF NOT EXISTS items_fts_insert AFTER INSERT ON items BEGIN
    INSERT INTO items_fts(rowid, name, sku, description, category)
    VALUES (new.id, new.name, new.sku, new.description, new.category);
END;

CREATE TRIGGER IF NOT EXISTS items_fts_delete AFTER DELETE ON items BEGIN
    INSERT INTO items_fts(items_fts, rowid, name, sku, description, category)
    VALUES ('delete', old.id, old.name, old.sku, old.description, old.category);
END;

CREATE TRIGGER IF NOT EXISTS items_fts_update AFTER UPDATE ON items BEGIN
    INSERT INTO items_fts(items_fts, rowid, name, sku, description, category)
    VALUES ('delete', old.id, old.name, old.sku, old.description, old.category);
    INSERT INTO items_fts(rowid, name, sku, description, category)
    VALUES (new.id, new.name, new.sku, new.description, new.category);
END;
'''

# Column positions in items_fts, used by snippet()
NAME_COLUMN = 0
DESCRIPTION_COLUMN = 2

# Characters with FTS5 query meaning that are dropped from user input
_STRIP_CHARS = str.maketrans({'"': None, '*': None, ':': ' '})


def sanitize_query(query: str) -> List[str]:
    """
    Strip quotes, wildcards and colons and split into tokens.

    ``foo"*:bar`` becomes ``['foo', 'bar']``.
    """
    return query.translate(_STRIP_CHARS).split()


def build_match_query(tokens: List[str]) -> Optional[str]:
    """
    Build an FTS5 MATCH expression.

    One token is a prefix match. Several tokens match the exact phrase or
    any token as a prefix. Tokens are quoted so that punctuation and
    operator words (AND, OR, NOT, NEAR) are treated as text.
    """
    if not tokens:
        return None

    if len(tokens) == 1:
        return f'"{tokens[0]}"*'

    phrase = '"' + ' '.join(tokens) + '"'
    prefixes = ' OR '.join(f'"{token}"*' for token in tokens)
    return f'{phrase} OR {prefixes}'


def normalize_bm25(raw: float, scale: float = 10.0) -> float:
    """
    Map a raw bm25() value onto [0, 1).

    bm25() is negative with lower meaning better. -raw / (scale - raw)
    grows as raw falls, so the best match gets the highest score and
    scores follow the rank order. ``scale`` is the raw value that maps
    to 0.5. Only meaningful as a relative ranking signal.
    """
    if raw >= 0:
        return 0.0
    return -raw / (scale - raw)


class TextIndex:
    """
    FTS5 index kept in lock-step with the items table.
    """

    def __init__(self, repository: ItemRepository, config: Optional[SearchConfig] = None):
        self.repository = repository
        self.config = config or SearchConfig()

    # =========================================================================
    # Setup
    # =========================================================================

    def setup(self):
        """
        Create the FTS table and sync triggers, then rebuild the index from
        the current items. Safe to call repeatedly.
        """
        try:
            with self.repository.connection() as conn:
                conn.executescript(FTS_SCHEMA)
                conn.execute("INSERT INTO items_fts(items_fts) VALUES ('rebuild')")
        except sqlite3.Error as e:
            raise SetupFailedError(f"Could not set up full-text index: {e}") from e

        logger.info("Full-text index ready")

    # =========================================================================
    # Search
    # =========================================================================

    @safe_operation(default_value=list)
    def search(self, query: str, limit: int = 20) -> List[SearchResult]:
        """
        Ranked full-text search.

        Args:
            query: Free-text query; FTS syntax characters are stripped
            limit: Maximum number of results

        Returns:
            Results ordered by BM25 relevance with highlighted snippets
        """
        if not query or limit <= 0:
            return []

        match = build_match_query(sanitize_query(query))
        if match is None:
            return []

        cfg = self.config
        sql = '''
            SELECT
                items.*,
                bm25(items_fts) AS rank,
                snippet(items_fts, ?, ?, ?, ?, ?) AS name_snippet,
                snippet(items_fts, ?, ?, ?, ?, ?) AS description_snippet
            FROM items_fts
            JOIN items ON items.id = items_fts.rowid
            WHERE items_fts MATCH ?
            ORDER BY rank, items.id
            LIMIT ?
        '''
        params = (
            NAME_COLUMN, cfg.snippet_open, cfg.snippet_close, cfg.snippet_ellipsis, cfg.name_snippet_tokens,
            DESCRIPTION_COLUMN, cfg.snippet_open, cfg.snippet_close, cfg.snippet_ellipsis,
            cfg.description_snippet_tokens,
            match, limit,
        )

        with self.repository.connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            SearchResult(
                item=Item.from_row(row),
                score=normalize_bm25(row['rank'], cfg.bm25_scale),
                match_type=MatchType.FULL_TEXT,
                name_snippet=row['name_snippet'],
                description_snippet=row['description_snippet'] or None,
            )
            for row in rows
        ]

    @safe_operation(default_value=list)
    def search_by_category(self, category: str, limit: int = 20) -> List[SearchResult]:
        """Items whose category equals ``category`` exactly, ordered by name."""
        if limit <= 0:
            return []

        return [
            SearchResult(item=item, score=1.0, match_type=MatchType.CATEGORY)
            for item in self.repository.get_by_category(category, limit)
        ]

    @safe_operation(default_value=list)
    def suggestions(self, prefix: str, limit: int = 10) -> List[str]:
        """
        Autocomplete item names.

        Case-sensitive prefix match; prefixes shorter than two characters
        return nothing.
        """
        if prefix is None or len(prefix) < self.config.suggestion_min_length or limit <= 0:
            return []

        # substr() compares with binary collation, unlike LIKE
        with self.repository.connection() as conn:
            rows = conn.execute('''
                SELECT DISTINCT name FROM items
                WHERE substr(name, 1, ?) = ?
                ORDER BY name
                LIMIT ?
            ''', (len(prefix), prefix, limit)).fetchall()

        return [row['name'] for row in rows]
