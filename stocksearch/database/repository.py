"""
SQLite Item Repository

The entity store the search indexes mirror. Provides:
- Item CRUD with one transaction per call
- Foreign keys enabled on every connection (vector rows cascade on delete)
- Bulk import from lists and JSONL

Usage:
    from stocksearch.database.repository import ItemRepository

    repo = ItemRepository("data/warehouse.db")
    item = repo.create(Item(name="Bolt M6x20", sku="BOLT-M6-20"))
    repo.get_categories()
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from tqdm import tqdm

from ..core.errors import DatabaseError
from .models import Item

logger = logging.getLogger(__name__)


# =============================================================================
# Schema
# =============================================================================

SCHEMA = '''
CREATE TABLE IF NOT EXISTS items (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    sku TEXT NOT NULL UNIQUE,
    description TEXT,
    category TEXT,
    barcode TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_sku ON items(sku);
CREATE INDEX IF NOT EXISTS idx_items_category ON items(category);
CREATE INDEX IF NOT EXISTS idx_items_name ON items(name);
'''


class ItemRepository:
    """
    Repository for catalog items.

    Every public method is one read or write transaction. Index components
    share the same database through ``connection()``.
    """

    def __init__(self, db_path: Union[str, Path] = None):
        """
        Initialize the repository.

        Args:
            db_path: Path to SQLite database. Defaults to data/warehouse.db
        """
        if db_path is None:
            db_path = Path('data') / 'warehouse.db'

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _init_db(self):
        """Initialize the database schema."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    @contextmanager
    def connection(self):
        """
        Open a connection scoped to one transaction.

        Commits on success, rolls back on error and always closes.
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            conn.execute('PRAGMA foreign_keys = ON')
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # =========================================================================
    # CRUD Operations
    # =========================================================================

    def create(self, item: Item) -> Item:
        """
        Insert a new item.

        Args:
            item: Item without an id

        Returns:
            The stored item with its assigned id
        """
        now = datetime.now().isoformat()
        try:
            with self.connection() as conn:
                cursor = conn.execute('''
                    INSERT INTO items (name, sku, description, category, barcode, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                ''', (item.name, item.sku, item.description, item.category,
                      item.barcode, item.created_at or now, now))
                item_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Could not create item: {e}", sku=item.sku) from e

        return replace(item, id=item_id, updated_at=now)

    def get(self, item_id: int) -> Optional[Item]:
        """Get an item by id."""
        with self.connection() as conn:
            row = conn.execute('SELECT * FROM items WHERE id = ?', (item_id,)).fetchone()

        return Item.from_row(row) if row else None

    def get_many(self, item_ids: Iterable[int]) -> Dict[int, Item]:
        """Get items by id. Missing ids are absent from the result."""
        ids = list(item_ids)
        if not ids:
            return {}

        placeholders = ', '.join('?' for _ in ids)
        with self.connection() as conn:
            rows = conn.execute(
                f'SELECT * FROM items WHERE id IN ({placeholders})', ids
            ).fetchall()

        return {row['id']: Item.from_row(row) for row in rows}

    def get_by_sku(self, sku: str) -> Optional[Item]:
        """Get an item by exact SKU."""
        with self.connection() as conn:
            row = conn.execute('SELECT * FROM items WHERE sku = ?', (sku,)).fetchone()

        return Item.from_row(row) if row else None

    def get_all(self) -> List[Item]:
        """Get all items ordered by id."""
        with self.connection() as conn:
            rows = conn.execute('SELECT * FROM items ORDER BY id').fetchall()

        return [Item.from_row(row) for row in rows]

    def get_by_category(self, category: str, limit: Optional[int] = None) -> List[Item]:
        """Get items whose category equals ``category``, ordered by name then id."""
        with self.connection() as conn:
            rows = conn.execute(
                'SELECT * FROM items WHERE category = ? ORDER BY name, id LIMIT ?',
                (category, -1 if limit is None else limit)
            ).fetchall()

        return [Item.from_row(row) for row in rows]

    def get_categories(self) -> List[str]:
        """Get distinct non-null categories, sorted."""
        with self.connection() as conn:
            rows = conn.execute('''
                SELECT DISTINCT category FROM items
                WHERE category IS NOT NULL
                ORDER BY category
            ''').fetchall()

        return [row['category'] for row in rows]

    def update(self, item: Item) -> bool:
        """
        Update an existing item.

        Returns:
            True if a row was updated
        """
        if item.id is None:
            raise DatabaseError("Cannot update an item without an id", sku=item.sku)

        try:
            with self.connection() as conn:
                cursor = conn.execute('''
                    UPDATE items
                    SET name = ?, sku = ?, description = ?, category = ?, barcode = ?, updated_at = ?
                    WHERE id = ?
                ''', (item.name, item.sku, item.description, item.category,
                      item.barcode, datetime.now().isoformat(), item.id))
                return cursor.rowcount > 0
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Could not update item: {e}", item_id=item.id) from e

    def delete(self, item_id: int) -> bool:
        """
        Delete an item.

        Returns:
            True if deleted
        """
        with self.connection() as conn:
            cursor = conn.execute('DELETE FROM items WHERE id = ?', (item_id,))
            return cursor.rowcount > 0

    def delete_all(self) -> int:
        """Delete every item. Returns the number of rows removed."""
        with self.connection() as conn:
            cursor = conn.execute('DELETE FROM items')
            return cursor.rowcount

    def count(self) -> int:
        """Get total item count."""
        with self.connection() as conn:
            return conn.execute('SELECT COUNT(*) FROM items').fetchone()[0]

    # =========================================================================
    # Import
    # =========================================================================

    def import_items(self, items: Iterable[Union[Item, Dict[str, Any]]], show_progress: bool = False) -> int:
        """
        Import items from Item objects or dicts.

        Args:
            items: Items to create
            show_progress: Show progress bar

        Returns:
            Number of imported items
        """
        items = list(items)
        iterator = tqdm(items, desc="Importing") if show_progress else items

        count = 0
        for entry in iterator:
            item = entry if isinstance(entry, Item) else Item.from_dict(entry)
            self.create(replace(item, id=None))
            count += 1

        logger.info(f"Imported {count} items", extra={'count': count})
        return count

    def import_from_jsonl(self, jsonl_path: Union[str, Path], show_progress: bool = False) -> int:
        """
        Import items from a JSONL file, one item object per line.

        Returns:
            Number of imported items
        """
        records = []
        with open(jsonl_path, encoding='utf-8') as f:
            for line in f:
                if line.strip():
                    records.append(json.loads(line))

        return self.import_items(records, show_progress=show_progress)
