"""
Database Layer for the Search Core

SQLite entity store that the full-text and vector indexes mirror.

Usage:
    from stocksearch.database import ItemRepository, Item

    repo = ItemRepository("data/warehouse.db")
    repo.create(Item(name="Nut M6", sku="NUT-M6"))
"""

from .models import Item
from .repository import ItemRepository

__all__ = [
    'Item',
    'ItemRepository',
]
