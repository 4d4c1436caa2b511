"""Catalog records read by the search core."""

import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Optional


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class Item:
    """A catalog item: the entity every index mirrors."""
    name: str
    sku: str
    description: Optional[str] = None
    category: Optional[str] = None
    barcode: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ''
    updated_at: str = ''

    def __post_init__(self):
        if not self.created_at:
            self.created_at = _now()
        if not self.updated_at:
            self.updated_at = self.created_at

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'Item':
        return cls(
            id=row['id'],
            name=row['name'],
            sku=row['sku'],
            description=row['description'],
            category=row['category'],
            barcode=row['barcode'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Item':
        return cls(
            name=data['name'],
            sku=data['sku'],
            description=data.get('description'),
            category=data.get('category'),
            barcode=data.get('barcode'),
            id=data.get('id'),
            created_at=data.get('created_at') or '',
            updated_at=data.get('updated_at') or '',
        )

    def to_dict(self) -> dict:
        return asdict(self)
