"""Search result records shared by every search path."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..database.models import Item


class MatchType(Enum):
    """How a result was found."""
    FULL_TEXT = "full_text"
    VECTOR = "vector"
    HYBRID = "hybrid"
    CATEGORY = "category"
    EXACT = "exact"

    @property
    def label(self) -> str:
        return _MATCH_LABELS[self]


_MATCH_LABELS = {
    MatchType.FULL_TEXT: "Full-text",
    MatchType.VECTOR: "Semantic",
    MatchType.HYBRID: "Hybrid",
    MatchType.CATEGORY: "Category",
    MatchType.EXACT: "Exact",
}


@dataclass
class SearchResult:
    """A ranked item. Score is in [0, 1], higher is better."""
    item: Item
    score: float
    match_type: MatchType
    name_snippet: Optional[str] = None
    description_snippet: Optional[str] = None

    @property
    def item_id(self) -> Optional[int]:
        return self.item.id

    def to_dict(self) -> dict:
        return {
            'item': self.item.to_dict(),
            'score': self.score,
            'match_type': self.match_type.value,
            'name_snippet': self.name_snippet,
            'description_snippet': self.description_snippet,
        }
