"""
Tests for Vector Storage and Similarity Search

Tests upserts, validation, indexing idempotence, brute-force search and
degraded behaviour when the store is unreachable.
"""

import sqlite3
import pytest
import numpy as np
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).parent.parent))

from stocksearch.core.errors import DatabaseError, InvalidVectorError, SetupFailedError
from stocksearch.database import Item, ItemRepository
from stocksearch.search.embeddings import EmbeddingEngine, vector_to_bytes
from stocksearch.search.results import MatchType
from stocksearch.search.vector_store import VectorStore, VectorStats, create_searchable_text
from tests.fixtures.sample_catalog import CATALOG, load_catalog


@pytest.fixture
def repo(tmp_path):
    return ItemRepository(tmp_path / "test_vectors.db")


@pytest.fixture
def store(repo):
    """Vector store with the table in place and no vectors yet."""
    store = VectorStore(repo, EmbeddingEngine())
    store.setup_vector_table()
    return store


@pytest.fixture
def items(repo):
    return load_catalog(repo)


def _broken_connection():
    raise sqlite3.OperationalError("unable to open database file")


class TestSearchableText:
    """Tests for the weighted text blob."""

    def test_field_weights(self):
        item = Item(name="Bolt", sku="B-1", description="zinc", category="Крепёж")

        text = create_searchable_text(item)

        assert text.split(" ").count("Bolt") == 3
        assert text.split(" ").count("B-1") == 2
        assert text.split(" ").count("Крепёж") == 2
        assert text.split(" ").count("zinc") == 1

    def test_optional_fields_omitted(self):
        text = create_searchable_text(Item(name="Bolt", sku="B-1"))

        assert text == "Bolt Bolt Bolt B-1 B-1"


class TestStoreVector:
    """Tests for storing vectors."""

    def test_round_trip_byte_identical(self, store, items):
        vec = np.random.default_rng(3).normal(size=100)

        store.store_vector(items[0].id, vec)

        assert vector_to_bytes(store.get_vector(items[0].id)) == vector_to_bytes(vec)

    def test_upsert_replaces(self, store, items):
        store.store_vector(items[0].id, [1.0, 0.0])
        store.store_vector(items[0].id, [0.0, 1.0, 0.0])

        assert store.get_stats().total_vectors == 1
        assert np.array_equal(store.get_vector(items[0].id), [0.0, 1.0, 0.0])

    @pytest.mark.parametrize("vector", [[], [float("nan")], [1.0, float("inf")]])
    def test_invalid_vector_rejected(self, store, items, vector):
        with pytest.raises(InvalidVectorError):
            store.store_vector(items[0].id, vector)

        assert store.get_vector(items[0].id) is None

    def test_unknown_item_rejected(self, store):
        with pytest.raises(DatabaseError):
            store.store_vector(12345, [1.0, 0.0])

    def test_delete_item_cascades(self, store, repo, items):
        store.index_all()

        repo.delete(items[0].id)

        assert store.get_vector(items[0].id) is None
        assert store.get_stats().total_vectors == len(items) - 1


class TestIndexAll:
    """Tests for bulk indexing."""

    def test_indexes_every_item(self, store, items):
        assert store.index_all() == len(items)

        stats = store.get_stats()
        assert stats.total_vectors == len(items)
        assert stats.coverage == 1.0
        assert stats.avg_dimension == 100

    def test_idempotent(self, store, items):
        first = store.index_all()
        before = {item.id: vector_to_bytes(store.get_vector(item.id)) for item in items}

        second = store.index_all()
        after = {item.id: vector_to_bytes(store.get_vector(item.id)) for item in items}

        assert first == second
        assert before == after
        assert store.get_stats().total_vectors == len(items)

    def test_skips_items_without_text(self, store, repo, items):
        repo.create(Item(name="", sku=""))

        assert store.index_all() == len(items)

    def test_update_item_vector(self, store, repo, items):
        store.index_all()
        before = store.get_vector(items[0].id)

        item = repo.get(items[0].id)
        item.name = "Hydraulic hose"
        repo.update(item)

        assert store.update_item_vector(item)
        assert not np.array_equal(store.get_vector(item.id), before)

    def test_update_item_without_id(self, store):
        assert not store.update_item_vector(Item(name="Bolt", sku="B-1"))


class TestSearchSimilar:
    """Tests for text-to-vector similarity search."""

    def test_best_match_first(self, store, items):
        store.index_all()

        results = store.search_similar("Hydraulic Pump HP-200", limit=5, threshold=0.0)

        assert results[0].item.sku == "PUMP-HP-200"
        assert results[0].match_type == MatchType.VECTOR
        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)

    def test_limit(self, store, items):
        store.index_all()

        assert len(store.search_similar("bolt", limit=3, threshold=0.0)) == 3

    def test_threshold_filters(self, store, items):
        store.index_all()

        assert store.search_similar("bolt", limit=10, threshold=1.5) == []

    def test_empty_query(self, store, items):
        store.index_all()

        assert store.search_similar("   ", limit=10, threshold=0.0) == []

    def test_no_vectors(self, store, items):
        assert store.search_similar("bolt", limit=10, threshold=0.0) == []

    def test_missing_items_dropped(self, store, repo, items, monkeypatch):
        store.index_all()
        real_get_many = repo.get_many

        def partial_get_many(ids):
            found = real_get_many(ids)
            found.pop(items[0].id, None)
            return found

        monkeypatch.setattr(repo, "get_many", partial_get_many)

        results = store.search_similar("Bolt M6x20", limit=len(items), threshold=0.0)

        assert len(results) == len(items) - 1
        assert items[0].id not in [r.item.id for r in results]

    def test_corrupt_vector_skipped(self, store, repo, items):
        store.index_all()
        with repo.connection() as conn:
            conn.execute(
                "UPDATE item_vectors SET vector = ? WHERE item_id = ?",
                (b"\x00" * 13, items[0].id)
            )

        results = store.search_similar("Bolt M6x20", limit=len(items), threshold=0.0)

        assert items[0].id not in [r.item.id for r in results]
        assert store.get_vector(items[0].id) is None

    def test_dimension_mismatch_scores_zero(self, store, items):
        store.index_all()
        store.store_vector(items[0].id, [1.0, 0.0, 0.0])

        results = store.search_similar("Bolt M6x20", limit=len(items), threshold=0.0)
        by_id = {r.item.id: r.score for r in results}

        assert by_id[items[0].id] == 0.0

    def test_ties_ordered_by_item_id(self, store, items):
        for item in items[:3]:
            store.store_vector(item.id, store.engine.embed("identical text"))

        results = store.search_similar("identical text", limit=3, threshold=0.0)

        assert [r.item.id for r in results] == sorted(item.id for item in items[:3])


class TestFindSimilarItems:
    """Tests for item-to-item similarity."""

    def test_excludes_target(self, store, items):
        store.index_all()

        results = store.find_similar_items(items[0].id, limit=len(items))

        assert items[0].id not in [r.item.id for r in results]
        assert len(results) == len(items) - 1

    def test_ranked_by_similarity(self, store, items):
        store.store_vector(items[0].id, [1.0, 0.0, 0.0])
        store.store_vector(items[1].id, [0.6, 0.8, 0.0])
        store.store_vector(items[2].id, [0.0, 0.0, 1.0])
        store.store_vector(items[3].id, [-1.0, 0.0, 0.0])

        results = store.find_similar_items(items[0].id, limit=3)

        assert [r.item.id for r in results] == [items[1].id, items[2].id, items[3].id]
        assert [r.score for r in results] == pytest.approx([0.8, 0.5, 0.0])

    def test_no_vector_for_target(self, store, items):
        assert store.find_similar_items(items[0].id) == []

    def test_unknown_target(self, store, items):
        store.index_all()

        assert store.find_similar_items(99999) == []


class TestMaintenance:
    """Tests for stats and deletion."""

    def test_stats_partial_coverage(self, store, items):
        for item in items[:2]:
            store.update_item_vector(item)

        stats = store.get_stats()

        assert stats.total_vectors == 2
        assert stats.total_items == len(CATALOG)
        assert stats.coverage == pytest.approx(2 / len(CATALOG))

    def test_stats_empty(self, store):
        assert store.get_stats() == VectorStats.empty()

    def test_delete_vector(self, store, items):
        store.index_all()

        assert store.delete_vector(items[1].id)
        assert store.get_vector(items[1].id) is None
        assert not store.delete_vector(items[1].id)

    def test_clear_all_vectors(self, store, items):
        store.index_all()

        assert store.clear_all_vectors() == len(items)
        assert store.get_stats().total_vectors == 0


class TestStoreUnavailable:
    """Tests for degraded behaviour when the database cannot be opened."""

    def test_reads_return_empty(self, store, repo, items, monkeypatch):
        store.index_all()
        monkeypatch.setattr(repo, "connection", _broken_connection)

        assert store.search_similar("bolt", limit=10, threshold=0.0) == []
        assert store.find_similar_items(items[0].id) == []
        assert store.get_vector(items[0].id) is None
        assert store.get_stats() == VectorStats.empty()

    def test_setup_raises(self, repo, monkeypatch):
        monkeypatch.setattr(repo, "connection", _broken_connection)

        with pytest.raises(SetupFailedError):
            VectorStore(repo).setup_vector_table()
