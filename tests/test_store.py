"""Tests for the JSON-backed VectorMemoryStore."""

from __future__ import annotations

import asyncio
import json

import pytest

from chatkeep.errors import ValidationError
from chatkeep.store import VectorMemoryStore


class TestStoreAndGet:
    def test_initial_count_is_zero(self, vector_store: VectorMemoryStore):
        assert asyncio.run(vector_store.count()) == 0

    def test_store_and_get(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("id1", [1.0, 0.0, 0.0], {"key": "val"}))
        record = asyncio.run(vector_store.get("id1"))
        assert record.embedding == (1.0, 0.0, 0.0)
        assert record.metadata["key"] == "val"
        assert record.metadata["dimensions"] == 3
        assert isinstance(record.metadata["timestamp"], int)

    def test_returned_records_are_copies(self, vector_store: VectorMemoryStore):
        stored = asyncio.run(vector_store.store("id1", [1.0, 0.0], {"tag": "original"}))
        stored.metadata["tag"] = "changed by store() caller"
        fetched = asyncio.run(vector_store.get("id1"))
        fetched.metadata["tag"] = "changed by get() caller"

        assert asyncio.run(vector_store.get("id1")).metadata["tag"] == "original"
        asyncio.run(vector_store.save())
        data = json.loads(vector_store.path.read_text(encoding="utf-8"))
        assert data["metadata"]["id1"]["tag"] == "original"

    def test_get_missing_returns_none(self, vector_store: VectorMemoryStore):
        assert asyncio.run(vector_store.get("nope")) is None

    def test_store_same_id_overwrites(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("id1", [1.0, 0.0], {"v": 1, "old": True}))
        asyncio.run(vector_store.store("id1", [0.0, 1.0], {"v": 2}))

        assert asyncio.run(vector_store.count()) == 1
        record = asyncio.run(vector_store.get("id1"))
        assert record.embedding == (0.0, 1.0)
        assert record.metadata["v"] == 2
        assert "old" not in record.metadata

    def test_dimension_mismatch_rejected(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("a", [1.0, 2.0, 3.0]))
        with pytest.raises(ValidationError):
            asyncio.run(vector_store.store("b", [1.0, 2.0]))
        assert asyncio.run(vector_store.count()) == 1

    def test_empty_vector_rejected(self, vector_store: VectorMemoryStore):
        with pytest.raises(ValidationError):
            asyncio.run(vector_store.store("a", []))

    def test_empty_id_rejected(self, vector_store: VectorMemoryStore):
        with pytest.raises(ValidationError):
            asyncio.run(vector_store.store("", [1.0]))


class TestSearch:
    def test_scenario_first_vector_ranks_first(self, vector_store: VectorMemoryStore):
        vectors = {
            "first": [1.0, 0.0, 0.0, 0.0],
            "second": [0.0, 1.0, 0.0, 0.0],
            "third": [0.5, 0.5, 0.5, 0.5],
        }
        for id_, vec in vectors.items():
            asyncio.run(vector_store.store(id_, vec))

        hits = asyncio.run(vector_store.search([1.0, 0.0, 0.0, 0.0], 2))
        assert len(hits) == 2
        assert hits[0].id == "first"
        assert hits[0].similarity == pytest.approx(1.0)
        assert hits[1].id == "third"

    def test_results_sorted_by_similarity(self, vector_store: VectorMemoryStore):
        for i, vec in enumerate([[1, 0], [0, 1], [1, 1], [-1, 0], [1, 2]]):
            asyncio.run(vector_store.store(f"v{i}", vec))
        hits = asyncio.run(vector_store.search([1.0, 0.3], 5))
        sims = [h.similarity for h in hits]
        assert sims == sorted(sims, reverse=True)

    def test_self_similarity_is_one(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("other", [3.0, 1.0, 2.0]))
        asyncio.run(vector_store.store("me", [0.2, 0.9, -0.4]))
        hits = asyncio.run(vector_store.search([0.2, 0.9, -0.4], 1))
        assert hits[0].id == "me"
        assert hits[0].similarity == pytest.approx(1.0)

    def test_ties_keep_insertion_order(self, vector_store: VectorMemoryStore):
        for id_ in ["b", "a", "c"]:
            asyncio.run(vector_store.store(id_, [1.0, 1.0]))
        hits = asyncio.run(vector_store.search([1.0, 1.0], 3))
        assert [h.id for h in hits] == ["b", "a", "c"]

    def test_fewer_records_than_k(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("only", [1.0, 0.0]))
        assert len(asyncio.run(vector_store.search([1.0, 0.0], 10))) == 1

    def test_empty_store_returns_empty(self, vector_store: VectorMemoryStore):
        assert asyncio.run(vector_store.search([1.0, 0.0], 3)) == []

    def test_non_positive_k_rejected(self, vector_store: VectorMemoryStore):
        with pytest.raises(ValidationError):
            asyncio.run(vector_store.search([1.0], 0))

    def test_query_dimension_mismatch_rejected(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("a", [1.0, 0.0, 0.0]))
        with pytest.raises(ValidationError):
            asyncio.run(vector_store.search([1.0, 0.0], 1))

    def test_zero_vector_scores_zero(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("zero", [0.0, 0.0]))
        hits = asyncio.run(vector_store.search([1.0, 0.0], 1))
        assert hits[0].similarity == 0.0


class TestDelete:
    def test_delete_missing_is_noop(self, vector_store: VectorMemoryStore):
        assert asyncio.run(vector_store.delete("ghost")) is False
        assert not vector_store.path.exists()

    def test_delete_flushes_immediately(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("keep", [1.0, 0.0]))
        asyncio.run(vector_store.store("drop", [0.0, 1.0]))

        assert asyncio.run(vector_store.delete("drop")) is True

        data = json.loads(vector_store.path.read_text(encoding="utf-8"))
        assert list(data["vectors"]) == ["keep"]
        assert data["count"] == 1

    def test_clear_flushes(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("a", [1.0]))
        asyncio.run(vector_store.clear())
        data = json.loads(vector_store.path.read_text(encoding="utf-8"))
        assert data["vectors"] == {}
        assert asyncio.run(vector_store.count()) == 0


class TestPersistence:
    def test_flushes_every_kth_insert(self, vector_store: VectorMemoryStore):
        # The settings fixture uses flush_every=3.
        asyncio.run(vector_store.store("a", [1.0, 0.0]))
        asyncio.run(vector_store.store("b", [0.0, 1.0]))
        assert not vector_store.path.exists()

        asyncio.run(vector_store.store("c", [1.0, 1.0]))
        data = json.loads(vector_store.path.read_text(encoding="utf-8"))
        assert data["count"] == 3
        assert set(data["metadata"]["a"]) >= {"timestamp", "dimensions"}
        assert "lastSaved" in data

    def test_reload_from_disk(self, vector_store: VectorMemoryStore, settings):
        asyncio.run(vector_store.store("a", [1.0, 0.0], {"content": "hello"}))
        asyncio.run(vector_store.save())

        reopened = VectorMemoryStore(settings=settings)
        record = asyncio.run(reopened.get("a"))
        assert record.embedding == (1.0, 0.0)
        assert record.metadata["content"] == "hello"
        assert reopened.loaded

    def test_malformed_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("{{{ not json", encoding="utf-8")
        store = VectorMemoryStore(path=path)
        assert asyncio.run(store.count()) == 0
        asyncio.run(store.store("x", [1.0]))
        assert asyncio.run(store.count()) == 1

    def test_mixed_dimensions_on_disk_are_dropped(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text(
            json.dumps(
                {
                    "vectors": {
                        "a": {"embedding": [1.0, 0.0]},
                        "b": {"embedding": [1.0, 0.0, 0.0]},
                        "c": {"embedding": [0.0, 1.0]},
                    },
                    "metadata": {"a": {"timestamp": 5, "dimensions": 2}},
                }
            ),
            encoding="utf-8",
        )
        store = VectorMemoryStore(path=path)
        assert asyncio.run(store.ids()) == ["a", "c"]
        assert asyncio.run(store.get("a")).inserted_at == 5

    def test_non_utf8_file_starts_empty(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_bytes(b"\xff\xfe not utf8")
        store = VectorMemoryStore(path=path)

        assert asyncio.run(store.count()) == 0
        assert asyncio.run(store.search([1.0], 1)) == []
        asyncio.run(store.store("x", [1.0]))
        assert asyncio.run(store.ids()) == ["x"]

    @pytest.mark.parametrize("bad_timestamp", ["Infinity", "-Infinity", "NaN", '"soon"'])
    def test_non_finite_timestamp_defaults_to_zero(self, tmp_path, bad_timestamp):
        path = tmp_path / "store.json"
        path.write_text(
            '{"vectors": {"a": {"embedding": [1.0]}, "b": {"embedding": [2.0]}},'
            ' "metadata": {"a": {"timestamp": %s}, "b": {"timestamp": 7}}}' % bad_timestamp,
            encoding="utf-8",
        )
        store = VectorMemoryStore(path=path)

        assert asyncio.run(store.ids()) == ["a", "b"]
        assert asyncio.run(store.get("a")).inserted_at == 0
        assert asyncio.run(store.get("b")).inserted_at == 7

    def test_flush_failure_keeps_mutation(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        store = VectorMemoryStore(path=blocker / "store.json", flush_every=1)

        record = asyncio.run(store.store("a", [1.0, 2.0]))

        assert asyncio.run(store.get("a")) == record
        assert asyncio.run(store.delete("a")) is True
        assert asyncio.run(store.count()) == 0


class TestStats:
    def test_empty_stats(self, vector_store: VectorMemoryStore):
        stats = asyncio.run(vector_store.get_stats())
        assert stats["totalVectors"] == 0
        assert stats["dimensions"] == 0

    def test_stats_after_insert(self, vector_store: VectorMemoryStore):
        asyncio.run(vector_store.store("a", [1.0, 2.0, 3.0, 4.0]))
        stats = asyncio.run(vector_store.get_stats())
        assert stats["totalVectors"] == 1
        assert stats["dimensions"] == 4
        assert stats["approxSizeBytes"] > 0
