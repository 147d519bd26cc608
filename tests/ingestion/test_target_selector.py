"""
Unit tests for core.ingestion.target_selector module.

Selection runs against fixed snapshots only.
"""

import pytest

from core.ingestion.target_selector import (
    EMBEDDING,
    HIERARCHY,
    TargetSelector,
    all_of,
    any_of,
    category_in,
    embedding_backfill_selector,
    has_items,
    lacks_enrichment,
    load_snapshot,
    missing_chunks_selector,
    reingestion_selector,
)


@pytest.fixture
def snapshot():
    return load_snapshot([
        {"id": "law-ok", "category": "law", "locator": "a.pdf", "total_items": 50,
         "enriched": {"embedding": 50, "hierarchy": 50, "keywords": 50}},
        {"id": "law-flat", "category": "law", "locator": "b.pdf", "total_items": 30,
         "enriched": {"embedding": 30, "hierarchy": 0}},
        {"id": "circular-flat", "category": "circular", "locator": "c.pdf", "total_items": 12,
         "enriched": {"embedding": 6, "hierarchy": 0}},
        {"id": "law-empty", "category": "law", "locator": "d.pdf", "total_items": 0},
        {"id": "circular-empty", "category": "circular", "locator": "e.pdf", "total_items": 0},
        {"id": "circular-nofile", "category": "circular", "locator": None, "total_items": 0},
    ])


def _ids(targets):
    return [t.target_id for t in targets]


class TestSnapshot:

    def test_missing_and_quality(self, snapshot):
        flat = snapshot[1]
        assert flat.missing(HIERARCHY) == 30
        assert flat.missing(EMBEDDING) == 0
        assert flat.quality_score() == 40
        assert snapshot[0].quality_score() == 100
        assert snapshot[3].quality_score() == 0


class TestSelectors:

    def test_reingestion(self, snapshot):
        """Chunked law sources without hierarchy only."""
        assert _ids(reingestion_selector().select(snapshot)) == ["law-flat"]

    def test_reingestion_other_categories(self, snapshot):
        selected = reingestion_selector(["law", "circular"]).select(snapshot)
        assert _ids(selected) == ["law-flat", "circular-flat"]

    def test_missing_chunks(self, snapshot):
        """Unchunked documents that still have a stored file."""
        assert _ids(missing_chunks_selector().select(snapshot)) == ["law-empty", "circular-empty"]
        assert _ids(missing_chunks_selector(["circular"]).select(snapshot)) == ["circular-empty"]

    def test_embedding_backfill_sets_expected_units(self, snapshot):
        selected = embedding_backfill_selector().select(snapshot)
        assert _ids(selected) == ["circular-flat"]
        assert selected[0].expected_units == 6

    def test_selection_is_pure(self, snapshot):
        """Same snapshot, same answer, snapshot untouched."""
        selector = embedding_backfill_selector()
        first = selector.select(snapshot)
        second = selector.select(snapshot)
        assert _ids(first) == _ids(second)
        assert snapshot[2].target.expected_units is None

    def test_order_preserved(self, snapshot):
        selector = TargetSelector(any_of(has_items(), category_in("circular")))
        assert _ids(selector(snapshot)) == [
            "law-ok", "law-flat", "circular-flat", "circular-empty", "circular-nofile",
        ]

    def test_combinators(self, snapshot):
        selector = TargetSelector(all_of(category_in("law"), lacks_enrichment(HIERARCHY)))
        assert _ids(selector.select(snapshot)) == ["law-flat", "law-empty"]

    def test_empty_snapshot(self):
        assert reingestion_selector().select([]) == []
