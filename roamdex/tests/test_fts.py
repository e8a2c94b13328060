"""Tests for the whoosh-backed token index."""

import pytest

from roamdex.engine.indexers.fts import TokenIndex
from roamdex.engine.models import Record, SearchIndexEntry


def make_entry(collection, **fields):
    return SearchIndexEntry.from_record(Record(type=collection, **fields), collection)


@pytest.fixture
def token_index():
    return TokenIndex.build([
        make_entry("pins", id="p1", title="Eiffel Tower", description="Iron tower in Paris",
                   location="Paris", tags=["landmark", "paris"]),
        make_entry("people", id="pe1", name="Maria Lopez", description="Friend from Paris",
                   location="Paris"),
        make_entry("food", id="f1", name="Ramen Ichiran", description="Tonkotsu ramen",
                   location="Tokyo", tags=["noodles"]),
    ])


def test_doc_count(token_index):
    assert token_index.doc_count == 3


def test_exact_word_full_coverage(token_index):
    hits = token_index.search("tower")

    assert [h.key for h in hits] == ["pins:p1"]
    assert hits[0].collection == "pins"
    assert hits[0].coverage == 1.0
    assert "title" in hits[0].matched_fields
    assert "description" in hits[0].matched_fields


def test_prefix_partial_credit(token_index):
    hits = token_index.search("tow")

    assert [h.key for h in hits] == ["pins:p1"]
    assert hits[0].coverage == pytest.approx(0.75)


def test_coverage_counts_missing_tokens(token_index):
    hits = {h.key: h for h in token_index.search("ramen kyoto")}
    assert hits["food:f1"].coverage == pytest.approx(0.5)


def test_tags_are_searchable(token_index):
    hits = token_index.search("landmark")
    assert [h.key for h in hits] == ["pins:p1"]
    assert hits[0].matched_fields == ["tags"]


def test_collection_filter(token_index):
    hits = token_index.search("paris", collections=["people"])
    assert [h.key for h in hits] == ["people:pe1"]


def test_empty_collection_filter(token_index):
    assert token_index.search("paris", collections=[]) == []


def test_stopword_only_query(token_index):
    assert token_index.search("the") == []


def test_empty_index():
    assert TokenIndex().search("paris") == []


def test_tokenize():
    assert TokenIndex().tokenize("The Eiffel TOWER") == ["eiffel", "tower"]
