"""Tests for the multi-tier search engine."""

import pytest

from roamdex.engine.bus import EventBus, Event
from roamdex.engine.config import SearchConfig, EnrichmentConfig
from roamdex.engine.enrichment import EnrichmentResponse
from roamdex.engine.models import Record
from roamdex.engine.search import SearchEngine, SearchOptions, generate_snippet
from roamdex.engine.store import MemoryRecordStore


NONSENSE = "qqqq zzzz xxxx"


class FakeEnrichment:
    """Stands in for the HTTP client at the engine boundary."""

    def __init__(self, response=None, error=None):
        self.config = EnrichmentConfig()
        self.response = response
        self.error = error
        self.calls = []

    async def enhance(self, query, context=None):
        self.calls.append((query, context))
        if self.error is not None:
            raise self.error
        return self.response

    def health(self):
        return {"state": "healthy"}


@pytest.fixture
def engine(store):
    return SearchEngine(store)


def keys(results):
    return [r.key for r in results]


@pytest.mark.asyncio
async def test_search_initializes_lazily(engine):
    results = await engine.search("Eiffel")

    assert engine.index.is_built
    assert results[0].key == "pins:p1"
    assert results[0].score == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_initialize_is_idempotent(engine):
    await engine.initialize()
    first = engine.index.snapshot
    await engine.initialize()
    assert engine.index.snapshot is first


@pytest.mark.asyncio
async def test_limit_and_no_duplicates(engine):
    for limit in (1, 2, 5, 20):
        results = await engine.search("paris", SearchOptions(limit=limit))
        assert len(results) <= limit
        assert len(set(keys(results))) == len(results)


@pytest.mark.asyncio
@pytest.mark.parametrize("query", ["paris", "temple in tokyo", "dinner with Maria", "mountain hike"])
async def test_results_sorted_by_score(engine, query):
    results = await engine.search(query)
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    assert all(0 <= s <= 1 for s in scores)


@pytest.mark.asyncio
async def test_repeated_search_is_identical(engine):
    first = await engine.search("Paris food")
    second = await engine.search("Paris food")

    assert [(r.key, r.score, r.matched_fields) for r in first] == \
        [(r.key, r.score, r.matched_fields) for r in second]


@pytest.mark.asyncio
async def test_module_filter(engine):
    results = await engine.search("paris", SearchOptions(modules=["people"]))

    assert results
    assert {r.collection for r in results} == {"people"}


@pytest.mark.asyncio
async def test_unknown_module_yields_nothing(engine):
    assert await engine.search("paris", SearchOptions(modules=["nope"])) == []

    mixed = await engine.search("paris", SearchOptions(modules=["nope", "pins"]))
    assert mixed
    assert {r.collection for r in mixed} == {"pins"}


@pytest.mark.asyncio
async def test_typo_found_by_fuzzy_tier(engine):
    results = await engine.search("Eifel Towr")

    assert "pins:p1" in keys(results)
    top = results[0]
    assert top.key == "pins:p1"
    assert top.score < 1.0


@pytest.mark.asyncio
async def test_entity_and_filter_tags_accumulate(engine):
    results = await engine.search("dinner with Maria")
    by_key = {r.key: r for r in results}

    assert "people:pe1" in by_key
    assert "person" in by_key["people:pe1"].matched_fields
    assert "people" in by_key["people:pe1"].matched_fields
    assert "journal:j1" in by_key


@pytest.mark.asyncio
async def test_exact_tier_can_be_advisory(store):
    engine = SearchEngine(store, search_config=SearchConfig(exact_tier_authoritative=False))
    results = await engine.search("Eiffel")

    assert results[0].key == "pins:p1"
    assert results[0].score == pytest.approx(0.8, abs=0.01)


@pytest.mark.asyncio
async def test_threshold_filters_weak_matches(engine):
    loose = await engine.search("tower", SearchOptions(threshold=0.0))
    strict = await engine.search("tower", SearchOptions(threshold=0.99))

    assert len(strict) <= len(loose)
    assert keys(strict) == ["pins:p1"]


@pytest.mark.asyncio
async def test_snippet_truncated(store):
    long_text = "The lagoon " + "stretches past white sand and quiet villages " * 5
    await store.add("journal", {"id": "j9", "title": "Lagoon day", "description": long_text})
    engine = SearchEngine(store)

    results = await engine.search("lagoon")
    hit = next(r for r in results if r.key == "journal:j9")

    assert len(hit.snippet) <= 153
    assert hit.snippet.endswith("...")


@pytest.mark.asyncio
async def test_fuzzy_failure_in_one_collection(engine, monkeypatch):
    await engine.initialize()

    def boom(*args, **kwargs):
        raise RuntimeError("index corrupted")

    monkeypatch.setattr(engine.index.snapshot.fuzzy["journal"], "search", boom)

    results = await engine.search("Paris")
    assert "people:pe1" in keys(results)


@pytest.mark.asyncio
async def test_empty_store():
    engine = SearchEngine(MemoryRecordStore())
    assert await engine.search("anything at all") == []
    assert await engine.semantic_search("dinner with Maria in Paris") == []


@pytest.mark.asyncio
async def test_semantic_search(engine):
    results = await engine.semantic_search("dinner with Maria in Paris")

    assert "people:pe1" in keys(results)
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)
    tags = {"people", "places", "location", "person"}
    assert all(tags & set(r.matched_fields) for r in results)


@pytest.mark.asyncio
async def test_semantic_search_modules(engine):
    results = await engine.semantic_search("dinner with Maria in Paris", modules=["journal"])

    assert results
    assert {r.collection for r in results} == {"journal"}


@pytest.mark.asyncio
async def test_semantic_search_without_entities(engine):
    assert await engine.semantic_search("some plain words") == []


@pytest.mark.asyncio
async def test_enrichment_rejection_keeps_local_results(store):
    """Test that a failing enrichment client never reaches the caller."""
    local = await SearchEngine(store).search("sunset views over Paris")

    fake = FakeEnrichment(error=ConnectionError("offline"))
    engine = SearchEngine(store, enrichment=fake)
    results = await engine.search("sunset views over Paris")

    assert [(r.key, r.score) for r in results] == [(r.key, r.score) for r in local]

    assert await engine.search(NONSENSE) == []
    assert fake.calls


@pytest.mark.asyncio
async def test_enrichment_replaces_weaker_results(store):
    fake = FakeEnrichment(response=EnrichmentResponse(search_terms=["ramen"]))
    engine = SearchEngine(store, enrichment=fake)

    results = await engine.search(NONSENSE)

    assert keys(results)[0] == "food:f1"
    assert fake.calls == [(NONSENSE, [])]
    assert engine.get_statistics()["enrichment_successes"] == 1


@pytest.mark.asyncio
async def test_enrichment_not_triggered_for_short_queries(store):
    fake = FakeEnrichment(response=EnrichmentResponse(search_terms=["ramen"]))
    engine = SearchEngine(store, enrichment=fake)

    assert await engine.search("qqqqzzzz") == []
    assert fake.calls == []


@pytest.mark.asyncio
async def test_enrichment_fallback_response_is_ignored(store):
    fake = FakeEnrichment(response=EnrichmentResponse.fallback(NONSENSE, error="timeout"))
    engine = SearchEngine(store, enrichment=fake)

    assert await engine.search(NONSENSE) == []
    assert len(fake.calls) == 1


@pytest.mark.asyncio
async def test_search_events_and_statistics(store):
    bus = EventBus()
    await bus.start()
    completed = []

    async def handler(event: Event):
        completed.append(event)

    bus.subscribe("search.completed", handler)

    engine = SearchEngine(store, bus=bus)
    await engine.search("paris")
    await engine.semantic_search("dinner with Maria in Paris")
    await bus.drain()

    assert [e.data["mode"] for e in completed] == ["search", "semantic"]

    stats = engine.get_statistics()
    assert stats["searches"] == 2
    assert stats["index"]["records"] == 9
    assert stats["index"]["failed_collections"] == []

    await bus.stop()


def test_generate_snippet_picks_best_sentence():
    record = Record(
        id="x",
        type="journal",
        title="Kyoto",
        description="We arrived late. The golden temple glowed at dusk! Dinner was ramen.",
    )

    assert generate_snippet(record, "golden temple") == "The golden temple glowed at dusk"
    assert generate_snippet(record, "nothing matches") is None


def test_generate_snippet_falls_back_to_title():
    record = Record(id="x", type="people", name="Kenji Sato")
    assert generate_snippet(record, "kenji") == "Kenji Sato"


def test_default_options_overrides(engine):
    options = engine.default_options(limit=3, modules=["pins"])
    assert (options.limit, options.threshold, options.modules) == (3, 0.3, ["pins"])

    with pytest.raises(TypeError):
        engine.default_options(threshhold=0.5)
