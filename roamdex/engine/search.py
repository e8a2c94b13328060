"""Multi-tier local search with max-score fusion.

A query runs through three tiers against the current index snapshot:

1. exact/prefix lookups in the whoosh token index
2. weighted fuzzy matching per collection
3. secondary sub-queries built from the planner's terms, entities and
   filters, each re-running tiers 1 and 2 and scaled down

Every candidate is keyed by ``collection:id``; the highest score seen for a
key wins and the provenance tags of all contributions are kept. When local
retrieval is weak, an optional enrichment service can suggest alternate
terms; its failures never reach the caller.
"""

import asyncio
import re
import time
from typing import List, Dict, Any, Optional, Sequence
from dataclasses import dataclass, replace
from collections import defaultdict

from loguru import logger

from .analyzer import TextAnalyzer
from .bus import Event, EventBus
from .config import Config, IndexConfig, SearchConfig, TierWeights, EnrichmentConfig
from .enrichment import EnrichmentClient
from .index import IndexBuilder, IndexSnapshot
from .models import Record, ScoredResult
from .planner import QueryPlanner
from .store import RecordStore


TERMS_LIMIT = 10
ENTITY_LIMIT = 5
LOCATION_LIMIT = 10
PERSON_LIMIT = 5

_SENTENCE_SPLIT = re.compile(r"[.!?]+")


@dataclass
class SearchOptions:
    modules: Optional[List[str]] = None
    limit: int = 20
    threshold: float = 0.3
    enrich: bool = True


@dataclass
class _SubQuery:
    text: str
    modules: List[str]
    weight: float
    tag: str
    limit: int


def generate_snippet(record: Record, query: str, max_length: int = 150) -> Optional[str]:
    """
    Sentence of the record's main text mentioning the most query words.

    Looks at description, then content, then title/name, whichever is set
    first. Returns None when no sentence mentions any query word.
    """
    text = record.description or record.content or record.title or record.name or ""
    words = query.lower().split()
    if not text or not words:
        return None

    best_sentence = ""
    max_matches = 0
    for sentence in _SENTENCE_SPLIT.split(text):
        lowered = sentence.lower()
        matches = sum(1 for word in words if word in lowered)
        if matches > max_matches:
            max_matches = matches
            best_sentence = sentence

    best_sentence = best_sentence.strip()
    if not best_sentence:
        return None
    if len(best_sentence) > max_length:
        return best_sentence[:max_length] + "..."
    return best_sentence


def fuse(candidates: Dict[str, ScoredResult], results: Sequence[ScoredResult]) -> None:
    """Merge results into the candidate map: max score wins, tags accumulate."""
    for result in results:
        current = candidates.get(result.key)
        if current is None:
            candidates[result.key] = ScoredResult(
                entry=result.entry,
                score=result.score,
                matched_fields=list(result.matched_fields),
            )
            continue
        current.matched_fields.extend(result.matched_fields)
        if result.score > current.score:
            current.score = result.score


def rank(candidates: Dict[str, ScoredResult], limit: Optional[int] = None) -> List[ScoredResult]:
    # sorted() is stable, so equal scores keep tier order
    ranked = sorted(candidates.values(), key=lambda r: r.score, reverse=True)
    return ranked[:limit] if limit is not None else ranked


class SearchEngine:
    """
    Local search over every record collection.

    All state shared between calls lives in the immutable index snapshot;
    each call builds its own candidate map, so overlapping searches are
    safe.
    """

    def __init__(self,
                 store: RecordStore,
                 index_config: Optional[IndexConfig] = None,
                 search_config: Optional[SearchConfig] = None,
                 weights: Optional[TierWeights] = None,
                 enrichment: Optional[EnrichmentClient] = None,
                 enrichment_config: Optional[EnrichmentConfig] = None,
                 analyzer: Optional[TextAnalyzer] = None,
                 planner: Optional[QueryPlanner] = None,
                 bus: Optional[EventBus] = None,
                 index: Optional[IndexBuilder] = None):
        self.store = store
        self.search_config = search_config or SearchConfig()
        self.weights = weights or TierWeights()
        self.enrichment = enrichment
        self.enrichment_config = enrichment_config or (
            enrichment.config if enrichment is not None else EnrichmentConfig()
        )
        self.analyzer = analyzer or TextAnalyzer()
        self.planner = planner or QueryPlanner(self.analyzer)
        self.bus = bus
        self.index = index or IndexBuilder(store, index_config, bus=bus)

        self._init_lock = asyncio.Lock()
        self._stats: Dict[str, float] = defaultdict(float)

    @classmethod
    def from_config(cls,
                    store: RecordStore,
                    config: Config,
                    bus: Optional[EventBus] = None) -> "SearchEngine":
        analyzer = TextAnalyzer()
        enrichment = None
        if config.enrichment.enabled:
            enrichment = EnrichmentClient(config.enrichment, analyzer=analyzer)
        return cls(
            store,
            index_config=config.index,
            search_config=config.search,
            weights=config.weights,
            enrichment=enrichment,
            enrichment_config=config.enrichment,
            analyzer=analyzer,
            bus=bus,
        )

    def default_options(self, **overrides) -> SearchOptions:
        options = SearchOptions(
            limit=self.search_config.limit,
            threshold=self.search_config.threshold,
        )
        return replace(options, **overrides)

    async def initialize(self) -> None:
        """Build the index once; later calls are no-ops."""
        async with self._init_lock:
            if not self.index.is_built:
                await self.index.build_index()

    async def rebuild_index(self) -> None:
        await self.index.rebuild_index()

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> List[ScoredResult]:
        """
        Run all three tiers and return fused results, best first.

        Args:
            query: Free-text query
            options: Collections to search, result limit, score threshold

        Returns:
            At most ``options.limit`` results, one per record
        """
        options = options or self.default_options()
        start = time.perf_counter()

        results: List[ScoredResult] = []
        try:
            snapshot = await self._current_snapshot()
            modules = self._resolve_modules(snapshot, options.modules)

            candidates: Dict[str, ScoredResult] = {}
            fuse(candidates, await self._base_search(snapshot, query, modules, options.threshold, options.limit))
            fuse(candidates, await self._semantic_tier(snapshot, query, modules, options.threshold, include_terms=True))

            results = rank(candidates, options.limit)
            self._attach_snippets(results, query)
        except Exception as e:
            logger.error(f"Search failed for {query!r}: {e}")
            results = []

        if options.enrich:
            results = await self.maybe_enrich(query, results, options)

        self._record_search(query, results, start, mode="search")
        return results

    async def semantic_search(self, query: str, modules: Optional[List[str]] = None) -> List[ScoredResult]:
        """
        Entity and filter sub-queries only, for "X in Y" / "X with Y" queries.

        Returns every match sorted by score; no limit is applied.
        """
        start = time.perf_counter()
        results: List[ScoredResult] = []
        try:
            snapshot = await self._current_snapshot()
            resolved = self._resolve_modules(snapshot, modules)

            candidates: Dict[str, ScoredResult] = {}
            fuse(candidates, await self._semantic_tier(
                snapshot, query, resolved, self.search_config.threshold, include_terms=False
            ))
            results = rank(candidates)
            self._attach_snippets(results, query)
        except Exception as e:
            logger.error(f"Semantic search failed for {query!r}: {e}")
            results = []

        self._record_search(query, results, start, mode="semantic")
        return results

    async def maybe_enrich(self,
                           query: str,
                           results: List[ScoredResult],
                           options: Optional[SearchOptions] = None) -> List[ScoredResult]:
        """
        Ask the enrichment service for alternate terms when local results are weak.

        The alternate terms are re-run through the base tiers; the new
        results replace the old ones only if there are strictly more of
        them. Any failure returns ``results`` unchanged.
        """
        if self.enrichment is None:
            return results

        config = self.enrichment_config
        if len(query) <= config.min_query_length or len(results) >= config.min_results:
            return results

        options = options or self.default_options()
        self._stats['enrichment_attempts'] += 1
        try:
            context = [r.record.to_dict() for r in results[:config.max_context]]
            response = await self.enrichment.enhance(query, context)
            if response.failed:
                self._emit("enrichment.failed", {"query": query, "error": response.error})
                return results
            if not response.search_terms:
                return results

            alternate = " ".join(response.search_terms)
            snapshot = await self._current_snapshot()
            modules = self._resolve_modules(snapshot, options.modules)
            candidates: Dict[str, ScoredResult] = {}
            fuse(candidates, await self._base_search(snapshot, alternate, modules, options.threshold, options.limit))
            enriched = rank(candidates, options.limit)

            if len(enriched) > len(results):
                self._attach_snippets(enriched, alternate)
                self._stats['enrichment_successes'] += 1
                logger.info(f"Enrichment widened {query!r}: {len(results)} -> {len(enriched)} results")
                return enriched
        except Exception as e:
            logger.warning(f"Enrichment failed for {query!r}, keeping local results: {e}")
            self._emit("enrichment.failed", {"query": query, "error": str(e)})

        return results

    def get_statistics(self) -> Dict[str, Any]:
        snapshot = self.index.snapshot
        searches = int(self._stats['searches'])
        stats: Dict[str, Any] = {
            'searches': searches,
            'avg_latency_ms': self._stats['total_latency_ms'] / searches if searches else 0.0,
            'enrichment_attempts': int(self._stats['enrichment_attempts']),
            'enrichment_successes': int(self._stats['enrichment_successes']),
            'index': {
                'built_at': snapshot.built_at.isoformat() if snapshot.built_at else None,
                'build_time_ms': snapshot.build_time_ms,
                'records': snapshot.record_count,
                'collections': snapshot.collection_counts(),
                'failed_collections': list(snapshot.failed_collections),
            },
        }
        if self.enrichment is not None:
            stats['enrichment_health'] = self.enrichment.health()
        return stats

    async def _current_snapshot(self) -> IndexSnapshot:
        if not self.index.is_built:
            await self.initialize()
        elif self.index.needs_refresh():
            await self.index.refresh_if_stale()
        return self.index.snapshot

    def _resolve_modules(self, snapshot: IndexSnapshot, modules: Optional[Sequence[str]]) -> List[str]:
        known = list(snapshot.fuzzy)
        if modules is None:
            return known
        unknown = [m for m in modules if m not in snapshot.fuzzy]
        if unknown:
            logger.debug(f"Ignoring unknown collections: {unknown}")
        return [m for m in known if m in modules]

    async def _base_search(self,
                           snapshot: IndexSnapshot,
                           query: str,
                           modules: List[str],
                           threshold: float,
                           limit: int) -> List[ScoredResult]:
        """Tiers 1 and 2, in that order, as one unfused list."""
        if not modules or not query.strip():
            return []

        collection_tasks = [
            asyncio.to_thread(snapshot.fuzzy[collection].search, query, limit)
            for collection in modules
        ]
        exact, *fuzzy = await asyncio.gather(
            asyncio.to_thread(snapshot.tokens.search, query, None, modules),
            *collection_tasks,
            return_exceptions=True,
        )

        results: List[ScoredResult] = []

        if isinstance(exact, Exception):
            logger.error(f"Token index lookup failed for {query!r}: {exact}")
        elif self.search_config.exact_tier_authoritative:
            for hit in exact:
                entry = snapshot.by_key.get(hit.key)
                score = hit.coverage * self.weights.exact
                if entry is not None and score >= threshold:
                    results.append(ScoredResult(entry=entry, score=score, matched_fields=hit.matched_fields))
        else:
            logger.debug(f"Token index: {len(exact)} advisory hits for {query!r}")

        for collection, matches in zip(modules, fuzzy):
            if isinstance(matches, Exception):
                logger.error(f"Fuzzy search failed in {collection}: {matches}")
                continue
            for match in matches:
                score = (1.0 - match.distance) * self.weights.fuzzy
                if score >= threshold:
                    results.append(ScoredResult(
                        entry=match.entry,
                        score=score,
                        matched_fields=list(match.matched_keys),
                    ))

        logger.debug(f"Base search {query!r}: {len(results)} candidates")
        return results

    def _plan_sub_queries(self, query: str, modules: List[str], include_terms: bool) -> List[_SubQuery]:
        parsed = self.planner.parse_query(query)
        entities = parsed.entities
        weights = self.weights
        sub_queries: List[_SubQuery] = []

        if include_terms and parsed.search_terms:
            sub_queries.append(_SubQuery(
                " ".join(parsed.search_terms), modules, weights.terms, "nlp", TERMS_LIMIT
            ))
        for person in entities.people:
            sub_queries.append(_SubQuery(person, modules, weights.entity, "people", ENTITY_LIMIT))
        for place in entities.places:
            sub_queries.append(_SubQuery(place, modules, weights.entity, "places", ENTITY_LIMIT))
        if parsed.filters.location:
            sub_queries.append(_SubQuery(
                parsed.filters.location, modules, weights.location_filter, "location", LOCATION_LIMIT
            ))
        if parsed.filters.person:
            people_only = [m for m in modules if m == "people"]
            sub_queries.append(_SubQuery(
                parsed.filters.person, people_only, weights.person_filter, "person", PERSON_LIMIT
            ))
        return sub_queries

    async def _semantic_tier(self,
                             snapshot: IndexSnapshot,
                             query: str,
                             modules: List[str],
                             threshold: float,
                             include_terms: bool) -> List[ScoredResult]:
        sub_queries = self._plan_sub_queries(query, modules, include_terms)
        if not sub_queries:
            return []

        outcomes = await asyncio.gather(
            *(self._run_sub_query(snapshot, sub, threshold) for sub in sub_queries),
            return_exceptions=True,
        )

        results: List[ScoredResult] = []
        for sub, outcome in zip(sub_queries, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Sub-query {sub.tag}={sub.text!r} failed: {outcome}")
                continue
            results.extend(outcome)
        return results

    async def _run_sub_query(self,
                             snapshot: IndexSnapshot,
                             sub: _SubQuery,
                             threshold: float) -> List[ScoredResult]:
        candidates: Dict[str, ScoredResult] = {}
        fuse(candidates, await self._base_search(snapshot, sub.text, sub.modules, threshold, sub.limit))
        return [r.scaled(sub.weight, sub.tag) for r in rank(candidates, sub.limit)]

    def _attach_snippets(self, results: List[ScoredResult], query: str) -> None:
        for result in results:
            result.snippet = generate_snippet(result.record, query, self.search_config.snippet_length)

    def _record_search(self, query: str, results: List[ScoredResult], start: float, mode: str) -> None:
        latency_ms = (time.perf_counter() - start) * 1000
        self._stats['searches'] += 1
        self._stats['total_latency_ms'] += latency_ms
        logger.debug(f"{mode} {query!r}: {len(results)} results in {latency_ms:.1f}ms")
        self._emit("search.completed", {
            "query": query,
            "mode": mode,
            "results": len(results),
            "latency_ms": latency_ms,
        })

    def _emit(self, event_type: str, data: Dict[str, Any]) -> None:
        if self.bus is not None:
            self.bus.emit_nowait(Event(type=event_type, data=data, source="search"))
