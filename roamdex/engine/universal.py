"""Search-box flow: pick a search mode from the query's shape, then enrich."""

from enum import Enum
from typing import List, Optional, Sequence
from dataclasses import dataclass, field

from loguru import logger

from .models import SearchIndexEntry, ScoredResult
from .search import SearchEngine, generate_snippet
from .store import RecordStore


SEMANTIC_MARKERS = (" in ", " with ", " from ")

TITLE_POINTS = 3
DESCRIPTION_POINTS = 1
TAG_POINTS = 2


class SearchMode(Enum):
    BASIC = "basic"
    FUZZY = "fuzzy"
    SEMANTIC = "semantic"


@dataclass
class UniversalResult:
    mode: SearchMode
    results: List[ScoredResult] = field(default_factory=list)
    fell_back: bool = False


def choose_mode(query: str) -> SearchMode:
    if len(query) > 10 and any(marker in query for marker in SEMANTIC_MARKERS):
        return SearchMode.SEMANTIC
    if len(query) > 5:
        return SearchMode.FUZZY
    return SearchMode.BASIC


async def basic_search(store: RecordStore,
                       query: str,
                       collections: Optional[Sequence[str]] = None) -> List[ScoredResult]:
    """
    Plain substring search straight against the store.

    A record qualifies when any query word appears anywhere in its text.
    Each word scores 3 in the title/name, 1 in the description/content and
    2 in any tag; the total is normalized to 0..1. Ties go to the most
    recently updated record.
    """
    terms = [t for t in query.lower().split(" ") if t]
    if not terms:
        return []

    results = []
    for collection in collections or store.collections:
        try:
            records = await store.get_all(collection)
        except Exception as e:
            logger.error(f"Basic search skipped {collection}: {e}")
            continue

        for record in records:
            notes = record.extra.get("notes") or ""
            haystack = " ".join([
                record.title or "",
                record.name or "",
                record.description or "",
                record.content or "",
                record.location or "",
                str(notes),
                *record.tags,
            ]).lower()
            if not any(term in haystack for term in terms):
                continue

            title = record.display_title.lower()
            description = (record.description or record.content or "").lower()
            tags = [tag.lower() for tag in record.tags]

            points = 0
            matched = []
            for term in terms:
                if term in title:
                    points += TITLE_POINTS
                    matched.append("title")
                if term in description:
                    points += DESCRIPTION_POINTS
                    matched.append("description")
                if any(term in tag for tag in tags):
                    points += TAG_POINTS
                    matched.append("tags")

            results.append(ScoredResult(
                entry=SearchIndexEntry.from_record(record, collection),
                score=points / (6 * len(terms)),
                matched_fields=matched + ["basic"],
                snippet=generate_snippet(record, query),
            ))

    results.sort(key=lambda r: (r.score, r.record.updated_at or r.record.created_at), reverse=True)
    return results


class UniversalSearch:
    """Runs the mode chosen for a query, falling back to basic search on errors."""

    def __init__(self, engine: SearchEngine, store: Optional[RecordStore] = None):
        self.engine = engine
        self.store = store or engine.store

    async def run(self, query: str) -> UniversalResult:
        if len(query.strip()) < 2:
            return UniversalResult(mode=SearchMode.BASIC)

        mode = choose_mode(query)
        try:
            if mode is SearchMode.SEMANTIC:
                results = await self.engine.semantic_search(query)
            elif mode is SearchMode.FUZZY:
                options = self.engine.default_options(threshold=0.3, enrich=False)
                results = await self.engine.search(query, options)
            else:
                results = await basic_search(self.store, query)

            results = await self.engine.maybe_enrich(query, results)
            return UniversalResult(mode=mode, results=results)
        except Exception as e:
            logger.error(f"{mode.value} search failed for {query!r}, falling back to basic: {e}")

        try:
            results = await basic_search(self.store, query)
        except Exception as e:
            logger.error(f"Basic search fallback failed for {query!r}: {e}")
            results = []
        return UniversalResult(mode=SearchMode.BASIC, results=results, fell_back=True)
