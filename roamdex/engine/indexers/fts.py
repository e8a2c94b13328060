"""In-memory token index over all collections, backed by Whoosh.

Serves the exact/prefix tier: every query token is looked up both as a
whole term and as a term prefix across the searchable fields. Hits are
ranked by BM25F and carry a coverage score (how much of the query the
record actually contains), which the search engine uses as the tier score.
"""

from typing import List, Dict, Any, Optional, Iterable, Sequence
from dataclasses import dataclass, field

from whoosh import scoring
from whoosh.analysis import StandardAnalyzer
from whoosh.fields import Schema, TEXT, ID, KEYWORD
from whoosh.filedb.filestore import RamStorage
from whoosh.query import Term, Prefix, Or, And
from loguru import logger

from ..models import SearchIndexEntry


TEXT_FIELDS = ("title", "name", "description", "content", "location")
INDEXED_FIELDS = TEXT_FIELDS + ("tags",)

EXACT_CREDIT = 1.0
PREFIX_CREDIT = 0.75


@dataclass
class TokenHit:
    """One record found by the token index."""
    key: str
    collection: str
    bm25: float
    coverage: float
    matched_fields: List[str] = field(default_factory=list)


class TokenIndex:
    """Whoosh index living entirely in RAM, rebuilt with each snapshot."""

    def __init__(self):
        self.analyzer = StandardAnalyzer()
        self.schema = Schema(
            key=ID(stored=True, unique=True),
            collection=ID(stored=True),
            title=TEXT(stored=True, analyzer=self.analyzer, field_boost=2.0),
            name=TEXT(stored=True, analyzer=self.analyzer, field_boost=2.0),
            description=TEXT(stored=True, analyzer=self.analyzer),
            content=TEXT(stored=True, analyzer=self.analyzer),
            location=TEXT(stored=True, analyzer=self.analyzer, field_boost=1.5),
            tags=KEYWORD(stored=True, commas=True, lowercase=True, scorable=True),
        )
        self.index = RamStorage().create_index(self.schema)
        self.doc_count = 0

    @classmethod
    def build(cls, entries: Iterable[SearchIndexEntry]) -> "TokenIndex":
        token_index = cls()
        token_index.add_entries(entries)
        return token_index

    def add_entries(self, entries: Iterable[SearchIndexEntry]) -> int:
        writer = self.index.writer()
        added = 0
        try:
            for entry in entries:
                try:
                    writer.add_document(**self._document_fields(entry))
                    added += 1
                except Exception as e:
                    logger.error(f"Error adding {entry.key} to token index: {e}")
            writer.commit()
        except Exception:
            writer.cancel()
            raise
        self.doc_count += added
        return added

    def _document_fields(self, entry: SearchIndexEntry) -> Dict[str, Any]:
        record = entry.record
        fields: Dict[str, Any] = {"key": entry.key, "collection": entry.collection}
        for name in TEXT_FIELDS:
            value = getattr(record, name)
            if value:
                fields[name] = str(value)
        if record.tags:
            fields["tags"] = ",".join(tag.replace(",", " ") for tag in record.tags)
        return fields

    def tokenize(self, text: str) -> List[str]:
        return [token.text for token in self.analyzer(text)]

    def search(self,
               query: str,
               limit: Optional[int] = 20,
               collections: Optional[Sequence[str]] = None) -> List[TokenHit]:
        """
        Exact and prefix lookup of every query token.

        Args:
            query: Raw query text
            limit: Maximum hits, None for all
            collections: Restrict hits to these collections

        Returns:
            Hits in BM25F order
        """
        tokens = self.tokenize(query)
        if not tokens or self.doc_count == 0:
            return []

        clauses = []
        for token in tokens:
            for name in INDEXED_FIELDS:
                clauses.append(Term(name, token))
                clauses.append(Prefix(name, token))
        whoosh_query = Or(clauses)

        if collections is not None:
            if not collections:
                return []
            whoosh_query = And([
                whoosh_query,
                Or([Term("collection", c) for c in collections]),
            ])

        hits = []
        with self.index.searcher(weighting=scoring.BM25F()) as searcher:
            for hit in searcher.search(whoosh_query, limit=limit):
                stored = hit.fields()
                coverage, matched = self._coverage(tokens, stored)
                hits.append(TokenHit(
                    key=stored["key"],
                    collection=stored["collection"],
                    bm25=hit.score,
                    coverage=coverage,
                    matched_fields=matched,
                ))

        logger.debug(f"Token index: {len(hits)} hits for {tokens}")
        return hits

    def _coverage(self, tokens: List[str], stored: Dict[str, Any]):
        """Share of query tokens present in the record, plus the fields they hit."""
        field_terms: Dict[str, List[str]] = {}
        for name in TEXT_FIELDS:
            if stored.get(name):
                field_terms[name] = self.tokenize(stored[name])
        if stored.get("tags"):
            field_terms["tags"] = [t.strip().lower() for t in stored["tags"].split(",") if t.strip()]

        total = 0.0
        matched: List[str] = []
        for token in tokens:
            best = 0.0
            for name, terms in field_terms.items():
                if token in terms:
                    credit = EXACT_CREDIT
                elif any(term.startswith(token) for term in terms):
                    credit = PREFIX_CREDIT
                else:
                    continue
                best = max(best, credit)
                if name not in matched:
                    matched.append(name)
            total += best

        return total / len(tokens), matched
