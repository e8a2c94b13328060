"""Turns a raw query string into a normalized SearchQuery."""

from typing import Callable, List, Optional, Tuple
from datetime import datetime, timedelta

from .analyzer import TextAnalyzer
from .models import AmountRange, DateRange, Filters, SearchQuery


# Checked in order; a later match replaces an earlier one
AMOUNT_RULES: List[Tuple[Tuple[str, ...], AmountRange]] = [
    (("expensive", "costly"), AmountRange(min=50)),
    (("cheap", "budget"), AmountRange(max=20)),
]

TYPE_KEYWORDS: List[Tuple[str, str]] = [
    ("temple", "culture"),
    ("food", "food"),
    ("restaurant", "food"),
    ("museum", "culture"),
    ("hotel", "accommodation"),
    ("flight", "transport"),
]


class QueryPlanner:
    """
    Derives search terms and filters from free text.

    Filters are keyword driven. When several rules of the same kind fire,
    the last one in table order wins, so "cheap" overrides "expensive" and
    "this month" overrides "last week".
    """

    def __init__(self,
                 analyzer: Optional[TextAnalyzer] = None,
                 clock: Callable[[], datetime] = datetime.utcnow):
        self.analyzer = analyzer or TextAnalyzer()
        self.clock = clock

    def parse_query(self, query: str) -> SearchQuery:
        entities = self.analyzer.analyze(query)
        return SearchQuery(
            original_query=query,
            entities=entities,
            search_terms=self._search_terms(query),
            filters=self._filters(query, entities),
        )

    def _search_terms(self, query: str) -> List[str]:
        terms: List[str] = []
        words = self.analyzer.extract_nouns(query) + self.analyzer.extract_adjectives(query)
        for word in words:
            word = word.lower()
            if len(word) > 2 and word not in terms:
                terms.append(word)
        return terms

    def _filters(self, query: str, entities) -> Filters:
        text = query.lower()
        filters = Filters()

        if entities.places:
            filters.location = entities.places[0]
        if entities.people:
            filters.person = entities.people[0]
        if entities.categories:
            filters.category = entities.categories[0]

        for keywords, amount in AMOUNT_RULES:
            if any(keyword in text for keyword in keywords):
                filters.amount = AmountRange(min=amount.min, max=amount.max)

        now = self.clock()
        if "last week" in text:
            filters.date_range = DateRange(start=(now - timedelta(days=7)).isoformat())
        if "this month" in text:
            first = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
            filters.date_range = DateRange(start=first.isoformat())

        for keyword, type_name in TYPE_KEYWORDS:
            if keyword in text:
                filters.type = type_name

        return filters
