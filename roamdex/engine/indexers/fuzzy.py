"""Weighted approximate matching over one collection's entries.

Similarity between a query and a field is computed word by word: each query
token takes its best match among the field's words (1.0 when it is a
substring of the word, otherwise normalized Levenshtein similarity), and the
field similarity is the mean over query tokens. A field counts as matched
when that similarity reaches ``match_threshold``.

Matched fields are combined the way weighted fuzzy-search libraries do it:
the record distance is the product of ``distance ** weight`` over matched
keys, with key weights normalized to sum to one. A perfect match on a heavy
key therefore pulls the distance close to zero even if lighter keys miss.
"""

import re
import sys
from typing import List, Dict, Optional, Sequence, Tuple
from dataclasses import dataclass, field

from ..models import SearchIndexEntry


EPSILON = sys.float_info.epsilon

_TOKEN = re.compile(r"\w+")


@dataclass(frozen=True)
class FuzzyKey:
    name: str
    weight: float


DEFAULT_KEYS: Tuple[FuzzyKey, ...] = (
    FuzzyKey("title", 0.3),
    FuzzyKey("name", 0.3),
    FuzzyKey("description", 0.2),
    FuzzyKey("content", 0.2),
    FuzzyKey("location", 0.15),
    FuzzyKey("tags", 0.1),
    FuzzyKey("searchableText", 0.1),
)


@dataclass
class FuzzyMatch:
    entry: SearchIndexEntry
    distance: float  # 0 is a perfect match, 1 no match at all
    matched_keys: List[str] = field(default_factory=list)


def levenshtein_distance(s1: str, s2: str) -> int:
    """Classic edit distance."""
    if len(s1) < len(s2):
        s1, s2 = s2, s1
    if not s2:
        return len(s1)

    prev_row = list(range(len(s2) + 1))
    for i, c1 in enumerate(s1):
        curr_row = [i + 1]
        for j, c2 in enumerate(s2):
            insertions = prev_row[j + 1] + 1
            deletions = curr_row[j] + 1
            substitutions = prev_row[j] + (c1 != c2)
            curr_row.append(min(insertions, deletions, substitutions))
        prev_row = curr_row

    return prev_row[-1]


def word_similarity(token: str, word: str) -> float:
    """1.0 for a substring hit, else 1 - normalized edit distance."""
    if token in word:
        return 1.0
    longest = max(len(token), len(word))
    # Lengths this far apart cannot reach 0.4 similarity
    if abs(len(token) - len(word)) > longest * 0.6:
        return 0.0
    return 1.0 - levenshtein_distance(token, word) / longest


def tokenize(text: str, min_length: int = 2) -> List[str]:
    return [t for t in _TOKEN.findall(text.lower()) if len(t) >= min_length]


class FuzzyIndex:
    """Approximate matcher for the entries of a single collection."""

    def __init__(self,
                 entries: Sequence[SearchIndexEntry],
                 keys: Sequence[FuzzyKey] = DEFAULT_KEYS,
                 match_threshold: float = 0.4,
                 min_match_length: int = 2):
        """
        Args:
            entries: Entries to match against, in a stable order
            keys: Searchable fields and their weights
            match_threshold: Minimum field similarity for a field to count
            min_match_length: Shortest token that may take part in a match
        """
        self.entries = list(entries)
        self.match_threshold = match_threshold
        self.min_match_length = min_match_length

        total = sum(k.weight for k in keys) or 1.0
        self.keys = [FuzzyKey(k.name, k.weight / total) for k in keys]

        # Pre-tokenized field words, one list per value (tags have several)
        self._field_words: List[Dict[str, List[List[str]]]] = [
            {
                k.name: [tokenize(v, min_match_length) for v in entry.field_values(k.name)]
                for k in self.keys
            }
            for entry in self.entries
        ]

    def __len__(self) -> int:
        return len(self.entries)

    def search(self, query: str, limit: Optional[int] = None) -> List[FuzzyMatch]:
        """Entries matching ``query``, best first; ties keep insertion order."""
        tokens = tokenize(query, self.min_match_length)
        if not tokens:
            return []

        # Memo is per call so concurrent searches share nothing mutable
        memo: Dict[Tuple[str, str], float] = {}
        matches = []

        for entry, fields in zip(self.entries, self._field_words):
            distance = 1.0
            matched_keys = []

            for key in self.keys:
                best = 0.0
                for words in fields[key.name]:
                    best = max(best, self._field_similarity(tokens, words, memo))
                if best < self.match_threshold:
                    continue
                distance *= max(1.0 - best, EPSILON) ** key.weight
                matched_keys.append(key.name)

            if matched_keys:
                matches.append(FuzzyMatch(entry=entry, distance=distance, matched_keys=matched_keys))

        matches.sort(key=lambda m: m.distance)
        return matches[:limit] if limit is not None else matches

    def _field_similarity(self,
                          tokens: List[str],
                          words: List[str],
                          memo: Dict[Tuple[str, str], float]) -> float:
        if not words:
            return 0.0
        total = 0.0
        for token in tokens:
            best = 0.0
            for word in words:
                pair = (token, word)
                score = memo.get(pair)
                if score is None:
                    score = word_similarity(token, word)
                    memo[pair] = score
                if score > best:
                    best = score
                    if best == 1.0:
                        break
            total += best
        return total / len(tokens)
