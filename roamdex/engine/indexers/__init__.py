"""Token (exact/prefix) and fuzzy indexers."""

from .fts import TokenIndex, TokenHit
from .fuzzy import FuzzyIndex, FuzzyKey, FuzzyMatch, DEFAULT_KEYS

__all__ = ["TokenIndex", "TokenHit", "FuzzyIndex", "FuzzyKey", "FuzzyMatch", "DEFAULT_KEYS"]
