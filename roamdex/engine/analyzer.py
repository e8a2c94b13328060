"""Offline text analysis: entities, topics, sentiment and tags.

Everything here is lexical. Proper nouns are found from capitalization and
the word that precedes them, topics and categories from plain substring
membership in fixed keyword tables. Results are best-effort and fully
deterministic; nothing touches the network.
"""

import re
from typing import List, Dict, Optional, Tuple, Iterator

from .models import ExtractedEntities


TOPIC_KEYWORDS: Dict[str, List[str]] = {
    "travel": ["travel", "trip", "vacation", "journey", "adventure", "explore", "visit", "tour"],
    "food": ["food", "restaurant", "meal", "cuisine", "dining", "eat", "taste", "cook",
             "dinner", "lunch", "breakfast"],
    "culture": ["culture", "museum", "temple", "church", "monument", "art", "history"],
    "nature": ["nature", "mountain", "beach", "forest", "park", "hiking", "outdoor"],
    "adventure": ["adventure", "explore", "expedition", "trekking", "climbing", "extreme"],
    "entertainment": ["movie", "show", "concert", "festival", "party", "music", "dance"],
    "shopping": ["shop", "buy", "purchase", "market", "store", "mall", "souvenir"],
    "transport": ["transport", "bus", "train", "taxi", "uber", "drive", "walk"],
}

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "food": ["food", "restaurant", "meal", "eat", "cook", "taste", "cuisine", "dish",
             "dinner", "lunch", "breakfast"],
    "travel": ["travel", "trip", "vacation", "journey", "flight", "hotel", "booking"],
    "culture": ["museum", "temple", "church", "monument", "art", "history", "culture"],
    "nature": ["nature", "mountain", "beach", "forest", "park", "hiking", "outdoor"],
    "adventure": ["adventure", "explore", "expedition", "trekking", "climbing", "extreme"],
    "entertainment": ["movie", "show", "concert", "festival", "party", "music", "dance"],
    "shopping": ["shop", "buy", "purchase", "market", "store", "mall", "souvenir"],
    "transport": ["transport", "bus", "train", "taxi", "uber", "drive", "walk"],
}

POSITIVE_WORDS = [
    "amazing", "great", "wonderful", "beautiful", "love", "perfect", "excellent",
    "fantastic", "awesome", "good", "best", "incredible",
]
NEGATIVE_WORDS = [
    "bad", "terrible", "awful", "horrible", "hate", "worst", "disappointing",
    "poor", "sad", "angry",
]

STOPWORDS = {
    "a", "an", "the", "and", "or", "but", "if", "then", "so", "of", "in", "on", "at",
    "to", "from", "by", "for", "with", "about", "into", "over", "under", "near", "as",
    "is", "are", "was", "were", "be", "been", "being", "am", "do", "does", "did",
    "i", "me", "my", "we", "our", "us", "you", "your", "he", "him", "his", "she",
    "her", "it", "its", "they", "them", "their", "this", "that", "these", "those",
    "there", "here", "what", "which", "who", "whom", "when", "where", "why", "how",
    "all", "any", "some", "no", "not", "very", "too", "just", "also", "only", "than",
    "up", "down", "out", "off", "again", "once", "more", "most", "much", "many",
    "can", "could", "will", "would", "should", "may", "might", "must", "shall",
    "last", "next", "week", "month", "year", "today", "yesterday", "tomorrow",
}

COMMON_VERBS = {
    "had", "has", "have", "go", "went", "gone", "going", "get", "got", "make", "made",
    "find", "found", "show", "search", "look", "looking", "list", "see", "saw", "seen",
    "take", "took", "give", "gave", "come", "came", "know", "knew", "think", "thought",
    "want", "need", "tell", "told", "say", "said", "met", "meet", "cost", "costs",
    "spent", "spend", "paid", "pay", "ate", "eat", "bought", "buy", "try", "tried",
    "visit", "visited", "stay", "stayed", "book", "booked", "let", "use", "used",
}

ADJECTIVES = {
    "amazing", "great", "wonderful", "beautiful", "perfect", "excellent", "fantastic",
    "awesome", "good", "best", "incredible", "bad", "terrible", "awful", "horrible",
    "worst", "disappointing", "poor", "sad", "angry", "cheap", "expensive", "costly",
    "ancient", "old", "new", "local", "small", "big", "large", "little", "quiet",
    "busy", "crowded", "hot", "cold", "warm", "cozy", "fresh", "spicy", "sweet",
    "famous", "historic", "nice", "lovely", "friendly", "authentic", "traditional",
    "modern", "long", "short", "early", "late", "free", "high", "low", "tasty",
}

_ADJECTIVE_SUFFIXES = ("ous", "ful", "ive", "able", "ible", "less", "ish")

HONORIFICS = {"mr", "mrs", "ms", "dr", "prof", "sir", "madam", "miss"}
PERSON_CUES = {"with", "met", "meet", "meeting", "by", "called", "named", "friend",
               "thanks", "thank", "told", "asked", "joined", "and"}
PLACE_CUES = {"in", "at", "to", "from", "near", "around", "across", "through", "into",
              "via", "toward", "towards", "visiting", "visited", "visit", "reached"}
ORG_SUFFIXES = {"inc", "ltd", "llc", "corp", "company", "co", "group", "bank",
                "university", "airlines", "airways", "hotel", "hotels", "restaurant",
                "cafe", "museum", "foundation", "association", "agency", "society",
                "club", "institute", "gmbh"}

KNOWN_PLACES = {
    "paris", "london", "rome", "tokyo", "kyoto", "osaka", "bangkok", "bali", "lisbon",
    "madrid", "barcelona", "berlin", "amsterdam", "prague", "vienna", "venice",
    "florence", "milan", "athens", "istanbul", "cairo", "dubai", "delhi", "mumbai",
    "beijing", "shanghai", "seoul", "singapore", "sydney", "melbourne", "auckland",
    "lima", "cusco", "mexico", "havana", "york", "chicago", "boston", "miami",
    "vancouver", "toronto", "montreal", "hanoi", "saigon", "marrakech", "nairobi",
    "france", "italy", "spain", "japan", "thailand", "vietnam", "peru", "india",
    "china", "greece", "portugal", "germany", "morocco", "egypt", "kenya", "nepal",
    "iceland", "norway", "brazil", "argentina", "chile", "canada", "australia",
}

# Money and date formats, receipt style
_AMOUNT = r"\d{1,3}(?:[,.]?\d{3})*(?:[.,]\d{2})?"
_CURRENCY = r"[$€£¥₹]"
MONEY_PATTERNS = [
    re.compile(rf"{_CURRENCY}\s*{_AMOUNT}(?!\d)"),
    re.compile(rf"(?<![\d.,]){_AMOUNT}\s*{_CURRENCY}"),
    re.compile(rf"total[:\s]*{_CURRENCY}?\s*{_AMOUNT}(?!\d)", re.IGNORECASE),
    re.compile(rf"amount[:\s]*{_CURRENCY}?\s*{_AMOUNT}(?!\d)", re.IGNORECASE),
]
DATE_PATTERNS = [
    re.compile(r"(?<!\d)\d{1,2}/\d{1,2}/\d{2,4}(?!\d)"),
    re.compile(r"(?<!\d)\d{1,2}-\d{1,2}-\d{2,4}(?!\d)"),
    re.compile(r"(?<!\d)\d{2,4}-\d{1,2}-\d{1,2}(?!\d)"),
    re.compile(r"\b\d{1,2}\s+(?:jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\w*\s+\d{2,4}\b",
               re.IGNORECASE),
]

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_WORD = re.compile(r"[^\W\d_]+(?:['’-][^\W\d_]+)*")


def parse_amount(raw: str) -> Optional[float]:
    """Numeric value of a money mention, or None if it does not parse."""
    digits = re.sub(r"[^\d.,]", "", raw)
    if not digits:
        return None
    decimal = re.search(r"[.,](\d{2})$", digits)
    if decimal:
        whole = re.sub(r"[.,]", "", digits[:decimal.start()])
        number = f"{whole or '0'}.{decimal.group(1)}"
    else:
        number = re.sub(r"[.,]", "", digits)
    try:
        value = float(number)
    except ValueError:
        return None
    return value if value > 0 else None


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


class TextAnalyzer:
    """Deterministic entity, topic and sentiment extraction."""

    def analyze(self, text: str) -> ExtractedEntities:
        if not text or not text.strip():
            return ExtractedEntities()

        people, places, organizations = self._extract_proper_nouns(text)
        # Naming a place is a travel signal for this domain
        extra = ["travel"] if places else []

        return ExtractedEntities(
            people=people,
            places=places,
            organizations=organizations,
            money=self.extract_money(text),
            dates=self.extract_dates(text),
            topics=_dedupe(self._match_keywords(text, TOPIC_KEYWORDS) + extra),
            sentiment=self.analyze_sentiment(text),
            categories=_dedupe(self._match_keywords(text, CATEGORY_KEYWORDS) + extra),
        )

    def generate_tags(self, text: str, type: Optional[str] = None, limit: int = 10) -> List[str]:
        """Nouns, topics, the explicit type and categories, capped at ``limit``."""
        if not text or not text.strip():
            return [type] if type else []

        entities = self.analyze(text)
        tags: List[str] = [noun for noun in self.extract_nouns(text) if 2 < len(noun) < 20]
        tags.extend(entities.topics)
        if type:
            tags.append(type)
        tags.extend(entities.categories)
        return _dedupe(tags)[:limit]

    def extract_nouns(self, text: str) -> List[str]:
        nouns = []
        for word in self._words(text):
            lowered = word.lower()
            if len(lowered) < 2 or lowered in STOPWORDS or lowered in COMMON_VERBS:
                continue
            if self._is_adjective(lowered):
                continue
            if lowered.endswith("ly") or (lowered.endswith("ed") and len(lowered) > 4):
                continue
            nouns.append(lowered)
        return _dedupe(nouns)

    def extract_adjectives(self, text: str) -> List[str]:
        return _dedupe([
            word.lower() for word in self._words(text)
            if word.lower() not in STOPWORDS and self._is_adjective(word.lower())
        ])

    def extract_money(self, text: str) -> List[str]:
        mentions = []
        for pattern in MONEY_PATTERNS:
            match = pattern.search(text)
            if match and parse_amount(match.group()) is not None:
                mentions.append(match.group().strip())
        return _dedupe(mentions)

    def extract_dates(self, text: str) -> List[str]:
        mentions = []
        for pattern in DATE_PATTERNS:
            mentions.extend(m.group() for m in pattern.finditer(text))
        return _dedupe(mentions)

    def analyze_sentiment(self, text: str) -> str:
        lowered = text.lower()
        positive = sum(1 for word in POSITIVE_WORDS if word in lowered)
        negative = sum(1 for word in NEGATIVE_WORDS if word in lowered)
        if positive > negative:
            return "positive"
        if negative > positive:
            return "negative"
        return "neutral"

    def _match_keywords(self, text: str, table: Dict[str, List[str]]) -> List[str]:
        lowered = text.lower()
        return [
            label for label, keywords in table.items()
            if any(keyword in lowered for keyword in keywords)
        ]

    def _words(self, text: str) -> List[str]:
        return _WORD.findall(text)

    def _is_adjective(self, word: str) -> bool:
        if word in ADJECTIVES:
            return True
        return len(word) > 5 and word.endswith(_ADJECTIVE_SUFFIXES)

    def _extract_proper_nouns(self, text: str) -> Tuple[List[str], List[str], List[str]]:
        people: List[str] = []
        places: List[str] = []
        organizations: List[str] = []

        for phrase, previous in self._proper_noun_phrases(text):
            parts = phrase.split()
            first, last = parts[0].lower(), parts[-1].lower()

            if last in ORG_SUFFIXES or (phrase.isupper() and len(phrase) > 1):
                organizations.append(phrase)
            elif first in HONORIFICS:
                people.append(phrase)
            elif last in KNOWN_PLACES or previous in PLACE_CUES:
                places.append(phrase)
            elif previous in PERSON_CUES:
                people.append(phrase)

        return _dedupe(people), _dedupe(places), _dedupe(organizations)

    def _proper_noun_phrases(self, text: str) -> Iterator[Tuple[str, Optional[str]]]:
        """Yield (phrase, lowercased preceding word) for capitalized runs.

        Lowercase gazetteer places are also yielded, title-cased, so that
        typed queries like "dinner in paris" still surface a location.
        """
        for sentence in _SENTENCE_SPLIT.split(text):
            words = list(_WORD.finditer(sentence))
            i = 0
            while i < len(words):
                word = words[i].group()
                previous = words[i - 1].group().lower() if i > 0 else None

                if not self._starts_phrase(word, sentence_start=(i == 0)):
                    if word.lower() in KNOWN_PLACES and word.islower():
                        yield word.title(), previous
                    i += 1
                    continue

                parts = [word]
                j = i + 1
                while j < len(words):
                    gap = sentence[words[j - 1].end():words[j].start()]
                    nxt = words[j].group()
                    if gap.strip() or not self._is_capitalized(nxt) or nxt.lower() in STOPWORDS:
                        break
                    parts.append(nxt)
                    j += 1

                yield " ".join(parts), previous
                i = j

    def _is_capitalized(self, word: str) -> bool:
        return len(word) > 1 and word[0].isupper()

    def _starts_phrase(self, word: str, sentence_start: bool) -> bool:
        if not self._is_capitalized(word):
            return False
        lowered = word.lower()
        if lowered in HONORIFICS:
            return True
        if lowered in STOPWORDS:
            return False
        if sentence_start:
            # Sentence-initial capitals are usually just grammar
            if lowered in COMMON_VERBS or lowered in ADJECTIVES:
                return False
            if lowered.endswith(("ed", "ing", "ly")):
                return False
        return True
