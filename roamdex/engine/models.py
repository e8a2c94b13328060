"""Core data types shared by the store, the indexers and the search engine."""

from typing import List, Dict, Any, Optional, Tuple
from dataclasses import dataclass, field
from datetime import datetime


# Record collections, in index build order
COLLECTIONS: Tuple[str, ...] = (
    "pins",
    "people",
    "journal",
    "expenses",
    "checklist",
    "learning",
    "food",
    "gear",
)

# Fields every collection may carry; anything else lands in Record.extra
_KNOWN_FIELDS = {
    "id", "type", "title", "name", "description", "content",
    "location", "tags", "createdAt", "updatedAt", "created_at", "updated_at",
}


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.utcnow().isoformat()


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return str(value)


def _dedupe(items: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


@dataclass
class Record:
    """One stored item of any collection.

    Collections disagree on whether the display text lives in ``title`` or
    ``name``, so both are kept and ``display_title`` picks whichever is set.
    """
    id: str
    type: str
    title: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    location: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.tags = _dedupe([str(t) for t in (self.tags or [])])
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def display_title(self) -> str:
        return self.title or self.name or ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any], collection: str) -> "Record":
        """Build a record from a stored mapping, tolerating either key style."""
        tags = data.get("tags") or []
        if not isinstance(tags, list):
            tags = [tags]
        created = data.get("createdAt") or data.get("created_at") or utc_now_iso()
        updated = data.get("updatedAt") or data.get("updated_at") or created
        return cls(
            id=str(data["id"]),
            type=collection,
            title=_text(data.get("title")),
            name=_text(data.get("name")),
            description=_text(data.get("description")),
            content=_text(data.get("content")),
            location=_text(data.get("location")),
            tags=tags,
            created_at=created,
            updated_at=updated,
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "type": self.type}
        for key in ("title", "name", "description", "content", "location"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data["tags"] = list(self.tags)
        data["createdAt"] = self.created_at
        data["updatedAt"] = self.updated_at
        data.update(self.extra)
        return data


@dataclass(frozen=True)
class SearchIndexEntry:
    """Denormalized, read-only projection of a record used for scoring."""
    record: Record
    collection: str
    searchable_text: str

    @classmethod
    def from_record(cls, record: Record, collection: str) -> "SearchIndexEntry":
        parts = [
            record.title or "",
            record.name or "",
            record.description or "",
            record.content or "",
            record.location or "",
            *record.tags,
        ]
        text = " ".join(p for p in parts if p).lower()
        return cls(record=record, collection=collection, searchable_text=text)

    @property
    def key(self) -> str:
        """Fusion key: one result per (collection, id) pair."""
        return f"{self.collection}:{self.record.id}"

    def field_values(self, name: str) -> List[str]:
        """Values of a searchable field; list fields yield one value per element."""
        if name == "searchableText":
            return [self.searchable_text] if self.searchable_text else []
        if name == "tags":
            return list(self.record.tags)
        value = getattr(self.record, name, None)
        return [value] if value else []


@dataclass
class ExtractedEntities:
    """Result of analyzing one piece of text. Never persisted."""
    people: List[str] = field(default_factory=list)
    places: List[str] = field(default_factory=list)
    organizations: List[str] = field(default_factory=list)
    money: List[str] = field(default_factory=list)
    dates: List[str] = field(default_factory=list)
    topics: List[str] = field(default_factory=list)
    sentiment: str = "neutral"
    categories: List[str] = field(default_factory=list)


@dataclass
class AmountRange:
    min: Optional[float] = None
    max: Optional[float] = None


@dataclass
class DateRange:
    start: Optional[str] = None
    end: Optional[str] = None


@dataclass
class Filters:
    location: Optional[str] = None
    person: Optional[str] = None
    amount: Optional[AmountRange] = None
    date_range: Optional[DateRange] = None
    category: Optional[str] = None
    type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for key in ("location", "person", "category", "type"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        if self.amount is not None:
            data["amount"] = {k: v for k, v in vars(self.amount).items() if v is not None}
        if self.date_range is not None:
            data["dateRange"] = {k: v for k, v in vars(self.date_range).items() if v is not None}
        return data


@dataclass
class SearchQuery:
    """Normalized form of one user query."""
    original_query: str
    entities: ExtractedEntities
    search_terms: List[str]
    filters: Filters


@dataclass
class ScoredResult:
    """A search hit: the indexed entry plus its fused score and provenance."""
    entry: SearchIndexEntry
    score: float
    matched_fields: List[str] = field(default_factory=list)
    snippet: Optional[str] = None

    @property
    def key(self) -> str:
        return self.entry.key

    @property
    def collection(self) -> str:
        return self.entry.collection

    @property
    def record(self) -> Record:
        return self.entry.record

    def scaled(self, factor: float, tag: Optional[str] = None) -> "ScoredResult":
        """Copy with the score multiplied and an optional provenance tag appended."""
        fields = list(self.matched_fields)
        if tag:
            fields.append(tag)
        return ScoredResult(
            entry=self.entry,
            score=self.score * factor,
            matched_fields=fields,
            snippet=self.snippet,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.entry.record.to_dict(),
            "_type": self.entry.collection,
            "_score": self.score,
            "_matchedFields": list(self.matched_fields),
            "_snippet": self.snippet,
        }
