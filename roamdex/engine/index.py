"""Builds the immutable search index snapshot from the record store."""

import asyncio
import time
from typing import Dict, List, Tuple, Optional, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime

from loguru import logger

from .bus import Event, EventBus
from .config import IndexConfig
from .indexers import TokenIndex, FuzzyIndex, DEFAULT_KEYS
from .models import SearchIndexEntry
from .store import RecordStore


@dataclass(frozen=True)
class IndexSnapshot:
    """
    Everything a query needs, built in one go and never mutated afterwards.

    Readers grab a reference to the current snapshot and keep using it for
    the whole query, so a concurrent rebuild can't show them a mix of old
    and new state.
    """
    entries: Dict[str, Tuple[SearchIndexEntry, ...]]
    fuzzy: Dict[str, FuzzyIndex]
    tokens: TokenIndex
    by_key: Dict[str, SearchIndexEntry]
    built_at: Optional[datetime] = None
    build_time_ms: float = 0.0
    failed_collections: Tuple[str, ...] = ()

    @classmethod
    def empty(cls) -> "IndexSnapshot":
        return cls(entries={}, fuzzy={}, tokens=TokenIndex(), by_key={})

    @property
    def record_count(self) -> int:
        return len(self.by_key)

    def collection_counts(self) -> Dict[str, int]:
        return {name: len(items) for name, items in self.entries.items()}


@dataclass
class _Loaded:
    entries: Dict[str, List[SearchIndexEntry]] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def fail(self, collection: str, error: Exception) -> None:
        logger.error(f"Failed to index collection {collection}, indexing it as empty: {error}")
        self.failed.append(collection)
        self.errors.append(str(error))
        self.entries[collection] = []


class IndexBuilder:
    """Owns the index snapshot and swaps it wholesale on every rebuild."""

    def __init__(self,
                 store: RecordStore,
                 config: Optional[IndexConfig] = None,
                 bus: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.config = config or IndexConfig()
        self.bus = bus
        self.clock = clock

        self._snapshot = IndexSnapshot.empty()
        self._last_built: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    @property
    def is_built(self) -> bool:
        return self._last_built is not None

    def needs_refresh(self) -> bool:
        """True before the first build and once the refresh interval has passed."""
        if self._last_built is None:
            return True
        return self.clock() - self._last_built > self.config.refresh_interval_s

    async def build_index(self) -> IndexSnapshot:
        """Load every collection and atomically replace the current snapshot."""
        async with self._lock:
            return await self._build()

    async def refresh_if_stale(self) -> IndexSnapshot:
        """Rebuild only if the snapshot is still stale once the lock is held.

        Overlapping callers that all saw a stale index share one rebuild.
        """
        async with self._lock:
            if not self.needs_refresh():
                return self._snapshot
            return await self._build()

    async def rebuild_index(self) -> IndexSnapshot:
        """Force a rebuild regardless of the refresh timer."""
        logger.debug("Forced index rebuild")
        return await self.build_index()

    async def _build(self) -> IndexSnapshot:
        start = time.perf_counter()
        loaded = await self._load_collections()

        snapshot = await asyncio.to_thread(self._assemble, loaded)
        build_time_ms = (time.perf_counter() - start) * 1000
        snapshot = replace(
            snapshot,
            built_at=datetime.utcnow(),
            build_time_ms=build_time_ms,
            failed_collections=tuple(loaded.failed),
        )

        self._snapshot = snapshot
        self._last_built = self.clock()

        logger.info(
            f"Index built: {snapshot.record_count} records in "
            f"{len(snapshot.entries)} collections ({build_time_ms:.1f}ms)"
        )
        for collection, error in zip(loaded.failed, loaded.errors):
            self._emit("index.collection_failed", {
                "collection": collection,
                "error": error,
            })
        self._emit("index.rebuilt", {
            "records": snapshot.record_count,
            "collections": snapshot.collection_counts(),
            "failed": list(snapshot.failed_collections),
            "build_time_ms": build_time_ms,
        })
        return snapshot

    async def _load_collections(self) -> _Loaded:
        loaded = _Loaded()
        for collection in self.config.collections:
            try:
                records = await self.store.get_all(collection)
                loaded.entries[collection] = [
                    SearchIndexEntry.from_record(record, collection) for record in records
                ]
            except Exception as e:
                loaded.fail(collection, e)
        return loaded

    def _assemble(self, loaded: _Loaded) -> IndexSnapshot:
        entries: Dict[str, Tuple[SearchIndexEntry, ...]] = {}
        fuzzy: Dict[str, FuzzyIndex] = {}
        by_key: Dict[str, SearchIndexEntry] = {}

        for collection, items in list(loaded.entries.items()):
            try:
                fuzzy[collection] = self._fuzzy_index(items)
            except Exception as e:
                loaded.fail(collection, e)
                items = []
                fuzzy[collection] = self._fuzzy_index(items)

            entries[collection] = tuple(items)
            for entry in items:
                by_key[entry.key] = entry

        tokens = TokenIndex.build(by_key.values())
        return IndexSnapshot(entries=entries, fuzzy=fuzzy, tokens=tokens, by_key=by_key)

    def _fuzzy_index(self, items: List[SearchIndexEntry]) -> FuzzyIndex:
        return FuzzyIndex(
            items,
            keys=DEFAULT_KEYS,
            match_threshold=self.config.match_threshold,
            min_match_length=self.config.min_match_length,
        )

    def _emit(self, event_type: str, data: Dict) -> None:
        if self.bus is not None:
            self.bus.emit_nowait(Event(type=event_type, data=data, source="index"))
