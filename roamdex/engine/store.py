"""Keyed local record store, one collection per record type.

The search core only ever calls ``get_all``; the write methods exist for the
CLI and for tests that seed data.
"""

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Any, Optional, Iterable
import aiofiles
import ulid
from loguru import logger

from .models import COLLECTIONS, Record, utc_now_iso


class UnknownCollectionError(KeyError):
    """Raised for collection names outside the configured set."""


class RecordNotFoundError(LookupError):
    """Raised when updating or deleting an id that is not stored."""


class RecordStore:
    """Async CRUD interface over typed collections."""

    def __init__(self, collections: Iterable[str] = COLLECTIONS):
        self.collections = tuple(collections)

    def _check_collection(self, collection: str) -> None:
        if collection not in self.collections:
            raise UnknownCollectionError(collection)

    async def add(self, collection: str, data: Dict[str, Any]) -> Record:
        raise NotImplementedError

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        raise NotImplementedError

    async def get_all(self, collection: str) -> List[Record]:
        raise NotImplementedError

    async def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Record:
        raise NotImplementedError

    async def delete(self, collection: str, record_id: str) -> bool:
        raise NotImplementedError

    @staticmethod
    def _new_record_data(data: Dict[str, Any]) -> Dict[str, Any]:
        now = utc_now_iso()
        record = dict(data)
        record.setdefault("id", str(ulid.ULID()))
        record.setdefault("tags", [])
        record.setdefault("createdAt", now)
        record.setdefault("updatedAt", record["createdAt"])
        return record

    @staticmethod
    def _apply_changes(existing: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
        merged = {**existing, **changes}
        merged["id"] = existing["id"]
        merged["createdAt"] = existing.get("createdAt", utc_now_iso())
        # updatedAt never goes backwards
        merged["updatedAt"] = max(utc_now_iso(), merged["createdAt"])
        return merged


class MemoryRecordStore(RecordStore):
    """Dict-backed store, mostly for tests and embedding."""

    def __init__(self, collections: Iterable[str] = COLLECTIONS):
        super().__init__(collections)
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {c: {} for c in self.collections}

    async def add(self, collection: str, data: Dict[str, Any]) -> Record:
        self._check_collection(collection)
        record = self._new_record_data(data)
        if record["id"] in self._data[collection]:
            raise ValueError(f"Duplicate id {record['id']} in {collection}")
        self._data[collection][record["id"]] = record
        return Record.from_dict(record, collection)

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        self._check_collection(collection)
        data = self._data[collection].get(record_id)
        return Record.from_dict(data, collection) if data else None

    async def get_all(self, collection: str) -> List[Record]:
        self._check_collection(collection)
        return [Record.from_dict(d, collection) for d in self._data[collection].values()]

    async def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Record:
        self._check_collection(collection)
        existing = self._data[collection].get(record_id)
        if existing is None:
            raise RecordNotFoundError(f"{collection}:{record_id}")
        merged = self._apply_changes(existing, changes)
        self._data[collection][record_id] = merged
        return Record.from_dict(merged, collection)

    async def delete(self, collection: str, record_id: str) -> bool:
        self._check_collection(collection)
        return self._data[collection].pop(record_id, None) is not None


class JsonRecordStore(RecordStore):
    """
    File-backed store: one JSON array per collection under ``<vault>/records``.

    Writes go to a temp file that is renamed over the original, so a reader
    never sees a half-written collection.
    """

    def __init__(self, vault_path: Path, collections: Iterable[str] = COLLECTIONS):
        super().__init__(collections)
        self.vault_path = Path(vault_path)
        self.records_path = self.vault_path / "records"
        self.records_path.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _collection_path(self, collection: str) -> Path:
        return self.records_path / f"{collection}.json"

    async def _read(self, collection: str) -> List[Dict[str, Any]]:
        path = self._collection_path(collection)
        if not path.exists():
            return []
        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()
        if not raw.strip():
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"{path} does not contain a JSON array")
        return data

    async def _write(self, collection: str, items: List[Dict[str, Any]]) -> None:
        path = self._collection_path(collection)
        tmp_path = path.with_suffix(".json.tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(items, indent=2, ensure_ascii=False))
        tmp_path.replace(path)
        logger.debug(f"Wrote {len(items)} records to {path}")

    async def add(self, collection: str, data: Dict[str, Any]) -> Record:
        self._check_collection(collection)
        async with self._lock:
            items = await self._read(collection)
            record = self._new_record_data(data)
            if any(item.get("id") == record["id"] for item in items):
                raise ValueError(f"Duplicate id {record['id']} in {collection}")
            items.append(record)
            await self._write(collection, items)
        return Record.from_dict(record, collection)

    async def get(self, collection: str, record_id: str) -> Optional[Record]:
        self._check_collection(collection)
        for item in await self._read(collection):
            if item.get("id") == record_id:
                return Record.from_dict(item, collection)
        return None

    async def get_all(self, collection: str) -> List[Record]:
        self._check_collection(collection)
        return [Record.from_dict(item, collection) for item in await self._read(collection)]

    async def update(self, collection: str, record_id: str, changes: Dict[str, Any]) -> Record:
        self._check_collection(collection)
        async with self._lock:
            items = await self._read(collection)
            for i, item in enumerate(items):
                if item.get("id") == record_id:
                    items[i] = self._apply_changes(item, changes)
                    await self._write(collection, items)
                    return Record.from_dict(items[i], collection)
        raise RecordNotFoundError(f"{collection}:{record_id}")

    async def delete(self, collection: str, record_id: str) -> bool:
        self._check_collection(collection)
        async with self._lock:
            items = await self._read(collection)
            remaining = [item for item in items if item.get("id") != record_id]
            if len(remaining) == len(items):
                return False
            await self._write(collection, remaining)
        return True
