"""
Local record store.

Collections of JSON records kept in one file on disk, each collection keyed by
a single field and optionally carrying secondary indexes:

    subjects      key "id" (auto-increment), index "name"
    tasks         key "id" (auto-increment), index "date"
    tests         key "id" (auto-increment), indexes "date", "subject_id"
    report_cards  key "id" (caller-supplied or auto-increment)
    settings      key "key"

Every operation is a coroutine. Mutations are serialised by a lock, written to
a temp file off the event loop and swapped in with `os.replace`, so a failed
write leaves both the file and the in-memory state as they were.
Reads hand out copies; mutating a returned record never touches the store.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from school_companion.errors import StoreError

logger = logging.getLogger(__name__)

STORE_VERSION = 2

SCHEMA: Dict[str, Dict[str, Any]] = {
    "subjects": {"key": "id", "auto_increment": True, "indexes": ("name",)},
    "tasks": {"key": "id", "auto_increment": True, "indexes": ("date",)},
    "tests": {"key": "id", "auto_increment": True, "indexes": ("date", "subject_id")},
    "report_cards": {"key": "id", "auto_increment": True, "indexes": ()},
    "settings": {"key": "key", "auto_increment": False, "indexes": ()},
}


class RecordStore:
    def __init__(self, path: Optional[str | os.PathLike[str]] = None,
                 schema: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        # path=None keeps everything in memory (tests, previews)
        self.path = Path(path) if path is not None else None
        self.schema = schema or SCHEMA
        self._records: Dict[str, Dict[Any, Dict[str, Any]]] = {name: {} for name in self.schema}
        self._next_id: Dict[str, int] = {name: 1 for name in self.schema}
        self._lock = asyncio.Lock()

    # -------------------------------
    # Load / flush
    # -------------------------------

    async def load(self) -> "RecordStore":
        if self.path is None or not self.path.exists():
            return self
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            data = json.loads(raw) if raw.strip() else {}
        except (OSError, ValueError) as e:
            logger.error("Could not read store %s", self.path, exc_info=True)
            raise StoreError(f"Could not read data file: {e}") from e

        try:
            loaded = self._parse(data)
        except StoreError:
            logger.error("Store %s has an unexpected layout", self.path)
            raise

        for name, (records, next_id) in loaded.items():
            self._records[name] = records
            self._next_id[name] = next_id

        logger.debug("Loaded store %s", self.path)
        return self

    def _parse(self, data: Any) -> Dict[str, Any]:
        """Check the file layout and return {collection: (records, next_id)}."""
        if not isinstance(data, dict):
            raise StoreError("Data file is not a record store")

        collections = data.get("collections")
        if collections is None:
            collections = {}
        if not isinstance(collections, dict):
            raise StoreError("Data file: 'collections' must be an object")

        loaded = {}
        for name, meta in self.schema.items():
            block = collections.get(name)
            if block is None:
                block = {}
            if not isinstance(block, dict):
                raise StoreError(f"Data file: collection '{name}' must be an object")

            raw_records = block.get("records")
            if raw_records is None:
                raw_records = []
            if not isinstance(raw_records, list):
                raise StoreError(f"Data file: '{name}.records' must be a list")

            key_path = meta["key"]
            records: Dict[Any, Dict[str, Any]] = {}
            for rec in raw_records:
                if not isinstance(rec, dict) or rec.get(key_path) is None:
                    continue
                key = rec[key_path]
                if not isinstance(key, (int, str)) or isinstance(key, bool):
                    raise StoreError(f"Data file: '{name}' has a record with key {key!r}")
                records[key] = rec

            raw_next = block.get("next_id")
            if raw_next is None:
                raw_next = 1
            if isinstance(raw_next, bool) or not isinstance(raw_next, int):
                raise StoreError(f"Data file: '{name}.next_id' must be an integer, got {raw_next!r}")

            loaded[name] = (records, max(raw_next, self._max_int_key(records) + 1))
        return loaded

    def _snapshot(self) -> Dict[str, Any]:
        return {
            "version": STORE_VERSION,
            "collections": {
                name: {
                    "next_id": self._next_id[name],
                    "records": list(self._records[name].values()),
                }
                for name in self.schema
            },
        }

    def _write(self, payload: str) -> None:
        if self.path is None:
            raise StoreError("In-memory store has no data file")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(payload)
        os.replace(tmp, self.path)

    async def _flush(self) -> None:
        if self.path is None:
            return
        payload = json.dumps(self._snapshot(), indent=2, ensure_ascii=False, default=str)
        await asyncio.to_thread(self._write, payload)

    # -------------------------------
    # Helpers
    # -------------------------------

    @staticmethod
    def _max_int_key(records: Dict[Any, Dict[str, Any]]) -> int:
        ints = [k for k in records if isinstance(k, int) and not isinstance(k, bool)]
        return max(ints) if ints else 0

    def _meta(self, collection: str) -> Dict[str, Any]:
        meta = self.schema.get(collection)
        if meta is None:
            raise StoreError(f"Unknown collection: {collection}")
        return meta

    def _assign_key(self, collection: str, record: Dict[str, Any]) -> Any:
        meta = self._meta(collection)
        key_path = meta["key"]
        key = record.get(key_path)
        if key is None:
            if not meta["auto_increment"]:
                raise StoreError(f"{collection}: record has no '{key_path}'")
            key = self._next_id[collection]
            record[key_path] = key
        if isinstance(key, int) and not isinstance(key, bool) and key >= self._next_id[collection]:
            self._next_id[collection] = key + 1
        return key

    async def _mutate(self, collection: str, fn) -> Any:
        return await self._mutate_many((collection,), fn)

    async def _mutate_many(self, collections: Iterable[str], fn) -> Any:
        names = list(dict.fromkeys(collections))
        for name in names:
            self._meta(name)

        async with self._lock:
            before = {name: (dict(self._records[name]), self._next_id[name]) for name in names}

            def _rollback() -> None:
                for name, (records, next_id) in before.items():
                    self._records[name] = records
                    self._next_id[name] = next_id

            try:
                result = fn()
                await self._flush()
            except StoreError:
                _rollback()
                raise
            except (OSError, TypeError, ValueError) as e:
                _rollback()
                logger.error("Write to %s failed", ", ".join(names), exc_info=True)
                raise StoreError(f"Could not save {', '.join(names)}: {e}") from e
            return result

    # -------------------------------
    # Record store contract
    # -------------------------------

    async def get(self, collection: str, key: Any) -> Optional[Dict[str, Any]]:
        self._meta(collection)
        rec = self._records[collection].get(key)
        return copy.deepcopy(rec) if rec is not None else None

    async def get_all(self, collection: str) -> List[Dict[str, Any]]:
        self._meta(collection)
        return [copy.deepcopy(r) for r in self._records[collection].values()]

    async def get_all_by_index(self, collection: str, index: str, value: Any) -> List[Dict[str, Any]]:
        meta = self._meta(collection)
        if index not in meta["indexes"]:
            raise StoreError(f"{collection} has no index '{index}'")
        return [copy.deepcopy(r) for r in self._records[collection].values() if r.get(index) == value]

    async def add(self, collection: str, record: Dict[str, Any]) -> Any:
        """Insert a new record; fails if the key is already taken. Returns the key."""
        rec = copy.deepcopy(record)

        def _do() -> Any:
            key = self._assign_key(collection, rec)
            if key in self._records[collection]:
                raise StoreError(f"{collection}: key {key!r} already exists")
            self._records[collection][key] = rec
            return key

        return await self._mutate(collection, _do)

    async def add_many(self, collection: str, records: Iterable[Dict[str, Any]]) -> List[Any]:
        """Insert several records with a single write; all or nothing."""
        keys = await self.add_batch({collection: records})
        return keys[collection]

    async def add_batch(self, batch: Dict[str, Iterable[Dict[str, Any]]]) -> Dict[str, List[Any]]:
        """
        Insert records into several collections with a single write.

        Collections are filled in the mapping's order. Any duplicate key or
        failed write restores every collection in the batch.
        Returns {collection: [keys]}.
        """
        recs = {name: [copy.deepcopy(r) for r in records] for name, records in batch.items()}

        def _do() -> Dict[str, List[Any]]:
            out: Dict[str, List[Any]] = {}
            for name, items in recs.items():
                keys = []
                for rec in items:
                    key = self._assign_key(name, rec)
                    if key in self._records[name]:
                        raise StoreError(f"{name}: key {key!r} already exists")
                    self._records[name][key] = rec
                    keys.append(key)
                out[name] = keys
            return out

        return await self._mutate_many(recs.keys(), _do)

    async def next_keys(self, collection: str, count: int) -> List[int]:
        """The keys the next `count` auto-increment inserts would receive."""
        meta = self._meta(collection)
        if not meta["auto_increment"]:
            raise StoreError(f"{collection} has no auto-increment key")
        start = self._next_id[collection]
        return list(range(start, start + count))

    async def put(self, collection: str, record: Dict[str, Any]) -> Any:
        """Insert or replace a record. Returns the key."""
        rec = copy.deepcopy(record)

        def _do() -> Any:
            key = self._assign_key(collection, rec)
            self._records[collection][key] = rec
            return key

        return await self._mutate(collection, _do)

    async def delete(self, collection: str, key: Any) -> None:
        # deleting a missing key is not an error
        def _do() -> None:
            self._records[collection].pop(key, None)

        self._meta(collection)
        await self._mutate(collection, _do)


async def open_store(path: Optional[str | os.PathLike[str]] = None) -> RecordStore:
    return await RecordStore(path).load()
