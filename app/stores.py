"""In-memory collection and notification stores."""

from __future__ import annotations

import copy
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator

from cms.errors import NotFoundError


COLLECTIONS = ("contentTypes", "content", "menuItems", "apiEndpoints")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class MemoryCollectionStore:
    """Named collections of JSON documents keyed by ``id``.

    Documents are deep-copied on the way in and out so callers never share
    state with the store. ``transaction()`` snapshots every collection and
    restores the snapshot if the block raises.
    """

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, dict]] = {name: {} for name in COLLECTIONS}
        self._tx_depth = 0
        self._tx_snapshot: Dict[str, Dict[str, dict]] | None = None
        self._tx_failed = False

    def _bucket(self, collection: str) -> Dict[str, dict]:
        return self._collections.setdefault(collection, {})

    def get_all(self, collection: str) -> list[dict]:
        return [copy.deepcopy(doc) for doc in self._bucket(collection).values()]

    def get(self, collection: str, doc_id: str) -> dict | None:
        doc = self._bucket(collection).get(doc_id)
        return copy.deepcopy(doc) if doc else None

    def create(self, collection: str, doc: dict) -> dict:
        record = copy.deepcopy(doc)
        record.setdefault("id", str(uuid.uuid4()))
        self._bucket(collection)[record["id"]] = record
        return copy.deepcopy(record)

    def patch(self, collection: str, doc_id: str, changes: dict) -> dict:
        bucket = self._bucket(collection)
        if doc_id not in bucket:
            raise NotFoundError(message=f"{collection} document not found", kind=collection, entity_id=doc_id)
        record = copy.deepcopy(bucket[doc_id])
        record.update(copy.deepcopy(changes))
        record["id"] = doc_id
        bucket[doc_id] = record
        return copy.deepcopy(record)

    def delete(self, collection: str, doc_id: str) -> bool:
        return self._bucket(collection).pop(doc_id, None) is not None

    @contextmanager
    def transaction(self) -> Iterator["MemoryCollectionStore"]:
        if self._tx_depth == 0:
            self._tx_snapshot = copy.deepcopy(self._collections)
            self._tx_failed = False
        self._tx_depth += 1
        try:
            yield self
        except BaseException:
            self._tx_failed = True
            raise
        finally:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                # a failed nested block poisons the whole transaction
                if self._tx_failed and self._tx_snapshot is not None:
                    self._collections = self._tx_snapshot
                self._tx_snapshot = None
                self._tx_failed = False


class MemoryNotificationStore:
    """Keeps the success/error notices emitted by the engine for the UI."""

    def __init__(self, limit: int = 200) -> None:
        self._items: Dict[str, dict] = {}
        self._limit = limit

    def create(self, record: dict) -> dict:
        item = copy.deepcopy(record)
        item.setdefault("id", str(uuid.uuid4()))
        item.setdefault("created_at", _now())
        item.setdefault("read_at", None)
        self._items[item["id"]] = item
        while len(self._items) > self._limit:
            self._items.pop(next(iter(self._items)))
        return copy.deepcopy(item)

    def list(self, unread_only: bool = False, limit: int = 50) -> list[dict]:
        items = list(self._items.values())
        if unread_only:
            items = [n for n in items if not n.get("read_at")]
        items.reverse()
        return [copy.deepcopy(n) for n in items[:limit]]

    def mark_read(self, notification_id: str) -> dict | None:
        item = self._items.get(notification_id)
        if not item:
            return None
        item["read_at"] = _now()
        return copy.deepcopy(item)

    def mark_all_read(self) -> int:
        count = 0
        for item in self._items.values():
            if not item.get("read_at"):
                item["read_at"] = _now()
                count += 1
        return count

    def unread_count(self) -> int:
        return sum(1 for n in self._items.values() if not n.get("read_at"))
