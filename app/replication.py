"""Fire-and-forget replication of committed collection writes to a REST store."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

import httpx

from outbox import CHANGE_CREATED, CHANGE_DELETED, CHANGE_PATCHED, Outbox, change_event

logger = logging.getLogger("cms.replication")


class ReplicatingCollectionStore:
    """Wraps the authoritative local store and records each write in the outbox.

    Writes made inside ``transaction()`` are buffered and only reach the outbox
    when the outermost block commits; a rolled-back block drops them.
    """

    def __init__(self, local, outbox: Outbox) -> None:
        self._local = local
        self._outbox = outbox
        self._depth = 0
        self._buffer: list[dict] = []

    def _record(self, event: dict) -> None:
        if self._depth:
            self._buffer.append(event)
        else:
            self._outbox.enqueue(event)

    def get_all(self, collection: str) -> list[dict]:
        return self._local.get_all(collection)

    def get(self, collection: str, doc_id: str) -> dict | None:
        return self._local.get(collection, doc_id)

    def create(self, collection: str, doc: dict) -> dict:
        created = self._local.create(collection, doc)
        self._record(change_event(CHANGE_CREATED, collection, created["id"], created))
        return created

    def patch(self, collection: str, doc_id: str, changes: dict) -> dict:
        updated = self._local.patch(collection, doc_id, changes)
        self._record(change_event(CHANGE_PATCHED, collection, doc_id, updated))
        return updated

    def delete(self, collection: str, doc_id: str) -> bool:
        removed = self._local.delete(collection, doc_id)
        if removed:
            self._record(change_event(CHANGE_DELETED, collection, doc_id))
        return removed

    @contextmanager
    def transaction(self) -> Iterator["ReplicatingCollectionStore"]:
        self._depth += 1
        committed = False
        try:
            with self._local.transaction():
                yield self
            committed = True
        finally:
            self._depth -= 1
            if self._depth == 0:
                pending, self._buffer = self._buffer, []
                if committed:
                    for event in pending:
                        self._outbox.enqueue(event)
                elif pending:
                    logger.info("replication_dropped reason=rollback events=%s", len(pending))


class RemoteReplicator:
    """Pushes outbox events to a json-server style REST store.

    Each event is attempted once. Failures are logged and acknowledged; the
    local store stays authoritative.
    """

    def __init__(self, outbox: Outbox, base_url: str, timeout: float = 5.0, client: httpx.Client | None = None) -> None:
        self._outbox = outbox
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client
        # Background flushes run in the threadpool; only one drains the outbox at a time.
        self._flush_lock = threading.Lock()

    def _send(self, client: httpx.Client, event: dict) -> httpx.Response:
        payload = event["payload"]
        collection, doc_id = payload["collection"], payload["id"]
        if event["name"] == CHANGE_CREATED:
            return client.post(f"{self._base_url}/{collection}", json=payload.get("document"))
        if event["name"] == CHANGE_PATCHED:
            return client.patch(f"{self._base_url}/{collection}/{doc_id}", json=payload.get("document"))
        if event["name"] == CHANGE_DELETED:
            return client.delete(f"{self._base_url}/{collection}/{doc_id}")
        raise ValueError(f"unsupported change event: {event['name']}")

    def _flush_with(self, client: httpx.Client) -> dict:
        sent = failed = 0
        for event in self._outbox.pending():
            event_id = event["meta"]["event_id"]
            try:
                res = self._send(client, event)
                if res.status_code >= 400:
                    failed += 1
                    logger.warning(
                        "replication_rejected event=%s collection=%s id=%s status=%s",
                        event["name"],
                        event["payload"]["collection"],
                        event["payload"]["id"],
                        res.status_code,
                    )
                else:
                    sent += 1
            except (httpx.HTTPError, ValueError) as exc:
                failed += 1
                logger.warning(
                    "replication_failed event=%s collection=%s id=%s error=%s",
                    event["name"],
                    event["payload"]["collection"],
                    event["payload"]["id"],
                    exc,
                )
            finally:
                self._outbox.ack(event_id)
        if sent or failed:
            logger.info("replication_flush sent=%s failed=%s", sent, failed)
        return {"sent": sent, "failed": failed}

    def flush(self) -> dict:
        with self._flush_lock:
            if self._client is not None:
                return self._flush_with(self._client)
            with httpx.Client(timeout=self._timeout) as client:
                return self._flush_with(client)
