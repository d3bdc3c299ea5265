"""In-memory outbox of committed collection changes awaiting replication."""

from __future__ import annotations

import copy
from typing import List

from event_bus import Event, make_event, validate_event

CHANGE_CREATED = "collection.created"
CHANGE_PATCHED = "collection.patched"
CHANGE_DELETED = "collection.deleted"


def change_event(name: str, collection: str, doc_id: str, document: dict | None = None) -> Event:
    payload = {"collection": collection, "id": doc_id}
    if document is not None:
        payload["document"] = document
    return make_event(name, payload, {"source": "collections", "actor": None})


class Outbox:
    def __init__(self) -> None:
        self._events: List[Event] = []

    def enqueue(self, event: dict) -> None:
        validate_event(event)
        self._events.append(copy.deepcopy(event))

    def pending(self) -> list[dict]:
        return list(self._events)

    def ack(self, event_id: str) -> bool:
        for idx, event in enumerate(self._events):
            if event.get("meta", {}).get("event_id") == event_id:
                del self._events[idx]
                return True
        return False
