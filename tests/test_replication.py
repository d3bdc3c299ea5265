import json
import os
import sys
import threading
import time
import unittest

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.replication import RemoteReplicator, ReplicatingCollectionStore
from app.stores import MemoryCollectionStore
from outbox import CHANGE_CREATED, CHANGE_DELETED, CHANGE_PATCHED, Outbox


class TestReplicatingStore(unittest.TestCase):
    def setUp(self) -> None:
        self.outbox = Outbox()
        self.store = ReplicatingCollectionStore(MemoryCollectionStore(), self.outbox)

    def test_writes_enqueue_changes(self) -> None:
        doc = self.store.create("content", {"title": "a"})
        self.store.patch("content", doc["id"], {"title": "b"})
        self.store.delete("content", doc["id"])
        self.store.delete("content", doc["id"])
        self.assertEqual([e["name"] for e in self.outbox.pending()], [CHANGE_CREATED, CHANGE_PATCHED, CHANGE_DELETED])

    def test_commit_flushes_buffer(self) -> None:
        with self.store.transaction():
            self.store.create("content", {"title": "a"})
            with self.store.transaction():
                self.store.create("content", {"title": "b"})
            self.assertEqual(self.outbox.pending(), [])
        self.assertEqual(len(self.outbox.pending()), 2)

    def test_rollback_drops_events(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.store.transaction():
                self.store.create("content", {"title": "a"})
                raise RuntimeError("abort")
        self.assertEqual(self.outbox.pending(), [])
        self.assertEqual(self.store.get_all("content"), [])


class TestRemoteReplicator(unittest.TestCase):
    def _client(self, handler) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_flush_maps_events_to_rest_calls(self) -> None:
        outbox = Outbox()
        store = ReplicatingCollectionStore(MemoryCollectionStore(), outbox)
        doc = store.create("menuItems", {"label": "A", "link": "/a"})
        store.patch("menuItems", doc["id"], {"label": "B"})
        store.delete("menuItems", doc["id"])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path))
            return httpx.Response(200, json={})

        result = RemoteReplicator(outbox, "http://remote:3001/", client=self._client(handler)).flush()
        self.assertEqual(result, {"sent": 3, "failed": 0})
        self.assertEqual(
            calls,
            [
                ("POST", "/menuItems"),
                ("PATCH", f"/menuItems/{doc['id']}"),
                ("DELETE", f"/menuItems/{doc['id']}"),
            ],
        )
        self.assertEqual(outbox.pending(), [])

    def test_failures_logged_and_acked(self) -> None:
        outbox = Outbox()
        store = ReplicatingCollectionStore(MemoryCollectionStore(), outbox)
        store.create("content", {"title": "a"})
        store.create("content", {"title": "b"})
        responses = iter([httpx.Response(500), None])

        def handler(request: httpx.Request) -> httpx.Response:
            res = next(responses)
            if res is None:
                raise httpx.ConnectError("unreachable", request=request)
            return res

        with self.assertLogs("cms.replication", level="WARNING"):
            result = RemoteReplicator(outbox, "http://remote:3001", client=self._client(handler)).flush()
        self.assertEqual(result, {"sent": 0, "failed": 2})
        self.assertEqual(outbox.pending(), [])
        self.assertEqual(len(store.get_all("content")), 2)

    def test_overlapping_flushes_send_each_event_once(self) -> None:
        outbox = Outbox()
        store = ReplicatingCollectionStore(MemoryCollectionStore(), outbox)
        first = store.create("content", {"title": "a"})
        entered = threading.Event()
        release = threading.Event()
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append((request.method, request.url.path, json.loads(request.content)["id"]))
            entered.set()
            release.wait(5)
            return httpx.Response(201, json={})

        replicator = RemoteReplicator(outbox, "http://remote:3001", client=self._client(handler))
        slow = threading.Thread(target=replicator.flush)
        slow.start()
        self.assertTrue(entered.wait(5))
        second = store.create("content", {"title": "b"})
        overlapping = threading.Thread(target=replicator.flush)
        overlapping.start()
        time.sleep(0.05)
        release.set()
        slow.join(5)
        overlapping.join(5)

        self.assertEqual(
            calls,
            [("POST", "/content", first["id"]), ("POST", "/content", second["id"])],
        )
        self.assertEqual(outbox.pending(), [])


if __name__ == "__main__":
    unittest.main()
