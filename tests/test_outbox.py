import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from event_bus import EventValidationError
from outbox import CHANGE_CREATED, CHANGE_DELETED, Outbox, change_event


class TestOutbox(unittest.TestCase):
    def test_enqueue_pending_order(self) -> None:
        outbox = Outbox()
        outbox.enqueue(change_event(CHANGE_CREATED, "content", "r1", {"id": "r1"}))
        outbox.enqueue(change_event(CHANGE_DELETED, "content", "r1"))
        self.assertEqual([p["name"] for p in outbox.pending()], [CHANGE_CREATED, CHANGE_DELETED])

    def test_ack(self) -> None:
        outbox = Outbox()
        event = change_event(CHANGE_CREATED, "menuItems", "m1", {"id": "m1"})
        outbox.enqueue(event)
        self.assertTrue(outbox.ack(event["meta"]["event_id"]))
        self.assertFalse(outbox.ack(event["meta"]["event_id"]))
        self.assertEqual(outbox.pending(), [])

    def test_change_event_payload(self) -> None:
        event = change_event(CHANGE_DELETED, "apiEndpoints", "e1")
        self.assertEqual(event["payload"], {"collection": "apiEndpoints", "id": "e1"})
        self.assertEqual(event["meta"]["source"], "collections")

    def test_invalid_event_rejected(self) -> None:
        with self.assertRaises(EventValidationError):
            Outbox().enqueue({"name": "", "payload": {}, "meta": {}})

    def test_enqueue_copies(self) -> None:
        outbox = Outbox()
        event = change_event(CHANGE_CREATED, "content", "r1", {"id": "r1", "title": "a"})
        outbox.enqueue(event)
        event["payload"]["document"]["title"] = "b"
        self.assertEqual(outbox.pending()[0]["payload"]["document"]["title"], "a")


if __name__ == "__main__":
    unittest.main()
