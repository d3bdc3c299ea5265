import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryCollectionStore, MemoryNotificationStore
from cms.errors import NotFoundError


class TestMemoryCollectionStore(unittest.TestCase):
    def setUp(self) -> None:
        self.store = MemoryCollectionStore()

    def test_documents_are_copied(self) -> None:
        doc = {"id": "d1", "tags": ["a"]}
        self.store.create("content", doc)
        doc["tags"].append("b")
        fetched = self.store.get("content", "d1")
        fetched["tags"].append("c")
        self.assertEqual(self.store.get("content", "d1")["tags"], ["a"])

    def test_insertion_order(self) -> None:
        for idx in range(3):
            self.store.create("content", {"id": f"d{idx}"})
        self.assertEqual([d["id"] for d in self.store.get_all("content")], ["d0", "d1", "d2"])

    def test_patch_and_delete(self) -> None:
        self.store.create("content", {"id": "d1", "title": "a"})
        patched = self.store.patch("content", "d1", {"title": "b", "id": "other"})
        self.assertEqual(patched, {"id": "d1", "title": "b"})
        self.assertTrue(self.store.delete("content", "d1"))
        self.assertFalse(self.store.delete("content", "d1"))
        with self.assertRaises(NotFoundError):
            self.store.patch("content", "d1", {})

    def test_transaction_rolls_back_on_error(self) -> None:
        self.store.create("content", {"id": "keep"})
        with self.assertRaises(ValueError):
            with self.store.transaction():
                self.store.create("content", {"id": "new"})
                self.store.delete("content", "keep")
                raise ValueError("abort")
        self.assertEqual([d["id"] for d in self.store.get_all("content")], ["keep"])

    def test_failed_nested_block_rolls_back_outer(self) -> None:
        with self.store.transaction():
            self.store.create("content", {"id": "outer"})
            try:
                with self.store.transaction():
                    self.store.create("content", {"id": "inner"})
                    raise ValueError("abort")
            except ValueError:
                pass
        self.assertEqual(self.store.get_all("content"), [])

    def test_commit_keeps_writes(self) -> None:
        with self.store.transaction():
            self.store.create("menuItems", {"id": "m1"})
        self.assertIsNotNone(self.store.get("menuItems", "m1"))


class TestMemoryNotificationStore(unittest.TestCase):
    def test_newest_first_and_read_state(self) -> None:
        store = MemoryNotificationStore()
        first = store.create({"level": "success", "message": "one"})
        store.create({"level": "error", "message": "two"})
        self.assertEqual([n["message"] for n in store.list()], ["two", "one"])
        self.assertEqual(store.unread_count(), 2)
        store.mark_read(first["id"])
        self.assertEqual([n["message"] for n in store.list(unread_only=True)], ["two"])
        self.assertEqual(store.mark_all_read(), 1)
        self.assertEqual(store.unread_count(), 0)
        self.assertIsNone(store.mark_read("missing"))

    def test_limit_drops_oldest(self) -> None:
        store = MemoryNotificationStore(limit=2)
        for idx in range(3):
            store.create({"message": str(idx)})
        self.assertEqual([n["message"] for n in store.list()], ["2", "1"])


if __name__ == "__main__":
    unittest.main()
