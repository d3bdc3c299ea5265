import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app.stores import MemoryCollectionStore
from cms.errors import CascadeFailure, TransportFailure
from content_engine import ContentEngine


class _FailingStore(MemoryCollectionStore):
    """Fails deletes on one collection once ``armed`` is set."""

    def __init__(self, fail_collection: str) -> None:
        super().__init__()
        self.fail_collection = fail_collection
        self.armed = False

    def delete(self, collection: str, doc_id: str) -> bool:
        if self.armed and collection == self.fail_collection:
            raise TransportFailure(message="Storage backend unavailable", operation="delete", detail="boom")
        return super().delete(collection, doc_id)


class TestCascade(unittest.TestCase):
    def _engine(self, collections=None) -> ContentEngine:
        return ContentEngine(collections or MemoryCollectionStore())

    def test_create_generates_endpoint_and_menu_entry(self) -> None:
        engine = self._engine()
        created = engine.create_content_type({"name": "Blog Post", "fields": [{"name": "title", "type": "text"}]})
        endpoints = engine.endpoints.list_for_type(created["id"])
        self.assertEqual([(e["path"], e["method"]) for e in endpoints], [("/api/blog-post", "GET")])
        entries = engine.menu.list_for_content_type(created["id"])
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["label"], "Blog Post")
        self.assertEqual(entries[0]["link"], "/blog-post")
        self.assertEqual(entries[0]["icon"], "FileText")

    def test_rename_updates_in_place_without_duplicates(self) -> None:
        engine = self._engine()
        created = engine.create_content_type({"name": "Post", "fields": []})
        endpoint_id = engine.endpoints.list_for_type(created["id"])[0]["id"]
        engine.update_content_type(created["id"], {"name": "Article", "slug": "article"})
        endpoints = engine.endpoints.list_for_type(created["id"])
        self.assertEqual([(e["id"], e["path"]) for e in endpoints], [(endpoint_id, "/api/article")])
        entries = engine.menu.list_for_content_type(created["id"])
        self.assertEqual([(e["label"], e["link"]) for e in entries], [("Article", "/article")])

    def test_name_only_change_keeps_endpoint(self) -> None:
        engine = self._engine()
        created = engine.create_content_type({"name": "Post", "fields": []})
        engine.update_content_type(created["id"], {"name": "Posts"})
        self.assertEqual(engine.endpoints.list_for_type(created["id"])[0]["path"], "/api/post")
        self.assertEqual(engine.menu.list_for_content_type(created["id"])[0]["label"], "Posts")

    def test_delete_removes_all_dependents(self) -> None:
        engine = self._engine()
        created = engine.create_content_type({"name": "Post", "fields": [{"name": "title", "type": "text"}]})
        engine.create_record(created["id"], {"title": "One"})
        engine.create_record(created["id"], {"title": "Two"})
        entry = engine.menu.list_for_content_type(created["id"])[0]
        engine.menu.create({"label": "Child", "link": "/child", "parentId": entry["id"]})
        engine.delete_content_type(created["id"])
        self.assertEqual(engine.records.list_by_type(created["id"]), [])
        self.assertEqual(engine.endpoints.list_for_type(created["id"]), [])
        self.assertEqual(engine.menu.list_for_content_type(created["id"]), [])
        self.assertNotIn("Child", [e["label"] for e in engine.menu.list()])
        self.assertIsNone(engine.content_types.find(created["id"]))

    def test_failed_step_rolls_back_everything(self) -> None:
        collections = _FailingStore("apiEndpoints")
        engine = self._engine(collections)
        created = engine.create_content_type({"name": "Post", "fields": [{"name": "title", "type": "text"}]})
        engine.create_record(created["id"], {"title": "One"})
        collections.armed = True
        with self.assertRaises(CascadeFailure) as ctx:
            engine.delete_content_type(created["id"])
        failure = ctx.exception
        self.assertEqual(failure.step, "endpoint")
        self.assertEqual(failure.completed, ["records"])
        self.assertTrue(failure.rolled_back)
        self.assertEqual(failure.content_type_id, created["id"])
        self.assertIsNotNone(engine.content_types.find(created["id"]))
        self.assertEqual(len(engine.records.list_by_type(created["id"])), 1)
        self.assertEqual(len(engine.endpoints.list_for_type(created["id"])), 1)
        self.assertEqual(len(engine.menu.list_for_content_type(created["id"])), 1)

    def test_failed_create_cascade_leaves_no_type(self) -> None:
        class _NoMenuStore(MemoryCollectionStore):
            def create(self, collection: str, doc: dict) -> dict:
                if collection == "menuItems":
                    raise TransportFailure(message="Storage backend unavailable", operation="create")
                return super().create(collection, doc)

        engine = self._engine(_NoMenuStore())
        with self.assertRaises(CascadeFailure) as ctx:
            engine.create_content_type({"name": "Post", "fields": []})
        self.assertEqual(ctx.exception.completed, ["endpoint"])
        self.assertEqual(engine.list_content_types(), [])
        self.assertEqual(engine.list_endpoints(), [])


if __name__ == "__main__":
    unittest.main()
