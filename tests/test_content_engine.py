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
from cms.errors import NotFoundError, ValidationError
from content_engine import ContentEngine
from event_bus import NOTIFICATION_ERROR, NOTIFICATION_SUCCESS, EventBus


class TestContentEngine(unittest.TestCase):
    def setUp(self) -> None:
        bus = EventBus()
        self.notices = []
        bus.subscribe(NOTIFICATION_SUCCESS, lambda e: self.notices.append(e["payload"]["message"]))
        bus.subscribe(NOTIFICATION_ERROR, lambda e: self.notices.append("error: " + e["payload"]["message"]))
        self.engine = ContentEngine(MemoryCollectionStore(), bus=bus)
        self.post = self.engine.create_content_type(
            {"name": "Blog Post", "fields": [{"name": "title", "type": "text", "required": True}, {"name": "views", "type": "number"}]}
        )

    def test_content_type_notices(self) -> None:
        self.engine.update_content_type(self.post["id"], {"name": "Article"})
        self.engine.delete_content_type(self.post["id"])
        self.assertEqual(
            self.notices,
            [
                'Content type "Blog Post" has been created',
                'Content type "Article" has been updated',
                'Content type "Article" has been deleted',
            ],
        )

    def test_validation_failure_not_toasted(self) -> None:
        with self.assertRaises(ValidationError):
            self.engine.create_content_type({"name": "Blog Post", "slug": "blog-post"})
        self.assertEqual(len(self.notices), 1)

    def test_submit_new_form(self) -> None:
        form = self.engine.derive_form(self.post["id"])
        form.set_value("title", "Hello")
        form.set_value("views", "7")
        record = self.engine.submit_form(form)
        self.assertEqual(record["views"], 7)
        self.assertEqual(self.notices[-1], "Blog Post item created successfully")

    def test_submit_edit_form(self) -> None:
        record = self.engine.create_record(self.post["id"], {"title": "Hello", "views": "1"})
        form = self.engine.derive_form(self.post["id"], record["id"])
        self.assertEqual(form.values["views"], "1")
        form.set_value("views", "2")
        updated = self.engine.submit_form(form)
        self.assertEqual(updated["id"], record["id"])
        self.assertEqual(updated["views"], 2)

    def test_stale_form_refused(self) -> None:
        form = self.engine.derive_form(self.post["id"])
        form.set_value("title", "Hello")
        self.engine.update_content_type(self.post["id"], {"fields": self.post["fields"][:1]})
        with self.assertRaises(ValidationError) as ctx:
            self.engine.submit_form(form)
        self.assertEqual(ctx.exception.issues[0]["code"], "STALE_FORM")
        self.assertEqual(self.engine.list_records(self.post["id"]), [])

    def test_record_of_other_type_not_found(self) -> None:
        other = self.engine.create_content_type({"name": "Page", "fields": []})
        record = self.engine.create_record(self.post["id"], {"title": "Hello"})
        with self.assertRaises(NotFoundError):
            self.engine.derive_form(other["id"], record["id"])

    def test_lookup_by_slug(self) -> None:
        self.assertEqual(self.engine.get_content_type_by_slug("blog-post")["id"], self.post["id"])
        with self.assertRaises(NotFoundError):
            self.engine.get_content_type_by_slug("missing")


if __name__ == "__main__":
    unittest.main()
