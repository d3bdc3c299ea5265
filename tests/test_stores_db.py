import json
import os
import sys
import unittest
from contextlib import contextmanager
from unittest import mock

import psycopg2


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app import db
from app.stores_db import DbCollectionStore
from cms.errors import NotFoundError, TransportFailure


class TestDbCollectionStore(unittest.TestCase):
    def setUp(self) -> None:
        self.conn = object()

        @contextmanager
        def fake_conn():
            yield self.conn

        patcher = mock.patch.object(db, "get_conn", fake_conn)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.store = DbCollectionStore(ensure_schema=False)

    def test_ensure_schema_runs_ddl(self) -> None:
        with mock.patch.object(db, "execute", return_value=0) as execute:
            DbCollectionStore()
        sql = execute.call_args[0][1]
        self.assertIn("create table if not exists cms_documents", sql)

    def test_get_all_decodes_json_rows(self) -> None:
        rows = [{"data": {"id": "a"}}, {"data": json.dumps({"id": "b"})}]
        with mock.patch.object(db, "fetch_all", return_value=rows) as fetch_all:
            docs = self.store.get_all("content")
        self.assertEqual(docs, [{"id": "a"}, {"id": "b"}])
        self.assertEqual(fetch_all.call_args[0][2], ["content"])

    def test_create_assigns_id_and_serializes(self) -> None:
        with mock.patch.object(db, "execute", return_value=1) as execute:
            doc = self.store.create("menuItems", {"label": "A"})
        self.assertTrue(doc["id"])
        params = execute.call_args[0][2]
        self.assertEqual(params[:2], ["menuItems", doc["id"]])
        self.assertEqual(json.loads(params[2])["label"], "A")

    def test_patch_missing_row(self) -> None:
        with mock.patch.object(db, "fetch_one", return_value=None):
            with self.assertRaises(NotFoundError):
                self.store.patch("content", "missing", {"title": "x"})

    def test_patch_returns_merged_document(self) -> None:
        with mock.patch.object(db, "fetch_one", return_value={"data": {"id": "r1", "title": "x"}}):
            self.assertEqual(self.store.patch("content", "r1", {"title": "x"}), {"id": "r1", "title": "x"})

    def test_delete_reports_rowcount(self) -> None:
        with mock.patch.object(db, "execute", return_value=0):
            self.assertFalse(self.store.delete("content", "r1"))
        with mock.patch.object(db, "execute", return_value=1):
            self.assertTrue(self.store.delete("content", "r1"))

    def test_driver_errors_become_transport_failures(self) -> None:
        with mock.patch.object(db, "fetch_one", side_effect=psycopg2.OperationalError("connection refused")):
            with self.assertRaises(TransportFailure) as ctx:
                self.store.get("content", "r1")
        self.assertEqual(ctx.exception.operation, "get")
        self.assertIn("connection refused", ctx.exception.detail)
        self.assertNotIn("connection refused", ctx.exception.message)

    def test_transaction_wraps_db_transaction(self) -> None:
        entered = []

        @contextmanager
        def fake_tx():
            entered.append("begin")
            yield self.conn
            entered.append("commit")

        with mock.patch.object(db, "transaction", fake_tx):
            with self.store.transaction() as tx:
                self.assertIs(tx, self.store)
        self.assertEqual(entered, ["begin", "commit"])


if __name__ == "__main__":
    unittest.main()
