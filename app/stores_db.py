"""Postgres-backed collection store."""

from __future__ import annotations

import copy
import json
import logging
import uuid
from contextlib import contextmanager
from typing import Iterator

import psycopg2

from app import db
from cms.errors import NotFoundError, TransportFailure

logger = logging.getLogger("cms.db")

_SCHEMA_SQL = """
create table if not exists cms_documents (
    collection text not null,
    id text not null,
    position bigserial,
    data jsonb not null,
    primary key (collection, id)
)
"""


def _json_dumps(value: object) -> str:
    return json.dumps(value, default=str)


def _ensure_json(value):
    if isinstance(value, str):
        return json.loads(value)
    return value


class DbCollectionStore:
    """Collections stored as rows of one ``jsonb`` table.

    Driver errors surface as ``TransportFailure``; the original exception is
    logged and chained, never shown to the user.
    """

    def __init__(self, ensure_schema: bool = True) -> None:
        if ensure_schema:
            self._run("ensure_schema", lambda conn: db.execute(conn, _SCHEMA_SQL, query_name="cms_documents.ensure_schema"))

    def _run(self, operation: str, fn):
        try:
            with db.get_conn() as conn:
                return fn(conn)
        except psycopg2.Error as exc:
            logger.error("db_operation_failed op=%s error=%s", operation, exc)
            raise TransportFailure(message="Storage backend unavailable", operation=operation, detail=str(exc)) from exc

    def get_all(self, collection: str) -> list[dict]:
        rows = self._run(
            "get_all",
            lambda conn: db.fetch_all(
                conn,
                "select data from cms_documents where collection=%s order by position asc",
                [collection],
                query_name="cms_documents.get_all",
            ),
        )
        return [_ensure_json(row.get("data")) for row in rows]

    def get(self, collection: str, doc_id: str) -> dict | None:
        row = self._run(
            "get",
            lambda conn: db.fetch_one(
                conn,
                "select data from cms_documents where collection=%s and id=%s",
                [collection, doc_id],
                query_name="cms_documents.get",
            ),
        )
        return _ensure_json(row.get("data")) if row else None

    def create(self, collection: str, doc: dict) -> dict:
        record = copy.deepcopy(doc)
        record.setdefault("id", str(uuid.uuid4()))
        self._run(
            "create",
            lambda conn: db.execute(
                conn,
                "insert into cms_documents (collection, id, data) values (%s, %s, %s::jsonb)",
                [collection, record["id"], _json_dumps(record)],
                query_name="cms_documents.create",
            ),
        )
        return record

    def patch(self, collection: str, doc_id: str, changes: dict) -> dict:
        payload = copy.deepcopy(changes)
        payload["id"] = doc_id
        row = self._run(
            "patch",
            lambda conn: db.fetch_one(
                conn,
                """
                update cms_documents
                set data = data || %s::jsonb
                where collection=%s and id=%s
                returning data
                """,
                [_json_dumps(payload), collection, doc_id],
                query_name="cms_documents.patch",
            ),
        )
        if not row:
            raise NotFoundError(message=f"{collection} document not found", kind=collection, entity_id=doc_id)
        return _ensure_json(row.get("data"))

    def delete(self, collection: str, doc_id: str) -> bool:
        count = self._run(
            "delete",
            lambda conn: db.execute(
                conn,
                "delete from cms_documents where collection=%s and id=%s",
                [collection, doc_id],
                query_name="cms_documents.delete",
            ),
        )
        return bool(count)

    @contextmanager
    def transaction(self) -> Iterator["DbCollectionStore"]:
        try:
            with db.transaction():
                yield self
        except psycopg2.Error as exc:
            logger.error("db_transaction_failed error=%s", exc)
            raise TransportFailure(message="Storage backend unavailable", operation="transaction", detail=str(exc)) from exc
