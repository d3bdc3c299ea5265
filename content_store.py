"""Content records stored per content type and validated against its schema."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Callable

from cms.errors import EngineError, NotFoundError, ValidationError
from event_bus import Notifier
from field_types import validate_values


COLLECTION = "content"
FAILURE_NOTICE = "Failed to save content item. Please try again."
DELETE_FAILURE_NOTICE = "Failed to delete item. Please try again."

logger = logging.getLogger("cms.records")

TypeLookup = Callable[[str], "dict | None"]


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class ContentRecordStore:
    """CRUD over the ``content`` collection.

    The owning content type is looked up through ``lookup_type`` on every
    write, never cached, so a record is always checked against the schema as
    it stands now. Fields removed from the schema after a record was written
    stay on the record untouched.
    """

    def __init__(self, collections, lookup_type: TypeLookup, notifier: Notifier | None = None) -> None:
        self._collections = collections
        self._lookup_type = lookup_type
        self._notifier = notifier

    def _notify_success(self, message: str) -> None:
        if self._notifier is not None:
            self._notifier.success(message)

    def _notify_failure(self, message: str, exc: Exception) -> None:
        logger.error("record_write_failed error=%s", exc)
        if self._notifier is not None:
            self._notifier.error(message)

    def _resolve_type(self, content_type_id: str | None) -> dict:
        if not content_type_id:
            raise ValidationError.single("CONTENT_TYPE_REQUIRED", "Content Type ID is required", "contentTypeId")
        content_type = self._lookup_type(content_type_id)
        if content_type is None:
            raise ValidationError.single("CONTENT_TYPE_UNKNOWN", "Content type not found", "contentTypeId")
        return content_type

    def list_by_type(self, content_type_id: str) -> list[dict]:
        return [r for r in self._collections.get_all(COLLECTION) if r.get("contentTypeId") == content_type_id]

    def get(self, record_id: str) -> dict:
        record = self._collections.get(COLLECTION, record_id)
        if record is None:
            raise NotFoundError(message="Content item not found", kind="content", entity_id=record_id)
        return record

    def create(self, content_type_id: str, values: dict) -> dict:
        content_type = self._resolve_type(content_type_id)
        clean = validate_values(content_type.get("fields") or [], values)
        now = _now()
        record = {
            "id": str(uuid.uuid4()),
            "contentTypeId": content_type["id"],
            **clean,
            "createdAt": now,
            "updatedAt": now,
        }
        try:
            created = self._collections.create(COLLECTION, record)
        except EngineError as exc:
            self._notify_failure(FAILURE_NOTICE, exc)
            raise
        logger.info("record_created id=%s content_type=%s", created["id"], content_type["id"])
        self._notify_success(f"{content_type['name']} item created successfully")
        return created

    def update(self, record_id: str, values: dict) -> dict:
        existing = self.get(record_id)
        if not isinstance(values, dict):
            raise ValidationError.single("INVALID_PAYLOAD", "Record data must be an object")
        content_type = self._lookup_type(existing.get("contentTypeId"))
        if content_type is None:
            raise NotFoundError(message="Content type not found", kind="content_type", entity_id=existing.get("contentTypeId"))
        fields = content_type.get("fields") or []
        current = {f.get("name"): existing.get(f.get("name")) for f in fields if f.get("name") in existing}
        merged = {**current, **values}
        clean = validate_values(fields, merged)
        changes = {**clean, "updatedAt": _now()}
        try:
            updated = self._collections.patch(COLLECTION, record_id, changes)
        except EngineError as exc:
            self._notify_failure(FAILURE_NOTICE, exc)
            raise
        logger.info("record_updated id=%s content_type=%s", record_id, content_type["id"])
        self._notify_success(f"{content_type['name']} item updated successfully")
        return updated

    def delete(self, record_id: str) -> dict:
        existing = self.get(record_id)
        content_type = self._lookup_type(existing.get("contentTypeId"))
        try:
            self._collections.delete(COLLECTION, record_id)
        except EngineError as exc:
            self._notify_failure(DELETE_FAILURE_NOTICE, exc)
            raise
        logger.info("record_deleted id=%s content_type=%s", record_id, existing.get("contentTypeId"))
        label = content_type["name"] if content_type else "Content"
        self._notify_success(f"{label} item deleted successfully")
        return existing

    def delete_by_type(self, content_type_id: str) -> int:
        count = 0
        for record in self.list_by_type(content_type_id):
            if self._collections.delete(COLLECTION, record["id"]):
                count += 1
        logger.info("records_deleted_by_type content_type=%s count=%s", content_type_id, count)
        return count
