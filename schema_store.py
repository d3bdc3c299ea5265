"""Content type definitions: validation, persistence and field-list editing."""

from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List

from cms.errors import CascadeFailure, Issue, NotFoundError, ValidationError, issue
from cms.slug import generate_slug, is_valid_slug
from field_types import FIELD_TYPES, RECORD_SYSTEM_KEYS


COLLECTION = "contentTypes"
EDITABLE_KEYS = ("name", "slug", "fields")

logger = logging.getLogger("cms.schema")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _new_id() -> str:
    return str(uuid.uuid4())


# Field-list editing. These work on copies and never touch the store; a type
# being edited lives in the caller's transient state until it is saved.

def add_field(fields: list[dict], name: str = "", type: str = "text", required: bool = False, options: Any = None) -> list[dict]:
    new_field = {"id": _new_id(), "name": name, "type": type, "required": required}
    if options is not None:
        new_field["options"] = copy.deepcopy(options)
    return [copy.deepcopy(f) for f in fields] + [new_field]


def update_field(fields: list[dict], field_id: str, changes: dict) -> list[dict]:
    updated = []
    for f in fields:
        item = copy.deepcopy(f)
        if item.get("id") == field_id:
            item.update({k: copy.deepcopy(v) for k, v in changes.items() if k != "id"})
        updated.append(item)
    return updated


def remove_field(fields: list[dict], field_id: str) -> list[dict]:
    return [copy.deepcopy(f) for f in fields if f.get("id") != field_id]


def move_field(fields: list[dict], from_index: int, to_index: int) -> list[dict]:
    moved = [copy.deepcopy(f) for f in fields]
    if from_index < 0 or from_index >= len(moved) or to_index < 0 or to_index >= len(moved):
        return moved
    item = moved.pop(from_index)
    moved.insert(to_index, item)
    return moved


def _normalize_fields(fields: Any) -> list[dict]:
    if not isinstance(fields, list):
        return fields
    out = []
    for raw in fields:
        if not isinstance(raw, dict):
            out.append(raw)
            continue
        field = {
            "id": raw.get("id") or _new_id(),
            "name": raw.get("name").strip() if isinstance(raw.get("name"), str) else raw.get("name"),
            "type": raw.get("type") or "text",
            "required": False if raw.get("required") is None else raw.get("required"),
        }
        field_type = FIELD_TYPES.get(field["type"])
        if field_type is not None and field_type.takes_options and raw.get("options") is not None:
            field["options"] = copy.deepcopy(raw.get("options"))
        out.append(field)
    return out


def validate_definition(candidate: dict, existing: list[dict], exclude_id: str | None = None) -> List[Issue]:
    """Collect every structural problem of a definition about to be written."""
    errors: List[Issue] = []
    name = candidate.get("name")
    slug = candidate.get("slug")
    if not isinstance(name, str) or not name.strip():
        errors.append(issue("NAME_REQUIRED", "Content type name is required", "name"))
    if not isinstance(slug, str) or not slug:
        errors.append(issue("SLUG_REQUIRED", "Slug is required", "slug"))
    elif not is_valid_slug(slug):
        errors.append(issue("SLUG_INVALID", "Slug may only contain a-z, 0-9 and '-'", "slug"))
    else:
        for other in existing:
            if other.get("id") != exclude_id and other.get("slug") == slug:
                errors.append(issue("SLUG_TAKEN", f"Slug already in use: {slug}", "slug", {"content_type_id": other.get("id")}))
                break

    fields = candidate.get("fields")
    if not isinstance(fields, list):
        errors.append(issue("FIELDS_INVALID", "fields must be a list", "fields"))
        return errors

    type_ids = {ct.get("id") for ct in existing}
    if exclude_id:
        type_ids.add(exclude_id)
    seen_names: set[str] = set()
    seen_ids: set[str] = set()
    for idx, field in enumerate(fields):
        path = f"fields[{idx}]"
        if not isinstance(field, dict):
            errors.append(issue("FIELD_INVALID", "field must be an object", path))
            continue
        field_name = field.get("name")
        if not isinstance(field_name, str) or not field_name:
            errors.append(issue("FIELD_NAME_REQUIRED", "All fields must have a name", f"{path}.name"))
        elif field_name in RECORD_SYSTEM_KEYS:
            errors.append(issue("FIELD_NAME_RESERVED", f"Field name is reserved: {field_name}", f"{path}.name"))
        elif field_name in seen_names:
            errors.append(issue("FIELD_NAME_DUPLICATE", f"Duplicate field name: {field_name}", f"{path}.name"))
        else:
            seen_names.add(field_name)
        field_id = field.get("id")
        if field_id in seen_ids:
            errors.append(issue("FIELD_ID_DUPLICATE", f"Duplicate field id: {field_id}", f"{path}.id"))
        seen_ids.add(field_id)
        if not isinstance(field.get("required", False), bool):
            errors.append(issue("FIELD_INVALID", "required must be true or false", f"{path}.required"))
        field_type = FIELD_TYPES.get(field.get("type"))
        if field_type is None:
            errors.append(issue("FIELD_TYPE_UNKNOWN", f"Unknown field type: {field.get('type')}", f"{path}.type"))
            continue
        if field_type.takes_options:
            for problem in field_type.check_options(field.get("options"), {"content_type_ids": type_ids}):
                errors.append(issue("FIELD_OPTIONS_INVALID", problem, f"{path}.options"))
    return errors


class ContentTypeStore:
    """Owns content type definitions in the ``contentTypes`` collection.

    ``cascade`` (optional) receives ``on_create``/``on_delete`` inside the same
    transaction as the definition write, so generated dependents appear and
    disappear together with their content type.
    """

    def __init__(self, collections, cascade=None) -> None:
        self._collections = collections
        self._cascade = cascade

    def list(self) -> list[dict]:
        return self._collections.get_all(COLLECTION)

    def find(self, content_type_id: str | None) -> dict | None:
        if not content_type_id:
            return None
        return self._collections.get(COLLECTION, content_type_id)

    def get_by_id(self, content_type_id: str) -> dict:
        definition = self.find(content_type_id)
        if definition is None:
            raise NotFoundError(message="Content type not found", kind="content_type", entity_id=content_type_id)
        return definition

    def find_by_slug(self, slug: str) -> dict | None:
        for definition in self.list():
            if definition.get("slug") == slug:
                return definition
        return None

    def create(self, draft: dict) -> dict:
        if not isinstance(draft, dict):
            raise ValidationError.single("INVALID_PAYLOAD", "Content type must be an object")
        name = draft.get("name")
        slug = draft.get("slug")
        if slug is None and isinstance(name, str):
            slug = generate_slug(name)
        candidate = {
            "name": name.strip() if isinstance(name, str) else name,
            "slug": slug,
            "fields": _normalize_fields(draft.get("fields") if draft.get("fields") is not None else []),
        }
        errors = validate_definition(candidate, self.list())
        if errors:
            logger.info("content_type_rejected slug=%s errors=%s", slug, [e["code"] for e in errors])
            raise ValidationError.from_issues(errors)

        now = _now()
        definition = {"id": _new_id(), **candidate, "createdAt": now, "updatedAt": now}
        try:
            with self._collections.transaction():
                created = self._collections.create(COLLECTION, definition)
                if self._cascade is not None:
                    self._cascade.on_create(created)
        except CascadeFailure as exc:
            exc.rolled_back = True
            logger.error("content_type_create_rolled_back slug=%s step=%s", definition["slug"], exc.step)
            raise
        logger.info("content_type_created id=%s slug=%s fields=%s", created["id"], created["slug"], len(created["fields"]))
        return created

    def update(self, content_type_id: str, patch: dict) -> dict:
        existing = self.get_by_id(content_type_id)
        if not isinstance(patch, dict):
            raise ValidationError.single("INVALID_PAYLOAD", "Content type patch must be an object")
        changes: Dict[str, Any] = {}
        for key in EDITABLE_KEYS:
            if key not in patch:
                continue
            value = patch[key]
            if key == "name" and isinstance(value, str):
                value = value.strip()
            if key == "fields":
                value = _normalize_fields(value)
            changes[key] = value
        candidate = {**existing, **changes}
        errors = validate_definition(candidate, self.list(), exclude_id=content_type_id)
        if errors:
            logger.info("content_type_update_rejected id=%s errors=%s", content_type_id, [e["code"] for e in errors])
            raise ValidationError.from_issues(errors)
        changes["updatedAt"] = _now()
        updated = self._collections.patch(COLLECTION, content_type_id, changes)
        logger.info("content_type_updated id=%s keys=%s", content_type_id, sorted(changes.keys()))
        return updated

    def delete(self, content_type_id: str) -> dict:
        definition = self.get_by_id(content_type_id)
        try:
            with self._collections.transaction():
                if self._cascade is not None:
                    self._cascade.on_delete(definition)
                self._collections.delete(COLLECTION, content_type_id)
        except CascadeFailure as exc:
            exc.rolled_back = True
            logger.error("content_type_delete_rolled_back id=%s step=%s completed=%s", content_type_id, exc.step, exc.completed)
            raise
        logger.info("content_type_deleted id=%s slug=%s", content_type_id, definition.get("slug"))
        return definition
