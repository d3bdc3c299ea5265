"""Content engine service: one object owning the collections and their stores."""

from __future__ import annotations

import logging

from api_endpoints import DEFAULT_BASE_URL, ApiEndpointStore, generate_api_client, generate_json_server_config
from cascade import CascadeCoordinator
from cms.errors import CascadeFailure, EngineError, NotFoundError, ValidationError
from content_store import ContentRecordStore
from event_bus import EventBus, Notifier
from form_deriver import DerivedForm, derive_form
from menu_tree import MenuStore
from schema_store import ContentTypeStore


logger = logging.getLogger("cms.engine")

SAVE_FAILURE_NOTICE = "Failed to save content type"
DELETE_FAILURE_NOTICE = "Failed to delete content type"


class ContentEngine:
    """Entry point for every engine operation.

    ``collections`` is a collection store (memory, Postgres, or a replicating
    wrapper). All stores share it, so one ``transaction()`` covers a content
    type together with its records, endpoint and menu entries.
    """

    def __init__(self, collections, bus: EventBus | None = None, base_url: str = DEFAULT_BASE_URL) -> None:
        self.collections = collections
        self.bus = bus or EventBus()
        self.base_url = base_url
        self._notifier = Notifier(self.bus, "content_engine")
        self.records = ContentRecordStore(collections, self._find_type, notifier=self._notifier)
        self.endpoints = ApiEndpointStore(collections)
        self.menu = MenuStore(collections)
        self.cascade = CascadeCoordinator(self.records, self.endpoints, self.menu)
        self.content_types = ContentTypeStore(collections, cascade=self.cascade)

    def _find_type(self, content_type_id: str | None) -> dict | None:
        return self.content_types.find(content_type_id)

    def _failed(self, notice: str, exc: EngineError) -> None:
        if isinstance(exc, ValidationError):
            return
        logger.error("content_type_write_failed kind=%s error=%s", type(exc).__name__, exc)
        self._notifier.error(notice)

    # Content types

    def list_content_types(self) -> list[dict]:
        return self.content_types.list()

    def get_content_type(self, content_type_id: str) -> dict:
        return self.content_types.get_by_id(content_type_id)

    def get_content_type_by_slug(self, slug: str) -> dict:
        definition = self.content_types.find_by_slug(slug)
        if definition is None:
            raise NotFoundError(message="Content type not found", kind="content_type", entity_id=slug)
        return definition

    def create_content_type(self, draft: dict) -> dict:
        try:
            created = self.content_types.create(draft)
        except EngineError as exc:
            self._failed(SAVE_FAILURE_NOTICE, exc)
            raise
        self._notifier.success(f'Content type "{created["name"]}" has been created')
        return created

    def update_content_type(self, content_type_id: str, patch: dict) -> dict:
        before = self.content_types.get_by_id(content_type_id)
        try:
            with self.collections.transaction():
                updated = self.content_types.update(content_type_id, patch)
                self.cascade.on_update(before, updated)
        except CascadeFailure as exc:
            exc.rolled_back = True
            self._failed(SAVE_FAILURE_NOTICE, exc)
            raise
        except EngineError as exc:
            self._failed(SAVE_FAILURE_NOTICE, exc)
            raise
        self._notifier.success(f'Content type "{updated["name"]}" has been updated')
        return updated

    def delete_content_type(self, content_type_id: str) -> dict:
        try:
            removed = self.content_types.delete(content_type_id)
        except NotFoundError:
            raise
        except EngineError as exc:
            self._failed(DELETE_FAILURE_NOTICE, exc)
            raise
        self._notifier.success(f'Content type "{removed["name"]}" has been deleted')
        return removed

    # Forms

    def derive_form(self, content_type_id: str, record_id: str | None = None) -> DerivedForm:
        content_type = self.content_types.get_by_id(content_type_id)
        record = None
        if record_id is not None:
            record = self.records.get(record_id)
            if record.get("contentTypeId") != content_type_id:
                raise NotFoundError(message="Content item not found", kind="content", entity_id=record_id)
        return derive_form(content_type, record)

    def submit_form(self, form: DerivedForm) -> dict:
        """Store a submitted form as a new record or an update of its record."""
        current = self.content_types.get_by_id(form.content_type_id)
        if form.is_stale(current):
            raise ValidationError.single(
                "STALE_FORM",
                "Content type changed while editing. Reload the form and try again.",
                "contentTypeId",
            )
        payload = form.submit()
        if form.is_edit:
            return self.records.update(form.record_id, payload)
        return self.records.create(form.content_type_id, payload)

    # Records

    def list_records(self, content_type_id: str) -> list[dict]:
        self.content_types.get_by_id(content_type_id)
        return self.records.list_by_type(content_type_id)

    def get_record(self, record_id: str) -> dict:
        return self.records.get(record_id)

    def create_record(self, content_type_id: str, values: dict) -> dict:
        return self.records.create(content_type_id, values)

    def update_record(self, record_id: str, values: dict) -> dict:
        return self.records.update(record_id, values)

    def delete_record(self, record_id: str) -> dict:
        return self.records.delete(record_id)

    # Generated artifacts

    def list_endpoints(self) -> list[dict]:
        return self.endpoints.list()

    def api_client_source(self) -> str:
        return generate_api_client(self.content_types.list(), self.endpoints.list(), self.base_url)

    def json_server_config(self) -> str:
        return generate_json_server_config(self.content_types.list())

    def menu_tree(self, role: str | None = None):
        return self.menu.tree(role)
