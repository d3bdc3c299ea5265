"""Keeps generated endpoints, menu entries and records in step with content types."""

from __future__ import annotations

import logging
from typing import Callable, List

from cms.errors import CascadeFailure


logger = logging.getLogger("cms.cascade")

STEP_RECORDS = "records"
STEP_ENDPOINT = "endpoint"
STEP_MENU = "menu"


class CascadeCoordinator:
    """Runs the dependent writes for a content type change.

    The coordinator never opens a transaction itself; callers wrap it together
    with the definition write so a failed step rolls everything back. Steps on
    delete run dependents first.
    """

    def __init__(self, records, endpoints, menu) -> None:
        self._records = records
        self._endpoints = endpoints
        self._menu = menu

    def _run(self, content_type_id: str, steps: List[tuple[str, Callable[[], object]]]) -> list[str]:
        completed: list[str] = []
        for step, action in steps:
            try:
                action()
            except CascadeFailure:
                raise
            except Exception as exc:
                logger.error(
                    "cascade_step_failed content_type=%s step=%s completed=%s error=%s",
                    content_type_id,
                    step,
                    completed,
                    exc,
                )
                raise CascadeFailure(
                    message=f"Failed to update dependents of content type ({step})",
                    content_type_id=content_type_id,
                    step=step,
                    completed=list(completed),
                ) from exc
            completed.append(step)
        return completed

    def on_create(self, definition: dict) -> list[str]:
        completed = self._run(
            definition["id"],
            [
                (STEP_ENDPOINT, lambda: self._endpoints.create_for_type(definition)),
                (STEP_MENU, lambda: self._menu.create_for_content_type(definition)),
            ],
        )
        logger.info("cascade_create content_type=%s slug=%s", definition["id"], definition.get("slug"))
        return completed

    def on_update(self, before: dict, after: dict) -> list[str]:
        steps = []
        if before.get("slug") != after.get("slug"):
            steps.append((STEP_ENDPOINT, lambda: self._endpoints.sync_for_type(after)))
        if before.get("slug") != after.get("slug") or before.get("name") != after.get("name"):
            steps.append((STEP_MENU, lambda: self._menu.sync_for_content_type(after)))
        if not steps:
            return []
        completed = self._run(after["id"], steps)
        logger.info(
            "cascade_update content_type=%s slug=%s->%s steps=%s",
            after["id"],
            before.get("slug"),
            after.get("slug"),
            completed,
        )
        return completed

    def on_delete(self, definition: dict) -> list[str]:
        content_type_id = definition["id"]
        completed = self._run(
            content_type_id,
            [
                (STEP_RECORDS, lambda: self._records.delete_by_type(content_type_id)),
                (STEP_ENDPOINT, lambda: self._endpoints.delete_by_type(content_type_id)),
                (STEP_MENU, lambda: self._menu.delete_by_content_type(content_type_id)),
            ],
        )
        logger.info("cascade_delete content_type=%s slug=%s", content_type_id, definition.get("slug"))
        return completed
