"""In-memory event bus for engine notifications and change events."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List

from cms.canonical_json import canonical_dumps


Event = Dict[str, Any]
Handler = Callable[[Event], None]

logger = logging.getLogger("cms.events")

NOTIFICATION_SUCCESS = "notification.success"
NOTIFICATION_ERROR = "notification.error"


@dataclass
class EventError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class EventValidationError(EventError):
    code: str
    path: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base


def _raise(code: str, message: str, path: str | None = None) -> None:
    raise EventValidationError(code=code, message=message, path=path)


def _validate_payload(payload: Any) -> None:
    if not isinstance(payload, dict):
        _raise("PAYLOAD_INVALID", "payload must be an object", "payload")
    try:
        canonical_dumps(payload)
    except Exception as exc:
        _raise("PAYLOAD_INVALID", str(exc), "payload")


def _validate_actor(actor: Any) -> None:
    if actor is None:
        return
    if not isinstance(actor, dict):
        _raise("META_ACTOR_INVALID", "actor must be object or null", "meta.actor")
    if not isinstance(actor.get("id"), str):
        _raise("META_ACTOR_INVALID", "actor.id must be string", "meta.actor.id")
    role = actor.get("role")
    if role is not None and not isinstance(role, str):
        _raise("META_ACTOR_INVALID", "actor.role must be string or null", "meta.actor.role")


def _validate_occurred_at(value: Any) -> None:
    if not isinstance(value, str) or not value.endswith("Z"):
        _raise("META_OCCURRED_AT_INVALID", "occurred_at must be a UTC string ending with 'Z'", "meta.occurred_at")
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        _raise("META_OCCURRED_AT_INVALID", "occurred_at must be ISO8601", "meta.occurred_at")


def validate_event(event: Any) -> None:
    if not isinstance(event, dict):
        _raise("EVENT_INVALID", "event must be object")
    name = event.get("name")
    if not isinstance(name, str) or not name:
        _raise("EVENT_NAME_INVALID", "name must be non-empty string", "name")

    _validate_payload(event.get("payload"))

    meta = event.get("meta")
    if not isinstance(meta, dict):
        _raise("META_INVALID", "meta must be object", "meta")
    if not isinstance(meta.get("event_id"), str):
        _raise("META_EVENT_ID_INVALID", "event_id must be string", "meta.event_id")
    _validate_occurred_at(meta.get("occurred_at"))
    if not isinstance(meta.get("source"), str) or not meta.get("source"):
        _raise("META_SOURCE_INVALID", "source must be non-empty string", "meta.source")
    _validate_actor(meta.get("actor"))
    if meta.get("schema_version") != "1":
        _raise("META_SCHEMA_VERSION_INVALID", "schema_version must be '1'", "meta.schema_version")


def make_event(name: str, payload: dict, meta: dict) -> Event:
    if not isinstance(meta, dict):
        _raise("META_INVALID", "meta must be object", "meta")

    meta_out = copy.deepcopy(meta)
    meta_out.setdefault("event_id", str(uuid.uuid4()))
    if "occurred_at" not in meta_out:
        meta_out["occurred_at"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    meta_out.setdefault("schema_version", "1")

    event = {
        "name": name,
        "payload": copy.deepcopy(payload),
        "meta": meta_out,
    }
    validate_event(event)
    return event


class EventBus:
    def __init__(self) -> None:
        self._subs: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subs.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Handler) -> bool:
        handlers = self._subs.get(name)
        if not handlers:
            return False
        try:
            handlers.remove(handler)
            if not handlers:
                del self._subs[name]
            return True
        except ValueError:
            return False

    def publish(self, event: dict) -> None:
        validate_event(event)
        for handler in list(self._subs.get(event["name"], [])):
            try:
                handler(event)
            except Exception:
                logger.exception("event_handler_failed event=%s", event["name"])


class Notifier:
    """Publishes user-facing success/error notices on the bus."""

    def __init__(self, bus: EventBus, source: str) -> None:
        self._bus = bus
        self._source = source

    def _publish(self, name: str, message: str, detail: dict | None) -> None:
        payload = {"message": message}
        if detail:
            payload["detail"] = detail
        self._bus.publish(make_event(name, payload, {"source": self._source, "actor": None}))

    def success(self, message: str, detail: dict | None = None) -> None:
        self._publish(NOTIFICATION_SUCCESS, message, detail)

    def error(self, message: str, detail: dict | None = None) -> None:
        self._publish(NOTIFICATION_ERROR, message, detail)
