"""FastAPI app exposing the content engine."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

import logging
import time

from app.auth import JwtAuthMiddleware, current_role, require_role
from app.db import get_db_ms, init_pool, reset_db_ms
from app.replication import RemoteReplicator, ReplicatingCollectionStore
from app.stores import MemoryCollectionStore, MemoryNotificationStore
from app.stores_db import DbCollectionStore
from cms.errors import CascadeFailure, EngineError, NotFoundError, TransportFailure, ValidationError
from content_engine import ContentEngine
from event_bus import NOTIFICATION_ERROR, NOTIFICATION_SUCCESS, EventBus
from outbox import Outbox


app = FastAPI(title="Content Engine")
logger = logging.getLogger("cms.api")
logging.basicConfig(level=logging.INFO)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


APP_ENV = os.getenv("APP_ENV", os.getenv("ENV", "dev")).strip().lower() or "dev"
IS_DEV = APP_ENV == "dev"
USE_DB = _env_flag("CMS_USE_DB")
DISABLE_AUTH = _env_flag("CMS_DISABLE_AUTH")
JWT_SECRET = os.getenv("CMS_JWT_SECRET", "").strip()
JWT_AUD = os.getenv("CMS_JWT_AUD", "").strip() or None
REMOTE_URL = os.getenv("CMS_REMOTE_URL", "").strip()
REPLICATION_TIMEOUT = float(os.getenv("CMS_REPLICATION_TIMEOUT", "5"))
REQ_SLOW_MS = float(os.getenv("CMS_REQ_SLOW_MS", "250"))

_LOCAL_CORS_ORIGINS = {
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
}
_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_EXTRA_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("CMS_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
_CORS_ORIGINS = _LOCAL_CORS_ORIGINS | _EXTRA_CORS_ORIGINS

logger.info("auth_disabled=%s use_db=%s replication=%s env=%s", DISABLE_AUTH, USE_DB, bool(REMOTE_URL), APP_ENV)


@app.middleware("http")
async def local_cors_fallback_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    normalized_origin = origin.rstrip("/") if isinstance(origin, str) else origin
    if normalized_origin and (normalized_origin in _CORS_ORIGINS or _LOCAL_CORS_REGEX.match(normalized_origin)):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_ms()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    auth_ms = getattr(request.state, "auth_ms", 0.0)
    db_ms = get_db_ms()
    route = request.scope.get("route")
    route_name = getattr(route, "name", None) or "unknown"
    logger.info(
        "%s %s %s route=%s total_ms=%.1f auth_ms=%.1f db_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        route_name,
        total_ms,
        auth_ms,
        db_ms,
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning(
            "slow_request method=%s path=%s route=%s total_ms=%.1f status=%s",
            request.method,
            request.url.path,
            route_name,
            total_ms,
            response.status_code,
        )
    if IS_DEV:
        response.headers["X-Req-MS"] = f"{total_ms:.1f}"
        response.headers["X-Route"] = route_name
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=sorted(_CORS_ORIGINS),
    allow_origin_regex=r"http://localhost:\d+|http://127\.0\.0\.1:\d+",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
if not DISABLE_AUTH and not JWT_SECRET:
    raise RuntimeError("CMS_JWT_SECRET is required for auth")
app.add_middleware(JwtAuthMiddleware, secret=JWT_SECRET, audience=JWT_AUD, disabled=DISABLE_AUTH)


if USE_DB:
    init_pool()
    local_store = DbCollectionStore()
else:
    local_store = MemoryCollectionStore()

outbox = Outbox()
replicator: RemoteReplicator | None = None
if REMOTE_URL:
    collections = ReplicatingCollectionStore(local_store, outbox)
    replicator = RemoteReplicator(outbox, REMOTE_URL, timeout=REPLICATION_TIMEOUT)
else:
    collections = local_store

event_bus = EventBus()
notification_store = MemoryNotificationStore()


def _store_notice(level: str):
    def _handler(event: dict) -> None:
        notification_store.create({"level": level, "message": event["payload"]["message"], "source": event["meta"]["source"]})

    return _handler


event_bus.subscribe(NOTIFICATION_SUCCESS, _store_notice("success"))
event_bus.subscribe(NOTIFICATION_ERROR, _store_notice("error"))

engine = ContentEngine(collections, bus=event_bus, base_url=REMOTE_URL or "http://localhost:3001")
engine.menu.seed_defaults()


# ---- Responses ----


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _validation_response(errors: list, warnings: list | None = None, status: int = 400) -> JSONResponse:
    body = {"ok": False, "errors": errors, "warnings": warnings or [], "data": None}
    return JSONResponse(jsonable_encoder(body), status_code=status)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if isinstance(exc, ValidationError):
        return _validation_response(exc.issues)
    if isinstance(exc, NotFoundError):
        return _error_response("NOT_FOUND", exc.message, detail={"kind": exc.kind, "id": exc.entity_id}, status=404)
    if isinstance(exc, CascadeFailure):
        return _error_response(
            "CASCADE_FAILED",
            exc.message,
            "contentTypeId",
            {
                "contentTypeId": exc.content_type_id,
                "step": exc.step,
                "completed": exc.completed,
                "rolledBack": exc.rolled_back,
            },
            status=409,
        )
    if isinstance(exc, TransportFailure):
        logger.error("transport_failure path=%s op=%s detail=%s", request.url.path, exc.operation, exc.detail)
        return _error_response("TRANSPORT_FAILED", "The server could not be reached. Please try again.", status=503)
    return _error_response("ENGINE_ERROR", exc.message, status=500)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


async def _safe_json(request: Request) -> dict:
    try:
        return await request.json()
    except Exception:
        return {}


def _replicate_later(background: BackgroundTasks) -> None:
    if replicator is not None:
        background.add_task(replicator.flush)


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# ---- Content types ----


@app.get("/content-types")
async def list_content_types(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"contentTypes": engine.list_content_types()})


@app.post("/content-types")
async def create_content_type(request: Request, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    body = await _safe_json(request)
    created = engine.create_content_type(body)
    _replicate_later(background)
    return _ok_response({"contentType": created}, status=201)


@app.get("/content-types/by-slug/{slug}")
async def get_content_type_by_slug(request: Request, slug: str) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"contentType": engine.get_content_type_by_slug(slug)})


@app.get("/content-types/{content_type_id}")
async def get_content_type(request: Request, content_type_id: str) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"contentType": engine.get_content_type(content_type_id)})


@app.put("/content-types/{content_type_id}")
async def update_content_type(request: Request, content_type_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    body = await _safe_json(request)
    updated = engine.update_content_type(content_type_id, body)
    _replicate_later(background)
    return _ok_response({"contentType": updated})


@app.delete("/content-types/{content_type_id}")
async def delete_content_type(request: Request, content_type_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    removed = engine.delete_content_type(content_type_id)
    _replicate_later(background)
    return _ok_response({"contentType": removed})


@app.get("/content-types/{content_type_id}/form")
async def get_content_form(request: Request, content_type_id: str, record_id: str | None = None) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    form = engine.derive_form(content_type_id, record_id)
    return _ok_response({"form": form.to_dict()})


@app.post("/content-types/{content_type_id}/form")
async def submit_content_form(request: Request, content_type_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    body = await _safe_json(request)
    if not isinstance(body, dict):
        return _error_response("INVALID_PAYLOAD", "Form submission must be an object")
    form = engine.derive_form(content_type_id, body.get("recordId"))
    if isinstance(body.get("schemaHash"), str):
        form.schema_hash = body["schemaHash"]
    values = body.get("values") if isinstance(body.get("values"), dict) else {}
    for name, value in values.items():
        try:
            form.set_value(name, value)
        except KeyError:
            return _error_response("UNKNOWN_FIELD", f"Unknown field: {name}", name)
    record = engine.submit_form(form)
    _replicate_later(background)
    return _ok_response({"record": record}, status=200 if form.is_edit else 201)


# ---- Content records ----


def _record_of_type(content_type_id: str, record_id: str) -> dict:
    record = engine.get_record(record_id)
    if record.get("contentTypeId") != content_type_id:
        raise NotFoundError(message="Content item not found", kind="content", entity_id=record_id)
    return record


@app.get("/content/{content_type_id}")
async def list_records(request: Request, content_type_id: str) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"records": engine.list_records(content_type_id)})


@app.post("/content/{content_type_id}")
async def create_record(request: Request, content_type_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    body = await _safe_json(request)
    record = engine.create_record(content_type_id, body)
    _replicate_later(background)
    return _ok_response({"record": record}, status=201)


@app.get("/content/{content_type_id}/{record_id}")
async def get_record(request: Request, content_type_id: str, record_id: str) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"record": _record_of_type(content_type_id, record_id)})


@app.put("/content/{content_type_id}/{record_id}")
async def update_record(request: Request, content_type_id: str, record_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    _record_of_type(content_type_id, record_id)
    body = await _safe_json(request)
    record = engine.update_record(record_id, body)
    _replicate_later(background)
    return _ok_response({"record": record})


@app.delete("/content/{content_type_id}/{record_id}")
async def delete_record(request: Request, content_type_id: str, record_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    _record_of_type(content_type_id, record_id)
    removed = engine.delete_record(record_id)
    _replicate_later(background)
    return _ok_response({"record": removed})


@app.get("/api/{slug}")
async def generated_endpoint(request: Request, slug: str) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    content_type = engine.get_content_type_by_slug(slug)
    return _ok_response({"contentType": content_type, "records": engine.list_records(content_type["id"])})


# ---- Menu ----


@app.get("/menu-items")
async def list_menu_items(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"menuItems": engine.menu.list()})


@app.get("/menu-items/tree")
async def menu_tree(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    nodes = engine.menu_tree(current_role(request))
    return _ok_response({"tree": [node.to_dict() for node in nodes]})


@app.post("/menu-items")
async def create_menu_item(request: Request, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    body = await _safe_json(request)
    entry = engine.menu.create(body)
    _replicate_later(background)
    return _ok_response({"menuItem": entry}, status=201)


@app.put("/menu-items/{entry_id}")
async def update_menu_item(request: Request, entry_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    body = await _safe_json(request)
    entry = engine.menu.update(entry_id, body)
    _replicate_later(background)
    return _ok_response({"menuItem": entry})


@app.delete("/menu-items/{entry_id}")
async def delete_menu_item(request: Request, entry_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    removed = engine.menu.delete(entry_id)
    _replicate_later(background)
    return _ok_response({"deleted": removed})


@app.post("/menu-items/{entry_id}/move-up")
async def move_menu_item_up(request: Request, entry_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    siblings = engine.menu.move_up(entry_id)
    _replicate_later(background)
    return _ok_response({"siblings": siblings})


@app.post("/menu-items/{entry_id}/move-down")
async def move_menu_item_down(request: Request, entry_id: str, background: BackgroundTasks) -> dict:
    denied = require_role(request, "editor")
    if denied:
        return denied
    siblings = engine.menu.move_down(entry_id)
    _replicate_later(background)
    return _ok_response({"siblings": siblings})


# ---- Generated endpoints ----


@app.get("/api-endpoints")
async def list_api_endpoints(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"apiEndpoints": engine.list_endpoints()})


@app.get("/api-endpoints/client")
async def api_client_source(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"source": engine.api_client_source()})


@app.get("/api-endpoints/json-server")
async def json_server_config(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"config": engine.json_server_config()})


# ---- Notifications ----


@app.get("/notifications")
async def list_notifications(request: Request, unread_only: int = 0) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"notifications": notification_store.list(unread_only=bool(unread_only))})


@app.get("/notifications/unread_count")
async def unread_notifications(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"count": notification_store.unread_count()})


@app.post("/notifications/{notification_id}/read")
async def read_notification(request: Request, notification_id: str) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    item = notification_store.mark_read(notification_id)
    if not item:
        return _error_response("NOTIFICATION_NOT_FOUND", "Notification not found", "notification_id", status=404)
    return _ok_response({"notification": item})


@app.post("/notifications/read_all")
async def read_all_notifications(request: Request) -> dict:
    denied = require_role(request, "viewer")
    if denied:
        return denied
    return _ok_response({"updated": notification_store.mark_all_read()})
