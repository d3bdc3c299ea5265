"""Generated REST endpoint descriptors and the client source derived from them."""

from __future__ import annotations

import json
import logging
import re
import uuid

from cms.errors import NotFoundError


COLLECTION = "apiEndpoints"
DEFAULT_METHOD = "GET"
DEFAULT_BASE_URL = "http://localhost:3001"

logger = logging.getLogger("cms.endpoints")

_NON_IDENT_RE = re.compile(r"[^A-Za-z0-9_$]")

_TS_TYPES = {
    "text": "string",
    "textarea": "string",
    "number": "number",
    "boolean": "boolean",
    "date": "string",
    "select": "string",
    "image": "string",
    "relation": "string",
}


def endpoint_path(slug: str) -> str:
    return f"/api/{slug}"


class ApiEndpointStore:
    def __init__(self, collections) -> None:
        self._collections = collections

    def list(self) -> list[dict]:
        return self._collections.get_all(COLLECTION)

    def get(self, endpoint_id: str) -> dict:
        endpoint = self._collections.get(COLLECTION, endpoint_id)
        if endpoint is None:
            raise NotFoundError(message="API endpoint not found", kind="api_endpoint", entity_id=endpoint_id)
        return endpoint

    def list_for_type(self, content_type_id: str) -> list[dict]:
        return [e for e in self.list() if e.get("contentTypeId") == content_type_id]

    def create_for_type(self, content_type: dict, method: str = DEFAULT_METHOD) -> dict:
        endpoint = {
            "id": str(uuid.uuid4()),
            "path": endpoint_path(content_type["slug"]),
            "method": method,
            "contentTypeId": content_type["id"],
        }
        created = self._collections.create(COLLECTION, endpoint)
        logger.info("endpoint_created path=%s content_type=%s", created["path"], content_type["id"])
        return created

    def sync_for_type(self, content_type: dict) -> dict:
        """Point the type's endpoint at its current slug, leaving exactly one."""
        existing = self.list_for_type(content_type["id"])
        if not existing:
            return self.create_for_type(content_type)
        keep, extras = existing[0], existing[1:]
        for extra in extras:
            self._collections.delete(COLLECTION, extra["id"])
            logger.warning("endpoint_duplicate_removed id=%s content_type=%s", extra["id"], content_type["id"])
        path = endpoint_path(content_type["slug"])
        if keep.get("path") == path:
            return keep
        updated = self._collections.patch(COLLECTION, keep["id"], {"path": path})
        logger.info("endpoint_path_updated id=%s path=%s", keep["id"], path)
        return updated

    def delete_by_type(self, content_type_id: str) -> int:
        count = 0
        for endpoint in self.list_for_type(content_type_id):
            if self._collections.delete(COLLECTION, endpoint["id"]):
                count += 1
        return count


def _type_name(content_type: dict) -> str:
    name = _NON_IDENT_RE.sub("", content_type.get("name") or "") or "ContentType"
    if name[0].isdigit():
        name = "_" + name
    return name


def _ts_type(field_type: str) -> str:
    return _TS_TYPES.get(field_type, "any")


def generate_api_client(content_types: list[dict], endpoints: list[dict], base_url: str = DEFAULT_BASE_URL) -> str:
    """Render the TypeScript client module handed to front-end integrators."""
    parts = [
        "/**\n"
        " * API functions generated from content types.\n"
        " * Regenerated whenever a content type changes.\n"
        " */\n\n"
        f"const BASE_URL = {json.dumps(base_url)};\n\n"
        "const request = async <T>(url: string, options: RequestInit & { data?: unknown } = {}): Promise<T> => {\n"
        "  const { data, ...init } = options;\n"
        "  const response = await fetch(`${BASE_URL}${url}`, {\n"
        "    ...init,\n"
        "    headers: { 'Content-Type': 'application/json', ...init.headers },\n"
        "    body: data === undefined ? undefined : JSON.stringify(data),\n"
        "  });\n"
        "  if (!response.ok) {\n"
        "    throw new Error(`API request failed: ${response.status} ${response.statusText}`);\n"
        "  }\n"
        "  return response.json();\n"
        "};\n"
    ]
    by_type = {}
    for endpoint in endpoints:
        by_type.setdefault(endpoint.get("contentTypeId"), endpoint)
    for content_type in content_types:
        endpoint = by_type.get(content_type.get("id"))
        if not endpoint:
            continue
        name = _type_name(content_type)
        path = endpoint["path"]
        lines = [f"export interface {name} {{", "  id: string;"]
        for field in content_type.get("fields") or []:
            optional = "" if field.get("required") else "?"
            lines.append(f"  {json.dumps(field.get('name'))}{optional}: {_ts_type(field.get('type'))};")
        lines.append("}")
        parts.append("\n".join(lines) + "\n")
        parts.append(
            f"/** {content_type.get('name')} API functions */\n"
            f"export const get{name}List = () => request<{name}[]>('{path}', {{ method: 'GET' }});\n"
            f"export const get{name} = (id: string) => request<{name}>(`{path}/${{id}}`, {{ method: 'GET' }});\n"
            f"export const create{name} = (data: Omit<{name}, 'id'>) => request<{name}>('{path}', {{ method: 'POST', data }});\n"
            f"export const update{name} = (id: string, data: Partial<{name}>) => request<{name}>(`{path}/${{id}}`, {{ method: 'PUT', data }});\n"
            f"export const delete{name} = (id: string) => request<void>(`{path}/${{id}}`, {{ method: 'DELETE' }});\n"
        )
    return "\n".join(parts)


def generate_json_server_config(content_types: list[dict]) -> str:
    """db.json skeleton for a json-server mirror of the engine collections."""
    config: dict[str, list] = {"contentTypes": [], "content": [], "apiEndpoints": [], "menuItems": []}
    for content_type in content_types:
        slug = content_type.get("slug")
        if slug and slug not in config:
            config[slug] = []
    return json.dumps(config, indent=2)
