"""Navigation menu entries: nesting, sibling order and subtree deletion."""

from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from cms.errors import NotFoundError, ValidationError, issue
from cms.roles import has_permission, is_known_role


COLLECTION = "menuItems"
MAX_DEPTH = 5
GENERATED_ICON = "FileText"

DEFAULT_MENU_ENTRIES = (
    {"label": "Dashboard", "link": "/dashboard", "icon": "LayoutDashboard", "requiredRole": "viewer"},
    {"label": "Content Types", "link": "/content-types", "icon": "FileText", "requiredRole": "editor"},
    {"label": "Menu Builder", "link": "/menu-builder", "icon": "Menu", "requiredRole": "editor"},
    {"label": "Users", "link": "/users", "icon": "Users", "requiredRole": "admin"},
    {"label": "Settings", "link": "/settings", "icon": "Settings", "requiredRole": "admin"},
)

logger = logging.getLogger("cms.menu")


@dataclass
class MenuNode:
    entry: dict
    depth: int
    children: List["MenuNode"] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {**self.entry, "depth": self.depth, "children": [c.to_dict() for c in self.children]}


def _sort_siblings(entries: Iterable[dict]) -> list[dict]:
    # stable: equal orders keep input order, entries without order go last
    return sorted(entries, key=lambda e: (e.get("order") is None, e.get("order") or 0))


def build_menu_tree(entries: list[dict], max_depth: int = MAX_DEPTH) -> list[MenuNode]:
    """Arrange flat menu entries into an ordered forest.

    Entries without a parent, or whose parent does not exist, are roots.
    Nodes below ``max_depth`` are flattened into the sibling list at
    ``max_depth``. An entry is placed at most once, so a parent cycle can
    never recurse; entries only reachable through a cycle become roots.
    """
    by_id = {e.get("id"): e for e in entries}
    children_of: Dict[str | None, list[dict]] = {}
    for entry in entries:
        parent_id = entry.get("parentId")
        if parent_id and parent_id in by_id and parent_id != entry.get("id"):
            children_of.setdefault(parent_id, []).append(entry)
        else:
            children_of.setdefault(None, []).append(entry)
    placed: set = set()

    def _flatten(entry: dict, depth: int, out: list[MenuNode]) -> None:
        for child in _sort_siblings(children_of.get(entry.get("id"), [])):
            if child.get("id") in placed:
                continue
            placed.add(child.get("id"))
            out.append(MenuNode(entry=copy.deepcopy(child), depth=depth))
            _flatten(child, depth, out)

    def _visit(entry: dict, depth: int) -> MenuNode:
        node = MenuNode(entry=copy.deepcopy(entry), depth=depth)
        for child in _sort_siblings(children_of.get(entry.get("id"), [])):
            if child.get("id") in placed:
                continue
            placed.add(child.get("id"))
            if depth + 1 < max_depth:
                node.children.append(_visit(child, depth + 1))
            else:
                node.children.append(MenuNode(entry=copy.deepcopy(child), depth=depth + 1))
                _flatten(child, depth + 1, node.children)
        return node

    forest: list[MenuNode] = []
    for root in _sort_siblings(children_of.get(None, [])):
        if root.get("id") in placed:
            continue
        placed.add(root.get("id"))
        forest.append(_visit(root, 1))

    stranded = [e for e in entries if e.get("id") not in placed]
    if stranded:
        logger.warning("menu_cycle_detected ids=%s", [e.get("id") for e in stranded])
        for entry in stranded:
            if entry.get("id") in placed:
                continue
            placed.add(entry.get("id"))
            forest.append(_visit(entry, 1))
    return forest


def filter_tree(nodes: list[MenuNode], role: str | None) -> list[MenuNode]:
    """Drop nodes (with their subtrees) the role may not see."""
    visible = []
    for node in nodes:
        if not has_permission(role, node.entry.get("requiredRole")):
            continue
        visible.append(MenuNode(entry=node.entry, depth=node.depth, children=filter_tree(node.children, role)))
    return visible


def descendant_ids(entries: list[dict], entry_id: str) -> set[str]:
    found: set[str] = set()
    frontier = [entry_id]
    while frontier:
        current = frontier.pop()
        for entry in entries:
            child_id = entry.get("id")
            if entry.get("parentId") == current and child_id not in found and child_id != entry_id:
                found.add(child_id)
                frontier.append(child_id)
    return found


def would_create_cycle(entries: list[dict], entry_id: str, parent_id: str | None) -> bool:
    if not parent_id:
        return False
    if parent_id == entry_id:
        return True
    return parent_id in descendant_ids(entries, entry_id)


def next_order(entries: list[dict], parent_id: str | None) -> int:
    orders = [e.get("order") for e in entries if (e.get("parentId") or None) == (parent_id or None) and isinstance(e.get("order"), int)]
    return max(orders) + 1 if orders else 0


def siblings_of(entries: list[dict], entry: dict) -> list[dict]:
    parent_id = entry.get("parentId") or None
    return _sort_siblings(e for e in entries if (e.get("parentId") or None) == parent_id)


def swap_order(entries: list[dict], first_id: str, second_id: str) -> dict[str, int]:
    """Order changes that swap two siblings; empty when they are not siblings.

    Sibling orders are renumbered 0..n-1 first so entries without an order,
    or sharing one, still end up with a distinct position after the swap.
    """
    by_id = {e.get("id"): e for e in entries}
    first, second = by_id.get(first_id), by_id.get(second_id)
    if first is None or second is None or first_id == second_id:
        return {}
    if (first.get("parentId") or None) != (second.get("parentId") or None):
        return {}
    siblings = siblings_of(entries, first)
    positions = {s.get("id"): idx for idx, s in enumerate(siblings)}
    positions[first_id], positions[second_id] = positions[second_id], positions[first_id]
    changes = {}
    for sibling in siblings:
        sid = sibling.get("id")
        if sibling.get("order") != positions[sid]:
            changes[sid] = positions[sid]
    return changes


class MenuStore:
    """Menu entries in the ``menuItems`` collection."""

    def __init__(self, collections) -> None:
        self._collections = collections

    def list(self) -> list[dict]:
        return self._collections.get_all(COLLECTION)

    def get(self, entry_id: str) -> dict:
        entry = self._collections.get(COLLECTION, entry_id)
        if entry is None:
            raise NotFoundError(message="Menu item not found", kind="menu_item", entity_id=entry_id)
        return entry

    def tree(self, role: str | None = None) -> list[MenuNode]:
        nodes = build_menu_tree(self.list())
        return nodes if role is None else filter_tree(nodes, role)

    def _check(self, entry: dict, entries: list[dict]) -> None:
        errors = []
        link = entry.get("link")
        if not isinstance(link, str) or not link:
            errors.append(issue("MENU_LINK_REQUIRED", "Menu item link is required", "link"))
        label = entry.get("label")
        if label is not None and not isinstance(label, str):
            errors.append(issue("MENU_LABEL_INVALID", "Menu item label must be text", "label"))
        role = entry.get("requiredRole")
        if role is not None and not is_known_role(role):
            errors.append(issue("MENU_ROLE_INVALID", f"Unknown role: {role}", "requiredRole"))
        order = entry.get("order")
        if order is not None and (not isinstance(order, int) or isinstance(order, bool)):
            errors.append(issue("MENU_ORDER_INVALID", "order must be an integer", "order"))
        parent_id = entry.get("parentId")
        if parent_id:
            ids = {e.get("id") for e in entries}
            if parent_id == entry.get("id"):
                errors.append(issue("MENU_CYCLE", "A menu item cannot be its own parent", "parentId"))
            elif parent_id not in ids:
                errors.append(issue("MENU_PARENT_UNKNOWN", "Parent menu item not found", "parentId"))
            elif would_create_cycle(entries, entry.get("id"), parent_id):
                errors.append(issue("MENU_CYCLE", "Parent would create a cycle", "parentId"))
        if errors:
            raise ValidationError.from_issues(errors)

    def create(self, entry: dict) -> dict:
        if not isinstance(entry, dict):
            raise ValidationError.single("INVALID_PAYLOAD", "Menu item must be an object")
        entries = self.list()
        candidate = {
            "id": str(uuid.uuid4()),
            "label": entry.get("label", ""),
            "link": entry.get("link") or "#",
        }
        for key in ("parentId", "order", "icon", "contentTypeId", "requiredRole"):
            if entry.get(key) is not None:
                candidate[key] = copy.deepcopy(entry[key])
        if candidate.get("order") is None:
            candidate["order"] = next_order(entries, candidate.get("parentId"))
        self._check(candidate, entries)
        created = self._collections.create(COLLECTION, candidate)
        logger.info("menu_item_created id=%s parent=%s", created["id"], created.get("parentId"))
        return created

    def update(self, entry_id: str, changes: dict) -> dict:
        existing = self.get(entry_id)
        if not isinstance(changes, dict):
            raise ValidationError.single("INVALID_PAYLOAD", "Menu item changes must be an object")
        patch = {k: copy.deepcopy(v) for k, v in changes.items() if k != "id"}
        self._check({**existing, **patch}, self.list())
        return self._collections.patch(COLLECTION, entry_id, patch)

    def delete(self, entry_id: str) -> list[str]:
        self.get(entry_id)
        entries = self.list()
        doomed = [entry_id] + sorted(descendant_ids(entries, entry_id))
        with self._collections.transaction():
            for doc_id in doomed:
                self._collections.delete(COLLECTION, doc_id)
        logger.info("menu_item_deleted id=%s removed=%s", entry_id, len(doomed))
        return doomed

    def _move(self, entry_id: str, step: int) -> list[dict]:
        entry = self.get(entry_id)
        entries = self.list()
        siblings = siblings_of(entries, entry)
        idx = next(i for i, s in enumerate(siblings) if s.get("id") == entry_id)
        target = idx + step
        if target < 0 or target >= len(siblings):
            return siblings
        changes = swap_order(entries, entry_id, siblings[target]["id"])
        with self._collections.transaction():
            for doc_id, order in changes.items():
                self._collections.patch(COLLECTION, doc_id, {"order": order})
        return siblings_of(self.list(), entry)

    def move_up(self, entry_id: str) -> list[dict]:
        return self._move(entry_id, -1)

    def move_down(self, entry_id: str) -> list[dict]:
        return self._move(entry_id, 1)

    def list_for_content_type(self, content_type_id: str) -> list[dict]:
        return [e for e in self.list() if e.get("contentTypeId") == content_type_id]

    def create_for_content_type(self, content_type: dict) -> dict:
        return self.create(
            {
                "label": content_type["name"],
                "link": f"/{content_type['slug']}",
                "icon": GENERATED_ICON,
                "contentTypeId": content_type["id"],
            }
        )

    def sync_for_content_type(self, content_type: dict) -> list[dict]:
        entries = self.list_for_content_type(content_type["id"])
        if not entries:
            return [self.create_for_content_type(content_type)]
        label, link = content_type["name"], f"/{content_type['slug']}"
        synced = []
        for entry in entries:
            if entry.get("label") == label and entry.get("link") == link:
                synced.append(entry)
                continue
            synced.append(self._collections.patch(COLLECTION, entry["id"], {"label": label, "link": link}))
        return synced

    def delete_by_content_type(self, content_type_id: str) -> int:
        entries = self.list()
        doomed: list[str] = []
        for entry in entries:
            if entry.get("contentTypeId") != content_type_id:
                continue
            for doc_id in [entry["id"], *sorted(descendant_ids(entries, entry["id"]))]:
                if doc_id not in doomed:
                    doomed.append(doc_id)
        for doc_id in doomed:
            self._collections.delete(COLLECTION, doc_id)
        return len(doomed)

    def seed_defaults(self) -> list[dict]:
        if self.list():
            return []
        seeded = [self.create(dict(entry)) for entry in DEFAULT_MENU_ENTRIES]
        logger.info("menu_seeded count=%s", len(seeded))
        return seeded
