"""Flat role hierarchy used to gate admin entry points and menu entries."""

from __future__ import annotations

ROLE_HIERARCHY = {"admin": 3, "editor": 2, "viewer": 1}


def is_known_role(role) -> bool:
    return isinstance(role, str) and role in ROLE_HIERARCHY


def has_permission(role: str | None, required: str | None) -> bool:
    if not required:
        return True
    if not is_known_role(role) or not is_known_role(required):
        return False
    return ROLE_HIERARCHY[role] >= ROLE_HIERARCHY[required]
