"""Slug helpers shared by the schema store and the generated routes."""

from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")
_UNSAFE_RE = re.compile(r"[^a-z0-9-]")
_SLUG_RE = re.compile(r"[a-z0-9-]+")


def generate_slug(name: str) -> str:
    """Derive a URL-safe slug from a display name.

    >>> generate_slug("Blog Post!!")
    'blog-post'
    """
    lowered = (name or "").lower()
    return _UNSAFE_RE.sub("", _WHITESPACE_RE.sub("-", lowered))


def is_valid_slug(value) -> bool:
    return isinstance(value, str) and _SLUG_RE.fullmatch(value) is not None
