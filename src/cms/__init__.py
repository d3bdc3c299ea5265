"""Kernel utilities for the content engine."""

from .canonical_json import CanonicalJsonTypeError, canonical_dumps, schema_hash
from .errors import CascadeFailure, EngineError, NotFoundError, TransportFailure, ValidationError, issue
from .roles import ROLE_HIERARCHY, has_permission
from .slug import generate_slug, is_valid_slug

__all__ = [
    "CanonicalJsonTypeError",
    "CascadeFailure",
    "EngineError",
    "NotFoundError",
    "ROLE_HIERARCHY",
    "TransportFailure",
    "ValidationError",
    "canonical_dumps",
    "generate_slug",
    "has_permission",
    "is_valid_slug",
    "issue",
    "schema_hash",
]
