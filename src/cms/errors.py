"""Error kinds raised by the content engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

Issue = Dict[str, Any]


def issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class EngineError(Exception):
    message: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return self.message


@dataclass
class ValidationError(EngineError):
    issues: List[Issue] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: List[Issue]) -> "ValidationError":
        message = "; ".join(i.get("message") or "" for i in issues) or "Validation failed"
        return cls(message=message, issues=list(issues))

    @classmethod
    def single(cls, code: str, message: str, path: str | None = None) -> "ValidationError":
        return cls.from_issues([issue(code, message, path)])

    def field_errors(self) -> Dict[str, str]:
        """First message per path, in the order issues were raised."""
        out: Dict[str, str] = {}
        for item in self.issues:
            path = item.get("path")
            if path and path not in out:
                out[path] = item.get("message") or ""
        return out


@dataclass
class NotFoundError(EngineError):
    kind: str = ""
    entity_id: str | None = None


@dataclass
class CascadeFailure(EngineError):
    content_type_id: str | None = None
    step: str | None = None
    completed: List[str] = field(default_factory=list)
    rolled_back: bool = False


@dataclass
class TransportFailure(EngineError):
    operation: str = ""
    detail: str | None = None
