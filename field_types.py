"""Field type registry: value rules and editor contracts per field type tag."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, List

from cms.errors import Issue, ValidationError, issue


RECORD_SYSTEM_KEYS = ("id", "contentTypeId", "createdAt", "updatedAt")
_DIGITS_RE = re.compile(r"[0-9]+")
# Below the interpreter's int/str conversion limit.
MAX_NUMBER_DIGITS = 4000
_TRUE_STRINGS = {"true", "1", "yes", "on"}

Check = Callable[[Any, dict], "str | None"]
Coerce = Callable[[Any, dict], Any]
OptionsCheck = Callable[[Any, dict], List[str]]


@dataclass(frozen=True)
class FieldType:
    tag: str
    label: str
    control: str
    empty: Any
    check: Check
    coerce: Coerce
    check_options: OptionsCheck | None = None
    always_valid: bool = False

    @property
    def takes_options(self) -> bool:
        return self.check_options is not None


@dataclass(frozen=True)
class FieldRule:
    """Validation rule derived for one field of a content type."""

    field: dict
    field_type: FieldType

    @property
    def name(self) -> str:
        return self.field.get("name") or ""

    @property
    def required(self) -> bool:
        return bool(self.field.get("required"))

    def error_for(self, value: Any) -> Issue | None:
        if self.field_type.always_valid:
            return None
        if is_empty(value):
            if self.required:
                return issue("REQUIRED_FIELD", f"{self.name} is required", self.name)
            return None
        message = self.field_type.check(value, self.field)
        if message:
            return issue("INVALID_VALUE", message, self.name, {"type": self.field_type.tag})
        return None

    def normalize(self, value: Any) -> Any:
        if self.field_type.always_valid:
            return self.field_type.coerce(value, self.field)
        if is_empty(value):
            return None
        return self.field_type.coerce(value, self.field)


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def choice_values(field: dict) -> list:
    options = field.get("options") or []
    if not isinstance(options, list):
        return []
    values = []
    for opt in options:
        if isinstance(opt, dict) and "value" in opt:
            values.append(opt["value"])
        else:
            values.append(opt)
    return values


def _is_scalar_text(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def _check_text(value: Any, field: dict) -> str | None:
    if not _is_scalar_text(value):
        return f"{field.get('name')} must be text"
    return None


def _coerce_text(value: Any, field: dict) -> str:
    return str(value)


def _check_number(value: Any, field: dict) -> str | None:
    if isinstance(value, bool):
        return f"{field.get('name')} must be a number"
    if isinstance(value, int):
        return None if value >= 0 else f"{field.get('name')} must be a number"
    if isinstance(value, float):
        return None if value >= 0 and value.is_integer() else f"{field.get('name')} must be a number"
    if isinstance(value, str) and _DIGITS_RE.fullmatch(value):
        if len(value) > MAX_NUMBER_DIGITS:
            return f"{field.get('name')} is too long"
        return None
    return f"{field.get('name')} must be a number"


def _coerce_number(value: Any, field: dict) -> int:
    return int(value)


def _coerce_boolean(value: Any, field: dict) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _check_boolean(value: Any, field: dict) -> str | None:
    return None


def parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _check_date(value: Any, field: dict) -> str | None:
    if parse_date(value) is None:
        return f"{field.get('name')} must be a valid date"
    return None


def _coerce_date(value: Any, field: dict) -> str:
    return parse_date(value).isoformat()


def _check_select(value: Any, field: dict) -> str | None:
    if not isinstance(value, str):
        return f"{field.get('name')} must be one of the listed options"
    allowed = choice_values(field)
    if allowed and value not in allowed:
        return f"{field.get('name')} must be one of {allowed}"
    return None


def _check_select_options(options: Any, context: dict) -> List[str]:
    if options is None:
        return []
    if not isinstance(options, list):
        return ["select options must be a list"]
    problems = []
    seen = set()
    for opt in options:
        value = opt.get("value") if isinstance(opt, dict) else opt
        if not isinstance(value, str) or not value:
            problems.append("select options must be non-empty strings")
            continue
        if value in seen:
            problems.append(f"duplicate select option: {value}")
        seen.add(value)
    return problems


def _check_reference(value: Any, field: dict) -> str | None:
    if not isinstance(value, str):
        return f"{field.get('name')} must reference a record id"
    return None


def _check_relation_options(options: Any, context: dict) -> List[str]:
    if options is None:
        return []
    if not isinstance(options, dict):
        return ["relation options must be an object"]
    target = options.get("contentTypeId")
    if target is None:
        return []
    known = context.get("content_type_ids")
    if not isinstance(target, str) or not target:
        return ["relation target must be a content type id"]
    if known is not None and target not in known:
        return [f"relation target content type not found: {target}"]
    return []


FIELD_TYPES: Dict[str, FieldType] = {}


def register_field_type(field_type: FieldType) -> FieldType:
    FIELD_TYPES[field_type.tag] = field_type
    return field_type


def get_field_type(tag: str) -> FieldType:
    field_type = FIELD_TYPES.get(tag)
    if field_type is None:
        raise KeyError(f"unknown field type: {tag}")
    return field_type


def field_type_tags() -> list[str]:
    return list(FIELD_TYPES.keys())


register_field_type(FieldType("text", "Text", "text-input", "", _check_text, _coerce_text))
register_field_type(FieldType("textarea", "Textarea", "textarea", "", _check_text, _coerce_text))
register_field_type(FieldType("number", "Number", "number-input", "", _check_number, _coerce_number))
register_field_type(FieldType("boolean", "Boolean", "checkbox", False, _check_boolean, _coerce_boolean, always_valid=True))
register_field_type(FieldType("date", "Date", "date-picker", "", _check_date, _coerce_date))
register_field_type(FieldType("select", "Select", "select", "", _check_select, _coerce_text, check_options=_check_select_options))
register_field_type(FieldType("image", "Image", "image-url", "", _check_reference, _coerce_text))
register_field_type(FieldType("relation", "Relation", "relation-picker", "", _check_reference, _coerce_text, check_options=_check_relation_options))


def rule_for(field: dict) -> FieldRule:
    return FieldRule(field=field, field_type=get_field_type(field.get("type")))


def validate_values(fields: list[dict], values: dict) -> dict:
    """Validate ``values`` against ``fields`` and return the normalized payload.

    Every field is checked, so the raised ``ValidationError`` carries one issue
    per failing field. Keys that are not current field names are rejected;
    record system keys are ignored.
    """
    if not isinstance(values, dict):
        raise ValidationError.single("INVALID_PAYLOAD", "Record data must be an object")
    errors: List[Issue] = []
    names = {f.get("name") for f in fields}
    for key in values.keys():
        if key in RECORD_SYSTEM_KEYS:
            continue
        if key not in names:
            errors.append(issue("UNKNOWN_FIELD", f"Unknown field: {key}", key))

    clean: dict = {}
    for field in fields:
        rule = rule_for(field)
        value = values.get(rule.name)
        problem = rule.error_for(value)
        if problem:
            errors.append(problem)
            continue
        clean[rule.name] = rule.normalize(value)

    if errors:
        raise ValidationError.from_issues(errors)
    return clean
