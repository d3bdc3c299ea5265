"""Runtime data-entry forms derived from a content type definition.

A ``DerivedForm`` is transient editing state: it holds the rules, the default
values and the current values for one record, and turns them into a
normalized payload on submit. It never reads or writes a store; the caller
hands the payload to the record store.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List

from cms.canonical_json import schema_hash
from cms.errors import Issue, ValidationError
from field_types import FieldRule, rule_for, validate_values


_PLACEHOLDERS = {
    "select": "Select an option",
    "date": "Pick a date",
    "image": "Enter image URL",
    "relation": "Select a related item",
}


@dataclass
class FormControl:
    field_id: str | None
    name: str
    type: str
    control: str
    label: str
    required: bool
    placeholder: str | None
    options: list | dict | None
    value: Any

    def to_dict(self) -> dict:
        return {
            "fieldId": self.field_id,
            "name": self.name,
            "type": self.type,
            "control": self.control,
            "label": self.label,
            "required": self.required,
            "placeholder": self.placeholder,
            "options": copy.deepcopy(self.options),
            "value": copy.deepcopy(self.value),
        }


def _placeholder(rule: FieldRule) -> str | None:
    tag = rule.field_type.tag
    if tag == "boolean":
        return None
    return _PLACEHOLDERS.get(tag, f"Enter {rule.name.lower()}")


def _control_options(rule: FieldRule) -> list | dict | None:
    if rule.field_type.tag == "select":
        out = []
        for opt in rule.field.get("options") or []:
            if isinstance(opt, dict):
                out.append({"value": opt.get("value"), "label": opt.get("label") or opt.get("value")})
            else:
                out.append({"value": opt, "label": opt})
        return out
    if rule.field_type.takes_options:
        return copy.deepcopy(rule.field.get("options"))
    return None


def _editable_value(rule: FieldRule, value: Any) -> Any:
    """Render a stored value the way its control edits it."""
    if value is None:
        return copy.deepcopy(rule.field_type.empty)
    if rule.field_type.tag == "boolean":
        return bool(value)
    if rule.field_type.tag == "number":
        return str(value)
    return copy.deepcopy(value)


@dataclass
class DerivedForm:
    content_type_id: str
    name: str
    schema_hash: str
    rules: List[FieldRule]
    defaults: Dict[str, Any]
    controls: List[FormControl]
    values: Dict[str, Any] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)
    record_id: str | None = None

    @property
    def is_edit(self) -> bool:
        return self.record_id is not None

    def control(self, name: str) -> FormControl:
        for item in self.controls:
            if item.name == name:
                return item
        raise KeyError(name)

    def set_value(self, name: str, value: Any) -> None:
        control = self.control(name)
        control.value = value
        self.values[name] = value
        self.errors.pop(name, None)

    def reset(self) -> None:
        self.values = copy.deepcopy(self.defaults)
        for item in self.controls:
            item.value = copy.deepcopy(self.defaults.get(item.name))
        self.errors = {}

    def _fields(self) -> list[dict]:
        return [rule.field for rule in self.rules]

    def validate(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        for rule in self.rules:
            problem: Issue | None = rule.error_for(self.values.get(rule.name))
            if problem and rule.name not in errors:
                errors[rule.name] = problem["message"]
        self.errors = errors
        return dict(errors)

    def submit(self) -> dict:
        """Normalized payload for the record store, or every field error at once."""
        try:
            payload = validate_values(self._fields(), self.values)
        except ValidationError as exc:
            self.errors = exc.field_errors()
            raise
        self.errors = {}
        return payload

    def is_stale(self, definition: dict) -> bool:
        return schema_hash(definition) != self.schema_hash

    def to_dict(self) -> dict:
        return {
            "contentTypeId": self.content_type_id,
            "name": self.name,
            "schemaHash": self.schema_hash,
            "recordId": self.record_id,
            "controls": [c.to_dict() for c in self.controls],
            "values": copy.deepcopy(self.values),
            "errors": dict(self.errors),
        }


def derive_form(content_type: dict, record: dict | None = None) -> DerivedForm:
    """One control per field, in field order, bound to ``record`` when given."""
    rules = [rule_for(f) for f in content_type.get("fields") or []]
    defaults: Dict[str, Any] = {}
    controls: List[FormControl] = []
    for rule in rules:
        stored = record.get(rule.name) if record is not None else None
        value = _editable_value(rule, stored)
        defaults[rule.name] = value
        controls.append(
            FormControl(
                field_id=rule.field.get("id"),
                name=rule.name,
                type=rule.field_type.tag,
                control=rule.field_type.control,
                label=f"{rule.name} *" if rule.required else rule.name,
                required=rule.required,
                placeholder=_placeholder(rule),
                options=_control_options(rule),
                value=copy.deepcopy(value),
            )
        )
    return DerivedForm(
        content_type_id=content_type["id"],
        name=content_type.get("name") or "",
        schema_hash=schema_hash(content_type),
        rules=rules,
        defaults=defaults,
        controls=controls,
        values=copy.deepcopy(defaults),
        record_id=record.get("id") if record is not None else None,
    )

