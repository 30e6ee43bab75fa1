"""Settings persistence and the live settings holder.

Settings file (~/.config/vault-linter/settings.json, or $VAULT_LINTER_SETTINGS):
    schema_mappings, custom_types, validation options and the background scan.
Missing keys fall back to _DEFAULTS; dict-valued keys are merged one level deep.
"""

import copy
import json
import os
import re
import threading
import uuid

from config import DEFAULT_HOST_PROPERTIES, settings_file
from services.models import (
    CROSS_FIELD_OPERATORS,
    FILTER_OPERATORS,
    PRIMITIVE_TYPES,
    CompositeType,
    DateConstraints,
    FieldDefinition,
    ListConstraints,
    MapConstraints,
    NumberConstraints,
    SchemaMapping,
    TextConstraints,
    ValidationOptions,
)
from services.query import to_millis
from services.types_graph import check_custom_types

_DEFAULTS = {
    "schema_mappings": [],
    "custom_types": [],
    "unknown_field_warning": True,
    "host_reserved_properties": list(DEFAULT_HOST_PROPERTIES),
    "validate_on_open": False,
    "validate_on_save": True,
    "exclude_warnings_from_count": False,
    "background_scan": {
        "enabled": True,
        "interval_seconds": 30,
    },
}

# Written back when present; read by config.py at import time.
_PASSTHROUGH_KEYS = ("vault_dir", "cache_file")


def new_id() -> str:
    """Generate a short unique ID for a new schema or type."""
    return uuid.uuid4().hex[:8]


def default_settings() -> dict:
    return copy.deepcopy(_DEFAULTS)


def load_settings(path: str | None = None) -> dict:
    """Load the settings file merged with defaults."""
    path = path or settings_file()
    try:
        with open(path) as f:
            saved = json.load(f)
    except (FileNotFoundError, json.JSONDecodeError):
        saved = {}
    if not isinstance(saved, dict):
        saved = {}

    settings = {}
    for key, default_val in _DEFAULTS.items():
        if isinstance(default_val, dict):
            value = saved.get(key)
            settings[key] = {**default_val, **(value if isinstance(value, dict) else {})}
        else:
            settings[key] = saved.get(key, copy.deepcopy(default_val))
    for key in _PASSTHROUGH_KEYS:
        if key in saved:
            settings[key] = saved[key]
    return settings


def save_settings(settings: dict, path: str | None = None) -> None:
    """Persist known settings keys."""
    path = path or settings_file()
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    data = {k: settings[k] for k in (*_DEFAULTS, *_PASSTHROUGH_KEYS) if k in settings}
    with open(path, "w") as f:
        json.dump(data, f, indent=2)


# ── Save-time checks ─────────────────────────────────────────────────────────


def _is_number(value) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _is_count(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _constraint_errors(where: str, c) -> list[str]:
    """Problems with the values of one field's constraints."""
    errors = []
    if isinstance(c, TextConstraints):
        for name in ("min_length", "max_length"):
            value = getattr(c, name)
            if value is not None and not _is_count(value):
                errors.append(f"{where}: {name} must be a non-negative integer")
        if c.pattern is not None:
            if not isinstance(c.pattern, str):
                errors.append(f"{where}: pattern must be a string")
            else:
                try:
                    re.compile(c.pattern)
                except re.error as e:
                    errors.append(f"{where}: invalid pattern ({e})")
    elif isinstance(c, NumberConstraints):
        for name, value in (("min", c.minimum), ("max", c.maximum)):
            if value is not None and not _is_number(value):
                errors.append(f"{where}: {name} must be a number")
    elif isinstance(c, DateConstraints):
        for name, value in (("min", c.minimum), ("max", c.maximum)):
            if value is not None and (not isinstance(value, str) or to_millis(value) is None):
                errors.append(f"{where}: {name} must be an ISO date")
    elif isinstance(c, ListConstraints):
        for name in ("min_items", "max_items"):
            value = getattr(c, name)
            if value is not None and not _is_count(value):
                errors.append(f"{where}: {name} must be a non-negative integer")
        if c.element_type is not None and not isinstance(c.element_type, str):
            errors.append(f"{where}: element_type must be a type name")
    elif isinstance(c, MapConstraints):
        for name in ("key_type", "value_type"):
            value = getattr(c, name)
            if value is not None and not isinstance(value, str):
                errors.append(f"{where}: {name} must be a type name")
        if not all(isinstance(k, str) for k in c.required_keys):
            errors.append(f"{where}: required_keys must be strings")
    return errors


def _field_errors(label: str, f: FieldDefinition, known: set[str]) -> list[str]:
    errors = []
    where = f'Schema "{label}" field "{f.name}"'
    if not f.name:
        errors.append(f'Schema "{label}" has a field with no name')
    errors.extend(_constraint_errors(where, f.constraints))
    referenced = [f.type]
    if isinstance(f.constraints, ListConstraints) and f.constraints.element_type:
        referenced.append(f.constraints.element_type)
    if isinstance(f.constraints, MapConstraints):
        referenced.extend(t for t in (f.constraints.key_type, f.constraints.value_type) if t)
    for type_name in referenced:
        if isinstance(type_name, str) and type_name not in known:
            errors.append(f'{where} uses unknown type "{type_name}"')
    for c in f.conditions:
        if not c.field:
            errors.append(f"{where} has a condition with no field")
        if c.operator not in FILTER_OPERATORS:
            errors.append(f'{where} condition uses unknown operator "{c.operator}"')
    if f.cross_field is not None:
        if not f.cross_field.field:
            errors.append(f"{where} cross-field constraint names no field")
        if f.cross_field.operator not in CROSS_FIELD_OPERATORS:
            errors.append(
                f'{where} cross-field constraint uses unknown operator "{f.cross_field.operator}"'
            )
    return errors


def check_schema_mappings(schemas: list[SchemaMapping], types: list[CompositeType]) -> list[str]:
    """Return problems that would make schema mappings unusable. Empty list means valid."""
    errors = []
    known = set(PRIMITIVE_TYPES) | {t.name for t in types}
    seen: set[str] = set()
    for s in schemas:
        label = s.name or s.id
        if not s.id:
            errors.append(f'Schema "{label}" has no id')
        elif s.id in seen:
            errors.append(f"Duplicate schema id: {s.id}")
        seen.add(s.id)
        for f in s.fields:
            errors.extend(_field_errors(label, f, known))
        if s.property_filter:
            for c in s.property_filter.conditions:
                if c.operator not in FILTER_OPERATORS:
                    errors.append(f'Schema "{label}" uses unknown operator "{c.operator}"')
    for t in types:
        for f in t.fields:
            errors.extend(_constraint_errors(f'Type "{t.name}" field "{f.name}"', f.constraints))
    return errors


def check_types_and_schemas(data: dict) -> list[str]:
    """Parse and check the type table and schemas of a settings dict."""
    types = [CompositeType.from_dict(t) for t in data.get("custom_types") or []]
    schemas = [SchemaMapping.from_dict(s) for s in data.get("schema_mappings") or []]
    return check_custom_types(types) + check_schema_mappings(schemas, types)


# ── Live holder ──────────────────────────────────────────────────────────────


class SettingsState:
    """Current settings plus their parsed form, swapped atomically on replace()."""

    def __init__(self, data: dict | None = None):
        self._lock = threading.Lock()
        self._data: dict = {}
        self._schemas: list[SchemaMapping] = []
        self._types: list[CompositeType] = []
        self._options = ValidationOptions()
        self.replace(data if data is not None else default_settings())

    def replace(self, data: dict) -> None:
        merged = {**default_settings(), **data}
        schemas = [SchemaMapping.from_dict(s) for s in merged.get("schema_mappings") or []]
        types = [CompositeType.from_dict(t) for t in merged.get("custom_types") or []]
        options = ValidationOptions(
            unknown_field_warning=bool(merged.get("unknown_field_warning", True)),
            host_properties=tuple(merged.get("host_reserved_properties") or ()),
        )
        with self._lock:
            self._data = merged
            self._schemas = schemas
            self._types = types
            self._options = options

    def get(self) -> dict:
        with self._lock:
            return copy.deepcopy(self._data)

    def option(self, key: str, default=None):
        with self._lock:
            return self._data.get(key, default)

    @property
    def schema_mappings(self) -> list[SchemaMapping]:
        return self._schemas

    @property
    def custom_types(self) -> list[CompositeType]:
        return self._types

    @property
    def validation_options(self) -> ValidationOptions:
        return self._options

    def schema(self, schema_id: str) -> SchemaMapping | None:
        return next((s for s in self._schemas if s.id == schema_id), None)
