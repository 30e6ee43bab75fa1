"""Frontmatter validation against one schema mapping.

Fields sharing a name form a union of variants: the field is required if any
variant requires it, and a value passes if it satisfies any variant. At the
top level, variants whose conditions do not hold are left out of the union.
"""

import re
from datetime import date

from services.models import (
    MISSING_REQUIRED,
    MISSING_WARNED,
    TYPE_MISMATCH,
    UNKNOWN_FIELD,
    CompositeType,
    DateConstraints,
    FieldDefinition,
    ListConstraints,
    MapConstraints,
    NumberConstraints,
    SchemaMapping,
    TextConstraints,
    ValidationOptions,
    Violation,
)
from services.query import compare, condition_holds, to_millis
from services.types_graph import is_primitive_type, type_table

MALFORMED_FIELD = "frontmatter"

_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?$")

_ISO_DATE = re.compile(
    r"^\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)


class _Context:
    """Per-call state: the document, the schema and the type table."""

    def __init__(self, path: str, schema: SchemaMapping, types: dict[str, CompositeType],
                 report_unknown: bool):
        self.path = path
        self.schema = schema
        self.types = types
        self.report_unknown = report_unknown

    def violation(self, field, kind, message, expected=None, actual=None,
                  warned=False) -> Violation:
        return Violation(
            path=self.path,
            schema_id=self.schema.id,
            schema_name=self.schema.name,
            field=field,
            kind=kind,
            message=message,
            expected=expected,
            actual=actual,
            warned=warned,
        )


def group_variants(fields: list[FieldDefinition]) -> dict[str, list[FieldDefinition]]:
    """Group same-named field definitions, keeping first-appearance order."""
    groups: dict[str, list[FieldDefinition]] = {}
    for f in fields:
        if f.name:
            groups.setdefault(f.name, []).append(f)
    return groups


def type_display(field_type: str, constraints=None) -> str:
    """Human-readable type: `person[]` for typed lists, `{text: number}` for maps."""
    if field_type == "list" and isinstance(constraints, ListConstraints):
        if constraints.element_type:
            return f"{constraints.element_type}[]"
    if field_type == "map" and isinstance(constraints, MapConstraints):
        if constraints.key_type or constraints.value_type:
            return f"{{{constraints.key_type or 'text'}: {constraints.value_type or 'any'}}}"
    return field_type


def describe_value(value) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "date" if _ISO_DATE.match(value) else "text"
    if isinstance(value, date):
        return "date"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "map"
    return type(value).__name__


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _base_type_matches(ctx: _Context, type_name: str, value) -> bool:
    """Shape check only, without constraints or nested fields."""
    if type_name == "text":
        return isinstance(value, str)
    if type_name == "number":
        return isinstance(value, int | float) and not isinstance(value, bool)
    if type_name == "boolean":
        return isinstance(value, bool)
    if type_name == "date":
        return isinstance(value, date) or (isinstance(value, str) and bool(_ISO_DATE.match(value)))
    if type_name == "list":
        return isinstance(value, list)
    if type_name == "map":
        return isinstance(value, dict)
    return type_name in ctx.types and isinstance(value, dict)


# ── Per-type checks ──────────────────────────────────────────────────────────


def _check_text(ctx, path, value: str, c: TextConstraints | None) -> list[Violation]:
    if c is None:
        return []
    out = []
    if c.min_length is not None and len(value) < c.min_length:
        out.append(ctx.violation(
            path, TYPE_MISMATCH,
            f"String too short: {path} (min {c.min_length} characters)",
            expected=f">= {c.min_length} characters", actual=f"{len(value)} characters",
        ))
    if c.max_length is not None and len(value) > c.max_length:
        out.append(ctx.violation(
            path, TYPE_MISMATCH,
            f"String too long: {path} (max {c.max_length} characters)",
            expected=f"<= {c.max_length} characters", actual=f"{len(value)} characters",
        ))
    if c.pattern:
        try:
            matched = re.search(c.pattern, value) is not None
        except re.error:
            # Unusable pattern: nothing to enforce.
            matched = True
        if not matched:
            out.append(ctx.violation(
                path, TYPE_MISMATCH,
                f"Pattern mismatch: {path} does not match /{c.pattern}/",
                expected=c.pattern, actual=value,
            ))
    return out


def _check_number(ctx, path, value, c: NumberConstraints | None) -> list[Violation]:
    if c is None:
        return []
    out = []
    if c.minimum is not None and value < c.minimum:
        out.append(ctx.violation(
            path, TYPE_MISMATCH, f"Number too small: {path} is {value} (min {c.minimum})",
            expected=f">= {c.minimum}", actual=str(value),
        ))
    if c.maximum is not None and value > c.maximum:
        out.append(ctx.violation(
            path, TYPE_MISMATCH, f"Number too large: {path} is {value} (max {c.maximum})",
            expected=f"<= {c.maximum}", actual=str(value),
        ))
    return out


def _check_date(ctx, path, value, c: DateConstraints | None) -> list[Violation]:
    if c is None:
        return []
    actual = to_millis(value)
    if actual is None:
        return []
    shown = value.isoformat() if isinstance(value, date) else str(value)
    out = []
    lower = to_millis(c.minimum) if c.minimum else None
    if lower is not None and actual < lower:
        out.append(ctx.violation(
            path, TYPE_MISMATCH, f"Date too early: {path} is {shown} (min {c.minimum})",
            expected=f">= {c.minimum}", actual=shown,
        ))
    upper = to_millis(c.maximum) if c.maximum else None
    if upper is not None and actual > upper:
        out.append(ctx.violation(
            path, TYPE_MISMATCH, f"Date too late: {path} is {shown} (max {c.maximum})",
            expected=f"<= {c.maximum}", actual=shown,
        ))
    return out


def _check_list(ctx, path, value: list, c: ListConstraints | None, active) -> list[Violation]:
    if c is None:
        return []
    out = []
    if c.min_items is not None and len(value) < c.min_items:
        out.append(ctx.violation(
            path, TYPE_MISMATCH, f"Too few items: {path} has {len(value)} (min {c.min_items})",
            expected=f">= {c.min_items} items", actual=f"{len(value)} items",
        ))
    if c.max_items is not None and len(value) > c.max_items:
        out.append(ctx.violation(
            path, TYPE_MISMATCH, f"Too many items: {path} has {len(value)} (max {c.max_items})",
            expected=f"<= {c.max_items} items", actual=f"{len(value)} items",
        ))
    if c.contains:
        present = {str(item) for item in value}
        missing = [str(v) for v in c.contains if str(v) not in present]
        if missing:
            out.append(ctx.violation(
                path, TYPE_MISMATCH,
                f"Missing required values: {path} must contain {', '.join(missing)}",
                expected=", ".join(str(v) for v in c.contains),
                actual=", ".join(str(item) for item in value),
            ))
    if c.element_type:
        for i, item in enumerate(value):
            out.extend(_check_value(ctx, f"{path}[{i}]", c.element_type, None, item, active))
    return out


def _check_map(ctx, path, value: dict, c: MapConstraints | None, active) -> list[Violation]:
    if c is None:
        return []
    out = []
    present = {str(k) for k in value}
    for key in c.required_keys:
        if str(key) not in present:
            out.append(ctx.violation(
                f"{path}.{key}", MISSING_REQUIRED, f"Missing required key: {path}.{key}"
            ))
    for key, item in value.items():
        if c.key_type and not _base_type_matches(ctx, c.key_type, key):
            out.append(ctx.violation(
                f"{path}.{key}", TYPE_MISMATCH,
                f"Invalid key: {path}.{key} (expected {c.key_type} key, got {describe_value(key)})",
                expected=c.key_type, actual=describe_value(key),
            ))
        if c.value_type:
            out.extend(_check_value(ctx, f"{path}.{key}", c.value_type, None, item, active))
    return out


def _check_composite(ctx, path, composite: CompositeType, value: dict, active) -> list[Violation]:
    marker = (composite.name, id(value))
    if marker in active:
        # Same object already being checked against this type (YAML alias loop).
        return []
    active = active | {marker}
    out = []
    groups = group_variants(composite.fields)
    for name, variants in groups.items():
        out.extend(_check_field(
            ctx, f"{path}.{name}", variants, name in value, value.get(name), active
        ))
    if ctx.report_unknown:
        for key in value:
            if key not in groups:
                out.append(ctx.violation(
                    f"{path}.{key}", UNKNOWN_FIELD,
                    f"Unknown field: {path}.{key} (not in type {composite.name})",
                ))
    return out


def _check_value(ctx, path, type_name, constraints, value, active) -> list[Violation]:
    """All violations of `value` against one variant type."""
    if not _base_type_matches(ctx, type_name, value):
        expected = type_display(type_name, constraints)
        if not is_primitive_type(type_name) and type_name not in ctx.types:
            message = f"Unknown type: {path} references undefined type {type_name}"
        else:
            message = f"Type mismatch: {path} (expected {expected}, got {describe_value(value)})"
        return [ctx.violation(path, TYPE_MISMATCH, message, expected=expected,
                              actual=describe_value(value))]
    if type_name == "text":
        return _check_text(ctx, path, value, constraints)
    if type_name == "number":
        return _check_number(ctx, path, value, constraints)
    if type_name == "date":
        return _check_date(ctx, path, value, constraints)
    if type_name == "boolean":
        return []
    if type_name == "list":
        return _check_list(ctx, path, value, constraints, active)
    if type_name == "map":
        return _check_map(ctx, path, value, constraints, active)
    return _check_composite(ctx, path, ctx.types[type_name], value, active)


def _check_field(ctx, path, variants, present, value, active) -> list[Violation]:
    required = any(v.required for v in variants)
    warn = not required and any(v.warn for v in variants)

    if not present:
        if required:
            return [ctx.violation(path, MISSING_REQUIRED, f"Missing required field: {path}")]
        if warn:
            return [ctx.violation(path, MISSING_WARNED, f"Missing recommended field: {path}")]
        return []

    if _is_empty(value):
        if any(v.allow_empty for v in variants):
            return []
        if required:
            return [ctx.violation(path, MISSING_REQUIRED, f"Required field is empty: {path}",
                                  actual=describe_value(value))]
        if warn:
            return [ctx.violation(path, MISSING_WARNED, f"Recommended field is empty: {path}",
                                  actual=describe_value(value))]
        # Optional "" / [] / {} still have a shape to check; null does not.

    results = [_check_value(ctx, path, v.type, v.constraints, value, active) for v in variants]
    if any(not r for r in results):
        return []

    for variant, result in zip(variants, results, strict=True):
        if _base_type_matches(ctx, variant.type, value):
            return result

    expected = " | ".join(type_display(v.type, v.constraints) for v in variants)
    message = f"Type mismatch: {path} (expected {expected}, got {describe_value(value)})"
    if len(variants) == 1:
        message = results[0][0].message
    return [ctx.violation(path, TYPE_MISMATCH, message, expected=expected,
                          actual=describe_value(value), warned=warn)]


# ── Top-level rules ──────────────────────────────────────────────────────────

_OPERATOR_WORDS = {
    "equals": ("equal to", "=="),
    "not_equals": ("different from", "!="),
    "greater_than": ("greater than", ">"),
    "less_than": ("less than", "<"),
    "greater_or_equal": ("at least", ">="),
    "less_or_equal": ("at most", "<="),
}


def _applies(variant: FieldDefinition, frontmatter: dict) -> bool:
    """True when every condition on a variant holds (no conditions: always)."""
    return all(
        condition_holds(frontmatter, c.field, c.operator, c.value) for c in variant.conditions
    )


def _as_number(value) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str) and _NUMBER.match(value.strip()):
        return float(value)
    return None


def _cross_field_holds(value, other, operator: str) -> bool:
    """Compare as numbers, then as dates, then as text."""
    left, right = _as_number(value), _as_number(other)
    if left is None or right is None:
        left, right = to_millis(value), to_millis(other)
    if left is None or right is None:
        left = value.isoformat() if isinstance(value, date) else str(value)
        right = other.isoformat() if isinstance(other, date) else str(other)
    return compare(left, right, operator)


def _check_cross_field(ctx, name, variants, value, frontmatter, keys) -> list[Violation]:
    variant = next((v for v in variants if _base_type_matches(ctx, v.type, value)), None)
    if variant is None or variant.cross_field is None:
        return []
    rule = variant.cross_field
    other_key = keys.get(rule.field.lower())
    if other_key is None or frontmatter[other_key] is None:
        # Nothing to compare against.
        return []
    if _cross_field_holds(value, frontmatter[other_key], rule.operator):
        return []
    words, symbol = _OPERATOR_WORDS.get(rule.operator, (rule.operator, rule.operator))
    return [ctx.violation(
        name, TYPE_MISMATCH,
        f"Cross-field constraint failed: {name} must be {words} {rule.field}",
        expected=f"{symbol} {rule.field}", actual=str(value),
    )]


# ── Public entry points ──────────────────────────────────────────────────────


def validate_frontmatter(
    frontmatter: dict,
    schema: SchemaMapping,
    path: str,
    types: list[CompositeType],
    options: ValidationOptions,
) -> list[Violation]:
    """Return the violations of one document against one schema. Empty list means valid."""
    report_unknown = (
        schema.unknown_fields if schema.unknown_fields is not None
        else options.unknown_field_warning
    )
    ctx = _Context(path, schema, type_table(types), report_unknown)
    keys = {str(k).lower(): k for k in frontmatter}
    groups = group_variants(schema.fields)

    violations: list[Violation] = []
    for name, variants in groups.items():
        variants = [v for v in variants if _applies(v, frontmatter)]
        if not variants:
            continue
        key = keys.get(name.lower())
        present = key is not None
        value = frontmatter[key] if present else None
        violations.extend(_check_field(ctx, name, variants, present, value, frozenset()))
        if present and not _is_empty(value):
            violations.extend(_check_cross_field(ctx, name, variants, value, frontmatter, keys))

    if report_unknown:
        declared = {name.lower() for name in groups}
        allowed = {p.lower() for p in options.host_properties}
        for key in frontmatter:
            lowered = str(key).lower()
            if lowered not in declared and lowered not in allowed:
                violations.append(ctx.violation(
                    str(key), UNKNOWN_FIELD, f"Unknown field: {key} (not in schema)"
                ))
    return violations


def malformed_frontmatter(path: str, schema: SchemaMapping, error: str) -> Violation:
    """Single stand-in violation for a metadata block that could not be parsed."""
    return Violation(
        path=path,
        schema_id=schema.id,
        schema_name=schema.name,
        field=MALFORMED_FIELD,
        kind=TYPE_MISMATCH,
        message=f"Malformed frontmatter: {error}",
        expected="YAML mapping",
        actual="unparseable",
    )


def schema_failure(path: str, schema: SchemaMapping, error: Exception) -> Violation:
    """Single stand-in violation for a schema that raised while checking a document."""
    return Violation(
        path=path,
        schema_id=schema.id,
        schema_name=schema.name,
        field=MALFORMED_FIELD,
        kind=TYPE_MISMATCH,
        message=f"Schema could not be applied: {error}",
        expected="valid schema constraints",
        actual=type(error).__name__,
    )
