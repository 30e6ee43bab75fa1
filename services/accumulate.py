"""Validation across every schema that matches a document, plus the merged field view."""

import logging
from dataclasses import dataclass, field

from services.models import CompositeType, SchemaMapping, ValidationOptions, Violation
from services.schema import (
    malformed_frontmatter,
    schema_failure,
    type_display,
    validate_frontmatter,
)

log = logging.getLogger(__name__)


def validate_document_across_schemas(
    frontmatter: dict,
    schemas: list[SchemaMapping],
    path: str,
    types: list[CompositeType],
    options: ValidationOptions,
    parse_error: str | None = None,
) -> list[Violation]:
    """Concatenate per-schema violations. Duplicates across schemas are kept.

    A schema that cannot be applied (for example a stored constraint of the
    wrong type) contributes one stand-in violation instead of failing the pass.
    """
    violations: list[Violation] = []
    for schema in schemas:
        if parse_error is not None:
            violations.append(malformed_frontmatter(path, schema, parse_error))
            continue
        try:
            violations.extend(validate_frontmatter(frontmatter, schema, path, types, options))
        except (TypeError, ValueError) as e:
            log.warning("Schema %s could not be applied to %s: %s", schema.id, path, e)
            violations.append(schema_failure(path, schema, e))
    return violations


@dataclass
class ResolvedField:
    name: str
    type_displays: list[str] = field(default_factory=list)
    required: bool = False
    warn: bool = False
    schema_ids: list[str] = field(default_factory=list)

    @property
    def display_type(self) -> str:
        return " | ".join(self.type_displays)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.display_type,
            "types": self.type_displays,
            "required": self.required,
            "warn": self.warn,
            "schema_ids": self.schema_ids,
        }


def resolve_fields(schemas: list[SchemaMapping]) -> list[ResolvedField]:
    """Group same-named fields across schemas into one union entry each."""
    merged: dict[str, ResolvedField] = {}
    for schema in schemas:
        for f in schema.fields:
            entry = merged.setdefault(f.name, ResolvedField(name=f.name))
            display = type_display(f.type, f.constraints)
            if display not in entry.type_displays:
                entry.type_displays.append(display)
            if schema.id not in entry.schema_ids:
                entry.schema_ids.append(schema.id)
            entry.required = entry.required or f.required
            entry.warn = entry.warn or f.warn
    for entry in merged.values():
        if entry.required:
            entry.warn = False
    return list(merged.values())
