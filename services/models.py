"""Data model: field definitions, composite types, schema mappings, violations.

Settings JSON uses snake_case keys matching the attribute names below, except
number and date bounds which are stored as "min"/"max".
"""

from dataclasses import asdict, dataclass, field, replace

PRIMITIVE_TYPES = ("text", "number", "boolean", "date", "list", "map")

MISSING_REQUIRED = "missing_required"
MISSING_WARNED = "missing_warned"
TYPE_MISMATCH = "type_mismatch"
UNKNOWN_FIELD = "unknown_field"
VIOLATION_KINDS = (MISSING_REQUIRED, MISSING_WARNED, TYPE_MISMATCH, UNKNOWN_FIELD)

FILTER_OPERATORS = (
    "equals",
    "not_equals",
    "greater_than",
    "less_than",
    "greater_or_equal",
    "less_or_equal",
    "contains",
    "not_contains",
)

# Operators a cross-field constraint may use.
CROSS_FIELD_OPERATORS = FILTER_OPERATORS[:6]


# ── Constraints ──────────────────────────────────────────────────────────────


@dataclass
class TextConstraints:
    pattern: str | None = None
    min_length: int | None = None
    max_length: int | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class NumberConstraints:
    minimum: float | None = None
    maximum: float | None = None

    def to_dict(self) -> dict:
        data = {}
        if self.minimum is not None:
            data["min"] = self.minimum
        if self.maximum is not None:
            data["max"] = self.maximum
        return data


@dataclass
class ListConstraints:
    min_items: int | None = None
    max_items: int | None = None
    contains: list = field(default_factory=list)
    element_type: str | None = None

    def to_dict(self) -> dict:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if not self.contains:
            data.pop("contains", None)
        return data


@dataclass
class MapConstraints:
    key_type: str | None = None
    value_type: str | None = None
    # Keys that must be present in the map.
    required_keys: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if not self.required_keys:
            data.pop("required_keys", None)
        return data


@dataclass
class DateConstraints:
    """ISO date bounds, inclusive. Stored as "min"/"max"."""

    minimum: str | None = None
    maximum: str | None = None

    def to_dict(self) -> dict:
        data = {}
        if self.minimum is not None:
            data["min"] = self.minimum
        if self.maximum is not None:
            data["max"] = self.maximum
        return data


Constraints = (
    TextConstraints | NumberConstraints | ListConstraints | MapConstraints | DateConstraints
)


def constraints_from_dict(field_type: str, data: dict | None) -> Constraints | None:
    """Build the constraint variant for a primitive field type.

    Values are taken as given; check_schema_mappings rejects badly typed ones
    before they are saved.
    """
    if not data:
        return None
    if field_type == "text":
        return TextConstraints(
            pattern=data.get("pattern") or None,
            min_length=data.get("min_length"),
            max_length=data.get("max_length"),
        )
    if field_type == "number":
        return NumberConstraints(minimum=data.get("min"), maximum=data.get("max"))
    if field_type == "date":
        return DateConstraints(minimum=data.get("min") or None, maximum=data.get("max") or None)
    if field_type == "list":
        return ListConstraints(
            min_items=data.get("min_items"),
            max_items=data.get("max_items"),
            contains=list(data.get("contains") or []),
            element_type=data.get("element_type") or None,
        )
    if field_type == "map":
        return MapConstraints(
            key_type=data.get("key_type") or None,
            value_type=data.get("value_type") or None,
            required_keys=list(data.get("required_keys") or []),
        )
    # boolean and composite references carry no constraints
    return None


@dataclass
class FieldCondition:
    """Makes a field variant apply only when another frontmatter value matches."""

    field: str
    operator: str = "equals"
    value: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "FieldCondition":
        return cls(
            field=str(data.get("field", "")),
            operator=data.get("operator", "equals"),
            value=str(data.get("value", "")),
        )

    def to_dict(self) -> dict:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass
class CrossFieldConstraint:
    """Compares a field's value with another top-level field's value."""

    operator: str
    field: str

    @classmethod
    def from_dict(cls, data: dict | None) -> "CrossFieldConstraint | None":
        if not data:
            return None
        return cls(operator=data.get("operator", "equals"), field=str(data.get("field", "")))

    def to_dict(self) -> dict:
        return {"operator": self.operator, "field": self.field}


# ── Fields and types ─────────────────────────────────────────────────────────


@dataclass
class FieldDefinition:
    """One declared field. `required` and `warn` are mutually exclusive.

    A variant with `conditions` applies only while every condition holds
    against the document's top-level frontmatter.
    """

    name: str
    type: str = "text"
    required: bool = False
    warn: bool = False
    allow_empty: bool = False
    constraints: Constraints | None = None
    conditions: list[FieldCondition] = field(default_factory=list)
    cross_field: CrossFieldConstraint | None = None

    def __setattr__(self, key, value):
        super().__setattr__(key, value)
        if key == "required" and value:
            super().__setattr__("warn", False)
        elif key == "warn" and value:
            super().__setattr__("required", False)

    def set_required(self, value: bool) -> None:
        self.required = bool(value)

    def set_warn(self, value: bool) -> None:
        self.warn = bool(value)

    @classmethod
    def from_dict(cls, data: dict) -> "FieldDefinition":
        field_type = data.get("type") or "text"
        required = bool(data.get("required", False))
        constraints = data.get("constraints")
        return cls(
            name=str(data.get("name", "")),
            type=field_type,
            required=required,
            # A stored definition with both flags set keeps `required`.
            warn=bool(data.get("warn", False)) and not required,
            allow_empty=bool(data.get("allow_empty", False)),
            constraints=constraints_from_dict(
                field_type, constraints if isinstance(constraints, dict) else None
            ),
            conditions=[
                FieldCondition.from_dict(c)
                for c in data.get("conditions") or []
                if isinstance(c, dict)
            ],
            cross_field=CrossFieldConstraint.from_dict(data.get("cross_field")),
        )

    def to_dict(self) -> dict:
        data = {
            "name": self.name,
            "type": self.type,
            "required": self.required,
            "warn": self.warn,
            "allow_empty": self.allow_empty,
        }
        if self.constraints is not None:
            data["constraints"] = self.constraints.to_dict()
        if self.conditions:
            data["conditions"] = [c.to_dict() for c in self.conditions]
        if self.cross_field is not None:
            data["cross_field"] = self.cross_field.to_dict()
        return data


@dataclass
class CompositeType:
    id: str
    name: str
    fields: list[FieldDefinition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "CompositeType":
        return cls(
            id=str(data.get("id") or data.get("name", "")),
            name=str(data.get("name", "")),
            fields=[FieldDefinition.from_dict(f) for f in data.get("fields") or []],
        )

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "fields": [f.to_dict() for f in self.fields]}


# ── Schema mappings ──────────────────────────────────────────────────────────


@dataclass
class PropertyCondition:
    property: str
    operator: str = "equals"
    value: str = ""

    def to_dict(self) -> dict:
        return {"property": self.property, "operator": self.operator, "value": self.value}


@dataclass
class PropertyFilter:
    modified_after: str | None = None
    modified_before: str | None = None
    created_after: str | None = None
    created_before: str | None = None
    has_property: str | None = None
    not_has_property: str | None = None
    conditions: list[PropertyCondition] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict | None) -> "PropertyFilter | None":
        if not data:
            return None
        return cls(
            modified_after=data.get("modified_after") or None,
            modified_before=data.get("modified_before") or None,
            created_after=data.get("created_after") or None,
            created_before=data.get("created_before") or None,
            has_property=data.get("has_property") or None,
            not_has_property=data.get("not_has_property") or None,
            conditions=[
                PropertyCondition(
                    property=str(c.get("property", "")),
                    operator=c.get("operator", "equals"),
                    value=str(c.get("value", "")),
                )
                for c in data.get("conditions") or []
            ],
        )

    def to_dict(self) -> dict:
        data = {
            k: v
            for k, v in asdict(self).items()
            if k != "conditions" and v is not None
        }
        if self.conditions:
            data["conditions"] = [c.to_dict() for c in self.conditions]
        return data


@dataclass
class SchemaMapping:
    id: str
    name: str
    query: str
    fields: list[FieldDefinition] = field(default_factory=list)
    enabled: bool = True
    order: int = 0
    property_filter: PropertyFilter | None = None
    # None defers to the global unknown-field policy.
    unknown_fields: bool | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SchemaMapping":
        unknown = data.get("unknown_fields")
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            query=str(data.get("query", "")),
            fields=[FieldDefinition.from_dict(f) for f in data.get("fields") or []],
            enabled=bool(data.get("enabled", True)),
            order=int(data.get("order", 0) or 0),
            property_filter=PropertyFilter.from_dict(data.get("property_filter")),
            unknown_fields=None if unknown is None else bool(unknown),
        )

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "fields": [f.to_dict() for f in self.fields],
            "enabled": self.enabled,
            "order": self.order,
        }
        if self.property_filter is not None:
            data["property_filter"] = self.property_filter.to_dict()
        if self.unknown_fields is not None:
            data["unknown_fields"] = self.unknown_fields
        return data


@dataclass(frozen=True)
class ValidationOptions:
    """Global settings that change validation outcomes."""

    unknown_field_warning: bool = True
    host_properties: tuple[str, ...] = ()


# ── Violations ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Violation:
    path: str
    schema_id: str
    schema_name: str
    field: str
    kind: str
    message: str
    expected: str | None = None
    actual: str | None = None
    # A type mismatch on a warn-only field counts as a warning.
    warned: bool = False

    def with_path(self, path: str) -> "Violation":
        return replace(self, path=path)

    @property
    def is_warning(self) -> bool:
        return self.kind == MISSING_WARNED or self.warned

    def to_dict(self) -> dict:
        return asdict(self)
