"""Composite type graph: reference closure and cycle detection.

Types are looked up by name in a table; edges run from a type to every
composite named by one of its fields, a list field's element type, or a map
field's value type. Walks use explicit stacks and visited sets so a cyclic
table that slipped past save-time checks still terminates.
"""

from services.errors import CycleDetected
from services.models import (
    PRIMITIVE_TYPES,
    CompositeType,
    FieldDefinition,
    ListConstraints,
    MapConstraints,
)


def is_primitive_type(type_name: str) -> bool:
    return type_name in PRIMITIVE_TYPES


def type_table(all_types: list[CompositeType]) -> dict[str, CompositeType]:
    """Index composite types by name. The first definition of a name wins."""
    table: dict[str, CompositeType] = {}
    for t in all_types:
        table.setdefault(t.name, t)
    return table


def referenced_type_names(fields: list[FieldDefinition]) -> list[str]:
    """Non-primitive type names a field list points at, in declaration order."""
    names: list[str] = []
    for f in fields:
        candidates = [f.type]
        if isinstance(f.constraints, ListConstraints) and f.constraints.element_type:
            candidates.append(f.constraints.element_type)
        if isinstance(f.constraints, MapConstraints) and f.constraints.value_type:
            candidates.append(f.constraints.value_type)
        for name in candidates:
            if isinstance(name, str) and name and not is_primitive_type(name) and name not in names:
                names.append(name)
    return names


def resolve_referenced_types(
    fields: list[FieldDefinition], all_types: list[CompositeType]
) -> list[CompositeType]:
    """Transitive closure of composite types reachable from `fields`.

    Each type appears once, in order of first discovery (depth-first, in
    declaration order). Unknown names are skipped.
    """
    table = type_table(all_types)
    visited: set[str] = set()
    resolved: list[CompositeType] = []
    stack = list(reversed(referenced_type_names(fields)))

    while stack:
        name = stack.pop()
        if name in visited:
            continue
        visited.add(name)
        composite = table.get(name)
        if composite is None:
            continue
        resolved.append(composite)
        for child in reversed(referenced_type_names(composite.fields)):
            if child not in visited:
                stack.append(child)
    return resolved


def has_cycle(
    root_type_name: str,
    tentative_fields: list[FieldDefinition],
    all_types: list[CompositeType],
) -> bool:
    """True if `root_type_name`, defined by `tentative_fields`, reaches itself.

    The tentative field list replaces whatever is stored for the root, so an
    edit can be checked before it is saved.
    """
    table = type_table(all_types)
    table[root_type_name] = CompositeType(
        id=root_type_name, name=root_type_name, fields=tentative_fields
    )

    on_stack: set[str] = set()
    done: set[str] = set()
    # Each frame is (type name, iterator over its children).
    frames = [(root_type_name, iter(referenced_type_names(tentative_fields)))]
    on_stack.add(root_type_name)

    while frames:
        name, children = frames[-1]
        child = next(children, None)
        if child is None:
            frames.pop()
            on_stack.discard(name)
            done.add(name)
            continue
        if child in on_stack:
            return True
        if child in done or child not in table:
            continue
        on_stack.add(child)
        frames.append((child, iter(referenced_type_names(table[child].fields))))
    return False


def ensure_acyclic(type_name: str, fields: list[FieldDefinition], all_types: list[CompositeType]):
    """Raise CycleDetected if saving `fields` under `type_name` would form a cycle."""
    if has_cycle(type_name, fields, all_types):
        raise CycleDetected(type_name)


def check_custom_types(types: list[CompositeType]) -> list[str]:
    """Return save-time problems with a composite type table. Empty list means valid."""
    errors = []
    seen: set[str] = set()
    for t in types:
        if not t.name.strip():
            errors.append("Type name is required")
            continue
        if is_primitive_type(t.name):
            errors.append(f'Type name "{t.name}" collides with a built-in type')
        if t.name in seen:
            errors.append(f'Duplicate type name: "{t.name}"')
        seen.add(t.name)
    for t in types:
        try:
            ensure_acyclic(t.name, t.fields, types)
        except CycleDetected as e:
            errors.append(str(e))
    return errors
