"""Unit tests for composite type resolution and cycle detection."""

import pytest

from services.errors import CycleDetected
from services.models import CompositeType, FieldDefinition, ListConstraints, MapConstraints
from services.types_graph import (
    check_custom_types,
    ensure_acyclic,
    has_cycle,
    resolve_referenced_types,
)


def _type(name, *fields):
    return CompositeType(id=name.lower(), name=name, fields=list(fields))


ADDRESS = _type("Address", FieldDefinition("city"))
PERSON = _type("Person", FieldDefinition("name"), FieldDefinition("home", type="Address"))


# ---------------------------------------------------------------------------
# resolve_referenced_types
# ---------------------------------------------------------------------------


def test_resolve_returns_transitive_closure():
    fields = [FieldDefinition("author", type="Person")]
    resolved = resolve_referenced_types(fields, [ADDRESS, PERSON])
    assert [t.name for t in resolved] == ["Person", "Address"]


def test_resolve_orders_by_first_discovery_depth_first():
    a = _type("A", FieldDefinition("c", type="C"))
    b = _type("B")
    c = _type("C")
    fields = [FieldDefinition("a", type="A"), FieldDefinition("b", type="B")]
    assert [t.name for t in resolve_referenced_types(fields, [c, b, a])] == ["A", "C", "B"]


def test_resolve_follows_list_element_and_map_value_types():
    fields = [
        FieldDefinition("people", type="list", constraints=ListConstraints(element_type="Person")),
        FieldDefinition("places", type="map", constraints=MapConstraints(value_type="Address")),
    ]
    names = [t.name for t in resolve_referenced_types(fields, [ADDRESS, PERSON])]
    assert names == ["Person", "Address"]


def test_resolve_terminates_on_cycle_without_duplicates():
    a = _type("A", FieldDefinition("b", type="B"))
    b = _type("B", FieldDefinition("a", type="A"), FieldDefinition("self", type="B"))
    resolved = resolve_referenced_types([FieldDefinition("x", type="A")], [a, b])
    assert [t.name for t in resolved] == ["A", "B"]


def test_resolve_skips_unknown_and_primitive_names():
    fields = [FieldDefinition("title"), FieldDefinition("ghost", type="Ghost")]
    assert resolve_referenced_types(fields, [PERSON]) == []


# ---------------------------------------------------------------------------
# has_cycle
# ---------------------------------------------------------------------------


def test_has_cycle_false_for_acyclic_graph():
    assert has_cycle("Person", PERSON.fields, [ADDRESS, PERSON]) is False


def test_has_cycle_detects_direct_self_reference():
    assert has_cycle("Node", [FieldDefinition("next", type="Node")], []) is True


def test_has_cycle_detects_list_element_edge():
    fields = [
        FieldDefinition("children", type="list", constraints=ListConstraints(element_type="Node"))
    ]
    assert has_cycle("Node", fields, []) is True


def test_has_cycle_detects_transitive_back_edge():
    a = _type("A", FieldDefinition("b", type="B"))
    b = _type("B", FieldDefinition("c", type="C"))
    assert has_cycle("C", [FieldDefinition("a", type="A")], [a, b]) is True


def test_has_cycle_uses_tentative_fields_over_stored_definition():
    stored = _type("Node", FieldDefinition("next", type="Node"))
    assert has_cycle("Node", [FieldDefinition("label")], [stored]) is False


def test_ensure_acyclic_raises():
    with pytest.raises(CycleDetected, match="Node"):
        ensure_acyclic("Node", [FieldDefinition("next", type="Node")], [])


# ---------------------------------------------------------------------------
# check_custom_types
# ---------------------------------------------------------------------------


def test_check_custom_types_accepts_valid_table():
    assert check_custom_types([ADDRESS, PERSON]) == []


def test_check_custom_types_rejects_primitive_name_and_duplicates():
    errors = check_custom_types([_type("text"), _type("Person"), _type("Person")])
    assert any("built-in" in e for e in errors)
    assert any("Duplicate" in e for e in errors)


def test_check_custom_types_rejects_cycles():
    a = _type("A", FieldDefinition("b", type="B"))
    b = _type("B", FieldDefinition("a", type="A"))
    errors = check_custom_types([a, b])
    assert any("circular" in e for e in errors)
