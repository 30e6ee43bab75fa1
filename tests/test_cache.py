"""Unit tests for the durable validation cache: load, analysis, hashing, persistence."""

import json
import logging

import pytest

from config import CACHE_VERSION
from services.cache import ValidationCache, hash_schema, hash_settings
from services.models import (
    CompositeType,
    CrossFieldConstraint,
    FieldCondition,
    FieldDefinition,
    SchemaMapping,
    ValidationOptions,
    Violation,
)

OPTIONS = ValidationOptions(unknown_field_warning=True, host_properties=("tags",))


def _schema(schema_id="book", *fields, query="#book"):
    fields = list(fields) or [FieldDefinition("title", required=True)]
    return SchemaMapping(id=schema_id, name=schema_id.title(), query=query, fields=fields)


def _v(path, schema_id="book"):
    return Violation(
        path, schema_id, schema_id.title(), "title", "missing_required",
        "Missing required field: title",
    )


@pytest.fixture()
def cache_file(tmp_path):
    return str(tmp_path / "cache" / "validation-cache.json")


@pytest.fixture()
def cache(cache_file, timers):
    return ValidationCache(cache_file, timer_factory=timers)


def _primed(cache, schemas, types=()):
    """A cache that already went through one full validation."""
    cache.set_settings_hash(OPTIONS)
    for s in schemas:
        cache.update_schema_hash(s, list(types))
    return cache


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def test_missing_snapshot_loads_empty(cache):
    cache.load()
    assert cache.stats()["documents"] == 0
    assert cache.settings_hash is None


def test_corrupt_snapshot_loads_empty(cache, cache_file, tmp_path):
    (tmp_path / "cache").mkdir()
    with open(cache_file, "w") as f:
        f.write("{not json")
    cache.load()
    assert cache.stats()["documents"] == 0


def test_version_mismatch_loads_empty(cache, cache_file, tmp_path):
    (tmp_path / "cache").mkdir()
    with open(cache_file, "w") as f:
        json.dump({
            "version": CACHE_VERSION + 1,
            "settingsHash": "x",
            "schemaHashes": {},
            "documents": {"a.md": {"modTime": 1, "matchedSchemaIds": [], "violations": []}},
        }, f)
    cache.load()
    assert cache.paths() == []
    assert cache.settings_hash is None


def test_first_analysis_requires_full_revalidation(cache):
    cache.load()
    decision = cache.analyze([_schema()], [], OPTIONS, lambda p: 1)
    assert decision.full_revalidation_needed is True
    assert decision.schemas_to_revalidate == ["book"]


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


def test_round_trip_reproduces_violations(cache, cache_file):
    book = _schema()
    _primed(cache, [book])
    cache.update_document("a.md", 1000, ["book"], [_v("a.md")])
    cache.update_document("b.md", 2000, [], [])
    assert cache.flush() is True

    reloaded = ValidationCache(cache_file)
    reloaded.load()
    assert reloaded.load_cached_violations([book]) == {"a.md": [_v("a.md")], "b.md": []}
    assert reloaded.get_entry("a.md").mod_time == 1000


def test_round_trip_drops_violations_of_deleted_schemas(cache, cache_file):
    book, film = _schema(), _schema("film", query="#film")
    _primed(cache, [book, film])
    cache.update_document("a.md", 1000, ["book", "film"], [_v("a.md"), _v("a.md", "film")])
    cache.flush()

    reloaded = ValidationCache(cache_file)
    reloaded.load()
    assert reloaded.load_cached_violations([book]) == {"a.md": [_v("a.md")]}


def test_round_trip_keeps_warned_mismatch(cache, cache_file):
    book = _schema()
    _primed(cache, [book])
    warned = Violation(
        "a.md", "book", "Book", "summary", "type_mismatch",
        "Type mismatch: summary (expected text, got number)", "text", "number", warned=True,
    )
    cache.update_document("a.md", 1000, ["book"], [warned, _v("a.md")])
    cache.flush()
    with open(cache_file) as f:
        stored = json.load(f)["documents"]["a.md"]["violations"]
    assert stored[0]["warned"] is True
    assert "warned" not in stored[1]

    reloaded = ValidationCache(cache_file)
    reloaded.load()
    assert reloaded.load_cached_violations([book])["a.md"] == [warned, _v("a.md")]


def test_snapshot_format(cache, cache_file):
    _primed(cache, [_schema()])
    cache.update_document("a.md", 1000, ["book"], [_v("a.md")])
    cache.flush()
    with open(cache_file) as f:
        data = json.load(f)
    assert data["version"] == CACHE_VERSION
    assert data["settingsHash"] == hash_settings(OPTIONS)
    assert set(data["schemaHashes"]) == {"book"}
    assert data["documents"]["a.md"] == {
        "modTime": 1000,
        "matchedSchemaIds": ["book"],
        "violations": [{
            "path": "a.md",
            "schemaId": "book",
            "field": "title",
            "kind": "missing_required",
            "message": "Missing required field: title",
        }],
    }


# ---------------------------------------------------------------------------
# Analysis
# ---------------------------------------------------------------------------


def test_settings_change_discards_everything(cache):
    book = _schema()
    _primed(cache, [book])
    cache.update_document("a.md", 1000, ["book"], [_v("a.md")])
    changed = ValidationOptions(unknown_field_warning=False, host_properties=("tags",))
    decision = cache.analyze([book], [], changed, lambda p: 1000)
    assert decision.full_revalidation_needed is True
    assert cache.paths() == []
    assert cache.schema_ids() == []
    assert cache.settings_hash == hash_settings(changed)


def test_unchanged_state_needs_no_work(cache):
    book = _schema()
    _primed(cache, [book])
    cache.update_document("a.md", 1000, ["book"], [_v("a.md")])
    decision = cache.analyze([book], [], OPTIONS, lambda p: 1000)
    assert decision.full_revalidation_needed is False
    assert decision.documents_to_revalidate == []
    assert decision.schemas_to_revalidate == []
    assert cache.has_document("a.md")


def test_modified_document_is_revalidated(cache):
    book = _schema()
    _primed(cache, [book])
    cache.update_document("a.md", 1000, ["book"], [])
    cache.update_document("b.md", 1000, ["book"], [])
    decision = cache.analyze([book], [], OPTIONS, {"a.md": 1500, "b.md": 1000}.get)
    assert decision.documents_to_revalidate == ["a.md"]
    assert not cache.has_document("a.md")
    assert cache.has_document("b.md")


def test_deleted_document_is_dropped_without_revalidation(cache):
    book = _schema()
    _primed(cache, [book])
    cache.update_document("gone.md", 1000, ["book"], [_v("gone.md")])
    decision = cache.analyze([book], [], OPTIONS, lambda p: None)
    assert decision.documents_to_revalidate == []
    assert cache.paths() == []


def test_changed_schema_invalidates_its_documents_only(cache):
    book, film = _schema(), _schema("film", query="#film")
    _primed(cache, [book, film])
    cache.update_document("a.md", 1000, ["book"], [])
    cache.update_document("b.md", 1000, ["film"], [])
    edited = _schema("book", FieldDefinition("title", required=True), FieldDefinition("isbn"))
    decision = cache.analyze([edited, film], [], OPTIONS, lambda p: 1000)
    assert decision.schemas_to_revalidate == ["book"]
    assert decision.documents_to_revalidate == ["a.md"]
    assert cache.paths() == ["b.md"]


def test_removed_schema_is_invalid(cache):
    book, film = _schema(), _schema("film", query="#film")
    _primed(cache, [book, film])
    cache.update_document("b.md", 1000, ["film"], [])
    decision = cache.analyze([book], [], OPTIONS, lambda p: 1000)
    assert decision.schemas_to_revalidate == ["film"]
    assert decision.documents_to_revalidate == ["b.md"]
    assert "film" not in cache.schema_ids()


def test_new_schema_is_reported(cache):
    book = _schema()
    _primed(cache, [book])
    film = _schema("film", query="#film")
    decision = cache.analyze([book, film], [], OPTIONS, lambda p: 1000)
    assert decision.schemas_to_revalidate == ["film"]


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def test_hash_schema_is_stable():
    types = [CompositeType("p", "Person", [FieldDefinition("name")])]
    library = _schema("library", FieldDefinition("author", type="Person"))
    assert hash_schema(library, types) == hash_schema(library, types)


def test_hash_schema_changes_with_transitively_referenced_type():
    address = CompositeType("a", "Address", [FieldDefinition("city")])
    person = CompositeType("p", "Person", [FieldDefinition("home", type="Address")])
    library = _schema("library", FieldDefinition("author", type="Person"))
    before = hash_schema(library, [address, person])

    edited = CompositeType("a", "Address", [FieldDefinition("city", required=True)])
    assert hash_schema(library, [edited, person]) != before


def test_hash_schema_ignores_unreferenced_types():
    library = _schema("library", FieldDefinition("title"))
    unrelated = CompositeType("x", "Other", [FieldDefinition("y")])
    assert hash_schema(library, []) == hash_schema(library, [unrelated])


def test_hash_schema_covers_query_and_enabled():
    book = _schema()
    moved = _schema(query="Books/*")
    disabled = _schema()
    disabled.enabled = False
    assert len({hash_schema(book, []), hash_schema(moved, []), hash_schema(disabled, [])}) == 3


def test_hash_schema_independent_of_settings_key_order():
    a = SchemaMapping.from_dict({"id": "s", "name": "S", "query": "*", "fields": [
        {"name": "t", "type": "text", "required": True, "constraints": {"min_length": 1}}]})
    b = SchemaMapping.from_dict({"fields": [
        {"constraints": {"min_length": 1}, "required": True, "type": "text", "name": "t"}],
        "query": "*", "name": "S", "id": "s"})
    assert hash_schema(a, []) == hash_schema(b, [])


def test_hash_schema_covers_conditions_and_cross_field_rules():
    plain = _schema("s", FieldDefinition("end", type="date"))
    conditional = _schema("s", FieldDefinition(
        "end", type="date", conditions=[FieldCondition("status", "equals", "active")]
    ))
    compared = _schema("s", FieldDefinition(
        "end", type="date", cross_field=CrossFieldConstraint("greater_than", "start")
    ))
    hashes = {hash_schema(plain, []), hash_schema(conditional, []), hash_schema(compared, [])}
    assert len(hashes) == 3


def test_hash_settings_ignores_allow_list_order():
    one = ValidationOptions(True, ("tags", "aliases"))
    two = ValidationOptions(True, ("aliases", "tags"))
    assert hash_settings(one) == hash_settings(two)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def test_invalidate_schema_evicts_and_returns_paths(cache):
    book = _schema()
    _primed(cache, [book])
    cache.update_document("a.md", 1, ["book"], [])
    cache.update_document("b.md", 1, ["film"], [])
    assert cache.invalidate_schema("book") == ["a.md"]
    assert cache.paths() == ["b.md"]
    assert cache.schema_hash("book") is None


def test_rename_rewrites_violation_paths(cache, cache_file):
    _primed(cache, [_schema()])
    cache.update_document("old.md", 1000, ["book"], [_v("old.md")])
    cache.rename_document("old.md", "new.md")
    cache.flush()
    with open(cache_file) as f:
        documents = json.load(f)["documents"]
    assert "old.md" not in documents
    assert documents["new.md"]["violations"][0]["path"] == "new.md"


def test_clear_keeps_settings_hash(cache):
    _primed(cache, [_schema()])
    cache.update_document("a.md", 1, ["book"], [])
    cache.clear()
    assert cache.paths() == []
    assert cache.schema_ids() == []
    assert cache.settings_hash == hash_settings(OPTIONS)


def test_mutations_are_debounced(cache, cache_file, timers):
    import os

    for i in range(10):
        cache.update_document(f"{i}.md", i, [], [])
    assert len(timers.live()) == 1
    assert not os.path.exists(cache_file)
    timers.fire_all()
    with open(cache_file) as f:
        assert len(json.load(f)["documents"]) == 10


def test_write_failure_is_logged_and_kept_dirty(tmp_path, timers, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    cache = ValidationCache(str(blocker / "cache.json"), timer_factory=timers)
    cache.update_document("a.md", 1, [], [])
    with caplog.at_level(logging.ERROR):
        assert cache.flush() is False
    assert "Snapshot write failed" in caplog.text
    assert cache.stats()["dirty"] is True
    # The next debounce cycle retries on its own.
    assert len(timers.live()) == 1
