"""Tests for lint API: violations, revalidation triggers, previews and document events."""

import pytest

from services.engine import Changed

BOOK = {
    "id": "book",
    "name": "Book",
    "query": "#book",
    "fields": [
        {"name": "title", "type": "text", "required": True},
        {"name": "summary", "type": "text", "warn": True},
    ],
}

MEDIA = {
    "id": "media",
    "name": "Media",
    "query": "Books/*",
    "fields": [{"name": "year", "type": "number", "required": True}],
}

SETTINGS = {"schema_mappings": [BOOK, MEDIA], "unknown_field_warning": False}


@pytest.fixture()
def client(make_client, vault_dir):
    (vault_dir / "Books").mkdir()
    (vault_dir / "Books" / "dune.md").write_text("---\ntags: [book]\n---\n")
    (vault_dir / "ok.md").write_text("---\ntitle: Ok\nsummary: Fine\ntags: [book]\n---\n")
    test_client, engine = make_client(SETTINGS)
    test_client.engine = engine
    return test_client


# ---------------------------------------------------------------------------
# Reading violations
# ---------------------------------------------------------------------------


def test_status(client):
    data = client.get("/api/lint/status").get_json()
    assert data["startup_complete"] is True
    assert data["violation_count"] == 3
    assert data["document_count"] == 1
    assert data["indexed_documents"] == 2
    assert data["cache"]["documents"] == 2


def test_violations_grouped_by_document(client):
    data = client.get("/api/lint/violations").get_json()
    assert list(data["documents"]) == ["Books/dune.md"]
    kinds = sorted(v["kind"] for v in data["documents"]["Books/dune.md"])
    assert kinds == ["missing_required", "missing_required", "missing_warned"]
    assert data["total"] == 3


def test_violations_can_exclude_warnings(client):
    data = client.get("/api/lint/violations?exclude_warnings=true").get_json()
    assert data["total"] == 2
    assert all(v["kind"] != "missing_warned" for v in data["documents"]["Books/dune.md"])


def test_exclude_warnings_defaults_to_setting(client):
    client.engine.settings.replace({**SETTINGS, "exclude_warnings_from_count": True})
    assert client.get("/api/lint/status").get_json()["violation_count"] == 2


def test_document_violations(client):
    data = client.get("/api/lint/violations/Books/dune.md").get_json()
    assert data["path"] == "Books/dune.md"
    assert {v["schema_id"] for v in data["violations"]} == {"book", "media"}


# ---------------------------------------------------------------------------
# Revalidation triggers
# ---------------------------------------------------------------------------


def test_validate_document(client, vault_dir):
    (vault_dir / "Books" / "dune.md").write_text("---\ntitle: Dune\nyear: 1965\ntags: [book]\n---\n")
    resp = client.post("/api/lint/validate/Books/dune.md")
    assert resp.status_code == 200
    [violation] = resp.get_json()["violations"]
    assert violation["kind"] == "missing_warned"


def test_validate_missing_document_forgets_it(client, vault_dir):
    (vault_dir / "Books" / "dune.md").unlink()
    resp = client.post("/api/lint/validate/Books/dune.md")
    assert resp.status_code == 404
    assert client.engine.store.get_all_violations() == {}


def test_validate_all(client):
    data = client.post("/api/lint/validate-all").get_json()
    assert data == {"ok": True, "validated": 2}


def test_revalidate_schema(client):
    data = client.post("/api/lint/schemas/media/revalidate").get_json()
    assert data["revalidated"] == ["Books/dune.md"]


def test_revalidate_unknown_schema(client):
    assert client.post("/api/lint/schemas/nope/revalidate").status_code == 404


def test_rebuild(client):
    data = client.post("/api/lint/rebuild").get_json()
    assert data["validated"] == 2
    assert client.engine.cache.stats()["dirty"] is False


# ---------------------------------------------------------------------------
# Previews
# ---------------------------------------------------------------------------


def test_schema_preview(client):
    data = client.get("/api/lint/schemas/book/preview").get_json()
    assert data["query_description"] == "tagged #book"
    assert data["match_count"] == 2
    assert [f["name"] for f in data["fields"]] == ["title", "summary"]


def test_document_preview_merges_matching_schemas(client):
    data = client.get("/api/lint/preview?path=Books/dune.md").get_json()
    assert [s["id"] for s in data["schemas"]] == ["book", "media"]
    assert {f["name"] for f in data["fields"]} == {"title", "summary", "year"}


def test_document_preview_requires_path(client):
    assert client.get("/api/lint/preview").status_code == 400
    assert client.get("/api/lint/preview?path=missing.md").status_code == 404


# ---------------------------------------------------------------------------
# Document events
# ---------------------------------------------------------------------------


def test_changed_event(client, vault_dir):
    (vault_dir / "new.md").write_text("---\ntags: [book]\n---\n")
    resp = client.post("/api/lint/events", json={"type": "changed", "path": "new.md"})
    assert resp.get_json() == {"ok": True, "queued": False}
    assert len(client.engine.store.get_document_violations("new.md")) == 2


def test_deleted_event(client, vault_dir):
    (vault_dir / "Books" / "dune.md").unlink()
    client.post("/api/lint/events", json={"type": "deleted", "path": "Books/dune.md"})
    assert client.engine.store.get_all_violations() == {}


def test_bad_event_is_rejected(client):
    resp = client.post("/api/lint/events", json={"type": "moved", "path": "a.md"})
    assert resp.status_code == 400


def test_events_before_startup_are_queued(make_client, vault_dir):
    test_client, engine = make_client(SETTINGS)
    engine._startup_complete = False
    resp = test_client.post("/api/lint/events", json={"type": "changed", "path": "a.md"})
    assert resp.get_json()["queued"] is True
    assert engine._pending == [Changed("a.md")]


def test_unknown_schema_preview(client):
    resp = client.get("/api/lint/schemas/nope/preview")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Unknown schema: nope"
