"""Lint API: violations, revalidation triggers, schema previews and document events."""

from flask import Blueprint, current_app, jsonify, request

from services.accumulate import resolve_fields
from services.engine import event_from_dict
from services.errors import DocumentNotFound, UnknownSchema
from services.query import describe_query

bp = Blueprint("lint", __name__)


def _engine():
    return current_app.config["LINT_ENGINE"]


def _exclude_warnings() -> bool:
    flag = request.args.get("exclude_warnings")
    if flag is None:
        return bool(_engine().settings.option("exclude_warnings_from_count", False))
    return flag.lower() in ("1", "true", "yes")


@bp.route("/api/lint/status")
def lint_status():
    """Startup state, counts and cache statistics."""
    return jsonify(_engine().status(_exclude_warnings()))


@bp.route("/api/lint/violations")
def lint_violations():
    """All current violations grouped by document."""
    engine = _engine()
    exclude = _exclude_warnings()
    documents = {}
    for path, violations in sorted(engine.store.get_all_violations().items()):
        kept = [v.to_dict() for v in violations if not (exclude and v.is_warning)]
        if kept:
            documents[path] = kept
    return jsonify({
        "documents": documents,
        "total": engine.store.get_total_violation_count(exclude),
        "document_count": engine.store.get_document_count(exclude),
        "last_full_validation": engine.store.last_full_validation,
    })


@bp.route("/api/lint/violations/<path:rel_path>")
def lint_document_violations(rel_path):
    """Current violations for one document."""
    violations = _engine().store.get_document_violations(rel_path)
    return jsonify({"path": rel_path, "violations": [v.to_dict() for v in violations]})


@bp.route("/api/lint/validate-all", methods=["POST"])
def lint_validate_all():
    """Validate every document from scratch."""
    count = _engine().validate_all()
    return jsonify({"ok": True, "validated": count})


@bp.route("/api/lint/validate/<path:rel_path>", methods=["POST"])
def lint_validate_document(rel_path):
    """Validate one document now."""
    engine = _engine()
    if engine.vault.stat(rel_path) is None:
        engine.on_document_deleted(rel_path)
        return jsonify({"error": f"File not found: {rel_path}"}), 404
    violations = engine.validate_document(rel_path)
    return jsonify({"path": rel_path, "violations": [v.to_dict() for v in violations]})


@bp.route("/api/lint/schemas/<schema_id>/revalidate", methods=["POST"])
def lint_revalidate_schema(schema_id):
    """Re-run every document governed by a schema."""
    engine = _engine()
    try:
        engine.require_schema(schema_id)
    except UnknownSchema as e:
        return jsonify({"error": str(e)}), 404
    paths = engine.revalidate_schema(schema_id)
    return jsonify({"ok": True, "schema_id": schema_id, "revalidated": paths})


@bp.route("/api/lint/schemas/<schema_id>/preview")
def lint_schema_preview(schema_id):
    """Merged field view of a schema plus the documents its query selects."""
    engine = _engine()
    try:
        schema = engine.require_schema(schema_id)
    except UnknownSchema as e:
        return jsonify({"error": str(e)}), 404
    paths = engine.matching_paths(schema)
    return jsonify({
        "id": schema.id,
        "name": schema.name,
        "query": schema.query,
        "query_description": describe_query(schema.query),
        "fields": [f.to_dict() for f in resolve_fields([schema])],
        "match_count": len(paths),
        "matches": paths[:50],
    })


@bp.route("/api/lint/preview")
def lint_document_preview():
    """Union view of every schema that currently applies to ?path=."""
    rel_path = request.args.get("path", "").strip()
    if not rel_path:
        return jsonify({"error": "path parameter required"}), 400
    engine = _engine()
    info = engine.vault.stat(rel_path)
    if info is None:
        return jsonify({"error": f"File not found: {rel_path}"}), 404
    try:
        frontmatter, _body, _err = engine.vault.read_metadata(rel_path)
    except DocumentNotFound as e:
        return jsonify({"error": str(e)}), 404
    schemas = engine.matching_schemas(rel_path, frontmatter, info)
    return jsonify({
        "path": rel_path,
        "schemas": [{"id": s.id, "name": s.name} for s in schemas],
        "fields": [f.to_dict() for f in resolve_fields(schemas)],
    })


@bp.route("/api/lint/rebuild", methods=["POST"])
def lint_rebuild():
    """Discard cached state and rebuild everything."""
    count = _engine().rebuild_full_index()
    return jsonify({"ok": True, "validated": count})


@bp.route("/api/lint/events", methods=["POST"])
def lint_event():
    """Deliver a document event. Body: {"type": "changed|renamed|deleted", "path", "old_path"?}."""
    data = request.get_json(silent=True) or {}
    try:
        event = event_from_dict(data)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    queued = _engine().handle_event(event)
    return jsonify({"ok": True, "queued": queued})
