"""Vault document endpoints: read, write, rename and delete, each feeding the linter.

Every change is handed to the engine as a document event, so edits made
before the startup analysis finishes are queued like watcher events.
"""

from flask import Blueprint, current_app, jsonify, request

from services.engine import Changed, Deleted, Renamed

bp = Blueprint("vault", __name__)


def _engine():
    return current_app.config["LINT_ENGINE"]


def _violations(engine, rel_path: str) -> list[dict]:
    return [v.to_dict() for v in engine.store.get_document_violations(rel_path)]


@bp.route("/api/vault")
def vault_documents():
    """All markdown documents in the vault with their violation counts."""
    engine = _engine()
    counts = {p: len(v) for p, v in engine.store.get_all_violations().items()}
    return jsonify([
        {"path": p, "violations": counts.get(p, 0)} for p in engine.vault.list_documents()
    ])


@bp.route("/api/vault/file/<path:rel_path>", methods=["GET"])
def vault_file_get(rel_path):
    """File content + parsed frontmatter (+ fresh violations when validate_on_open)."""
    engine = _engine()
    result = engine.vault.read_file(rel_path)
    if "error" in result:
        code = 404 if result["error"] == "File not found" else 400
        return jsonify(result), code
    if engine.settings.option("validate_on_open", False):
        engine.handle_event(Changed(rel_path))
    result["violations"] = _violations(engine, rel_path)
    return jsonify(result)


@bp.route("/api/vault/file/<path:rel_path>", methods=["POST"])
def vault_file_post(rel_path):
    """Write (create/overwrite) a vault file."""
    data = request.get_json(silent=True) or {}
    content = data.get("content", "")
    if not isinstance(content, str):
        return jsonify({"error": "content must be a string"}), 400

    engine = _engine()
    result = engine.vault.write_file(rel_path, content)
    if "error" in result:
        return jsonify(result), 400
    if engine.settings.option("validate_on_save", True):
        result["queued"] = engine.handle_event(Changed(rel_path))
        result["violations"] = _violations(engine, rel_path)
    return jsonify(result)


@bp.route("/api/vault/rename", methods=["POST"])
def vault_rename():
    """Move a file. Body: {"old_path": "...", "new_path": "..."}."""
    data = request.get_json(silent=True) or {}
    old_path = data.get("old_path", "")
    new_path = data.get("new_path", "")
    if not isinstance(old_path, str) or not isinstance(new_path, str):
        return jsonify({"error": "old_path and new_path must be strings"}), 400
    if not old_path.strip() or not new_path.strip():
        return jsonify({"error": "old_path and new_path are required"}), 400

    engine = _engine()
    result = engine.vault.rename_file(old_path.strip(), new_path.strip())
    if "error" in result:
        code = 404 if result["error"] == "File not found" else 400
        return jsonify(result), code
    result["queued"] = engine.handle_event(Renamed(result["old_path"], result["path"]))
    return jsonify(result)


@bp.route("/api/vault/file/<path:rel_path>", methods=["DELETE"])
def vault_file_delete(rel_path):
    """Delete a file and drop its violations."""
    engine = _engine()
    result = engine.vault.delete_file(rel_path)
    if "error" in result:
        code = 404 if result["error"] == "File not found" else 400
        return jsonify(result), code
    result["queued"] = engine.handle_event(Deleted(rel_path))
    return jsonify(result)
