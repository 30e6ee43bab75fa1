"""Settings API: validation options, schema mappings, custom types and the background scan."""

from flask import Blueprint, current_app, jsonify, request

from services.indexer import scanner
from services.settings import check_types_and_schemas, save_settings

bp = Blueprint("settings", __name__)

_BOOL_KEYS = (
    "unknown_field_warning",
    "validate_on_open",
    "validate_on_save",
    "exclude_warnings_from_count",
)


def _engine():
    return current_app.config["LINT_ENGINE"]


@bp.route("/api/settings", methods=["GET"])
def get_settings():
    """Return current settings + live scanner status."""
    settings = _engine().settings.get()
    settings["background_scan"]["last_scanned"] = scanner.status["last_scanned"]
    return jsonify(settings)


@bp.route("/api/settings", methods=["POST"])
def update_settings():
    """Persist settings, then revalidate whatever they affect."""
    data = request.get_json(silent=True) or {}
    engine = _engine()
    settings = engine.settings.get()

    for key in _BOOL_KEYS:
        if key in data:
            if not isinstance(data[key], bool):
                return jsonify({"error": f"{key} must be a boolean"}), 400
            settings[key] = data[key]

    if "host_reserved_properties" in data:
        props = data["host_reserved_properties"]
        if not isinstance(props, list) or not all(isinstance(p, str) for p in props):
            return jsonify({"error": "host_reserved_properties must be a list of strings"}), 400
        settings["host_reserved_properties"] = props

    if "background_scan" in data:
        scan = data["background_scan"]
        if not isinstance(scan, dict):
            return jsonify({"error": "background_scan must be an object"}), 400
        if "enabled" in scan:
            settings["background_scan"]["enabled"] = bool(scan["enabled"])
        if "interval_seconds" in scan:
            seconds = scan["interval_seconds"]
            if not isinstance(seconds, int) or isinstance(seconds, bool) or seconds < 5:
                return jsonify({"error": "interval_seconds must be an integer >= 5"}), 400
            settings["background_scan"]["interval_seconds"] = seconds

    for key in ("schema_mappings", "custom_types"):
        if key in data:
            items = data[key]
            if not isinstance(items, list) or not all(isinstance(i, dict) for i in items):
                return jsonify({"error": f"{key} must be a list of objects"}), 400
            settings[key] = items

    problems = check_types_and_schemas(settings)
    if problems:
        return jsonify({"error": problems[0], "validation_errors": problems}), 400

    settings["background_scan"].pop("last_scanned", None)
    save_settings(settings)
    engine.settings.replace(settings)
    revalidated = engine.on_settings_changed()
    scanner.configure(
        engine,
        settings["background_scan"]["enabled"],
        settings["background_scan"]["interval_seconds"],
    )

    result = engine.settings.get()
    result["background_scan"]["last_scanned"] = scanner.status["last_scanned"]
    result["revalidated_schemas"] = revalidated
    return jsonify(result)


@bp.route("/api/settings/scan-now", methods=["POST"])
def scan_now():
    """Trigger an immediate vault scan."""
    scanner.run_now()
    return jsonify({"ok": True})
