#!/usr/bin/env python3
"""Vault Linter server: REST API + violation stream + background scanning for a markdown vault."""

import argparse
import atexit
import logging
import threading

from flask import Flask, jsonify

from config import CACHE_FILE, PORT, VAULT_DIR
from services.cache import ValidationCache
from services.engine import LintEngine
from services.indexer import scanner
from services.query import QueryIndex
from services.settings import SettingsState, load_settings
from services.store import ViolationStore
from services.vault import Vault

log = logging.getLogger(__name__)

app = Flask(__name__)

from routes.lint import bp as lint_bp  # noqa: E402
from routes.settings import bp as settings_bp  # noqa: E402
from routes.stream import sock as stream_sock  # noqa: E402
from routes.vault import bp as vault_bp  # noqa: E402

stream_sock.init_app(app)
app.register_blueprint(lint_bp)
app.register_blueprint(vault_bp)
app.register_blueprint(settings_bp)


def build_engine(vault_dir: str, cache_file: str, settings: dict | None = None) -> LintEngine:
    """Wire the linter services together. No vault I/O happens here."""
    return LintEngine(
        settings=SettingsState(settings if settings is not None else load_settings()),
        vault=Vault(vault_dir),
        index=QueryIndex(),
        store=ViolationStore(),
        cache=ValidationCache(cache_file),
    )


app.config["LINT_ENGINE"] = build_engine(VAULT_DIR, CACHE_FILE)


@app.route("/")
def index():
    engine = app.config["LINT_ENGINE"]
    return jsonify({"name": "vault-linter", "vault": engine.vault.vault_dir})


def _startup(engine: LintEngine) -> None:
    decision = engine.analyze_cache_on_startup()
    log.info("Startup analysis done: %s", decision.to_dict())
    scan = engine.settings.option("background_scan", {})
    scanner.configure(engine, scan.get("enabled", True), scan.get("interval_seconds", 30))


def main():
    """Entry point for `vault-linter` CLI command."""
    parser = argparse.ArgumentParser(description="Vault Linter")
    parser.add_argument(
        "--port", type=int, default=PORT, help=f"Port to listen on (default: {PORT})"
    )
    parser.add_argument("--vault", default=None, help=f"Vault directory (default: {VAULT_DIR})")
    parser.add_argument("--cache", default=None, help=f"Cache file (default: {CACHE_FILE})")
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    cli_args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if cli_args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if cli_args.vault or cli_args.cache:
        app.config["LINT_ENGINE"] = build_engine(
            cli_args.vault or VAULT_DIR, cli_args.cache or CACHE_FILE
        )
    engine = app.config["LINT_ENGINE"]

    atexit.register(scanner.stop)
    atexit.register(engine.shutdown)
    threading.Thread(target=_startup, args=(engine,), daemon=True).start()

    print("\n  Vault Linter v0.1.0")
    print(f"  Port: {cli_args.port}")
    print(f"  Vault: {engine.vault.vault_dir}")
    print(f"  Cache: {engine.cache.cache_file}\n")

    app.run(port=cli_args.port, threaded=True)


if __name__ == "__main__":
    main()
