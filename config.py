"""Shared constants and path configuration for Vault Linter."""

import json
import os

_SETTINGS_FILE = os.environ.get(
    "VAULT_LINTER_SETTINGS", os.path.expanduser("~/.config/vault-linter/settings.json")
)
_DEFAULT_VAULT_DIR = os.path.expanduser("~/vault")
_DEFAULT_CACHE_FILE = os.path.expanduser("~/.config/vault-linter/validation-cache.json")


def _read_setting(*keys, default=None):
    """Read a nested setting from the global settings file."""
    try:
        with open(_SETTINGS_FILE) as f:
            data = json.load(f)
        for k in keys:
            data = data[k]
        return data
    except (FileNotFoundError, json.JSONDecodeError, KeyError, TypeError):
        return default


def settings_file() -> str:
    """Path of the settings JSON file."""
    return _SETTINGS_FILE


VAULT_DIR = _read_setting("vault_dir", default=_DEFAULT_VAULT_DIR)
CACHE_FILE = _read_setting("cache_file", default=_DEFAULT_CACHE_FILE)
PORT = 4244

# Durable snapshot format. Bump to force a fresh start on incompatible changes.
CACHE_VERSION = 1
SAVE_DEBOUNCE_SECONDS = 2.0
RENAME_CONFIRM_TIMEOUT_SECONDS = 0.5

DOCUMENT_EXTENSION = ".md"
DEFAULT_HOST_PROPERTIES = ["aliases", "tags", "cssclasses", "cssclass"]
