"""Vault document access: path-safe reads, writes, renames and frontmatter parsing."""

import datetime as _dt
import os
from dataclasses import dataclass

import yaml

from config import DOCUMENT_EXTENSION
from services.errors import DocumentNotFound


@dataclass(frozen=True)
class DocumentInfo:
    path: str
    mod_time: int  # milliseconds
    created: int  # milliseconds
    size: int


def _plain(value, seen: dict):
    """Copy of a parsed YAML value with dates as ISO strings at any depth."""
    if isinstance(value, _dt.date):
        return value.isoformat()
    if not isinstance(value, dict | list):
        return value
    # Aliases can make a node contain itself; reuse the copy already under way.
    if id(value) in seen:
        return seen[id(value)]
    if isinstance(value, list):
        out = seen[id(value)] = []
        out.extend(_plain(item, seen) for item in value)
    else:
        out = seen[id(value)] = {}
        for k, v in value.items():
            out[_plain(k, seen)] = _plain(v, seen)
    return out


def parse_frontmatter(content: str) -> tuple[dict, str, str | None]:
    """Extract YAML frontmatter and body. Returns (frontmatter, body, parse_error)."""
    if not content.startswith("---"):
        return {}, content, None

    lines = content.split("\n")
    end_idx = None
    for i, line in enumerate(lines[1:], 1):
        if line.strip() == "---":
            end_idx = i
            break

    if end_idx is None:
        return {}, content, None

    body = "\n".join(lines[end_idx + 1 :]).lstrip("\n")
    try:
        raw = yaml.safe_load("\n".join(lines[1:end_idx]))
    except yaml.YAMLError as e:
        return {}, body, str(e).splitlines()[0] if str(e) else "invalid YAML"
    if raw is None:
        return {}, body, None
    if not isinstance(raw, dict):
        return {}, body, f"expected a mapping, got {type(raw).__name__}"

    # Dates become ISO strings so API consumers and text fields see plain strings.
    seen: dict = {}
    frontmatter = {str(k): _plain(v, seen) for k, v in raw.items()}
    return frontmatter, body, None


def _millis(seconds: float) -> int:
    return int(seconds * 1000)


class Vault:
    """A directory of markdown documents addressed by vault-relative POSIX paths."""

    def __init__(self, vault_dir: str):
        self.vault_dir = vault_dir

    def _safe_path(self, rel_path: str) -> tuple[str, str | None]:
        """Resolve and validate that path stays within the vault. Returns (abs_path, error)."""
        abs_path = os.path.realpath(os.path.join(self.vault_dir, rel_path))
        vault_real = os.path.realpath(self.vault_dir)
        if abs_path != vault_real and not abs_path.startswith(vault_real + os.sep):
            return abs_path, "Path traversal detected"
        return abs_path, None

    def is_document(self, rel_path: str) -> bool:
        return rel_path.endswith(DOCUMENT_EXTENSION)

    def stat(self, rel_path: str) -> DocumentInfo | None:
        """Existence plus timestamps; None if missing or outside the vault."""
        abs_path, err = self._safe_path(rel_path)
        if err or not os.path.isfile(abs_path):
            return None
        st = os.stat(abs_path)
        return DocumentInfo(
            path=rel_path,
            mod_time=st.st_mtime_ns // 1_000_000,
            created=_millis(getattr(st, "st_birthtime", st.st_ctime)),
            size=st.st_size,
        )

    def mod_time(self, rel_path: str) -> int | None:
        info = self.stat(rel_path)
        return info.mod_time if info else None

    def list_documents(self) -> list[str]:
        """All markdown documents, skipping hidden directories, sorted by path."""
        docs = []
        root = os.path.realpath(self.vault_dir)
        if not os.path.isdir(root):
            return docs
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for fname in filenames:
                if fname.endswith(DOCUMENT_EXTENSION):
                    rel = os.path.relpath(os.path.join(dirpath, fname), root)
                    docs.append(rel.replace(os.sep, "/"))
        return sorted(docs)

    def read_metadata(self, rel_path: str) -> tuple[dict, str, str | None]:
        """Parsed frontmatter, body and parse error. Raises DocumentNotFound."""
        abs_path, err = self._safe_path(rel_path)
        if err or not os.path.isfile(abs_path):
            raise DocumentNotFound(rel_path)
        try:
            with open(abs_path, encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError as e:
            raise DocumentNotFound(rel_path) from e
        except UnicodeDecodeError as e:
            return {}, "", f"not UTF-8 text: {e.reason}"
        return parse_frontmatter(content)

    def read_file(self, rel_path: str) -> dict:
        """Returns {path, content, frontmatter, body, modified, size} or {error}."""
        abs_path, err = self._safe_path(rel_path)
        if err:
            return {"error": err}
        if not os.path.isfile(abs_path):
            return {"error": "File not found"}
        try:
            with open(abs_path, encoding="utf-8") as f:
                content = f.read()
            stat = os.stat(abs_path)
        except OSError as e:
            return {"error": str(e)}
        fm, body, parse_error = parse_frontmatter(content)
        return {
            "path": rel_path,
            "content": content,
            "frontmatter": fm,
            "frontmatter_error": parse_error,
            "body": body,
            "modified": _dt.datetime.fromtimestamp(stat.st_mtime).isoformat(),
            "size": stat.st_size,
        }

    def write_file(self, rel_path: str, content: str) -> dict:
        """Create or overwrite a document. Returns {ok, path} or {error}."""
        abs_path, err = self._safe_path(rel_path)
        if err:
            return {"error": err}
        try:
            os.makedirs(os.path.dirname(abs_path), exist_ok=True)
            with open(abs_path, "w", encoding="utf-8") as f:
                f.write(content)
        except OSError as e:
            return {"error": str(e)}
        return {"ok": True, "path": rel_path}

    def rename_file(self, old_path: str, new_path: str) -> dict:
        """Move a document within the vault. Returns {ok, old_path, path} or {error}."""
        old_abs, err = self._safe_path(old_path)
        if err:
            return {"error": err}
        new_abs, err = self._safe_path(new_path)
        if err:
            return {"error": err}
        if not os.path.isfile(old_abs):
            return {"error": "File not found"}
        if os.path.exists(new_abs):
            return {"error": f"Destination exists: {new_path}"}
        try:
            os.makedirs(os.path.dirname(new_abs), exist_ok=True)
            os.rename(old_abs, new_abs)
        except OSError as e:
            return {"error": str(e)}
        return {"ok": True, "old_path": old_path, "path": new_path}

    def delete_file(self, rel_path: str) -> dict:
        abs_path, err = self._safe_path(rel_path)
        if err:
            return {"error": err}
        if not os.path.isfile(abs_path):
            return {"error": "File not found"}
        try:
            os.remove(abs_path)
        except OSError as e:
            return {"error": str(e)}
        return {"ok": True, "path": rel_path}
