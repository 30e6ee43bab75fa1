"""Durable validation cache: per-document results keyed by modification time.

The snapshot is a JSON file:

    {
      "version": 1,
      "settingsHash": "...",
      "schemaHashes": {"<schema id>": "..."},
      "documents": {
        "<path>": {
          "modTime": 1718000000000,
          "matchedSchemaIds": ["<schema id>"],
          "violations": [{"path", "schemaId", "field", "kind", "message",
                          "expected"?, "actual"?}]
        }
      }
    }

An entry stays valid while its modTime equals the document's current
modification time and none of its matched schemas changed. Writes are
debounced through DebouncedWriter; flush() forces one at shutdown.
"""

import hashlib
import json
import logging
import os
import threading
from dataclasses import dataclass, field

from config import CACHE_VERSION, SAVE_DEBOUNCE_SECONDS
from services.errors import SnapshotUnreadable, VersionMismatch, WriteFailure
from services.models import (
    VIOLATION_KINDS,
    CompositeType,
    SchemaMapping,
    ValidationOptions,
    Violation,
)
from services.scheduler import DebouncedWriter
from services.types_graph import resolve_referenced_types

log = logging.getLogger(__name__)


# ── Hashing ──────────────────────────────────────────────────────────────────


def _digest(payload) -> str:
    """Stable short digest. Dict keys are sorted; list order is significant."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def hash_schema(schema: SchemaMapping, types: list[CompositeType]) -> str:
    """Digest of everything about a schema that can change its violations."""
    referenced = resolve_referenced_types(schema.fields, types)
    return _digest({
        "fields": [f.to_dict() for f in schema.fields],
        "query": schema.query,
        "enabled": schema.enabled,
        "property_filter": schema.property_filter.to_dict() if schema.property_filter else None,
        "unknown_fields": schema.unknown_fields,
        "types": [{"name": t.name, "fields": [f.to_dict() for f in t.fields]} for t in referenced],
    })


def hash_settings(options: ValidationOptions) -> str:
    """Digest of the global options that change validation outcomes."""
    return _digest({
        "unknown_field_warning": options.unknown_field_warning,
        "host_properties": sorted(p.lower() for p in options.host_properties),
    })


# ── Snapshot entries ─────────────────────────────────────────────────────────


def violation_to_snapshot(v: Violation) -> dict:
    data = {
        "path": v.path,
        "schemaId": v.schema_id,
        "field": v.field,
        "kind": v.kind,
        "message": v.message,
    }
    if v.expected is not None:
        data["expected"] = v.expected
    if v.actual is not None:
        data["actual"] = v.actual
    if v.warned:
        data["warned"] = True
    return data


def violation_from_snapshot(data: dict, schema_name: str) -> Violation:
    return Violation(
        path=data["path"],
        schema_id=data["schemaId"],
        schema_name=schema_name,
        field=data["field"],
        kind=data["kind"],
        message=data["message"],
        expected=data.get("expected"),
        actual=data.get("actual"),
        warned=data.get("warned") is True,
    )


def _valid_snapshot_violation(data) -> bool:
    if not isinstance(data, dict):
        return False
    if not all(isinstance(data.get(k), str) for k in ("path", "schemaId", "field", "message")):
        return False
    return data.get("kind") in VIOLATION_KINDS


@dataclass
class CacheEntry:
    mod_time: int
    matched_schema_ids: list[str] = field(default_factory=list)
    violations: list[dict] = field(default_factory=list)

    def to_snapshot(self) -> dict:
        return {
            "modTime": self.mod_time,
            "matchedSchemaIds": list(self.matched_schema_ids),
            "violations": list(self.violations),
        }

    @classmethod
    def from_snapshot(cls, data: dict) -> "CacheEntry | None":
        if not isinstance(data, dict) or not isinstance(data.get("modTime"), int):
            return None
        ids = data.get("matchedSchemaIds") or []
        raw = data.get("violations") or []
        if not isinstance(ids, list) or not isinstance(raw, list):
            return None
        return cls(
            mod_time=data["modTime"],
            matched_schema_ids=[str(i) for i in ids],
            violations=[v for v in raw if _valid_snapshot_violation(v)],
        )


@dataclass
class CacheDecision:
    """What must be recomputed after loading the snapshot."""

    full_revalidation_needed: bool = False
    documents_to_revalidate: list[str] = field(default_factory=list)
    schemas_to_revalidate: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "full_revalidation_needed": self.full_revalidation_needed,
            "documents_to_revalidate": self.documents_to_revalidate,
            "schemas_to_revalidate": self.schemas_to_revalidate,
        }


# ── Cache ────────────────────────────────────────────────────────────────────


class ValidationCache:
    def __init__(self, cache_file: str, delay: float = SAVE_DEBOUNCE_SECONDS, timer_factory=None):
        self.cache_file = cache_file
        self._lock = threading.RLock()
        self._settings_hash: str | None = None
        self._schema_hashes: dict[str, str] = {}
        self._documents: dict[str, CacheEntry] = {}
        self._writer = DebouncedWriter(self._write_snapshot, delay, timer_factory)

    # ── Persistence ───────────────────────────────────────────────────────

    def _read_snapshot(self) -> dict:
        try:
            with open(self.cache_file) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SnapshotUnreadable(str(e)) from e
        if not isinstance(data, dict):
            raise SnapshotUnreadable("snapshot root is not an object")
        if data.get("version") != CACHE_VERSION:
            raise VersionMismatch(data.get("version"), CACHE_VERSION)
        return data

    def load(self) -> None:
        """Read the snapshot. Missing, corrupt or outdated files leave the cache empty."""
        try:
            data = self._read_snapshot()
        except SnapshotUnreadable as e:
            log.debug("No usable validation cache at %s: %s", self.cache_file, e)
            self._reset(None)
            return
        except VersionMismatch as e:
            log.info("Discarding validation cache: %s", e)
            self._reset(None)
            return

        hashes = data.get("schemaHashes")
        documents = data.get("documents")
        with self._lock:
            settings_hash = data.get("settingsHash")
            self._settings_hash = settings_hash if isinstance(settings_hash, str) else None
            self._schema_hashes = {
                str(k): v for k, v in (hashes if isinstance(hashes, dict) else {}).items()
                if isinstance(v, str)
            }
            self._documents = {}
            for path, raw in (documents if isinstance(documents, dict) else {}).items():
                entry = CacheEntry.from_snapshot(raw)
                if entry is not None:
                    self._documents[path] = entry
        log.info("Loaded validation cache: %d documents", len(self._documents))

    def _snapshot(self) -> dict:
        with self._lock:
            return {
                "version": CACHE_VERSION,
                "settingsHash": self._settings_hash,
                "schemaHashes": dict(self._schema_hashes),
                "documents": {p: e.to_snapshot() for p, e in self._documents.items()},
            }

    def _write_snapshot(self) -> None:
        data = self._snapshot()
        tmp_path = self.cache_file + ".tmp"
        try:
            os.makedirs(os.path.dirname(self.cache_file) or ".", exist_ok=True)
            with open(tmp_path, "w") as f:
                json.dump(data, f)
            os.replace(tmp_path, self.cache_file)
        except OSError as e:
            raise WriteFailure(f"{self.cache_file}: {e}") from e

    def _changed(self) -> None:
        self._writer.schedule_write()

    def flush(self) -> bool:
        """Write now if anything changed since the last write."""
        return self._writer.flush_now()

    def cancel_pending_write(self) -> None:
        self._writer.cancel_scheduled_write()

    def _reset(self, settings_hash: str | None) -> None:
        with self._lock:
            self._settings_hash = settings_hash
            self._schema_hashes = {}
            self._documents = {}

    # ── Startup analysis ──────────────────────────────────────────────────

    def analyze(
        self,
        schemas: list[SchemaMapping],
        types: list[CompositeType],
        options: ValidationOptions,
        lookup_mod_time,
    ) -> CacheDecision:
        """Decide the minimal revalidation scope against current configuration.

        `lookup_mod_time(path)` returns the document's modification time in
        milliseconds, or None if it no longer exists.
        """
        settings_hash = hash_settings(options)
        if self.settings_changed(options):
            log.info("Validation settings changed, full revalidation needed")
            self._reset(settings_hash)
            self._changed()
            return CacheDecision(
                full_revalidation_needed=True,
                schemas_to_revalidate=[s.id for s in schemas],
            )

        # The writer lock is never taken while holding ours.
        with self._lock:
            current = {s.id: hash_schema(s, types) for s in schemas}
            invalid = [sid for sid, h in current.items() if self._schema_hashes.get(sid) != h]
            for sid in list(self._schema_hashes):
                if sid not in current:
                    invalid.append(sid)
                    del self._schema_hashes[sid]
            invalid_set = set(invalid)

            revalidate: list[str] = []
            for path, entry in list(self._documents.items()):
                mod_time = lookup_mod_time(path)
                if mod_time is None:
                    del self._documents[path]
                elif mod_time != entry.mod_time or invalid_set.intersection(
                    entry.matched_schema_ids
                ):
                    revalidate.append(path)
                    del self._documents[path]

        self._changed()
        log.info(
            "Cache analysis: %d documents and %d schemas to revalidate",
            len(revalidate),
            len(invalid),
        )
        return CacheDecision(documents_to_revalidate=revalidate, schemas_to_revalidate=invalid)

    # ── Mutations ─────────────────────────────────────────────────────────

    def update_document(
        self,
        path: str,
        mod_time: int,
        matched_schema_ids: list[str],
        violations: list[Violation],
    ) -> None:
        """Replace the entry for `path` wholesale."""
        with self._lock:
            self._documents[path] = CacheEntry(
                mod_time=mod_time,
                matched_schema_ids=list(matched_schema_ids),
                violations=[violation_to_snapshot(v) for v in violations],
            )
        self._changed()

    def update_schema_hash(self, schema: SchemaMapping, types: list[CompositeType]) -> None:
        with self._lock:
            self._schema_hashes[schema.id] = hash_schema(schema, types)
        self._changed()

    def drop_schema_hash(self, schema_id: str) -> None:
        with self._lock:
            self._schema_hashes.pop(schema_id, None)
        self._changed()

    def set_settings_hash(self, options: ValidationOptions) -> None:
        with self._lock:
            self._settings_hash = hash_settings(options)
        self._changed()

    def settings_changed(self, options: ValidationOptions) -> bool:
        with self._lock:
            return self._settings_hash != hash_settings(options)

    def invalidate_schema(self, schema_id: str) -> list[str]:
        """Evict every entry that matched `schema_id`. Returns the evicted paths."""
        with self._lock:
            evicted = [
                p for p, e in self._documents.items() if schema_id in e.matched_schema_ids
            ]
            for path in evicted:
                del self._documents[path]
            # Until revalidation finishes the stored hash must not look current.
            self._schema_hashes.pop(schema_id, None)
        self._changed()
        return evicted

    def remove_document(self, path: str) -> None:
        with self._lock:
            removed = self._documents.pop(path, None)
        if removed is not None:
            self._changed()

    def rename_document(self, old_path: str, new_path: str) -> None:
        """Move an entry and rewrite the path stored in each of its violations."""
        with self._lock:
            entry = self._documents.pop(old_path, None)
            if entry is None:
                return
            entry.violations = [{**v, "path": new_path} for v in entry.violations]
            self._documents[new_path] = entry
        self._changed()

    def clear(self) -> None:
        """Drop all document entries and schema hashes. The settings hash is kept."""
        with self._lock:
            self._schema_hashes = {}
            self._documents = {}
        self._changed()

    # ── Queries ───────────────────────────────────────────────────────────

    def has_document(self, path: str) -> bool:
        with self._lock:
            return path in self._documents

    def get_entry(self, path: str) -> CacheEntry | None:
        with self._lock:
            return self._documents.get(path)

    def paths(self) -> list[str]:
        with self._lock:
            return list(self._documents)

    def schema_ids(self) -> list[str]:
        with self._lock:
            return list(self._schema_hashes)

    def schema_hash(self, schema_id: str) -> str | None:
        with self._lock:
            return self._schema_hashes.get(schema_id)

    @property
    def settings_hash(self) -> str | None:
        return self._settings_hash

    def get_document_violations(self, path: str, schemas: list[SchemaMapping]) -> list[Violation]:
        entry = self.get_entry(path)
        if entry is None:
            return []
        names = {s.id: s.name for s in schemas}
        return [
            violation_from_snapshot(v, names[v["schemaId"]])
            for v in entry.violations
            if v["schemaId"] in names
        ]

    def load_cached_violations(self, schemas: list[SchemaMapping]) -> dict[str, list[Violation]]:
        """Cached violations per document. Violations of unconfigured schemas are dropped."""
        names = {s.id: s.name for s in schemas}
        with self._lock:
            return {
                path: [
                    violation_from_snapshot(v, names[v["schemaId"]])
                    for v in entry.violations
                    if v["schemaId"] in names
                ]
                for path, entry in self._documents.items()
            }

    def stats(self) -> dict:
        with self._lock:
            return {
                "documents": len(self._documents),
                "schemas": len(self._schema_hashes),
                "violations": sum(len(e.violations) for e in self._documents.values()),
                "dirty": self._writer.dirty,
                "cache_file": self.cache_file,
            }
