"""Lint engine: keeps the violation store and the durable cache in step with the vault.

All validation passes run under one re-entrant lock, so a pass never
interleaves with another. Document events that arrive before the startup
analysis finishes are queued and replayed once afterwards. A rename is only
revalidated after a Changed event for the new path confirms the move, or
after a short fallback timeout, whichever comes first.
"""

import logging
import threading
from dataclasses import dataclass

from config import RENAME_CONFIRM_TIMEOUT_SECONDS
from services.accumulate import validate_document_across_schemas
from services.cache import CacheDecision, ValidationCache, hash_schema
from services.errors import DocumentNotFound, UnknownSchema
from services.models import SchemaMapping, Violation
from services.query import QueryIndex, matches_property_filter
from services.settings import SettingsState
from services.store import ViolationStore
from services.vault import DocumentInfo, Vault

log = logging.getLogger(__name__)


# ── Inbound events ───────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Changed:
    path: str


@dataclass(frozen=True)
class Renamed:
    old_path: str
    new_path: str


@dataclass(frozen=True)
class Deleted:
    path: str


DocumentEvent = Changed | Renamed | Deleted


def event_from_dict(data: dict) -> DocumentEvent:
    """Build an event from {type, path, old_path?}. Raises ValueError on bad input."""
    kind = data.get("type")
    path = data.get("path")
    if not isinstance(path, str) or not path:
        raise ValueError("path is required")
    if kind == "changed":
        return Changed(path)
    if kind == "deleted":
        return Deleted(path)
    if kind == "renamed":
        old_path = data.get("old_path")
        if not isinstance(old_path, str) or not old_path:
            raise ValueError("old_path is required for renamed events")
        return Renamed(old_path, path)
    raise ValueError('type must be "changed", "renamed" or "deleted"')


# ── Engine ───────────────────────────────────────────────────────────────────


class LintEngine:
    def __init__(
        self,
        settings: SettingsState,
        vault: Vault,
        index: QueryIndex,
        store: ViolationStore,
        cache: ValidationCache,
        timer_factory=None,
        rename_timeout: float = RENAME_CONFIRM_TIMEOUT_SECONDS,
    ):
        self.settings = settings
        self.vault = vault
        self.index = index
        self.store = store
        self.cache = cache
        self._timer_factory = timer_factory or threading.Timer
        self._rename_timeout = rename_timeout
        self._lock = threading.RLock()
        self._event_lock = threading.Lock()
        self._startup_complete = False
        self._pending: list[DocumentEvent] = []
        self._awaiting_rename: dict[str, object] = {}

    @property
    def startup_complete(self) -> bool:
        return self._startup_complete

    # ── Schema matching ───────────────────────────────────────────────────

    def enabled_schemas(self) -> list[SchemaMapping]:
        return sorted(
            (s for s in self.settings.schema_mappings if s.enabled), key=lambda s: s.order
        )

    def matching_schemas(
        self, path: str, frontmatter: dict, info: DocumentInfo | None = None
    ) -> list[SchemaMapping]:
        """Enabled schemas whose query and property filter select the document."""
        return [
            s
            for s in self.enabled_schemas()
            if self.index.matches(path, s.query)
            and matches_property_filter(s.property_filter, frontmatter, info)
        ]

    def require_schema(self, schema_id: str) -> SchemaMapping:
        schema = self.settings.schema(schema_id)
        if schema is None:
            raise UnknownSchema(schema_id)
        return schema

    def matching_paths(self, schema: SchemaMapping) -> list[str]:
        """Indexed documents a schema's query selects, before property filtering."""
        return self.index.paths_for_query(schema.query)

    # ── Validation passes ─────────────────────────────────────────────────

    def _forget(self, path: str) -> None:
        self.index.remove(path)
        self.store.remove_document(path)
        self.cache.remove_document(path)

    def validate_document(self, path: str) -> list[Violation]:
        """Re-read, re-match and re-validate one document, replacing its results."""
        with self._lock:
            info = self.vault.stat(path)
            if info is None or not self.vault.is_document(path):
                self._forget(path)
                return []
            try:
                frontmatter, body, parse_error = self.vault.read_metadata(path)
            except DocumentNotFound:
                self._forget(path)
                return []

            self.index.update(path, frontmatter, body)
            matched = self.matching_schemas(path, frontmatter, info)
            violations = validate_document_across_schemas(
                frontmatter,
                matched,
                path,
                self.settings.custom_types,
                self.settings.validation_options,
                parse_error,
            )
            if parse_error:
                log.warning("Malformed frontmatter in %s: %s", path, parse_error)

            # A delete that raced the read wins over the stale result.
            if self.vault.stat(path) is None:
                self._forget(path)
                return []
            self.store.set_document_violations(path, violations)
            self.cache.update_document(path, info.mod_time, [s.id for s in matched], violations)
            return violations

    def validate_all(self) -> int:
        """Validate every document from scratch. Returns the number validated."""
        with self._lock:
            paths = self.vault.list_documents()
            self.store.begin_batch()
            try:
                self.store.clear()
                self.cache.clear()
                self.index.clear()
                for path in paths:
                    self.validate_document(path)
                for schema in self.settings.schema_mappings:
                    self.cache.update_schema_hash(schema, self.settings.custom_types)
                self.cache.set_settings_hash(self.settings.validation_options)
                self.store.mark_full_validation()
            finally:
                self.store.end_batch()
        log.info("Validated %d documents", len(paths))
        return len(paths)

    def revalidate_schema(self, schema_id: str) -> list[str]:
        """Re-run every document that held or now matches a schema. Returns those paths."""
        with self._lock:
            schema = self.settings.schema(schema_id)
            self.store.begin_batch()
            try:
                candidates = list(self.cache.invalidate_schema(schema_id))
                candidates.extend(self.store.paths_with_schema(schema_id))
                if schema is not None and schema.enabled:
                    candidates.extend(self.matching_paths(schema))
                candidates = list(dict.fromkeys(candidates))
                for path in candidates:
                    self.validate_document(path)
                if schema is not None:
                    self.cache.update_schema_hash(schema, self.settings.custom_types)
                else:
                    self.cache.drop_schema_hash(schema_id)
            finally:
                self.store.end_batch()
        log.info("Revalidated schema %s: %d documents", schema_id, len(candidates))
        return candidates

    def analyze_cache_on_startup(self) -> CacheDecision:
        """Load the snapshot, recompute only what changed, then replay queued events."""
        try:
            with self._lock:
                self.index.rebuild(self.vault)
                self.cache.load()
                schemas = self.settings.schema_mappings
                self.store.begin_batch()
                try:
                    decision = self.cache.analyze(
                        schemas,
                        self.settings.custom_types,
                        self.settings.validation_options,
                        self.vault.mod_time,
                    )
                    if decision.full_revalidation_needed:
                        self.validate_all()
                    else:
                        self._apply_decision(decision)
                finally:
                    self.store.end_batch()
        finally:
            self._drain_pending()
        return decision

    def _drain_pending(self) -> None:
        """Replay queued events in arrival order; only an empty queue opens the gate."""
        replayed = 0
        while True:
            with self._event_lock:
                pending = list(dict.fromkeys(self._pending))
                self._pending = []
                if not pending:
                    self._startup_complete = True
                    break
            for event in pending:
                try:
                    self._dispatch(event)
                except OSError:
                    log.exception("Replaying %s failed", event)
            replayed += len(pending)
        if replayed:
            log.info("Replayed %d document events queued during startup", replayed)

    def _apply_decision(self, decision: CacheDecision) -> None:
        for path, violations in self.cache.load_cached_violations(
            self.settings.schema_mappings
        ).items():
            self.store.set_document_violations(path, violations)
        for path in decision.documents_to_revalidate:
            self.store.remove_document(path)
        for schema_id in decision.schemas_to_revalidate:
            self.revalidate_schema(schema_id)
        # Documents created while nothing was watching have no entry at all.
        unseen = [p for p in self.index.paths() if not self.cache.has_document(p)]
        for path in dict.fromkeys([*decision.documents_to_revalidate, *unseen]):
            if not self.cache.has_document(path):
                self.validate_document(path)

    def rebuild_full_index(self) -> int:
        """Drop all cached state, re-index and re-validate the vault, and persist at once."""
        with self._lock:
            count = self.validate_all()
        self.cache.flush()
        return count

    # ── Settings changes ──────────────────────────────────────────────────

    def on_settings_changed(self, changed_schema_ids: list[str] | None = None) -> list[str]:
        """Revalidate whatever the new settings affect. Returns revalidated schema ids.

        Without `changed_schema_ids` the affected schemas are found by comparing
        each schema's digest with the one stored in the cache.
        """
        with self._lock:
            if self.cache.settings_changed(self.settings.validation_options):
                log.info("Validation options changed, revalidating everything")
                self.validate_all()
                return [s.id for s in self.settings.schema_mappings]

            if changed_schema_ids is not None:
                changed = list(dict.fromkeys(changed_schema_ids))
            else:
                types = self.settings.custom_types
                current = {s.id: s for s in self.settings.schema_mappings}
                changed = [
                    sid
                    for sid, schema in current.items()
                    if self.cache.schema_hash(sid) != hash_schema(schema, types)
                ]
                changed.extend(sid for sid in self.cache.schema_ids() if sid not in current)
            if not changed:
                return []
            self.store.begin_batch()
            try:
                for sid in changed:
                    self.revalidate_schema(sid)
            finally:
                self.store.end_batch()
            return changed

    # ── Document events ───────────────────────────────────────────────────

    def handle_event(self, event: DocumentEvent) -> bool:
        """Apply an event now, or queue it until startup finishes. Returns True if queued."""
        with self._event_lock:
            if not self._startup_complete:
                self._pending.append(event)
                return True
        self._dispatch(event)
        return False

    def _dispatch(self, event: DocumentEvent) -> None:
        if isinstance(event, Changed):
            self.on_document_changed(event.path)
        elif isinstance(event, Renamed):
            self.on_document_renamed(event.old_path, event.new_path)
        elif isinstance(event, Deleted):
            self.on_document_deleted(event.path)

    def on_document_changed(self, path: str) -> None:
        with self._lock:
            if path in self._awaiting_rename:
                self._confirm_rename(path)
                return
            self.validate_document(path)

    def on_document_renamed(self, old_path: str, new_path: str) -> None:
        with self._lock:
            superseded = self._awaiting_rename.pop(old_path, None)
            if superseded is not None:
                superseded.cancel()
            self.index.rename(old_path, new_path)
            self.store.rename_document(old_path, new_path)
            self.cache.rename_document(old_path, new_path)

            previous = self._awaiting_rename.pop(new_path, None)
            if previous is not None:
                previous.cancel()
            timer = self._timer_factory(self._rename_timeout, self._confirm_rename, (new_path,))
            timer.daemon = True
            self._awaiting_rename[new_path] = timer
            timer.start()

    def _confirm_rename(self, path: str) -> None:
        """Validate a renamed document once, from whichever trigger fires first."""
        with self._lock:
            timer = self._awaiting_rename.pop(path, None)
            if timer is None:
                return
            timer.cancel()
            self.validate_document(path)

    def on_document_deleted(self, path: str) -> None:
        with self._lock:
            timer = self._awaiting_rename.pop(path, None)
            if timer is not None:
                timer.cancel()
            self._forget(path)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def shutdown(self) -> None:
        """Cancel pending rename timers and write the snapshot now."""
        with self._lock:
            for timer in self._awaiting_rename.values():
                timer.cancel()
            self._awaiting_rename = {}
        self.cache.flush()

    def status(self, exclude_warnings: bool = False) -> dict:
        return {
            "startup_complete": self._startup_complete,
            "pending_events": len(self._pending),
            "awaiting_rename": sorted(self._awaiting_rename),
            "violation_count": self.store.get_total_violation_count(exclude_warnings),
            "document_count": self.store.get_document_count(exclude_warnings),
            "last_full_validation": self.store.last_full_validation,
            "indexed_documents": len(self.index.paths()),
            "cache": self.cache.stats(),
        }
