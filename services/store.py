"""In-memory violation store with change notification and batching."""

import logging
import threading
from datetime import UTC, datetime

from services.models import Violation

log = logging.getLogger(__name__)

CHANGED = "changed"
BATCH_START = "batch_start"
BATCH_END = "batch_end"


class ViolationStore:
    """Maps document path to its current violations.

    Listeners are called with one of CHANGED, BATCH_START or BATCH_END. Inside
    a batch, mutations only mark the store dirty; the outermost end_batch()
    emits BATCH_END and then a single CHANGED if anything was mutated.
    """

    def __init__(self):
        self._by_path: dict[str, list[Violation]] = {}
        self._last_full_validation: str | None = None
        self._listeners: list = []
        self._batch_depth = 0
        self._pending_change = False
        self._lock = threading.RLock()

    # ── Observers ─────────────────────────────────────────────────────────

    def on_change(self, listener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def off_change(self, listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _emit(self, event: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                log.exception("Violation store listener failed on %s", event)

    def _notify(self) -> None:
        if self._batch_depth:
            self._pending_change = True
        else:
            self._emit(CHANGED)

    # ── Batching ──────────────────────────────────────────────────────────

    def begin_batch(self) -> None:
        with self._lock:
            self._batch_depth += 1
            if self._batch_depth == 1:
                self._emit(BATCH_START)

    def end_batch(self) -> None:
        with self._lock:
            if self._batch_depth == 0:
                return
            self._batch_depth -= 1
            if self._batch_depth:
                return
            self._emit(BATCH_END)
            if self._pending_change:
                self._pending_change = False
                self._emit(CHANGED)

    @property
    def in_batch(self) -> bool:
        return self._batch_depth > 0

    # ── Mutations ─────────────────────────────────────────────────────────

    def set_document_violations(self, path: str, violations: list[Violation]) -> None:
        """Replace the violations for `path`. An empty list removes the entry."""
        with self._lock:
            if violations:
                self._by_path[path] = list(violations)
            elif self._by_path.pop(path, None) is None:
                return
            self._notify()

    def remove_document(self, path: str) -> None:
        with self._lock:
            if self._by_path.pop(path, None) is None:
                return
            self._notify()

    def rename_document(self, old_path: str, new_path: str) -> None:
        """Move violations to `new_path`, rewriting their path, with one notification."""
        with self._lock:
            violations = self._by_path.pop(old_path, None)
            if violations is None:
                return
            self._by_path[new_path] = [v.with_path(new_path) for v in violations]
            self._notify()

    def clear(self) -> None:
        with self._lock:
            self._by_path = {}
            self._notify()

    def mark_full_validation(self) -> None:
        with self._lock:
            self._last_full_validation = datetime.now(UTC).isoformat()

    # ── Queries ───────────────────────────────────────────────────────────

    def get_document_violations(self, path: str) -> list[Violation]:
        with self._lock:
            return list(self._by_path.get(path, []))

    def get_all_violations(self) -> dict[str, list[Violation]]:
        with self._lock:
            return {p: list(v) for p, v in self._by_path.items()}

    def get_total_violation_count(self, exclude_warnings: bool = False) -> int:
        with self._lock:
            return sum(
                1
                for violations in self._by_path.values()
                for v in violations
                if not (exclude_warnings and v.is_warning)
            )

    def get_document_count(self, exclude_warnings: bool = False) -> int:
        """Number of documents with at least one (counted) violation."""
        with self._lock:
            if not exclude_warnings:
                return len(self._by_path)
            return sum(
                1 for violations in self._by_path.values()
                if any(not v.is_warning for v in violations)
            )

    def paths_with_schema(self, schema_id: str) -> list[str]:
        with self._lock:
            return [
                p for p, violations in self._by_path.items()
                if any(v.schema_id == schema_id for v in violations)
            ]

    @property
    def last_full_validation(self) -> str | None:
        return self._last_full_validation
