"""Background vault scanner: polls modification times and feeds change events to the engine.

Catches edits made by other programs while the server is running. Edits made
while it was down are handled by the startup cache analysis instead.
"""

import logging
import threading
from datetime import datetime

from services.engine import Changed, Deleted

log = logging.getLogger(__name__)


class BackgroundScanner:
    def __init__(self):
        self._timer = None
        self._enabled = False
        self._interval = 30  # seconds
        self._engine = None
        self._known: dict[str, int] = {}
        self._last_scanned = None
        self._lock = threading.Lock()

    def configure(self, engine, enabled: bool, interval_seconds: int) -> None:
        with self._lock:
            self._engine = engine
            self._enabled = enabled
            self._interval = interval_seconds
            self._cancel()
            if enabled:
                self._known = self._snapshot()
                self._schedule()

    def stop(self) -> None:
        with self._lock:
            self._enabled = False
            self._cancel()

    def _cancel(self) -> None:
        if self._timer:
            self._timer.cancel()
            self._timer = None

    def _schedule(self) -> None:
        self._timer = threading.Timer(self._interval, self._run)
        self._timer.daemon = True
        self._timer.start()

    def _snapshot(self) -> dict[str, int]:
        vault = self._engine.vault
        mtimes = {}
        for path in vault.list_documents():
            mod_time = vault.mod_time(path)
            if mod_time is not None:
                mtimes[path] = mod_time
        return mtimes

    def scan(self) -> dict:
        """Compare the vault against the last scan and emit events. Returns counts."""
        current = self._snapshot()
        changed = [p for p, m in current.items() if self._known.get(p) != m]
        deleted = [p for p in self._known if p not in current]
        self._known = current
        for path in deleted:
            self._engine.handle_event(Deleted(path))
        for path in changed:
            self._engine.handle_event(Changed(path))
        self._last_scanned = datetime.now().isoformat()
        if changed or deleted:
            log.info("Scan found %d changed and %d deleted documents", len(changed), len(deleted))
        return {"changed": len(changed), "deleted": len(deleted)}

    def _run(self) -> None:
        try:
            self.scan()
        except OSError:
            log.exception("Vault scan failed")
        with self._lock:
            if self._enabled:
                self._schedule()

    def run_now(self) -> None:
        """Trigger an immediate scan in a background thread."""
        threading.Thread(target=self.scan, daemon=True).start()

    @property
    def status(self) -> dict:
        return {
            "enabled": self._enabled,
            "interval_seconds": self._interval,
            "last_scanned": self._last_scanned,
        }


scanner = BackgroundScanner()
