"""Debounced writer: collapses bursts of mutations into one deferred write."""

import logging
import threading

from services.errors import WriteFailure

log = logging.getLogger(__name__)


class DebouncedWriter:
    """Runs `write_fn` once per quiet interval after it was last marked dirty.

    `timer_factory(delay, callback, args)` must return an object with `start()`,
    `cancel()` and a writable `daemon`; it defaults to `threading.Timer`. A failed
    write keeps the writer dirty and arms the timer again.
    """

    def __init__(self, write_fn, delay: float, timer_factory=None):
        self._write_fn = write_fn
        self._delay = delay
        self._timer_factory = timer_factory or threading.Timer
        self._timer = None
        # Bumped whenever the current timer is replaced or dropped.
        self._generation = 0
        self._dirty = False
        self._lock = threading.Lock()

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def schedule_write(self, delay: float | None = None) -> None:
        """Mark dirty and restart the quiet-interval timer."""
        with self._lock:
            self._dirty = True
            self._cancel()
            self._arm(self._delay if delay is None else delay)

    def cancel_scheduled_write(self) -> None:
        with self._lock:
            self._cancel()

    def flush_now(self) -> bool:
        """Write synchronously if dirty, bypassing the timer. Returns True on success."""
        with self._lock:
            self._cancel()
            return self._write_locked()

    def _arm(self, delay: float) -> None:
        self._timer = self._timer_factory(delay, self._run, (self._generation,))
        self._timer.daemon = True
        self._timer.start()

    def _cancel(self) -> None:
        self._generation += 1
        if self._timer:
            self._timer.cancel()
            self._timer = None

    def _run(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                # Replaced or cancelled while waiting for the lock.
                return
            self._timer = None
            self._write_locked()

    def _write_locked(self) -> bool:
        if not self._dirty:
            return True
        # Cleared before writing so a mutation during the write re-marks it.
        self._dirty = False
        try:
            self._write_fn()
        except WriteFailure as e:
            self._dirty = True
            log.error("Snapshot write failed, retrying in %.1fs: %s", self._delay, e)
            if self._timer is None:
                self._arm(self._delay)
            return False
        return True
