"""Deferred, coalescing persistence of free-text notes.

Every edit updates the in-memory value at once; the write to the database is
issued only after a quiet period with no further edits for the same line.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

NoteWriter = Callable[[int, str], None]


class NoteDebouncer:
    """One pending timer per line id; the last text submitted wins."""

    def __init__(self, writer: NoteWriter, *, quiet_period: float) -> None:
        self._writer = writer
        self._quiet_period = quiet_period
        self._lock = threading.Lock()
        self._timers: dict[int, threading.Timer] = {}
        self._pending: dict[int, str] = {}
        self._closed = False

    def submit(self, line_id: int, text: str) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("NoteDebouncer is shut down")
            self._pending[line_id] = text
            timer = self._timers.pop(line_id, None)
            if timer is not None:
                timer.cancel()
            timer = threading.Timer(self._quiet_period, self._fire, args=(line_id,))
            timer.daemon = True
            self._timers[line_id] = timer
            timer.start()

    def pending_note(self, line_id: int) -> str | None:
        """Text not yet persisted for the line, if any."""
        with self._lock:
            return self._pending.get(line_id)

    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._timers)

    def cancel(self, line_id: int) -> bool:
        """Drop the pending write for one line; True if something was dropped."""
        with self._lock:
            timer = self._timers.pop(line_id, None)
            self._pending.pop(line_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def flush(self, line_id: int) -> None:
        """Persist the pending text for the line now instead of waiting."""
        with self._lock:
            timer = self._timers.pop(line_id, None)
            text = self._pending.pop(line_id, None)
        if timer is not None:
            timer.cancel()
        if text is not None:
            self._write(line_id, text)

    def shutdown(self) -> None:
        """Cancel every pending write; later submits are refused."""
        with self._lock:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
            self._pending.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, line_id: int) -> None:
        with self._lock:
            if self._timers.get(line_id) is not threading.current_thread():
                # Superseded by a newer edit or cancelled.
                return
            self._timers.pop(line_id, None)
            text = self._pending.pop(line_id, None)
        if text is not None:
            self._write(line_id, text)

    def _write(self, line_id: int, text: str) -> None:
        try:
            self._writer(line_id, text)
        except Exception:
            # Deferred writes have no caller left to report to.
            logger.exception("Deferred note write failed line_id=%s", line_id)
