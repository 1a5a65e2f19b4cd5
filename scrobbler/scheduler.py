from __future__ import annotations
import logging
import threading
import time
from typing import Callable

log = logging.getLogger("scheduler")

DRAIN_INTERVAL = 30  # seconds
_SLICE = 1.0  # longest uninterrupted wait, so stop() is prompt


class DrainScheduler:
    """Background thread that calls `drain` every `interval` seconds.

    `trigger()` asks for a drain right away (e.g. just after an enqueue).
    `stop()` signals the loop and joins it; a request already in flight is
    allowed to finish or time out.
    """

    def __init__(self, drain: Callable[[], object], interval: float = DRAIN_INTERVAL):
        self._drain = drain
        self.interval = interval
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self, drain_now: bool = True) -> None:
        if self.running:
            return
        self._stop_event.clear()
        if drain_now:
            self._wake_event.set()
        self._thread = threading.Thread(target=self._run, name="scrobble-drain", daemon=True)
        self._thread.start()
        log.debug("Drain scheduler started (interval %ss)", self.interval)

    def trigger(self) -> None:
        self._wake_event.set()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                log.warning("Drain thread still busy after %ss; leaving it to finish", timeout)
            else:
                self._thread = None
        log.debug("Drain scheduler stopped")

    def _wait(self) -> None:
        deadline = time.monotonic() + self.interval
        while not self._stop_event.is_set():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            if self._wake_event.wait(min(_SLICE, remaining)):
                return

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self._wait()
            if self._stop_event.is_set():
                break
            self._wake_event.clear()
            try:
                self._drain()
            except Exception:
                # Keep the loop alive; the next tick retries
                log.exception("Queue drain failed")
