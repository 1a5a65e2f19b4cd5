"""
Hand completion callbacks to a designated thread.

Anything with the shape `dispatch(fn)` works as a dispatcher, e.g.
`asyncio.AbstractEventLoop.call_soon_threadsafe`. `CallbackQueue` is the plain
threading version: workers `post()`, the owning thread calls `run_pending()`.
"""

from __future__ import annotations
import logging
import queue
from typing import Callable

log = logging.getLogger("dispatch")

Dispatcher = Callable[[Callable[[], None]], None]


class CallbackQueue:
    def __init__(self):
        self._q: "queue.Queue[Callable[[], None]]" = queue.Queue()

    def post(self, fn: Callable[[], None]) -> None:
        self._q.put(fn)

    __call__ = post

    def run_pending(self, timeout: float | None = None) -> int:
        """Run queued callbacks on the calling thread.

        Blocks up to `timeout` seconds for the first callback (None = don't
        block), then runs whatever else is already queued. Returns the count.
        """
        ran = 0
        try:
            fn = self._q.get(timeout=timeout) if timeout else self._q.get_nowait()
        except queue.Empty:
            return 0
        while True:
            try:
                fn()
            except Exception:
                log.exception("Completion callback failed")
            ran += 1
            try:
                fn = self._q.get_nowait()
            except queue.Empty:
                return ran
