from __future__ import annotations

# Best-effort side effects (snapshot writes, notification mail).
#
# The store hands work here after releasing its lock, so a slow disk or mail
# server never holds up a queue mutation. Failures are logged and dropped:
# the in-memory queue is the source of truth.
#
# Until `start()` is called, `submit()` runs the job inline in the caller's
# thread. Unit tests rely on this to see side effects immediately.

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

_STOP = object()


class BackgroundDispatcher:
    def __init__(self, *, name: str = "waitline-dispatch") -> None:
        self.name = name
        self._jobs: "queue.Queue[Any]" = queue.Queue()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "") -> None:
        if self.running:
            self._jobs.put((fn, args, description))
        else:
            self._run(fn, args, description)

    def start(self) -> None:
        if self.running:
            return
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, *, timeout: float = 5.0) -> None:
        """Finish queued jobs, then stop the worker."""
        t = self._thread
        if t and t.is_alive():
            self._jobs.put(_STOP)
            t.join(timeout=timeout)
        self._thread = None

    def _loop(self) -> None:
        while True:
            item = self._jobs.get()
            if item is _STOP:
                return
            fn, args, description = item
            self._run(fn, args, description)

    @staticmethod
    def _run(fn: Callable[..., Any], args: tuple[Any, ...], description: str) -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("side effect failed: %s", description or getattr(fn, "__name__", fn))
