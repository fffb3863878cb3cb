from __future__ import annotations

# Timer wheel for the queue.
#
# All time-based follow-ups (absence auto-cancel, acceptance auto-resume, the
# daily rollover poll) are entries in one dict keyed by id. A single daemon
# thread calls `tick()` once per `tick_seconds`; tests call `tick()` directly
# with a fake clock instead of starting the thread.
#
# Locking: the registry lock only protects the dict. Callbacks run *after* it
# is released and are expected to take the store lock themselves and re-check
# that they are still wanted (a cancel can race with a due entry being popped).

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Hashable

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

RESUME_KEY = "resume"
ROLLOVER_KEY = "rollover"


def absence_key(display_id: str) -> tuple[str, str]:
    return ("absence", display_id)


def is_absence_key(key: Hashable) -> bool:
    return isinstance(key, tuple) and len(key) == 2 and key[0] == "absence"


@dataclass
class TimerEntry:
    key: Hashable
    deadline: datetime
    callback: Callable[[], None]
    interval: timedelta | None = None  # set for recurring entries


class TimerRegistry:
    def __init__(self, *, clock: Clock = datetime.now, tick_seconds: float = 1.0) -> None:
        self.clock = clock
        self.tick_seconds = tick_seconds
        self._lock = threading.Lock()
        self._entries: dict[Hashable, TimerEntry] = {}

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------- scheduling --------------------

    def schedule(self, key: Hashable, delay: timedelta, callback: Callable[[], None]) -> datetime:
        """Fire `callback` once after `delay`. Replaces any entry with the same key."""
        return self.schedule_at(key, self.clock() + delay, callback)

    def schedule_at(self, key: Hashable, deadline: datetime, callback: Callable[[], None]) -> datetime:
        with self._lock:
            self._entries[key] = TimerEntry(key=key, deadline=deadline, callback=callback)
        return deadline

    def every(self, key: Hashable, interval: timedelta, callback: Callable[[], None]) -> None:
        """Fire `callback` every `interval`, starting one interval from now."""
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        with self._lock:
            self._entries[key] = TimerEntry(
                key=key, deadline=self.clock() + interval, callback=callback, interval=interval
            )

    def cancel(self, key: Hashable) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def cancel_matching(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            doomed = [k for k in self._entries if predicate(k)]
            for k in doomed:
                del self._entries[k]
            return len(doomed)

    def deadline(self, key: Hashable) -> datetime | None:
        with self._lock:
            entry = self._entries.get(key)
            return entry.deadline if entry else None

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------- firing --------------------

    def tick(self, now: datetime | None = None) -> int:
        """Run every entry whose deadline has passed. Returns how many fired."""
        now = now or self.clock()
        due: list[TimerEntry] = []
        with self._lock:
            for key, entry in list(self._entries.items()):
                if entry.deadline > now:
                    continue
                due.append(entry)
                if entry.interval is None:
                    del self._entries[key]
                else:
                    entry.deadline = now + entry.interval

        due.sort(key=lambda e: e.deadline)
        for entry in due:
            try:
                entry.callback()
            except Exception:
                # One broken callback must not stop the others (or the thread).
                logger.exception("timer %r failed", entry.key)
        return len(due)

    # -------------------- background thread --------------------

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="waitline-timers", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=1.0)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(self.tick_seconds)
