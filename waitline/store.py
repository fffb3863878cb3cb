from __future__ import annotations

# The QueueStore is the *authoritative state* of the waiting line.
#
# Every mutation (viewer command or timer callback) runs under one RLock and
# ends in `_commit()`, which builds a snapshot + persistence record while the
# lock is still held, and queues it. After the lock is released, `_publish()`
# drains that queue under a second lock, so records reach the dispatcher and
# events reach listeners (the hub) strictly in revision order even when two
# threads race. Nothing in here does I/O under the store lock.

import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta
from functools import partial
from typing import Any, Callable

from .config import ROLLOVER_CLEAR, QueueConfig
from .dispatch import BackgroundDispatcher
from .errors import AcceptanceClosed, BadRequest, InvalidTransition, NotFound, QueueNotEmpty
from .models import GuestTicket, QueueSnapshot, SeatPreference, ServiceDayStats, Source, TicketStatus
from .persistence import SnapshotFile
from .timers import RESUME_KEY, ROLLOVER_KEY, Clock, TimerRegistry, absence_key, is_absence_key
from .wait_estimator import estimate_wait_minutes

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]

S = TicketStatus
LEGAL_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    S.waiting: frozenset({S.arrived, S.called, S.absent, S.completed, S.deleted}),
    S.arrived: frozenset({S.called, S.absent, S.completed, S.deleted}),
    S.called: frozenset({S.absent, S.completed, S.deleted}),
    S.absent: frozenset({S.waiting, S.arrived, S.completed, S.deleted}),
    S.completed: frozenset(),
    S.deleted: frozenset(),
}


@dataclass(frozen=True)
class _Commit:
    snapshot: QueueSnapshot
    event: dict[str, Any]
    record: dict[str, Any]

    def ticket(self, display_id: str) -> GuestTicket | None:
        for t in self.snapshot.tickets:
            if t.display_id == display_id:
                return t
        return None


class QueueStore:
    """In-memory waiting line with its counters, acceptance flag and toggles."""

    def __init__(
        self,
        config: QueueConfig | None = None,
        *,
        clock: Clock = datetime.now,
        timers: TimerRegistry | None = None,
        persistence: SnapshotFile | None = None,
        dispatcher: BackgroundDispatcher | None = None,
    ) -> None:
        self.config = config or QueueConfig()
        self.clock = clock
        self.timers = timers or TimerRegistry(clock=clock)
        self.persistence = persistence
        self.dispatcher = dispatcher or BackgroundDispatcher()

        self._lock = threading.RLock()
        self._emit_lock = threading.Lock()
        # Commits not yet handed to persistence and listeners, in revision order.
        self._outbox: deque[_Commit] = deque()
        self._listeners: list[Listener] = []

        # Insertion order is queue order (FIFO by registration).
        self._tickets: dict[str, GuestTicket] = {}
        self._next_number = 1
        self._stats = ServiceDayStats(window=self.config.wait_window)
        self._is_accepting = True
        self._resume_at: datetime | None = None
        self._printer_enabled = self.config.printer_enabled
        self._wait_display_enabled = self.config.wait_display_enabled
        self._last_reset_date: date | None = None
        self._revision = 0

    # -------------------- listeners --------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    # -------------------- reads --------------------

    def snapshot(self) -> QueueSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def persisted_record(self) -> dict[str, Any]:
        with self._lock:
            return self._record_locked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)

    @property
    def is_accepting(self) -> bool:
        with self._lock:
            return self._is_accepting

    @property
    def printer_enabled(self) -> bool:
        with self._lock:
            return self._printer_enabled

    @property
    def next_number(self) -> int:
        with self._lock:
            return self._next_number

    # -------------------- registration --------------------

    def register(
        self,
        source: Source | str,
        *,
        adults: int = 1,
        children: int = 0,
        infants: int = 0,
        seat_preference: SeatPreference | str = SeatPreference.any,
        name: str | None = None,
        target_time: str | None = None,
    ) -> GuestTicket:
        """Append a new guest to the tail of the line.

        Raises AcceptanceClosed while registration is stopped; in that case
        neither the queue nor the sequence counter changes.
        """
        try:
            source = Source(source)
            seat_preference = SeatPreference(seat_preference)
        except ValueError as e:
            raise BadRequest(str(e)) from e
        for label, value in (("adults", adults), ("children", children), ("infants", infants)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise BadRequest(f"{label} must be a non-negative integer")

        with self._lock:
            if not self._is_accepting:
                raise AcceptanceClosed("registration is currently closed")

            number = self._next_number
            self._next_number += 1
            ticket = GuestTicket(
                display_id=f"{source.prefix}-{number}",
                sequence_number=number,
                source=source,
                registered_at=self.clock(),
                adults=adults,
                children=children,
                infants=infants,
                seat_preference=seat_preference,
                arrived=source is Source.shop,
                name=name or None,
                target_time=target_time or None,
            )
            self._tickets[ticket.display_id] = ticket
            self._stats.total_registered += 1
            commit = self._commit("registered", displayId=ticket.display_id)

        logger.info("registered %s (%s, party of %d)", ticket.display_id, source.value, ticket.party_size)
        self._publish()
        return commit.ticket(ticket.display_id) or ticket

    # -------------------- status changes --------------------

    def transition(self, display_id: str, new_status: TicketStatus | str) -> GuestTicket:
        """Move a ticket to `new_status`.

        Returns the updated ticket. For `completed`/`deleted` the returned
        ticket is the final state; it is no longer in the queue.
        """
        try:
            status = TicketStatus(new_status)
        except ValueError as e:
            raise BadRequest(f"unknown status {new_status!r}") from e

        with self._lock:
            ticket = self._get_locked(display_id)
            result = self._transition_locked(ticket, status)
            commit = self._commit(status.value, displayId=display_id)

        self._publish()
        return commit.ticket(display_id) or result

    def cancel_absent(self, display_id: str) -> GuestTicket:
        """Undo `absent`, restoring the waiting/arrived state held before it."""
        with self._lock:
            ticket = self._get_locked(display_id)
            if ticket.status is not S.absent:
                raise InvalidTransition(display_id, ticket.status.value, "cancel_absent")
            if ticket.status_before_absent in (S.waiting, S.arrived):
                target = ticket.status_before_absent
            else:
                target = S.arrived if ticket.arrived else S.waiting
            result = self._transition_locked(ticket, target)
            commit = self._commit("absent_cancelled", displayId=display_id)

        self._publish()
        return commit.ticket(display_id) or result

    def _get_locked(self, display_id: str) -> GuestTicket:
        ticket = self._tickets.get(display_id)
        if ticket is None:
            raise NotFound(display_id)
        return ticket

    def _transition_locked(self, ticket: GuestTicket, status: TicketStatus) -> GuestTicket:
        if status not in LEGAL_TRANSITIONS[ticket.status]:
            raise InvalidTransition(ticket.display_id, ticket.status.value, status.value)

        now = self.clock()
        key = absence_key(ticket.display_id)

        if status.terminal:
            del self._tickets[ticket.display_id]
            self.timers.cancel(key)
            if status is S.completed:
                waited = (now - ticket.registered_at).total_seconds() / 60.0
                self._stats.record_completion(waited)
            return replace(ticket, status=status)

        if status is S.absent:
            updated = replace(ticket, status=status, absent_since=now, status_before_absent=ticket.status)
            self.timers.schedule(
                key,
                timedelta(minutes=self.config.absence_timeout_minutes),
                partial(self._expire_absence, ticket.display_id, now),
            )
        else:
            if ticket.status is S.absent:
                self.timers.cancel(key)
            updated = replace(
                ticket,
                status=status,
                arrived=ticket.arrived or status is S.arrived,
                absent_since=None,
                status_before_absent=None,
            )
        self._tickets[ticket.display_id] = updated
        return updated

    def _expire_absence(self, display_id: str, absent_since: datetime) -> None:
        """Absence timer callback: drop the ticket if it is still the same absence."""
        with self._lock:
            ticket = self._tickets.get(display_id)
            if ticket is None or ticket.status is not S.absent or ticket.absent_since != absent_since:
                logger.debug("stale absence timer for %s ignored", display_id)
                return
            del self._tickets[display_id]
            commit = self._commit("auto_cancelled", displayId=display_id)

        logger.info("auto-cancelled %s after absence timeout", display_id)
        self._publish()

    # -------------------- acceptance --------------------

    def set_acceptance(self, is_open: bool, resume_after_minutes: float | None = None) -> None:
        """Open or close registration.

        Closing with a positive `resume_after_minutes` reopens automatically
        after that long. Any earlier auto-resume is cancelled either way.
        """
        if resume_after_minutes is not None and resume_after_minutes < 0:
            raise BadRequest("resume_after_minutes must be >= 0")

        with self._lock:
            self.timers.cancel(RESUME_KEY)
            self._resume_at = None
            self._is_accepting = bool(is_open)
            if not is_open and resume_after_minutes:
                deadline = self.clock() + timedelta(minutes=resume_after_minutes)
                self._resume_at = deadline
                self.timers.schedule_at(RESUME_KEY, deadline, partial(self._auto_resume, deadline))
            commit = self._commit("acceptance_changed")

        logger.info("acceptance %s", "opened" if is_open else "closed")
        self._publish()

    def _auto_resume(self, deadline: datetime) -> None:
        with self._lock:
            if self._is_accepting or self._resume_at != deadline:
                return
            self._is_accepting = True
            self._resume_at = None
            commit = self._commit("acceptance_resumed")

        logger.info("acceptance resumed automatically")
        self._publish()

    # -------------------- counters and toggles --------------------

    def reset_sequence(self) -> None:
        with self._lock:
            if self._tickets:
                raise QueueNotEmpty("cannot reset the number while guests are waiting")
            self._next_number = 1
            commit = self._commit("queue_number_reset")
        self._publish()

    def reset_stats(self) -> None:
        with self._lock:
            self._stats.reset()
            commit = self._commit("stats_reset")
        self._publish()

    def set_printer_enabled(self, enabled: bool) -> None:
        with self._lock:
            self._printer_enabled = bool(enabled)
            commit = self._commit("printer_status_changed")
        self._publish()

    def set_wait_display(self, enabled: bool) -> None:
        with self._lock:
            self._wait_display_enabled = bool(enabled)
            commit = self._commit("wait_display_changed")
        self._publish()

    # -------------------- daily rollover --------------------

    def start_rollover_watch(self) -> None:
        self.timers.every(
            ROLLOVER_KEY, timedelta(seconds=self.config.rollover_check_seconds), self.check_rollover
        )

    def check_rollover(self) -> bool:
        """Reset the per-day state if the local date changed. Returns True on reset."""
        with self._lock:
            today = self.clock().date()
            if self._last_reset_date is None:
                self._last_reset_date = today
                return False
            if self._last_reset_date == today:
                return False

            self._last_reset_date = today
            dropped: list[str] = []
            if self.config.rollover_policy == ROLLOVER_CLEAR:
                dropped = list(self._tickets)
                self._tickets.clear()
                self.timers.cancel_matching(is_absence_key)

            self._stats.reset()
            # Guests carried into the new day count as registered today so
            # completions can never outnumber registrations.
            self._stats.total_registered = len(self._tickets)
            if not self._tickets:
                self._next_number = 1
            commit = self._commit("rollover", dropped=dropped)

        logger.info("daily rollover to %s (dropped %d tickets)", today, len(dropped))
        self._publish()
        return True

    # -------------------- persistence --------------------

    def load(self) -> None:
        """Restore from the snapshot file (if any), then apply the rollover check."""
        record = self.persistence.load() if self.persistence is not None else None
        if record:
            self.restore(record)
        else:
            self.check_rollover()

    def restore(self, record: dict[str, Any]) -> None:
        tickets = []
        for raw in record.get("queue", []):
            try:
                t = GuestTicket.from_message(raw)
            except (KeyError, ValueError, TypeError):
                logger.warning("skipping unreadable ticket in snapshot: %r", raw)
                continue
            if not t.status.terminal:
                tickets.append(t)

        with self._lock:
            self._tickets = {t.display_id: t for t in tickets}
            highest = max((t.sequence_number for t in tickets), default=0)
            self._next_number = max(int(record.get("nextNumber", 1)), highest + 1)
            self._stats = ServiceDayStats.from_message(record.get("stats", {}), window=self.config.wait_window)
            self._is_accepting = bool(record.get("isAccepting", True))
            resume_at = record.get("resumeAt")
            self._resume_at = datetime.fromisoformat(resume_at) if resume_at else None
            self._printer_enabled = bool(record.get("printerEnabled", self.config.printer_enabled))
            self._wait_display_enabled = bool(
                record.get("waitTimeDisplayEnabled", self.config.wait_display_enabled)
            )
            last = record.get("lastResetDate")
            self._last_reset_date = date.fromisoformat(last) if last else None

            timeout = timedelta(minutes=self.config.absence_timeout_minutes)
            for t in tickets:
                if t.status is S.absent and t.absent_since is not None:
                    self.timers.schedule_at(
                        absence_key(t.display_id),
                        t.absent_since + timeout,
                        partial(self._expire_absence, t.display_id, t.absent_since),
                    )
            if not self._is_accepting and self._resume_at is not None:
                self.timers.schedule_at(RESUME_KEY, self._resume_at, partial(self._auto_resume, self._resume_at))

        logger.info("restored %d tickets, next number %d", len(tickets), self._next_number)
        self.check_rollover()

    # -------------------- internals --------------------

    def _snapshot_locked(self) -> QueueSnapshot:
        average = self._stats.average_wait_minutes
        tickets = tuple(
            t.with_estimate(self._estimate(position, average) if self._wait_display_enabled else None)
            for position, t in enumerate(self._tickets.values())
        )
        return QueueSnapshot(
            revision=self._revision,
            tickets=tickets,
            stats=self._stats.to_message(),
            is_accepting=self._is_accepting,
            resume_at=self._resume_at,
            printer_enabled=self._printer_enabled,
            wait_display_enabled=self._wait_display_enabled,
            next_number=self._next_number,
        )

    def _estimate(self, position: int, average: float) -> int:
        return estimate_wait_minutes(
            position=position,
            average_service_minutes=average,
            floor_minutes=self.config.wait_floor_minutes,
            safety_factor=self.config.wait_safety_factor,
            rounding_minutes=self.config.wait_rounding_minutes,
        )

    def _record_locked(self) -> dict[str, Any]:
        return {
            "queue": [t.to_message() for t in self._tickets.values()],
            "nextNumber": self._next_number,
            "stats": self._stats.to_message(),
            "isAccepting": self._is_accepting,
            "resumeAt": self._resume_at.isoformat() if self._resume_at else None,
            "printerEnabled": self._printer_enabled,
            "waitTimeDisplayEnabled": self._wait_display_enabled,
            "lastResetDate": self._last_reset_date.isoformat() if self._last_reset_date else None,
        }

    def _commit(self, reason: str, **extra: Any) -> _Commit:
        self._revision += 1
        snapshot = self._snapshot_locked()
        event = {"type": "update", "reason": reason, **extra, **snapshot.to_message()}
        commit = _Commit(snapshot=snapshot, event=event, record=self._record_locked())
        self._outbox.append(commit)
        return commit

    def _publish(self) -> None:
        # Whoever holds the emit lock drains commits queued by other threads too.
        with self._emit_lock:
            while self._outbox:
                commit = self._outbox.popleft()
                if self.persistence is not None:
                    self.dispatcher.submit(self.persistence.save, commit.record, description="snapshot write")
                for listener in list(self._listeners):
                    try:
                        listener(commit.event)
                    except Exception:
                        logger.exception("listener failed on %s", commit.event.get("reason"))
