"""Value types for the waiting line.

`GuestTicket` is frozen: the store replaces a ticket on every change instead
of mutating it, so a snapshot can hand the same objects to any number of
viewers without copying them again.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class TicketStatus(str, Enum):
    waiting = "waiting"
    arrived = "arrived"
    called = "called"
    absent = "absent"
    completed = "completed"
    deleted = "deleted"

    @property
    def terminal(self) -> bool:
        return self in (TicketStatus.completed, TicketStatus.deleted)


class Source(str, Enum):
    shop = "shop"
    web = "web"

    @property
    def prefix(self) -> str:
        return "S" if self is Source.shop else "W"


class SeatPreference(str, Enum):
    table = "table"
    counter = "counter"
    any = "any"

    @property
    def label(self) -> str:
        """Text printed on the ticket."""
        return _SEAT_LABELS[self]


_SEAT_LABELS = {
    SeatPreference.table: "テーブル",
    SeatPreference.counter: "カウンター",
    SeatPreference.any: "どちらでも",
}


@dataclass(frozen=True)
class GuestTicket:
    display_id: str
    sequence_number: int
    source: Source
    registered_at: datetime
    adults: int = 1
    children: int = 0
    infants: int = 0
    seat_preference: SeatPreference = SeatPreference.any
    status: TicketStatus = TicketStatus.waiting
    arrived: bool = False
    name: str | None = None
    target_time: str | None = None
    absent_since: datetime | None = None
    status_before_absent: TicketStatus | None = None
    estimated_wait_minutes: int | None = None

    @property
    def party_size(self) -> int:
        return self.adults + self.children + self.infants

    def with_estimate(self, minutes: int | None) -> GuestTicket:
        return replace(self, estimated_wait_minutes=minutes)

    def to_message(self) -> dict[str, Any]:
        return {
            "displayId": self.display_id,
            "sequenceNumber": self.sequence_number,
            "type": self.source.value,
            "registeredAt": self.registered_at.isoformat(),
            "adults": self.adults,
            "children": self.children,
            "infants": self.infants,
            "pref": self.seat_preference.value,
            "status": self.status.value,
            "arrived": self.arrived,
            "name": self.name,
            "targetTime": self.target_time,
            "absentSince": self.absent_since.isoformat() if self.absent_since else None,
            "statusBeforeAbsent": self.status_before_absent.value if self.status_before_absent else None,
            "estimatedWaitMinutes": self.estimated_wait_minutes,
        }

    @classmethod
    def from_message(cls, msg: dict[str, Any]) -> GuestTicket:
        absent_since = msg.get("absentSince")
        before = msg.get("statusBeforeAbsent")
        return cls(
            display_id=str(msg["displayId"]),
            sequence_number=int(msg["sequenceNumber"]),
            source=Source(msg["type"]),
            registered_at=datetime.fromisoformat(msg["registeredAt"]),
            adults=int(msg.get("adults", 0)),
            children=int(msg.get("children", 0)),
            infants=int(msg.get("infants", 0)),
            seat_preference=SeatPreference(msg.get("pref", SeatPreference.any.value)),
            status=TicketStatus(msg.get("status", TicketStatus.waiting.value)),
            arrived=bool(msg.get("arrived", False)),
            name=msg.get("name"),
            target_time=msg.get("targetTime"),
            absent_since=datetime.fromisoformat(absent_since) if absent_since else None,
            status_before_absent=TicketStatus(before) if before else None,
        )


@dataclass
class ServiceDayStats:
    """Per-day counters. Owned and mutated by the store only."""

    window: int = 10
    total_registered: int = 0
    total_completed: int = 0
    recent_waits: deque[float] = field(default_factory=deque)

    def __post_init__(self) -> None:
        self.recent_waits = deque(self.recent_waits, maxlen=self.window)

    @property
    def average_wait_minutes(self) -> float:
        if not self.recent_waits:
            return 0.0
        return sum(self.recent_waits) / len(self.recent_waits)

    def record_completion(self, wait_minutes: float) -> None:
        self.total_completed += 1
        self.recent_waits.append(max(0.0, wait_minutes))

    def reset(self) -> None:
        self.total_registered = 0
        self.total_completed = 0
        self.recent_waits.clear()

    def to_message(self) -> dict[str, Any]:
        return {
            "totalToday": self.total_registered,
            "completedToday": self.total_completed,
            "averageWaitTime": round(self.average_wait_minutes, 1),
            "recentWaits": list(self.recent_waits),
        }

    @classmethod
    def from_message(cls, msg: dict[str, Any], *, window: int) -> ServiceDayStats:
        return cls(
            window=window,
            total_registered=int(msg.get("totalToday", 0)),
            total_completed=int(msg.get("completedToday", 0)),
            recent_waits=deque(float(w) for w in msg.get("recentWaits", [])),
        )


@dataclass(frozen=True)
class QueueSnapshot:
    """Point-in-time copy of everything a viewer needs."""

    revision: int
    tickets: tuple[GuestTicket, ...]
    stats: dict[str, Any]
    is_accepting: bool
    resume_at: datetime | None
    printer_enabled: bool
    wait_display_enabled: bool
    next_number: int

    def to_message(self) -> dict[str, Any]:
        return {
            "revision": self.revision,
            "queue": [t.to_message() for t in self.tickets],
            "stats": dict(self.stats),
            "isAccepting": self.is_accepting,
            "resumeAt": self.resume_at.isoformat() if self.resume_at else None,
            "printerEnabled": self.printer_enabled,
            "waitTimeDisplayEnabled": self.wait_display_enabled,
            "nextNumber": self.next_number,
        }
