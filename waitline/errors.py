"""Shared error taxonomy and error envelope.

Queue operations raise `QueueError` subclasses. The hub turns them into
`ErrorResponse` messages that go back to the viewer that sent the command
(never broadcast).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ErrorResponse:
    code: str
    message: str

    def to_message(self, *, corr_id: str | None = None) -> dict[str, Any]:
        msg: dict[str, Any] = {"type": "error", "code": self.code, "message": self.message}
        if corr_id is not None:
            msg["corr_id"] = corr_id
        return msg


class QueueError(Exception):
    """Base class for errors surfaced to viewers."""

    code = "queue_error"

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(self.code, str(self) or self.code)


class AcceptanceClosed(QueueError):
    code = "acceptance_closed"


class InvalidTransition(QueueError):
    code = "invalid_transition"

    def __init__(self, display_id: str, current: str, requested: str) -> None:
        super().__init__(f"{display_id}: cannot go from {current} to {requested}")
        self.display_id = display_id
        self.current = current
        self.requested = requested


class QueueNotEmpty(QueueError):
    code = "queue_not_empty"


class NotFound(QueueError):
    code = "not_found"

    def __init__(self, display_id: str) -> None:
        super().__init__(f"unknown ticket {display_id}")
        self.display_id = display_id


class BadRequest(QueueError):
    code = "bad_request"


class PersistenceWriteFailed(QueueError):
    code = "persistence_write_failed"


class NotificationDeliveryFailed(QueueError):
    code = "notification_delivery_failed"
