from __future__ import annotations

# The hub connects viewers (kiosk, web form, admin board) to the QueueStore.
#
# This file contains two layers:
# 1) `BroadcastHub` (command handling + subscriber fan-out, easy to unit test)
# 2) `MqttHubService` (integration with the MQTT broker)
#
# Replies, including errors, go only to the viewer that sent the command.
# State changes reach everyone through the store's listener -> `_fan_out()`,
# whether they came from a command or from a timer.

import copy
import logging
import threading
from typing import Any, Callable, TYPE_CHECKING

from .errors import BadRequest, ErrorResponse, NotFound, QueueError
from .models import Source, TicketStatus
from .mqtt_topics import DEFAULT_NAMESPACE, queue_updates, viewer_requests
from .notify import NotifierChain, registration_message
from .printing import PrintJobChannel
from .store import QueueStore
from .ticket_encoder import encode_ticket

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

Subscriber = Callable[[dict[str, Any]], None]

CANCEL_ABSENT = "cancel_absent"


class BroadcastHub:
    """Validates viewer commands and fans state changes out to subscribers."""

    def __init__(
        self,
        store: QueueStore,
        *,
        printer: PrintJobChannel | None = None,
        notifier: NotifierChain | None = None,
    ) -> None:
        self.store = store
        self.printer = printer
        self.notifier = notifier

        self._lock = threading.Lock()
        self._subscribers: dict[int, Subscriber] = {}
        self._next_token = 1

        self._commands: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
            "init": self._cmd_init,
            "register": self._cmd_register,
            "update_status": self._cmd_update_status,
            "set_acceptance": self._cmd_set_acceptance,
            "reset_sequence": self._cmd_reset_sequence,
            "reset_stats": self._cmd_reset_stats,
            "set_printer_enabled": self._cmd_set_printer_enabled,
            "set_wait_display": self._cmd_set_wait_display,
        }

        store.add_listener(self._fan_out)

    # -------------------- subscribers --------------------

    def subscribe(self, subscriber: Subscriber) -> int:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = subscriber
        return token

    def unsubscribe(self, token: int) -> None:
        with self._lock:
            self._subscribers.pop(token, None)

    def connect(self, subscriber: Subscriber) -> int:
        """Subscribe and immediately send the `init` event with the full state."""
        token = self.subscribe(subscriber)
        subscriber(self.init_message())
        return token

    def init_message(self) -> dict[str, Any]:
        return {"type": "init", **self.store.snapshot().to_message()}

    def _fan_out(self, event: dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.items())
        for token, subscriber in subscribers:
            try:
                # Each viewer gets its own copy.
                subscriber(copy.deepcopy(event))
            except Exception:
                logger.exception("subscriber %d failed on %s", token, event.get("reason"))

    # -------------------- commands --------------------

    def handle(self, msg: dict[str, Any]) -> dict[str, Any]:
        """Run one viewer command and return the reply for that viewer."""
        mtype = msg.get("type")
        command = self._commands.get(mtype) if isinstance(mtype, str) else None
        if command is None:
            return ErrorResponse("bad_request", f"unknown command {mtype!r}").to_message()

        try:
            return command(msg)
        except NotFound as e:
            # Two staff members finishing the same guest is routine, not an error.
            if mtype == "update_status" and msg.get("status") in ("completed", "deleted"):
                logger.debug("ignoring %s for unknown ticket %s", msg.get("status"), e.display_id)
                return {"type": "ack", "command": mtype, "changed": False}
            return e.to_response().to_message()
        except QueueError as e:
            logger.info("command %s rejected: %s", mtype, e)
            return e.to_response().to_message()

    def _cmd_init(self, msg: dict[str, Any]) -> dict[str, Any]:
        return self.init_message()

    def _cmd_register(self, msg: dict[str, Any]) -> dict[str, Any]:
        ticket = self.store.register(
            _str_field(msg, "source", required=True),
            adults=_int_field(msg, "adults", 1),
            children=_int_field(msg, "children", 0),
            infants=_int_field(msg, "infants", 0),
            seat_preference=_str_field(msg, "pref") or "any",
            name=_str_field(msg, "name"),
            target_time=_str_field(msg, "targetTime"),
        )

        config = self.store.config
        if self.printer is not None and ticket.source is Source.shop and self.store.printer_enabled:
            payload = encode_ticket(ticket, shop_name=config.shop_name, encoding=config.ticket_encoding)
            self.printer.stage(payload, label=ticket.display_id)

        if self.notifier is not None:
            subject, body = registration_message(ticket, shop_name=config.shop_name)
            self.store.dispatcher.submit(self.notifier.send, subject, body, description=f"notify {ticket.display_id}")

        return {"type": "registered", "ticket": ticket.to_message()}

    def _cmd_update_status(self, msg: dict[str, Any]) -> dict[str, Any]:
        display_id = _str_field(msg, "displayId", required=True)
        status = _str_field(msg, "status", required=True)
        if status == CANCEL_ABSENT:
            ticket = self.store.cancel_absent(display_id)
        else:
            try:
                target = TicketStatus(status)
            except ValueError as e:
                raise BadRequest(f"unknown status {status!r}") from e
            ticket = self.store.transition(display_id, target)
        return {"type": "ack", "command": "update_status", "changed": True, "ticket": ticket.to_message()}

    def _cmd_set_acceptance(self, msg: dict[str, Any]) -> dict[str, Any]:
        is_open = msg.get("open")
        if not isinstance(is_open, bool):
            raise BadRequest("open must be true or false")
        minutes = msg.get("resumeMinutes")
        if minutes is not None and (isinstance(minutes, bool) or not isinstance(minutes, (int, float))):
            raise BadRequest("resumeMinutes must be a number")
        self.store.set_acceptance(is_open, minutes)
        return {"type": "ack", "command": "set_acceptance"}

    def _cmd_reset_sequence(self, msg: dict[str, Any]) -> dict[str, Any]:
        self.store.reset_sequence()
        return {"type": "ack", "command": "reset_sequence"}

    def _cmd_reset_stats(self, msg: dict[str, Any]) -> dict[str, Any]:
        self.store.reset_stats()
        return {"type": "ack", "command": "reset_stats"}

    def _cmd_set_printer_enabled(self, msg: dict[str, Any]) -> dict[str, Any]:
        self.store.set_printer_enabled(_bool_field(msg, "enabled"))
        return {"type": "ack", "command": "set_printer_enabled"}

    def _cmd_set_wait_display(self, msg: dict[str, Any]) -> dict[str, Any]:
        self.store.set_wait_display(_bool_field(msg, "enabled"))
        return {"type": "ack", "command": "set_wait_display"}


def _str_field(msg: dict[str, Any], key: str, *, required: bool = False) -> str | None:
    value = msg.get(key)
    if value is None or value == "":
        if required:
            raise BadRequest(f"{key} required")
        return None
    if not isinstance(value, str):
        raise BadRequest(f"{key} must be a string")
    return value


def _int_field(msg: dict[str, Any], key: str, default: int) -> int:
    value = msg.get(key, default)
    if value is None or value == "":
        return default
    # JSON has one number type; accept 2.0 but not 2.7, "2" or true.
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int):
        raise BadRequest(f"{key} must be an integer")
    if value < 0:
        raise BadRequest(f"{key} must be >= 0")
    return value


def _bool_field(msg: dict[str, Any], key: str) -> bool:
    value = msg.get(key)
    if not isinstance(value, bool):
        raise BadRequest(f"{key} must be true or false")
    return value


class MqttHubService:
    """MQTT adapter around the BroadcastHub."""

    def __init__(self, *, mqtt: MqttClient, hub: BroadcastHub, namespace: str = DEFAULT_NAMESPACE) -> None:
        self.mqtt = mqtt
        self.hub = hub
        self.namespace = namespace
        self._requests_topic = viewer_requests(namespace)
        self._updates_topic = queue_updates(namespace)
        self._token: int | None = None
        self._lock = threading.Lock()
        self._last_revision = -1

    def start(self) -> None:
        self.mqtt.subscribe(self._requests_topic)
        self.mqtt.add_handler(self._handle_message)
        self._token = self.hub.subscribe(self._publish_update)

        # Seed the retained topic so early viewers see the restored state.
        self._publish_update({**self.hub.init_message(), "type": "update", "reason": "startup"})

    def stop(self) -> None:
        if self._token is not None:
            self.hub.unsubscribe(self._token)
            self._token = None
        self.mqtt.remove_handler(self._handle_message)
        self.mqtt.unsubscribe(self._requests_topic)

    def _publish_update(self, event: dict[str, Any]) -> None:
        # The retained message must never go back to an older state.
        with self._lock:
            revision = event.get("revision", 0)
            if revision < self._last_revision:
                logger.debug("dropping stale update rev %s (published %s)", revision, self._last_revision)
                return
            self._last_revision = revision
            self.mqtt.publish(self._updates_topic, event, retain=True)

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        if topic != self._requests_topic:
            return

        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None

        reply = self.hub.handle(msg)
        if reply_to:
            self._reply(reply_to, corr_id, reply)
        elif reply.get("type") == "error":
            logger.warning("command %s without reply_to failed: %s", msg.get("type"), reply.get("message"))
