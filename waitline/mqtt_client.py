"""paho-mqtt wrapper shared by the shop hub and the command-line viewers.

The hub needs plain publish/subscribe: it listens on the viewer request topic
and publishes retained queue updates. A viewer needs one blocking round trip
("register this guest, which number did I get?"). Both speak JSON objects;
anything else on the wire is dropped with a warning.

Subscriptions are remembered and replayed from `on_connect`, so a broker
restart does not leave the hub deaf.
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from typing import Any, Callable

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


class _Reply:
    """One-shot slot a `request()` caller blocks on."""

    def __init__(self) -> None:
        self.event = threading.Event()
        self.message: dict[str, Any] | None = None

    def deliver(self, message: dict[str, Any]) -> None:
        if not self.event.is_set():
            self.message = message
            self.event.set()


def decode_payload(raw: bytes | str) -> dict[str, Any] | None:
    """JSON object from an MQTT payload, or None if it is not one."""
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        data = json.loads(text)
    except (UnicodeDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class MqttClient:
    def __init__(
        self,
        *,
        client_id: str,
        host: str,
        port: int,
        keepalive: int = 30,
        qos: int = 1,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        self._lock = threading.Lock()
        self._topics: set[str] = set()
        self._handlers: list[MessageHandler] = []
        self._replies: dict[str, _Reply] = {}
        self._connected = threading.Event()
        self._running = False

    # -------------------- lifecycle --------------------

    def start(self) -> None:
        if self._running:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._running = True

    def wait_connected(self, timeout: float = 5.0) -> bool:
        return self._connected.wait(timeout)

    def stop(self) -> None:
        if not self._running:
            return
        self._client.disconnect()
        self._client.loop_stop()
        self._running = False

    # -------------------- pub/sub --------------------

    def add_handler(self, handler: MessageHandler) -> None:
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: MessageHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def subscribe(self, topic: str) -> None:
        with self._lock:
            self._topics.add(topic)
        self._client.subscribe(topic, qos=self.qos)

    def unsubscribe(self, topic: str) -> None:
        with self._lock:
            self._topics.discard(topic)
        self._client.unsubscribe(topic)

    def publish(self, topic: str, message: dict[str, Any], *, retain: bool = False) -> None:
        # Guest names and seat labels are Japanese; keep them readable on the wire.
        payload = json.dumps(message, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        self._client.publish(topic, payload=payload, qos=self.qos, retain=retain)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish a command and block until the hub replies on `response_topic`.

        The caller must already be subscribed to `response_topic`. Raises
        TimeoutError when no reply arrives in time (hub down, wrong namespace).
        """
        corr_id = uuid.uuid4().hex
        reply = _Reply()
        with self._lock:
            self._replies[corr_id] = reply

        try:
            self.publish(request_topic, {**message, "corr_id": corr_id, "reply_to": response_topic})
            if not reply.event.wait(timeout) or reply.message is None:
                raise TimeoutError(f"no reply to {message.get('type')!r} within {timeout}s")
            return reply.message
        finally:
            with self._lock:
                self._replies.pop(corr_id, None)

    # -------------------- paho callbacks --------------------

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            logger.error("MQTT connect to %s:%s refused: %s", self.host, self.port, reason_code)
            return
        with self._lock:
            topics = sorted(self._topics)
        for topic in topics:
            client.subscribe(topic, qos=self.qos)
        self._connected.set()
        logger.debug("%s connected, %d subscriptions restored", self.client_id, len(topics))

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        self._connected.clear()
        if self._running:
            logger.warning("MQTT connection to %s:%s lost: %s", self.host, self.port, reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        data = decode_payload(msg.payload)
        if data is None:
            logger.warning("dropping non-JSON message on %s", msg.topic)
            return

        corr_id = data.get("corr_id")
        with self._lock:
            reply = self._replies.get(corr_id) if isinstance(corr_id, str) else None
            handlers = list(self._handlers)
        if reply is not None:
            reply.deliver(data)
            return

        for handler in handlers:
            try:
                handler(msg.topic, data)
            except Exception:
                logger.exception("handler failed for message on %s", msg.topic)
