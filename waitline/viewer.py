from __future__ import annotations

# Viewer client.
#
# A command-line viewer is a short-lived process:
# - connect to broker
# - publish one command on the viewer request topic
# - wait for the reply on its own response topic
# - print the reply and exit
#
# The kiosk and web pages speak the same protocol over MQTT-over-WebSockets.

import time
from typing import Any

from .mqtt_client import MqttClient
from .mqtt_topics import viewer_requests, viewer_responses


def send_command(
    *,
    mqtt_host: str,
    mqtt_port: int,
    namespace: str,
    message: dict[str, Any],
    timeout: float = 5.0,
) -> dict[str, Any]:
    # Unique client id so several viewers can run concurrently.
    client_id = f"viewer-{message.get('type', 'cmd')}-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    reply_topic = viewer_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)
    mqtt.start()

    try:
        if not mqtt.wait_connected(timeout):
            raise TimeoutError(f"broker {mqtt_host}:{mqtt_port} not reachable")
        return mqtt.request(
            request_topic=viewer_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=timeout,
        )
    finally:
        mqtt.stop()


def describe_reply(reply: dict[str, Any]) -> str:
    """One human-readable line for a hub reply."""
    rtype = reply.get("type")
    if rtype == "error":
        return f"error [{reply.get('code')}]: {reply.get('message')}"
    if rtype == "registered":
        t = reply["ticket"]
        wait = t.get("estimatedWaitMinutes")
        suffix = f", about {wait} min" if wait is not None else ""
        return f"registered {t['displayId']}{suffix}"
    if rtype == "init":
        ids = ", ".join(f"{t['displayId']}({t['status']})" for t in reply.get("queue", []))
        state = "open" if reply.get("isAccepting") else "closed"
        return f"{state}, next #{reply.get('nextNumber')}, queue: {ids or '-'}"
    if rtype == "ack":
        if reply.get("changed") is False:
            return "nothing to do"
        t = reply.get("ticket")
        return f"ok {t['displayId']} -> {t['status']}" if t else "ok"
    return str(reply)
