"""MQTT topic helpers.

We keep topic construction in one place so the hub and all viewers agree on
naming.

Topic layout under a configurable namespace (default: `waitline/v1`):

Request/response:
- `<ns>/viewers/requests`
    Every viewer (kiosk, web form, admin board) publishes commands here.
- `<ns>/viewers/responses/<client_id>`
    Replies (including errors) go only to the viewer that asked.

Broadcast:
- `<ns>/queue/updates`
    The hub publishes one retained `update` event per committed change, so a
    viewer that subscribes later immediately receives the current state.

Run several shops on one broker by giving each its own namespace
(e.g. `--namespace shop-a/v1`).
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "waitline/v1"


def viewer_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/viewers/requests"


def viewer_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/viewers/responses/{client_id}"


def queue_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    """Retained broadcast of the latest queue snapshot."""
    return f"{namespace}/queue/updates"
