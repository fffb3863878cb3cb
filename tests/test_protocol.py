import json
from types import SimpleNamespace

import pytest

from waitline.mqtt_client import MqttClient, decode_payload
from waitline.mqtt_topics import DEFAULT_NAMESPACE, queue_updates, viewer_requests, viewer_responses
from waitline.viewer import describe_reply


def test_topic_helpers():
    ns = "demo/v1"
    assert viewer_requests(ns) == "demo/v1/viewers/requests"
    assert viewer_responses("k1", ns) == "demo/v1/viewers/responses/k1"
    assert queue_updates(ns) == "demo/v1/queue/updates"
    assert viewer_requests() == f"{DEFAULT_NAMESPACE}/viewers/requests"


def test_describe_reply():
    assert describe_reply({"type": "error", "code": "queue_not_empty", "message": "busy"}) == (
        "error [queue_not_empty]: busy"
    )
    assert describe_reply({"type": "registered", "ticket": {"displayId": "S-4", "estimatedWaitMinutes": 15}}) == (
        "registered S-4, about 15 min"
    )
    assert describe_reply({"type": "ack", "changed": False}) == "nothing to do"
    assert describe_reply({"type": "ack", "ticket": {"displayId": "W-2", "status": "called"}}) == "ok W-2 -> called"
    assert describe_reply(
        {"type": "init", "isAccepting": True, "nextNumber": 3, "queue": [{"displayId": "S-1", "status": "waiting"}]}
    ) == "open, next #3, queue: S-1(waiting)"


def test_decode_payload_accepts_only_json_objects():
    assert decode_payload('{"type":"init"}'.encode("utf-8")) == {"type": "init"}
    assert decode_payload("{\"name\":\"佐藤\"}".encode("utf-8")) == {"name": "佐藤"}
    assert decode_payload(b"[1, 2]") is None
    assert decode_payload(b"not json") is None
    assert decode_payload(b"\xff\xfe") is None


def test_request_returns_correlated_reply(monkeypatch):
    client = MqttClient(client_id="viewer-test", host="127.0.0.1", port=1883)
    sent = []

    def answer(topic, message, *, retain=False):
        sent.append((topic, message))
        # A reply for someone else first, then ours.
        for corr_id in ("other", message["corr_id"]):
            payload = json.dumps({"type": "ack", "corr_id": corr_id}).encode("utf-8")
            client._on_message(None, None, SimpleNamespace(topic=message["reply_to"], payload=payload))

    monkeypatch.setattr(client, "publish", answer)
    reply = client.request(request_topic="ns/viewers/requests", response_topic="ns/viewers/responses/v", message={"type": "init"})

    ((topic, message),) = sent
    assert topic == "ns/viewers/requests"
    assert message["reply_to"] == "ns/viewers/responses/v"
    assert reply == {"type": "ack", "corr_id": message["corr_id"]}


def test_request_times_out_without_reply(monkeypatch):
    client = MqttClient(client_id="viewer-test", host="127.0.0.1", port=1883)
    monkeypatch.setattr(client, "publish", lambda topic, message, *, retain=False: None)
    with pytest.raises(TimeoutError):
        client.request(request_topic="a", response_topic="b", message={"type": "init"}, timeout=0.05)
