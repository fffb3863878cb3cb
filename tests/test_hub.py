import pytest

from waitline.hub import BroadcastHub, MqttHubService
from waitline.mqtt_topics import queue_updates, viewer_requests
from waitline.notify import NotifierChain
from waitline.printing import PrintJobChannel
from waitline.ticket_encoder import encode_ticket, text_segments


class RecordingNotifier:
    name = "recording"

    def __init__(self):
        self.sent = []

    def send(self, subject, body):
        self.sent.append((subject, body))
        return True


class FakeMqtt:
    def __init__(self):
        self.subscriptions = []
        self.handlers = []
        self.published = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def unsubscribe(self, topic):
        self.subscriptions.remove(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def remove_handler(self, handler):
        self.handlers.remove(handler)

    def publish(self, topic, message, *, retain=False):
        self.published.append((topic, message, retain))


@pytest.fixture
def printer():
    return PrintJobChannel()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def hub(store, printer, notifier):
    return BroadcastHub(store, printer=printer, notifier=NotifierChain([notifier]))


def test_connect_sends_init_first(hub):
    received = []
    hub.connect(received.append)
    assert received[0]["type"] == "init"
    assert received[0]["queue"] == []
    assert received[0]["isAccepting"] is True


def test_register_broadcasts_to_every_viewer(hub):
    shop, web = [], []
    hub.subscribe(shop.append)
    hub.subscribe(web.append)

    reply = hub.handle({"type": "register", "source": "web", "adults": 2, "pref": "counter"})

    assert reply["type"] == "registered"
    assert reply["ticket"]["displayId"] == "W-1"
    assert reply["ticket"]["pref"] == "counter"
    for events in (shop, web):
        assert [e["reason"] for e in events] == ["registered"]
        assert events[0]["queue"][0]["displayId"] == "W-1"


def test_each_viewer_gets_its_own_copy(hub):
    first, second = [], []
    hub.subscribe(first.append)
    hub.subscribe(second.append)
    hub.handle({"type": "register", "source": "web"})

    first[0]["queue"].clear()
    assert len(second[0]["queue"]) == 1


def test_failing_viewer_does_not_block_others(hub):
    received = []

    def broken(event):
        raise RuntimeError("socket closed")

    hub.subscribe(broken)
    hub.subscribe(received.append)
    hub.handle({"type": "register", "source": "web"})
    assert len(received) == 1


def test_unsubscribe(hub):
    received = []
    token = hub.subscribe(received.append)
    hub.unsubscribe(token)
    hub.handle({"type": "register", "source": "web"})
    assert received == []


def test_shop_registration_stages_print_job(hub, store, printer):
    hub.handle({"type": "register", "source": "shop", "adults": 3})

    (ticket,) = store.snapshot().tickets
    expected = encode_ticket(ticket, shop_name=store.config.shop_name, encoding=store.config.ticket_encoding)
    assert printer.fetch() == expected
    assert text_segments(printer.fetch())[1] == "S-1\n"


def test_web_registration_does_not_print(hub, printer):
    hub.handle({"type": "register", "source": "web"})
    assert printer.has_job() is False


def test_printer_toggle(hub, printer):
    assert hub.handle({"type": "set_printer_enabled", "enabled": False})["type"] == "ack"
    hub.handle({"type": "register", "source": "shop"})
    assert printer.has_job() is False

    hub.handle({"type": "set_printer_enabled", "enabled": True})
    hub.handle({"type": "register", "source": "shop"})
    assert text_segments(printer.fetch())[1] == "S-2\n"


def test_back_to_back_shop_registrations_keep_latest_job(hub, printer):
    hub.handle({"type": "register", "source": "shop"})
    hub.handle({"type": "register", "source": "shop"})
    assert text_segments(printer.fetch())[1] == "S-2\n"
    assert printer.overwritten_count == 1


def test_registration_notifies_staff(hub, notifier):
    hub.handle({"type": "register", "source": "web", "name": "Sato", "targetTime": "19:00"})
    ((subject, body),) = notifier.sent
    assert "W-1" in subject
    assert "Sato" in body
    assert "19:00" in body


def test_errors_go_only_to_the_sender(hub):
    received = []
    hub.subscribe(received.append)
    hub.handle({"type": "set_acceptance", "open": False})
    received.clear()

    reply = hub.handle({"type": "register", "source": "shop"})
    assert reply == {"type": "error", "code": "acceptance_closed", "message": "registration is currently closed"}
    assert received == []


@pytest.mark.parametrize(
    "msg",
    [
        {"type": "register"},
        {"type": "register", "source": "web", "adults": -2},
        {"type": "register", "source": "web", "adults": "many"},
        {"type": "register", "source": "web", "adults": 2.7},
        {"type": "register", "source": "web", "adults": "2"},
        {"type": "register", "source": "web", "children": True},
        {"type": "register", "source": "drive-thru"},
        {"type": "update_status", "displayId": "W-1"},
        {"type": "update_status", "displayId": "W-1", "status": "eating"},
        {"type": "set_acceptance", "open": "yes"},
        {"type": "set_acceptance", "open": False, "resumeMinutes": "soon"},
        {"type": "set_wait_display"},
        {"type": "dance"},
        {},
    ],
)
def test_bad_requests(hub, msg):
    hub.handle({"type": "register", "source": "web"})
    reply = hub.handle(msg)
    assert reply["type"] == "error"
    assert reply["code"] == "bad_request"


def test_whole_float_party_counts_are_accepted(hub):
    reply = hub.handle({"type": "register", "source": "web", "adults": 2.0, "children": 1})
    assert reply["type"] == "registered"
    assert reply["ticket"]["adults"] == 2
    assert isinstance(reply["ticket"]["adults"], int)


def test_status_flow(hub):
    hub.handle({"type": "register", "source": "web"})

    reply = hub.handle({"type": "update_status", "displayId": "W-1", "status": "called"})
    assert reply["ticket"]["status"] == "called"

    reply = hub.handle({"type": "update_status", "displayId": "W-1", "status": "absent"})
    assert reply["ticket"]["status"] == "absent"

    reply = hub.handle({"type": "update_status", "displayId": "W-1", "status": "cancel_absent"})
    assert reply["ticket"]["status"] == "waiting"

    reply = hub.handle({"type": "update_status", "displayId": "W-1", "status": "completed"})
    assert reply["changed"] is True
    assert hub.init_message()["stats"]["completedToday"] == 1


def test_illegal_transition_is_reported(hub):
    hub.handle({"type": "register", "source": "web"})
    hub.handle({"type": "update_status", "displayId": "W-1", "status": "called"})
    reply = hub.handle({"type": "update_status", "displayId": "W-1", "status": "arrived"})
    assert reply["code"] == "invalid_transition"


def test_unknown_ticket_is_ignored_for_finishing_commands(hub):
    assert hub.handle({"type": "update_status", "displayId": "S-9", "status": "completed"}) == {
        "type": "ack",
        "command": "update_status",
        "changed": False,
    }
    reply = hub.handle({"type": "update_status", "displayId": "S-9", "status": "called"})
    assert reply["code"] == "not_found"


def test_reset_sequence_command(hub):
    hub.handle({"type": "register", "source": "web"})
    assert hub.handle({"type": "reset_sequence"})["code"] == "queue_not_empty"
    hub.handle({"type": "update_status", "displayId": "W-1", "status": "deleted"})
    assert hub.handle({"type": "reset_sequence"})["type"] == "ack"
    assert hub.init_message()["nextNumber"] == 1


def test_acceptance_and_toggles(hub):
    hub.handle({"type": "set_acceptance", "open": False, "resumeMinutes": 20})
    state = hub.init_message()
    assert state["isAccepting"] is False
    assert state["resumeAt"] is not None

    hub.handle({"type": "set_wait_display", "enabled": False})
    hub.handle({"type": "reset_stats"})
    state = hub.init_message()
    assert state["waitTimeDisplayEnabled"] is False
    assert state["stats"]["totalToday"] == 0


def test_timer_events_reach_viewers(hub, store, clock):
    received = []
    hub.subscribe(received.append)
    hub.handle({"type": "register", "source": "web"})
    hub.handle({"type": "update_status", "displayId": "W-1", "status": "absent"})

    clock.advance(minutes=10)
    store.timers.tick()
    assert received[-1]["reason"] == "auto_cancelled"
    assert received[-1]["queue"] == []


# -------------------- MQTT adapter --------------------


def test_mqtt_service_replies_to_sender_and_broadcasts(hub):
    mqtt = FakeMqtt()
    service = MqttHubService(mqtt=mqtt, hub=hub, namespace="demo/v1")
    service.start()

    assert mqtt.subscriptions == [viewer_requests("demo/v1")]
    topic, startup, retained = mqtt.published[0]
    assert topic == queue_updates("demo/v1")
    assert startup["reason"] == "startup"
    assert retained is True
    mqtt.published.clear()

    (handler,) = mqtt.handlers
    handler(
        viewer_requests("demo/v1"),
        {"type": "register", "source": "web", "corr_id": "c-1", "reply_to": "demo/v1/viewers/responses/k1"},
    )

    by_topic = {t: (m, r) for t, m, r in mqtt.published}
    update, retained = by_topic[queue_updates("demo/v1")]
    assert update["reason"] == "registered"
    assert retained is True
    reply, retained = by_topic["demo/v1/viewers/responses/k1"]
    assert reply["type"] == "registered"
    assert reply["corr_id"] == "c-1"
    assert retained is False


def test_mqtt_service_ignores_other_topics_and_stops(hub):
    mqtt = FakeMqtt()
    service = MqttHubService(mqtt=mqtt, hub=hub, namespace="demo/v1")
    service.start()
    mqtt.published.clear()

    (handler,) = mqtt.handlers
    handler("demo/v1/somewhere/else", {"type": "register", "source": "web"})
    assert mqtt.published == []

    service.stop()
    hub.handle({"type": "register", "source": "web"})
    assert mqtt.published == []
    assert mqtt.handlers == []
    assert mqtt.subscriptions == []
