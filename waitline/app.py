from __future__ import annotations

# Single entrypoint.
#
# - `serve` runs the whole shop side in one process: queue store + timers,
#   the MQTT hub for viewers and the CloudPRNT HTTP endpoint for the printer.
#     python -m waitline.app serve --data-file queue-data.json
#
# - Every other subcommand is a one-shot viewer command sent over MQTT, handy
#   for the admin terminal and for debugging:
#     python -m waitline.app register --source shop --adults 2
#     python -m waitline.app status --display-id S-1 --to called

import argparse
import logging
import os
import sys
from typing import Any

from .config import add_config_args, config_from_args
from .mqtt_topics import DEFAULT_NAMESPACE

logger = logging.getLogger("waitline")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Restaurant waiting line (MQTT + CloudPRNT) - main entrypoint")
    sub = parser.add_subparsers(dest="cmd", required=True)

    def add_mqtt_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--mqtt-host", default="127.0.0.1")
        p.add_argument("--mqtt-port", type=int, default=1883)
        p.add_argument("--namespace", default=DEFAULT_NAMESPACE)

    # ---- Normal operation ----
    p_serve = sub.add_parser("serve", help="Run the queue hub and the printer endpoint")
    add_mqtt_args(p_serve)
    add_config_args(p_serve)
    p_serve.add_argument("--http-host", default="0.0.0.0")
    p_serve.add_argument("--http-port", type=int, default=int(os.environ.get("PORT", "3000")))
    p_serve.add_argument("--data-file", default="queue-data.json", help="JSON snapshot of the queue")
    p_serve.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    p_serve.add_argument("--smtp-host", default=os.environ.get("WAITLINE_SMTP_HOST"))
    p_serve.add_argument("--smtp-port", type=int, default=465)
    p_serve.add_argument("--smtp-user", default=os.environ.get("WAITLINE_SMTP_USER"))
    p_serve.add_argument(
        "--smtp-password",
        default=os.environ.get("WAITLINE_SMTP_PASSWORD"),
        help="defaults to $WAITLINE_SMTP_PASSWORD",
    )
    p_serve.add_argument("--notify-to", default=os.environ.get("WAITLINE_NOTIFY_TO"), help="shop mailbox")

    # ---- Viewer commands ----
    p_snap = sub.add_parser("snapshot", help="Print the current queue")
    add_mqtt_args(p_snap)

    p_reg = sub.add_parser("register", help="Register a guest")
    add_mqtt_args(p_reg)
    p_reg.add_argument("--source", choices=["shop", "web"], default="shop")
    p_reg.add_argument("--adults", type=int, default=1)
    p_reg.add_argument("--children", type=int, default=0)
    p_reg.add_argument("--infants", type=int, default=0)
    p_reg.add_argument("--pref", choices=["table", "counter", "any"], default="any")
    p_reg.add_argument("--name", default=None)
    p_reg.add_argument("--target-time", default=None, help="expected arrival, e.g. 18:30")

    p_status = sub.add_parser("status", help="Change a ticket's status")
    add_mqtt_args(p_status)
    p_status.add_argument("--display-id", required=True)
    p_status.add_argument(
        "--to",
        required=True,
        choices=["arrived", "called", "absent", "cancel_absent", "completed", "deleted"],
    )

    p_accept = sub.add_parser("accept", help="Open or close registration")
    add_mqtt_args(p_accept)
    group = p_accept.add_mutually_exclusive_group(required=True)
    group.add_argument("--open", action="store_true")
    group.add_argument("--close", action="store_true")
    p_accept.add_argument("--resume-minutes", type=float, default=None, help="reopen automatically")

    p_reset = sub.add_parser("reset-number", help="Restart numbering at 1 (queue must be empty)")
    add_mqtt_args(p_reset)

    p_stats = sub.add_parser("reset-stats", help="Zero today's counters")
    add_mqtt_args(p_stats)

    for name, helptext in (("printer", "Enable/disable ticket printing"), ("wait-display", "Show/hide wait estimates")):
        p_toggle = sub.add_parser(name, help=helptext)
        add_mqtt_args(p_toggle)
        p_toggle.add_argument("state", choices=["on", "off"])

    args = parser.parse_args(argv)

    if args.cmd == "serve":
        serve(args)
        return 0

    return _run_viewer_command(args, _command_message(args))


def _command_message(args: argparse.Namespace) -> dict[str, Any]:
    if args.cmd == "snapshot":
        return {"type": "init"}
    if args.cmd == "register":
        return {
            "type": "register",
            "source": args.source,
            "adults": args.adults,
            "children": args.children,
            "infants": args.infants,
            "pref": args.pref,
            "name": args.name,
            "targetTime": args.target_time,
        }
    if args.cmd == "status":
        return {"type": "update_status", "displayId": args.display_id, "status": args.to}
    if args.cmd == "accept":
        return {"type": "set_acceptance", "open": bool(args.open), "resumeMinutes": args.resume_minutes}
    if args.cmd == "reset-number":
        return {"type": "reset_sequence"}
    if args.cmd == "reset-stats":
        return {"type": "reset_stats"}
    if args.cmd == "printer":
        return {"type": "set_printer_enabled", "enabled": args.state == "on"}
    if args.cmd == "wait-display":
        return {"type": "set_wait_display", "enabled": args.state == "on"}
    raise ValueError(f"unknown command {args.cmd}")


def _run_viewer_command(args: argparse.Namespace, message: dict[str, Any]) -> int:
    from .viewer import describe_reply, send_command

    reply = send_command(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        message=message,
    )
    print(describe_reply(reply))
    return 1 if reply.get("type") == "error" else 0


def serve(args: argparse.Namespace) -> None:
    # Import the server stack only when actually serving.
    import uvicorn

    from .cloudprnt import create_app
    from .dispatch import BackgroundDispatcher
    from .hub import BroadcastHub, MqttHubService
    from .mqtt_client import MqttClient
    from .persistence import SnapshotFile
    from .printing import PrintJobChannel
    from .store import QueueStore
    from .timers import TimerRegistry

    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = config_from_args(args)

    dispatcher = BackgroundDispatcher()
    dispatcher.start()
    timers = TimerRegistry()
    store = QueueStore(config, timers=timers, persistence=SnapshotFile(args.data_file), dispatcher=dispatcher)
    store.load()
    store.start_rollover_watch()

    printer = PrintJobChannel()
    hub = BroadcastHub(store, printer=printer, notifier=_build_notifier(args))

    mqtt_client = MqttClient(client_id=f"waitline-hub-{os.getpid()}", host=args.mqtt_host, port=args.mqtt_port)
    mqtt_client.start()
    service = MqttHubService(mqtt=mqtt_client, hub=hub, namespace=args.namespace)
    service.start()
    timers.start()

    logger.info(
        "serving: MQTT %s:%s namespace=%s, CloudPRNT on http://%s:%s/cloudprnt",
        args.mqtt_host,
        args.mqtt_port,
        args.namespace,
        args.http_host,
        args.http_port,
    )

    try:
        uvicorn.run(
            create_app(printer, store=store),
            host=args.http_host,
            port=args.http_port,
            log_level=args.log_level.lower(),
        )
    finally:
        timers.stop()
        service.stop()
        mqtt_client.stop()
        dispatcher.stop()


def _build_notifier(args: argparse.Namespace):
    from .notify import LogNotifier, NotifierChain, SmtpNotifier

    notifiers: list = []
    if args.smtp_host and args.smtp_user and args.smtp_password and args.notify_to:
        notifiers.append(
            SmtpNotifier(
                host=args.smtp_host,
                port=args.smtp_port,
                username=args.smtp_user,
                password=args.smtp_password,
                to_addr=args.notify_to,
            )
        )
    else:
        logger.warning("SMTP not configured; registrations are only logged")
    notifiers.append(LogNotifier())
    return NotifierChain(notifiers)


if __name__ == "__main__":
    sys.exit(main())
