from __future__ import annotations

# Policy constants for one deployment.
#
# Everything that is a business decision rather than a derived value lives
# here: wait-estimate tuning, the absence grace period, what happens to queued
# guests at midnight, and what gets printed on the ticket. The CLI exposes each
# field as a flag (see `add_config_args`).

import argparse
from dataclasses import dataclass

ROLLOVER_PRESERVE = "preserve"
ROLLOVER_CLEAR = "clear"

STARPRNT_MEDIA_TYPE = "application/vnd.star.starprnt"


@dataclass(frozen=True)
class QueueConfig:
    shop_name: str = "Restaurant"
    ticket_encoding: str = "cp932"  # Shift_JIS as the printer firmware expects it

    absence_timeout_minutes: float = 10.0

    wait_floor_minutes: float = 5.0
    wait_safety_factor: float = 1.2
    wait_rounding_minutes: int = 5
    wait_window: int = 10  # completions kept for the rolling average

    rollover_check_seconds: float = 60.0
    rollover_policy: str = ROLLOVER_PRESERVE

    printer_enabled: bool = True
    wait_display_enabled: bool = True

    def __post_init__(self) -> None:
        if self.rollover_policy not in (ROLLOVER_PRESERVE, ROLLOVER_CLEAR):
            raise ValueError(f"unknown rollover_policy {self.rollover_policy!r}")
        if self.absence_timeout_minutes <= 0:
            raise ValueError("absence_timeout_minutes must be > 0")
        if self.wait_rounding_minutes <= 0:
            raise ValueError("wait_rounding_minutes must be > 0")
        if self.wait_window <= 0:
            raise ValueError("wait_window must be > 0")


def add_config_args(p: argparse.ArgumentParser) -> None:
    d = QueueConfig()
    p.add_argument("--shop-name", default=d.shop_name)
    p.add_argument("--ticket-encoding", default=d.ticket_encoding)
    p.add_argument("--absence-timeout-minutes", type=float, default=d.absence_timeout_minutes)
    p.add_argument("--wait-floor-minutes", type=float, default=d.wait_floor_minutes)
    p.add_argument("--wait-safety-factor", type=float, default=d.wait_safety_factor)
    p.add_argument("--wait-rounding-minutes", type=int, default=d.wait_rounding_minutes)
    p.add_argument("--wait-window", type=int, default=d.wait_window)
    p.add_argument(
        "--rollover-check-seconds",
        type=float,
        default=d.rollover_check_seconds,
        help="how often to check whether the local date changed",
    )
    p.add_argument(
        "--rollover-policy",
        choices=[ROLLOVER_PRESERVE, ROLLOVER_CLEAR],
        default=d.rollover_policy,
        help="keep or drop guests still queued at midnight",
    )
    p.add_argument("--no-printer", action="store_true", help="start with ticket printing disabled")
    p.add_argument("--hide-wait", action="store_true", help="start with wait estimates hidden")


def config_from_args(args: argparse.Namespace) -> QueueConfig:
    return QueueConfig(
        shop_name=args.shop_name,
        ticket_encoding=args.ticket_encoding,
        absence_timeout_minutes=args.absence_timeout_minutes,
        wait_floor_minutes=args.wait_floor_minutes,
        wait_safety_factor=args.wait_safety_factor,
        wait_rounding_minutes=args.wait_rounding_minutes,
        wait_window=args.wait_window,
        rollover_check_seconds=args.rollover_check_seconds,
        rollover_policy=args.rollover_policy,
        printer_enabled=not args.no_printer,
        wait_display_enabled=not args.hide_wait,
    )
