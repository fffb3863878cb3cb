from __future__ import annotations

# Wait-time estimate shown to guests.
#
#   estimate = ceil(position * max(average, floor) * safety / unit) * unit
#
# - position: guests ahead of this one (0 = head of the line)
# - average: rolling average wait of recent completions, in minutes
# - floor: lower bound on the average so an empty history still shows a wait
# - safety: pessimism factor, guests prefer being seated early to late
# - unit: displayed values are multiples of this many minutes
#
# The defaults (5, 1.2, 5) live in QueueConfig.

import math


def estimate_wait_minutes(
    *,
    position: int,
    average_service_minutes: float,
    floor_minutes: float = 5.0,
    safety_factor: float = 1.2,
    rounding_minutes: int = 5,
) -> int:
    """Estimated wait in minutes for the guest at `position`.

    Args:
        position: number of guests ahead in the line (>= 0).
        average_service_minutes: rolling average (>= 0).
        floor_minutes: minimum average used in the formula.
        safety_factor: multiplier applied before rounding.
        rounding_minutes: result is rounded up to a multiple of this (> 0).

    Returns:
        Non-negative int, 0 for the head of the line.
    """
    if position < 0:
        raise ValueError("position must be >= 0")
    if average_service_minutes < 0:
        raise ValueError("average_service_minutes must be >= 0")
    if rounding_minutes <= 0:
        raise ValueError("rounding_minutes must be > 0")

    if position == 0:
        return 0

    raw = position * max(average_service_minutes, floor_minutes) * safety_factor
    # Round away float noise (5 * 1.2 is not exactly 6.0) before ceil.
    units = math.ceil(round(raw / rounding_minutes, 9))
    return int(units * rounding_minutes)
