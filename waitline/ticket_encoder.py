"""Receipt bytes for a guest ticket (StarPRNT command set).

Layout of one ticket:

    1B 40          reset
    header text    shop name, rule, "受付番号："
    1B 69 01 01    double height + width
    displayId\\n
    1B 69 00 00    back to normal size
    details text   time, expected arrival, party, seat, estimate, thanks
    1B 64 02       feed and partial cut

Text is encoded with `cp932` (the Windows flavour of Shift_JIS, which is what
the printer firmware renders). Any other encoding prints garbage without an
error, so the output must stay byte-for-byte stable.
"""

from __future__ import annotations

import re

from .models import GuestTicket

CMD_RESET = b"\x1b\x40"
CMD_EXPAND = b"\x1b\x69\x01\x01"
CMD_NORMAL = b"\x1b\x69\x00\x00"
CMD_CUT = b"\x1b\x64\x02"

RULE = "--------------------------"

# cp932 never produces ESC, so every ESC in a payload starts a command.
_COMMAND_RE = re.compile(rb"\x1b(?:\x40|\x69[\x00-\xff]{2}|\x64[\x00-\xff])")


def header_text(shop_name: str) -> str:
    return f"      {shop_name}\n{RULE}\n受付番号：\n"


def details_text(ticket: GuestTicket) -> str:
    lines = [
        f"日時：{ticket.registered_at:%Y-%m-%d %H:%M:%S}",
        f"到着予定：{ticket.target_time or '今すぐ'}",
        f"人数：大人{ticket.adults}名 子供{ticket.children}名 幼児{ticket.infants}名",
        f"座席：{ticket.seat_preference.label}",
    ]
    if ticket.estimated_wait_minutes is not None:
        lines.append(f"待ち時間目安：約{ticket.estimated_wait_minutes}分")
    lines += [RULE, "ご来店ありがとうございます", "", "", ""]
    return "\n".join(lines) + "\n"


def encode_ticket(ticket: GuestTicket, *, shop_name: str, encoding: str = "cp932") -> bytes:
    """Build the printer payload for `ticket`."""
    return b"".join(
        [
            CMD_RESET,
            header_text(shop_name).encode(encoding),
            CMD_EXPAND,
            f"{ticket.display_id}\n".encode(encoding),
            CMD_NORMAL,
            details_text(ticket).encode(encoding),
            CMD_CUT,
        ]
    )


def text_segments(payload: bytes, *, encoding: str = "cp932") -> list[str]:
    """Decode the text blocks of a payload, dropping the command bytes.

    Useful for checking what a ticket will say without a printer.
    """
    return [part.decode(encoding) for part in _COMMAND_RE.split(payload) if part]
