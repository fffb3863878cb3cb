from datetime import datetime

from waitline.models import GuestTicket, SeatPreference, Source
from waitline.ticket_encoder import (
    CMD_CUT,
    CMD_EXPAND,
    CMD_NORMAL,
    CMD_RESET,
    encode_ticket,
    text_segments,
)


def _ticket(**overrides):
    fields = dict(
        display_id="S-7",
        sequence_number=7,
        source=Source.shop,
        registered_at=datetime(2026, 10, 17, 12, 5, 9),
        adults=2,
        children=1,
        infants=0,
        seat_preference=SeatPreference.table,
        estimated_wait_minutes=15,
    )
    fields.update(overrides)
    return GuestTicket(**fields)


def test_exact_bytes():
    payload = encode_ticket(_ticket(), shop_name="松乃木")

    expected = (
        b"\x1b\x40"
        + "      松乃木\n--------------------------\n受付番号：\n".encode("cp932")
        + b"\x1b\x69\x01\x01"
        + b"S-7\n"
        + b"\x1b\x69\x00\x00"
        + (
            "日時：2026-10-17 12:05:09\n"
            "到着予定：今すぐ\n"
            "人数：大人2名 子供1名 幼児0名\n"
            "座席：テーブル\n"
            "待ち時間目安：約15分\n"
            "--------------------------\n"
            "ご来店ありがとうございます\n\n\n\n"
        ).encode("cp932")
        + b"\x1b\x64\x02"
    )
    assert payload == expected


def test_command_framing():
    payload = encode_ticket(_ticket(), shop_name="Shop")
    assert payload.startswith(CMD_RESET)
    assert payload.endswith(CMD_CUT)
    assert CMD_EXPAND + b"S-7\n" + CMD_NORMAL in payload


def test_text_segments_round_trip():
    ticket = _ticket(adults=3, children=2, infants=1, target_time="18:30")
    header, number, details = text_segments(encode_ticket(ticket, shop_name="Shop"))

    assert "受付番号" in header
    assert number.strip() == ticket.display_id
    assert "大人3名 子供2名 幼児1名" in details
    assert "到着予定：18:30" in details


def test_estimate_line_omitted_when_hidden():
    details = text_segments(encode_ticket(_ticket(estimated_wait_minutes=None), shop_name="Shop"))[-1]
    assert "待ち時間目安" not in details


def test_deterministic():
    t = _ticket()
    assert encode_ticket(t, shop_name="Shop") == encode_ticket(t, shop_name="Shop")
