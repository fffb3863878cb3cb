"""Staff notifications for new registrations.

Notifiers are tried in order until one reports success (for example a mail
API first, then plain SMTP). Delivery runs on the background dispatcher and
never affects the queue; a chain where every notifier fails raises
`NotificationDeliveryFailed`, which the dispatcher logs.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol, Sequence

from .errors import NotificationDeliveryFailed
from .models import GuestTicket

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    name: str

    def send(self, subject: str, body: str) -> bool:
        """Deliver one message. Returns False (or raises) on failure."""
        ...


def registration_message(ticket: GuestTicket, *, shop_name: str) -> tuple[str, str]:
    subject = f"【{shop_name}】新規受付 {ticket.display_id}"
    body = "\n".join(
        [
            "新規予約通知",
            "",
            f"番号：{ticket.display_id}",
            f"到着予定：{ticket.target_time or '今すぐ'}",
            f"お名前：{ticket.name or 'なし'}様",
            f"人数：大人{ticket.adults}名 子供{ticket.children}名 幼児{ticket.infants}名",
            f"座席：{ticket.seat_preference.label}",
        ]
    )
    return subject, body


class NotifierChain:
    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers = list(notifiers)

    def send(self, subject: str, body: str) -> str:
        """Try each notifier in turn. Returns the name of the one that succeeded."""
        for notifier in self.notifiers:
            try:
                if notifier.send(subject, body):
                    logger.info("notification %r sent via %s", subject, notifier.name)
                    return notifier.name
                logger.warning("notifier %s declined %r", notifier.name, subject)
            except Exception:
                logger.exception("notifier %s failed", notifier.name)
        raise NotificationDeliveryFailed(f"no notifier delivered {subject!r}")


class LogNotifier:
    """Writes the message to the log. Always succeeds; useful as the last link."""

    name = "log"

    def send(self, subject: str, body: str) -> bool:
        logger.info("%s\n%s", subject, body)
        return True


class SmtpNotifier:
    name = "smtp"

    def __init__(
        self,
        *,
        host: str,
        port: int = 465,
        username: str,
        password: str,
        to_addr: str,
        from_addr: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        # App passwords are often pasted with spaces.
        self.password = "".join(password.split())
        self.to_addr = to_addr
        self.from_addr = from_addr or username
        self.timeout = timeout

    def send(self, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = self.to_addr
        msg.set_content(body)

        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as smtp:
            smtp.login(self.username, self.password)
            smtp.send_message(msg)
        return True
