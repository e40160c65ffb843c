"""
auth/notifier.py -- Out-of-band delivery of password reset codes.

AuthService only needs something with send(to_address, subject, body) -> bool.
Two implementations ship here:

  SmtpNotifier -- plain-text mail over SMTP (SSL or STARTTLS), configured
      from Settings. Delivery errors are logged and reported as False; they
      never propagate, because a mail outage must not change what
      forgot-password tells the caller.

  LogNotifier  -- logs that a message was handed off, without the body
      (the body carries the reset code). Used when SMTP_HOST is empty, i.e.
      local development.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("tubeauth.notifier")

_SMTP_TIMEOUT_SECONDS = 10


class Notifier(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> bool: ...


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_ssl: bool = False,
        starttls: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.starttls = starttls

    def send(self, to_address: str, subject: str, body: str) -> bool:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)

        smtp_cls = smtplib.SMTP_SSL if self.use_ssl else smtplib.SMTP
        try:
            with smtp_cls(self.host, self.port, timeout=_SMTP_TIMEOUT_SECONDS) as smtp:
                if self.starttls and not self.use_ssl:
                    smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("Mail delivery to %s via %s:%d failed: %s", to_address, self.host, self.port, exc)
            return False
        logger.info("Mail delivered to %s (subject=%r)", to_address, subject)
        return True


class LogNotifier:
    def send(self, to_address: str, subject: str, body: str) -> bool:
        logger.info("SMTP not configured; mail to %s (subject=%r) logged instead of sent", to_address, subject)
        return True


def build_notifier(settings: Settings) -> Notifier:
    """Return an SmtpNotifier when SMTP_HOST is set, else a LogNotifier."""
    if not settings.smtp_host:
        return LogNotifier()
    return SmtpNotifier(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.mail_from,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_ssl=settings.smtp_use_ssl,
        starttls=settings.smtp_starttls,
    )
