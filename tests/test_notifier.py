"""Unit tests for auth/notifier.py -- SMTP delivery and notifier selection."""

import smtplib
from unittest.mock import MagicMock, patch

from auth.notifier import LogNotifier, SmtpNotifier, build_notifier
from core.config import get_settings


def _smtp_mock():
    instance = MagicMock()
    factory = MagicMock()
    factory.return_value.__enter__.return_value = instance
    return factory, instance


def test_smtp_send_uses_starttls_and_login() -> None:
    factory, smtp = _smtp_mock()
    notifier = SmtpNotifier("mail.test", 587, "no-reply@test", username="u", password="p")
    with patch("auth.notifier.smtplib.SMTP", factory):
        assert notifier.send("alice@x.com", "Hello", "body") is True
    factory.assert_called_once_with("mail.test", 587, timeout=10)
    smtp.starttls.assert_called_once()
    smtp.login.assert_called_once_with("u", "p")
    message = smtp.send_message.call_args.args[0]
    assert message["To"] == "alice@x.com"
    assert message["From"] == "no-reply@test"
    assert message["Subject"] == "Hello"


def test_smtp_ssl_skips_starttls() -> None:
    factory, smtp = _smtp_mock()
    notifier = SmtpNotifier("mail.test", 465, "no-reply@test", use_ssl=True)
    with patch("auth.notifier.smtplib.SMTP_SSL", factory):
        assert notifier.send("alice@x.com", "Hello", "body") is True
    smtp.starttls.assert_not_called()
    smtp.login.assert_not_called()


def test_smtp_failure_returns_false() -> None:
    factory, smtp = _smtp_mock()
    smtp.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
    with patch("auth.notifier.smtplib.SMTP", factory):
        assert SmtpNotifier("mail.test", 587, "no-reply@test").send("a@x.com", "s", "b") is False


def test_connection_error_returns_false() -> None:
    with patch("auth.notifier.smtplib.SMTP", side_effect=ConnectionRefusedError()):
        assert SmtpNotifier("mail.test", 587, "no-reply@test").send("a@x.com", "s", "b") is False


def test_build_notifier_selects_by_smtp_host() -> None:
    settings = get_settings()
    assert isinstance(build_notifier(settings.model_copy(update={"smtp_host": ""})), LogNotifier)
    smtp = build_notifier(settings.model_copy(update={"smtp_host": "mail.test", "smtp_port": 2525}))
    assert isinstance(smtp, SmtpNotifier)
    assert smtp.port == 2525
