"""Tests for the SMTP transport and the reply mail sender."""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from lazymail.core.configuration import EmailConfig
from lazymail.transport import EmailMessage, SmtpClient, SmtpError, SmtpMailSender


def _config(**overrides) -> EmailConfig:
    values = {
        "smtp_host": "smtp.test",
        "smtp_port": 587,
        "smtp_use_tls": True,
        "username": "me@example.org",
        "password": "secret",
        "from_name": "Support Desk",
    }
    values.update(overrides)
    return EmailConfig(**values)


def test_send_uses_starttls_and_builds_plain_text_message() -> None:
    connection = MagicMock()
    connection.send_message.return_value = {}

    with patch("lazymail.transport.smtp_client.smtplib.SMTP", return_value=connection):
        with SmtpClient(_config()) as client:
            client.send(
                EmailMessage(to="alice@example.com", subject="Re: Hi", body="Thanks")
            )

    connection.starttls.assert_called_once()
    connection.login.assert_called_once_with("me@example.org", "secret")
    sent = connection.send_message.call_args.args[0]
    assert sent["To"] == "alice@example.com"
    assert sent["Subject"] == "Re: Hi"
    assert sent["From"] == "Support Desk <me@example.org>"
    assert sent.get_content().strip() == "Thanks"
    connection.quit.assert_called_once()


def test_port_465_uses_implicit_tls() -> None:
    connection = MagicMock()
    with patch(
        "lazymail.transport.smtp_client.smtplib.SMTP_SSL", return_value=connection
    ) as smtp_ssl:
        SmtpClient(_config(smtp_port=465)).connect()

    smtp_ssl.assert_called_once_with("smtp.test", 465, timeout=30.0)
    connection.starttls.assert_not_called()


def test_authentication_failure_raises_smtp_error() -> None:
    connection = MagicMock()
    connection.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad creds")

    with patch("lazymail.transport.smtp_client.smtplib.SMTP", return_value=connection):
        with pytest.raises(SmtpError, match="authentication failed"):
            SmtpClient(_config()).connect()


def test_refused_recipient_raises_smtp_error() -> None:
    connection = MagicMock()
    connection.send_message.return_value = {"alice@example.com": (550, b"no such user")}

    with patch("lazymail.transport.smtp_client.smtplib.SMTP", return_value=connection):
        with SmtpClient(_config()) as client:
            with pytest.raises(SmtpError, match="refused"):
                client.send(EmailMessage(to="alice@example.com", subject="s", body="b"))


def test_send_requires_connection() -> None:
    with pytest.raises(SmtpError, match="Not connected"):
        SmtpClient(_config()).send(EmailMessage(to="a@b.com", subject="s", body="b"))


def test_missing_host_is_rejected() -> None:
    with pytest.raises(SmtpError, match="host not configured"):
        SmtpClient(_config(smtp_host="")).connect()


def test_mail_sender_reads_current_config_for_every_message() -> None:
    configs = iter([_config(smtp_host="first.test"), _config(smtp_host="second.test")])
    used_hosts: list[str] = []

    class StubClient:
        def __init__(self, config: EmailConfig) -> None:
            used_hosts.append(config.smtp_host)
            self.messages: list[EmailMessage] = []

        def __enter__(self) -> StubClient:
            return self

        def __exit__(self, *args: object) -> None:
            return None

        def send(self, message: EmailMessage) -> None:
            assert message.subject == "Re: Hi"

    sender = SmtpMailSender(lambda: next(configs), client_factory=StubClient)
    sender.send(to="a@example.com", subject="Re: Hi", body="Thanks")
    sender.send(to="b@example.com", subject="Re: Hi", body="Thanks")

    assert used_hosts == ["first.test", "second.test"]
