"""SMTP client used to deliver automatic replies."""

from __future__ import annotations

import logging
import smtplib
from collections.abc import Callable
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr

from ..core.configuration import EmailConfig

LOGGER = logging.getLogger(__name__)

IMPLICIT_TLS_PORT = 465


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """Outgoing plain text email.

    Attributes:
        to: Recipient email address
        subject: Email subject line
        body: Plain text body
        in_reply_to: Message-ID of the original email, when known
    """

    to: str
    subject: str
    body: str
    in_reply_to: str | None = None


class SmtpError(Exception):
    """Raised when SMTP connection, authentication, or sending fails."""


class SmtpClient:
    """SMTP client for sending emails.

    Port 465 uses implicit TLS; otherwise ``smtp_use_tls`` selects STARTTLS
    on a plain connection.

    Example:
        >>> with SmtpClient(config) as client:
        ...     client.send(EmailMessage(to="user@example.com", subject="Hi", body="..."))
    """

    def __init__(self, config: EmailConfig, *, timeout: float = 30.0) -> None:
        self._config = config
        self._timeout = timeout
        self._connection: smtplib.SMTP | None = None

    def __enter__(self) -> SmtpClient:
        """Enter context manager, establishing connection."""
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        """Exit context manager, closing connection."""
        self.disconnect()

    def connect(self) -> None:
        """Establish SMTP connection and authenticate.

        Raises:
            SmtpError: If connection or authentication fails
        """
        config = self._config
        if not config.smtp_host:
            raise SmtpError("SMTP host not configured")

        LOGGER.info(
            "Attempting SMTP connection to %s:%d", config.smtp_host, config.smtp_port
        )

        try:
            if config.smtp_port == IMPLICIT_TLS_PORT:
                LOGGER.debug("Using SSL for SMTP connection")
                self._connection = smtplib.SMTP_SSL(
                    config.smtp_host, config.smtp_port, timeout=self._timeout
                )
            else:
                self._connection = smtplib.SMTP(
                    config.smtp_host, config.smtp_port, timeout=self._timeout
                )
                if config.smtp_use_tls:
                    LOGGER.debug("Using STARTTLS for SMTP connection")
                    self._connection.starttls()

            if config.username and config.password:
                LOGGER.debug("Authenticating as %s", config.username)
                self._connection.login(config.username, config.password)

            LOGGER.info("Connected to SMTP server: %s", config.smtp_host)

        except smtplib.SMTPAuthenticationError as exc:
            LOGGER.error("SMTP authentication failed: %s", exc)
            self._discard_connection()
            raise SmtpError(f"SMTP authentication failed: {exc}") from exc
        except smtplib.SMTPException as exc:
            LOGGER.error("SMTP error: %s", exc)
            self._discard_connection()
            raise SmtpError(f"SMTP error: {exc}") from exc
        except OSError as exc:
            LOGGER.error("Network error connecting to SMTP server: %s", exc)
            self._discard_connection()
            raise SmtpError(f"Network error: {exc}") from exc

    def disconnect(self) -> None:
        """Close SMTP connection gracefully."""
        if self._connection:
            try:
                self._connection.quit()
                LOGGER.debug("SMTP connection closed")
            except (smtplib.SMTPException, OSError) as exc:
                LOGGER.warning("Error closing SMTP connection: %s", exc)
            finally:
                self._connection = None

    def send(self, message: EmailMessage) -> None:
        """Send an email message.

        Raises:
            SmtpError: If sending fails or not connected
        """
        if not self._connection:
            raise SmtpError("Not connected to SMTP server")

        LOGGER.info("Sending email to %s: %s", message.to, message.subject)
        mime_message = self._build_mime_message(message)

        try:
            refused = self._connection.send_message(mime_message)
        except smtplib.SMTPRecipientsRefused as exc:
            raise SmtpError(f"All recipients refused: {exc.recipients}") from exc
        except smtplib.SMTPSenderRefused as exc:
            raise SmtpError(f"Sender refused: {exc}") from exc
        except smtplib.SMTPDataError as exc:
            raise SmtpError(f"SMTP data error: {exc}") from exc
        except (smtplib.SMTPException, OSError) as exc:
            raise SmtpError(f"Failed to send email: {exc}") from exc

        if refused:
            raise SmtpError(f"Some recipients were refused: {refused}")
        LOGGER.info("Email sent to %s", message.to)

    def _build_mime_message(self, message: EmailMessage) -> MimeMessage:
        mime_msg = MimeMessage()
        username = self._config.username
        if self._config.from_name:
            mime_msg["From"] = formataddr((self._config.from_name, username))
        else:
            mime_msg["From"] = username
        mime_msg["To"] = message.to
        mime_msg["Subject"] = message.subject
        if message.in_reply_to:
            mime_msg["In-Reply-To"] = message.in_reply_to
        mime_msg.set_content(message.body)
        return mime_msg

    def _discard_connection(self) -> None:
        if self._connection is None:
            return
        try:
            self._connection.close()
        finally:
            self._connection = None


class SmtpMailSender:
    """``MailSender`` opening a short-lived SMTP session per message.

    The configuration is read through ``config_provider`` on every send so
    credential changes apply without rebuilding the sender.
    """

    def __init__(
        self,
        config_provider: Callable[[], EmailConfig],
        *,
        client_factory: Callable[[EmailConfig], SmtpClient] = SmtpClient,
    ) -> None:
        self._config_provider = config_provider
        self._client_factory = client_factory

    def send(self, *, to: str, subject: str, body: str) -> None:
        with self._client_factory(self._config_provider()) as client:
            client.send(EmailMessage(to=to, subject=subject, body=body))


__all__ = ["EmailMessage", "SmtpClient", "SmtpError", "SmtpMailSender"]
