"""Transport adapters for the mailbox and outgoing mail."""

from .imap_client import SEEN_FLAG, ImapClient, ImapError
from .smtp_client import EmailMessage, SmtpClient, SmtpError, SmtpMailSender

__all__ = [
    "EmailMessage",
    "ImapClient",
    "ImapError",
    "SEEN_FLAG",
    "SmtpClient",
    "SmtpError",
    "SmtpMailSender",
]
