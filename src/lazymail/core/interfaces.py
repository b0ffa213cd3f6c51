"""Protocol interfaces and error types shared by the pipeline components."""

from __future__ import annotations

from collections.abc import Sequence
from types import TracebackType
from typing import Protocol

from .models import ActivityLog, Email, MessageChunk, Reply, ReplyStatus


class ReplyNotFoundError(LookupError):
    """Raised when a reply id is not awaiting confirmation."""

    def __init__(self, reply_id: str) -> None:
        super().__init__(f"Reply with id {reply_id} not found in pending queue")
        self.reply_id = reply_id


class ConfigValidationError(ValueError):
    """Raised when a configuration update is malformed."""


class ConfigStoreError(RuntimeError):
    """Raised when the stored configuration cannot be read back."""


class MonitorStateError(RuntimeError):
    """Raised when the monitor is asked for an illegal state transition."""


class MailboxProvider(Protocol):
    """Abstraction over an IMAP mailbox session."""

    mailbox: str

    def __enter__(self) -> MailboxProvider:
        raise NotImplementedError

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        raise NotImplementedError

    def connect(self) -> None:
        """Open the session and select the mailbox."""
        raise NotImplementedError

    def search_unread(self) -> list[str]:
        """Return UIDs of messages without the ``\\Seen`` flag."""
        raise NotImplementedError

    def fetch(self, uids: Sequence[str]) -> list[MessageChunk]:
        """Return raw payloads for ``uids`` in the order given."""
        raise NotImplementedError

    def set_flag(self, uid: str, flag: str) -> None:
        """Add ``flag`` to the message identified by ``uid``."""
        raise NotImplementedError

    def get_flags(self, uid: str) -> frozenset[str]:
        """Return the flags currently set on ``uid``."""
        raise NotImplementedError

    def close(self) -> None:
        """Release network resources."""
        raise NotImplementedError


class EmailParserProtocol(Protocol):
    """Converts raw payloads into emails."""

    def parse(self, uid: str, payload: bytes) -> Email | None:
        """Return an :class:`Email`, or ``None`` when required headers are missing."""
        raise NotImplementedError


class MailSender(Protocol):
    """Outgoing mail transport."""

    def send(self, *, to: str, subject: str, body: str) -> None:
        """Deliver a plain text message, raising on failure."""
        raise NotImplementedError


class ActivityLogSink(Protocol):
    """Destination for activity log entries."""

    def save_activity_log(self, log: ActivityLog) -> None:
        """Persist a log entry."""
        raise NotImplementedError


class ReplyStore(Protocol):
    """Persistence hook for replies."""

    def save_or_update_reply(self, reply: Reply) -> None:
        """Insert ``reply`` or update its mutable fields."""
        raise NotImplementedError

    def list_replies(
        self, *, status: ReplyStatus | None = None, limit: int = 100, offset: int = 0
    ) -> list[Reply]:
        """Return stored replies, newest first."""
        raise NotImplementedError


class ConfigStore(Protocol):
    """Persistence hook for the encrypted configuration blob."""

    def load_config_blob(self) -> str | None:
        """Return the stored blob, or ``None`` when nothing is stored."""
        raise NotImplementedError

    def save_config_blob(self, blob: str) -> None:
        """Replace the stored blob."""
        raise NotImplementedError


__all__ = [
    "ActivityLogSink",
    "ConfigStore",
    "ConfigStoreError",
    "ConfigValidationError",
    "EmailParserProtocol",
    "MailSender",
    "MailboxProvider",
    "MonitorStateError",
    "ReplyNotFoundError",
    "ReplyStore",
]
