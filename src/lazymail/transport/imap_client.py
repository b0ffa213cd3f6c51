"""IMAP transport adapter providing mailbox access."""

from __future__ import annotations

import imaplib
import logging
from collections.abc import Sequence
from types import TracebackType
from typing import Any

from ..core.configuration import EmailConfig
from ..core.interfaces import MailboxProvider
from ..core.models import MessageChunk

LOGGER = logging.getLogger(__name__)

SEEN_FLAG = "\\Seen"

_IMAP_ERRORS = (imaplib.IMAP4.error, OSError)


class ImapError(RuntimeError):
    """Wrap low level IMAP errors with additional context."""


class ImapClient(MailboxProvider):
    """Thin wrapper around ``imaplib`` offering the mailbox operations."""

    def __init__(self, config: EmailConfig, *, timeout: float | None = 30.0) -> None:
        """Initialise the client from the mailbox section of the configuration."""
        self._config = config
        self._timeout = timeout
        self._connection: imaplib.IMAP4 | imaplib.IMAP4_SSL | None = None
        self.mailbox = config.mailbox

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> ImapClient:
        """Connect on entering a context manager scope."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure resources are released on context exit."""
        self.close()

    # Public API ---------------------------------------------------------------
    def connect(self) -> None:
        """Establish IMAP connection and select the configured mailbox."""
        if self._connection is not None:
            return

        config = self._config
        if not config.imap_host:
            raise ImapError("IMAP host is not configured")
        if not config.username or not config.password:
            raise ImapError("IMAP credentials are not configured")

        try:
            if config.imap_use_ssl:
                LOGGER.debug(
                    "Connecting to IMAP host %s:%s via SSL",
                    config.imap_host,
                    config.imap_port,
                )
                connection: imaplib.IMAP4 | imaplib.IMAP4_SSL = imaplib.IMAP4_SSL(
                    config.imap_host, config.imap_port, timeout=self._timeout
                )
            else:
                LOGGER.debug(
                    "Connecting to IMAP host %s:%s without SSL",
                    config.imap_host,
                    config.imap_port,
                )
                connection = imaplib.IMAP4(
                    config.imap_host, config.imap_port, timeout=self._timeout
                )

            LOGGER.debug("Authenticating as %s", config.username)
            connection.login(config.username, config.password)
            status, _ = connection.select(self.mailbox)
            if status != "OK":
                raise ImapError(f"Unable to select mailbox '{self.mailbox}'")
            self._connection = connection
        except _IMAP_ERRORS as exc:
            raise ImapError(f"Failed to connect to IMAP server: {exc}") from exc

    def search_unread(self) -> list[str]:
        """Return UIDs of messages without the ``\\Seen`` flag, oldest first."""
        status, data = self._uid("SEARCH", None, "UNSEEN")
        if status != "OK":
            raise ImapError("Failed to search for unread messages")
        raw_ids = data[0].split() if data and data[0] else []
        LOGGER.debug("Found %d unread message(s)", len(raw_ids))
        return [uid.decode() for uid in raw_ids]

    def fetch(self, uids: Sequence[str]) -> list[MessageChunk]:
        """Return RFC822 payloads for ``uids`` without setting ``\\Seen``."""
        chunks: list[MessageChunk] = []
        for uid in uids:
            LOGGER.debug("Fetching RFC822 payload for UID %s", uid)
            status, data = self._uid("FETCH", uid, "(BODY.PEEK[])")
            if status != "OK":
                raise ImapError(f"Failed to fetch message UID {uid}")
            payload = _extract_payload(data)
            if payload is None:
                LOGGER.warning("No RFC822 payload returned for UID %s", uid)
                continue
            chunks.append(MessageChunk(uid=uid, raw=payload))
        return chunks

    def set_flag(self, uid: str, flag: str) -> None:
        """Add ``flag`` to ``uid``; setting a flag that is already present is a no-op."""
        LOGGER.debug("Setting %s on UID %s", flag, uid)
        status, data = self._uid("STORE", uid, "+FLAGS", f"({flag})")
        if status != "OK":
            raise ImapError(f"Failed to set {flag} on message UID {uid}")
        if not _has_response(data):
            raise ImapError(f"Message UID {uid} does not exist in '{self.mailbox}'")

    def get_flags(self, uid: str) -> frozenset[str]:
        """Return the flags currently set on ``uid``."""
        status, data = self._uid("FETCH", uid, "(FLAGS)")
        if status != "OK":
            raise ImapError(f"Failed to read flags for message UID {uid}")
        if not _has_response(data):
            raise ImapError(f"Message UID {uid} does not exist in '{self.mailbox}'")
        flags: set[str] = set()
        for entry in data:
            raw = entry[0] if isinstance(entry, tuple) else entry
            if isinstance(raw, bytes):
                flags.update(flag.decode() for flag in imaplib.ParseFlags(raw))
        return frozenset(flags)

    def close(self) -> None:
        """Terminate the IMAP session cleanly."""
        if self._connection is None:
            return
        try:
            LOGGER.debug("Closing IMAP connection")
            self._connection.close()
        except _IMAP_ERRORS:  # pragma: no cover - depends on server state
            LOGGER.debug("IMAP close raised; continuing with logout")
        finally:
            try:
                self._connection.logout()
            except _IMAP_ERRORS:  # pragma: no cover
                LOGGER.debug("IMAP logout raised; suppressing during shutdown")
            self._connection = None

    # Internal helpers ---------------------------------------------------------
    def _require_connection(self) -> imaplib.IMAP4 | imaplib.IMAP4_SSL:
        if self._connection is None:
            raise ImapError("IMAP connection has not been established")
        return self._connection

    def _uid(self, command: str, *args: Any) -> tuple[str, list[Any]]:
        connection = self._require_connection()
        try:
            return connection.uid(command, *args)
        except _IMAP_ERRORS as exc:
            raise ImapError(f"IMAP {command} failed: {exc}") from exc


def _extract_payload(fetch_data: list[Any]) -> bytes | None:
    """Extract the message payload from ``imaplib`` response chunks."""
    for entry in fetch_data:
        if isinstance(entry, tuple) and len(entry) == 2:
            return entry[1]
    return None


def _has_response(data: list[Any] | None) -> bool:
    return bool(data) and any(entry is not None for entry in data)


__all__ = ["ImapClient", "ImapError", "SEEN_FLAG"]
