"""Read-flag bookkeeping on the mailbox."""

from __future__ import annotations

import logging
from collections.abc import Callable

from ..core.interfaces import MailboxProvider
from ..transport.imap_client import SEEN_FLAG

LOGGER = logging.getLogger(__name__)


class ReadTracker:
    """Mark messages read and query their read state.

    Each call opens its own mailbox session via ``mailbox_factory``. Transport
    errors, including unknown identifiers, propagate to the caller.
    """

    def __init__(self, mailbox_factory: Callable[[], MailboxProvider]) -> None:
        self._mailbox_factory = mailbox_factory

    def mark_as_read(self, email_id: str) -> None:
        """Set ``\\Seen`` on ``email_id``; already-read messages stay read."""
        with self._mailbox_factory() as mailbox:
            mailbox.set_flag(email_id, SEEN_FLAG)
        LOGGER.debug("Marked email %s as read", email_id)

    def is_read(self, email_id: str) -> bool:
        with self._mailbox_factory() as mailbox:
            return SEEN_FLAG in mailbox.get_flags(email_id)


__all__ = ["ReadTracker"]
