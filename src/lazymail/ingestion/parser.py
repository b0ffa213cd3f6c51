"""Utilities for parsing raw RFC822 messages into emails."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime

from ..core.datetime_utils import ensure_utc, utc_now
from ..core.models import Email

LOGGER = logging.getLogger(__name__)


class EmailParser:
    """Convert raw email payloads into :class:`Email` records.

    Only the sender, first recipient, subject, received date and the
    ``text/plain`` body are extracted. Messages without a ``To`` address
    fall back to ``default_recipient`` (typically the mailbox owner).
    """

    def __init__(self, default_recipient: Callable[[], str] | None = None) -> None:
        self._parser = BytesParser(policy=policy.default)
        self._default_recipient = default_recipient

    def parse(self, uid: str, payload: bytes) -> Email | None:
        """Parse raw RFC822 bytes, returning ``None`` when required headers are missing."""
        if not uid:
            LOGGER.warning("Skipping message without an identifier")
            return None

        message = self._parser.parsebytes(payload)
        sender = _take_first_address(message.get_all("From", []))
        if sender is None:
            LOGGER.warning("Skipping message UID %s without a sender address", uid)
            return None

        recipient = _take_first_address(message.get_all("To", []))
        if recipient is None and self._default_recipient is not None:
            recipient = self._default_recipient() or None
        if recipient is None:
            LOGGER.warning("Skipping message UID %s without a recipient address", uid)
            return None

        return Email(
            id=uid,
            sender=sender,
            to=recipient,
            subject=str(message.get("Subject") or "").strip(),
            body=_extract_text_body(message),
            received_at=_try_parse_datetime(message.get("Date")) or utc_now(),
            is_read=False,
        )


def _extract_addresses(headers: Iterable[str]) -> Iterable[str]:
    for _, email_address in getaddresses([str(header) for header in headers]):
        if email_address:
            yield email_address


def _take_first_address(headers: Iterable[str]) -> str | None:
    for address in _extract_addresses(headers):
        return address
    return None


def _extract_text_body(message: EmailMessage) -> str:
    chunks: list[str] = []
    for part in message.walk():
        if part.is_multipart():
            continue
        if part.get_content_disposition() == "attachment":
            continue
        if part.get_content_type() != "text/plain":
            continue
        try:
            content = part.get_content()
        except LookupError:
            continue
        if isinstance(content, str) and content.strip():
            chunks.append(content.strip())
    return "\n\n".join(chunks)


def _try_parse_datetime(header_value: str | None) -> datetime | None:
    if header_value is None:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(str(header_value)))
    except (TypeError, ValueError):
        return None


__all__ = ["EmailParser"]
