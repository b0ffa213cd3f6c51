from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from email.message import EmailMessage

from lazymail.core.models import ActivityLog, Email, MessageChunk
from lazymail.transport import ImapError


def make_email(
    *,
    email_id: str = "101",
    sender: str = "alice@example.com",
    to: str = "me@example.org",
    subject: str = "Hello",
    body: str = "Just checking in.",
) -> Email:
    return Email(
        id=email_id,
        sender=sender,
        to=to,
        subject=subject,
        body=body,
        received_at=datetime(2025, 1, 6, 9, 30, tzinfo=UTC),
    )


def build_raw_email(
    *,
    sender: str | None = "Alice <alice@example.com>",
    to: str | None = "me@example.org",
    subject: str | None = "Hello",
    body: str = "Just checking in.",
    date: str | None = "Mon, 06 Jan 2025 09:30:00 +0000",
) -> bytes:
    message = EmailMessage()
    if sender is not None:
        message["From"] = sender
    if to is not None:
        message["To"] = to
    if subject is not None:
        message["Subject"] = subject
    if date is not None:
        message["Date"] = date
    message.set_content(body)
    return message.as_bytes()


class FakeMailServer:
    """In-memory mailbox; calling the server opens a new session."""

    def __init__(self) -> None:
        self.messages: dict[str, bytes] = {}
        self.flags: dict[str, set[str]] = {}
        self.failures_remaining = 0
        self.sessions_opened = 0
        self.sessions_closed = 0
        self.flag_calls: list[tuple[str, str]] = []
        self.search_times: list[float] = []
        self.on_search: Callable[[int], None] | None = None
        self._lock = threading.Lock()

    def add_message(self, uid: str, raw: bytes, *, seen: bool = False) -> None:
        self.messages[uid] = raw
        self.flags[uid] = {"\\Seen"} if seen else set()

    def fail_next(self, times: int) -> None:
        self.failures_remaining = times

    def is_seen(self, uid: str) -> bool:
        return "\\Seen" in self.flags.get(uid, set())

    def __call__(self) -> FakeMailboxSession:
        return FakeMailboxSession(self)


class FakeMailboxSession:
    mailbox = "INBOX"

    def __init__(self, server: FakeMailServer) -> None:
        self._server = server
        self._connected = False

    def __enter__(self) -> FakeMailboxSession:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def connect(self) -> None:
        server = self._server
        with server._lock:  # pylint: disable=protected-access
            if server.failures_remaining > 0:
                server.failures_remaining -= 1
                raise ImapError("Failed to connect to IMAP server: connection refused")
            server.sessions_opened += 1
        self._connected = True

    def search_unread(self) -> list[str]:
        server = self._server
        server.search_times.append(time.monotonic())
        if server.on_search is not None:
            server.on_search(len(server.search_times))
        return [
            uid for uid in self._server.messages if not self._server.is_seen(uid)
        ]

    def fetch(self, uids: Sequence[str]) -> list[MessageChunk]:
        return [MessageChunk(uid=uid, raw=self._server.messages[uid]) for uid in uids]

    def set_flag(self, uid: str, flag: str) -> None:
        if uid not in self._server.messages:
            raise ImapError(f"Message UID {uid} does not exist in 'INBOX'")
        self._server.flag_calls.append((uid, flag))
        self._server.flags[uid].add(flag)

    def get_flags(self, uid: str) -> frozenset[str]:
        if uid not in self._server.messages:
            raise ImapError(f"Message UID {uid} does not exist in 'INBOX'")
        return frozenset(self._server.flags[uid])

    def close(self) -> None:
        if self._connected:
            self._server.sessions_closed += 1
            self._connected = False


class RecordingSender:
    """Mail sender capturing outgoing messages, optionally failing."""

    def __init__(self, error: Exception | None = None) -> None:
        self.sent: list[dict[str, str]] = []
        self.error = error

    def send(self, *, to: str, subject: str, body: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append({"to": to, "subject": subject, "body": body})


class RecordingTracker:
    """Read tracker remembering which emails were marked read."""

    def __init__(self, error: Exception | None = None) -> None:
        self.marked: list[str] = []
        self.error = error

    def mark_as_read(self, email_id: str) -> None:
        self.marked.append(email_id)
        if self.error is not None:
            raise self.error

    def is_read(self, email_id: str) -> bool:
        return email_id in self.marked


class LogCollector:
    """Activity log sink keeping entries in memory."""

    def __init__(self) -> None:
        self.entries: list[ActivityLog] = []

    def __call__(self, log: ActivityLog) -> None:
        self.entries.append(log)

    def of_type(self, log_type: str) -> list[ActivityLog]:
        return [entry for entry in self.entries if entry.type == log_type]


class RecordingReplyStore:
    def __init__(self) -> None:
        self.saved: list[tuple[str, str]] = []

    def save_or_update_reply(self, reply) -> None:
        self.saved.append((reply.id, reply.status))

    def list_replies(self, *, status=None, limit=100, offset=0):
        return []
