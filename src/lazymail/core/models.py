"""Core domain models used across the pipeline."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal, TypeAlias

ReplyStatus = Literal["pending", "approved", "rejected", "sent", "failed"]
ActivityLogType = Literal["reply_sent", "reply_failed", "email_filtered", "error"]

REPLY_STATUSES: tuple[ReplyStatus, ...] = (
    "pending",
    "approved",
    "rejected",
    "sent",
    "failed",
)
TERMINAL_REPLY_STATUSES: frozenset[ReplyStatus] = frozenset(
    {"sent", "rejected", "failed"}
)
ACTIVITY_LOG_TYPES: tuple[ActivityLogType, ...] = (
    "reply_sent",
    "reply_failed",
    "email_filtered",
    "error",
)

SYSTEM_EMAIL_ID = "system"

MetadataValue: TypeAlias = (
    str
    | int
    | float
    | bool
    | None
    | Sequence["MetadataValue"]
    | Mapping[str, "MetadataValue"]
)


@dataclass(slots=True)
class MessageChunk:
    """Raw IMAP payload paired with its UID."""

    uid: str
    raw: bytes


@dataclass(slots=True)
class Email:
    """Unread message retrieved from the mailbox during a poll cycle."""

    id: str
    sender: str
    to: str
    subject: str
    body: str
    received_at: datetime
    is_read: bool = False


@dataclass(frozen=True, slots=True)
class FilterDecision:
    """Outcome of running an email through the message filter."""

    approved: bool
    reason: str
    matched_keywords: tuple[str, ...] = ()


# pylint: disable=too-many-instance-attributes
@dataclass(slots=True)
class Reply:
    """Automatic reply generated for an email."""

    id: str
    original_email_id: str
    to: str
    subject: str
    body: str
    generated_at: datetime
    status: ReplyStatus
    sent_at: datetime | None = None
    approved_by: str | None = None

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` once no further transition is permitted."""
        return self.status in TERMINAL_REPLY_STATUSES


@dataclass(frozen=True, slots=True)
class ActivityLog:
    """Write-once event record handed to the activity log sink."""

    id: str
    timestamp: datetime
    type: ActivityLogType
    email_id: str
    details: str
    reply_id: str | None = None
    metadata: Mapping[str, MetadataValue] | None = field(default=None)

    @classmethod
    def create(
        cls,
        log_type: ActivityLogType,
        email_id: str,
        details: str,
        *,
        reply_id: str | None = None,
        metadata: Mapping[str, MetadataValue] | None = None,
        timestamp: datetime | None = None,
    ) -> ActivityLog:
        """Build a log entry with a fresh identifier and UTC timestamp."""
        if not details:
            raise ValueError("Activity log details must not be empty")
        return cls(
            id=str(uuid.uuid4()),
            timestamp=timestamp or datetime.now(tz=UTC),
            type=log_type,
            email_id=email_id,
            details=details,
            reply_id=reply_id,
            metadata=dict(metadata) if metadata is not None else None,
        )


@dataclass(frozen=True, slots=True)
class SendResult:
    """Outcome of a reply send attempt."""

    success: bool
    error: str | None = None
    sent_at: datetime | None = None


__all__ = [
    "ACTIVITY_LOG_TYPES",
    "ActivityLog",
    "ActivityLogType",
    "Email",
    "FilterDecision",
    "MessageChunk",
    "MetadataValue",
    "REPLY_STATUSES",
    "Reply",
    "ReplyStatus",
    "SYSTEM_EMAIL_ID",
    "SendResult",
    "TERMINAL_REPLY_STATUSES",
]
