"""Reply generation and the manual confirmation workflow."""

from __future__ import annotations

import logging
import re
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import replace

from ..core.configuration import DEFAULT_REPLY_TEMPLATE
from ..core.datetime_utils import serialize_datetime, utc_now
from ..core.interfaces import MailSender, ReplyNotFoundError, ReplyStore
from ..core.models import ActivityLog, Email, Reply, SendResult
from .read_tracker import ReadTracker

LOGGER = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(sender|subject|body)\}")

LogSink = Callable[[ActivityLog], None]


def render_template(template: str, email: Email) -> str:
    """Substitute ``{sender}``, ``{subject}`` and ``{body}`` in one pass.

    Values are inserted verbatim, so placeholders appearing inside the email
    content are never expanded a second time.
    """
    values = {"sender": email.sender, "subject": email.subject, "body": email.body}
    return _PLACEHOLDER.sub(lambda match: values[match.group(1)], template)


class AutoResponder:
    """Generate replies, hold them for confirmation and send them.

    Reply lifecycle::

        generate_reply -> pending (manual) | approved (automatic)
        pending  -> approved | rejected       via process_confirmation
        approved -> sent | failed             via send_reply

    ``sent``, ``rejected`` and ``failed`` are terminal.
    """

    # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        mail_sender: MailSender,
        read_tracker: ReadTracker,
        *,
        reply_template: str = DEFAULT_REPLY_TEMPLATE,
        manual_confirmation: bool = True,
        log_sink: LogSink | None = None,
        reply_store: ReplyStore | None = None,
    ) -> None:
        # pylint: disable=too-many-arguments
        if not reply_template.strip():
            raise ValueError("reply_template must not be blank")
        self._mail_sender = mail_sender
        self._read_tracker = read_tracker
        self._reply_template = reply_template
        self._manual_confirmation = manual_confirmation
        self._log_sink = log_sink
        self._reply_store = reply_store
        self._lock = threading.Lock()
        self._pending: dict[str, Reply] = {}
        self._pending_by_email: dict[str, str] = {}
        self._resolving: set[str] = set()

    # Properties ---------------------------------------------------------------
    @property
    def reply_template(self) -> str:
        return self._reply_template

    @property
    def manual_confirmation(self) -> bool:
        return self._manual_confirmation

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending) - len(self._resolving)

    # Reply lifecycle ----------------------------------------------------------
    def generate_reply(self, email: Email) -> Reply:
        """Build a reply for ``email`` from the current template.

        Raises:
            ValueError: If the email has no sender to reply to.
        """
        if not email.sender:
            raise ValueError(f"Email {email.id} has no sender to reply to")

        body = render_template(self._reply_template, email)
        if not body.strip():
            LOGGER.warning(
                "Reply template rendered blank for email %s; using default", email.id
            )
            body = DEFAULT_REPLY_TEMPLATE

        reply = Reply(
            id=str(uuid.uuid4()),
            original_email_id=email.id,
            to=email.sender,
            subject=f"Re: {email.subject}",
            body=body,
            generated_at=utc_now(),
            status="pending" if self._manual_confirmation else "approved",
        )
        LOGGER.debug(
            "Generated reply %s for email %s (%s)", reply.id, email.id, reply.status
        )
        self._persist(reply)
        return reply

    def send_reply(self, reply: Reply) -> SendResult:
        """Deliver an approved reply and record the outcome.

        Never raises. Replies that are not ``approved`` are refused without
        being touched.
        """
        if reply.status != "approved":
            LOGGER.warning(
                "Refusing to send reply %s in status '%s'", reply.id, reply.status
            )
            return SendResult(
                success=False,
                error=f"Reply {reply.id} cannot be sent from status '{reply.status}'",
            )

        try:
            self._mail_sender.send(to=reply.to, subject=reply.subject, body=reply.body)
        except Exception as exc:  # pylint: disable=broad-except
            error = str(exc) or exc.__class__.__name__
            LOGGER.error("Failed to send reply %s to %s: %s", reply.id, reply.to, error)
            reply.status = "failed"
            self._persist(reply)
            self._emit(
                ActivityLog.create(
                    "reply_failed",
                    reply.original_email_id,
                    f"Failed to send reply to {reply.to}: {error}",
                    reply_id=reply.id,
                    metadata={"recipient": reply.to, "error": error},
                )
            )
            return SendResult(success=False, error=error)

        sent_at = utc_now()
        reply.status = "sent"
        reply.sent_at = sent_at
        LOGGER.info("Reply %s sent to %s", reply.id, reply.to)
        self._persist(reply)
        self._emit(
            ActivityLog.create(
                "reply_sent",
                reply.original_email_id,
                f"Reply sent to {reply.to}",
                reply_id=reply.id,
                metadata={"recipient": reply.to, "sentAt": serialize_datetime(sent_at)},
                timestamp=sent_at,
            )
        )
        return SendResult(success=True, sent_at=sent_at)

    # Confirmation queue -------------------------------------------------------
    def queue_for_confirmation(self, reply: Reply) -> None:
        """Hold ``reply`` until :meth:`process_confirmation` resolves it.

        Raises:
            ValueError: If the reply is terminal, or another reply for the
                same email is already awaiting a decision.
        """
        if reply.is_terminal:
            raise ValueError(f"Reply {reply.id} is already {reply.status}")
        with self._lock:
            queued_id = self._pending_by_email.get(reply.original_email_id)
            if queued_id is not None and queued_id != reply.id:
                raise ValueError(
                    f"Email {reply.original_email_id} already has reply {queued_id} "
                    "awaiting confirmation"
                )
            reply.status = "pending"
            self._pending[reply.id] = reply
            self._pending_by_email[reply.original_email_id] = reply.id
        LOGGER.info(
            "Reply %s for email %s awaiting confirmation",
            reply.id,
            reply.original_email_id,
        )

    def process_confirmation(
        self, reply_id: str, approved: bool, approved_by: str | None = None
    ) -> Reply:
        """Approve (and send) or reject a pending reply.

        The original email is marked read exactly once whichever way the
        decision goes, before the reply leaves the pending set. Errors from
        the read tracker propagate after the reply has been removed.

        Raises:
            ReplyNotFoundError: If ``reply_id`` is not pending or is already
                being resolved by another caller.
        """
        with self._lock:
            reply = self._pending.get(reply_id)
            if reply is None or reply_id in self._resolving:
                raise ReplyNotFoundError(reply_id)
            self._resolving.add(reply_id)

        try:
            if approved:
                reply.status = "approved"
                reply.approved_by = approved_by
                self._persist(reply)
                self.send_reply(reply)
            else:
                reply.status = "rejected"
                self._persist(reply)
                LOGGER.info("Reply %s rejected", reply_id)
        finally:
            try:
                self._read_tracker.mark_as_read(reply.original_email_id)
            finally:
                with self._lock:
                    self._pending.pop(reply_id, None)
                    self._resolving.discard(reply_id)
                    if self._pending_by_email.get(reply.original_email_id) == reply_id:
                        del self._pending_by_email[reply.original_email_id]
        return reply

    def has_pending_for(self, email_id: str) -> bool:
        """Return ``True`` while a reply to ``email_id`` is queued or being resolved."""
        with self._lock:
            return email_id in self._pending_by_email

    def get_pending_replies(self) -> list[Reply]:
        """Return copies of the replies awaiting a decision, oldest first."""
        with self._lock:
            return [
                replace(reply)
                for reply_id, reply in self._pending.items()
                if reply_id not in self._resolving
            ]

    def restore_pending(self, replies: Iterable[Reply]) -> int:
        """Queue persisted ``pending`` replies, oldest first, one per email.

        Replies for an email that already has a queued reply are skipped.
        """
        restored = 0
        candidates = sorted(
            (reply for reply in replies if reply.status == "pending"),
            key=lambda reply: reply.generated_at,
        )
        with self._lock:
            for reply in candidates:
                if (
                    reply.id in self._pending
                    or reply.original_email_id in self._pending_by_email
                ):
                    LOGGER.debug("Skipping duplicate pending reply %s", reply.id)
                    continue
                self._pending[reply.id] = reply
                self._pending_by_email[reply.original_email_id] = reply.id
                restored += 1
        if restored:
            LOGGER.info("Restored %d pending reply(ies) from storage", restored)
        return restored

    # Hot-reload hooks ---------------------------------------------------------
    def update_template(self, template: str) -> None:
        if not template.strip():
            raise ValueError("reply_template must not be blank")
        self._reply_template = template

    def set_manual_confirmation(self, enabled: bool) -> None:
        self._manual_confirmation = enabled
        LOGGER.info("Manual confirmation %s", "enabled" if enabled else "disabled")

    # Internal helpers ---------------------------------------------------------
    def _emit(self, log: ActivityLog) -> None:
        if self._log_sink is None:
            return
        try:
            self._log_sink(log)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Failed to record activity log for reply %s", log.reply_id)

    def _persist(self, reply: Reply) -> None:
        if self._reply_store is None:
            return
        try:
            self._reply_store.save_or_update_reply(reply)
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Failed to persist reply %s", reply.id)


__all__ = ["AutoResponder", "render_template"]
