"""Inbox poller driving unread mail through the reply pipeline."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Literal

from ..core.configuration import DEFAULT_CHECK_INTERVAL
from ..core.datetime_utils import utc_now
from ..core.interfaces import EmailParserProtocol, MailboxProvider, MonitorStateError
from ..core.models import (
    SYSTEM_EMAIL_ID,
    ActivityLog,
    ActivityLogType,
    Email,
    MetadataValue,
)
from ..filter.message_filter import MessageFilter
from ..ingestion.parser import EmailParser
from ..responder.auto_responder import AutoResponder
from ..responder.read_tracker import ReadTracker

LOGGER = logging.getLogger(__name__)

MonitorState = Literal["stopped", "running", "stopping"]

MAX_CONSECUTIVE_FAILURES = 5


class EmailMonitor:
    """Poll the mailbox on a fixed schedule and process unread mail.

    ``start`` runs one cycle immediately and then hands scheduling to a
    daemon thread that fires every ``check_interval`` seconds measured from
    the start time. A tick that comes due while a cycle is still running is
    dropped. At most one cycle runs at any time, whoever triggers it.

    ``stop`` blocks until the in-flight cycle, if any, has finished the email
    it is working on. Remaining emails of that batch stay unread and are
    picked up by the next poll.
    """

    # pylint: disable=too-many-instance-attributes
    def __init__(
        self,
        mailbox_factory: Callable[[], MailboxProvider],
        message_filter: MessageFilter,
        auto_responder: AutoResponder,
        read_tracker: ReadTracker,
        *,
        parser: EmailParserProtocol | None = None,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        log_sink: Callable[[ActivityLog], None] | None = None,
    ) -> None:
        # pylint: disable=too-many-arguments
        _validate_interval(check_interval)
        self._mailbox_factory = mailbox_factory
        self._message_filter = message_filter
        self._auto_responder = auto_responder
        self._read_tracker = read_tracker
        self._parser = parser or EmailParser()
        self._check_interval = check_interval
        self._log_sink = log_sink

        self._state: MonitorState = "stopped"
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._cycle_thread_id: int | None = None
        self._wake = threading.Event()
        self._stopped = threading.Event()
        self._stopped.set()
        self._thread: threading.Thread | None = None
        self._generation = 0
        self._last_tick = 0.0
        self._consecutive_failures = 0
        self._last_poll_started_at: datetime | None = None

    # Properties ---------------------------------------------------------------
    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == "running"

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def check_interval(self) -> float:
        return self._check_interval

    @property
    def last_poll_started_at(self) -> datetime | None:
        return self._last_poll_started_at

    # Lifecycle ----------------------------------------------------------------
    def start(self) -> None:
        """Run one poll cycle now and schedule the following ones.

        Raises:
            MonitorStateError: If the monitor is not stopped.
        """
        with self._state_lock:
            if self._state != "stopped":
                raise MonitorStateError(f"EmailMonitor is already {self._state}")
            self._state = "running"
            self._generation += 1
            generation = self._generation
            self._stopped.clear()
            self._wake.clear()
            self._last_tick = time.monotonic()

        LOGGER.info("EmailMonitor started (interval %ss)", self._check_interval)
        self._log(
            "email_filtered",
            SYSTEM_EMAIL_ID,
            "EmailMonitor started",
            metadata={"checkInterval": self._check_interval},
        )

        self.poll_once()

        with self._state_lock:
            if self._state != "running" or self._generation != generation:
                return
            self._drop_missed_ticks()
            self._thread = threading.Thread(
                target=self._run, args=(generation,), name="email-monitor", daemon=True
            )
            self._thread.start()

    def stop(self) -> None:
        """Stop scheduling and wait for the in-flight cycle to finish."""
        with self._state_lock:
            if self._state == "stopped":
                return
            already_stopping = self._state == "stopping"
            self._state = "stopping"
            thread = self._thread
            self._wake.set()

        if already_stopping:
            self._stopped.wait()
            return

        LOGGER.info("Stopping EmailMonitor")
        in_own_cycle = self._cycle_thread_id == threading.get_ident()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        if not in_own_cycle:
            with self._cycle_lock:
                pass

        with self._state_lock:
            self._state = "stopped"
            self._thread = None
        self._stopped.set()
        LOGGER.info("EmailMonitor stopped")
        self._log("email_filtered", SYSTEM_EMAIL_ID, "EmailMonitor stopped")

    def update_check_interval(self, seconds: float) -> None:
        """Apply a new interval; the next tick is rescheduled from the last one."""
        _validate_interval(seconds)
        if seconds == self._check_interval:
            return
        self._check_interval = seconds
        LOGGER.info("Check interval updated to %ss", seconds)
        self._wake.set()

    # Poll cycle ---------------------------------------------------------------
    def poll_once(self) -> bool:
        """Run one poll cycle unless another is in flight.

        Returns ``True`` when this call ran the cycle.
        """
        if not self._cycle_lock.acquire(blocking=False):
            LOGGER.debug("Poll cycle already in progress; skipping")
            return False
        self._cycle_thread_id = threading.get_ident()
        try:
            self._run_cycle()
        finally:
            self._cycle_thread_id = None
            self._cycle_lock.release()
        return True

    def check_inbox(self) -> list[Email]:
        """Fetch and parse every unread message; any failure fails the whole call."""
        with self._mailbox_factory() as mailbox:
            uids = mailbox.search_unread()
            chunks = mailbox.fetch(uids) if uids else []

        emails: list[Email] = []
        for chunk in chunks:
            email = self._parser.parse(chunk.uid, chunk.raw)
            if email is not None:
                emails.append(email)
        return emails

    def process_email(self, email: Email) -> None:
        """Filter ``email`` and reply to it, queue it, or mark it read.

        Emails that already have a reply awaiting confirmation are skipped;
        they stay unread until that reply is resolved. Errors are logged
        against the email and never propagate.
        """
        try:
            if self._auto_responder.has_pending_for(email.id):
                LOGGER.debug("Email %s already has a queued reply; skipping", email.id)
                return
            decision = self._message_filter.evaluate(email)
            if not decision.approved:
                LOGGER.info("Email %s filtered out: %s", email.id, decision.reason)
                self._read_tracker.mark_as_read(email.id)
                self._log(
                    "email_filtered",
                    email.id,
                    f"Email filtered out: {decision.reason}",
                    metadata={"from": email.sender, "subject": email.subject},
                )
                return

            reply = self._auto_responder.generate_reply(email)
            if reply.status == "pending":
                self._auto_responder.queue_for_confirmation(reply)
                self._log(
                    "email_filtered",
                    email.id,
                    "Reply queued for manual confirmation",
                    reply_id=reply.id,
                    metadata={
                        "from": email.sender,
                        "subject": email.subject,
                        "matchedKeywords": list(decision.matched_keywords),
                    },
                )
                return

            result = self._auto_responder.send_reply(reply)
            LOGGER.info(
                "Reply %s for email %s %s",
                reply.id,
                email.id,
                "sent" if result.success else f"failed: {result.error}",
            )
            self._read_tracker.mark_as_read(email.id)
        except Exception as exc:  # pylint: disable=broad-except
            message = str(exc) or exc.__class__.__name__
            LOGGER.exception("Error processing email %s", email.id)
            self._log(
                "error",
                email.id,
                f"Error processing email: {message}",
                metadata={"error": message},
            )

    # Internal helpers ---------------------------------------------------------
    def _run(self, generation: int) -> None:
        while True:
            with self._state_lock:
                if self._state != "running" or self._generation != generation:
                    return
                due = self._last_tick + self._check_interval

            delay = due - time.monotonic()
            if delay > 0:
                self._wake.wait(delay)
                self._wake.clear()
                continue

            self.poll_once()
            self._last_tick = due
            self._drop_missed_ticks()

    def _drop_missed_ticks(self) -> None:
        interval = self._check_interval
        missed = int((time.monotonic() - self._last_tick) // interval)
        if missed > 0:
            LOGGER.debug("Dropping %d overlapped tick(s)", missed)
            self._last_tick += missed * interval

    def _run_cycle(self) -> None:
        self._last_poll_started_at = utc_now()
        try:
            emails = self.check_inbox()
        except Exception as exc:  # pylint: disable=broad-except
            self._record_failure(exc)
            return

        if self._consecutive_failures:
            LOGGER.info(
                "Mailbox reachable again after %d failed attempt(s)",
                self._consecutive_failures,
            )
        self._consecutive_failures = 0
        LOGGER.debug("Processing %d unread email(s)", len(emails))

        for index, email in enumerate(emails):
            if self._state == "stopping":
                LOGGER.info(
                    "Stop requested; leaving %d email(s) for the next poll",
                    len(emails) - index,
                )
                break
            self.process_email(email)

    def _record_failure(self, exc: Exception) -> None:
        self._consecutive_failures += 1
        attempt = self._consecutive_failures
        message = str(exc) or exc.__class__.__name__
        LOGGER.warning(
            "Failed to check inbox (attempt %d/%d): %s",
            attempt,
            MAX_CONSECUTIVE_FAILURES,
            message,
        )
        self._log(
            "error",
            SYSTEM_EMAIL_ID,
            f"Failed to check inbox (attempt {attempt}/{MAX_CONSECUTIVE_FAILURES}): "
            f"{message}",
            metadata={"error": message, "consecutiveFailures": attempt},
        )
        if attempt >= MAX_CONSECUTIVE_FAILURES:
            LOGGER.error(
                "Maximum consecutive failures reached (%d)", MAX_CONSECUTIVE_FAILURES
            )
            self._log(
                "error",
                SYSTEM_EMAIL_ID,
                f"Maximum consecutive failures reached ({MAX_CONSECUTIVE_FAILURES}). "
                "Connection issues detected.",
                metadata={
                    "alert": "max_consecutive_failures",
                    "consecutiveFailures": attempt,
                },
            )

    def _log(
        self,
        log_type: ActivityLogType,
        email_id: str,
        details: str,
        *,
        reply_id: str | None = None,
        metadata: Mapping[str, MetadataValue] | None = None,
    ) -> None:
        if self._log_sink is None:
            return
        try:
            self._log_sink(
                ActivityLog.create(
                    log_type, email_id, details, reply_id=reply_id, metadata=metadata
                )
            )
        except Exception:  # pylint: disable=broad-except
            LOGGER.exception("Failed to record activity log: %s", details)


def _validate_interval(seconds: float) -> None:
    if isinstance(seconds, bool) or seconds <= 0:
        raise ValueError("check_interval must be a positive number of seconds")


__all__ = ["EmailMonitor", "MAX_CONSECUTIVE_FAILURES", "MonitorState"]
