"""SQLite-backed repository for activity logs, replies and configuration."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any, cast

from ..core.config import StorageSettings
from ..core.datetime_utils import parse_datetime, serialize_datetime, utc_now
from ..core.interfaces import ActivityLogSink, ConfigStore, ReplyStore
from ..core.models import ActivityLog, ActivityLogType, Reply, ReplyStatus

LOGGER = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000

_ACTIVITY_COLUMNS = "id, timestamp, type, email_id, reply_id, details, metadata"
_REPLY_COLUMNS = (
    "id, original_email_id, to_address, subject, body, generated_at, status, "
    "sent_at, approved_by"
)


class SqliteRepository(ActivityLogSink, ReplyStore, ConfigStore):
    """Persist activity logs, replies and the encrypted configuration blob.

    One connection is shared between the poll thread and API workers;
    every statement runs under an internal lock.
    """

    def __init__(self, settings: StorageSettings) -> None:
        """Open (or create) the database and apply migrations."""
        self._settings = settings
        db_path = Path(settings.db_path)
        if str(db_path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._connection = sqlite3.connect(db_path, check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._apply_migrations()

    # Context manager helpers -------------------------------------------------
    def __enter__(self) -> SqliteRepository:
        """Enter context manager scope."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Ensure the connection is closed when exiting context manager."""
        self.close()

    # Activity log -------------------------------------------------------------
    def save_activity_log(self, log: ActivityLog) -> None:
        """Insert a log entry; entries are never updated."""
        metadata = (
            json.dumps(dict(log.metadata), sort_keys=True)
            if log.metadata is not None
            else None
        )
        with self._lock, self._connection:
            self._connection.execute(
                f"INSERT INTO activity_log ({_ACTIVITY_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    log.id,
                    serialize_datetime(log.timestamp),
                    log.type,
                    log.email_id,
                    log.reply_id,
                    log.details,
                    metadata,
                ),
            )
        LOGGER.debug("Stored activity log %s (%s)", log.id, log.type)

    def fetch_activity_log(self, log_id: str) -> ActivityLog | None:
        rows = self._query(
            f"SELECT {_ACTIVITY_COLUMNS} FROM activity_log WHERE id = ?", (log_id,)
        )
        return _row_to_activity_log(rows[0]) if rows else None

    def list_activity_logs(self, limit: int = 100, offset: int = 0) -> list[ActivityLog]:
        """Return logs newest first."""
        _validate_page(limit, offset)
        rows = self._query(
            f"SELECT {_ACTIVITY_COLUMNS} FROM activity_log "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ? OFFSET ?",
            (limit, offset),
        )
        return [_row_to_activity_log(row) for row in rows]

    def list_activity_logs_for_email(self, email_id: str) -> list[ActivityLog]:
        """Return every log recorded against ``email_id``, oldest first."""
        rows = self._query(
            f"SELECT {_ACTIVITY_COLUMNS} FROM activity_log WHERE email_id = ? "
            "ORDER BY timestamp ASC, rowid ASC",
            (email_id,),
        )
        return [_row_to_activity_log(row) for row in rows]

    def list_activity_logs_by_type(
        self, log_type: ActivityLogType, limit: int = 100
    ) -> list[ActivityLog]:
        _validate_page(limit, 0)
        rows = self._query(
            f"SELECT {_ACTIVITY_COLUMNS} FROM activity_log WHERE type = ? "
            "ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (log_type, limit),
        )
        return [_row_to_activity_log(row) for row in rows]

    def count_activity_logs(self) -> int:
        rows = self._query("SELECT COUNT(*) FROM activity_log")
        return int(rows[0][0]) if rows else 0

    # Replies ------------------------------------------------------------------
    def save_or_update_reply(self, reply: Reply) -> None:
        """Insert ``reply`` or update its status fields."""
        with self._lock, self._connection:
            self._connection.execute(
                f"""
                INSERT INTO reply ({_REPLY_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status=excluded.status,
                    sent_at=excluded.sent_at,
                    approved_by=excluded.approved_by
                """,
                (
                    reply.id,
                    reply.original_email_id,
                    reply.to,
                    reply.subject,
                    reply.body,
                    serialize_datetime(reply.generated_at),
                    reply.status,
                    serialize_datetime(reply.sent_at),
                    reply.approved_by,
                ),
            )
        LOGGER.debug("Stored reply %s (%s)", reply.id, reply.status)

    def fetch_reply(self, reply_id: str) -> Reply | None:
        rows = self._query(
            f"SELECT {_REPLY_COLUMNS} FROM reply WHERE id = ?", (reply_id,)
        )
        return _row_to_reply(rows[0]) if rows else None

    def list_replies(
        self, *, status: ReplyStatus | None = None, limit: int = 100, offset: int = 0
    ) -> list[Reply]:
        """Return stored replies newest first, optionally filtered by ``status``."""
        _validate_page(limit, offset)
        query = [f"SELECT {_REPLY_COLUMNS} FROM reply"]
        params: list[object] = []
        if status is not None:
            query.append(" WHERE status = ?")
            params.append(status)
        query.append(" ORDER BY generated_at DESC, rowid DESC LIMIT ? OFFSET ?")
        params.extend((limit, offset))
        return [_row_to_reply(row) for row in self._query("".join(query), params)]

    def count_replies(self, status: ReplyStatus | None = None) -> int:
        if status is None:
            rows = self._query("SELECT COUNT(*) FROM reply")
        else:
            rows = self._query("SELECT COUNT(*) FROM reply WHERE status = ?", (status,))
        return int(rows[0][0]) if rows else 0

    # Configuration ------------------------------------------------------------
    def load_config_blob(self) -> str | None:
        rows = self._query("SELECT data FROM config WHERE id = 1")
        return cast(str, rows[0]["data"]) if rows else None

    def save_config_blob(self, blob: str) -> None:
        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO config (id, data, updated_at) VALUES (1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data=excluded.data,
                    updated_at=excluded.updated_at
                """,
                (blob, serialize_datetime(utc_now())),
            )
        LOGGER.debug("Stored configuration blob")

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._connection.close()

    # Internal helpers --------------------------------------------------------
    def _query(self, sql: str, params: Any = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchall()

    def _apply_migrations(self) -> None:
        schema_dir = Path(__file__).resolve().parent / "schema"
        for migration in sorted(schema_dir.glob("*.sql")):
            LOGGER.debug("Applying migration %s", migration.name)
            script = migration.read_text(encoding="utf-8")
            with self._lock, self._connection:
                self._connection.executescript(script)


def _validate_page(limit: int, offset: int) -> None:
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValueError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if offset < 0:
        raise ValueError("offset must not be negative")


def _row_to_activity_log(row: sqlite3.Row) -> ActivityLog:
    raw_metadata = row["metadata"]
    return ActivityLog(
        id=row["id"],
        timestamp=cast(datetime, parse_datetime(row["timestamp"])),
        type=row["type"],
        email_id=row["email_id"],
        details=row["details"],
        reply_id=row["reply_id"],
        metadata=json.loads(raw_metadata) if raw_metadata is not None else None,
    )


def _row_to_reply(row: sqlite3.Row) -> Reply:
    return Reply(
        id=row["id"],
        original_email_id=row["original_email_id"],
        to=row["to_address"],
        subject=row["subject"],
        body=row["body"],
        generated_at=cast(datetime, parse_datetime(row["generated_at"])),
        status=row["status"],
        sent_at=parse_datetime(row["sent_at"]),
        approved_by=row["approved_by"],
    )


__all__ = ["MAX_PAGE_SIZE", "SqliteRepository"]
