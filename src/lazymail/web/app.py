"""FastAPI management API for the auto-reply pipeline."""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Any

from fastapi import Body, FastAPI, Query, Request, status as http_status
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from lazymail.core import AppSettings, load_app_settings
from lazymail.core.configuration import MASKED_PASSWORD, ConfigurationManager
from lazymail.core.container import ServiceContainer
from lazymail.core.datetime_utils import serialize_datetime, utc_now
from lazymail.core.interfaces import (
    ConfigValidationError,
    MonitorStateError,
    ReplyNotFoundError,
)
from lazymail.core.models import ActivityLog, Reply
from lazymail.monitor import EmailMonitor
from lazymail.responder import AutoResponder
from lazymail.runtime import build_container
from lazymail.storage import SqliteRepository
from lazymail.storage.sqlite import MAX_PAGE_SIZE
from lazymail.transport import ImapError

DEFAULT_LOG_LIMIT = 50

LOGGER = logging.getLogger(__name__)


def create_app(
    settings: AppSettings | None = None, container: ServiceContainer | None = None
) -> FastAPI:
    """Create the API application and build (or adopt) the pipeline services.

    Every service is resolved here, so storage or configuration problems
    surface before the server accepts requests.
    """
    app_settings = settings or load_app_settings(env_file=_resolve_env_file())
    services = container or build_container(app_settings)

    monitor: EmailMonitor = services.resolve("email_monitor")
    responder: AutoResponder = services.resolve("auto_responder")
    config_manager: ConfigurationManager = services.resolve("config_manager")
    repository: SqliteRepository = services.resolve("repository")
    started_at = time.monotonic()

    app = FastAPI(title="LazyMail")
    app.state.services = services

    @app.on_event("startup")
    def start_monitor() -> None:
        """Start polling when enabled and the mailbox is configured."""
        if not app_settings.monitor.auto_start:
            LOGGER.info("Monitor auto-start disabled")
            return
        if not config_manager.current.email.has_credentials:
            LOGGER.warning("Email credentials not configured; monitor not started")
            return
        monitor.start()

    @app.on_event("shutdown")
    def shutdown_services() -> None:
        """Stop the monitor and release storage."""
        services.close()
        LOGGER.info("Services shut down")

    # Error shaping ------------------------------------------------------------
    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        _request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return _error(http_status.HTTP_400_BAD_REQUEST, _describe_request_errors(exc))

    @app.exception_handler(ConfigValidationError)
    async def handle_config_validation(
        _request: Request, exc: ConfigValidationError
    ) -> JSONResponse:
        return _error(http_status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(ReplyNotFoundError)
    async def handle_reply_not_found(
        _request: Request, exc: ReplyNotFoundError
    ) -> JSONResponse:
        return _error(http_status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(MonitorStateError)
    async def handle_monitor_state(
        _request: Request, exc: MonitorStateError
    ) -> JSONResponse:
        return _error(http_status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(ImapError)
    async def handle_mailbox_error(_request: Request, exc: ImapError) -> JSONResponse:
        LOGGER.error("Mailbox error while handling request: %s", exc)
        return _error(http_status.HTTP_502_BAD_GATEWAY, f"Mailbox error: {exc}")

    @app.exception_handler(Exception)
    async def handle_unexpected(_request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error while serving request")
        return _error(http_status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal error")

    # Routes -------------------------------------------------------------------
    @app.get("/api/health")
    def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "timestamp": serialize_datetime(utc_now()),
            "uptime": round(time.monotonic() - started_at, 3),
        }

    @app.get("/api/status")
    def status() -> dict[str, Any]:
        """Summarise monitor state, confirmation mode and reply counts."""
        return {
            "monitoring": monitor.is_running,
            "monitorState": monitor.state,
            "manualConfirmationEnabled": responder.manual_confirmation,
            "pendingRepliesCount": responder.pending_count,
            "totalRepliesSent": repository.count_replies(status="sent"),
            "checkInterval": monitor.check_interval,
            "consecutiveFailures": monitor.consecutive_failures,
            "lastPollStartedAt": serialize_datetime(monitor.last_poll_started_at),
        }

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return config_manager.current.to_public_dict()

    @app.put("/api/config")
    def update_config(payload: dict[str, Any] = Body(...)) -> dict[str, Any]:  # noqa: B008
        """Apply a partial update; a masked password keeps the stored one."""
        updated = config_manager.update_config(_strip_masked_password(payload))
        return {"success": True, "config": updated.to_public_dict()}

    @app.get("/api/logs")
    def list_logs(
        limit: int = Query(DEFAULT_LOG_LIMIT, ge=1, le=MAX_PAGE_SIZE),
        offset: int = Query(0, ge=0),
    ) -> dict[str, Any]:
        logs = repository.list_activity_logs(limit=limit, offset=offset)
        return {
            "logs": [_serialize_log(log) for log in logs],
            "limit": limit,
            "offset": offset,
            "total": repository.count_activity_logs(),
        }

    @app.get("/api/pending-replies")
    def pending_replies() -> dict[str, Any]:
        replies = responder.get_pending_replies()
        return {
            "replies": [_serialize_reply(reply) for reply in replies],
            "count": len(replies),
        }

    @app.post("/api/replies/{reply_id}/approve")
    def approve_reply(
        reply_id: str,
        payload: dict[str, Any] | None = Body(default=None),  # noqa: B008
    ) -> dict[str, Any]:
        approved_by = (payload or {}).get("approvedBy")
        reply = responder.process_confirmation(
            reply_id, True, approved_by=str(approved_by) if approved_by else None
        )
        return {
            "success": True,
            "sent": reply.status == "sent",
            "status": reply.status,
            "reply": _serialize_reply(reply),
        }

    @app.post("/api/replies/{reply_id}/reject")
    def reject_reply(reply_id: str) -> dict[str, Any]:
        reply = responder.process_confirmation(reply_id, False)
        return {
            "success": True,
            "status": reply.status,
            "reply": _serialize_reply(reply),
        }

    @app.post("/api/monitor/start")
    def start_monitoring() -> dict[str, Any]:
        if not config_manager.current.email.has_credentials:
            return _error(
                http_status.HTTP_409_CONFLICT, "Email credentials are not configured"
            )
        monitor.start()
        return {"success": True, "monitoring": monitor.is_running}

    @app.post("/api/monitor/stop")
    def stop_monitoring() -> dict[str, Any]:
        monitor.stop()
        return {"success": True, "monitoring": monitor.is_running}

    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _describe_request_errors(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        messages.append(f"Invalid {location}: {error.get('msg', 'invalid value')}")
    return "; ".join(messages) or "Invalid request"


def _strip_masked_password(payload: dict[str, Any]) -> dict[str, Any]:
    email_section = payload.get("email")
    if not isinstance(email_section, dict):
        return payload
    if email_section.get("password") != MASKED_PASSWORD:
        return payload
    cleaned = {key: value for key, value in email_section.items() if key != "password"}
    return {**payload, "email": cleaned}


def _serialize_reply(reply: Reply) -> dict[str, Any]:
    return {
        "id": reply.id,
        "originalEmailId": reply.original_email_id,
        "to": reply.to,
        "subject": reply.subject,
        "body": reply.body,
        "generatedAt": serialize_datetime(reply.generated_at),
        "status": reply.status,
        "sentAt": serialize_datetime(reply.sent_at),
        "approvedBy": reply.approved_by,
    }


def _serialize_log(log: ActivityLog) -> dict[str, Any]:
    return {
        "id": log.id,
        "timestamp": serialize_datetime(log.timestamp),
        "type": log.type,
        "emailId": log.email_id,
        "replyId": log.reply_id,
        "details": log.details,
        "metadata": dict(log.metadata) if log.metadata is not None else None,
    }


def _resolve_env_file() -> Path:
    return Path(os.environ.get("LAZYMAIL_ENV_FILE", ".env"))


__all__ = ["create_app"]
