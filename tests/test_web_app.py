"""Integration tests for the FastAPI management API."""

from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from lazymail.core.config import AppSettings, MonitorSettings, StorageSettings
from lazymail.core.container import ServiceContainer
from lazymail.runtime import build_container
from lazymail.web import create_app
from tests.helpers import FakeMailServer, RecordingSender, build_raw_email

CREDENTIALS = {
    "email": {
        "imapHost": "imap.example.org",
        "username": "me@example.org",
        "password": "hunter2",
    }
}


def _build(
    tmp_path: Path, server: FakeMailServer, sender: RecordingSender
) -> tuple[ServiceContainer, TestClient]:
    settings = AppSettings(
        storage=StorageSettings(db_path=tmp_path / "web.db"),
        monitor=MonitorSettings(auto_start=False),
    )
    services = build_container(settings)
    services.register_instance("mailbox_factory", server)
    services.register_instance("mail_sender", sender)
    return services, TestClient(create_app(settings, services))


def test_health_and_status_report_idle_monitor(tmp_path: Path) -> None:
    _, client = _build(tmp_path, FakeMailServer(), RecordingSender())

    with client:
        health = client.get("/api/health")
        status = client.get("/api/status")

    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    payload = status.json()
    assert payload["monitoring"] is False
    assert payload["monitorState"] == "stopped"
    assert payload["manualConfirmationEnabled"] is True
    assert payload["pendingRepliesCount"] == 0
    assert payload["totalRepliesSent"] == 0
    assert payload["checkInterval"] == 10


def test_config_update_masks_password_and_hot_reloads(tmp_path: Path) -> None:
    services, client = _build(tmp_path, FakeMailServer(), RecordingSender())

    with client:
        response = client.put("/api/config", json=CREDENTIALS)
        assert response.status_code == 200
        assert response.json()["config"]["email"]["password"] == "********"

        masked = client.put(
            "/api/config",
            json={
                "email": {"password": "********", "imapPort": 143},
                "filters": {"keywordsEnabled": True, "keywords": ["Invoice"]},
                "autoReply": {"checkInterval": 30, "manualConfirmation": False},
            },
        )
        assert masked.status_code == 200

        current = client.get("/api/config").json()
        status = client.get("/api/status").json()

    manager = services.resolve("config_manager")
    assert manager.current.email.password == "hunter2"
    assert manager.current.email.imap_port == 143
    assert current["email"]["password"] == "********"
    assert current["filters"]["keywords"] == ["Invoice"]
    assert services.resolve("message_filter").keywords == ("invoice",)
    assert status["checkInterval"] == 30
    assert status["manualConfirmationEnabled"] is False


def test_invalid_config_returns_400_and_keeps_state(tmp_path: Path) -> None:
    services, client = _build(tmp_path, FakeMailServer(), RecordingSender())

    with client:
        bad_interval = client.put("/api/config", json={"autoReply": {"checkInterval": 0}})
        bad_body = client.put("/api/config", json=["not", "an", "object"])

    assert bad_interval.status_code == 400
    assert bad_interval.json()["error"].startswith("Invalid")
    assert bad_body.status_code == 400
    assert "error" in bad_body.json()
    assert services.resolve("config_manager").current.auto_reply.check_interval == 10


def test_manual_confirmation_flow_over_http(tmp_path: Path) -> None:
    server = FakeMailServer()
    server.add_message("42", build_raw_email(subject="Order status"))
    sender = RecordingSender()
    _, client = _build(tmp_path, server, sender)

    with client:
        client.put("/api/config", json=CREDENTIALS)
        started = client.post("/api/monitor/start")
        assert started.status_code == 200
        assert started.json() == {"success": True, "monitoring": True}

        again = client.post("/api/monitor/start")
        assert again.status_code == 409

        pending = client.get("/api/pending-replies").json()
        assert pending["count"] == 1
        reply = pending["replies"][0]
        assert reply["originalEmailId"] == "42"
        assert reply["subject"] == "Re: Order status"
        assert not server.is_seen("42")

        approved = client.post(
            f"/api/replies/{reply['id']}/approve", json={"approvedBy": "operator"}
        )
        assert approved.status_code == 200
        body = approved.json()
        assert body["sent"] is True
        assert body["reply"]["approvedBy"] == "operator"

        duplicate = client.post(f"/api/replies/{reply['id']}/approve")
        assert duplicate.status_code == 404

        status = client.get("/api/status").json()
        logs = client.get("/api/logs", params={"limit": 10}).json()

        stopped = client.post("/api/monitor/stop")
        assert stopped.json() == {"success": True, "monitoring": False}

    assert server.is_seen("42")
    assert sender.sent[0]["to"] == "alice@example.com"
    assert status["totalRepliesSent"] == 1
    assert status["pendingRepliesCount"] == 0
    details = [entry["details"] for entry in logs["logs"]]
    assert "Reply sent to alice@example.com" in details
    assert "Reply queued for manual confirmation" in details
    assert logs["total"] == len(logs["logs"])


def test_reject_and_mailbox_errors(tmp_path: Path) -> None:
    server = FakeMailServer()
    server.add_message("1", build_raw_email(subject="First"))
    server.add_message("2", build_raw_email(subject="Second"))
    sender = RecordingSender()
    services, client = _build(tmp_path, server, sender)

    with client:
        client.put("/api/config", json=CREDENTIALS)
        services.resolve("email_monitor").poll_once()
        replies = {
            reply["originalEmailId"]: reply["id"]
            for reply in client.get("/api/pending-replies").json()["replies"]
        }

        rejected = client.post(f"/api/replies/{replies['1']}/reject")
        del server.messages["2"]
        broken = client.post(f"/api/replies/{replies['2']}/reject")
        remaining = client.get("/api/pending-replies").json()

    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert server.is_seen("1")
    assert broken.status_code == 502
    assert broken.json()["error"].startswith("Mailbox error:")
    assert remaining["count"] == 0
    assert sender.sent == []


def test_unknown_reply_and_missing_credentials(tmp_path: Path) -> None:
    _, client = _build(tmp_path, FakeMailServer(), RecordingSender())

    with client:
        missing = client.post("/api/replies/does-not-exist/reject")
        start = client.post("/api/monitor/start")
        stop = client.post("/api/monitor/stop")

    assert missing.status_code == 404
    assert "does-not-exist" in missing.json()["error"]
    assert start.status_code == 409
    assert stop.status_code == 200


def test_logs_paging_is_validated(tmp_path: Path) -> None:
    _, client = _build(tmp_path, FakeMailServer(), RecordingSender())

    with client:
        too_small = client.get("/api/logs", params={"limit": 0})
        too_large = client.get("/api/logs", params={"limit": 5000})
        negative = client.get("/api/logs", params={"offset": -1})
        default = client.get("/api/logs")

    assert too_small.status_code == 400
    assert too_large.status_code == 400
    assert negative.status_code == 400
    assert default.json() == {"logs": [], "limit": 50, "offset": 0, "total": 0}


def test_startup_starts_monitor_when_configured(tmp_path: Path) -> None:
    server = FakeMailServer()
    settings = AppSettings(storage=StorageSettings(db_path=tmp_path / "auto.db"))
    services = build_container(settings)
    services.register_instance("mailbox_factory", server)
    services.register_instance("mail_sender", RecordingSender())
    services.resolve("config_manager").update_config(CREDENTIALS)
    monitor = services.resolve("email_monitor")

    with TestClient(create_app(settings, services)) as client:
        assert client.get("/api/status").json()["monitoring"] is True

    assert monitor.state == "stopped"
    assert server.sessions_opened >= 1
