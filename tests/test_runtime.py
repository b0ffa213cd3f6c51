"""Tests for service wiring and configuration hot reload."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from lazymail.core.config import (
    AppSettings,
    ConfigOverrides,
    FilterOverrides,
    MonitorSettings,
    StorageSettings,
)
from lazymail.core.interfaces import ConfigValidationError
from lazymail.core.models import Reply
from lazymail.runtime import build_container
from lazymail.storage import SqliteRepository
from tests.helpers import FakeMailServer, RecordingSender, make_email


def _settings(tmp_path: Path, **kwargs) -> AppSettings:
    return AppSettings(storage=StorageSettings(db_path=tmp_path / "runtime.db"), **kwargs)


def test_filter_and_responder_follow_configuration_updates(tmp_path: Path) -> None:
    services = build_container(_settings(tmp_path))
    services.register_instance("mailbox_factory", FakeMailServer())
    services.register_instance("mail_sender", RecordingSender())
    manager = services.resolve("config_manager")
    message_filter = services.resolve("message_filter")
    responder = services.resolve("auto_responder")
    monitor = services.resolve("email_monitor")
    email = make_email(sender="bob@partner.com", subject="Quarterly report")

    assert message_filter.evaluate(email).approved

    manager.update_config(
        {
            "filters": {"keywordsEnabled": True, "keywords": ["invoice"]},
            "autoReply": {
                "replyTemplate": "Re {subject}",
                "manualConfirmation": False,
                "checkInterval": 45,
            },
        }
    )

    assert not message_filter.evaluate(email).approved
    assert responder.reply_template == "Re {subject}"
    assert responder.manual_confirmation is False
    assert monitor.check_interval == 45

    with pytest.raises(ConfigValidationError):
        manager.update_config({"autoReply": {"checkInterval": 0}})
    assert monitor.check_interval == 45
    assert manager.current.auto_reply.check_interval == 45

    manager.update_config({"filters": {"excludedDomains": ["partner.com"]}})
    decision = message_filter.evaluate(make_email(sender="bob@partner.com", subject="invoice"))
    assert not decision.approved
    assert "partner.com" in decision.reason

    services.close()


def test_environment_overrides_are_applied_and_persisted(tmp_path: Path) -> None:
    settings = _settings(
        tmp_path,
        overrides=ConfigOverrides(
            filters=FilterOverrides(keywords=["refund"], keywords_enabled=True)
        ),
    )
    services = build_container(settings)
    manager = services.resolve("config_manager")

    assert manager.current.filters.keywords == ("refund",)
    assert manager.current.filters.keywords_enabled is True
    services.close()

    reopened = build_container(_settings(tmp_path))
    assert reopened.resolve("config_manager").current.filters.keywords == ("refund",)
    reopened.close()


def test_pending_replies_restored_on_request(tmp_path: Path) -> None:
    stored = Reply(
        id="r-1",
        original_email_id="55",
        to="alice@example.com",
        subject="Re: Hello",
        body="Thanks",
        generated_at=datetime(2025, 1, 6, tzinfo=UTC),
        status="pending",
    )
    with SqliteRepository(StorageSettings(db_path=tmp_path / "runtime.db")) as repository:
        repository.save_or_update_reply(stored)

    services = build_container(_settings(tmp_path))
    assert services.resolve("auto_responder").pending_count == 0
    services.close()

    services = build_container(
        _settings(tmp_path, monitor=MonitorSettings(restore_pending=True))
    )
    [restored] = services.resolve("auto_responder").get_pending_replies()
    assert restored.id == "r-1"
    services.close()


def _stored_pending(reply_id: str, email_id: str, minutes: int) -> Reply:
    return Reply(
        id=reply_id,
        original_email_id=email_id,
        to="alice@example.com",
        subject="Re: Hello",
        body="Thanks",
        generated_at=datetime(2025, 1, 6, tzinfo=UTC) + timedelta(minutes=minutes),
        status="pending",
    )


def test_restore_reads_every_stored_page(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("lazymail.runtime.MAX_PAGE_SIZE", 2)
    with SqliteRepository(StorageSettings(db_path=tmp_path / "runtime.db")) as repository:
        for index in range(5):
            repository.save_or_update_reply(
                _stored_pending(f"r-{index}", f"email-{index}", index)
            )
        repository.save_or_update_reply(_stored_pending("r-late", "email-0", 30))

    services = build_container(
        _settings(tmp_path, monitor=MonitorSettings(restore_pending=True))
    )
    responder = services.resolve("auto_responder")

    assert sorted(reply.id for reply in responder.get_pending_replies()) == [
        f"r-{index}" for index in range(5)
    ]
    services.close()


def test_unrestored_pending_rows_are_reported(tmp_path: Path, caplog) -> None:
    with SqliteRepository(StorageSettings(db_path=tmp_path / "runtime.db")) as repository:
        repository.save_or_update_reply(_stored_pending("r-1", "55", 0))

    caplog.set_level("INFO", logger="lazymail.runtime")
    services = build_container(_settings(tmp_path))

    assert services.resolve("auto_responder").pending_count == 0
    assert "1 stored pending reply(ies) left unqueued" in caplog.text
    services.close()
