"""Tests for live configuration snapshots and hot reload."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from lazymail.core.config import StorageSettings
from lazymail.core.configuration import (
    MASKED_PASSWORD,
    Configuration,
    ConfigurationManager,
    merge_configuration,
)
from lazymail.core.interfaces import ConfigStoreError, ConfigValidationError
from lazymail.storage import ConfigCipher, SqliteRepository


def test_merge_accepts_camel_and_snake_case_keys() -> None:
    merged = merge_configuration(
        Configuration(),
        {
            "autoReply": {"manualConfirmation": False, "checkInterval": 30},
            "filters": {"keywords_enabled": True, "keywords": ["invoice"]},
        },
    )

    assert merged.auto_reply.manual_confirmation is False
    assert merged.auto_reply.check_interval == 30
    assert merged.filters.keywords_enabled is True
    assert merged.filters.keywords == ("invoice",)
    assert merged.email == Configuration().email


@pytest.mark.parametrize(
    "update",
    [
        {"autoReply": {"checkInterval": 0}},
        {"autoReply": {"checkInterval": "10"}},
        {"autoReply": {"replyTemplate": ""}},
        {"filters": {"keywordsEnabled": "yes"}},
        {"filters": {"keywords": "invoice"}},
        {"email": {"imapPort": 70000}},
        {"email": {"unknownField": 1}},
        {"unknownSection": {}},
        {"filters": ["invoice"]},
    ],
)
def test_invalid_updates_raise_validation_error(update: dict) -> None:
    with pytest.raises(ConfigValidationError):
        merge_configuration(Configuration(), update)


def test_rejected_update_leaves_state_and_listeners_untouched() -> None:
    manager = ConfigurationManager()
    received: list[Configuration] = []
    manager.subscribe(received.append)
    before = manager.current

    with pytest.raises(ConfigValidationError):
        manager.update_config({"autoReply": {"checkInterval": -1}})

    assert manager.current is before
    assert received == []


def test_listeners_notified_in_order_before_update_returns() -> None:
    manager = ConfigurationManager()
    calls: list[tuple[str, int]] = []
    manager.subscribe(lambda config: calls.append(("first", config.auto_reply.check_interval)))
    manager.subscribe(lambda config: calls.append(("second", config.auto_reply.check_interval)))

    result = manager.update_config({"autoReply": {"checkInterval": 42}})

    assert calls == [("first", 42), ("second", 42)]
    assert result is manager.current
    assert manager.get_config().auto_reply.check_interval == 42


def test_failing_listener_does_not_block_the_rest() -> None:
    manager = ConfigurationManager()
    seen: list[int] = []

    def broken(_config: Configuration) -> None:
        raise RuntimeError("listener exploded")

    manager.subscribe(broken)
    manager.subscribe(lambda config: seen.append(config.auto_reply.check_interval))

    manager.update_config({"autoReply": {"checkInterval": 15}})

    assert seen == [15]
    assert manager.current.auto_reply.check_interval == 15


def test_snapshots_are_immutable() -> None:
    config = Configuration()

    with pytest.raises(ValidationError):
        config.auto_reply.check_interval = 99  # type: ignore[misc]


def test_public_dict_masks_password() -> None:
    config = merge_configuration(
        Configuration(), {"email": {"username": "me@example.org", "password": "pw"}}
    )

    payload = config.to_public_dict()

    assert payload["email"]["password"] == MASKED_PASSWORD
    assert payload["email"]["username"] == "me@example.org"
    assert payload["autoReply"]["checkInterval"] == 10
    assert "keywordsEnabled" in payload["filters"]
    assert Configuration().to_public_dict()["email"]["password"] == ""


def test_configuration_is_encrypted_at_rest(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "config.db")
    with SqliteRepository(settings) as repository:
        manager = ConfigurationManager(repository, ConfigCipher("passphrase"))
        manager.update_config(
            {"email": {"password": "hunter2"}, "filters": {"keywords": ["refund"]}}
        )
        blob = repository.load_config_blob()

    assert blob is not None
    assert "hunter2" not in blob
    assert "refund" not in blob

    with SqliteRepository(settings) as repository:
        reloaded = ConfigurationManager(repository, ConfigCipher("passphrase"))
        assert reloaded.current.email.password == "hunter2"
        assert reloaded.current.filters.keywords == ("refund",)


def test_wrong_key_fails_to_load(tmp_path: Path) -> None:
    settings = StorageSettings(db_path=tmp_path / "config.db")
    with SqliteRepository(settings) as repository:
        ConfigurationManager(repository, ConfigCipher("right")).update_config(
            {"autoReply": {"checkInterval": 20}}
        )

    with SqliteRepository(settings) as repository:
        with pytest.raises(ConfigStoreError, match="decrypted"):
            ConfigurationManager(repository, ConfigCipher("wrong"))


def test_empty_store_starts_from_defaults(tmp_path: Path) -> None:
    with SqliteRepository(StorageSettings(db_path=tmp_path / "empty.db")) as repository:
        manager = ConfigurationManager(repository, ConfigCipher("key"))

        assert manager.current == Configuration()
        assert repository.load_config_blob() is None


def test_store_requires_cipher(tmp_path: Path) -> None:
    with SqliteRepository(StorageSettings(db_path=tmp_path / "x.db")) as repository:
        with pytest.raises(ValueError):
            ConfigurationManager(repository)
