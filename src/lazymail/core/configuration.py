"""Live configuration snapshots and the hot-reload manager."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    ValidationError,
)
from pydantic.alias_generators import to_camel

from ..storage.crypto import ConfigCipher
from .interfaces import ConfigStore, ConfigStoreError, ConfigValidationError

LOGGER = logging.getLogger(__name__)

DEFAULT_REPLY_TEMPLATE = "Thank you for your email. I will respond shortly."
DEFAULT_CHECK_INTERVAL = 10
MASKED_PASSWORD = "********"

_SECTION_NAMES = {
    "email": "email",
    "filters": "filters",
    "auto_reply": "auto_reply",
    "autoReply": "auto_reply",
}


class _SnapshotModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class EmailConfig(_SnapshotModel):
    """Mailbox and transport credentials."""

    imap_host: StrictStr = ""
    imap_port: StrictInt = Field(default=993, gt=0, le=65535)
    imap_use_ssl: StrictBool = True
    smtp_host: StrictStr = ""
    smtp_port: StrictInt = Field(default=587, gt=0, le=65535)
    smtp_use_tls: StrictBool = True
    username: StrictStr = ""
    password: StrictStr = ""
    mailbox: StrictStr = Field(default="INBOX", min_length=1)
    from_name: StrictStr | None = None

    @property
    def has_credentials(self) -> bool:
        """Return ``True`` when enough is configured to reach the mailbox."""
        return bool(self.imap_host and self.username and self.password)


class FilterConfig(_SnapshotModel):
    """Keyword and sender-domain filtering rules."""

    keywords_enabled: StrictBool = False
    keywords: tuple[StrictStr, ...] = ()
    excluded_domains: tuple[StrictStr, ...] = ()


class AutoReplyConfig(_SnapshotModel):
    """Reply generation and polling behaviour."""

    manual_confirmation: StrictBool = True
    reply_template: StrictStr = Field(default=DEFAULT_REPLY_TEMPLATE, min_length=1)
    check_interval: StrictInt = Field(default=DEFAULT_CHECK_INTERVAL, gt=0)


class Configuration(_SnapshotModel):
    """Immutable snapshot of the live configuration."""

    email: EmailConfig = Field(default_factory=EmailConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    auto_reply: AutoReplyConfig = Field(default_factory=AutoReplyConfig)

    def to_public_dict(self) -> dict[str, Any]:
        """Return a camelCase representation with the password masked."""
        payload = self.model_dump(mode="json", by_alias=True)
        if payload["email"]["password"]:
            payload["email"]["password"] = MASKED_PASSWORD
        return payload


ConfigListener = Callable[[Configuration], None]


def merge_configuration(
    current: Configuration, updates: Mapping[str, Any]
) -> Configuration:
    """Return a new snapshot with ``updates`` applied section by section.

    Keys may use either the snake_case field names or their camelCase
    aliases. Raises :class:`ConfigValidationError` for unknown sections,
    non-mapping sections, or values that fail validation.
    """
    if not isinstance(updates, Mapping):
        raise ConfigValidationError("Configuration update must be an object")

    merged = current.model_dump()
    for raw_section, values in updates.items():
        section = _SECTION_NAMES.get(raw_section)
        if section is None:
            raise ConfigValidationError(f"Unknown configuration section: {raw_section}")
        if values is None:
            continue
        if not isinstance(values, Mapping):
            raise ConfigValidationError(f"Invalid {raw_section}: must be an object")
        merged[section].update(
            {_field_name(key): value for key, value in values.items()}
        )

    try:
        return Configuration.model_validate(merged)
    except ValidationError as exc:
        raise ConfigValidationError(_describe_validation_error(exc)) from exc


def _field_name(key: str) -> str:
    if "_" in key or key.islower():
        return key
    return "".join(f"_{char.lower()}" if char.isupper() else char for char in key)


def _describe_validation_error(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"Invalid {location}: {error['msg']}")
    return "; ".join(messages) or "Invalid configuration"


class ConfigurationManager:
    """Own the live configuration and notify subscribers on every change.

    Updates are validated, persisted (encrypted) through the optional store,
    swapped in as a new immutable snapshot and then pushed synchronously to
    every listener in registration order before :meth:`update_config`
    returns.
    """

    def __init__(
        self,
        store: ConfigStore | None = None,
        cipher: ConfigCipher | None = None,
    ) -> None:
        if store is not None and cipher is None:
            raise ValueError("A cipher is required when a config store is provided")
        self._store = store
        self._cipher = cipher
        self._listeners: list[ConfigListener] = []
        self._update_lock = threading.Lock()
        self._current = self._load()

    @property
    def current(self) -> Configuration:
        """Return the active snapshot."""
        return self._current

    def get_config(self) -> Configuration:
        """Return the active snapshot."""
        return self._current

    def subscribe(self, listener: ConfigListener) -> None:
        """Register ``listener`` for future updates."""
        self._listeners.append(listener)

    def update_config(self, updates: Mapping[str, Any]) -> Configuration:
        """Validate, persist and publish a partial configuration update."""
        with self._update_lock:
            new_config = merge_configuration(self._current, updates)
            self._persist(new_config)
            self._current = new_config
            LOGGER.info(
                "Configuration updated; notifying %d listener(s)", len(self._listeners)
            )
            for listener in list(self._listeners):
                try:
                    listener(new_config)
                except Exception:  # pylint: disable=broad-except
                    LOGGER.exception("Configuration listener %r failed", listener)
        return new_config

    # Internal helpers --------------------------------------------------------
    def _load(self) -> Configuration:
        if self._store is None or self._cipher is None:
            return Configuration()
        blob = self._store.load_config_blob()
        if blob is None:
            LOGGER.info("No stored configuration found; using defaults")
            return Configuration()
        try:
            return Configuration.model_validate_json(self._cipher.decrypt(blob))
        except ValidationError as exc:
            raise ConfigStoreError("Stored configuration is invalid") from exc

    def _persist(self, config: Configuration) -> None:
        if self._store is None or self._cipher is None:
            return
        self._store.save_config_blob(self._cipher.encrypt(config.model_dump_json()))


__all__ = [
    "AutoReplyConfig",
    "ConfigListener",
    "Configuration",
    "ConfigurationManager",
    "DEFAULT_CHECK_INTERVAL",
    "DEFAULT_REPLY_TEMPLATE",
    "EmailConfig",
    "FilterConfig",
    "MASKED_PASSWORD",
    "merge_configuration",
]
