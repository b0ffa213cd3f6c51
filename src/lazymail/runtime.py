"""Assemble the pipeline components into a service container."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator

from .core.config import AppSettings
from .core.configuration import Configuration, ConfigurationManager, EmailConfig
from .core.container import ServiceContainer
from .core.interfaces import MailboxProvider, MailSender
from .core.models import Reply
from .filter.message_filter import MessageFilter
from .ingestion.parser import EmailParser
from .monitor.email_monitor import EmailMonitor
from .responder.auto_responder import AutoResponder
from .responder.read_tracker import ReadTracker
from .storage.crypto import ConfigCipher
from .storage.sqlite import MAX_PAGE_SIZE, SqliteRepository
from .transport.imap_client import ImapClient
from .transport.smtp_client import SmtpMailSender

LOGGER = logging.getLogger(__name__)

MailboxFactory = Callable[[], MailboxProvider]


def build_container(settings: AppSettings) -> ServiceContainer:
    """Register every pipeline service; nothing is built until resolved.

    Callers may re-register ``mailbox_factory`` or ``mail_sender`` before
    resolving anything to substitute their own transports.
    """
    container = ServiceContainer()
    container.register_instance("settings", settings)
    container.register(
        "repository",
        lambda _c: SqliteRepository(settings.storage),
        finalizer=SqliteRepository.close,
    )
    container.register("config_manager", _build_config_manager)
    container.register("mailbox_factory", _build_mailbox_factory)
    container.register("mail_sender", _build_mail_sender)
    container.register(
        "read_tracker", lambda c: ReadTracker(c.resolve("mailbox_factory"))
    )
    container.register("message_filter", _build_message_filter)
    container.register("auto_responder", _build_auto_responder)
    container.register(
        "email_monitor", _build_email_monitor, finalizer=EmailMonitor.stop
    )
    return container


def _build_config_manager(container: ServiceContainer) -> ConfigurationManager:
    settings: AppSettings = container.resolve("settings")
    manager = ConfigurationManager(
        store=container.resolve("repository"),
        cipher=ConfigCipher(settings.encryption_key),
    )
    overrides = settings.overrides.as_update()
    if overrides:
        LOGGER.info(
            "Applying environment overrides for section(s): %s",
            ", ".join(sorted(overrides)),
        )
        manager.update_config(overrides)
    return manager


def _build_mailbox_factory(container: ServiceContainer) -> MailboxFactory:
    manager: ConfigurationManager = container.resolve("config_manager")

    def open_mailbox() -> MailboxProvider:
        return ImapClient(manager.current.email)

    return open_mailbox


def _build_mail_sender(container: ServiceContainer) -> MailSender:
    manager: ConfigurationManager = container.resolve("config_manager")

    def current_email_config() -> EmailConfig:
        return manager.current.email

    return SmtpMailSender(current_email_config)


def _build_message_filter(container: ServiceContainer) -> MessageFilter:
    manager: ConfigurationManager = container.resolve("config_manager")
    message_filter = MessageFilter(manager.current.filters)

    def apply_filters(config: Configuration) -> None:
        filters = config.filters
        if filters.keywords_enabled != message_filter.keywords_enabled:
            message_filter.set_keywords_enabled(filters.keywords_enabled)
        message_filter.update_keywords(filters.keywords)
        message_filter.update_excluded_domains(filters.excluded_domains)

    manager.subscribe(apply_filters)
    return message_filter


def _build_auto_responder(container: ServiceContainer) -> AutoResponder:
    settings: AppSettings = container.resolve("settings")
    manager: ConfigurationManager = container.resolve("config_manager")
    repository: SqliteRepository = container.resolve("repository")
    # Resolved first so its listener is notified before the responder's.
    container.resolve("message_filter")

    auto_reply = manager.current.auto_reply
    responder = AutoResponder(
        container.resolve("mail_sender"),
        container.resolve("read_tracker"),
        reply_template=auto_reply.reply_template,
        manual_confirmation=auto_reply.manual_confirmation,
        log_sink=repository.save_activity_log,
        reply_store=repository,
    )
    if settings.monitor.restore_pending:
        responder.restore_pending(_iter_stored_pending(repository))
    else:
        stale = repository.count_replies(status="pending")
        if stale:
            LOGGER.info(
                "%d stored pending reply(ies) left unqueued; their emails get new "
                "replies on the next poll",
                stale,
            )

    def apply_auto_reply(config: Configuration) -> None:
        if config.auto_reply.reply_template != responder.reply_template:
            responder.update_template(config.auto_reply.reply_template)
        if config.auto_reply.manual_confirmation != responder.manual_confirmation:
            responder.set_manual_confirmation(config.auto_reply.manual_confirmation)

    manager.subscribe(apply_auto_reply)
    return responder


def _iter_stored_pending(repository: SqliteRepository) -> Iterator[Reply]:
    offset = 0
    while True:
        page = repository.list_replies(
            status="pending", limit=MAX_PAGE_SIZE, offset=offset
        )
        yield from page
        if len(page) < MAX_PAGE_SIZE:
            return
        offset += len(page)


def _build_email_monitor(container: ServiceContainer) -> EmailMonitor:
    manager: ConfigurationManager = container.resolve("config_manager")
    repository: SqliteRepository = container.resolve("repository")

    def default_recipient() -> str:
        return manager.current.email.username

    monitor = EmailMonitor(
        container.resolve("mailbox_factory"),
        container.resolve("message_filter"),
        container.resolve("auto_responder"),
        container.resolve("read_tracker"),
        parser=EmailParser(default_recipient=default_recipient),
        check_interval=manager.current.auto_reply.check_interval,
        log_sink=repository.save_activity_log,
    )

    def apply_interval(config: Configuration) -> None:
        monitor.update_check_interval(config.auto_reply.check_interval)

    manager.subscribe(apply_interval)
    return monitor


__all__ = ["MailboxFactory", "build_container"]
