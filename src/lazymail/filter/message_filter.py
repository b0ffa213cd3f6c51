"""Admit or reject incoming mail for an automatic reply."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace

from ..core.configuration import FilterConfig
from ..core.models import Email, FilterDecision
from .domains import DomainFilter
from .keywords import KeywordMatcher

LOGGER = logging.getLogger(__name__)

REASON_EXCLUDED = "Sender domain is excluded: {domain}"
REASON_NO_MATCH = "Email does not contain any required keywords (no keyword match)"
REASON_DISABLED = "Keyword filtering disabled, all non-excluded emails approved"
REASON_MATCHED = "Email contains required keywords (keywords matched)"


@dataclass(frozen=True, slots=True)
class _Rules:
    keywords_enabled: bool
    keywords: KeywordMatcher
    domains: DomainFilter

    @classmethod
    def from_config(cls, config: FilterConfig) -> _Rules:
        return cls(
            keywords_enabled=config.keywords_enabled,
            keywords=KeywordMatcher(config.keywords),
            domains=DomainFilter(config.excluded_domains),
        )


class MessageFilter:
    """Combine the domain exclusion list and keyword rules into one decision.

    Domain exclusion is checked first and always wins. With keyword
    filtering disabled every other email is admitted; otherwise at least one
    keyword must occur in the subject or body.

    The rules live in one immutable object that the update hooks replace
    wholesale, so an evaluation never sees half of an update.
    """

    def __init__(self, config: FilterConfig | None = None) -> None:
        self._rules = _Rules.from_config(config or FilterConfig())

    @property
    def keywords_enabled(self) -> bool:
        return self._rules.keywords_enabled

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._rules.keywords.keywords

    @property
    def excluded_domains(self) -> frozenset[str]:
        return self._rules.domains.excluded_domains

    def evaluate(self, email: Email, config: FilterConfig | None = None) -> FilterDecision:
        """Return the filter decision for ``email``.

        ``config`` overrides the filter's own rules for this call only.
        """
        rules = self._rules if config is None else _Rules.from_config(config)

        if rules.domains.is_excluded(email.sender):
            domain = rules.domains.extract_domain(email.sender)
            return FilterDecision(
                approved=False, reason=REASON_EXCLUDED.format(domain=domain)
            )

        if not rules.keywords_enabled:
            return FilterDecision(approved=True, reason=REASON_DISABLED)

        matches = rules.keywords.find_matches(email)
        if not matches:
            return FilterDecision(approved=False, reason=REASON_NO_MATCH)
        return FilterDecision(
            approved=True, reason=REASON_MATCHED, matched_keywords=tuple(matches)
        )

    def should_auto_reply(self, email: Email) -> FilterDecision:
        return self.evaluate(email)

    # Hot-reload hooks --------------------------------------------------------
    def update_keywords(self, keywords: Iterable[str]) -> None:
        self._rules = replace(self._rules, keywords=KeywordMatcher(keywords))
        LOGGER.debug("Keyword list updated: %s", self._rules.keywords.keywords)

    def update_excluded_domains(self, domains: Iterable[str]) -> None:
        self._rules = replace(self._rules, domains=DomainFilter(domains))
        LOGGER.debug(
            "Excluded domains updated: %s", sorted(self._rules.domains.excluded_domains)
        )

    def set_keywords_enabled(self, enabled: bool) -> None:
        self._rules = replace(self._rules, keywords_enabled=enabled)
        LOGGER.debug("Keyword filtering %s", "enabled" if enabled else "disabled")


__all__ = [
    "MessageFilter",
    "REASON_DISABLED",
    "REASON_EXCLUDED",
    "REASON_MATCHED",
    "REASON_NO_MATCH",
]
