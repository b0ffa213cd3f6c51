"""Keyword search over email subject and body."""

from __future__ import annotations

from collections.abc import Iterable

from ..core.models import Email


def normalize_keywords(keywords: Iterable[str]) -> tuple[str, ...]:
    """Lower-case keywords, dropping blanks and duplicates while keeping order."""
    seen: dict[str, None] = {}
    for keyword in keywords:
        normalized = keyword.strip().lower()
        if normalized:
            seen.setdefault(normalized, None)
    return tuple(seen)


class KeywordMatcher:
    """Case-insensitive substring matcher for configured keywords."""

    def __init__(self, keywords: Iterable[str] = ()) -> None:
        self._keywords = normalize_keywords(keywords)

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def find_matches(self, email: Email) -> list[str]:
        """Return every keyword occurring in the subject or body."""
        return match_keywords(self._keywords, email)

    def has_match(self, email: Email) -> bool:
        return bool(self.find_matches(email))

    def update_keywords(self, keywords: Iterable[str]) -> None:
        self._keywords = normalize_keywords(keywords)


def match_keywords(keywords: Iterable[str], email: Email) -> list[str]:
    """Return the lower-cased ``keywords`` found in ``email`` in the given order."""
    search_text = f"{email.subject} {email.body}".lower()
    return [keyword for keyword in keywords if keyword in search_text]


__all__ = ["KeywordMatcher", "match_keywords", "normalize_keywords"]
