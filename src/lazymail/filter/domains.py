"""Sender-domain exclusion rules."""

from __future__ import annotations

from collections.abc import Iterable


def extract_domain(address: str) -> str:
    """Return the lower-cased text after the first ``@`` of ``address``.

    Addresses without ``@`` yield an empty string, which is never excluded.
    """
    _, at, domain = address.partition("@")
    if not at:
        return ""
    return domain.strip().lower()


def normalize_domains(domains: Iterable[str]) -> frozenset[str]:
    return frozenset(
        domain.strip().lower() for domain in domains if domain and domain.strip()
    )


class DomainFilter:
    """Reject senders whose domain is on the exclusion list."""

    def __init__(self, excluded_domains: Iterable[str] = ()) -> None:
        self._excluded = normalize_domains(excluded_domains)

    @property
    def excluded_domains(self) -> frozenset[str]:
        return self._excluded

    @staticmethod
    def extract_domain(address: str) -> str:
        return extract_domain(address)

    def is_excluded(self, address: str) -> bool:
        """Return ``True`` when the sender domain matches an excluded entry."""
        domain = extract_domain(address)
        return bool(domain) and domain in self._excluded

    def update_excluded_domains(self, domains: Iterable[str]) -> None:
        self._excluded = normalize_domains(domains)


__all__ = ["DomainFilter", "extract_domain", "normalize_domains"]
