"""Filter engine deciding which emails receive an automatic reply."""

from .domains import DomainFilter
from .keywords import KeywordMatcher
from .message_filter import MessageFilter

__all__ = ["DomainFilter", "KeywordMatcher", "MessageFilter"]
