"""Ingestion components turning mailbox payloads into emails."""

from .parser import EmailParser

__all__ = ["EmailParser"]
