"""Persistence adapters."""

from .crypto import ConfigCipher, derive_fernet_key
from .sqlite import SqliteRepository

__all__ = ["ConfigCipher", "SqliteRepository", "derive_fernet_key"]
