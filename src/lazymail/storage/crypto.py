"""Encryption helpers for the configuration stored at rest."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from ..core.interfaces import ConfigStoreError

_KEY_SALT = b"lazymail-config"


def derive_fernet_key(passphrase: str) -> bytes:
    """Derive a urlsafe Fernet key from an arbitrary passphrase."""
    if not passphrase:
        raise ValueError("Encryption passphrase must not be empty")
    raw = hashlib.scrypt(
        passphrase.encode("utf-8"), salt=_KEY_SALT, n=2**14, r=8, p=1, dklen=32
    )
    return base64.urlsafe_b64encode(raw)


class ConfigCipher:
    """Symmetric cipher used for the configuration blob."""

    def __init__(self, passphrase: str) -> None:
        self._fernet = Fernet(derive_fernet_key(passphrase))

    def encrypt(self, plaintext: str) -> str:
        """Return the encrypted token for ``plaintext``."""
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Return the plaintext for ``token``."""
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ConfigStoreError(
                "Stored configuration could not be decrypted; check the encryption key"
            ) from exc


__all__ = ["ConfigCipher", "derive_fernet_key"]
