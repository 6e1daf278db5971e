"""Fernet field encryption for personal data at rest.

Manual-contact names and phone numbers, encounter metadata, screen results
and notes, and stored dispatch summaries are encrypted before they reach
SQLite. Columns used for filtering (owner ids, dates, derived status,
channel) stay in the clear.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


class FieldEncryptor:
    """Encrypts and decrypts JSON-serializable values with Fernet.

    ``key`` may hold several comma-separated Fernet keys. The first one
    encrypts; all of them are tried on decrypt, so an old key can stay
    listed to read rows written before the new key was added.

    Usage::

        encryptor = FieldEncryptor(key="...")
        token = encryptor.encrypt({"phone": "+15550100"})
        encryptor.decrypt(token)  # {"phone": "+15550100"}
    """

    def __init__(self, key: str) -> None:
        """Initialize with one or more Fernet keys.

        Args:
            key: A Fernet key string, or a comma-separated list of them
                (newest first). Generate with :meth:`generate_key`.

        Raises:
            EncryptionError: If the key is empty or invalid.
        """
        if not key or not key.strip():
            raise EncryptionError("Encryption key must not be empty")
        parts = [k.strip() for k in key.split(",") if k.strip()]
        try:
            self._fernet = MultiFernet([Fernet(k.encode()) for k in parts])
        except (ValueError, TypeError) as exc:
            raise EncryptionError(f"Invalid encryption key: {exc}") from exc
        self.key_count = len(parts)

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value to a Fernet token string.

        ``None`` encrypts to the empty string so nullable columns stay
        distinguishable from encrypted empty values.

        Raises:
            EncryptionError: If serialization or encryption fails.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":")).encode("utf-8")
            return self._fernet.encrypt(plaintext).decode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Encryption failed: {exc}") from exc

    def decrypt(self, token: str | None) -> Any:
        """Decrypt a Fernet token string back to a Python object.

        Empty or ``None`` tokens decrypt to ``None``.

        Raises:
            EncryptionError: If the token is invalid or decryption fails.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
            return json.loads(plaintext)
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Decryption failed: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new URL-safe base64-encoded 32-byte Fernet key."""
        return Fernet.generate_key().decode("utf-8")
