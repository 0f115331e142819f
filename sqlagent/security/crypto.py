"""
Credential encryption.

Connection credentials are serialized to JSON and sealed with Fernet before
they reach the store. Nothing outside the connection manager sees the
plaintext.
"""

from __future__ import annotations

import json
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from sqlagent.errors import SQLAgentError
from sqlagent.models import ConnectionCredentials


class CredentialCipher(Protocol):
    """Synchronous, pure encrypt/decrypt pair for credential bundles."""

    def encrypt(self, credentials: ConnectionCredentials) -> str: ...

    def decrypt(self, bundle: str) -> ConnectionCredentials: ...


class CredentialEncryptionError(SQLAgentError):
    """The cipher is misconfigured or a bundle cannot be opened."""

    pass


class FernetCredentialCipher:
    """Fernet-backed ``CredentialCipher`` keyed by ``DATABASE_CREDENTIALS_KEY``."""

    def __init__(self, key: str | bytes | None) -> None:
        self._key = key
        self._cipher: Fernet | None = None

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def encrypt(self, credentials: ConnectionCredentials) -> str:
        cipher = self._ensure_cipher()
        payload = json.dumps(credentials.reveal(), separators=(",", ":"))
        return cipher.encrypt(payload.encode("utf-8")).decode("utf-8")

    def decrypt(self, bundle: str) -> ConnectionCredentials:
        cipher = self._ensure_cipher()
        try:
            payload = cipher.decrypt(bundle.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise CredentialEncryptionError("Failed to decrypt connection credentials.") from exc
        return ConnectionCredentials.model_validate(json.loads(payload))

    def _ensure_cipher(self) -> Fernet:
        if self._cipher is not None:
            return self._cipher
        if not self._key:
            raise CredentialEncryptionError(
                "DATABASE_CREDENTIALS_KEY must be set to store encrypted credentials."
            )
        key = self._key
        if isinstance(key, str):
            key = key.encode("utf-8")
        try:
            self._cipher = Fernet(key)
        except (ValueError, TypeError) as exc:
            raise CredentialEncryptionError(
                "Invalid DATABASE_CREDENTIALS_KEY. Use a Fernet-compatible base64 key."
            ) from exc
        return self._cipher
