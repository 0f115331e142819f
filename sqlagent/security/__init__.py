"""Credential encryption."""

from sqlagent.security.crypto import (
    CredentialCipher,
    CredentialEncryptionError,
    FernetCredentialCipher,
)

__all__ = ["CredentialCipher", "CredentialEncryptionError", "FernetCredentialCipher"]
