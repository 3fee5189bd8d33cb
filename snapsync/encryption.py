"""Encryption of sensitive settings (OAuth client secret, refresh token)."""

import os
import secrets
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


class DecryptionError(ValueError):
    """Stored ciphertext could not be authenticated or decoded."""


class EncryptionManager:
    """AES-256-GCM sealing of setting values.

    The setting key is bound as associated data, so a ciphertext copied from
    one setting row into another fails authentication instead of decrypting.
    """

    def __init__(self, key: bytes):
        if len(key) < 32:
            raise ValueError("Encryption key must be at least 32 bytes")
        self._aesgcm = AESGCM(key[:32])

    def encrypt(self, plaintext: Union[str, bytes], context: str = "") -> bytes:
        """Return nonce + ciphertext for ``plaintext`` bound to ``context``."""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aesgcm.encrypt(nonce, plaintext, context.encode("utf-8") or None)

    def decrypt(self, encrypted_data: bytes, context: str = "") -> str:
        """Open data produced by :meth:`encrypt` with the same ``context``."""
        if not encrypted_data or len(encrypted_data) <= NONCE_SIZE:
            raise DecryptionError("Invalid encrypted data: too short")

        nonce = encrypted_data[:NONCE_SIZE]
        try:
            plaintext = self._aesgcm.decrypt(
                nonce, encrypted_data[NONCE_SIZE:], context.encode("utf-8") or None
            )
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError) as e:
            raise DecryptionError("Encrypted data failed authentication") from e


def generate_encryption_key() -> bytes:
    """Generate a new 32-byte encryption key."""
    return secrets.token_bytes(32)


# Global encryption manager instance (initialized after key is loaded)
_encryption_manager: EncryptionManager | None = None


def get_encryption_manager() -> EncryptionManager:
    """Get the global encryption manager, loading the key file on first use."""
    global _encryption_manager
    if _encryption_manager is None:
        from snapsync.config import get_encryption_key
        _encryption_manager = EncryptionManager(get_encryption_key())
    return _encryption_manager


def init_encryption_manager(key: bytes) -> EncryptionManager:
    """Initialize the global encryption manager with a specific key."""
    global _encryption_manager
    _encryption_manager = EncryptionManager(key)
    return _encryption_manager


def reset_encryption_manager() -> None:
    """Forget the cached manager (the key file is re-read on next use)."""
    global _encryption_manager
    _encryption_manager = None


def encrypt_value(value: str, context: str = "") -> bytes:
    """Convenience function to encrypt a value."""
    return get_encryption_manager().encrypt(value, context)


def decrypt_value(encrypted: bytes, context: str = "") -> str:
    """Convenience function to decrypt a value."""
    return get_encryption_manager().decrypt(encrypted, context)
