"""Tests for encryption module."""

import pytest

from snapsync.encryption import (
    DecryptionError,
    EncryptionManager,
    decrypt_value,
    encrypt_value,
    generate_encryption_key,
    get_encryption_manager,
    reset_encryption_manager,
)


def test_generate_encryption_key():
    """Test encryption key generation."""
    key = generate_encryption_key()
    assert len(key) == 32
    assert isinstance(key, bytes)


def test_encryption_manager_encrypt_decrypt():
    """Test basic encryption and decryption."""
    manager = EncryptionManager(generate_encryption_key())

    encrypted = manager.encrypt("Hello, World!")

    assert manager.decrypt(encrypted) == "Hello, World!"
    assert b"Hello" not in encrypted


def test_same_plaintext_gives_different_ciphertexts():
    manager = EncryptionManager(generate_encryption_key())
    assert manager.encrypt("secret") != manager.encrypt("secret")


def test_context_must_match():
    """A value sealed for one setting does not open as another."""
    manager = EncryptionManager(generate_encryption_key())
    encrypted = manager.encrypt("refresh-token", "backup_oauth_credentials")

    assert manager.decrypt(encrypted, "backup_oauth_credentials") == "refresh-token"
    with pytest.raises(DecryptionError):
        manager.decrypt(encrypted, "smtp_password")


def test_wrong_key_fails():
    encrypted = EncryptionManager(generate_encryption_key()).encrypt("data")
    with pytest.raises(DecryptionError):
        EncryptionManager(generate_encryption_key()).decrypt(encrypted)


@pytest.mark.parametrize("data", [b"", b"short", b"\x00" * 12])
def test_truncated_data_fails(data):
    manager = EncryptionManager(generate_encryption_key())
    with pytest.raises(DecryptionError):
        manager.decrypt(data)


def test_decryption_error_is_value_error():
    assert issubclass(DecryptionError, ValueError)


def test_short_key_rejected():
    with pytest.raises(ValueError):
        EncryptionManager(b"too short")


def test_global_manager_loads_key_file(test_encryption_key, settings_env):
    reset_encryption_manager()

    encrypted = encrypt_value("value", "ctx")

    assert get_encryption_manager() is get_encryption_manager()
    assert decrypt_value(encrypted, "ctx") == "value"
    assert EncryptionManager(test_encryption_key).decrypt(encrypted, "ctx") == "value"
