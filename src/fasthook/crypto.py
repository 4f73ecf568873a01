"""Encryption of endpoint signing secrets at rest."""

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from fasthook.errors import StorageError

# Marks values written by seal_secret so plaintext rows stay readable
SEALED_PREFIX = "fernet:"


def _fernet(key: str) -> Fernet:
    """Build a Fernet instance from an arbitrary-length key.

    Fernet requires a 32-byte URL-safe base64-encoded key, so the
    configured key is hashed to a fixed length first.
    """
    key_bytes = hashlib.sha256(key.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(key_bytes))


def seal_secret(secret: str, key: str | None) -> str:
    """Encrypt a signing secret for storage.

    Args:
        secret: Plaintext signing secret.
        key: Encryption key. If None, the secret is stored unchanged.

    Returns:
        The value to persist.
    """
    if key is None:
        return secret
    token = _fernet(key).encrypt(secret.encode()).decode()
    return f"{SEALED_PREFIX}{token}"


def open_secret(stored: str, key: str | None) -> str:
    """Recover a plaintext signing secret from its stored form.

    Raises:
        StorageError: If the value is sealed but cannot be decrypted
            (missing or wrong key, corrupted data).
    """
    if not stored.startswith(SEALED_PREFIX):
        return stored
    if key is None:
        raise StorageError("Endpoint secret is encrypted but no encryption key is configured")
    try:
        return _fernet(key).decrypt(stored[len(SEALED_PREFIX) :].encode()).decode()
    except InvalidToken as e:
        raise StorageError("Endpoint secret could not be decrypted") from e


def is_sealed(stored: str) -> bool:
    """Return True if a stored secret is encrypted."""
    return stored.startswith(SEALED_PREFIX)
