# agencydash/crypto_utils.py
"""
Encryption utilities for storing site credentials at rest.
Uses Fernet (symmetric encryption) with a key from app config.
"""
from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken
from flask import current_app


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""
    pass


def get_fernet() -> Fernet:
    """
    Build a Fernet from APP_FERNET_KEY in app config.
    Raises EncryptionError if the key is missing or malformed.
    """
    key = current_app.config.get("APP_FERNET_KEY")
    if not key:
        raise EncryptionError(
            "APP_FERNET_KEY not configured. "
            "Generate with: python -c 'from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())'"
        )

    if isinstance(key, str):
        key = key.encode("utf-8")

    try:
        return Fernet(key)
    except (ValueError, TypeError) as e:
        raise EncryptionError("APP_FERNET_KEY is invalid. Must be a valid base64 Fernet key.") from e


def encrypt_string(plaintext: str) -> str:
    """
    Encrypt a string and return the Fernet token as text.

    Raises:
        EncryptionError: If the key is unusable
    """
    if not plaintext:
        return ""

    fernet = get_fernet()
    return fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_string(ciphertext: str) -> str:
    """
    Decrypt a Fernet token back to text.

    Raises:
        EncryptionError: If the key is unusable or the token was not produced by it
    """
    if not ciphertext:
        return ""

    fernet = get_fernet()
    try:
        return fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise EncryptionError("Decryption failed: token is invalid or was encrypted with another key") from e


def is_encrypted(value: str) -> bool:
    """
    Check if a string looks like it's already encrypted (Fernet format).
    Fernet tokens start with 'gAAAAA' after base64 encoding.

    This is a heuristic - good enough for migration detection.
    """
    if not value:
        return False
    return value.startswith("gAAAAA")


def generate_key() -> str:
    """Generate a new Fernet key for the APP_FERNET_KEY environment variable."""
    return Fernet.generate_key().decode("utf-8")
