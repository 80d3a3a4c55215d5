# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Field-level encryption keyed by key reference.

Encrypted fields are stored as ``ENC:`` followed by base64 ciphertext.
Encryption is deterministic (AES-SIV), so the same plaintext under the same
key reference always produces the same ciphertext: equality restrictions
and primary-key lookups keep working against encrypted columns.

Each record field names a key reference (``DefaultTableOperationsKey``
unless overridden). A KeyRing resolves a reference to a 32-byte secret.

Key sources (in priority order):
1. Keys set explicitly with KeyRing.set_key()
2. TABLEOPS_KEY_<REFERENCE> environment variable (base64-encoded)
3. /run/secrets/tableops_<reference> file (Docker/Kubernetes secrets),
   holding either the raw 32 bytes or their base64 text

Usage:
    from tableops.encryption import keyring, generate_key

    keyring.set_key("DefaultTableOperationsKey", base64.b64decode(generate_key()))
    encrypted = keyring.encrypt("a@x.com", "DefaultTableOperationsKey")
    # Returns: "ENC:base64-encoded-ciphertext"
    keyring.decrypt(encrypted, "DefaultTableOperationsKey")
    # Returns: "a@x.com"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import secrets
import threading
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESSIV
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

KEY_SIZE = 32  # 256-bit secret per key reference
SIV_KEY_SIZE = 64  # AES-256-SIV uses two 256-bit keys
TAG_SIZE = 16  # synthetic IV

# Prefix to identify encrypted values
ENCRYPTED_PREFIX = "ENC:"

DEFAULT_KEY_REFERENCE = "DefaultTableOperationsKey"

_HKDF_INFO = b"tableops field encryption"


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""

    pass


class EncryptionKeyNotConfigured(EncryptionError):
    """Raised when no key is available for a key reference."""

    pass


def generate_key() -> str:
    """Generate a new random encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for TABLEOPS_KEY_<REFERENCE>.
    """
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode()


def is_encrypted(value: object) -> bool:
    """Check if a value is encrypted (has ENC: prefix)."""
    return isinstance(value, str) and value.startswith(ENCRYPTED_PREFIX)


def _cipher(key: bytes) -> AESSIV:
    if len(key) != KEY_SIZE:
        raise EncryptionError(f"Key must be {KEY_SIZE} bytes")
    siv_key = HKDF(
        algorithm=hashes.SHA256(), length=SIV_KEY_SIZE, salt=None, info=_HKDF_INFO
    ).derive(key)
    return AESSIV(siv_key)


def encrypt_value_with_key(plaintext: str, key: bytes, key_reference: str = "") -> str:
    """Encrypt a string value using the provided key.

    Args:
        plaintext: The value to encrypt.
        key: 32-byte secret.
        key_reference: Bound as associated data, so a value only decrypts
            under the reference it was encrypted for.

    Returns:
        Encrypted value with "ENC:" prefix. Empty strings are returned
        unchanged; any other value is encrypted, including one that already
        starts with the prefix.
    """
    if not plaintext:
        return plaintext

    ciphertext = _cipher(key).encrypt(plaintext.encode("utf-8"), [key_reference.encode("utf-8")])
    encoded = base64.b64encode(ciphertext).decode("ascii")
    return f"{ENCRYPTED_PREFIX}{encoded}"


def decrypt_value_with_key(encrypted: str, key: bytes, key_reference: str = "") -> str:
    """Decrypt a value produced by encrypt_value_with_key().

    Args:
        encrypted: The encrypted value (with "ENC:" prefix).
        key: 32-byte secret.
        key_reference: Key reference used at encryption time.

    Returns:
        Decrypted plaintext. Values without the prefix are returned as-is.

    Raises:
        EncryptionError: If the data is malformed or authentication fails.
    """
    if not encrypted:
        return encrypted

    if not is_encrypted(encrypted):
        return encrypted

    encoded = encrypted[len(ENCRYPTED_PREFIX) :]
    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncryptionError(f"Invalid encrypted data format: {e}") from e

    if len(data) < TAG_SIZE:
        raise EncryptionError("Encrypted data too short")

    try:
        plaintext = _cipher(key).decrypt(data, [key_reference.encode("utf-8")])
    except InvalidTag as e:
        raise EncryptionError("Decryption failed: authentication tag mismatch") from e
    return plaintext.decode("utf-8")


class KeyRing:
    """Resolves key references to secrets and performs field encryption.

    Keys are loaded lazily per reference and cached. Lookups are
    thread-safe; the ring is shared by every engine that does not get its
    own.

    Attributes:
        env_prefix: Environment variable prefix for base64-encoded keys.
        secrets_dir: Directory holding tableops_<reference> secret files.
    """

    def __init__(self, env_prefix: str = "TABLEOPS_KEY_", secrets_dir: str = "/run/secrets"):
        self.env_prefix = env_prefix
        self.secrets_dir = Path(secrets_dir)
        self._keys: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def _env_var(self, key_reference: str) -> str:
        return self.env_prefix + re.sub(r"[^A-Za-z0-9]", "_", key_reference).upper()

    def _load_key(self, key_reference: str) -> bytes:
        env_var = self._env_var(key_reference)
        key_b64 = os.environ.get(env_var)
        if key_b64:
            try:
                key = base64.b64decode(key_b64, validate=True)
            except (binascii.Error, ValueError) as e:
                raise EncryptionError(f"Invalid {env_var}: {e}") from e
            if len(key) != KEY_SIZE:
                raise EncryptionError(f"{env_var} must be {KEY_SIZE} bytes (got {len(key)})")
            logger.debug("Loaded key '%s' from %s", key_reference, env_var)
            return key

        secrets_path = self.secrets_dir / f"tableops_{key_reference.lower()}"
        if secrets_path.exists():
            key = secrets_path.read_bytes()
            if len(key) != KEY_SIZE:
                # Not a raw key: base64 text, possibly newline-terminated
                try:
                    key = base64.b64decode(key.strip(), validate=True)
                except (binascii.Error, ValueError) as e:
                    raise EncryptionError(f"Invalid key file {secrets_path}: {e}") from e
            if len(key) != KEY_SIZE:
                raise EncryptionError(f"Encryption key in {secrets_path} must be {KEY_SIZE} bytes")
            logger.debug("Loaded key '%s' from %s", key_reference, secrets_path)
            return key

        raise EncryptionKeyNotConfigured(
            f"Encryption key '{key_reference}' not configured. Set {env_var} "
            f"(base64-encoded {KEY_SIZE} bytes) or mount {secrets_path}"
        )

    def key(self, key_reference: str) -> bytes:
        """Return the secret for a key reference.

        Raises:
            EncryptionKeyNotConfigured: If no source provides the key.
        """
        key = self._keys.get(key_reference)
        if key is not None:
            return key
        with self._lock:
            key = self._keys.get(key_reference)
            if key is None:
                key = self._load_key(key_reference)
                self._keys[key_reference] = key
            return key

    def set_key(self, key_reference: str, key: bytes | None) -> None:
        """Set or clear the secret for a key reference."""
        with self._lock:
            if key is None:
                self._keys.pop(key_reference, None)
                return
            if len(key) != KEY_SIZE:
                raise ValueError(f"Encryption key must be {KEY_SIZE} bytes")
            self._keys[key_reference] = key

    def is_configured(self, key_reference: str = DEFAULT_KEY_REFERENCE) -> bool:
        """True if a key is available for the reference."""
        try:
            self.key(key_reference)
        except EncryptionKeyNotConfigured:
            return False
        return True

    def encrypt(self, plaintext: str, key_reference: str = DEFAULT_KEY_REFERENCE) -> str:
        """Encrypt a value under a key reference."""
        return encrypt_value_with_key(plaintext, self.key(key_reference), key_reference)

    def decrypt(self, encrypted: str, key_reference: str = DEFAULT_KEY_REFERENCE) -> str:
        """Decrypt a value encrypted under a key reference."""
        return decrypt_value_with_key(encrypted, self.key(key_reference), key_reference)


keyring = KeyRing()
"""Process-wide key ring used by engines that are not given one."""


__all__ = [
    "DEFAULT_KEY_REFERENCE",
    "ENCRYPTED_PREFIX",
    "EncryptionError",
    "EncryptionKeyNotConfigured",
    "KeyRing",
    "decrypt_value_with_key",
    "encrypt_value_with_key",
    "generate_key",
    "is_encrypted",
    "keyring",
]
