# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Tests for encryption module - deterministic field encryption."""

from __future__ import annotations

import base64

import pytest

from tableops import DEFAULT_KEY_REFERENCE, KeyRing, generate_key
from tableops.encryption import (
    ENCRYPTED_PREFIX,
    EncryptionError,
    EncryptionKeyNotConfigured,
    decrypt_value_with_key,
    encrypt_value_with_key,
    is_encrypted,
)


@pytest.fixture
def key() -> bytes:
    return base64.b64decode(generate_key())


class TestGenerateKey:
    """Tests for generate_key function."""

    def test_returns_base64_32_bytes(self):
        """generate_key returns a base64-encoded 32-byte key."""
        assert len(base64.b64decode(generate_key())) == 32

    def test_keys_are_random(self):
        """Successive keys differ."""
        assert generate_key() != generate_key()


class TestEncryptDecrypt:
    """Tests for the key-based encrypt/decrypt functions."""

    def test_round_trip(self, key):
        """A value decrypts back to the plaintext."""
        encrypted = encrypt_value_with_key("ann@example.org", key, "ref")
        assert encrypted.startswith(ENCRYPTED_PREFIX)
        assert decrypt_value_with_key(encrypted, key, "ref") == "ann@example.org"

    def test_deterministic(self, key):
        """Same plaintext and reference give the same ciphertext."""
        assert encrypt_value_with_key("x", key, "ref") == encrypt_value_with_key("x", key, "ref")

    def test_reference_is_bound(self, key):
        """A value does not decrypt under another key reference."""
        encrypted = encrypt_value_with_key("x", key, "one")
        assert encrypted != encrypt_value_with_key("x", key, "two")
        with pytest.raises(EncryptionError, match="authentication"):
            decrypt_value_with_key(encrypted, key, "two")

    def test_empty_unchanged(self, key):
        """Empty strings are not encrypted."""
        assert encrypt_value_with_key("", key) == ""

    def test_prefixed_plaintext_is_encrypted(self, key):
        """Values that merely start with ENC: are still encrypted."""
        encrypted = encrypt_value_with_key("ENC:hello", key)
        assert encrypted != "ENC:hello"
        assert decrypt_value_with_key(encrypted, key) == "ENC:hello"
        twice = encrypt_value_with_key(encrypted, key)
        assert twice != encrypted
        assert decrypt_value_with_key(twice, key) == encrypted

    def test_plaintext_passes_decrypt(self, key):
        """Values without the prefix are returned as-is by decrypt."""
        assert decrypt_value_with_key("plain", key) == "plain"

    def test_malformed_raises(self, key):
        """Bad base64 or truncated data raise EncryptionError."""
        with pytest.raises(EncryptionError, match="Invalid encrypted data"):
            decrypt_value_with_key("ENC:***", key)
        with pytest.raises(EncryptionError, match="too short"):
            decrypt_value_with_key("ENC:" + base64.b64encode(b"abc").decode(), key)

    def test_wrong_key_size(self):
        """Keys must be 32 bytes."""
        with pytest.raises(EncryptionError, match="32 bytes"):
            encrypt_value_with_key("x", b"short")

    def test_is_encrypted(self, key):
        """is_encrypted checks the ENC: prefix on strings."""
        assert is_encrypted(encrypt_value_with_key("x", key))
        assert not is_encrypted("x")
        assert not is_encrypted(None)


class TestKeyRing:
    """Tests for key resolution by reference."""

    def test_set_key(self, key):
        """Explicit keys take priority and can be cleared."""
        ring = KeyRing(env_prefix="TABLEOPS_TEST_NONE_", secrets_dir="/nonexistent")
        ring.set_key("Custom", key)
        assert ring.key("Custom") == key
        assert ring.is_configured("Custom")
        ring.set_key("Custom", None)
        assert not ring.is_configured("Custom")

    def test_set_key_wrong_size(self):
        """set_key rejects keys that are not 32 bytes."""
        with pytest.raises(ValueError, match="32 bytes"):
            KeyRing().set_key("Custom", b"short")

    def test_missing_key_raises(self):
        """Unresolvable references raise EncryptionKeyNotConfigured."""
        ring = KeyRing(env_prefix="TABLEOPS_TEST_NONE_", secrets_dir="/nonexistent")
        with pytest.raises(EncryptionKeyNotConfigured, match="TABLEOPS_TEST_NONE_MISSING_KEY"):
            ring.key("missing.key")

    def test_key_from_environment(self, monkeypatch, key):
        """Keys load from <prefix><REFERENCE> as base64."""
        monkeypatch.setenv("TABLEOPS_TEST_KEY_DEFAULTTABLEOPERATIONSKEY", base64.b64encode(key).decode())
        ring = KeyRing(env_prefix="TABLEOPS_TEST_KEY_", secrets_dir="/nonexistent")
        assert ring.key(DEFAULT_KEY_REFERENCE) == key

    def test_invalid_environment_key(self, monkeypatch):
        """A key of the wrong size in the environment raises."""
        monkeypatch.setenv("TABLEOPS_TEST_KEY_BAD", base64.b64encode(b"short").decode())
        ring = KeyRing(env_prefix="TABLEOPS_TEST_KEY_", secrets_dir="/nonexistent")
        with pytest.raises(EncryptionError, match="must be 32 bytes"):
            ring.key("bad")

    def test_key_from_secrets_file(self, tmp_path):
        """Keys load from <secrets_dir>/tableops_<reference>."""
        secret = b"k" * 32
        (tmp_path / "tableops_payroll").write_bytes(secret)
        ring = KeyRing(env_prefix="TABLEOPS_TEST_NONE_", secrets_dir=str(tmp_path))
        assert ring.key("Payroll") == secret

    def test_binary_key_file_is_not_stripped(self, tmp_path):
        """Raw keys whose edge bytes are whitespace load unchanged."""
        secret = b" " + b"k" * 30 + b"\n"
        (tmp_path / "tableops_payroll").write_bytes(secret)
        ring = KeyRing(env_prefix="TABLEOPS_TEST_NONE_", secrets_dir=str(tmp_path))
        assert ring.key("Payroll") == secret

    def test_base64_key_file(self, tmp_path, key):
        """Key files may hold base64 text with a trailing newline."""
        (tmp_path / "tableops_payroll").write_bytes(base64.b64encode(key) + b"\n")
        ring = KeyRing(env_prefix="TABLEOPS_TEST_NONE_", secrets_dir=str(tmp_path))
        assert ring.key("Payroll") == key

    def test_invalid_key_file(self, tmp_path):
        """Key files that are neither raw nor base64 keys raise."""
        (tmp_path / "tableops_payroll").write_bytes(b"not a key")
        ring = KeyRing(env_prefix="TABLEOPS_TEST_NONE_", secrets_dir=str(tmp_path))
        with pytest.raises(EncryptionError):
            ring.key("Payroll")

    def test_encrypt_uses_reference(self, keyring):
        """KeyRing.encrypt/decrypt round-trip under the default reference."""
        encrypted = keyring.encrypt("secret")
        assert encrypted != "secret"
        assert keyring.decrypt(encrypted) == "secret"
