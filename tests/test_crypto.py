"""
Tests for token encryption at rest.
"""

import base64

import pytest
from cryptography.exceptions import InvalidTag

from netsuite_sync.crypto import IV_LENGTH, decrypt, encrypt


class TestEncryption:
    """Tests for AES-GCM token encryption."""

    def test_decrypt_reverses_encrypt(self):
        assert decrypt(encrypt("access-token", "secret"), "secret") == "access-token"

    def test_fresh_iv_per_call(self):
        a = encrypt("same", "secret")
        b = encrypt("same", "secret")
        assert a != b
        assert base64.b64decode(a)[:IV_LENGTH] != base64.b64decode(b)[:IV_LENGTH]

    def test_ciphertext_hides_plaintext(self):
        assert "access-token" not in encrypt("access-token", "secret")

    def test_wrong_key_fails(self):
        with pytest.raises(InvalidTag):
            decrypt(encrypt("access-token", "secret"), "other-secret")

    def test_tampering_detected(self):
        packed = bytearray(base64.b64decode(encrypt("access-token", "secret")))
        packed[-1] ^= 0x01
        with pytest.raises(InvalidTag):
            decrypt(base64.b64encode(bytes(packed)).decode(), "secret")

    def test_salt_changes_key(self):
        encoded = encrypt("access-token", "secret", salt=b"tenant-a")
        with pytest.raises(InvalidTag):
            decrypt(encoded, "secret", salt=b"tenant-b")
