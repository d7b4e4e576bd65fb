"""
AES-256-GCM encryption for OAuth tokens at rest.

The key is derived from the configured secret with PBKDF2 over a static
per-integration salt. Every ciphertext gets a fresh random IV.
"""

import base64
import os

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

TOKEN_SALT = b"netsuite-sync-tokens"

KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12
PBKDF2_ITERATIONS = 100_000


def derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, secret: str, salt: bytes = TOKEN_SALT) -> str:
    """Encrypt and pack as base64(iv || ciphertext+tag)."""
    key = derive_key(secret, salt)
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return base64.b64encode(iv + ciphertext).decode("ascii")


def decrypt(encoded: str, secret: str, salt: bytes = TOKEN_SALT) -> str:
    """
    Reverse encrypt().

    Raises:
        cryptography.exceptions.InvalidTag: If the key is wrong or data was tampered with
    """
    key = derive_key(secret, salt)
    packed = base64.b64decode(encoded)
    iv, ciphertext = packed[:IV_LENGTH], packed[IV_LENGTH:]
    return AESGCM(key).decrypt(iv, ciphertext, None).decode("utf-8")
