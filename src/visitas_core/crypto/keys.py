"""Key-management backends.

A key service seals bytes under a key the application never sees outside
this module, authenticating caller-supplied associated data (AAD). Opening
a ciphertext with different AAD fails.

LocalKeyService keeps a versioned AES-256-GCM keyring in process, for
development and single-node deployments. Sealed layout::

    version (1 byte) || nonce (12 bytes) || ciphertext+tag

The version byte selects the key on decrypt, so rotating in a new key keeps
old ciphertexts readable.
"""

import base64
import binascii
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from visitas_core.common.exceptions import AuthenticationError

NONCE_LEN = 12
TAG_LEN = 16
KEY_BYTES = 32


class KeyService(Protocol):
    async def encrypt(self, plaintext: bytes, aad: bytes) -> bytes: ...

    async def decrypt(self, ciphertext: bytes, aad: bytes) -> bytes: ...


def generate_key() -> str:
    """Return a fresh urlsafe-base64 AES-256 key for the local keyring."""
    return base64.urlsafe_b64encode(AESGCM.generate_key(bit_length=256)).decode()


def _decode_key(version: int, encoded: str) -> bytes:
    try:
        raw = base64.urlsafe_b64decode(encoded)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Keyring entry {version} is not valid base64") from exc
    if len(raw) != KEY_BYTES:
        raise ValueError(
            f"Keyring entry {version} must decode to {KEY_BYTES} bytes, got {len(raw)}"
        )
    return raw


class LocalKeyService:
    """AES-256-GCM over an in-process versioned keyring."""

    def __init__(self, keyring: dict[int, str]):
        if not keyring:
            raise ValueError("Keyring must contain at least one key")
        for version in keyring:
            if not 0 <= version <= 255:
                raise ValueError(f"Key version {version} out of range 0-255")
        self._ciphers = {
            version: AESGCM(_decode_key(version, key))
            for version, key in keyring.items()
        }
        self.current_version = max(keyring)

    async def encrypt(self, plaintext: bytes, aad: bytes) -> bytes:
        nonce = os.urandom(NONCE_LEN)
        sealed = self._ciphers[self.current_version].encrypt(nonce, plaintext, aad)
        return bytes([self.current_version]) + nonce + sealed

    async def decrypt(self, ciphertext: bytes, aad: bytes) -> bytes:
        if len(ciphertext) < 1 + NONCE_LEN + TAG_LEN:
            raise AuthenticationError("Ciphertext is truncated")
        version = ciphertext[0]
        cipher = self._ciphers.get(version)
        if cipher is None:
            raise AuthenticationError(f"No key for ciphertext version {version}")
        nonce = ciphertext[1:1 + NONCE_LEN]
        try:
            return cipher.decrypt(nonce, ciphertext[1 + NONCE_LEN:], aad)
        except InvalidTag as exc:
            raise AuthenticationError() from exc
