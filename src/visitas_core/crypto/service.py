"""Envelope encryption of national identifiers, bound to their subject."""

import base64
import binascii
from dataclasses import dataclass

from visitas_core.common.exceptions import AuthenticationError, ValidationError
from visitas_core.crypto.keys import KeyService

AAD_PREFIX = b"national_id:subject_id:"


@dataclass(frozen=True)
class EncryptionContext:
    """AAD binding for a single encrypt/decrypt call. Built per call, never cached."""
    subject_id: str

    def aad(self) -> bytes:
        return AAD_PREFIX + self.subject_id.encode()


class EnvelopeEncryptionService:
    """Seals values through the key service and text-encodes the result.

    The ciphertext only opens under the subject id it was sealed for; using
    another subject's id raises AuthenticationError. Plaintext never appears
    in exceptions raised from here.
    """

    def __init__(self, key_service: KeyService):
        self.key_service = key_service

    async def encrypt(self, plaintext: str, subject_id: str) -> str:
        if not plaintext:
            raise ValidationError("plaintext cannot be empty")
        context = self._context(subject_id)
        sealed = await self.key_service.encrypt(plaintext.encode(), context.aad())
        return base64.b64encode(sealed).decode("ascii")

    async def decrypt(self, ciphertext: str, subject_id: str) -> str:
        if not ciphertext:
            raise ValidationError("ciphertext cannot be empty")
        context = self._context(subject_id)
        try:
            sealed = base64.b64decode(ciphertext, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AuthenticationError("Ciphertext is not valid base64") from exc
        opened = await self.key_service.decrypt(sealed, context.aad())
        try:
            return opened.decode()
        except UnicodeDecodeError as exc:
            raise AuthenticationError("Decrypted value is not valid UTF-8") from exc

    @staticmethod
    def _context(subject_id: str) -> EncryptionContext:
        if not subject_id:
            raise ValidationError("subject_id is required for encryption binding")
        return EncryptionContext(subject_id=subject_id)
