"""Google Cloud KMS key service (install with the ``gcp`` extra)."""

from google.api_core import exceptions as gexc
from google.cloud import kms

from visitas_core.common.exceptions import AuthenticationError, DependencyUnavailableError
from visitas_core.common.logging import get_logger

logger = get_logger("crypto.cloud_kms")

_UNAVAILABLE = (
    gexc.ServiceUnavailable,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
    gexc.TooManyRequests,
)


class CloudKMSKeyService:
    """Symmetric encrypt/decrypt against one Cloud KMS CryptoKey."""

    def __init__(self, key_name: str, client=None, timeout: float = 10.0):
        self.key_name = key_name
        self.timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = kms.KeyManagementServiceAsyncClient()
        return self._client

    async def encrypt(self, plaintext: bytes, aad: bytes) -> bytes:
        try:
            response = await self.client.encrypt(
                request={
                    "name": self.key_name,
                    "plaintext": plaintext,
                    "additional_authenticated_data": aad,
                },
                timeout=self.timeout,
            )
        except gexc.GoogleAPICallError as exc:
            raise self._unavailable("encrypt", exc) from exc
        return response.ciphertext

    async def decrypt(self, ciphertext: bytes, aad: bytes) -> bytes:
        try:
            response = await self.client.decrypt(
                request={
                    "name": self.key_name,
                    "ciphertext": ciphertext,
                    "additional_authenticated_data": aad,
                },
                timeout=self.timeout,
            )
        except gexc.InvalidArgument as exc:
            raise AuthenticationError() from exc
        except gexc.GoogleAPICallError as exc:
            raise self._unavailable("decrypt", exc) from exc
        return response.plaintext

    def _unavailable(self, operation: str, exc: Exception) -> DependencyUnavailableError:
        retryable = isinstance(exc, _UNAVAILABLE)
        logger.error(
            "Cloud KMS call failed",
            extra={"fields": {
                "operation": operation,
                "error": type(exc).__name__,
                "retryable": retryable,
            }},
        )
        return DependencyUnavailableError(
            f"Key service {operation} failed ({type(exc).__name__})",
            dependency="kms",
        )
