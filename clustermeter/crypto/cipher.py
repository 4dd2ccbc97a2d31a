"""Price cipher: symmetric encryption of integer unit prices.

Unit prices travel through configuration as Fernet tokens (AES-128-CBC +
HMAC). The Fernet key is derived from a passphrase with SHA-256, so
operators only handle a plain string (CLUSTERMETER_PRICE_ENCRYPTION_KEY).
"""

import base64
import hashlib
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from clustermeter.exceptions import PriceDecryptionError
from clustermeter.settings import get_settings

logger = logging.getLogger(__name__)

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


class PriceCipher:
    """Encrypts and decrypts int64 prices with a passphrase-derived key."""

    def __init__(self, passphrase: Optional[str] = None):
        self._fernet = self._build_fernet(
            passphrase or get_settings().price_encryption_key
        )

    @staticmethod
    def _build_fernet(passphrase: str) -> Fernet:
        """Derive a Fernet instance from the passphrase."""
        derived = hashlib.sha256(passphrase.encode()).digest()
        return Fernet(base64.urlsafe_b64encode(derived))

    def encrypt_int64(self, value: int) -> str:
        """Encrypt an integer price, returning a URL-safe token."""
        if isinstance(value, bool) or not isinstance(value, int):
            raise TypeError(f"price must be an int, got {type(value).__name__}")
        if not INT64_MIN <= value <= INT64_MAX:
            raise ValueError(f"price {value} does not fit in int64")
        return self._fernet.encrypt(str(value).encode()).decode()

    def decrypt_int64(self, token: str) -> int:
        """Decrypt a token produced by encrypt_int64.

        Raises:
            PriceDecryptionError: empty token, wrong key or tampered token,
                or a plaintext that is not an int64.
        """
        if not token:
            raise PriceDecryptionError("encrypted price is empty")
        try:
            plaintext = self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise PriceDecryptionError("invalid price token") from exc
        try:
            value = int(plaintext)
        except ValueError as exc:
            raise PriceDecryptionError(f"decrypted price is not an integer: {plaintext!r}") from exc
        if not INT64_MIN <= value <= INT64_MAX:
            raise PriceDecryptionError(f"decrypted price {value} does not fit in int64")
        return value
