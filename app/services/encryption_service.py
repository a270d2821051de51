"""
Encryption for order addresses at rest.

Uses Fernet symmetric encryption with a PBKDF2-derived key. Encrypted
values carry the ``ENC:`` prefix; values without it are treated as
plaintext written before encryption was enabled.
"""

import base64
import logging
import os
import warnings
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.config import settings

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when a value cannot be encrypted or decrypted."""
    pass


class EncryptionService:
    """
    Encrypt and decrypt short text values.

    The key is derived from ENCRYPTION_SECRET and ENCRYPTION_SALT.
    """

    ENCRYPTED_PREFIX = "ENC:"

    def __init__(self, secret_key: Optional[str] = None):
        self._secret = secret_key or settings.ENCRYPTION_SECRET

        if not self._secret:
            warnings.warn(
                "ENCRYPTION_SECRET not set. Using random key - data will not persist across restarts!",
                RuntimeWarning
            )
            self._secret = Fernet.generate_key().decode()

        self._salt = os.getenv("ENCRYPTION_SALT", "commerce_order_core_salt").encode()
        self._fernet = self._create_cipher()

    def _create_cipher(self) -> Fernet:
        """Create Fernet cipher from derived key."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=self._salt,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(self._secret.encode()))
        return Fernet(key)

    def encrypt(self, plaintext: Optional[str]) -> Optional[str]:
        """Encrypt a string; empty and already encrypted values pass through."""
        if not plaintext:
            return plaintext
        if plaintext.startswith(self.ENCRYPTED_PREFIX):
            return plaintext

        encrypted = self._fernet.encrypt(plaintext.encode())
        return f"{self.ENCRYPTED_PREFIX}{encrypted.decode()}"

    def decrypt(self, ciphertext: Optional[str]) -> Optional[str]:
        """Decrypt an ``ENC:`` value; anything else is returned unchanged."""
        if not ciphertext or not ciphertext.startswith(self.ENCRYPTED_PREFIX):
            return ciphertext

        try:
            decrypted = self._fernet.decrypt(ciphertext[len(self.ENCRYPTED_PREFIX):].encode())
        except InvalidToken:
            raise EncryptionError("Decryption failed: Invalid token or key")
        return decrypted.decode()

    def is_encrypted(self, value: Optional[str]) -> bool:
        return bool(value) and value.startswith(self.ENCRYPTED_PREFIX)


_encryption_service: Optional[EncryptionService] = None


def get_encryption_service() -> EncryptionService:
    """Process-wide encryption service."""
    global _encryption_service
    if _encryption_service is None:
        _encryption_service = EncryptionService()
    return _encryption_service
