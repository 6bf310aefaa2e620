"""Bank details encryption using Fernet with a PBKDF2-derived key."""

import base64

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import InternalError


class DecryptionError(InternalError):
    code = "DECRYPTION_FAILED"


class BankDetailsCipher:
    """Encrypt and decrypt payout details at rest.

    The key is derived once from a single secret and salt. Fernet tokens carry
    their own random IV and an HMAC, so equal plaintexts never produce equal
    ciphertexts and tampered tokens are rejected.
    """

    ITERATIONS = 600_000

    def __init__(self, secret: str, salt: str):
        """
        Args:
            secret: Encryption secret from the environment
            salt: Salt paired with the secret
        """
        if not secret or not salt:
            raise ValueError("Encryption secret and salt are required")
        self._fernet = self._derive_fernet(secret.encode(), salt.encode())

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a single field.

        Returns:
            URL-safe token string
        """
        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a token produced by ``encrypt``.

        Raises:
            DecryptionError: token is malformed or was produced with another key
        """
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except (InvalidToken, ValueError) as e:
            raise DecryptionError("Invalid encrypted data") from e

    def _derive_fernet(self, secret: bytes, salt: bytes) -> Fernet:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self.ITERATIONS,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret))
        return Fernet(key)
