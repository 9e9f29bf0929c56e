"""
Symmetric cipher for the key-data segment embedded in API keys.
"""

import base64
import binascii
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


class KeyCipherError(Exception):
    """Raised when a payload segment cannot be decrypted."""


class KeyCipher(Protocol):
    """Encrypts/decrypts the payload segment of an API key."""

    def encrypt(self, plaintext: str) -> str:
        ...

    def decrypt(self, segment: str) -> str:
        ...


class FernetKeyCipher:
    """
    Fernet cipher keyed from a shared secret.

    Segments are standard-alphabet base64 of the Fernet token, so they never
    contain the ``-`` that separates key segments nor the ``::`` IV marker.
    """

    def __init__(self, secret: str, salt: bytes = b"admission_key_salt", iterations: int = 100000):
        if not secret:
            raise ValueError("secret must be provided")
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=iterations,
        )
        self._fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(secret.encode("utf-8"))))

    def encrypt(self, plaintext: str) -> str:
        token = self._fernet.encrypt(plaintext.encode("utf-8"))
        return base64.b64encode(token).decode("ascii")

    def decrypt(self, segment: str) -> str:
        try:
            token = base64.b64decode(segment.encode("ascii"), validate=True)
            return self._fernet.decrypt(token).decode("utf-8")
        except (binascii.Error, UnicodeError, InvalidToken, ValueError) as e:
            raise KeyCipherError(str(e) or e.__class__.__name__) from e
