"""
Credential handling for the gateway: demo/public/private classification,
key authentication against the auth service, and key-data decryption.
"""

from .cipher import FernetKeyCipher, KeyCipher, KeyCipherError
from .credentials import (
    CredentialResolver,
    KeyDecryptError,
    KeyParseError,
    KeyRejectedError,
    MalformedKeyError,
    extract_api_key,
    get_header,
)
from .key_client import KeyAuthClient, KeyAuthenticator, KeyAuthResult

__all__ = [
    "CredentialResolver",
    "FernetKeyCipher",
    "KeyAuthClient",
    "KeyAuthResult",
    "KeyAuthenticator",
    "KeyCipher",
    "KeyCipherError",
    "KeyDecryptError",
    "KeyParseError",
    "KeyRejectedError",
    "MalformedKeyError",
    "extract_api_key",
    "get_header",
]
