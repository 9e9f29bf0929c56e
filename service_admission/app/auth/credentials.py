"""
Credential resolution: demo detection, key parsing, authentication and
key-data decoding.

Keys look like ``<prefix>-<key id>-<payload>[::<iv>]``. The payload segment
is an encrypted JSON document naming the owning organization. Structure is
checked before any cryptographic work so malformed keys fail fast.
"""

import hmac
import json
from typing import Any, Mapping, Optional

import pydantic

from shared.errors import AuthenticationError, ConfigurationError
from shared.logging import get_logger
from ..models import CredentialKind, KeyData, ResolvedCredential
from .cipher import KeyCipher, KeyCipherError
from .key_client import KeyAuthenticator

IV_SEPARATOR = "::"


class MalformedKeyError(AuthenticationError):
    def __init__(self, message: str = "Malformed key: missing parts"):
        super().__init__(f"Key decrypt failed: {message}", code="MALFORMED_KEY")


class KeyDecryptError(AuthenticationError):
    def __init__(self, reason: str):
        super().__init__(
            f"Key decrypt failed: Failed to decrypt key data: {reason}",
            code="KEY_DECRYPT_FAILED",
        )


class KeyParseError(AuthenticationError):
    def __init__(self, reason: str):
        super().__init__(
            f"Key decrypt failed: Failed to parse key data JSON: {reason}",
            code="KEY_PARSE_FAILED",
        )


class KeyRejectedError(AuthenticationError):
    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "Authentication failed.", code="KEY_REJECTED")


def get_header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup over Starlette headers or plain dicts."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    return value


def extract_api_key(headers: Mapping[str, Any]) -> Optional[str]:
    """Read the credential from ``X-API-Key`` or an ``Authorization: Bearer`` header."""
    api_key = get_header(headers, "X-API-Key")
    if api_key and api_key.strip():
        return api_key.strip()

    authorization = get_header(headers, "Authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def payload_segment(api_key: str) -> str:
    """Return the encrypted key-data segment, dropping a trailing IV."""
    parts = api_key.split("-")
    if len(parts) < 3 or not parts[2]:
        raise MalformedKeyError()
    segment = parts[2].split(IV_SEPARATOR, 1)[0]
    if not segment:
        raise MalformedKeyError("Malformed key: empty key data")
    return segment


class CredentialResolver:
    """Classifies, authenticates and decodes bearer credentials."""

    def __init__(self, authenticator: KeyAuthenticator, cipher: KeyCipher,
                 demo_key: Optional[str] = None):
        self.authenticator = authenticator
        self.cipher = cipher
        self.demo_key = demo_key
        self.logger = get_logger("admission.credentials")

    def is_demo(self, api_key: str) -> bool:
        if not self.demo_key:
            return False
        return hmac.compare_digest(api_key.encode("utf-8"), self.demo_key.encode("utf-8"))

    @staticmethod
    def expected_kind(key_type: str) -> CredentialKind:
        """Map a route's declared key type onto a keyed credential kind."""
        try:
            kind = CredentialKind(key_type)
        except ValueError:
            kind = None
        if kind not in (CredentialKind.PUBLIC, CredentialKind.PRIVATE):
            raise ConfigurationError(f'Invalid keyType "{key_type}" supplied')
        return kind

    def classify(self, api_key: str, key_type: str) -> CredentialKind:
        if self.is_demo(api_key):
            return CredentialKind.DEMO
        return self.expected_kind(key_type)

    def decode_key_data(self, api_key: str) -> KeyData:
        """Decrypt and parse the key's payload.

        A payload without ``organizationId`` decodes fine; callers that need
        the organization raise at that point.
        """
        segment = payload_segment(api_key)

        try:
            plaintext = self.cipher.decrypt(segment)
        except KeyCipherError as e:
            raise KeyDecryptError(str(e)) from e

        try:
            document = json.loads(plaintext)
        except ValueError as e:
            raise KeyParseError(str(e)) from e
        if not isinstance(document, dict):
            raise KeyParseError("key data is not a JSON object")

        try:
            return KeyData.model_validate(document)
        except pydantic.ValidationError as e:
            raise KeyParseError(str(e)) from e

    async def resolve(self, api_key: str, key_type: str = "public") -> ResolvedCredential:
        """Resolve a bearer credential for a route expecting ``key_type``."""
        kind = self.classify(api_key, key_type)
        if kind == CredentialKind.DEMO:
            return ResolvedCredential(kind=kind, api_key=api_key)

        payload_segment(api_key)

        result = await self.authenticator.authenticate(api_key, kind)
        if not result.authenticated:
            self.logger.warning("Key authentication failed", key_type=kind.value)
            raise KeyRejectedError(result.error)

        key_data = self.decode_key_data(api_key)
        return ResolvedCredential(kind=kind, api_key=api_key, key_data=key_data)
