"""
Key authentication client.

Public and private keys are validated by the auth service; the gateway only
asks whether a key is valid for the declared kind.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import ExternalServiceError
from shared.logging import get_logger
from ..models import CredentialKind


@dataclass(frozen=True)
class KeyAuthResult:
    authenticated: bool
    error: Optional[str] = None


class KeyAuthenticator(Protocol):
    async def authenticate(self, api_key: str, kind: CredentialKind) -> KeyAuthResult:
        ...


class KeyAuthClient:
    """Client for the auth service's key verification endpoints."""

    def __init__(self, auth_service_url: str, timeout: float = 5.0,
                 failure_threshold: int = 3, recovery_timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.timeout = timeout
        self.logger = get_logger("admission.key_auth_client")
        self.circuit_breaker = CircuitBreaker(
            "key_auth_service",
            failure_threshold=failure_threshold,
            recovery_timeout=recovery_timeout,
            tripping_exceptions=(httpx.HTTPError, ExternalServiceError),
        )
        self._transport = transport

    async def authenticate(self, api_key: str, kind: CredentialKind) -> KeyAuthResult:
        """Verify ``api_key`` as a key of the given kind."""
        async def _verify() -> KeyAuthResult:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self.auth_service_url}/keys/{kind.value}/verify",
                    json={"key": api_key},
                )

            if response.status_code in (200, 401, 403):
                try:
                    body = response.json()
                except ValueError:
                    body = None
                if not isinstance(body, dict):
                    body = {}
                authenticated = bool(body.get("authenticated")) and response.status_code == 200
                if not authenticated:
                    self.logger.warning("Key authentication rejected", key_type=kind.value)
                return KeyAuthResult(
                    authenticated=authenticated,
                    error=None if authenticated else body.get("error") or "Authentication failed.",
                )
            raise ExternalServiceError(
                "key_auth_service",
                f"unexpected status {response.status_code}",
                details={"status_code": response.status_code},
            )

        try:
            return await self.circuit_breaker.call(_verify)
        except httpx.HTTPError as e:
            self.logger.error("Key auth service HTTP error", error=str(e))
            raise ExternalServiceError(
                "key_auth_service",
                "unavailable",
                details={"http_error": str(e)},
            ) from e
