"""
Unit tests for the key authentication client.
"""

import httpx
import pytest

from service_admission.app.auth import KeyAuthClient
from service_admission.app.models import CredentialKind
from shared.circuit_breaker import CircuitBreakerOpenException, CircuitBreakerState
from shared.errors import ExternalServiceError


def _client(handler, **kwargs) -> KeyAuthClient:
    return KeyAuthClient("http://auth.test/", transport=httpx.MockTransport(handler), **kwargs)


class TestKeyAuthClient:
    """Test cases for KeyAuthClient."""

    @pytest.mark.asyncio
    async def test_authenticated_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.content
            return httpx.Response(200, json={"authenticated": True})

        result = await _client(handler).authenticate("pk-1-abc", CredentialKind.PUBLIC)

        assert result.authenticated is True
        assert result.error is None
        assert seen["url"] == "http://auth.test/keys/public/verify"
        assert b"pk-1-abc" in seen["body"]

    @pytest.mark.asyncio
    async def test_rejected_key_carries_message(self):
        def handler(request):
            return httpx.Response(401, json={"authenticated": False, "error": "Key revoked."})

        result = await _client(handler).authenticate("sk-1-abc::iv", CredentialKind.PRIVATE)

        assert result.authenticated is False
        assert result.error == "Key revoked."

    @pytest.mark.asyncio
    async def test_forbidden_without_body(self):
        def handler(request):
            return httpx.Response(403, text="nope")

        result = await _client(handler).authenticate("pk-1-abc", CredentialKind.PUBLIC)

        assert result.authenticated is False
        assert result.error == "Authentication failed."

    @pytest.mark.asyncio
    async def test_unexpected_status_is_external_error(self):
        def handler(request):
            return httpx.Response(502)

        with pytest.raises(ExternalServiceError) as exc_info:
            await _client(handler).authenticate("pk-1-abc", CredentialKind.PUBLIC)

        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_transport_error_is_external_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ExternalServiceError) as exc_info:
            await _client(handler).authenticate("pk-1-abc", CredentialKind.PUBLIC)

        assert exc_info.value.message == "key_auth_service: unavailable"

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler, failure_threshold=2, recovery_timeout=60.0)
        for _ in range(2):
            with pytest.raises(ExternalServiceError):
                await client.authenticate("pk-1-abc", CredentialKind.PUBLIC)

        assert client.circuit_breaker.state == CircuitBreakerState.OPEN
        with pytest.raises(CircuitBreakerOpenException):
            await client.authenticate("pk-1-abc", CredentialKind.PUBLIC)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_rejections_do_not_trip_the_circuit(self):
        def handler(request):
            return httpx.Response(401, json={"authenticated": False})

        client = _client(handler, failure_threshold=1)
        for _ in range(3):
            await client.authenticate("pk-1-abc", CredentialKind.PUBLIC)

        assert client.circuit_breaker.state == CircuitBreakerState.CLOSED
