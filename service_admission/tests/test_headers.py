"""
Unit tests for rate-limit header construction and response rendering.
"""

import json
import math
from datetime import datetime, timezone

import pytest

from service_admission.app.gateway import render_response
from service_admission.app.models import AdmissionFailure, AdmissionSuccess, ResourceEntitlement
from service_admission.app.ratelimit import build_rate_limit_headers, format_number, with_retry_after

NOW = datetime(2024, 5, 14, 12, 0, tzinfo=timezone.utc)
NOW_SECONDS = int(NOW.timestamp())
PERIOD_END = datetime(2024, 6, 1, tzinfo=timezone.utc)


class TestBuildRateLimitHeaders:
    """Test cases for build_rate_limit_headers."""

    def test_resource_only(self):
        assert build_rate_limit_headers("search.text") == {"X-RateLimit-Resource": "search.text"}

    def test_finite_quota_and_rpm(self):
        entitlement = ResourceEntitlement(
            access=True, quota=100, rpm=60, quota_remaining=40, quota_reset=PERIOD_END
        )

        headers = build_rate_limit_headers("search.text", entitlement, rpm_used=5, rpm_reset_in=42, now=NOW)

        assert headers == {
            "X-RateLimit-Resource": "search.text",
            "X-RateLimit-Quota-Limit": "100",
            "X-RateLimit-Quota-Remaining": "40",
            "X-RateLimit-Quota-Reset": str(int(PERIOD_END.timestamp())),
            "X-RateLimit-RPM-Limit": "60",
            "X-RateLimit-RPM-Remaining": "55",
            "X-RateLimit-RPM-Reset": str(NOW_SECONDS + 42),
        }

    def test_remaining_values_never_negative(self):
        entitlement = ResourceEntitlement(access=True, quota=10, rpm=2, quota_remaining=-3)

        headers = build_rate_limit_headers("r", entitlement, rpm_used=7, now=NOW)

        assert headers["X-RateLimit-Quota-Remaining"] == "0"
        assert headers["X-RateLimit-RPM-Remaining"] == "0"

    def test_fractional_rpm_reports_whole_requests(self):
        entitlement = ResourceEntitlement(access=True, rpm=2.5)

        headers = build_rate_limit_headers("r", entitlement, rpm_used=1, now=NOW)

        assert headers["X-RateLimit-RPM-Limit"] == "2"
        assert headers["X-RateLimit-RPM-Remaining"] == "1"

    def test_unlimited_quota(self):
        entitlement = ResourceEntitlement(access=True, quota=math.inf, rpm=10)

        headers = build_rate_limit_headers("r", entitlement, rpm_used=1, now=NOW)

        assert headers["X-RateLimit-Quota-Limit"] == "unlimited"
        assert headers["X-RateLimit-Quota-Remaining"] == "unlimited"
        assert "X-RateLimit-Quota-Reset" not in headers

    def test_rpm_reset_defaults_to_window(self):
        entitlement = ResourceEntitlement(access=True, rpm=10)

        headers = build_rate_limit_headers("r", entitlement, now=NOW)

        assert headers["X-RateLimit-RPM-Reset"] == str(NOW_SECONDS + 60)
        assert "X-RateLimit-Quota-Limit" not in headers

    def test_quota_reset_omitted_without_period(self):
        entitlement = ResourceEntitlement(access=True, quota=5, quota_remaining=5)

        headers = build_rate_limit_headers("r", entitlement, now=NOW)

        assert "X-RateLimit-Quota-Reset" not in headers

    def test_retry_after(self):
        headers = with_retry_after({"X-RateLimit-Resource": "r"}, 60)

        assert headers == {"X-RateLimit-Resource": "r", "Retry-After": "60"}

    def test_format_number(self):
        assert format_number(100.0) == "100"
        assert format_number(2.5) == "2.5"
        assert format_number(7) == "7"


class TestRenderResponse:
    """Test cases for render_response."""

    def test_success_defaults_to_200(self):
        result = AdmissionSuccess(body={"data": {"answer": 42}}, headers={"X-RateLimit-Resource": "r"})

        response = render_response(result)

        assert response.status_code == 200
        assert json.loads(response.body) == {"data": {"answer": 42}}
        assert response.headers["X-RateLimit-Resource"] == "r"
        assert response.headers["content-type"] == "application/json"

    def test_error_defaults_to_400_and_drops_data(self):
        response = render_response({"error": "bad", "data": {"x": 1}})

        assert response.status_code == 400
        assert json.loads(response.body) == {"error": "bad"}

    def test_failure_status_and_headers(self):
        result = AdmissionFailure(status=429, error="slow down", headers={"Retry-After": "60"})

        response = render_response(result)

        assert response.status_code == 429
        assert json.loads(response.body) == {"error": "slow down"}
        assert response.headers["Retry-After"] == "60"

    def test_caller_headers_win(self):
        result = AdmissionSuccess(body={"data": 1}, headers={"X-RateLimit-Resource": "r"})

        response = render_response(result, {"X-RateLimit-Resource": "override", "Cache-Control": "no-store"})

        assert response.headers["X-RateLimit-Resource"] == "override"
        assert response.headers["Cache-Control"] == "no-store"

    def test_no_content(self):
        result = AdmissionSuccess(body={}, headers={"X-RateLimit-Resource": "r"}, status=204)

        response = render_response(result)

        assert response.status_code == 204
        assert response.body == b""
        assert response.headers["X-RateLimit-Resource"] == "r"

    @pytest.mark.parametrize("status", [201, 202])
    def test_explicit_success_status(self, status):
        response = render_response({"status": status, "data": "ok"})

        assert response.status_code == status
        assert json.loads(response.body) == {"data": "ok"}
