"""
Tests for error handling and custom exceptions.

Verifies that custom exceptions include proper context and that
error handling utilities work correctly.
"""

from __future__ import annotations

import logging

import pytest

from little_helper.exceptions import (
    AuditLogError,
    BackendAuthRejected,
    BackendFatal,
    BackendRateLimited,
    ConfirmationStateError,
    CredentialMalformed,
    ElevationFailed,
    ElevationFailure,
    LittleHelperError,
    ProviderUnreachable,
    RoutingConflict,
    RoutingFailure,
)
from little_helper.utils.error_handling import format_exception_for_response, log_errors, status_code_for


class TestCustomExceptions:
    """Test custom exception classes."""

    def test_base_error_carries_context(self) -> None:
        error = LittleHelperError("Test error", context={"operation": "test", "value": 123})

        assert str(error) == "Test error"
        assert error.context == {"operation": "test", "value": 123}

    def test_base_error_without_context(self) -> None:
        assert LittleHelperError("Test error").context == {}

    def test_backend_error_records_provider_and_status(self) -> None:
        error = BackendRateLimited("slow down", "openai", 429, {"detail": "quota"})

        assert error.provider_id == "openai"
        assert error.status_code == 429
        assert error.context == {"provider_id": "openai", "status_code": 429, "detail": "quota"}

    def test_routing_conflict_reason(self) -> None:
        error = RoutingConflict("not ready", reason=RoutingFailure.NOT_READY, context={"provider_id": "gemini"})

        assert error.reason is RoutingFailure.NOT_READY
        assert error.context["reason"] == "not_ready"

    def test_elevation_failed_never_needs_the_secret(self) -> None:
        error = ElevationFailed("rejected", "cmdreq_1", ElevationFailure.AUTHENTICATION_FAILED)

        assert error.request_id == "cmdreq_1"
        assert error.reason is ElevationFailure.AUTHENTICATION_FAILED
        assert error.result is None
        assert error.context == {"request_id": "cmdreq_1", "reason": "authentication_failed"}


class TestStatusCodes:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (RoutingConflict("x", reason=RoutingFailure.UNKNOWN_PROVIDER), 409),
            (ConfirmationStateError("x", "cmdreq_1"), 409),
            (BackendAuthRejected("x", "openai", 401), 401),
            (BackendRateLimited("x", "openai", 429), 429),
            (ProviderUnreachable("x", "ollama"), 503),
            (BackendFatal("x", "openai", 400), 502),
            (CredentialMalformed("x", "openai"), 409),
            (AuditLogError("x"), 500),
            (ValueError("x"), 500),
        ],
    )
    def test_status_code_for(self, error: Exception, expected: int) -> None:
        assert status_code_for(error) == expected


class TestFormatExceptionForResponse:
    def test_includes_type_message_and_context(self) -> None:
        error = AuditLogError("Failed to append", context={"path": "/data/audit.jsonl"})

        assert format_exception_for_response(error) == {
            "error": "AuditLogError",
            "message": "Failed to append",
            "context": {"path": "/data/audit.jsonl"},
        }

    def test_plain_exception_has_no_context(self) -> None:
        assert format_exception_for_response(ValueError("bad")) == {"error": "ValueError", "message": "bad"}

    def test_context_is_redacted(self) -> None:
        error = LittleHelperError("oops", context={"token": "abc", "detail": "key sk-ant-api03-" + "k" * 20})

        context = format_exception_for_response(error)["context"]

        assert context["token"] == "[REDACTED]"
        assert "sk-ant" not in context["detail"]


class TestLogErrors:
    def test_sync_function_logs_and_reraises(self, caplog: pytest.LogCaptureFixture) -> None:
        @log_errors("parse_thing")
        def parse() -> None:
            raise LittleHelperError("broken", context={"file": "x.json"})

        with caplog.at_level(logging.ERROR), pytest.raises(LittleHelperError):
            parse()

        record = next(r for r in caplog.records if r.getMessage() == "Error in parse_thing")
        assert record.operation == "parse_thing"
        assert record.function == "parse"
        assert record.error_context == {"file": "x.json"}

    async def test_async_function_logs_and_reraises(self, caplog: pytest.LogCaptureFixture) -> None:
        @log_errors("fetch_thing")
        async def fetch() -> None:
            raise ValueError("nope")

        with caplog.at_level(logging.ERROR), pytest.raises(ValueError):
            await fetch()

        assert any(r.getMessage() == "Error in fetch_thing" for r in caplog.records)

    async def test_success_passes_through(self) -> None:
        @log_errors("noop")
        async def ok() -> int:
            return 7

        assert await ok() == 7
