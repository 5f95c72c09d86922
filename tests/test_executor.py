"""Unit tests for error classification and the execution engine.

The google-genai client is replaced by an AsyncMock; no network access.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from google.genai import errors
from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND

from gemini_tools_mcp.builder import build_reason_request
from gemini_tools_mcp.config import Settings
from gemini_tools_mcp.executor import GeminiExecutor, categorize_message, classify_error
from gemini_tools_mcp.models import get_descriptor
from gemini_tools_mcp.provider import to_provider_payload
from gemini_tools_mcp.types import ErrorCategory, GeminiToolError


def _api_error(cls, code: int, message: str, status: str = ""):
    return cls(code, {"error": {"code": code, "message": message, "status": status}})


def _raw(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _client(generate: AsyncMock) -> SimpleNamespace:
    return SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate)))


def _payload(model_id: str):
    return to_provider_payload(build_reason_request("why?"), get_descriptor(model_id))


SETTINGS = Settings(api_key="test-key")


# =============================================================================
# Classification
# =============================================================================


class TestCategorizeMessage:
    """Test message-pattern classification."""

    @pytest.mark.parametrize("message,category", [
        ("Invalid argument: contents is empty", ErrorCategory.INVALID_REQUEST),
        ("API key not valid. Please pass a valid API key.", ErrorCategory.UNAUTHORIZED),
        ("Permission denied on resource project", ErrorCategory.FORBIDDEN),
        ("models/gemini-x is not found for API version v1beta", ErrorCategory.NOT_FOUND),
        ("Rate limit exceeded, please slow down", ErrorCategory.RATE_LIMITED),
        ("You exceeded your current quota", ErrorCategory.RATE_LIMITED),
        ("Response blocked due to safety settings", ErrorCategory.CONTENT_FILTERED),
        ("The model is overloaded. Please try again later.", ErrorCategory.SERVER_ERROR),
        ("Service unavailable", ErrorCategory.SERVER_ERROR),
        ("Unsupported MIME type for this model", ErrorCategory.FILE_ERROR),
        ("something odd happened", ErrorCategory.UNKNOWN),
    ])
    def test_patterns(self, message: str, category: ErrorCategory):
        """Messages map to categories in priority order."""
        assert categorize_message(message) is category

    def test_priority_order(self):
        """Earlier categories win when several patterns match."""
        assert categorize_message("bad request: quota field malformed") is ErrorCategory.INVALID_REQUEST


class TestClassifyError:
    """Test exception classification."""

    @pytest.mark.parametrize("cls,code,category", [
        (errors.ClientError, 401, ErrorCategory.UNAUTHORIZED),
        (errors.ClientError, 403, ErrorCategory.FORBIDDEN),
        (errors.ClientError, 404, ErrorCategory.NOT_FOUND),
        (errors.ClientError, 429, ErrorCategory.RATE_LIMITED),
        (errors.ServerError, 500, ErrorCategory.SERVER_ERROR),
        (errors.ServerError, 503, ErrorCategory.SERVER_ERROR),
    ])
    def test_status_codes(self, cls, code: int, category: ErrorCategory):
        """HTTP status codes decide the category for API errors."""
        error = classify_error(_api_error(cls, code, "upstream said no"))
        assert error.category is category
        assert error.status == code

    def test_400_with_key_message_is_unauthorized(self):
        """An invalid API key arrives as 400 but is an auth failure."""
        error = classify_error(_api_error(errors.ClientError, 400, "API key not valid.", "INVALID_ARGUMENT"))
        assert error.category is ErrorCategory.UNAUTHORIZED
        assert error.status == 400

    def test_400_generic_is_invalid_request(self):
        """Other 400s are invalid requests."""
        error = classify_error(_api_error(errors.ClientError, 400, "Request contains something odd"))
        assert error.category is ErrorCategory.INVALID_REQUEST

    def test_timeout(self):
        """Timeouts are retriable server errors."""
        error = classify_error(TimeoutError())
        assert error.category is ErrorCategory.SERVER_ERROR
        assert error.retriable is True

    def test_os_error(self):
        """OS errors are file errors."""
        assert classify_error(PermissionError("denied")).category is ErrorCategory.FILE_ERROR

    def test_passthrough(self):
        """GeminiToolError instances are returned unchanged."""
        original = GeminiToolError(ErrorCategory.NOT_FOUND, "x")
        assert classify_error(original) is original

    def test_rate_limit_retry_hint(self):
        """Rate-limit errors carry a tier-dependent retry hint."""
        error = classify_error(_api_error(errors.ClientError, 429, "Resource exhausted"), "gemini-2.5-pro", SETTINGS)
        assert error.details["retry_after"] == SETTINGS.retry_after_seconds()
        assert error.details["model"] == "gemini-2.5-pro"
        assert "Try again in" in error.message

    @pytest.mark.parametrize("category,code", [
        (ErrorCategory.INVALID_REQUEST, INVALID_PARAMS),
        (ErrorCategory.UNAUTHORIZED, INVALID_PARAMS),
        (ErrorCategory.FORBIDDEN, INVALID_PARAMS),
        (ErrorCategory.NOT_FOUND, METHOD_NOT_FOUND),
        (ErrorCategory.RATE_LIMITED, INTERNAL_ERROR),
        (ErrorCategory.SERVER_ERROR, INTERNAL_ERROR),
        (ErrorCategory.UNKNOWN, INTERNAL_ERROR),
    ])
    def test_protocol_codes(self, category: ErrorCategory, code: int):
        """Categories map onto JSON-RPC error codes."""
        assert GeminiToolError(category, "x").protocol_code == code

    def test_retriable_flags(self):
        """Only rate limits and server errors are retriable."""
        assert GeminiToolError(ErrorCategory.RATE_LIMITED, "x").retriable
        assert GeminiToolError(ErrorCategory.SERVER_ERROR, "x").retriable
        assert not GeminiToolError(ErrorCategory.NOT_FOUND, "x").retriable


# =============================================================================
# Execution
# =============================================================================


class TestExecute:
    """Test the single-substitution policy."""

    @pytest.mark.asyncio
    async def test_success(self):
        """A successful call returns the normalized response with model_used."""
        generate = AsyncMock(return_value=_raw("forty-two"))
        executor = GeminiExecutor(_client(generate), SETTINGS)

        response = await executor.execute("gemini-2.5-pro", _payload("gemini-2.5-pro"))

        assert response.text == "forty-two"
        assert response.model_used == "gemini-2.5-pro"
        generate.assert_awaited_once()
        assert generate.await_args.kwargs["model"] == "gemini-2.5-pro"

    @pytest.mark.asyncio
    async def test_rate_limit_substitutes_once(self):
        """A rate-limited pro model is retried exactly once on its flash sibling."""
        payload = _payload("gemini-2.5-pro")
        generate = AsyncMock(side_effect=[
            _api_error(errors.ClientError, 429, "Resource exhausted"),
            _raw("from flash"),
        ])
        executor = GeminiExecutor(_client(generate), SETTINGS)

        response = await executor.execute("gemini-2.5-pro", payload)

        assert generate.await_count == 2
        retry = generate.await_args_list[1].kwargs
        assert retry["model"] == "gemini-2.5-flash"
        assert retry["contents"] is payload.contents
        assert retry["config"] is payload.config
        assert response.model_used == "gemini-2.5-flash"
        assert response.text == "from flash"

    @pytest.mark.asyncio
    async def test_rate_limit_on_substitute_raises(self):
        """A second rate limit on the substitute is not retried again."""
        generate = AsyncMock(side_effect=[
            _api_error(errors.ClientError, 429, "Resource exhausted"),
            _api_error(errors.ClientError, 429, "Resource exhausted"),
        ])
        executor = GeminiExecutor(_client(generate), SETTINGS)

        with pytest.raises(GeminiToolError) as exc_info:
            await executor.execute("gemini-2.5-pro", _payload("gemini-2.5-pro"))

        assert generate.await_count == 2
        assert exc_info.value.category is ErrorCategory.RATE_LIMITED
        assert exc_info.value.details["model"] == "gemini-2.5-flash"

    @pytest.mark.asyncio
    async def test_rate_limit_on_lighter_model_raises(self):
        """A rate limit on a non-advanced model raises immediately."""
        generate = AsyncMock(side_effect=_api_error(errors.ClientError, 429, "Resource exhausted"))
        executor = GeminiExecutor(_client(generate), SETTINGS)

        with pytest.raises(GeminiToolError) as exc_info:
            await executor.execute("gemini-2.5-flash", _payload("gemini-2.5-flash"))

        generate.assert_awaited_once()
        assert exc_info.value.category is ErrorCategory.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self):
        """Non-rate-limit failures on an advanced model propagate without substitution."""
        generate = AsyncMock(side_effect=_api_error(errors.ServerError, 503, "The model is overloaded."))
        executor = GeminiExecutor(_client(generate), SETTINGS)

        with pytest.raises(GeminiToolError) as exc_info:
            await executor.execute("gemini-2.5-pro", _payload("gemini-2.5-pro"))

        generate.assert_awaited_once()
        assert exc_info.value.category is ErrorCategory.SERVER_ERROR

    @pytest.mark.asyncio
    async def test_substitute_other_error_classified(self):
        """A different failure on the substitute is classified and raised."""
        generate = AsyncMock(side_effect=[
            _api_error(errors.ClientError, 429, "Resource exhausted"),
            _api_error(errors.ClientError, 404, "model not found"),
        ])
        executor = GeminiExecutor(_client(generate), SETTINGS)

        with pytest.raises(GeminiToolError) as exc_info:
            await executor.execute("gemini-2.5-pro", _payload("gemini-2.5-pro"))

        assert exc_info.value.category is ErrorCategory.NOT_FOUND
