"""
Execution of provider payloads against the Gemini API.

One upstream call per request. A rate-limited advanced-tier model gets
exactly one retry on its lighter sibling with the same payload; every
other failure is classified and raised as GeminiToolError.
"""

from __future__ import annotations

import dataclasses
import logging
import re
import time
from typing import TYPE_CHECKING, Any

from google.genai import errors

from gemini_tools_mcp.config import LOGGER_NAME, Settings
from gemini_tools_mcp.models import get_lighter_sibling
from gemini_tools_mcp.provider import from_provider_response
from gemini_tools_mcp.types import ErrorCategory, GeminiToolError, InternalResponse, ProviderPayload

if TYPE_CHECKING:
    from google import genai

logger = logging.getLogger(LOGGER_NAME)


# =============================================================================
# Error Classification
# =============================================================================

# Checked in order; first match wins
ERROR_PATTERNS: tuple[tuple[ErrorCategory, re.Pattern[str]], ...] = (
    (ErrorCategory.INVALID_REQUEST, re.compile(
        r"invalid argument|invalid request|invalid_argument|malformed|bad request|validation|\b400\b")),
    (ErrorCategory.UNAUTHORIZED, re.compile(
        r"api key|api_key|unauthori[sz]ed|unauthenticated|credential|\b401\b")),
    (ErrorCategory.FORBIDDEN, re.compile(
        r"permission|forbidden|not allowed|access denied|\b403\b")),
    (ErrorCategory.NOT_FOUND, re.compile(
        r"not found|not_found|unknown model|\b404\b")),
    (ErrorCategory.RATE_LIMITED, re.compile(
        r"rate limit|rate-limit|quota|too many requests|resource.exhausted|throttl|\b429\b")),
    (ErrorCategory.CONTENT_FILTERED, re.compile(
        r"safety|harmful|blocked|prohibited content")),
    (ErrorCategory.SERVER_ERROR, re.compile(
        r"unavailable|overloaded|timeout|timed out|deadline|internal error|server error|\b50[0-4]\b")),
    (ErrorCategory.FILE_ERROR, re.compile(
        r"\bfile\b|image|document|mime type|too large")),
)

STATUS_CATEGORIES: dict[int, ErrorCategory] = {
    401: ErrorCategory.UNAUTHORIZED,
    403: ErrorCategory.FORBIDDEN,
    404: ErrorCategory.NOT_FOUND,
    429: ErrorCategory.RATE_LIMITED,
}

MESSAGE_PREFIXES: dict[ErrorCategory, str] = {
    ErrorCategory.INVALID_REQUEST: "Invalid request",
    ErrorCategory.UNAUTHORIZED: "Authentication failed (check GEMINI_API_KEY)",
    ErrorCategory.FORBIDDEN: "Permission denied",
    ErrorCategory.NOT_FOUND: "Model or resource not found",
    ErrorCategory.RATE_LIMITED: "Rate limit exceeded",
    ErrorCategory.CONTENT_FILTERED: "Content blocked by safety filters",
    ErrorCategory.SERVER_ERROR: "Gemini API server error",
    ErrorCategory.FILE_ERROR: "File processing error",
    ErrorCategory.UNKNOWN: "Unexpected error",
}


def categorize_message(message: str) -> ErrorCategory:
    """Classify a raw error message by pattern, in priority order."""
    lowered = message.lower()
    for category, pattern in ERROR_PATTERNS:
        if pattern.search(lowered):
            return category
    return ErrorCategory.UNKNOWN


def _categorize_api_error(error: errors.APIError) -> ErrorCategory:
    code = getattr(error, "code", None)
    if code in STATUS_CATEGORIES:
        return STATUS_CATEGORIES[code]
    if isinstance(code, int) and code >= 500:
        return ErrorCategory.SERVER_ERROR
    # 400 covers bad keys and blocked prompts too, so the message decides first
    category = categorize_message(getattr(error, "message", None) or str(error))
    if code == 400 and category in (ErrorCategory.UNKNOWN, ErrorCategory.SERVER_ERROR, ErrorCategory.RATE_LIMITED):
        return ErrorCategory.INVALID_REQUEST
    return category


def classify_error(
    error: BaseException,
    model_id: str | None = None,
    settings: Settings | None = None,
) -> GeminiToolError:
    """Map any exception raised around an upstream call to a GeminiToolError."""
    if isinstance(error, GeminiToolError):
        return error

    status: int | None = None
    if isinstance(error, errors.APIError):
        category = _categorize_api_error(error)
        status = error.code if isinstance(error.code, int) else None
        raw_message = getattr(error, "message", None) or str(error)
    elif isinstance(error, TimeoutError):
        category = ErrorCategory.SERVER_ERROR
        raw_message = str(error) or "request timed out"
    elif isinstance(error, OSError):
        category = ErrorCategory.FILE_ERROR
        raw_message = str(error)
    else:
        raw_message = str(error) or type(error).__name__
        category = categorize_message(raw_message)

    details: dict[str, Any] = {}
    if model_id:
        details["model"] = model_id
    message = f"{MESSAGE_PREFIXES[category]}: {raw_message}"

    if category is ErrorCategory.RATE_LIMITED:
        retry_after = settings.retry_after_seconds() if settings else None
        if retry_after is not None:
            details["retry_after"] = retry_after
            message += f" Try again in {retry_after:.0f} seconds."

    return GeminiToolError(category, message, details, status=status)


# =============================================================================
# Executor
# =============================================================================


class GeminiExecutor:
    """Runs provider payloads on an injected google-genai client."""

    def __init__(self, client: genai.Client, settings: Settings):
        self._client = client
        self._settings = settings

    async def _generate(self, model_id: str, payload: ProviderPayload) -> Any:
        return await self._client.aio.models.generate_content(
            model=model_id,
            contents=payload.contents,
            config=payload.config,
        )

    async def execute(self, model_id: str, payload: ProviderPayload) -> InternalResponse:
        """Call the API once, substituting the lighter sibling at most once on a rate limit."""
        start = time.time()
        model_used = model_id
        try:
            raw = await self._generate(model_id, payload)
        except Exception as e:
            error = classify_error(e, model_id, self._settings)
            sibling = get_lighter_sibling(model_id) if error.category is ErrorCategory.RATE_LIMITED else None
            if sibling is None:
                raise error from e

            logger.warning("⚠️ %s rate limited, retrying once with %s", model_id, sibling)
            try:
                raw = await self._generate(sibling, dataclasses.replace(payload, model=sibling))
            except Exception as retry_error:
                raise classify_error(retry_error, sibling, self._settings) from retry_error
            model_used = sibling

        logger.info("   ⏱️ %s responded in %.1fs", model_used, time.time() - start)
        response = from_provider_response(raw)
        return dataclasses.replace(response, model_used=model_used)
