"""
Rendering of InternalResponse variants into ToolResult envelopes.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, assert_never

from gemini_tools_mcp.config import LOGGER_NAME
from gemini_tools_mcp.provider import VISION_LEAD_IN
from gemini_tools_mcp.types import (
    BlockedResponse,
    ErrorCategory,
    GeminiToolError,
    GroundedResponse,
    InternalResponse,
    TextResponse,
    ToolName,
    ToolResult,
    VisionResponse,
)

logger = logging.getLogger(LOGGER_NAME)

NO_CONTENT_MESSAGE = "No meaningful content could be extracted from the response."


@dataclass(slots=True)
class FormatOptions:
    tool: ToolName | None = None
    requested_model: str | None = None
    elapsed: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)


def _banner(model_id: str) -> str:
    return f"Model used: {model_id}\n\n"


def _format_duration(seconds: float) -> str:
    """Format duration in human-readable format."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes = int(seconds // 60)
    secs = int(seconds % 60)
    return f"{minutes}m {secs}s"


def _render_grounded(response: GroundedResponse) -> str:
    lines = [response.text or NO_CONTENT_MESSAGE]

    if response.sources:
        lines.extend(["", "---", "### Sources"])
        for i, source in enumerate(response.sources, 1):
            title = source.title or source.uri
            lines.append(f"{i}. [{title}]({source.uri})")

    if response.queries:
        lines.extend(["", "### Search Queries"])
        for q in response.queries:
            lines.append(f"- {q}")

    return "\n".join(lines)


def _render_vision(response: VisionResponse) -> str:
    lead = response.text or VISION_LEAD_IN
    detections = json.dumps([b.to_dict() for b in response.boxes], indent=2)
    return f"{lead}\n\n**Detected Objects:**\n```json\n{detections}\n```"


def _metadata(response: InternalResponse, model_id: str, options: FormatOptions) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "model_used": model_id,
        "response_type": type(response).__name__,
    }
    if options.tool is not None:
        metadata["tool"] = options.tool.value
    if options.requested_model:
        metadata["requested_model"] = options.requested_model
        metadata["fallback_used"] = options.requested_model != model_id
    if options.elapsed is not None:
        metadata["elapsed"] = _format_duration(options.elapsed)
    metadata.update(options.extra)
    return metadata


def format_response(
    response: InternalResponse,
    model_id: str | None = None,
    options: FormatOptions | None = None,
) -> ToolResult:
    """Render a response. Never raises; formatting failures become error results."""
    options = options or FormatOptions()
    try:
        model = response.model_used or model_id or "unknown"
        metadata = _metadata(response, model, options)

        match response:
            case BlockedResponse():
                error = GeminiToolError(
                    ErrorCategory.CONTENT_FILTERED,
                    f"Content blocked by safety filters ({response.reason})",
                    {"model": model},
                )
                result = ToolResult.from_error(error)
                result.metadata.update(metadata)
                return ToolResult.from_text(_banner(model) + result.text, result.metadata, is_error=True)
            case GroundedResponse():
                metadata["sources"] = len(response.sources)
                body = _render_grounded(response)
            case VisionResponse():
                metadata["detections"] = len(response.boxes)
                body = _render_vision(response)
            case TextResponse():
                body = response.text or NO_CONTENT_MESSAGE
            case _:
                assert_never(response)

        return ToolResult.from_text(_banner(model) + body, metadata)
    except Exception as e:
        logger.exception("Failed to format response: %s", e)
        return ToolResult.from_text(f"Error formatting response: {e}", {"error_code": "FORMAT_ERROR"}, is_error=True)
