"""
Data types for Gemini Tools MCP Server.

Request side: ToolRequest -> IntermediateRequest -> ProviderPayload.
Response side: raw SDK response -> InternalResponse variant -> ToolResult.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Literal

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND

if TYPE_CHECKING:
    from collections.abc import Mapping

    from google.genai import types as genai_types


# =============================================================================
# Exceptions
# =============================================================================


class ErrorCategory(str, Enum):
    """Failure classes, listed in classification priority order."""

    INVALID_REQUEST = "INVALID_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    CONTENT_FILTERED = "CONTENT_FILTERED"
    SERVER_ERROR = "SERVER_ERROR"
    FILE_ERROR = "FILE_ERROR"
    UNKNOWN = "UNKNOWN"


DEFAULT_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.INVALID_REQUEST: 400,
    ErrorCategory.UNAUTHORIZED: 401,
    ErrorCategory.FORBIDDEN: 403,
    ErrorCategory.NOT_FOUND: 404,
    ErrorCategory.RATE_LIMITED: 429,
    ErrorCategory.CONTENT_FILTERED: 400,
    ErrorCategory.SERVER_ERROR: 500,
    ErrorCategory.FILE_ERROR: 400,
    ErrorCategory.UNKNOWN: 500,
}

RETRIABLE_CATEGORIES = frozenset({ErrorCategory.RATE_LIMITED, ErrorCategory.SERVER_ERROR})


class GeminiToolError(Exception):
    """Typed failure raised anywhere in the request pipeline.

    Provides structured error information with error codes for programmatic handling.
    """

    def __init__(
        self,
        category: ErrorCategory,
        message: str,
        details: dict[str, Any] | None = None,
        status: int | None = None,
    ):
        self.category = category
        self.message = message
        self.details = details or {}
        self.status = status if status is not None else DEFAULT_STATUS[category]
        super().__init__(f"{category.value}: {message}")

    @property
    def retriable(self) -> bool:
        return self.category in RETRIABLE_CATEGORIES

    @property
    def protocol_code(self) -> int:
        """JSON-RPC error code reported to the MCP client."""
        if self.category in (
            ErrorCategory.INVALID_REQUEST,
            ErrorCategory.UNAUTHORIZED,
            ErrorCategory.FORBIDDEN,
        ):
            return INVALID_PARAMS
        if self.category is ErrorCategory.NOT_FOUND:
            return METHOD_NOT_FOUND
        return INTERNAL_ERROR

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.category.value,
            "message": self.message,
            "status": self.status,
            "retriable": self.retriable,
            "protocol_code": self.protocol_code,
            "details": self.details,
        }


# =============================================================================
# Tool Requests
# =============================================================================


class ToolName(str, Enum):
    """Tools exposed over MCP."""

    SEARCH = "gemini_search"
    REASON = "gemini_reason"
    CODE = "gemini_code"
    FILEOPS = "gemini_fileops"


class TaskType(str, Enum):
    """Task hints that influence model selection."""

    GENERAL_SEARCH = "general_search"
    RAPID_SEARCH = "rapid_search"
    REASONING = "reasoning"
    CODE = "code"
    FILE_ANALYSIS = "file_analysis"
    LARGE_CONTEXT = "large_context"
    IMAGE_ANALYSIS = "image_analysis"


@dataclass(frozen=True, slots=True)
class ToolRequest:
    """One incoming tool call. Arguments are frozen into a read-only mapping."""

    tool: ToolName
    arguments: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "arguments", MappingProxyType(dict(self.arguments)))


# =============================================================================
# Content Parts
# =============================================================================


@dataclass(frozen=True, slots=True)
class TextPart:
    text: str


@dataclass(frozen=True, slots=True)
class InlineDataPart:
    """File bytes carried inline, base64 encoded."""

    mime_type: str
    data: str


@dataclass(frozen=True, slots=True)
class FileUriPart:
    """Reference to a file the provider fetches itself."""

    mime_type: str
    uri: str


@dataclass(frozen=True, slots=True)
class ErrorPart:
    """Text part standing in for an input that failed to load."""

    text: str
    path: str


Part = TextPart | InlineDataPart | FileUriPart | ErrorPart


# =============================================================================
# Requests
# =============================================================================

Role = Literal["system", "user"]


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    parts: tuple[Part, ...]

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, (TextPart, ErrorPart)))


@dataclass(frozen=True, slots=True)
class IntermediateRequest:
    """Provider-agnostic request.

    Direct generation fields take precedence over generation_config entries
    when the provider payload is built.
    """

    messages: tuple[Message, ...]
    tool: ToolName | None = None
    system_instruction: str | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    max_output_tokens: int | None = None
    generation_config: Mapping[str, Any] | None = None
    search_grounding: bool = False


@dataclass(frozen=True, slots=True)
class ProviderPayload:
    """Exact arguments for client.aio.models.generate_content()."""

    model: str
    contents: list[genai_types.Content]
    config: genai_types.GenerateContentConfig


# =============================================================================
# Responses
# =============================================================================


@dataclass(frozen=True, slots=True)
class Source:
    """A source/citation from grounded search."""

    uri: str
    title: str


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """A detected object. box is (ymin, xmin, ymax, xmax) normalized to 0-1000."""

    label: str
    box: tuple[float, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "box_2d": list(self.box)}


@dataclass(frozen=True, slots=True)
class InternalResponse:
    """Normalized provider response. model_used is filled in after execution."""

    texts: tuple[str, ...] = ()
    model_used: str = ""

    @property
    def text(self) -> str:
        return "\n".join(t for t in self.texts if t)


@dataclass(frozen=True, slots=True)
class TextResponse(InternalResponse):
    pass


@dataclass(frozen=True, slots=True)
class GroundedResponse(InternalResponse):
    sources: tuple[Source, ...] = ()
    queries: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class VisionResponse(InternalResponse):
    boxes: tuple[BoundingBox, ...] = ()


@dataclass(frozen=True, slots=True)
class BlockedResponse(InternalResponse):
    reason: str = "SAFETY"


# =============================================================================
# Tool Results
# =============================================================================


@dataclass(slots=True)
class ToolResult:
    """Envelope returned to the MCP layer."""

    content: list[dict[str, str]]
    metadata: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str, metadata: dict[str, Any] | None = None, *, is_error: bool = False) -> ToolResult:
        return cls(content=[{"type": "text", "text": text}], metadata=metadata or {}, is_error=is_error)

    @classmethod
    def from_error(cls, error: GeminiToolError) -> ToolResult:
        data = error.to_dict()
        details = data.pop("details")
        metadata = {"error_code": data.pop("code"), **data, **details}
        return cls.from_text(f"Error: {error.message}", metadata, is_error=True)

    @property
    def text(self) -> str:
        return "\n\n".join(block["text"] for block in self.content if block.get("type") == "text")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"content": self.content, "metadata": self.metadata, "isError": self.is_error}
