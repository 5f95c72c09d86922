"""Gemini Tools MCP Server

Gemini models exposed as MCP tools:
- gemini_search: Grounded web search (Gemini + Google Search)
- gemini_reason: Step-by-step reasoning
- gemini_code: Codebase questions over a packed repository
- gemini_fileops: File summarization, extraction and analysis
"""

try:
    from importlib.metadata import PackageNotFoundError, version
except (ImportError, ModuleNotFoundError):
    __version__ = "0.0.0+unknown"
else:
    try:
        __version__ = version("gemini-tools-mcp")
    except PackageNotFoundError:
        __version__ = "0.0.0+unknown"

from gemini_tools_mcp.handlers import ToolRuntime, handle_tool_request
from gemini_tools_mcp.models import ModelDescriptor, select_model
from gemini_tools_mcp.types import (
    ErrorCategory,
    GeminiToolError,
    TaskType,
    ToolName,
    ToolRequest,
    ToolResult,
)

__all__ = [
    "__version__",
    "ErrorCategory",
    "GeminiToolError",
    "ModelDescriptor",
    "TaskType",
    "ToolName",
    "ToolRequest",
    "ToolResult",
    "ToolRuntime",
    "handle_tool_request",
    "select_model",
]
