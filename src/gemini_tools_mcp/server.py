"""
Gemini Tools MCP Server

Exposes Gemini over MCP stdio:
- gemini_search: Grounded web search (Gemini + Google Search)
- gemini_reason: Step-by-step reasoning on a problem
- gemini_code: Questions about a codebase (packed with repomix)
- gemini_fileops: Summarize, extract from or analyze files

Deprecated aliases: gemini_analyze (-> gemini_fileops), gemini_rapid_search (-> gemini_search)
"""

# NOTE: Do NOT use `from __future__ import annotations` with FastMCP/Pydantic
# as it breaks type resolution for Annotated parameters in tool functions

import logging
import sys
from typing import Annotated, Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from gemini_tools_mcp import __version__
from gemini_tools_mcp.config import LOGGER_NAME, get_log_level, load_settings
from gemini_tools_mcp.handlers import ToolRuntime, handle_tool_request
from gemini_tools_mcp.models import FALLBACK_TABLE, MODEL_REGISTRY, TOOL_DEFAULTS
from gemini_tools_mcp.types import ToolName, ToolRequest

# Configure logging
logger = logging.getLogger(LOGGER_NAME)
logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


# =============================================================================
# Server Instance
# =============================================================================

mcp = FastMCP(
    name="Gemini Tools",
    instructions="""
Gemini Tools MCP Server - Gemini models as MCP tools

## Search (gemini_search)
Web search with Google Search grounding. Returns an answer with sources.

## Reasoning (gemini_reason)
Step-by-step reasoning for math, logic and analysis problems.

## Code (gemini_code)
Answers questions about a repository. Pass directory_path (packed with repomix)
or codebase_path (an already packed XML file).

## File operations (gemini_fileops)
Summarize, extract from or analyze one or more files (images, PDFs, text, code).
""",
)


# =============================================================================
# Runtime
# =============================================================================

_runtime: ToolRuntime | None = None


def configure(runtime: ToolRuntime | None) -> None:
    """Install the runtime used by the tools (None resets it)."""
    global _runtime
    _runtime = runtime


def get_runtime() -> ToolRuntime:
    """Return the configured runtime, building it from the environment on first use."""
    global _runtime
    if _runtime is None:
        _runtime = ToolRuntime.from_settings(load_settings())
    return _runtime


async def _call(tool: ToolName, arguments: dict[str, Any]) -> str:
    result = await handle_tool_request(ToolRequest(tool=tool, arguments=arguments), get_runtime())
    logger.debug("%s metadata: %s", tool.value, result.metadata)
    if result.is_error:
        raise ToolError(result.text)
    return result.text


def _drop_none(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


# =============================================================================
# Tools
# =============================================================================


@mcp.tool(annotations={"readOnlyHint": True})
async def gemini_search(
    query: Annotated[str, "Question or topic to search the web for"],
    file_path: Annotated[str | list[str] | None, "Optional file path(s) or URL(s) to include as context"] = None,
    model_id: Annotated[str | None, "Optional Gemini model override"] = None,
) -> str:
    """
    Search the web with Gemini and Google Search grounding.

    Use for: current events, fact-checking, documentation lookups, "what is", "how to".

    Returns:
        Answer prefixed with the model used, followed by sources and search queries
    """
    return await _call(ToolName.SEARCH, _drop_none(query=query, file_path=file_path, model_id=model_id))


@mcp.tool(annotations={"readOnlyHint": True})
async def gemini_reason(
    problem: Annotated[str, "Problem or question to reason through"],
    file_path: Annotated[str | list[str] | None, "Optional file path(s) with supporting material"] = None,
    show_steps: Annotated[bool, "Ask for visible step-by-step reasoning"] = True,
    model_id: Annotated[str | None, "Optional Gemini model override"] = None,
) -> str:
    """
    Solve a problem with a reasoning-capable Gemini model.

    Use for: math, logic puzzles, multi-step analysis, trade-off evaluation.
    """
    return await _call(
        ToolName.REASON,
        _drop_none(problem=problem, file_path=file_path, show_steps=show_steps, model_id=model_id),
    )


@mcp.tool(annotations={"readOnlyHint": True})
async def gemini_code(
    question: Annotated[str, "Question about the codebase"],
    directory_path: Annotated[str | None, "Repository directory to pack and analyze"] = None,
    codebase_path: Annotated[str | None, "Path to an already packed repomix XML file"] = None,
    repomix_options: Annotated[str | None, "Extra repomix command line options"] = None,
    model_id: Annotated[str | None, "Optional Gemini model override"] = None,
) -> str:
    """
    Answer a question about a codebase, using only the packed repository as context.

    Provide exactly one of directory_path or codebase_path.
    """
    return await _call(
        ToolName.CODE,
        _drop_none(
            question=question,
            directory_path=directory_path,
            codebase_path=codebase_path,
            repomix_options=repomix_options,
            model_id=model_id,
        ),
    )


@mcp.tool(annotations={"readOnlyHint": True})
async def gemini_fileops(
    file_path: Annotated[str | list[str], "File path(s) or URL(s) to process"],
    instruction: Annotated[str | None, "Free-text instruction (overrides operation)"] = None,
    operation: Annotated[str | None, "One of: summarize, extract, analyze"] = None,
    use_large_context_model: Annotated[bool, "Use the large-context model for big inputs"] = False,
    model_id: Annotated[str | None, "Optional Gemini model override"] = None,
) -> str:
    """
    Summarize, extract from or analyze files: images, PDFs, text and code.

    Several text files are combined into one document before processing.
    """
    return await _call(
        ToolName.FILEOPS,
        _drop_none(
            file_path=file_path,
            instruction=instruction,
            operation=operation,
            use_large_context_model=use_large_context_model,
            model_id=model_id,
        ),
    )


# =============================================================================
# Deprecated Aliases
# =============================================================================


@mcp.tool(annotations={"readOnlyHint": True})
async def gemini_analyze(
    file_path: Annotated[str | list[str], "File path(s) to analyze"],
    instruction: Annotated[str | None, "What to do with the file(s)"] = None,
    model_id: Annotated[str | None, "Optional Gemini model override"] = None,
) -> str:
    """Deprecated: use gemini_fileops. Analyzes files with an optional instruction."""
    logger.warning("⚠️ gemini_analyze is deprecated, use gemini_fileops")
    return await _call(
        ToolName.FILEOPS,
        _drop_none(file_path=file_path, instruction=instruction, operation="analyze", model_id=model_id),
    )


@mcp.tool(annotations={"readOnlyHint": True})
async def gemini_rapid_search(
    query: Annotated[str, "Question or topic to search the web for"],
    model_id: Annotated[str | None, "Optional Gemini model override"] = None,
) -> str:
    """Deprecated: use gemini_search. Grounded web search."""
    logger.warning("⚠️ gemini_rapid_search is deprecated, use gemini_search")
    return await _call(ToolName.SEARCH, _drop_none(query=query, model_id=model_id))


# =============================================================================
# Resources
# =============================================================================


@mcp.resource("gemini://models")
def get_models() -> str:
    """List the models this server knows about and which tool uses which."""
    lines = ["# Available Gemini Models", "", "## Tool Defaults", ""]
    for tool, model_id in TOOL_DEFAULTS.items():
        lines.append(f"- **{tool.value}:** `{model_id}`")

    lines.extend(["", "## Registry", ""])
    for descriptor in MODEL_REGISTRY.values():
        lines.extend([
            f"### {descriptor.display_name} (`{descriptor.model_id}`)",
            f"- **Context window:** {descriptor.context_window:,} tokens",
            f"- **Max output:** {descriptor.max_output_tokens:,} tokens",
            f"- **Search grounding:** {'yes' if descriptor.supports_search else 'no'}",
            f"- **Thinking:** {'yes' if descriptor.supports_thinking else 'no'}",
            f"- **Best for:** {', '.join(descriptor.use_cases)}",
            "",
        ])

    lines.extend(["## Fallbacks", ""])
    for requested, substitute in FALLBACK_TABLE.items():
        lines.append(f"- `{requested}` → `{substitute}`")
    return "\n".join(lines)


# =============================================================================
# Main Entry Point
# =============================================================================


def main() -> None:
    """Run the MCP server on stdio transport."""
    logger.info("🚀 Starting Gemini Tools MCP Server v%s (FastMCP)", __version__)
    try:
        settings = load_settings()
    except ValueError as e:
        logger.error("❌ %s", e)
        sys.exit(1)

    configure(ToolRuntime.from_settings(settings))
    logger.info("   Transport: stdio")
    logger.info("   Paid tier: %s", settings.paid_tier)
    logger.info("   Default model: %s", settings.default_model)

    mcp.run(transport="stdio")


# Export for use as module
__all__ = ["mcp", "main"]


if __name__ == "__main__":
    main()
