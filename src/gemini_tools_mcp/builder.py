"""
Request construction per tool.

Each builder returns an IntermediateRequest. All of them go through
normalize(), which hoists system-role messages into the dedicated
system_instruction field and drops it when empty.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any

from gemini_tools_mcp.config import (
    ANALYSIS_PARAMS,
    CODE_PARAMS,
    CODE_QUESTION_TEMPLATE,
    CODE_SYSTEM_PROMPT,
    FILEOPS_PARAMS,
    FILEOPS_SYSTEM_PROMPT,
    REASON_PARAMS,
    REASON_STEPS_PREFIX,
    SEARCH_PARAMS,
    SEARCH_SYSTEM_PROMPT,
    GenerationParams,
)
from gemini_tools_mcp.types import (
    ErrorCategory,
    GeminiToolError,
    IntermediateRequest,
    Message,
    Part,
    TextPart,
    ToolName,
)


class FileOperation(str, Enum):
    SUMMARIZE = "summarize"
    EXTRACT = "extract"
    ANALYZE = "analyze"


# operation -> {image, pdf, generic} prompt
OPERATION_PROMPTS: dict[FileOperation, dict[str, str]] = {
    FileOperation.SUMMARIZE: {
        "image": "Describe what this image shows and summarize its key elements.",
        "pdf": (
            "Summarize this PDF document. Cover its purpose, main sections "
            "and key conclusions."
        ),
        "generic": "Summarize the content of this file concisely, keeping the key points.",
    },
    FileOperation.EXTRACT: {
        "image": (
            "Extract all text, labels, numbers and other structured information "
            "visible in this image."
        ),
        "pdf": (
            "Extract the key information from this PDF document: names, dates, "
            "figures, tables and definitions."
        ),
        "generic": "Extract the key information from this file as a structured list.",
    },
    FileOperation.ANALYZE: {
        "image": "Analyze this image in detail: subjects, composition, text and notable features.",
        "pdf": (
            "Analyze this PDF document in detail: structure, arguments, evidence "
            "and any gaps or inconsistencies."
        ),
        "generic": "Analyze the content of this file in detail and report notable findings.",
    },
}


# =============================================================================
# Normalization
# =============================================================================


def _system_text(messages: Iterable[Message]) -> str:
    return "\n\n".join(m.text.strip() for m in messages if m.role == "system" and m.text.strip())


def normalize(
    messages: Sequence[Message],
    *,
    tool: ToolName | None = None,
    params: GenerationParams | None = None,
    generation_config: Mapping[str, Any] | None = None,
    search_grounding: bool = False,
) -> IntermediateRequest:
    """Hoist system messages out of the list and assemble the request."""
    system_instruction = _system_text(messages) or None
    conversation = tuple(m for m in messages if m.role != "system")
    if not conversation:
        raise GeminiToolError(ErrorCategory.INVALID_REQUEST, "Request has no user content")

    return IntermediateRequest(
        messages=conversation,
        tool=tool,
        system_instruction=system_instruction,
        temperature=params.temperature if params else None,
        top_p=params.top_p if params else None,
        top_k=params.top_k if params else None,
        max_output_tokens=params.max_output_tokens if params else None,
        generation_config=generation_config,
        search_grounding=search_grounding,
    )


def _system(text: str) -> Message:
    return Message(role="system", parts=(TextPart(text=text),))


def _user(text: str, parts: Sequence[Part] = ()) -> Message:
    return Message(role="user", parts=(*parts, TextPart(text=text)))


# =============================================================================
# Builders
# =============================================================================


def build_search_request(query: str, file_parts: Sequence[Part] = ()) -> IntermediateRequest:
    """Grounded search: mandatory-search system prompt, moderate temperature."""
    return normalize(
        [_system(SEARCH_SYSTEM_PROMPT), _user(query, file_parts)],
        tool=ToolName.SEARCH,
        params=SEARCH_PARAMS,
        search_grounding=True,
    )


def build_reason_request(
    problem: str,
    *,
    show_steps: bool = True,
    file_parts: Sequence[Part] = (),
) -> IntermediateRequest:
    """Reasoning: no system prompt, optional step-by-step prefix, low temperature."""
    text = f"{REASON_STEPS_PREFIX}{problem}" if show_steps else problem
    return normalize(
        [_user(text, file_parts)],
        tool=ToolName.REASON,
        params=REASON_PARAMS,
    )


def build_code_request(question: str, codebase: str) -> IntermediateRequest:
    """Codebase Q&A: question and packed repository in one user message."""
    text = CODE_QUESTION_TEMPLATE.format(question=question, codebase=codebase)
    return normalize(
        [_system(CODE_SYSTEM_PROMPT), _user(text)],
        tool=ToolName.CODE,
        params=CODE_PARAMS,
    )


def _prompt_variant(categories: Sequence[str], mime_types: Sequence[str]) -> str:
    if categories and all(c == "image" for c in categories):
        return "image"
    if mime_types and all(m == "application/pdf" for m in mime_types):
        return "pdf"
    return "generic"


def fileops_prompt(
    instruction: str | None,
    operation: FileOperation | None,
    categories: Sequence[str] = (),
    mime_types: Sequence[str] = (),
) -> str:
    """A free-text instruction wins over the named operation."""
    if instruction and instruction.strip():
        return instruction.strip()
    operation = operation or FileOperation.SUMMARIZE
    return OPERATION_PROMPTS[operation][_prompt_variant(categories, mime_types)]


def build_fileops_request(
    file_parts: Sequence[Part],
    *,
    instruction: str | None = None,
    operation: FileOperation | None = None,
    categories: Sequence[str] = (),
    mime_types: Sequence[str] = (),
    preamble: str = "",
) -> IntermediateRequest:
    """File operations: operation- and category-specific prompt after the file parts."""
    prompt = preamble + fileops_prompt(instruction, operation, categories, mime_types)
    analyzing = operation is FileOperation.ANALYZE and not (instruction and instruction.strip())
    return normalize(
        [_system(FILEOPS_SYSTEM_PROMPT), _user(prompt, file_parts)],
        tool=ToolName.FILEOPS,
        params=ANALYSIS_PARAMS if analyzing else FILEOPS_PARAMS,
    )
