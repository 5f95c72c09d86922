"""
Tool handlers: search, reason, code and fileops.

Each handler validates its arguments before any I/O, selects a model,
builds the request, executes it and formats the result. handle_tool_request()
is the single entry point and always returns a ToolResult.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Annotated, Any

from google import genai
from pydantic import AfterValidator, BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from gemini_tools_mcp.builder import (
    FileOperation,
    build_code_request,
    build_fileops_request,
    build_reason_request,
    build_search_request,
)
from gemini_tools_mcp.config import LOGGER_NAME, Settings
from gemini_tools_mcp.executor import GeminiExecutor, classify_error
from gemini_tools_mcp.files import (
    TEXT_CATEGORIES,
    classify,
    combined_file_preamble,
    concatenate_files,
    is_large_file,
    is_remote,
    load_files,
)
from gemini_tools_mcp.formatter import FormatOptions, format_response
from gemini_tools_mcp.models import get_descriptor, select_model
from gemini_tools_mcp.packer import RepomixPacker, RepositoryPacker
from gemini_tools_mcp.provider import to_provider_payload
from gemini_tools_mcp.types import (
    ErrorCategory,
    ErrorPart,
    GeminiToolError,
    IntermediateRequest,
    TaskType,
    ToolName,
    ToolRequest,
    ToolResult,
)

logger = logging.getLogger(LOGGER_NAME)


# =============================================================================
# Arguments
# =============================================================================


class _ToolArgs(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    model_id: str | None = None

    @field_validator("model_id", mode="before")
    @classmethod
    def _blank_model_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def _required_text(value: str) -> str:
    if not value.strip():
        raise ValueError("must not be empty")
    return value


RequiredText = Annotated[str, AfterValidator(_required_text)]


def _path_list(value: str | list[str] | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [p for p in value if p.strip()]


class SearchArgs(_ToolArgs):
    query: RequiredText
    file_path: str | list[str] | None = None


class ReasonArgs(_ToolArgs):
    problem: RequiredText
    file_path: str | list[str] | None = None
    show_steps: bool = True


class CodeArgs(_ToolArgs):
    question: RequiredText
    directory_path: str | None = None
    codebase_path: str | None = None
    repomix_options: str | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> CodeArgs:
        sources = [p for p in (self.directory_path, self.codebase_path) if p and p.strip()]
        if len(sources) != 1:
            raise ValueError("exactly one of directory_path or codebase_path is required")
        return self


class FileopsArgs(_ToolArgs):
    file_path: str | list[str]
    instruction: str | None = None
    operation: FileOperation | None = None
    use_large_context_model: bool = False

    @field_validator("file_path")
    @classmethod
    def _non_empty(cls, value: str | list[str]) -> str | list[str]:
        if not _path_list(value):
            raise ValueError("at least one file path is required")
        return value


def _describe_validation_error(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        if item["type"] == "missing":
            problems.append(f"Missing required argument: {location}")
        elif location:
            problems.append(f"{location}: {item['msg'].removeprefix('Value error, ')}")
        else:
            problems.append(item["msg"].removeprefix("Value error, "))
    return "; ".join(problems)


def parse_arguments(model: type[_ToolArgs], arguments: dict[str, Any]) -> Any:
    """Validate arguments, turning failures into INVALID_REQUEST errors."""
    try:
        return model.model_validate(dict(arguments))
    except ValidationError as e:
        raise GeminiToolError(ErrorCategory.INVALID_REQUEST, _describe_validation_error(e)) from e


# =============================================================================
# Runtime
# =============================================================================


@dataclass(slots=True)
class ToolRuntime:
    """Collaborators shared by the handlers, passed in explicitly."""

    settings: Settings
    executor: GeminiExecutor
    packer: RepositoryPacker = field(default_factory=RepomixPacker)

    @classmethod
    def from_settings(cls, settings: Settings) -> ToolRuntime:
        client = genai.Client(api_key=settings.api_key)
        return cls(
            settings=settings,
            executor=GeminiExecutor(client, settings),
            packer=RepomixPacker(settings.repomix_command),
        )

    async def run(
        self,
        tool: ToolName,
        model_id: str,
        request: IntermediateRequest,
        requested_model: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> ToolResult:
        start = time.time()
        payload = to_provider_payload(request, get_descriptor(model_id))
        response = await self.executor.execute(model_id, payload)
        options = FormatOptions(
            tool=tool,
            requested_model=requested_model or model_id,
            elapsed=time.time() - start,
            extra=extra or {},
        )
        return format_response(response, model_id, options)


# =============================================================================
# Handlers
# =============================================================================


async def handle_search(request: ToolRequest, runtime: ToolRuntime) -> ToolResult:
    args: SearchArgs = parse_arguments(SearchArgs, request.arguments)
    logger.info("🔎 gemini_search: %s", args.query[:100])

    paths = _path_list(args.file_path)
    parts = await load_files(paths) if paths else []
    model_id = select_model(ToolName.SEARCH, args.model_id, default_model=runtime.settings.default_model)
    return await runtime.run(
        ToolName.SEARCH,
        model_id,
        build_search_request(args.query, parts),
        requested_model=args.model_id,
    )


async def handle_reason(request: ToolRequest, runtime: ToolRuntime) -> ToolResult:
    args: ReasonArgs = parse_arguments(ReasonArgs, request.arguments)
    logger.info("🧠 gemini_reason: %s", args.problem[:100])

    paths = _path_list(args.file_path)
    parts = await load_files(paths) if paths else []
    model_id = select_model(ToolName.REASON, args.model_id, default_model=runtime.settings.default_model)
    return await runtime.run(
        ToolName.REASON,
        model_id,
        build_reason_request(args.problem, show_steps=args.show_steps, file_parts=parts),
        requested_model=args.model_id,
    )


def _read_codebase(path: str) -> str:
    codebase = Path(path).expanduser()
    if not codebase.is_file():
        raise GeminiToolError(ErrorCategory.FILE_ERROR, f"Codebase file not found: {path}", {"path": path})
    return codebase.read_text(encoding="utf-8", errors="replace")


async def handle_code(request: ToolRequest, runtime: ToolRuntime) -> ToolResult:
    args: CodeArgs = parse_arguments(CodeArgs, request.arguments)
    logger.info("💻 gemini_code: %s", args.question[:100])

    if args.codebase_path:
        codebase = await asyncio.to_thread(_read_codebase, args.codebase_path)
        source = args.codebase_path
    else:
        async with runtime.packer.pack(args.directory_path, args.repomix_options) as packed:
            codebase = await asyncio.to_thread(packed.read_text, encoding="utf-8", errors="replace")
        source = args.directory_path

    model_id = select_model(ToolName.CODE, args.model_id, default_model=runtime.settings.default_model)
    return await runtime.run(
        ToolName.CODE,
        model_id,
        build_code_request(args.question, codebase),
        requested_model=args.model_id,
        extra={"codebase": source, "codebase_chars": len(codebase)},
    )


def _missing_files_error(parts: list[Any]) -> GeminiToolError:
    paths = [p.path for p in parts if isinstance(p, ErrorPart)]
    if len(paths) == 1:
        message = f"File not found or unreadable: {paths[0]}"
    else:
        message = f"None of the files could be read: {', '.join(paths)}"
    return GeminiToolError(ErrorCategory.FILE_ERROR, message, {"paths": paths})


async def handle_fileops(request: ToolRequest, runtime: ToolRuntime) -> ToolResult:
    args: FileopsArgs = parse_arguments(FileopsArgs, request.arguments)
    paths = _path_list(args.file_path)
    logger.info("📄 gemini_fileops: %d file(s), operation=%s", len(paths), args.operation or "custom")

    infos = [classify(p) for p in paths]
    categories = [i.category for i in infos]
    mime_types = [i.mime_type for i in infos]
    task = TaskType.LARGE_CONTEXT if args.use_large_context_model else None
    large = [p for p in paths if is_large_file(p)]
    if large and task is None and not args.model_id:
        logger.info("   💡 Large input(s) %s; set use_large_context_model for the long-context model", ", ".join(large))
    model_id = select_model(
        ToolName.FILEOPS,
        args.model_id,
        task,
        categories,
        default_model=runtime.settings.default_model,
    )

    combine = (
        len(paths) > 1
        and all(c in TEXT_CATEGORIES for c in categories)
        and not any(is_remote(p) for p in paths)
        and all(Path(p).expanduser().is_file() for p in paths)
    )

    if combine:
        async with concatenate_files(paths) as combined:
            parts = await load_files([str(combined)])
        preamble = combined_file_preamble(paths)
    else:
        parts = await load_files(paths)
        preamble = ""

    if all(isinstance(p, ErrorPart) for p in parts):
        raise _missing_files_error(parts)

    intermediate = build_fileops_request(
        parts,
        instruction=args.instruction,
        operation=args.operation,
        categories=categories,
        mime_types=mime_types,
        preamble=preamble,
    )
    return await runtime.run(
        ToolName.FILEOPS,
        model_id,
        intermediate,
        requested_model=args.model_id,
        extra={"files": len(paths), "combined": combine},
    )


HANDLERS = {
    ToolName.SEARCH: handle_search,
    ToolName.REASON: handle_reason,
    ToolName.CODE: handle_code,
    ToolName.FILEOPS: handle_fileops,
}


async def handle_tool_request(request: ToolRequest, runtime: ToolRuntime) -> ToolResult:
    """Dispatch one tool call. Never raises."""
    start = time.time()
    try:
        result = await HANDLERS[request.tool](request, runtime)
    except GeminiToolError as e:
        logger.warning("   ❌ %s failed: %s", request.tool.value, e.message)
        return ToolResult.from_error(e)
    except Exception as e:
        logger.exception("%s failed: %s", request.tool.value, e)
        return ToolResult.from_error(classify_error(e, settings=runtime.settings))

    logger.info("   ✅ Completed in %.1fs", time.time() - start)
    return result
