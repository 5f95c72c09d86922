"""
Configuration management for Gemini Tools MCP Server.

All configuration is loaded from environment variables with sensible defaults.
Values are read once at startup via load_settings().
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

LOGGER_NAME = "gemini-tools-mcp"


# =============================================================================
# Model Configuration
# =============================================================================

# Nominal default model per tool
DEFAULT_SEARCH_MODEL = "gemini-2.5-flash"
DEFAULT_REASON_MODEL = "gemini-2.5-pro"
DEFAULT_CODE_MODEL = "gemini-2.5-pro"
DEFAULT_FILEOPS_MODEL = "gemini-2.5-flash-lite"
DEFAULT_LARGE_CONTEXT_MODEL = "gemini-2.5-pro"

# Used for generic requests when nothing more specific applies
DEFAULT_MODEL = "gemini-2.5-flash"


# =============================================================================
# Generation Parameters
# =============================================================================


@dataclass(frozen=True, slots=True)
class GenerationParams:
    """Sampling parameters sent with every request."""

    temperature: float
    top_p: float
    top_k: int
    max_output_tokens: int | None = None

    def to_dict(self) -> dict[str, float | int]:
        """Convert to a snake_case generation config mapping."""
        data: dict[str, float | int] = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
        }
        if self.max_output_tokens is not None:
            data["max_output_tokens"] = self.max_output_tokens
        return data


SEARCH_PARAMS = GenerationParams(temperature=0.7, top_p=0.8, top_k=40)
REASON_PARAMS = GenerationParams(temperature=0.2, top_p=0.95, top_k=40, max_output_tokens=8192)
CODE_PARAMS = GenerationParams(temperature=0.2, top_p=0.95, top_k=40, max_output_tokens=8192)
FILEOPS_PARAMS = GenerationParams(temperature=0.3, top_p=0.8, top_k=40)
ANALYSIS_PARAMS = GenerationParams(temperature=0.4, top_p=0.9, top_k=40)


# =============================================================================
# Rate Limits
# =============================================================================

BASE_DELAY = 1.0  # seconds
MAX_DELAY = 60.0  # seconds
FREE_TIER_RPM = 15


# =============================================================================
# System Prompts
# =============================================================================

SEARCH_SYSTEM_PROMPT = """**Role:** You are an Information Synthesizer. Your task is to answer \
the user's query using up-to-date information from Google Search.

**Key Guidelines:**
1. YOU MUST ALWAYS USE Google Search before answering, even for questions you think you know.
2. Base your answer on the search results and say so when results are thin or conflicting.
3. Lead with the direct answer, then add supporting detail.
4. Mention the sources you relied on.
5. Keep the answer focused on what was asked."""

CODE_SYSTEM_PROMPT = """**Role:** You are a Code Analyzer. You answer questions about a \
software repository based *exclusively* on the provided codebase XML.

**Key Guidelines:**
1. Use only the supplied codebase context. Do not rely on outside knowledge of the project.
2. Reference concrete file paths and symbols when explaining behavior.
3. If the context does not contain the answer, say that plainly instead of guessing.
4. Use fenced code blocks for any code you quote or propose."""

FILEOPS_SYSTEM_PROMPT = """**Role:** You are a Content Executor. You carry out the requested \
operation on the supplied file content.

**Key Guidelines:**
1. Follow the instruction exactly and work only from the provided content.
2. Preserve names, numbers and quotations accurately.
3. Structure longer output with headings and bullet points.
4. If part of the content could not be read, say which part."""

REASON_STEPS_PREFIX = "Please reason through this step-by-step with detailed explanations:\n\n"

CODE_QUESTION_TEMPLATE = (
    "Based *only* on the following XML codebase context, answer this question: {question}"
    "\n\n--- Codebase Context (XML) ---\n\n{codebase}"
)


# =============================================================================
# Repository Packer
# =============================================================================

DEFAULT_REPOMIX_COMMAND = "npx repomix"
PACKER_TIMEOUT = 300.0  # seconds


# =============================================================================
# Getters
# =============================================================================


def get_api_key() -> str:
    """Get Gemini API key from environment."""
    api_key = os.environ.get("GEMINI_API_KEY")
    if not api_key:
        raise ValueError("GEMINI_API_KEY environment variable is required")
    return api_key


def is_paid_tier() -> bool:
    """Whether the API key belongs to a paid tier project."""
    return os.environ.get("GEMINI_PAID_TIER", "").strip().lower() == "true"


def get_default_model() -> str:
    """Get default model name with env override support."""
    return (
        os.environ.get("GEMINI_DEFAULT_MODEL")
        or os.environ.get("DEFAULT_MODEL_ID")
        or DEFAULT_MODEL
    )


def get_log_level() -> int:
    """Get logging level from GEMINI_LOG_LEVEL (defaults to INFO)."""
    name = os.environ.get("GEMINI_LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_repomix_command() -> str:
    """Get the command used to pack repositories."""
    return os.environ.get("GEMINI_REPOMIX_COMMAND", DEFAULT_REPOMIX_COMMAND)


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide configuration, read once at startup."""

    api_key: str
    paid_tier: bool = False
    default_model: str = DEFAULT_MODEL
    repomix_command: str = DEFAULT_REPOMIX_COMMAND

    def retry_after_seconds(self) -> float:
        """Suggested wait before retrying after a rate limit."""
        if self.paid_tier:
            return BASE_DELAY
        return min(60.0 / FREE_TIER_RPM, MAX_DELAY)


def load_settings() -> Settings:
    """Build Settings from the environment. Raises ValueError without an API key."""
    return Settings(
        api_key=get_api_key(),
        paid_tier=is_paid_tier(),
        default_model=get_default_model(),
        repomix_command=get_repomix_command(),
    )
