"""
Model registry, fallback table and model selection.

The registry and fallback table are built at import time and never mutated.
Identifiers that appear in neither are mapped by a family-name heuristic
and logged as such.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType

from gemini_tools_mcp.config import (
    DEFAULT_CODE_MODEL,
    DEFAULT_FILEOPS_MODEL,
    DEFAULT_LARGE_CONTEXT_MODEL,
    DEFAULT_MODEL,
    DEFAULT_REASON_MODEL,
    DEFAULT_SEARCH_MODEL,
    LOGGER_NAME,
)
from gemini_tools_mcp.types import TaskType, ToolName

logger = logging.getLogger(LOGGER_NAME)


# =============================================================================
# Model Descriptors
# =============================================================================


class ModelTier(int, Enum):
    """Capability tiers, cheapest first."""

    LITE = 0
    FAST = 1
    ADVANCED = 2


class SearchTool(str, Enum):
    """Search grounding declaration shape a model accepts."""

    NONE = "none"
    GOOGLE_SEARCH = "google_search"
    GOOGLE_SEARCH_RETRIEVAL = "google_search_retrieval"


@dataclass(frozen=True, slots=True)
class ModelDescriptor:
    """Static capabilities of one upstream model."""

    model_id: str
    display_name: str
    context_window: int
    max_output_tokens: int
    tier: ModelTier
    search_tool: SearchTool = SearchTool.NONE
    supports_thinking: bool = False
    supports_multimodal: bool = True
    fast_response: bool = False
    supports_system_instruction: bool = True
    lighter_sibling: str | None = None
    use_cases: tuple[str, ...] = ()
    heuristic: bool = field(default=False, compare=False)

    @property
    def supports_search(self) -> bool:
        return self.search_tool is not SearchTool.NONE


_DESCRIPTORS = (
    ModelDescriptor(
        model_id="gemini-2.5-pro",
        display_name="Gemini 2.5 Pro",
        context_window=1_048_576,
        max_output_tokens=65_536,
        tier=ModelTier.ADVANCED,
        search_tool=SearchTool.GOOGLE_SEARCH,
        supports_thinking=True,
        lighter_sibling="gemini-2.5-flash",
        use_cases=("reasoning", "code analysis", "large documents"),
    ),
    ModelDescriptor(
        model_id="gemini-2.5-flash",
        display_name="Gemini 2.5 Flash",
        context_window=1_048_576,
        max_output_tokens=65_536,
        tier=ModelTier.FAST,
        search_tool=SearchTool.GOOGLE_SEARCH,
        supports_thinking=True,
        fast_response=True,
        lighter_sibling="gemini-2.5-flash-lite",
        use_cases=("grounded search", "image analysis", "general tasks"),
    ),
    ModelDescriptor(
        model_id="gemini-2.5-flash-lite",
        display_name="Gemini 2.5 Flash-Lite",
        context_window=1_048_576,
        max_output_tokens=65_536,
        tier=ModelTier.LITE,
        search_tool=SearchTool.GOOGLE_SEARCH,
        fast_response=True,
        use_cases=("file operations", "summarization", "extraction"),
    ),
    ModelDescriptor(
        model_id="gemini-2.0-flash",
        display_name="Gemini 2.0 Flash",
        context_window=1_048_576,
        max_output_tokens=8_192,
        tier=ModelTier.FAST,
        search_tool=SearchTool.GOOGLE_SEARCH,
        fast_response=True,
        lighter_sibling="gemini-2.0-flash-lite",
        use_cases=("grounded search", "general tasks"),
    ),
    ModelDescriptor(
        model_id="gemini-2.0-flash-lite",
        display_name="Gemini 2.0 Flash-Lite",
        context_window=1_048_576,
        max_output_tokens=8_192,
        tier=ModelTier.LITE,
        fast_response=True,
        use_cases=("file operations", "rapid answers"),
    ),
)

MODEL_REGISTRY: Mapping[str, ModelDescriptor] = MappingProxyType({d.model_id: d for d in _DESCRIPTORS})


# =============================================================================
# Fallback Table
# =============================================================================

# Requested identifier -> known-working substitute. No entry maps to itself.
FALLBACK_TABLE: Mapping[str, str] = MappingProxyType({
    "gemini-pro-latest": "gemini-2.5-pro",
    "gemini-flash-latest": "gemini-2.5-flash",
    "gemini-flash-lite-latest": "gemini-2.5-flash-lite",
    "gemini-2.5-pro-latest": "gemini-2.5-pro",
    "gemini-2.5-pro-exp-03-25": "gemini-2.5-pro",
    "gemini-2.5-pro-preview-03-25": "gemini-2.5-pro",
    "gemini-2.5-pro-preview-05-06": "gemini-2.5-pro",
    "gemini-2.5-pro-preview-06-05": "gemini-2.5-pro",
    "gemini-2.5-flash-latest": "gemini-2.5-flash",
    "gemini-2.5-flash-preview-04-17": "gemini-2.5-flash",
    "gemini-2.5-flash-preview-05-20": "gemini-2.5-flash",
    "gemini-2.5-flash-lite-preview-06-17": "gemini-2.5-flash-lite",
    "gemini-2.0-flash-001": "gemini-2.0-flash",
    "gemini-2.0-flash-exp": "gemini-2.0-flash",
    "gemini-2.0-flash-latest": "gemini-2.0-flash",
    "gemini-2.0-flash-lite-001": "gemini-2.0-flash-lite",
    "gemini-2.0-flash-lite-latest": "gemini-2.0-flash-lite",
    "gemini-2.0-flash-thinking-exp": "gemini-2.5-flash",
    "gemini-2.0-flash-thinking-exp-01-21": "gemini-2.5-flash",
    "gemini-2.0-pro-exp": "gemini-2.5-pro",
    "gemini-2.0-pro-exp-02-05": "gemini-2.5-pro",
    "gemini-1.5-pro": "gemini-2.5-pro",
    "gemini-1.5-pro-latest": "gemini-2.5-pro",
    "gemini-1.5-pro-002": "gemini-2.5-pro",
    "gemini-1.5-flash": "gemini-2.5-flash",
    "gemini-1.5-flash-latest": "gemini-2.5-flash",
    "gemini-1.5-flash-002": "gemini-2.5-flash",
    "gemini-1.5-flash-8b": "gemini-2.5-flash-lite",
})

UNSTABLE_MARKERS = ("preview", "exp", "latest")


def _heuristic_substitute(model_id: str) -> str:
    """Nearest stable sibling by family name. Best effort."""
    name = model_id.lower()
    if "flash-lite" in name or "flash-8b" in name:
        return "gemini-2.5-flash-lite"
    if "flash" in name:
        return "gemini-2.5-flash"
    if "pro" in name:
        return "gemini-2.5-pro"
    return DEFAULT_MODEL


def apply_fallback(model_id: str) -> str:
    """Pass an identifier through the fallback table and the unknown-id heuristic."""
    model_id = model_id.strip()
    if model_id in FALLBACK_TABLE:
        substitute = FALLBACK_TABLE[model_id]
        logger.info("Model %s mapped to %s", model_id, substitute)
        return substitute
    if model_id in MODEL_REGISTRY:
        return model_id
    if any(marker in model_id.lower() for marker in UNSTABLE_MARKERS):
        substitute = _heuristic_substitute(model_id)
        logger.warning("⚠️ Unknown unstable model %s heuristically mapped to %s", model_id, substitute)
        return substitute
    logger.warning("⚠️ Model %s is not in the registry, passing through unchanged", model_id)
    return model_id


def get_descriptor(model_id: str) -> ModelDescriptor:
    """Registry lookup. Unknown identifiers get a heuristic descriptor, flagged and logged."""
    descriptor = MODEL_REGISTRY.get(model_id)
    if descriptor is not None:
        return descriptor

    name = model_id.lower()
    if "pro" in name and "flash" not in name:
        template = MODEL_REGISTRY["gemini-2.5-pro"]
    elif "lite" in name:
        template = MODEL_REGISTRY["gemini-2.5-flash-lite"]
    else:
        template = MODEL_REGISTRY["gemini-2.5-flash"]

    logger.warning("⚠️ No descriptor for %s, assuming %s capabilities", model_id, template.model_id)
    return ModelDescriptor(
        model_id=model_id,
        display_name=model_id,
        context_window=template.context_window,
        max_output_tokens=template.max_output_tokens,
        tier=template.tier,
        search_tool=template.search_tool if "flash" in name or "pro" in name else SearchTool.NONE,
        supports_thinking=template.supports_thinking,
        fast_response=template.fast_response,
        supports_system_instruction="gemma" not in name,
        lighter_sibling=template.lighter_sibling if template.tier is ModelTier.ADVANCED else None,
        heuristic=True,
    )


def get_lighter_sibling(model_id: str) -> str | None:
    """Substitute used once when an advanced-tier model is rate limited."""
    descriptor = get_descriptor(model_id)
    if descriptor.tier is not ModelTier.ADVANCED:
        return None
    return descriptor.lighter_sibling


# =============================================================================
# Selection
# =============================================================================

TOOL_DEFAULTS: Mapping[ToolName, str] = MappingProxyType({
    ToolName.SEARCH: DEFAULT_SEARCH_MODEL,
    ToolName.REASON: DEFAULT_REASON_MODEL,
    ToolName.CODE: DEFAULT_CODE_MODEL,
    ToolName.FILEOPS: DEFAULT_FILEOPS_MODEL,
})

TASK_DEFAULTS: Mapping[TaskType, str] = MappingProxyType({
    TaskType.GENERAL_SEARCH: DEFAULT_SEARCH_MODEL,
    TaskType.RAPID_SEARCH: "gemini-2.5-flash-lite",
    TaskType.REASONING: DEFAULT_REASON_MODEL,
    TaskType.CODE: DEFAULT_CODE_MODEL,
    TaskType.FILE_ANALYSIS: DEFAULT_FILEOPS_MODEL,
    TaskType.LARGE_CONTEXT: DEFAULT_LARGE_CONTEXT_MODEL,
    TaskType.IMAGE_ANALYSIS: "gemini-2.5-flash",
})

# Least capable tier able to handle each file category
CATEGORY_TIERS: Mapping[str, ModelTier] = MappingProxyType({
    "code": ModelTier.ADVANCED,
    "image": ModelTier.FAST,
    "document": ModelTier.FAST,
    "spreadsheet": ModelTier.FAST,
    "presentation": ModelTier.FAST,
    "audio": ModelTier.FAST,
    "video": ModelTier.FAST,
    "text": ModelTier.LITE,
    "data": ModelTier.LITE,
})

TIER_MODELS: Mapping[ModelTier, str] = MappingProxyType({
    ModelTier.LITE: "gemini-2.5-flash-lite",
    ModelTier.FAST: "gemini-2.5-flash",
    ModelTier.ADVANCED: "gemini-2.5-pro",
})


def required_tier(categories: Iterable[str]) -> ModelTier | None:
    """Most capable tier demanded by any single file category."""
    tiers = [CATEGORY_TIERS.get(c, ModelTier.FAST) for c in categories]
    return max(tiers) if tiers else None


def _with_categories(model_id: str, categories: Iterable[str]) -> str:
    """Promote model_id when a file in the batch needs a higher tier."""
    tier = required_tier(categories)
    if tier is None:
        return model_id
    if get_descriptor(model_id).tier >= tier:
        return model_id
    return TIER_MODELS[tier]


def select_model(
    tool: ToolName | None = None,
    override: str | None = None,
    task: TaskType | None = None,
    file_categories: Iterable[str] = (),
    default_model: str = DEFAULT_MODEL,
) -> str:
    """Resolve the upstream model identifier for one request.

    Order: explicit override, the tool's fixed policy (fileops honors the
    large-context hint), then file categories, then the configured default.
    The result always passes through the fallback table.
    """
    categories = tuple(file_categories)

    if override and override.strip():
        return apply_fallback(override)

    if tool is ToolName.FILEOPS:
        if task is TaskType.LARGE_CONTEXT:
            model_id = DEFAULT_LARGE_CONTEXT_MODEL
        else:
            model_id = _with_categories(TOOL_DEFAULTS[tool], categories)
    elif tool is not None:
        model_id = TOOL_DEFAULTS[tool]
    elif task is not None:
        model_id = _with_categories(TASK_DEFAULTS[task], categories)
    elif categories:
        model_id = TIER_MODELS[required_tier(categories)]
    else:
        model_id = default_model

    return apply_fallback(model_id)
