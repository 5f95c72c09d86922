"""
Translation between IntermediateRequest and the google-genai SDK.

Request leg: to_provider_payload() builds Content/Part objects and a
GenerateContentConfig, gated by the model's registry capabilities.

Response leg: from_provider_response() accepts a GenerateContentResponse
or any equivalent mapping/attribute tree and returns one of the
InternalResponse variants.
"""

from __future__ import annotations

import base64
import json
import logging
import re
from collections.abc import Mapping
from typing import Any

from google.genai import types

from gemini_tools_mcp.config import LOGGER_NAME
from gemini_tools_mcp.models import ModelDescriptor, SearchTool
from gemini_tools_mcp.types import (
    BlockedResponse,
    BoundingBox,
    ErrorPart,
    FileUriPart,
    GroundedResponse,
    InlineDataPart,
    IntermediateRequest,
    InternalResponse,
    Part,
    ProviderPayload,
    Source,
    TextPart,
    TextResponse,
    ToolName,
    VisionResponse,
)

logger = logging.getLogger(LOGGER_NAME)

# GenerateContentConfig fields accepted from a nested generation config
GENERATION_FIELDS = frozenset({
    "temperature",
    "top_p",
    "top_k",
    "max_output_tokens",
    "candidate_count",
    "stop_sequences",
    "presence_penalty",
    "frequency_penalty",
    "seed",
    "response_mime_type",
})

BLOCKING_FINISH_REASONS = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "IMAGE_SAFETY"})

MAX_SCAN_DEPTH = 3
MAX_SCAN_BREADTH = 64
MIN_SCANNED_TEXT = 10

# Free text shorter than this next to detections gets a synthesized lead-in
MIN_DESCRIPTIVE_TEXT = 20
VISION_LEAD_IN = "The image analysis detected the following objects:"


# =============================================================================
# Request Leg
# =============================================================================


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def merge_generation_config(request: IntermediateRequest) -> dict[str, Any]:
    """Nested generation_config first, then direct fields on top."""
    merged: dict[str, Any] = {}
    for key, value in (request.generation_config or {}).items():
        name = _snake_case(key)
        if name not in GENERATION_FIELDS:
            logger.warning("Ignoring unsupported generation setting: %s", key)
            continue
        if value is not None:
            merged[name] = value

    direct = {
        "temperature": request.temperature,
        "top_p": request.top_p,
        "top_k": request.top_k,
        "max_output_tokens": request.max_output_tokens,
    }
    merged.update({k: v for k, v in direct.items() if v is not None})
    return merged


def to_sdk_part(part: Part) -> types.Part:
    if isinstance(part, (TextPart, ErrorPart)):
        return types.Part(text=part.text)
    if isinstance(part, InlineDataPart):
        return types.Part(inline_data=types.Blob(mime_type=part.mime_type, data=base64.b64decode(part.data)))
    if isinstance(part, FileUriPart):
        return types.Part(file_data=types.FileData(file_uri=part.uri, mime_type=part.mime_type))
    raise TypeError(f"Unsupported content part: {type(part).__name__}")


def _search_tools(request: IntermediateRequest, descriptor: ModelDescriptor) -> list[types.Tool] | None:
    if request.tool is not ToolName.SEARCH or not request.search_grounding:
        return None
    if descriptor.search_tool is SearchTool.GOOGLE_SEARCH:
        return [types.Tool(google_search=types.GoogleSearch())]
    if descriptor.search_tool is SearchTool.GOOGLE_SEARCH_RETRIEVAL:
        return [types.Tool(google_search_retrieval=types.GoogleSearchRetrieval())]
    logger.warning("⚠️ %s does not support search grounding, sending without it", descriptor.model_id)
    return None


def to_provider_payload(request: IntermediateRequest, descriptor: ModelDescriptor) -> ProviderPayload:
    """Build generate_content() arguments for one model."""
    contents = [
        types.Content(role="user", parts=[to_sdk_part(p) for p in message.parts])
        for message in request.messages
    ]

    system_instruction = request.system_instruction
    if system_instruction and not descriptor.supports_system_instruction:
        # Carried as the leading user text instead
        contents[0] = types.Content(
            role="user",
            parts=[types.Part(text=system_instruction), *(contents[0].parts or [])],
        )
        system_instruction = None

    config = types.GenerateContentConfig(
        system_instruction=system_instruction or None,
        tools=_search_tools(request, descriptor),
        **merge_generation_config(request),
    )
    return ProviderPayload(model=descriptor.model_id, contents=contents, config=config)


# =============================================================================
# Response Leg
# =============================================================================


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(word.title() for word in rest)


def _field(obj: Any, name: str) -> Any:
    """Read a snake_case field from a mapping or object, accepting camelCase too."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        value = obj.get(name)
        return value if value is not None else obj.get(_camel_case(name))
    value = getattr(obj, name, None)
    return value if value is not None else getattr(obj, _camel_case(name), None)


def _first(items: Any) -> Any:
    if isinstance(items, (list, tuple)) and items:
        return items[0]
    return None


def _enum_name(value: Any) -> str | None:
    if value is None:
        return None
    return getattr(value, "name", None) or str(value).rsplit(".", 1)[-1]


def _accessor_text(raw: Any) -> list[str]:
    if isinstance(raw, Mapping):
        return []
    try:
        text = getattr(raw, "text", None)
        if callable(text):
            text = text()
    except (AttributeError, TypeError, ValueError) as e:
        logger.debug("Response text accessor failed: %s", e)
        return []
    return [text] if isinstance(text, str) and text.strip() else []


def _structural_texts(raw: Any) -> list[str]:
    content = _field(_first(_field(raw, "candidates")), "content")
    texts = []
    for part in _field(content, "parts") or []:
        if _field(part, "thought"):
            continue
        text = _field(part, "text")
        if isinstance(text, str) and text.strip():
            texts.append(text)
    return texts


def _as_tree(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True)
    if isinstance(value, (Mapping, list, tuple, str)):
        return value
    if hasattr(value, "__dict__"):
        return vars(value)
    return value


def scan_texts(raw: Any, max_depth: int = MAX_SCAN_DEPTH, max_breadth: int = MAX_SCAN_BREADTH) -> list[str]:
    """Collect every string field named "text" longer than 10 characters.

    Bounded in depth and in children visited per container, so cyclic or
    very large objects terminate.
    """
    matches: list[str] = []
    stack: list[tuple[Any, int]] = [(_as_tree(raw), 0)]
    while stack:
        node, depth = stack.pop()
        if isinstance(node, Mapping):
            children = list(node.items())[:max_breadth]
        elif isinstance(node, (list, tuple)):
            children = [(None, item) for item in node[:max_breadth]]
        else:
            continue
        pending = []
        for key, child in children:
            if key == "text" and isinstance(child, str):
                if len(child) > MIN_SCANNED_TEXT:
                    matches.append(child)
            elif depth < max_depth:
                pending.append((_as_tree(child), depth + 1))
        stack.extend(reversed(pending))
    return matches


def _extract_sources(candidate: Any) -> tuple[list[Source], list[str]]:
    """Extract sources and queries from grounding metadata."""
    sources: list[Source] = []
    queries: list[str] = []

    gm = _field(candidate, "grounding_metadata")
    if gm is None:
        gm = _field(_first(_field(_field(candidate, "content"), "parts")), "grounding_metadata")
    if gm is None:
        return sources, queries

    queries = [q for q in _field(gm, "web_search_queries") or [] if q]

    for chunk in _field(gm, "grounding_chunks") or []:
        web = _field(chunk, "web")
        if web:
            sources.append(Source(uri=_field(web, "uri") or "", title=_field(web, "title") or ""))

    return sources, queries


_JSON_BLOCK = re.compile(r"```(?:json)?\s*(\[.*?\])\s*```", re.DOTALL)


def _box_from(item: Any) -> BoundingBox | None:
    box = _field(item, "box_2d") or _field(item, "box")
    if not isinstance(box, (list, tuple)) or len(box) != 4:
        return None
    label = _field(item, "label") or _field(item, "name") or "object"
    return BoundingBox(label=str(label), box=tuple(float(v) for v in box))


def _boxes_from_text(text: str) -> tuple[list[BoundingBox], str]:
    """Detections serialized as a JSON list in the answer text, and the remaining text."""
    match = _JSON_BLOCK.search(text)
    candidate = match.group(1) if match else text.strip()
    if not candidate.startswith("["):
        return [], text
    try:
        items = json.loads(candidate)
    except ValueError:
        return [], text
    if not isinstance(items, list):
        return [], text
    boxes = [b for b in (_box_from(i) for i in items if isinstance(i, Mapping)) if b]
    if not boxes:
        return [], text
    remainder = text.replace(match.group(0), "") if match else ""
    return boxes, remainder.strip()


def _extract_boxes(candidate: Any, texts: list[str]) -> tuple[list[BoundingBox], list[str]]:
    content = _field(candidate, "content")
    explicit = _field(content, "bounding_boxes") or _field(candidate, "bounding_boxes")
    if explicit:
        boxes = [b for b in (_box_from(i) for i in explicit) if b]
        return boxes, texts

    joined = "\n".join(texts)
    boxes, remainder = _boxes_from_text(joined)
    if not boxes:
        return [], texts
    return boxes, [remainder] if remainder else []


def _block_reason(raw: Any, candidate: Any, has_text: bool) -> str | None:
    reason = _enum_name(_field(_field(raw, "prompt_feedback"), "block_reason"))
    if reason and reason != "BLOCKED_REASON_UNSPECIFIED":
        return reason
    finish = _enum_name(_field(candidate, "finish_reason"))
    if not has_text and finish in BLOCKING_FINISH_REASONS:
        return finish
    return None


def from_provider_response(raw: Any) -> InternalResponse:
    """Normalize a raw SDK response into an InternalResponse variant."""
    candidate = _first(_field(raw, "candidates"))

    texts = _accessor_text(raw) or _structural_texts(raw)
    if not texts:
        texts = scan_texts(raw)
        if texts:
            logger.warning("Response text recovered by fallback scan (%d fragments)", len(texts))

    reason = _block_reason(raw, candidate, bool(texts))
    if reason:
        return BlockedResponse(texts=tuple(texts), reason=reason)

    boxes, texts = _extract_boxes(candidate, texts)
    if boxes:
        if len("".join(texts).strip()) < MIN_DESCRIPTIVE_TEXT:
            texts = [VISION_LEAD_IN]
        return VisionResponse(texts=tuple(texts), boxes=tuple(boxes))

    sources, queries = _extract_sources(candidate)
    if sources or queries:
        return GroundedResponse(texts=tuple(texts), sources=tuple(sources), queries=tuple(queries))

    return TextResponse(texts=tuple(texts))
