"""Unit tests for the google-genai adapter (both directions)."""

import base64
from types import SimpleNamespace

from google.genai import types

from gemini_tools_mcp.builder import build_reason_request, build_search_request
from gemini_tools_mcp.models import MODEL_REGISTRY, ModelDescriptor, ModelTier
from gemini_tools_mcp.provider import (
    MAX_SCAN_BREADTH,
    VISION_LEAD_IN,
    from_provider_response,
    merge_generation_config,
    scan_texts,
    to_provider_payload,
)
from gemini_tools_mcp.types import (
    BlockedResponse,
    FileUriPart,
    GroundedResponse,
    InlineDataPart,
    IntermediateRequest,
    Message,
    TextPart,
    TextResponse,
    ToolName,
    VisionResponse,
)

FLASH = MODEL_REGISTRY["gemini-2.5-flash"]
FLASH_LITE_20 = MODEL_REGISTRY["gemini-2.0-flash-lite"]
NO_SYSTEM = ModelDescriptor(
    model_id="gemma-3-27b-it",
    display_name="Gemma",
    context_window=128_000,
    max_output_tokens=8_192,
    tier=ModelTier.FAST,
    supports_system_instruction=False,
)


def _user(text: str) -> Message:
    return Message(role="user", parts=(TextPart(text=text),))


def _raw(*texts: str, **candidate_fields) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": t} for t in texts]}, **candidate_fields}]}


# =============================================================================
# Request Leg
# =============================================================================


class TestToProviderPayload:
    """Test payload construction."""

    def test_search_tool_attached_for_capable_model(self):
        """Search requests on search-capable models get google_search."""
        payload = to_provider_payload(build_search_request("q"), FLASH)
        assert payload.model == "gemini-2.5-flash"
        assert payload.config.tools is not None
        assert payload.config.tools[0].google_search is not None

    def test_search_tool_skipped_for_ineligible_model(self):
        """Models without search support get no tool declaration."""
        payload = to_provider_payload(build_search_request("q"), FLASH_LITE_20)
        assert not payload.config.tools

    def test_no_search_tool_for_other_tools(self):
        """Non-search requests never get the search tool."""
        payload = to_provider_payload(build_reason_request("p"), FLASH)
        assert not payload.config.tools

    def test_system_instruction_field(self):
        """Capable models carry the system prompt in system_instruction."""
        payload = to_provider_payload(build_search_request("q"), FLASH)
        assert payload.config.system_instruction
        assert [p.text for p in payload.contents[0].parts] == ["q"]

    def test_system_instruction_inlined_when_unsupported(self):
        """Models without a system channel get it as the leading user text."""
        request = IntermediateRequest(messages=(_user("question"),), system_instruction="Rules.")
        payload = to_provider_payload(request, NO_SYSTEM)
        assert payload.config.system_instruction is None
        assert [p.text for p in payload.contents[0].parts] == ["Rules.", "question"]

    def test_parts_translated(self):
        """Inline data is decoded to bytes; file URIs become file_data."""
        message = Message(role="user", parts=(
            InlineDataPart(mime_type="image/png", data=base64.b64encode(b"img").decode()),
            FileUriPart(mime_type="application/pdf", uri="gs://b/doc.pdf"),
            TextPart(text="describe"),
        ))
        payload = to_provider_payload(IntermediateRequest(messages=(message,)), FLASH)
        parts = payload.contents[0].parts
        assert parts[0].inline_data.data == b"img"
        assert parts[0].inline_data.mime_type == "image/png"
        assert parts[1].file_data.file_uri == "gs://b/doc.pdf"
        assert parts[2].text == "describe"
        assert payload.contents[0].role == "user"


class TestGenerationMerge:
    """Test generation parameter precedence."""

    def test_direct_fields_win(self):
        """Direct fields override nested config; nested-only keys survive."""
        request = IntermediateRequest(
            messages=(_user("x"),),
            temperature=0.2,
            generation_config={"temperature": 0.9, "topP": 0.5, "maxOutputTokens": 100},
        )
        merged = merge_generation_config(request)
        assert merged == {"temperature": 0.2, "top_p": 0.5, "max_output_tokens": 100}

    def test_unknown_keys_ignored(self):
        """Unsupported nested keys are dropped with a warning."""
        request = IntermediateRequest(messages=(_user("x"),), generation_config={"bogus": 1, "seed": 7})
        assert merge_generation_config(request) == {"seed": 7}

    def test_config_receives_params(self):
        """Merged parameters reach GenerateContentConfig."""
        payload = to_provider_payload(build_reason_request("p"), FLASH)
        assert payload.config.temperature == 0.2
        assert payload.config.top_p == 0.95
        assert payload.config.top_k == 40
        assert payload.config.max_output_tokens == 8192


# =============================================================================
# Response Leg
# =============================================================================


class TestFromProviderResponse:
    """Test response normalization."""

    def test_sdk_response_text_accessor(self):
        """A real GenerateContentResponse is read through .text."""
        raw = types.GenerateContentResponse(
            candidates=[types.Candidate(content=types.Content(role="model", parts=[types.Part(text="hi there")]))]
        )
        response = from_provider_response(raw)
        assert isinstance(response, TextResponse)
        assert response.text == "hi there"

    def test_structural_parts(self):
        """Mappings are read from candidates[0].content.parts."""
        response = from_provider_response(_raw("first", "second"))
        assert response.texts == ("first", "second")

    def test_thought_parts_skipped(self):
        """Thought summaries are not part of the answer."""
        raw = {"candidates": [{"content": {"parts": [{"text": "thinking...", "thought": True}, {"text": "answer"}]}}]}
        assert from_provider_response(raw).texts == ("answer",)

    def test_fallback_scan(self):
        """Unknown shapes are scanned for long 'text' fields."""
        raw = {"output": {"message": {"text": "recovered from a new shape"}}, "meta": {"text": "short"}}
        assert from_provider_response(raw).texts == ("recovered from a new shape",)

    def test_empty_response(self):
        """No text anywhere gives an empty TextResponse."""
        response = from_provider_response({"candidates": []})
        assert isinstance(response, TextResponse)
        assert response.texts == ()

    def test_grounding_metadata(self):
        """Grounding chunks and queries become sources."""
        raw = _raw("Answer", grounding_metadata={
            "web_search_queries": ["python 3.13"],
            "grounding_chunks": [{"web": {"uri": "https://python.org", "title": "Python"}}],
        })
        response = from_provider_response(raw)
        assert isinstance(response, GroundedResponse)
        assert response.sources[0].uri == "https://python.org"
        assert response.queries == ("python 3.13",)

    def test_grounding_metadata_camel_case_on_part(self):
        """Grounding metadata attached to the first part is also found."""
        raw = {"candidates": [{"content": {"parts": [{
            "text": "Answer",
            "groundingMetadata": {"groundingChunks": [{"web": {"uri": "https://a.b", "title": "A"}}]},
        }]}}]}
        assert isinstance(from_provider_response(raw), GroundedResponse)

    def test_sdk_objects_via_attributes(self):
        """Attribute-style objects work like mappings."""
        web = SimpleNamespace(uri="https://x.y", title="X")
        candidate = SimpleNamespace(
            content=SimpleNamespace(parts=[SimpleNamespace(text="Grounded answer", thought=None)]),
            grounding_metadata=SimpleNamespace(web_search_queries=None, grounding_chunks=[SimpleNamespace(web=web)]),
            finish_reason="STOP",
        )
        raw = SimpleNamespace(candidates=[candidate], prompt_feedback=None)
        response = from_provider_response(raw)
        assert isinstance(response, GroundedResponse)
        assert response.text == "Grounded answer"

    def test_vision_json_only(self):
        """Detections without description get a synthesized lead-in."""
        response = from_provider_response(_raw('[{"box_2d": [10, 20, 300, 400], "label": "cat"}]'))
        assert isinstance(response, VisionResponse)
        assert response.texts == (VISION_LEAD_IN,)
        assert response.boxes[0].label == "cat"
        assert response.boxes[0].box == (10.0, 20.0, 300.0, 400.0)

    def test_vision_with_description(self):
        """Descriptive text next to a fenced detection list is kept."""
        text = (
            "The photo shows a cat sitting on a sofa next to a lamp.\n"
            '```json\n[{"box_2d": [1, 2, 3, 4], "label": "cat"}]\n```'
        )
        response = from_provider_response(_raw(text))
        assert isinstance(response, VisionResponse)
        assert response.text == "The photo shows a cat sitting on a sofa next to a lamp."

    def test_explicit_bounding_boxes(self):
        """A bounding_boxes field on the content is recognized."""
        raw = {"candidates": [{"content": {
            "parts": [],
            "boundingBoxes": [{"label": "dog", "box_2d": [0, 0, 5, 5]}],
        }}]}
        response = from_provider_response(raw)
        assert isinstance(response, VisionResponse)
        assert response.texts == (VISION_LEAD_IN,)

    def test_plain_json_list_is_text(self):
        """JSON lists without boxes stay plain text."""
        response = from_provider_response(_raw('[{"name": "a"}]'))
        assert isinstance(response, TextResponse)

    def test_prompt_blocked(self):
        """A prompt block reason yields BlockedResponse."""
        raw = {"candidates": [], "prompt_feedback": {"block_reason": "SAFETY"}}
        response = from_provider_response(raw)
        assert isinstance(response, BlockedResponse)
        assert response.reason == "SAFETY"

    def test_safety_finish_without_text(self):
        """A SAFETY finish with no text is blocked."""
        response = from_provider_response({"candidates": [{"finish_reason": "SAFETY"}]})
        assert isinstance(response, BlockedResponse)

    def test_safety_finish_with_text(self):
        """A SAFETY finish after partial text keeps the text."""
        response = from_provider_response(_raw("partial answer", finish_reason="SAFETY"))
        assert isinstance(response, TextResponse)


class TestScanTexts:
    """Test the bounded fallback scan."""

    def test_depth_bound(self):
        """Matches deeper than the bound are not reached."""
        shallow = {"a": {"b": {"c": {"text": "reachable text value"}}}}
        deep = {"a": {"b": {"c": {"d": {"text": "unreachable text value"}}}}}
        assert scan_texts(shallow) == ["reachable text value"]
        assert scan_texts(deep) == []

    def test_breadth_bound(self):
        """Only a bounded number of children per container is visited."""
        raw = {"items": [{"text": f"fragment number {i:03d}"} for i in range(200)]}
        assert len(scan_texts(raw)) == MAX_SCAN_BREADTH

    def test_cycle_terminates(self):
        """Self-referencing structures terminate."""
        node: dict = {"text": "a long enough text"}
        node["self"] = node
        assert scan_texts(node)[0] == "a long enough text"

    def test_order_preserved(self):
        """Matches come back in document order."""
        raw = {"x": {"text": "first long text"}, "y": {"text": "second long text"}}
        assert scan_texts(raw) == ["first long text", "second long text"]


class TestRoundTrip:
    """Request transform then response transform preserves text."""

    def test_text_identity(self):
        """A text-only request echoed back yields the same text."""
        original = "What is the capital of France?"
        request = build_reason_request(original, show_steps=False)
        payload = to_provider_payload(request, FLASH)
        sent = payload.contents[0].parts[0].text
        raw = _raw(sent)
        assert from_provider_response(raw).text == original
