"""
AI refinement of a single component.

The refiner turns a node snapshot plus a free-text request into a `Patch`. It
never touches the tree: the caller applies the patch against whatever state is
current once the (slow) provider call returns.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from typing import Any, Dict, Optional, Protocol

import anthropic
import httpx
import openai
from pydantic import ValidationError

from mailtree.config import settings
from mailtree.errors import AdapterFailure
from mailtree.llm.client import LLMClient, LLMClientConfigError, LLMGenerationParams
from mailtree.schemas.email import ComponentRefinementResponse, Patch, RefinementContext

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTIONS = """You are a precise email component editor. Follow the rules exactly and return only the changes needed.

CRITICAL RULES:
1. All colors MUST be hex codes (#ffffff, #000000), never color names
2. Use camelCase property names (backgroundColor, fontSize, fontWeight)
3. For style changes, include the complete style object with updates merged
4. Only return props/content that actually change
5. Preserve existing props unless explicitly changing them"""

COMPONENT_EDIT_PATTERNS: dict[str, str] = {
    "Button": """Common Button edits:
- Change color: Update style.color or style.backgroundColor
- Change text: Update content field
- Change link: Update href prop
- Make larger: Increase style.padding and style.fontSize
- Change shape: Update style.borderRadius""",
    "Text": """Common Text edits:
- Change color: Update style.color
- Change size: Update style.fontSize
- Make bold: Set style.fontWeight to 600 or 700
- Change alignment: Update style.textAlign
- Add spacing: Update style.margin or style.padding""",
    "Heading": """Common Heading edits:
- Change color: Update style.color
- Change size: Update style.fontSize or change 'as' prop (h1, h2, h3)
- Make bold: Set style.fontWeight to 600 or 700
- Change alignment: Update style.textAlign""",
    "Section": """Common Section edits:
- Change background: Update style.backgroundColor
- Add padding: Update style.padding
- Center content: Set style.textAlign to "center\"""",
    "Img": """Common Image edits:
- Change source: Update src prop
- Resize: Update width and height props
- Round corners: Update style.borderRadius
- Change alt text: Update alt prop""",
}

_STYLE_KEYWORDS = ("color", "size", "bold", "align", "font", "padding", "margin", "background")
_NEARBY_MAX_CHARS = 100
_NEARBY_MAX_ITEMS = 2

COLOR_NAMES: dict[str, str] = {
    "white": "#ffffff",
    "black": "#000000",
    "light green": "#90ee90",
    "dark green": "#006400",
    "green": "#00ff00",
    "blue": "#0000ff",
    "light blue": "#add8e6",
    "red": "#ff0000",
    "yellow": "#ffff00",
    "orange": "#ffa500",
    "purple": "#800080",
    "pink": "#ffc0cb",
    "gray": "#808080",
    "grey": "#808080",
}

_RETRYABLE_ERRORS = (
    httpx.TransportError,
    openai.APIConnectionError,
    openai.RateLimitError,
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    ConnectionError,
)


class Refiner(Protocol):
    async def refine(
        self,
        node: Mapping[str, Any],
        prompt: str,
        context: Optional[RefinementContext] = None,
    ) -> Patch: ...


def _extract_first_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the first top-level JSON object in `text`.

    Providers occasionally wrap the object in prose or code fences even when
    JSON output is requested; anything outside the outermost braces is ignored.
    """

    if not isinstance(text, str):
        raise ValueError("Input text must be a string")
    raw = text.strip()
    if not raw:
        raise ValueError("Input text is empty")

    start: int | None = None
    depth = 0
    in_string = False
    escape = False

    for i, ch in enumerate(raw):
        if start is None:
            if ch == "{":
                start = i
                depth = 1
            continue

        if in_string:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                parsed = json.loads(raw[start : i + 1])
                if not isinstance(parsed, dict):
                    raise ValueError("Extracted JSON was not an object")
                return parsed

    raise ValueError("Unable to locate a complete JSON object in response text")


def _is_color_key(key: str) -> bool:
    return "color" in key.lower()


def _normalize_color(value: Any) -> Any:
    if isinstance(value, str) and not value.startswith("#"):
        return COLOR_NAMES.get(value.strip().lower(), value)
    return value


def normalize_colors(props: Mapping[str, Any]) -> dict[str, Any]:
    """Map plain color names ("light blue") on color-ish keys to hex codes."""
    normalized: dict[str, Any] = {}
    for key, value in props.items():
        if key == "style" and isinstance(value, Mapping):
            normalized[key] = {
                style_key: _normalize_color(style_value) if _is_color_key(style_key) else style_value
                for style_key, style_value in value.items()
            }
        elif _is_color_key(key):
            normalized[key] = _normalize_color(value)
        else:
            normalized[key] = value
    return normalized


def _essential_props(component: str, props: Mapping[str, Any], prompt: str) -> dict[str, Any]:
    essential: dict[str, Any] = {}
    if component == "Heading" and props.get("as"):
        essential["as"] = props["as"]
    if component in ("Button", "Link") and props.get("href"):
        essential["href"] = props["href"]
    if component == "Img":
        for key in ("src", "alt", "width", "height"):
            if props.get(key):
                essential[key] = props[key]
    lowered = prompt.lower()
    if props.get("style") and any(keyword in lowered for keyword in _STYLE_KEYWORDS):
        essential["style"] = props["style"]
    return essential


def _context_section(context: RefinementContext) -> str:
    lines = ["", "", "EMAIL CONTEXT (use for vague requests, respect explicit user instructions):"]
    if context.componentPosition:
        lines.append(f"Component position: {context.componentPosition}")
    if context.emailSubject:
        lines.append(f'Subject: "{context.emailSubject}"')
    if context.emailPreviewText:
        lines.append(f'Preview: "{context.emailPreviewText}"')
    if context.originalPrompt:
        lines.append(f'Purpose: "{context.originalPrompt}"')
    nearby = [text for text in context.siblingContents if text and len(text) < _NEARBY_MAX_CHARS]
    if nearby:
        lines.append("Nearby: " + ", ".join(f'"{text}"' for text in nearby[:_NEARBY_MAX_ITEMS]))
    lines.append(
        """
INSTRUCTIONS FOR CONTENT CHANGES:
1. VAGUE REQUESTS ("update this", "improve", "make it better", "and this text?"):
   generate content relevant to the email subject and purpose, keeping this
   component's own position in the email (a second heading is not the hero heading).
2. EXPLICIT CONTENT ("change to 'Welcome Back'", "say 50% Off"):
   use the user's exact words.

Do NOT use generic placeholders like "New Text Here" or echo the user's question back."""
    )
    return "\n".join(lines)


def build_refinement_prompt(
    node: Mapping[str, Any],
    prompt: str,
    context: Optional[RefinementContext] = None,
) -> str:
    component = str(node.get("component") or "")
    props = node.get("props") if isinstance(node.get("props"), Mapping) else {}
    content = node.get("content")
    essential = _essential_props(component, props, prompt)

    state_lines = [f"Component type: {component}"]
    if isinstance(content, str) and content:
        state_lines.append(f'Current content: "{content}"')
    if essential:
        state_lines.append(f"Current props: {json.dumps(essential, indent=2, sort_keys=True)}")

    text = f"""{SYSTEM_INSTRUCTIONS}

You are editing a {component} component in an email.

CURRENT STATE:
{chr(10).join(state_lines)}

RULES:
1. Return ONLY the props/content that need to CHANGE
2. All colors must be hex codes (#ffffff, #000000)
3. For style changes, include the complete style object with updates merged
4. If only changing text content, just return {{"content": "new text"}}

USER REQUEST: "{prompt}"

Return a JSON object with only what needs to change:
{{"content": "updated content", "props": {{}}}}"""

    if context is not None:
        text += _context_section(context)
    pattern = COMPONENT_EDIT_PATTERNS.get(component)
    if pattern:
        text += f"\n\n{pattern}"
    return text


def parse_refinement_reply(text: str) -> Patch:
    """Turn raw provider output into a Patch, or raise AdapterFailure."""
    try:
        payload = _extract_first_json_object(text)
        response = ComponentRefinementResponse.model_validate(payload)
        patch = response.to_patch()
    except (ValueError, ValidationError) as exc:
        head = text[:200].replace("\n", "\\n") if isinstance(text, str) else ""
        logger.warning("refine.unparseable_reply", extra={"error": str(exc), "text_head": head})
        raise AdapterFailure(f"Failed to parse AI refinement response: {exc}") from exc
    if patch.props:
        patch = Patch(props=normalize_colors(patch.props), content=patch.content)
    return patch


class ComponentRefiner:
    """Provider-backed refiner; the blocking LLM call runs in a worker thread."""

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        *,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.client = client or LLMClient()
        self.model = model or settings.AI_PROVIDER_MODEL
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.AI_REFINE_TIMEOUT_SECONDS

    def _params(self) -> LLMGenerationParams:
        return LLMGenerationParams(
            model=self.model,
            max_tokens=settings.AI_REFINE_MAX_TOKENS,
            temperature=settings.AI_REFINE_TEMPERATURE,
            response_format={"type": "json_object"},
        )

    async def refine(
        self,
        node: Mapping[str, Any],
        prompt: str,
        context: Optional[RefinementContext] = None,
    ) -> Patch:
        if not isinstance(prompt, str) or not prompt.strip():
            raise AdapterFailure("Refinement prompt must be a non-empty string")

        full_prompt = build_refinement_prompt(node, prompt, context)
        log_extra = {"component": node.get("component"), "node_id": node.get("id"), "model": self.model}
        logger.info("refine.start", extra=log_extra)
        try:
            reply = await asyncio.wait_for(
                asyncio.to_thread(self.client.generate_text, full_prompt, self._params()),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("refine.timeout", extra={**log_extra, "timeout_seconds": self.timeout_seconds})
            raise AdapterFailure(
                f"AI refinement timed out after {self.timeout_seconds}s", retryable=True
            ) from exc
        except LLMClientConfigError as exc:
            raise AdapterFailure(str(exc)) from exc
        except _RETRYABLE_ERRORS as exc:
            logger.exception("refine.transport_failed", extra=log_extra)
            raise AdapterFailure(f"AI provider unreachable: {exc}", retryable=True) from exc
        except Exception as exc:  # noqa: BLE001
            logger.exception("refine.provider_failed", extra=log_extra)
            raise AdapterFailure(f"AI provider error: {exc}") from exc

        patch = parse_refinement_reply(reply)
        logger.info("refine.complete", extra={**log_extra, "empty": patch.is_empty})
        return patch
