from __future__ import annotations

import html
import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from mailtree.components.registry import ComponentRegistry, default_registry
from mailtree.config import settings as app_settings
from mailtree.renderer.wrapper import DEFAULT_BACKGROUND
from mailtree.schemas.email import GlobalSettings
from mailtree.tree.paths import ROOT_SEGMENT, child_path

logger = logging.getLogger(__name__)

Node = dict[str, Any]

_DOCTYPE = (
    '<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" '
    '"http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">'
)
_SCALING_CSS = "body{-webkit-text-size-adjust:100%;-ms-text-size-adjust:100%;min-width:{width}px !important;}"
_UNITLESS_STYLE_KEYS = {
    "fontWeight",
    "lineHeight",
    "opacity",
    "zIndex",
    "flex",
    "flexGrow",
    "flexShrink",
    "order",
    "zoom",
}
_PASSTHROUGH_ATTRS = {"href", "target", "src", "alt", "width", "height", "lang", "dir", "title", "rel"}
_HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_TABLE_ATTRS = {
    "border": "0",
    "cellpadding": "0",
    "cellspacing": "0",
    "role": "presentation",
    "width": "100%",
}
_CAMEL_BOUNDARY = re.compile(r"([A-Z])")
_VENDOR_PREFIX = re.compile(r"^(webkit|moz|ms|o)-")


@dataclass
class RenderResult:
    html: str
    warnings: list[str] = field(default_factory=list)
    plain_text: Optional[str] = None


def _css_property(key: str) -> str:
    prop = _CAMEL_BOUNDARY.sub(r"-\1", key).lower()
    if _VENDOR_PREFIX.match(prop):
        prop = f"-{prop}"
    return prop


def _css_value(key: str, value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        if value == 0 or key in _UNITLESS_STYLE_KEYS:
            return str(value)
        return f"{value}px"
    return str(value)


def style_to_css(style: Mapping[str, Any]) -> str:
    """Serialize a style mapping to an inline CSS declaration list (keys sorted)."""
    parts: list[str] = []
    for key in sorted(style):
        value = _css_value(key, style[key])
        if value is None or value == "":
            continue
        parts.append(f"{_css_property(str(key))}:{value}")
    return ";".join(parts)


def _attrs(attributes: Mapping[str, Any]) -> str:
    rendered: list[str] = []
    for name in sorted(attributes):
        value = attributes[name]
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        rendered.append(f'{name}="{html.escape(str(value), quote=True)}"')
    return (" " + " ".join(rendered)) if rendered else ""


class _Writer:
    def __init__(self, pretty: bool) -> None:
        self._pretty = pretty
        self._lines: list[tuple[int, str]] = []
        self._depth = 0

    def line(self, text: str) -> None:
        self._lines.append((self._depth, text))

    def open(self, text: str) -> None:
        self.line(text)
        self._depth += 1

    def close(self, text: str) -> None:
        self._depth -= 1
        self.line(text)

    def getvalue(self) -> str:
        if not self._pretty:
            return "".join(text for _, text in self._lines)
        return "\n".join(("  " * depth) + text for depth, text in self._lines) + "\n"


class _HtmlRenderer:
    def __init__(self, settings: GlobalSettings, registry: ComponentRegistry, pretty: bool) -> None:
        self.settings = settings
        self.registry = registry
        self.writer = _Writer(pretty)
        self.warnings: list[str] = []
        self._previews: list[tuple[Node, str]] = []
        self._active: set[int] = set()
        # id() of the caller's root when it was wrapped in a default document
        self.root_marker: Optional[int] = None
        self._handlers: dict[str, Callable[[Node, str], None]] = {
            "Html": self._render_html,
            "Head": self._render_head,
            "Body": self._render_body,
            "Container": self._render_container,
            "Section": self._render_section,
            "Row": self._render_row,
            "Column": self._render_column,
            "Text": self._render_text,
            "Heading": self._render_heading,
            "Button": self._render_button,
            "Link": self._render_link,
            "Img": self._render_img,
            "Hr": self._render_hr,
            "CodeBlock": self._render_code_block,
            "CodeInline": self._render_code_inline,
            "Font": self._render_font,
            "Markdown": self._render_markdown,
            "Preview": self._render_preview,
            "Tailwind": self._render_passthrough,
        }

    # -- helpers -----------------------------------------------------------------

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning("render.warning", extra={"warning": message})

    def _props(self, node: Node) -> Mapping[str, Any]:
        props = node.get("props")
        return props if isinstance(props, Mapping) else {}

    def _style(self, node: Node, base: Optional[Mapping[str, Any]] = None) -> str:
        merged: dict[str, Any] = dict(base or {})
        style = self._props(node).get("style")
        if isinstance(style, Mapping):
            merged.update(style)
        return style_to_css(merged)

    def _attributes(self, node: Node, *, base_style: Optional[Mapping[str, Any]] = None, **extra: Any) -> str:
        props = self._props(node)
        attributes: dict[str, Any] = {
            "data-component-id": node.get("id"),
            "data-component-type": node.get("component"),
        }
        for key, value in props.items():
            if not isinstance(value, (str, int, float, bool)):
                continue
            if key in _PASSTHROUGH_ATTRS or str(key).startswith("data-"):
                attributes[key] = value
            elif key == "className":
                attributes["class"] = value
        attributes.update(extra)
        attributes["style"] = self._style(node, base_style)
        return _attrs(attributes)

    def _text(self, node: Node) -> str:
        content = node.get("content")
        return html.escape(content, quote=False) if isinstance(content, str) else ""

    def _children_or_content(self, node: Node, path: str) -> None:
        content = node.get("content")
        if isinstance(content, str) and content:
            self.writer.line(html.escape(content, quote=False))
            return
        self.render_children(node, path)

    def render_children(self, node: Node, path: str) -> None:
        children = node.get("children")
        if not isinstance(children, list):
            return
        for idx, child in enumerate(children):
            self.render_node(child, child_path(path, idx))

    def _element(self, tag: str, node: Node, path: str, *, base_style=None, **extra: Any) -> None:
        self.writer.open(f"<{tag}{self._attributes(node, base_style=base_style, **extra)}>")
        self._children_or_content(node, path)
        self.writer.close(f"</{tag}>")

    def _inline(self, tag: str, node: Node, *, base_style=None, **extra: Any) -> None:
        self.writer.line(f"<{tag}{self._attributes(node, base_style=base_style, **extra)}>{self._text(node)}</{tag}>")

    # -- dispatch ------------------------------------------------------------------

    def render_node(self, node: Any, path: str) -> None:
        if not isinstance(node, dict):
            self.warn(f"{path}: skipped non-component child of type {type(node).__name__}")
            return
        marker = id(node)
        if marker == self.root_marker:
            path = ROOT_SEGMENT
        if marker in self._active:
            self.warn(f"{path}: skipped cyclic reference to an ancestor component")
            return
        self._active.add(marker)
        try:
            component = node.get("component")
            handler = self._handlers.get(component) if component in self.registry else None
            if handler is None:
                self._render_unknown(node, path)
            else:
                handler(node, path)
        finally:
            self._active.discard(marker)

    def _render_unknown(self, node: Node, path: str) -> None:
        component = node.get("component")
        self.warn(f"{path}: Unknown component type '{component}' rendered as placeholder")
        placeholder_style = {
            "border": "1px dashed #f87171",
            "color": "#b91c1c",
            "fontFamily": "monospace",
            "fontSize": "12px",
            "padding": "8px",
        }
        attributes = {
            "data-component-id": node.get("id"),
            "data-component-type": component,
            "style": style_to_css(placeholder_style),
        }
        self.writer.open(f"<div{_attrs(attributes)}>")
        self.writer.line(html.escape(f"Unsupported component: {component}", quote=False))
        self.render_children(node, path)
        self.writer.close("</div>")

    # -- document structure ---------------------------------------------------

    def _render_html(self, node: Node, path: str) -> None:
        props = self._props(node)
        children = node.get("children") if isinstance(node.get("children"), list) else []
        # Preview lines declared in Head are emitted at the top of Body.
        for idx, child in enumerate(children):
            if isinstance(child, dict) and child.get("component") == "Head":
                head_path = child_path(path, idx)
                for p_idx, head_child in enumerate(child.get("children") or []):
                    if isinstance(head_child, dict) and head_child.get("component") == "Preview":
                        self._previews.append((head_child, child_path(head_path, p_idx)))

        self.writer.line(_DOCTYPE)
        attributes = {
            "lang": props.get("lang") or app_settings.RENDER_DEFAULT_LANG,
            "dir": props.get("dir") or "ltr",
            "data-component-id": node.get("id"),
            "data-component-type": "Html",
        }
        self.writer.open(f"<html{_attrs(attributes)}>")
        has_head = any(isinstance(c, dict) and c.get("component") == "Head" for c in children)
        if not has_head:
            self._write_head_open()
            self.writer.close("</head>")
        self.render_children(node, path)
        self.writer.close("</html>")

    def _write_head_open(self, node: Optional[Node] = None) -> None:
        attributes = {}
        if node is not None:
            attributes = {"data-component-id": node.get("id"), "data-component-type": "Head"}
        self.writer.open(f"<head{_attrs(attributes)}>")
        self.writer.line('<meta content="text/html; charset=UTF-8" http-equiv="Content-Type"/>')
        self.writer.line('<meta name="x-apple-disable-message-reformatting"/>')
        width = app_settings.RENDER_VIEWPORT_WIDTH
        self.writer.line(f'<meta name="viewport" content="width={width}"/>')
        self.writer.line(f'<style type="text/css">{_SCALING_CSS.replace("{width}", str(width))}</style>')

    def _render_head(self, node: Node, path: str) -> None:
        self._write_head_open(node)
        for idx, child in enumerate(node.get("children") or []):
            if isinstance(child, dict) and child.get("component") == "Preview":
                continue
            self.render_node(child, child_path(path, idx))
        self.writer.close("</head>")

    def _render_body(self, node: Node, path: str) -> None:
        base = {
            "backgroundColor": self.settings.backgroundColor or DEFAULT_BACKGROUND,
            "fontFamily": self.settings.fontFamily,
        }
        self.writer.open(f"<body{self._attributes(node, base_style=base)}>")
        previews, self._previews = self._previews, []
        for preview, preview_path in previews:
            self.render_node(preview, preview_path)
        self._children_or_content(node, path)
        self.writer.close("</body>")

    # -- layout (tables for email-client compatibility) ---------------------

    def _open_table(self, node: Node, base_style: Mapping[str, Any], **extra: Any) -> None:
        self.writer.open(f"<table{self._attributes(node, base_style=base_style, **_TABLE_ATTRS, **extra)}>")

    def _render_container(self, node: Node, path: str) -> None:
        self._open_table(node, {"maxWidth": self.settings.maxWidth}, align="center")
        self.writer.open("<tbody>")
        self.writer.open('<tr style="width:100%">')
        self.writer.open("<td>")
        self._children_or_content(node, path)
        self.writer.close("</td>")
        self.writer.close("</tr>")
        self.writer.close("</tbody>")
        self.writer.close("</table>")

    def _render_section(self, node: Node, path: str) -> None:
        self._open_table(node, {}, align="center")
        self.writer.open("<tbody>")
        self.writer.open("<tr>")
        self.writer.open("<td>")
        self._children_or_content(node, path)
        self.writer.close("</td>")
        self.writer.close("</tr>")
        self.writer.close("</tbody>")
        self.writer.close("</table>")

    def _render_row(self, node: Node, path: str) -> None:
        self._open_table(node, {}, align="center")
        self.writer.open('<tbody style="width:100%">')
        self.writer.open('<tr style="width:100%">')
        self._children_or_content(node, path)
        self.writer.close("</tr>")
        self.writer.close("</tbody>")
        self.writer.close("</table>")

    def _render_column(self, node: Node, path: str) -> None:
        self._element("td", node, path)

    # -- content ------------------------------------------------------------------

    def _render_text(self, node: Node, path: str) -> None:
        base = {"fontSize": "14px", "lineHeight": "24px", "margin": "16px 0"}
        if node.get("children") and not node.get("content"):
            self._element("p", node, path, base_style=base)
        else:
            self._inline("p", node, base_style=base)

    def _render_heading(self, node: Node, path: str) -> None:
        tag = str(self._props(node).get("as") or "h1").lower()
        if tag not in _HEADING_TAGS:
            self.warn(f"{path}: Heading 'as' must be one of h1-h6, got '{tag}'; using h1")
            tag = "h1"
        self._inline(tag, node)

    def _render_button(self, node: Node, path: str) -> None:
        base = {
            "backgroundColor": self.settings.primaryColor,
            "color": "#ffffff",
            "display": "inline-block",
            "lineHeight": "100%",
            "maxWidth": "100%",
            "textDecoration": "none",
        }
        self.writer.open(f"<a{self._attributes(node, base_style=base)}>")
        content = node.get("content")
        if isinstance(content, str) and content:
            self.writer.line(f"<span>{self._text(node)}</span>")
        else:
            self.render_children(node, path)
        self.writer.close("</a>")

    def _render_link(self, node: Node, path: str) -> None:
        base = {"color": self.settings.primaryColor, "textDecorationLine": "none"}
        if node.get("children") and not node.get("content"):
            self._element("a", node, path, base_style=base)
        else:
            self._inline("a", node, base_style=base)

    def _render_img(self, node: Node, path: str) -> None:
        base = {"border": "none", "display": "block", "outline": "none", "textDecoration": "none"}
        self.writer.line(f"<img{self._attributes(node, base_style=base)}/>")

    def _render_hr(self, node: Node, path: str) -> None:
        rule_color = self.settings.secondaryColor or "#eaeaea"
        base = {"border": "none", "borderTop": f"1px solid {rule_color}", "width": "100%"}
        self.writer.line(f"<hr{self._attributes(node, base_style=base)}/>")

    def _render_code_block(self, node: Node, path: str) -> None:
        props = self._props(node)
        code = props.get("code")
        if not isinstance(code, str):
            code = node.get("content") if isinstance(node.get("content"), str) else ""
        base = {"backgroundColor": "#f6f8fa", "overflowX": "auto", "padding": "16px"}
        language = props.get("language")
        extra = {"data-language": language} if isinstance(language, str) else {}
        self.writer.line(
            f"<pre{self._attributes(node, base_style=base, **extra)}><code>{html.escape(code, quote=False)}</code></pre>"
        )

    def _render_code_inline(self, node: Node, path: str) -> None:
        self._inline("code", node, base_style={"fontFamily": "monospace"})

    def _render_font(self, node: Node, path: str) -> None:
        props = self._props(node)
        family = str(props.get("fontFamily") or "")
        fallback = props.get("fallbackFontFamily")
        families = [f"'{family}'"] if family else []
        if isinstance(fallback, str) and fallback:
            families.append(fallback)
        elif isinstance(fallback, list):
            families.extend(str(item) for item in fallback)
        declarations = [f"font-family:{', '.join(families)}"] if families else []
        if props.get("fontWeight") is not None:
            declarations.append(f"font-weight:{props['fontWeight']}")
        if props.get("fontStyle"):
            declarations.append(f"font-style:{props['fontStyle']}")
        self.writer.line(f'<style type="text/css">*{{{html.escape(";".join(declarations), quote=False)}}}</style>')
        self.render_children(node, path)

    def _render_markdown(self, node: Node, path: str) -> None:
        content = node.get("content")
        if not isinstance(content, str) or not content:
            self._element("div", node, path)
            return
        self.writer.open(f"<div{self._attributes(node)}>")
        for paragraph in re.split(r"\n\s*\n", content.strip()):
            self.writer.line(f"<p>{html.escape(paragraph.strip(), quote=False)}</p>")
        self.writer.close("</div>")

    def _render_preview(self, node: Node, path: str) -> None:
        base = {
            "display": "none",
            "lineHeight": "1px",
            "maxHeight": 0,
            "maxWidth": 0,
            "opacity": 0,
            "overflow": "hidden",
        }
        self.writer.line(
            f"<div{self._attributes(node, base_style=base, **{'data-skip-in-text': 'true'})}>{self._text(node)}</div>"
        )

    def _render_passthrough(self, node: Node, path: str) -> None:
        self.render_children(node, path)


def _wrap_document(root: Node) -> Node:
    return {
        "id": "__document",
        "component": "Html",
        "props": {"lang": app_settings.RENDER_DEFAULT_LANG},
        "children": [
            {"id": "__head", "component": "Head", "props": {}},
            {
                "id": "__body",
                "component": "Body",
                "props": {"style": {"margin": 0, "padding": 0}},
                "children": [root],
            },
        ],
    }


def _plain_text(root: Any) -> str:
    blocks: list[str] = []

    def _visit(node: Any, active: set[int]) -> None:
        if not isinstance(node, dict) or id(node) in active:
            return
        component = node.get("component")
        if component == "Preview":
            return
        props = node.get("props") if isinstance(node.get("props"), Mapping) else {}
        content = node.get("content")
        if isinstance(content, str) and content.strip():
            text = content.strip()
            href = props.get("href")
            if component in ("Button", "Link") and isinstance(href, str) and href:
                text = f"{text} ({href})"
            blocks.append(text)
        elif component == "CodeBlock" and isinstance(props.get("code"), str):
            blocks.append(props["code"])
        elif component == "Img" and isinstance(props.get("alt"), str) and props["alt"].strip():
            blocks.append(f"[{props['alt'].strip()}]")
        children = node.get("children")
        if isinstance(children, list) and not (isinstance(content, str) and content):
            for child in children:
                _visit(child, active | {id(node)})

    _visit(root, set())
    return "\n\n".join(blocks)


def render(
    root: Node,
    settings: GlobalSettings,
    *,
    pretty: bool = False,
    plain_text: bool = False,
    registry: Optional[ComponentRegistry] = None,
) -> RenderResult:
    """
    Render a component tree to email HTML.

    Output is a pure function of (root, settings): no timestamps, ids or
    dict-order dependence, so identical inputs give byte-identical markup.
    Unknown component types degrade to a visible placeholder plus a warning.
    """
    renderer = _HtmlRenderer(settings, registry or default_registry(), pretty)
    if isinstance(root, dict) and root.get("component") == "Html":
        document = root
    else:
        document = _wrap_document(root)
        renderer.root_marker = id(root)
    renderer.render_node(document, ROOT_SEGMENT)
    markup = renderer.writer.getvalue()
    logger.debug(
        "render.complete",
        extra={"root_id": root.get("id") if isinstance(root, dict) else None, "warnings": len(renderer.warnings)},
    )
    return RenderResult(
        html=markup,
        warnings=list(renderer.warnings),
        plain_text=_plain_text(root) if plain_text else None,
    )
