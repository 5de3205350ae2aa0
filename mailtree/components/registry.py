from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from types import MappingProxyType
from typing import Iterable, Mapping, Optional


@dataclass(frozen=True)
class ComponentSpec:
    name: str
    required_props: frozenset[str] = frozenset()
    optional_props: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    style_props: tuple[str, ...] = ()
    container: bool = False
    editable: bool = False
    examples: tuple[str, ...] = ()

    @property
    def allowed_props(self) -> frozenset[str]:
        # Every component accepts a style mapping plus the pass-through attributes used by the editor.
        return self.required_props | frozenset(self.optional_props) | {"style", "className", "id"}


class ComponentRegistry:
    """Read-only catalogue of component types, consulted by the validator and the renderer."""

    def __init__(self, specs: Iterable[ComponentSpec]) -> None:
        by_name: dict[str, ComponentSpec] = {}
        for spec in specs:
            if spec.name in by_name:
                raise ValueError(f"Duplicate component spec: {spec.name}")
            by_name[spec.name] = spec
        self._specs: Mapping[str, ComponentSpec] = MappingProxyType(by_name)
        self._editable = frozenset(name for name, spec in by_name.items() if spec.editable)
        self._containers = frozenset(name for name, spec in by_name.items() if spec.container)

    def __contains__(self, component: object) -> bool:
        return isinstance(component, str) and component in self._specs

    def __iter__(self):
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._specs)

    @property
    def editable_components(self) -> frozenset[str]:
        return self._editable

    @property
    def container_components(self) -> frozenset[str]:
        return self._containers

    def get(self, component: str) -> Optional[ComponentSpec]:
        return self._specs.get(component)

    def require(self, component: str) -> ComponentSpec:
        spec = self._specs.get(component)
        if spec is None:
            allowed = ", ".join(sorted(self._specs))
            raise KeyError(f"Unknown component type '{component}'. Allowed: {allowed}")
        return spec

    def is_editable(self, component: str) -> bool:
        return component in self._editable

    def can_have_children(self, component: str) -> bool:
        return component in self._containers

    def style_props(self, component: str) -> tuple[str, ...]:
        spec = self._specs.get(component)
        return spec.style_props if spec else ()


_TEXT_STYLE_PROPS = (
    "color",
    "fontSize",
    "fontWeight",
    "lineHeight",
    "fontFamily",
    "textAlign",
    "margin",
    "padding",
)


def _spec(
    name: str,
    *,
    required: Iterable[str] = (),
    optional: Optional[dict[str, str]] = None,
    style: Iterable[str] = (),
    container: bool = False,
    editable: bool = False,
    examples: Iterable[str] = (),
) -> ComponentSpec:
    return ComponentSpec(
        name=name,
        required_props=frozenset(required),
        optional_props=MappingProxyType(dict(optional or {})),
        style_props=tuple(style),
        container=container,
        editable=editable,
        examples=tuple(examples),
    )


_DEFAULT_SPECS: tuple[ComponentSpec, ...] = (
    # Layout
    _spec(
        "Html",
        optional={"lang": 'Language code (e.g., "en")', "dir": "Text direction: ltr or rtl"},
        container=True,
        examples=('<Html lang="en"><Head /><Body>...</Body></Html>',),
    ),
    _spec("Head", container=True, examples=("<Head />",)),
    _spec(
        "Body",
        optional={"style": "CSS properties object"},
        style=("backgroundColor", "fontFamily", "margin", "padding"),
        container=True,
        editable=True,
    ),
    _spec(
        "Container",
        optional={"style": "CSS properties object"},
        style=("backgroundColor", "padding", "maxWidth", "margin", "borderRadius"),
        container=True,
        editable=True,
    ),
    _spec(
        "Section",
        optional={"style": "CSS properties object"},
        style=("backgroundColor", "padding", "margin", "borderRadius"),
        container=True,
        editable=True,
    ),
    _spec("Row", optional={"style": "CSS properties object"}, style=("padding", "margin"), container=True),
    _spec(
        "Column",
        optional={"style": "CSS properties object"},
        style=("padding", "margin", "verticalAlign", "width"),
        container=True,
    ),
    # Content
    _spec(
        "Text",
        optional={"style": "CSS properties object"},
        style=_TEXT_STYLE_PROPS,
        editable=True,
        examples=('<Text style={{ color: "#374151", fontSize: "16px" }}>Your content here</Text>',),
    ),
    _spec(
        "Heading",
        optional={"as": "h1, h2, h3, h4, h5, or h6", "style": "CSS properties object"},
        style=_TEXT_STYLE_PROPS,
        editable=True,
        examples=('<Heading as="h1" style={{ color: "#111827", fontSize: "32px" }}>Title</Heading>',),
    ),
    _spec(
        "Button",
        required=("href",),
        optional={"style": "CSS properties object", "target": "Link target (_blank, _self, etc.)"},
        style=(
            "backgroundColor",
            "color",
            "padding",
            "borderRadius",
            "fontSize",
            "fontWeight",
            "textAlign",
            "textDecoration",
            "border",
        ),
        container=True,
        editable=True,
    ),
    _spec(
        "Link",
        required=("href",),
        optional={"style": "CSS properties object", "target": "Link target (_blank, _self, etc.)"},
        style=("color", "textDecoration", "fontSize", "fontWeight"),
        container=True,
        editable=True,
    ),
    _spec(
        "Img",
        required=("src", "alt"),
        optional={
            "width": "Image width (number)",
            "height": "Image height (number)",
            "style": "CSS properties object",
        },
        style=("borderRadius", "display", "margin", "maxWidth"),
        editable=True,
    ),
    _spec(
        "Hr",
        optional={"style": "CSS properties object"},
        style=("borderColor", "borderWidth", "margin", "borderStyle"),
    ),
    # Advanced
    _spec(
        "CodeBlock",
        required=("code",),
        optional={
            "language": "Programming language (js, ts, python, etc.)",
            "theme": "Syntax highlighting theme",
            "style": "CSS properties object",
        },
        style=("backgroundColor", "padding", "borderRadius", "fontSize"),
        editable=True,
    ),
    _spec(
        "CodeInline",
        optional={"style": "CSS properties object"},
        style=("backgroundColor", "color", "padding", "borderRadius", "fontSize", "fontFamily"),
        editable=True,
    ),
    _spec(
        "Font",
        required=("fontFamily",),
        optional={
            "fallbackFontFamily": "Fallback font",
            "webFont": "Web font configuration",
            "fontWeight": "Font weight",
            "fontStyle": "Font style (normal, italic)",
        },
        container=True,
    ),
    _spec(
        "Markdown",
        optional={
            "markdownCustomStyles": "Custom styles for markdown elements",
            "markdownContainerStyles": "Container styles",
        },
        container=True,
        editable=True,
    ),
    _spec("Preview", editable=True, examples=("<Preview>This text appears in the email preview</Preview>",)),
    _spec("Tailwind", optional={"config": "Tailwind configuration object"}, container=True),
)


@lru_cache(maxsize=1)
def default_registry() -> ComponentRegistry:
    return ComponentRegistry(_DEFAULT_SPECS)
