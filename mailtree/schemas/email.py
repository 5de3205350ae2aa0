from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GlobalSettings(BaseModel):
    """Render-time brand settings supplied alongside the component tree."""

    model_config = ConfigDict(frozen=True)

    fontFamily: str = "system-ui, -apple-system, sans-serif"
    primaryColor: str = "#7c3aed"
    secondaryColor: Optional[str] = None
    maxWidth: str = "600px"
    backgroundColor: Optional[str] = None


class Patch(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    props: Optional[dict[str, Any]] = None
    content: Optional[str] = None

    @field_validator("props")
    @classmethod
    def validate_style(cls, value: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
        if value is not None and "style" in value and not isinstance(value["style"], dict):
            raise ValueError("props.style must be an object")
        return value

    @property
    def is_empty(self) -> bool:
        return not self.props and self.content is None


class ComponentRefinementResponse(BaseModel):
    props: Optional[dict[str, Any]] = None
    content: Optional[str] = None
    explanation: Optional[str] = None

    def to_patch(self) -> Patch:
        return Patch(props=self.props, content=self.content)


class RefinementContext(BaseModel):
    emailSubject: Optional[str] = None
    emailPreviewText: Optional[str] = None
    campaignName: Optional[str] = None
    originalPrompt: Optional[str] = None
    componentPath: Optional[str] = None
    componentPosition: Optional[str] = None
    siblingContents: list[str] = Field(default_factory=list)
    globalSettings: Optional[GlobalSettings] = None
