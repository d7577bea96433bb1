"""Pydantic models describing what the agent can observe on a page.

A snapshot is a single read of one node's geometry, computed style,
naming and text.  The classifier and complexity estimator work only
on snapshots, which keeps them pure and testable without a browser.
"""

from __future__ import annotations

import pydantic


class Rect(pydantic.BaseModel):
    """Bounding box in CSS pixels, relative to the viewport."""

    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def top(self) -> float:
        return self.y

    @property
    def left(self) -> float:
        return self.x

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def area(self) -> float:
        return self.width * self.height


class ComputedStyle(pydantic.BaseModel):
    """The subset of computed style the classifier reads."""

    display: str = "block"
    visibility: str = "visible"
    opacity: float = 1.0
    position: str = "static"
    z_index: int = 0


class Viewport(pydantic.BaseModel):
    """Size of the visible page area."""

    width: float = 1280.0
    height: float = 720.0


class ElementSnapshot(pydantic.BaseModel):
    """One read of a node's observable state."""

    tag: str = "div"
    element_id: str = ""
    class_name: str = ""
    role: str = ""
    aria_label: str = ""
    title: str = ""
    text: str = ""
    input_type: str = ""
    href: str | None = None
    attribute_names: list[str] = pydantic.Field(default_factory=list)
    rect: Rect = pydantic.Field(default_factory=Rect)
    style: ComputedStyle = pydantic.Field(default_factory=ComputedStyle)
    # class + id of up to three ancestors, nearest first
    ancestor_names: list[str] = pydantic.Field(default_factory=list)
    descendant_count: int = 0
    max_depth: int = 0
    iframe_count: int = 0
    in_form: bool = False
    checked: bool | None = None
    disabled: bool = False

    @property
    def naming(self) -> str:
        """Lower-cased class and id, used for fingerprint matching."""
        return f"{self.class_name} {self.element_id}".lower().strip()

    @property
    def label(self) -> str:
        """Visible text, aria-label and title joined and lower-cased."""
        return " ".join(p for p in (self.text.strip(), self.aria_label, self.title) if p).lower()

    @property
    def is_rendered(self) -> bool:
        """Non-zero size and not hidden by display, visibility or opacity."""
        return (
            self.style.display != "none"
            and self.style.visibility != "hidden"
            and self.style.opacity > 0
            and self.rect.width > 0
            and self.rect.height > 0
        )


class PageContext(pydantic.BaseModel):
    """Page-wide counts used by the complexity estimator."""

    hostname: str = ""
    element_count: int = 0
    iframe_count: int = 0
    dynamic_marker_count: int = 0
    language: str | None = None
    viewport: Viewport = pydantic.Field(default_factory=Viewport)
