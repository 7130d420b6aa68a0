"""
Style builder and colour palette for Excalidraw elements.

Provides a fluent API to compose the visual attribute block shared by all
Excalidraw elements, plus the named colour themes the generating model is
allowed to reference through the ``bg`` wire key.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from excalidraw_mcp.models import ElementKind


# ---------------------------------------------------------------------------
# Style builder
# ---------------------------------------------------------------------------

class StyleBuilder:
    """Fluent builder for the visual attribute dict of an Excalidraw element."""

    def __init__(self, base: Optional[dict[str, Any]] = None) -> None:
        self._parts: dict[str, Any] = {
            "strokeColor": "#1e1e1e",
            "backgroundColor": "transparent",
            "fillStyle": "solid",
            "strokeWidth": 2,
            "strokeStyle": "solid",
            "roughness": 1,
            "opacity": 100,
            "roundness": None,
        }
        if base:
            self._parts.update(base)

    # -- appearance --

    def stroke_color(self, color: str) -> StyleBuilder:
        self._parts["strokeColor"] = color
        return self

    def background_color(self, color: str) -> StyleBuilder:
        self._parts["backgroundColor"] = color
        return self

    def fill_style(self, style: str) -> StyleBuilder:
        self._parts["fillStyle"] = style
        return self

    def stroke_width(self, width: float) -> StyleBuilder:
        self._parts["strokeWidth"] = width
        return self

    def stroke_style(self, style: str) -> StyleBuilder:
        self._parts["strokeStyle"] = style
        return self

    def roughness(self, value: int) -> StyleBuilder:
        self._parts["roughness"] = value
        return self

    def opacity(self, value: int) -> StyleBuilder:
        self._parts["opacity"] = max(0, min(100, int(value)))
        return self

    def rounded(self, kind: Optional[int] = 3) -> StyleBuilder:
        """Set Excalidraw roundness (3 = adaptive radius, 2 = proportional, None = sharp)."""
        self._parts["roundness"] = {"type": kind} if kind is not None else None
        return self

    # -- theme --

    def theme(self, theme: ColorTheme) -> StyleBuilder:
        return theme.apply(self)

    # -- output --

    def build(self) -> dict[str, Any]:
        return dict(self._parts)


# ---------------------------------------------------------------------------
# Color themes
# ---------------------------------------------------------------------------

@dataclass
class ColorTheme:
    """A named colour palette for consistent diagram styling."""
    background: str
    stroke: str
    font: str

    def apply(self, builder: StyleBuilder) -> StyleBuilder:
        builder.background_color(self.background)
        builder.stroke_color(self.stroke)
        return builder


class Themes:
    """Palette accepted in the ``bg`` wire key, with matching strokes."""
    BLUE = ColorTheme(background="#dae8fc", stroke="#6c8ebf", font="#1e1e1e")
    GREEN = ColorTheme(background="#d5e8d4", stroke="#82b366", font="#1e1e1e")
    YELLOW = ColorTheme(background="#fff2cc", stroke="#d6b656", font="#1e1e1e")
    RED = ColorTheme(background="#f8cecc", stroke="#b85450", font="#1e1e1e")
    PURPLE = ColorTheme(background="#e1d5e7", stroke="#9673a6", font="#1e1e1e")
    ORANGE = ColorTheme(background="#ffe6cc", stroke="#d79b00", font="#1e1e1e")
    GRAY = ColorTheme(background="#f5f5f5", stroke="#666666", font="#333333")
    DEFAULT = ColorTheme(background="transparent", stroke="#1e1e1e", font="#1e1e1e")


def all_themes() -> dict[str, ColorTheme]:
    """Return every named theme keyed by its attribute name."""
    return {
        name: value
        for name, value in vars(Themes).items()
        if not name.startswith("_") and isinstance(value, ColorTheme)
    }


def theme_for_background(background: Optional[str]) -> ColorTheme:
    """Pick the theme for a ``bg`` value.

    A palette colour gets its matching stroke; any other colour keeps the
    default stroke with that colour as fill.
    """
    if not background:
        return Themes.DEFAULT
    wanted = background.strip().lower()
    for theme in all_themes().values():
        if theme.background.lower() == wanted:
            return theme
    return ColorTheme(background=background, stroke=Themes.DEFAULT.stroke, font=Themes.DEFAULT.font)


# ---------------------------------------------------------------------------
# Per-kind defaults
# ---------------------------------------------------------------------------

# Roundness type per shape kind (None = sharp corners).
_KIND_ROUNDNESS: dict[ElementKind, Optional[int]] = {
    ElementKind.RECTANGLE: 3,
    ElementKind.DIAMOND: 2,
    ElementKind.ELLIPSE: 2,
    ElementKind.ARROW: 2,
    ElementKind.LINE: 2,
    ElementKind.FRAME: None,
    ElementKind.TEXT: None,
}


def style_for(
    kind: ElementKind,
    background: Optional[str] = None,
    *,
    stroke_width: float = 2,
    roughness: int = 1,
    dashed: bool = False,
) -> dict[str, Any]:
    """Default visual attributes for one element kind."""
    builder = StyleBuilder().stroke_width(stroke_width).roughness(roughness)
    builder.stroke_style("dashed" if dashed else "solid")
    builder.rounded(_KIND_ROUNDNESS.get(kind))
    if kind is ElementKind.TEXT:
        builder.stroke_color(theme_for_background(background).font)
    elif kind in (ElementKind.ARROW, ElementKind.LINE):
        builder.stroke_color(theme_for_background(background).stroke)
    else:
        builder.theme(theme_for_background(background))
    return builder.build()
