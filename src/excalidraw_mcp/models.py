"""
Semantic element model for streamed Excalidraw diagrams.

A semantic element describes a diagram node or edge by structure only
(type, id, label, relationships).  Geometry is optional on input and is
filled in by the layout engine.  The compact wire format produced by the
generating model is decoded and encoded here.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class WireFormatError(ValueError):
    """Raised when a wire object cannot be decoded into an element."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ElementKind(Enum):
    FRAME = "frame"
    RECTANGLE = "rectangle"
    DIAMOND = "diamond"
    ELLIPSE = "ellipse"
    LINE = "line"
    ARROW = "arrow"
    TEXT = "text"


# Compact and long type codes accepted on the wire.
TYPE_CODES: dict[str, ElementKind] = {
    "r": ElementKind.RECTANGLE,
    "d": ElementKind.DIAMOND,
    "el": ElementKind.ELLIPSE,
    "ln": ElementKind.LINE,
    "a": ElementKind.ARROW,
    "tx": ElementKind.TEXT,
    "fr": ElementKind.FRAME,
    "f": ElementKind.FRAME,
    "rectangle": ElementKind.RECTANGLE,
    "diamond": ElementKind.DIAMOND,
    "ellipse": ElementKind.ELLIPSE,
    "line": ElementKind.LINE,
    "arrow": ElementKind.ARROW,
    "text": ElementKind.TEXT,
    "frame": ElementKind.FRAME,
}

# Short code written back by to_wire().
_KIND_TO_CODE: dict[ElementKind, str] = {
    ElementKind.RECTANGLE: "r",
    ElementKind.DIAMOND: "d",
    ElementKind.ELLIPSE: "el",
    ElementKind.LINE: "ln",
    ElementKind.ARROW: "a",
    ElementKind.TEXT: "tx",
    ElementKind.FRAME: "fr",
}


def kind_from_code(code: Any) -> ElementKind:
    """Map a wire type code to an ElementKind (unknown codes → RECTANGLE)."""
    if isinstance(code, str):
        kind = TYPE_CODES.get(code.strip().lower())
        if kind is not None:
            return kind
    return ElementKind.RECTANGLE


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class Geometry:
    """Absolute top-left position and size.  Any field may still be unknown."""
    x: Optional[float] = None
    y: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.x is not None and self.y is not None

    @property
    def has_size(self) -> bool:
        return bool(self.width) and bool(self.height)

    @property
    def is_complete(self) -> bool:
        return self.has_position and self.has_size

    def to_bounds(self, default_width: float = 120, default_height: float = 60) -> Bounds:
        return Bounds(
            self.x or 0,
            self.y or 0,
            self.width or default_width,
            self.height or default_height,
        )


@dataclass
class ElementStyle:
    """Optional visual hints carried on the wire."""
    background: Optional[str] = None
    group_id: Optional[str] = None


@dataclass
class SemanticElement:
    """A diagram node, frame or connector described by structure only."""
    id: str
    kind: ElementKind = ElementKind.RECTANGLE
    label: str = ""
    children: list[str] = field(default_factory=list)
    source_id: Optional[str] = None
    end_id: Optional[str] = None
    style: ElementStyle = field(default_factory=ElementStyle)
    geometry: Geometry = field(default_factory=Geometry)

    @property
    def is_frame(self) -> bool:
        return self.kind is ElementKind.FRAME

    @property
    def is_connector(self) -> bool:
        return self.kind is ElementKind.ARROW

    @property
    def bounds(self) -> Bounds:
        return self.geometry.to_bounds()

    def move_by(self, dx: float, dy: float) -> None:
        self.geometry.x = (self.geometry.x or 0) + dx
        self.geometry.y = (self.geometry.y or 0) + dy

    # ----- wire codec -----

    @classmethod
    def from_wire(cls, obj: Any) -> SemanticElement:
        """Decode one compact wire object.

        Raises:
            WireFormatError: if *obj* is not an object or has no usable id.
        """
        if not isinstance(obj, dict):
            raise WireFormatError(f"element must be an object, got {type(obj).__name__}")
        element_id = obj.get("i")
        if isinstance(element_id, (int, float)) and not isinstance(element_id, bool):
            element_id = str(element_id)
        if not isinstance(element_id, str) or not element_id.strip():
            raise WireFormatError("element is missing its 'i' (id) field")

        kind = kind_from_code(obj.get("t"))
        label = obj.get("l")
        children: list[str] = []
        source_id = end_id = None
        if kind is ElementKind.FRAME:
            raw_children = obj.get("ch")
            if isinstance(raw_children, list):
                children = [str(c) for c in raw_children if isinstance(c, (str, int))]
        if kind is ElementKind.ARROW:
            source_id = _optional_ref(obj.get("si"))
            end_id = _optional_ref(obj.get("ei"))

        return cls(
            id=element_id,
            kind=kind,
            label=label if isinstance(label, str) else ("" if label is None else str(label)),
            children=children,
            source_id=source_id,
            end_id=end_id,
            style=ElementStyle(
                background=obj.get("bg") if isinstance(obj.get("bg"), str) else None,
                group_id=_optional_ref(obj.get("g")),
            ),
            geometry=Geometry(
                x=_finite(obj.get("x")),
                y=_finite(obj.get("y")),
                width=_positive(obj.get("w")),
                height=_positive(obj.get("h")),
            ),
        )

    def to_wire(self) -> dict[str, Any]:
        """Encode back to the compact wire format (geometry included if set)."""
        obj: dict[str, Any] = {"t": _KIND_TO_CODE[self.kind], "i": self.id}
        if self.label:
            obj["l"] = self.label
        if self.children:
            obj["ch"] = list(self.children)
        if self.source_id is not None:
            obj["si"] = self.source_id
        if self.end_id is not None:
            obj["ei"] = self.end_id
        if self.style.background:
            obj["bg"] = self.style.background
        if self.style.group_id:
            obj["g"] = self.style.group_id
        for key, value in (
            ("x", self.geometry.x),
            ("y", self.geometry.y),
            ("w", self.geometry.width),
            ("h", self.geometry.height),
        ):
            if value is not None:
                obj[key] = value
        return obj


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def _positive(value: Any) -> Optional[float]:
    """A usable dimension, or None so the size gets re-estimated."""
    number = _finite(value)
    if number is None or number <= 0:
        return None
    return number


def _optional_ref(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str) and value:
        return value
    return None


def index_by_id(elements: list[SemanticElement]) -> dict[str, SemanticElement]:
    """Map id → element (first occurrence wins)."""
    by_id: dict[str, SemanticElement] = {}
    for el in elements:
        by_id.setdefault(el.id, el)
    return by_id


@dataclass
class Bounds:
    """Axis-aligned bounding box."""
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def cx(self) -> float:
        return self.x + self.width / 2

    @property
    def cy(self) -> float:
        return self.y + self.height / 2

    def intersects(self, other: 'Bounds', margin: float = 0) -> bool:
        """Check if two bounding boxes overlap (with optional margin)."""
        return not (
            self.right + margin <= other.x
            or other.right + margin <= self.x
            or self.bottom + margin <= other.y
            or other.bottom + margin <= self.y
        )

    def contains(self, other: 'Bounds', tolerance: float = 0) -> bool:
        """Check if *other* lies entirely inside this box."""
        return (
            other.x >= self.x - tolerance
            and other.y >= self.y - tolerance
            and other.right <= self.right + tolerance
            and other.bottom <= self.bottom + tolerance
        )

    def expanded(self, left: float, top: float, right: float, bottom: float) -> 'Bounds':
        return Bounds(
            self.x - left,
            self.y - top,
            self.width + left + right,
            self.height + top + bottom,
        )

    @staticmethod
    def union(boxes: list['Bounds']) -> 'Bounds':
        min_x = min(b.x for b in boxes)
        min_y = min(b.y for b in boxes)
        max_x = max(b.right for b in boxes)
        max_y = max(b.bottom for b in boxes)
        return Bounds(min_x, min_y, max_x - min_x, max_y - min_y)
