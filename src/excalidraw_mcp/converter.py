"""
Convert positioned semantic elements into Excalidraw scene elements.

The converter is a pure function of its input: it fills in the visual
attributes Excalidraw expects, turns connector references into binding
records, attaches labels as bound text, and tags frame members and
groups.  It never moves anything the layout engine has positioned.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass
from typing import Any, Optional

from excalidraw_mcp.models import Bounds, ElementKind, SemanticElement, index_by_id
from excalidraw_mcp.styles import style_for

Renderable = dict[str, Any]


@dataclass
class ConverterOptions:
    """Rendering defaults applied to every converted element."""
    font_size: int = 20
    font_family: int = 1  # 1 = Virgil
    line_height: float = 1.25
    stroke_width: float = 2
    roughness: int = 1
    binding_gap: float = 8
    default_arrow_length: float = 100
    timestamp: int = 1


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def convert_elements(
    elements: list[SemanticElement],
    options: ConverterOptions | None = None,
) -> list[Renderable]:
    """Map semantic elements to Excalidraw element dicts.

    Output keeps the input order; a bound label follows its container.
    Connectors whose endpoints do not resolve become unbound arrows.
    """
    opts = options or ConverterOptions()
    by_id = index_by_id(elements)
    taken: set[str] = set(by_id)

    frame_of: dict[str, str] = {}
    for el in elements:
        if el.is_frame:
            for child_id in el.children:
                if child_id != el.id and child_id in by_id:
                    frame_of[child_id] = el.id

    converted: dict[str, list[Renderable]] = {}
    for el in elements:
        if by_id[el.id] is not el or el.is_connector:
            continue
        converted[el.id] = _convert_node(el, frame_of.get(el.id), taken, opts)

    for el in elements:
        if by_id[el.id] is not el or not el.is_connector:
            continue
        converted[el.id] = _convert_connector(el, by_id, frame_of.get(el.id), taken, opts)
        arrow = converted[el.id][0]
        for key in ("startBinding", "endBinding"):
            binding = arrow[key]
            if binding is not None:
                _add_bound_element(converted[binding["elementId"]][0], "arrow", arrow["id"])

    result: list[Renderable] = []
    for el in elements:
        if by_id[el.id] is el:
            result.extend(converted[el.id])
    return result


def to_scene(renderables: list[Renderable], background: str = "#ffffff") -> dict[str, Any]:
    """Wrap converted elements in an ``.excalidraw`` scene document."""
    return {
        "type": "excalidraw",
        "version": 2,
        "source": "excalidraw-mcp",
        "elements": renderables,
        "appState": {"viewBackgroundColor": background, "gridSize": None},
        "files": {},
    }


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

def _convert_node(
    el: SemanticElement,
    frame_id: Optional[str],
    taken: set[str],
    opts: ConverterOptions,
) -> list[Renderable]:
    box = el.bounds
    group_ids = [el.style.group_id] if el.style.group_id else []
    style = style_for(el.kind, el.style.background,
                      stroke_width=opts.stroke_width, roughness=opts.roughness)

    if el.kind is ElementKind.TEXT:
        text = _base(el.id, "text", box, style, group_ids, frame_id, opts)
        text.update(_text_fields(el.label, None, opts))
        return [text]

    if el.kind is ElementKind.FRAME:
        frame = _base(el.id, "frame", box, style, group_ids, None, opts)
        frame["name"] = el.label or None
        return [frame]

    if el.kind is ElementKind.LINE:
        line = _base(el.id, "line", box, style, group_ids, frame_id, opts)
        line.update(_linear_fields([[0, 0], [box.width, 0]]))
        if not el.label:
            return [line]
        label = _label(_label_id(el.id, taken), el.label, box, None, group_ids, frame_id, opts)
        return [line, label]

    shape = _base(el.id, el.kind.value, box, style, group_ids, frame_id, opts)
    if not el.label:
        return [shape]
    label = _label(_label_id(el.id, taken), el.label, box, el.id, group_ids, frame_id, opts)
    _add_bound_element(shape, "text", label["id"])
    return [shape, label]


# ---------------------------------------------------------------------------
# Connectors
# ---------------------------------------------------------------------------

def _convert_connector(
    el: SemanticElement,
    by_id: dict[str, SemanticElement],
    frame_id: Optional[str],
    taken: set[str],
    opts: ConverterOptions,
) -> list[Renderable]:
    source = _resolve_endpoint(el.source_id, by_id)
    end = _resolve_endpoint(el.end_id, by_id)
    length = opts.default_arrow_length

    if source is not None and end is not None:
        sb, eb = source.bounds, end.bounds
        start = _edge_point(sb, (eb.cx, eb.cy))
        finish = _edge_point(eb, (sb.cx, sb.cy))
    elif el.geometry.is_complete:
        g = el.geometry
        start = (g.x, g.y)
        finish = (g.x + g.width, g.y + g.height)
    elif source is not None:
        sb = source.bounds
        start = (sb.cx, sb.bottom)
        finish = (sb.cx, sb.bottom + length)
    elif end is not None:
        eb = end.bounds
        finish = (eb.cx, eb.y)
        start = (eb.cx, eb.y - length)
    else:
        start = (el.geometry.x or 0, el.geometry.y or 0)
        finish = (start[0] + length, start[1])

    dx = finish[0] - start[0]
    dy = finish[1] - start[1]
    box = Bounds(start[0], start[1], abs(dx), abs(dy))
    group_ids = [el.style.group_id] if el.style.group_id else []
    # A named endpoint that is not on the canvas yet draws dashed.
    pending = (el.source_id is not None and source is None) or (
        el.end_id is not None and end is None
    )
    style = style_for(ElementKind.ARROW, el.style.background,
                      stroke_width=opts.stroke_width, roughness=opts.roughness,
                      dashed=pending)

    arrow = _base(el.id, "arrow", box, style, group_ids, frame_id, opts)
    arrow.update(_linear_fields([[0, 0], [dx, dy]]))
    arrow["startBinding"] = _binding(source, opts)
    arrow["endBinding"] = _binding(end, opts)
    arrow["endArrowhead"] = "arrow"
    arrow["elbowed"] = False
    if not el.label:
        return [arrow]

    mid = Bounds(start[0] + dx / 2, start[1] + dy / 2, 0, 0)
    label = _label(_label_id(el.id, taken), el.label, mid, el.id, group_ids, frame_id, opts)
    _add_bound_element(arrow, "text", label["id"])
    return [arrow, label]


def _resolve_endpoint(
    ref: Optional[str],
    by_id: dict[str, SemanticElement],
) -> Optional[SemanticElement]:
    if ref is None:
        return None
    target = by_id.get(ref)
    if target is None or target.is_connector or not target.geometry.has_position:
        return None
    return target


def _binding(target: Optional[SemanticElement], opts: ConverterOptions) -> Optional[dict[str, Any]]:
    if target is None:
        return None
    return {"elementId": target.id, "focus": 0, "gap": opts.binding_gap}


def _edge_point(box: Bounds, toward: tuple[float, float]) -> tuple[float, float]:
    """Where the ray from the box center toward *toward* leaves the box."""
    dx = toward[0] - box.cx
    dy = toward[1] - box.cy
    if dx == 0 and dy == 0:
        return box.cx, box.cy
    scale = min(
        (box.width / 2) / abs(dx) if dx else math.inf,
        (box.height / 2) / abs(dy) if dy else math.inf,
    )
    return box.cx + dx * scale, box.cy + dy * scale


# ---------------------------------------------------------------------------
# Element dict helpers
# ---------------------------------------------------------------------------

def _base(
    element_id: str,
    element_type: str,
    box: Bounds,
    style: dict[str, Any],
    group_ids: list[str],
    frame_id: Optional[str],
    opts: ConverterOptions,
) -> Renderable:
    el: Renderable = {
        "id": element_id,
        "type": element_type,
        "x": float(box.x),
        "y": float(box.y),
        "width": float(box.width),
        "height": float(box.height),
        "angle": 0,
    }
    el.update(style)
    el.update({
        "groupIds": list(group_ids),
        "frameId": frame_id,
        "seed": _stable_seed(element_id),
        "version": 1,
        "versionNonce": _stable_seed(element_id, "nonce"),
        "isDeleted": False,
        "boundElements": None,
        "updated": opts.timestamp,
        "link": None,
        "locked": False,
    })
    return el


def _label_id(owner_id: str, taken: set[str]) -> str:
    """``<owner>-label``, suffixed until it clashes with no element or earlier label."""
    candidate = f"{owner_id}-label"
    suffix = 2
    while candidate in taken:
        candidate = f"{owner_id}-label-{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def _label(
    label_id: str,
    text: str,
    container: Bounds,
    container_id: Optional[str],
    group_ids: list[str],
    frame_id: Optional[str],
    opts: ConverterOptions,
) -> Renderable:
    width, height = _measure_text(text, opts)
    box = Bounds(container.cx - width / 2, container.cy - height / 2, width, height)
    style = style_for(ElementKind.TEXT, stroke_width=1, roughness=opts.roughness)
    label = _base(label_id, "text", box, style, group_ids, frame_id, opts)
    label.update(_text_fields(text, container_id, opts))
    return label


def _text_fields(text: str, container_id: Optional[str], opts: ConverterOptions) -> dict[str, Any]:
    return {
        "text": text,
        "originalText": text,
        "fontSize": opts.font_size,
        "fontFamily": opts.font_family,
        "textAlign": "center",
        "verticalAlign": "middle",
        "containerId": container_id,
        "lineHeight": opts.line_height,
        "autoResize": True,
    }


def _linear_fields(points: list[list[float]]) -> dict[str, Any]:
    return {
        "points": points,
        "lastCommittedPoint": None,
        "startBinding": None,
        "endBinding": None,
        "startArrowhead": None,
        "endArrowhead": None,
    }


def _add_bound_element(target: Renderable, kind: str, element_id: str) -> None:
    bound = target.get("boundElements") or []
    if not any(b.get("id") == element_id for b in bound):
        bound.append({"type": kind, "id": element_id})
    target["boundElements"] = bound


def _measure_text(text: str, opts: ConverterOptions) -> tuple[float, float]:
    lines = text.split("\n")
    widest = max(len(line) for line in lines)
    return (
        float(round(widest * opts.font_size * 0.55)),
        float(round(len(lines) * opts.font_size * opts.line_height)),
    )


def _stable_seed(*parts: str) -> int:
    h = hashlib.sha256()
    for part in parts:
        h.update(part.encode("utf-8"))
        h.update(b"\0")
    # Keep within signed 32-bit range for consistent downstream usage.
    return int.from_bytes(h.digest()[:4], "big") & 0x7FFFFFFF
