"""
Layout engine for streamed semantic diagrams.

Turns coordinate-free semantic elements into positioned ones:
- Label-driven size estimation (CJK glyphs are wider than Latin ones)
- Sugiyama-style layered placement of shapes (frames excluded)
- Bottom-up frame bounding from descendant boxes
- Grid reflow of frames whose children form one long row
- Sibling frame overlap removal and top alignment

The structure being laid out is usually still streaming in, so the graph
may contain dangling references, containment cycles or missing nodes.
None of that is fatal: the engine always returns the element list with
whatever geometry it managed to compute.
"""

from __future__ import annotations

import logging
import math
import re
from collections import defaultdict, deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from excalidraw_mcp.models import Bounds, SemanticElement, index_by_id

logger = logging.getLogger("excalidraw-mcp.layout")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_VALID_DIRECTIONS = ("TB", "BT", "LR", "RL")


@dataclass
class LayoutEngineConfig:
    """Configuration for the layout engine."""
    # Flow
    direction: str = "TB"          # TB, BT, LR, RL
    rank_spacing: float = 120      # Space between ranks along the flow axis
    node_spacing: float = 60       # Space between nodes in the same rank
    margin_x: float = 50
    margin_y: float = 50

    # Frames
    frame_padding: float = 50      # Padding around descendants on every side
    frame_title_offset: float = 30  # Extra room above for the frame title
    frame_gap: float = 40          # Minimum gap between sibling frames
    align_threshold: float = 150   # Max vertical offset treated as "same rank"

    # Reflow of single-row frames
    reflow_min_children: int = 4
    reflow_row_threshold: float = 100
    reflow_gap_x: float = 60
    reflow_gap_y: float = 60
    reflow_column_factor: float = 1.5

    # Size estimation
    latin_char_width: float = 10
    cjk_char_width: float = 18
    text_padding: float = 24       # Renderer's internal text padding, both sides
    min_width: float = 100
    min_text_width: float = 50
    line_height: float = 32
    vertical_padding: float = 30
    cjk_vertical_padding: float = 35
    empty_height: float = 50

    # Fallback size for boxes missing a dimension
    default_width: float = 120
    default_height: float = 60

    # Algorithm tuning
    skip_ratio: float = 0.5        # Skip layout when more than this share is pre-positioned
    barycenter_iterations: int = 4  # Crossing minimization sweeps


class LayoutStrategy(Enum):
    """Named presets for common diagram shapes."""
    FLOWCHART = "flowchart"
    ARCHITECTURE = "architecture"
    MINDMAP = "mindmap"
    TIMELINE = "timeline"


_STRATEGY_PRESETS: dict[LayoutStrategy, dict[str, Any]] = {
    LayoutStrategy.FLOWCHART: {},
    LayoutStrategy.ARCHITECTURE: {"rank_spacing": 160, "node_spacing": 80, "frame_gap": 60},
    LayoutStrategy.MINDMAP: {"direction": "LR", "rank_spacing": 90, "node_spacing": 30},
    LayoutStrategy.TIMELINE: {"direction": "LR", "rank_spacing": 80, "node_spacing": 100},
}


def config_for_strategy(
    strategy: LayoutStrategy | str,
    **overrides: Any,
) -> LayoutEngineConfig:
    """Build a config from a strategy preset, then apply non-None overrides.

    Raises:
        ValueError: for an unknown strategy name.
    """
    if not isinstance(strategy, LayoutStrategy):
        strategy = LayoutStrategy(str(strategy).strip().lower())
    values = dict(_STRATEGY_PRESETS[strategy])
    values.update({k: v for k, v in overrides.items() if v is not None})
    return LayoutEngineConfig(**values)


# ---------------------------------------------------------------------------
# Errors and outcome
# ---------------------------------------------------------------------------

class LayoutError(Exception):
    """Base class for layout failures.  Never escapes run_layout()."""


class TransientGraphState(LayoutError):
    """The graph is incomplete because the stream has not finished yet."""


class UnexpectedLayoutFailure(LayoutError):
    """Any other failure inside a layout pass."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{type(cause).__name__}: {cause}")


class LayoutStatus(Enum):
    LAID_OUT = "laid_out"
    SKIPPED_PREPOSITIONED = "skipped_prepositioned"
    SKIPPED_EMPTY = "skipped_empty"
    TRANSIENT = "transient"
    FAILED = "failed"


@dataclass
class LayoutOutcome:
    """Result of one layout invocation."""
    elements: list[SemanticElement]
    status: LayoutStatus
    positioned: int = 0
    error: Optional[LayoutError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Per-invocation context
# ---------------------------------------------------------------------------

@dataclass
class LayoutContext:
    """Indexes built once per layout call and shared by every pass."""
    config: LayoutEngineConfig
    elements: list[SemanticElement]
    by_id: dict[str, SemanticElement]
    child_to_parent: dict[str, str]
    frames: list[SemanticElement] = field(default_factory=list)  # deepest first

    @classmethod
    def build(
        cls,
        elements: list[SemanticElement],
        config: LayoutEngineConfig | None = None,
    ) -> LayoutContext:
        cfg = config or LayoutEngineConfig()
        child_to_parent: dict[str, str] = {}
        for el in elements:
            if el.is_frame:
                for child_id in el.children:
                    if child_id != el.id:
                        child_to_parent[child_id] = el.id
        ctx = cls(
            config=cfg,
            elements=elements,
            by_id=index_by_id(elements),
            child_to_parent=child_to_parent,
        )
        frames = [el for el in elements if el.is_frame and el.children]
        frames.sort(key=lambda f: ctx.frame_depth(f.id), reverse=True)
        ctx.frames = frames
        return ctx

    def frame_depth(self, element_id: str, visited: frozenset[str] = frozenset()) -> int:
        """Number of enclosing frames.  A revisited id (cycle) counts as 0."""
        if element_id in visited:
            return 0
        parent = self.child_to_parent.get(element_id)
        if parent is None:
            return 0
        return 1 + self.frame_depth(parent, visited | {element_id})

    def is_top_level(self, el: SemanticElement) -> bool:
        return el.id not in self.child_to_parent

    def children_of(self, frame: SemanticElement) -> list[SemanticElement]:
        """Resolved, non-connector children of a frame, in declared order."""
        result: list[SemanticElement] = []
        for child_id in frame.children:
            if child_id == frame.id:
                continue
            child = self.by_id.get(child_id)
            if child is None or child.is_connector:
                continue
            result.append(child)
        return result


# ---------------------------------------------------------------------------
# Step 1: size estimation
# ---------------------------------------------------------------------------

_CJK_RE = re.compile(r"[\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff]")


def _text_metrics(text: str, cfg: LayoutEngineConfig) -> tuple[float, bool]:
    """Return (pixel width, contains CJK) for one line of text."""
    width = 0.0
    has_cjk = False
    for ch in text:
        if _CJK_RE.match(ch):
            width += cfg.cjk_char_width
            has_cjk = True
        else:
            width += cfg.latin_char_width
    return width, has_cjk


def estimate_node_width(label: str, config: LayoutEngineConfig | None = None) -> float:
    cfg = config or LayoutEngineConfig()
    if not label:
        return cfg.min_width
    widest = max(_text_metrics(line, cfg)[0] for line in label.split("\n"))
    return max(cfg.min_width, widest + cfg.text_padding)


def estimate_node_height(
    label: str,
    width: float,
    config: LayoutEngineConfig | None = None,
) -> float:
    """Height that fits *label* wrapped inside a box of *width*."""
    cfg = config or LayoutEngineConfig()
    if not label:
        return cfg.empty_height
    available = max(cfg.min_text_width, width - cfg.text_padding)
    line_count = 0
    has_cjk = False
    for line in label.split("\n"):
        line_width, line_cjk = _text_metrics(line, cfg)
        has_cjk = has_cjk or line_cjk
        line_count += max(1, math.ceil(line_width / available))
    padding = cfg.cjk_vertical_padding if has_cjk else cfg.vertical_padding
    return padding + line_count * cfg.line_height


def estimate_node_size(
    label: str,
    config: LayoutEngineConfig | None = None,
    width: float | None = None,
    height: float | None = None,
) -> tuple[float, float]:
    """Estimate width/height from a label, keeping any positive explicit dimension."""
    cfg = config or LayoutEngineConfig()
    w = width if width and width > 0 else estimate_node_width(label, cfg)
    h = height if height and height > 0 else estimate_node_height(label, w, cfg)
    return float(w), float(h)


# ---------------------------------------------------------------------------
# Step 2: graph construction
# ---------------------------------------------------------------------------

@dataclass
class _Node:
    """Internal node representation for the layered placement."""
    id: str
    width: float
    height: float
    rank: int = 0       # Layer assignment
    order: float = 0    # Position within layer
    x: float = 0        # Center
    y: float = 0        # Center
    is_virtual: bool = False  # Virtual nodes for long edges


@dataclass
class LayeredGraph:
    """Directed graph of shapes to place.  Edges are unique (source, target) pairs."""
    nodes: dict[str, _Node] = field(default_factory=dict)
    edges: list[tuple[str, str]] = field(default_factory=list)
    synthesized: bool = False  # True when edges were inferred from element order

    def add_node(self, node_id: str, width: float, height: float) -> None:
        self.nodes[node_id] = _Node(id=node_id, width=width, height=height)

    def add_edge(self, source: str, target: str) -> bool:
        if source == target or (source, target) in self.edges:
            return False
        self.edges.append((source, target))
        return True

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)


def build_layout_graph(ctx: LayoutContext) -> LayeredGraph:
    """Build the graph of shapes and connector edges.

    Connectors whose endpoints do not both resolve to shapes are dropped.
    When no connector resolves at all, consecutive top-level shapes are
    chained in declaration order instead (frames break the chain).
    """
    cfg = ctx.config
    graph = LayeredGraph()

    for el in ctx.elements:
        if el.is_connector or el.is_frame or el.id in graph.nodes:
            continue
        w, h = estimate_node_size(el.label, cfg, el.geometry.width, el.geometry.height)
        graph.add_node(el.id, w, h)

    for el in ctx.elements:
        if not el.is_connector:
            continue
        if el.source_id in graph.nodes and el.end_id in graph.nodes:
            graph.add_edge(el.source_id, el.end_id)

    if not graph.edges:
        roots = [
            el for el in ctx.elements
            if not el.is_connector and ctx.is_top_level(el)
        ]
        for current, nxt in zip(roots, roots[1:]):
            if current.is_frame or nxt.is_frame:
                continue
            if current.id in graph.nodes and nxt.id in graph.nodes:
                if graph.add_edge(current.id, nxt.id):
                    graph.synthesized = True

    return graph


# ---------------------------------------------------------------------------
# Step 3: layered placement (Sugiyama)
# ---------------------------------------------------------------------------

def place_graph(graph: LayeredGraph, config: LayoutEngineConfig | None = None) -> None:
    """Assign center coordinates to every node of *graph*.

    Steps:
    1. Cycle removal (reverse back-edges)
    2. Layer assignment (longest path)
    3. Virtual node insertion for long edges
    4. Crossing minimization (barycenter heuristic, multi-pass)
    5. Coordinate assignment

    Raises:
        TransientGraphState: if the graph references nodes it does not have
            or a node has no usable size yet.
        ValueError: for an unknown direction.
    """
    cfg = config or LayoutEngineConfig()
    direction = (cfg.direction or "TB").upper()
    if direction not in _VALID_DIRECTIONS:
        raise ValueError(f"unknown layout direction '{cfg.direction}'")
    _check_graph_complete(graph)

    node_ids = list(graph.nodes)
    adj: dict[str, list[str]] = defaultdict(list)
    for src, tgt in graph.edges:
        adj[src].append(tgt)

    # --- Step 1: Cycle removal ---
    back_edges = _find_back_edges(node_ids, adj)
    effective_adj: dict[str, list[str]] = defaultdict(list)
    effective_rev: dict[str, list[str]] = defaultdict(list)
    oriented: list[tuple[str, str]] = []
    for src, tgt in graph.edges:
        if (src, tgt) in back_edges:
            src, tgt = tgt, src
        effective_adj[src].append(tgt)
        effective_rev[tgt].append(src)
        oriented.append((src, tgt))

    # --- Step 2: Layer assignment ---
    ranks = _assign_ranks_longest_path(node_ids, effective_adj, effective_rev)
    nodes = graph.nodes
    for node_id, rank in ranks.items():
        nodes[node_id].rank = rank

    # --- Step 3: Virtual nodes for long edges ---
    expanded_edges: list[tuple[str, str]] = []
    virtual_count = 0
    for src, tgt in oriented:
        span = ranks[tgt] - ranks[src]
        if span <= 1:
            expanded_edges.append((src, tgt))
            continue
        prev = src
        for r in range(ranks[src] + 1, ranks[tgt]):
            vname = f"__virtual_{virtual_count}"
            virtual_count += 1
            nodes[vname] = _Node(id=vname, width=1, height=1, rank=r, is_virtual=True)
            expanded_edges.append((prev, vname))
            prev = vname
        expanded_edges.append((prev, tgt))

    # --- Step 4: Crossing minimization ---
    by_rank: dict[int, list[str]] = defaultdict(list)
    for node_id, node in nodes.items():
        by_rank[node.rank].append(node_id)

    exp_adj: dict[str, list[str]] = defaultdict(list)
    exp_rev: dict[str, list[str]] = defaultdict(list)
    for s, t in expanded_edges:
        exp_adj[s].append(t)
        exp_rev[t].append(s)

    max_rank = max(by_rank.keys()) if by_rank else 0
    for rank_nodes in by_rank.values():
        for i, node_id in enumerate(rank_nodes):
            nodes[node_id].order = float(i)

    for _ in range(cfg.barycenter_iterations):
        for r in range(1, max_rank + 1):
            _barycenter_sort(by_rank[r], nodes, exp_rev)
        for r in range(max_rank - 1, -1, -1):
            _barycenter_sort(by_rank[r], nodes, exp_adj)

    # --- Step 5: Coordinate assignment ---
    _assign_coordinates(by_rank, nodes, cfg, direction)

    for vname in [n for n, node in nodes.items() if node.is_virtual]:
        del nodes[vname]


def _check_graph_complete(graph: LayeredGraph) -> None:
    for src, tgt in graph.edges:
        if src not in graph.nodes or tgt not in graph.nodes:
            raise TransientGraphState(f"edge {src} -> {tgt} references a missing node")
    for node in graph.nodes.values():
        for value in (node.width, node.height):
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                raise TransientGraphState(f"node '{node.id}' has no usable size yet")


def _find_back_edges(
    all_nodes: list[str],
    adj: dict[str, list[str]],
) -> set[tuple[str, str]]:
    """Find back-edges in a directed graph using iterative DFS."""
    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {n: WHITE for n in all_nodes}
    back_edges: set[tuple[str, str]] = set()

    for start in all_nodes:
        if color[start] != WHITE:
            continue
        # Each stack frame is (node, index of next neighbor to visit).
        color[start] = GRAY
        stack: list[tuple[str, int]] = [(start, 0)]
        while stack:
            u, idx = stack[-1]
            neighbors = adj.get(u, [])
            if idx < len(neighbors):
                stack[-1] = (u, idx + 1)
                v = neighbors[idx]
                if v not in color:
                    continue
                if color[v] == GRAY:
                    back_edges.add((u, v))
                elif color[v] == WHITE:
                    color[v] = GRAY
                    stack.append((v, 0))
            else:
                color[u] = BLACK
                stack.pop()

    return back_edges


def _assign_ranks_longest_path(
    all_nodes: list[str],
    adj: dict[str, list[str]],
    rev_adj: dict[str, list[str]],
) -> dict[str, int]:
    """Assign ranks using longest path from sources."""
    ranks: dict[str, int] = {}

    sources = [n for n in all_nodes if not rev_adj.get(n)]
    if not sources and all_nodes:
        sources = [all_nodes[0]]

    queue = deque(sources)
    for s in sources:
        ranks[s] = 0

    while queue:
        node = queue.popleft()
        for child in adj.get(node, []):
            new_rank = ranks[node] + 1
            if child not in ranks or ranks[child] < new_rank:
                ranks[child] = new_rank
                queue.append(child)

    for n in all_nodes:
        if n not in ranks:
            ranks[n] = 0

    return ranks


def _barycenter_sort(
    rank_nodes: list[str],
    nodes: dict[str, _Node],
    neighbor_adj: dict[str, list[str]],
) -> None:
    """Sort nodes in a rank by barycenter of their neighbors."""
    barycenters: dict[str, float] = {}
    for node_id in rank_nodes:
        neighbor_orders = [
            nodes[n].order for n in neighbor_adj.get(node_id, []) if n in nodes
        ]
        if neighbor_orders:
            barycenters[node_id] = sum(neighbor_orders) / len(neighbor_orders)
        else:
            barycenters[node_id] = nodes[node_id].order

    rank_nodes.sort(key=lambda n: barycenters.get(n, 0))
    for i, node_id in enumerate(rank_nodes):
        nodes[node_id].order = float(i)


def _assign_coordinates(
    by_rank: dict[int, list[str]],
    nodes: dict[str, _Node],
    cfg: LayoutEngineConfig,
    direction: str,
) -> None:
    """Assign center coordinates based on rank and order."""
    vertical = direction in ("TB", "BT")

    def along(node: _Node) -> float:
        return node.height if vertical else node.width

    def across(node: _Node) -> float:
        return node.width if vertical else node.height

    real_by_rank = {
        rank: [nodes[n] for n in rank_nodes if not nodes[n].is_virtual]
        for rank, rank_nodes in by_rank.items()
    }

    # Every rank shares one center line on the flow axis.
    default_extent = cfg.default_height if vertical else cfg.default_width
    ordered_ranks = sorted(by_rank.keys(), reverse=direction in ("BT", "RL"))
    rank_center: dict[int, float] = {}
    cursor = cfg.margin_y if vertical else cfg.margin_x
    for r in ordered_ranks:
        extent = max((along(n) for n in real_by_rank[r]), default=default_extent)
        rank_center[r] = cursor + extent / 2
        cursor += extent + cfg.rank_spacing

    # Center each rank across the widest one.
    totals: dict[int, float] = {}
    for r, real in real_by_rank.items():
        total = sum(across(n) for n in real)
        total += (len(real) - 1) * cfg.node_spacing if real else 0
        totals[r] = total
    widest = max(totals.values(), default=0)
    start_across = cfg.margin_x if vertical else cfg.margin_y

    for r, rank_nodes in by_rank.items():
        pos = start_across + (widest - totals[r]) / 2
        for node_id in rank_nodes:
            node = nodes[node_id]
            if node.is_virtual:
                center_across = pos
            else:
                center_across = pos + across(node) / 2
                pos += across(node) + cfg.node_spacing
            if vertical:
                node.x, node.y = center_across, rank_center[r]
            else:
                node.x, node.y = rank_center[r], center_across


def _apply_node_geometry(ctx: LayoutContext, graph: LayeredGraph) -> int:
    """Write top-left geometry from placed centers back onto elements."""
    positioned = 0
    for el in ctx.elements:
        if el.is_connector or el.is_frame:
            continue
        node = graph.nodes.get(el.id)
        if node is None:
            continue
        el.geometry.x = float(round(node.x - node.width / 2))
        el.geometry.y = float(round(node.y - node.height / 2))
        el.geometry.width = float(round(node.width))
        el.geometry.height = float(round(node.height))
        positioned += 1
    return positioned


# ---------------------------------------------------------------------------
# Step 4: frame bounding
# ---------------------------------------------------------------------------

def bound_frames(ctx: LayoutContext) -> int:
    """Fit every frame around its positioned children, deepest frames first.

    A nested frame contributes its own box.  Frames without positioned
    children are left untouched.  Returns the number of frames bounded.
    """
    cfg = ctx.config
    pad = cfg.frame_padding
    bounded = 0
    for frame in ctx.frames:
        boxes = [
            child.geometry.to_bounds(cfg.default_width, cfg.default_height)
            for child in ctx.children_of(frame)
            if child.geometry.has_position
        ]
        if not boxes:
            continue
        box = Bounds.union(boxes).expanded(pad, pad + cfg.frame_title_offset, pad, pad)
        frame.geometry.x = box.x
        frame.geometry.y = box.y
        frame.geometry.width = box.width
        frame.geometry.height = box.height
        bounded += 1
    return bounded


def shift_with_descendants(
    ctx: LayoutContext,
    el: SemanticElement,
    dx: float,
    dy: float,
    visited: frozenset[str] = frozenset(),
) -> None:
    """Move an element and, for frames, everything it contains."""
    if el.id in visited:
        return
    if el.geometry.has_position:
        el.move_by(dx, dy)
    if not el.is_frame:
        return
    visited = visited | {el.id}
    for child_id in el.children:
        child = ctx.by_id.get(child_id)
        if child is not None:
            shift_with_descendants(ctx, child, dx, dy, visited)


# ---------------------------------------------------------------------------
# Step 5: wide-frame reflow
# ---------------------------------------------------------------------------

def reflow_wide_frames(ctx: LayoutContext) -> int:
    """Rearrange frames whose children sit in one long row into a grid.

    Returns the number of frames reflowed.  Frame boxes are stale
    afterwards; call bound_frames() again.
    """
    cfg = ctx.config
    reflowed = 0
    for frame in ctx.frames:
        children = [c for c in ctx.children_of(frame) if c.geometry.has_position]
        if len(children) < cfg.reflow_min_children:
            continue
        first_y = children[0].geometry.y or 0
        if any(abs((c.geometry.y or 0) - first_y) >= cfg.reflow_row_threshold for c in children):
            continue
        columns = math.ceil(math.sqrt(len(children)) * cfg.reflow_column_factor)
        if columns >= len(children):
            continue
        _reflow_to_grid(ctx, children, columns)
        reflowed += 1
    return reflowed


def _reflow_to_grid(
    ctx: LayoutContext,
    children: list[SemanticElement],
    columns: int,
) -> None:
    """Place *children* row by row, left to right, keeping their x order."""
    cfg = ctx.config
    children = sorted(children, key=lambda c: c.geometry.x or 0)
    start_x = children[0].geometry.x or 0
    start_y = min(c.geometry.y or 0 for c in children)

    offsets: list[tuple[float, float]] = []
    cur_x = cur_y = row_height = 0.0
    for index, child in enumerate(children):
        box = child.geometry.to_bounds(cfg.default_width, cfg.default_height)
        offsets.append((cur_x, cur_y))
        row_height = max(row_height, box.height)
        cur_x += box.width + cfg.reflow_gap_x
        if (index + 1) % columns == 0:
            cur_x = 0.0
            cur_y += row_height + cfg.reflow_gap_y
            row_height = 0.0

    for child, (ox, oy) in zip(children, offsets):
        new_x = start_x + ox
        new_y = start_y + oy
        if child.is_frame:
            shift_with_descendants(
                ctx, child,
                new_x - (child.geometry.x or 0),
                new_y - (child.geometry.y or 0),
            )
        else:
            child.geometry.x = new_x
            child.geometry.y = new_y


# ---------------------------------------------------------------------------
# Step 6: sibling overlap resolution
# ---------------------------------------------------------------------------

def resolve_frame_overlaps(ctx: LayoutContext) -> int:
    """Separate overlapping sibling frames and align near-level tops.

    Sibling groups are handled innermost first so that a parent's box is
    final before the parent itself is compared with its own siblings.
    Returns the number of frames moved.
    """
    groups: dict[Optional[str], list[SemanticElement]] = defaultdict(list)
    for el in ctx.elements:
        if el.is_frame and el.geometry.is_complete and ctx.by_id.get(el.id) is el:
            groups[ctx.child_to_parent.get(el.id)].append(el)

    nested = sorted(
        (parent_id for parent_id in groups if parent_id is not None),
        key=lambda pid: ctx.frame_depth(pid),
        reverse=True,
    )
    moved = 0
    for parent_id in nested:
        if len(groups[parent_id]) > 1:
            moved += _separate_siblings(ctx, groups[parent_id])
            bound_frames(ctx)
    if len(groups.get(None, [])) > 1:
        moved += _separate_siblings(ctx, groups[None])
    return moved


def _separate_siblings(ctx: LayoutContext, siblings: list[SemanticElement]) -> int:
    cfg = ctx.config
    siblings = sorted(siblings, key=lambda f: f.geometry.x or 0)
    moved: set[str] = set()

    # Horizontal: walk left to right restoring the minimum gap.
    for prev, curr in zip(siblings, siblings[1:]):
        prev_right = (prev.geometry.x or 0) + (prev.geometry.width or 0)
        curr_left = curr.geometry.x or 0
        if curr_left < prev_right + cfg.frame_gap:
            shift_with_descendants(ctx, curr, prev_right + cfg.frame_gap - curr_left, 0)
            moved.add(curr.id)

    # Vertical: align tops of frames that sit on roughly the same rank.
    min_y = min(f.geometry.y or 0 for f in siblings)
    for frame in siblings:
        dy = min_y - (frame.geometry.y or 0)
        if dy < 0 and abs(dy) < cfg.align_threshold:
            shift_with_descendants(ctx, frame, 0, dy)
            moved.add(frame.id)

    return len(moved)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def run_layout(
    elements: list[SemanticElement],
    config: LayoutEngineConfig | None = None,
) -> LayoutOutcome:
    """Lay out *elements* in place and report what happened.

    Never raises.  Transient graph states are expected while the stream is
    still arriving and are logged at DEBUG; any other failure is logged as
    a warning.  Either way the elements are returned with whatever geometry
    was computed before the failure.
    """
    cfg = config or LayoutEngineConfig()

    non_connectors = [el for el in elements if not el.is_connector]
    if not non_connectors:
        return LayoutOutcome(elements, LayoutStatus.SKIPPED_EMPTY)

    with_coords = sum(1 for el in non_connectors if el.geometry.has_position)
    if with_coords > len(non_connectors) * cfg.skip_ratio:
        logger.debug("Skipping layout: %d/%d elements already positioned",
                     with_coords, len(non_connectors))
        return LayoutOutcome(elements, LayoutStatus.SKIPPED_PREPOSITIONED)

    positioned = 0
    try:
        ctx = LayoutContext.build(elements, cfg)
        graph = build_layout_graph(ctx)
        if graph.node_count == 0:
            logger.debug("Skipping layout: no nodes")
            return LayoutOutcome(elements, LayoutStatus.SKIPPED_EMPTY)
        logger.debug("Layout start: %d nodes, %d edges%s", graph.node_count,
                     graph.edge_count, " (inferred)" if graph.synthesized else "")

        place_graph(graph, cfg)
        positioned = _apply_node_geometry(ctx, graph)

        bound_frames(ctx)
        reflow_wide_frames(ctx)
        bound_frames(ctx)
        resolve_frame_overlaps(ctx)
        bound_frames(ctx)
    except TransientGraphState as exc:
        logger.debug("Layout deferred, graph incomplete: %s", exc)
        return LayoutOutcome(elements, LayoutStatus.TRANSIENT, positioned, exc)
    except Exception as exc:
        failure = exc if isinstance(exc, UnexpectedLayoutFailure) else UnexpectedLayoutFailure(exc)
        logger.warning("Layout skipped: %s", failure)
        return LayoutOutcome(elements, LayoutStatus.FAILED, positioned, failure)

    logger.debug("Layout complete, positioned %d/%d elements", positioned, len(non_connectors))
    return LayoutOutcome(elements, LayoutStatus.LAID_OUT, positioned)


def layout_elements(
    elements: list[SemanticElement],
    config: LayoutEngineConfig | None = None,
) -> list[SemanticElement]:
    """Populate geometry on *elements* in place and return the same list."""
    return run_layout(elements, config).elements
