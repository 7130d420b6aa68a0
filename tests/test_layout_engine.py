"""Tests for the streamed-diagram layout engine."""

import logging

import pytest

from excalidraw_mcp import layout_engine
from excalidraw_mcp.layout_engine import (
    LayeredGraph,
    LayoutContext,
    LayoutEngineConfig,
    LayoutStatus,
    LayoutStrategy,
    TransientGraphState,
    UnexpectedLayoutFailure,
    bound_frames,
    build_layout_graph,
    config_for_strategy,
    estimate_node_height,
    estimate_node_size,
    estimate_node_width,
    layout_elements,
    place_graph,
    run_layout,
    shift_with_descendants,
)
from excalidraw_mcp.models import Geometry, SemanticElement


def _els(*wire: dict) -> list[SemanticElement]:
    return [SemanticElement.from_wire(w) for w in wire]


def _by_id(elements: list[SemanticElement]) -> dict[str, SemanticElement]:
    return {el.id: el for el in elements}


def _chain(*ids: str) -> list[dict]:
    nodes = [{"t": "r", "i": i, "l": i.upper()} for i in ids]
    arrows = [
        {"t": "a", "i": f"{a}-{b}", "si": a, "ei": b}
        for a, b in zip(ids, ids[1:])
    ]
    return nodes + arrows


# ===================================================================
# Size estimation
# ===================================================================

class TestSizeEstimation:
    def test_empty_label_minimums(self) -> None:
        cfg = LayoutEngineConfig()
        assert estimate_node_width("", cfg) == cfg.min_width
        assert estimate_node_height("", 100, cfg) == cfg.empty_height

    def test_long_label_grows_width(self) -> None:
        assert estimate_node_width("A" * 30) == 30 * 10 + 24

    def test_cjk_wider_than_latin(self) -> None:
        cjk = "\u4e2d\u6587" * 6
        latin = "ab" * 6
        assert estimate_node_width(cjk) > estimate_node_width(latin)

    def test_cjk_vertical_padding(self) -> None:
        assert estimate_node_height("\u4e2d", 100) == 35 + 32
        assert estimate_node_height("a", 100) == 30 + 32

    def test_multiline_height(self) -> None:
        assert estimate_node_height("a\nb\nc", 100) == 30 + 3 * 32

    def test_wrapping_adds_lines(self) -> None:
        # 20 glyphs in a 100px box (76px usable) wrap onto 3 lines.
        assert estimate_node_height("x" * 20, 100) == 30 + 3 * 32

    def test_explicit_size_kept(self) -> None:
        assert estimate_node_size("label", width=300, height=80) == (300.0, 80.0)

    def test_non_positive_explicit_size_ignored(self) -> None:
        assert estimate_node_size("", width=-5, height=0) == (100.0, 50.0)


# ===================================================================
# Graph construction
# ===================================================================

class TestBuildLayoutGraph:
    def test_dangling_connector_dropped(self) -> None:
        elements = _els(
            {"t": "r", "i": "a"}, {"t": "r", "i": "b"}, {"t": "r", "i": "c"},
            {"t": "a", "i": "e1", "si": "a", "ei": "b"},
            {"t": "a", "i": "e2", "si": "b", "ei": "ghost"},
        )
        graph = build_layout_graph(LayoutContext.build(elements))
        assert graph.node_count == 3
        assert graph.edges == [("a", "b")]
        assert not graph.synthesized

    def test_frames_and_connectors_are_not_nodes(self) -> None:
        elements = _els(
            {"t": "fr", "i": "F", "ch": ["a"]}, {"t": "r", "i": "a"},
            {"t": "a", "i": "e", "si": "a", "ei": "F"},
        )
        graph = build_layout_graph(LayoutContext.build(elements))
        assert set(graph.nodes) == {"a"}
        assert graph.edge_count == 0

    def test_fallback_chains_top_level_shapes(self) -> None:
        elements = _els({"t": "r", "i": "a"}, {"t": "d", "i": "b"}, {"t": "el", "i": "c"})
        graph = build_layout_graph(LayoutContext.build(elements))
        assert graph.edges == [("a", "b"), ("b", "c")]
        assert graph.synthesized

    def test_fallback_skips_frame_neighbours(self) -> None:
        elements = _els(
            {"t": "r", "i": "a"},
            {"t": "fr", "i": "F", "ch": ["x"]}, {"t": "r", "i": "x"},
            {"t": "r", "i": "b"}, {"t": "r", "i": "c"},
        )
        graph = build_layout_graph(LayoutContext.build(elements))
        assert graph.edges == [("b", "c")]

    def test_duplicate_and_self_edges_ignored(self) -> None:
        graph = LayeredGraph()
        assert graph.add_edge("a", "b")
        assert not graph.add_edge("a", "b")
        assert not graph.add_edge("a", "a")
        assert graph.edge_count == 1


# ===================================================================
# Layered placement
# ===================================================================

class TestPlacement:
    def test_linear_chain_top_to_bottom(self) -> None:
        elements = _els(*_chain("a", "b", "c"))
        run_layout(elements)
        a, b, c = (_by_id(elements)[i] for i in "abc")
        assert a.geometry.y < b.geometry.y < c.geometry.y
        assert a.geometry.x == b.geometry.x == c.geometry.x

    def test_fan_out_shares_rank(self) -> None:
        elements = _els(
            {"t": "r", "i": "a"}, {"t": "r", "i": "b"}, {"t": "r", "i": "c"},
            {"t": "a", "i": "e1", "si": "a", "ei": "b"},
            {"t": "a", "i": "e2", "si": "a", "ei": "c"},
        )
        run_layout(elements)
        by_id = _by_id(elements)
        assert by_id["b"].geometry.y == by_id["c"].geometry.y
        assert not by_id["b"].bounds.intersects(by_id["c"].bounds)

    def test_left_to_right(self) -> None:
        elements = _els(*_chain("a", "b", "c"))
        run_layout(elements, LayoutEngineConfig(direction="LR"))
        a, b, c = (_by_id(elements)[i] for i in "abc")
        assert a.geometry.x < b.geometry.x < c.geometry.x
        assert a.geometry.y == b.geometry.y == c.geometry.y

    def test_bottom_to_top(self) -> None:
        elements = _els(*_chain("a", "b"))
        run_layout(elements, LayoutEngineConfig(direction="BT"))
        by_id = _by_id(elements)
        assert by_id["a"].geometry.y > by_id["b"].geometry.y

    def test_cycle_is_laid_out(self) -> None:
        elements = _els(
            {"t": "r", "i": "a"}, {"t": "r", "i": "b"},
            {"t": "a", "i": "e1", "si": "a", "ei": "b"},
            {"t": "a", "i": "e2", "si": "b", "ei": "a"},
        )
        outcome = run_layout(elements)
        assert outcome.status is LayoutStatus.LAID_OUT
        by_id = _by_id(elements)
        assert not by_id["a"].bounds.intersects(by_id["b"].bounds)

    def test_long_edge_spans_ranks(self) -> None:
        elements = _els(*_chain("a", "b", "c"), {"t": "a", "i": "skip", "si": "a", "ei": "c"})
        outcome = run_layout(elements)
        assert outcome.positioned == 3

    def test_margins_respected(self) -> None:
        elements = _els(*_chain("a", "b"))
        run_layout(elements)
        for el in elements:
            if not el.is_connector:
                assert el.geometry.x >= 50
                assert el.geometry.y >= 50

    def test_connectors_get_no_geometry(self) -> None:
        elements = _els(*_chain("a", "b"))
        run_layout(elements)
        assert not _by_id(elements)["a-b"].geometry.has_position

    def test_incomplete_graph_is_transient(self) -> None:
        graph = LayeredGraph()
        graph.add_node("a", 100, 60)
        graph.add_edge("a", "missing")
        with pytest.raises(TransientGraphState):
            place_graph(graph)

    def test_zero_size_is_transient(self) -> None:
        graph = LayeredGraph()
        graph.add_node("a", 0, 60)
        with pytest.raises(TransientGraphState):
            place_graph(graph)


# ===================================================================
# Frames
# ===================================================================

class TestFrames:
    def test_frame_contains_children(self) -> None:
        elements = _els(
            {"t": "fr", "i": "F", "l": "Group", "ch": ["a", "b", "c"]},
            *_chain("a", "b", "c"),
        )
        run_layout(elements)
        by_id = _by_id(elements)
        frame = by_id["F"].bounds
        for child in "abc":
            assert frame.contains(by_id[child].bounds)
        # Padding plus room for the title.
        assert by_id["a"].geometry.y - frame.y >= 50 + 30

    def test_nested_frames(self) -> None:
        elements = _els(
            {"t": "fr", "i": "outer", "ch": ["inner", "d"]},
            {"t": "fr", "i": "inner", "ch": ["a", "b"]},
            *_chain("a", "b", "d"),
        )
        run_layout(elements)
        by_id = _by_id(elements)
        assert by_id["outer"].bounds.contains(by_id["inner"].bounds)
        assert by_id["outer"].bounds.contains(by_id["d"].bounds)
        assert by_id["inner"].bounds.contains(by_id["a"].bounds)

    def test_frame_without_children_untouched(self) -> None:
        elements = _els({"t": "fr", "i": "F"}, *_chain("a", "b"))
        run_layout(elements)
        assert not _by_id(elements)["F"].geometry.has_position

    def test_containment_cycle_terminates(self) -> None:
        elements = _els(
            {"t": "fr", "i": "A", "ch": ["B"]},
            {"t": "fr", "i": "B", "ch": ["A", "x"]},
            {"t": "r", "i": "x"},
        )
        outcome = run_layout(elements)
        assert outcome.status is LayoutStatus.LAID_OUT
        assert _by_id(elements)["x"].geometry.has_position

    def test_self_child_ignored(self) -> None:
        elements = _els({"t": "fr", "i": "F", "ch": ["F", "a"]}, {"t": "r", "i": "a"})
        run_layout(elements)
        by_id = _by_id(elements)
        assert by_id["F"].bounds.contains(by_id["a"].bounds)

    def test_shift_with_descendants(self) -> None:
        elements = _els(
            {"t": "fr", "i": "F", "ch": ["a"], "x": 0, "y": 0, "w": 200, "h": 200},
            {"t": "r", "i": "a", "x": 50, "y": 80, "w": 100, "h": 60},
        )
        ctx = LayoutContext.build(elements)
        shift_with_descendants(ctx, elements[0], 10, 20)
        assert (elements[0].geometry.x, elements[0].geometry.y) == (10, 20)
        assert (elements[1].geometry.x, elements[1].geometry.y) == (60, 100)

    def test_bound_frames_deepest_first(self) -> None:
        elements = _els(
            {"t": "fr", "i": "outer", "ch": ["inner"]},
            {"t": "fr", "i": "inner", "ch": ["a"]},
            {"t": "r", "i": "a", "x": 100, "y": 100, "w": 100, "h": 60},
        )
        ctx = LayoutContext.build(elements)
        assert [f.id for f in ctx.frames] == ["inner", "outer"]
        assert bound_frames(ctx) == 2
        by_id = _by_id(elements)
        assert by_id["outer"].bounds.contains(by_id["inner"].bounds)


class TestWideFrameReflow:
    @staticmethod
    def _wide_frame() -> list[SemanticElement]:
        ids = [f"n{i}" for i in range(6)]
        return _els(
            {"t": "fr", "i": "F", "ch": ids},
            *({"t": "r", "i": i, "l": i} for i in ids),
        )

    @staticmethod
    def _aspect(el: SemanticElement) -> float:
        return el.geometry.width / el.geometry.height

    def test_reflow_reduces_aspect_ratio(self) -> None:
        flat = self._wide_frame()
        run_layout(flat, LayoutEngineConfig(reflow_min_children=100))
        reflowed = self._wide_frame()
        run_layout(reflowed)
        assert self._aspect(reflowed[0]) < self._aspect(flat[0])

    def test_reflow_produces_multiple_rows(self) -> None:
        elements = self._wide_frame()
        run_layout(elements)
        rows = {el.geometry.y for el in elements[1:]}
        assert len(rows) == 2

    def test_reflowed_children_stay_inside(self) -> None:
        elements = self._wide_frame()
        run_layout(elements)
        frame = elements[0].bounds
        for child in elements[1:]:
            assert frame.contains(child.bounds)

    def test_reflowed_children_do_not_overlap(self) -> None:
        elements = self._wide_frame()
        run_layout(elements)
        children = elements[1:]
        for i, a in enumerate(children):
            for b in children[i + 1:]:
                assert not a.bounds.intersects(b.bounds)

    def test_three_children_not_reflowed(self) -> None:
        elements = _els(
            {"t": "fr", "i": "F", "ch": ["a", "b", "c"]},
            {"t": "r", "i": "a"}, {"t": "r", "i": "b"}, {"t": "r", "i": "c"},
        )
        run_layout(elements)
        assert len({el.geometry.y for el in elements[1:]}) == 1


class TestSiblingFrames:
    def test_top_level_siblings_do_not_overlap(self) -> None:
        elements = _els(
            {"t": "fr", "i": "F1", "ch": ["a", "b"]},
            {"t": "fr", "i": "F2", "ch": ["c", "d"]},
            {"t": "r", "i": "a"}, {"t": "r", "i": "b"},
            {"t": "r", "i": "c"}, {"t": "r", "i": "d"},
        )
        run_layout(elements)
        by_id = _by_id(elements)
        left, right = sorted((by_id["F1"], by_id["F2"]), key=lambda f: f.geometry.x)
        assert not left.bounds.intersects(right.bounds)
        assert right.geometry.x - left.bounds.right >= 40
        assert left.geometry.y == right.geometry.y
        for frame, kids in (("F1", "ab"), ("F2", "cd")):
            for kid in kids:
                assert by_id[frame].bounds.contains(by_id[kid].bounds)

    def test_nested_siblings_do_not_overlap(self) -> None:
        elements = _els(
            {"t": "fr", "i": "P", "ch": ["F1", "F2"]},
            {"t": "fr", "i": "F1", "ch": ["a", "b"]},
            {"t": "fr", "i": "F2", "ch": ["c", "d"]},
            {"t": "r", "i": "a"}, {"t": "r", "i": "b"},
            {"t": "r", "i": "c"}, {"t": "r", "i": "d"},
        )
        run_layout(elements)
        by_id = _by_id(elements)
        assert not by_id["F1"].bounds.intersects(by_id["F2"].bounds)
        assert by_id["P"].bounds.contains(by_id["F1"].bounds)
        assert by_id["P"].bounds.contains(by_id["F2"].bounds)


# ===================================================================
# run_layout outcomes
# ===================================================================

class TestRunLayout:
    def test_empty_input(self) -> None:
        assert run_layout([]).status is LayoutStatus.SKIPPED_EMPTY

    def test_connectors_only(self) -> None:
        elements = _els({"t": "a", "i": "e", "si": "a", "ei": "b"})
        assert run_layout(elements).status is LayoutStatus.SKIPPED_EMPTY

    def test_only_empty_frames(self) -> None:
        elements = _els({"t": "fr", "i": "F"})
        assert run_layout(elements).status is LayoutStatus.SKIPPED_EMPTY

    def test_prepositioned_input_untouched(self) -> None:
        elements = _els(
            {"t": "r", "i": "a", "x": 500, "y": 500, "w": 80, "h": 40},
            {"t": "r", "i": "b", "x": 10, "y": 10, "w": 80, "h": 40},
            {"t": "r", "i": "c"},
        )
        outcome = run_layout(elements)
        assert outcome.status is LayoutStatus.SKIPPED_PREPOSITIONED
        assert elements[0].geometry == Geometry(500, 500, 80, 40)
        assert not elements[2].geometry.has_position

    def test_idempotent(self) -> None:
        elements = _els(
            {"t": "fr", "i": "F", "ch": ["a", "b"]},
            *_chain("a", "b", "c"),
        )
        first = run_layout(elements)
        assert first.status is LayoutStatus.LAID_OUT
        snapshot = [el.to_wire() for el in elements]
        second = run_layout(elements)
        assert second.status is LayoutStatus.SKIPPED_PREPOSITIONED
        assert [el.to_wire() for el in elements] == snapshot

    def test_layout_elements_returns_same_list(self) -> None:
        elements = _els(*_chain("a", "b"))
        assert layout_elements(elements) is elements

    def test_negative_size_is_reestimated(self) -> None:
        elements = _els(
            {"t": "r", "i": "a"}, {"t": "r", "i": "b", "w": -5}, {"t": "r", "i": "c"},
            {"t": "a", "i": "e", "si": "a", "ei": "c"},
        )
        outcome = run_layout(elements)
        assert outcome.status is LayoutStatus.LAID_OUT
        assert outcome.positioned == 3
        by_id = _by_id(elements)
        assert by_id["b"].geometry.width == LayoutEngineConfig().min_width
        assert all(el.geometry.has_position for el in elements if not el.is_connector)

    def test_transient_state_swallowed_quietly(self, monkeypatch, caplog) -> None:
        def boom(graph, config=None):
            raise TransientGraphState("still streaming")

        monkeypatch.setattr(layout_engine, "place_graph", boom)
        elements = _els(*_chain("a", "b"))
        with caplog.at_level(logging.DEBUG, logger="excalidraw-mcp.layout"):
            outcome = run_layout(elements)
        assert outcome.status is LayoutStatus.TRANSIENT
        assert isinstance(outcome.error, TransientGraphState)
        assert outcome.elements is elements
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_unexpected_failure_logged_as_warning(self, monkeypatch, caplog) -> None:
        def boom(graph, config=None):
            raise RuntimeError("bad math")

        monkeypatch.setattr(layout_engine, "place_graph", boom)
        elements = _els(*_chain("a", "b"))
        with caplog.at_level(logging.WARNING, logger="excalidraw-mcp.layout"):
            outcome = run_layout(elements)
        assert outcome.status is LayoutStatus.FAILED
        assert not outcome.ok
        assert isinstance(outcome.error, UnexpectedLayoutFailure)
        assert isinstance(outcome.error.cause, RuntimeError)
        assert any("bad math" in r.getMessage() for r in caplog.records)

    def test_invalid_direction_fails_softly(self) -> None:
        elements = _els(*_chain("a", "b"))
        outcome = run_layout(elements, LayoutEngineConfig(direction="XX"))
        assert outcome.status is LayoutStatus.FAILED
        assert isinstance(outcome.error.cause, ValueError)


# ===================================================================
# Strategies
# ===================================================================

class TestStrategies:
    def test_flowchart_is_default(self) -> None:
        assert config_for_strategy("flowchart") == LayoutEngineConfig()

    def test_mindmap_flows_left_to_right(self) -> None:
        assert config_for_strategy(LayoutStrategy.MINDMAP).direction == "LR"

    def test_overrides_apply(self) -> None:
        cfg = config_for_strategy("architecture", rank_spacing=200, node_spacing=None)
        assert cfg.rank_spacing == 200
        assert cfg.node_spacing == 80

    def test_unknown_strategy(self) -> None:
        with pytest.raises(ValueError):
            config_for_strategy("spiral")

    def test_timeline_layout(self) -> None:
        elements = _els(*_chain("a", "b", "c"))
        run_layout(elements, config_for_strategy("timeline"))
        a, b, c = (_by_id(elements)[i] for i in "abc")
        assert a.geometry.x < b.geometry.x < c.geometry.x
