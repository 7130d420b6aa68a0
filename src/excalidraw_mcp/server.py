"""
Excalidraw MCP Server - lay out streamed diagram elements via Model Context Protocol.

Exposes 2 tools that let an LLM agent hand over the compact element array
it is generating (complete or still streaming) and get back positioned,
render-ready Excalidraw elements.

Tools:
  1. diagram - one-shot: parse, layout, render, scene
  2. stream  - debounced sessions: open, feed, poll, flush, close, list
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any

from mcp.server.fastmcp import FastMCP

from excalidraw_mcp.converter import convert_elements, to_scene
from excalidraw_mcp.layout_engine import (
    LayoutEngineConfig,
    config_for_strategy,
    run_layout,
)
from excalidraw_mcp.pipeline import (
    STREAMING_DEBOUNCE_MS,
    PipelineResult,
    StreamingPipeline,
    run_pipeline,
)
from excalidraw_mcp.streaming import parse_streaming
from excalidraw_mcp.styles import all_themes
from excalidraw_mcp.validation import (
    ValidationError,
    validate_action,
    validate_debounce_ms,
    validate_direction,
    validate_margin,
    validate_non_empty_string,
    validate_spacing,
    validate_strategy,
    validate_string,
    _DIAGRAM_ACTIONS,
    _STREAM_ACTIONS,
)

# ---------------------------------------------------------------------------
# Logging - suppress routine FastMCP INFO messages.
# ---------------------------------------------------------------------------
logging.getLogger("mcp.server").setLevel(logging.WARNING)
logger = logging.getLogger("excalidraw-mcp")

# ---------------------------------------------------------------------------
# MCP Server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "excalidraw-mcp",
    instructions=(
        "MCP server that turns a compact, coordinate-free element array into\n"
        "positioned Excalidraw elements.\n\n"
        "=== ONLY 2 TOOLS - use the 'action' parameter to pick the operation ===\n\n"
        "1. diagram(action, text, ...) - parse, layout, render, scene.\n"
        "2. stream(action, session, text, ...) - open, feed, poll, flush,\n"
        "   close, list.  Feed the growing text as it streams in; results are\n"
        "   debounced and only the latest text is laid out.\n\n"
        "=== WIRE FORMAT ===\n"
        '{"e": [{"t": "fr", "i": "box", "l": "Group", "ch": ["a", "b"]},\n'
        '       {"t": "r", "i": "a", "l": "First"}, {"t": "r", "i": "b", "l": "Second"},\n'
        '       {"t": "a", "i": "e1", "si": "a", "ei": "b"}]}\n'
        "Keys: t type (r, d, el, fr, a, tx, ln), i id, l label, ch children,\n"
        "si/ei arrow source/end, bg background, g group, x/y/w/h optional.\n"
    ),
)

# Streaming sessions: name -> StreamingPipeline.
# Guarded by _sessions_lock for thread-safety.
_sessions: dict[str, StreamingPipeline] = {}
_sessions_lock = threading.Lock()


# ===================================================================
# RESOURCES
# ===================================================================

@mcp.resource("excalidraw://styles/themes")
def theme_catalog() -> str:
    """Return the background colours accepted in the 'bg' key."""
    entries = [
        f"  {name}: bg={theme.background} stroke={theme.stroke}"
        for name, theme in sorted(all_themes().items())
    ]
    return "Available colour themes:\n" + "\n".join(entries)


# ===================================================================
# TOOL 1: diagram - one-shot processing
# ===================================================================

@mcp.tool()
def diagram(
    action: str,
    text: str = "",
    direction: str = "",
    strategy: str = "",
    rank_spacing: float | None = None,
    node_spacing: float | None = None,
    margin: float | None = None,
) -> str:
    """Process an element array (complete or truncated) in one call.

    Actions:
      parse  - Recover every closed element. Returns compact elements + is_complete.
      layout - Parse and compute geometry. Returns compact elements with x/y/w/h.
      render - Parse, layout and convert. Returns Excalidraw elements.
      scene  - Like render, wrapped in an .excalidraw scene document.

    Args:
        action: One of: parse, layout, render, scene.
        text: The element array text, e.g. '{"e": [...]}'. May be truncated.
        direction: Flow direction TB, BT, LR or RL (default TB).
        strategy: Preset: flowchart, architecture, mindmap, timeline.
        rank_spacing: Space between ranks.
        node_spacing: Space between nodes in one rank.
        margin: Outer margin on both axes.

    Returns:
        JSON string, or an "Error: ..." message.
    """
    try:
        action = validate_action(action, "diagram", _DIAGRAM_ACTIONS)
        validate_string(text, "text")
        if action != "parse":
            config = _build_config(direction, strategy, rank_spacing, node_spacing, margin)
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "parse":
        parsed = parse_streaming(text)
        return json.dumps({
            "elements": [el.to_wire() for el in parsed.elements],
            "is_complete": parsed.is_complete,
        }, ensure_ascii=False)

    elif action == "layout":
        parsed = parse_streaming(text)
        outcome = run_layout(parsed.elements, config)
        return json.dumps({
            "elements": [el.to_wire() for el in outcome.elements],
            "is_complete": parsed.is_complete,
            "status": outcome.status.value,
            "positioned": outcome.positioned,
        }, ensure_ascii=False)

    elif action == "render":
        result = run_pipeline(text, config)
        return json.dumps(_result_payload(result), ensure_ascii=False)

    elif action == "scene":
        parsed = parse_streaming(text)
        outcome = run_layout(parsed.elements, config)
        return json.dumps(to_scene(convert_elements(outcome.elements)), ensure_ascii=False)

    else:
        return f"Error: unknown diagram action '{action}'. Use: parse, layout, render, scene."


# ===================================================================
# TOOL 2: stream - debounced streaming sessions
# ===================================================================

@mcp.tool()
def stream(
    action: str,
    session: str = "",
    text: str = "",
    debounce_ms: float = STREAMING_DEBOUNCE_MS,
    direction: str = "",
    strategy: str = "",
) -> str:
    """Drive a debounced streaming session for one diagram generation.

    Actions:
      open  - Start (or restart) a session. Params: session, debounce_ms, direction, strategy.
      feed  - Submit the full text received so far, then poll. Params: session, text.
      poll  - Commit the latest text if the debounce window elapsed. Params: session.
      flush - Commit the latest text now. Params: session.
      close - Drop the session and anything pending. Params: session.
      list  - List open sessions.

    Args:
        action: One of: open, feed, poll, flush, close, list.
        session: Session name.
        text: Accumulated element array text (feed only).
        debounce_ms: Debounce window in milliseconds (open only).
        direction: Flow direction (open only).
        strategy: Layout preset (open only).

    Returns:
        JSON string, or a status / "Error: ..." message.
    """
    try:
        action = validate_action(action, "stream", _STREAM_ACTIONS)
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "list":
        with _sessions_lock:
            listing = [
                {"session": name, "commits": p.commit_count, "pending": p.has_pending}
                for name, p in _sessions.items()
            ]
        return json.dumps(listing, indent=2)

    try:
        session = validate_non_empty_string(session, "session")
    except ValidationError as exc:
        return f"Error: {exc.message}"

    if action == "open":
        try:
            window = validate_debounce_ms(debounce_ms)
            config = _build_config(direction, strategy, None, None, None)
        except ValidationError as exc:
            return f"Error: {exc.message}"
        with _sessions_lock:
            _sessions[session] = StreamingPipeline(debounce_ms=window, config=config)
        return f"Session '{session}' opened (debounce {window:g} ms)."

    with _sessions_lock:
        pipeline = _sessions.get(session)
    if pipeline is None:
        return f"Error: session '{session}' not found."

    if action == "feed":
        try:
            validate_string(text, "text")
        except ValidationError as exc:
            return f"Error: {exc.message}"
        queued = pipeline.submit(text)
        return _commit_response(pipeline.poll(), queued=queued, pending=pipeline.has_pending)

    elif action == "poll":
        return _commit_response(pipeline.poll(), pending=pipeline.has_pending)

    elif action == "flush":
        return _commit_response(pipeline.flush(), pending=pipeline.has_pending)

    elif action == "close":
        with _sessions_lock:
            _sessions.pop(session, None)
        return f"Session '{session}' closed after {pipeline.commit_count} commit(s)."

    else:
        return f"Error: unknown stream action '{action}'. Use: open, feed, poll, flush, close, list."


# ===================================================================
# Helpers
# ===================================================================

def _build_config(
    direction: str,
    strategy: str,
    rank_spacing: float | None,
    node_spacing: float | None,
    margin: float | None,
) -> LayoutEngineConfig:
    overrides: dict[str, Any] = {}
    if direction:
        overrides["direction"] = validate_direction(direction)
    if rank_spacing is not None:
        overrides["rank_spacing"] = validate_spacing(rank_spacing, "rank_spacing")
    if node_spacing is not None:
        overrides["node_spacing"] = validate_spacing(node_spacing, "node_spacing")
    if margin is not None:
        overrides["margin_x"] = overrides["margin_y"] = validate_margin(margin)
    if strategy:
        return config_for_strategy(validate_strategy(strategy), **overrides)
    return LayoutEngineConfig(**overrides)


def _result_payload(result: PipelineResult) -> dict[str, Any]:
    return {
        "elements": result.renderables,
        "is_complete": result.is_complete,
        "status": result.layout.status.value,
    }


def _commit_response(
    result: PipelineResult | None,
    *,
    pending: bool,
    queued: bool | None = None,
) -> str:
    payload: dict[str, Any] = {"committed": result is not None, "pending": pending}
    if queued is not None:
        payload["queued"] = queued
    if result is not None:
        payload.update(_result_payload(result))
    return json.dumps(payload, ensure_ascii=False)


# ===================================================================
# Entry point
# ===================================================================

def main() -> None:
    """Run the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
