"""
Streaming parser for the compact element array.

The generating model emits ``{"e": [ {...}, {...}, ... ]}`` token by token.
At any moment the text seen so far is a truncated, syntactically invalid
JSON document.  ``parse_streaming`` recovers every element object whose
closing brace has already arrived and ignores the rest; the trailing,
still-open object is picked up by a later call on a longer prefix.

Scanning is string- and escape-aware so braces inside labels do not
confuse object boundaries.  Each closed object is decoded independently
with the standard ``json`` module, which keeps one malformed object from
hiding its neighbours.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from excalidraw_mcp.models import SemanticElement, WireFormatError

logger = logging.getLogger("excalidraw-mcp.stream")

# Keys under which the element array may appear in the object form.
_ARRAY_KEYS = ("e", "elements")


@dataclass
class StreamParseResult:
    """Elements recovered from a (possibly truncated) stream prefix."""
    elements: list[SemanticElement] = field(default_factory=list)
    is_complete: bool = False

    def __len__(self) -> int:
        return len(self.elements)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_streaming(text: Any) -> StreamParseResult:
    """Extract every fully closed element from a prefix of the element array.

    Never raises.  Returns an empty result for empty input, garbage, or a
    prefix that has not closed its first object yet.
    """
    if not isinstance(text, str) or not text:
        return StreamParseResult()

    start = _find_array_start(text)
    if start is None:
        return StreamParseResult()

    chunks, closed = _scan_closed_objects(text, start)
    elements = _decode_chunks(chunks)
    return StreamParseResult(elements=elements, is_complete=closed)


def parse_document(text: str) -> list[SemanticElement]:
    """Strictly parse a finished element document.

    Accepts the object form (``{"e": [...]}``) or a bare array.  Individual
    entries that are not valid elements are skipped.

    Raises:
        WireFormatError: if the text is not valid JSON or has the wrong shape.
    """
    if not isinstance(text, str):
        raise WireFormatError(f"element document must be text, got {type(text).__name__}")
    try:
        doc = json.loads(_strip_code_fence(text))
    except (ValueError, RecursionError) as exc:
        raise WireFormatError(f"invalid element document: {exc}") from exc

    if isinstance(doc, dict):
        items = None
        for key in _ARRAY_KEYS:
            if isinstance(doc.get(key), list):
                items = doc[key]
                break
        if items is None:
            raise WireFormatError("element document has no 'e' array")
    elif isinstance(doc, list):
        items = doc
    else:
        raise WireFormatError(
            f"element document must be an object or array, got {type(doc).__name__}"
        )

    elements: list[SemanticElement] = []
    seen: set[str] = set()
    for index, item in enumerate(items):
        try:
            el = SemanticElement.from_wire(item)
        except WireFormatError as exc:
            logger.debug("Skipping element %d: %s", index, exc)
            continue
        if el.id in seen:
            logger.debug("Skipping duplicate element id '%s'", el.id)
            continue
        seen.add(el.id)
        elements.append(el)
    return elements


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

def _find_array_start(text: str) -> Optional[int]:
    """Return the index just past the element array's opening bracket."""
    begin = _first_structural_index(text)
    if begin is None:
        return None
    if text[begin] == "[":
        return begin + 1

    # Object form: locate the '[' that follows the "e" key at depth 1.
    depth = 0
    in_string = False
    escaped = False
    string_start = 0
    last_key: Optional[str] = None
    for j in range(begin, len(text)):
        ch = text[j]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
                if depth == 1:
                    last_key = text[string_start:j]
            continue
        if ch == '"':
            in_string = True
            string_start = j + 1
        elif ch in "{[":
            if ch == "[" and depth == 1 and last_key in _ARRAY_KEYS:
                return j + 1
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth <= 0:
                return None
    return None


def _first_structural_index(text: str) -> Optional[int]:
    obj = text.find("{")
    arr = text.find("[")
    candidates = [i for i in (obj, arr) if i >= 0]
    return min(candidates) if candidates else None


def _scan_closed_objects(text: str, start: int) -> tuple[list[str], bool]:
    """Collect the raw text of each closed top-level object in the array.

    Returns (object_texts, array_closed).
    """
    chunks: list[str] = []
    depth = 0
    in_string = False
    escaped = False
    obj_start: Optional[int] = None

    for j in range(start, len(text)):
        ch = text[j]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            if depth == 0:
                obj_start = j if ch == "{" else None
            depth += 1
        elif ch in "}]":
            if depth == 0:
                if ch == "]":
                    return chunks, True
                continue
            depth -= 1
            if depth == 0:
                if ch == "}" and obj_start is not None:
                    chunks.append(text[obj_start:j + 1])
                obj_start = None

    return chunks, False


def _decode_chunks(chunks: list[str]) -> list[SemanticElement]:
    elements: list[SemanticElement] = []
    seen: set[str] = set()
    for raw in chunks:
        try:
            obj = json.loads(raw)
            el = SemanticElement.from_wire(obj)
        except (ValueError, RecursionError) as exc:
            # Decode errors, WireFormatError and over-deep nesting all drop the object.
            logger.debug("Dropping unparseable element %.40r: %s", raw, exc)
            continue
        if el.id in seen:
            logger.debug("Dropping duplicate element id '%s'", el.id)
            continue
        seen.add(el.id)
        elements.append(el)
    return elements


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        first_newline = stripped.find("\n")
        stripped = stripped[first_newline + 1:] if first_newline >= 0 else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped
