"""
Parse → layout → convert, for one chunk or for a debounced stream.

``run_pipeline`` processes a single text prefix synchronously.
``StreamingPipeline`` sits in front of it for callers that receive a rapid
series of growing prefixes (model token deltas): it keeps one pending
slot, each new prefix replaces the previous one, and at most one result is
committed per debounce window.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from excalidraw_mcp.converter import ConverterOptions, convert_elements
from excalidraw_mcp.layout_engine import LayoutEngineConfig, LayoutOutcome, run_layout
from excalidraw_mcp.models import SemanticElement
from excalidraw_mcp.streaming import parse_streaming

logger = logging.getLogger("excalidraw-mcp.pipeline")

STREAMING_DEBOUNCE_MS = 250


@dataclass
class PipelineResult:
    """Everything produced for one text prefix."""
    elements: list[SemanticElement]
    renderables: list[dict[str, Any]]
    is_complete: bool
    layout: LayoutOutcome


def run_pipeline(
    text: str,
    config: LayoutEngineConfig | None = None,
    options: ConverterOptions | None = None,
) -> PipelineResult:
    """Run one chunk through parser, layout engine and converter.  Never raises."""
    parsed = parse_streaming(text)
    outcome = run_layout(parsed.elements, config)
    renderables = convert_elements(outcome.elements, options)
    return PipelineResult(
        elements=outcome.elements,
        renderables=renderables,
        is_complete=parsed.is_complete,
        layout=outcome,
    )


class StreamingPipeline:
    """Single-slot debounced runner for one diagram generation.

    ``submit`` stores the latest prefix, replacing any prefix still waiting.
    The first submission after a commit arms the debounce deadline; later
    submissions within the window do not extend it.  ``poll`` runs the
    pipeline on the latest prefix once the deadline has passed.
    """

    def __init__(
        self,
        debounce_ms: float = STREAMING_DEBOUNCE_MS,
        config: LayoutEngineConfig | None = None,
        options: ConverterOptions | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.debounce_ms = debounce_ms
        self.config = config
        self.options = options
        self._clock = clock
        self._pending_text: Optional[str] = None
        self._deadline: Optional[float] = None
        self._last_committed_text: Optional[str] = None
        self.committed: Optional[PipelineResult] = None
        self.commit_count = 0
        self.superseded = 0

    @property
    def has_pending(self) -> bool:
        return self._pending_text is not None

    def submit(self, text: str) -> bool:
        """Queue *text*.  Returns False if it matches what is already queued or committed."""
        if text == self._last_committed_text or text == self._pending_text:
            return False
        if self._pending_text is not None:
            self.superseded += 1
        self._pending_text = text
        if self._deadline is None:
            self._deadline = self._clock() + self.debounce_ms / 1000
        return True

    def poll(self) -> Optional[PipelineResult]:
        """Commit the pending prefix if its debounce window has elapsed."""
        if self._pending_text is None or self._deadline is None:
            return None
        if self._clock() < self._deadline:
            return None
        return self._commit()

    def flush(self) -> Optional[PipelineResult]:
        """Commit the pending prefix now, ignoring the debounce window."""
        if self._pending_text is None:
            return None
        return self._commit()

    def cancel(self) -> None:
        """Discard the pending prefix without running it."""
        self._pending_text = None
        self._deadline = None

    def _commit(self) -> Optional[PipelineResult]:
        text = self._pending_text or ""
        self.cancel()
        result = run_pipeline(text, self.config, self.options)
        if not result.elements:
            if len(text) > 10:
                logger.warning("Stream text present but 0 elements parsed: %.50r", text)
            return None
        self.committed = result
        self._last_committed_text = text
        self.commit_count += 1
        logger.debug("Committed %d elements (complete: %s)",
                     len(result.elements), result.is_complete)
        return result
